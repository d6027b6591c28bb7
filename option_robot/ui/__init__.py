"""Local HTTP surface for the presentation shell."""
