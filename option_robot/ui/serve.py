"""Convenience launcher for the robot API.

Dev:
  python -m option_robot.ui.serve --reload

LAN (shell on another device):
  python -m option_robot.ui.serve --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

import uvicorn
from dotenv import load_dotenv


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def main() -> None:
    load_dotenv(os.getenv("ENV_FILE", ".env"), override=False)

    p = argparse.ArgumentParser(description="Serve option-robot API (FastAPI)")
    p.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    p.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    p.add_argument("--reload", action="store_true")
    p.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "info"))
    args = p.parse_args()

    _configure_logging(str(args.log_level))
    logging.getLogger("option_robot").info("Starting option-robot API on %s:%s", args.host, args.port)

    uvicorn.run(
        "option_robot.ui.api:create_app",
        factory=True,
        host=str(args.host),
        port=int(args.port),
        reload=bool(args.reload),
        log_level=str(args.log_level).lower(),
        # One process: the robot loop and its session live in this worker.
        workers=1,
    )


if __name__ == "__main__":
    main()
