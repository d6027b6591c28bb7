"""Broker session (Credential) ownership and persistence.

The Session Store is the only component that mutates auth state. It keeps
the token / session id in memory, mirrors them to a key-value store under
fixed keys, and reloads them once at construction.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from option_robot.data.audit import AuditManager
from option_robot.data.kv_store import KeyValueStore
from option_robot.execution.errors import AuthError, BrokerError
from option_robot.execution.schemas import Credential, LoginCredentials, LoginResult

if TYPE_CHECKING:
    from option_robot.execution.broker_client import BrokerClient

logger = logging.getLogger(__name__)

TOKEN_KEY = "invest_option_token"
SESSION_ID_KEY = "invest_option_ssid"
EMAIL_KEY = "user_email"


class SessionStore:
    def __init__(self, storage: KeyValueStore, *, audit: Optional[AuditManager] = None):
        self.storage = storage
        self.audit = audit
        self.broker: Optional["BrokerClient"] = None
        self._token: Optional[str] = storage.get(TOKEN_KEY) or None
        self._session_id: Optional[str] = storage.get(SESSION_ID_KEY) or None
        self._email: Optional[str] = storage.get(EMAIL_KEY) or None
        # Bumped on every login/clear; responses to requests issued under an
        # older generation must not touch the session.
        self._generation = 0

    def attach(self, broker: "BrokerClient") -> None:
        """Bind the broker client used for login/logout exchanges."""
        self.broker = broker

    def _require_broker(self) -> "BrokerClient":
        if self.broker is None:
            raise RuntimeError("SessionStore has no broker client attached")
        return self.broker

    # ---- reads ----------------------------------------------------------

    def current_credential(self) -> Optional[Credential]:
        if not (self._token or self._session_id):
            return None
        return Credential(token=self._token, session_id=self._session_id)

    def is_authenticated(self) -> bool:
        return bool(self._token or self._session_id)

    def user_email(self) -> Optional[str]:
        return self._email

    @property
    def generation(self) -> int:
        return self._generation

    # ---- mutations (never yield to the event loop) ----------------------

    def _persist(self, credential: Credential, *, email: Optional[str] = None) -> None:
        self._generation += 1
        self._token = credential.token or None
        self._session_id = credential.session_id or None
        for key, value in ((TOKEN_KEY, self._token), (SESSION_ID_KEY, self._session_id)):
            if value:
                self.storage.set(key, value)
            else:
                self.storage.delete(key)
        if email:
            self._email = email
            self.storage.set(EMAIL_KEY, email)

    def adopt_session_id(self, session_id: str, *, generation: Optional[int] = None) -> None:
        """Store a session id delivered through a Set-Cookie header.

        `generation` is the value of `self.generation` when the request was
        issued; a response that outlived a logout or a new login is ignored.
        """
        if not session_id or session_id == self._session_id:
            return
        if not self.is_authenticated():
            logger.debug("Ignoring session cookie: no active session")
            return
        if generation is not None and generation != self._generation:
            logger.debug("Ignoring session cookie from a stale request")
            return
        self._session_id = session_id
        self.storage.set(SESSION_ID_KEY, session_id)
        logger.debug("Adopted new broker session id")

    def clear(self) -> None:
        self._generation += 1
        self._token = None
        self._session_id = None
        self._email = None
        self.storage.delete(TOKEN_KEY, SESSION_ID_KEY, EMAIL_KEY)

    # ---- broker exchanges -----------------------------------------------

    async def login(self, credentials: LoginCredentials) -> LoginResult:
        """Log in through the broker client; persist only on success."""
        broker = self._require_broker()
        try:
            outcome = await broker.login(credentials)
        except AuthError as e:
            if self.audit is not None:
                self.audit.log("login_failed", {"email": credentials.email, "reason": str(e)}, level=logging.WARNING)
            return LoginResult(success=False, message=str(e) or "Login failed")

        self._persist(outcome.credential, email=credentials.email)
        if self.audit is not None:
            self.audit.log(
                "login_succeeded",
                {"email": credentials.email, "has_token": bool(outcome.credential.token),
                 "has_session_id": bool(outcome.credential.session_id)},
            )
        return LoginResult(success=True, user=outcome.user)

    async def logout(self) -> None:
        """Notify the broker (best effort) and always clear the Credential."""
        try:
            if self.is_authenticated() and self.broker is not None:
                await self.broker.logout()
        except BrokerError as e:
            logger.info("Broker logout notification failed: %s", e)
        finally:
            self.clear()
            if self.audit is not None:
                self.audit.log("logout", {})


__all__ = ["EMAIL_KEY", "SESSION_ID_KEY", "TOKEN_KEY", "SessionStore"]
