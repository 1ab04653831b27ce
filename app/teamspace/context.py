"""
Per-request authentication context.

An ``AuthContext`` is created for every request and stored on ``g.auth``. It
moves through ``uninitialized -> loading -> ready | error`` while it rehydrates
the signed-in identity from the session token kept in the signed cookie.
"""

from __future__ import annotations

import enum
import logging
import secrets
from collections.abc import Callable, MutableMapping
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash

from app.teamspace.models import AuthSession, User

logger = logging.getLogger(__name__)

SESSION_TOKEN_KEY = "auth_token"
SIGN_OUT_TIMEOUT_SECONDS = 3.0


class AuthState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class AuthContext:
    def __init__(self, session_store: MutableMapping[str, Any]):
        self._store = session_store
        self.state = AuthState.UNINITIALIZED
        self.user: User | None = None
        self.error: str | None = None

    @property
    def token(self) -> str | None:
        return self._store.get(SESSION_TOKEN_KEY)

    @property
    def is_authenticated(self) -> bool:
        return self.state == AuthState.READY and self.user is not None and self.user.is_active

    def require_user(self) -> User:
        if not self.is_authenticated:
            raise RuntimeError("No current user")
        return self.user  # type: ignore[return-value]

    def _clear(self) -> None:
        self._store.pop(SESSION_TOKEN_KEY, None)
        self.user = None

    def initialize(self, s: Session) -> "AuthContext":
        """Rehydrate the identity from the stored token. Never raises."""
        if self.state != AuthState.UNINITIALIZED:
            return self
        self.state = AuthState.LOADING
        self.error = None
        token = self.token
        if not token:
            self.user = None
            self.state = AuthState.READY
            return self
        try:
            row = s.query(AuthSession).filter(AuthSession.token == token).one_or_none()
            user = row.user if row else None
            if not user or not user.is_active:
                self._clear()
            else:
                row.last_seen_at = datetime.utcnow()
                s.commit()
                self.user = user
            self.state = AuthState.READY
        except SQLAlchemyError as e:
            s.rollback()
            logger.error("Auth rehydration failed (clearing session): %s", e)
            self._clear()
            self.error = "Could not restore your session."
            self.state = AuthState.ERROR
        return self

    def sign_in(self, s: Session, email: str, password: str) -> User | None:
        self.state = AuthState.LOADING
        self.error = None
        email = (email or "").strip().lower()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password or ""):
            self._clear()
            self.error = "Invalid credentials."
            self.state = AuthState.READY
            return None
        return self.establish(s, user)

    def establish(self, s: Session, user: User) -> User:
        """Open a server-side session for an already verified user."""
        token = secrets.token_urlsafe(32)
        s.add(AuthSession(token=token, user_id=user.id))
        self._store[SESSION_TOKEN_KEY] = token
        self.user = user
        self.state = AuthState.READY
        return user

    def sign_out(
        self,
        revoke: Callable[[str], None] | None = None,
        timeout: float = SIGN_OUT_TIMEOUT_SECONDS,
    ) -> bool:
        """
        Revoke the remote session with a bounded wait, then clear local identity.

        Returns True when the revoke finished within ``timeout``. The local
        identity and token are cleared in every case.
        """
        self.state = AuthState.LOADING
        token = self.token
        finished = True
        if revoke is not None and token:
            pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sign-out")
            future = pool.submit(revoke, token)
            try:
                future.result(timeout=timeout)
            except FutureTimeout:
                finished = False
                logger.warning("Sign-out revoke timed out after %.1fs; proceeding with local cleanup", timeout)
            except Exception as e:
                finished = False
                logger.error("Sign-out revoke failed: %s", e)
            finally:
                pool.shutdown(wait=False)
        self._clear()
        self.error = None
        self.state = AuthState.READY
        return finished


def revoke_session_token(s: Session, token: str) -> int:
    """Delete the server-side session row(s) for ``token``. The caller commits."""
    return s.query(AuthSession).filter(AuthSession.token == token).delete(synchronize_session=False)
