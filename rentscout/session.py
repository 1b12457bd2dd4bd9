# rentscout/session.py
"""Marketplace login and the persisted session it produces.

`SessionManager` is the only writer of `SessionState`. Workers that find
themselves logged out call `ensure_login`; the lock makes sure only one login
form is submitted at a time, and a worker that waited behind another one's
login adopts the fresh cookies instead of logging in again.
"""
import json
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from playwright.sync_api import Error as PWError

from .errors import LoginFailure
from .utils import logger

LOGIN_LINK = 'a:has-text("Mein Konto")'
LOGIN_MODAL = "#login_modal"
EMAIL_INPUT = "#login_email_username, input[name='login_email_username']"
PASSWORD_INPUT = "#login_password, input[name='login_password']"
SUBMIT_BUTTON = "#login_submit, input[type='submit'][value='Login']"
LOGGED_IN_MARKER = "a[href*='logout']"


def _now():
    return datetime.now(timezone.utc)


@dataclass
class SessionState:
    storage_state: dict
    identity: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    expires_at: Optional[datetime] = None

    def is_valid(self, now=None) -> bool:
        if not self.storage_state or not self.storage_state.get("cookies"):
            return False
        return self.expires_at is None or (now or _now()) < self.expires_at

    def to_dict(self) -> dict:
        return {
            "storage_state": self.storage_state,
            "identity": self.identity,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionState":
        expires = data.get("expires_at")
        return cls(
            storage_state=data.get("storage_state") or {},
            identity=data.get("identity"),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else _now(),
            expires_at=datetime.fromisoformat(expires) if expires else None,
        )


def load_session_state(path) -> Optional[SessionState]:
    if not path or not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return SessionState.from_dict(json.load(fh))
    except (OSError, ValueError, KeyError) as e:
        logger.error("Failed loading session state from %s: %s", path, e)
        return None


def save_session_state(state: SessionState, path) -> None:
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as fh:
        json.dump(state.to_dict(), fh)
    os.replace(tmp, path)


class SessionManager:
    def __init__(self, email=None, password=None, state_path=None, ttl_hours=24.0,
                 poll_interval_ms=500, poll_attempts=20):
        self.email = email
        self.password = password
        self.state_path = state_path
        self.ttl = timedelta(hours=ttl_hours)
        self.poll_interval_ms = poll_interval_ms
        self.poll_attempts = poll_attempts
        self._lock = threading.Lock()
        self._generation = 0
        self._state = load_session_state(state_path)
        self.enabled = bool(email and password)
        self.failure = None if self.enabled else "no credentials configured"

    @classmethod
    def from_settings(cls, settings) -> "SessionManager":
        return cls(
            email=settings.WG_GESUCHT_EMAIL,
            password=settings.WG_GESUCHT_PASSWORD,
            state_path=settings.SESSION_STATE_FILE,
            ttl_hours=settings.SESSION_TTL_HOURS,
        )

    @property
    def state(self) -> Optional[SessionState]:
        return self._state

    def storage_state(self) -> Optional[dict]:
        """Storage state for new browser contexts, None when there is nothing valid."""
        state = self._state
        return state.storage_state if state is not None and state.is_valid() else None

    def is_logged_in(self, page) -> bool:
        return page.query_selector(LOGGED_IN_MARKER) is not None

    def ensure_login(self, page, inline=False) -> SessionState:
        """Log `page` in, or raise LoginFailure and disable gated extraction."""
        if not self.enabled:
            raise LoginFailure(self.failure or "login disabled")
        seen = self._generation
        with self._lock:
            if not self.enabled:
                raise LoginFailure(self.failure or "login disabled")
            if self._generation != seen and self._state is not None:
                page.context.add_cookies(self._state.storage_state.get("cookies", []))
                page.reload()
                if self.is_logged_in(page):
                    logger.debug("Adopted session from a concurrent login")
                    return self._state
            if self.is_logged_in(page) and self._state is not None:
                return self._state
            try:
                self._submit_login(page, inline)
            except LoginFailure as e:
                self.enabled = False
                self.failure = str(e)
                logger.warning("Login as %s failed, gated fields disabled for this pass: %s", self.email, e)
                raise
            now = _now()
            state = SessionState(
                storage_state=page.context.storage_state(),
                identity=self.email,
                created_at=now,
                expires_at=now + self.ttl,
            )
            self._state = state
            self._generation += 1
            if self.state_path:
                save_session_state(state, self.state_path)
            logger.info("Logged in as %s", self.email)
            return state

    def _submit_login(self, page, inline):
        try:
            if not inline or page.query_selector(EMAIL_INPUT) is None:
                page.click(LOGIN_LINK)
                page.wait_for_selector(EMAIL_INPUT, state="visible")
            page.fill(EMAIL_INPUT, self.email)
            page.fill(PASSWORD_INPUT, self.password)
            page.click(SUBMIT_BUTTON)
        except PWError as e:
            raise LoginFailure(f"login form not usable: {e}") from e
        for _ in range(self.poll_attempts):
            if self.is_logged_in(page):
                return
            page.wait_for_timeout(self.poll_interval_ms)
        raise LoginFailure("logged-in marker never appeared")
