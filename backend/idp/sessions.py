"""Per-browser ceremony and login state.

A ``CeremonySession`` is a value: every transition returns a new session and
leaves the old one untouched. The HTTP layer loads it before a request and
stores whatever the handlers hand back.

Ceremony fields (``current_challenge``, ``passkey_registration``,
``passkey_login``) hold exactly one in-flight ceremony. Starting a new one
replaces them, and taking them out for verification clears them whether the
verification then succeeds or not.
"""
from typing import Literal, NamedTuple

from pydantic import BaseModel

from .schemas import Account

CeremonyKind = Literal["registration", "authentication"]

class PendingRegistration(NamedTuple):
    challenge: str
    candidate: Account

class PendingAuthentication(NamedTuple):
    challenge: str
    email: str | None

class PendingAuthorization(BaseModel):
    client_id: str
    account_id: str
    nonce: str | None = None
    scopes: list[str]

class CeremonySession(BaseModel):
    current_challenge: str | None = None
    ceremony: CeremonyKind | None = None
    passkey_registration: Account | None = None
    passkey_login: str | None = None

    logged_in_user: Account | None = None
    login_session_expiration: float | None = None

    pending_authorization: PendingAuthorization | None = None

    def _cleared(self) -> "CeremonySession":
        return self.model_copy(
            update={"current_challenge": None, "ceremony": None, "passkey_registration": None, "passkey_login": None}
        )

    # ---------- WebAuthn ceremonies ----------
    def begin_registration(self, candidate: Account, challenge: str) -> "CeremonySession":
        return self._cleared().model_copy(
            update={"current_challenge": challenge, "ceremony": "registration", "passkey_registration": candidate}
        )

    def begin_authentication(self, challenge: str, email: str | None) -> "CeremonySession":
        return self._cleared().model_copy(
            update={"current_challenge": challenge, "ceremony": "authentication", "passkey_login": email}
        )

    def take_registration(self) -> tuple[PendingRegistration | None, "CeremonySession"]:
        pending = None
        if self.ceremony == "registration" and self.current_challenge and self.passkey_registration:
            pending = PendingRegistration(self.current_challenge, self.passkey_registration)
        return pending, self._cleared()

    def take_authentication(self) -> tuple[PendingAuthentication | None, "CeremonySession"]:
        pending = None
        if self.ceremony == "authentication" and self.current_challenge:
            pending = PendingAuthentication(self.current_challenge, self.passkey_login)
        return pending, self._cleared()

    # ---------- Login state ----------
    @property
    def is_logged_in(self) -> bool:
        return self.logged_in_user is not None

    def log_in(self, account: Account, now: float, lifetime: float) -> "CeremonySession":
        snapshot = account.model_copy(update={"secret_hash": None})
        return self.model_copy(update={"logged_in_user": snapshot, "login_session_expiration": now + lifetime})

    def log_out(self) -> "CeremonySession":
        return self.model_copy(
            update={"logged_in_user": None, "login_session_expiration": None, "pending_authorization": None}
        )

    def refresh_user(self, account: Account) -> "CeremonySession":
        if not self.is_logged_in:
            return self
        return self.model_copy(update={"logged_in_user": account.model_copy(update={"secret_hash": None})})

    def expire_if_needed(self, now: float) -> "CeremonySession":
        if self.is_logged_in and (self.login_session_expiration is None or self.login_session_expiration <= now):
            return self.log_out()
        return self

    def expire_out_of_band(self, now: float) -> "CeremonySession":
        """Let the login lapse on the next request without telling the browser."""
        return self.model_copy(update={"login_session_expiration": now})

    # ---------- FedCM continuation ----------
    def with_authorization(self, pending: PendingAuthorization | None) -> "CeremonySession":
        return self.model_copy(update={"pending_authorization": pending})
