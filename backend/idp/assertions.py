"""FedCM identity assertions.

The browser calls the assertion endpoint on behalf of a relying party once the
user picked an account. Checks run in a fixed order: the fetch context and the
client's origin come first and hold whether or not anyone is signed in; then
no login gives the empty answer FedCM expects; finally the account the browser
asks for must be the one signed in.

Two disclosure policies coexist. Without ``scope`` the legacy
assertion embeds email, name and picture (configurable via
``UNSCOPED_DISCLOSES_ALL_CLAIMS``); with ``scope`` only what the scope names is
embedded. Scopes beyond the standard claims send the browser to an
interactive authorization step instead of returning a token.
"""
import logging
import re
import time
from dataclasses import dataclass
from urllib.parse import urlencode

from .clients import ClientRegistry
from .config import Settings
from .errors import AccountMismatch, BadRequest, InvalidOrigin, InvalidRequestContext
from .schemas import Account
from .security import AccessToken, BasicAssertion, ScopedIdToken, mint_token, token_window
from .sessions import CeremonySession, PendingAuthorization
from .store import CredentialStore

logger = logging.getLogger(__name__)

WEBIDENTITY = "webidentity"
IDENTITY_CLAIMS = ("email", "name", "picture")
STANDARD_SCOPES = frozenset({"openid", *IDENTITY_CLAIMS})
AUTHORIZE_PATH = "/fedcm/authorize"

@dataclass(frozen=True)
class FetchContext:
    """What the HTTP layer tells us about the request."""

    sec_fetch_dest: str | None
    origin: str | None

@dataclass(frozen=True)
class AssertionRequest:
    client_id: str | None
    nonce: str | None
    account_id: str | None
    disclosure_text_shown: bool = False
    scope: list[str] | None = None

def parse_scope(scope) -> list[str] | None:
    """Accept a list of scopes or a space/comma separated string; keep order, drop duplicates."""
    if scope is None or scope == "" or scope == []:
        return None
    if isinstance(scope, str):
        tokens = re.split(r"[\s,]+", scope)
    else:
        tokens = [str(s) for s in scope]
    seen: dict[str, None] = {}
    for token in tokens:
        if token:
            seen.setdefault(token, None)
    return list(seen) or None

def parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)

def _identity_claims(account: Account, scopes) -> dict:
    values = {"email": account.email, "name": account.name, "picture": account.avatar_url}
    return {claim: values[claim] for claim in IDENTITY_CLAIMS if claim in scopes}

class AssertionIssuer:
    def __init__(self, store: CredentialStore, clients: ClientRegistry, config: Settings, clock=time.time):
        self.store = store
        self.clients = clients
        self.config = config
        self._clock = clock

    def accounts(self, session: CeremonySession) -> dict:
        if not session.is_logged_in:
            return {"accounts": []}
        return {"accounts": [session.logged_in_user.public_view()]}

    def check_context(self, context: FetchContext) -> None:
        if context.sec_fetch_dest != WEBIDENTITY:
            raise InvalidRequestContext()

    def check_origin(self, client_id: str | None, origin: str | None) -> None:
        client = self.clients.get(client_id)
        if client is None or origin != client.origin:
            logger.error("Invalid Origin: %s for client_id: %s", origin, client_id)
            raise InvalidOrigin()

    def _record_consent(self, session: CeremonySession, client_id: str) -> CeremonySession:
        updated = self.store.add_approved_client(session.logged_in_user.account_id, client_id)
        return session.refresh_user(updated) if updated else session

    def issue(self, session: CeremonySession, request: AssertionRequest, context: FetchContext):
        """Returns ``(body, session)`` where body is ``{}``, ``{"token"}`` or ``{"continue_on"}``."""
        self.check_context(context)
        self.check_origin(request.client_id, context.origin)

        if not session.is_logged_in:
            return {}, session

        user = session.logged_in_user
        if request.account_id != user.account_id:
            logger.error("Invalid account_id: %s (signed in: %s)", request.account_id, user.account_id)
            raise AccountMismatch()

        if request.disclosure_text_shown:
            session = self._record_consent(session, request.client_id)
            user = session.logged_in_user

        scopes = request.scope
        if scopes and not set(scopes) <= STANDARD_SCOPES:
            pending = PendingAuthorization(
                client_id=request.client_id, account_id=user.account_id, nonce=request.nonce, scopes=scopes
            )
            query = urlencode({"client_id": request.client_id, "scope": " ".join(scopes)})
            return {"continue_on": f"{AUTHORIZE_PATH}?{query}"}, session.with_authorization(pending)

        iat, exp = token_window(self.config.ASSERTION_TTL_SECONDS, self._clock())
        if scopes:
            token = ScopedIdToken(sub=user.account_id, nonce=request.nonce, iat=iat, exp=exp, **_identity_claims(user, scopes))
        else:
            claims = _identity_claims(user, IDENTITY_CLAIMS) if self.config.UNSCOPED_DISCLOSES_ALL_CLAIMS else {}
            token = BasicAssertion(sub=user.account_id, nonce=request.nonce, iat=iat, exp=exp, **claims)
        return {"token": mint_token(token, self.config.JWT_SECRET)}, session

    def authorization_context(self, session: CeremonySession, client_id: str | None) -> dict:
        pending = session.pending_authorization
        if not session.is_logged_in or pending is None or pending.client_id != client_id:
            raise BadRequest("No pending authorization request")
        client = self.clients.get(pending.client_id)
        return {
            "client_id": pending.client_id,
            "client_name": client.name if client else pending.client_id,
            "scope": pending.scopes,
            "account": session.logged_in_user.public_view(),
        }

    def authorize(self, session: CeremonySession, client_id: str | None, approved: bool):
        """Finish the interactive step; returns ``(tokens, session)``, tokens empty when rejected."""
        pending = session.pending_authorization
        session = session.with_authorization(None)
        if not session.is_logged_in or pending is None or pending.client_id != client_id:
            raise BadRequest("No pending authorization request")
        if pending.account_id != session.logged_in_user.account_id:
            raise AccountMismatch()
        if not approved:
            logger.info("Authorization of %s for %s rejected", pending.client_id, pending.account_id)
            return {}, session

        user = session.logged_in_user
        tokens = {}
        extra = [s for s in pending.scopes if s not in STANDARD_SCOPES]
        if extra:
            iat, exp = token_window(self.config.ACCESS_TOKEN_TTL_SECONDS, self._clock())
            access = AccessToken(sub=user.account_id, aud=pending.client_id, scope=" ".join(extra), iat=iat, exp=exp)
            tokens["access_token"] = mint_token(access, self.config.JWT_SECRET)
            tokens["token_type"] = "Bearer"
            tokens["expires_in"] = self.config.ACCESS_TOKEN_TTL_SECONDS
        standard = [s for s in pending.scopes if s in STANDARD_SCOPES]
        if standard:
            iat, exp = token_window(self.config.ASSERTION_TTL_SECONDS, self._clock())
            id_token = ScopedIdToken(
                sub=user.account_id, nonce=pending.nonce, iat=iat, exp=exp, **_identity_claims(user, standard)
            )
            tokens["id_token"] = mint_token(id_token, self.config.JWT_SECRET)
        logger.info("Authorized %s for %s with scope %s", pending.client_id, user.account_id, pending.scopes)
        return tokens, session

    def revoke(self, client_id: str | None, account_hint: str | None, context: FetchContext) -> None:
        # approved_clients is not touched here
        logger.info("Revocation requested by %s (origin %s) for account %s", client_id, context.origin, account_hint)
