import logging
import time
import uuid

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse

from ..config import settings
from ..deps import current_session, destroy_session, get_engine, get_store, read_payload, relying_party, store_session
from ..errors import BadRequest, Unauthorized
from ..schemas import Account, avatar_url_for
from ..security import check_secret, hash_secret
from ..store import CredentialStore
from ..webauthn import CeremonyEngine, CeremonyResult, RelyingParty

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

# FedCM login status signal
SET_LOGIN_HEADER = "Set-Login"
LOGGED_IN = "logged-in"
LOGGED_OUT = "logged-out"

def _finish(request: Request, response: Response, result: CeremonyResult) -> dict:
    store_session(request, result.session)
    if result.error is not None:
        raise result.error
    if result.verified:
        response.headers[SET_LOGIN_HEADER] = LOGGED_IN
    return {"verified": result.verified}

def _home(login_status: str | None = None) -> RedirectResponse:
    redirect = RedirectResponse("/", status_code=303)
    if login_status:
        redirect.headers[SET_LOGIN_HEADER] = login_status
    return redirect

def _signed_in_user(request: Request) -> Account:
    session = current_session(request)
    if not session.is_logged_in:
        raise BadRequest("No current session")
    return session.logged_in_user

# ---------- WebAuthn registration ----------
@router.post("/generate-registration-options")
async def generate_registration_options(payload: dict, request: Request, engine: CeremonyEngine = Depends(get_engine)):
    options, session = engine.registration_options(current_session(request), payload.get("email"), payload.get("name"))
    store_session(request, session)
    return options

@router.post("/verify-registration")
async def verify_registration(
    payload: dict, request: Request, response: Response, engine: CeremonyEngine = Depends(get_engine)
):
    return _finish(request, response, engine.verify_registration(current_session(request), payload))

# ---------- WebAuthn authentication ----------
@router.post("/generate-authentication-options")
async def generate_authentication_options(request: Request, engine: CeremonyEngine = Depends(get_engine)):
    payload = await read_payload(request)
    options, session = engine.authentication_options(current_session(request), payload.get("email"))
    store_session(request, session)
    return options

@router.post("/verify-authentication")
async def verify_authentication(
    payload: dict, request: Request, response: Response, engine: CeremonyEngine = Depends(get_engine)
):
    return _finish(request, response, engine.verify_authentication(current_session(request), payload))

# ---------- Password accounts ----------
@router.post("/signup")
async def signup(
    request: Request,
    rp: RelyingParty = Depends(relying_party),
    store: CredentialStore = Depends(get_store),
):
    payload = await read_payload(request)
    email, name, secret = payload.get("email"), payload.get("name"), payload.get("secret")
    if not email or not name or not secret:
        raise BadRequest("Email, name, and secret are required")

    account_id = str(uuid.uuid4())
    account = Account(
        account_id=account_id,
        email=email,
        name=name,
        hostname=rp.hostname,
        avatar_url=avatar_url_for(email),
        secret_hash=hash_secret(secret),
    )
    # Conflict when (email, hostname) is taken
    store.add_user(account)
    logger.info("Created password account %s on %s", account_id, rp.hostname)

    store_session(request, current_session(request).log_in(account, time.time(), settings.LOGIN_SESSION_SECONDS))
    return _home(LOGGED_IN)

@router.post("/signin")
async def signin(
    request: Request,
    rp: RelyingParty = Depends(relying_party),
    store: CredentialStore = Depends(get_store),
):
    payload = await read_payload(request)
    email, secret = payload.get("email"), payload.get("secret")
    if not email or not secret:
        raise BadRequest("Email and password are required")

    account = store.get_user(email, rp.hostname)
    if account is None or not check_secret(secret, account.secret_hash):
        logger.info("Rejected password sign-in for %s on %s", email, rp.hostname)
        raise Unauthorized()

    store_session(request, current_session(request).log_in(account, time.time(), settings.LOGIN_SESSION_SECONDS))
    return _home(LOGGED_IN)

@router.post("/signout")
async def signout(request: Request):
    destroy_session(request)
    return _home(LOGGED_OUT)

@router.post("/remove_client")
async def remove_client(request: Request, store: CredentialStore = Depends(get_store)):
    payload = await read_payload(request)
    user = _signed_in_user(request)
    updated = store.remove_approved_client(user.account_id, payload.get("client_id"))
    if updated is not None:
        store_session(request, current_session(request).refresh_user(updated))
    return _home()

@router.post("/expire-session-outofband")
async def expire_session_outofband(request: Request):
    _signed_in_user(request)
    store_session(request, current_session(request).expire_out_of_band(time.time()))
    return {"message": "Session expired successfully"}

@router.post("/delete-user")
async def delete_user(request: Request, store: CredentialStore = Depends(get_store)):
    user = _signed_in_user(request)
    store.delete_user(user.account_id)
    logger.info("Deleted account %s and its authenticators", user.account_id)
    destroy_session(request)
    return _home(LOGGED_OUT)
