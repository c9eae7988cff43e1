"""Request-scoped collaborators for the routers.

The session middleware puts the ``CeremonySession`` on ``request.state``;
handlers read it here and hand back the successor value.
"""
import json
import logging

from fastapi import Depends, Request

from .assertions import AssertionIssuer, FetchContext
from .clients import client_registry
from .config import settings
from .errors import BadRequest, CrossOriginRequest
from .sessions import CeremonySession
from .store import CredentialStore, SqlCredentialStore
from .webauthn import CeremonyEngine, RelyingParty

logger = logging.getLogger(__name__)

_store = SqlCredentialStore()

def get_store() -> CredentialStore:
    return _store

def current_session(request: Request) -> CeremonySession:
    return request.state.session

def store_session(request: Request, session: CeremonySession) -> None:
    request.state.session = session

def destroy_session(request: Request) -> None:
    request.state.session = CeremonySession()
    request.state.session_destroyed = True

def base_url(request: Request) -> str:
    host = request.headers.get("host") or request.url.netloc
    return f"{request.url.scheme}://{host}"

def require_same_origin(request: Request) -> None:
    """Only pages served by this IDP may drive the authorization step."""
    origin = request.headers.get("origin")
    if origin is not None:
        same_origin = origin == base_url(request)
    else:
        same_origin = request.headers.get("sec-fetch-site") == "same-origin"
    if not same_origin:
        logger.warning("Rejected cross-origin %s %s from %s", request.method, request.url.path, origin)
        raise CrossOriginRequest()

def relying_party(request: Request) -> RelyingParty:
    return RelyingParty(hostname=request.url.hostname, origin=base_url(request))

def fetch_context(request: Request) -> FetchContext:
    return FetchContext(sec_fetch_dest=request.headers.get("sec-fetch-dest"), origin=request.headers.get("origin"))

def get_engine(rp: RelyingParty = Depends(relying_party), store: CredentialStore = Depends(get_store)) -> CeremonyEngine:
    return CeremonyEngine(store, rp)

def get_issuer(store: CredentialStore = Depends(get_store)) -> AssertionIssuer:
    return AssertionIssuer(store, client_registry, settings)

async def read_payload(request: Request) -> dict:
    """JSON body, or a urlencoded/multipart form posted by a plain HTML page."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return {k: v for k, v in form.items()}
    body = await request.body()
    if not body:
        return {}
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise BadRequest("Malformed request body") from exc
    if not isinstance(payload, dict):
        raise BadRequest("Malformed request body")
    return payload
