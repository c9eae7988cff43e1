import logging

from fastapi import APIRouter, Depends, Request, Response

from ..assertions import AssertionIssuer, AssertionRequest, FetchContext, parse_bool, parse_scope
from ..deps import base_url, current_session, fetch_context, get_issuer, read_payload, require_same_origin, store_session
from ..errors import BadRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/fedcm", tags=["fedcm"])

@router.get("/client_metadata_endpoint")
def client_metadata(request: Request):
    origin = base_url(request)
    return {
        "privacy_policy_url": f"{origin}/privacy_policy.html",
        "terms_of_service_url": f"{origin}/terms_of_service.html",
    }

@router.get("/accounts_endpoint")
def accounts(
    request: Request,
    context: FetchContext = Depends(fetch_context),
    issuer: AssertionIssuer = Depends(get_issuer),
):
    issuer.check_context(context)
    return issuer.accounts(current_session(request))

@router.post("/token_endpoint")
async def token(
    request: Request,
    context: FetchContext = Depends(fetch_context),
    issuer: AssertionIssuer = Depends(get_issuer),
):
    payload = await read_payload(request)
    assertion_request = AssertionRequest(
        client_id=payload.get("client_id"),
        nonce=payload.get("nonce"),
        account_id=payload.get("account_id"),
        disclosure_text_shown=parse_bool(payload.get("disclosure_text_shown")),
        scope=parse_scope(payload.get("scope")),
    )
    body, session = issuer.issue(current_session(request), assertion_request, context)
    store_session(request, session)
    return body

@router.get("/authorize", dependencies=[Depends(require_same_origin)])
def authorization_context(client_id: str, request: Request, issuer: AssertionIssuer = Depends(get_issuer)):
    return issuer.authorization_context(current_session(request), client_id)

@router.post("/authorize_endpoint", dependencies=[Depends(require_same_origin)])
async def authorize(request: Request, issuer: AssertionIssuer = Depends(get_issuer)):
    payload = await read_payload(request)
    session = current_session(request)
    # the pending request is consumed whatever the outcome
    store_session(request, session.with_authorization(None))
    tokens, session = issuer.authorize(session, payload.get("client_id"), parse_bool(payload.get("approved", True)))
    store_session(request, session)
    return tokens

@router.post("/revocation_endpoint", status_code=204)
async def revocation(
    request: Request,
    context: FetchContext = Depends(fetch_context),
    issuer: AssertionIssuer = Depends(get_issuer),
):
    try:
        payload = await read_payload(request)
    except BadRequest:
        # revocation is always acknowledged
        logger.info("Ignoring malformed revocation request from %s", context.origin)
        payload = {}
    issuer.revoke(payload.get("client_id"), payload.get("account_hint"), context)
    return Response(status_code=204)
