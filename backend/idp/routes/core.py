from fastapi import APIRouter, Depends, Request

from ..assertions import AssertionIssuer, FetchContext
from ..clients import idp_registry
from ..deps import base_url, fetch_context, get_issuer

router = APIRouter(tags=["discovery"])

@router.get("/.well-known/web-identity")
def web_identity(request: Request):
    # unknown hostnames never get here, the session middleware answers 404 first
    return {"provider_urls": [f"{base_url(request)}/fedcm.json"]}

@router.get("/fedcm.json")
def fedcm_config(
    request: Request,
    context: FetchContext = Depends(fetch_context),
    issuer: AssertionIssuer = Depends(get_issuer),
):
    issuer.check_context(context)
    return idp_registry.config_for(request.url.hostname, base_url(request))
