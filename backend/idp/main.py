import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .clients import client_registry, idp_registry
from .config import settings
from .db import db_ping, init_db
from .errors import IdpError, UnknownHostname
from .redis_store import destroy_session, load_session, new_session_id, save_session
from .routes import auth, core, fedcm
from .sessions import CeremonySession

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="FedCM IDP", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=client_registry.origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Hostname-independent probes
UNSCOPED_PATHS = {"/healthz", "/api/healthz"}

@app.middleware("http")
async def idp_session(request: Request, call_next):
    hostname = request.url.hostname
    if request.url.path not in UNSCOPED_PATHS and not idp_registry.is_supported(hostname):
        logger.info("No metadata found for hostname %s", hostname)
        return JSONResponse({"error": UnknownHostname.message}, status_code=UnknownHostname.status_code)

    session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
    session = load_session(session_id)
    if session is None:
        session_id, session = None, CeremonySession()

    current = session.expire_if_needed(time.time())
    if current is not session:
        logger.info("Login session expired for %s", session.logged_in_user.account_id)
    request.state.session = current
    request.state.session_destroyed = False

    response = await call_next(request)

    if request.state.session_destroyed:
        if session_id:
            destroy_session(session_id)
        response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    elif session_id or request.state.session != CeremonySession():
        # sessions start on the first request that leaves something in them
        session_id = session_id or new_session_id()
        save_session(session_id, request.state.session)
        response.set_cookie(
            settings.SESSION_COOKIE_NAME,
            session_id,
            max_age=settings.SESSION_TTL_SECONDS,
            httponly=True,
            secure=settings.SESSION_COOKIE_SECURE,
            samesite="none" if settings.SESSION_COOKIE_SECURE else "lax",
        )

    # Private network access for RPs reaching a locally hosted IDP
    if request.headers.get("access-control-request-private-network"):
        response.headers["access-control-allow-private-network"] = "true"
    return response

@app.exception_handler(IdpError)
async def idp_error_handler(request: Request, exc: IdpError):
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)

@app.on_event("startup")
def on_startup():
    init_db()
    logger.info("Serving IDP hostnames: %s", ", ".join(idp_registry.hostnames()))
    logger.info("Allowed client origins: %s", ", ".join(client_registry.origins()))

@app.get("/healthz")
def healthz():
    return {
        "status": "ok",
        "db": "up" if db_ping() else "down",
    }

# Gateway proxy compat: /api/healthz -> backend /healthz
@app.get("/api/healthz")
def healthz_alias():
    return healthz()

app.include_router(core.router)
app.include_router(auth.router)
app.include_router(fedcm.router)

@app.get("/")
def root():
    return {"service": "fedcm-idp", "version": app.version}
