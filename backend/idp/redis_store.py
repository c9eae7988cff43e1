import secrets

from redis import Redis

from .config import settings
from .sessions import CeremonySession

r = Redis.from_url(settings.REDIS_URL)

def _key(prefix: str, session_id: str) -> str:
    return f"{prefix}:{session_id}"

def new_session_id() -> str:
    return secrets.token_urlsafe(32)

def load_session(session_id: str | None) -> CeremonySession | None:
    if not session_id:
        return None
    value = r.get(_key("sess", session_id))
    if value is None:
        return None
    return CeremonySession.model_validate_json(value)

def save_session(session_id: str, session: CeremonySession, ttl_seconds: int = settings.SESSION_TTL_SECONDS):
    r.setex(_key("sess", session_id), ttl_seconds, session.model_dump_json())

def destroy_session(session_id: str):
    r.delete(_key("sess", session_id))
