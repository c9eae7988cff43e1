from pathlib import Path

from pydantic_settings import BaseSettings

DATA_DIR = Path(__file__).resolve().parent / "data"

class Settings(BaseSettings):
    DATABASE_URL: str
    REDIS_URL: str = "redis://localhost:6379/0"
    JWT_SECRET: str
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # Per-hostname FedCM config documents and the registered relying parties
    IDP_METADATA_FILE: Path = DATA_DIR / "idp_metadata.json"
    CLIENT_METADATA_FILE: Path = DATA_DIR / "client_metadata.json"

    SESSION_COOKIE_NAME: str = "fedcm-idp-session"
    SESSION_COOKIE_SECURE: bool = True
    SESSION_TTL_SECONDS: int = 24 * 60 * 60
    LOGIN_SESSION_SECONDS: int = 5 * 60

    ASSERTION_TTL_SECONDS: int = 24 * 60 * 60
    ACCESS_TOKEN_TTL_SECONDS: int = 60 * 60
    # Without a requested scope, embed email/name/picture in every assertion
    UNSCOPED_DISCLOSES_ALL_CLAIMS: bool = True

    AUTHENTICATION_TIMEOUT_MS: int = 60000

settings = Settings()
