"""Signed tokens handed to relying parties.

Each token kind has a fixed claim set. Optional identity claims are left out
of the payload entirely when unset rather than sent as null.
"""
import dataclasses
import time
from dataclasses import dataclass

import bcrypt
import jwt

from .config import settings

ALGO = "HS256"

@dataclass(frozen=True)
class BasicAssertion:
    """FedCM assertion for a request without scope."""

    sub: str
    nonce: str | None
    iat: int
    exp: int
    email: str | None = None
    name: str | None = None
    picture: str | None = None

@dataclass(frozen=True)
class ScopedIdToken:
    """Identity claims limited to what the requested scope names."""

    sub: str
    nonce: str | None
    iat: int
    exp: int
    email: str | None = None
    name: str | None = None
    picture: str | None = None

@dataclass(frozen=True)
class AccessToken:
    sub: str
    aud: str
    scope: str
    iat: int
    exp: int

Token = BasicAssertion | ScopedIdToken | AccessToken

def token_window(ttl_seconds: int, now: float | None = None) -> tuple[int, int]:
    iat = int(time.time() if now is None else now)
    return iat, iat + ttl_seconds

def mint_token(token: Token, secret: str | None = None) -> str:
    payload = {k: v for k, v in dataclasses.asdict(token).items() if v is not None}
    return jwt.encode(payload, secret or settings.JWT_SECRET, algorithm=ALGO)

def hash_secret(secret: str) -> str:
    return bcrypt.hashpw(secret.encode(), bcrypt.gensalt()).decode()

def check_secret(secret: str, secret_hash: str | None) -> bool:
    if not secret_hash:
        return False
    return bcrypt.checkpw(secret.encode(), secret_hash.encode())
