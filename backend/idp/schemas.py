"""Domain values exchanged between the store, the session and the engines.

These are detached snapshots: a ``loggedInUser`` kept in a session is a copy of
the account at login time, not a live row.
"""
import hashlib
from urllib.parse import quote

from pydantic import BaseModel, Field, field_serializer

def avatar_url_for(email: str) -> str:
    seed = hashlib.sha256(email.strip().lower().encode()).hexdigest()
    return f"https://api.dicebear.com/7.x/bottts/png?seed={quote(seed)}"

class Account(BaseModel):
    account_id: str
    email: str
    name: str
    hostname: str
    avatar_url: str
    secret_hash: str | None = None
    approved_clients: set[str] = Field(default_factory=set)

    @field_serializer("approved_clients")
    def _sorted_clients(self, value: set[str]) -> list[str]:
        return sorted(value)

    def public_view(self) -> dict:
        """Entry of the FedCM accounts list."""
        return {
            "id": self.account_id,
            "name": self.name,
            "given_name": self.name,
            "email": self.email,
            "picture": self.avatar_url,
            "approved_clients": sorted(self.approved_clients),
        }

class AuthenticatorDevice(BaseModel):
    credential_id: bytes
    account_id: str
    public_key: bytes
    counter: int = 0
    aaguid: str | None = None
    transports: list[str] = Field(default_factory=list)
