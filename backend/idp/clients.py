"""Static metadata: the IDP config document per hostname and the registered RPs."""
import json
from dataclasses import dataclass
from pathlib import Path

from .config import settings

@dataclass(frozen=True)
class ClientRegistration:
    client_id: str
    name: str
    origin: str

class ClientRegistry:
    def __init__(self, clients: dict[str, ClientRegistration]):
        self._clients = dict(clients)

    @classmethod
    def from_file(cls, path: Path) -> "ClientRegistry":
        raw = json.loads(Path(path).read_text())
        return cls({cid: ClientRegistration(cid, entry.get("name", cid), entry["origin"]) for cid, entry in raw.items()})

    def get(self, client_id: str | None) -> ClientRegistration | None:
        if not client_id:
            return None
        return self._clients.get(client_id)

    def origins(self) -> list[str]:
        return sorted({c.origin for c in self._clients.values()})

class IdpRegistry:
    """FedCM config documents keyed by hostname; ``{baseUrl}`` is filled per request."""

    def __init__(self, documents: dict[str, dict]):
        self._documents = dict(documents)

    @classmethod
    def from_file(cls, path: Path) -> "IdpRegistry":
        return cls(json.loads(Path(path).read_text()))

    def is_supported(self, hostname: str | None) -> bool:
        return hostname in self._documents

    def hostnames(self) -> list[str]:
        return sorted(self._documents)

    def config_for(self, hostname: str, base_url: str) -> dict | None:
        document = self._documents.get(hostname)
        if document is None:
            return None
        return json.loads(json.dumps(document).replace("{baseUrl}", base_url))

client_registry = ClientRegistry.from_file(settings.CLIENT_METADATA_FILE)
idp_registry = IdpRegistry.from_file(settings.IDP_METADATA_FILE)
