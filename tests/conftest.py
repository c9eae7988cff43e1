import json
import os
import tempfile
from pathlib import Path

import fakeredis
import pytest

from hosts import IDP_HOST, IDP_ORIGIN, OTHER_IDP_HOST, RP_CLIENT_ID, RP_ORIGIN

_TMP = Path(tempfile.mkdtemp(prefix="fedcm-idp-tests-"))


def _idp_document() -> dict:
    return {
        "accounts_endpoint": "{baseUrl}/fedcm/accounts_endpoint",
        "client_metadata_endpoint": "{baseUrl}/fedcm/client_metadata_endpoint",
        "id_assertion_endpoint": "{baseUrl}/fedcm/token_endpoint",
        "revocation_endpoint": "{baseUrl}/fedcm/revocation_endpoint",
        "login_url": "{baseUrl}/",
        "branding": {
            "background_color": "green",
            "color": "#FFEEAA",
            "icons": [{"url": "{baseUrl}/images/logo.png", "size": 32}],
        },
    }


(_TMP / "idp_metadata.json").write_text(json.dumps({IDP_HOST: _idp_document(), OTHER_IDP_HOST: _idp_document()}))
(_TMP / "client_metadata.json").write_text(
    json.dumps({RP_CLIENT_ID: {"name": "RP One", "origin": RP_ORIGIN}, "rp2": {"name": "RP Two", "origin": "https://rp2.example"}})
)

# Settings are read when idp.config is first imported
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'idp.db'}"
os.environ["JWT_SECRET"] = "test-signing-key"
os.environ["IDP_METADATA_FILE"] = str(_TMP / "idp_metadata.json")
os.environ["CLIENT_METADATA_FILE"] = str(_TMP / "client_metadata.json")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from idp import redis_store  # noqa: E402
from idp.db import Base, engine, init_db  # noqa: E402
from idp.store import SqlCredentialStore  # noqa: E402
from idp.webauthn import CeremonyEngine, RelyingParty  # noqa: E402

from software_authenticator import SoftwareAuthenticator  # noqa: E402


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    server = fakeredis.FakeRedis()
    monkeypatch.setattr(redis_store, "r", server)
    return server


@pytest.fixture(autouse=True)
def database():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store():
    return SqlCredentialStore()


@pytest.fixture
def rp():
    return RelyingParty(hostname=IDP_HOST, origin=IDP_ORIGIN)


@pytest.fixture
def ceremonies(store, rp):
    return CeremonyEngine(store, rp)


@pytest.fixture
def authenticator():
    return SoftwareAuthenticator()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from idp.main import app

    with TestClient(app, base_url=IDP_ORIGIN) as test_client:
        yield test_client
