"""WebAuthn registration and authentication ceremonies.

Each ceremony is ``options -> verify``. The options call stores one challenge
in the session (replacing anything pending); the verify call takes it out
again before checking the response, so a challenge is usable exactly once and
a stale one never verifies.

Relying party id and expected origin are per request: one process serves
several IDP hostnames and every hostname is its own realm.
"""
import enum
import logging
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import cbor2
from fido2.cose import CoseKey
from fido2.server import Fido2Server
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    Aaguid,
    AttestationConveyancePreference,
    AttestedCredentialData,
    AuthenticationResponse,
    AuthenticatorAttachment,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialParameters,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    RegistrationResponse,
    UserVerificationRequirement,
)

from .config import settings
from .errors import (
    BadRequest,
    Conflict,
    IdpError,
    InvalidCeremonyState,
    StoreConflict,
    UnknownAuthenticator,
    VerificationFailed,
)
from .schemas import Account, AuthenticatorDevice, avatar_url_for
from .sessions import CeremonySession
from .store import CredentialStore

logger = logging.getLogger(__name__)

# ES256, RS256
SUPPORTED_ALGORITHMS = (-7, -257)

# fido2 raises these for malformed payloads as well as failed checks
_VERIFY_ERRORS = (ValueError, KeyError, TypeError)

@dataclass(frozen=True)
class RelyingParty:
    hostname: str
    origin: str

    @property
    def name(self) -> str:
        return f"TestIDP - {self.hostname}"

@dataclass
class CeremonyResult:
    session: CeremonySession
    verified: bool = False
    account: Account | None = None
    error: IdpError | None = None

def _jsonable(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _jsonable(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (bytes, bytearray, memoryview)):
        return websafe_encode(bytes(value))
    if isinstance(value, enum.Enum):
        return value.value
    return value

def _public_key_options(options) -> dict:
    return _jsonable(dict(options))["publicKey"]

def counter_advances(stored: int, reported: int) -> bool:
    """Authenticators that never count report 0 forever; anything else must grow."""
    if stored == 0 and reported == 0:
        return True
    return reported > stored

def _attested_from_device(device: AuthenticatorDevice) -> AttestedCredentialData:
    cose_key = CoseKey.parse(cbor2.loads(device.public_key))
    aaguid = Aaguid.parse(device.aaguid) if device.aaguid else Aaguid.NONE
    return AttestedCredentialData.create(aaguid=aaguid, credential_id=device.credential_id, public_key=cose_key)

class CeremonyEngine:
    def __init__(self, store: CredentialStore, rp: RelyingParty, clock=time.time):
        self.store = store
        self.rp = rp
        self._clock = clock

    def _server(self) -> Fido2Server:
        server = Fido2Server(
            PublicKeyCredentialRpEntity(id=self.rp.hostname, name=self.rp.name),
            attestation=AttestationConveyancePreference.NONE,
            verify_origin=lambda origin: origin == self.rp.origin,
        )
        server.allowed_algorithms = [
            PublicKeyCredentialParameters(type=PublicKeyCredentialType.PUBLIC_KEY, alg=alg)
            for alg in SUPPORTED_ALGORITHMS
        ]
        server.timeout = settings.AUTHENTICATION_TIMEOUT_MS
        return server

    @staticmethod
    def _state(challenge: str) -> dict:
        return {"challenge": challenge, "user_verification": UserVerificationRequirement.REQUIRED}

    def _log_in(self, session: CeremonySession, account: Account) -> CeremonySession:
        return session.log_in(account, self._clock(), settings.LOGIN_SESSION_SECONDS)

    # ---------- Registration ----------
    def registration_options(self, session: CeremonySession, email: str | None, name: str | None):
        if not email or not name:
            raise BadRequest("Email and name are required")
        if self.store.get_user(email, self.rp.hostname):
            raise Conflict()

        account_id = str(uuid.uuid4())
        candidate = Account(
            account_id=account_id,
            email=email,
            name=name,
            hostname=self.rp.hostname,
            avatar_url=avatar_url_for(email),
        )
        user_entity = PublicKeyCredentialUserEntity(id=account_id.encode(), name=email, display_name=name)

        options, state = self._server().register_begin(
            user=user_entity,
            user_verification=UserVerificationRequirement.REQUIRED,
            authenticator_attachment=AuthenticatorAttachment.PLATFORM,
        )
        return _public_key_options(options), session.begin_registration(candidate, state["challenge"])

    def verify_registration(self, session: CeremonySession, response: dict) -> CeremonyResult:
        pending, session = session.take_registration()
        if pending is None:
            return CeremonyResult(session, error=InvalidCeremonyState())

        try:
            registration = RegistrationResponse.from_dict(response)
            auth_data = self._server().register_complete(self._state(pending.challenge), registration)
        except _VERIFY_ERRORS as exc:
            logger.warning("Registration for %s on %s failed: %s", pending.candidate.email, self.rp.hostname, exc)
            return CeremonyResult(session, error=VerificationFailed(str(exc)))

        credential_data = auth_data.credential_data
        if self.store.get_device(credential_data.credential_id) is not None:
            logger.warning("Authenticator already registered, refusing it for %s", pending.candidate.email)
            return CeremonyResult(session, error=VerificationFailed("Authenticator is already registered"))

        transports = (response.get("response") or {}).get("transports") or []
        device = AuthenticatorDevice(
            credential_id=credential_data.credential_id,
            account_id=pending.candidate.account_id,
            public_key=cbor2.dumps(dict(credential_data.public_key)),
            counter=auth_data.counter,
            aaguid=str(credential_data.aaguid),
            transports=list(transports),
        )

        try:
            self.store.add_user(pending.candidate)
        except (Conflict, StoreConflict) as exc:
            return CeremonyResult(session, error=exc)
        try:
            self.store.add_device(pending.candidate.account_id, device)
        except StoreConflict as exc:
            self.store.delete_user(pending.candidate.account_id)
            return CeremonyResult(session, error=exc)

        logger.info("Registered account %s with a new passkey on %s", pending.candidate.account_id, self.rp.hostname)
        return CeremonyResult(self._log_in(session, pending.candidate), verified=True, account=pending.candidate)

    # ---------- Authentication ----------
    def authentication_options(self, session: CeremonySession, email: str | None = None):
        descriptors = None
        if email:
            account = self.store.get_user(email, self.rp.hostname)
            if account:
                descriptors = [
                    PublicKeyCredentialDescriptor(type=PublicKeyCredentialType.PUBLIC_KEY, id=d.credential_id)
                    for d in self.store.get_devices(account.account_id)
                ]

        options, state = self._server().authenticate_begin(
            credentials=descriptors,
            user_verification=UserVerificationRequirement.REQUIRED,
        )
        return _public_key_options(options), session.begin_authentication(state["challenge"], email or None)

    def _resolve(self, email: str | None, credential_id: bytes) -> tuple[Account | None, AuthenticatorDevice | None]:
        if email:
            account = self.store.get_user(email, self.rp.hostname)
            if account is None:
                return None, None
            device = next((d for d in self.store.get_devices(account.account_id) if d.credential_id == credential_id), None)
            return account, device

        device = self.store.get_device(credential_id)
        if device is None:
            return None, None
        account = self.store.get_user_by_account_id(device.account_id)
        if account is None or account.hostname != self.rp.hostname:
            return None, None
        return account, device

    def verify_authentication(self, session: CeremonySession, response: dict) -> CeremonyResult:
        pending, session = session.take_authentication()
        if pending is None:
            return CeremonyResult(session, error=InvalidCeremonyState())

        try:
            credential_id = websafe_decode(response.get("rawId") or response["id"])
        except _VERIFY_ERRORS:
            return CeremonyResult(session, error=BadRequest("AuthenticationResponse missing"))

        account, device = self._resolve(pending.email, credential_id)
        if account is None or device is None:
            logger.warning("No authenticator %s on %s (hint: %s)", websafe_encode(credential_id), self.rp.hostname, pending.email)
            return CeremonyResult(session, error=UnknownAuthenticator())

        try:
            assertion = AuthenticationResponse.from_dict(response)
            self._server().authenticate_complete(self._state(pending.challenge), [_attested_from_device(device)], assertion)
        except _VERIFY_ERRORS as exc:
            logger.warning("Authentication of %s on %s failed: %s", account.account_id, self.rp.hostname, exc)
            return CeremonyResult(session, error=VerificationFailed("Authentication failed"))

        new_counter = assertion.response.authenticator_data.counter
        if not counter_advances(device.counter, new_counter):
            logger.warning(
                "Signature counter of %s went from %d to %d, possible cloned authenticator",
                websafe_encode(device.credential_id),
                device.counter,
                new_counter,
            )
            return CeremonyResult(session, error=VerificationFailed("Authentication failed"))

        try:
            self.store.update_counter(device.credential_id, device.counter, new_counter)
        except StoreConflict as exc:
            return CeremonyResult(session, error=exc)

        logger.info("Account %s signed in with a passkey on %s", account.account_id, self.rp.hostname)
        return CeremonyResult(self._log_in(session, account), verified=True, account=account)
