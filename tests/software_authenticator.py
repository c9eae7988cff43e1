"""
Software WebAuthn authenticator for the ceremony tests.

Produces registration and assertion responses in the browser's JSON shape
(base64url fields) for ECDSA P-256 credentials with "none" attestation, so the
responses go through the same fido2 verification as a real platform
authenticator. Flags and counters can be bent to exercise the failure paths.
"""

import hashlib
import json
import os
import struct
from base64 import urlsafe_b64decode, urlsafe_b64encode
from dataclasses import dataclass, field

import cbor2
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.hashes import SHA256

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40


def b64url_encode(data: bytes) -> str:
    return urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    return urlsafe_b64decode(s + "=" * (-len(s) % 4))


def _encode_cose_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    numbers = public_key.public_numbers()
    return cbor2.dumps(
        {
            1: 2,  # kty: EC2
            3: -7,  # alg: ES256
            -1: 1,  # crv: P-256
            -2: numbers.x.to_bytes(32, "big"),
            -3: numbers.y.to_bytes(32, "big"),
        }
    )


@dataclass
class StoredCredential:
    credential_id: bytes
    private_key: ec.EllipticCurvePrivateKey
    rp_id: str
    user_handle: bytes
    sign_count: int = 0


@dataclass
class SoftwareAuthenticator:
    credentials: dict[bytes, StoredCredential] = field(default_factory=dict)
    aaguid: bytes = field(default=b"\x00" * 16)

    def make_credential(self, options: dict, origin: str, user_verified: bool = True, challenge: str | None = None) -> dict:
        """navigator.credentials.create() for the given creation options."""
        rp_id = options["rp"]["id"]
        private_key = ec.generate_private_key(ec.SECP256R1())
        credential_id = os.urandom(32)
        self.credentials[credential_id] = StoredCredential(
            credential_id=credential_id,
            private_key=private_key,
            rp_id=rp_id,
            user_handle=b64url_decode(options["user"]["id"]),
        )

        client_data = self._client_data("webauthn.create", challenge or options["challenge"], origin)
        flags = FLAG_UP | FLAG_AT | (FLAG_UV if user_verified else 0)
        auth_data = (
            hashlib.sha256(rp_id.encode("utf-8")).digest()
            + struct.pack(">BI", flags, 0)
            + self.aaguid
            + struct.pack(">H", len(credential_id))
            + credential_id
            + _encode_cose_public_key(private_key.public_key())
        )
        attestation_object = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})

        return {
            "id": b64url_encode(credential_id),
            "rawId": b64url_encode(credential_id),
            "type": "public-key",
            "response": {
                "clientDataJSON": b64url_encode(client_data),
                "attestationObject": b64url_encode(attestation_object),
                "transports": ["internal"],
            },
            "authenticatorAttachment": "platform",
            "clientExtensionResults": {},
        }

    def get_assertion(
        self,
        options: dict,
        origin: str,
        credential_id: bytes | None = None,
        user_verified: bool = True,
        sign_count: int | None = None,
    ) -> dict:
        """navigator.credentials.get(); ``sign_count`` forces the reported counter."""
        if credential_id is None:
            for allowed in options.get("allowCredentials", []):
                candidate = b64url_decode(allowed["id"])
                if candidate in self.credentials:
                    credential_id = candidate
                    break
        if credential_id is None or credential_id not in self.credentials:
            raise ValueError("No matching credential found for assertion")

        stored = self.credentials[credential_id]
        stored.sign_count = stored.sign_count + 1 if sign_count is None else sign_count

        client_data = self._client_data("webauthn.get", options["challenge"], origin)
        flags = FLAG_UP | (FLAG_UV if user_verified else 0)
        auth_data = hashlib.sha256(stored.rp_id.encode("utf-8")).digest() + struct.pack(">BI", flags, stored.sign_count)
        signature = stored.private_key.sign(auth_data + hashlib.sha256(client_data).digest(), ec.ECDSA(SHA256()))

        return {
            "id": b64url_encode(credential_id),
            "rawId": b64url_encode(credential_id),
            "type": "public-key",
            "response": {
                "clientDataJSON": b64url_encode(client_data),
                "authenticatorData": b64url_encode(auth_data),
                "signature": b64url_encode(signature),
                "userHandle": b64url_encode(stored.user_handle),
            },
            "authenticatorAttachment": "platform",
            "clientExtensionResults": {},
        }

    @staticmethod
    def _client_data(kind: str, challenge: str, origin: str) -> bytes:
        return json.dumps(
            {"type": kind, "challenge": challenge, "origin": origin, "crossOrigin": False},
            separators=(",", ":"),
        ).encode("utf-8")
