"""Authorization layer: Ed25519 proofs over canonical operation payloads.

An identity is the hex-encoded Ed25519 verify key. A proof binds the signer,
the operation name, its parameters and a nonce; nonces must strictly increase
per identity so a captured proof cannot be replayed.
"""
from __future__ import annotations

import itertools
import json
import logging
import time
from enum import Enum
from typing import Any

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from ..exceptions import AuthorizationError
from ..interfaces.store import LeasedStore
from ..models import AuthProof, NativeAsset, SymbolAsset

logger = logging.getLogger(__name__)

AUTH_DOMAIN = "position-guard/v1"


def _encode(value: Any) -> Any:
    if isinstance(value, (NativeAsset, SymbolAsset)):
        return value.key
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Cannot encode {type(value).__name__} in an auth payload")


def auth_message(signer: str, operation: str, params: dict[str, Any], nonce: int) -> bytes:
    """Canonical bytes signed for one operation call."""
    payload = {
        "domain": AUTH_DOMAIN,
        "operation": operation,
        "params": params,
        "nonce": nonce,
        "signer": signer,
    }
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), default=_encode
    ).encode()


class Signer:
    """Holds a signing key and produces proofs for operation calls."""

    def __init__(self, signing_key: SigningKey) -> None:
        self._key = signing_key
        self._nonces = itertools.count(time.time_ns())

    @classmethod
    def generate(cls) -> Signer:
        return cls(SigningKey.generate())

    @classmethod
    def from_seed_hex(cls, seed_hex: str) -> Signer:
        return cls(SigningKey(seed_hex.strip(), encoder=HexEncoder))

    @property
    def identity(self) -> str:
        return self._key.verify_key.encode(encoder=HexEncoder).decode()

    @property
    def seed_hex(self) -> str:
        return self._key.encode(encoder=HexEncoder).decode()

    def authorize(
        self,
        operation: str,
        params: dict[str, Any] | None = None,
        nonce: int | None = None,
    ) -> AuthProof:
        if nonce is None:
            nonce = next(self._nonces)
        message = auth_message(self.identity, operation, params or {}, nonce)
        signed = self._key.sign(message)
        return AuthProof(
            signer=self.identity, nonce=nonce, signature=signed.signature.hex()
        )


class Authorizer:
    """Verifies proofs and records accepted nonces in the caller's transaction."""

    def __init__(self, store: LeasedStore, lease_ttl: int) -> None:
        self._store = store
        self._lease_ttl = lease_ttl

    def require_auth(
        self,
        identity: str,
        proof: AuthProof | None,
        operation: str,
        params: dict[str, Any],
    ) -> None:
        if proof is None:
            raise AuthorizationError(f"Missing authorization for {operation}")
        if proof.signer != identity:
            raise AuthorizationError(
                f"{operation} must be authorized by {identity}, not {proof.signer}"
            )

        message = auth_message(identity, operation, params, proof.nonce)
        try:
            verify_key = VerifyKey(identity.encode(), encoder=HexEncoder)
            verify_key.verify(message, bytes.fromhex(proof.signature))
        except BadSignatureError:
            raise AuthorizationError(f"Invalid signature for {operation}") from None
        except (TypeError, ValueError) as e:
            raise AuthorizationError(f"Malformed authorization for {operation}: {e}") from None

        nonce_key = f"Nonce:{identity}"
        last_nonce = int(self._store.get(nonce_key) or 0)
        if proof.nonce <= last_nonce:
            raise AuthorizationError(f"Replayed nonce {proof.nonce} for {operation}")
        self._store.set(nonce_key, proof.nonce)
        self._store.extend_ttl(nonce_key, self._lease_ttl)
        logger.debug("Authorized %s for %s", operation, identity)
