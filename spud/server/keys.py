"""
Signing keys - Key set snapshot and signature verification

The key set published at /.well-known/jwks.json is held as an immutable
snapshot; a refresh builds a new snapshot and replaces the old one whole.

Signature checks go through a KeyVerifier so the validator can be driven
with substitute key material in tests. The default verifier uses PyJWT's
algorithm implementations (backed by ``cryptography``) for:
- RS256: RSASSA-PKCS1-v1_5 with SHA-256
- ES256: ECDSA on P-256 with SHA-256 (raw r||s signatures)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

from jwt.algorithms import ECAlgorithm, RSAAlgorithm
from jwt.exceptions import InvalidKeyError

from ..core.errors import InvalidSignature, UnsupportedAlgorithm

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("RS256", "ES256")

# Key type each algorithm requires
_KEY_TYPES = {"RS256": "RSA", "ES256": "EC"}


def require_supported(alg: str) -> None:
    if alg not in SUPPORTED_ALGORITHMS:
        raise UnsupportedAlgorithm(f"Unsupported JWT algorithm: {alg}")


@dataclass(frozen=True)
class SigningKeySet:
    """Snapshot of the published keys, indexed by kid."""

    keys: Mapping[str, Mapping[str, Any]]
    fetched_at: float
    ttl: float
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_jwks(cls, jwks: Mapping[str, Any], fetched_at: float, ttl: float) -> "SigningKeySet":
        keys = {}
        for jwk in jwks.get("keys", []):
            kid = jwk.get("kid")
            if kid:
                keys[kid] = dict(jwk)
        return cls(keys=keys, fetched_at=fetched_at, ttl=ttl, raw=dict(jwks))

    def is_fresh(self, now: float) -> bool:
        return now - self.fetched_at < self.ttl

    def get(self, kid: str) -> Optional[Mapping[str, Any]]:
        return self.keys.get(kid)

    def __contains__(self, kid: str) -> bool:
        return kid in self.keys

    def __len__(self) -> int:
        return len(self.keys)


class KeyVerifier(Protocol):
    """Verification capability used by TrustValidator."""

    def load_key(self, jwk: Mapping[str, Any], alg: str) -> Any:
        """Turn a JWK into a key object usable with ``alg``."""
        ...

    def verify(self, alg: str, key: Any, signing_input: bytes, signature: bytes) -> bool:
        """True if ``signature`` is valid for ``signing_input`` under ``key``."""
        ...


class PyJWTVerifier:
    """KeyVerifier backed by PyJWT's RSA and EC algorithms."""

    def __init__(self):
        self._algorithms = {
            "RS256": RSAAlgorithm(RSAAlgorithm.SHA256),
            "ES256": ECAlgorithm(ECAlgorithm.SHA256),
        }

    def load_key(self, jwk: Mapping[str, Any], alg: str) -> Any:
        require_supported(alg)
        kid = jwk.get("kid")

        if jwk.get("kty") != _KEY_TYPES[alg]:
            raise InvalidSignature(f"Key {kid} (kty={jwk.get('kty')}) cannot verify {alg}")
        if jwk.get("alg") and jwk["alg"] != alg:
            raise InvalidSignature(f"Key {kid} is published for {jwk['alg']}, token uses {alg}")
        if alg == "ES256" and jwk.get("crv") != "P-256":
            raise InvalidSignature(f"Key {kid} is not a P-256 key")

        try:
            return self._algorithms[alg].from_jwk(dict(jwk))
        except (InvalidKeyError, ValueError, KeyError, TypeError) as e:
            raise InvalidSignature(f"Signing key {kid} is unusable: {e}") from e

    def verify(self, alg: str, key: Any, signing_input: bytes, signature: bytes) -> bool:
        require_supported(alg)
        return bool(self._algorithms[alg].verify(signing_input, key, signature))
