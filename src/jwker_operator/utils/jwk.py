"""
Key material utilities.

This module generates RSA signing keys in JSON Web Key form, derives their
public projections and assembles the key sets registered with the broker.
Keys are handled as plain JWK dictionaries; conversion to and from
``cryptography`` key objects goes through PyJWT's RSA algorithm helpers.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm
from jwt.exceptions import InvalidKeyError

from ..constants import KEY_ALGORITHM, KEY_SIZE_BITS, KEY_USE
from ..errors import KeyGenerationError, KeyMaterialError

logger = logging.getLogger(__name__)

PRIVATE_MEMBERS = frozenset({"d", "p", "q", "dp", "dq", "qi", "oth"})
PUBLIC_RSA_MEMBERS = ("n", "e")


@dataclass
class KeySet:
    """Private half written to the active secret, public half registered."""

    private: list[dict[str, Any]] = field(default_factory=list)
    public: list[dict[str, Any]] = field(default_factory=list)

    @property
    def private_key(self) -> dict[str, Any]:
        if len(self.private) != 1:
            raise KeyMaterialError(
                f"key set has {len(self.private)} private keys, expecting exactly 1"
            )
        return self.private[0]

    def public_jwks(self) -> dict[str, Any]:
        return {"keys": list(self.public)}


def generate() -> dict[str, Any]:
    """
    Generate a fresh RSA-2048 signing key.

    Returns:
        Private JWK with a random key ID, use=sig and alg=RS256

    Raises:
        KeyGenerationError: If the key cannot be produced
    """
    try:
        private_key = rsa.generate_private_key(
            public_exponent=65537, key_size=KEY_SIZE_BITS
        )
    except (ValueError, MemoryError) as e:
        raise KeyGenerationError(f"unable to generate RSA key: {e}", cause=e) from e

    jwk = RSAAlgorithm.to_jwk(private_key, as_dict=True)
    jwk["kid"] = str(uuid.uuid4())
    jwk["use"] = KEY_USE
    jwk["alg"] = KEY_ALGORITHM
    logger.debug(f"Generated signing key {jwk['kid']}")
    return jwk


def public_projection(jwk: dict[str, Any]) -> dict[str, Any]:
    """Strip private members; the result is deterministic for a given key."""
    return {k: v for k, v in jwk.items() if k not in PRIVATE_MEMBERS}


def is_private(jwk: dict[str, Any]) -> bool:
    return "d" in jwk


def build_key_set(
    new_key: dict[str, Any], existing_public_keys: list[dict[str, Any]]
) -> KeySet:
    """
    Build the key set for a registration.

    Args:
        new_key: Private key that becomes the active key
        existing_public_keys: Public keys still in use by running workloads

    Returns:
        KeySet whose public half is the kid-deduplicated union of the
        existing keys followed by the new key's public projection
    """
    public: list[dict[str, Any]] = []
    seen: set[str] = set()
    for key in [*existing_public_keys, new_key]:
        projected = public_projection(key)
        kid = projected.get("kid", "")
        if kid in seen:
            continue
        seen.add(kid)
        public.append(projected)
    return KeySet(private=[new_key], public=public)


def parse(raw: str | bytes, source: str | None = None) -> dict[str, Any]:
    """
    Parse a serialized JWK.

    Raises:
        KeyMaterialError: If the data is not an RSA JWK with a key ID
    """
    try:
        jwk = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise KeyMaterialError(f"invalid JWK JSON: {e}", secret_name=source) from e

    if not isinstance(jwk, dict):
        raise KeyMaterialError("JWK must be a JSON object", secret_name=source)
    if jwk.get("kty") != "RSA" or any(m not in jwk for m in PUBLIC_RSA_MEMBERS):
        raise KeyMaterialError("JWK is not an RSA key", secret_name=source)
    if not jwk.get("kid"):
        raise KeyMaterialError("JWK has no key ID", secret_name=source)
    return jwk


def serialize(jwk: dict[str, Any]) -> str:
    return json.dumps(jwk, separators=(",", ":"))


def signing_key(jwk: dict[str, Any]) -> rsa.RSAPrivateKey:
    """Convert a private JWK into a key object usable with ``jwt.encode``."""
    if not is_private(jwk):
        raise KeyMaterialError(f"JWK {jwk.get('kid')} has no private component")
    try:
        key = RSAAlgorithm.from_jwk(json.dumps(jwk))
    except (InvalidKeyError, KeyError, ValueError) as e:
        raise KeyMaterialError(f"unable to load JWK {jwk.get('kid')}: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyMaterialError(f"JWK {jwk.get('kid')} is not an RSA private key")
    return key
