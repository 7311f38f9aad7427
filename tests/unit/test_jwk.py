"""Unit tests for key material utilities."""

import json
from unittest.mock import patch

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from jwker_operator.errors import KeyGenerationError, KeyMaterialError
from jwker_operator.utils import jwk as jwkutil


class TestGenerate:
    def test_fields(self, app_jwk):
        assert app_jwk["kty"] == "RSA"
        assert app_jwk["use"] == "sig"
        assert app_jwk["alg"] == "RS256"
        assert app_jwk["kid"]
        assert jwkutil.is_private(app_jwk)

    def test_key_ids_are_unique(self, app_jwk, controller_jwk):
        assert app_jwk["kid"] != controller_jwk["kid"]

    def test_generation_failure_is_key_generation_error(self):
        with patch.object(
            jwkutil.rsa, "generate_private_key", side_effect=MemoryError("oom")
        ):
            with pytest.raises(KeyGenerationError):
                jwkutil.generate()


class TestPublicProjection:
    def test_strips_private_members(self, app_jwk):
        public = jwkutil.public_projection(app_jwk)
        assert not jwkutil.is_private(public)
        assert set(public).isdisjoint(jwkutil.PRIVATE_MEMBERS)
        assert public["n"] == app_jwk["n"]
        assert public["kid"] == app_jwk["kid"]

    def test_is_deterministic(self, app_jwk):
        assert jwkutil.public_projection(app_jwk) == jwkutil.public_projection(app_jwk)


class TestBuildKeySet:
    def test_new_key_only(self, app_jwk):
        key_set = jwkutil.build_key_set(app_jwk, [])
        assert key_set.private_key == app_jwk
        assert key_set.public_jwks() == {"keys": [jwkutil.public_projection(app_jwk)]}

    def test_existing_keys_come_first(self, app_jwk, controller_jwk):
        existing = jwkutil.public_projection(controller_jwk)
        key_set = jwkutil.build_key_set(app_jwk, [existing])
        kids = [k["kid"] for k in key_set.public]
        assert kids == [controller_jwk["kid"], app_jwk["kid"]]

    def test_deduplicates_by_key_id(self, app_jwk):
        existing = jwkutil.public_projection(app_jwk)
        key_set = jwkutil.build_key_set(app_jwk, [existing, existing])
        assert len(key_set.public) == 1

    def test_public_half_never_contains_private_members(self, app_jwk, controller_jwk):
        key_set = jwkutil.build_key_set(app_jwk, [controller_jwk])
        assert all(not jwkutil.is_private(k) for k in key_set.public)

    def test_private_key_requires_exactly_one(self):
        with pytest.raises(KeyMaterialError):
            jwkutil.KeySet().private_key


class TestParse:
    def test_round_trip(self, app_jwk):
        assert jwkutil.parse(jwkutil.serialize(app_jwk)) == app_jwk

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2]",
            json.dumps({"kty": "EC", "kid": "x", "n": "a", "e": "b"}),
            json.dumps({"kty": "RSA", "kid": "x"}),
            json.dumps({"kty": "RSA", "n": "a", "e": "AQAB"}),
        ],
    )
    def test_rejects_invalid_keys(self, raw):
        with pytest.raises(KeyMaterialError):
            jwkutil.parse(raw, source="some-secret")

    def test_error_names_source(self):
        with pytest.raises(KeyMaterialError, match="some-secret"):
            jwkutil.parse("{", source="some-secret")


class TestSigningKey:
    def test_returns_rsa_private_key(self, app_jwk):
        assert isinstance(jwkutil.signing_key(app_jwk), rsa.RSAPrivateKey)

    def test_public_key_is_rejected(self, app_jwk):
        with pytest.raises(KeyMaterialError):
            jwkutil.signing_key(jwkutil.public_projection(app_jwk))
