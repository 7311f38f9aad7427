"""Unit tests for the controller key generation command."""

import json
from unittest.mock import patch

import pytest

from jwker_operator import generate_jwk
from jwker_operator.errors import KeyGenerationError
from jwker_operator.utils import jwk as jwkutil


class TestGenerateJwk:
    def test_prints_private_key_to_stdout(self, capsys):
        generate_jwk.main()

        out, err = capsys.readouterr()
        key = json.loads(out)
        assert jwkutil.is_private(key)
        assert key["alg"] == "RS256"
        assert jwkutil.parse(out) == key
        assert "JWKER_CLIENT_JWK_FILE" in err

    def test_generation_failure_exits_nonzero(self, capsys):
        with (
            patch.object(
                generate_jwk.jwkutil,
                "generate",
                side_effect=KeyGenerationError("no entropy"),
            ),
            pytest.raises(SystemExit) as exc_info,
        ):
            generate_jwk.main()

        assert exc_info.value.code == 1
        assert "no entropy" in capsys.readouterr().err
