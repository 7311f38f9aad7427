"""Unit tests for the Jwker pydantic models."""

import pytest
from pydantic import ValidationError

from jwker_operator.models.jwker import (
    AccessPolicyRule,
    ClientId,
    JwkerSpec,
    JwkerStatus,
)


class TestJwkerSpec:
    def test_parses_camel_case_fields(self):
        spec = JwkerSpec.model_validate(
            {
                "secretName": "tokenx-abc",
                "accessPolicy": {
                    "inbound": {"rules": [{"application": "a"}]},
                    "outbound": {"rules": [{"application": "b", "namespace": "n"}]},
                },
            }
        )
        assert spec.secret_name == "tokenx-abc"
        assert [r.application for r in spec.access_policy.inbound_rules] == ["a"]
        assert spec.access_policy.outbound_rules[0].namespace == "n"

    def test_secret_name_is_required(self):
        with pytest.raises(ValidationError):
            JwkerSpec.model_validate({"accessPolicy": {}})

    def test_blank_secret_name_is_rejected(self):
        with pytest.raises(ValidationError):
            JwkerSpec.model_validate({"secretName": "  "})

    def test_rule_requires_application(self):
        with pytest.raises(ValidationError):
            JwkerSpec.model_validate(
                {"secretName": "s", "accessPolicy": {"inbound": {"rules": [{"namespace": "x"}]}}}
            )

    def test_missing_directions_yield_no_rules(self):
        spec = JwkerSpec.model_validate({"secretName": "s", "accessPolicy": {}})
        assert spec.access_policy.inbound_rules == []
        assert spec.access_policy.outbound_rules == []


class TestAccessPolicyRule:
    """Rule resolution against the requesting application."""

    identity = ClientId(name="app", namespace="team", cluster="prod")

    def test_defaults_to_requesting_namespace_and_cluster(self):
        rule = AccessPolicyRule(application="peer")
        assert rule.resolve(self.identity) == "prod:team:peer"

    def test_namespace_only(self):
        rule = AccessPolicyRule(application="peer", namespace="other")
        assert rule.resolve(self.identity) == "prod:other:peer"

    def test_fully_specified_rule_passes_through(self):
        rule = AccessPolicyRule(application="peer", namespace="other", cluster="dev")
        assert rule.resolve(self.identity) == "dev:other:peer"


class TestClientId:
    def test_canonical_string(self):
        assert str(ClientId(name="n", namespace="ns", cluster="c")) == "c:ns:n"

    def test_from_resource(self):
        body = {"metadata": {"name": "app", "namespace": "team"}}
        assert ClientId.from_resource(body, "prod") == ClientId(
            name="app", namespace="team", cluster="prod"
        )

    def test_is_immutable(self):
        identity = ClientId(name="n", namespace="ns", cluster="c")
        with pytest.raises(ValidationError):
            identity.name = "other"


class TestJwkerStatus:
    def test_serializes_with_aliases(self):
        status = JwkerStatus(
            synchronization_state="RolloutComplete",
            synchronization_hash="abc",
            synchronization_secret_name="s",
            synchronization_time=42,
        )
        assert status.to_dict() == {
            "synchronizationHash": "abc",
            "synchronizationState": "RolloutComplete",
            "synchronizationSecretName": "s",
            "synchronizationTimeNanos": 42,
        }
