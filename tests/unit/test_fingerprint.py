"""
Unit tests for the synchronization fingerprint.

The expected literal was produced by earlier controller releases; existing
resources carry it in their status, so it must never change for the same
spec.
"""

import pytest

from jwker_operator.constants import STATE_FAILED_SYNCHRONIZATION, STATE_ROLLOUT_COMPLETE
from jwker_operator.models.jwker import JwkerSpec
from jwker_operator.utils.fingerprint import (
    canonical_json,
    fingerprint,
    fnv1_64,
    is_synchronized,
)

RULE = {"application": "app1", "namespace": "ns1", "cluster": "firstcluster"}


@pytest.fixture
def reference_spec() -> JwkerSpec:
    return JwkerSpec.model_validate(
        {
            "accessPolicy": {
                "inbound": {"rules": [RULE]},
                "outbound": {"rules": [RULE]},
            },
            "secretName": "verysecret",
        }
    )


class TestFnv:
    """FNV-1 reference values."""

    def test_empty_input_is_offset_basis(self):
        assert fnv1_64(b"") == 0xCBF29CE484222325

    def test_single_byte(self):
        # FNV-1 (not FNV-1a) of "a"
        assert fnv1_64(b"a") == 0xAF63BD4C8601B7BE


class TestCanonicalForm:
    """Serialization feeding the fingerprint."""

    def test_compact_json_in_declared_key_order(self, reference_spec):
        assert canonical_json(reference_spec.canonical()) == (
            b'{"accessPolicy":{"inbound":{"rules":[{"application":"app1",'
            b'"namespace":"ns1","cluster":"firstcluster"}]},"outbound":'
            b'{"rules":[{"application":"app1","namespace":"ns1",'
            b'"cluster":"firstcluster"}]}},"secretName":"verysecret"}'
        )

    def test_empty_rule_fields_are_omitted(self):
        spec = JwkerSpec.model_validate(
            {"secretName": "s", "accessPolicy": {"inbound": {"rules": [{"application": "a"}]}}}
        )
        assert spec.canonical() == {
            "accessPolicy": {"inbound": {"rules": [{"application": "a"}]}},
            "secretName": "s",
        }

    def test_missing_access_policy_is_null(self):
        spec = JwkerSpec.model_validate({"secretName": "s"})
        assert canonical_json(spec.canonical()) == b'{"accessPolicy":null,"secretName":"s"}'


class TestFingerprint:
    """Fingerprint values and change detection."""

    def test_matches_previously_recorded_value(self, reference_spec):
        assert fingerprint(reference_spec) == "b6b03694476d8028"

    def test_is_deterministic(self, reference_spec):
        copy = JwkerSpec.model_validate(reference_spec.model_dump(by_alias=True))
        assert fingerprint(copy) == fingerprint(reference_spec)

    def test_secret_name_change_changes_fingerprint(self, reference_spec):
        renamed = reference_spec.model_copy(update={"secret_name": "othersecret"})
        assert fingerprint(renamed) != fingerprint(reference_spec)

    def test_rule_change_changes_fingerprint(self):
        first = JwkerSpec.model_validate(
            {"secretName": "s", "accessPolicy": {"inbound": {"rules": [{"application": "a"}]}}}
        )
        second = JwkerSpec.model_validate(
            {"secretName": "s", "accessPolicy": {"inbound": {"rules": [{"application": "b"}]}}}
        )
        assert fingerprint(first) != fingerprint(second)

    def test_lowercase_hex(self, reference_spec):
        value = fingerprint(reference_spec)
        assert value == value.lower()
        int(value, 16)


class TestIsSynchronized:
    """The reconcile gate."""

    def test_true_for_matching_hash_and_rollout_complete(self, reference_spec):
        status = {
            "synchronizationState": STATE_ROLLOUT_COMPLETE,
            "synchronizationHash": fingerprint(reference_spec),
        }
        assert is_synchronized(reference_spec, status)

    def test_false_for_failed_state(self, reference_spec):
        status = {
            "synchronizationState": STATE_FAILED_SYNCHRONIZATION,
            "synchronizationHash": fingerprint(reference_spec),
        }
        assert not is_synchronized(reference_spec, status)

    def test_false_for_stale_hash(self, reference_spec):
        status = {
            "synchronizationState": STATE_ROLLOUT_COMPLETE,
            "synchronizationHash": "deadbeef",
        }
        assert not is_synchronized(reference_spec, status)

    def test_false_for_empty_status(self, reference_spec):
        assert not is_synchronized(reference_spec, {})
