"""
Unit tests for the token broker client.

Broker HTTP traffic goes through httpx.MockTransport; assertions are decoded
with the controller's public key to check what the broker would verify.
"""

import json

import httpx
import jwt
import pytest
from jwt.algorithms import RSAAlgorithm

from jwker_operator.errors import BrokerError, ValidationError
from jwker_operator.models.jwker import AccessPolicy, ClientId
from jwker_operator.observability.metrics import PrometheusMetricsSink
from jwker_operator.utils import jwk as jwkutil
from jwker_operator.utils.broker import (
    BrokerClient,
    BrokerInstance,
    build_software_statement,
    client_assertion,
    make_client_registration,
)

from .fakes import BROKER_URL, CONTROLLER_CLIENT_ID, FakeBroker

IDENTITY = ClientId(name="myapp", namespace="team-a", cluster="prod")


def public_key(jwk: dict):
    return RSAAlgorithm.from_jwk(json.dumps(jwkutil.public_projection(jwk)))


def decode(token: str, jwk: dict, audience: str | None = None) -> dict:
    options = {} if audience else {"verify_aud": False}
    return jwt.decode(
        token, public_key(jwk), algorithms=["RS256"], audience=audience, options=options
    )


def policy(inbound=None, outbound=None) -> AccessPolicy:
    return AccessPolicy.model_validate(
        {"inbound": {"rules": inbound or []}, "outbound": {"rules": outbound or []}}
    )


class TestBrokerInstance:
    def test_metadata_derived_from_base_url(self, broker_instance):
        assert broker_instance.metadata.issuer == BROKER_URL
        assert broker_instance.metadata.jwks_uri == f"{BROKER_URL}/jwks"
        assert broker_instance.metadata.token_endpoint == f"{BROKER_URL}/token"
        assert (
            broker_instance.well_known_url
            == f"{BROKER_URL}/.well-known/oauth-authorization-server"
        )

    def test_registration_endpoint(self, broker_instance):
        assert broker_instance.registration_endpoint == f"{BROKER_URL}/registration/client"

    def test_client_endpoint_escapes_client_name(self, broker_instance):
        assert broker_instance.client_endpoint("prod:team a:app") == (
            f"{BROKER_URL}/registration/client/prod%3Ateam+a%3Aapp"
        )

    def test_repr_hides_key(self, broker_instance):
        assert "'d'" not in repr(broker_instance)


class TestClientAssertion:
    def test_claims(self, controller_jwk):
        token = client_assertion(
            controller_jwk, CONTROLLER_CLIENT_ID, "https://aud", lifetime=60, now=1_000
        )
        claims = jwt.decode(
            token,
            public_key(controller_jwk),
            algorithms=["RS256"],
            options={"verify_exp": False, "verify_nbf": False, "verify_iat": False},
            audience="https://aud",
        )
        assert claims["iss"] == CONTROLLER_CLIENT_ID
        assert claims["sub"] == CONTROLLER_CLIENT_ID
        assert claims["aud"] == "https://aud"
        assert claims["iat"] == 1_000
        assert claims["nbf"] == 1_000
        assert claims["exp"] == 1_060
        assert claims["jti"]

    def test_header_carries_key_id(self, controller_jwk):
        token = client_assertion(controller_jwk, CONTROLLER_CLIENT_ID, "aud")
        header = jwt.get_unverified_header(token)
        assert header["kid"] == controller_jwk["kid"]
        assert header["alg"] == "RS256"

    def test_each_assertion_is_unique(self, controller_jwk):
        first = client_assertion(controller_jwk, CONTROLLER_CLIENT_ID, "aud", now=1)
        second = client_assertion(controller_jwk, CONTROLLER_CLIENT_ID, "aud", now=1)
        assert first != second


class TestSoftwareStatement:
    def test_resolves_rules_against_identity(self):
        statement = build_software_statement(
            IDENTITY,
            policy(
                inbound=[
                    {"application": "a"},
                    {"application": "b", "namespace": "other"},
                ],
                outbound=[{"application": "c", "namespace": "x", "cluster": "dev"}],
            ),
        )
        assert statement == {
            "appId": "prod:team-a:myapp",
            "accessPolicyInbound": ["prod:team-a:a", "prod:other:b"],
            "accessPolicyOutbound": ["dev:x:c"],
        }

    def test_empty_policy_is_allowed(self):
        statement = build_software_statement(IDENTITY, policy())
        assert statement["accessPolicyInbound"] == []
        assert statement["accessPolicyOutbound"] == []

    def test_absent_policy_is_rejected(self):
        with pytest.raises(ValidationError):
            build_software_statement(IDENTITY, None)

    def test_registration_statement_is_signed_by_controller(self, controller_jwk, app_jwk):
        jwks = {"keys": [jwkutil.public_projection(app_jwk)]}
        registration = make_client_registration(
            controller_jwk, jwks, IDENTITY, policy(inbound=[{"application": "a"}])
        )
        assert registration.client_name == "prod:team-a:myapp"
        assert registration.jwks == jwks
        claims = decode(registration.software_statement, controller_jwk)
        assert claims["appId"] == "prod:team-a:myapp"
        assert claims["accessPolicyInbound"] == ["prod:team-a:a"]


@pytest.fixture
def registration(controller_jwk, app_jwk):
    return make_client_registration(
        controller_jwk,
        {"keys": [jwkutil.public_projection(app_jwk)]},
        IDENTITY,
        policy(),
    )


class TestRegister:
    @pytest.mark.asyncio
    async def test_posts_registration_with_bearer_assertion(
        self, broker_client, fake_broker, registration, controller_jwk
    ):
        await broker_client.register(registration)

        assert len(fake_broker.requests) == 1
        request = fake_broker.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BROKER_URL}/registration/client"
        assert fake_broker.registrations()[0] == registration.to_dict()

        scheme, token = request.headers["Authorization"].split(" ", 1)
        assert scheme == "Bearer"
        claims = decode(token, controller_jwk, audience=f"{BROKER_URL}/registration/client")
        assert claims["sub"] == CONTROLLER_CLIENT_ID

    @pytest.mark.asyncio
    async def test_non_created_response_raises(self, broker_client, fake_broker, registration):
        fake_broker.register_status = 500
        with pytest.raises(BrokerError) as exc_info:
            await broker_client.register(registration)
        assert exc_info.value.status_code == 500
        assert exc_info.value.base_url == BROKER_URL

    @pytest.mark.asyncio
    async def test_ok_is_not_success(self, broker_client, fake_broker, registration):
        fake_broker.register_status = 200
        with pytest.raises(BrokerError):
            await broker_client.register(registration)

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, broker_instance, registration):
        def fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        broker = BrokerClient([broker_instance], transport=httpx.MockTransport(fail))
        try:
            with pytest.raises(BrokerError):
                await broker.register(registration)
        finally:
            await broker.close()

    @pytest.mark.asyncio
    async def test_first_failure_stops_the_pass(self, controller_jwk, registration):
        broker_calls = FakeBroker()
        broker_calls.responder = lambda request: httpx.Response(
            500 if request.url.host == "first.local" else 201
        )
        instances = [
            BrokerInstance.from_base_url(url, CONTROLLER_CLIENT_ID, controller_jwk)
            for url in ("http://first.local", "http://second.local")
        ]
        broker = BrokerClient(instances, transport=httpx.MockTransport(broker_calls.handler))
        try:
            with pytest.raises(BrokerError) as exc_info:
                await broker.register(registration)
        finally:
            await broker.close()

        assert exc_info.value.base_url == "http://first.local"
        assert [r.url.host for r in broker_calls.requests] == ["first.local"]

    @pytest.mark.asyncio
    async def test_all_instances_in_order(self, controller_jwk, registration):
        broker_calls = FakeBroker()
        instances = [
            BrokerInstance.from_base_url(url, CONTROLLER_CLIENT_ID, controller_jwk)
            for url in ("http://first.local", "http://second.local")
        ]
        broker = BrokerClient(instances, transport=httpx.MockTransport(broker_calls.handler))
        try:
            await broker.register(registration)
        finally:
            await broker.close()

        assert [r.url.host for r in broker_calls.requests] == ["first.local", "second.local"]

    @pytest.mark.asyncio
    async def test_records_metrics(self, broker_instance, fake_broker, registration):
        sink = PrometheusMetricsSink()
        broker = BrokerClient(
            [broker_instance],
            metrics=sink,
            transport=httpx.MockTransport(fake_broker.handler),
        )
        try:
            await broker.register(registration)
            fake_broker.register_status = 503
            with pytest.raises(BrokerError):
                await broker.register(registration)
        finally:
            await broker.close()

        def count(result):
            return sink.registry.get_sample_value(
                "jwker_broker_requests_total",
                {"instance": BROKER_URL, "operation": "register", "result": result},
            )

        assert count("success") == 1.0
        assert count("failure") == 1.0


class TestDeregister:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [204, 404])
    async def test_gone_is_success(self, broker_client, fake_broker, status):
        fake_broker.delete_status = status
        await broker_client.deregister(IDENTITY)

        request = fake_broker.deletions()[0]
        assert str(request.url) == f"{BROKER_URL}/registration/client/prod%3Ateam-a%3Amyapp"
        assert request.headers["Authorization"].startswith("Bearer ")

    @pytest.mark.asyncio
    async def test_other_status_raises(self, broker_client, fake_broker):
        fake_broker.delete_status = 500
        with pytest.raises(BrokerError):
            await broker_client.deregister(IDENTITY)


class TestBrokerErrorPreview:
    def test_body_preview_truncates(self):
        error = BrokerError("boom", base_url=BROKER_URL, status_code=500, response_body="x" * 2000)
        preview = error.body_preview(limit=10)
        assert preview == "x" * 10 + "...<truncated>"

    def test_message_includes_status(self):
        error = BrokerError("boom", base_url=BROKER_URL, status_code=409)
        assert "HTTP 409" in str(error)
