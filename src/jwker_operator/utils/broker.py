"""
Token broker client.

This module talks to one or more token broker instances on behalf of the
controller. Every call carries a freshly minted, short-lived bearer assertion
signed with the controller's own key; the broker validates that assertion
itself, so there is no separate token round trip.

Key functionality:
- Broker instance metadata derived from the configured base URL
- Self-signed client assertions (RS256, key ID in the header)
- Software statements carrying the resolved access policy
- Client registration and deregistration across all configured instances
"""

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import quote_plus

import httpx
import jwt

from ..constants import KEY_ALGORITHM, REGISTRATION_PATH, WELL_KNOWN_OAUTH_PATH
from ..errors import BrokerError, ValidationError
from ..models.jwker import AccessPolicy, ClientId
from . import jwk as jwkutil

if TYPE_CHECKING:
    from ..observability.metrics import MetricsSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrokerMetadata:
    """Connection metadata handed to applications through the managed secret."""

    issuer: str
    jwks_uri: str
    token_endpoint: str


@dataclass
class BrokerInstance:
    """A single configured broker, with the controller's credentials for it."""

    base_url: str
    client_id: str
    client_jwk: dict[str, Any] = field(repr=False)
    metadata: BrokerMetadata
    well_known_url: str

    @classmethod
    def from_base_url(
        cls, base_url: str, client_id: str, client_jwk: dict[str, Any]
    ) -> "BrokerInstance":
        metadata = BrokerMetadata(
            issuer=base_url,
            jwks_uri=f"{base_url}/jwks",
            token_endpoint=f"{base_url}/token",
        )
        return cls(
            base_url=base_url,
            client_id=client_id,
            client_jwk=client_jwk,
            metadata=metadata,
            well_known_url=f"{base_url.rstrip('/')}{WELL_KNOWN_OAUTH_PATH}",
        )

    @property
    def registration_endpoint(self) -> str:
        return f"{self.base_url}{REGISTRATION_PATH}"

    def client_endpoint(self, client_name: str) -> str:
        return f"{self.registration_endpoint}/{quote_plus(client_name)}"


@dataclass
class ClientRegistration:
    """Registration payload for one application."""

    client_name: str
    jwks: dict[str, Any]
    software_statement: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_name": self.client_name,
            "jwks": self.jwks,
            "software_statement": self.software_statement,
        }


def _signed(claims: dict[str, Any], signing_jwk: dict[str, Any]) -> str:
    return jwt.encode(
        claims,
        jwkutil.signing_key(signing_jwk),
        algorithm=KEY_ALGORITHM,
        headers={"kid": signing_jwk["kid"], "typ": "JWT"},
    )


def client_assertion(
    signing_jwk: dict[str, Any],
    client_id: str,
    audience: str,
    lifetime: int = 60,
    now: int | None = None,
) -> str:
    """
    Mint a bearer assertion for a single broker call.

    Args:
        signing_jwk: The controller's private JWK
        client_id: The controller's client ID (issuer and subject)
        audience: The endpoint the assertion is presented to
        lifetime: Seconds until the assertion expires
        now: Issue time as a unix timestamp (defaults to the current time)

    Returns:
        Compact RS256-signed JWT
    """
    issued_at = int(time.time()) if now is None else now
    claims = {
        "iss": client_id,
        "sub": client_id,
        "aud": audience,
        "exp": issued_at + lifetime,
        "nbf": issued_at,
        "iat": issued_at,
        "jti": secrets.token_urlsafe(32),
    }
    return _signed(claims, signing_jwk)


def build_software_statement(
    identity: ClientId, access_policy: AccessPolicy | None
) -> dict[str, Any]:
    """
    Resolve the access policy into software statement claims.

    Rules lacking a namespace or cluster inherit the requesting application's.

    Raises:
        ValidationError: If the resource carries no access policy at all
    """
    if access_policy is None:
        raise ValidationError("no access policy", field="spec.accessPolicy")

    return {
        "appId": str(identity),
        "accessPolicyInbound": [
            rule.resolve(identity) for rule in access_policy.inbound_rules
        ],
        "accessPolicyOutbound": [
            rule.resolve(identity) for rule in access_policy.outbound_rules
        ],
    }


def make_client_registration(
    controller_jwk: dict[str, Any],
    public_jwks: dict[str, Any],
    identity: ClientId,
    access_policy: AccessPolicy | None,
) -> ClientRegistration:
    """Build the registration payload, signing the statement with the controller key."""
    statement = build_software_statement(identity, access_policy)
    return ClientRegistration(
        client_name=str(identity),
        jwks=public_jwks,
        software_statement=_signed(statement, controller_jwk),
    )


class BrokerClient:
    """
    Registers and deregisters applications with every configured broker.

    Instances are visited in configuration order; the first failure aborts
    the pass and is raised as a BrokerError naming the instance. Earlier
    instances keep whatever state they reached, and the next reconcile
    repeats the whole pass.
    """

    def __init__(
        self,
        instances: list[BrokerInstance],
        timeout: float = 10.0,
        assertion_lifetime: int = 60,
        metrics: "MetricsSink | None" = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.instances = instances
        self.timeout = timeout
        self.assertion_lifetime = assertion_lifetime
        self.metrics = metrics
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
                follow_redirects=False,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _authorization(self, instance: BrokerInstance, audience: str) -> dict[str, str]:
        assertion = client_assertion(
            instance.client_jwk,
            instance.client_id,
            audience,
            lifetime=self.assertion_lifetime,
        )
        return {"Authorization": f"Bearer {assertion}"}

    def _record(self, instance: BrokerInstance, operation: str, result: str) -> None:
        if self.metrics is not None:
            self.metrics.broker_request(instance.base_url, operation, result)

    async def _send(
        self,
        instance: BrokerInstance,
        operation: str,
        method: str,
        url: str,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = self._authorization(instance, instance.registration_endpoint)
        try:
            return await self._get_client().request(
                method, url, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            # Connection failures and timeouts alike are retried by the next reconcile
            self._record(instance, operation, "error")
            logger.error(f"Broker request failed: {method} {url} - {e}")
            raise BrokerError(
                f"{operation} request failed: {e}", base_url=instance.base_url
            ) from e

    def _failure(
        self, instance: BrokerInstance, operation: str, response: httpx.Response
    ) -> BrokerError:
        self._record(instance, operation, "failure")
        error = BrokerError(
            f"unexpected response to {operation}",
            base_url=instance.base_url,
            status_code=response.status_code,
            response_body=response.text,
        )
        logger.error(
            f"Broker {instance.base_url} rejected {operation}",
            extra={
                "broker_url": instance.base_url,
                "http_status": response.status_code,
                "response_body": error.body_preview(),
            },
        )
        return error

    async def register_instance(
        self, instance: BrokerInstance, registration: ClientRegistration
    ) -> None:
        """Register with a single instance; only 201 Created is success."""
        response = await self._send(
            instance,
            "register",
            "POST",
            instance.registration_endpoint,
            json=registration.to_dict(),
        )
        if response.status_code != httpx.codes.CREATED:
            raise self._failure(instance, "register", response)
        self._record(instance, "register", "success")
        logger.info(
            f"Registered {registration.client_name} with {instance.base_url}",
            extra={"broker_url": instance.base_url},
        )

    async def deregister_instance(
        self, instance: BrokerInstance, identity: ClientId
    ) -> None:
        """Delete the registration; 204 and 404 both mean it is gone."""
        response = await self._send(
            instance, "deregister", "DELETE", instance.client_endpoint(str(identity))
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            logger.info(
                f"{identity} was not registered with {instance.base_url}",
                extra={"broker_url": instance.base_url},
            )
        elif response.status_code != httpx.codes.NO_CONTENT:
            raise self._failure(instance, "deregister", response)
        self._record(instance, "deregister", "success")

    async def register(self, registration: ClientRegistration) -> None:
        for instance in self.instances:
            await self.register_instance(instance, registration)

    async def deregister(self, identity: ClientId) -> None:
        for instance in self.instances:
            await self.deregister_instance(instance, identity)
