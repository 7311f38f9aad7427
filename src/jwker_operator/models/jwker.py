"""
Pydantic models for Jwker resources.

This module defines type-safe data models for the Jwker specification and
status, plus the application identity derived from a resource. The canonical
serialization produced here feeds the synchronization fingerprint, so field
order and omission rules are significant.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class AccessPolicyRule(BaseModel):
    """A single inbound or outbound access rule."""

    model_config = {"populate_by_name": True}

    application: str = Field(..., description="Name of the peer application")
    namespace: str = Field("", description="Peer namespace (defaults to own)")
    cluster: str = Field("", description="Peer cluster (defaults to own)")

    @field_validator("application")
    @classmethod
    def validate_application(cls, v):
        if not v or not v.strip():
            raise ValueError("application must not be empty")
        return v

    def canonical(self) -> dict[str, Any]:
        data: dict[str, Any] = {"application": self.application}
        if self.namespace:
            data["namespace"] = self.namespace
        if self.cluster:
            data["cluster"] = self.cluster
        return data

    def resolve(self, identity: "ClientId") -> str:
        """Render as cluster:namespace:application, defaulting to the requester."""
        cluster = self.cluster or identity.cluster
        namespace = self.namespace or identity.namespace
        return f"{cluster}:{namespace}:{self.application}"


class AccessPolicyInbound(BaseModel):
    """Applications allowed to call this application."""

    rules: list[AccessPolicyRule] | None = Field(
        None, description="Inbound access rules"
    )

    def canonical(self) -> dict[str, Any]:
        rules = None if self.rules is None else [r.canonical() for r in self.rules]
        return {"rules": rules}


class AccessPolicyOutbound(BaseModel):
    """Applications this application may call."""

    rules: list[AccessPolicyRule] = Field(
        default_factory=list, description="Outbound access rules"
    )

    def canonical(self) -> dict[str, Any]:
        if not self.rules:
            return {}
        return {"rules": [r.canonical() for r in self.rules]}


class AccessPolicy(BaseModel):
    """Inbound and outbound access policy of an application."""

    inbound: AccessPolicyInbound | None = Field(None, description="Inbound policy")
    outbound: AccessPolicyOutbound | None = Field(None, description="Outbound policy")

    def canonical(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.inbound is not None:
            data["inbound"] = self.inbound.canonical()
        if self.outbound is not None:
            data["outbound"] = self.outbound.canonical()
        return data

    @property
    def inbound_rules(self) -> list[AccessPolicyRule]:
        if self.inbound is None or self.inbound.rules is None:
            return []
        return self.inbound.rules

    @property
    def outbound_rules(self) -> list[AccessPolicyRule]:
        if self.outbound is None:
            return []
        return self.outbound.rules


class JwkerSpec(BaseModel):
    """
    Specification for a Jwker resource.

    Created by the deployment pipeline; the operator never writes it.
    """

    model_config = {"populate_by_name": True}

    access_policy: AccessPolicy | None = Field(
        None, alias="accessPolicy", description="Access policy for the application"
    )
    secret_name: str = Field(
        ..., alias="secretName", description="Name of the managed secret to write"
    )

    @field_validator("secret_name")
    @classmethod
    def validate_secret_name(cls, v):
        if not v or not v.strip():
            raise ValueError("secretName must not be empty")
        return v

    def canonical(self) -> dict[str, Any]:
        """Serialization used for fingerprinting (key order is significant)."""
        return {
            "accessPolicy": (
                None if self.access_policy is None else self.access_policy.canonical()
            ),
            "secretName": self.secret_name,
        }


class JwkerStatus(BaseModel):
    """Observed synchronization state of a Jwker resource."""

    model_config = {"populate_by_name": True}

    synchronization_hash: str = Field("", alias="synchronizationHash")
    synchronization_state: str = Field("", alias="synchronizationState")
    synchronization_secret_name: str = Field("", alias="synchronizationSecretName")
    synchronization_time: int = Field(0, alias="synchronizationTimeNanos")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ClientId(BaseModel):
    """Application identity, canonicalized as cluster:namespace:name."""

    model_config = {"frozen": True}

    name: str
    namespace: str
    cluster: str

    def __str__(self) -> str:
        return f"{self.cluster}:{self.namespace}:{self.name}"

    @classmethod
    def from_resource(cls, body: dict[str, Any], cluster: str) -> "ClientId":
        metadata = body.get("metadata", {})
        return cls(
            name=metadata["name"], namespace=metadata["namespace"], cluster=cluster
        )
