"""
Jwker Operator - A Kubernetes operator issuing token-exchange client identities.

For every declared Jwker resource the operator:
- Generates an RSA signing key for the application
- Registers the public keys and a signed access policy with the token broker
- Delivers the private key to the workload through a managed secret
- Rotates keys without invalidating keys still mounted by running pods
- Deregisters the client when the resource is deleted
"""

__version__ = "0.1.0"
