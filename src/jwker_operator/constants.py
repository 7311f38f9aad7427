"""
Constants used throughout the Jwker operator.

This module defines all constant values used by the operator including:
- Custom resource coordinates and the finalizer name
- Managed secret labels, annotations and data keys
- Synchronization states written to the resource status
"""

# Custom resource coordinates
JWKER_GROUP = "nais.io"
JWKER_VERSION = "v1"
JWKER_PLURAL = "jwkers"
JWKER_KIND = "Jwker"
JWKER_API_VERSION = f"{JWKER_GROUP}/{JWKER_VERSION}"

# Finalizer blocking removal until the broker registration is deleted
JWKER_FINALIZER = "jwker.nais.io/finalizer"

# Managed secret labels and annotations
APP_LABEL_KEY = "app"
SECRET_TYPE_LABEL_KEY = "type"
SECRET_TYPE_LABEL_VALUE = "jwker.nais.io"
RELOADER_ANNOTATION_KEY = "reloader.stakater.com/match"

# Managed secret data keys consumed by the application
TOKEN_X_CLIENT_ID_KEY = "TOKEN_X_CLIENT_ID"
TOKEN_X_ISSUER_KEY = "TOKEN_X_ISSUER"
TOKEN_X_JWKS_URI_KEY = "TOKEN_X_JWKS_URI"
TOKEN_X_PRIVATE_JWK_KEY = "TOKEN_X_PRIVATE_JWK"
TOKEN_X_TOKEN_ENDPOINT_KEY = "TOKEN_X_TOKEN_ENDPOINT"
TOKEN_X_WELL_KNOWN_URL_KEY = "TOKEN_X_WELL_KNOWN_URL"

# Controller key bootstrap secrets
PRIVATE_JWK_DATA_KEY = "privateJWK"
PUBLIC_JWKS_DATA_KEY = "AUTH_CLIENT_JWKS"

# Synchronization states (status.synchronizationState)
STATE_ROLLOUT_COMPLETE = "RolloutComplete"
STATE_FAILED_PREPARE = "FailedPrepare"
STATE_FAILED_SYNCHRONIZATION = "FailedSynchronization"

# Broker protocol
REGISTRATION_PATH = "/registration/client"
WELL_KNOWN_OAUTH_PATH = "/.well-known/oauth-authorization-server"

# Key material
KEY_SIZE_BITS = 2048
KEY_ALGORITHM = "RS256"
KEY_USE = "sig"

# Status write retries on optimistic-concurrency conflicts
STATUS_CONFLICT_RETRIES = 3

# Cluster metrics refresh interval (seconds)
METRICS_REFRESH_INTERVAL = 10.0

# Default operator identity component
DEFAULT_OPERATOR_NAMESPACE = "nais-system"
DEFAULT_OPERATOR_NAME = "jwker"

# Retry configuration
DEFAULT_BACKOFF_FACTOR = 2.0

# Handler entry logging level (DEBUG quiets per-event noise)
import logging
import os

HANDLER_ENTRY_LOG_LEVEL = getattr(
    logging, os.getenv("HANDLER_ENTRY_LOG_LEVEL", "INFO").upper(), logging.INFO
)

# Upper bound for the random delay before a reconcile starts
RECONCILE_JITTER_MAX = 1.0
