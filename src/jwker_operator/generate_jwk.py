"""
Print a fresh controller signing key.

The output is meant for the file referenced by ``JWKER_CLIENT_JWK_FILE``,
for deployments that provide the controller key instead of letting the
operator bootstrap it into a secret.
"""

import json
import sys

from .errors import KeyGenerationError
from .utils import jwk as jwkutil


def main() -> None:
    try:
        key = jwkutil.generate()
    except KeyGenerationError as e:
        print(f"Error generating jwk: {e}", file=sys.stderr)
        sys.exit(1)

    print(
        "Copy the following to the path you provide in JWKER_CLIENT_JWK_FILE:",
        file=sys.stderr,
    )
    print(json.dumps(key, indent=1))


if __name__ == "__main__":
    main()
