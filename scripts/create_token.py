"""Issue a session JWT for local testing of the push channel and /changes.

Usage:
    uv run python -m scripts.create_token <user_id> [role]
Requires SECRET_KEY. Prints the token on stdout.
"""

import sys

from reelsync.core.config import get_settings
from reelsync.infrastructure.security.jwt import create_access_token


def main() -> None:
    """Print a token for the given user."""
    if len(sys.argv) < 2:
        print(
            "Usage: uv run python -m scripts.create_token <user_id> [role]",
            file=sys.stderr,
        )
        sys.exit(1)
    get_settings().require_secret_key()
    claims = {"sub": sys.argv[1]}
    if len(sys.argv) > 2:
        claims["role"] = sys.argv[2]
    print(create_access_token(claims))


if __name__ == "__main__":
    main()
