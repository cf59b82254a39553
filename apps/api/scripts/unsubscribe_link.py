"""Build a signed unsubscribe link for local testing.

Uses UNSUBSCRIBE_TOKEN_SECRET and PUBLIC_BASE_URL from the environment (or
.env file), so the link verifies against a server running with the same
settings.

Usage:
    cd apps/api && uv run python -m scripts.unsubscribe_link jane@example.com

    # One-click unsubscribe against a local server:
    LINK=$(PUBLIC_BASE_URL=http://localhost:8000 uv run python -m scripts.unsubscribe_link jane@example.com)
    curl -X POST "$LINK" -d "List-Unsubscribe=One-Click"
"""

import sys

from app.core.security import get_token_service
from app.services.email_service import build_unsubscribe_url
from app.services.validation import EMAIL_RE, sanitize_email


def main() -> None:
    if len(sys.argv) != 2:
        print("Usage: python -m scripts.unsubscribe_link <email>", file=sys.stderr)
        sys.exit(1)

    email = sanitize_email(sys.argv[1])
    if not EMAIL_RE.match(email):
        print(f"ERROR: not an email address: {email}", file=sys.stderr)
        sys.exit(1)

    token = get_token_service().generate(email)
    print(build_unsubscribe_url(email, token), end="")


if __name__ == "__main__":
    main()
