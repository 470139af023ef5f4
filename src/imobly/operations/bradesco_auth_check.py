"""imobly-bradesco-auth: obtain a Bradesco token over mTLS and show its expiry."""

import argparse
import sys

from imobly.bradesco.errors import BradescoError, BradescoRejectionError
from imobly.bradesco.factory import build_client
from imobly.bradesco.settings import BradescoSettings
from imobly.observability.logging import get_logger
from imobly.observability.redaction import safe_log_context

logger = get_logger(__name__)

TOKEN_PREVIEW_CHARS = 32


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="imobly-bradesco-auth",
        description="Test Bradesco authentication (mTLS + client credentials).",
    )
    parser.add_argument("--force", action="store_true", help="refresh even if the cached token is valid")
    args = parser.parse_args(argv)

    settings = BradescoSettings.from_env()
    try:
        config = build_client(settings).refresh_access_token(force=args.force)
    except BradescoError as e:
        logger.error(
            "bradesco auth check failed",
            extra={"extra_fields": safe_log_context(error_type=type(e).__name__, environment=settings.environment)},
        )
        sys.stderr.write(f"Bradesco authentication failed: {e}\n")
        if isinstance(e, BradescoRejectionError) and e.body is not None:
            sys.stderr.write(f"Details: {e.body}\n")
        return 1

    expires = config.token_expires_at.isoformat() if config.token_expires_at else "unknown"
    preview = (config.access_token or "")[:TOKEN_PREVIEW_CHARS]
    sys.stdout.write("Token obtained.\n")
    sys.stdout.write(f"Expires at: {expires}\n")
    sys.stdout.write(f"Token prefix: {preview}...\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
