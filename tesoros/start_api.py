"""Console entry point: serve tesoros.main:app with uvicorn."""
import os
import sys

import uvicorn

from tesoros.core.config import settings


def _read_port() -> int:
    """Fetch and validate the PORT environment variable."""
    value = os.environ.get("PORT", "8000")
    try:
        port = int(value)
    except ValueError as exc:  # pragma: no cover - fatal configuration
        raise SystemExit(f"Invalid PORT '{value}': {exc}") from exc
    if not 0 < port < 65536:
        raise SystemExit(f"Invalid PORT '{value}': out of range")
    return port


def main() -> None:
    uvicorn.run(
        "tesoros.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=_read_port(),
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    try:
        main()
    except Exception as exc:  # pragma: no cover - last line of defense
        print(f"Failed to start inventory API: {exc}", file=sys.stderr)
        raise
