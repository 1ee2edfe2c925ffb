"""Console entry point."""

import logging
import sys
from typing import Optional, Sequence

from .constants import log_level
from .router import route


def configure_logging() -> None:
    """Log to stderr at the level named by OAF_LOG_LEVEL."""
    level = getattr(logging, log_level(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Run oaf with `argv` (default: sys.argv, program name included)."""
    configure_logging()
    route(list(sys.argv if argv is None else argv))


if __name__ == "__main__":
    main()
