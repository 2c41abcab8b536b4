"""Santa Video - personalized Santa video order pipeline.

This module provides startup helpers shared by the API and CLI entry points:
dependency validation (ffmpeg) and process-wide logging configuration.
"""

import logging
import subprocess

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    """Configure root logging from settings.logging (or an explicit level)."""
    from santavid.config import settings

    logging.basicConfig(
        level=(level or settings.logging.level).upper(),
        format=settings.logging.format,
    )


def validate_dependencies() -> None:
    """Validate required system dependencies are available.

    Stitching shells out to ffmpeg, so this is called during API startup and
    before CLI commands that may stitch.

    Raises:
        RuntimeError: If ffmpeg is not found or not functional.
    """
    try:
        result = subprocess.run(
            ["ffmpeg", "-version"],
            capture_output=True,
            check=True,
            text=True,
        )
        version_line = result.stdout.split("\n")[0]
        logger.info(f"ffmpeg validated: {version_line}")
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise RuntimeError(
            "ffmpeg not found on PATH. Install ffmpeg to stitch final videos.\n"
            "Ubuntu/Debian: sudo apt-get install ffmpeg\n"
            "macOS: brew install ffmpeg"
        ) from e
