"""
Temporary workspace management for stitching.

Each stitch invocation gets its own directory under settings.storage.tmp_dir,
removed when the invocation ends whether it succeeded or not.
"""
import logging
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from santavid.config import settings

logger = logging.getLogger(__name__)


class FileManager:
    """
    Create and clean up per-invocation workspaces.

    Layout: {base_dir}/final-{order_id}-XXXXXXXX/
    """

    def __init__(self, base_dir: str | Path | None = None):
        if base_dir is None:
            base_dir = settings.storage.tmp_dir

        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def workspace(self, order_id: uuid.UUID) -> Iterator[Path]:
        """Yield a fresh directory for one invocation and always remove it."""
        path = Path(tempfile.mkdtemp(prefix=f"final-{order_id}-", dir=self.base_dir)).resolve()

        # Path traversal protection
        if not path.is_relative_to(self.base_dir):
            shutil.rmtree(path, ignore_errors=True)
            raise ValueError("Invalid workspace path")

        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)
            logger.debug(f"Removed workspace {path}")
