"""Per-stream output directories confined to the configured output root."""

import os
from pathlib import Path
from typing import Union

import structlog

from hls_ingest.domain.exceptions import PathError

logger = structlog.get_logger(__name__)


def _within_root(root: Path, target: Path) -> bool:
    try:
        target.relative_to(root)
        return True
    except ValueError:
        return False


class OutputLayout:
    """Maps stream names to directories under a single output root.

    The root is canonicalized once; every candidate directory is canonicalized
    too (following ``..`` and symlinks) and refused unless it lies strictly
    below the root.
    """

    def __init__(self, output_root: Union[str, Path], *, directory_mode: int = 0o755):
        self.root = Path(output_root).expanduser().resolve()
        self.directory_mode = directory_mode

    def resolve(self, stream_name: str) -> Path:
        """Return the canonical directory for ``stream_name`` without creating it.

        Raises:
            PathError: if the name is empty, contains a NUL byte, or resolves
                to the root itself or anywhere outside it.
        """
        if not stream_name or not stream_name.strip():
            raise PathError("Stream name is empty", stream_name=stream_name)
        if "\x00" in stream_name:
            raise PathError("Stream name contains a NUL byte", stream_name=stream_name)

        try:
            candidate = (self.root / stream_name).resolve()
        except (OSError, RuntimeError) as e:
            raise PathError(f"Cannot resolve output path: {e}", stream_name=stream_name) from e

        if candidate == self.root or not _within_root(self.root, candidate):
            raise PathError(
                f"Output path {candidate} escapes output root {self.root}",
                stream_name=stream_name,
            )
        return candidate

    def ensure(self, stream_name: str) -> Path:
        """Resolve and create the stream directory; an existing directory is fine.

        Raises:
            PathError: if the path is unsafe or cannot be created.
        """
        output_dir = self.resolve(stream_name)
        try:
            output_dir.mkdir(mode=self.directory_mode, parents=True, exist_ok=True)
        except FileExistsError as e:
            raise PathError(
                f"Output path {output_dir} exists and is not a directory",
                stream_name=stream_name,
            ) from e
        except OSError as e:
            raise PathError(
                f"Failed to create output directory {output_dir}: {e}",
                stream_name=stream_name,
            ) from e

        if not os.access(output_dir, os.W_OK | os.X_OK):
            raise PathError(f"Output directory {output_dir} is not writable", stream_name=stream_name)

        logger.debug("Output directory ready", stream=stream_name, path=str(output_dir))
        return output_dir
