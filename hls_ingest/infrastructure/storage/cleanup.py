"""Best-effort removal of HLS artifacts when the process shuts down."""

from pathlib import Path
from typing import Iterable, List, Optional

import structlog

from hls_ingest.core.config import Settings
from hls_ingest.domain.exceptions import PathError
from hls_ingest.infrastructure.storage.output import OutputLayout

logger = structlog.get_logger(__name__)


class ShutdownCoordinator:
    """Removes playlists and segments left under the output root.

    Advisory only: it does not wait for live sessions, and a missing file is
    not an error. Stream directories themselves are kept.
    """

    def __init__(
        self,
        layout: OutputLayout,
        *,
        playlist_name: str = "index.m3u8",
        segment_extension: str = "ts",
        default_stream_name: Optional[str] = None,
    ):
        self.layout = layout
        self.playlist_name = playlist_name
        self.segment_extension = segment_extension.lstrip(".")
        self.default_stream_name = default_stream_name

    @classmethod
    def from_settings(cls, settings: Settings, layout: Optional[OutputLayout] = None) -> "ShutdownCoordinator":
        if layout is None:
            layout = OutputLayout(settings.output_root, directory_mode=settings.directory_mode)
        return cls(
            layout,
            playlist_name=settings.playlist_name,
            segment_extension=settings.segment_extension,
            default_stream_name=settings.default_stream_name,
        )

    def stream_directories(self) -> List[Path]:
        """Directories that may hold artifacts: the default stream plus every child of the root."""
        directories = []
        if self.default_stream_name:
            try:
                directories.append(self.layout.resolve(self.default_stream_name))
            except PathError as e:
                logger.warning("Ignoring unsafe default stream name", error=str(e))

        try:
            children = sorted(p for p in self.layout.root.iterdir() if p.is_dir())
        except FileNotFoundError:
            children = []
        except OSError as e:
            logger.warning("Cannot list output root", root=str(self.layout.root), error=str(e))
            children = []

        for child in children:
            if child not in directories:
                directories.append(child)
        return directories

    def _artifacts(self, directory: Path) -> Iterable[Path]:
        yield directory / self.playlist_name
        yield from sorted(directory.glob(f"*.{self.segment_extension}"))

    def cleanup(self) -> List[Path]:
        """Delete known artifacts; returns the paths actually removed."""
        removed = []
        for directory in self.stream_directories():
            for path in self._artifacts(directory):
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning("Failed to remove artifact", path=str(path), error=str(e))
                    continue
                removed.append(path)

        logger.info("Shutdown cleanup finished", removed=len(removed), root=str(self.layout.root))
        return removed
