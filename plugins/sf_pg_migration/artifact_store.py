"""
Export Artifact Store

One CSV file per exported table in a local directory. Files are written
under a temporary name and only published (renamed to ``<table>.csv``) once
the export finished, so a partial export is never mistaken for a complete one.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import IO, Iterator, List, Union
import contextlib
import logging
import os

logger = logging.getLogger(__name__)


ARTIFACT_SUFFIX = ".csv"
PARTIAL_SUFFIX = ".partial"


@dataclass(frozen=True)
class ExportArtifact:
    """A published export file for one table."""
    table_name: str
    path: Path

    def open(self) -> IO[str]:
        return open(self.path, "r", encoding="utf-8", newline="")


class ArtifactStore:
    """Directory of export artifacts, one per table."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def artifact_path(self, table_name: str) -> Path:
        return self.directory / f"{table_name}{ARTIFACT_SUFFIX}"

    @contextlib.contextmanager
    def open_writer(self, table_name: str) -> Iterator[IO[str]]:
        """
        Open a fresh artifact for writing.

        The file is published when the block exits normally. If the block
        raises, the partial file is deleted and the error propagates.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        final_path = self.artifact_path(table_name)
        partial_path = final_path.with_name(final_path.name + PARTIAL_SUFFIX)

        handle = open(partial_path, "w", encoding="utf-8", newline="")
        try:
            yield handle
        except BaseException:
            handle.close()
            partial_path.unlink(missing_ok=True)
            logger.warning(f"Discarded partial artifact for {table_name}")
            raise
        handle.close()
        os.replace(partial_path, final_path)
        logger.info(f"Published artifact {final_path}")

    def list_artifacts(self) -> List[ExportArtifact]:
        """Published artifacts, ordered by file name."""
        if not self.directory.exists():
            return []
        return [
            ExportArtifact(table_name=path.stem, path=path)
            for path in sorted(self.directory.glob(f"*{ARTIFACT_SUFFIX}"))
            if path.is_file()
        ]

    def remove(self, artifact: ExportArtifact) -> None:
        artifact.path.unlink(missing_ok=True)
        logger.debug(f"Removed artifact {artifact.path}")

    def purge(self) -> int:
        """Delete every artifact and leftover partial file in the directory."""
        if not self.directory.exists():
            return 0
        removed = 0
        for pattern in (f"*{ARTIFACT_SUFFIX}", f"*{ARTIFACT_SUFFIX}{PARTIAL_SUFFIX}"):
            for path in self.directory.glob(pattern):
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info(f"Removed {removed} stale artifacts from {self.directory}")
        return removed
