"""File walker service for discovering collection documents."""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import structlog


class FileWalker:
    """Walks a collection root to discover files matching its glob patterns.

    Patterns use glob syntax, including ``**``. Results are de-duplicated and
    yielded in sorted order so runs are reproducible. Uses asyncio.to_thread
    to avoid blocking the event loop during I/O.
    """

    def __init__(
        self,
        include_patterns: list[str],
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._include_patterns = include_patterns
        self._logger = logger or structlog.get_logger(__name__)

    async def walk(self, directory: Path) -> AsyncIterator[Path]:
        """Walk directory and yield files matching include patterns.

        Args:
            directory: Root directory the patterns are relative to.

        Yields:
            Path objects for matching files.

        Raises:
            FileNotFoundError: If directory does not exist.
            NotADirectoryError: If path is not a directory.
        """
        if not directory.exists():
            raise FileNotFoundError(f"Directory not found: {directory}")
        if not directory.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {directory}")

        self._logger.info(
            "directory_walk_started",
            directory=str(directory),
            include_patterns=self._include_patterns,
        )

        files = await asyncio.to_thread(self._discover_files, directory)
        for file_path in files:
            yield file_path

        self._logger.info(
            "directory_walk_completed",
            directory=str(directory),
            file_count=len(files),
        )

    def _discover_files(self, directory: Path) -> list[Path]:
        """Synchronously glob every include pattern."""
        found: set[Path] = set()
        for pattern in self._include_patterns:
            found.update(file_path for file_path in directory.glob(pattern) if file_path.is_file())
        return sorted(found)
