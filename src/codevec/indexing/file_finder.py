"""File discovery and filtering for indexing."""

import logging
import os
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import pathspec

from ..config import CONFIG_DIR_NAME, Config

logger = logging.getLogger(__name__)


class FileFinder:
    """Finds and filters source files for indexing based on configuration.

    A file is eligible when its extension maps to a configured language, it
    is not hidden, not under an excluded directory, not matched by the root
    ``.gitignore``, and not larger than ``max_file_size``.
    """

    def __init__(self, config: Config):
        self.config = config
        self.codebase_dir = Path(config.codebase_dir).resolve()
        self._create_exclude_spec()

    def _create_exclude_spec(self) -> None:
        """Create pathspec for excluded directories and gitignore rules."""
        patterns: List[str] = []

        for exclude_dir in list(self.config.exclude_dirs) + [CONFIG_DIR_NAME]:
            # /** matches everything under the directory, at the root or nested
            patterns.append(f"{exclude_dir}/**")
            patterns.append(f"**/{exclude_dir}/**")

        self._add_gitignore_patterns(patterns)
        self.exclude_spec = pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    def _add_gitignore_patterns(self, patterns: List[str]) -> None:
        gitignore_path = self.codebase_dir / ".gitignore"
        if not gitignore_path.exists():
            return
        try:
            with open(gitignore_path, "r", encoding="utf-8", errors="ignore") as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#"):
                        patterns.append(line)
        except OSError as e:
            logger.warning(f"Could not read {gitignore_path}: {e}")

    def language_for(self, file_path: Path) -> Optional[str]:
        """Configured language for ``file_path`` by extension, or None."""
        return self.config.language_for_extension(Path(file_path).suffix)

    def relative_path(self, file_path: Path) -> str:
        """Posix path of ``file_path`` relative to the codebase root.

        Raises:
            ValueError: If the path is outside the codebase root
        """
        return Path(file_path).resolve().relative_to(self.codebase_dir).as_posix()

    def _is_excluded(self, relative: str, is_dir: bool = False) -> bool:
        return self.exclude_spec.match_file(relative + "/" if is_dir else relative)

    def _should_include_file(self, file_path: Path) -> bool:
        """Check if a file should be included in indexing."""
        if self.language_for(file_path) is None:
            return False
        try:
            relative = self.relative_path(file_path)
            if self._is_excluded(relative):
                return False
            size = file_path.stat().st_size
        except (OSError, ValueError):
            return False

        if size > self.config.max_file_size:
            logger.debug(f"Skipping {file_path}: {size} bytes exceeds max_file_size")
            return False
        return True

    def find_files(self, root: Optional[Path] = None) -> Iterator[Path]:
        """Yield eligible files under ``root`` (default: the codebase root) in sorted order.

        Raises:
            ValueError: If ``root`` does not exist, is not a directory, or is
                outside the codebase root
        """
        start = Path(root).resolve() if root is not None else self.codebase_dir

        if not start.exists():
            raise ValueError(f"Codebase directory does not exist: {start}")
        if not start.is_dir():
            raise ValueError(f"Codebase path is not a directory: {start}")
        if start != self.codebase_dir and self.codebase_dir not in start.parents:
            raise ValueError(f"{start} is outside the indexed root {self.codebase_dir}")

        for current, dirs, files in os.walk(start):
            current_path = Path(current)

            # Prune in place so os.walk never descends into excluded directories
            kept_dirs = []
            for dir_name in sorted(dirs):
                if dir_name.startswith("."):
                    continue
                relative_dir = (current_path / dir_name).relative_to(self.codebase_dir)
                if self._is_excluded(relative_dir.as_posix(), is_dir=True):
                    continue
                kept_dirs.append(dir_name)
            dirs[:] = kept_dirs

            for file_name in sorted(files):
                if file_name.startswith("."):
                    continue
                file_path = current_path / file_name
                if self._should_include_file(file_path):
                    yield file_path

    def get_file_stats(self) -> Dict[str, int]:
        """Count discoverable files per language."""
        languages: Dict[str, int] = {}
        for file_path in self.find_files():
            language = self.language_for(file_path) or "unknown"
            languages[language] = languages.get(language, 0) + 1
        return languages
