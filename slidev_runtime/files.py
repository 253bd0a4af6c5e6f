"""Read-only access to build and export artifacts, confined to each slide's build directory."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from slidev_runtime.artifacts import ArtifactLocator
from slidev_runtime.errors import InvalidArgument, NotFound, PathTraversal
from slidev_runtime.validation import parse_export_format

logger = logging.getLogger(__name__)


@dataclass
class BuildFileEntry:
    name: str
    path: str
    directory: bool
    size: int
    modified_at: int


class BuildFileServer:
    def __init__(self, locator: ArtifactLocator) -> None:
        self.locator = locator

    def _base_dir(self, slide_id: int) -> Path:
        base = self.locator.resolve_build_base(slide_id)
        if base is None:
            raise NotFound(f"no build output for slideId {slide_id}")
        return base.resolve()

    def _resolve(self, slide_id: int, relative_path: str) -> Tuple[Path, Path]:
        """
        Resolve a caller-supplied path inside the slide's build directory.

        One leading slash is stripped so `/index.html` and `index.html` mean the
        same file. The resolved target must be the base directory itself or lie
        beneath it.

        Parameters:
            slide_id (int): Slide whose build output is the sandbox root.
            relative_path (str): Path relative to the build root; empty means the root.

        Returns:
            Tuple[Path, Path]: The resolved base directory and target path.

        Raises:
            NotFound: If the slide has no build output.
            PathTraversal: If the target escapes the base directory.
            InvalidArgument: If the path cannot be represented on this filesystem.
        """
        base = self._base_dir(slide_id)
        relative = relative_path[1:] if relative_path.startswith("/") else relative_path
        try:
            target = (base / relative).resolve() if relative else base
        except (OSError, ValueError) as exc:
            raise InvalidArgument(f"invalid path: {relative_path}") from exc
        if target != base and base not in target.parents:
            logger.warning("Rejected path outside build output of slide %s: %r", slide_id, relative_path)
            raise PathTraversal(f"illegal path: {relative_path}")
        return base, target

    def read_asset(self, slide_id: int, asset_path: str) -> bytes:
        _, target = self._resolve(slide_id, asset_path)
        if not target.exists():
            raise NotFound(f"file not found: {asset_path}")
        if target.is_dir():
            raise InvalidArgument(f"path is a directory: {asset_path}")
        return target.read_bytes()

    def list_entries(self, slide_id: int, relative_path: str = "") -> List[BuildFileEntry]:
        """
        List the direct children of a directory in the slide's build output.

        Returned paths are relative to the build root and always use forward
        slashes; modification times are epoch milliseconds.
        """
        base, target = self._resolve(slide_id, relative_path)
        if not target.exists():
            raise NotFound(f"directory not found: {relative_path or '.'}")
        if not target.is_dir():
            raise InvalidArgument(f"path is not a directory: {relative_path}")

        entries: List[BuildFileEntry] = []
        for child in sorted(target.iterdir(), key=lambda p: p.name):
            try:
                stat = child.stat()
            except OSError:
                # dangling symlink: describe the link itself
                stat = child.lstat()
            entries.append(
                BuildFileEntry(
                    name=child.name,
                    path=child.relative_to(base).as_posix(),
                    directory=child.is_dir(),
                    size=stat.st_size,
                    modified_at=stat.st_mtime_ns // 1_000_000,
                )
            )
        return entries

    def read_export_file(self, slide_id: int, fmt: str) -> bytes:
        fmt = parse_export_format(fmt)
        path = self.locator.resolve_export_file(slide_id, fmt)
        if path is None or not path.is_file():
            raise NotFound(f"no {fmt} export for slideId {slide_id}")
        return path.read_bytes()
