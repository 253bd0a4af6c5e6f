"""Where build and export artifacts live on disk.

The filesystem is authoritative. The maps below only remember where the last
build or export for a slide was written; an entry is trusted while its path
exists and is otherwise replaced by a probe of the default location.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Tuple

OUTPUT_DIRNAME = "output"
EXPORTS_DIRNAME = "exports"


class ArtifactLocator:
    def __init__(self, work_dir: Path) -> None:
        self.work_dir = Path(work_dir)
        self._builds: Dict[int, Path] = {}
        self._exports: Dict[Tuple[int, str], Path] = {}

    def default_build_dir(self, slide_id: int) -> Path:
        return self.work_dir / OUTPUT_DIRNAME / str(slide_id)

    def default_export_path(self, slide_id: int, fmt: str) -> Path:
        return self.default_build_dir(slide_id) / EXPORTS_DIRNAME / f"presentation.{fmt}"

    def remember_build(self, slide_id: int, output_dir: Path) -> None:
        self._builds[slide_id] = Path(output_dir)

    def remember_export(self, slide_id: int, fmt: str, output_file: Path) -> None:
        self._exports[(slide_id, fmt)] = Path(output_file)

    def resolve_build_base(self, slide_id: int) -> Optional[Path]:
        cached = self._builds.get(slide_id)
        if cached is not None and cached.exists():
            return cached
        fallback = self.default_build_dir(slide_id)
        if fallback.exists():
            self._builds[slide_id] = fallback
            return fallback
        return None

    def resolve_export_file(self, slide_id: int, fmt: str) -> Optional[Path]:
        key = (slide_id, fmt)
        cached = self._exports.get(key)
        if cached is not None and cached.exists():
            return cached
        fallback = self.default_export_path(slide_id, fmt)
        if fallback.exists():
            self._exports[key] = fallback
            return fallback
        return None

    def clear(self) -> None:
        self._builds.clear()
        self._exports.clear()
