"""Locating the Slidev CLI.

The CLI may be installed next to the service, one directory up, pointed at by
`SLIDEV_CLI_PATH`, or not installed at all; in the last case it is fetched on
demand through npx.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from slidev_runtime.config import Settings

NPX_PACKAGE = "@slidev/cli"


@dataclass(frozen=True)
class SlidevCommand:
    executable: str
    prefix: tuple[str, ...] = ()

    @property
    def transient(self) -> bool:
        return self.executable == "npx"

    def argv(self, *args: str) -> list[str]:
        return [self.executable, *self.prefix, *args]


def _bin_name() -> str:
    return "slidev.cmd" if sys.platform == "win32" else "slidev"


def override_binary(settings: Settings) -> Optional[str]:
    if settings.cli_path and Path(settings.cli_path).exists():
        return settings.cli_path
    return None


def local_binary(settings: Settings) -> Optional[str]:
    candidate = settings.work_dir / "node_modules" / ".bin" / _bin_name()
    return str(candidate) if candidate.exists() else None


def sibling_binary(settings: Settings) -> Optional[str]:
    candidate = settings.work_dir.parent / "node_modules" / ".bin" / _bin_name()
    return str(candidate) if candidate.exists() else None


Resolver = Callable[[Settings], Optional[str]]

RESOLVERS: tuple[Resolver, ...] = (override_binary, local_binary, sibling_binary)


def resolve_slidev_command(
    settings: Settings,
    resolvers: Sequence[Resolver] = RESOLVERS,
) -> SlidevCommand:
    """
    Pick the Slidev executable by trying each resolver in priority order.

    Parameters:
        settings (Settings): Service settings; resolvers read `cli_path` and `work_dir`.
        resolvers (Sequence[Resolver]): Ordered strategies returning an executable path or None.

    Returns:
        SlidevCommand: The first resolved binary, or an `npx -y @slidev/cli` invocation.
    """
    for resolver in resolvers:
        found = resolver(settings)
        if found:
            return SlidevCommand(found)
    return SlidevCommand("npx", ("-y", NPX_PACKAGE))
