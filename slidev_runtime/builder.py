"""One-shot `slidev build` and `slidev export` runs."""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Type

from slidev_runtime.artifacts import ArtifactLocator
from slidev_runtime.binary import SlidevCommand, resolve_slidev_command
from slidev_runtime.config import Settings
from slidev_runtime.errors import BuildFailure, GenerationFailure, SlidevError
from slidev_runtime.validation import parse_export_format, require_existing_path

logger = logging.getLogger(__name__)

TEMP_BUILD_DIRNAME = ".slidev-temp-build"
STDERR_TAIL = 2000


@dataclass
class BuildResult:
    output_dir: Path


@dataclass
class ExportResult:
    output_file: Path
    format: str


def default_base(slide_id: int) -> str:
    """URL prefix the built deck is served under by this service."""
    return f"/api/build/{slide_id}/"


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


class BuildOrchestrator:
    def __init__(
        self,
        settings: Settings,
        locator: ArtifactLocator,
        command: Optional[SlidevCommand] = None,
    ) -> None:
        self._settings = settings
        self._locator = locator
        self._command = command

    def command(self) -> SlidevCommand:
        return self._command or resolve_slidev_command(self._settings)

    async def _run_cli(
        self,
        argv: Sequence[str],
        cwd: Path,
        failure: Type[SlidevError],
        action: str,
    ) -> None:
        """
        Run a Slidev CLI command to completion within the configured timeout.

        Parameters:
            argv (Sequence[str]): Full command line.
            cwd (Path): Working directory for the command.
            failure (Type[SlidevError]): Error kind raised when the run fails.
            action (str): Short label used in logs and messages ("build", "export").

        Raises:
            SlidevError: Of kind `failure`, on launch error, timeout, or nonzero exit.
        """
        timeout = self._settings.build_timeout
        logger.info("Running slidev %s: %s", action, list(argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("slidev %s could not be launched: %s", action, exc)
            raise failure(f"slidev {action} could not be launched") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error("slidev %s timed out after %.0fs", action, timeout)
            raise failure(f"slidev {action} timed out", {"timeoutMs": self._settings.build_timeout_ms})

        out_text = stdout.decode(errors="ignore")
        err_text = stderr.decode(errors="ignore")
        if out_text:
            logger.debug("slidev %s stdout: %s", action, out_text)
        if err_text:
            logger.warning("slidev %s stderr: %s", action, err_text)
        if proc.returncode != 0:
            logger.error("slidev %s failed with exit code %s", action, proc.returncode)
            raise failure(
                f"slidev {action} failed",
                {"exitCode": proc.returncode, "stderr": err_text[-STDERR_TAIL:]},
            )

    async def build_project(
        self,
        slide_id: int,
        slides_path: str | Path,
        output_dir: Optional[str | Path] = None,
        base: Optional[str] = None,
        temp_dir: Optional[str | Path] = None,
    ) -> BuildResult:
        """
        Build a deck into a static site and move it into its output directory.

        The CLI writes into a scratch directory first; only a finished build
        replaces the previous output, so readers never see a half-written tree.

        Parameters:
            slide_id (int): Slide being built.
            slides_path (str | Path): Markdown entry file.
            output_dir (Optional[str | Path]): Destination; defaults to `<work_dir>/output/<slide_id>`.
            base (Optional[str]): Public base URL; defaults to `/api/build/<slide_id>/`.
            temp_dir (Optional[str | Path]): Scratch directory; defaults to a fresh one under the work dir.

        Returns:
            BuildResult: The directory now holding the build.

        Raises:
            InvalidArgument: If `slides_path` does not exist.
            BuildFailure: If the CLI fails, times out, or produces nothing.
        """
        slides = require_existing_path(slides_path, "slidesPath")
        base = base or default_base(slide_id)
        if temp_dir is None:
            scratch = (
                self._settings.work_dir / TEMP_BUILD_DIRNAME / f"{slide_id}-{int(time.time() * 1000)}"
            )
        else:
            scratch = Path(temp_dir)
        scratch.parent.mkdir(parents=True, exist_ok=True)

        argv = self.command().argv("build", str(slides), "--base", base, "--out", str(scratch))
        started = time.monotonic()
        try:
            await self._run_cli(argv, slides.parent, BuildFailure, "build")
        except BuildFailure:
            await asyncio.to_thread(shutil.rmtree, scratch, ignore_errors=True)
            raise
        if not scratch.is_dir():
            raise BuildFailure("slidev build produced no output")

        target = Path(output_dir) if output_dir else self._locator.default_build_dir(slide_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(self._replace_dir, scratch, target)
        self._locator.remember_build(slide_id, target)

        logger.info("Built slide %s into %s in %.1fs", slide_id, target, time.monotonic() - started)
        return BuildResult(output_dir=target)

    @staticmethod
    def _replace_dir(source: Path, target: Path) -> None:
        if target.exists() or target.is_symlink():
            _remove_path(target)
        shutil.move(str(source), str(target))

    async def export_presentation(
        self,
        slide_id: int,
        slides_path: str | Path,
        format: Optional[str] = None,
        output_file: Optional[str | Path] = None,
        dark: bool = False,
    ) -> ExportResult:
        """
        Export a deck to a single PDF or PPTX file.

        The format is checked before anything touches the disk or spawns a
        process. A zero exit status alone is not trusted: the output file must
        exist afterwards.

        Raises:
            InvalidArgument: If the format is unsupported or `slides_path` is missing.
            GenerationFailure: If the CLI fails, times out, or writes no file.
        """
        fmt = parse_export_format(format)
        slides = require_existing_path(slides_path, "slidesPath")

        target = Path(output_file) if output_file else self._locator.default_export_path(slide_id, fmt)
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists() or target.is_symlink():
            await asyncio.to_thread(_remove_path, target)

        args = ["export", str(slides), "--format", fmt, "--output", str(target)]
        if dark:
            args.append("--dark")
        await self._run_cli(self.command().argv(*args), slides.parent, GenerationFailure, "export")

        if not target.exists():
            logger.error("slidev export reported success but %s is missing", target)
            raise GenerationFailure("export file was not generated")

        self._locator.remember_export(slide_id, fmt, target)
        logger.info("Exported slide %s as %s to %s", slide_id, fmt, target)
        return ExportResult(output_file=target, format=fmt)
