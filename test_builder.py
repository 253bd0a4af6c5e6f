"""Tests for slidev_runtime.builder, driven by a stand-in slidev CLI."""

import asyncio
from dataclasses import replace
from unittest import mock

import pytest

from slidev_runtime.artifacts import ArtifactLocator
from slidev_runtime.builder import TEMP_BUILD_DIRNAME, BuildOrchestrator, default_base
from slidev_runtime.errors import BuildFailure, GenerationFailure, InvalidArgument


@pytest.fixture
def locator(work_dir):
    return ArtifactLocator(work_dir)


@pytest.fixture
def builder(settings, locator, fake_command):
    return BuildOrchestrator(settings, locator, command=fake_command)


class TestBuildProject:
    """Test static builds."""

    @pytest.mark.asyncio
    async def test_build_into_default_directory(self, builder, locator, work_dir, slides_file):
        result = await builder.build_project(1, slides_file)

        assert result.output_dir == work_dir / "output" / "1"
        index = (result.output_dir / "index.html").read_text()
        assert default_base(1) + "assets/app.js" in index
        assert (result.output_dir / "assets" / "app.js").is_file()
        assert locator.resolve_build_base(1) == result.output_dir
        assert list((work_dir / TEMP_BUILD_DIRNAME).iterdir()) == []

    @pytest.mark.asyncio
    async def test_custom_output_dir_and_base(self, builder, locator, tmp_path, slides_file):
        target = tmp_path / "published" / "deck"

        result = await builder.build_project(2, slides_file, output_dir=target, base="/decks/2/")

        assert result.output_dir == target
        assert "/decks/2/assets/app.js" in (target / "index.html").read_text()
        assert locator.resolve_build_base(2) == target

    @pytest.mark.asyncio
    async def test_rebuild_replaces_previous_output(self, builder, slides_file):
        first = await builder.build_project(3, slides_file)
        (first.output_dir / "stale.txt").write_text("old")

        second = await builder.build_project(3, slides_file)

        assert second.output_dir == first.output_dir
        assert not (second.output_dir / "stale.txt").exists()
        assert (second.output_dir / "index.html").is_file()

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_build_failure(self, builder, tmp_path, slides_file, monkeypatch):
        monkeypatch.setenv("FAKE_SLIDEV_FAIL", "1")
        scratch = tmp_path / "scratch"

        with pytest.raises(BuildFailure) as exc_info:
            await builder.build_project(4, slides_file, temp_dir=scratch)

        assert exc_info.value.details["exitCode"] == 3
        assert "fake slidev failure" in exc_info.value.details["stderr"]
        assert not scratch.exists()

    @pytest.mark.asyncio
    async def test_timeout_is_build_failure(self, settings, locator, fake_command, slides_file, monkeypatch):
        monkeypatch.setenv("FAKE_SLIDEV_SLEEP", "10")
        builder = BuildOrchestrator(replace(settings, build_timeout_ms=500), locator, command=fake_command)

        with pytest.raises(BuildFailure) as exc_info:
            await builder.build_project(5, slides_file)

        assert exc_info.value.details == {"timeoutMs": 500}

    @pytest.mark.asyncio
    async def test_missing_slides_is_invalid(self, builder, tmp_path):
        with pytest.raises(InvalidArgument):
            await builder.build_project(6, tmp_path / "nope.md")

    @pytest.mark.asyncio
    async def test_failed_build_keeps_previous_output(self, builder, slides_file, monkeypatch):
        first = await builder.build_project(7, slides_file)
        monkeypatch.setenv("FAKE_SLIDEV_FAIL", "1")

        with pytest.raises(BuildFailure):
            await builder.build_project(7, slides_file)

        assert (first.output_dir / "index.html").is_file()


class TestExportPresentation:
    """Test PDF and PPTX exports."""

    @pytest.mark.asyncio
    async def test_pdf_export_to_default_path(self, builder, locator, work_dir, slides_file):
        result = await builder.export_presentation(1, slides_file)

        assert result.format == "pdf"
        assert result.output_file == work_dir / "output" / "1" / "exports" / "presentation.pdf"
        assert result.output_file.read_bytes().startswith(b"%PDF")
        assert locator.resolve_export_file(1, "pdf") == result.output_file

    @pytest.mark.asyncio
    async def test_format_is_case_insensitive_and_dark_passed(self, builder, tmp_path, slides_file):
        target = tmp_path / "out" / "deck.pptx"

        result = await builder.export_presentation(2, slides_file, format="PPTX", output_file=target, dark=True)

        assert result.format == "pptx"
        assert result.output_file == target
        assert target.read_bytes() == b"PK dark"

    @pytest.mark.asyncio
    async def test_unsupported_format_rejected_before_spawning(self, builder, slides_file):
        with mock.patch.object(asyncio, "create_subprocess_exec") as spawn:
            with pytest.raises(InvalidArgument):
                await builder.export_presentation(3, slides_file, format="csv")
        spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_output_is_generation_failure(self, builder, tmp_path, slides_file, monkeypatch):
        monkeypatch.setenv("FAKE_SLIDEV_SKIP_OUTPUT", "1")
        target = tmp_path / "deck.pdf"
        target.write_bytes(b"stale")

        with pytest.raises(GenerationFailure):
            await builder.export_presentation(4, slides_file, output_file=target)

        assert not target.exists()

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_generation_failure(self, builder, slides_file, monkeypatch):
        monkeypatch.setenv("FAKE_SLIDEV_FAIL", "1")

        with pytest.raises(GenerationFailure) as exc_info:
            await builder.export_presentation(5, slides_file)
        assert exc_info.value.details["exitCode"] == 3
