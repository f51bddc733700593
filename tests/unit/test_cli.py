"""Unit tests for the ragcore command-line interface."""

from __future__ import annotations

from argparse import Namespace
from unittest.mock import patch

import pytest

from ragcore.cli.commands import (
    _handle_delete,
    _handle_ingest,
    _handle_jobs,
    _handle_retrieve,
    _handle_stats,
    _handle_validate,
    build_parser,
    main,
)


# ======================================================================
# Argument parsing
# ======================================================================


class TestBuildParser:
    def test_ingest_arguments(self) -> None:
        args = build_parser().parse_args(["ingest", "a.md", "b.md", "--force"])
        assert args.command == "ingest"
        assert args.sources == ["a.md", "b.md"]
        assert args.force is True
        assert args.all is False
        assert args.config == "config/config.yaml"

    def test_retrieve_arguments(self) -> None:
        args = build_parser().parse_args(
            ["retrieve", "fund rollforward", "--max-chunks", "3", "--strategy", "hybrid", "--source", "a.md", "--source", "b.md"]
        )
        assert args.query == "fund rollforward"
        assert args.max_chunks == 3
        assert args.strategy == "hybrid"
        assert args.source == ["a.md", "b.md"]

    def test_invalid_strategy_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["retrieve", "q", "--strategy", "telepathy"])

    def test_jobs_defaults(self) -> None:
        args = build_parser().parse_args(["jobs"])
        assert args.limit == 20
        assert args.status is None
        assert args.job_id is None

    def test_no_command_prints_help_and_exits(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1


# ======================================================================
# Handlers against a real in-memory orchestrator
# ======================================================================


class TestHandlers:
    @pytest.mark.asyncio
    async def test_ingest_then_retrieve(self, orchestrator, capsys) -> None:
        async with orchestrator:
            code = await _handle_ingest(
                Namespace(sources=["guides/fund_setup.md"], all=False, force=False), orchestrator
            )
            assert code == 0
            out = capsys.readouterr().out
            assert "guides/fund_setup.md: completed" in out

            code = await _handle_retrieve(
                Namespace(query="fund rollforward settings", max_chunks=2, strategy=None, source=None, json=False),
                orchestrator,
            )
            assert code == 0
            out = capsys.readouterr().out
            assert out.startswith("Query: fund rollforward settings")
            assert "guides/fund_setup.md" in out

    @pytest.mark.asyncio
    async def test_ingest_nothing(self, orchestrator, capsys) -> None:
        async with orchestrator:
            code = await _handle_ingest(Namespace(sources=[], all=False, force=False), orchestrator)
        assert code == 1
        assert "Nothing to ingest" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_ingest_unknown_source_exits_nonzero(self, orchestrator, capsys) -> None:
        async with orchestrator:
            code = await _handle_ingest(Namespace(sources=["missing.md"], all=False, force=False), orchestrator)
        assert code == 1
        out = capsys.readouterr().out
        assert "missing.md: failed" in out
        assert "Cause [loader]" in out

    @pytest.mark.asyncio
    async def test_system_query(self, orchestrator, capsys) -> None:
        async with orchestrator:
            await _handle_retrieve(
                Namespace(query="ping", max_chunks=None, strategy=None, source=None, json=False), orchestrator
            )
        assert "System query" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_validate_jobs_stats_delete(self, orchestrator, capsys) -> None:
        async with orchestrator:
            await _handle_ingest(Namespace(sources=[], all=True, force=False), orchestrator)
            capsys.readouterr()

            assert await _handle_validate(Namespace(source="notes/operations.txt", json=False), orchestrator) == 0
            assert "Validation of notes/operations.txt" in capsys.readouterr().out

            assert await _handle_jobs(Namespace(job_id=None, status="completed", source=None, limit=20), orchestrator) == 0
            assert capsys.readouterr().out.count("completed") == 2

            assert await _handle_jobs(Namespace(job_id="nope", status=None, source=None, limit=20), orchestrator) == 1

            assert await _handle_stats(Namespace(), orchestrator) == 0
            assert '"registered_sources": 2' in capsys.readouterr().out

            with patch("builtins.input", return_value="n"):
                assert await _handle_delete(Namespace(source="notes/operations.txt", yes=False), orchestrator) == 0
            assert "Aborted" in capsys.readouterr().out

            assert await _handle_delete(Namespace(source="notes/operations.txt", yes=True), orchestrator) == 0
            assert "of notes/operations.txt" in capsys.readouterr().out
