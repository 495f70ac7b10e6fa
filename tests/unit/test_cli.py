"""Unit tests for the knowledge CLI: argument parsing and command handlers."""

from __future__ import annotations

import io
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from knowledge.cli import knowledge as cli
from knowledge.models.knowledge import SourceType
from knowledge.models.rag import RagContext, RerankModel
from knowledge.utils.errors import ConfigurationError
from tests.conftest import make_settings

_TEXT = "\n\n".join(
    [" ".join(["Refunds are issued to the original card within thirty days."] * 6)] * 2
)


@pytest.fixture
def services(ingestion_service, rag_service, repository) -> SimpleNamespace:
    return SimpleNamespace(
        repository=repository,
        ingestion=ingestion_service,
        rag=rag_service,
        aclose=AsyncMock(),
    )


def _parse(*argv: str):
    return cli._build_parser().parse_args(list(argv))


class TestParser:
    def test_ingest_text_defaults(self) -> None:
        args = _parse("ingest-text", "--tenant", "acme", "--category", "billing")
        assert args.command == "ingest-text"
        assert args.name == "Pasted text"
        assert args.category_name == "billing"
        assert args.text is None
        assert args.config == "config/config.yaml"

    def test_search_filters_accumulate(self) -> None:
        args = _parse(
            "search", "--tenant", "acme", "refunds", "--source", "a", "--source", "b", "--no-rerank"
        )
        assert args.query == "refunds"
        assert args.source == ["a", "b"]
        assert args.no_rerank is True
        assert args.rerank_model == RerankModel.CROSS_ENCODER.value

    def test_tenant_required(self) -> None:
        with pytest.raises(SystemExit):
            _parse("stats")

    def test_unknown_preset_rejected(self) -> None:
        with pytest.raises(SystemExit):
            _parse("ingest-url", "--tenant", "acme", "--url", "https://x", "--preset", "huge")


class TestSearchOptions:
    def test_config_defaults(self) -> None:
        args = _parse("search", "--tenant", "acme", "q")
        config = {
            "retrieval": {
                "limit": 7,
                "chunk_score_threshold": 0.4,
                "max_expansions": 1,
                "rerank_top_n": 4,
            }
        }

        options = cli._search_options(args, config)

        assert options.limit == 7
        assert options.min_score == 0.4
        assert options.max_expansions == 1
        assert options.rerank_top_n == 4
        assert options.sources is None

    def test_arguments_override_config(self) -> None:
        args = _parse(
            "search", "--tenant", "acme", "q", "--limit", "2", "--min-score", "0",
            "--no-expand", "--rerank-model", "keyword", "--category", "billing",
        )

        options = cli._search_options(args, {"retrieval": {"limit": 7}})

        assert options.limit == 2
        assert options.min_score == 0.0
        assert options.expand_query is False
        assert options.rerank_model is RerankModel.KEYWORD
        assert options.categories == ["billing"]


class TestHandlers:
    @pytest.mark.asyncio
    async def test_ingest_text(self, services, repository, capsys) -> None:
        args = _parse("ingest-text", "--tenant", "acme", "--name", "Refunds", "--text", _TEXT, "--quiet")

        assert await cli._handle_ingest_text(args, services) == 0

        assert "Ingestion complete" in capsys.readouterr().out
        (source,) = await repository.list_sources("acme")
        assert source.name == "Refunds"
        assert source.source_type == SourceType.TEXT

    @pytest.mark.asyncio
    async def test_ingest_text_from_stdin(self, services, monkeypatch, capsys) -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO(_TEXT))
        args = _parse("ingest-text", "--tenant", "acme")

        assert await cli._handle_ingest_text(args, services) == 0
        out = capsys.readouterr().out
        assert f"Ingesting text: Pasted text ({len(_TEXT)} chars)" in out
        assert "[chunking  ]" in out

    @pytest.mark.asyncio
    async def test_ingest_empty_text_fails(self, services, capsys) -> None:
        args = _parse("ingest-text", "--tenant", "acme", "--text", "  ", "--quiet")
        assert await cli._handle_ingest_text(args, services) == 1
        assert "Ingestion failed" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_ingest_file(self, services, repository, tmp_path) -> None:
        path = tmp_path / "refunds.md"
        path.write_text(f"# Refunds\n\n{_TEXT}\n", encoding="utf-8")
        args = _parse("ingest-file", "--tenant", "acme", "--file", str(path), "--quiet")

        assert await cli._handle_ingest_file(args, services) == 0

        (source,) = await repository.list_sources("acme")
        assert source.name == "refunds.md"
        assert source.source_type == SourceType.FILE

    @pytest.mark.asyncio
    async def test_ingest_missing_file(self, services, tmp_path, capsys) -> None:
        args = _parse("ingest-file", "--tenant", "acme", "--file", str(tmp_path / "nope.pdf"))
        assert await cli._handle_ingest_file(args, services) == 1
        assert "file not found" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_add_faq_then_search(self, services, capsys) -> None:
        add = _parse(
            "add-faq", "--tenant", "acme", "--question", "What is the refund policy?",
            "--answer", "Refunds within thirty days.",
        )
        assert await cli._handle_add_faq(add, services) == 0

        search = _parse("search", "--tenant", "acme", "refund policy", "--min-score", "0.1", "--no-expand")
        assert await cli._handle_search(search, services, {}) == 0

        out = capsys.readouterr().out
        assert "FAQ indexed:" in out
        assert "FAQ  " in out
        assert "What is the refund policy?" in out

    @pytest.mark.asyncio
    async def test_search_prints_context(self, services, capsys) -> None:
        ingest = _parse("ingest-text", "--tenant", "acme", "--name", "Refunds", "--text", _TEXT, "--quiet")
        await cli._handle_ingest_text(ingest, services)
        capsys.readouterr()

        search = _parse(
            "search", "--tenant", "acme", "refund card", "--min-score", "0.1", "--no-expand", "--context"
        )
        assert await cli._handle_search(search, services, {}) == 0

        out = capsys.readouterr().out
        assert "## Knowledge Base" in out
        assert "(Source: Refunds)" in out

    @pytest.mark.asyncio
    async def test_hybrid_weight_from_config(self) -> None:
        rag = MagicMock()
        rag.hybrid_search = AsyncMock(return_value=RagContext())
        services = SimpleNamespace(rag=rag)
        args = _parse("hybrid-search", "--tenant", "acme", "refunds")

        await cli._handle_search(args, services, {"retrieval": {"hybrid_keyword_weight": 0.6}})

        assert rag.hybrid_search.call_args.args[3] == 0.6

    @pytest.mark.asyncio
    async def test_hybrid_weight_argument(self) -> None:
        rag = MagicMock()
        rag.hybrid_search = AsyncMock(return_value=RagContext())
        args = _parse("hybrid-search", "--tenant", "acme", "refunds", "--keyword-weight", "0.1")

        await cli._handle_search(args, SimpleNamespace(rag=rag), {})

        assert rag.hybrid_search.call_args.args[3] == 0.1

    @pytest.mark.asyncio
    async def test_stats(self, services, capsys) -> None:
        ingest = _parse("ingest-text", "--tenant", "acme", "--text", _TEXT, "--quiet")
        await cli._handle_ingest_text(ingest, services)

        assert await cli._handle_stats(_parse("stats", "--tenant", "acme"), services) == 0

        out = capsys.readouterr().out
        assert "Indexed sources:  1" in out
        assert "text" in out

    @pytest.mark.asyncio
    async def test_reprocess_faqs(self, services, capsys) -> None:
        add = _parse("add-faq", "--tenant", "acme", "--question", "Q?", "--answer", "A.")
        await cli._handle_add_faq(add, services)

        code = await cli._handle_reprocess_faqs(_parse("reprocess-faqs", "--tenant", "acme"), services)

        assert code == 0
        out = capsys.readouterr().out
        assert "100%  Processed 1/1 FAQs" in out
        assert "FAQs processed: 1, failed: 0" in out

    @pytest.mark.asyncio
    async def test_migrate_nothing(self, services, capsys) -> None:
        args = _parse("migrate", "--tenant", "acme", "--source-id", "missing")
        assert await cli._handle_migrate(args, services) == 0
        assert "Migrated: 0, errors: 0" in capsys.readouterr().out


class TestRun:
    @pytest.mark.asyncio
    async def test_dispatch_and_close(self, services) -> None:
        with patch.object(cli, "build_knowledge_services", return_value=services):
            code = await cli._run(_parse("stats", "--tenant", "acme"), make_settings(), {})

        assert code == 0
        services.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_knowledge_error_exits_one(self, capsys) -> None:
        repository = MagicMock()
        repository.initialize = AsyncMock(side_effect=ConfigurationError(message="bad database"))
        broken = SimpleNamespace(repository=repository, aclose=AsyncMock())

        with patch.object(cli, "build_knowledge_services", return_value=broken):
            code = await cli._run(_parse("stats", "--tenant", "acme"), make_settings(), {})

        assert code == 1
        assert "bad database" in capsys.readouterr().err
        broken.aclose.assert_awaited_once()


class TestMain:
    @pytest.fixture(autouse=True)
    def _keep_logging_config(self):
        with patch.object(cli, "configure_logging"):
            yield

    def test_no_command_exits_one(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 1
        assert "usage:" in capsys.readouterr().out

    def test_invalid_config_exits_one(self, tmp_path, capsys) -> None:
        config = tmp_path / "config.yaml"
        config.write_text("retrieval: [unclosed", encoding="utf-8")

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--config", str(config), "stats", "--tenant", "acme"])

        assert exc_info.value.code == 1
        assert "Invalid YAML" in capsys.readouterr().err

    def test_exit_code_from_run(self, tmp_path) -> None:
        run = AsyncMock(return_value=0)
        with patch.object(cli, "_run", run):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["--config", str(tmp_path / "absent.yaml"), "stats", "--tenant", "acme"])

        assert exc_info.value.code == 0
        args, _settings, config = run.call_args.args
        assert args.tenant == "acme"
        assert "retrieval" in config
