"""Unit tests for Settings and the YAML config loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from knowledge.config.loader import _deep_merge, load_config
from knowledge.config.settings import Settings
from knowledge.utils.errors import ConfigurationError
from tests.conftest import make_settings


class TestSettings:
    def test_defaults(self) -> None:
        s = Settings(_env_file=None, openai_api_key="")
        assert s.vector_store_backend == "chromadb"
        assert s.default_chunking_preset == "qa"
        assert s.chunk_score_threshold == 0.7
        assert s.faq_score_threshold == 0.75
        assert s.has_llm() is False

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VECTOR_STORE_BACKEND", "qdrant")
        monkeypatch.setenv("EMBED_BATCH_SIZE", "25")
        s = Settings(_env_file=None)
        assert s.vector_store_backend == "qdrant"
        assert s.embed_batch_size == 25

    def test_has_llm_with_key(self) -> None:
        assert make_settings(openai_api_key="sk-x").has_llm() is True


class TestLoadConfig:
    def test_yaml_merged_with_settings(self, project_root: Path) -> None:
        config = load_config(
            str(project_root / "config" / "config.yaml"),
            make_settings(chunk_score_threshold=0.6),
        )
        assert config["app"]["name"] == "knowledge-pipeline"
        assert config["retrieval"]["limit"] == 5
        assert config["retrieval"]["hybrid_keyword_weight"] == 0.3
        assert config["retrieval"]["rerank_top_n"] == 10
        assert config["retrieval"]["chunk_score_threshold"] == 0.6
        assert config["embedding"]["model"] == "text-embedding-3-small"

    def test_missing_file_yields_settings_only(self, tmp_path: Path) -> None:
        config = load_config(str(tmp_path / "absent.yaml"), make_settings())
        assert "chunking" not in config
        assert config["vector_store"]["backend"] == "chromadb"

    def test_invalid_yaml_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("retrieval: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(str(path), make_settings())

    def test_non_mapping_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(str(path), make_settings())


def test_deep_merge_nested() -> None:
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    _deep_merge(base, {"a": {"c": 20, "e": 5}, "f": 6})
    assert base == {"a": {"b": 1, "c": 20, "e": 5}, "d": 3, "f": 6}
