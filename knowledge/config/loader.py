"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. ``config/config.yaml`` -- static defaults checked into the repo
  2. ``.env`` file          -- local overrides (not committed)
  3. Environment variables  -- set at deploy time

``load_config`` reads the YAML file first, then deep-merges the values of
:class:`Settings` on top.
"""

from pathlib import Path

import yaml

from knowledge.config.settings import Settings
from knowledge.utils.errors import ConfigurationError


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.  A missing file yields
              the environment values only.
        settings: Pre-built settings; a fresh ``Settings()`` when omitted.

    Returns:
        Fully resolved configuration dictionary.

    Raises:
        ConfigurationError: If the YAML file is malformed or not a mapping.
    """
    config_path = Path(path)
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(message=f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(message=f"{config_path} must contain a mapping")
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "env": settings.app_env,
        },
        "embedding": {
            "model": settings.embedding_model,
            "dimensions": settings.embedding_dimensions,
            "batch_size": settings.embedding_batch_size,
            "batch_delay_ms": settings.embedding_batch_delay_ms,
            "max_rate_limit_retries": settings.embedding_max_rate_limit_retries,
        },
        "vector_store": {
            "backend": settings.vector_store_backend,
            "chromadb_persist_dir": settings.chromadb_persist_dir,
            "qdrant_url": settings.qdrant_url,
            "chunks_collection": settings.chunks_collection,
            "faq_collection": settings.faq_collection,
        },
        "llm": {
            "model": settings.openai_text_model,
            "enabled": settings.has_llm(),
        },
        "ingestion": {
            "default_chunking_preset": settings.default_chunking_preset,
            "embed_batch_size": settings.embed_batch_size,
            "max_content_length": settings.extraction_max_content_length,
        },
        "retrieval": {
            "chunk_score_threshold": settings.chunk_score_threshold,
            "faq_score_threshold": settings.faq_score_threshold,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
