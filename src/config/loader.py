"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. config/config.yaml  -- static defaults checked into the repo
  2. .env file           -- local developer overrides (not committed)
  3. Environment vars    -- set at deploy time

The YAML file carries values that are awkward as flat env vars, such as
the LLM provider preference order used when a chatbot names a provider
that is not configured.
"""

from pathlib import Path

import yaml

from src.config.settings import Settings


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.
        settings: Optional pre-built Settings; a fresh one is read otherwise.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "llm": {
            "default_provider": settings.default_llm_provider,
            "fallback_provider": settings.fallback_llm_provider,
            "available_providers": settings.get_available_llm_providers(),
        },
        "rag": {
            "vector_store_backend": settings.vector_store_backend,
            "similarity_metric": settings.similarity_metric,
            "chunk_target_size": settings.chunk_target_size,
            "chunk_overlap": settings.chunk_overlap,
            "top_k": settings.rag_top_k,
            "min_score": settings.rag_min_score,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def provider_preference(config: dict) -> list[str]:
    """Return configured LLM providers in YAML preference order.

    Providers listed under ``llm.preference`` come first (if configured),
    followed by any remaining configured providers.
    """
    llm = config.get("llm", {})
    available = list(llm.get("available_providers", []))
    preferred = [p for p in llm.get("preference", []) if p in available]
    return preferred + [p for p in available if p not in preferred]


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
