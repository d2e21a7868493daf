"""nestcorpus configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (NESTCORPUS_EMBEDDING_MODEL, NESTCORPUS_GENERATION_MODEL,
                             NESTCORPUS_LOG_LEVEL)
  3. Per-project nestcorpus.yaml  (in the working directory)
  4. Global ~/.nestcorpus/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".nestcorpus"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "nestcorpus.yaml"

# Does NOT match legitimate keys like max_tokens or max_input_chars.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "generation", "chunking", "retrieval", "providers", "logging"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (nestcorpus.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    max_input_chars: int = 8_000


@dataclass
class GenerationCfg:
    """Answer synthesis configuration (nestcorpus.yaml: generation:)."""

    model: str = "openai/gpt-4o-mini"
    enabled: bool = True
    max_tokens: int = 500
    temperature: float = 0.3


@dataclass
class ChunkingCfg:
    """Character window and overlap (nestcorpus.yaml: chunking:)."""

    window: int = 1_000
    overlap: int = 200


@dataclass
class RetrievalCfg:
    """Similarity search configuration (nestcorpus.yaml: retrieval:)."""

    top_k: int = 5
    relevance_threshold: float = 0.7
    snippet_chars: int = 200


@dataclass
class ProvidersCfg:
    """Shared limits for every provider call (nestcorpus.yaml: providers:).

    Attributes:
        max_concurrency: In-flight provider calls allowed process-wide.
        timeout_seconds: Per-call network timeout.
        max_attempts: Total attempts for transient failures (rate limit, network).
        backoff_base: First backoff delay in seconds; doubles per attempt.
        backoff_max: Upper bound for a single backoff delay.
    """

    max_concurrency: int = 4
    timeout_seconds: float = 15.0
    max_attempts: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 8.0


@dataclass
class LoggingCfg:
    level: str = "WARNING"
    file: str | None = None


@dataclass
class CorpusConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    providers: ProvidersCfg = field(default_factory=ProvidersCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}', ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: CorpusConfig) -> None:
    if cfg.chunking.window < 1 or not 0 <= cfg.chunking.overlap < cfg.chunking.window:
        raise ConfigError(
            f"chunking.overlap must satisfy 0 <= overlap < window "
            f"(window={cfg.chunking.window}, overlap={cfg.chunking.overlap})"
        )
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if not -1.0 <= cfg.retrieval.relevance_threshold <= 1.0:
        raise ConfigError("retrieval.relevance_threshold must be within [-1, 1]")
    if cfg.retrieval.top_k < 1:
        raise ConfigError("retrieval.top_k must be >= 1")
    if cfg.providers.max_concurrency < 1 or cfg.providers.max_attempts < 1:
        raise ConfigError("providers.max_concurrency and providers.max_attempts must be >= 1")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> CorpusConfig:
    """Build a *CorpusConfig* from a merged raw YAML dict."""
    cfg = CorpusConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            max_input_chars=int(e.get("max_input_chars", cfg.embedding.max_input_chars)),
        )

    if "generation" in data:
        g = data["generation"] or {}
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            enabled=bool(g.get("enabled", cfg.generation.enabled)),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            window=int(c.get("window", cfg.chunking.window)),
            overlap=int(c.get("overlap", cfg.chunking.overlap)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            relevance_threshold=float(
                r.get("relevance_threshold", cfg.retrieval.relevance_threshold)
            ),
            snippet_chars=int(r.get("snippet_chars", cfg.retrieval.snippet_chars)),
        )

    if "providers" in data:
        p = data["providers"] or {}
        cfg.providers = ProvidersCfg(
            max_concurrency=int(p.get("max_concurrency", cfg.providers.max_concurrency)),
            timeout_seconds=float(p.get("timeout_seconds", cfg.providers.timeout_seconds)),
            max_attempts=int(p.get("max_attempts", cfg.providers.max_attempts)),
            backoff_base=float(p.get("backoff_base", cfg.providers.backoff_base)),
            backoff_max=float(p.get("backoff_max", cfg.providers.backoff_max)),
        )

    if "logging" in data:
        lg = data["logging"] or {}
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)),
            file=lg.get("file") or cfg.logging.file,
        )

    return cfg


def _apply_env_overrides(cfg: CorpusConfig) -> CorpusConfig:
    """Apply NESTCORPUS_* environment variable overrides."""
    if model := os.environ.get("NESTCORPUS_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("NESTCORPUS_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if level := os.environ.get("NESTCORPUS_LOG_LEVEL"):
        cfg.logging.level = level
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> CorpusConfig:
    """Load and return a merged *CorpusConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *nestcorpus.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or a value
            is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    try:
        cfg = _cfg_from_dict(merged)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    cfg = _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg
