"""kcompiler configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (KCOMPILER_GENERATION_MODEL, KCOMPILER_EMBEDDING_MODEL,
                             KCOMPILER_DEBUG, KCOMPILER_LOG_LEVEL, KCOMPILER_BROKER_URL)
  3. Per-project kcompiler.yaml  (next to .kcompiler.db)
  4. Global ~/.kcompiler/config.yaml  (model defaults only; no API keys)
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".kcompiler"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "kcompiler.yaml"

DEFAULT_DB_NAME: str = ".kcompiler.db"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like min_clean_tokens or max_tokens.
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
    [
        "embedding",
        "generation",
        "normalize",
        "chunking",
        "classify",
        "embed",
        "worker",
        "logging",
        "debug",
    ]
)

_TRUTHY = {"1", "true", "yes", "on"}


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
    """Embedding model configuration (kcompiler.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100


@dataclass
class GenerationCfg:
    """LLM generation configuration (kcompiler.yaml: generation:)."""

    model: str = "openai/gpt-4o-mini"
    temperature: float = 0.0
    num_retries: int = 3


@dataclass
class NormalizeCfg:
    """Candidate extraction + gating (kcompiler.yaml: normalize:)."""

    max_candidates: int = 20
    min_gate_words: int = 6


def _default_role_min_words() -> dict[str, int]:
    return {
        "metric": 6,
        "definition": 8,
        "heuristic": 8,
        "instruction": 10,
        "strategic_claim": 12,
        "causal_claim": 12,
        "default": 12,
    }


@dataclass
class ChunkingCfg:
    """Raw-fallback preflight and per-role word floors (kcompiler.yaml: chunking:)."""

    min_clean_chars: int = 80
    min_clean_tokens: int = 20
    role_min_words: dict[str, int] = field(default_factory=_default_role_min_words)

    def min_words_for(self, role: str | None) -> int:
        return int(self.role_min_words.get(role or "", self.role_min_words.get("default", 12)))


@dataclass
class ClassifyCfg:
    """Classifier batching (kcompiler.yaml: classify:)."""

    batch_size: int = 20


@dataclass
class EmbedCfg:
    """Embedder polling and retry delays (kcompiler.yaml: embed:)."""

    max_wait_attempts: int = 15
    wait_delay: float = 10.0
    tx_retry_delay: float = 30.0


@dataclass
class WorkerCfg:
    """Celery worker and broker (kcompiler.yaml: worker:).

    An empty ``broker_url`` means a SQLite broker file next to the project
    database (see kcompiler.celery_app.broker_url_for).
    """

    concurrency: int = 4
    pool: str = "threads"
    broker_url: str = ""
    recover_on_start: bool = True
    stale_after_minutes: int = 30
    recover_limit: int = 100


@dataclass
class LoggingCfg:
    """Logging + run-log destination (kcompiler.yaml: logging:)."""

    level: str = "INFO"
    run_log_dir: str = ".kcompiler/runs"


@dataclass
class KcompilerConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    normalize: NormalizeCfg = field(default_factory=NormalizeCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    classify: ClassifyCfg = field(default_factory=ClassifyCfg)
    embed: EmbedCfg = field(default_factory=EmbedCfg)
    worker: WorkerCfg = field(default_factory=WorkerCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)
    debug: bool = False


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
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


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


def _cfg_from_dict(data: dict[str, Any]) -> KcompilerConfig:
    """Build a *KcompilerConfig* from a merged raw YAML dict."""
    cfg = KcompilerConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
        )

    if "generation" in data:
        g = data["generation"] or {}
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
            num_retries=int(g.get("num_retries", cfg.generation.num_retries)),
        )

    if "normalize" in data:
        n = data["normalize"] or {}
        cfg.normalize = NormalizeCfg(
            max_candidates=int(n.get("max_candidates", cfg.normalize.max_candidates)),
            min_gate_words=int(n.get("min_gate_words", cfg.normalize.min_gate_words)),
        )

    if "chunking" in data:
        ch = data["chunking"] or {}
        role_min = _default_role_min_words()
        role_min.update({str(k): int(v) for k, v in (ch.get("role_min_words") or {}).items()})
        cfg.chunking = ChunkingCfg(
            min_clean_chars=int(ch.get("min_clean_chars", cfg.chunking.min_clean_chars)),
            min_clean_tokens=int(ch.get("min_clean_tokens", cfg.chunking.min_clean_tokens)),
            role_min_words=role_min,
        )

    if "classify" in data:
        c = data["classify"] or {}
        cfg.classify = ClassifyCfg(batch_size=int(c.get("batch_size", cfg.classify.batch_size)))

    if "embed" in data:
        em = data["embed"] or {}
        cfg.embed = EmbedCfg(
            max_wait_attempts=int(em.get("max_wait_attempts", cfg.embed.max_wait_attempts)),
            wait_delay=float(em.get("wait_delay", cfg.embed.wait_delay)),
            tx_retry_delay=float(em.get("tx_retry_delay", cfg.embed.tx_retry_delay)),
        )

    if "worker" in data:
        w = data["worker"] or {}
        cfg.worker = WorkerCfg(
            concurrency=max(1, int(w.get("concurrency", cfg.worker.concurrency))),
            pool=str(w.get("pool", cfg.worker.pool)),
            broker_url=str(w.get("broker_url") or cfg.worker.broker_url),
            recover_on_start=_as_bool(w.get("recover_on_start", cfg.worker.recover_on_start)),
            stale_after_minutes=max(
                1, int(w.get("stale_after_minutes", cfg.worker.stale_after_minutes))
            ),
            recover_limit=max(1, int(w.get("recover_limit", cfg.worker.recover_limit))),
        )

    if "logging" in data:
        lg = data["logging"] or {}
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)).upper(),
            run_log_dir=str(lg.get("run_log_dir", cfg.logging.run_log_dir)),
        )

    if "debug" in data:
        cfg.debug = _as_bool(data["debug"])

    return cfg


def _apply_env_overrides(cfg: KcompilerConfig) -> KcompilerConfig:
    """Apply KCOMPILER_* environment variable overrides."""
    if model := os.environ.get("KCOMPILER_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("KCOMPILER_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if debug := os.environ.get("KCOMPILER_DEBUG"):
        cfg.debug = _as_bool(debug)
    if level := os.environ.get("KCOMPILER_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    if broker := os.environ.get("KCOMPILER_BROKER_URL"):
        cfg.worker.broker_url = broker
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> KcompilerConfig:
    """Load and return a merged *KcompilerConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *kcompiler.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *KcompilerConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields.
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

    cfg = _cfg_from_dict(merged)
    return _apply_env_overrides(cfg)


def write_project_config(project_dir: Path) -> Path:
    """Write a starter ``kcompiler.yaml`` into *project_dir* unless one exists.

    Returns:
        Path to the project config file.
    """
    target = project_dir / _PROJECT_CONFIG_NAME
    if not target.exists():
        content = (
            "# kcompiler project configuration.\n"
            "# API keys belong in environment variables, e.g.\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "generation:\n"
            "  model: openai/gpt-4o-mini\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "  dimensions: 1536\n"
            "\n"
            "worker:\n"
            "  concurrency: 4\n"
            "  pool: threads\n"
        )
        target.write_text(content, encoding="utf-8")
    return target
