"""
Configuration Loader for Ryn.

Implements a layered configuration system:
    hardcoded defaults < .ryn.yml < env vars < CLI args

Usage:
    from config_loader import build_unified_config, validate_config
    config = build_unified_config(cli_args=args, repo_path="./app")
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml

from controls import ALL_CONTROL_IDS

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".ryn.yml"

# ---------------------------------------------------------------------------
# Default configuration
# ---------------------------------------------------------------------------

def get_default_config() -> Dict[str, Any]:
    """Return all configuration parameters with their defaults.

    This is the lowest-priority layer. Every configurable key must appear
    here so that downstream code never needs to guard against missing keys.
    """
    return {
        # -- AI --
        "ai_provider": "auto",
        "model": "auto",
        "anthropic_api_key": "",
        "openai_api_key": "",
        "ollama_endpoint": "",

        # -- Scan --
        "scan_mode": "smart",
        "enabled_controls": list(ALL_CONTROL_IDS),
        "cost_limit": 1.0,
        "smart_keywords": [
            "auth", "login", "password", "secret", "token",
            "sql", "db", "api", "request", "session",
        ],
        "max_file_size": 1024 * 1024,

        # -- Dedup --
        "dedup_line_window": 3,
        "dedup_match_control": True,

        # -- Reasoning service --
        "llm_max_retries": 2,
        "llm_retry_max_wait": 30.0,
        "llm_timeout": 120.0,
        "llm_max_tokens": 4096,
        "llm_concurrency": 3,
        "llm_requests_per_minute": 50,

        # -- Fix generation --
        "ai_fixes": False,

        # -- Storage / output --
        "database_path": str(Path("~") / ".ryn" / "ryn.db"),
        "log_level": "INFO",
    }

# ---------------------------------------------------------------------------
# Flatten nested YAML -> flat config dict
# ---------------------------------------------------------------------------

# section -> {yaml key: config key}
_SECTION_KEY_MAP: Dict[str, Dict[str, str]] = {
    "ai": {
        "provider": "ai_provider",
        "model": "model",
        "ollama_endpoint": "ollama_endpoint",
    },
    "scan": {
        "mode": "scan_mode",
        "controls": "enabled_controls",
        "enabled_controls": "enabled_controls",
        "cost_limit": "cost_limit",
        "smart_keywords": "smart_keywords",
        "max_file_size": "max_file_size",
    },
    "dedup": {
        "line_window": "dedup_line_window",
        "match_control": "dedup_match_control",
    },
    "fix": {
        "use_ai": "ai_fixes",
    },
    "storage": {
        "database_path": "database_path",
    },
}

# llm section keys map onto llm_{key}
_PREFIXED_SECTIONS = {"llm": "llm_"}


def flatten_config(nested: dict) -> Dict[str, Any]:
    """Convert a nested ``.ryn.yml`` dict to a flat config dict.

    Mapping rules:
    - ``nested["ai"]["provider"]``     -> ``ai_provider``
    - ``nested["scan"]["mode"]``       -> ``scan_mode``
    - ``nested["scan"]["controls"]``   -> ``enabled_controls``
    - ``nested["dedup"]["line_window"]`` -> ``dedup_line_window``
    - ``nested["llm"][key]``           -> ``llm_{key}``
    - ``nested["storage"]["database_path"]`` -> ``database_path``
    - ``nested["fix"]["use_ai"]``      -> ``ai_fixes``
    - Top-level keys that are already flat config keys pass through.

    API keys are never read from the project file. Only non-None values are
    included.
    """
    flat: Dict[str, Any] = {}
    known = get_default_config()

    for section, mapping in _SECTION_KEY_MAP.items():
        block = nested.get(section)
        if not isinstance(block, dict):
            continue
        for key, value in block.items():
            if value is None:
                continue
            if key in mapping:
                flat[mapping[key]] = value
            else:
                logger.warning("Ignoring unknown key '%s.%s' in %s", section, key, CONFIG_FILENAME)

    for section, prefix in _PREFIXED_SECTIONS.items():
        block = nested.get(section)
        if isinstance(block, dict):
            for key, value in block.items():
                if value is not None:
                    flat[f"{prefix}{key}"] = value

    for key, value in nested.items():
        if key in _SECTION_KEY_MAP or key in _PREFIXED_SECTIONS or value is None:
            continue
        if key in ("anthropic_api_key", "openai_api_key"):
            logger.warning("Ignoring %s in %s; set it in the environment", key, CONFIG_FILENAME)
        elif key in known:
            flat[key] = value

    return flat

# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------

# Each entry: (env var names tuple, config key, type tag)
# The first env var found wins.
_ENV_MAPPINGS: List[tuple] = [
    # AI provider
    (("RYN_AI_PROVIDER", "AI_PROVIDER"),            "ai_provider",          "str"),
    (("RYN_MODEL",),                                "model",                "str"),
    (("ANTHROPIC_API_KEY",),                        "anthropic_api_key",    "str"),
    (("OPENAI_API_KEY",),                           "openai_api_key",       "str"),
    (("OLLAMA_ENDPOINT",),                          "ollama_endpoint",      "str"),

    # Scan
    (("RYN_SCAN_MODE",),                            "scan_mode",            "str"),
    (("RYN_ENABLED_CONTROLS",),                     "enabled_controls",     "list"),
    (("RYN_COST_LIMIT",),                           "cost_limit",           "float"),
    (("RYN_SMART_KEYWORDS",),                       "smart_keywords",       "list"),
    (("RYN_MAX_FILE_SIZE",),                        "max_file_size",        "int"),

    # Dedup
    (("RYN_DEDUP_LINE_WINDOW",),                    "dedup_line_window",    "int"),
    (("RYN_DEDUP_MATCH_CONTROL",),                  "dedup_match_control",  "bool"),

    # Reasoning service
    (("RYN_LLM_MAX_RETRIES",),                      "llm_max_retries",      "int"),
    (("RYN_LLM_RETRY_MAX_WAIT",),                   "llm_retry_max_wait",   "float"),
    (("RYN_LLM_TIMEOUT",),                          "llm_timeout",          "float"),
    (("RYN_LLM_MAX_TOKENS",),                       "llm_max_tokens",       "int"),
    (("RYN_LLM_CONCURRENCY",),                      "llm_concurrency",      "int"),
    (("RYN_LLM_REQUESTS_PER_MINUTE",),              "llm_requests_per_minute", "int"),

    # Fix generation
    (("RYN_AI_FIXES",),                             "ai_fixes",             "bool"),

    # Storage / output
    (("RYN_DATABASE_PATH",),                        "database_path",        "str"),
    (("RYN_LOG_LEVEL",),                            "log_level",            "str"),
]


def _coerce(raw: str, type_tag: str) -> Any:
    """Convert a raw env-var string to the appropriate Python type."""
    if type_tag == "bool":
        return raw.lower() in ("true", "1", "yes")
    if type_tag == "int":
        return int(raw)
    if type_tag == "float":
        return float(raw)
    if type_tag == "list":
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw


def load_env_overrides() -> Dict[str, Any]:
    """Load configuration values from explicitly-set environment variables.

    Only variables that are **present** in ``os.environ`` are returned, so
    defaults and project values are not accidentally overwritten.
    """
    overrides: Dict[str, Any] = {}

    for env_names, config_key, type_tag in _ENV_MAPPINGS:
        for env_name in env_names:
            if env_name in os.environ:
                try:
                    overrides[config_key] = _coerce(os.environ[env_name], type_tag)
                except (ValueError, TypeError) as exc:
                    logger.warning(
                        "Ignoring env var %s: could not convert %r to %s (%s)",
                        env_name, os.environ[env_name], type_tag, exc,
                    )
                break  # first match wins

    return overrides

# ---------------------------------------------------------------------------
# CLI argument extraction
# ---------------------------------------------------------------------------

# Mapping: argparse attribute -> config key
_CLI_ATTR_MAP: Dict[str, str] = {
    "provider": "ai_provider",
    "model": "model",
    "mode": "scan_mode",
    "controls": "enabled_controls",
    "cost_limit": "cost_limit",
    "database": "database_path",
    "concurrency": "llm_concurrency",
    "max_retries": "llm_max_retries",
    "dedup_window": "dedup_line_window",
    "log_level": "log_level",
    "ai_fixes": "ai_fixes",
}


def extract_cli_overrides(args: Any) -> Dict[str, Any]:
    """Extract explicitly-set CLI arguments into a flat config dict.

    Only attributes whose value is not ``None`` are included, so that
    argparse defaults never shadow lower layers.
    """
    if args is None:
        return {}

    overrides: Dict[str, Any] = {}
    for attr, config_key in _CLI_ATTR_MAP.items():
        value = getattr(args, attr, None)
        if value is not None:
            overrides[config_key] = value
    return overrides

# ---------------------------------------------------------------------------
# Merge helpers
# ---------------------------------------------------------------------------

def deep_merge(base: dict, override: dict) -> dict:
    """Merge *override* into *base*. Only non-None override values win.

    This operates on **flat** dicts (no recursive descent).
    """
    merged = dict(base)
    for key, value in override.items():
        if value is not None:
            merged[key] = value
    return merged


def _as_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item).strip() for item in value or [] if str(item).strip()]

# ---------------------------------------------------------------------------
# .ryn.yml loader
# ---------------------------------------------------------------------------

def load_project_config(repo_path: str) -> Dict[str, Any]:
    """Load ``.ryn.yml`` from *repo_path* and return a flat config dict.

    Returns an empty dict if the file does not exist.
    """
    yml_path = Path(repo_path) / CONFIG_FILENAME
    if not yml_path.is_file():
        return {}

    logger.info("Loading %s from %s", CONFIG_FILENAME, yml_path)
    with open(yml_path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, dict):
        logger.warning("Ignoring %s: expected a mapping at the top level", yml_path)
        return {}
    return flatten_config(raw)

# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def build_unified_config(cli_args: Any = None, repo_path: str = ".") -> Dict[str, Any]:
    """Build a fully-merged configuration dict.

    Layer precedence (last wins):
        1. Hard-coded defaults          (``get_default_config()``)
        2. ``.ryn.yml``                 (project-level overrides)
        3. Environment variables        (``load_env_overrides()``)
        4. CLI arguments                (``extract_cli_overrides()``)

    List-valued keys (``enabled_controls``, ``smart_keywords``) accept either
    a YAML list or a comma separated string at every layer.
    """
    # -- Layer 1: defaults --
    config = get_default_config()

    # -- Layer 2: .ryn.yml --
    project = load_project_config(repo_path)
    if project:
        config = deep_merge(config, project)
        logger.info("Applied %s overrides (%d keys)", CONFIG_FILENAME, len(project))

    # -- Layer 3: env vars --
    env_overrides = load_env_overrides()
    if env_overrides:
        config = deep_merge(config, env_overrides)
        logger.debug("Applied %d env-var overrides", len(env_overrides))

    # -- Layer 4: CLI args --
    cli_overrides = extract_cli_overrides(cli_args)
    if cli_overrides:
        config = deep_merge(config, cli_overrides)
        logger.debug("Applied %d CLI overrides", len(cli_overrides))

    config["enabled_controls"] = _as_list(config["enabled_controls"])
    config["smart_keywords"] = [k.lower() for k in _as_list(config["smart_keywords"])]
    return config

# ---------------------------------------------------------------------------
# Configuration validation
# ---------------------------------------------------------------------------

_VALID_AI_PROVIDERS = {"auto", "anthropic", "openai", "ollama"}
_VALID_SCAN_MODES = {"regex_only", "smart", "analyze_all"}
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_config(config: Dict[str, Any]) -> List[str]:
    """Validate a configuration dict and return a list of warnings/errors.

    Returns
    -------
    list[str]
        Human-readable messages prefixed ``ERROR:`` or ``WARNING:``. An
        empty list means the config is valid.
    """
    issues: List[str] = []

    # -- API key requirements per provider --
    provider = config.get("ai_provider", "auto")
    scan_mode = config.get("scan_mode", "smart")
    uses_ai = scan_mode != "regex_only"
    if provider == "anthropic" and not config.get("anthropic_api_key"):
        issues.append("ERROR: ai_provider is 'anthropic' but ANTHROPIC_API_KEY is not set.")
    if provider == "openai" and not config.get("openai_api_key"):
        issues.append("ERROR: ai_provider is 'openai' but OPENAI_API_KEY is not set.")
    if provider == "ollama" and not config.get("ollama_endpoint"):
        issues.append(
            "WARNING: ai_provider is 'ollama' but OLLAMA_ENDPOINT is not set. "
            "Defaulting to http://localhost:11434."
        )
    if provider == "auto" and uses_ai:
        has_any = (
            config.get("anthropic_api_key")
            or config.get("openai_api_key")
            or config.get("ollama_endpoint")
        )
        if not has_any:
            issues.append(
                f"WARNING: scan_mode is '{scan_mode}' but no API keys or endpoints are "
                "configured. The scan will fall back to regex_only."
            )

    # -- Valid enum values --
    if provider not in _VALID_AI_PROVIDERS:
        issues.append(
            f"ERROR: Invalid ai_provider '{provider}'. "
            f"Must be one of: {', '.join(sorted(_VALID_AI_PROVIDERS))}"
        )
    if scan_mode not in _VALID_SCAN_MODES:
        issues.append(
            f"ERROR: Invalid scan_mode '{scan_mode}'. "
            f"Must be one of: {', '.join(sorted(_VALID_SCAN_MODES))}"
        )
    log_level = str(config.get("log_level", "INFO")).upper()
    if log_level not in _VALID_LOG_LEVELS:
        issues.append(f"ERROR: Invalid log_level '{config.get('log_level')}'.")

    controls = _as_list(config.get("enabled_controls", []))
    unknown = [c for c in controls if c not in ALL_CONTROL_IDS]
    if unknown:
        issues.append(
            f"ERROR: Unknown control id(s) {', '.join(unknown)}. "
            f"Must be among: {', '.join(ALL_CONTROL_IDS)}"
        )
    if not controls:
        issues.append("WARNING: enabled_controls is empty; every control will be checked.")

    # -- Numeric range checks --
    checks = (
        ("cost_limit", 0, "ERROR: cost_limit must be >= 0."),
        ("dedup_line_window", 0, "ERROR: dedup_line_window must be >= 0."),
        ("llm_max_retries", 0, "ERROR: llm_max_retries must be >= 0."),
        ("llm_retry_max_wait", 0, "ERROR: llm_retry_max_wait must be >= 0."),
        ("llm_timeout", 1, "ERROR: llm_timeout must be >= 1 second."),
        ("llm_max_tokens", 1, "ERROR: llm_max_tokens must be >= 1."),
        ("llm_concurrency", 1, "ERROR: llm_concurrency must be >= 1."),
        ("llm_requests_per_minute", 1, "ERROR: llm_requests_per_minute must be >= 1."),
        ("max_file_size", 1, "ERROR: max_file_size must be >= 1."),
    )
    for key, minimum, message in checks:
        value = config.get(key)
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            issues.append(f"ERROR: {key} must be a number, got {value!r}.")
        elif value < minimum:
            issues.append(message)

    if not _as_list(config.get("smart_keywords", [])) and scan_mode == "smart":
        issues.append("WARNING: smart_keywords is empty; smart mode will select no files.")

    return issues


__all__ = [
    "CONFIG_FILENAME",
    "build_unified_config",
    "deep_merge",
    "extract_cli_overrides",
    "flatten_config",
    "get_default_config",
    "load_env_overrides",
    "load_project_config",
    "validate_config",
]
