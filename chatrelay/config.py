"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < YAML file < profile < env vars < CLI flags < per-session overrides

Secrets never live in the config object.  Sections record the *name* of the
environment variable holding a key and read it on demand.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any

import yaml

from chatrelay.types import ConfigurationError


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ProvidersConfig:
    openai_url: str = "https://api.openai.com/v1"
    anthropic_url: str = "https://api.anthropic.com/v1"
    google_url: str = "https://generativelanguage.googleapis.com/v1beta"
    openrouter_url: str = "https://openrouter.ai/api/v1"
    timeout_seconds: int = 120
    max_retries: int = 2
    max_output_tokens: int = 8_192
    reasoning_budget_tokens: int = 8_000
    host_google_api_key_env: str = "HOST_GOOGLE_API_KEY"

    def host_google_api_key(self) -> str | None:
        return os.environ.get(self.host_google_api_key_env) or None


@dataclass
class ToolsConfig:
    tavily_api_key_env: str = "TAVILY_API_KEY"
    tavily_url: str = "https://api.tavily.com"
    web_search_max_results: int = 5
    max_tool_steps: int = 5
    tool_timeout_seconds: int = 30

    def tavily_api_key(self) -> str | None:
        return os.environ.get(self.tavily_api_key_env) or None


@dataclass
class StoreConfig:
    database: str = "~/.chatrelay/chat.db"
    blob_dir: str = "~/.chatrelay/blobs"
    blob_base_url: str = "http://localhost:8080/blobs"
    upload_url_ttl_seconds: int = 3600


@dataclass
class LimitsConfig:
    guest_message_limit: int = 10


@dataclass
class TitlesConfig:
    model: str = "gemini-2.5-flash-lite-preview-06-17"
    default_title: str = "New Conversation"


@dataclass
class LoggingConfig:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class ChatRelayConfig:
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    titles: TitlesConfig = field(default_factory=TitlesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    # ----- per-session overrides (applied last) ----
    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a per-session override using dot notation (e.g. 'limits.guest_message_limit')."""
        _apply_dotpath(self, dotpath, value)
        self._overrides[dotpath] = value

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        return d


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "CHATRELAY_PROVIDERS_OPENAI_URL":         ("providers.openai_url", str),
    "CHATRELAY_PROVIDERS_ANTHROPIC_URL":      ("providers.anthropic_url", str),
    "CHATRELAY_PROVIDERS_GOOGLE_URL":         ("providers.google_url", str),
    "CHATRELAY_PROVIDERS_OPENROUTER_URL":     ("providers.openrouter_url", str),
    "CHATRELAY_PROVIDERS_TIMEOUT":            ("providers.timeout_seconds", int),
    "CHATRELAY_PROVIDERS_MAX_RETRIES":        ("providers.max_retries", int),
    "CHATRELAY_PROVIDERS_MAX_OUTPUT":         ("providers.max_output_tokens", int),
    "CHATRELAY_PROVIDERS_REASONING_BUDGET":   ("providers.reasoning_budget_tokens", int),
    "CHATRELAY_PROVIDERS_HOST_GOOGLE_KEY_ENV": ("providers.host_google_api_key_env", str),
    "CHATRELAY_TOOLS_TAVILY_KEY_ENV":         ("tools.tavily_api_key_env", str),
    "CHATRELAY_TOOLS_TAVILY_URL":             ("tools.tavily_url", str),
    "CHATRELAY_TOOLS_MAX_RESULTS":            ("tools.web_search_max_results", int),
    "CHATRELAY_TOOLS_MAX_STEPS":              ("tools.max_tool_steps", int),
    "CHATRELAY_TOOLS_TIMEOUT":                ("tools.tool_timeout_seconds", int),
    "CHATRELAY_STORE_DATABASE":               ("store.database", str),
    "CHATRELAY_STORE_BLOB_DIR":               ("store.blob_dir", str),
    "CHATRELAY_STORE_BLOB_BASE_URL":          ("store.blob_base_url", str),
    "CHATRELAY_STORE_UPLOAD_TTL":             ("store.upload_url_ttl_seconds", int),
    "CHATRELAY_LIMITS_GUEST_MESSAGE_LIMIT":   ("limits.guest_message_limit", int),
    "CHATRELAY_TITLES_MODEL":                 ("titles.model", str),
    "CHATRELAY_LOGGING_LEVEL":                ("logging.level", str),
}

_SECTIONS: dict[str, type] = {
    "providers": ProvidersConfig,
    "tools": ToolsConfig,
    "store": StoreConfig,
    "limits": LimitsConfig,
    "titles": TitlesConfig,
    "logging": LoggingConfig,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Set ``section.field`` on *obj*.  Unknown paths are rejected."""
    *parents, leaf = dotpath.split(".")
    for name in parents:
        obj = getattr(obj, name, None)
        if obj is None:
            raise ConfigurationError(f"Unknown config key: {dotpath}")
    if not hasattr(obj, leaf):
        raise ConfigurationError(f"Unknown config key: {dotpath}")
    setattr(obj, leaf, value)


def _merge(base: dict, overlay: dict) -> dict:
    """Overlay nested mappings onto *base* without mutating either."""
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


def _coerce(env_var: str, value: str, target_type: type) -> Any:
    if target_type is bool:
        return value.strip().lower() in ("1", "true", "yes", "on")
    try:
        return target_type(value)
    except ValueError:
        raise ConfigurationError(
            f"{env_var} must be {target_type.__name__}, got {value!r}"
        ) from None


def _read_file(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def _build_section(name: str, raw: dict[str, Any]) -> Any:
    """Build one section dataclass, ignoring keys it does not know."""
    cls = _SECTIONS[name]
    data = raw.get(name) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> ChatRelayConfig:
    """
    Build a ChatRelayConfig from, lowest precedence first: defaults, the YAML
    file, the named profile from that file, ``CHATRELAY_*`` environment
    variables, then *cli_overrides* (dotpath -> value).

    A missing file means defaults.  Malformed YAML, a non-mapping section, a
    non-numeric numeric env var or an unknown override path raise
    ``ConfigurationError``.
    """
    raw: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path).expanduser()
        if path.is_file():
            raw = _read_file(path)

    profiles = raw.get("profiles") or {}
    if profile:
        raw = _merge(raw, profiles.get(profile) or {})

    cfg = ChatRelayConfig(
        **{name: _build_section(name, raw) for name in _SECTIONS},
        profiles=profiles,
    )

    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        value = os.environ.get(env_var)
        if value is not None:
            _apply_dotpath(cfg, dotpath, _coerce(env_var, value, target_type))

    for dotpath, value in (cli_overrides or {}).items():
        _apply_dotpath(cfg, dotpath, value)

    return cfg
