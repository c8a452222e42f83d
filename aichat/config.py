"""Configuration objects for the chat engine."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Priority order used when no explicit default service is configured.
SERVICE_PRIORITY = ("openai", "ramses", "ollama", "gwdg")


@dataclass
class ProviderConfig:
    """Connection details for one OpenAI-compatible chat-completions service."""

    key: str
    label: str
    endpoint: str
    model: str
    api_key: str = ""
    temperature: float = 0.5
    streaming: bool = False
    enabled: bool = True
    request_timeout: int = 60
    ca_bundle: Optional[str] = None
    proxy: Optional[str] = None
    extra_params: Dict[str, Any] = field(default_factory=dict)


def default_providers() -> Dict[str, ProviderConfig]:
    return {
        "openai": ProviderConfig(
            key="openai",
            label="OpenAI GPT",
            endpoint="https://api.openai.com/v1/chat/completions",
            model="gpt-4o-mini",
        ),
        "ramses": ProviderConfig(
            key="ramses",
            label="RAMSES",
            endpoint="https://ramses-oski.itcc.uni-koeln.de/v1/chat/completions",
            model="mistral-small-3-2-24b-instruct-2506",
        ),
        "ollama": ProviderConfig(
            key="ollama",
            label="Ollama",
            endpoint="http://localhost:11434/v1/chat/completions",
            model="llama3.1",
        ),
        "gwdg": ProviderConfig(
            key="gwdg",
            label="GWDG",
            endpoint="https://chat-ai.academiccloud.de/v1/chat/completions",
            model="meta-llama-3.1-8b-instruct",
        ),
    }


@dataclass
class ChatConfig:
    """Runtime controls for the chat endpoint.

    One instance is built at startup and handed to every component that needs
    it; nothing reads configuration lazily from a global.
    """

    providers: Dict[str, ProviderConfig] = field(default_factory=dict)
    default_service: Optional[str] = None
    database_url: str = "sqlite:///./aichat.db"
    default_max_memory: int = 10
    char_limit: int = 0
    session_ttl_seconds: int = 60 * 60
    session_cookie: str = "aichat_session"
    identity_header: str = "X-Authenticated-User-Id"
    api_path: str = "/api"
    log_dir: Optional[str] = None

    def enabled_providers(self) -> Dict[str, ProviderConfig]:
        return {key: cfg for key, cfg in self.providers.items() if cfg.enabled}


def _parse_bool(raw: Optional[str], default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(raw: Optional[str], default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer configuration value %r", raw)
        return default


def _parse_float(raw: Optional[str], default: float) -> float:
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric configuration value %r", raw)
        return default


def _provider_from_env(key: str, base: ProviderConfig, env: Mapping[str, str]) -> ProviderConfig:
    prefix = f"AICHAT_{key.upper()}_"
    extra_params = base.extra_params
    raw_extra = env.get(prefix + "EXTRA_PARAMS")
    if raw_extra:
        try:
            extra_params = json.loads(raw_extra)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{prefix}EXTRA_PARAMS is not valid JSON: {exc}") from exc

    return ProviderConfig(
        key=key,
        label=env.get(prefix + "LABEL", base.label),
        endpoint=env.get(prefix + "ENDPOINT", base.endpoint),
        model=env.get(prefix + "MODEL", base.model) or base.model,
        api_key=env.get(prefix + "API_KEY", base.api_key),
        temperature=_parse_float(env.get(prefix + "TEMPERATURE"), base.temperature),
        streaming=_parse_bool(env.get(prefix + "STREAMING"), base.streaming),
        enabled=base.enabled,
        request_timeout=_parse_int(env.get(prefix + "TIMEOUT"), base.request_timeout),
        ca_bundle=env.get(prefix + "CA_BUNDLE", base.ca_bundle) or None,
        proxy=env.get(prefix + "PROXY", base.proxy) or None,
        extra_params=extra_params,
    )


def load_config(env: Optional[Mapping[str, str]] = None) -> ChatConfig:
    """Build a :class:`ChatConfig` from environment variables.

    ``AICHAT_SERVICES`` is a comma separated list of the enabled service keys.
    Unknown keys are accepted as long as ``AICHAT_<KEY>_ENDPOINT`` and
    ``AICHAT_<KEY>_MODEL`` are provided.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    known = default_providers()
    enabled_keys = [
        key.strip().lower()
        for key in env.get("AICHAT_SERVICES", "openai").split(",")
        if key.strip()
    ]

    providers: Dict[str, ProviderConfig] = {}
    for key in list(known) + [k for k in enabled_keys if k not in known]:
        base = known.get(key) or ProviderConfig(key=key, label=key, endpoint="", model="")
        provider = _provider_from_env(key, base, env)
        provider.enabled = key in enabled_keys
        if provider.enabled and (not provider.endpoint or not provider.model):
            raise ValueError(f"Service '{key}' needs AICHAT_{key.upper()}_ENDPOINT and AICHAT_{key.upper()}_MODEL")
        providers[key] = provider

    config = ChatConfig(
        providers=providers,
        default_service=(env.get("AICHAT_DEFAULT_SERVICE") or "").strip().lower() or None,
        database_url=env.get("AICHAT_DATABASE_URL", ChatConfig.database_url),
        default_max_memory=_parse_int(env.get("AICHAT_MAX_MEMORY"), ChatConfig.default_max_memory),
        char_limit=_parse_int(env.get("AICHAT_CHAR_LIMIT"), ChatConfig.char_limit),
        session_ttl_seconds=_parse_int(env.get("AICHAT_SESSION_TTL"), ChatConfig.session_ttl_seconds),
        log_dir=env.get("AICHAT_LOG_DIR") or None,
    )
    logger.info(
        "Loaded chat config: services=%s, default=%s",
        ",".join(config.enabled_providers()) or "(none)",
        config.default_service or "(priority order)",
    )
    return config
