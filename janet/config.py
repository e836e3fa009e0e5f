"""Startup configuration: JSON config file overlaid by environment variables.

Loaded and validated once by ``load_config()``; the resulting ``Config`` is
passed to every component that needs it.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Mapping, Optional

from janet.errors import ConfigurationError

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_FILE = BASE_DIR / "config" / "config.json"

THINKING_BUDGETS = {
    "low": 1024,
    "medium": 4096,
    "high": 10000,
    "maximum": 32000,
}

# env var -> Config field
ENV_FIELDS = {
    "WHATSAPP_APP_SECRET": "whatsapp_app_secret",
    "WHATSAPP_WEBHOOK_VERIFY_TOKEN": "whatsapp_verify_token",
    "WHATSAPP_ACCESS_TOKEN": "whatsapp_access_token",
    "WHATSAPP_PHONE_NUMBER_ID": "whatsapp_phone_number_id",
    "WHATSAPP_BUSINESS_ACCOUNT_ID": "whatsapp_business_account_id",
    "WHATSAPP_PROVIDER": "whatsapp_provider",
    "TWILIO_ACCOUNT_SID": "twilio_account_sid",
    "TWILIO_AUTH_TOKEN": "twilio_auth_token",
    "TWILIO_WHATSAPP_NUMBER": "twilio_whatsapp_number",
    "OPENAI_API_KEY": "openai_api_key",
    "WHISPER_MODEL": "whisper_model",
    "WHISPER_LANGUAGE": "whisper_language",
    "TRANSCRIPTION_BACKEND": "transcription_backend",
    "LOCAL_WHISPER_MODEL": "local_whisper_model",
    "ANTHROPIC_API_KEY": "anthropic_api_key",
    "CLAUDE_MODEL": "claude_model",
    "EXTENDED_THINKING_ENABLED": "extended_thinking_enabled",
    "DEFAULT_THINKING_BUDGET": "default_thinking_budget",
    "TODOIST_API_TOKEN": "todoist_api_token",
    "TODOIST_MCP_URL": "todoist_mcp_url",
    "TODOIST_API_URL": "todoist_api_url",
    "MEM0_API_KEY": "mem0_api_key",
    "MEM0_BASE_URL": "mem0_base_url",
    "AUDIO_CONVERTER_URL": "audio_converter_url",
    "SESSION_TTL_SECONDS": "session_ttl_seconds",
    "MAX_AGENT_STEPS": "max_agent_steps",
    "HISTORY_LIMIT": "history_limit",
    "HTTP_TIMEOUT_SECONDS": "http_timeout_seconds",
    "HOST": "host",
    "PORT": "port",
}

SECRET_FIELDS = {
    "whatsapp_app_secret", "whatsapp_verify_token", "whatsapp_access_token",
    "twilio_auth_token", "openai_api_key", "anthropic_api_key",
    "todoist_api_token", "mem0_api_key",
}


@dataclass(frozen=True)
class ToolServerConfig:
    name: str
    url: str
    headers: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Config:
    # Provider A (Meta)
    whatsapp_app_secret: str = ""
    whatsapp_verify_token: str = ""
    whatsapp_access_token: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_business_account_id: str = ""
    # Provider B (Twilio)
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_whatsapp_number: str = ""
    whatsapp_provider: str = "twilio"

    # Transcription
    openai_api_key: str = ""
    whisper_model: str = "whisper-1"
    whisper_language: str = "en"
    transcription_backend: str = "openai"
    local_whisper_model: str = "base"
    audio_converter_url: str = "http://localhost:3001"

    # Reasoning
    anthropic_api_key: str = ""
    claude_model: str = "claude-haiku-4-5-20251001"
    extended_thinking_enabled: bool = False
    default_thinking_budget: str = "medium"
    max_agent_steps: int = 20

    # Tasks / memory
    todoist_api_token: str = ""
    todoist_mcp_url: str = "https://ai.todoist.net/mcp"
    todoist_api_url: str = "https://api.todoist.com/rest/v2"
    mem0_api_key: str = ""
    mem0_base_url: str = "https://api.mem0.ai"
    extra_tool_servers: tuple = ()

    # Runtime
    session_ttl_seconds: float = 1800.0
    history_limit: int = 20
    http_timeout_seconds: float = 30.0
    host: str = "0.0.0.0"
    port: int = 3000

    @property
    def twilio_enabled(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_whatsapp_number)

    @property
    def meta_enabled(self) -> bool:
        return bool(self.whatsapp_access_token and self.whatsapp_phone_number_id)

    @property
    def thinking_budget_tokens(self) -> int:
        return THINKING_BUDGETS[self.default_thinking_budget]

    def tool_servers(self) -> dict[str, ToolServerConfig]:
        """Named MCP tool servers the assistant connects to."""
        servers = {
            "todoist": ToolServerConfig(
                name="todoist",
                url=self.todoist_mcp_url,
                headers={"Authorization": f"Bearer {self.todoist_api_token}"},
            ),
        }
        for server in self.extra_tool_servers:
            servers[server.name] = server
        return servers

    def redacted(self) -> dict:
        out = {}
        for k, v in asdict(self).items():
            if k in SECRET_FIELDS and v:
                v = v[:4] + "…" if len(v) > 8 else "***"
            out[k] = v
        return out

    def validate(self) -> "Config":
        missing = []
        required = ["whatsapp_app_secret", "whatsapp_verify_token",
                    "anthropic_api_key", "todoist_api_token", "mem0_api_key"]
        if self.transcription_backend == "openai":
            required.append("openai_api_key")
        for name in required:
            if not getattr(self, name):
                missing.append(name.upper())

        if self.whatsapp_provider == "meta":
            for name in ("whatsapp_access_token", "whatsapp_phone_number_id"):
                if not getattr(self, name):
                    missing.append(name.upper())
        elif self.whatsapp_provider == "twilio":
            for name in ("twilio_account_sid", "twilio_auth_token", "twilio_whatsapp_number"):
                if not getattr(self, name):
                    missing.append(name.upper())
        else:
            raise ConfigurationError(f"WHATSAPP_PROVIDER must be 'meta' or 'twilio', got {self.whatsapp_provider!r}")

        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")
        if self.transcription_backend not in ("openai", "local"):
            raise ConfigurationError(f"Unknown TRANSCRIPTION_BACKEND: {self.transcription_backend!r}")
        if self.default_thinking_budget not in THINKING_BUDGETS:
            raise ConfigurationError(f"Unknown DEFAULT_THINKING_BUDGET: {self.default_thinking_budget!r}")
        if self.max_agent_steps < 1:
            raise ConfigurationError("MAX_AGENT_STEPS must be at least 1")
        return self


def _coerce(name: str, raw):
    """Convert a raw string/JSON value to the type of the Config field."""
    default = next(f.default for f in fields(Config) if f.name == name)
    if isinstance(default, bool):
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in ("1", "true", "yes", "on")
    try:
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid value for {name.upper()}: {raw!r}")
    return str(raw)


def _load_file(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}")


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None,
                validate: bool = True) -> Config:
    """Build the process configuration.

    Values come from the JSON file at ``path`` (or ``$JANET_CONFIG``, or
    ``config/config.json``), then environment variables override them.
    """
    env = os.environ if environ is None else environ
    config_path = Path(path or env.get("JANET_CONFIG") or DEFAULT_CONFIG_FILE)
    file_values = _load_file(config_path)

    values = {}
    extra_servers = ()
    known = {f.name for f in fields(Config)} - {"extra_tool_servers"}
    for key, raw in file_values.items():
        if key == "tool_servers":
            extra_servers = tuple(
                ToolServerConfig(name=name, url=spec["url"], headers=spec.get("headers", {}))
                for name, spec in raw.items()
            )
        elif key in known:
            values[key] = _coerce(key, raw)
        else:
            logger.warning(f"[CONFIG] Ignoring unknown key in {config_path}: {key}")

    for env_name, field_name in ENV_FIELDS.items():
        raw = env.get(env_name)
        if raw is not None and raw != "":
            values[field_name] = _coerce(field_name, raw)

    if "whatsapp_provider" in values:
        values["whatsapp_provider"] = values["whatsapp_provider"].lower()

    config = Config(extra_tool_servers=extra_servers, **values)
    if validate:
        config.validate()
    logger.info(f"[CONFIG] Loaded (provider={config.whatsapp_provider}, model={config.claude_model})")
    return config
