import logging
import os
from dataclasses import dataclass, field, replace
from typing import Protocol

from threadline.errors import ConfigError
from threadline.models import FeedOrder

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://us-compsuite-api.mms-internal.my.id/api/v1"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
BACKENDS = ("sessions", "assistants")


def get_required_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise ConfigError(f"Required environment variable {name} is not set")
    return value


def get_optional_env(name: str, default: str) -> str:
    return os.environ.get(name, default)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True, slots=True)
class Credentials:
    api_key: str
    assistant_id: str


class CredentialResolver(Protocol):
    def resolve(self) -> Credentials: ...


class EnvCredentialResolver:
    def __init__(
        self,
        api_key_var: str = "THREADLINE_API_KEY",
        assistant_id_var: str = "THREADLINE_ASSISTANT_ID",
    ):
        self.api_key_var = api_key_var
        self.assistant_id_var = assistant_id_var

    def resolve(self) -> Credentials:
        return Credentials(
            api_key=get_required_env(self.api_key_var),
            assistant_id=get_required_env(self.assistant_id_var),
        )


def token_suffix(token: str) -> str:
    token = (token or "").strip()
    if len(token) < 10:
        raise ConfigError("Tenant token is too short to derive a credential suffix")
    return token[:5] + token[-5:]


class TenantTokenResolver:
    """Resolves per-tenant credentials from variables keyed by a tenant token.

    A token ``abcde...vwxyz`` selects ``THREADLINE_API_KEY_abcdevwxyz`` and
    ``THREADLINE_ASSISTANT_ID_abcdevwxyz``.
    """

    def __init__(self, token: str, prefix: str = "THREADLINE"):
        self.token = token
        self.prefix = prefix

    def resolve(self) -> Credentials:
        suffix = token_suffix(self.token)
        api_key = os.environ.get(f"{self.prefix}_API_KEY_{suffix}")
        assistant_id = os.environ.get(f"{self.prefix}_ASSISTANT_ID_{suffix}")
        if not api_key or not assistant_id:
            raise ConfigError(f"Missing config for token suffix: {suffix}")
        return Credentials(api_key=api_key, assistant_id=assistant_id)


@dataclass(frozen=True, slots=True)
class ChatConfig:
    api_key: str = ""
    assistant_id: str = ""
    api_url: str = field(
        default_factory=lambda: get_optional_env("THREADLINE_API_URL", DEFAULT_API_URL)
    )
    backend: str = "sessions"
    openai_api_key: str | None = None
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    stream: bool = True
    poll_interval: float = 1.0
    feed_order: FeedOrder = FeedOrder.NEWEST_FIRST
    send_timeout: float | None = None
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls, resolver: CredentialResolver | None = None) -> "ChatConfig":
        credentials = (resolver or EnvCredentialResolver()).resolve()
        feed_order = get_optional_env("THREADLINE_FEED_ORDER", FeedOrder.NEWEST_FIRST.value)
        try:
            order = FeedOrder(feed_order)
        except ValueError as e:
            raise ConfigError(f"Unknown feed order: {feed_order}") from e

        config = cls(
            api_key=credentials.api_key,
            assistant_id=credentials.assistant_id,
            backend=get_optional_env("THREADLINE_BACKEND", "sessions"),
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            openai_base_url=get_optional_env("OPENAI_BASE_URL", DEFAULT_OPENAI_BASE_URL),
            stream=_env_bool("THREADLINE_STREAM", True),
            poll_interval=_env_float("THREADLINE_POLL_INTERVAL", 1.0),
            feed_order=order,
            send_timeout=_env_float("THREADLINE_SEND_TIMEOUT", None),
        )
        logger.debug(
            f"Loaded config: backend={config.backend} stream={config.stream} "
            f"feed_order={config.feed_order.value}"
        )
        return config

    def with_overrides(self, **changes) -> "ChatConfig":
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes)

    def validate(self) -> None:
        if not self.api_key:
            raise ConfigError("API key is missing. Set THREADLINE_API_KEY.")
        if not self.assistant_id:
            raise ConfigError("Assistant ID is missing. Set THREADLINE_ASSISTANT_ID.")
        if self.backend not in BACKENDS:
            raise ConfigError(f"Unknown backend: {self.backend}")
        if self.backend == "assistants" and not self.openai_api_key:
            raise ConfigError("OPENAI_API_KEY is required for the assistants backend")
        if self.poll_interval <= 0:
            raise ConfigError("Poll interval must be positive")
