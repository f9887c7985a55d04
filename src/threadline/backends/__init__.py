from threadline.api import SessionApi
from threadline.backends.assistants import AssistantsBackend
from threadline.backends.base import AssistantBackend, Dispatch
from threadline.backends.session_api import SessionApiBackend
from threadline.errors import ConfigError


def build_backend(config, api: SessionApi) -> AssistantBackend:
    if config.backend == "sessions":
        return SessionApiBackend(api)
    if config.backend == "assistants":
        return AssistantsBackend.from_config(config)
    raise ConfigError(f"Unknown backend: {config.backend}")


__all__ = [
    "AssistantBackend",
    "AssistantsBackend",
    "Dispatch",
    "SessionApiBackend",
    "build_backend",
]
