"""Error taxonomy shared across the Janet pipeline."""


class JanetError(Exception):
    """Base class for all Janet errors."""


class AuthenticationError(JanetError):
    """Bad or missing webhook signature / verify token. Rejected, never retried."""


class PayloadError(JanetError):
    """Malformed or unrecognized inbound payload. Acknowledged as ignored."""


class ConfigurationError(JanetError):
    """Required configuration is absent or invalid. Fatal at startup."""


class ToolConfigurationError(ConfigurationError):
    """Tool server registry is inconsistent (unknown server, duplicate tool names)."""


class UpstreamError(JanetError):
    """An external collaborator was unreachable or returned an error."""

    service = "upstream"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConversionError(UpstreamError):
    service = "audio-converter"


class TranscriptionError(UpstreamError):
    service = "transcription"


class ChannelError(UpstreamError):
    service = "channel"


class MemoryStoreError(UpstreamError):
    service = "memory"


class TaskApiError(UpstreamError):
    service = "tasks"


class ToolServerError(UpstreamError):
    service = "tool-server"
