"""Error taxonomy shared across the chat, retrieval and generation layers."""


class RagChatError(Exception):
    """Base class for all ragchat errors."""


class NotFound(RagChatError):  # noqa: N818
    """Raised when a referenced conversation, message or document does not exist."""


class DimensionMismatch(RagChatError):  # noqa: N818
    """Raised when two embedding vectors of different length are compared."""


class BackendUnavailable(RagChatError):  # noqa: N818
    """Raised when the embedding or generation backend is unreachable or errors."""


class GenerationTimeout(BackendUnavailable):
    """Raised when the generation backend does not start streaming in time."""


class StreamInterrupted(RagChatError):  # noqa: N818
    """Raised when a generation stream ends abnormally mid-turn."""
