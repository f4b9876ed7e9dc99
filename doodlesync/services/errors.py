class SyncError(Exception):
    """Base class for errors raised by the sync core."""


class GatewayError(SyncError):
    """A remote read or write against the backend failed."""


class ConversationLoadError(GatewayError):
    """First load of a conversation failed and there is no cache to fall back on."""

    def __init__(self, conversation_id) -> None:
        super().__init__(f"Could not load conversation {conversation_id}")
        self.conversation_id = conversation_id


class ConversationsUnavailableError(GatewayError):
    """The conversation list has never loaded and the fetch failed."""


class DecodeError(SyncError):
    """A realtime payload could not be decoded. The event is dropped."""

    def __init__(self, table: str, detail: str) -> None:
        super().__init__(f"Failed to decode {table} record: {detail}")
        self.table = table
