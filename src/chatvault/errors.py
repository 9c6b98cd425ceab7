"""Exceptions raised by the chatvault import pipeline."""

from typing import Optional


class ChatVaultError(Exception):
    """Base class for chatvault errors."""

    pass


class ArchiveError(ChatVaultError):
    """Archive is missing, unreadable or has no conversations document. Fatal."""

    pass


class StoreInitError(ChatVaultError):
    """The SQLite store could not be opened or its schema created. Fatal."""

    pass


class MalformedConversation(ChatVaultError):
    """A conversation's graph cannot be parsed. The conversation is skipped."""

    def __init__(self, message: str, conversation_id: Optional[str] = None):
        super().__init__(message)
        self.conversation_id = conversation_id


class CyclicGraph(MalformedConversation):
    """Parent links starting at the head never reach a root."""

    pass


class AssetMissing(ChatVaultError):
    """No archive entry matches an asset pointer."""

    def __init__(self, asset_pointer: str, asset_id: str):
        super().__init__(f"No archive entry for asset {asset_pointer}")
        self.asset_pointer = asset_pointer
        self.asset_id = asset_id


class WriteFailure(ChatVaultError):
    """Persisting a conversation failed; its transaction was rolled back."""

    def __init__(self, conversation_id: str, cause: Exception):
        super().__init__(f"Failed to write conversation {conversation_id}: {cause}")
        self.conversation_id = conversation_id
        self.cause = cause
