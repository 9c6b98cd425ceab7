"""Data models for parsed conversations, linear threads and assets."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Author role of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ContentType(str, Enum):
    """Content types with dedicated text extraction.

    Exports contain other types as well; those are stored verbatim.
    """

    TEXT = "text"
    MULTIMODAL_TEXT = "multimodal_text"
    CODE = "code"
    THOUGHTS = "thoughts"
    USER_EDITABLE_CONTEXT = "user_editable_context"


class ConversationNode(BaseModel):
    """One entry of a conversation's node mapping."""

    node_id: str
    parent_id: Optional[str] = None
    has_message: bool = False
    message_id: Optional[str] = None
    role: Optional[Role] = None
    content_type: Optional[str] = None
    content: dict[str, Any] = Field(default_factory=dict)
    create_time: Optional[int] = None
    model_slug: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConversationGraph(BaseModel):
    """Node arena keyed by node id, plus the active leaf."""

    nodes: dict[str, ConversationNode] = Field(default_factory=dict)
    head_id: str

    def __len__(self) -> int:
        return len(self.nodes)


class ConversationMeta(BaseModel):
    """Row data for the conversations table."""

    conversation_id: str
    title: str = "Untitled Conversation"
    create_time: int = 0
    update_time: int = 0
    model_slug: Optional[str] = None
    is_archived: bool = False


class ParsedConversation(BaseModel):
    """Result of parsing one raw conversation."""

    meta: ConversationMeta
    graph: ConversationGraph


class LinearMessage(BaseModel):
    """A message placed on the canonical root-to-head thread."""

    conversation_id: str
    message_id: str
    parent_id: Optional[str] = None
    role: Role
    content_type: str
    text_content: Optional[str] = None
    create_time: Optional[int] = None
    model_slug: Optional[str] = None
    message_order: int
    has_assets: bool = False
    content: dict[str, Any] = Field(default_factory=dict, exclude=True)


class LinearThread(BaseModel):
    """Ordered messages of one conversation."""

    conversation_id: str
    messages: list[LinearMessage] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.messages


class AssetReference(BaseModel):
    """An asset pointer found in a message content part."""

    asset_pointer: str
    content_type: str = "asset_pointer"
    size_bytes: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    metadata: Optional[dict[str, Any]] = None


class AssetRecord(BaseModel):
    """Row data for the assets table."""

    asset_id: str
    message_id: str
    asset_pointer: str
    content_type: str = "asset_pointer"
    size_bytes: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    metadata: Optional[str] = None
    asset_order: int
    file_content: bytes = b""
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    missing_payload: bool = False
