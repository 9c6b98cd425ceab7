"""Parser for the node mapping of ChatGPT export conversations."""

import hashlib
import logging
from typing import Any, Dict, List, Optional

from .errors import ArchiveError, MalformedConversation
from .models import (
    ConversationGraph,
    ConversationMeta,
    ConversationNode,
    ParsedConversation,
    Role,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Conversation"


def extract_conversation_list(data: Any) -> List[Dict[str, Any]]:
    """Return the raw conversations array from a decoded export document."""
    if isinstance(data, list):
        logger.debug(f"Export is a list with {len(data)} items")
        return data

    if isinstance(data, dict):
        conversations = data.get("conversations")
        if isinstance(conversations, list):
            return conversations
        if isinstance(conversations, dict):
            return list(conversations.values())
        if "mapping" in data:
            logger.debug("Export appears to be a single conversation, wrapping in list")
            return [data]
        raise ArchiveError(f"Could not find conversations in export (keys: {list(data.keys())[:10]})")

    raise ArchiveError(f"Unexpected conversations document type: {type(data).__name__}")


def parse_conversation(conv_data: Any) -> ParsedConversation:
    """Parse one raw conversation into its metadata and node graph.

    Raises:
        MalformedConversation: the mapping or head pointer is unusable
    """
    if not isinstance(conv_data, dict):
        raise MalformedConversation(f"Conversation is not an object: {type(conv_data).__name__}")

    mapping = conv_data.get("mapping")
    conv_id = _extract_conversation_id(conv_data)
    if not isinstance(mapping, dict):
        raise MalformedConversation("Conversation has no node mapping", conv_id)

    head_id = conv_data.get("current_node")
    if not head_id:
        raise MalformedConversation("Conversation has no current_node", conv_id)
    head_id = str(head_id)
    if head_id not in mapping:
        raise MalformedConversation(f"current_node {head_id} is not in the mapping", conv_id)

    conv_model_slug = _string_or_none(
        conv_data.get("default_model_slug") or conv_data.get("model_slug")
    )

    nodes: dict[str, ConversationNode] = {}
    for key, node_data in mapping.items():
        node = _parse_node(str(key), node_data, conv_model_slug, conv_id)
        nodes[node.node_id] = node

    create_time = _epoch_seconds(conv_data.get("create_time"))
    update_time = _epoch_seconds(conv_data.get("update_time"))
    meta = ConversationMeta(
        conversation_id=conv_id,
        title=_extract_title(conv_data),
        create_time=create_time or 0,
        update_time=update_time or create_time or 0,
        model_slug=conv_model_slug,
        is_archived=bool(conv_data.get("is_archived") or False),
    )
    return ParsedConversation(meta=meta, graph=ConversationGraph(nodes=nodes, head_id=head_id))


def _parse_node(
    node_id: str,
    node_data: Any,
    conv_model_slug: Optional[str],
    conv_id: str,
) -> ConversationNode:
    if not isinstance(node_data, dict):
        raise MalformedConversation(f"Node {node_id} is not an object", conv_id)

    parent = node_data.get("parent")
    parent_id = str(parent) if parent else None
    message = node_data.get("message")
    if not isinstance(message, dict):
        # Placeholder/scaffolding node; kept for traversal only.
        return ConversationNode(node_id=node_id, parent_id=parent_id)

    role = _extract_role(message)
    if role is None:
        raw_role = _dict_or_empty(message.get("author")).get("role")
        raise MalformedConversation(f"Node {node_id} has unknown author role {raw_role!r}", conv_id)

    content = message.get("content")
    if not isinstance(content, dict):
        content = {}
    metadata = message.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    return ConversationNode(
        node_id=node_id,
        parent_id=parent_id,
        has_message=True,
        message_id=str(message.get("id") or node_id),
        role=role,
        content_type=str(content.get("content_type") or "text"),
        content=content,
        create_time=_epoch_seconds(message.get("create_time")),
        model_slug=_extract_model_slug(role, metadata, conv_model_slug),
        metadata=metadata,
    )


def _extract_conversation_id(conv_data: Dict[str, Any]) -> str:
    """Extract conversation ID, falling back to the first real message."""
    for key in ["id", "conversation_id"]:
        if conv_data.get(key):
            return str(conv_data[key])

    mapping = conv_data.get("mapping")
    if isinstance(mapping, dict):
        for node_data in mapping.values():
            message = node_data.get("message") if isinstance(node_data, dict) else None
            if not isinstance(message, dict) or not message.get("id"):
                continue
            if _dict_or_empty(message.get("author")).get("role") not in ("user", "assistant"):
                continue
            parts = _dict_or_empty(message.get("content")).get("parts")
            if isinstance(parts, list) and parts and isinstance(parts[0], str) and parts[0]:
                return f"conv_{message['id']}"

    id_source = f"{conv_data.get('title', '')}|{conv_data.get('create_time', '')}"
    return f"conv_{hashlib.sha1(id_source.encode()).hexdigest()[:16]}"


def _extract_title(conv_data: Dict[str, Any]) -> str:
    title = conv_data.get("title")
    if title and str(title).strip():
        return str(title).strip()
    return DEFAULT_TITLE


def _extract_role(message: Dict[str, Any]) -> Optional[Role]:
    author = message.get("author")
    if not isinstance(author, dict):
        return None
    try:
        return Role(str(author.get("role", "")).lower().strip())
    except ValueError:
        return None


def _extract_model_slug(
    role: Role,
    metadata: Dict[str, Any],
    conv_model_slug: Optional[str],
) -> Optional[str]:
    if role is not Role.ASSISTANT:
        return None
    return _string_or_none(metadata.get("model_slug")) or conv_model_slug


def _epoch_seconds(value: Any) -> Optional[int]:
    """Unix timestamps only; anything else is treated as absent."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _string_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _dict_or_empty(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}
