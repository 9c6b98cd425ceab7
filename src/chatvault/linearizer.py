"""Recover the canonical root-to-head thread from a conversation graph."""

import logging
from typing import Any, Dict, List, Optional

from .errors import CyclicGraph, MalformedConversation
from .models import (
    ContentType,
    ConversationGraph,
    ConversationNode,
    LinearMessage,
    LinearThread,
)

logger = logging.getLogger(__name__)


def walk_to_root(graph: ConversationGraph, conversation_id: Optional[str] = None) -> List[ConversationNode]:
    """Return the nodes from root to head, placeholders included.

    A parent id that is not in the mapping ends the walk as if the node were
    the root.

    Raises:
        CyclicGraph: more parent hops than there are nodes
    """
    path: List[ConversationNode] = []
    node = graph.nodes[graph.head_id]
    hops = 0
    while True:
        path.append(node)
        if node.parent_id is None or node.parent_id not in graph.nodes:
            break
        hops += 1
        if hops > len(graph.nodes):
            raise CyclicGraph(
                f"Parent chain from {graph.head_id} exceeds {len(graph.nodes)} hops",
                conversation_id,
            )
        node = graph.nodes[node.parent_id]
    path.reverse()
    return path


def linearize(
    graph: ConversationGraph,
    conversation_id: str,
    *,
    skip_hidden: bool = True,
) -> LinearThread:
    """Project the head's ancestry onto an ordered message list.

    Sibling branches never appear: only the head's parent chain is visited.
    Nodes without a message payload are passed through, so a head without a
    payload yields a thread that ends at its nearest ancestor with one.
    """
    messages: List[LinearMessage] = []
    previous_id: Optional[str] = None
    for node in walk_to_root(graph, conversation_id):
        if not node.has_message:
            continue
        if skip_hidden and should_skip_node(node):
            logger.debug(f"Skipping hidden/empty message {node.message_id} in {conversation_id}")
            continue
        if node.message_id is None or node.role is None:
            raise MalformedConversation(
                f"Node {node.node_id} has a message without id or role", conversation_id
            )
        messages.append(
            LinearMessage(
                conversation_id=conversation_id,
                message_id=node.message_id,
                parent_id=previous_id,
                role=node.role,
                content_type=node.content_type or ContentType.TEXT.value,
                text_content=extract_text(node.content_type, node.content),
                create_time=node.create_time,
                model_slug=node.model_slug,
                message_order=len(messages),
                content=node.content,
            )
        )
        previous_id = node.message_id

    thread = LinearThread(conversation_id=conversation_id, messages=messages)
    if thread.is_empty:
        logger.warning(f"Conversation {conversation_id} has no messages on its active thread")
    return thread


def should_skip_node(node: ConversationNode) -> bool:
    """Hidden scaffolding messages and messages with only blank text parts."""
    if node.metadata.get("is_visually_hidden_from_conversation") is True:
        return True

    parts = node.content.get("parts")
    if not isinstance(parts, list):
        return not (extract_text(node.content_type, node.content) or "").strip()
    return all(isinstance(p, str) and not p.strip() for p in parts)


def extract_text(content_type: Optional[str], content: Dict[str, Any]) -> Optional[str]:
    """Plain text of a message content payload, or None when there is none."""
    if content_type == ContentType.CODE.value:
        return _join([content.get("text")])
    if content_type == ContentType.THOUGHTS.value:
        thoughts = content.get("thoughts")
        if not isinstance(thoughts, list):
            return None
        return _join([t.get("content") for t in thoughts if isinstance(t, dict)])
    if content_type == ContentType.USER_EDITABLE_CONTEXT.value:
        return _join([content.get("user_profile"), content.get("user_instructions")])

    parts = content.get("parts")
    if isinstance(parts, list):
        return _join(parts)
    return _join([content.get("text")])


def _join(values: List[Any]) -> Optional[str]:
    texts = [v for v in values if isinstance(v, str) and v.strip()]
    if not texts:
        return None
    return "\n".join(texts)
