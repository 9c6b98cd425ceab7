"""Pytest fixtures for chatvault tests."""

import io
import json
import zipfile
from pathlib import Path
from typing import Any, Optional

import pytest
from PIL import Image

from chatvault.config import ChatVaultConfig


def build_node(
    node_id: str,
    parent: Optional[str],
    *,
    role: str = "user",
    text: Optional[str] = None,
    parts: Optional[list] = None,
    content_type: str = "text",
    has_message: bool = True,
    metadata: Optional[dict] = None,
    create_time: Optional[float] = 1700000000.0,
    children: Optional[list[str]] = None,
) -> dict[str, Any]:
    """A mapping entry in the ChatGPT export shape."""
    message = None
    if has_message:
        if parts is None:
            parts = [text if text is not None else f"text of {node_id}"]
        message = {
            "id": node_id,
            "author": {"role": role, "name": None, "metadata": {}},
            "create_time": create_time,
            "update_time": None,
            "content": {"content_type": content_type, "parts": parts},
            "status": "finished_successfully",
            "metadata": metadata or {},
        }
    return {
        "id": node_id,
        "message": message,
        "parent": parent,
        "children": children or [],
    }


def build_conversation(
    conv_id: str,
    nodes: list[dict[str, Any]],
    head: Optional[str],
    *,
    title: str = "Test Conversation",
    create_time: float = 1700000000.5,
    update_time: float = 1700000100.5,
    **extra: Any,
) -> dict[str, Any]:
    mapping = {n["id"]: n for n in nodes}
    # Fill children lists from parent links.
    for n in nodes:
        parent = mapping.get(n["parent"]) if n["parent"] else None
        if parent is not None and n["id"] not in parent["children"]:
            parent["children"].append(n["id"])
    data = {
        "id": conv_id,
        "title": title,
        "create_time": create_time,
        "update_time": update_time,
        "mapping": mapping,
        "current_node": head,
        "default_model_slug": "gpt-4o",
        "is_archived": False,
    }
    data.update(extra)
    return data


def image_part(asset_pointer: str, **fields: Any) -> dict[str, Any]:
    part = {"content_type": "image_asset_pointer", "asset_pointer": asset_pointer}
    part.update(fields)
    return part


def write_archive(
    zip_path: Path,
    conversations: Any,
    assets: Optional[dict[str, bytes]] = None,
    *,
    member: str = "conversations.json",
) -> Path:
    with zipfile.ZipFile(zip_path, "w") as zf:
        zf.writestr(member, json.dumps(conversations))
        for name, data in (assets or {}).items():
            zf.writestr(name, data)
    return zip_path


@pytest.fixture
def make_node():
    return build_node


@pytest.fixture
def make_conversation():
    return build_conversation


@pytest.fixture
def make_image_part():
    return image_part


@pytest.fixture
def make_archive(tmp_path):
    """Factory writing an export ZIP under tmp_path."""

    def _make(conversations: Any, assets: Optional[dict[str, bytes]] = None, name: str = "export.zip", **kwargs):
        return write_archive(tmp_path / name, conversations, assets, **kwargs)

    return _make


@pytest.fixture
def png_bytes():
    """Factory for real PNG payloads of a given size."""

    def _png(width: int = 4, height: int = 3) -> bytes:
        buf = io.BytesIO()
        Image.new("RGB", (width, height), color=(200, 10, 10)).save(buf, format="PNG")
        return buf.getvalue()

    return _png


@pytest.fixture
def import_config(tmp_path):
    """ChatVaultConfig writing into tmp_path."""
    return ChatVaultConfig(db_path=tmp_path / "out" / "conversations.db", max_workers=2)


@pytest.fixture
def branched_conversation(make_node, make_conversation):
    """root -> A -> C (head), with B an abandoned sibling of A."""
    return make_conversation(
        "conv-branched",
        [
            make_node("root", None, role="system", text="You are helpful"),
            make_node("A", "root", role="user", text="original question"),
            make_node("B", "root", role="user", text="abandoned edit"),
            make_node("C", "A", role="assistant", text="answer about zebras"),
        ],
        head="C",
        title="Branching",
    )
