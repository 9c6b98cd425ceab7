"""Bind asset pointers in message content to payloads in the archive."""

import io
import json
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from PIL import Image, UnidentifiedImageError

from .archive import ArchiveAccessor, extract_asset_id, is_asset_pointer
from .errors import AssetMissing
from .models import AssetRecord, AssetReference, LinearMessage

logger = logging.getLogger(__name__)

# Stored when a content part carries a pointer but no content_type tag.
DEFAULT_ASSET_CONTENT_TYPE = "asset_pointer"

_MIME_BY_EXTENSION = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "json": "application/json",
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
}


def guess_mime_type(file_name: str) -> str:
    extension = PurePosixPath(file_name).suffix.lstrip(".").lower()
    if extension in _MIME_BY_EXTENSION:
        return _MIME_BY_EXTENSION[extension]
    guessed, _ = mimetypes.guess_type(file_name)
    return guessed or "application/octet-stream"


def image_dimensions(data: bytes) -> tuple[Optional[int], Optional[int]]:
    """Width/height from the image header; (None, None) when undecodable."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug(f"Could not read image header: {e}")
        return None, None
    return width, height


def extract_asset_references(content: Dict[str, Any]) -> List[AssetReference]:
    """Asset pointers in content-part order."""
    references: List[AssetReference] = []
    parts = content.get("parts")
    if not isinstance(parts, list):
        return references
    for part in parts:
        if not isinstance(part, dict) or not is_asset_pointer(part.get("asset_pointer")):
            continue
        metadata = part.get("metadata")
        references.append(
            AssetReference(
                asset_pointer=part["asset_pointer"],
                content_type=_str_or_none(part.get("content_type")) or DEFAULT_ASSET_CONTENT_TYPE,
                size_bytes=_int_or_none(part.get("size_bytes")),
                width=_int_or_none(part.get("width")),
                height=_int_or_none(part.get("height")),
                metadata=metadata if isinstance(metadata, dict) else None,
            )
        )
    return references


@dataclass
class ResolvedAssets:
    """Assets for one conversation, keyed by owning message id."""

    by_message: Dict[str, List[AssetRecord]] = field(default_factory=dict)
    missing: List[AssetMissing] = field(default_factory=list)

    @property
    def count(self) -> int:
        return sum(len(records) for records in self.by_message.values())


class AssetResolver:
    """Resolves a conversation's asset references against one archive."""

    def __init__(self, archive: ArchiveAccessor):
        self.archive = archive

    def resolve(self, messages: List[LinearMessage]) -> ResolvedAssets:
        resolved = ResolvedAssets()
        seen_ids: set[str] = set()
        for message in messages:
            records = self.resolve_message(message, seen_ids, resolved.missing)
            if records:
                resolved.by_message[message.message_id] = records
        return resolved

    def resolve_message(
        self,
        message: LinearMessage,
        seen_ids: Optional[set[str]] = None,
        missing: Optional[List[AssetMissing]] = None,
    ) -> List[AssetRecord]:
        """Build asset records for one message and set its has_assets flag."""
        if seen_ids is None:
            seen_ids = set()
        records: List[AssetRecord] = []
        for order, reference in enumerate(extract_asset_references(message.content)):
            asset_id = extract_asset_id(reference.asset_pointer)
            if asset_id in seen_ids:
                asset_id = f"{asset_id}-{message.message_id}-{order}"
            seen_ids.add(asset_id)

            try:
                payload, entry_name = self.archive.read_asset(reference.asset_pointer)
            except AssetMissing as e:
                logger.warning(
                    f"Asset {reference.asset_pointer} of message {message.message_id} "
                    f"not found in archive"
                )
                if missing is not None:
                    missing.append(e)
                records.append(self._metadata_only(reference, asset_id, message.message_id, order))
                continue

            records.append(
                self._with_payload(reference, asset_id, message.message_id, order, payload, entry_name)
            )

        if records:
            message.has_assets = True
        return records

    def _metadata_only(
        self,
        reference: AssetReference,
        asset_id: str,
        message_id: str,
        order: int,
    ) -> AssetRecord:
        return AssetRecord(
            asset_id=asset_id,
            message_id=message_id,
            asset_pointer=reference.asset_pointer,
            content_type=reference.content_type,
            size_bytes=reference.size_bytes,
            width=reference.width,
            height=reference.height,
            metadata=_metadata_json(reference.metadata),
            asset_order=order,
            missing_payload=True,
        )

    def _with_payload(
        self,
        reference: AssetReference,
        asset_id: str,
        message_id: str,
        order: int,
        payload: bytes,
        entry_name: str,
    ) -> AssetRecord:
        mime_type = guess_mime_type(entry_name)
        width, height = None, None
        if mime_type.startswith("image/"):
            width, height = image_dimensions(payload)

        # Metadata embedded in the message wins over what the payload says.
        return AssetRecord(
            asset_id=asset_id,
            message_id=message_id,
            asset_pointer=reference.asset_pointer,
            content_type=reference.content_type,
            size_bytes=reference.size_bytes if reference.size_bytes is not None else len(payload),
            width=reference.width if reference.width is not None else width,
            height=reference.height if reference.height is not None else height,
            metadata=_metadata_json(reference.metadata),
            asset_order=order,
            file_content=payload,
            file_name=entry_name,
            mime_type=mime_type,
        )


def _metadata_json(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    if metadata is None:
        return None
    return json.dumps(metadata, ensure_ascii=False, sort_keys=True)


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None
