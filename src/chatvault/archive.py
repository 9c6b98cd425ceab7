"""Read access to a ChatGPT export ZIP."""

import json
import logging
import re
import threading
import zipfile
from pathlib import Path, PurePosixPath
from typing import Any, Optional

from .errors import ArchiveError, AssetMissing

logger = logging.getLogger(__name__)

CONVERSATIONS_MEMBER = "conversations.json"

_POINTER_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://(?P<opaque>\S+)$")
_ENTRY_ID_RE = re.compile(r"^(file[-_][A-Za-z0-9]+)")


def is_asset_pointer(value: Any) -> bool:
    """True for scheme-prefixed strings like ``file-service://file-abc``."""
    return isinstance(value, str) and _POINTER_RE.match(value) is not None


def normalize_asset_id(token: str) -> str:
    # Legacy ids carry a "file-" prefix that entry names and pointers share;
    # newer "file_..." ids are used whole.
    if token.startswith("file-"):
        return token[len("file-"):]
    return token


def extract_asset_id(asset_pointer: str) -> str:
    """Derive the asset id from a pointer's opaque suffix.

    ``file-service://file-1qkofb`` -> ``1qkofb``
    ``sediment://file_00000000ab`` -> ``file_00000000ab``
    """
    match = _POINTER_RE.match(asset_pointer)
    opaque = match.group("opaque") if match else asset_pointer
    opaque = opaque.rsplit("/", 1)[-1]
    return normalize_asset_id(opaque)


def _entry_asset_ids(name: str) -> list[str]:
    basename = PurePosixPath(name).name
    ids: list[str] = []
    match = _ENTRY_ID_RE.match(basename)
    if match:
        ids.append(normalize_asset_id(match.group(1)))
    stem = basename.split(".", 1)[0]
    if stem and stem not in ids:
        ids.append(stem)
    return ids


def _score_json_member(name: str) -> int:
    name_lower = PurePosixPath(name).name.lower()
    score = 0

    if name_lower == CONVERSATIONS_MEMBER:
        score += 1000
    if "conversations" in name_lower:
        score += 100
    if "chat" in name_lower:
        score += 40
    if "message" in name_lower:
        score += 10

    return score


def select_conversations_member(infos: list[zipfile.ZipInfo]) -> Optional[zipfile.ZipInfo]:
    """Pick the member most likely to hold the conversations array."""
    json_infos = [info for info in infos if info.filename.lower().endswith(".json")]
    if not json_infos:
        return None

    scored = [
        (info, _score_json_member(info.filename), info.file_size)
        for info in json_infos
    ]
    scored.sort(key=lambda item: (item[1], item[2]), reverse=True)
    return scored[0][0]


class ArchiveAccessor:
    """Opens an export archive and resolves entry names to bytes.

    The asset lookup table (asset id -> entry) is built once on open. Reads are
    serialized so the accessor can be shared by worker threads.
    """

    def __init__(self, zip_path: Path):
        self.zip_path = Path(zip_path)
        self._zip: Optional[zipfile.ZipFile] = None
        self._lock = threading.Lock()
        self._asset_index: dict[str, zipfile.ZipInfo] = {}
        self.conversations_member: Optional[zipfile.ZipInfo] = None

    def open(self) -> "ArchiveAccessor":
        if not self.zip_path.exists():
            raise ArchiveError(f"Archive not found: {self.zip_path}")
        try:
            self._zip = zipfile.ZipFile(self.zip_path, "r")
        except (zipfile.BadZipFile, OSError) as e:
            raise ArchiveError(f"Invalid ZIP file {self.zip_path}: {e}") from e

        infos = sorted(
            (info for info in self._zip.infolist() if not info.is_dir()),
            key=lambda info: info.filename,
        )
        self.conversations_member = select_conversations_member(infos)
        if self.conversations_member is None:
            self.close()
            raise ArchiveError(f"No conversations JSON found in ZIP: {self.zip_path}")

        for info in infos:
            if info is self.conversations_member or info.filename.lower().endswith(".json"):
                continue
            for asset_id in _entry_asset_ids(info.filename):
                self._asset_index.setdefault(asset_id, info)

        logger.info(
            f"Opened {self.zip_path} ({len(infos)} entries, "
            f"conversations in {self.conversations_member.filename}, "
            f"{len(self._asset_index)} asset keys)"
        )
        return self

    def close(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def __enter__(self) -> "ArchiveAccessor":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_open(self) -> zipfile.ZipFile:
        if self._zip is None:
            raise ArchiveError(f"Archive is not open: {self.zip_path}")
        return self._zip

    def load_conversations_document(self) -> Any:
        """Decode the conversations JSON document."""
        zf = self._require_open()
        assert self.conversations_member is not None
        try:
            with self._lock, zf.open(self.conversations_member) as f:
                return json.load(f)
        except (OSError, zipfile.BadZipFile, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ArchiveError(
                f"Failed to read {self.conversations_member.filename} from {self.zip_path}: {e}"
            ) from e

    def find_asset(self, asset_id: str) -> Optional[zipfile.ZipInfo]:
        return self._asset_index.get(asset_id)

    def read_entry(self, info: zipfile.ZipInfo) -> bytes:
        zf = self._require_open()
        try:
            with self._lock:
                return zf.read(info)
        except (OSError, zipfile.BadZipFile) as e:
            raise ArchiveError(f"Failed to read {info.filename} from {self.zip_path}: {e}") from e

    def read_asset(self, asset_pointer: str) -> tuple[bytes, str]:
        """Return (payload, entry name) for a pointer or raise AssetMissing."""
        asset_id = extract_asset_id(asset_pointer)
        info = self.find_asset(asset_id)
        if info is None:
            raise AssetMissing(asset_pointer, asset_id)
        return self.read_entry(info), info.filename
