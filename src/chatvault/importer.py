"""Import a ChatGPT export archive into the SQLite store."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from .archive import ArchiveAccessor
from .assets import AssetResolver, ResolvedAssets
from .config import ChatVaultConfig
from .errors import ArchiveError, MalformedConversation, WriteFailure
from .graph_parser import extract_conversation_list, parse_conversation
from .ledger import ImportLedger
from .linearizer import linearize
from .models import ConversationMeta, LinearThread
from .store import db as dbmod
from .store.writer import write_conversation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkippedConversation:
    index: int
    conversation_id: Optional[str]
    reason: str


@dataclass
class ImportSummary:
    """Summary of an import run."""

    archive_path: Path
    db_path: Path
    conversations_total: int = 0
    conversations_imported: int = 0
    messages_written: int = 0
    assets_written: int = 0
    assets_missing: int = 0
    empty_conversations: List[str] = field(default_factory=list)
    skipped: List[SkippedConversation] = field(default_factory=list)

    @property
    def conversations_skipped(self) -> int:
        return len(self.skipped)


@dataclass
class PreparedConversation:
    """A conversation ready to be written."""

    index: int
    meta: ConversationMeta
    thread: LinearThread
    assets: ResolvedAssets


def prepare_conversation(
    index: int,
    conv_data: Any,
    resolver: AssetResolver,
    *,
    skip_hidden: bool = True,
) -> PreparedConversation:
    """Parse, linearize and resolve assets for one raw conversation.

    Raises:
        MalformedConversation: bad graph structure, including CyclicGraph
    """
    parsed = parse_conversation(conv_data)
    conv_id = parsed.meta.conversation_id
    thread = linearize(parsed.graph, conv_id, skip_hidden=skip_hidden)
    assets = resolver.resolve(thread.messages)
    return PreparedConversation(index=index, meta=parsed.meta, thread=thread, assets=assets)


PrepareResult = Union[PreparedConversation, SkippedConversation]


def _prepare_or_skip(
    index: int,
    conv_data: Any,
    resolver: AssetResolver,
    skip_hidden: bool,
) -> PrepareResult:
    try:
        return prepare_conversation(index, conv_data, resolver, skip_hidden=skip_hidden)
    except MalformedConversation as e:
        return SkippedConversation(index=index, conversation_id=e.conversation_id, reason=str(e))
    except ArchiveError:
        raise
    except Exception as e:
        logger.debug(f"Conversation {index} parse error: {e}", exc_info=True)
        conv_id = conv_data.get("id") if isinstance(conv_data, dict) else None
        return SkippedConversation(
            index=index,
            conversation_id=str(conv_id) if conv_id else None,
            reason=f"Failed to parse conversation {index}: {e}",
        )


def import_archive(
    zip_path: Path,
    config: ChatVaultConfig,
    *,
    fresh: bool = False,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> ImportSummary:
    """Import every conversation of an export archive.

    Conversations are prepared on worker threads and written on the calling
    thread in archive order, one transaction each.

    Raises:
        ArchiveError: the archive cannot be read
        StoreInitError: the database cannot be opened
    """
    zip_path = Path(zip_path)
    summary = ImportSummary(archive_path=zip_path, db_path=config.db_path)
    ledger_path = config.resolved_ledger_path
    ledger = ImportLedger(ledger_path) if ledger_path is not None else None

    if ledger:
        ledger.append_event(
            "IMPORT_RUN_STARTED",
            {"archive_path": str(zip_path), "db_path": str(config.db_path)},
        )

    try:
        with ArchiveAccessor(zip_path) as archive:
            raw_conversations = extract_conversation_list(archive.load_conversations_document())
            summary.conversations_total = len(raw_conversations)
            logger.info(f"Importing {summary.conversations_total} conversations from {zip_path}")

            conn = dbmod.open_store(config.db_path, fresh=fresh)
            try:
                _run(conn, archive, raw_conversations, config, summary, ledger, progress_callback)
            finally:
                conn.close()
    except Exception as e:
        if ledger:
            ledger.append_event(
                "IMPORT_RUN_FAILED",
                {"archive_path": str(zip_path), "error": str(e)},
            )
        raise

    if ledger:
        ledger.append_event(
            "IMPORT_RUN_COMPLETED",
            {
                "archive_path": str(zip_path),
                "conversations_total": summary.conversations_total,
                "conversations_imported": summary.conversations_imported,
                "conversations_skipped": summary.conversations_skipped,
                "messages_written": summary.messages_written,
                "assets_written": summary.assets_written,
                "assets_missing": summary.assets_missing,
                "empty_conversations": len(summary.empty_conversations),
            },
        )

    logger.info(
        f"Imported {summary.conversations_imported}/{summary.conversations_total} conversations, "
        f"{summary.messages_written} messages, {summary.assets_written} assets "
        f"({summary.assets_missing} missing payloads)"
    )
    return summary


def _run(
    conn,
    archive: ArchiveAccessor,
    raw_conversations: List[Any],
    config: ChatVaultConfig,
    summary: ImportSummary,
    ledger: Optional[ImportLedger],
    progress_callback: Optional[Callable[[int, int], None]],
) -> None:
    resolver = AssetResolver(archive)
    total = len(raw_conversations)
    # Bounded batches keep resolved payloads from piling up in memory.
    batch_size = config.max_workers * 4

    with ThreadPoolExecutor(max_workers=config.max_workers) as executor:
        for start in range(0, total, batch_size):
            futures: List[Future] = [
                executor.submit(
                    _prepare_or_skip, index, raw_conversations[index], resolver, config.skip_hidden_messages
                )
                for index in range(start, min(start + batch_size, total))
            ]
            for future in futures:
                result = future.result()
                if isinstance(result, SkippedConversation):
                    _record_skip(summary, ledger, result)
                else:
                    _write(conn, result, summary, ledger)
                if progress_callback:
                    progress_callback(summary.conversations_imported + summary.conversations_skipped, total)


def _write(
    conn,
    prepared: PreparedConversation,
    summary: ImportSummary,
    ledger: Optional[ImportLedger],
) -> None:
    conv_id = prepared.meta.conversation_id
    try:
        write_conversation(conn, prepared.meta, prepared.thread.messages, prepared.assets.by_message)
    except WriteFailure as e:
        _record_skip(
            summary,
            ledger,
            SkippedConversation(index=prepared.index, conversation_id=conv_id, reason=str(e)),
        )
        return

    summary.conversations_imported += 1
    summary.messages_written += len(prepared.thread.messages)
    summary.assets_written += prepared.assets.count
    summary.assets_missing += len(prepared.assets.missing)
    if prepared.thread.is_empty:
        summary.empty_conversations.append(conv_id)

    if ledger:
        for missing in prepared.assets.missing:
            ledger.append_event(
                "ASSET_MISSING",
                {"asset_pointer": missing.asset_pointer, "asset_id": missing.asset_id},
                conversation_id=conv_id,
            )
        ledger.append_event(
            "CONVERSATION_IMPORTED",
            {
                "title": prepared.meta.title,
                "messages": len(prepared.thread.messages),
                "assets": prepared.assets.count,
                "assets_missing": len(prepared.assets.missing),
            },
            conversation_id=conv_id,
        )


def _record_skip(
    summary: ImportSummary,
    ledger: Optional[ImportLedger],
    skipped: SkippedConversation,
) -> None:
    label = skipped.conversation_id or f"#{skipped.index}"
    logger.warning(f"Skipping conversation {label}: {skipped.reason}")
    summary.skipped.append(skipped)
    if ledger:
        ledger.append_event(
            "CONVERSATION_SKIPPED",
            {"index": skipped.index, "reason": skipped.reason},
            conversation_id=skipped.conversation_id,
        )
