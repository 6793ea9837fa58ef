"""Session manager for tree-based JSONL persistence."""

from __future__ import annotations

import json
import logging
import secrets
import uuid
from dataclasses import asdict, fields
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from session_toolkit.session.context import SessionContext, build_session_context, path_to_root
from session_toolkit.session.models import (
    CURRENT_SESSION_VERSION,
    ROOT_SENTINEL,
    BranchSummaryEntry,
    CompactionEntry,
    ModelChangeEntry,
    SessionHeader,
    SessionMessageEntry,
    SessionTreeNode,
)

if TYPE_CHECKING:
    from collections.abc import Container

    from session_toolkit.config.settings import Settings
    from session_toolkit.session.models import SessionEntry

logger = logging.getLogger(__name__)

DUPLICATE_ENTRY_ID = "Duplicate entry id"
ID_GENERATION_ATTEMPTS = 100

ENTRY_TYPE_MAP: dict[str, type[SessionEntry]] = {
    "message": SessionMessageEntry,
    "model_change": ModelChangeEntry,
    "compaction": CompactionEntry,
    "branch_summary": BranchSummaryEntry,
}

_CAMEL_KEYS = {
    "parent_id": "parentId",
    "first_kept_entry_id": "firstKeptEntryId",
    "tokens_before": "tokensBefore",
    "model_id": "modelId",
    "from_id": "fromId",
}
_SNAKE_KEYS = {camel: snake for snake, camel in _CAMEL_KEYS.items()}


def entry_not_found(entry_id: str) -> str:
    """Error message for an unknown entry id."""
    return f"Entry {entry_id} not found"


def _utc_timestamp() -> str:
    """Return an ISO-8601 UTC timestamp."""
    return datetime.now(UTC).isoformat()


def _new_header(cwd: str, parent_session: str | None = None) -> SessionHeader:
    return SessionHeader(
        type="session",
        version=CURRENT_SESSION_VERSION,
        id=str(uuid.uuid4()),
        timestamp=_utc_timestamp(),
        cwd=cwd,
        parent_session=parent_session,
    )


def _generate_id(existing: Container[str]) -> str:
    """Generate a short hex identifier that is not already taken."""
    for _ in range(ID_GENERATION_ATTEMPTS):
        candidate = secrets.token_hex(4)
        if candidate not in existing:
            return candidate
    return uuid.uuid4().hex


def _timestamp_key(entry: SessionEntry) -> datetime:
    try:
        parsed = datetime.fromisoformat(entry.timestamp)
    except ValueError:
        return datetime.min.replace(tzinfo=UTC)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def serialize_entry(entry: SessionEntry) -> dict[str, Any]:
    """Serialize an entry into its JSON line payload."""
    data = asdict(entry)
    payload = {_CAMEL_KEYS.get(key, key): value for key, value in data.items()}
    if payload.get("details") is None:
        payload.pop("details", None)
    return payload


def deserialize_entry(raw: dict[str, Any]) -> SessionEntry | None:
    """Deserialize a JSON payload into an entry, or ``None`` if it is not a valid entry."""
    entry_cls = ENTRY_TYPE_MAP.get(raw.get("type"))  # type: ignore[arg-type]
    if entry_cls is None:
        return None
    normalized = {_SNAKE_KEYS.get(key, key): value for key, value in raw.items()}
    normalized.setdefault("parent_id", None)
    known = {f.name for f in fields(entry_cls)}
    try:
        entry = entry_cls(**{key: value for key, value in normalized.items() if key in known})
    except TypeError:
        return None
    if not isinstance(entry.id, str):
        return None
    return entry


def deserialize_header(raw: dict[str, Any]) -> SessionHeader | None:
    """Deserialize a header payload, or ``None`` if it is not a session header."""
    if raw.get("type") != "session" or not isinstance(raw.get("id"), str):
        return None
    return SessionHeader(
        type="session",
        version=raw.get("version", CURRENT_SESSION_VERSION),
        id=raw["id"],
        timestamp=raw.get("timestamp", ""),
        cwd=raw.get("cwd", ""),
        parent_session=raw.get("parentSession"),
    )


def parse_session_entries(content: str) -> list[dict[str, Any]]:
    """Parse JSONL content into raw line payloads, skipping malformed lines."""
    payloads: list[dict[str, Any]] = []
    for line in content.splitlines():
        if not line.strip():
            continue
        try:
            raw = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(raw, dict):
            payloads.append(raw)
    return payloads


def load_entries_from_file(path: str | Path) -> tuple[SessionHeader | None, list[SessionEntry]]:
    """Load a header and its entries from a session file.

    A missing file, or one whose first line is not a valid header, yields ``(None, [])``.
    """
    file_path = Path(path)
    if not file_path.exists():
        return None, []
    payloads = parse_session_entries(file_path.read_text(encoding="utf-8"))
    if not payloads:
        return None, []
    header = deserialize_header(payloads[0])
    if header is None:
        return None, []
    entries: list[SessionEntry] = []
    for raw in payloads[1:]:
        entry = deserialize_entry(raw)
        if entry is not None:
            entries.append(entry)
    return header, entries


class SessionManager:
    """Manage a conversation as an append-only tree of entries.

    Each entry points at its parent. The leaf marks where the next append attaches;
    branching moves the leaf to an earlier entry without touching history. When
    persistence is enabled, entries are buffered until the first message arrives,
    then the buffer is flushed and each later append writes a single line.
    """

    def __init__(
        self,
        cwd: str,
        session_dir: Path | None,
        session_file: Path | None,
        persist: bool,
    ) -> None:
        self._cwd = cwd
        self._session_dir = session_dir
        self._session_file: Path | None = None
        self._persist = persist
        self._flushed = False
        self._header: SessionHeader = _new_header(cwd)
        self._entries: list[SessionEntry] = []
        self._by_id: dict[str, SessionEntry] = {}
        self._leaf_id: str | None = None

        if persist and session_dir is not None:
            session_dir.mkdir(parents=True, exist_ok=True)

        if session_file is not None:
            self.set_session_file(session_file)
        else:
            self.new_session()

    @classmethod
    def create(cls, cwd: str, session_dir: str | Path) -> SessionManager:
        """Create a new persisted session inside ``session_dir``."""
        return cls(cwd, Path(session_dir), None, persist=True)

    @classmethod
    def from_settings(cls, settings: Settings, cwd: str) -> SessionManager:
        """Create a new persisted session in the configured storage directory."""
        return cls.create(cwd, settings.session_storage_dir)

    @classmethod
    def open(cls, path: str | Path, session_dir: str | Path | None = None) -> SessionManager:
        """Open a session file, starting a fresh session bound to it if it is empty or invalid."""
        file_path = Path(path).resolve()
        header, _ = load_entries_from_file(file_path)
        cwd = header.cwd if header is not None else ""
        directory = Path(session_dir) if session_dir is not None else file_path.parent
        return cls(cwd, directory, file_path, persist=True)

    @classmethod
    def in_memory(cls, cwd: str = "") -> SessionManager:
        """Create a session that is never written to disk."""
        return cls(cwd, None, None, persist=False)

    def set_session_file(self, session_file: str | Path) -> None:
        """Bind the manager to a session file, loading it when it holds a valid session."""
        file_path = Path(session_file).resolve()
        header, entries = load_entries_from_file(file_path)
        if header is None:
            if file_path.exists():
                logger.warning("Session file %s has no valid header; starting a new session", file_path)
            self.new_session()
            self._session_file = file_path
            return

        self._header = header
        self._session_file = file_path
        self._entries = []
        self._by_id = {}
        self._leaf_id = None
        for entry in entries:
            if entry.id in self._by_id:
                continue
            if entry.parent_id == entry.id:
                logger.warning("Skipping self-parented entry %s in %s", entry.id, file_path)
                continue
            self._entries.append(entry)
            self._by_id[entry.id] = entry
            self._leaf_id = entry.id
        self._flushed = True
        logger.debug("Loaded %d entries from %s", len(self._entries), file_path)

    def new_session(self, parent_session: str | None = None) -> Path | None:
        """Start a fresh session with a new header and an empty tree."""
        self._header = _new_header(self._cwd, parent_session)
        self._entries = []
        self._by_id = {}
        self._leaf_id = None
        self._flushed = False

        if self._persist and self._session_dir is not None:
            file_timestamp = self._header.timestamp.replace(":", "-").replace(".", "-").replace("+", "_")
            self._session_file = self._session_dir / f"{file_timestamp}_{self._header.id}.jsonl"
        else:
            self._session_file = None
        return self._session_file

    @property
    def header(self) -> SessionHeader:
        """Return the session header."""
        return self._header

    @property
    def session_id(self) -> str:
        """Return the session id from the header."""
        return self.header.id

    @property
    def session_file(self) -> Path | None:
        """Return the backing JSONL path, if any."""
        return self._session_file

    @property
    def session_dir(self) -> Path | None:
        """Return the directory new session files are created in."""
        return self._session_dir

    @property
    def cwd(self) -> str:
        """Return the working directory recorded for this session."""
        return self._cwd

    def is_persisted(self) -> bool:
        """Return whether appends are written to disk."""
        return self._persist

    # Persistence

    def _write_line(self, handle: Any, payload: dict[str, Any]) -> None:
        handle.write(json.dumps(payload, ensure_ascii=False) + "\n")

    def _persist_entry(self, entry: SessionEntry) -> None:
        if not self._persist or self._session_file is None:
            return

        if not self._flushed:
            if not any(isinstance(item, SessionMessageEntry) for item in self._entries):
                return
            with self._session_file.open("w", encoding="utf-8") as handle:
                self._write_line(handle, self.header.to_dict())
                for item in self._entries:
                    self._write_line(handle, serialize_entry(item))
            self._flushed = True
            logger.debug("Flushed %d entries to %s", len(self._entries), self._session_file)
            return

        with self._session_file.open("a", encoding="utf-8") as handle:
            self._write_line(handle, serialize_entry(entry))

    def _append_entry(self, entry: SessionEntry) -> str:
        if entry.id in self._by_id:
            raise ValueError(DUPLICATE_ENTRY_ID)
        self._entries.append(entry)
        self._by_id[entry.id] = entry
        self._leaf_id = entry.id
        self._persist_entry(entry)
        return entry.id

    # Appends

    def append_message(self, message: dict[str, Any]) -> str:
        """Append a message as a child of the leaf and advance the leaf."""
        entry = SessionMessageEntry(
            type="message",
            id=_generate_id(self._by_id),
            parent_id=self._leaf_id,
            timestamp=_utc_timestamp(),
            message=message,
        )
        return self._append_entry(entry)

    def append_model_change(self, provider: str, model_id: str) -> str:
        """Append a model change as a child of the leaf and advance the leaf."""
        entry = ModelChangeEntry(
            type="model_change",
            id=_generate_id(self._by_id),
            parent_id=self._leaf_id,
            timestamp=_utc_timestamp(),
            provider=provider,
            model_id=model_id,
        )
        return self._append_entry(entry)

    def append_compaction(
        self,
        summary: str,
        first_kept_entry_id: str,
        tokens_before: int,
        details: dict[str, Any] | None = None,
    ) -> str:
        """Append a compaction checkpoint as a child of the leaf and advance the leaf."""
        entry = CompactionEntry(
            type="compaction",
            id=_generate_id(self._by_id),
            parent_id=self._leaf_id,
            timestamp=_utc_timestamp(),
            summary=summary,
            first_kept_entry_id=first_kept_entry_id,
            tokens_before=tokens_before,
            details=details,
        )
        return self._append_entry(entry)

    # Tree traversal

    def get_leaf_id(self) -> str | None:
        """Return the current leaf entry id."""
        return self._leaf_id

    def get_leaf_entry(self) -> SessionEntry | None:
        """Return the current leaf entry."""
        return self._by_id.get(self._leaf_id) if self._leaf_id is not None else None

    def get_entry(self, entry_id: str) -> SessionEntry | None:
        """Return an entry by id if present."""
        return self._by_id.get(entry_id)

    def get_entries(self) -> list[SessionEntry]:
        """Return all entries in append order."""
        return list(self._entries)

    def get_branch(self, from_id: str | None = None) -> list[SessionEntry]:
        """Return the root-to-entry path ending at ``from_id`` or the leaf."""
        start_id = from_id if from_id is not None else self._leaf_id
        start = self._by_id.get(start_id) if start_id is not None else None
        return path_to_root(start, self._by_id) if start is not None else []

    def get_children(self, parent_id: str | None) -> list[SessionEntry]:
        """Return child entries of ``parent_id`` in append order."""
        return [entry for entry in self._entries if entry.parent_id == parent_id]

    def get_tree(self) -> list[SessionTreeNode]:
        """Return root nodes of the session tree, children sorted by timestamp."""
        nodes = {entry.id: SessionTreeNode(entry=entry) for entry in self._entries}
        roots: list[SessionTreeNode] = []
        for entry in self._entries:
            node = nodes[entry.id]
            parent = nodes.get(entry.parent_id) if entry.parent_id not in (None, entry.id) else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)

        stack = list(roots)
        while stack:
            node = stack.pop()
            node.children.sort(key=lambda child: _timestamp_key(child.entry))
            stack.extend(node.children)
        return roots

    def build_session_context(self) -> SessionContext:
        """Build the message list to send to the model from the current leaf."""
        if self._leaf_id is None:
            return SessionContext()
        return build_session_context(self._entries, self._leaf_id, self._by_id)

    # Branching

    def branch(self, entry_id: str) -> None:
        """Move the leaf to an existing entry; later appends fork from there."""
        if entry_id not in self._by_id:
            raise ValueError(entry_not_found(entry_id))
        self._leaf_id = entry_id

    def reset_leaf(self) -> None:
        """Move the leaf before the first entry without touching stored entries."""
        self._leaf_id = None

    def branch_with_summary(
        self,
        entry_id: str | None,
        summary: str,
        details: dict[str, Any] | None = None,
    ) -> str:
        """Fork at ``entry_id`` and record a summary of the path being abandoned.

        The summary entry becomes a child of ``entry_id`` (or a new root for ``None``)
        and the leaf moves onto it.
        """
        if entry_id is not None and entry_id not in self._by_id:
            raise ValueError(entry_not_found(entry_id))
        self._leaf_id = entry_id
        entry = BranchSummaryEntry(
            type="branch_summary",
            id=_generate_id(self._by_id),
            parent_id=entry_id,
            timestamp=_utc_timestamp(),
            from_id=entry_id if entry_id is not None else ROOT_SENTINEL,
            summary=summary,
            details=details,
        )
        return self._append_entry(entry)
