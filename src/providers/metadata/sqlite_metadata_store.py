"""SQLite-backed metadata store.

Persists documents, chatbots, the chatbot-to-document association and the
conversation turn log to a local SQLite database at ``data/groundbot.db``.
Uses ``aiosqlite`` for async I/O.

Document status changes are compare-and-set ``UPDATE ... WHERE status IN``
statements, so two writers can never both move a document out of the
same state.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from src.interfaces.metadata_store import IMetadataStore
from src.models.chatbot import Chatbot, ChatbotConfig
from src.models.conversation import ConversationTurn
from src.models.document import Document, DocumentStatus
from src.utils.errors import StorageError, ValidationError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/groundbot.db")

_CREATE_DOCUMENTS_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS documents (
    document_id       TEXT    PRIMARY KEY,
    company_id        TEXT    NOT NULL,
    filename          TEXT    NOT NULL,
    file_type         TEXT    NOT NULL,
    byte_size         INTEGER NOT NULL DEFAULT 0,
    blob_url          TEXT    NOT NULL DEFAULT '',
    char_length       INTEGER NOT NULL DEFAULT 0,
    chunk_count       INTEGER NOT NULL DEFAULT 0,
    status            TEXT    NOT NULL,
    embedding_version TEXT,
    error_message     TEXT,
    created_at        TEXT    NOT NULL,
    updated_at        TEXT    NOT NULL
);
"""

_CREATE_CHATBOTS_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS chatbots (
    chatbot_id  TEXT PRIMARY KEY,
    company_id  TEXT NOT NULL,
    name        TEXT NOT NULL,
    config      TEXT NOT NULL,
    created_at  TEXT NOT NULL
);
"""

_CREATE_CHATBOT_DOCUMENTS_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS chatbot_documents (
    chatbot_id  TEXT    NOT NULL,
    document_id TEXT    NOT NULL,
    position    INTEGER NOT NULL,
    PRIMARY KEY (chatbot_id, document_id)
);
"""

_CREATE_TURNS_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS conversation_turns (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    turn_id       TEXT    NOT NULL UNIQUE,
    session_id    TEXT    NOT NULL,
    chatbot_id    TEXT    NOT NULL,
    user_message  TEXT    NOT NULL,
    bot_response  TEXT    NOT NULL,
    language      TEXT    NOT NULL,
    used_context  INTEGER NOT NULL,
    model_used    TEXT    NOT NULL,
    latency       REAL    NOT NULL,
    created_at    TEXT    NOT NULL
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_company ON documents(company_id);",
    "CREATE INDEX IF NOT EXISTS idx_chatbots_company ON chatbots(company_id);",
    "CREATE INDEX IF NOT EXISTS idx_chatbot_documents_document ON chatbot_documents(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_turns_session ON conversation_turns(session_id);",
]

_INSERT_DOCUMENT_SQL = """\
INSERT INTO documents (
    document_id, company_id, filename, file_type, byte_size, blob_url,
    char_length, chunk_count, status, embedding_version, error_message,
    created_at, updated_at
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_DOCUMENT_SQL = "SELECT * FROM documents WHERE document_id = ?;"

_SELECT_DOCUMENTS_BY_COMPANY_SQL = """\
SELECT * FROM documents
WHERE company_id = ?
ORDER BY created_at DESC;
"""

_SELECT_DOCUMENTS_BY_COMPANY_STATUS_SQL = """\
SELECT * FROM documents
WHERE company_id = ? AND status = ?
ORDER BY created_at DESC;
"""

_SELECT_DOCUMENTS_BY_STATUS_SQL = """\
SELECT * FROM documents
WHERE status IN ({placeholders})
ORDER BY created_at;
"""

_DELETE_DOCUMENT_SQL = "DELETE FROM documents WHERE document_id = ?;"

_DELETE_DOCUMENT_ASSOCIATIONS_SQL = "DELETE FROM chatbot_documents WHERE document_id = ?;"

_INSERT_CHATBOT_SQL = """\
INSERT INTO chatbots (chatbot_id, company_id, name, config, created_at)
VALUES (?, ?, ?, ?, ?);
"""

_UPDATE_CHATBOT_SQL = "UPDATE chatbots SET name = ?, config = ? WHERE chatbot_id = ?;"

_SELECT_CHATBOT_SQL = "SELECT * FROM chatbots WHERE chatbot_id = ?;"

_SELECT_CHATBOTS_BY_COMPANY_SQL = """\
SELECT * FROM chatbots WHERE company_id = ? ORDER BY created_at;
"""

_DELETE_CHATBOT_SQL = "DELETE FROM chatbots WHERE chatbot_id = ?;"

_DELETE_CHATBOT_ASSOCIATIONS_SQL = "DELETE FROM chatbot_documents WHERE chatbot_id = ?;"

_INSERT_CHATBOT_DOCUMENT_SQL = """\
INSERT INTO chatbot_documents (chatbot_id, document_id, position) VALUES (?, ?, ?);
"""

_SELECT_CHATBOT_DOCUMENT_IDS_SQL = """\
SELECT document_id FROM chatbot_documents WHERE chatbot_id = ? ORDER BY position;
"""

_SELECT_READY_DOCUMENT_IDS_SQL = """\
SELECT cd.document_id
FROM chatbot_documents cd
JOIN documents d ON d.document_id = cd.document_id
JOIN chatbots c ON c.chatbot_id = cd.chatbot_id
WHERE cd.chatbot_id = ? AND d.status = 'ready' AND d.company_id = c.company_id
ORDER BY cd.position;
"""

_INSERT_TURN_SQL = """\
INSERT INTO conversation_turns (
    turn_id, session_id, chatbot_id, user_message, bot_response, language,
    used_context, model_used, latency, created_at
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_TURNS_SQL = """\
SELECT * FROM (
    SELECT * FROM conversation_turns
    WHERE session_id = ? AND (? IS NULL OR chatbot_id = ?)
    ORDER BY id DESC
    LIMIT ?
)
ORDER BY id ASC;
"""

# Columns transition_status may write alongside the status.
_TRANSITION_FIELDS = frozenset({"chunk_count", "char_length", "embedding_version", "error_message"})


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()  # noqa: UP017


def _row_to_document(row: aiosqlite.Row) -> Document:
    data = dict(row)
    data["status"] = DocumentStatus(data["status"])
    return Document(**data)


def _row_to_chatbot(row: aiosqlite.Row) -> Chatbot:
    data = dict(row)
    data["config"] = ChatbotConfig(**json.loads(data["config"]))
    return Chatbot(**data)


def _row_to_turn(row: aiosqlite.Row) -> ConversationTurn:
    data = dict(row)
    data.pop("id", None)
    data["used_context"] = bool(data["used_context"])
    return ConversationTurn(**data)


class SQLiteMetadataStore(IMetadataStore):
    """SQLite-backed document, chatbot and conversation persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_DOCUMENTS_TABLE_SQL)
            await db.execute(_CREATE_CHATBOTS_TABLE_SQL)
            await db.execute(_CREATE_CHATBOT_DOCUMENTS_TABLE_SQL)
            await db.execute(_CREATE_TURNS_TABLE_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("metadata_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create_document(self, document: Document) -> Document:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    _INSERT_DOCUMENT_SQL,
                    (
                        document.document_id,
                        document.company_id,
                        document.filename,
                        document.file_type,
                        document.byte_size,
                        document.blob_url,
                        document.char_length,
                        document.chunk_count,
                        document.status.value,
                        document.embedding_version,
                        document.error_message,
                        document.created_at.isoformat(),
                        document.updated_at.isoformat(),
                    ),
                )
                await db.commit()
        except aiosqlite.IntegrityError as exc:
            raise ValidationError(
                message=f"Document {document.document_id} already exists",
                provider_name="sqlite",
            ) from exc
        logger.info(
            "document_created",
            document_id=document.document_id,
            company_id=document.company_id,
            filename=document.filename,
        )
        return document

    async def get_document(self, document_id: str) -> Document | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_DOCUMENT_SQL, (document_id,))
            row = await cursor.fetchone()
        return _row_to_document(row) if row else None

    async def list_documents(
        self,
        company_id: str,
        status: DocumentStatus | None = None,
    ) -> list[Document]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            if status is None:
                cursor = await db.execute(_SELECT_DOCUMENTS_BY_COMPANY_SQL, (company_id,))
            else:
                cursor = await db.execute(
                    _SELECT_DOCUMENTS_BY_COMPANY_STATUS_SQL, (company_id, status.value)
                )
            rows = await cursor.fetchall()
        return [_row_to_document(row) for row in rows]

    async def list_documents_by_status(self, statuses: set[DocumentStatus]) -> list[Document]:
        if not statuses:
            return []
        placeholders = ", ".join("?" for _ in statuses)
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                _SELECT_DOCUMENTS_BY_STATUS_SQL.format(placeholders=placeholders),
                [s.value for s in statuses],
            )
            rows = await cursor.fetchall()
        return [_row_to_document(row) for row in rows]

    async def transition_status(
        self,
        document_id: str,
        expected: set[DocumentStatus],
        new_status: DocumentStatus,
        **fields: Any,
    ) -> Document | None:
        unknown = set(fields) - _TRANSITION_FIELDS
        if unknown:
            raise StorageError(
                message=f"Cannot update document fields: {sorted(unknown)}",
                provider_name="sqlite",
            )
        if not expected:
            return None

        assignments = ["status = ?", "updated_at = ?"] + [f"{name} = ?" for name in fields]
        params: list[Any] = [new_status.value, _now_iso(), *fields.values()]
        placeholders = ", ".join("?" for _ in expected)
        sql = (
            f"UPDATE documents SET {', '.join(assignments)} "
            f"WHERE document_id = ? AND status IN ({placeholders});"
        )
        params.append(document_id)
        params.extend(s.value for s in expected)

        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            updated = cursor.rowcount
            await db.commit()
            if updated == 0:
                return None
            cursor = await db.execute(_SELECT_DOCUMENT_SQL, (document_id,))
            row = await cursor.fetchone()

        logger.debug(
            "document_status_transition",
            document_id=document_id,
            status=new_status.value,
        )
        return _row_to_document(row) if row else None

    async def delete_document(self, document_id: str) -> bool:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(_DELETE_DOCUMENT_SQL, (document_id,))
            deleted = cursor.rowcount > 0
            await db.execute(_DELETE_DOCUMENT_ASSOCIATIONS_SQL, (document_id,))
            await db.commit()
        return deleted

    # ------------------------------------------------------------------
    # Chatbots
    # ------------------------------------------------------------------

    async def create_chatbot(self, chatbot: Chatbot) -> Chatbot:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    _INSERT_CHATBOT_SQL,
                    (
                        chatbot.chatbot_id,
                        chatbot.company_id,
                        chatbot.name,
                        chatbot.config.model_dump_json(),
                        chatbot.created_at.isoformat(),
                    ),
                )
                await db.commit()
        except aiosqlite.IntegrityError as exc:
            raise ValidationError(
                message=f"Chatbot {chatbot.chatbot_id} already exists",
                provider_name="sqlite",
            ) from exc
        logger.info("chatbot_created", chatbot_id=chatbot.chatbot_id, company_id=chatbot.company_id)
        return chatbot

    async def get_chatbot(self, chatbot_id: str) -> Chatbot | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_CHATBOT_SQL, (chatbot_id,))
            row = await cursor.fetchone()
        return _row_to_chatbot(row) if row else None

    async def list_chatbots(self, company_id: str) -> list[Chatbot]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_CHATBOTS_BY_COMPANY_SQL, (company_id,))
            rows = await cursor.fetchall()
        return [_row_to_chatbot(row) for row in rows]

    async def update_chatbot(self, chatbot: Chatbot) -> Chatbot:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _UPDATE_CHATBOT_SQL,
                (chatbot.name, chatbot.config.model_dump_json(), chatbot.chatbot_id),
            )
            await db.commit()
        return chatbot

    async def delete_chatbot(self, chatbot_id: str) -> bool:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(_DELETE_CHATBOT_SQL, (chatbot_id,))
            deleted = cursor.rowcount > 0
            await db.execute(_DELETE_CHATBOT_ASSOCIATIONS_SQL, (chatbot_id,))
            await db.commit()
        return deleted

    # ------------------------------------------------------------------
    # Chatbot <-> document association
    # ------------------------------------------------------------------

    async def set_chatbot_documents(self, chatbot_id: str, document_ids: list[str]) -> None:
        # dict.fromkeys de-duplicates while keeping the caller's order.
        ordered = list(dict.fromkeys(document_ids))
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_DELETE_CHATBOT_ASSOCIATIONS_SQL, (chatbot_id,))
            await db.executemany(
                _INSERT_CHATBOT_DOCUMENT_SQL,
                [(chatbot_id, doc_id, pos) for pos, doc_id in enumerate(ordered)],
            )
            await db.commit()
        logger.info("chatbot_documents_set", chatbot_id=chatbot_id, document_count=len(ordered))

    async def get_chatbot_document_ids(self, chatbot_id: str) -> list[str]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(_SELECT_CHATBOT_DOCUMENT_IDS_SQL, (chatbot_id,))
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def get_ready_document_ids(self, chatbot_id: str) -> list[str]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(_SELECT_READY_DOCUMENT_IDS_SQL, (chatbot_id,))
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Conversation log
    # ------------------------------------------------------------------

    async def record_turn(self, turn: ConversationTurn) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _INSERT_TURN_SQL,
                (
                    turn.turn_id,
                    turn.session_id,
                    turn.chatbot_id,
                    turn.user_message,
                    turn.bot_response,
                    turn.language,
                    int(turn.used_context),
                    turn.model_used,
                    turn.latency,
                    turn.created_at.isoformat(),
                ),
            )
            await db.commit()

    async def list_turns(
        self, session_id: str, chatbot_id: str | None = None, limit: int = 50
    ) -> list[ConversationTurn]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_TURNS_SQL, (session_id, chatbot_id, chatbot_id, limit))
            rows = await cursor.fetchall()
        return [_row_to_turn(row) for row in rows]
