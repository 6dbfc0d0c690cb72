"""Operation tracking: one record per merge/split/compress/convert call.

A record is created in status "processing" right before the transformation
starts and sealed exactly once as "completed" or "failed". Tracking is
observability only: when the backing store is unavailable every mutation is
a logged no-op and the operation carries on.
"""

import json
import logging
import sqlite3
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pdf_toolkit.core.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)

PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
TERMINAL_STATES = (COMPLETED, FAILED)
OPERATION_KINDS = ("merge", "split", "compress", "convert")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class FileDescriptor:
    filename: str
    size: int
    mimetype: str = "application/pdf"


@dataclass
class ResultFile:
    filename: str
    size: int
    url: str


@dataclass
class Operation:
    """Represents one tracked operation."""

    operation_id: str
    kind: str
    original_files: List[FileDescriptor]
    status: str = PROCESSING
    result_file: Optional[ResultFile] = None
    result_items: List[ResultFile] = field(default_factory=list)
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    created_at: str = field(default_factory=_utcnow)
    updated_at: Optional[str] = None

    @property
    def is_sealed(self) -> bool:
        return self.status in TERMINAL_STATES


class OperationStore:
    """Backing store interface for operation records."""

    name = "base"

    def is_available(self) -> bool:
        return True

    def insert(self, operation: Operation) -> None:
        raise NotImplementedError

    def update_terminal(self, operation: Operation) -> None:
        """Persist a sealed record; a stored terminal record is never changed."""
        raise NotImplementedError

    def get(self, operation_id: str) -> Optional[Operation]:
        raise NotImplementedError


class NullOperationStore(OperationStore):
    """Used when no persistence is configured or reachable."""

    name = "none"

    def is_available(self) -> bool:
        return False

    def insert(self, operation: Operation) -> None:
        return None

    def update_terminal(self, operation: Operation) -> None:
        return None

    def get(self, operation_id: str) -> Optional[Operation]:
        return None


class InMemoryOperationStore(OperationStore):
    """Process-local store guarded by a lock."""

    name = "memory"

    def __init__(self) -> None:
        self._operations: Dict[str, Operation] = {}
        self._lock = threading.Lock()

    def insert(self, operation: Operation) -> None:
        with self._lock:
            self._operations[operation.operation_id] = Operation(**_copy_fields(operation))

    def update_terminal(self, operation: Operation) -> None:
        with self._lock:
            stored = self._operations.get(operation.operation_id)
            if stored is None or stored.is_sealed:
                return
            self._operations[operation.operation_id] = Operation(**_copy_fields(operation))

    def get(self, operation_id: str) -> Optional[Operation]:
        with self._lock:
            stored = self._operations.get(operation_id)
            return Operation(**_copy_fields(stored)) if stored else None


def _copy_fields(operation: Operation) -> Dict[str, Any]:
    return {
        "operation_id": operation.operation_id,
        "kind": operation.kind,
        "original_files": list(operation.original_files),
        "status": operation.status,
        "result_file": operation.result_file,
        "result_items": list(operation.result_items),
        "error_message": operation.error_message,
        "processing_time_ms": operation.processing_time_ms,
        "created_at": operation.created_at,
        "updated_at": operation.updated_at,
    }


class SqliteOperationStore(OperationStore):
    """SQLite-backed store. Each statement uses its own connection."""

    name = "sqlite"

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._available = False

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=10, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> bool:
        conn = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pdf_operations (
                    operation_id TEXT PRIMARY KEY,
                    operation TEXT NOT NULL,
                    original_files TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'processing',
                    result_file TEXT,
                    result_items TEXT,
                    error_message TEXT,
                    processing_time_ms INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_pdf_operations_created ON pdf_operations (created_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_pdf_operations_kind ON pdf_operations (operation)")
            conn.commit()
            self._available = True
            logger.info(f"[tracking] SQLite operation store ready at {self.db_path}")
        except (sqlite3.Error, OSError) as e:
            self._available = False
            logger.error(f"[tracking] Database initialization error: {e}")
        finally:
            if conn:
                conn.close()
        return self._available

    def is_available(self) -> bool:
        return self._available

    def insert(self, operation: Operation) -> None:
        conn = None
        try:
            conn = self._connect()
            conn.execute(
                "INSERT INTO pdf_operations (operation_id, operation, original_files, status, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    operation.operation_id,
                    operation.kind,
                    json.dumps([asdict(f) for f in operation.original_files]),
                    operation.status,
                    operation.created_at,
                ),
            )
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"[tracking] DB error inserting operation {operation.operation_id}: {e}")
        finally:
            if conn:
                conn.close()

    def update_terminal(self, operation: Operation) -> None:
        conn = None
        try:
            conn = self._connect()
            conn.execute(
                "UPDATE pdf_operations SET status = ?, result_file = ?, result_items = ?, error_message = ?, "
                "processing_time_ms = ?, updated_at = ? WHERE operation_id = ? AND status = ?",
                (
                    operation.status,
                    json.dumps(asdict(operation.result_file)) if operation.result_file else None,
                    json.dumps([asdict(item) for item in operation.result_items]),
                    operation.error_message,
                    operation.processing_time_ms,
                    operation.updated_at,
                    operation.operation_id,
                    PROCESSING,
                ),
            )
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"[tracking] DB error updating operation {operation.operation_id}: {e}")
        finally:
            if conn:
                conn.close()

    def get(self, operation_id: str) -> Optional[Operation]:
        conn = None
        try:
            conn = self._connect()
            row = conn.execute(
                "SELECT * FROM pdf_operations WHERE operation_id = ?", (operation_id,)
            ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"[tracking] DB error reading operation {operation_id}: {e}")
            return None
        finally:
            if conn:
                conn.close()

        if row is None:
            return None
        result_file = json.loads(row["result_file"]) if row["result_file"] else None
        return Operation(
            operation_id=row["operation_id"],
            kind=row["operation"],
            original_files=[FileDescriptor(**f) for f in json.loads(row["original_files"])],
            status=row["status"],
            result_file=ResultFile(**result_file) if result_file else None,
            result_items=[ResultFile(**item) for item in json.loads(row["result_items"] or "[]")],
            error_message=row["error_message"],
            processing_time_ms=row["processing_time_ms"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def select_operation_store(backend: str, db_path: Optional[Path] = None) -> OperationStore:
    """Choose the operation store once, at startup."""
    if backend == "memory":
        return InMemoryOperationStore()
    if backend == "sqlite" and db_path is not None:
        store = SqliteOperationStore(db_path)
        if store.init_db():
            return store
        logger.warning("[tracking] Database unavailable; continuing without operation tracking")
    return NullOperationStore()


class OperationTracker:
    """Owns operation records between creation and seal."""

    def __init__(self, store: OperationStore) -> None:
        self.store = store

    def open(self, kind: str, original_files: List[FileDescriptor]) -> Operation:
        """Create a record in status "processing"."""
        if kind not in OPERATION_KINDS:
            raise ValueError(f"Unknown operation kind: {kind}")
        operation = Operation(
            operation_id=uuid.uuid4().hex[:16],
            kind=kind,
            original_files=list(original_files),
        )
        self.store.insert(operation)
        logger.info(f"[{operation.operation_id}] {kind} operation created ({len(original_files)} files)")
        return operation

    def _seal(self, operation: Operation, status: str, processing_time_ms: int) -> None:
        if operation.is_sealed:
            raise InvalidTransitionError.already_sealed(operation.operation_id, operation.status)
        operation.status = status
        operation.processing_time_ms = int(processing_time_ms)
        operation.updated_at = _utcnow()

    def complete(
        self,
        operation: Operation,
        processing_time_ms: int,
        result_file: Optional[ResultFile] = None,
        result_items: Optional[List[ResultFile]] = None,
    ) -> Operation:
        self._seal(operation, COMPLETED, processing_time_ms)
        operation.result_file = result_file
        operation.result_items = list(result_items or [])
        self.store.update_terminal(operation)
        logger.info(f"[{operation.operation_id}] Status updated: {COMPLETED} ({operation.processing_time_ms}ms)")
        return operation

    def fail(self, operation: Operation, error_message: str, processing_time_ms: int) -> Operation:
        self._seal(operation, FAILED, processing_time_ms)
        operation.error_message = error_message
        self.store.update_terminal(operation)
        logger.info(f"[{operation.operation_id}] Status updated: {FAILED} - {error_message}")
        return operation
