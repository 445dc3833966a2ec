"""
Storage Backend Module

The key-addressable upsert store the ledger persists to, with in-memory
(testing) and SQLite implementations. Records are plain dicts: Decimals are
stored as strings and dates as ISO strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Set, Union
from decimal import Decimal
from datetime import datetime, timezone
import copy
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .errors import PersistenceError


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result


class StorageInterface(ABC):
    """
    Abstract interface for storage backends.

    `save` is an upsert keyed by `(table, record_id)`. Backends that support
    it group writes with `atomic()`; scopes nest and only the outermost one
    commits or rolls back.
    """

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Records whose fields equal every value in `filters`"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def begin_transaction(self) -> None:
        pass

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass

    @contextmanager
    def atomic(self):
        """Group writes: all are kept on normal exit, none if the block raises"""
        self.begin_transaction()
        try:
            yield
        except Exception:
            self.rollback()
            raise
        self.commit()


class InMemoryStorage(StorageInterface):
    """Dict-backed storage for tests; `atomic()` restores a deep snapshot on rollback"""

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None
        self._depth = 0

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(table, {})

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            # JSON round-trip so the stored copy never aliases caller objects
            self._table(table)[record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._table(table).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(record) for record in self._table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._table(table).values()
                if all(key in record and record[key] == value for key, value in filters.items())
            ]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._tables[table] = {}

    def begin_transaction(self) -> None:
        self._lock.acquire()
        if self._depth == 0:
            self._snapshot = copy.deepcopy(self._tables)
        self._depth += 1

    def commit(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        self._depth -= 1
        if self._depth == 0 and self._snapshot is not None:
            self._tables = self._snapshot
            self._snapshot = None
        self._lock.release()

    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage: one `(id, data)` table per record kind, the record itself
    kept as a JSON document.

    Outside an `atomic()` scope every write commits on its own. Inside one,
    writes accumulate in a single SQLite transaction and the connection lock
    is held until the outermost scope ends.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        try:
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open database {self.db_path}: {exc}") from exc
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._tables: Set[str] = set()

        if self.db_path != ":memory:":
            with self._guard("open"):
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @contextmanager
    def _guard(self, operation: str):
        """Serialize access and translate driver errors"""
        with self._lock:
            try:
                yield
            except sqlite3.Error as exc:
                raise PersistenceError(f"SQLite {operation} failed: {exc}") from exc

    def _table(self, table: str) -> str:
        """Validated table name, created on first use"""
        if not table.isidentifier():
            raise ValueError(f"Invalid table name: {table!r}")
        if table not in self._tables:
            self._connection.execute(
                f"CREATE TABLE IF NOT EXISTS {table} ("
                "id TEXT PRIMARY KEY, data TEXT NOT NULL, "
                "created_at TEXT NOT NULL, updated_at TEXT NOT NULL)"
            )
            self._autocommit()
            self._tables.add(table)
        return table

    def _autocommit(self) -> None:
        if self._depth == 0:
            self._connection.commit()

    def _documents(self, cursor: sqlite3.Cursor) -> List[Dict[str, Any]]:
        return [json.loads(row['data']) for row in cursor.fetchall()]

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._guard("save"):
            name = self._table(table)
            now = datetime.now(timezone.utc).isoformat()
            # Upsert keeps the first-seen created_at
            self._connection.execute(
                f"INSERT INTO {name} (id, data, created_at, updated_at) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at",
                (record_id, json.dumps(data, default=str), now, now)
            )
            self._autocommit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._guard("load"):
            row = self._connection.execute(
                f"SELECT data FROM {self._table(table)} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._guard("load_all"):
            return self._documents(self._connection.execute(
                f"SELECT data FROM {self._table(table)} ORDER BY created_at, id"
            ))

    def delete(self, table: str, record_id: str) -> bool:
        with self._guard("delete"):
            cursor = self._connection.execute(f"DELETE FROM {self._table(table)} WHERE id = ?", (record_id,))
            self._autocommit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._guard("exists"):
            return self._connection.execute(
                f"SELECT 1 FROM {self._table(table)} WHERE id = ? LIMIT 1", (record_id,)
            ).fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Records whose top-level JSON fields equal every filter value"""
        with self._guard("find"):
            clauses, params = [], []
            for key, value in filters.items():
                if not key.isidentifier():
                    raise ValueError(f"Invalid filter field: {key!r}")
                if value is None:
                    clauses.append(f"json_extract(data, '$.{key}') IS NULL")
                else:
                    clauses.append(f"json_extract(data, '$.{key}') = ?")
                    params.append(value)
            where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
            return self._documents(self._connection.execute(
                f"SELECT data FROM {self._table(table)}{where} ORDER BY created_at, id", params
            ))

    def count(self, table: str) -> int:
        with self._guard("count"):
            return self._connection.execute(f"SELECT COUNT(*) FROM {self._table(table)}").fetchone()[0]

    def clear_table(self, table: str) -> None:
        with self._guard("clear_table"):
            self._connection.execute(f"DELETE FROM {self._table(table)}")
            self._autocommit()

    def begin_transaction(self) -> None:
        # The lock stays held until the matching commit/rollback
        self._lock.acquire()
        self._depth += 1

    def commit(self) -> None:
        try:
            self._depth -= 1
            if self._depth == 0:
                try:
                    self._connection.commit()
                except sqlite3.Error as exc:
                    self._connection.rollback()
                    self._tables.clear()
                    raise PersistenceError(f"SQLite commit failed: {exc}") from exc
        finally:
            self._lock.release()

    def rollback(self) -> None:
        try:
            self._depth -= 1
            if self._depth == 0:
                self._connection.rollback()
                # Tables created inside the transaction are gone again
                self._tables.clear()
        finally:
            self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
