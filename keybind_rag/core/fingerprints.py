"""
Content fingerprints and change detection for incremental index sync.

The fingerprint table maps keybinding id -> content hash for every record
currently in the index. It is only written after the matching index
store/delete has succeeded.
"""

import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from .db import get_db, init_db
from .models import KeybindingRecord


class ContentHasher:
    """Computes a SHA-256 fingerprint over every searchable field of a record."""

    @staticmethod
    def fingerprint(record: KeybindingRecord) -> str:
        # JSON encoding keeps field boundaries unambiguous ("a|b","c" != "a","b|c")
        payload = json.dumps(
            [
                record.keys,
                record.command,
                record.description or "",
                record.mode or "",
                record.plugin or "",
                sorted(record.metadata.items()),
            ],
            ensure_ascii=False,
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class IFingerprintTable(ABC):
    """Persistent id -> fingerprint map."""

    @abstractmethod
    def get(self, record_id: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_many(self, entries: Dict[str, str]) -> None:
        pass

    @abstractmethod
    def delete_many(self, record_ids: Iterable[str]) -> None:
        pass

    @abstractmethod
    def items(self) -> Dict[str, str]:
        """Full enumeration as a fresh dict."""
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass

    def set(self, record_id: str, fingerprint: str) -> None:
        self.set_many({record_id: fingerprint})

    def delete(self, record_id: str) -> None:
        self.delete_many([record_id])

    def replace_all(self, entries: Dict[str, str]) -> None:
        """Discard every entry and store `entries`."""
        self.clear()
        self.set_many(entries)


class InMemoryFingerprintTable(IFingerprintTable):
    """Dict-backed table, lost on restart."""

    def __init__(self, entries: Dict[str, str] = None):
        self._entries: Dict[str, str] = dict(entries or {})

    def get(self, record_id: str) -> Optional[str]:
        return self._entries.get(record_id)

    def set_many(self, entries: Dict[str, str]) -> None:
        self._entries.update(entries)

    def delete_many(self, record_ids: Iterable[str]) -> None:
        for record_id in record_ids:
            self._entries.pop(record_id, None)

    def items(self) -> Dict[str, str]:
        return dict(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class SQLiteFingerprintTable(IFingerprintTable):
    """SQLite-backed table that survives process restarts."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_db(db_path)

    def get(self, record_id: str) -> Optional[str]:
        with get_db(self.db_path) as conn:
            row = conn.execute("SELECT hash FROM fingerprints WHERE id = ?", (record_id,)).fetchone()
        return row[0] if row else None

    def set_many(self, entries: Dict[str, str]) -> None:
        if not entries:
            return
        now = datetime.now(timezone.utc).isoformat()
        with get_db(self.db_path) as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO fingerprints (id, hash, updated_at) VALUES (?, ?, ?)",
                [(record_id, fingerprint, now) for record_id, fingerprint in entries.items()],
            )
            conn.commit()

    def delete_many(self, record_ids: Iterable[str]) -> None:
        ids = [(record_id,) for record_id in record_ids]
        if not ids:
            return
        with get_db(self.db_path) as conn:
            conn.executemany("DELETE FROM fingerprints WHERE id = ?", ids)
            conn.commit()

    def items(self) -> Dict[str, str]:
        with get_db(self.db_path) as conn:
            rows = conn.execute("SELECT id, hash FROM fingerprints").fetchall()
        return {row[0]: row[1] for row in rows}

    def clear(self) -> None:
        with get_db(self.db_path) as conn:
            conn.execute("DELETE FROM fingerprints")
            conn.commit()

    def replace_all(self, entries: Dict[str, str]) -> None:
        # Single transaction so a crash never leaves an empty table behind
        now = datetime.now(timezone.utc).isoformat()
        with get_db(self.db_path) as conn:
            conn.execute("DELETE FROM fingerprints")
            conn.executemany(
                "INSERT INTO fingerprints (id, hash, updated_at) VALUES (?, ?, ?)",
                [(record_id, fingerprint, now) for record_id, fingerprint in entries.items()],
            )
            conn.commit()

    def __len__(self) -> int:
        with get_db(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM fingerprints").fetchone()[0]


@dataclass
class ChangeSet:
    """Outcome of diffing a candidate record set against the fingerprint table."""

    changed_ids: List[str] = field(default_factory=list)
    deleted_ids: List[str] = field(default_factory=list)
    new_ids: List[str] = field(default_factory=list)
    modified_ids: List[str] = field(default_factory=list)
    unchanged_count: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.changed_ids or self.deleted_ids)


@dataclass
class ChangeStats:
    new: int
    modified: int
    unchanged: int
    deleted: int
    total_current: int
    total_stored: int


class ChangeDetector:
    """
    Classifies records as new, modified, unchanged or deleted.

    Changed = id absent from the table or fingerprint differs.
    Deleted = id in the table but absent from the candidate set.
    The result does not depend on input ordering beyond list order of ids.
    """

    def __init__(self, table: IFingerprintTable, hasher: ContentHasher = None):
        self.table = table
        self.hasher = hasher or ContentHasher()

    def fingerprints(self, records: Iterable[KeybindingRecord]) -> Dict[str, str]:
        """Fingerprint each record by id. A repeated id keeps its last occurrence."""
        return {record.id: self.hasher.fingerprint(record) for record in records}

    def diff(self, records: Iterable[KeybindingRecord], stored: Dict[str, str] = None) -> ChangeSet:
        current = self.fingerprints(records)
        if stored is None:
            stored = self.table.items()

        change_set = ChangeSet()
        for record_id, fingerprint in current.items():
            previous = stored.get(record_id)
            if previous is None:
                change_set.new_ids.append(record_id)
                change_set.changed_ids.append(record_id)
            elif previous != fingerprint:
                change_set.modified_ids.append(record_id)
                change_set.changed_ids.append(record_id)
            else:
                change_set.unchanged_count += 1

        change_set.deleted_ids = sorted(record_id for record_id in stored if record_id not in current)
        return change_set

    def stats(self, records: Iterable[KeybindingRecord]) -> ChangeStats:
        """Counts only; nothing is mutated."""
        records = list(records)
        stored = self.table.items()
        change_set = self.diff(records, stored)
        return ChangeStats(
            new=len(change_set.new_ids),
            modified=len(change_set.modified_ids),
            unchanged=change_set.unchanged_count,
            deleted=len(change_set.deleted_ids),
            total_current=len({record.id for record in records}),
            total_stored=len(stored),
        )

    def commit(self, fingerprints: Dict[str, str]) -> None:
        """Record fingerprints for records whose index write succeeded."""
        self.table.set_many(fingerprints)

    def forget(self, record_ids: List[str]) -> None:
        """Drop fingerprints for records whose index delete succeeded."""
        self.table.delete_many(record_ids)

    def rebuild(self, records: Iterable[KeybindingRecord]) -> Tuple[int, int]:
        """Replace the table with fingerprints of `records`. Returns (previous, current) sizes."""
        previous = len(self.table)
        entries = self.fingerprints(records)
        self.table.replace_all(entries)
        return previous, len(entries)
