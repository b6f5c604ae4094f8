"""
Incremental vectorization - keeps the vector index in step with a changing keybinding set.

Records become IndexDocuments (content string + metadata + embedding), are
stored in fixed-size batches, and their fingerprints are committed only
after the batch's store call succeeds. Embedding happens outside the
exclusive lock; only index writes and fingerprint mutation take it.
"""

import threading
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import ConsistencyError, EmptyContentError, IndexServiceError, KeybindRagError
from .fingerprints import ChangeDetector, ChangeStats
from .models import KeybindingRecord
from .rwlock import ReadWriteLock
from ..util.logging import logger
from ..vector.embeddings import EmbeddingEmitter, normalize_text
from ..vector.index import IVectorIndex
from ..vector.types import IndexDocument

# Metadata keys written by the vectorizer; caller metadata never overrides them
RESERVED_METADATA_KEYS = (
    "keybinding_id", "keys", "command", "mode", "description", "plugin",
    "vectorized_at", "content_length", "has_description", "has_plugin",
)


@dataclass
class VectorizerConfig:
    batch_size: int = 50
    include_description: bool = True
    include_mode: bool = True
    include_plugin: bool = True
    enable_change_detection: bool = True
    max_content_length: int = 1000


@dataclass
class UpdateResult:
    total_processed: int
    changed_count: int
    deleted_count: int
    new_count: int = 0
    modified_count: int = 0
    stored_count: int = 0
    skipped_ids: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class IncrementalVectorizer:
    """Turns keybinding records into index documents and syncs them to the index."""

    def __init__(self, index: IVectorIndex, emitter: EmbeddingEmitter, detector: ChangeDetector,
                 lock: Optional[ReadWriteLock] = None, config: Optional[VectorizerConfig] = None):
        self.index = index
        self.emitter = emitter
        self.detector = detector
        self.lock = lock or ReadWriteLock()
        self.config = config or VectorizerConfig()
        # Serializes whole sync runs against each other; queries never take it
        self._sync_lock = threading.Lock()

        self.last_sync_mode: Optional[str] = None
        self.last_sync_at: Optional[str] = None
        self.last_sync_duration_ms: float = 0.0

    # Document building

    def build_content(self, record: KeybindingRecord) -> str:
        """Canonical searchable text for a record."""
        parts = [record.keys, record.command]

        if self.config.include_description and record.description:
            parts.append(record.description)
        if self.config.include_mode and record.mode:
            parts.append(f"mode:{record.mode}")
        if self.config.include_plugin and record.plugin:
            parts.append(f"plugin:{record.plugin}")

        for key, value in sorted(record.metadata.items()):
            if value:
                parts.append(f"{key}:{value}")

        content = normalize_text(" ".join(part for part in parts if part))

        limit = self.config.max_content_length
        if len(content) > limit:
            content = content[:limit]
            last_space = content.rfind(" ")
            if last_space > limit // 2:
                content = content[:last_space]

        return content

    def build_metadata(self, record: KeybindingRecord, content: str) -> Dict[str, str]:
        metadata = {str(k): str(v) for k, v in record.metadata.items()}

        reserved = {
            "keybinding_id": record.id,
            "keys": record.keys,
            "command": record.command,
            "mode": record.mode or "",
            "vectorized_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "content_length": str(len(content)),
            "has_description": "true" if record.description else "false",
            "has_plugin": "true" if record.plugin else "false",
        }
        if record.description:
            reserved["description"] = record.description
        if record.plugin:
            reserved["plugin"] = record.plugin

        # Drop caller values for reserved keys we leave unset (description/plugin)
        for key in RESERVED_METADATA_KEYS:
            metadata.pop(key, None)
        metadata.update(reserved)
        return metadata

    def vectorize_one(self, record: KeybindingRecord) -> IndexDocument:
        """Build and embed the index document for one record."""
        content = self.build_content(record)
        if not content:
            raise EmptyContentError(record.id)

        try:
            vector = self.emitter.embed(content)
        except EmptyContentError:
            raise EmptyContentError(record.id) from None

        return IndexDocument(
            id=record.id,
            content=content,
            vector=vector,
            metadata=self.build_metadata(record, content),
        )

    # Sync operations

    def batch_vectorize_and_store(self, records: List[KeybindingRecord]) -> UpdateResult:
        """
        Embed and store records batch by batch.

        A failing batch aborts the run. Batches committed before it stay
        committed; if any were, the failure is raised as ConsistencyError,
        otherwise the original error propagates. Records with no embeddable
        content are skipped and left out of the fingerprint table.
        """
        result = UpdateResult(total_processed=len(records), changed_count=len(records), deleted_count=0)
        committed_ids: List[str] = []
        batch_size = max(1, self.config.batch_size)

        for start in range(0, len(records), batch_size):
            batch = records[start:start + batch_size]
            try:
                documents = []
                fingerprints = {}
                for record in batch:
                    try:
                        documents.append(self.vectorize_one(record))
                    except EmptyContentError:
                        logger.log_vector_operation("vectorize", [record.id], {"reason": "empty content"}, status="skipped")
                        result.skipped_ids.append(record.id)
                        continue
                    fingerprints[record.id] = self.detector.hasher.fingerprint(record)

                if not documents:
                    continue

                with self.lock.write_lock():
                    try:
                        self.index.store(documents)
                    except KeybindRagError:
                        raise
                    except Exception as e:
                        raise IndexServiceError(f"store failed: {e}") from e
                    self.detector.commit(fingerprints)

                committed_ids.extend(fingerprints.keys())
                result.stored_count += len(documents)
                logger.log_vector_operation("store", list(fingerprints.keys()), {"batch_start": start})

            except KeybindRagError as e:
                pending_ids = [record.id for record in records[start:]]
                logger.log_vector_operation("store", pending_ids, {"error": str(e), "committed": len(committed_ids)}, status="failed")
                if committed_ids:
                    raise ConsistencyError(
                        f"Batch starting at {start} failed after {len(committed_ids)} records were committed: {e}",
                        committed_ids=committed_ids,
                        pending_ids=pending_ids,
                        cause=e,
                    ) from e
                raise

        return result

    def incremental_update(self, records: List[KeybindingRecord]) -> UpdateResult:
        """Sync the index to `records`: store new/modified, delete removed, skip unchanged."""
        with self._sync_lock:
            return self._incremental_update(records)

    def _incremental_update(self, records: List[KeybindingRecord]) -> UpdateResult:
        start_time = time.time()
        records = self._dedupe(records)

        if not self.config.enable_change_detection:
            result = self.batch_vectorize_and_store(records)
            result.new_count = len(records)
            result.deleted_count = self._drop_skipped(result.skipped_ids)
            return self._finish("incremental", start_time, result)

        with self.lock.read_lock():
            change_set = self.detector.diff(records)

        try:
            if change_set.deleted_ids:
                self._delete(change_set.deleted_ids)

            changed = set(change_set.changed_ids)
            stored = self.batch_vectorize_and_store([r for r in records if r.id in changed])
            dropped = self._drop_skipped(stored.skipped_ids)
        except KeybindRagError as e:
            logger.log_sync("incremental", start_time, time.time(), "failed", {"error": str(e)})
            raise

        result = UpdateResult(
            total_processed=len(records),
            changed_count=len(change_set.changed_ids),
            deleted_count=len(change_set.deleted_ids) + dropped,
            new_count=len(change_set.new_ids),
            modified_count=len(change_set.modified_ids),
            stored_count=stored.stored_count,
            skipped_ids=stored.skipped_ids,
        )
        return self._finish("incremental", start_time, result)

    def full_sync(self, records: List[KeybindingRecord]) -> UpdateResult:
        """Add-only rebuild: vectorize and store every record. Stale documents are not deleted."""
        with self._sync_lock:
            start_time = time.time()
            records = self._dedupe(records)
            try:
                result = self.batch_vectorize_and_store(records)
                result.deleted_count = self._drop_skipped(result.skipped_ids)
            except KeybindRagError as e:
                logger.log_sync("full", start_time, time.time(), "failed", {"error": str(e)})
                raise
            result.new_count = len(records)
            return self._finish("full", start_time, result)

    def rebuild_hash_store(self, records: List[KeybindingRecord]) -> Dict[str, int]:
        """Repopulate the fingerprint table from `records` without touching the index."""
        with self._sync_lock:
            start_time = time.time()
            with self.lock.write_lock():
                previous, current = self.detector.rebuild(records)
            logger.log_sync("rebuild_hashes", start_time, time.time(), "success",
                            {"previous_size": previous, "current_size": current})
            return {"previous_size": previous, "current_size": current}

    def clear_hash_store(self) -> None:
        with self._sync_lock, self.lock.write_lock():
            self.detector.table.clear()
        logger.log_operation("sync.clear_hashes", "success")

    def _delete(self, record_ids: List[str]) -> None:
        """Remove documents from the index, then forget their fingerprints."""
        with self.lock.write_lock():
            try:
                self.index.delete(record_ids)
            except KeybindRagError:
                raise
            except Exception as e:
                raise IndexServiceError(f"delete failed: {e}") from e
            self.detector.forget(record_ids)
        logger.log_vector_operation("delete", record_ids)

    def _drop_skipped(self, skipped_ids: List[str]) -> int:
        """Records edited down to empty content leave the index. Returns how many were dropped."""
        stale = [record_id for record_id in skipped_ids if self.detector.table.get(record_id) is not None]
        if stale:
            self._delete(stale)
        return len(stale)

    def get_change_stats(self, records: List[KeybindingRecord]) -> ChangeStats:
        with self.lock.read_lock():
            return self.detector.stats(records)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "hash_store_size": len(self.detector.table),
            "index_count": self.index.count(),
            "batch_size": self.config.batch_size,
            "change_detection": self.config.enable_change_detection,
            "last_sync_mode": self.last_sync_mode,
            "last_sync_at": self.last_sync_at,
            "last_sync_duration_ms": self.last_sync_duration_ms,
        }

    @staticmethod
    def _dedupe(records: List[KeybindingRecord]) -> List[KeybindingRecord]:
        """Keep the last occurrence of each id, in first-seen order."""
        by_id: Dict[str, KeybindingRecord] = {}
        for record in records:
            by_id[record.id] = record
        return list(by_id.values())

    def _finish(self, mode: str, start_time: float, result: UpdateResult) -> UpdateResult:
        end_time = time.time()
        result.duration_ms = round((end_time - start_time) * 1000, 2)
        self.last_sync_mode = mode
        self.last_sync_at = datetime.now(timezone.utc).isoformat()
        self.last_sync_duration_ms = result.duration_ms
        logger.log_sync(mode, start_time, end_time, "success", {
            "processed": result.total_processed,
            "changed": result.changed_count,
            "deleted": result.deleted_count,
            "skipped": len(result.skipped_ids),
        })
        return result
