"""
Request/response models for the keybinding retrieval API.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any

from ..core.models import KeybindingRecord


class KeybindingIn(BaseModel):
    id: str
    keys: str
    command: str
    description: str = ""
    mode: str = ""
    plugin: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator('id')
    @classmethod
    def id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('id cannot be empty')
        return v

    @field_validator('keys')
    @classmethod
    def keys_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('keys cannot be empty')
        return v

    def to_record(self) -> KeybindingRecord:
        return KeybindingRecord(
            id=self.id,
            keys=self.keys,
            command=self.command,
            description=self.description,
            mode=self.mode,
            plugin=self.plugin,
            metadata=dict(self.metadata),
        )


class QueryRequest(BaseModel):
    query: str
    limit: Optional[int] = None


class IntentOut(BaseModel):
    type: str
    confidence: float
    keywords: List[str] = []


class RankedResultOut(BaseModel):
    keybinding: Dict[str, Any]
    relevance: float
    explanation: str


class QueryResponse(BaseModel):
    results: List[RankedResultOut]
    reasoning: str
    error: Optional[str] = None
    error_code: Optional[int] = None
    status: str
    intent: Optional[IntentOut] = None
    expanded_query: Optional[str] = None
    used_fallback: bool = False
    duration_ms: float = 0.0


class IndexUpdateRequest(BaseModel):
    keybindings: List[KeybindingIn]


class IndexUpdateResponse(BaseModel):
    total_processed: int
    changed_count: int
    deleted_count: int
    new_count: int = 0
    modified_count: int = 0
    stored_count: int = 0
    skipped_ids: List[str] = []
    duration_ms: float = 0.0


class HashRebuildResponse(BaseModel):
    previous_size: int
    current_size: int


class IndexStatsResponse(BaseModel):
    hash_store_size: int
    index_count: int
    batch_size: int
    change_detection: bool
    last_sync_mode: Optional[str] = None
    last_sync_at: Optional[str] = None
    last_sync_duration_ms: float = 0.0


class HealthResponse(BaseModel):
    status: str
    version: str
    index: bool
    inference: bool
    fingerprint_store: bool
    indexed_documents: int
    hash_store_size: int


class MetricsResponse(BaseModel):
    query_count: int
    success_count: int
    failure_count: int
    avg_response_ms: float
    min_response_ms: float
    max_response_ms: float
    hash_store_size: int
    last_sync_duration_ms: float


class ErrorResponse(BaseModel):
    code: int
    message: str
    detail: Optional[str] = None
