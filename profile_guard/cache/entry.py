"""
Cache entry and statistics models for the tiered profile cache.

Entries are immutable: promotion and overwrite produce new instances via
``model_copy`` so the original ``created_at`` travels with every copy.
"""

import json
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

from profile_guard.exceptions import SchemaVersionMismatch


def utcnow() -> datetime:
    """Current UTC time; the default clock for cache components."""
    return datetime.now(timezone.utc)


class Origin(str, Enum):
    """Provenance tag for a cached payload."""

    AUTHORITATIVE = "authoritative"
    DERIVED = "derived"
    FALLBACK = "fallback"


class CacheEntry(BaseModel):
    """A single cached subject record.

    Attributes:
        payload: The cached record (a pydantic model or plain JSON data).
        created_at: UTC timestamp of the original fetch.
        schema_version: Layout version of the serialized entry.
        expires_at: UTC timestamp after which this tier copy is stale.
        origin: Where the payload came from.
    """

    model_config = ConfigDict(frozen=True)

    payload: Any
    created_at: datetime = Field(default_factory=utcnow)
    schema_version: str = "1.0"
    expires_at: datetime = Field(default_factory=utcnow)
    origin: Origin = Origin.AUTHORITATIVE

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def with_ttl(self, now: datetime, ttl_seconds: float) -> "CacheEntry":
        """Copy of this entry expiring ``ttl_seconds`` after *now*."""
        return self.model_copy(
            update={"expires_at": now + timedelta(seconds=ttl_seconds)}
        )

    def to_blob(self) -> str:
        """Serialize to the string blob stored by key/value providers."""
        payload = self.payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        return json.dumps({
            "payload": payload,
            "created_at": self.created_at.isoformat(),
            "schema_version": self.schema_version,
            "expires_at": self.expires_at.isoformat(),
            "origin": self.origin.value,
        })

    @classmethod
    def from_blob(
        cls,
        blob: str,
        payload_model: Optional[Type[BaseModel]] = None,
        expected_version: Optional[str] = None,
    ) -> "CacheEntry":
        """Parse a stored blob.

        The version is checked before the payload is validated, so an
        entry written under another layout never reaches *payload_model*.

        Raises:
            SchemaVersionMismatch: If *expected_version* is given and the
                blob records another version.
            ValueError: If the blob is not a valid serialized entry.
        """
        data: Dict[str, Any] = json.loads(blob)
        if not isinstance(data, dict):
            raise ValueError("Cache blob is not a JSON object")
        if expected_version is not None:
            found = str(data.get("schema_version", cls.model_fields["schema_version"].default))
            if found != expected_version:
                raise SchemaVersionMismatch(found, expected_version)
        if payload_model is not None and data.get("payload") is not None:
            data["payload"] = payload_model.model_validate(data["payload"])
        return cls.model_validate(data)


class CacheStats(BaseModel):
    """Aggregate cache statistics.

    Attributes:
        requests: Number of ``get`` calls with a non-empty key.
        tier_hits: Hit count per tier name.
        tier_misses: Miss count per tier name (one per tier consulted).
        misses: Lookups that missed every tier.
        errors: Storage-layer failures swallowed by the store.
        memory_size: Current number of entries in the memory tier.
        last_sweep: Completion time of the most recent sweep.
        total_lookups: ``sum(tier_hits) + misses``.
        hit_rate: Ratio of hits to total lookups (0.0 if no lookups).
    """

    requests: int = 0
    tier_hits: Dict[str, int] = Field(default_factory=dict)
    tier_misses: Dict[str, int] = Field(default_factory=dict)
    misses: int = 0
    errors: int = 0
    memory_size: int = 0
    last_sweep: Optional[datetime] = None
    total_lookups: int = 0
    hit_rate: float = 0.0

    @property
    def hits(self) -> int:
        return sum(self.tier_hits.values())
