"""
Data suppliers for the profile pipeline.

Provides the :class:`RemoteProfileSource` and :class:`SessionInspector`
protocols, a JSON-file profile source for development and testing, and
the session-blob scanner used by the session-synthesis fallback.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Union, runtime_checkable

from pydantic import ValidationError

from profile_guard.cache.storage import KeyValueStorage
from profile_guard.exceptions import ErrorKind, RemoteSourceError
from profile_guard.profiles.models import DEFAULT_NAME, DEFAULT_ROLE, UserProfile

logger = logging.getLogger(__name__)


@runtime_checkable
class RemoteProfileSource(Protocol):
    """Protocol for the authoritative profile backend."""

    async def fetch(self, subject_id: str) -> Optional[Union[UserProfile, Dict[str, Any]]]:
        """Fetch a profile.

        Raises:
            RemoteSourceError: With a kind describing the failure.
        """
        ...


@runtime_checkable
class SessionInspector(Protocol):
    """Protocol for reading locally stored session blobs."""

    def blobs(self) -> Iterable[str]:
        """Return raw session blobs that may embed an identity subset."""
        ...


# ------------------------------------------------------------------
# Local (JSON file) implementation
# ------------------------------------------------------------------


class JsonProfileSource:
    """JSON-file backed profile source for development and testing.

    The JSON file maps subject ids to profile objects::

        {
            "u1": {"email": "ana@example.com", "full_name": "Ana", "role": "admin"}
        }

    Args:
        data_path: Path to the JSON data file.

    Raises:
        RemoteSourceError: If the file cannot be parsed (``MALFORMED``).
    """

    def __init__(self, data_path: Optional[Path] = None) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}
        if data_path is not None and data_path.exists():
            self._load(data_path)
        logger.info(
            "JsonProfileSource initialised",
            extra={"data_path": str(data_path), "profiles": len(self._data)},
        )

    async def fetch(self, subject_id: str) -> Optional[UserProfile]:
        record = self._data.get(subject_id)
        if record is None:
            return None
        try:
            return UserProfile.model_validate({**record, "id": subject_id})
        except ValidationError as exc:
            raise RemoteSourceError(
                ErrorKind.MALFORMED, f"Invalid profile record for {subject_id}: {exc}"
            ) from exc

    def add_profile(self, profile: UserProfile) -> None:
        """Add or replace a profile (development and testing helper)."""
        self._data[profile.id] = profile.model_dump(exclude={"id"})

    def _load(self, path: Path) -> None:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise RemoteSourceError(
                ErrorKind.MALFORMED, f"Invalid JSON in profile file {path}: {exc}"
            ) from exc
        except OSError as exc:
            raise RemoteSourceError(
                ErrorKind.NETWORK, f"Cannot read profile file {path}: {exc}"
            ) from exc
        self._data = data if isinstance(data, dict) else {}


# ------------------------------------------------------------------
# Session inspection
# ------------------------------------------------------------------


class StorageSessionInspector:
    """Yields blobs from a storage provider whose keys contain every marker.

    Args:
        storage: Session-scoped storage to scan.
        markers: Substrings that must all appear in a key.
    """

    def __init__(self, storage: KeyValueStorage, markers: Sequence[str] = ("supabase", "auth")) -> None:
        self._storage = storage
        self._markers = [m.lower() for m in markers]

    def blobs(self) -> List[str]:
        found: List[str] = []
        for key in self._storage.keys():
            lowered = key.lower()
            if not all(m in lowered for m in self._markers):
                continue
            blob = self._storage.get(key)
            if blob:
                found.append(blob)
        return found


def synthesize_profile(subject_id: str, blobs: Iterable[str]) -> Optional[UserProfile]:
    """Build a minimal profile from the first session blob naming *subject_id*.

    A blob qualifies when it is a JSON object whose ``user`` (or
    ``currentUser``) member has a matching ``id``.  Unparseable blobs are
    skipped.

    Returns:
        The synthesized profile, or ``None`` when no blob matches.
    """
    for blob in blobs:
        try:
            parsed = json.loads(blob)
        except (TypeError, ValueError):
            logger.debug("Skipping unparseable session blob")
            continue
        if not isinstance(parsed, dict):
            continue
        user = parsed.get("user") or parsed.get("currentUser")
        if not isinstance(user, dict) or user.get("id") != subject_id:
            continue

        metadata = user.get("user_metadata") or {}
        email = user.get("email") or ""
        full_name = (
            metadata.get("full_name")
            or metadata.get("name")
            or (email.split("@")[0] if email else "")
            or DEFAULT_NAME
        )
        return UserProfile(
            id=subject_id,
            email=email,
            full_name=full_name,
            role=metadata.get("role") or DEFAULT_ROLE,
        )
    return None
