"""Profile records, their data sources and the resolution pipeline."""

from profile_guard.profiles.models import UserProfile, is_durable_eligible
from profile_guard.profiles.resolver import ProfileResolver
from profile_guard.profiles.sources import (
    JsonProfileSource,
    RemoteProfileSource,
    SessionInspector,
    StorageSessionInspector,
    synthesize_profile,
)

__all__ = [
    "JsonProfileSource",
    "ProfileResolver",
    "RemoteProfileSource",
    "SessionInspector",
    "StorageSessionInspector",
    "UserProfile",
    "is_durable_eligible",
    "synthesize_profile",
]
