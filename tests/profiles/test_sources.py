"""Tests for the JSON profile source, session inspector and profile synthesis."""

import json

import pytest

from profile_guard.cache.storage import InMemoryStorage
from profile_guard.exceptions import ErrorKind, RemoteSourceError
from profile_guard.profiles.models import UserProfile, is_durable_eligible
from profile_guard.profiles.sources import (
    JsonProfileSource,
    RemoteProfileSource,
    StorageSessionInspector,
    synthesize_profile,
)


def session_blob(user_id: str, **user_fields) -> str:
    return json.dumps({"access_token": "t", "user": {"id": user_id, **user_fields}})


@pytest.fixture
def profiles_file(tmp_path):
    path = tmp_path / "profiles.json"
    path.write_text(json.dumps({
        "u1": {"email": "ana@example.com", "full_name": "Ana", "role": "admin"},
        "u2": {"email": "bo@example.com", "role": 5},
    }))
    return path


class TestJsonProfileSource:
    @pytest.mark.asyncio
    async def test_fetch_known_profile(self, profiles_file) -> None:
        source = JsonProfileSource(profiles_file)
        profile = await source.fetch("u1")
        assert profile == UserProfile(id="u1", email="ana@example.com", full_name="Ana", role="admin")

    @pytest.mark.asyncio
    async def test_fetch_unknown_returns_none(self, profiles_file) -> None:
        assert await JsonProfileSource(profiles_file).fetch("nobody") is None

    @pytest.mark.asyncio
    async def test_invalid_record_is_malformed(self, profiles_file) -> None:
        with pytest.raises(RemoteSourceError) as exc_info:
            await JsonProfileSource(profiles_file).fetch("u2")
        assert exc_info.value.kind is ErrorKind.MALFORMED

    def test_invalid_json_file_is_malformed(self, tmp_path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{nope")
        with pytest.raises(RemoteSourceError) as exc_info:
            JsonProfileSource(path)
        assert exc_info.value.kind is ErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_missing_file_and_add_profile(self, tmp_path) -> None:
        source = JsonProfileSource(tmp_path / "missing.json")
        source.add_profile(UserProfile(id="u3", full_name="Cy"))
        profile = await source.fetch("u3")
        assert profile.full_name == "Cy"
        assert profile.role == "client"

    def test_satisfies_protocol(self) -> None:
        assert isinstance(JsonProfileSource(), RemoteProfileSource)


class TestStorageSessionInspector:
    def test_only_marked_keys_are_returned(self) -> None:
        storage = InMemoryStorage()
        storage.set("sb-project-Supabase-Auth-token", session_blob("u1"))
        storage.set("supabase-settings", "{}")
        storage.set("profile_cache_u1", "{}")
        blobs = StorageSessionInspector(storage).blobs()
        assert blobs == [session_blob("u1")]

    def test_custom_markers(self) -> None:
        storage = InMemoryStorage()
        storage.set("myapp.session", session_blob("u1"))
        assert len(StorageSessionInspector(storage, ["myapp", "session"]).blobs()) == 1


class TestSynthesizeProfile:
    def test_full_name_from_metadata(self) -> None:
        blob = session_blob(
            "u1", email="ana@example.com",
            user_metadata={"full_name": "Ana Lima", "role": "admin"},
        )
        profile = synthesize_profile("u1", [blob])
        assert profile == UserProfile(id="u1", email="ana@example.com", full_name="Ana Lima", role="admin")

    def test_name_falls_back_to_email_local_part(self) -> None:
        profile = synthesize_profile("u1", [session_blob("u1", email="ana@example.com")])
        assert profile.full_name == "ana"
        assert profile.role == "client"

    def test_defaults_without_email(self) -> None:
        profile = synthesize_profile("u1", [session_blob("u1")])
        assert profile.full_name == "User"
        assert profile.email == ""

    def test_current_user_member(self) -> None:
        blob = json.dumps({"currentUser": {"id": "u1", "user_metadata": {"name": "Ana"}}})
        assert synthesize_profile("u1", [blob]).full_name == "Ana"

    def test_other_subject_is_ignored(self) -> None:
        assert synthesize_profile("u1", [session_blob("u2")]) is None

    def test_unparseable_blobs_are_skipped(self) -> None:
        blobs = ["not json", "[]", session_blob("u1", email="x@example.com")]
        assert synthesize_profile("u1", blobs).email == "x@example.com"


class TestDurableEligibility:
    @pytest.mark.parametrize("role,expected", [
        ("admin", True),
        ("superadmin", True),
        ("client", False),
    ])
    def test_roles(self, role: str, expected: bool) -> None:
        assert is_durable_eligible(UserProfile(id="u1", role=role)) is expected
        assert is_durable_eligible({"role": role}) is expected

    def test_payload_without_role(self) -> None:
        assert is_durable_eligible("plain") is False
