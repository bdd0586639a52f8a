from __future__ import annotations

from services.store import UserStore

from fakes import FakeFirestore


def _store() -> tuple[UserStore, FakeFirestore]:
    db = FakeFirestore()
    return UserStore(db), db


def test_missing_user_has_empty_preferences_and_history() -> None:
    store, _ = _store()
    assert store.get_preferences("nobody") == {}
    history = store.get_history("nobody")
    assert history.search_keywords == []
    assert history.recommended_history == []


def test_preference_saves_merge_per_field() -> None:
    store, db = _store()
    store.merge_preferences("u1", {"blacklist": ["X"]})
    store.merge_preferences("u1", {"devMode": True})

    assert store.get_preferences("u1") == {"blacklist": ["X"], "devMode": True}
    assert all(kind == "set" and merge for kind, _, merge in db.writes)


def test_rating_entries_are_replaced_not_merged() -> None:
    store, _ = _store()
    store.merge_preferences(
        "u1",
        {"ratings": {"r.1": {"rating": 1, "comment": "awful", "timestamp": 1}, "r2": {"rating": 3, "timestamp": 1}}},
    )
    store.merge_preferences("u1", {"ratings": {"r.1": {"rating": 5, "timestamp": 2}}})

    ratings = store.get_preferences("u1")["ratings"]
    assert ratings["r.1"] == {"rating": 5, "timestamp": 2}
    assert ratings["r2"] == {"rating": 3, "timestamp": 1}


def test_empty_partial_is_not_written() -> None:
    store, db = _store()
    store.merge_preferences("u1", {})
    assert db.writes == []


def test_nested_preferences_are_migrated_once() -> None:
    store, db = _store()
    db.docs["userCollection/u1"] = {
        "email": "a@example.com",
        "preferences": {"language": "en", "preferences": {"blacklist": ["Y"], "devMode": True}},
    }

    first = store.get_preferences("u1")
    assert first == {"language": "en", "blacklist": ["Y"], "devMode": True}
    assert db.docs["userCollection/u1"]["preferences"] == first
    assert db.docs["userCollection/u1"]["email"] == "a@example.com"

    writes = len(db.writes)
    assert store.get_preferences("u1") == first
    assert len(db.writes) == writes


def test_history_appends_as_set_union() -> None:
    store, db = _store()
    assert store.append_history("u1", ["ramen"], ["A", "B"]) is True
    assert store.append_history("u1", ["ramen", "sushi"], ["B", "C", " "]) is True
    assert store.append_history("u1", [], []) is False

    history = store.get_history("u1")
    assert history.search_keywords == ["ramen", "sushi"]
    assert history.recommended_history == ["A", "B", "C"]


def test_sync_profile_keeps_preferences() -> None:
    store, db = _store()
    store.merge_preferences("u1", {"devMode": True})
    store.sync_profile("u1", email="a@example.com", display_name="Ann", photo_url=None)

    doc = db.docs["userCollection/u1"]
    assert doc["preferences"] == {"devMode": True}
    assert doc["email"] == "a@example.com"
    assert doc["displayName"] == "Ann"
    assert "lastLogin" in doc and "updatedAt" in doc


def test_custom_collection_name() -> None:
    db = FakeFirestore()
    UserStore(db, collection="people").merge_preferences("u9", {"language": "ja"})
    assert "people/u9" in db.docs
