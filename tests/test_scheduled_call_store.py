from app.services.scheduled_call_store import InMemoryScheduledCallStore

EVENT_URI = "https://api.calendly.com/scheduled_events/EVT-1"


def test_records_are_scoped_per_user() -> None:
    store = InMemoryScheduledCallStore()
    record_id = store.create("user-1", {"calendlyEventUri": EVENT_URI, "status": "active"})

    assert record_id
    assert store.exists("user-1", EVENT_URI) is True
    assert store.exists("user-2", EVENT_URI) is False
    assert store.exists("user-1", "https://api.calendly.com/scheduled_events/OTHER") is False


def test_create_does_not_deduplicate() -> None:
    store = InMemoryScheduledCallStore()
    first_id = store.create("user-1", {"calendlyEventUri": EVENT_URI})
    second_id = store.create("user-1", {"calendlyEventUri": EVENT_URI})

    assert first_id != second_id
    assert len(store.list_for_user("user-1")) == 2


def test_update_merges_patch_and_stamps_updated_at() -> None:
    store = InMemoryScheduledCallStore()
    store.create("user-1", {"calendlyEventUri": EVENT_URI, "status": "active", "inviteeName": "Jane"})

    updated = store.update("user-1", EVENT_URI, {"status": "canceled"})

    assert updated is True
    record = store.get_by_event_uri("user-1", EVENT_URI)
    assert record is not None
    assert record["status"] == "canceled"
    assert record["inviteeName"] == "Jane"
    assert record["updatedAt"] is not None


def test_update_without_match_returns_false() -> None:
    store = InMemoryScheduledCallStore()

    assert store.update("user-1", EVENT_URI, {"status": "canceled"}) is False
