from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

EVENT_URI_FIELD = "calendlyEventUri"
OWNER_FIELD = "userId"


class ScheduledCallStore(ABC):
    """Scheduled call documents, scoped per user and keyed by Calendly event URI.

    Uniqueness of (user, event URI) is not enforced here; callers check
    ``exists`` before ``create``.
    """

    @abstractmethod
    def exists(self, user_id: str, event_uri: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def create(self, user_id: str, record: Mapping[str, Any]) -> str:
        raise NotImplementedError

    @abstractmethod
    def update(self, user_id: str, event_uri: str, patch: Mapping[str, Any]) -> bool:
        raise NotImplementedError

    @abstractmethod
    def get_by_event_uri(self, user_id: str, event_uri: str) -> dict[str, Any] | None:
        raise NotImplementedError


class InMemoryScheduledCallStore(ScheduledCallStore):
    def __init__(self) -> None:
        self._records: list[dict[str, Any]] = []

    def exists(self, user_id: str, event_uri: str) -> bool:
        return self._find(user_id, event_uri) is not None

    def create(self, user_id: str, record: Mapping[str, Any]) -> str:
        record_id = f"memory-{len(self._records) + 1}"
        stored_record = dict(record)
        stored_record["_id"] = record_id
        stored_record[OWNER_FIELD] = user_id
        self._records.append(stored_record)
        return record_id

    def update(self, user_id: str, event_uri: str, patch: Mapping[str, Any]) -> bool:
        record = self._find(user_id, event_uri)
        if record is None:
            return False
        record.update(dict(patch))
        record["updatedAt"] = datetime.now(UTC)
        return True

    def get_by_event_uri(self, user_id: str, event_uri: str) -> dict[str, Any] | None:
        record = self._find(user_id, event_uri)
        if record is None:
            return None
        return dict(record)

    def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        return [dict(record) for record in self._records if record.get(OWNER_FIELD) == user_id]

    def _find(self, user_id: str, event_uri: str) -> dict[str, Any] | None:
        for record in self._records:
            if record.get(OWNER_FIELD) == user_id and record.get(EVENT_URI_FIELD) == event_uri:
                return record
        return None


class MongoScheduledCallStore(ScheduledCallStore):
    def __init__(
        self,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        self._collection = self._client[db_name][collection_name]
        self._collection.create_index([(OWNER_FIELD, 1), (EVENT_URI_FIELD, 1)])

    def exists(self, user_id: str, event_uri: str) -> bool:
        record = self._collection.find_one(
            {OWNER_FIELD: user_id, EVENT_URI_FIELD: event_uri},
            {"_id": 1},
        )
        return record is not None

    def create(self, user_id: str, record: Mapping[str, Any]) -> str:
        payload = dict(record)
        payload[OWNER_FIELD] = user_id
        insert_result = self._collection.insert_one(payload)
        return str(insert_result.inserted_id)

    def update(self, user_id: str, event_uri: str, patch: Mapping[str, Any]) -> bool:
        record = self._collection.find_one(
            {OWNER_FIELD: user_id, EVENT_URI_FIELD: event_uri},
            {"_id": 1},
        )
        if record is None:
            return False
        self._collection.update_one(
            {"_id": record["_id"]},
            {"$set": {**dict(patch), "updatedAt": datetime.now(UTC)}},
        )
        return True

    def get_by_event_uri(self, user_id: str, event_uri: str) -> dict[str, Any] | None:
        record = self._collection.find_one({OWNER_FIELD: user_id, EVENT_URI_FIELD: event_uri})
        if not record:
            return None
        serialized = dict(record)
        serialized["_id"] = str(record.get("_id", ""))
        return serialized


def create_scheduled_call_store(
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> ScheduledCallStore:
    return _create_scheduled_call_store_cached(
        store_name=store_name,
        mongodb_uri=mongodb_uri,
        mongodb_db_name=mongodb_db_name,
        mongodb_collection_name=mongodb_collection_name,
        mongodb_connect_timeout_ms=mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_scheduled_call_store_cached(
    *,
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> ScheduledCallStore:
    if store_name == "mongodb":
        return MongoScheduledCallStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryScheduledCallStore()


def clear_scheduled_call_store_cache() -> None:
    _create_scheduled_call_store_cached.cache_clear()
