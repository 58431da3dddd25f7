from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

MENTOR_FIELD = "mentorId"


class MentorCalendlyStore(ABC):
    @abstractmethod
    def get_calendly_info(self, mentor_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def save_calendly_info(self, mentor_id: str, values: Mapping[str, Any]) -> None:
        raise NotImplementedError


class InMemoryMentorCalendlyStore(MentorCalendlyStore):
    def __init__(self) -> None:
        self._info_by_mentor_id: dict[str, dict[str, Any]] = {}

    def get_calendly_info(self, mentor_id: str) -> dict[str, Any] | None:
        info = self._info_by_mentor_id.get(mentor_id)
        if info is None:
            return None
        return dict(info)

    def save_calendly_info(self, mentor_id: str, values: Mapping[str, Any]) -> None:
        info = dict(values)
        info[MENTOR_FIELD] = mentor_id
        info["updated_at"] = datetime.now(UTC)
        self._info_by_mentor_id[mentor_id] = info


class MongoMentorCalendlyStore(MentorCalendlyStore):
    def __init__(
        self,
        *,
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
        self._collection.create_index(MENTOR_FIELD)

    def get_calendly_info(self, mentor_id: str) -> dict[str, Any] | None:
        record = self._collection.find_one({MENTOR_FIELD: mentor_id})
        if not record:
            return None
        serialized = dict(record)
        serialized["_id"] = str(record.get("_id", ""))
        return serialized

    def save_calendly_info(self, mentor_id: str, values: Mapping[str, Any]) -> None:
        now = datetime.now(UTC)
        self._collection.update_one(
            {MENTOR_FIELD: mentor_id},
            {
                "$set": {**dict(values), "updated_at": now},
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
        )


def create_mentor_calendly_store(
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> MentorCalendlyStore:
    return _create_mentor_calendly_store_cached(
        store_name=store_name,
        mongodb_uri=mongodb_uri,
        mongodb_db_name=mongodb_db_name,
        mongodb_collection_name=mongodb_collection_name,
        mongodb_connect_timeout_ms=mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_mentor_calendly_store_cached(
    *,
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> MentorCalendlyStore:
    if store_name == "mongodb":
        return MongoMentorCalendlyStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryMentorCalendlyStore()


def clear_mentor_calendly_store_cache() -> None:
    _create_mentor_calendly_store_cached.cache_clear()
