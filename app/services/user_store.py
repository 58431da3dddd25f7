from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any
from uuid import uuid4

from app.core.config import Settings


class UserStore(ABC):
    @abstractmethod
    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def get_user_by_calendly_uri(self, calendly_user_uri: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def save_user(self, user: Mapping[str, Any]) -> str:
        raise NotImplementedError


class InMemoryUserStore(UserStore):
    def __init__(self) -> None:
        self._users_by_id: dict[str, dict[str, Any]] = {}

    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        user = self._users_by_id.get(user_id)
        if not user:
            return None
        return dict(user)

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        normalized_email = _normalize_email(email)
        for user in self._users_by_id.values():
            if user.get("email") == normalized_email:
                return dict(user)
        return None

    def get_user_by_calendly_uri(self, calendly_user_uri: str) -> dict[str, Any] | None:
        for user in self._users_by_id.values():
            if user.get("calendlyUserUri") == calendly_user_uri:
                return dict(user)
        return None

    def save_user(self, user: Mapping[str, Any]) -> str:
        document = _build_user_document(user)
        self._users_by_id[document["_id"]] = document
        return document["_id"]


class MongoUserStore(UserStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        users_collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        self._users = self._client[db_name][users_collection_name]
        self._users.create_index("email")
        self._users.create_index("calendlyUserUri", sparse=True)

    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        record = self._users.find_one({"_id": user_id})
        return _serialize_user_record(record)

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        record = self._users.find_one({"email": _normalize_email(email)})
        return _serialize_user_record(record)

    def get_user_by_calendly_uri(self, calendly_user_uri: str) -> dict[str, Any] | None:
        record = self._users.find_one({"calendlyUserUri": calendly_user_uri})
        return _serialize_user_record(record)

    def save_user(self, user: Mapping[str, Any]) -> str:
        document = _build_user_document(user)
        user_id = document.pop("_id")
        created_at = document.pop("created_at")
        self._users.update_one(
            {"_id": user_id},
            {
                "$set": document,
                "$setOnInsert": {"created_at": created_at},
            },
            upsert=True,
        )
        return user_id


def _build_user_document(user: Mapping[str, Any]) -> dict[str, Any]:
    now = datetime.now(UTC)
    document = dict(user)
    document["_id"] = str(document.get("_id") or uuid4().hex)
    raw_email = document.get("email")
    if isinstance(raw_email, str):
        document["email"] = _normalize_email(raw_email)
    document.setdefault("created_at", now)
    document["updated_at"] = now
    return document


def _serialize_user_record(record: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not record:
        return None
    serialized = dict(record)
    serialized["_id"] = str(record.get("_id", ""))
    return serialized


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def create_user_store(settings: Settings) -> UserStore:
    return _create_user_store_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_users_collection=settings.mongodb_users_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_user_store_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_users_collection: str,
    mongodb_connect_timeout_ms: int,
) -> UserStore:
    if data_store == "mongodb":
        return MongoUserStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            users_collection_name=mongodb_users_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryUserStore()


def clear_user_store_cache() -> None:
    _create_user_store_cached.cache_clear()
