from __future__ import annotations

from abc import ABC, abstractmethod
from functools import lru_cache

from app.core.config import Settings


class IdentityDirectory(ABC):
    """Accounts known to the identity provider, which may have no user document yet."""

    @abstractmethod
    def get_uid_by_email(self, email: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def register_identity(self, uid: str, email: str) -> None:
        raise NotImplementedError


class InMemoryIdentityDirectory(IdentityDirectory):
    def __init__(self) -> None:
        self._uid_by_email: dict[str, str] = {}

    def get_uid_by_email(self, email: str) -> str | None:
        return self._uid_by_email.get(_normalize_email(email))

    def register_identity(self, uid: str, email: str) -> None:
        self._uid_by_email[_normalize_email(email)] = uid


class MongoIdentityDirectory(IdentityDirectory):
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
        self._identities = self._client[db_name][collection_name]
        self._identities.create_index("email", unique=True)

    def get_uid_by_email(self, email: str) -> str | None:
        record = self._identities.find_one({"email": _normalize_email(email)}, {"_id": 1})
        if not record:
            return None
        return str(record["_id"])

    def register_identity(self, uid: str, email: str) -> None:
        self._identities.update_one(
            {"_id": uid},
            {"$set": {"email": _normalize_email(email)}},
            upsert=True,
        )


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def create_identity_directory(settings: Settings) -> IdentityDirectory:
    return _create_identity_directory_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_collection_name=settings.mongodb_auth_identities_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_identity_directory_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> IdentityDirectory:
    if data_store == "mongodb":
        return MongoIdentityDirectory(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryIdentityDirectory()


def clear_identity_directory_cache() -> None:
    _create_identity_directory_cached.cache_clear()
