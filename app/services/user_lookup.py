from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from app.services.identity_directory import IdentityDirectory
from app.services.lookup_result import LookupResult
from app.services.user_store import UserStore

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: Any) -> bool:
    if not isinstance(email, str):
        return False
    return _EMAIL_PATTERN.match(email) is not None


def extract_host_uri(memberships: Any) -> str:
    """Return the Calendly user URI of the first event membership.

    Only the first listed host is treated as the mentor; extra hosts of a
    multi-host event are ignored.
    """
    first_membership = _first_membership(memberships)
    if first_membership is None:
        return ""
    host_uri = first_membership.get("user")
    return host_uri if isinstance(host_uri, str) else ""


class UserLookupService:
    def __init__(self, user_store: UserStore, identity_directory: IdentityDirectory) -> None:
        self.user_store = user_store
        self.identity_directory = identity_directory

    def get_user_id_by_email(self, email: str) -> LookupResult[str]:
        normalized_email = email.strip().lower()
        backend_error: Exception | None = None

        try:
            user = self.user_store.get_user_by_email(normalized_email)
        except Exception as exc:
            logger.warning("User store lookup failed email=%s error=%s", normalized_email, exc)
            backend_error = exc
            user = None
        if user:
            return LookupResult.found(str(user["_id"]))

        try:
            uid = self.identity_directory.get_uid_by_email(normalized_email)
        except Exception as exc:
            logger.warning("Identity lookup failed email=%s error=%s", normalized_email, exc)
            backend_error = exc
            uid = None
        if uid:
            return LookupResult.found(uid)

        if backend_error is not None:
            return LookupResult.failed(backend_error)
        logger.info("No user found email=%s", normalized_email)
        return LookupResult.not_found()

    def find_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        try:
            user = self.user_store.get_user_by_id(user_id)
        except Exception as exc:
            logger.warning("User lookup by id failed user_id=%s error=%s", user_id, exc)
            return None
        if not user:
            logger.info("No user found user_id=%s", user_id)
        return user

    def resolve_host_user_id(self, memberships: Any) -> LookupResult[str]:
        first_membership = _first_membership(memberships)
        if first_membership is None:
            return LookupResult.not_found()

        email_error: Exception | None = None
        host_email = first_membership.get("user_email")
        if isinstance(host_email, str) and is_valid_email(host_email):
            result = self.get_user_id_by_email(host_email)
            if result.is_found:
                return result
            if result.is_failed:
                email_error = result.error

        host_uri = extract_host_uri(memberships)
        user = None
        if host_uri:
            try:
                user = self.user_store.get_user_by_calendly_uri(host_uri)
            except Exception as exc:
                logger.warning(
                    "Host lookup by Calendly URI failed host_uri=%s error=%s", host_uri, exc
                )
                return LookupResult.failed(exc)
        if user:
            return LookupResult.found(str(user["_id"]))
        if email_error is not None:
            return LookupResult.failed(email_error)
        return LookupResult.not_found()


def _first_membership(memberships: Any) -> Mapping[str, Any] | None:
    if not isinstance(memberships, list) or not memberships:
        return None
    first_membership = memberships[0]
    if not isinstance(first_membership, Mapping):
        return None
    return first_membership
