"""
Admin authorization.

The `user` collection is the only source of truth for who is an admin. The
ADMIN_USER_IDS allow-list never grants access by itself; it only restricts
who may claim the first admin seat while no admin exists yet.
"""
import logging
import os
from typing import Iterable, Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from database import now
from errors import ForbiddenError, PersistenceError, UnauthorizedError

logger = logging.getLogger(__name__)


def bootstrap_ids_from_env() -> tuple:
    raw = os.getenv("ADMIN_USER_IDS", "")
    return tuple(i.strip() for i in raw.split(",") if i.strip())


class AccessGate:
    def __init__(self, database, bootstrap_ids: Iterable[str] = ()):
        self.db = database
        self.bootstrap_ids = tuple(bootstrap_ids)

    def is_authorized_admin(self, identity: Optional[str]) -> bool:
        if not identity:
            return False
        try:
            user = self.db["user"].find_one({"externalId": identity}, {"role": 1})
        except PyMongoError as e:
            logger.warning("Admin check for %s failed closed: %s", identity, e)
            return False
        return bool(user) and user.get("role") == "admin"

    def require_admin(self, identity: Optional[str]) -> str:
        if not identity:
            raise UnauthorizedError("You must be logged in to perform this action")
        if not self.is_authorized_admin(identity):
            logger.info("User %s is not an admin", identity)
            raise ForbiddenError("You must be an admin to perform this action")
        return identity

    def admin_count(self) -> int:
        try:
            return self.db["user"].count_documents({"role": "admin"})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to count admins: {e}")

    def bootstrap_first_admin(self, identity: str, profile: Optional[dict] = None) -> dict:
        """Make `identity` the first admin. Only possible while there is none."""
        if not identity:
            raise UnauthorizedError("You must be logged in to perform this action")
        if self.admin_count() > 0:
            raise ForbiddenError("Admin users already exist. Use the admin panel to manage roles.")
        if self.bootstrap_ids and identity not in self.bootstrap_ids:
            raise ForbiddenError("This account is not allowed to claim the first admin seat")

        stamp = now()
        fields = {k: v for k, v in (profile or {}).items() if k in ("firstName", "lastName", "email", "imageUrl")}
        fields.update({"role": "admin", "updatedAt": stamp})
        try:
            user = self.db["user"].find_one_and_update(
                {"externalId": identity},
                {"$set": fields, "$setOnInsert": {"createdAt": stamp}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to set up admin user: {e}")
        logger.info("First admin user created: %s", identity)
        return user
