"""
User directory kept in sync with the identity provider.

Profile events upsert the `user` document keyed on `externalId`. The role is
owned by this service, so profile syncs never overwrite it.
"""
import logging
from typing import Any, Dict, List

from pymongo.errors import PyMongoError

from database import now, serialize
from errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

PROFILE_EVENTS = ("user.created", "user.updated")
DELETE_EVENTS = ("user.deleted",)


def _profile_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    emails = data.get("email_addresses") or []
    email = emails[0].get("email_address") if emails and isinstance(emails[0], dict) else None
    return {
        "firstName": data.get("first_name") or "",
        "lastName": data.get("last_name") or "",
        "email": email or "",
        "imageUrl": data.get("image_url") or "",
    }


def handle_identity_event(database, event: Dict[str, Any]) -> str:
    """Apply one identity-provider webhook event. Returns what was done."""
    event_type = event.get("type")
    data = event.get("data") or {}
    external_id = data.get("id")
    if not event_type or not external_id:
        raise ValidationError("Webhook event needs a type and a data.id")

    try:
        if event_type in PROFILE_EVENTS:
            stamp = now()
            database["user"].update_one(
                {"externalId": external_id},
                {
                    "$set": {**_profile_fields(data), "updatedAt": stamp},
                    "$setOnInsert": {"role": "user", "createdAt": stamp},
                },
                upsert=True,
            )
            logger.info("Synced profile for %s (%s)", external_id, event_type)
            return "synced"
        if event_type in DELETE_EVENTS:
            database["user"].delete_one({"externalId": external_id})
            logger.info("Deleted user %s", external_id)
            return "deleted"
    except PyMongoError as e:
        raise PersistenceError(f"Failed to apply {event_type} for {external_id}: {e}")

    logger.debug("Ignoring identity event %s", event_type)
    return "ignored"


def list_users(database) -> List[dict]:
    try:
        users = database["user"].find().sort("createdAt", -1)
        return [
            {
                "id": u["id"],
                "externalId": u.get("externalId"),
                "name": f"{u.get('firstName') or ''} {u.get('lastName') or ''}".strip(),
                "email": u.get("email") or "",
                "imageUrl": u.get("imageUrl") or "",
                "role": u.get("role", "user"),
                "createdAt": u.get("createdAt"),
            }
            for u in (serialize(doc) for doc in users)
        ]
    except PyMongoError as e:
        raise PersistenceError(f"Failed to read users: {e}")
