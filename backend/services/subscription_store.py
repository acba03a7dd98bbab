"""Subscription Store - MongoDB persistence for subscription documents.

One document per owner in the `subscriptions` collection, keyed by owner_id.
Field names and types are stored exactly as on the Subscription model
(dates as BSON datetimes, amounts as numbers).
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import ValidationError
import logging

from database import database
from models import Subscription, SubscriptionStatus, utc_now
from services.subscription_lifecycle import InvalidSubscriptionState

logger = logging.getLogger(__name__)

USAGE_COUNTERS = ("current_employees", "current_projects")

# Upper bound on documents read per list_expired_trials() call
EXPIRED_TRIAL_BATCH = 500


class SubscriptionNotFoundError(Exception):
    """No subscription document exists for the owner."""
    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__(f"No subscription found for owner {owner_id}")


def to_document(subscription: Subscription) -> Dict[str, Any]:
    doc = subscription.model_dump()
    doc["status"] = SubscriptionStatus(subscription.status).value
    return doc


def from_document(doc: Dict[str, Any]) -> Subscription:
    try:
        return Subscription.model_validate(doc)
    except ValidationError as e:
        logger.error(
            "Invalid subscription document owner_id=%s errors=%s",
            doc.get("owner_id"), e.errors()
        )
        raise InvalidSubscriptionState(
            f"Stored subscription is invalid: {e.error_count()} field error(s)",
            doc.get("subscription_id"),
        )


async def load_subscription(owner_id: str) -> Subscription:
    db = database.get_db()
    doc = await db.subscriptions.find_one({"owner_id": owner_id}, {"_id": 0})
    if not doc:
        raise SubscriptionNotFoundError(owner_id)
    return from_document(doc)


async def find_subscription(owner_id: str) -> Optional[Subscription]:
    """Like load_subscription but returns None when absent."""
    try:
        return await load_subscription(owner_id)
    except SubscriptionNotFoundError:
        return None


async def save_subscription(subscription: Subscription, now: Optional[datetime] = None) -> None:
    """Upsert by owner_id; updated_at is refreshed on every write.

    Usage counters are only written when the document is created. After
    that they change through increment_usage() alone, so a save from a
    stale snapshot cannot undo a concurrent $inc.
    """
    db = database.get_db()
    doc = to_document(subscription)
    doc["updated_at"] = now or utc_now()
    counters = {field: doc.pop(field) for field in USAGE_COUNTERS}

    await db.subscriptions.update_one(
        {"owner_id": subscription.owner_id},
        {"$set": doc, "$setOnInsert": counters},
        upsert=True
    )
    logger.info(
        "Saved subscription owner_id=%s status=%s",
        subscription.owner_id, doc["status"]
    )


async def increment_usage(
    owner_id: str,
    employees: int = 0,
    projects: int = 0,
    now: Optional[datetime] = None,
) -> None:
    """Atomically adjust live usage counters (negative values decrement)."""
    inc = {}
    if employees:
        inc["current_employees"] = employees
    if projects:
        inc["current_projects"] = projects
    if not inc:
        return

    db = database.get_db()
    result = await db.subscriptions.update_one(
        {"owner_id": owner_id},
        {"$inc": inc, "$set": {"updated_at": now or utc_now()}}
    )
    if result.matched_count == 0:
        raise SubscriptionNotFoundError(owner_id)


async def list_expired_trials(now: datetime, limit: int = EXPIRED_TRIAL_BATCH) -> List[Subscription]:
    """Trials whose window closed at or before `now`, at most `limit` of them."""
    db = database.get_db()
    cursor = db.subscriptions.find(
        {"status": SubscriptionStatus.TRIAL.value, "trial_end_date": {"$lte": now}},
        {"_id": 0}
    ).limit(limit)
    docs = await cursor.to_list(length=limit)
    if len(docs) >= limit:
        logger.warning("Expired trial query hit the batch limit of %d; more may remain", limit)

    subscriptions = []
    for doc in docs:
        try:
            subscriptions.append(from_document(doc))
        except InvalidSubscriptionState:
            # Logged in from_document; one bad document must not stop the sweep
            continue
    return subscriptions
