from database import database
from models import AuditLog, AuditAction
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

def calculate_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Calculate the differences between before and after states.

    Returns a dict with:
    - added: fields that exist in after but not in before
    - removed: fields that exist in before but not in after
    - changed: fields that exist in both but have different values
    """
    if not before and not after:
        return {}

    if not before:
        return {"added": after, "removed": {}, "changed": {}}

    if not after:
        return {"added": {}, "removed": before, "changed": {}}

    diff = {"added": {}, "removed": {}, "changed": {}}

    for key in set(before.keys()) | set(after.keys()):
        if key not in before:
            diff["added"][key] = after[key]
        elif key not in after:
            diff["removed"][key] = before[key]
        elif before[key] != after[key]:
            diff["changed"][key] = {"from": before[key], "to": after[key]}

    # Remove empty categories
    return {k: v for k, v in diff.items() if v}

async def create_audit_log(
    action: AuditAction,
    actor_role: Optional[str] = None,
    actor_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    reason_code: Optional[str] = None,
) -> str:
    """Record a subscription lifecycle event.

    When both states are given, their diff is stored under metadata["diff"].
    Returns the audit_id, or "" if the write failed.
    """
    try:
        db = database.get_db()

        enriched_metadata = metadata.copy() if metadata else {}
        if before_state and after_state:
            diff = calculate_diff(before_state, after_state)
            if diff:
                enriched_metadata["diff"] = diff

        audit_log = AuditLog(
            action=action,
            actor_role=actor_role,
            actor_id=actor_id,
            owner_id=owner_id,
            subscription_id=subscription_id,
            before_state=before_state,
            after_state=after_state,
            metadata=enriched_metadata or None,
            reason_code=reason_code,
        )

        doc = audit_log.model_dump(mode="json")
        doc["timestamp"] = audit_log.timestamp

        await db.audit_logs.insert_one(doc)
        logger.info(f"Audit log created: {action.value} owner_id={owner_id}")
        return audit_log.audit_id
    except Exception as e:
        logger.error(f"Failed to create audit log: {e}")
        # Never fail the main operation due to audit log failure
        return ""

async def get_audit_logs_for_owner(owner_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """Most recent lifecycle events for an owner."""
    try:
        db = database.get_db()
        cursor = db.audit_logs.find(
            {"owner_id": owner_id},
            {"_id": 0}
        ).sort("timestamp", -1).limit(limit)

        return await cursor.to_list(length=limit)
    except Exception as e:
        logger.error(f"Failed to get audit logs for owner: {e}")
        return []
