"""
Shared job runner for scheduled background jobs.
Used by server (scheduler), the admin sweep endpoint and scripts.
Each run_* returns a dict with "message" and "count".
"""
import logging

logger = logging.getLogger(__name__)


async def run_trial_expiry_sweep():
    try:
        from services.subscription_service import block_expired_trials
        count = await block_expired_trials()
        logger.info(f"Trial expiry sweep completed: {count} subscriptions blocked")
        return {"message": f"Expired trials blocked: {count}", "count": count}
    except Exception as e:
        logger.error(f"Trial expiry sweep failed: {e}")
        raise
