"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Skip scheduler startup when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from models import Subscription, SubscriptionStatus

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_subscription(**overrides) -> Subscription:
    """Trial subscription created at T0, with field overrides."""
    data = {
        "subscription_id": "sub-1",
        "owner_id": "owner-1",
        "status": SubscriptionStatus.TRIAL,
        "trial_start_date": T0,
        "trial_end_date": datetime(2026, 3, 4, 9, 0, tzinfo=timezone.utc),
        "base_fee": 50,
        "employee_fee": 10,
        "project_fee": 5,
        "created_at": T0,
        "updated_at": T0,
    }
    data.update(overrides)
    return Subscription(**data)


def auth_headers(user_id: str = "owner-1", role: str = "principle") -> dict:
    token = create_access_token({"user_id": user_id, "username": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


def make_db(subscription_doc=None) -> MagicMock:
    """Mock Motor database with a subscriptions and audit_logs collection."""
    db = MagicMock()
    db.subscriptions.find_one = AsyncMock(return_value=subscription_doc)
    db.subscriptions.update_one = AsyncMock(return_value=MagicMock(matched_count=1, modified_count=1))
    db.audit_logs.insert_one = AsyncMock()
    return db


@pytest.fixture
def client():
    """TestClient for the main FastAPI app (server:app). Lifespan is not run."""
    from server import app
    return TestClient(app, raise_server_exceptions=False)
