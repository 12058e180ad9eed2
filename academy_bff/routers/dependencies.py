"""
Route dependencies resolving the reconciliation engine built at startup.
Tests replace these through app.dependency_overrides.
"""

from fastapi import Depends, HTTPException, Request, status

from ..config import settings
from ..services.cal_client import CalClient
from ..services.reconciliation import ReconciliationEngine
from ..services.recent_changes import RecentChangesLog
from ..services.webhook_handler import CalWebhookHandler


def get_engine(request: Request) -> ReconciliationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reconciliation engine not initialized"
        )
    return engine


def get_webhook_handler(engine: ReconciliationEngine = Depends(get_engine)) -> CalWebhookHandler:
    return engine.webhook_handler


def get_recent_changes(engine: ReconciliationEngine = Depends(get_engine)) -> RecentChangesLog:
    return engine.recent_changes


def get_cal_client(engine: ReconciliationEngine = Depends(get_engine)) -> CalClient:
    return engine.cal_client


def get_webhook_secret() -> str:
    return settings.cal_webhook_secret
