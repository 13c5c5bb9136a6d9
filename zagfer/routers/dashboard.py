from typing import Optional

from fastapi import APIRouter, Depends, Query

from zagfer.deps import get_store, require_user
from zagfer.models import User, utcnow
from zagfer.routers.history import get_zone
from zagfer.schemas import DashboardRead
from zagfer.services.reconciliation import (
    compute_availability,
    compute_expiring_soon,
    compute_monthly_loan_counts,
    compute_overdue_alerts,
    compute_top_tools,
)
from zagfer.settings import get_settings
from zagfer.store import EntityStore

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("", response_model=DashboardRead)
def dashboard(
        horizon_hours: Optional[int] = Query(None, ge=1, le=24 * 30, alias="horizonHours"),
        tz: Optional[str] = Query(None, description="按该时区的日历月统计，如 America/Sao_Paulo；不传按 UTC"),
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_user),
):
    zone = get_zone(tz)
    now = utcnow()
    tools = store.list_tools()
    history = store.list_history()
    horizon = horizon_hours or get_settings().expiring_horizon_hours

    return DashboardRead.model_validate({
        "generated_at": now,
        "availability": compute_availability(tools, history),
        "overdue": compute_overdue_alerts(tools, history, now),
        "expiring_soon": compute_expiring_soon(tools, history, now, horizon_hours=horizon),
        "top_tools": compute_top_tools(tools, history, now),
        "monthly_loans": compute_monthly_loan_counts(history, now, tz=zone),
    })
