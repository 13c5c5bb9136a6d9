from typing import Optional

from fastapi import APIRouter, Depends, Query

from zagfer.deps import get_store, require_permission, require_user
from zagfer.models import User
from zagfer.schemas import ActiveCheckoutRead, CheckoutCreate, HistoryRecordRead, RenewalUpdate, ReturnCreate
from zagfer.services.accounts import Action
from zagfer.services.reconciliation import list_active_checkouts
from zagfer.services.transactions import process_checkout, process_renewal, process_return
from zagfer.store import EntityStore

router = APIRouter(prefix="/checkouts", tags=["checkouts"])


@router.post("", response_model=HistoryRecordRead)
def create_checkout(
        data: CheckoutCreate,
        store: EntityStore = Depends(get_store),
        user: User = Depends(require_permission(Action.CHECKOUT)),
):
    record = process_checkout(
        store,
        tool_ids=data.tool_ids,
        responsible_name=data.responsible_name,
        responsible_matricula=data.responsible_matricula,
        deadline=data.expected_return_date,
        dispatcher=user,
    )
    return HistoryRecordRead.model_validate(record)


@router.get("/active", response_model=list[ActiveCheckoutRead])
def active_checkouts(
        q: Optional[str] = Query(None, description="Busca por militar, OM/Seção ou ferramenta"),
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_user),
):
    items = list_active_checkouts(store.list_tools(), store.list_history(), q=q)
    return [ActiveCheckoutRead.model_validate(c) for c in items]


@router.post("/{checkout_id}/return", response_model=HistoryRecordRead)
def return_tools(
        checkout_id: str,
        data: ReturnCreate,
        store: EntityStore = Depends(get_store),
        user: User = Depends(require_permission(Action.RETURN)),
):
    record = process_return(store, checkout_id, data.tool_ids, dispatcher=user)
    return HistoryRecordRead.model_validate(record)


@router.patch("/{checkout_id}/deadline", response_model=HistoryRecordRead)
def renew_checkout(
        checkout_id: str,
        data: RenewalUpdate,
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_permission(Action.RENEW)),
):
    record = process_renewal(store, checkout_id, data.expected_return_date)
    return HistoryRecordRead.model_validate(record)
