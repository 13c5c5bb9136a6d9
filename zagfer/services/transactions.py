import logging
from datetime import datetime
from typing import Optional, Sequence
from uuid import uuid4

from zagfer.errors import InvalidStateError, NotFoundError, PersistenceError, ValidationError
from zagfer.models import HistoryRecord, User, utcnow
from zagfer.schemas import ActionType, ToolStatus, to_utc
from zagfer.services.reconciliation import compute_active_checkouts
from zagfer.store import EntityStore

logger = logging.getLogger("zagfer.transactions")


def _dedupe(ids: Sequence[str]) -> list[str]:
    out = []
    for tid in ids or []:
        tid = (tid or "").strip()
        if tid and tid not in out:
            out.append(tid)
    return out


def _require_atomic(store: EntityStore) -> None:
    # 状态 + 流水必须一起提交；做不到就直接报错，不留半截数据
    if not getattr(store, "supports_atomic", False):
        raise PersistenceError(
            "O armazenamento não suporta gravação atômica de status e histórico",
            "ATOMIC_UNSUPPORTED",
        )


def new_record_id() -> str:
    return uuid4().hex


def process_checkout(
    store: EntityStore,
    tool_ids: Sequence[str],
    responsible_name: str,
    responsible_matricula: str,
    deadline: Optional[datetime],
    dispatcher: User,
    now: Optional[datetime] = None,
) -> HistoryRecord:
    ids = _dedupe(tool_ids)
    responsible_name = (responsible_name or "").strip()
    responsible_matricula = (responsible_matricula or "").strip()
    deadline = to_utc(deadline)

    if not ids:
        raise ValidationError("Selecione ao menos uma ferramenta", "EMPTY_SELECTION")
    if not responsible_name or not responsible_matricula:
        raise ValidationError("Informe o nome e a OM/Seção do responsável", "RESPONSIBLE_REQUIRED")
    if deadline is None:
        raise ValidationError("Informe a previsão de devolução", "DEADLINE_REQUIRED")

    tools = []
    for tid in ids:
        tool = store.get_tool(tid)
        if not tool:
            raise NotFoundError(f"Ferramenta não encontrada: {tid}", "TOOL_NOT_FOUND")
        if tool.status != ToolStatus.AVAILABLE.value:
            raise InvalidStateError(f"Ferramenta indisponível: {tool.name}", "TOOL_UNAVAILABLE")
        tools.append(tool)

    _require_atomic(store)

    record = HistoryRecord(
        id=new_record_id(),
        timestamp=to_utc(now) or utcnow(),
        action_type=ActionType.CHECKOUT.value,
        dispatcher_id=dispatcher.id,
        dispatcher_name=dispatcher.name,
        dispatcher_matricula=dispatcher.matricula,
        responsible_name=responsible_name,
        responsible_matricula=responsible_matricula,
        tool_ids=ids,
        tools_summary=", ".join(t.name for t in tools),
        expected_return_date=deadline,
    )

    with store.atomic():
        store.set_tools_status(ids, ToolStatus.UNAVAILABLE.value)
        store.append_history(record)

    logger.info("checkout %s: %d tool(s) to %s by %s", record.id, len(ids), responsible_matricula, dispatcher.matricula)
    return record


def _require_active_checkout(store: EntityStore, checkout_id: str):
    record = store.get_history(checkout_id)
    if not record:
        raise NotFoundError(f"Cautela não encontrada: {checkout_id}", "CHECKOUT_NOT_FOUND")
    if record.action_type != ActionType.CHECKOUT.value:
        raise InvalidStateError("O registro informado não é uma retirada", "NOT_A_CHECKOUT")

    active = compute_active_checkouts(store.list_tools(), store.list_history())
    checkout = active.get(record.id)
    if checkout is None:
        raise InvalidStateError("A cautela não possui ferramentas pendentes", "CHECKOUT_CLOSED")
    return checkout


def process_return(
    store: EntityStore,
    checkout_id: str,
    tool_ids: Sequence[str],
    dispatcher: User,
    now: Optional[datetime] = None,
) -> HistoryRecord:
    ids = _dedupe(tool_ids)
    if not ids:
        raise ValidationError("Selecione ao menos uma ferramenta para devolver", "EMPTY_SELECTION")

    checkout = _require_active_checkout(store, checkout_id)
    pending = {t.id: t for t in checkout.pending_tools}

    outside = [tid for tid in ids if tid not in pending]
    if outside:
        raise InvalidStateError(
            f"Ferramentas não pendentes nesta cautela: {', '.join(outside)}",
            "TOOL_NOT_PENDING",
        )

    _require_atomic(store)

    original = checkout.original_checkout_record
    record = HistoryRecord(
        id=new_record_id(),
        timestamp=to_utc(now) or utcnow(),
        action_type=ActionType.RETURN.value,
        dispatcher_id=dispatcher.id,
        dispatcher_name=dispatcher.name,
        dispatcher_matricula=dispatcher.matricula,
        # 归还单沿用原领用人，不重新录入
        responsible_name=original.responsible_name,
        responsible_matricula=original.responsible_matricula,
        tool_ids=ids,
        tools_summary=", ".join(pending[tid].name for tid in ids),
    )

    with store.atomic():
        store.set_tools_status(ids, ToolStatus.AVAILABLE.value)
        store.append_history(record)

    logger.info(
        "return %s: %d of %d tool(s) from checkout %s",
        record.id, len(ids), len(pending), checkout.checkout_record_id,
    )
    return record


def process_renewal(
    store: EntityStore,
    checkout_id: str,
    new_deadline: Optional[datetime],
    now: Optional[datetime] = None,
) -> HistoryRecord:
    """
    修改未结领用单的预计归还时间。

    新时间不早于当前时刻即可，可以比原期限更早。
    """
    if new_deadline is None:
        raise ValidationError("Informe o novo prazo", "DEADLINE_REQUIRED")
    new_deadline = to_utc(new_deadline)
    if new_deadline < (to_utc(now) or utcnow()):
        raise ValidationError("O novo prazo não pode estar no passado", "DEADLINE_IN_PAST")

    checkout = _require_active_checkout(store, checkout_id)
    record = store.update_history_deadline(checkout.checkout_record_id, new_deadline)

    logger.info("renewal %s: deadline -> %s", record.id, new_deadline.isoformat())
    return record
