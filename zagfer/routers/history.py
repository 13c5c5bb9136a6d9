from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from typing import Optional
from datetime import datetime, date, timedelta, timezone
from fastapi import APIRouter, Depends, Query

from zagfer.deps import get_store, require_permission, require_user
from zagfer.errors import NotFoundError, ValidationError
from zagfer.models import HistoryRecord, User
from zagfer.routers.tools import attachment
from zagfer.schemas import ActionType, HistoryListResponse, HistoryRecordRead, HistorySort, to_utc
from zagfer.services.accounts import Action
from zagfer.services.exports import CSV_MEDIA_TYPE, export_table, history_columns, receipt_filename, render_receipt
from zagfer.services.reconciliation import resolve_record_tools
from zagfer.store import EntityStore


def get_zone(tz_str: Optional[str]) -> Optional[ZoneInfo]:
    if not tz_str:
        return None
    tz_str = tz_str.strip()
    if not tz_str:
        return None
    try:
        return ZoneInfo(tz_str)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"tz inválido: {tz_str} (ex.: America/Sao_Paulo / UTC)", "BAD_REQUEST")


def _parse_dt_or_date(s: str, *, is_end: bool, assume_tz: Optional[ZoneInfo]) -> datetime:
    """解析 YYYY-MM-DD（end 取次日 00:00，左闭右开）或 ISO 时间；不带时区的按 assume_tz，再没有就按 UTC。"""
    s = (s or "").strip()
    if not s:
        raise ValidationError("start/end não podem ser vazios", "BAD_REQUEST")

    # 1) 纯日期
    if len(s) == 10 and s[4] == "-" and s[7] == "-":
        try:
            d = date.fromisoformat(s)
        except ValueError:
            raise ValidationError(f"Data inválida: {s}, use YYYY-MM-DD", "BAD_REQUEST")

        local_dt = datetime(d.year, d.month, d.day)
        if is_end:
            local_dt = local_dt + timedelta(days=1)

        tz = assume_tz or timezone.utc
        return local_dt.replace(tzinfo=tz).astimezone(timezone.utc)

    # 2) datetime（兼容 Z）
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Data/hora inválida: {s}, ex.: 2026-01-12T08:30:00", "BAD_REQUEST")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=assume_tz or timezone.utc)

    return dt.astimezone(timezone.utc)


def _filter_history(
    records: list[HistoryRecord],
    *,
    q: Optional[str],
    action: Optional[ActionType],
    start: Optional[str],
    end: Optional[str],
    zone: Optional[ZoneInfo],
    sort: HistorySort,
) -> list[HistoryRecord]:
    needle = (q or "").strip().lower()
    if needle:
        records = [
            r for r in records
            if needle in r.responsible_name.lower()
            or needle in r.responsible_matricula.lower()
            or needle in r.tools_summary.lower()
            or needle in r.dispatcher_name.lower()
        ]

    if action is not None:
        records = [r for r in records if r.action_type == action.value]

    start_dt = _parse_dt_or_date(start, is_end=False, assume_tz=zone) if start else None
    end_dt = _parse_dt_or_date(end, is_end=True, assume_tz=zone) if end else None
    if start_dt is not None and end_dt is not None and start_dt >= end_dt:
        raise ValidationError("start deve ser anterior a end", "BAD_REQUEST")
    if start_dt is not None:
        records = [r for r in records if to_utc(r.timestamp) >= start_dt]
    if end_dt is not None:
        records = [r for r in records if to_utc(r.timestamp) < end_dt]

    # ✅ sort: 统一入口切换排序；store 给的顺序就是 seq 倒序
    if sort == HistorySort.created_desc:
        records = sorted(records, key=lambda r: r.timestamp, reverse=True)
    elif sort == HistorySort.created_asc:
        records = sorted(records, key=lambda r: r.timestamp)
    elif sort == HistorySort.seq_asc:
        records = list(reversed(records))
    return list(records)


router = APIRouter(prefix="/history", tags=["history"])


@router.get("", response_model=HistoryListResponse)
def list_history(
    q: Optional[str] = Query(None, description="Busca por responsável, matrícula, ferramentas ou despachante"),
    action_type: Optional[ActionType] = Query(None, alias="actionType"),
    tz: Optional[str] = Query(None, description="Fuso para interpretar start/end sem fuso. Ex.: America/Sao_Paulo"),
    start: Optional[str] = Query(None, description="Início. Ex.: 2026-01-12 ou 2026-01-12T08:30:00"),
    end: Optional[str] = Query(None, description="Fim (exclusivo). Ex.: 2026-01-13"),
    sort: HistorySort = Query(HistorySort.created_desc),
    limit: int = Query(10, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: EntityStore = Depends(get_store),
    _user: User = Depends(require_user),
):
    records = _filter_history(
        store.list_history(), q=q, action=action_type, start=start, end=end, zone=get_zone(tz), sort=sort,
    )
    page = records[offset:offset + limit]
    return {
        "items": [HistoryRecordRead.model_validate(r) for r in page],
        "total": len(records),
        "limit": limit,
        "offset": offset,
    }


@router.get("/export.csv")
def export_history_csv(
    q: Optional[str] = Query(None),
    action_type: Optional[ActionType] = Query(None, alias="actionType"),
    tz: Optional[str] = Query(None),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    store: EntityStore = Depends(get_store),
    _admin: User = Depends(require_permission(Action.EXPORT_DATA)),
):
    zone = get_zone(tz)
    records = _filter_history(
        store.list_history(), q=q, action=action_type, start=start, end=end, zone=zone,
        sort=HistorySort.created_desc,
    )
    content = export_table(records, history_columns(zone), fmt="csv")
    return attachment(content, CSV_MEDIA_TYPE, "ZAGFER_Historico_Cautelas.csv")


def _require_record(store: EntityStore, record_id: str) -> HistoryRecord:
    record = store.get_history(record_id)
    if not record:
        raise NotFoundError("Registro não encontrado", "HISTORY_NOT_FOUND")
    return record


@router.get("/{record_id}", response_model=HistoryRecordRead)
def get_history_record(
    record_id: str,
    store: EntityStore = Depends(get_store),
    _user: User = Depends(require_user),
):
    return HistoryRecordRead.model_validate(_require_record(store, record_id))


@router.get("/{record_id}/receipt.pdf")
def download_receipt(
    record_id: str,
    tz: Optional[str] = Query(None),
    store: EntityStore = Depends(get_store),
    _user: User = Depends(require_user),
):
    record = _require_record(store, record_id)
    tools = resolve_record_tools(record, store.list_tools())
    content = render_receipt(record, tools, tz=get_zone(tz))
    return attachment(content, "application/pdf", receipt_filename(record))
