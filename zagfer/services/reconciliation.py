"""
由刀具表和流水推出来的只读视图。

这里全是 (tools, history, now) 的纯函数：不做 I/O，不改数据，空输入给空结果。

history 要按 store 的顺序传入（最新写入的在前，即 EntityStore.list_history
的返回）。归属领用单的查找依赖这个顺序。
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from zagfer.models import HistoryRecord, Tool
from zagfer.schemas import ActionType, ToolStatus, to_utc

DEFAULT_LOAN_PERIOD = timedelta(hours=24)
REMOVED_TOOL_NAME = "Ferramenta Removida"
UNKNOWN_TOOL_NAME = "Desconhecida"

PT_MONTHS = ("jan", "fev", "mar", "abr", "mai", "jun", "jul", "ago", "set", "out", "nov", "dez")


@dataclass
class ActiveCheckout:
    checkout_record_id: str
    original_checkout_record: HistoryRecord
    pending_tools: list[Tool] = field(default_factory=list)


@dataclass(frozen=True)
class OverdueAlert:
    tool: Tool
    record: HistoryRecord
    hours_late: int
    deadline: datetime


@dataclass(frozen=True)
class ExpiringAlert:
    tool: Tool
    record: HistoryRecord
    hours_left: int
    deadline: datetime


@dataclass(frozen=True)
class TopTool:
    tool_id: str
    name: str
    count: int


@dataclass(frozen=True)
class MonthlyCount:
    month: str   # YYYY-MM
    label: str
    count: int


@dataclass(frozen=True)
class AvailabilityStats:
    total: int
    available: int
    unavailable: int
    available_percentage: float
    active_checkouts: int


def _is_checkout(record: HistoryRecord) -> bool:
    return record.action_type == ActionType.CHECKOUT.value


def _unavailable(tools: Iterable[Tool]) -> list[Tool]:
    return [t for t in tools if t.status == ToolStatus.UNAVAILABLE.value]


def _whole_hours(delta: timedelta) -> int:
    return int(delta.total_seconds() // 3600)


def find_owning_checkout(tool_id: str, history: Sequence[HistoryRecord]) -> Optional[HistoryRecord]:
    """
    按 history 给定的扫描顺序，返回第一条包含 tool_id 的 CHECKOUT。

    不按时间戳判断：同一件工具借出、归还、再借出时，谁先被扫到就算谁。
    store 的顺序是最新在前，所以拿到的是最近一次。
    """
    for record in history:
        if _is_checkout(record) and tool_id in (record.tool_ids or []):
            return record
    return None


def deadline_for(record: HistoryRecord) -> datetime:
    if record.expected_return_date is not None:
        return to_utc(record.expected_return_date)
    return to_utc(record.timestamp) + DEFAULT_LOAN_PERIOD


def compute_active_checkouts(
    tools: Sequence[Tool], history: Sequence[HistoryRecord]
) -> dict[str, ActiveCheckout]:
    checkouts: dict[str, ActiveCheckout] = {}

    for tool in _unavailable(tools):
        owner = find_owning_checkout(tool.id, history)
        if owner is None:
            # 状态是借出但找不到领用单：数据缺口，跳过
            continue

        group = checkouts.get(owner.id)
        if group is None:
            group = ActiveCheckout(checkout_record_id=owner.id, original_checkout_record=owner)
            checkouts[owner.id] = group

        if all(t.id != tool.id for t in group.pending_tools):
            group.pending_tools.append(tool)

    return checkouts


def list_active_checkouts(
    tools: Sequence[Tool], history: Sequence[HistoryRecord], q: Optional[str] = None
) -> list[ActiveCheckout]:
    """未结领用单，最新在前；q 按领用人、OM/Seção 或工具名过滤。"""
    items = list(compute_active_checkouts(tools, history).values())

    needle = (q or "").strip().lower()
    if needle:
        items = [
            c for c in items
            if needle in c.original_checkout_record.responsible_name.lower()
            or needle in c.original_checkout_record.responsible_matricula.lower()
            or any(needle in t.name.lower() for t in c.pending_tools)
        ]

    items.sort(key=lambda c: to_utc(c.original_checkout_record.timestamp), reverse=True)
    return items


def compute_overdue_alerts(
    tools: Sequence[Tool], history: Sequence[HistoryRecord], now: datetime
) -> list[OverdueAlert]:
    now = to_utc(now)
    alerts = []
    for tool in _unavailable(tools):
        record = find_owning_checkout(tool.id, history)
        if record is None:
            continue

        deadline = deadline_for(record)
        if now > deadline:
            # 刚过期也至少算 1 小时
            hours_late = max(1, _whole_hours(now - deadline))
            alerts.append(OverdueAlert(tool=tool, record=record, hours_late=hours_late, deadline=deadline))

    alerts.sort(key=lambda a: a.hours_late, reverse=True)
    return alerts


def compute_expiring_soon(
    tools: Sequence[Tool],
    history: Sequence[HistoryRecord],
    now: datetime,
    horizon_hours: int = 48,
) -> list[ExpiringAlert]:
    now = to_utc(now)
    limit = now + timedelta(hours=horizon_hours)

    alerts = []
    for tool in _unavailable(tools):
        record = find_owning_checkout(tool.id, history)
        if record is None:
            continue

        deadline = deadline_for(record)
        if now < deadline <= limit:
            alerts.append(ExpiringAlert(
                tool=tool,
                record=record,
                hours_left=_whole_hours(deadline - now),
                deadline=deadline,
            ))

    alerts.sort(key=lambda a: a.hours_left)
    return alerts


def compute_top_tools(
    tools: Sequence[Tool],
    history: Sequence[HistoryRecord],
    now: datetime,
    window_days: int = 30,
    limit: int = 5,
) -> list[TopTool]:
    since = to_utc(now) - timedelta(days=window_days)

    counts: Counter[str] = Counter()
    for record in history:
        if _is_checkout(record) and to_utc(record.timestamp) > since:
            counts.update(record.tool_ids or [])

    names = {t.id: t.name for t in tools}
    # most_common 对同票保持首次出现顺序
    return [
        TopTool(tool_id=tool_id, name=names.get(tool_id, UNKNOWN_TOOL_NAME), count=count)
        for tool_id, count in counts.most_common(limit)
    ]


def _shift_month(year: int, month: int, back: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) - back
    return index // 12, index % 12 + 1


def compute_monthly_loan_counts(
    history: Sequence[HistoryRecord],
    now: datetime,
    months: int = 6,
    tz: Optional[ZoneInfo] = None,
) -> list[MonthlyCount]:
    # 按 tz 的本地日历月分桶；不给 tz 就按 UTC
    zone = tz or timezone.utc
    local_now = to_utc(now).astimezone(zone)

    buckets: dict[tuple[int, int], int] = {}
    for back in range(months - 1, -1, -1):
        buckets[_shift_month(local_now.year, local_now.month, back)] = 0

    for record in history:
        if not _is_checkout(record):
            continue
        local = to_utc(record.timestamp).astimezone(zone)
        key = (local.year, local.month)
        if key in buckets:
            buckets[key] += 1

    return [
        MonthlyCount(month=f"{year:04d}-{month:02d}", label=PT_MONTHS[month - 1], count=count)
        for (year, month), count in buckets.items()
    ]


def compute_availability(tools: Sequence[Tool], history: Sequence[HistoryRecord]) -> AvailabilityStats:
    total = len(tools)
    unavailable = len(_unavailable(tools))
    available = sum(1 for t in tools if t.status == ToolStatus.AVAILABLE.value)
    percentage = (available / total) * 100 if total > 0 else 0.0

    return AvailabilityStats(
        total=total,
        available=available,
        unavailable=unavailable,
        available_percentage=round(percentage, 1),
        active_checkouts=len(compute_active_checkouts(tools, history)),
    )


def resolve_record_tools(record: HistoryRecord, tools: Sequence[Tool]) -> list[Tool]:
    """record 上列出的工具；已删除的编号用占位工具代替。"""
    by_id = {t.id: t for t in tools}
    resolved = []
    for tool_id in record.tool_ids or []:
        tool = by_id.get(tool_id)
        if tool is None:
            tool = Tool(
                id=tool_id,
                name=REMOVED_TOOL_NAME,
                category="N/A",
                sector="N/A",
                status=ToolStatus.UNAVAILABLE.value,
            )
        resolved.append(tool)
    return resolved
