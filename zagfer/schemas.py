from typing import Annotated, Optional
from enum import Enum
from datetime import datetime, timezone
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ToolStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    UNAVAILABLE = "UNAVAILABLE"


class ActionType(str, Enum):
    CHECKOUT = "CHECKOUT"
    RETURN = "RETURN"


class Role(str, Enum):
    admin = "admin"
    user = "user"


class HistorySort(str, Enum):
    created_desc = "created_desc"
    created_asc = "created_asc"
    seq_desc = "seq_desc"
    seq_asc = "seq_asc"


def to_utc(v: Optional[datetime]) -> Optional[datetime]:
    # 不带时区的输入按 UTC 解释；出参一律是带时区的 UTC
    if v is None:
        return v
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


# 响应里的时间统一带 UTC 时区输出（...Z）
UTCDatetime = Annotated[datetime, AfterValidator(to_utc)]


class CamelModel(BaseModel):
    # 对外字段名用 camelCase（toolIds / actionType ...），内部仍用 snake_case
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        str_strip_whitespace=True,
    )


# ---------- auth ----------

class LoginRequest(CamelModel):
    matricula: str = Field(..., min_length=1, max_length=50)


class UserRead(CamelModel):
    id: str
    name: str
    matricula: str
    active: bool
    role: Role


class Token(CamelModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


# ---------- users ----------

class UserCreate(CamelModel):
    id: Optional[str] = Field(None, max_length=36)
    name: str = Field(..., min_length=1, max_length=120)
    matricula: str = Field(..., min_length=1, max_length=50)
    role: Role = Role.user
    active: bool = True


class UserUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    matricula: Optional[str] = Field(None, min_length=1, max_length=50)
    role: Optional[Role] = None
    active: Optional[bool] = None


# ---------- tools ----------

class ToolCreate(CamelModel):
    id: Optional[str] = Field(None, max_length=36)
    name: str = Field(..., min_length=1, max_length=120)
    category: str = Field(..., min_length=1, max_length=60)
    size: Optional[str] = None
    bmp: Optional[str] = None
    sector: str = Field(..., min_length=1, max_length=120)


class ToolUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    category: Optional[str] = Field(None, min_length=1, max_length=60)
    size: Optional[str] = None
    bmp: Optional[str] = None
    sector: Optional[str] = Field(None, min_length=1, max_length=120)


class ToolRead(CamelModel):
    id: str
    name: str
    category: str
    size: Optional[str] = None
    bmp: Optional[str] = None
    sector: str
    status: ToolStatus


class ToolListResponse(CamelModel):
    items: list[ToolRead]
    total: int
    q: Optional[str] = None


class ToolImportResponse(CamelModel):
    created: int
    items: list[ToolRead]


# ---------- history ----------

class HistoryRecordRead(CamelModel):
    id: str
    timestamp: UTCDatetime
    action_type: ActionType
    dispatcher_id: str
    dispatcher_name: str
    dispatcher_matricula: str
    responsible_name: str
    responsible_matricula: str
    tool_ids: list[str]
    tools_summary: str
    expected_return_date: Optional[UTCDatetime] = None


class HistoryListResponse(CamelModel):
    items: list[HistoryRecordRead]
    total: int
    limit: int
    offset: int


# ---------- checkouts ----------

class CheckoutCreate(CamelModel):
    tool_ids: list[str] = Field(default_factory=list)
    responsible_name: str = ""
    responsible_matricula: str = ""
    expected_return_date: Optional[datetime] = None

    @field_validator("expected_return_date")
    @classmethod
    def normalize_deadline(cls, v):
        return to_utc(v)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "toolIds": ["1", "2"],
                    "responsibleName": "3S EDIMAR",
                    "responsibleMatricula": "123456",
                    "expectedReturnDate": "2026-01-13T08:30:00Z",
                },
            ]
        }
    }


class ReturnCreate(CamelModel):
    tool_ids: list[str] = Field(default_factory=list)


class RenewalUpdate(CamelModel):
    expected_return_date: datetime

    @field_validator("expected_return_date")
    @classmethod
    def normalize_deadline(cls, v):
        return to_utc(v)


class ActiveCheckoutRead(CamelModel):
    checkout_record_id: str
    original_checkout_record: HistoryRecordRead
    pending_tools: list[ToolRead]


# ---------- dashboard ----------

class OverdueAlertRead(CamelModel):
    tool: ToolRead
    record: HistoryRecordRead
    hours_late: int
    deadline: UTCDatetime


class ExpiringAlertRead(CamelModel):
    tool: ToolRead
    record: HistoryRecordRead
    hours_left: int
    deadline: UTCDatetime


class TopToolRead(CamelModel):
    tool_id: str
    name: str
    count: int


class MonthlyCountRead(CamelModel):
    month: str
    label: str
    count: int


class AvailabilityRead(CamelModel):
    total: int
    available: int
    unavailable: int
    available_percentage: float
    active_checkouts: int


class DashboardRead(CamelModel):
    generated_at: UTCDatetime
    availability: AvailabilityRead
    overdue: list[OverdueAlertRead]
    expiring_soon: list[ExpiringAlertRead]
    top_tools: list[TopToolRead]
    monthly_loans: list[MonthlyCountRead]
