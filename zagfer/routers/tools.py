from typing import Optional
from urllib.parse import quote
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import Response

from zagfer.deps import get_store, require_permission, require_user
from zagfer.errors import NotFoundError, ValidationError
from zagfer.models import Tool, User
from zagfer.schemas import ToolCreate, ToolImportResponse, ToolListResponse, ToolRead, ToolStatus, ToolUpdate
from zagfer.services.accounts import Action
from zagfer.services.exports import CSV_MEDIA_TYPE, TOOL_COLUMNS, XLSX_MEDIA_TYPE, export_table, parse_tool_csv
from zagfer.store import EntityStore

router = APIRouter(prefix="/tools", tags=["tools"])


def _new_tool(data: ToolCreate) -> Tool:
    # 新建一律可用；状态只能通过领用/归还改变
    return Tool(
        id=data.id or uuid4().hex[:6].upper(),
        name=data.name,
        category=data.category,
        size=data.size or None,
        bmp=data.bmp or None,
        sector=data.sector,
        status=ToolStatus.AVAILABLE.value,
    )


def attachment(content: bytes, media_type: str, filename: str) -> Response:
    headers = {
        "Content-Disposition": f"attachment; filename=\"{filename.encode('ascii', 'ignore').decode()}\"; "
                               f"filename*=UTF-8''{quote(filename)}"
    }
    return Response(content=content, media_type=media_type, headers=headers)


@router.post("", response_model=ToolRead)
def create_tool(
        data: ToolCreate,
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_permission(Action.MANAGE_TOOLS)),
):
    return ToolRead.model_validate(store.create_tool(_new_tool(data)))


@router.post("/bulk", response_model=list[ToolRead])
def bulk_create_tools(
        data: list[ToolCreate],
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_permission(Action.MANAGE_TOOLS)),
):
    if not data:
        raise ValidationError("Nenhuma ferramenta informada", "EMPTY_SELECTION")
    created = store.create_tools([_new_tool(d) for d in data])
    return [ToolRead.model_validate(t) for t in created]


@router.post("/import", response_model=ToolImportResponse)
async def import_tools(
        file: UploadFile = File(...),
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_permission(Action.IMPORT_TOOLS)),
):
    raw = await file.read()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        text = raw.decode("latin-1")

    parsed = parse_tool_csv(text)
    if not parsed:
        raise ValidationError("Nenhuma ferramenta válida encontrada no arquivo CSV", "EMPTY_IMPORT")

    created = store.create_tools([_new_tool(d) for d in parsed])
    return {"created": len(created), "items": [ToolRead.model_validate(t) for t in created]}


@router.get("", response_model=ToolListResponse)
def list_tools(
        q: Optional[str] = Query(None, description="Busca por nome, id, setor ou BMP"),
        status: Optional[ToolStatus] = Query(None),
        category: Optional[str] = Query(None),
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_user),
):
    tools = store.list_tools()

    needle = (q or "").strip().lower()
    if needle:
        tools = [
            t for t in tools
            if needle in t.name.lower()
            or needle in t.id.lower()
            or needle in t.sector.lower()
            or needle in (t.bmp or "").lower()
        ]
    if status is not None:
        tools = [t for t in tools if t.status == status.value]
    if category:
        tools = [t for t in tools if t.category == category]

    tools.sort(key=lambda t: t.name.lower())
    return {"items": [ToolRead.model_validate(t) for t in tools], "total": len(tools), "q": q}


@router.get("/categories", response_model=list[str])
def list_categories(
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_user),
):
    return sorted({t.category for t in store.list_tools()})


@router.get("/export.csv")
def export_tools_csv(
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_permission(Action.EXPORT_DATA)),
):
    content = export_table(store.list_tools(), TOOL_COLUMNS, fmt="csv")
    return attachment(content, CSV_MEDIA_TYPE, "ZAGFER_Ferramentas.csv")


@router.get("/export.xlsx")
def export_tools_xlsx(
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_permission(Action.EXPORT_DATA)),
):
    content = export_table(store.list_tools(), TOOL_COLUMNS, fmt="xlsx", sheet_title="Ferramentas")
    return attachment(content, XLSX_MEDIA_TYPE, "ZAGFER_Ferramentas.xlsx")


@router.get("/{tool_id}", response_model=ToolRead)
def get_tool(
        tool_id: str,
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_user),
):
    tool = store.get_tool(tool_id)
    if not tool:
        raise NotFoundError("Ferramenta não encontrada", "TOOL_NOT_FOUND")
    return ToolRead.model_validate(tool)


@router.put("/{tool_id}", response_model=ToolRead)
def update_tool(
        tool_id: str,
        body: ToolUpdate,
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_permission(Action.MANAGE_TOOLS)),
):
    changes = body.model_dump(exclude_unset=True)
    for key in ("name", "category", "sector"):
        if key in changes and changes[key] is None:
            changes.pop(key)
    return ToolRead.model_validate(store.update_tool(tool_id, changes))


@router.delete("/{tool_id}")
def delete_tool(
        tool_id: str,
        store: EntityStore = Depends(get_store),
        _user: User = Depends(require_permission(Action.MANAGE_TOOLS)),
):
    # 流水不级联删除，旧编号在历史里显示为“已移除”
    store.delete_tool(tool_id)
    return {"ok": True}
