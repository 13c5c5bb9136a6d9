from fastapi import APIRouter, Depends

from zagfer.deps import get_store, require_permission
from zagfer.models import User
from zagfer.routers.tools import attachment
from zagfer.schemas import UserCreate, UserRead, UserUpdate
from zagfer.services import accounts
from zagfer.services.accounts import Action
from zagfer.services.exports import CSV_MEDIA_TYPE, USER_COLUMNS, export_table
from zagfer.store import EntityStore

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=list[UserRead])
def list_users(
        store: EntityStore = Depends(get_store),
        _admin: User = Depends(require_permission(Action.MANAGE_USERS)),
):
    return [UserRead.model_validate(u) for u in store.list_users()]


@router.get("/export.csv")
def export_users_csv(
        store: EntityStore = Depends(get_store),
        _admin: User = Depends(require_permission(Action.EXPORT_DATA)),
):
    content = export_table(store.list_users(), USER_COLUMNS, fmt="csv")
    return attachment(content, CSV_MEDIA_TYPE, "ZAGFER_Usuarios.csv")


@router.post("", response_model=UserRead)
def create_user(
        data: UserCreate,
        store: EntityStore = Depends(get_store),
        _admin: User = Depends(require_permission(Action.MANAGE_USERS)),
):
    return UserRead.model_validate(accounts.create_user(store, data))


@router.put("/{user_id}", response_model=UserRead)
def update_user(
        user_id: str,
        data: UserUpdate,
        store: EntityStore = Depends(get_store),
        admin: User = Depends(require_permission(Action.MANAGE_USERS)),
):
    return UserRead.model_validate(accounts.update_user(store, admin, user_id, data))


@router.delete("/{user_id}")
def delete_user(
        user_id: str,
        store: EntityStore = Depends(get_store),
        admin: User = Depends(require_permission(Action.MANAGE_USERS)),
):
    accounts.delete_user(store, admin, user_id)
    return {"ok": True}
