import logging
from enum import Enum
from uuid import uuid4

from zagfer.errors import ForbiddenError, InvalidStateError, NotFoundError
from zagfer.models import User
from zagfer.schemas import Role, UserCreate, UserUpdate
from zagfer.store import EntityStore

logger = logging.getLogger("zagfer.accounts")


class Action(str, Enum):
    VIEW = "VIEW"
    MANAGE_TOOLS = "MANAGE_TOOLS"
    IMPORT_TOOLS = "IMPORT_TOOLS"
    CHECKOUT = "CHECKOUT"
    RETURN = "RETURN"
    RENEW = "RENEW"
    EXPORT_DATA = "EXPORT_DATA"
    MANAGE_USERS = "MANAGE_USERS"


ADMIN_ONLY = {Action.EXPORT_DATA, Action.MANAGE_USERS}


def can_perform(user: User | None, action: Action) -> bool:
    if user is None or not user.active:
        return False
    if action in ADMIN_ONLY:
        return user.role == Role.admin.value
    return True


def ensure_can_perform(user: User | None, action: Action) -> None:
    if not can_perform(user, action):
        raise ForbiddenError("Acesso restrito a administradores", "ADMIN_REQUIRED")


def authenticate(store: EntityStore, matricula: str) -> User:
    """按 matricula 登录；只放行启用状态的用户。"""
    matricula = (matricula or "").strip()
    user = store.find_user_by_matricula(matricula) if matricula else None
    if not user or not user.active:
        raise NotFoundError("Matrícula não encontrada ou usuário inativo", "INVALID_CREDENTIALS")
    logger.info("login: %s", user.matricula)
    return user


def create_user(store: EntityStore, data: UserCreate) -> User:
    user = User(
        id=data.id or uuid4().hex[:9],
        name=data.name,
        matricula=data.matricula,
        role=data.role.value,
        active=data.active,
    )
    return store.create_user(user)


def update_user(store: EntityStore, actor: User, user_id: str, data: UserUpdate) -> User:
    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if "role" in changes:
        changes["role"] = Role(changes["role"]).value

    if user_id == actor.id and changes.get("active") is False:
        raise InvalidStateError("Você não pode desativar seu próprio usuário", "SELF_DEACTIVATION")

    user = store.update_user(user_id, changes)
    logger.info("user %s updated by %s: %s", user_id, actor.matricula, sorted(changes))
    return user


def delete_user(store: EntityStore, actor: User, user_id: str) -> None:
    if user_id == actor.id:
        raise InvalidStateError("Você não pode excluir seu próprio usuário logado", "SELF_DELETION")

    store.delete_user(user_id)
    logger.info("user %s deleted by %s", user_id, actor.matricula)
