from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session

from zagfer.db import get_session
from zagfer.errors import _auth_401
from zagfer.models import User
from zagfer.security import decode_token
from zagfer.services.accounts import Action, ensure_can_perform
from zagfer.settings import get_settings
from zagfer.store import EntityStore, LocalCache, SqlEntityStore, StoreWithFallback

# auto_error=False：没带 token 的错误格式由我们自己给
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def get_store(session: Session = Depends(get_session)) -> EntityStore:
    store = SqlEntityStore(session)
    cache_path = get_settings().cache_path
    if cache_path:
        return StoreWithFallback(store, LocalCache(cache_path))
    return store


def require_user(
    token: str | None = Depends(oauth2_scheme),
    store: EntityStore = Depends(get_store),
) -> User:
    # 1) 没带 token
    if not token:
        raise _auth_401("NOT_AUTHENTICATED", "Não autenticado, faça login novamente")

    # 2) token 无效 / 过期 / secret_key 不一致
    try:
        user_id = decode_token(token)
    except Exception:
        raise _auth_401("INVALID_TOKEN", "Sessão inválida ou expirada, faça login novamente")

    # 3) token 没问题，但用户被删或被停用
    user = store.get_user(user_id)
    if not user:
        raise _auth_401("USER_NOT_FOUND", "Usuário não existe ou foi removido")
    if not user.active:
        raise _auth_401("USER_INACTIVE", "Usuário desativado")

    return user


def require_permission(action: Action):
    """依赖工厂：取当前用户，并按 can_perform 校验一次权限。"""

    def checker(user: User = Depends(require_user)) -> User:
        ensure_can_perform(user, action)
        return user

    return checker
