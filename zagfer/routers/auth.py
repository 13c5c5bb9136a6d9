from fastapi import APIRouter, Depends

from zagfer.deps import get_store, require_user
from zagfer.errors import NotFoundError, _auth_401
from zagfer.models import User
from zagfer.schemas import LoginRequest, Token, UserRead
from zagfer.security import create_access_token
from zagfer.services.accounts import authenticate
from zagfer.store import EntityStore

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=Token)
def login(data: LoginRequest, store: EntityStore = Depends(get_store)):
    try:
        user = authenticate(store, data.matricula)
    except NotFoundError as e:
        raise _auth_401(e.code, e.message)

    token = create_access_token(user.id)
    return Token(access_token=token, user=UserRead.model_validate(user))


@router.get("/me", response_model=UserRead)
def me(user: User = Depends(require_user)):
    return UserRead.model_validate(user)
