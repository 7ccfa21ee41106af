from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from app.core.security import SESSION_MAX_AGE, create_session_cookie
from app.deps import SESSION_COOKIE_NAME, get_current_user
from app.models.user import UserRecord
from app.services import users as user_service

router = APIRouter()


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


def _set_session(response: Response, user: UserRecord) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=create_session_cookie(user_service.session_payload_for_user(user)),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=False,  # set True in prod with HTTPS
        samesite="lax",
        path="/",
    )


@router.post("/register", status_code=201)
def auth_register(body: RegisterRequest, response: Response):
    """Create an account and start a session."""
    user = user_service.register_user(body.name, body.email, body.password)
    _set_session(response, user)
    return {"user": user.public_dict()}


@router.post("/login")
def auth_login(body: LoginRequest, response: Response):
    user = user_service.authenticate_user(body.email, body.password)
    _set_session(response, user)
    return {"user": user.public_dict()}


@router.post("/logout")
def auth_logout(response: Response):
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"ok": True}


@router.get("/me")
def auth_me(user: UserRecord = Depends(get_current_user)):
    """Return current user. Requires session cookie."""
    return user.public_dict()
