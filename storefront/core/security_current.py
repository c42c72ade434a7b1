import re
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.deps import get_db
from storefront.core.id_utils import generate_session_token
from storefront.core.security import TokenValidationError, decode_token
from storefront.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)

SESSION_HEADER = "X-Session-Id"
_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,64}$")


@dataclass(frozen=True)
class RequestIdentity:
    """Who is calling: a stable user id when signed in, always a session id."""

    session_id: str
    user_id: str | None = None
    role: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    def has_role(self, role: str) -> bool:
        return bool(self.role) and self.role.lower() == role.strip().lower()

    def can_see_order(self, customer_id: str | None, session_id: str | None) -> bool:
        """Admins see everything; account orders belong to the account, guest orders to the session."""
        if self.has_role("admin"):
            return True
        if customer_id:
            return customer_id == self.user_id
        return session_id == self.session_id


def resolve_session_id(request: Request, response: Response) -> str:
    candidate = request.headers.get(SESSION_HEADER) or request.cookies.get(settings.session_cookie_name)
    if candidate and _SESSION_ID_PATTERN.match(candidate):
        return candidate

    session_id = generate_session_token()
    response.set_cookie(
        settings.session_cookie_name,
        session_id,
        max_age=settings.session_cookie_max_age_days * 86_400,
        httponly=True,
        samesite="lax",
    )
    response.headers[SESSION_HEADER] = session_id
    return session_id


def get_optional_user(
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User | None:
    if not token:
        return None
    try:
        payload = decode_token(token, expected_type="access")
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    user = db.execute(select(User).where(User.id == payload.get("sub"))).scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated", headers={"WWW-Authenticate": "Bearer"})
    return user


def get_request_identity(
    request: Request,
    response: Response,
    user: User | None = Depends(get_optional_user),
) -> RequestIdentity:
    session_id = resolve_session_id(request, response)
    if user is None:
        return RequestIdentity(session_id=session_id)
    return RequestIdentity(session_id=session_id, user_id=user.id, role=user.role)
