from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storefront.core.api_docs import error_responses
from storefront.core.deps import get_db
from storefront.core.security import create_access_token, hash_password, verify_password
from storefront.core.security_current import get_current_user, resolve_session_id
from storefront.db.unit_of_work import unit_of_work
from storefront.models.user import User
from storefront.schemas.auth import LoginIn, RegisterIn, TokenOut, UserProfileOut
from storefront.services.cart_service import merge_session_into_persisted

router = APIRouter(prefix="/auth", tags=["auth"])
TOKEN_RESPONSE = {
    200: {
        "description": "Access token",
        "content": {
            "application/json": {
                "example": {
                    "access_token": "access-token",
                    "token_type": "bearer",
                    "merged_cart_items": 2,
                }
            }
        },
    }
}


def _authenticate_user(db: Session, email: str, password: str) -> User:
    user = db.execute(
        select(User).where(func.lower(User.email) == email.strip().lower())
    ).scalar_one_or_none()
    if not user or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User is inactive")
    return user


def _sign_in(db: Session, *, user: User, request: Request, response: Response) -> TokenOut:
    """The only place a guest cart is folded into a user's cart."""
    session_id = resolve_session_id(request, response)
    with unit_of_work(db):
        merged = merge_session_into_persisted(db, session_id=session_id, user_id=user.id)
    return TokenOut(access_token=create_access_token(user.id), merged_cart_items=merged)


@router.post(
    "/register",
    response_model=TokenOut,
    summary="Register a customer",
    description="Creates a customer account and returns an access token.",
    responses={**TOKEN_RESPONSE, **error_responses(400, 422, 500)},
)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    normalized_email = payload.email.lower()
    exists = db.execute(
        select(User).where(func.lower(User.email) == normalized_email)
    ).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=400, detail="Email already registered")

    with unit_of_work(db):
        user = User(
            email=normalized_email,
            full_name=payload.full_name,
            hashed_password=hash_password(payload.password),
        )
        db.add(user)
        db.flush()
    return TokenOut(access_token=create_access_token(user.id))


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with JSON",
    description="Authenticate with email and password. Any guest cart on the session is merged into the account cart.",
    responses={**TOKEN_RESPONSE, **error_responses(401, 422, 500)},
)
def login(payload: LoginIn, request: Request, response: Response, db: Session = Depends(get_db)):
    user = _authenticate_user(db, payload.email, payload.password)
    return _sign_in(db, user=user, request=request, response=response)


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password token (Swagger Authorize)",
    description="Form-data login endpoint used by Swagger Authorize. Use your email in the `username` field.",
    responses={**TOKEN_RESPONSE, **error_responses(401, 422, 500)},
)
def login_for_swagger(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    user = _authenticate_user(db, form_data.username, form_data.password)
    return _sign_in(db, user=user, request=request, response=response)


@router.get(
    "/me",
    response_model=UserProfileOut,
    summary="Get current user profile",
    responses=error_responses(401, 500),
)
def get_my_profile(user: User = Depends(get_current_user)):
    return UserProfileOut.model_validate(user)
