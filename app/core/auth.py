import uuid
from typing import Any

from fastapi import Cookie, Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from app.core.config import get_settings
from app.core.identity import Actor, AuthenticatedUser, Guest, Role
from app.database import get_session
from app.models.user import User
from app.repositories.user_repo import UserRepository

settings = get_settings()

# HTTP Bearer scheme:
# - auto_error=False => missing Authorization header will NOT raise immediately
#   so we can support guest carts (unauthenticated).
bearer_scheme = HTTPBearer(auto_error=False)

user_repo = UserRepository()

GUEST_ID_MAX_LENGTH = 128


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Decode and verify an access token (JWT).

    Verification:
      - signature (JWT_ALG using JWT_SECRET)
      - expiration time (exp)
      - audience is NOT verified (issuers vary)

    Raises:
        HTTPException(401): if token is invalid/expired.
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALG],
            options={"verify_aud": False},
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def _default_name_from_email(email: str) -> str:
    """
    Derive a default display name from email if the user has not
    completed their profile yet.
    """
    if "@" in email:
        return email.split("@", 1)[0][:50]
    return email[:50]


def _load_or_provision_user(session: Session, payload: dict[str, Any]) -> User:
    sub = payload.get("sub")
    email = payload.get("email")

    if not sub or not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing sub/email",
        )

    try:
        sub_uuid = uuid.UUID(sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid sub in token",
        )

    user = user_repo.get_by_id(session, sub_uuid)

    # Auto-provision profile if not found yet.
    # Default role = CUSTOMER (admin must be manually promoted).
    if user is None:
        try:
            user = user_repo.create(
                session,
                User(
                    id=sub_uuid,
                    email=email,
                    name=_default_name_from_email(email),
                    role=Role.CUSTOMER,
                ),
            )
        except IntegrityError:
            # A concurrent first request inserted the same sub.
            session.rollback()
            user = user_repo.get_by_id(session, sub_uuid)
            if user is None:
                raise
    return user


def _clean_guest_id(raw: str | None) -> str | None:
    if raw is None:
        return None
    raw = raw.strip()
    if not raw or len(raw) > GUEST_ID_MAX_LENGTH:
        return None
    return raw


def get_guest_id(
    guest_cookie: str | None = Cookie(default=None, alias="guestId"),
    guest_header: str | None = Header(default=None, alias="X-Guest-Id"),
) -> str | None:
    """
    Guest session id from the ``guestId`` cookie, else the ``X-Guest-Id`` header.
    """
    return _clean_guest_id(guest_cookie) or _clean_guest_id(guest_header)


def get_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    guest_id: str | None = Depends(get_guest_id),
    session: Session = Depends(get_session),
) -> Actor:
    """
    Resolve who is calling.

    Flow:
      1. Bearer token => decode => AuthenticatedUser (role from the users table;
         the profile is auto-provisioned on first sight).
      2. Otherwise a guest id (cookie or header) => Guest.
      3. Neither => 401.
    """
    if credentials is not None:
        payload = decode_access_token(credentials.credentials)
        user = _load_or_provision_user(session, payload)
        return AuthenticatedUser(id=user.id, role=user.role)

    if guest_id is not None:
        return Guest(session_id=guest_id)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication or guest session required",
    )


def require_user(actor: Actor = Depends(get_actor)) -> AuthenticatedUser:
    """
    Enforce authentication. Guests are rejected with 401.
    """
    match actor:
        case AuthenticatedUser():
            return actor
        case Guest():
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
            )


def require_customer(user: AuthenticatedUser = Depends(require_user)) -> AuthenticatedUser:
    """
    Only customers (checkout, own orders). Admins are rejected with 403.
    """
    if user.role != Role.CUSTOMER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Customer access required",
        )
    return user


def require_admin(user: AuthenticatedUser = Depends(require_user)) -> AuthenticatedUser:
    """
    Enforce admin role.

    Raises:
        HTTPException(403): if role is not ADMIN.
    """
    if user.role != Role.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


def require_shopper(actor: Actor = Depends(get_actor)) -> Actor:
    """
    Cart access: customers and guests. Admins are rejected with 403.
    """
    match actor:
        case AuthenticatedUser(role=Role.ADMIN):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Customer access required",
            )
        case _:
            return actor
