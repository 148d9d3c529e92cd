"""Signed-cookie sessions and OAuth account linking."""

from __future__ import annotations

import hmac
import logging
import os
import secrets
import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session, select

from .database import Account, User, get_session
from .errors import ActionError, Forbidden, LoginRequired, NotFound, ok

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "futsal_session")
SESSION_SECRET = os.getenv("SESSION_SECRET") or os.getenv("SECRET_KEY") or secrets.token_hex(32)
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", "2592000"))  # 30 days default
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "true").lower() != "false"
API_SECRET_KEY = os.getenv("API_SECRET_KEY")
ALLOW_DEV_LOGIN = os.getenv("ALLOW_DEV_LOGIN", "false").lower() in {"1", "true", "yes"}

router = APIRouter(prefix="/auth")
logger = logging.getLogger(__name__)


class OAuthProfile(BaseModel):
    provider_account_id: str
    email: str | None = None
    name: str | None = None
    image: str | None = None


def _sign_payload(payload: str) -> str:
    secret = SESSION_SECRET.encode("utf-8")
    return hmac.new(secret, payload.encode("utf-8"), "sha256").hexdigest()


def encode_session(user_id: int) -> str:
    timestamp = str(int(time.time()))
    payload = f"{user_id}|{timestamp}"
    signature = _sign_payload(payload)
    return f"{payload}|{signature}"


def decode_session(raw: str) -> int | None:
    """Return the user id carried by a session cookie, or None if it is invalid."""
    try:
        user_id, timestamp, signature = raw.split("|")
    except ValueError:
        return None
    payload = f"{user_id}|{timestamp}"
    expected = _sign_payload(payload)
    if not hmac.compare_digest(expected, signature):
        return None
    try:
        issued_at = int(timestamp)
        parsed_id = int(user_id)
    except ValueError:
        return None
    if int(time.time()) - issued_at > SESSION_MAX_AGE:
        return None
    return parsed_id


def current_user_optional(request: Request, session: Session = Depends(get_session)) -> User | None:
    cookie_value = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie_value:
        return None
    user_id = decode_session(cookie_value)
    if user_id is None:
        return None
    user = session.get(User, user_id)
    if not user or user.is_deleted:
        return None
    return user


def current_user(user: User | None = Depends(current_user_optional)) -> User:
    if user is None:
        raise LoginRequired()
    return user


def validate_api_key(request: Request) -> None:
    """Check the ``x-api-key`` header sent by the trusted OAuth front."""
    if not API_SECRET_KEY:
        logger.error("API_SECRET_KEY is not configured; rejecting OAuth callback.")
        raise ActionError("Server configuration error.", status_code=500)
    provided = request.headers.get("x-api-key")
    if not provided:
        raise ActionError("API key required.", status_code=401)
    if not hmac.compare_digest(provided, API_SECRET_KEY):
        raise Forbidden("Invalid API key.")


def link_oauth_account(session: Session, provider: str, profile: OAuthProfile) -> User:
    """Return the user owning the provider account, creating both on first sign-in."""
    account = session.exec(
        select(Account).where(
            Account.provider == provider,
            Account.provider_account_id == profile.provider_account_id,
        )
    ).first()
    if account:
        user = session.get(User, account.user_id)
        if user and not user.is_deleted:
            return user
        # Withdrawn users keep no accounts, so a stale link is simply replaced.
        session.delete(account)
        session.flush()

    email = profile.email
    if email:
        owner = session.exec(select(User).where(User.email == email)).first()
        if owner:
            logger.info("Email %s already belongs to user %s; not merging %s account.", email, owner.id, provider)
            email = None

    user = User(email=email, name=profile.name, image=profile.image)
    session.add(user)
    session.flush()
    session.add(Account(user_id=user.id, provider=provider, provider_account_id=profile.provider_account_id))
    logger.info("Created user %s via %s sign-in", user.id, provider)
    return user


def _session_response(user: User) -> JSONResponse:
    response = ok(_me_payload(user))
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=encode_session(user.id),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite="lax",
        path="/",
    )
    return response


def _me_payload(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "nickname": user.nickname,
        "image": user.image,
        "onboarding_step": user.onboarding_step,
    }


@router.post("/oauth/{provider}", name="oauth_sign_in")
async def oauth_sign_in(
    provider: str,
    profile: OAuthProfile,
    request: Request,
    session: Session = Depends(get_session),
):
    validate_api_key(request)
    user = link_oauth_account(session, provider.lower(), profile)
    session.commit()
    session.refresh(user)
    return _session_response(user)


@router.post("/dev-login", name="dev_login")
async def dev_login(profile: OAuthProfile, session: Session = Depends(get_session)):
    if not ALLOW_DEV_LOGIN:
        raise NotFound("Not found.")
    user = link_oauth_account(session, "dev", profile)
    session.commit()
    session.refresh(user)
    return _session_response(user)


@router.post("/logout", name="logout")
async def logout():
    response = ok(None, message="Signed out.")
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return response


@router.get("/me", name="me")
async def me(user: User = Depends(current_user)):
    return ok(_me_payload(user))
