"""Account endpoints: signup, OTP login, password reset, profile"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile

from copilot.api.deps import (
    ensure_logged_out, get_account_service, get_current_user, get_optional_user,
    get_storage, serialize_user,
)
from copilot.config import settings
from copilot.db import User
from copilot.errors import AuthenticationFailure, envelope
from copilot.schemas import (
    EmailRequest, ForgotFinish, LoginRequest, PendingResponse, SignupFinish,
    SignupRequest, VerifyOtpRequest,
)
from copilot.services.account_service import AccountService
from copilot.services.auth_service import create_access_token
from copilot.services.storage_service import ProfileImageStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user", tags=["Account"])


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.cookie_name,
        value=token,
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def _clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.cookie_name,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


@router.get("/checkLogged")
async def check_logged(user: Optional[User] = Depends(get_optional_user)):
    """200 with the user for a valid cookie or token, 401 otherwise"""
    if user is None:
        raise AuthenticationFailure("Not Logged")
    return envelope(data=serialize_user(user))


# ----------------------------------------------------------------------
# Signup
# ----------------------------------------------------------------------
@router.post("/signup", dependencies=[Depends(ensure_logged_out)])
async def signup(
    body: SignupRequest,
    accounts: AccountService = Depends(get_account_service),
):
    record = await accounts.signup(body.email, body.password, body.manual, body.token)
    return envelope(data={"_id": record.id, "manual": record.manual})


@router.get("/checkPending", dependencies=[Depends(ensure_logged_out)])
async def check_pending(
    pending_id: str = Query(..., alias="_id"),
    accounts: AccountService = Depends(get_account_service),
):
    record = await accounts.check_pending(pending_id)
    return envelope(data=PendingResponse.model_validate(record).model_dump(by_alias=True))


@router.put("/signup-finish", dependencies=[Depends(ensure_logged_out)])
async def signup_finish(
    body: SignupFinish,
    accounts: AccountService = Depends(get_account_service),
):
    user = await accounts.finish_signup(body.pending_id, body.first_name, body.last_name)
    return envelope(data=serialize_user(user))


# ----------------------------------------------------------------------
# Login
# ----------------------------------------------------------------------
@router.post("/login", dependencies=[Depends(ensure_logged_out)])
async def login(
    body: LoginRequest,
    accounts: AccountService = Depends(get_account_service),
):
    """Check credentials and mail a one-time password. No cookie yet."""
    user = await accounts.login(body.email, body.password, body.manual, body.token)
    return envelope(message="OTP sent", data=serialize_user(user))


@router.post("/send_otp")
async def send_otp(
    body: EmailRequest,
    accounts: AccountService = Depends(get_account_service),
):
    await accounts.send_otp(body.email)
    return envelope(message="OTP sent")


@router.post("/verify_otp")
async def verify_otp(
    body: VerifyOtpRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
):
    user = await accounts.verify_otp(body.email, body.otp)
    token = create_access_token(user.id)
    _set_session_cookie(response, token)
    return envelope(data={**serialize_user(user), "access_token": token})


@router.get("/logout")
async def logout(response: Response):
    _clear_session_cookie(response)
    return envelope(message="Logged out")


# ----------------------------------------------------------------------
# Password reset
# ----------------------------------------------------------------------
@router.post("/forgot-request", dependencies=[Depends(ensure_logged_out)])
async def forgot_request(
    body: EmailRequest,
    accounts: AccountService = Depends(get_account_service),
):
    await accounts.forgot_request(body.email)
    return envelope(message="Reset link sent")


@router.get("/forgot-check", dependencies=[Depends(ensure_logged_out)])
async def forgot_check(
    user_id: str = Query(..., alias="userId"),
    secret: str = Query(...),
    accounts: AccountService = Depends(get_account_service),
):
    await accounts.forgot_check(user_id, secret)
    return envelope()


@router.put("/forgot-finish", dependencies=[Depends(ensure_logged_out)])
async def forgot_finish(
    body: ForgotFinish,
    accounts: AccountService = Depends(get_account_service),
):
    await accounts.forgot_finish(body.user_id, body.secret, body.new_password, body.re_enter)
    return envelope(message="Password changed")


# ----------------------------------------------------------------------
# Profile and account
# ----------------------------------------------------------------------
@router.post("/update_profile")
async def update_profile(
    first_name: Optional[str] = Form(None, alias="firstName"),
    last_name: Optional[str] = Form(None, alias="lastName"),
    image: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    accounts: AccountService = Depends(get_account_service),
    storage: ProfileImageStorage = Depends(get_storage),
):
    image_url = None
    if image is not None and image.filename:
        content = await image.read()
        image_url = await storage.upload_profile_image(
            user.id, image.filename, content, image.content_type
        )

    user = await accounts.update_profile(user, first_name, last_name, image_url)
    return envelope(data=serialize_user(user))


@router.delete("/account")
async def delete_account(
    response: Response,
    user: User = Depends(get_current_user),
    accounts: AccountService = Depends(get_account_service),
):
    """Delete the account and every chat session it owns."""
    await accounts.delete_account(user)
    _clear_session_cookie(response)
    return envelope(message="Account deleted")
