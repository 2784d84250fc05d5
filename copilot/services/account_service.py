"""
Account flows - signup, OTP login, password reset, profile, deletion

Each flow checks its input before touching the mailer or Google so a
rejected request has no side effects.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from copilot.config import settings
from copilot.db.models import PendingKind, PendingRecord, User
from copilot.errors import AuthenticationFailure, NotFound, ValidationFailure
from copilot.services.auth_service import (
    authenticate_user, check_password_strength, create_user, generate_otp,
    generate_secret, get_password_hash, get_user_by_email, get_user_by_id,
    normalize_email, verify_password,
)
from copilot.services.google_identity import GoogleIdentity
from copilot.services.mail_service import Mailer
from copilot.services.pending_service import (
    consume_pending, get_pending, get_reset_secret, upsert_pending,
)

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, db: AsyncSession, mailer: Mailer, google: GoogleIdentity):
        self.db = db
        self.mailer = mailer
        self.google = google

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------
    async def signup(
        self,
        email: str,
        password: Optional[str],
        manual: bool = True,
        token: Optional[str] = None,
    ) -> PendingRecord:
        """
        Start a signup. Manual signups get a verification mail; Google
        signups return the pending record straight away.
        """
        email = normalize_email(email)

        if manual:
            check_password_strength(password)
        else:
            await self._check_google_email(email, token)

        if await get_user_by_email(self.db, email):
            raise ValidationFailure("Email already used")

        record = await upsert_pending(
            self.db,
            PendingKind.REGISTER,
            email,
            password_hash=get_password_hash(password) if manual else None,
            manual=manual,
        )

        if manual:
            await self.mailer.send_verification(email, record.id)
        logger.info(f"Pending signup {record.id} for {email}")
        return record

    async def check_pending(self, pending_id: str) -> PendingRecord:
        if await get_user_by_id(self.db, pending_id):
            raise ValidationFailure("Already registered")

        record = await get_pending(self.db, PendingKind.REGISTER, record_id=pending_id)
        if record is None:
            raise NotFound("Not Found")
        return record

    async def finish_signup(self, pending_id: str, first_name: str, last_name: str) -> User:
        """Turn a live pending signup into a user with the same id."""
        record = await self.check_pending(pending_id)

        if await get_user_by_email(self.db, record.email):
            raise ValidationFailure("Email already registered")

        try:
            user = await create_user(
                self.db,
                email=record.email,
                hashed_password=record.password_hash,
                first_name=first_name,
                last_name=last_name,
                user_id=record.id,
            )
            await consume_pending(self.db, record)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationFailure("Email already registered")

        logger.info(f"User {user.id} registered")
        return user

    # ------------------------------------------------------------------
    # Login (credentials, then OTP)
    # ------------------------------------------------------------------
    async def login(
        self,
        email: str,
        password: Optional[str],
        manual: bool = True,
        token: Optional[str] = None,
    ) -> User:
        """Check credentials and mail a one-time password."""
        email = normalize_email(email)

        if manual:
            if not password:
                raise ValidationFailure("Password is required")
            user = await authenticate_user(self.db, email, password)
        else:
            await self._check_google_email(email, token)
            user = await get_user_by_email(self.db, email)

        if user is None or not user.is_active:
            raise ValidationFailure("Wrong email or password")

        await self.send_otp(user.email)
        return user

    async def send_otp(self, email: str) -> None:
        email = normalize_email(email)
        user = await get_user_by_email(self.db, email)
        if user is None:
            raise ValidationFailure("No account for this email")

        otp = generate_otp()
        await upsert_pending(
            self.db,
            PendingKind.OTP,
            email,
            user_id=user.id,
            secret=get_password_hash(otp),
        )
        await self.mailer.send_otp(email, otp)

    async def verify_otp(self, email: str, otp: str) -> User:
        email = normalize_email(email)
        record = await get_pending(self.db, PendingKind.OTP, email=email)
        if record is None or not record.secret:
            raise ValidationFailure("Invalid OTP")

        if not verify_password(otp, record.secret):
            record.failed_attempts = (record.failed_attempts or 0) + 1
            if record.failed_attempts >= settings.otp_max_attempts:
                logger.warning(f"Too many wrong OTPs for {email}, discarding it")
                await consume_pending(self.db, record)
            await self.db.commit()
            raise ValidationFailure("Invalid OTP")

        user = await get_user_by_email(self.db, email)
        if user is None:
            raise ValidationFailure("Invalid OTP")

        await consume_pending(self.db, record)
        await self.db.commit()
        logger.info(f"User {user.id} logged in")
        return user

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------
    async def forgot_request(self, email: str) -> None:
        email = normalize_email(email)
        user = await get_user_by_email(self.db, email)
        if user is None:
            raise ValidationFailure("No account for this email")

        secret = generate_secret()
        await upsert_pending(self.db, PendingKind.RESET, email, user_id=user.id, secret=secret)
        await self.mailer.send_reset(email, user.id, secret)

    async def forgot_check(self, user_id: str, secret: str) -> None:
        if await get_reset_secret(self.db, user_id, secret) is None:
            raise NotFound("Wrong Verification")

    async def forgot_finish(self, user_id: str, secret: str, new_password: str, re_enter: str) -> None:
        check_password_strength(new_password)
        if new_password != re_enter:
            raise ValidationFailure("Passwords do not match")

        record = await get_reset_secret(self.db, user_id, secret)
        if record is None:
            raise NotFound("Wrong Verification")

        user = await get_user_by_id(self.db, user_id)
        if user is None:
            raise NotFound("User not found")

        user.hashed_password = get_password_hash(new_password)
        await consume_pending(self.db, record)
        await self.db.commit()
        logger.info(f"Password reset for user {user.id}")

    # ------------------------------------------------------------------
    # Profile and account
    # ------------------------------------------------------------------
    async def update_profile(
        self,
        user: User,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        profile_image: Optional[str] = None,
    ) -> User:
        if first_name:
            user.first_name = first_name
        if last_name:
            user.last_name = last_name
        if profile_image:
            user.profile_image = profile_image
        await self.db.commit()
        return user

    async def delete_account(self, user: User) -> None:
        """Delete the user; its sessions go with it."""
        await self.db.delete(user)
        await self.db.commit()
        logger.info(f"Deleted account {user.id}")

    async def _check_google_email(self, email: str, token: Optional[str]) -> None:
        verified = await self.google.verified_email(token or "")
        if verified != email:
            raise AuthenticationFailure("Google account does not match email")
