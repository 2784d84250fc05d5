"""Pydantic schemas for API request/response validation"""

from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, EmailStr


# ============================================================================
# USER SCHEMAS
# ============================================================================

class SignupRequest(BaseModel):
    """Manual signup (email + password) or Google signup (email + token)"""
    email: EmailStr
    password: Optional[str] = Field(None, alias="pass")
    manual: bool = True
    token: Optional[str] = None  # Google OAuth access token when manual is false

    model_config = ConfigDict(populate_by_name=True)


class SignupFinish(BaseModel):
    pending_id: str = Field(..., alias="_id")
    first_name: str = Field(..., min_length=1, max_length=255, alias="fName")
    last_name: str = Field(..., min_length=1, max_length=255, alias="lName")

    model_config = ConfigDict(populate_by_name=True)


class LoginRequest(BaseModel):
    email: EmailStr
    password: Optional[str] = Field(None, alias="pass")
    manual: bool = True
    token: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class EmailRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=1, max_length=32)


class ForgotFinish(BaseModel):
    user_id: str = Field(..., alias="userId")
    secret: str
    new_password: str = Field(..., alias="newPass")
    re_enter: str = Field(..., alias="reEnter")

    model_config = ConfigDict(populate_by_name=True)


class UserResponse(BaseModel):
    id: str = Field(..., serialization_alias="_id")
    email: str
    first_name: Optional[str] = Field(None, serialization_alias="fName")
    last_name: Optional[str] = Field(None, serialization_alias="lName")
    profile_image: Optional[str] = Field(None, serialization_alias="profile")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class PendingResponse(BaseModel):
    id: str = Field(..., serialization_alias="_id")
    email: str
    manual: bool

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ============================================================================
# CHAT SCHEMAS
# ============================================================================

class ChatPrompt(BaseModel):
    prompt: str = Field(..., min_length=1)
    session_id: Optional[str] = Field(None, alias="sessionId")

    model_config = ConfigDict(populate_by_name=True)


class ChatContinue(BaseModel):
    prompt: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1, alias="sessionId")

    model_config = ConfigDict(populate_by_name=True)


class DeleteFileRequest(BaseModel):
    session_id: str = Field(..., min_length=1, alias="sessionId")
    file_name: str = Field(..., min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class ExchangeResponse(BaseModel):
    prompt: str
    response: str


class SessionHistory(BaseModel):
    chat_id: str = Field(..., serialization_alias="chatId")
    chat: List[ExchangeResponse] = []
