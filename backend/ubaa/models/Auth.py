from sqlmodel import Field, SQLModel
from datetime import datetime
from typing import Optional

# ==========================================
# Pydantic Models (DTOs)
# ==========================================

# Properties to receive via API on login
class LoginRequest(SQLModel):
    username: str
    password: str
    # Second submission after a captcha challenge
    captcha: Optional[str] = None
    execution: Optional[str] = None
    client_id: Optional[str] = None

class LoginPreloadRequest(SQLModel):
    client_id: str = Field(min_length=1)

# Verified identity returned by the user center status endpoint
class UserData(SQLModel):
    name: str
    schoolid: str

class LoginResponse(SQLModel):
    user: UserData
    token: str # JWT Token
    token_type: str = "bearer"

class SessionStatusResponse(SQLModel):
    user: UserData
    last_activity: datetime
    authenticated_at: datetime

class CaptchaInfo(SQLModel):
    id: str
    type: str = "image"
    image_url: str
    base64_image: Optional[str] = None

class LoginPreloadResponse(SQLModel):
    captcha_required: bool
    captcha: Optional[CaptchaInfo] = None
    execution: Optional[str] = None
    client_id: Optional[str] = None

class ErrorDetails(SQLModel):
    code: str
    message: str

class ErrorResponse(SQLModel):
    error: ErrorDetails

class CaptchaRequiredResponse(SQLModel):
    error: ErrorDetails
    captcha: CaptchaInfo
    execution: str
    client_id: Optional[str] = None
