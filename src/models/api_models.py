"""Pydantic models for API requests and responses."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class SendOtpRequest(BaseModel):
    """Request model for OTP initiation endpoint."""

    phoneNumber: str = Field("", description="Phone number in E.164 format")


class RegisterRequest(SendOtpRequest):
    """Request model for user registration endpoint."""

    name: Optional[str] = Field(None, max_length=256, description="Display name")


class VerifyOtpRequest(BaseModel):
    """Request model for OTP verification endpoint."""

    phoneNumber: str = Field("", description="Phone number in E.164 format")
    otp: str = Field("", description="Code received by SMS")
    session: str = Field("", description="Session handle from the previous challenge")

    @field_validator('otp')
    @classmethod
    def strip_otp(cls, v):
        """Tolerate whitespace copied from the message."""
        return v.strip()


class AuthorizeRequest(BaseModel):
    """Request model for gateway authorization endpoint."""

    methodArn: str = Field("", description="ARN of the method being invoked")
    headers: Dict[str, str] = Field(default_factory=dict, description="Inbound request headers")


class UserResponse(BaseModel):
    """Caller identity projected from verified claims."""

    userId: str
    phoneNumber: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    emailVerified: bool = False
    phoneVerified: bool = False
    role: str = "user"
    company: Optional[str] = None


class ChallengeResponse(BaseModel):
    """Response model for endpoints that start an OTP challenge."""

    success: bool = True
    message: str
    session: str
    challengeName: str

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "message": "OTP sent successfully",
                "session": "AYABeC...",
                "challengeName": "CUSTOM_CHALLENGE"
            }
        }


class AuthResponse(BaseModel):
    """Response model for endpoints that issue session cookies."""

    success: bool = True
    message: str
    user: UserResponse


class CurrentUserResponse(BaseModel):
    """Response model for current user endpoint."""

    success: bool = True
    user: UserResponse


class MessageResponse(BaseModel):
    """Response model carrying only a status message."""

    success: bool = True
    message: str


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Service health status")
    version: str = Field(..., description="Service version")
    environment: str = Field(..., description="Deployment environment")


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Error type or category")
    message: str = Field(..., description="Human-readable error message")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID for tracing")
    session: Optional[str] = Field(None, description="Session handle for retrying the challenge")
    challengeName: Optional[str] = Field(None, description="Challenge to answer on retry")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Unauthorized",
                "message": "Invalid OTP code",
                "correlation_id": "req_123456789",
                "session": "AYABeC...",
                "challengeName": "CUSTOM_CHALLENGE"
            }
        }

    def to_content(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
