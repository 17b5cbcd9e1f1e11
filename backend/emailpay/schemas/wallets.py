"""
Wallet API request/response schemas
"""

from typing import Dict, Optional
from pydantic import BaseModel, Field, field_validator

from emailpay.core.users.models import WalletUser, normalize_email

EMAIL_PATTERN = r"^[\w.%+-]+@[\w.-]+\.\w+$"


class EmailRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email")
    @classmethod
    def normalize(cls, v: str) -> str:
        return normalize_email(v)


class OtpVerifyRequest(EmailRequest):
    otp_code: str = Field(..., pattern=r"^\d{6}$", description="Six-digit code sent by email")


class OtpChallengeResponse(BaseModel):
    """Returned when a code has been issued"""
    email: str
    otp_sent: bool
    expires_at: str
    message: str
    # Only populated when DEV_MODE is enabled
    otp_code: Optional[str] = None


class WalletResponse(BaseModel):
    email: str
    verified: bool
    wallet_address: Optional[str] = None
    public_key: Optional[str] = None
    signing_backend: Optional[str] = Field(None, description="hot_wallet or custody")

    @classmethod
    def from_model(cls, user: WalletUser) -> "WalletResponse":
        signing_backend = None
        if user.signing_backend_id:
            signing_backend = "hot_wallet" if user.uses_hot_wallet else "custody"
        return cls(
            email=user.email,
            verified=user.verified,
            wallet_address=user.wallet_address,
            public_key=user.wallet_public_key,
            signing_backend=signing_backend,
        )


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_at: str
    wallet: WalletResponse


class BalanceResponse(BaseModel):
    email: str
    wallet_address: str
    balances: Dict[str, str] = Field(..., description="Asset symbol to decimal balance")

    class Config:
        json_schema_extra = {
            "example": {
                "email": "alice@example.com",
                "wallet_address": "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4",
                "balances": {"ETH": "0.25", "PYUSD": "120.5"},
            }
        }
