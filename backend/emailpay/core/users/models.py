"""
WalletUser model - one email-identified custodial wallet
"""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, String
from sqlalchemy.orm import validates
from emailpay.core.common.base_model import BaseModel

# signing_backend_id value reserved for wallets signed by the operator hot wallet
HOT_WALLET_SENTINEL = "hot_wallet"


def normalize_email(email: str) -> str:
    """Normalize an email address for storage and lookup"""
    return email.strip().lower()


class WalletUser(BaseModel):
    """
    WalletUser model

    Lifecycle:
    - created unverified with a pending OTP on wallet-creation request
    - promoted to verified with a provisioned wallet once the OTP is confirmed
    - OTP refreshed on login / resend; never deleted

    Wallet address and public key are always written together via assign_wallet().
    """

    __tablename__ = "wallet_users"

    email = Column(String(255), unique=True, nullable=False, index=True)
    verified = Column(Boolean, nullable=False, default=False)

    # Transient one-time passcode, cleared on successful check
    otp_code = Column(String(16), nullable=True)
    otp_expires_at = Column(DateTime(timezone=True), nullable=True)

    wallet_public_key = Column(String(132), nullable=True)
    wallet_address = Column(String(42), nullable=True, index=True)
    # HOT_WALLET_SENTINEL or a custody-network token id
    signing_backend_id = Column(String(128), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(wallet_address IS NULL) = (wallet_public_key IS NULL)",
            name="check_wallet_users_wallet_fields_together",
        ),
    )

    @validates("email")
    def _normalize_email(self, key, value):
        return normalize_email(value)

    @property
    def has_wallet(self) -> bool:
        return bool(self.wallet_address and self.wallet_public_key)

    @property
    def uses_hot_wallet(self) -> bool:
        return self.signing_backend_id == HOT_WALLET_SENTINEL

    def assign_wallet(self, *, public_key: str, address: str, signing_backend_id: str) -> None:
        """Bind a wallet to this user (address and public key are set together)"""
        if not public_key or not address:
            raise ValueError("Wallet public key and address are both required")
        self.wallet_public_key = public_key
        self.wallet_address = address
        self.signing_backend_id = signing_backend_id

    def clear_otp(self) -> None:
        self.otp_code = None
        self.otp_expires_at = None
