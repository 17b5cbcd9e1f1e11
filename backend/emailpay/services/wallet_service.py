"""
Wallet service - OTP-gated wallet creation, login and balances
"""

import hmac
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Optional

import jwt as pyjwt
from sqlalchemy import select
from sqlalchemy.orm import Session
from web3.exceptions import Web3Exception

from emailpay.core.users.models import WalletUser, HOT_WALLET_SENTINEL, normalize_email
from emailpay.infrastructure.settings import Settings
from emailpay.services.assets import ETH, PYUSD
from emailpay.services.chain import ChainClient
from emailpay.services.custody_client import CustodyClient, CustodyError
from emailpay.services.notifications import TransactionNotifier
from emailpay.services.signing import OperatorAccount
from emailpay.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

SESSION_TOKEN_ALGORITHM = "HS256"


class WalletServiceError(Exception):
    """Base exception for wallet operations"""
    pass


class WalletNotFoundError(WalletServiceError):
    """Raised when no wallet record exists for an email"""
    pass


class WalletNotVerifiedError(WalletServiceError):
    """Raised when the wallet exists but its email was never verified"""
    pass


class WalletNotCreatedError(WalletServiceError):
    """Raised when no on-chain wallet is bound to the email"""
    pass


class WalletAlreadyExistsError(WalletServiceError):
    """Raised when creating a wallet for an email that already has a verified one"""
    pass


class WalletAlreadyVerifiedError(WalletServiceError):
    """Raised when resending a code for an already verified wallet"""
    pass


class InvalidOtpError(WalletServiceError):
    """Raised when an OTP is wrong or expired"""
    pass


class WalletProvisioningError(WalletServiceError):
    """Raised when a wallet could not be provisioned"""
    pass


class BalanceUnavailableError(WalletServiceError):
    """Raised when balances cannot be read from the chain"""
    pass


@dataclass(frozen=True)
class ProvisionedWallet:
    public_key: str
    address: str
    signing_backend_id: str


@dataclass(frozen=True)
class OtpChallenge:
    email: str
    otp_code: str
    expires_at: datetime
    otp_sent: bool


@dataclass(frozen=True)
class LoginSession:
    user: WalletUser
    token: str
    expires_at: datetime


class WalletProvisioner(ABC):
    """Binds a signing credential and address to a newly verified email"""

    @abstractmethod
    def provision(self, email: str) -> ProvisionedWallet:
        pass


class HotWalletProvisioner(WalletProvisioner):
    """Every user shares the operator hot wallet"""

    def __init__(self, operator: OperatorAccount):
        self.operator = operator

    def provision(self, email: str) -> ProvisionedWallet:
        return ProvisionedWallet(
            public_key=self.operator.public_key,
            address=self.operator.address,
            signing_backend_id=HOT_WALLET_SENTINEL,
        )


class CustodyMintProvisioner(WalletProvisioner):
    """Mints a dedicated PKP on the custody network"""

    def __init__(self, custody: CustodyClient):
        self.custody = custody

    def provision(self, email: str) -> ProvisionedWallet:
        try:
            minted = self.custody.mint_wallet(email)
        except CustodyError as e:
            raise WalletProvisioningError(f"Failed to mint wallet: {e.message}") from e

        token_id = minted.token_id
        if token_id.isdigit():
            # Token ids come back as uint256 decimals; the signer expects 32-byte hex
            token_id = "0x" + format(int(token_id), "064x")

        return ProvisionedWallet(
            public_key=minted.public_key,
            address=minted.address,
            signing_backend_id=token_id,
        )


def generate_otp() -> str:
    """Six-digit numeric one-time code"""
    return str(100000 + secrets.randbelow(900000))


def decode_session_token(token: str, settings: Settings) -> Dict:
    return pyjwt.decode(token, settings.SECRET_KEY, algorithms=[SESSION_TOKEN_ALGORITHM])


class WalletService:
    """Wallet lifecycle for email users"""

    def __init__(
        self,
        *,
        provisioner: WalletProvisioner,
        notifier: TransactionNotifier,
        chain: ChainClient,
        settings: Settings,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.provisioner = provisioner
        self.notifier = notifier
        self.chain = chain
        self.settings = settings
        self.clock = clock or utcnow

    @staticmethod
    def find_user(db: Session, email: str) -> Optional[WalletUser]:
        return db.execute(
            select(WalletUser).where(WalletUser.email == normalize_email(email))
        ).scalar_one_or_none()

    def _issue_otp(self, db: Session, user: WalletUser) -> OtpChallenge:
        otp_code = generate_otp()
        expires_at = self.clock() + timedelta(minutes=self.settings.OTP_TTL_MINUTES)
        user.otp_code = otp_code
        user.otp_expires_at = expires_at
        db.commit()

        otp_sent = self.notifier.otp_code(user.email, otp_code, self.settings.OTP_TTL_MINUTES)
        return OtpChallenge(email=user.email, otp_code=otp_code, expires_at=expires_at, otp_sent=otp_sent)

    def _check_otp(self, user: WalletUser, otp_code: str) -> None:
        if not user.otp_code or not user.otp_expires_at:
            raise InvalidOtpError("No verification code pending for this email")
        if self.clock() > ensure_utc(user.otp_expires_at):
            raise InvalidOtpError("Verification code expired")
        if not hmac.compare_digest(user.otp_code, (otp_code or "").strip()):
            raise InvalidOtpError("Invalid verification code")

    def create_wallet(self, db: Session, email: str) -> OtpChallenge:
        """
        Start wallet creation: store a fresh OTP and email it.

        Raises:
            WalletAlreadyExistsError: if a verified wallet already exists
        """
        email = normalize_email(email)
        user = self.find_user(db, email)
        if user is not None and user.verified:
            raise WalletAlreadyExistsError(f"Wallet already exists for {email}")

        if user is None:
            user = WalletUser(email=email, verified=False)
            db.add(user)
            db.flush()

        challenge = self._issue_otp(db, user)
        logger.info("Wallet creation started", extra={"email": email, "otp_sent": challenge.otp_sent})
        return challenge

    def verify_wallet(self, db: Session, email: str, otp_code: str) -> WalletUser:
        """
        Verify the OTP and bind a wallet to the email.

        Raises:
            WalletNotFoundError: no creation was started for this email
            InvalidOtpError: wrong or expired code
            WalletProvisioningError: the wallet could not be provisioned
        """
        user = self.find_user(db, email)
        if user is None:
            raise WalletNotFoundError(f"No wallet found for {normalize_email(email)}")
        if user.verified:
            return user

        self._check_otp(user, otp_code)

        if not user.has_wallet:
            provisioned = self.provisioner.provision(user.email)
            user.assign_wallet(
                public_key=provisioned.public_key,
                address=provisioned.address,
                signing_backend_id=provisioned.signing_backend_id,
            )
        user.verified = True
        user.clear_otp()
        db.commit()
        db.refresh(user)

        logger.info("Wallet verified", extra={"email": user.email, "wallet_address": user.wallet_address})
        return user

    def start_login(self, db: Session, email: str) -> OtpChallenge:
        user = self.find_user(db, email)
        if user is None or not user.has_wallet:
            raise WalletNotCreatedError("No wallet found for this email. Please create a wallet first.")
        return self._issue_otp(db, user)

    def verify_login(self, db: Session, email: str, otp_code: str) -> LoginSession:
        user = self.find_user(db, email)
        if user is None or not user.has_wallet:
            raise WalletNotCreatedError("No wallet found for this email. Please create a wallet first.")

        self._check_otp(user, otp_code)
        user.verified = True
        user.clear_otp()
        db.commit()
        db.refresh(user)

        now = self.clock()
        expires_at = now + timedelta(hours=self.settings.SESSION_TOKEN_TTL_HOURS)
        token = pyjwt.encode(
            {
                "sub": user.email,
                "wallet_address": user.wallet_address,
                "iat": now,
                "exp": expires_at,
            },
            self.settings.SECRET_KEY,
            algorithm=SESSION_TOKEN_ALGORITHM,
        )
        logger.info("Login verified", extra={"email": user.email})
        return LoginSession(user=user, token=token, expires_at=expires_at)

    def resend_otp(self, db: Session, email: str) -> OtpChallenge:
        user = self.find_user(db, email)
        if user is None:
            raise WalletNotFoundError(f"No wallet found for {normalize_email(email)}")
        if user.verified:
            raise WalletAlreadyVerifiedError("Wallet already verified. Use login instead.")
        return self._issue_otp(db, user)

    def get_wallet(self, db: Session, email: str) -> WalletUser:
        user = self.find_user(db, email)
        if user is None:
            raise WalletNotFoundError(f"No wallet found for {normalize_email(email)}")
        if not user.verified:
            raise WalletNotVerifiedError("Wallet not verified")
        return user

    def get_balances(self, db: Session, email: str) -> Dict[str, Decimal]:
        """ETH and PYUSD balances of a verified wallet"""
        user = self.get_wallet(db, email)
        if not user.wallet_address:
            raise WalletNotCreatedError("Wallet address not found")

        balances: Dict[str, Decimal] = {}
        try:
            balances[ETH] = self.chain.get_native_balance(user.wallet_address)
            if self.settings.PYUSD_ADDRESS:
                balances[PYUSD] = self.chain.get_token_balance(self.settings.PYUSD_ADDRESS, user.wallet_address)
        except Web3Exception as e:
            raise BalanceUnavailableError(f"Failed to read balances: {e}") from e
        return balances
