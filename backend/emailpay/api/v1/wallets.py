"""
Wallet API endpoints - OTP-verified wallet creation and login
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from emailpay.api.dependencies import get_app_settings, get_wallet_service
from emailpay.api.exceptions import api_error
from emailpay.infrastructure.database import get_db
from emailpay.infrastructure.settings import Settings
from emailpay.schemas.wallets import (
    BalanceResponse,
    EmailRequest,
    LoginResponse,
    OtpChallengeResponse,
    OtpVerifyRequest,
    WalletResponse,
)
from emailpay.services.notifications import format_amount
from emailpay.services.wallet_service import (
    BalanceUnavailableError,
    InvalidOtpError,
    OtpChallenge,
    WalletAlreadyExistsError,
    WalletAlreadyVerifiedError,
    WalletNotCreatedError,
    WalletNotFoundError,
    WalletNotVerifiedError,
    WalletProvisioningError,
    WalletService,
    WalletServiceError,
)
from emailpay.utils.time import ensure_utc

router = APIRouter()
logger = logging.getLogger(__name__)

# Wallet service error -> (HTTP status, error code)
WALLET_ERROR_RESPONSES = {
    WalletAlreadyExistsError: (status.HTTP_409_CONFLICT, "WALLET_ALREADY_EXISTS"),
    WalletAlreadyVerifiedError: (status.HTTP_400_BAD_REQUEST, "WALLET_ALREADY_VERIFIED"),
    WalletNotFoundError: (status.HTTP_404_NOT_FOUND, "WALLET_NOT_FOUND"),
    WalletNotCreatedError: (status.HTTP_404_NOT_FOUND, "WALLET_NOT_CREATED"),
    WalletNotVerifiedError: (status.HTTP_400_BAD_REQUEST, "WALLET_NOT_VERIFIED"),
    InvalidOtpError: (status.HTTP_400_BAD_REQUEST, "INVALID_OTP"),
    WalletProvisioningError: (status.HTTP_502_BAD_GATEWAY, "WALLET_PROVISIONING_FAILED"),
    BalanceUnavailableError: (status.HTTP_502_BAD_GATEWAY, "BALANCE_UNAVAILABLE"),
}


def _wallet_error(exc: WalletServiceError) -> HTTPException:
    status_code, code = WALLET_ERROR_RESPONSES.get(
        type(exc), (status.HTTP_400_BAD_REQUEST, "WALLET_ERROR")
    )
    if status_code >= 500:
        logger.error(f"Wallet operation failed: {exc}", extra={"code": code})
    return api_error(status_code, code, str(exc))


def _challenge_response(challenge: OtpChallenge, message: str, settings: Settings) -> OtpChallengeResponse:
    return OtpChallengeResponse(
        email=challenge.email,
        otp_sent=challenge.otp_sent,
        expires_at=ensure_utc(challenge.expires_at).isoformat(),
        message=message,
        otp_code=challenge.otp_code if settings.DEV_MODE else None,
    )


@router.post(
    "/create",
    response_model=OtpChallengeResponse,
    summary="Start wallet creation",
    description="Send a verification code to the email. The code is echoed only in DEV_MODE.",
)
def create_wallet(
    request: EmailRequest,
    db: Session = Depends(get_db),
    wallets: WalletService = Depends(get_wallet_service),
    settings: Settings = Depends(get_app_settings),
) -> OtpChallengeResponse:
    try:
        challenge = wallets.create_wallet(db, request.email)
    except WalletServiceError as e:
        raise _wallet_error(e)
    return _challenge_response(challenge, "Verification code sent. Check your email.", settings)


@router.post(
    "/verify",
    response_model=WalletResponse,
    summary="Verify wallet",
    description="Verify the emailed code and bind a wallet to the email.",
)
def verify_wallet(
    request: OtpVerifyRequest,
    db: Session = Depends(get_db),
    wallets: WalletService = Depends(get_wallet_service),
) -> WalletResponse:
    try:
        user = wallets.verify_wallet(db, request.email, request.otp_code)
    except WalletServiceError as e:
        raise _wallet_error(e)
    return WalletResponse.from_model(user)


@router.post(
    "/login",
    response_model=OtpChallengeResponse,
    summary="Start login",
    description="Send a login code to an email that already has a wallet.",
)
def start_login(
    request: EmailRequest,
    db: Session = Depends(get_db),
    wallets: WalletService = Depends(get_wallet_service),
    settings: Settings = Depends(get_app_settings),
) -> OtpChallengeResponse:
    try:
        challenge = wallets.start_login(db, request.email)
    except WalletServiceError as e:
        raise _wallet_error(e)
    return _challenge_response(challenge, "Login code sent. Check your email.", settings)


@router.post(
    "/login/verify",
    response_model=LoginResponse,
    summary="Verify login",
    description="Exchange a login code for a session token valid 24 hours.",
)
def verify_login(
    request: OtpVerifyRequest,
    db: Session = Depends(get_db),
    wallets: WalletService = Depends(get_wallet_service),
) -> LoginResponse:
    try:
        session = wallets.verify_login(db, request.email, request.otp_code)
    except WalletServiceError as e:
        raise _wallet_error(e)
    return LoginResponse(
        token=session.token,
        expires_at=ensure_utc(session.expires_at).isoformat(),
        wallet=WalletResponse.from_model(session.user),
    )


@router.post(
    "/resend-otp",
    response_model=OtpChallengeResponse,
    summary="Resend verification code",
    description="Issue a new code for a wallet that is not verified yet.",
)
def resend_otp(
    request: EmailRequest,
    db: Session = Depends(get_db),
    wallets: WalletService = Depends(get_wallet_service),
    settings: Settings = Depends(get_app_settings),
) -> OtpChallengeResponse:
    try:
        challenge = wallets.resend_otp(db, request.email)
    except WalletServiceError as e:
        raise _wallet_error(e)
    return _challenge_response(challenge, "Verification code resent. Check your email.", settings)


@router.get(
    "/{email}",
    response_model=WalletResponse,
    summary="Get wallet",
)
def get_wallet(
    email: str,
    db: Session = Depends(get_db),
    wallets: WalletService = Depends(get_wallet_service),
) -> WalletResponse:
    try:
        user = wallets.get_wallet(db, email)
    except WalletServiceError as e:
        raise _wallet_error(e)
    return WalletResponse.from_model(user)


@router.get(
    "/{email}/balance",
    response_model=BalanceResponse,
    summary="Get wallet balance",
    description="On-chain ETH and PYUSD balances of a verified wallet.",
)
def get_balance(
    email: str,
    db: Session = Depends(get_db),
    wallets: WalletService = Depends(get_wallet_service),
) -> BalanceResponse:
    try:
        user = wallets.get_wallet(db, email)
        balances = wallets.get_balances(db, email)
    except WalletServiceError as e:
        raise _wallet_error(e)
    return BalanceResponse(
        email=user.email,
        wallet_address=user.wallet_address,
        balances={symbol: format_amount(amount) for symbol, amount in balances.items()},
    )
