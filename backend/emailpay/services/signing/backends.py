"""
Signing backends

A backend turns an unsigned transfer payload into a broadcast transaction
and returns its hash. Which backend signs for a user is decided by
SigningBackendSelector, never by the engine.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Optional

from emailpay.infrastructure.settings import Settings
from emailpay.services.chain import ChainClient, TransferPayload
from emailpay.services.custody_client import CustodyClient, CustodyError
from emailpay.services.errors import ExecutionError, ExecutionErrorKind
from emailpay.services.signing.auth_statement import AuthStatement
from emailpay.services.signing.operator import OperatorAccount
from emailpay.utils.time import utcnow

logger = logging.getLogger(__name__)

CUSTODY_SESSION_STATEMENT = "Authorize a single PKP signing session for EmailPay."


class SigningError(ExecutionError):
    """Raised by signing backends and the selector"""
    pass


class SigningBackend(ABC):
    """Signs and broadcasts transfers on behalf of one sender"""

    @property
    @abstractmethod
    def address(self) -> str:
        """On-chain address the transfer is sent from"""

    @abstractmethod
    def send_transaction(self, payload: TransferPayload) -> str:
        """Sign and broadcast the payload; returns the 0x transaction hash"""


class HotWalletBackend(SigningBackend):
    """Signs locally with the operator key"""

    def __init__(self, operator: OperatorAccount, chain: ChainClient):
        self.operator = operator
        self.chain = chain

    @property
    def address(self) -> str:
        return self.operator.address

    def send_transaction(self, payload: TransferPayload) -> str:
        tx = self.chain.prepare_transaction(payload, self.operator.address)
        raw = self.operator.sign_transaction(tx)
        tx_hash = self.chain.send_raw_transaction(raw)
        logger.info("Hot wallet transaction broadcast", extra={"tx_hash": tx_hash, "asset": payload.asset})
        return tx_hash


class CustodySessionBackend(SigningBackend):
    """
    Signs through the key-custody network with a fresh session.

    Each call requests new session credentials scoped to this user's PKP
    (single pkp-signing ability, one resource). Sessions are never reused.
    """

    def __init__(
        self,
        *,
        operator: OperatorAccount,
        custody: CustodyClient,
        chain: ChainClient,
        settings: Settings,
        resource_id: str,
        public_key: str,
        address: str,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.operator = operator
        self.custody = custody
        self.chain = chain
        self.settings = settings
        self.resource_id = resource_id
        self.public_key = public_key
        self._address = address
        self.clock = clock or utcnow

    @property
    def address(self) -> str:
        return self._address

    def build_auth_statement(self, issued_at: datetime) -> AuthStatement:
        return AuthStatement(
            domain=self.settings.CUSTODY_AUTH_DOMAIN,
            address=self.operator.address,
            uri=self.settings.CUSTODY_AUTH_URI,
            chain_id=self.settings.CHAIN_ID,
            issued_at=issued_at,
            expiration_time=issued_at + timedelta(hours=self.settings.CUSTODY_SESSION_TTL_HOURS),
            statement=CUSTODY_SESSION_STATEMENT,
            resources=[f"lit-pkp://{self.resource_id}"],
        )

    def send_transaction(self, payload: TransferPayload) -> str:
        tx = self.chain.prepare_transaction(payload, self._address)

        statement = self.build_auth_statement(self.clock())
        message = statement.prepare_message()
        auth_sig = {
            "sig": self.operator.sign_message(message),
            "derivedVia": "web3.eth.personal.sign",
            "signedMessage": message,
            "address": self.operator.address,
        }

        try:
            session_sigs = self.custody.request_session_credentials(
                auth_sig=auth_sig,
                resource_id=self.resource_id,
                expiration=statement.expiration_time,
            )
            raw = self.custody.sign_transaction(
                session_sigs=session_sigs,
                public_key=self.public_key,
                transaction=tx,
            )
        except CustodyError as e:
            raise SigningError(ExecutionErrorKind.CUSTODY_SESSION, f"Custody signing failed: {e.message}") from e

        tx_hash = self.chain.send_raw_transaction(raw)
        logger.info("Custody transaction broadcast", extra={"tx_hash": tx_hash, "asset": payload.asset})
        return tx_hash
