"""
Key-custody network client (Lit PKP gateway over HTTP)

The gateway fronts the custody network: it exchanges a signed authorization
statement for session credentials, signs transactions with a PKP using those
credentials, and mints new PKPs for wallet provisioning.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from emailpay.infrastructure.settings import Settings

logger = logging.getLogger(__name__)

PKP_SIGNING_ABILITY = "pkp-signing"


class CustodyError(Exception):
    """Raised when the custody network rejects or fails a request"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class MintedWallet:
    public_key: str
    address: str
    token_id: str


class CustodyClient:
    """HTTP client for the custody gateway"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.Client] = None):
        self.settings = settings
        headers = {"Content-Type": "application/json"}
        if settings.CUSTODY_API_KEY:
            headers["X-Api-Key"] = settings.CUSTODY_API_KEY
        self._client = http_client or httpx.Client(
            base_url=settings.CUSTODY_GATEWAY_URL,
            headers=headers,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

    def close(self) -> None:
        self._client.close()

    def request_session_credentials(
        self,
        *,
        auth_sig: Dict[str, str],
        resource_id: str,
        expiration: datetime,
    ) -> Dict[str, Any]:
        """Exchange an authorization signature for session credentials scoped to one PKP"""
        payload = {
            "network": self.settings.LIT_NETWORK,
            "authSig": auth_sig,
            "expiration": expiration.isoformat().replace("+00:00", "Z"),
            "resourceAbilityRequests": [
                {"resource": resource_id, "ability": PKP_SIGNING_ABILITY},
            ],
        }
        data = self._post("/session-sigs", payload)
        session_sigs = data.get("sessionSigs")
        if not session_sigs:
            raise CustodyError("Custody gateway returned no session credentials")
        return session_sigs

    def sign_transaction(
        self,
        *,
        session_sigs: Dict[str, Any],
        public_key: str,
        transaction: Dict[str, Any],
    ) -> bytes:
        """Have the PKP sign a prepared transaction; returns the signed raw bytes"""
        payload = {
            "network": self.settings.LIT_NETWORK,
            "sessionSigs": session_sigs,
            "pkpPublicKey": public_key,
            "transaction": transaction,
        }
        data = self._post("/pkp/sign-transaction", payload)
        signed = data.get("signedTransaction")
        if not signed:
            raise CustodyError("Custody gateway returned no signed transaction")
        return bytes.fromhex(signed[2:] if signed.startswith("0x") else signed)

    def mint_wallet(self, email: str) -> MintedWallet:
        """Mint a new PKP bound to the given email"""
        data = self._post("/pkp/mint", {"network": self.settings.LIT_NETWORK, "email": email})
        try:
            return MintedWallet(
                public_key=data["pkpPublicKey"],
                address=data["pkpEthAddress"],
                token_id=str(data["pkpTokenId"]),
            )
        except KeyError as e:
            raise CustodyError(f"Custody gateway mint response missing {e}") from e

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Custody gateway request failed: {path}", extra={"error": str(e)})
            raise CustodyError(f"Custody gateway unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error(
                f"Custody gateway error: {path}",
                extra={"status_code": response.status_code, "body": response.text[:500]},
            )
            raise CustodyError(
                f"Custody gateway returned HTTP {response.status_code} for {path}",
                status_code=response.status_code,
            )
        return response.json()
