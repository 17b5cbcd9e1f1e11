"""
Operator account - the single process-wide key held by the service
"""

import re
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_keys import keys
from web3 import Web3

from emailpay.infrastructure.settings import Settings
from emailpay.services.errors import ConfigurationError

PRIVATE_KEY_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")


class OperatorAccount:
    """
    Operator-held private key.

    Signs hot-wallet transactions directly and signs authorization statements
    for custody-network sessions. Loaded once at startup, read-only after.
    """

    def __init__(self, private_key: str):
        if not PRIVATE_KEY_PATTERN.match(private_key or ""):
            raise ConfigurationError("HOT_WALLET_PRIVATE_KEY must be 0x followed by 64 hex characters")
        self._account: LocalAccount = Account.from_key(private_key)
        key_bytes = bytes.fromhex(private_key[2:])
        self._public_key = "0x04" + keys.PrivateKey(key_bytes).public_key.to_bytes().hex()

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def public_key(self) -> str:
        """Uncompressed secp256k1 public key (0x04-prefixed)"""
        return self._public_key

    def sign_transaction(self, transaction: dict) -> bytes:
        signed = self._account.sign_transaction(transaction)
        return bytes(signed.raw_transaction)

    def sign_message(self, message: str) -> str:
        """personal_sign a text message; returns the 0x-prefixed signature"""
        signed = self._account.sign_message(encode_defunct(text=message))
        return Web3.to_hex(signed.signature)


def load_operator_account(settings: Settings) -> OperatorAccount:
    """Build the operator account from settings (fatal if not configured)"""
    private_key: Optional[str] = settings.HOT_WALLET_PRIVATE_KEY
    if not private_key:
        raise ConfigurationError("HOT_WALLET_PRIVATE_KEY is not configured")
    return OperatorAccount(private_key)
