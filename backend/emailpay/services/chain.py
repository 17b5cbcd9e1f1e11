"""
Chain client - web3.py wrapper for the operations the engine needs

Every RPC failure is translated into an ExecutionError with its kind decided
at the call site.
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from eth_abi import encode as abi_encode
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception

from emailpay.infrastructure.settings import Settings
from emailpay.services.assets import Asset
from emailpay.services.errors import ExecutionError, ExecutionErrorKind

logger = logging.getLogger(__name__)

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]

TRANSFER_SELECTOR = Web3.keccak(text="transfer(address,uint256)")[:4]


@dataclass(frozen=True)
class TransferPayload:
    """Unsigned, asset-specific transfer request"""
    to: str
    value: int
    data: str
    chain_id: int
    asset: str
    # Token amount in base units (0 for native transfers)
    token_amount: int = 0
    token_address: Optional[str] = None


@dataclass(frozen=True)
class TransactionReceipt:
    tx_hash: str
    block_number: int
    status: int

    @property
    def succeeded(self) -> bool:
        return self.status == 1


def _to_receipt(receipt) -> TransactionReceipt:
    return TransactionReceipt(
        tx_hash=Web3.to_hex(receipt["transactionHash"]),
        block_number=receipt["blockNumber"],
        status=receipt["status"],
    )


def build_transfer_payload(asset: Asset, recipient_address: str, amount: Decimal, chain_id: int) -> TransferPayload:
    """
    Build the payload for a transfer.

    - native asset: plain value transfer to the recipient
    - token: ABI-encoded transfer(to, amount) against the token contract, value 0
    """
    recipient = Web3.to_checksum_address(recipient_address)
    base_units = asset.to_base_units(amount)

    if asset.is_native:
        return TransferPayload(
            to=recipient,
            value=base_units,
            data="0x",
            chain_id=chain_id,
            asset=asset.symbol,
        )

    call_data = TRANSFER_SELECTOR + abi_encode(["address", "uint256"], [recipient, base_units])
    return TransferPayload(
        to=Web3.to_checksum_address(asset.contract_address),
        value=0,
        data=Web3.to_hex(call_data),
        chain_id=chain_id,
        asset=asset.symbol,
        token_amount=base_units,
        token_address=Web3.to_checksum_address(asset.contract_address),
    )


class ChainClient:
    """Thin web3 client bound to one RPC endpoint and chain"""

    def __init__(self, settings: Settings, web3: Optional[Web3] = None):
        self.settings = settings
        self.web3 = web3 or Web3(
            Web3.HTTPProvider(settings.RPC_URL, request_kwargs={"timeout": settings.HTTP_TIMEOUT_SECONDS})
        )

    def prepare_transaction(self, payload: TransferPayload, from_address: str) -> Dict[str, Any]:
        """
        Fill nonce, gas and fee fields for a payload sent from from_address.

        Checks balances before anything is signed so a doomed transfer fails
        with INSUFFICIENT_FUNDS instead of a node error.
        """
        sender = Web3.to_checksum_address(from_address)
        tx: Dict[str, Any] = {
            "from": sender,
            "to": payload.to,
            "value": payload.value,
            "data": payload.data,
            "chainId": payload.chain_id,
        }

        try:
            tx["gas"] = self.web3.eth.estimate_gas(tx)
        except ContractLogicError as e:
            raise ExecutionError(ExecutionErrorKind.GAS_ESTIMATION, f"Gas estimation reverted: {e}") from e
        except Web3Exception as e:
            raise ExecutionError(ExecutionErrorKind.RPC_ERROR, f"Gas estimation failed: {e}") from e

        try:
            tx["nonce"] = self.web3.eth.get_transaction_count(sender, "pending")
            tx["gasPrice"] = self.web3.eth.gas_price
            native_balance = self.web3.eth.get_balance(sender)
            token_balance = None
            if payload.token_address:
                token_balance = self._token_contract(payload.token_address).functions.balanceOf(sender).call()
        except Web3Exception as e:
            raise ExecutionError(ExecutionErrorKind.RPC_ERROR, f"RPC error while preparing transaction: {e}") from e

        required_native = payload.value + tx["gas"] * tx["gasPrice"]
        if native_balance < required_native:
            raise ExecutionError(
                ExecutionErrorKind.INSUFFICIENT_FUNDS,
                f"Insufficient ETH for value plus gas: have {native_balance} wei, need {required_native} wei",
            )
        if token_balance is not None and token_balance < payload.token_amount:
            raise ExecutionError(
                ExecutionErrorKind.INSUFFICIENT_FUNDS,
                f"Insufficient {payload.asset} balance: have {token_balance}, need {payload.token_amount} base units",
            )

        tx.pop("from")
        return tx

    def send_raw_transaction(self, raw_transaction: bytes) -> str:
        try:
            tx_hash = self.web3.eth.send_raw_transaction(raw_transaction)
        except Web3Exception as e:
            raise ExecutionError(ExecutionErrorKind.RPC_ERROR, f"Broadcast failed: {e}") from e
        return Web3.to_hex(tx_hash)

    def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.settings.TX_RECEIPT_TIMEOUT_SECONDS,
                poll_latency=self.settings.TX_POLL_INTERVAL_SECONDS,
            )
        except TimeExhausted as e:
            raise ExecutionError(
                ExecutionErrorKind.TIMEOUT,
                f"Transaction {tx_hash} not mined within {self.settings.TX_RECEIPT_TIMEOUT_SECONDS}s",
            ) from e
        except Web3Exception as e:
            raise ExecutionError(ExecutionErrorKind.RPC_ERROR, f"Receipt lookup failed: {e}") from e

        return _to_receipt(receipt)

    def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        """Receipt of a mined transaction, None while it is not mined"""
        try:
            receipt = self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Web3Exception as e:
            raise ExecutionError(ExecutionErrorKind.RPC_ERROR, f"Receipt lookup failed: {e}") from e
        return _to_receipt(receipt)

    def get_confirmations(self, block_number: int) -> int:
        try:
            head = self.web3.eth.block_number
        except Web3Exception as e:
            raise ExecutionError(ExecutionErrorKind.RPC_ERROR, f"Block number lookup failed: {e}") from e
        return max(head - block_number + 1, 0)

    def wait_for_confirmations(self, block_number: int, confirmations: int) -> None:
        """Block until block_number has the requested number of confirmations"""
        if confirmations <= 1:
            return

        deadline = time.monotonic() + self.settings.TX_RECEIPT_TIMEOUT_SECONDS
        while True:
            if self.get_confirmations(block_number) >= confirmations:
                return
            if time.monotonic() >= deadline:
                raise ExecutionError(
                    ExecutionErrorKind.TIMEOUT,
                    f"Block {block_number} did not reach {confirmations} confirmations in time",
                )
            time.sleep(self.settings.TX_POLL_INTERVAL_SECONDS)

    def get_native_balance(self, address: str) -> Decimal:
        wei = self.web3.eth.get_balance(Web3.to_checksum_address(address))
        return Decimal(wei) / Decimal(10**18)

    def get_token_balance(self, token_address: str, address: str) -> Decimal:
        contract = self._token_contract(token_address)
        raw = contract.functions.balanceOf(Web3.to_checksum_address(address)).call()
        decimals = contract.functions.decimals().call()
        return Decimal(raw) / (Decimal(10) ** decimals)

    def _token_contract(self, token_address: str):
        return self.web3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
