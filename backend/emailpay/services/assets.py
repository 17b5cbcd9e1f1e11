"""
Supported asset registry

Used by both the intent validator and the execution engine so the two can
never disagree on which assets are accepted.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Optional

from emailpay.infrastructure.settings import Settings
from emailpay.services.errors import ExecutionError, ExecutionErrorKind


@dataclass(frozen=True)
class Asset:
    symbol: str
    decimals: int
    # None for the chain's native asset
    contract_address: Optional[str] = None

    @property
    def is_native(self) -> bool:
        return self.contract_address is None

    def to_base_units(self, amount: Decimal) -> int:
        """Convert a decimal amount to integer base units, rejecting excess precision"""
        scaled = Decimal(amount) * (Decimal(10) ** self.decimals)
        base_units = scaled.to_integral_value(rounding=ROUND_DOWN)
        if base_units != scaled:
            raise ExecutionError(
                ExecutionErrorKind.INVALID_AMOUNT,
                f"Amount {amount} has more than {self.decimals} decimal places for {self.symbol}",
            )
        return int(base_units)

    def from_base_units(self, value: int) -> Decimal:
        return Decimal(value) / (Decimal(10) ** self.decimals)


ETH = "ETH"
PYUSD = "PYUSD"
PYUSD_DECIMALS = 6

SUPPORTED_ASSET_SYMBOLS = (ETH, PYUSD)


def is_supported_asset(symbol: Optional[str]) -> bool:
    return bool(symbol) and symbol.upper() in SUPPORTED_ASSET_SYMBOLS


def get_asset(symbol: str, settings: Settings) -> Asset:
    """
    Resolve an asset symbol to its on-chain definition.

    Raises ExecutionError(UNSUPPORTED_ASSET) for unknown symbols and
    ExecutionError(CONFIGURATION) when the token contract is not configured.
    """
    registry: Dict[str, Asset] = {
        ETH: Asset(symbol=ETH, decimals=18),
    }
    if settings.PYUSD_ADDRESS:
        registry[PYUSD] = Asset(symbol=PYUSD, decimals=PYUSD_DECIMALS, contract_address=settings.PYUSD_ADDRESS)

    normalized = (symbol or "").upper()
    if normalized not in SUPPORTED_ASSET_SYMBOLS:
        raise ExecutionError(ExecutionErrorKind.UNSUPPORTED_ASSET, f"unsupported asset: {symbol}")
    if normalized not in registry:
        raise ExecutionError(
            ExecutionErrorKind.CONFIGURATION,
            f"{normalized} contract address is not configured (PYUSD_ADDRESS)",
        )
    return registry[normalized]
