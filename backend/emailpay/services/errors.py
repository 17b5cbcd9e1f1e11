"""
Error kinds and exceptions shared by the execution path

Failures are classified where they happen (ExecutionErrorKind) and carried
on the exception, so the engine never has to inspect message text.
"""

import enum


class ExecutionErrorKind(str, enum.Enum):
    """Closed set of reasons a transaction execution can fail"""
    WALLET_INCOMPLETE = "WALLET_INCOMPLETE"
    UNSUPPORTED_ASSET = "UNSUPPORTED_ASSET"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    CONFIGURATION = "CONFIGURATION"
    ADDRESS_MISMATCH = "ADDRESS_MISMATCH"
    TEST_ONLY_CREDENTIAL = "TEST_ONLY_CREDENTIAL"
    CUSTODY_SESSION = "CUSTODY_SESSION"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    GAS_ESTIMATION = "GAS_ESTIMATION"
    REVERTED = "REVERTED"
    TIMEOUT = "TIMEOUT"
    RPC_ERROR = "RPC_ERROR"
    UNCONFIRMED = "UNCONFIRMED"
    INTERRUPTED = "INTERRUPTED"
    EXPIRED = "EXPIRED"
    INTERNAL = "INTERNAL"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_KINDS


# Failures after a broadcast never land in failed with one of these; the transfer may be on chain
RETRYABLE_KINDS = frozenset({
    ExecutionErrorKind.CUSTODY_SESSION,
    ExecutionErrorKind.RPC_ERROR,
    ExecutionErrorKind.TIMEOUT,
    ExecutionErrorKind.INSUFFICIENT_FUNDS,
})


class ConfigurationError(Exception):
    """Raised at startup when required configuration is missing or malformed"""
    pass


class ExecutionError(Exception):
    """Raised anywhere on the execution path with the kind of failure attached"""

    def __init__(self, kind: ExecutionErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable
