"""
Signing backends and their selector
"""

from emailpay.services.signing.operator import OperatorAccount, load_operator_account
from emailpay.services.signing.backends import SigningBackend, SigningError, HotWalletBackend, CustodySessionBackend
from emailpay.services.signing.selector import SigningBackendSelector, MIN_CUSTODY_RESOURCE_ID_LENGTH

__all__ = [
    "OperatorAccount",
    "load_operator_account",
    "SigningBackend",
    "SigningError",
    "HotWalletBackend",
    "CustodySessionBackend",
    "SigningBackendSelector",
    "MIN_CUSTODY_RESOURCE_ID_LENGTH",
]
