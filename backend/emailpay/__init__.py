"""
EmailPay - send stablecoin/ETH payments by email
"""

__version__ = "1.0.0"
