"""
Sign-In with Ethereum (EIP-4361) authorization statements

The custody network grants session credentials against a statement that binds
the operator address, a nonce, an expiry and the requested resource.
"""

import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import List


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class AuthStatement:
    domain: str
    address: str
    uri: str
    chain_id: int
    issued_at: datetime
    expiration_time: datetime
    statement: str = ""
    nonce: str = field(default_factory=lambda: secrets.token_hex(8))
    resources: List[str] = field(default_factory=list)
    version: str = "1"

    def prepare_message(self) -> str:
        """Render the statement in the EIP-4361 text format that gets signed"""
        lines = [
            f"{self.domain} wants you to sign in with your Ethereum account:",
            self.address,
            "",
        ]
        if self.statement:
            lines.extend([self.statement, ""])
        lines.extend([
            f"URI: {self.uri}",
            f"Version: {self.version}",
            f"Chain ID: {self.chain_id}",
            f"Nonce: {self.nonce}",
            f"Issued At: {_iso(self.issued_at)}",
            f"Expiration Time: {_iso(self.expiration_time)}",
        ])
        if self.resources:
            lines.append("Resources:")
            lines.extend(f"- {resource}" for resource in self.resources)
        return "\n".join(lines)
