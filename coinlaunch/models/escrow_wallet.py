"""
Escrow wallet model - one custodial keypair per requesting identity
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class EscrowWallet:
    """Custodial wallet used to originate on-chain actions for one X account"""
    identity: str
    address: str
    encrypted_private_key: str  # "<algorithm>:<iv hex>:<ciphertext hex>"
    created_at: datetime
    last_used_at: Optional[datetime] = None
    total_fees_collected: str = "0"  # Wei, as a decimal string

    def __repr__(self) -> str:
        # Keep ciphertext out of logs and tracebacks
        return f"EscrowWallet(identity={self.identity!r}, address={self.address!r})"
