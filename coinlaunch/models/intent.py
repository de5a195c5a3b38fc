"""
Launch intent model and its lifecycle states
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class IntentState(str, Enum):
    """Lifecycle state of a launch intent"""
    AWAITING_MINT = "AWAITING_MINT"
    MINTING = "MINTING"
    MINTED = "MINTED"
    COMMENTING = "COMMENTING"
    COMMENTED = "COMMENTED"
    FAILED = "FAILED"
    COMMENT_FAILED = "COMMENT_FAILED"


# Allowed edges. MINTING/COMMENTING self-edges renew the claim lease on a
# transient row that a previous worker abandoned.
TRANSITIONS = {
    IntentState.AWAITING_MINT: {IntentState.MINTING, IntentState.MINTED, IntentState.FAILED},
    IntentState.MINTING: {IntentState.MINTING, IntentState.MINTED, IntentState.FAILED},
    IntentState.MINTED: {IntentState.COMMENTING},
    IntentState.COMMENTING: {IntentState.COMMENTING, IntentState.COMMENTED, IntentState.COMMENT_FAILED},
    IntentState.COMMENTED: set(),
    IntentState.FAILED: set(),
    IntentState.COMMENT_FAILED: set(),
}

MINT_STAGE_STATES = (IntentState.AWAITING_MINT, IntentState.MINTING)
COMMENT_STAGE_STATES = (IntentState.MINTED, IntentState.COMMENTING)
TERMINAL_STATES = (IntentState.COMMENTED, IntentState.FAILED, IntentState.COMMENT_FAILED)


def can_transition(from_state: IntentState, to_state: IntentState) -> bool:
    return IntentState(to_state) in TRANSITIONS[IntentState(from_state)]


@dataclass
class Intent:
    """Represents one requested token launch"""
    id: int
    post_id: str  # Tweet that requested the launch
    name: str
    symbol: str
    requester_id: str  # X account id of the author
    state: IntentState
    created_at: datetime
    updated_at: datetime  # Last state change, doubles as the claim time
    requester_username: Optional[str] = None
    logo_ref: Optional[str] = None  # Image URL from the tweet or profile
    logo_ipfs: Optional[str] = None
    token_address: Optional[str] = None
    creator_address: Optional[str] = None  # Creator recorded by the contract
    escrow_wallet: Optional[str] = None
    mint_tx_hash: Optional[str] = None
    comment_post_id: Optional[str] = None
    error: Optional[str] = None
    minted_at: Optional[datetime] = None
    commented_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
