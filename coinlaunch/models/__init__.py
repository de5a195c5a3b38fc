from .intent import (
    Intent,
    IntentState,
    TRANSITIONS,
    MINT_STAGE_STATES,
    COMMENT_STAGE_STATES,
    TERMINAL_STATES,
    can_transition,
)
from .escrow_wallet import EscrowWallet
from .oauth_token import OAuthToken
from .mention import Mention

__all__ = [
    'Intent',
    'IntentState',
    'TRANSITIONS',
    'MINT_STAGE_STATES',
    'COMMENT_STAGE_STATES',
    'TERMINAL_STATES',
    'can_transition',
    'EscrowWallet',
    'OAuthToken',
    'Mention',
]
