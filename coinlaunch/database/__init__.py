from .intent_db import IntentDatabase
from .escrow_db import EscrowWalletDatabase
from .oauth_db import OAuthTokenDatabase

__all__ = ['IntentDatabase', 'EscrowWalletDatabase', 'OAuthTokenDatabase']
