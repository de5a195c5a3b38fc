from .chain_client import ChainClient, TokenCreatedEvent, encode_create_call, extract_token_created
from .mock_chain import MockChainClient
from .escrow_vault import EscrowKeyVault
from .ipfs_service import IPFSService
from .x_oauth2 import XOAuth2Service
from .x_client import XClient
from .mock_x import MockXClient
from .token_minter import MintResult, TokenMinter
from .twitter_commenter import TwitterCommenter, compose_confirmation
from .mention_ingestor import MentionIngestor, extract_launch_command, validate_token_data
from .mention_stream import (
    MentionStream,
    MockMentionStream,
    TwitterApiIoStream,
    XFilteredStream,
)
from .poller import IntentPoller

__all__ = [
    'ChainClient',
    'TokenCreatedEvent',
    'encode_create_call',
    'extract_token_created',
    'MockChainClient',
    'EscrowKeyVault',
    'IPFSService',
    'XOAuth2Service',
    'XClient',
    'MockXClient',
    'MintResult',
    'TokenMinter',
    'TwitterCommenter',
    'compose_confirmation',
    'MentionIngestor',
    'extract_launch_command',
    'validate_token_data',
    'MentionStream',
    'MockMentionStream',
    'TwitterApiIoStream',
    'XFilteredStream',
    'IntentPoller',
]
