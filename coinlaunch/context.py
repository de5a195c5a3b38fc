"""
Builds every component once and hands them around explicitly
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from web3 import Web3

from coinlaunch.config import Settings
from coinlaunch.database import EscrowWalletDatabase, IntentDatabase, OAuthTokenDatabase
from coinlaunch.services import (
    ChainClient,
    EscrowKeyVault,
    IntentPoller,
    IPFSService,
    MentionIngestor,
    MentionStream,
    MockChainClient,
    MockMentionStream,
    MockXClient,
    TokenMinter,
    TwitterApiIoStream,
    TwitterCommenter,
    XClient,
    XFilteredStream,
    XOAuth2Service,
)

MOCK_CONTRACT_ADDRESS = '0x000000000000000000000000000000000000c0de'
MOCK_FUNDING_BALANCE = Web3.to_wei(100, 'ether')


@dataclass
class AppContext:
    settings: Settings
    intents: IntentDatabase
    escrow_wallets: EscrowWalletDatabase
    oauth_tokens: OAuthTokenDatabase
    chain: object
    vault: EscrowKeyVault
    ipfs: IPFSService
    oauth: XOAuth2Service
    x_client: object
    minter: TokenMinter
    commenter: TwitterCommenter
    ingestor: MentionIngestor
    poller: IntentPoller
    stream: Optional[MentionStream] = None


def build_context(settings: Settings, with_stream: bool = True) -> AppContext:
    """Wire live or mock components according to settings.mock_mode"""
    logger = logging.getLogger('coinlaunch')

    intents = IntentDatabase(settings.db_path)
    escrow_wallets = EscrowWalletDatabase(settings.db_path)
    oauth_tokens = OAuthTokenDatabase(settings.db_path)

    funding_key = settings.funding_private_key
    vault_secret = settings.escrow_encryption_key
    if settings.mock_mode:
        logger.info("🎭 MOCK MODE - no transactions or posts leave this process")
        chain = MockChainClient(settings.contract_address or MOCK_CONTRACT_ADDRESS)
        if not funding_key:
            funding_key = Web3.to_hex(Account.create().key)
        chain.fund(Account.from_key(funding_key).address, MOCK_FUNDING_BALANCE)
        if not vault_secret:
            logger.warning("ESCROW_ENCRYPTION_KEY not set - using a throwaway key for this mock run")
            vault_secret = os.urandom(32).hex()
            settings.extra_secrets.append(vault_secret)
        x_client = MockXClient(settings.bot_username)
    else:
        chain = ChainClient(settings.eth_rpc_url, settings.contract_address, timeout=settings.rpc_timeout_seconds)
        x_client = XClient(settings.bot_username, settings.x_app_bearer_token,
                           timeout=settings.social_timeout_seconds)

    vault = EscrowKeyVault(escrow_wallets, chain, vault_secret, receipt_timeout=settings.receipt_timeout_seconds)
    ipfs = IPFSService(settings.pinata_jwt, settings.ipfs_gateway_url)
    oauth = XOAuth2Service(oauth_tokens, settings.x_client_id, settings.x_client_secret,
                           settings.x_redirect_uri, timeout=settings.social_timeout_seconds)

    minter = TokenMinter(
        intents, vault, chain, ipfs,
        funding_private_key=funding_key,
        initial_liquidity_wei=settings.initial_liquidity_wei,
        receipt_timeout=settings.receipt_timeout_seconds,
        claim_lease_seconds=settings.claim_lease_seconds,
    )
    commenter = TwitterCommenter(
        intents, x_client,
        oauth=None if settings.mock_mode else oauth,
        explorer_url=settings.explorer_url,
    )
    ingestor = MentionIngestor(intents, x_client, settings.bot_username)
    poller = IntentPoller(
        intents, minter, commenter,
        interval=settings.poll_interval_seconds,
        batch_size=settings.poll_batch_size,
        claim_lease_seconds=settings.claim_lease_seconds,
        dispatch_timeout=settings.dispatch_timeout_seconds,
        secrets=settings.secrets(),
    )

    stream = None
    if with_stream:
        stream = build_stream(settings, ingestor)

    return AppContext(
        settings=settings,
        intents=intents,
        escrow_wallets=escrow_wallets,
        oauth_tokens=oauth_tokens,
        chain=chain,
        vault=vault,
        ipfs=ipfs,
        oauth=oauth,
        x_client=x_client,
        minter=minter,
        commenter=commenter,
        ingestor=ingestor,
        poller=poller,
        stream=stream,
    )


def build_stream(settings: Settings, ingestor: MentionIngestor) -> Optional[MentionStream]:
    logger = logging.getLogger('coinlaunch')
    if settings.mock_mode:
        return MockMentionStream(settings.bot_username, ingestor.ingest)
    if settings.realtime_service == 'twitterapi.io':
        if not settings.twitterapi_io_key:
            logger.warning("TWITTERAPI_IO_KEY not set - mention stream disabled")
            return None
        return TwitterApiIoStream(settings.twitterapi_io_key, settings.bot_username, ingestor.ingest)
    if settings.realtime_service == 'x_stream':
        if not settings.x_app_bearer_token:
            logger.warning("X_APP_BEARER_TOKEN not set - mention stream disabled")
            return None
        return XFilteredStream(settings.x_app_bearer_token, settings.bot_username, ingestor.ingest)
    logger.error(f"Unknown REALTIME_SERVICE: {settings.realtime_service}")
    return None
