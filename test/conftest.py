"""
Shared fixtures: a throwaway sqlite file, the in-memory chain and X client,
and every pipeline component wired the way build_context wires MOCK_MODE.
"""

import pytest
from eth_account import Account
from web3 import Web3

from coinlaunch.database import EscrowWalletDatabase, IntentDatabase, OAuthTokenDatabase
from coinlaunch.models import IntentState, Mention
from coinlaunch.services import (
    EscrowKeyVault,
    IntentPoller,
    IPFSService,
    MentionIngestor,
    MockChainClient,
    MockXClient,
    TokenMinter,
    TwitterCommenter,
)

CONTRACT_ADDRESS = '0x5FbDB2315678afecb367f032d93F642f64180aa3'
VAULT_SECRET = '11' * 32
FUNDING_KEY = '0x' + '22' * 32
EXPLORER_URL = 'https://eth-sepolia.blockscout.com'
BOT = 'coinlaunchnow'
LIQUIDITY = Web3.to_wei(0.01, 'ether')


# =============================================================================
# Storage
# =============================================================================

@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / 'coinlaunch-test.db')


@pytest.fixture
def store(db_path):
    return IntentDatabase(db_path)


@pytest.fixture
def escrow_db(db_path):
    return EscrowWalletDatabase(db_path)


@pytest.fixture
def oauth_db(db_path):
    return OAuthTokenDatabase(db_path)


# =============================================================================
# Chain side
# =============================================================================

@pytest.fixture
def chain():
    mock = MockChainClient(CONTRACT_ADDRESS)
    mock.fund(Account.from_key(FUNDING_KEY).address, Web3.to_wei(10, 'ether'))
    return mock


@pytest.fixture
def vault(escrow_db, chain):
    return EscrowKeyVault(escrow_db, chain, VAULT_SECRET)


@pytest.fixture
def ipfs():
    return IPFSService(None, 'https://gateway.pinata.cloud/ipfs')


@pytest.fixture
def make_minter(store, vault, chain, ipfs):
    def _make(funding_key=FUNDING_KEY, claim_lease_seconds=600):
        return TokenMinter(
            store, vault, chain, ipfs,
            funding_private_key=funding_key,
            initial_liquidity_wei=LIQUIDITY,
            receipt_timeout=5,
            claim_lease_seconds=claim_lease_seconds,
        )
    return _make


@pytest.fixture
def minter(make_minter):
    return make_minter()


# =============================================================================
# Social side
# =============================================================================

@pytest.fixture
def x_client():
    return MockXClient(BOT)


@pytest.fixture
def commenter(store, x_client):
    return TwitterCommenter(store, x_client, oauth=None, explorer_url=EXPLORER_URL)


@pytest.fixture
def ingestor(store, x_client):
    return MentionIngestor(store, x_client, BOT)


@pytest.fixture
def make_poller(store, minter, commenter):
    def _make(claim_lease_seconds=600, secrets=(), **overrides):
        return IntentPoller(
            overrides.get('store', store),
            overrides.get('minter', minter),
            overrides.get('commenter', commenter),
            interval=0.01,
            batch_size=5,
            claim_lease_seconds=claim_lease_seconds,
            dispatch_timeout=10,
            secrets=secrets,
        )
    return _make


@pytest.fixture
def poller(make_poller):
    return make_poller()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_intent(store):
    counter = {'n': 0}

    def _make(name=None, symbol=None, requester_id='user-1', **kwargs):
        counter['n'] += 1
        n = counter['n']
        return store.create_intent(
            post_id=kwargs.pop('post_id', f'post-{n}'),
            name=name or f'Token{n}',
            symbol=symbol or f'TK{n}',
            requester_id=requester_id,
            **kwargs,
        )
    return _make


@pytest.fixture
def minted_intent(store, make_intent):
    """An intent already in MINTED with a token address"""
    def _make(token_address='0x' + 'ab' * 20, **kwargs):
        intent = make_intent(**kwargs)
        store.transition(intent.id, IntentState.AWAITING_MINT, IntentState.MINTING)
        return store.transition(intent.id, IntentState.MINTING, IntentState.MINTED, {
            'token_address': Web3.to_checksum_address(token_address),
            'mint_tx_hash': '0x' + 'cd' * 32,
        })
    return _make


def launch_mention(post_id='1001', name='Bitcoin', symbol='BTC', author_id='42',
                   username='alice', **kwargs) -> Mention:
    return Mention(
        post_id=post_id,
        text=f'@{BOT} launch ${name} ${symbol}',
        author_id=author_id,
        author_username=username,
        **kwargs,
    )
