"""
Configuration loaded from the environment (.env supported)
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


DISPATCH_LEASE_PERCENT = 90


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


@dataclass
class Settings:
    """Process-wide settings, built once at startup and passed to every component"""
    # Chain
    eth_rpc_url: Optional[str] = None
    contract_address: Optional[str] = None
    funding_private_key: Optional[str] = None
    initial_liquidity_wei: int = 10_000_000_000_000_000  # 0.01 ETH
    explorer_url: str = 'https://eth-sepolia.blockscout.com'

    # Escrow vault
    escrow_encryption_key: Optional[str] = None  # 64 hex chars

    # X / Twitter
    x_client_id: Optional[str] = None
    x_client_secret: Optional[str] = None
    x_redirect_uri: Optional[str] = None
    x_app_bearer_token: Optional[str] = None
    bot_username: str = 'coinlaunchnow'
    realtime_service: str = 'x_stream'  # x_stream | twitterapi.io
    twitterapi_io_key: Optional[str] = None

    # Pinning
    pinata_jwt: Optional[str] = None
    ipfs_gateway_url: str = 'https://gateway.pinata.cloud/ipfs'

    # Storage
    db_path: str = 'coinlaunch.db'

    # Scheduling
    poll_interval_seconds: float = 5.0
    poll_batch_size: int = 5
    claim_lease_seconds: int = 600
    dispatch_timeout_seconds: float = 540.0
    shutdown_grace_seconds: float = 30.0

    # Timeouts
    rpc_timeout_seconds: float = 30.0
    receipt_timeout_seconds: float = 300.0
    social_timeout_seconds: float = 15.0

    mock_mode: bool = False
    log_level: str = 'INFO'

    extra_secrets: List[str] = field(default_factory=list)

    def __post_init__(self):
        # A dispatch outliving its lease could be re-claimed while still running
        if self.claim_lease_seconds > 0 and self.dispatch_timeout_seconds >= self.claim_lease_seconds:
            clamped = self.claim_lease_seconds * DISPATCH_LEASE_PERCENT / 100
            logging.getLogger('coinlaunch').warning(
                f"DISPATCH_TIMEOUT_SECONDS ({self.dispatch_timeout_seconds:.0f}) must be below "
                f"CLAIM_LEASE_SECONDS ({self.claim_lease_seconds}) - using {clamped:.0f}s"
            )
            self.dispatch_timeout_seconds = clamped

    @classmethod
    def from_env(cls, dotenv: bool = True) -> 'Settings':
        """Load configuration from environment"""
        if dotenv:
            load_dotenv()

        return cls(
            eth_rpc_url=os.getenv('ETH_RPC_URL'),
            contract_address=os.getenv('BONDING_CURVE_MANAGER_ADDRESS'),
            funding_private_key=os.getenv('FUNDING_PRIVATE_KEY'),
            initial_liquidity_wei=int(os.getenv('INITIAL_LIQUIDITY_WEI', '10000000000000000')),
            explorer_url=os.getenv('EXPLORER_URL', 'https://eth-sepolia.blockscout.com').rstrip('/'),
            escrow_encryption_key=os.getenv('ESCROW_ENCRYPTION_KEY'),
            x_client_id=os.getenv('X_CLIENT_ID'),
            x_client_secret=os.getenv('X_CLIENT_SECRET'),
            x_redirect_uri=os.getenv('X_OAUTH_2_REDIRECT_URL'),
            x_app_bearer_token=os.getenv('X_APP_BEARER_TOKEN') or os.getenv('TWITTER_BEARER_TOKEN'),
            bot_username=os.getenv('BOT_USERNAME', 'coinlaunchnow').lstrip('@'),
            realtime_service=os.getenv('REALTIME_SERVICE', 'x_stream').lower(),
            twitterapi_io_key=os.getenv('TWITTERAPI_IO_KEY'),
            pinata_jwt=os.getenv('PINATA_JWT'),
            ipfs_gateway_url=os.getenv('IPFS_GATEWAY_URL', 'https://gateway.pinata.cloud/ipfs').rstrip('/'),
            db_path=os.getenv('DB_PATH', 'coinlaunch.db'),
            poll_interval_seconds=float(os.getenv('POLL_INTERVAL_SECONDS', '5')),
            poll_batch_size=int(os.getenv('POLL_BATCH_SIZE', '5')),
            claim_lease_seconds=int(os.getenv('CLAIM_LEASE_SECONDS', '600')),
            dispatch_timeout_seconds=float(os.getenv('DISPATCH_TIMEOUT_SECONDS', '540')),
            shutdown_grace_seconds=float(os.getenv('SHUTDOWN_GRACE_SECONDS', '30')),
            rpc_timeout_seconds=float(os.getenv('RPC_TIMEOUT_SECONDS', '30')),
            receipt_timeout_seconds=float(os.getenv('RECEIPT_TIMEOUT_SECONDS', '300')),
            social_timeout_seconds=float(os.getenv('SOCIAL_TIMEOUT_SECONDS', '15')),
            mock_mode=_env_bool('MOCK_MODE'),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        )

    def missing_for_chain(self) -> List[str]:
        missing = []
        if not self.eth_rpc_url and not self.mock_mode:
            missing.append('ETH_RPC_URL')
        if not self.contract_address:
            missing.append('BONDING_CURVE_MANAGER_ADDRESS')
        return missing

    def missing_for_oauth(self) -> List[str]:
        names = {
            'X_CLIENT_ID': self.x_client_id,
            'X_CLIENT_SECRET': self.x_client_secret,
            'X_OAUTH_2_REDIRECT_URL': self.x_redirect_uri,
        }
        return [name for name, value in names.items() if not value]

    def secrets(self) -> List[str]:
        """Values that must never reach a log line or a persisted error"""
        values = [
            self.funding_private_key,
            self.escrow_encryption_key,
            self.x_client_secret,
            self.x_app_bearer_token,
            self.pinata_jwt,
            self.twitterapi_io_key,
        ]
        return [v for v in values + list(self.extra_secrets) if v]
