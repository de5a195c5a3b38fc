"""
Mint orchestrator: escrow wallet -> funding -> create() -> receipt -> MINTED
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from eth_account import Account
from web3 import Web3

from coinlaunch.database import IntentDatabase
from coinlaunch.errors import (
    ChainRpcError,
    ConfigurationError,
    EventNotFoundError,
    InsufficientFundingError,
    OnChainRevertError,
    TransactionDroppedError,
)
from coinlaunch.models import Intent, IntentState

from .chain_client import TRANSFER_GAS, encode_create_call, extract_token_created, tx_hash_hex
from .escrow_vault import EscrowKeyVault
from .ipfs_service import IPFSService

# Integer multipliers, applied as (amount * N) // 100
FUNDING_BUFFER_PERCENT = 120
GAS_LIMIT_BUFFER_PERCENT = 110


@dataclass
class MintResult:
    token_address: str
    creator_address: str
    tx_hash: str


def funding_amount(shortfall: int) -> int:
    return shortfall * FUNDING_BUFFER_PERCENT // 100


def gas_limit_for(estimate: int) -> int:
    return estimate * GAS_LIMIT_BUFFER_PERCENT // 100


class TokenMinter:
    """Drives one intent through the on-chain create call"""

    def __init__(self, store: IntentDatabase, vault: EscrowKeyVault, chain,
                 ipfs: Optional[IPFSService], funding_private_key: Optional[str],
                 initial_liquidity_wei: int, receipt_timeout: float = 300.0,
                 claim_lease_seconds: int = 600):
        self.store = store
        self.vault = vault
        self.chain = chain
        self.ipfs = ipfs
        self.initial_liquidity = int(initial_liquidity_wei)
        self.receipt_timeout = receipt_timeout
        self.claim_lease = timedelta(seconds=claim_lease_seconds)
        self.logger = logging.getLogger('coinlaunch')

        self.funding_account = None
        if funding_private_key:
            try:
                self.funding_account = Account.from_key(funding_private_key)
            except Exception:
                self.logger.error("FUNDING_PRIVATE_KEY is not a valid private key - escrow funding disabled")
        else:
            self.logger.warning("FUNDING_PRIVATE_KEY not set - escrow wallets cannot be funded")

    @property
    def is_configured(self) -> bool:
        return bool(self.chain.is_configured and self.vault.is_configured)

    def missing_components(self):
        missing = []
        if not self.chain.is_configured:
            missing.append('chain (ETH_RPC_URL, BONDING_CURVE_MANAGER_ADDRESS)')
        if not self.vault.is_configured:
            missing.append('escrow vault (ESCROW_ENCRYPTION_KEY)')
        return missing

    async def fund_escrow_wallet(self, escrow_address: str, shortfall: int) -> str:
        """Send shortfall + 20% from the funding wallet and wait for it to land"""
        if self.funding_account is None:
            raise InsufficientFundingError("FUNDING_PRIVATE_KEY not configured - cannot fund escrow wallets")

        amount = funding_amount(shortfall)
        funder = self.funding_account.address

        async with self.vault.lock_for(funder):
            gas_price = await self.chain.get_gas_price()
            funder_balance = await self.chain.get_balance(funder)
            if funder_balance < amount + TRANSFER_GAS * gas_price:
                raise InsufficientFundingError(
                    f"Funding wallet balance too low: has {Web3.from_wei(funder_balance, 'ether')} ETH, "
                    f"needs {Web3.from_wei(amount, 'ether')} ETH plus gas"
                )

            tx = {
                'to': escrow_address,
                'value': amount,
                'gas': TRANSFER_GAS,
                'gasPrice': gas_price,
                'nonce': await self.chain.get_nonce(funder),
                'chainId': await self.chain.chain_id(),
            }
            signed = self.funding_account.sign_transaction(tx)
            tx_hash = await self.chain.send_raw_transaction(signed.raw_transaction)

        self.logger.info(f"💸 Funding escrow wallet {escrow_address} with {Web3.from_wei(amount, 'ether')} ETH ({tx_hash})")
        receipt = await self.chain.wait_for_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt['status'] != 1:
            raise InsufficientFundingError(f"Funding transfer {tx_hash} reverted")

        self.logger.info(f"✅ Escrow wallet funded: {tx_hash}")
        return tx_hash

    async def funding_source_for_estimate(self) -> str:
        """Funding wallet address, if it can cover the liquidity an empty escrow needs"""
        if self.funding_account is None:
            raise InsufficientFundingError("FUNDING_PRIVATE_KEY not configured - cannot fund escrow wallets")
        funder = self.funding_account.address
        funder_balance = await self.chain.get_balance(funder)
        if funder_balance < self.initial_liquidity:
            raise InsufficientFundingError(
                f"Funding wallet balance too low: has {Web3.from_wei(funder_balance, 'ether')} ETH, "
                f"needs at least {Web3.from_wei(self.initial_liquidity, 'ether')} ETH"
            )
        return funder

    async def _broadcast(self, raw_tx: bytes, tx_hash: str) -> None:
        try:
            await self.chain.send_raw_transaction(raw_tx)
        except ChainRpcError as e:
            message = str(e).lower()
            if 'already known' not in message and 'nonce too low' not in message:
                raise
            self.logger.warning(f"Node already has a transaction for {tx_hash} ({e}), treating as sent")

    async def mint(self, intent: Intent) -> MintResult:
        """Create the token on-chain for a claimed intent

        The intent must be in MINTING (AWAITING_MINT is claimed here). A
        ChainRpcError leaves the intent in MINTING. The create hash is stored
        before broadcast, so once signed the poller's confirmation stage
        finishes the job and the create is never sent twice.
        """
        if not self.is_configured:
            raise ConfigurationError(
                f"TokenMinter is not configured: missing {', '.join(self.missing_components())}"
            )

        if intent.state == IntentState.AWAITING_MINT:
            intent = self.store.transition(intent.id, IntentState.AWAITING_MINT, IntentState.MINTING)

        self.logger.info(f"🏗️ Starting mint for {intent.name} (${intent.symbol}) requested by {intent.requester_username or intent.requester_id}")

        # 1. Escrow wallet for the requester
        escrow_address = self.vault.get_or_create(intent.requester_id)

        # 2. Image, best effort
        patch = {'escrow_wallet': escrow_address}
        if intent.logo_ref and not intent.logo_ipfs and self.ipfs is not None:
            pinned = await self.ipfs.upload_image_from_url(intent.logo_ref, f"{intent.symbol}-logo")
            if pinned:
                patch['logo_ipfs'] = pinned['url']
        intent = self.store.transition(intent.id, IntentState.MINTING, IntentState.MINTING, patch)

        # 3-4. Gas estimate and required balance, all in wei
        calldata = encode_create_call(intent.name, intent.symbol)
        balance = await self.vault.balance_of(escrow_address)
        estimate_from = escrow_address
        if balance < self.initial_liquidity:
            # Nodes reject estimates whose value exceeds the sender balance
            estimate_from = await self.funding_source_for_estimate()
        gas_estimate = await self.chain.estimate_gas({
            'from': estimate_from,
            'to': self.chain.contract_address,
            'value': self.initial_liquidity,
            'data': calldata,
        })
        gas_price = await self.chain.get_gas_price()
        required = self.initial_liquidity + gas_estimate * gas_price

        # 5. Top up the escrow wallet
        if balance < required:
            self.logger.info(
                f"⚠️ Escrow wallet needs funding. Balance: {Web3.from_wei(balance, 'ether')}, "
                f"Required: {Web3.from_wei(required, 'ether')}"
            )
            await self.fund_escrow_wallet(escrow_address, required - balance)

        # 6. Signed create() from the escrow wallet
        async with self.vault.lock_for(escrow_address):
            tx = {
                'to': self.chain.contract_address,
                'value': self.initial_liquidity,
                'data': calldata,
                'gas': gas_limit_for(gas_estimate),
                'gasPrice': gas_price,
                'nonce': await self.chain.get_nonce(escrow_address),
                'chainId': await self.chain.chain_id(),
            }
            signed = self.vault.sign(intent.requester_id, tx)
            tx_hash = tx_hash_hex(signed.hash)
            # Persisted before broadcast; a lost reply is settled by the receipt check
            intent = self.store.transition(intent.id, IntentState.MINTING, IntentState.MINTING, {'mint_tx_hash': tx_hash})
            await self._broadcast(signed.raw_transaction, tx_hash)

        self.logger.info(f"📝 create() sent for ${intent.symbol}: {tx_hash}")

        # 7-9. Confirmation
        self.logger.info(f"⏳ Waiting for confirmation of {tx_hash}...")
        receipt = await self.chain.wait_for_receipt(tx_hash, timeout=self.receipt_timeout)
        return self.finalize(intent, receipt)

    def finalize(self, intent: Intent, receipt) -> MintResult:
        """Apply a mined receipt to a MINTING intent

        Raises:
            OnChainRevertError: receipt status is 0
            EventNotFoundError: success receipt without TokenCreated
        """
        if receipt['status'] != 1:
            raise OnChainRevertError("on-chain revert")

        event = extract_token_created(receipt, self.chain.contract_address)
        if event is None:
            raise EventNotFoundError("TokenCreated event not found")

        tx_hash = intent.mint_tx_hash or str(receipt.get('transactionHash'))
        self.store.transition(intent.id, IntentState.MINTING, IntentState.MINTED, {
            'token_address': event.token_address,
            'creator_address': event.creator,
            'mint_tx_hash': tx_hash,
            'minted_at': datetime.now(),
        })
        self.logger.info(f"✅ Token minted! ${intent.symbol} at {event.token_address} (creator {event.creator})")
        return MintResult(event.token_address, event.creator, tx_hash)

    async def check_confirmation(self, intent: Intent) -> Optional[MintResult]:
        """Re-verify a MINTING intent with a recorded tx against the chain

        Returns None while the transaction is still pending.
        """
        receipt = await self.chain.get_receipt(intent.mint_tx_hash)
        if receipt is None:
            lease_expired = intent.updated_at < datetime.now() - self.claim_lease
            if lease_expired and await self.chain.get_transaction(intent.mint_tx_hash) is None:
                raise TransactionDroppedError("transaction dropped")
            return None
        return self.finalize(intent, receipt)
