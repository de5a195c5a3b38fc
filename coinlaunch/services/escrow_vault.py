"""
Escrow key vault - per-identity custodial keys, AES encrypted at rest

Private keys only exist in plaintext inside sign() and claim_fees(); nothing
in this module logs or raises with key material.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from eth_account import Account
from eth_utils import is_address, to_checksum_address
from web3 import Web3

from coinlaunch.database import EscrowWalletDatabase
from coinlaunch.errors import (
    ConfigurationError,
    DecryptionError,
    EscrowWalletNotFoundError,
    InsufficientFundingError,
    OnChainRevertError,
)

from .chain_client import TRANSFER_GAS

CIPHER_TAG = 'aes-256-cbc'
IV_LENGTH = 16


def parse_vault_secret(secret: Optional[str]) -> Optional[bytes]:
    """32-byte key from a 64 hex char secret, None if missing or malformed"""
    if not secret:
        return None
    secret = secret[2:] if secret.startswith('0x') else secret
    try:
        key = bytes.fromhex(secret)
    except ValueError:
        return None
    return key if len(key) == 32 else None


def encrypt_private_key(private_key: str, key: bytes) -> str:
    iv = os.urandom(IV_LENGTH)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(private_key.encode()) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return f"{CIPHER_TAG}:{iv.hex()}:{ciphertext.hex()}"


def decrypt_private_key(blob: str, key: bytes) -> str:
    """Raises DecryptionError with a fixed message on any failure"""
    try:
        tag, iv_hex, ciphertext_hex = blob.split(':', 2)
        if tag != CIPHER_TAG:
            raise ValueError(tag)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(bytes.fromhex(iv_hex))).decryptor()
        padded = decryptor.update(bytes.fromhex(ciphertext_hex)) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plaintext = (unpadder.update(padded) + unpadder.finalize()).decode()
    except Exception:
        # No chained cause, the message stays fixed
        raise DecryptionError() from None
    return plaintext


class EscrowKeyVault:
    """Custodial keypairs, one per requesting identity, behind a sign-only interface"""

    def __init__(self, db: EscrowWalletDatabase, chain, secret: Optional[str],
                 receipt_timeout: float = 300.0):
        self.db = db
        self.chain = chain
        self.receipt_timeout = receipt_timeout
        self.logger = logging.getLogger('coinlaunch')
        self._key = parse_vault_secret(secret)
        self._locks: Dict[str, List] = {}  # address -> [lock, holders and waiters]

        self.is_configured = self._key is not None
        if not self.is_configured:
            self.logger.warning("ESCROW_ENCRYPTION_KEY missing or not 64 hex chars - escrow vault disabled")

    def _require_configured(self):
        if not self.is_configured:
            raise ConfigurationError("Escrow vault is not configured (ESCROW_ENCRYPTION_KEY)")

    @asynccontextmanager
    async def lock_for(self, address: str) -> AsyncIterator[None]:
        """Serializes nonce fetch + sign + broadcast for one sending address

        The lock is dropped once nobody holds or waits for it.
        """
        key = to_checksum_address(address)
        entry = self._locks.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    def get_or_create(self, identity: str) -> str:
        """Return the identity's escrow address, generating a keypair the first time"""
        self._require_configured()
        existing = self.db.get(identity)
        if existing:
            return existing.address

        account = Account.create()
        encrypted = encrypt_private_key(Web3.to_hex(account.key), self._key)
        stored = self.db.insert_if_absent(identity, account.address, encrypted)
        if stored.address == account.address:
            self.logger.info(f"🔐 Generated escrow wallet for {identity}: {stored.address}")
        return stored.address

    def address_of(self, identity: str) -> Optional[str]:
        wallet = self.db.get(identity)
        return wallet.address if wallet else None

    def sign(self, identity: str, tx: Dict[str, Any]):
        """Sign a transaction dict with the identity's escrow key

        Raises:
            EscrowWalletNotFoundError, DecryptionError, ConfigurationError
        """
        self._require_configured()
        wallet = self.db.get(identity)
        if wallet is None:
            raise EscrowWalletNotFoundError(f"No escrow wallet for {identity}")

        private_key = decrypt_private_key(wallet.encrypted_private_key, self._key)
        account = Account.from_key(private_key)
        if account.address != wallet.address:
            raise DecryptionError("escrow key does not match stored address")

        signed = account.sign_transaction(tx)
        self.db.touch(identity)
        return signed

    async def balance_of(self, address: str) -> int:
        return await self.chain.get_balance(address)

    async def claimable_fees(self, identity: str) -> Dict[str, Any]:
        """Everything held by the escrow wallet is claimable by its owner"""
        self._require_configured()
        address = self.address_of(identity)
        if address is None:
            raise EscrowWalletNotFoundError(f"No escrow wallet for {identity}")
        balance = await self.balance_of(address)
        return {
            'escrow_wallet': address,
            'total_claimable': str(balance),
            'total_claimable_eth': str(Web3.from_wei(balance, 'ether')),
        }

    async def claim_fees(self, identity: str, destination: str) -> Dict[str, Any]:
        """Sweep the escrow balance (minus transfer gas) to the owner's address"""
        self._require_configured()
        if not is_address(destination):
            raise ValueError("Invalid destination address")
        destination = to_checksum_address(destination)

        address = self.address_of(identity)
        if address is None:
            raise EscrowWalletNotFoundError(f"No escrow wallet for {identity}")

        async with self.lock_for(address):
            balance = await self.balance_of(address)
            gas_price = await self.chain.get_gas_price()
            amount = balance - TRANSFER_GAS * gas_price
            if amount <= 0:
                raise InsufficientFundingError("Insufficient balance to cover gas fees")

            tx = {
                'to': destination,
                'value': amount,
                'gas': TRANSFER_GAS,
                'gasPrice': gas_price,
                'nonce': await self.chain.get_nonce(address),
                'chainId': await self.chain.chain_id(),
            }
            signed = self.sign(identity, tx)
            tx_hash = await self.chain.send_raw_transaction(signed.raw_transaction)

        self.logger.info(f"📤 Claiming {Web3.from_wei(amount, 'ether')} ETH for {identity} -> {destination} ({tx_hash})")
        receipt = await self.chain.wait_for_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt['status'] != 1:
            raise OnChainRevertError(f"Fee claim transaction {tx_hash} reverted")

        total = self.db.add_fees_collected(identity, amount)
        return {
            'transaction_hash': tx_hash,
            'amount_claimed': str(amount),
            'amount_claimed_eth': str(Web3.from_wei(amount, 'ether')),
            'destination_address': destination,
            'total_fees_collected': total,
        }
