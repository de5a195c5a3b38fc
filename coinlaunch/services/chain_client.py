"""
Chain RPC client for the bonding-curve manager contract

Both ChainClient (live, web3) and MockChainClient (in-memory) expose the same
coroutines; everything above this module only talks to that surface.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import keccak, to_checksum_address
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception

from coinlaunch.errors import ChainRpcError, ConfigurationError, OnChainRevertError

CREATE_SIGNATURE = 'create(string,string)'
CREATE_SELECTOR = keccak(text=CREATE_SIGNATURE)[:4]

TOKEN_CREATED_SIGNATURE = 'TokenCreated(address,address,string,string)'
TOKEN_CREATED_TOPIC = keccak(text=TOKEN_CREATED_SIGNATURE)

# Plain ETH transfer
TRANSFER_GAS = 21000


@dataclass
class TokenCreatedEvent:
    token_address: str
    creator: str
    name: str
    symbol: str


def _as_bytes(value) -> bytes:
    """Normalize HexBytes / bytes / 0x-strings from receipts"""
    if isinstance(value, str):
        value = value[2:] if value.startswith('0x') else value
        return bytes.fromhex(value)
    return bytes(value)


def encode_create_call(name: str, symbol: str) -> bytes:
    """Calldata for create(name, symbol)"""
    return CREATE_SELECTOR + abi_encode(['string', 'string'], [name, symbol])


def decode_create_call(data: bytes) -> Optional[tuple]:
    """Inverse of encode_create_call, None for any other calldata"""
    data = _as_bytes(data)
    if data[:4] != CREATE_SELECTOR:
        return None
    return tuple(abi_decode(['string', 'string'], data[4:]))


def build_token_created_log(contract_address: str, token_address: str, creator: str,
                            name: str, symbol: str) -> Dict[str, Any]:
    """Log entry shaped like the one the contract emits on create"""
    return {
        'address': to_checksum_address(contract_address),
        'topics': [
            TOKEN_CREATED_TOPIC,
            b'\x00' * 12 + _as_bytes(token_address),
            b'\x00' * 12 + _as_bytes(creator),
        ],
        'data': abi_encode(['string', 'string'], [name, symbol]),
    }


def extract_token_created(receipt, contract_address: str) -> Optional[TokenCreatedEvent]:
    """Find the TokenCreated event emitted by our contract in a receipt"""
    expected = contract_address.lower()
    for log in receipt.get('logs', []):
        topics = log.get('topics') or []
        if len(topics) < 3:
            continue
        if str(log.get('address', '')).lower() != expected:
            continue
        if _as_bytes(topics[0]) != TOKEN_CREATED_TOPIC:
            continue
        token_address = to_checksum_address(_as_bytes(topics[1])[-20:])
        creator = to_checksum_address(_as_bytes(topics[2])[-20:])
        try:
            name, symbol = abi_decode(['string', 'string'], _as_bytes(log.get('data', b'')))
        except Exception:
            name, symbol = '', ''
        return TokenCreatedEvent(token_address, creator, name, symbol)
    return None


def tx_hash_hex(tx_hash) -> str:
    return '0x' + _as_bytes(tx_hash).hex()


class ChainClient:
    """Live JSON-RPC client (web3 async provider), every call bounded by a timeout"""

    def __init__(self, rpc_url: Optional[str], contract_address: Optional[str], timeout: float = 30.0):
        self.logger = logging.getLogger('coinlaunch')
        self.timeout = timeout
        self.is_configured = bool(rpc_url and contract_address)
        self.contract_address = to_checksum_address(contract_address) if contract_address else None
        self._chain_id: Optional[int] = None
        self.w3 = None

        if not self.is_configured:
            self.logger.warning("ETH_RPC_URL or BONDING_CURVE_MANAGER_ADDRESS not set - chain client disabled")
            return

        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            rpc_url,
            request_kwargs={'timeout': aiohttp.ClientTimeout(total=timeout)},
        ))

    def _require_configured(self):
        if not self.is_configured:
            raise ConfigurationError("Chain client is not configured")

    async def _call(self, awaitable, what: str):
        """Await an RPC coroutine with the client timeout, mapping failures"""
        self._require_configured()
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ChainRpcError(f"{what} timed out after {self.timeout:.0f}s") from e
        except ContractLogicError as e:
            raise OnChainRevertError(f"{what} reverted: {e}") from e
        except TransactionNotFound:
            raise
        except (Web3Exception, aiohttp.ClientError, ValueError, OSError) as e:
            raise ChainRpcError(f"{what} failed: {e}") from e

    async def get_network(self) -> Dict[str, Any]:
        chain_id = await self.chain_id()
        return {'chain_id': chain_id}

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(await self._call(self.w3.eth.chain_id, 'eth_chainId'))
        return self._chain_id

    async def get_gas_price(self) -> int:
        return int(await self._call(self.w3.eth.gas_price, 'eth_gasPrice'))

    async def get_balance(self, address: str) -> int:
        return int(await self._call(
            self.w3.eth.get_balance(to_checksum_address(address)), 'eth_getBalance'
        ))

    async def get_nonce(self, address: str) -> int:
        return int(await self._call(
            self.w3.eth.get_transaction_count(to_checksum_address(address), 'pending'),
            'eth_getTransactionCount',
        ))

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return int(await self._call(self.w3.eth.estimate_gas(tx), 'eth_estimateGas'))

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        tx_hash = await self._call(self.w3.eth.send_raw_transaction(raw_tx), 'eth_sendRawTransaction')
        return tx_hash_hex(tx_hash)

    async def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt or None while the transaction is pending/unknown"""
        try:
            return await self._call(self.w3.eth.get_transaction_receipt(tx_hash), 'eth_getTransactionReceipt')
        except TransactionNotFound:
            return None

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._call(self.w3.eth.get_transaction(tx_hash), 'eth_getTransactionByHash')
        except TransactionNotFound:
            return None

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Dict[str, Any]:
        """Block (asynchronously) until mined; ChainRpcError on timeout"""
        self._require_configured()
        try:
            return await asyncio.wait_for(
                self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout, poll_latency=2),
                timeout=timeout + 5,
            )
        except (asyncio.TimeoutError, TimeExhausted) as e:
            raise ChainRpcError(f"Receipt for {tx_hash} not available after {timeout:.0f}s") from e
        except (Web3Exception, aiohttp.ClientError, ValueError, OSError) as e:
            raise ChainRpcError(f"Waiting for {tx_hash} failed: {e}") from e
