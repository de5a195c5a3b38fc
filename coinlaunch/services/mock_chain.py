"""
In-memory chain used by MOCK_MODE and the test suite

Accepts the same signed raw transactions the live node would, recovers the
sender, moves balances and produces receipts with a real TokenCreated log.
"""

import logging
from typing import Any, Dict, List, Optional

import rlp
from eth_account import Account
from eth_utils import keccak, to_checksum_address

from coinlaunch.errors import ChainRpcError, ConfigurationError

from .chain_client import (
    TRANSFER_GAS,
    build_token_created_log,
    decode_create_call,
    tx_hash_hex,
)

CREATE_GAS_ESTIMATE = 2_000_000
DEFAULT_GAS_PRICE = 1_000_000_000  # 1 gwei
MOCK_CHAIN_ID = 11155111  # sepolia


class MockChainClient:
    """Deterministic stand-in for ChainClient"""

    def __init__(self, contract_address: str, gas_price: int = DEFAULT_GAS_PRICE,
                 chain_id: int = MOCK_CHAIN_ID):
        self.logger = logging.getLogger('coinlaunch')
        self.contract_address = to_checksum_address(contract_address)
        self.is_configured = True
        self.gas_price = gas_price
        self._chain_id = chain_id

        self.balances: Dict[str, int] = {}
        self.nonces: Dict[str, int] = {}
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.pending: List[str] = []
        self.sent: List[Dict[str, Any]] = []  # Every accepted transaction, in order

        # Behaviour switches for tests and demos
        self.auto_mine = True
        self.revert_creates = False
        self.omit_token_event = False
        self.fail_next_rpc: Optional[str] = None
        self.lose_next_create_reply = False  # accept the next create, then fail the RPC call
        self.next_token_addresses: List[str] = []
        self.create_gas_estimate = CREATE_GAS_ESTIMATE

    # -- helpers ---------------------------------------------------------

    def fund(self, address: str, amount: int) -> None:
        key = to_checksum_address(address)
        self.balances[key] = self.balances.get(key, 0) + amount

    @property
    def transfers(self) -> List[Dict[str, Any]]:
        """Plain value transfers (funding, fee sweeps)"""
        return [tx for tx in self.sent if not tx['data']]

    @property
    def creates(self) -> List[Dict[str, Any]]:
        return [tx for tx in self.sent if decode_create_call(tx['data']) is not None]

    def _maybe_fail(self, what: str):
        if self.fail_next_rpc == what:
            self.fail_next_rpc = None
            raise ChainRpcError(f"{what} timed out")

    def mine(self) -> None:
        """Mine every pending transaction"""
        while self.pending:
            self._execute(self.pending.pop(0))

    # -- ChainClient surface ---------------------------------------------

    async def get_network(self) -> Dict[str, Any]:
        return {'chain_id': self._chain_id, 'name': 'mock'}

    async def chain_id(self) -> int:
        return self._chain_id

    async def get_gas_price(self) -> int:
        self._maybe_fail('eth_gasPrice')
        return self.gas_price

    async def get_balance(self, address: str) -> int:
        self._maybe_fail('eth_getBalance')
        return self.balances.get(to_checksum_address(address), 0)

    async def get_nonce(self, address: str) -> int:
        return self.nonces.get(to_checksum_address(address), 0)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        self._maybe_fail('eth_estimateGas')
        sender = tx.get('from')
        if sender and tx.get('value', 0) > self.balances.get(to_checksum_address(sender), 0):
            raise ChainRpcError("eth_estimateGas failed: insufficient funds for transfer")
        if decode_create_call(tx.get('data', b'')) is not None:
            return self.create_gas_estimate
        return TRANSFER_GAS

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        self._maybe_fail('eth_sendRawTransaction')
        raw_tx = bytes(raw_tx)
        if not self.is_configured:
            raise ConfigurationError("Mock chain disabled")

        fields = rlp.decode(raw_tx)
        nonce, gas_price, gas, to, value, data = (fields[i] for i in range(6))
        sender = Account.recover_transaction(raw_tx)
        tx = {
            'hash': tx_hash_hex(keccak(raw_tx)),
            'from': to_checksum_address(sender),
            'to': to_checksum_address(to) if to else None,
            'nonce': int.from_bytes(nonce, 'big'),
            'gasPrice': int.from_bytes(gas_price, 'big'),
            'gas': int.from_bytes(gas, 'big'),
            'value': int.from_bytes(value, 'big'),
            'data': bytes(data),
        }

        if tx['hash'] in self.transactions:
            raise ChainRpcError("eth_sendRawTransaction failed: already known")
        expected_nonce = self.nonces.get(tx['from'], 0)
        if tx['nonce'] < expected_nonce:
            raise ChainRpcError(f"nonce too low: expected {expected_nonce}, got {tx['nonce']}")
        if tx['nonce'] > expected_nonce:
            raise ChainRpcError(f"nonce too high: expected {expected_nonce}, got {tx['nonce']}")
        max_cost = tx['value'] + tx['gas'] * tx['gasPrice']
        if self.balances.get(tx['from'], 0) < max_cost:
            raise ChainRpcError("insufficient funds for gas * price + value")

        self.nonces[tx['from']] = expected_nonce + 1
        self.transactions[tx['hash']] = tx
        self.sent.append(tx)
        if self.auto_mine:
            self._execute(tx['hash'])
        else:
            self.pending.append(tx['hash'])
        if self.lose_next_create_reply and decode_create_call(tx['data']) is not None:
            self.lose_next_create_reply = False
            raise ChainRpcError("eth_sendRawTransaction timed out")
        return tx['hash']

    def _execute(self, tx_hash: str) -> None:
        tx = self.transactions[tx_hash]
        create_args = decode_create_call(tx['data'])
        is_create = create_args is not None and tx['to'] == self.contract_address
        gas_used = self.create_gas_estimate if is_create else TRANSFER_GAS
        gas_used = min(gas_used, tx['gas'])
        logs = []
        status = 1

        self.balances[tx['from']] -= gas_used * tx['gasPrice']
        if is_create and self.revert_creates:
            status = 0
        else:
            self.balances[tx['from']] -= tx['value']
            if tx['to']:
                self.balances[tx['to']] = self.balances.get(tx['to'], 0) + tx['value']
            if is_create and not self.omit_token_event:
                if self.next_token_addresses:
                    token_address = self.next_token_addresses.pop(0)
                else:
                    token_address = '0x' + keccak(tx_hash.encode())[-20:].hex()
                name, symbol = create_args
                logs.append(build_token_created_log(
                    self.contract_address, token_address, tx['from'], name, symbol
                ))

        self.receipts[tx_hash] = {
            'transactionHash': tx_hash,
            'status': status,
            'from': tx['from'],
            'to': tx['to'],
            'gasUsed': gas_used,
            'effectiveGasPrice': tx['gasPrice'],
            'logs': logs,
        }

    async def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        self._maybe_fail('eth_getTransactionReceipt')
        return self.receipts.get(tx_hash)

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self.transactions.get(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Dict[str, Any]:
        receipt = self.receipts.get(tx_hash)
        if receipt is None:
            raise ChainRpcError(f"Receipt for {tx_hash} not available after {timeout:.0f}s")
        return receipt
