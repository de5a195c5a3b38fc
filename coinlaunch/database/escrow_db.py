"""
Escrow wallet persistence - ciphertext only, one row per identity
"""

import logging
import sqlite3
from contextlib import closing
from datetime import datetime
from decimal import Decimal
from typing import Optional

from coinlaunch.models import EscrowWallet

from .connection import connect


class EscrowWalletDatabase:
    """Stores encrypted escrow keys keyed by requesting identity"""

    def __init__(self, db_path: str = 'coinlaunch.db'):
        self.db_path = db_path
        self.logger = logging.getLogger('coinlaunch')
        self._setup_database()

    def _setup_database(self):
        with closing(connect(self.db_path)) as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS escrow_wallets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    identity TEXT NOT NULL UNIQUE,
                    address TEXT NOT NULL UNIQUE,
                    encrypted_private_key TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    last_used_at TIMESTAMP,
                    total_fees_collected TEXT NOT NULL DEFAULT '0'
                )
            ''')

    @staticmethod
    def _row_to_wallet(row: sqlite3.Row) -> EscrowWallet:
        return EscrowWallet(
            identity=row['identity'],
            address=row['address'],
            encrypted_private_key=row['encrypted_private_key'],
            created_at=row['created_at'],
            last_used_at=row['last_used_at'],
            total_fees_collected=row['total_fees_collected'],
        )

    def get(self, identity: str) -> Optional[EscrowWallet]:
        with closing(connect(self.db_path)) as conn:
            row = conn.execute(
                'SELECT * FROM escrow_wallets WHERE identity = ?', (identity,)
            ).fetchone()
        return self._row_to_wallet(row) if row else None

    def insert_if_absent(self, identity: str, address: str, encrypted_private_key: str) -> EscrowWallet:
        """Insert a wallet unless the identity already has one; return the stored row

        Two workers creating a wallet for the same identity both end up with
        the first inserted row.
        """
        with closing(connect(self.db_path)) as conn:
            conn.execute('''
                INSERT OR IGNORE INTO escrow_wallets
                (identity, address, encrypted_private_key, created_at)
                VALUES (?, ?, ?, ?)
            ''', (identity, address, encrypted_private_key, datetime.now()))
            row = conn.execute(
                'SELECT * FROM escrow_wallets WHERE identity = ?', (identity,)
            ).fetchone()
        return self._row_to_wallet(row)

    def touch(self, identity: str) -> None:
        """Update last-used timestamp"""
        with closing(connect(self.db_path)) as conn:
            conn.execute(
                'UPDATE escrow_wallets SET last_used_at = ? WHERE identity = ?',
                (datetime.now(), identity),
            )

    def add_fees_collected(self, identity: str, amount_wei: int) -> str:
        """Add to the cumulative fee counter; returns the new total (wei string)"""
        with closing(connect(self.db_path)) as conn:
            conn.execute('BEGIN IMMEDIATE')
            try:
                row = conn.execute(
                    'SELECT total_fees_collected FROM escrow_wallets WHERE identity = ?', (identity,)
                ).fetchone()
                if row is None:
                    raise KeyError(identity)
                total = Decimal(row['total_fees_collected'] or '0') + Decimal(int(amount_wei))
                new_total = str(int(total))
                conn.execute(
                    'UPDATE escrow_wallets SET total_fees_collected = ?, last_used_at = ? WHERE identity = ?',
                    (new_total, datetime.now(), identity),
                )
                conn.execute('COMMIT')
            except Exception:
                conn.execute('ROLLBACK')
                raise
        return new_total
