"""
Intent store - durable record of launch requests and their lifecycle state
"""

import logging
import sqlite3
from contextlib import closing
from datetime import datetime
from typing import Dict, List, Optional

from coinlaunch.errors import (
    DuplicateNameError,
    DuplicatePostError,
    DuplicateSymbolError,
    ImmutableFieldError,
    IntentNotFoundError,
    InvalidTransitionError,
    StaleStateError,
)
from coinlaunch.models import COMMENT_STAGE_STATES, Intent, IntentState, can_transition

from .connection import connect

# Columns a transition patch may write
PATCHABLE_FIELDS = (
    'token_address', 'creator_address', 'escrow_wallet', 'mint_tx_hash',
    'comment_post_id', 'logo_ipfs', 'error', 'minted_at', 'commented_at',
)

_COLUMNS = (
    'id, post_id, name, symbol, requester_id, requester_username, logo_ref, logo_ipfs, '
    'state, token_address, creator_address, escrow_wallet, mint_tx_hash, comment_post_id, '
    'error, created_at, updated_at, minted_at, commented_at'
)


class IntentDatabase:
    """Handles all intent persistence. Every state change is compare-and-swap on state."""

    def __init__(self, db_path: str = 'coinlaunch.db'):
        self.db_path = db_path
        self.logger = logging.getLogger('coinlaunch')
        self._setup_database()

    def _setup_database(self):
        """Create the intents table and its uniqueness rules"""
        with closing(connect(self.db_path)) as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS intents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    post_id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    requester_id TEXT NOT NULL,
                    requester_username TEXT,
                    logo_ref TEXT,
                    logo_ipfs TEXT,
                    state TEXT NOT NULL DEFAULT 'AWAITING_MINT',
                    token_address TEXT,
                    creator_address TEXT,
                    escrow_wallet TEXT,
                    mint_tx_hash TEXT,
                    comment_post_id TEXT,
                    error TEXT,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    minted_at TIMESTAMP,
                    commented_at TIMESTAMP
                )
            ''')

            # Names and symbols stay reserved unless the launch failed
            conn.execute('''
                CREATE UNIQUE INDEX IF NOT EXISTS idx_intents_active_name
                ON intents(name) WHERE state != 'FAILED'
            ''')
            conn.execute('''
                CREATE UNIQUE INDEX IF NOT EXISTS idx_intents_active_symbol
                ON intents(symbol) WHERE state != 'FAILED'
            ''')
            conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_intents_state_created
                ON intents(state, created_at)
            ''')

        self.logger.debug(f"Intent store ready at {self.db_path}")

    @staticmethod
    def _row_to_intent(row: sqlite3.Row) -> Intent:
        data = dict(row)
        data['state'] = IntentState(data['state'])
        return Intent(**data)

    def create_intent(self, post_id: str, name: str, symbol: str, requester_id: str,
                      logo_ref: Optional[str] = None,
                      requester_username: Optional[str] = None) -> Intent:
        """Insert a new intent in AWAITING_MINT

        Raises:
            DuplicatePostError, DuplicateNameError, DuplicateSymbolError
        """
        now = datetime.now()
        with closing(connect(self.db_path)) as conn:
            try:
                cursor = conn.execute('''
                    INSERT INTO intents
                    (post_id, name, symbol, requester_id, requester_username, logo_ref,
                     state, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''', (
                    post_id, name, symbol, requester_id, requester_username, logo_ref,
                    IntentState.AWAITING_MINT.value, now, now,
                ))
            except sqlite3.IntegrityError as e:
                message = str(e)
                if 'post_id' in message:
                    raise DuplicatePostError(f"Post {post_id} already has an intent") from e
                if 'name' in message:
                    raise DuplicateNameError(f"Token name already taken: {name}") from e
                if 'symbol' in message:
                    raise DuplicateSymbolError(f"Token symbol already taken: {symbol}") from e
                raise
            intent_id = cursor.lastrowid
            row = conn.execute(f'SELECT {_COLUMNS} FROM intents WHERE id = ?', (intent_id,)).fetchone()
        return self._row_to_intent(row)

    def get(self, intent_id: int) -> Intent:
        with closing(connect(self.db_path)) as conn:
            row = conn.execute(f'SELECT {_COLUMNS} FROM intents WHERE id = ?', (intent_id,)).fetchone()
        if row is None:
            raise IntentNotFoundError(f"Intent {intent_id} not found")
        return self._row_to_intent(row)

    def get_by_post_id(self, post_id: str) -> Optional[Intent]:
        with closing(connect(self.db_path)) as conn:
            row = conn.execute(f'SELECT {_COLUMNS} FROM intents WHERE post_id = ?', (post_id,)).fetchone()
        return self._row_to_intent(row) if row else None

    def requester_id_for(self, username: str) -> Optional[str]:
        """X account id behind a username, from the most recent intent it requested"""
        with closing(connect(self.db_path)) as conn:
            row = conn.execute(
                'SELECT requester_id FROM intents WHERE lower(requester_username) = lower(?) '
                'ORDER BY created_at DESC LIMIT 1',
                (username.lstrip('@'),),
            ).fetchone()
        return row['requester_id'] if row else None

    def find_by_state(self, state: IntentState, limit: int = 5,
                      with_tx_ref: Optional[bool] = None,
                      claimed_before: Optional[datetime] = None) -> List[Intent]:
        """Oldest-first scan of one state

        Args:
            with_tx_ref: True/False to require a recorded mint tx hash or its absence
            claimed_before: only rows whose last state change is older than this
        """
        query = f'SELECT {_COLUMNS} FROM intents WHERE state = ?'
        params: list = [IntentState(state).value]
        if with_tx_ref is True:
            query += ' AND mint_tx_hash IS NOT NULL'
        elif with_tx_ref is False:
            query += ' AND mint_tx_hash IS NULL'
        if claimed_before is not None:
            query += ' AND updated_at < ?'
            params.append(claimed_before)
        query += ' ORDER BY created_at ASC, id ASC LIMIT ?'
        params.append(limit)

        with closing(connect(self.db_path)) as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_intent(row) for row in rows]

    def transition(self, intent_id: int, from_state: IntentState, to_state: IntentState,
                   patch: Optional[Dict] = None) -> Intent:
        """Move an intent from from_state to to_state, applying patch atomically

        The write only happens if the row is still in from_state, so two workers
        racing for the same intent cannot both win.

        Raises:
            InvalidTransitionError: edge is not part of the lifecycle
            StaleStateError: row is no longer in from_state
            ImmutableFieldError: patch would overwrite a set token address
        """
        from_state = IntentState(from_state)
        to_state = IntentState(to_state)
        if not can_transition(from_state, to_state):
            raise InvalidTransitionError(f"{from_state.value} -> {to_state.value} is not allowed")

        patch = dict(patch or {})
        unknown = set(patch) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot patch fields: {sorted(unknown)}")

        with closing(connect(self.db_path)) as conn:
            conn.execute('BEGIN IMMEDIATE')
            try:
                row = conn.execute(f'SELECT {_COLUMNS} FROM intents WHERE id = ?', (intent_id,)).fetchone()
                if row is None:
                    raise IntentNotFoundError(f"Intent {intent_id} not found")
                if row['state'] != from_state.value:
                    raise StaleStateError(
                        f"Intent {intent_id} is {row['state']}, expected {from_state.value}"
                    )
                new_address = patch.get('token_address')
                if row['token_address'] and new_address and new_address.lower() != row['token_address'].lower():
                    raise ImmutableFieldError(f"Intent {intent_id} token address is already set")

                assignments = ['state = ?', 'updated_at = ?']
                params: list = [to_state.value, datetime.now()]
                for column, value in patch.items():
                    assignments.append(f'{column} = ?')
                    params.append(value)
                params.extend([intent_id, from_state.value])

                cursor = conn.execute(
                    f'UPDATE intents SET {", ".join(assignments)} WHERE id = ? AND state = ?',
                    params,
                )
                if cursor.rowcount != 1:
                    raise StaleStateError(f"Intent {intent_id} changed state concurrently")
                row = conn.execute(f'SELECT {_COLUMNS} FROM intents WHERE id = ?', (intent_id,)).fetchone()
                conn.execute('COMMIT')
            except Exception:
                conn.execute('ROLLBACK')
                raise
        return self._row_to_intent(row)

    def reclaim(self, intent_id: int, state: IntentState, claimed_before: datetime) -> Intent:
        """Take over an abandoned MINTING/COMMENTING intent whose lease expired

        Renews the lease only if the row is still in state and its last change
        is older than claimed_before, so exactly one worker takes it over.

        Raises:
            StaleStateError: another worker changed or re-claimed the row
        """
        state = IntentState(state)
        if not can_transition(state, state):
            raise InvalidTransitionError(f"{state.value} cannot be re-claimed")

        with closing(connect(self.db_path)) as conn:
            cursor = conn.execute(
                'UPDATE intents SET updated_at = ? WHERE id = ? AND state = ? AND updated_at < ?',
                (datetime.now(), intent_id, state.value, claimed_before),
            )
            if cursor.rowcount != 1:
                raise StaleStateError(f"Intent {intent_id} is no longer an abandoned {state.value}")
            row = conn.execute(f'SELECT {_COLUMNS} FROM intents WHERE id = ?', (intent_id,)).fetchone()

        self.logger.info(f"♻️ Re-claimed abandoned intent {intent_id} ({state.value})")
        return self._row_to_intent(row)

    def record_failure(self, intent_id: int, reason: str) -> Intent:
        """Close an intent with a reason; never raises for state reasons

        Mint-stage intents become FAILED, comment-stage intents COMMENT_FAILED.
        Terminal intents only get their error text updated.
        """
        reason = (reason or 'unknown error')[:500]
        with closing(connect(self.db_path)) as conn:
            conn.execute('BEGIN IMMEDIATE')
            try:
                row = conn.execute('SELECT state FROM intents WHERE id = ?', (intent_id,)).fetchone()
                if row is None:
                    raise IntentNotFoundError(f"Intent {intent_id} not found")
                state = IntentState(row['state'])
                if state in (IntentState.AWAITING_MINT, IntentState.MINTING):
                    new_state = IntentState.FAILED
                elif state in COMMENT_STAGE_STATES:
                    new_state = IntentState.COMMENT_FAILED
                else:
                    new_state = state
                conn.execute(
                    'UPDATE intents SET state = ?, error = ?, updated_at = ? WHERE id = ?',
                    (new_state.value, reason, datetime.now(), intent_id),
                )
                row = conn.execute(f'SELECT {_COLUMNS} FROM intents WHERE id = ?', (intent_id,)).fetchone()
                conn.execute('COMMIT')
            except Exception:
                conn.execute('ROLLBACK')
                raise

        self.logger.warning(f"Intent {intent_id} -> {new_state.value}: {reason}")
        return self._row_to_intent(row)

    def count_by_state(self) -> Dict[str, int]:
        """Intent counts per state, for the periodic status line"""
        with closing(connect(self.db_path)) as conn:
            rows = conn.execute('SELECT state, COUNT(*) AS n FROM intents GROUP BY state').fetchall()
        counts = {state.value: 0 for state in IntentState}
        for row in rows:
            counts[row['state']] = row['n']
        return counts
