"""
Central OAuth2 credential store - one row per service
"""

import logging
from contextlib import closing
from datetime import datetime
from typing import Optional

from coinlaunch.models import OAuthToken

from .connection import connect


class OAuthTokenDatabase:
    """Persists the bot's posting credential so every instance shares it"""

    def __init__(self, db_path: str = 'coinlaunch.db'):
        self.db_path = db_path
        self.logger = logging.getLogger('coinlaunch')
        self._setup_database()

    def _setup_database(self):
        with closing(connect(self.db_path)) as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS oauth_tokens (
                    service TEXT PRIMARY KEY,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT NOT NULL,
                    token_type TEXT DEFAULT 'Bearer',
                    expires_in INTEGER,
                    scope TEXT,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            ''')

    def get(self, service: str = 'twitter') -> Optional[OAuthToken]:
        with closing(connect(self.db_path)) as conn:
            row = conn.execute('SELECT * FROM oauth_tokens WHERE service = ?', (service,)).fetchone()
        if row is None:
            return None
        return OAuthToken(
            service=row['service'],
            access_token=row['access_token'],
            refresh_token=row['refresh_token'],
            token_type=row['token_type'] or 'Bearer',
            expires_in=row['expires_in'],
            scope=row['scope'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    def save(self, token: OAuthToken) -> None:
        """Insert or replace the credential for token.service"""
        with closing(connect(self.db_path)) as conn:
            conn.execute('''
                INSERT INTO oauth_tokens
                (service, access_token, refresh_token, token_type, expires_in, scope, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(service) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    token_type = excluded.token_type,
                    expires_in = excluded.expires_in,
                    scope = excluded.scope,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at
            ''', (
                token.service, token.access_token, token.refresh_token, token.token_type,
                token.expires_in, token.scope, token.created_at, datetime.now(),
            ))
        self.logger.info(f"OAuth credential stored for {token.service}")
