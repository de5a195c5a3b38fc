"""
X OAuth2 (authorization code + PKCE) for the bot's posting account
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import requests
import tweepy

from coinlaunch.database import OAuthTokenDatabase
from coinlaunch.errors import ConfigurationError, NotAuthenticatedError, SocialUnavailableError
from coinlaunch.models import OAuthToken

TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
SCOPES = ["tweet.read", "users.read", "tweet.write", "offline.access"]


class XOAuth2Service:
    """Authorization, token exchange and refresh against the shared credential store"""

    def __init__(self, store: OAuthTokenDatabase, client_id: Optional[str],
                 client_secret: Optional[str], redirect_uri: Optional[str], timeout: float = 15.0):
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self.logger = logging.getLogger('coinlaunch')

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def has_credential(self) -> bool:
        return self.store.get() is not None

    def access_token(self) -> str:
        token = self.store.get()
        if token is None:
            raise NotAuthenticatedError("No stored X credential - run coinlaunch_service.py --authorize")
        return token.access_token

    # -- authorization -----------------------------------------------------

    def authorization_handler(self) -> tweepy.OAuth2UserHandler:
        """Fresh PKCE handler; keep it until the callback URL comes back"""
        if not self.is_configured:
            raise ConfigurationError("X_CLIENT_ID, X_CLIENT_SECRET and X_OAUTH_2_REDIRECT_URL are required")
        return tweepy.OAuth2UserHandler(
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scope=SCOPES,
            client_secret=self.client_secret,
        )

    def exchange_code(self, handler: tweepy.OAuth2UserHandler, authorization_response: str) -> OAuthToken:
        """Trade the callback URL (with ?code=...&state=...) for a token pair and store it"""
        try:
            payload = handler.fetch_token(authorization_response)
        except Exception as e:
            raise NotAuthenticatedError(f"Authorization code exchange failed: {e}") from e
        return self._store_payload(payload)

    def _store_payload(self, payload: Dict[str, Any], previous_refresh_token: Optional[str] = None) -> OAuthToken:
        refresh_token = payload.get('refresh_token') or previous_refresh_token
        if not payload.get('access_token') or not refresh_token:
            raise NotAuthenticatedError("Token endpoint returned no usable token pair")

        scope = payload.get('scope')
        if isinstance(scope, (list, tuple)):
            scope = ' '.join(scope)

        now = datetime.now()
        token = OAuthToken(
            access_token=payload['access_token'],
            refresh_token=refresh_token,
            created_at=now,
            updated_at=now,
            token_type=payload.get('token_type', 'Bearer'),
            expires_in=int(payload['expires_in']) if payload.get('expires_in') else None,
            scope=scope,
        )
        self.store.save(token)
        return token

    # -- refresh -------------------------------------------------------------

    def refresh_sync(self, stale_access_token: Optional[str] = None) -> OAuthToken:
        """Refresh the stored credential

        If the stored access token already differs from stale_access_token,
        another worker refreshed it and the stored one is returned as is.
        """
        if not self.is_configured:
            raise NotAuthenticatedError("X OAuth2 client is not configured, cannot refresh")

        current = self.store.get()
        if current is None:
            raise NotAuthenticatedError("No stored X credential - run coinlaunch_service.py --authorize")
        if stale_access_token and current.access_token != stale_access_token:
            self.logger.info("X credential already refreshed by another worker")
            return current

        try:
            response = requests.post(
                TOKEN_URL,
                data={
                    'grant_type': 'refresh_token',
                    'refresh_token': current.refresh_token,
                    'client_id': self.client_id,
                },
                auth=(self.client_id, self.client_secret),
                headers={'Content-Type': 'application/x-www-form-urlencoded'},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise SocialUnavailableError(f"Token refresh request failed: {e}") from e

        if response.status_code != 200:
            self.logger.error(f"X token refresh failed: HTTP {response.status_code}")
            raise NotAuthenticatedError(f"Token refresh failed: HTTP {response.status_code}")

        token = self._store_payload(response.json(), previous_refresh_token=current.refresh_token)
        self.logger.info("🔑 X credential refreshed")
        return token

    async def refresh(self, stale_access_token: Optional[str] = None) -> OAuthToken:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.refresh_sync(stale_access_token))
