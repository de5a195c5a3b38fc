"""
Tests for the X OAuth2 service and the shared credential store.
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
import requests

from coinlaunch.errors import ConfigurationError, NotAuthenticatedError, SocialUnavailableError
from coinlaunch.models import OAuthToken
from coinlaunch.services import XOAuth2Service
from coinlaunch.services.x_oauth2 import TOKEN_URL


@pytest.fixture
def oauth(oauth_db):
    return XOAuth2Service(oauth_db, 'client-id', 'client-secret', 'https://example.com/callback')


@pytest.fixture
def stored(oauth_db):
    now = datetime.now()
    token = OAuthToken('old-token', 'refresh-1', now, now, expires_in=7200)
    oauth_db.save(token)
    return token


def token_response(status=200, payload=None):
    response = MagicMock(status_code=status)
    response.json.return_value = payload if payload is not None else {
        'access_token': 'new-token',
        'refresh_token': 'refresh-2',
        'expires_in': 7200,
        'scope': 'tweet.read users.read tweet.write offline.access',
    }
    return response


class TestCredentialStore:

    def test_save_and_get(self, oauth_db, stored):
        token = oauth_db.get()
        assert token.access_token == 'old-token'
        assert token.refresh_token == 'refresh-1'
        assert token.service == 'twitter'

    def test_save_overwrites_single_row(self, oauth_db, stored):
        now = datetime.now()
        oauth_db.save(OAuthToken('second', 'refresh-x', now, now))
        assert oauth_db.get().access_token == 'second'

    def test_repr_hides_tokens(self, stored):
        assert 'old-token' not in repr(stored)
        assert 'refresh-1' not in repr(stored)

    def test_expiry(self):
        created = datetime(2025, 1, 1, 12, 0, 0)
        token = OAuthToken('a', 'r', created, created, expires_in=60)
        assert not token.is_expired(created + timedelta(seconds=30))
        assert token.is_expired(created + timedelta(seconds=61))
        assert not OAuthToken('a', 'r', created, created).is_expired()


class TestRefresh:

    def test_refresh_posts_to_token_endpoint(self, oauth, oauth_db, stored):
        with patch('coinlaunch.services.x_oauth2.requests.post', return_value=token_response()) as post:
            token = oauth.refresh_sync('old-token')

        args, kwargs = post.call_args
        assert args[0] == TOKEN_URL
        assert kwargs['data']['grant_type'] == 'refresh_token'
        assert kwargs['data']['refresh_token'] == 'refresh-1'
        assert kwargs['auth'] == ('client-id', 'client-secret')
        assert token.access_token == 'new-token'
        assert oauth_db.get().access_token == 'new-token'
        assert oauth_db.get().refresh_token == 'refresh-2'

    def test_refresh_keeps_refresh_token_when_not_rotated(self, oauth, oauth_db, stored):
        payload = {'access_token': 'new-token', 'expires_in': 7200}
        with patch('coinlaunch.services.x_oauth2.requests.post', return_value=token_response(payload=payload)):
            oauth.refresh_sync('old-token')

        assert oauth_db.get().refresh_token == 'refresh-1'

    def test_already_refreshed_by_another_worker(self, oauth, oauth_db, stored):
        now = datetime.now()
        oauth_db.save(OAuthToken('someone-elses-new-token', 'refresh-9', now, now))

        with patch('coinlaunch.services.x_oauth2.requests.post') as post:
            token = oauth.refresh_sync('old-token')

        post.assert_not_called()
        assert token.access_token == 'someone-elses-new-token'

    def test_rejected_refresh(self, oauth, stored):
        with patch('coinlaunch.services.x_oauth2.requests.post', return_value=token_response(status=400)):
            with pytest.raises(NotAuthenticatedError):
                oauth.refresh_sync('old-token')

    def test_network_failure_is_transient(self, oauth, stored):
        with patch('coinlaunch.services.x_oauth2.requests.post',
                   side_effect=requests.ConnectionError('down')):
            with pytest.raises(SocialUnavailableError):
                oauth.refresh_sync('old-token')

    def test_refresh_without_credential(self, oauth):
        with pytest.raises(NotAuthenticatedError):
            oauth.refresh_sync('old-token')

    @pytest.mark.asyncio
    async def test_async_refresh(self, oauth, stored):
        with patch('coinlaunch.services.x_oauth2.requests.post', return_value=token_response()):
            token = await oauth.refresh('old-token')
        assert token.access_token == 'new-token'


class TestAuthorization:

    def test_access_token_requires_credential(self, oauth):
        assert not oauth.has_credential()
        with pytest.raises(NotAuthenticatedError):
            oauth.access_token()

    def test_unconfigured_handler(self, oauth_db):
        service = XOAuth2Service(oauth_db, None, None, None)
        assert not service.is_configured
        with pytest.raises(ConfigurationError):
            service.authorization_handler()

    def test_authorization_url_uses_pkce(self, oauth):
        url = oauth.authorization_handler().get_authorization_url()

        assert 'client_id=client-id' in url
        assert 'code_challenge=' in url
        assert 'offline.access' in url

    def test_exchange_code_stores_token(self, oauth, oauth_db):
        handler = MagicMock()
        handler.fetch_token.return_value = {
            'access_token': 'fresh',
            'refresh_token': 'refresh-fresh',
            'expires_in': 7200,
            'scope': ['tweet.read', 'tweet.write'],
        }

        token = oauth.exchange_code(handler, 'https://example.com/callback?code=abc&state=xyz')

        assert token.scope == 'tweet.read tweet.write'
        assert oauth_db.get().access_token == 'fresh'
