"""
Tests for the confirmation publisher: templates, the 280 character rule,
and the single refresh-and-retry on 401.
"""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from coinlaunch.errors import NotAuthenticatedError, RateLimitedError
from coinlaunch.models import IntentState, OAuthToken
from coinlaunch.services import TwitterCommenter, XOAuth2Service, compose_confirmation
from coinlaunch.services.twitter_commenter import MAX_POST_LENGTH

from conftest import EXPLORER_URL

ADDRESS = '0x' + 'AB' * 20


@pytest.fixture
def oauth(oauth_db):
    service = XOAuth2Service(oauth_db, 'client-id', 'client-secret', 'https://example.com/callback')
    now = datetime.now()
    oauth_db.save(OAuthToken('old-token', 'refresh-1', now, now))
    return service


@pytest.fixture
def authed_commenter(store, x_client, oauth):
    return TwitterCommenter(store, x_client, oauth=oauth, explorer_url=EXPLORER_URL)


def refresh_response(access_token='new-token'):
    response = MagicMock(status_code=200)
    response.json.return_value = {
        'access_token': access_token,
        'refresh_token': 'refresh-2',
        'expires_in': 7200,
        'token_type': 'bearer',
        'scope': 'tweet.read users.read tweet.write offline.access',
    }
    return response


class TestComposeConfirmation:

    def test_detailed_template(self):
        text = compose_confirmation('Bitcoin', 'BTC', ADDRESS, EXPLORER_URL)

        assert text == (
            f"🚀 Bitcoin ($BTC) deployed!\n\n"
            f"📜 {ADDRESS}\n\n"
            f"🔍 {EXPLORER_URL}/address/{ADDRESS}"
        )

    def test_short_template_above_limit(self):
        long_explorer = 'https://' + 'x' * 150 + '.example'
        detailed_length = len(f"🚀 {'N' * 32} ($BTC) deployed!\n\n📜 {ADDRESS}\n\n🔍 {long_explorer}/address/{ADDRESS}")
        assert detailed_length > MAX_POST_LENGTH

        text = compose_confirmation('N' * 32, 'BTC', ADDRESS, long_explorer)

        assert text == f"🚀 $BTC deployed!\n\n🔍 {long_explorer}/address/{ADDRESS}"
        assert len(text) <= MAX_POST_LENGTH
        assert text.endswith(ADDRESS)


class TestPublish:

    @pytest.mark.asyncio
    async def test_publish_replies_and_marks_commented(self, commenter, minted_intent, store, x_client):
        intent = minted_intent(token_address=ADDRESS, name='Bitcoin', symbol='BTC', post_id='9001')

        post_id = await commenter.publish(intent)

        assert post_id == 'mock_reply_1'
        assert x_client.posts[0]['in_reply_to_id'] == '9001'
        assert ADDRESS.lower() in x_client.posts[0]['text'].lower()
        saved = store.get(intent.id)
        assert saved.state == IntentState.COMMENTED
        assert saved.comment_post_id == 'mock_reply_1'
        assert saved.commented_at is not None

    @pytest.mark.asyncio
    async def test_publish_uses_stored_credential(self, authed_commenter, minted_intent, x_client):
        await authed_commenter.publish(minted_intent())
        assert x_client.posts[0]['access_token'] == 'old-token'

    @pytest.mark.asyncio
    async def test_single_401_refreshes_and_retries(self, authed_commenter, minted_intent, x_client, store, oauth_db):
        x_client.post_failures.append(NotAuthenticatedError('401'))
        intent = minted_intent()

        with patch('coinlaunch.services.x_oauth2.requests.post', return_value=refresh_response()) as post:
            await authed_commenter.publish(intent)

        assert post.call_count == 1
        assert x_client.attempts == 2
        assert x_client.posts[0]['access_token'] == 'new-token'
        assert oauth_db.get().refresh_token == 'refresh-2'
        assert store.get(intent.id).state == IntentState.COMMENTED

    @pytest.mark.asyncio
    async def test_second_401_is_terminal(self, authed_commenter, minted_intent, x_client, store):
        x_client.post_failures.extend([NotAuthenticatedError('401'), NotAuthenticatedError('401')])
        intent = minted_intent()

        with patch('coinlaunch.services.x_oauth2.requests.post', return_value=refresh_response()) as post:
            with pytest.raises(NotAuthenticatedError):
                await authed_commenter.publish(intent)

        assert post.call_count == 1
        assert x_client.attempts == 2
        assert store.get(intent.id).state == IntentState.COMMENTING

    @pytest.mark.asyncio
    async def test_rate_limit_propagates(self, commenter, minted_intent, x_client, store):
        x_client.post_failures.append(RateLimitedError('429'))
        intent = minted_intent()

        with pytest.raises(RateLimitedError):
            await commenter.publish(intent)
        assert store.get(intent.id).state == IntentState.COMMENTING

    def test_not_configured_without_credential(self, store, x_client, oauth_db):
        oauth = XOAuth2Service(oauth_db, 'client-id', 'client-secret', 'https://example.com/callback')
        commenter = TwitterCommenter(store, x_client, oauth=oauth, explorer_url=EXPLORER_URL)

        assert not commenter.is_configured


class TestReconcile:

    @pytest.mark.asyncio
    async def test_existing_reply_adopted(self, commenter, minted_intent, store, x_client):
        intent = minted_intent(post_id='9001')
        claimed = store.transition(intent.id, IntentState.MINTED, IntentState.COMMENTING)
        x_client.posts.append({'id': 'earlier_reply', 'text': '...', 'in_reply_to_id': '9001', 'access_token': None})

        assert await commenter.reconcile(claimed) == 'earlier_reply'
        saved = store.get(intent.id)
        assert saved.state == IntentState.COMMENTED
        assert saved.comment_post_id == 'earlier_reply'
        assert x_client.attempts == 0

    @pytest.mark.asyncio
    async def test_no_reply_found(self, commenter, minted_intent, store):
        intent = minted_intent()
        claimed = store.transition(intent.id, IntentState.MINTED, IntentState.COMMENTING)

        assert await commenter.reconcile(claimed) is None
        assert store.get(intent.id).state == IntentState.COMMENTING
