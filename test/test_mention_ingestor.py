"""
Tests for turning inbound mentions into AWAITING_MINT intents.
"""

import pytest

from coinlaunch.errors import SocialApiError
from coinlaunch.models import IntentState, Mention
from coinlaunch.services.mention_stream import (
    MockMentionStream,
    mention_from_twitterapi_io,
    mention_from_x_stream,
    reconnect_delay,
)

from conftest import launch_mention


class TestMentionIngestor:

    @pytest.mark.asyncio
    async def test_valid_mention_creates_intent(self, ingestor, store):
        intent = await ingestor.ingest(launch_mention(post_id='1001', name='Bitcoin', symbol='btc'))

        assert intent.state == IntentState.AWAITING_MINT
        assert intent.post_id == '1001'
        assert intent.symbol == 'BTC'
        assert intent.requester_id == '42'
        assert intent.requester_username == 'alice'
        assert store.get_by_post_id('1001').id == intent.id

    @pytest.mark.asyncio
    async def test_duplicate_post_dropped(self, ingestor, store):
        mention = launch_mention(post_id='1001')
        first = await ingestor.ingest(mention)
        second = await ingestor.ingest(mention)

        assert first is not None
        assert second is None
        assert store.count_by_state()['AWAITING_MINT'] == 1

    @pytest.mark.asyncio
    async def test_duplicate_symbol_dropped(self, ingestor):
        await ingestor.ingest(launch_mention(post_id='1', name='Bitcoin', symbol='BTC'))
        assert await ingestor.ingest(launch_mention(post_id='2', name='BitcoinCash', symbol='BTC')) is None

    @pytest.mark.asyncio
    async def test_invalid_command_dropped(self, ingestor, store):
        mention = Mention(post_id='1', text='@coinlaunchnow hello there', author_id='42')

        assert await ingestor.ingest(mention) is None
        assert store.get_by_post_id('1') is None

    @pytest.mark.asyncio
    async def test_own_posts_ignored(self, ingestor, store):
        mention = launch_mention(username='CoinLaunchNow')

        assert await ingestor.ingest(mention) is None
        assert store.get_by_post_id(mention.post_id) is None

    @pytest.mark.asyncio
    async def test_first_photo_is_logo(self, ingestor):
        mention = launch_mention(
            profile_image_url='https://img/profile.png',
            media=[
                {'type': 'video', 'url': 'https://img/video.mp4'},
                {'type': 'photo', 'url': 'https://img/photo1.png'},
                {'type': 'photo', 'url': 'https://img/photo2.png'},
            ],
        )
        intent = await ingestor.ingest(mention)

        assert intent.logo_ref == 'https://img/photo1.png'

    @pytest.mark.asyncio
    async def test_profile_image_fallback(self, ingestor):
        intent = await ingestor.ingest(launch_mention(profile_image_url='https://img/profile.png'))
        assert intent.logo_ref == 'https://img/profile.png'

    @pytest.mark.asyncio
    async def test_username_resolved_when_missing(self, ingestor, x_client):
        x_client.users['42'] = {'id': '42', 'username': 'resolved', 'profile_image_url': 'https://img/p.png'}

        intent = await ingestor.ingest(launch_mention(username=None))

        assert intent.requester_username == 'resolved'
        assert intent.logo_ref == 'https://img/p.png'

    @pytest.mark.asyncio
    async def test_user_lookup_failure_still_ingests(self, ingestor, x_client, monkeypatch):
        async def broken(user_id, access_token=None):
            raise SocialApiError('lookup failed')
        monkeypatch.setattr(x_client, 'get_user_by_id', broken)

        intent = await ingestor.ingest(launch_mention(username=None))

        assert intent is not None
        assert intent.requester_username is None


class TestStreamPayloads:

    def test_x_stream_payload(self):
        payload = {
            'data': {'id': '555', 'text': '@coinlaunchnow launch $Moon $MN', 'author_id': '42'},
            'includes': {
                'users': [{'id': '42', 'username': 'alice', 'profile_image_url': 'https://img/a.png'}],
                'media': [{'media_key': '3_1', 'type': 'photo', 'url': 'https://img/m.png'}],
            },
        }
        mention = mention_from_x_stream(payload)

        assert mention.post_id == '555'
        assert mention.author_username == 'alice'
        assert mention.first_photo() == 'https://img/m.png'

    def test_x_stream_keepalive_or_error(self):
        assert mention_from_x_stream({'errors': [{'title': 'oops'}]}) is None

    def test_twitterapi_io_payload(self):
        tweet = {
            'id': 777,
            'text': '@coinlaunchnow launch $Moon $MN',
            'author': {'id': '42', 'userName': 'alice', 'profilePicture': 'https://img/a.png'},
            'extendedEntities': {'media': [{'type': 'photo', 'media_url_https': 'https://img/x.jpg'}]},
        }
        mention = mention_from_twitterapi_io(tweet)

        assert mention.post_id == '777'
        assert mention.author_username == 'alice'
        assert mention.profile_image_url == 'https://img/a.png'
        assert mention.first_photo() == 'https://img/x.jpg'


class TestStreamHelpers:

    def test_reconnect_backoff(self):
        assert [reconnect_delay(n) for n in range(1, 6)] == [10, 20, 40, 80, 90]
        assert reconnect_delay(50) == 90

    @pytest.mark.asyncio
    async def test_mock_stream_mentions_are_launch_commands(self, ingestor, store):
        stream = MockMentionStream('coinlaunchnow', ingestor.ingest)

        first = await ingestor.ingest(stream.next_mention())
        second = await ingestor.ingest(stream.next_mention())

        assert (first.name, first.symbol) == ('Mock1', 'MOCK1')
        assert second.post_id == 'mock_post_2'
        assert store.count_by_state()['AWAITING_MINT'] == 2
