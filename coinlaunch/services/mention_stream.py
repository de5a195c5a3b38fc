"""
Long-lived mention sources feeding the ingestion adapter

    XFilteredStream     - X API v2 filtered stream (aiohttp, newline-delimited JSON)
    TwitterApiIoStream  - twitterapi.io websocket
    MockMentionStream   - synthetic launch mentions for MOCK_MODE
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
import websockets

from coinlaunch.errors import ConfigurationError
from coinlaunch.models import Mention

MentionHandler = Callable[[Mention], Awaitable[Any]]

X_API_BASE = "https://api.twitter.com/2"
TWITTERAPI_IO_BASE = "https://api.twitterapi.io"
TWITTERAPI_IO_WS = "wss://ws.twitterapi.io/twitter/tweet/websocket"
STALE_AFTER_SECONDS = 120


def reconnect_delay(attempt: int) -> int:
    """10s, 20s, 40s, 80s, then 90s"""
    return min(90, 10 * (2 ** min(attempt - 1, 5)))


def mention_from_x_stream(payload: Dict[str, Any]) -> Optional[Mention]:
    """Build a Mention from one filtered-stream line (data + includes)"""
    data = payload.get('data')
    if not data:
        return None
    includes = payload.get('includes') or {}
    author_id = str(data.get('author_id', ''))

    username = None
    profile_image = None
    for user in includes.get('users', []):
        if str(user.get('id')) == author_id:
            username = user.get('username')
            profile_image = user.get('profile_image_url')
            break

    media = [
        {'type': m.get('type'), 'url': m.get('url')}
        for m in includes.get('media', [])
        if m.get('url')
    ]
    return Mention(
        post_id=str(data['id']),
        text=data.get('text', ''),
        author_id=author_id,
        author_username=username,
        profile_image_url=profile_image,
        media=media,
    )


def mention_from_twitterapi_io(tweet: Dict[str, Any]) -> Mention:
    """Build a Mention from a twitterapi.io websocket tweet (camelCase fields)"""
    author = tweet.get('author') or {}
    media = []
    for item in (tweet.get('extendedEntities') or tweet.get('entities') or {}).get('media', []):
        url = item.get('media_url_https') or item.get('url')
        if url:
            media.append({'type': item.get('type', 'photo'), 'url': url})
    return Mention(
        post_id=str(tweet.get('id', '')),
        text=tweet.get('text', ''),
        author_id=str(author.get('id', '')),
        author_username=author.get('userName') or author.get('username'),
        profile_image_url=author.get('profilePicture') or author.get('profile_image_url'),
        media=media,
    )


class MentionStream:
    """Reconnect loop shared by the live sources"""

    name = 'stream'

    def __init__(self, bot_username: str, on_mention: MentionHandler):
        self.bot_username = bot_username.lstrip('@')
        self.on_mention = on_mention
        self.logger = logging.getLogger('coinlaunch')
        self.mentions_received = 0
        self._running = False

    async def _consume(self):
        raise NotImplementedError

    async def _deliver(self, mention: Optional[Mention]):
        if mention is None or not mention.post_id:
            return
        self.mentions_received += 1
        try:
            await self.on_mention(mention)
        except Exception as e:
            self.logger.error(f"Mention {mention.post_id} handling failed: {e}", exc_info=True)

    async def run(self):
        self._running = True
        attempt = 0
        while self._running:
            attempt += 1
            if attempt > 1:
                self.logger.info(f"🔄 {self.name} reconnection attempt #{attempt}")
            try:
                await self._consume()
                attempt = 0
            except asyncio.CancelledError:
                raise
            except ConfigurationError:
                raise
            except Exception as e:
                self.logger.error(f"{self.name} error: {e}")

            if not self._running:
                break
            wait_time = reconnect_delay(max(attempt, 1))
            self.logger.info(f"⏳ Reconnecting {self.name} in {wait_time} seconds...")
            await asyncio.sleep(wait_time)

    def stop(self):
        self._running = False


class XFilteredStream(MentionStream):
    """X API v2 filtered stream, authenticated with the app bearer token"""

    name = 'X filtered stream'

    def __init__(self, bearer_token: Optional[str], bot_username: str, on_mention: MentionHandler):
        super().__init__(bot_username, on_mention)
        self.bearer_token = bearer_token

    @property
    def rule(self) -> Dict[str, str]:
        return {'value': f'@{self.bot_username} "launch"', 'tag': 'launch-token-mentions'}

    def _headers(self) -> Dict[str, str]:
        if not self.bearer_token:
            raise ConfigurationError("X_APP_BEARER_TOKEN is required for the filtered stream")
        return {'Authorization': f'Bearer {self.bearer_token}'}

    async def setup_rules(self, session: aiohttp.ClientSession):
        """Replace every stream rule with the launch rule"""
        url = f"{X_API_BASE}/tweets/search/stream/rules"
        async with session.get(url, headers=self._headers()) as response:
            existing = (await response.json()).get('data') or []

        if existing:
            ids = [rule['id'] for rule in existing]
            self.logger.info(f"🗑️ Deleting existing stream rules: {ids}")
            async with session.post(url, headers=self._headers(), json={'delete': {'ids': ids}}) as response:
                response.raise_for_status()

        async with session.post(url, headers=self._headers(), json={'add': [self.rule]}) as response:
            response.raise_for_status()
        self.logger.info(f"✅ Stream rule set: {self.rule['value']}")

    async def _consume(self):
        params = {
            'tweet.fields': 'author_id,created_at',
            'expansions': 'author_id,attachments.media_keys',
            'media.fields': 'url,type',
            'user.fields': 'username,profile_image_url',
        }
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=30, sock_read=STALE_AFTER_SECONDS)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            await self.setup_rules(session)
            async with session.get(f"{X_API_BASE}/tweets/search/stream", headers=self._headers(),
                                   params=params) as response:
                if response.status != 200:
                    body = await response.text()
                    raise aiohttp.ClientResponseError(
                        response.request_info, response.history,
                        status=response.status, message=body[:200],
                    )
                self.logger.info(f"👂 Listening for @{self.bot_username} mentions...")

                async for raw in response.content:
                    line = raw.strip()
                    if not line:
                        continue  # keep-alive
                    try:
                        payload = json.loads(line)
                    except json.JSONDecodeError as e:
                        self.logger.error(f"Invalid JSON received: {e}")
                        continue
                    if payload.get('errors') and not payload.get('data'):
                        self.logger.error(f"X stream error: {payload['errors']}")
                        continue
                    await self._deliver(mention_from_x_stream(payload))


class TwitterApiIoStream(MentionStream):
    """twitterapi.io websocket, filtered by a server-side rule"""

    name = 'twitterapi.io stream'

    def __init__(self, api_key: Optional[str], bot_username: str, on_mention: MentionHandler):
        super().__init__(bot_username, on_mention)
        self.api_key = api_key

    async def ensure_rule(self):
        """Create (or re-activate) the mention rule"""
        if not self.api_key:
            raise ConfigurationError("TWITTERAPI_IO_KEY is required for the twitterapi.io stream")
        headers = {'X-API-Key': self.api_key, 'Content-Type': 'application/json'}
        tag = f"{self.bot_username}_mentions"
        value = f"@{self.bot_username} launch"

        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30)) as session:
            async with session.get(f"{TWITTERAPI_IO_BASE}/oapi/tweet_filter/get_rules", headers=headers) as response:
                rules: List[Dict] = (await response.json()).get('rules', []) if response.status == 200 else []

            rule = next((r for r in rules if r.get('tag') == tag), None)
            if rule is None:
                async with session.post(f"{TWITTERAPI_IO_BASE}/oapi/tweet_filter/add_rule", headers=headers,
                                        json={'tag': tag, 'value': value, 'interval_seconds': 1.5}) as response:
                    response.raise_for_status()
                    rule = {'rule_id': (await response.json()).get('rule_id')}
            elif rule.get('is_effect', 0) == 1:
                return

            async with session.post(f"{TWITTERAPI_IO_BASE}/oapi/tweet_filter/update_rule", headers=headers,
                                    json={'rule_id': rule['rule_id'], 'tag': tag, 'value': value,
                                          'interval_seconds': 1.5, 'is_effect': 1}) as response:
                response.raise_for_status()
        self.logger.info(f"✅ Filter rule active: {value}")

    async def _consume(self):
        await self.ensure_rule()
        async with websockets.connect(
            TWITTERAPI_IO_WS,
            additional_headers={'x-api-key': self.api_key},
            ping_interval=40,
            ping_timeout=30,
            close_timeout=10,
        ) as websocket:
            self.logger.info(f"👂 Listening for @{self.bot_username} mentions...")
            while self._running:
                try:
                    message = await asyncio.wait_for(websocket.recv(), timeout=STALE_AFTER_SECONDS)
                except asyncio.TimeoutError:
                    self.logger.warning("WebSocket timeout - reconnecting")
                    return
                except websockets.exceptions.ConnectionClosed as e:
                    self.logger.warning(f"WebSocket closed: code={e.code}, reason={e.reason}")
                    return

                try:
                    data = json.loads(message)
                except json.JSONDecodeError as e:
                    self.logger.error(f"Invalid JSON received: {e}")
                    continue

                event_type = data.get('event_type')
                if event_type == 'connected':
                    self.logger.info("WebSocket connected successfully")
                elif event_type == 'tweet':
                    for tweet in data.get('tweets', []):
                        await self._deliver(mention_from_twitterapi_io(tweet))


class MockMentionStream(MentionStream):
    """Emits one synthetic launch mention per interval"""

    name = 'mock stream'

    def __init__(self, bot_username: str, on_mention: MentionHandler, interval: float = 30.0):
        super().__init__(bot_username, on_mention)
        self.interval = interval
        self.counter = 0

    def next_mention(self) -> Mention:
        self.counter += 1
        return Mention(
            post_id=f"mock_post_{self.counter}",
            text=f"@{self.bot_username} launch $Mock{self.counter} $MOCK{self.counter}",
            author_id=f"mock_user_{self.counter}",
            author_username='mockuser',
            profile_image_url='https://example.com/mock.jpg',
        )

    async def _consume(self):
        self.logger.info(f"🎭 [MOCK] Emitting a launch mention every {self.interval:.0f}s")
        while self._running:
            await self._deliver(self.next_mention())
            await asyncio.sleep(self.interval)
