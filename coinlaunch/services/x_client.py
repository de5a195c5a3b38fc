"""
X API v2 client (tweepy) - replies, reply lookup, user lookup
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import requests
import tweepy

from coinlaunch.errors import (
    NotAuthenticatedError,
    RateLimitedError,
    SocialApiError,
    SocialUnavailableError,
)


class XClient:
    """Thin async wrapper over tweepy.Client; each call runs in the default executor with a timeout"""

    def __init__(self, bot_username: str, app_bearer_token: Optional[str] = None, timeout: float = 15.0):
        self.bot_username = bot_username.lstrip('@')
        self.app_bearer_token = app_bearer_token
        self.timeout = timeout
        self.is_configured = True
        self.logger = logging.getLogger('coinlaunch')

    async def _run(self, fn, what: str):
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(loop.run_in_executor(None, fn), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise SocialUnavailableError(f"{what} timed out after {self.timeout:.0f}s") from e
        except tweepy.Unauthorized as e:
            raise NotAuthenticatedError(f"{what} unauthorized (401)") from e
        except tweepy.TooManyRequests as e:
            reset = e.response.headers.get('x-rate-limit-reset') if e.response is not None else None
            raise RateLimitedError(f"{what} rate limited (429), reset at {reset}") from e
        except tweepy.TwitterServerError as e:
            raise SocialUnavailableError(f"{what} failed: X server error {e.response.status_code}") from e
        except requests.RequestException as e:
            raise SocialUnavailableError(f"{what} failed: {e}") from e
        except tweepy.TweepyException as e:
            raise SocialApiError(f"{what} failed: {e}") from e

    async def post_reply(self, text: str, in_reply_to_id: str, access_token: str) -> str:
        """Reply as the bot; returns the new post id"""
        client = tweepy.Client(bearer_token=access_token)
        response = await self._run(
            lambda: client.create_tweet(text=text, in_reply_to_tweet_id=in_reply_to_id, user_auth=False),
            'create_tweet',
        )
        if not response.data:
            raise SocialApiError("create_tweet returned no data")
        return str(response.data['id'])

    async def find_reply(self, in_reply_to_id: str, access_token: str) -> Optional[str]:
        """Id of an existing bot reply to in_reply_to_id, if recent search can see one"""
        client = tweepy.Client(bearer_token=access_token)
        query = f"in_reply_to_tweet_id:{in_reply_to_id} from:{self.bot_username}"
        response = await self._run(
            lambda: client.search_recent_tweets(query=query, max_results=10, user_auth=False),
            'search_recent_tweets',
        )
        if not response.data:
            return None
        return str(response.data[0].id)

    async def get_user_by_id(self, user_id: str, access_token: Optional[str] = None) -> Optional[Dict[str, Any]]:
        bearer = self.app_bearer_token or access_token
        if not bearer:
            return None
        client = tweepy.Client(bearer_token=bearer)
        response = await self._run(
            lambda: client.get_user(id=user_id, user_fields=['profile_image_url'], user_auth=False),
            'get_user',
        )
        if not response.data:
            return None
        user = response.data
        return {
            'id': str(user.id),
            'username': user.username,
            'profile_image_url': getattr(user, 'profile_image_url', None),
        }
