"""
In-memory X client for MOCK_MODE and tests
"""

import logging
from typing import Any, Dict, List, Optional

from coinlaunch.errors import CoinLaunchError


class MockXClient:
    """Records replies instead of posting them"""

    def __init__(self, bot_username: str = 'coinlaunchnow'):
        self.bot_username = bot_username.lstrip('@')
        self.is_configured = True
        self.logger = logging.getLogger('coinlaunch')
        self.posts: List[Dict[str, Any]] = []
        self.users: Dict[str, Dict[str, Any]] = {}
        # Raised one per post_reply call, in order, before anything is posted
        self.post_failures: List[CoinLaunchError] = []
        self.attempts = 0
        self._counter = 0

    async def post_reply(self, text: str, in_reply_to_id: str, access_token: Optional[str] = None) -> str:
        self.attempts += 1
        if self.post_failures:
            raise self.post_failures.pop(0)

        self._counter += 1
        post_id = f"mock_reply_{self._counter}"
        self.posts.append({'id': post_id, 'text': text, 'in_reply_to_id': in_reply_to_id, 'access_token': access_token})
        self.logger.info(f"[MOCK] Reply to {in_reply_to_id}: {text!r}")
        return post_id

    async def find_reply(self, in_reply_to_id: str, access_token: Optional[str] = None) -> Optional[str]:
        for post in self.posts:
            if post['in_reply_to_id'] == in_reply_to_id:
                return post['id']
        return None

    async def get_user_by_id(self, user_id: str, access_token: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return self.users.get(str(user_id))
