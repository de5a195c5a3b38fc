"""
Confirmation publisher - replies to the launch post once the token exists
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from coinlaunch.database import IntentDatabase
from coinlaunch.errors import NotAuthenticatedError, SocialApiError
from coinlaunch.models import Intent, IntentState

from .x_oauth2 import XOAuth2Service

MAX_POST_LENGTH = 280


def compose_confirmation(name: str, symbol: str, token_address: str, explorer_url: str) -> str:
    """Detailed reply, or the short one when the detailed text is over the limit

    The text is never cut, the address has to survive intact.
    """
    link = f"{explorer_url.rstrip('/')}/address/{token_address}"
    detailed = (
        f"🚀 {name} (${symbol}) deployed!\n\n"
        f"📜 {token_address}\n\n"
        f"🔍 {link}"
    )
    if len(detailed) <= MAX_POST_LENGTH:
        return detailed

    short = f"🚀 ${symbol} deployed!\n\n🔍 {link}"
    if len(short) > MAX_POST_LENGTH:
        raise SocialApiError(f"Confirmation is {len(short)} characters even in short form")
    return short


class TwitterCommenter:
    """Publishes the launch confirmation as a reply from the bot account"""

    def __init__(self, store: IntentDatabase, client, oauth: Optional[XOAuth2Service], explorer_url: str):
        self.store = store
        self.client = client
        self.oauth = oauth  # None when the client needs no user credential (mock)
        self.explorer_url = explorer_url
        self.logger = logging.getLogger('coinlaunch')

    @property
    def is_configured(self) -> bool:
        if not self.client.is_configured:
            return False
        if self.oauth is None:
            return True
        return self.oauth.is_configured and self.oauth.has_credential()

    def _access_token(self) -> Optional[str]:
        return self.oauth.access_token() if self.oauth is not None else None

    async def _with_refresh(self, call: Callable[[Optional[str]], Awaitable]):
        """Run call(access_token); on a 401 refresh once and retry once"""
        token = self._access_token()
        try:
            return await call(token)
        except NotAuthenticatedError:
            if self.oauth is None:
                raise
            self.logger.warning("🔑 X credential rejected - refreshing and retrying once")
            token = (await self.oauth.refresh(token)).access_token
            return await call(token)

    async def publish(self, intent: Intent) -> str:
        """Post the confirmation for a MINTED (or claimed COMMENTING) intent

        Returns the published post id.
        """
        if intent.state == IntentState.MINTED:
            intent = self.store.transition(intent.id, IntentState.MINTED, IntentState.COMMENTING)
        if not intent.token_address:
            raise SocialApiError(f"Intent {intent.id} has no token address to announce")

        text = compose_confirmation(intent.name, intent.symbol, intent.token_address, self.explorer_url)
        post_id = await self._with_refresh(
            lambda token: self.client.post_reply(text, intent.post_id, token)
        )

        self.store.transition(intent.id, IntentState.COMMENTING, IntentState.COMMENTED, {
            'comment_post_id': post_id,
            'commented_at': datetime.now(),
        })
        self.logger.info(f"💬 Confirmation posted for ${intent.symbol}: {post_id}")
        return post_id

    async def reconcile(self, intent: Intent) -> Optional[str]:
        """For an abandoned COMMENTING intent, adopt a reply that already went out

        Returns the existing reply id, or None if the bot never replied.
        """
        existing = await self._with_refresh(
            lambda token: self.client.find_reply(intent.post_id, token)
        )
        if existing is None:
            return None

        self.store.transition(intent.id, IntentState.COMMENTING, IntentState.COMMENTED, {
            'comment_post_id': existing,
            'commented_at': datetime.now(),
        })
        self.logger.info(f"💬 Found existing confirmation for ${intent.symbol}: {existing}")
        return existing
