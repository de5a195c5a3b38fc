"""
Social ingestion - turns "@bot launch $NAME $SYMBOL" mentions into intents
"""

import logging
import re
from typing import Optional, Tuple

from coinlaunch.database import IntentDatabase
from coinlaunch.errors import CoinLaunchError, DuplicateError, ValidationError
from coinlaunch.models import Intent, Mention

NAME_PATTERN = re.compile(r'^[a-zA-Z0-9\s]+$')
SYMBOL_PATTERN = re.compile(r'^[A-Z0-9]+$')


def validate_token_data(name: str, symbol: str) -> None:
    """Raise ValidationError if name/symbol break the launch rules"""
    if not name or len(name) < 2 or len(name) > 32:
        raise ValidationError("Token name must be between 2 and 32 characters")
    if not NAME_PATTERN.match(name):
        raise ValidationError("Token name can only contain letters, numbers and spaces")
    if not symbol or len(symbol) < 2 or len(symbol) > 10:
        raise ValidationError("Token symbol must be between 2 and 10 characters")
    if not SYMBOL_PATTERN.match(symbol):
        raise ValidationError("Token symbol must be uppercase letters and numbers only")


def extract_launch_command(text: str, bot_username: str) -> Tuple[str, str]:
    """Parse a launch command into (name, symbol)

    Example: "@coinlaunchnow launch $Bitcoin $btc" -> ("Bitcoin", "BTC")
    """
    handle = re.escape(bot_username.lstrip('@'))
    match = re.search(rf'@{handle}\s+launch\s+\$(\S+)\s+\$(\S+)', text or '', re.IGNORECASE)
    if not match:
        raise ValidationError(f"Invalid format. Use: @{bot_username} launch $NAME $SYMBOL")

    name = match.group(1).strip()
    symbol = match.group(2).upper()
    validate_token_data(name, symbol)
    return name, symbol


class MentionIngestor:
    """Validates a mention and records it as an AWAITING_MINT intent"""

    def __init__(self, store: IntentDatabase, client, bot_username: str):
        self.store = store
        self.client = client
        self.bot_username = bot_username.lstrip('@')
        self.logger = logging.getLogger('coinlaunch')

    async def ingest(self, mention: Mention) -> Optional[Intent]:
        """Returns the new intent, or None when the mention was dropped"""
        if mention.author_username and mention.author_username.lower() == self.bot_username.lower():
            self.logger.debug(f"Ignoring own post {mention.post_id}")
            return None

        try:
            name, symbol = extract_launch_command(mention.text, self.bot_username)
        except ValidationError as e:
            self.logger.info(f"❌ Dropped mention {mention.post_id}: {e}")
            return None

        if self.store.get_by_post_id(mention.post_id) is not None:
            self.logger.info(f"⚠️ Dropped mention {mention.post_id}: intent already exists for this post")
            return None

        username = mention.author_username
        profile_image = mention.profile_image_url
        if not username or not profile_image:
            try:
                user = await self.client.get_user_by_id(mention.author_id)
            except CoinLaunchError as e:
                self.logger.warning(f"Could not look up author {mention.author_id}: {e}")
                user = None
            if user:
                username = username or user.get('username')
                profile_image = profile_image or user.get('profile_image_url')

        logo = mention.first_photo() or profile_image
        if logo and mention.first_photo():
            self.logger.info(f"📷 Using image from post: {logo}")

        try:
            intent = self.store.create_intent(
                post_id=mention.post_id,
                name=name,
                symbol=symbol,
                requester_id=mention.author_id,
                logo_ref=logo,
                requester_username=username,
            )
        except DuplicateError as e:
            self.logger.info(f"❌ Dropped mention {mention.post_id}: {e}")
            return None

        self.logger.info(f"✅ Intent {intent.id} saved: {name} (${symbol}) for @{username or mention.author_id}")
        return intent
