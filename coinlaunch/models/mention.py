"""
Inbound mention of the bot, normalized from whichever stream delivered it
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class Mention:
    post_id: str
    text: str
    author_id: str
    author_username: Optional[str] = None
    profile_image_url: Optional[str] = None
    media: List[Dict[str, str]] = field(default_factory=list)  # [{'type': 'photo', 'url': ...}]

    def first_photo(self) -> Optional[str]:
        for item in self.media:
            if item.get('type') == 'photo' and item.get('url'):
                return item['url']
        return None
