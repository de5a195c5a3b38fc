"""
IPFS service for pinning token images
"""

import json
import logging
from typing import Dict, Optional

import aiohttp

PINATA_PIN_FILE_URL = "https://api.pinata.cloud/pinning/pinFileToIPFS"


class IPFSService:
    """Service for handling IPFS uploads (Pinata)"""

    def __init__(self, pinata_jwt: Optional[str], gateway_url: str, timeout: float = 30.0):
        """Initialize IPFS service with a Pinata JWT"""
        self.pinata_jwt = pinata_jwt
        self.gateway_url = gateway_url.rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.logger = logging.getLogger('coinlaunch')

    @property
    def is_configured(self) -> bool:
        return bool(self.pinata_jwt)

    async def upload_file(self, data: bytes, name: str, content_type: str = 'image/jpeg') -> Dict[str, str]:
        """Pin raw bytes; returns {'ipfs_hash', 'url'}. Raises on failure."""
        if not self.pinata_jwt:
            raise RuntimeError("PINATA_JWT not configured")

        form = aiohttp.FormData()
        form.add_field('file', data, filename=name, content_type=content_type)
        form.add_field('pinataMetadata', json.dumps({'name': name}))
        form.add_field('pinataOptions', json.dumps({'cidVersion': 0}))
        headers = {'Authorization': f'Bearer {self.pinata_jwt}'}

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(PINATA_PIN_FILE_URL, data=form, headers=headers) as response:
                if response.status != 200:
                    text = await response.text()
                    raise RuntimeError(f"Pinata upload failed: HTTP {response.status} {text[:200]}")
                body = await response.json()

        ipfs_hash = body['IpfsHash']
        return {'ipfs_hash': ipfs_hash, 'url': f"{self.gateway_url}/{ipfs_hash}"}

    async def upload_image_from_url(self, image_url: str, name: str) -> Optional[Dict[str, str]]:
        """Download an image and pin it. Best effort: returns None on any failure."""
        if not self.is_configured:
            self.logger.debug("No IPFS service configured for image upload")
            return None
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(image_url) as response:
                    if response.status != 200:
                        self.logger.warning(f"Failed to download image: {response.status}")
                        return None
                    image_data = await response.read()
                    content_type = response.headers.get('Content-Type', 'image/jpeg')

            result = await self.upload_file(image_data, name, content_type)
            self.logger.info(f"📷 Image uploaded to IPFS: {result['ipfs_hash']}")
            return result

        except Exception as e:
            self.logger.warning(f"Image upload to IPFS failed, continuing without image: {e}")
            return None
