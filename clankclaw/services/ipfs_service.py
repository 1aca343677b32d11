"""
IPFS service for token images
"""

import os
import re
import time
import asyncio
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, Optional
from urllib.parse import urlparse

import aiohttp
import requests

MAX_IMAGE_BYTES = 10 * 1024 * 1024
IMAGE_TOO_LARGE = 'Image too large (max 10MB)'
DOWNLOAD_CHUNK_SIZE = 64 * 1024
UPLOAD_TIMEOUT = 60
DOWNLOAD_TIMEOUT = 30
PINATA_MAX_RETRIES = 3
GATEWAY_URL = 'https://gateway.pinata.cloud/ipfs'

CID_PATTERN = re.compile(r'^(Qm[1-9A-HJ-NP-Za-km-z]{44,46}|baf[a-zA-Z2-7]{50,})$')
BOT_TOKEN_IN_PATH = re.compile(r'/bot\d+:[A-Za-z0-9_-]+/')

CONTENT_TYPES = {
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.svg': 'image/svg+xml',
}


def strip_ipfs_prefix(value) -> str:
    return str(value or '').strip().replace('ipfs://', '')


def is_ipfs_cid(value) -> bool:
    """CIDv0 (Qm...) or CIDv1 (baf...), with or without ipfs://"""
    if not value or not isinstance(value, str):
        return False
    return bool(CID_PATTERN.match(strip_ipfs_prefix(value)))


def gateway_url(cid: str) -> str:
    return f"{GATEWAY_URL}/{cid}"


def redact_url(text) -> str:
    """Mask bot tokens in Telegram file URLs (/bot<token>/ -> /bot***/)"""
    return BOT_TOKEN_IN_PATH.sub('/bot***/', str(text or ''))


@dataclass
class ImageUploadResult:
    """Outcome of process_image_input"""
    success: bool
    cid: Optional[str] = None
    url: Optional[str] = None
    source: Optional[str] = None  # existing | uploaded
    provider: Optional[str] = None
    size: int = 0
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> 'ImageUploadResult':
        return cls(success=False, error=error)


class IPFSService:
    """Uploads images to the first configured provider: Kubo, Pinata, web3.storage"""

    def __init__(self):
        self.kubo_api_url = (os.getenv('KUBO_API_URL') or os.getenv('IPFS_KUBO_URL') or '').strip().rstrip('/')
        self.pinata_api_key = os.getenv('PINATA_API_KEY')
        self.pinata_secret_key = os.getenv('PINATA_SECRET_KEY')
        self.web3_storage_token = os.getenv('WEB3_STORAGE_TOKEN')
        self.logger = logging.getLogger('clankclaw')

    def provider_status(self) -> Dict[str, bool]:
        return {
            'kubo_local': bool(self.kubo_api_url),
            'pinata': bool(self.pinata_api_key and self.pinata_secret_key),
            'web3_storage': bool(self.web3_storage_token),
        }

    async def download_image(self, image_url: str):
        """Download image bytes; returns (data, filename, content_type)"""
        timeout = aiohttp.ClientTimeout(total=DOWNLOAD_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(image_url) as response:
                if response.status != 200:
                    raise ValueError(f"Failed to download image: HTTP {response.status}")
                if response.content_length is not None and response.content_length > MAX_IMAGE_BYTES:
                    raise ValueError(IMAGE_TOO_LARGE)

                chunks = []
                total = 0
                async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                    total += len(chunk)
                    if total > MAX_IMAGE_BYTES:
                        raise ValueError(IMAGE_TOO_LARGE)
                    chunks.append(chunk)
                image_data = b''.join(chunks)
                content_type = response.headers.get('Content-Type', '')

        filename = os.path.basename(urlparse(image_url).path) or 'token-image.png'
        if '.' not in filename:
            filename = 'token-image.png'
        if not content_type.startswith('image/'):
            content_type = CONTENT_TYPES.get(os.path.splitext(filename)[1].lower(), 'application/octet-stream')
        return image_data, filename, content_type

    def _upload_kubo(self, image_data: bytes, filename: str, content_type: str) -> Optional[str]:
        url = f"{self.kubo_api_url}/api/v0/add"
        files = {'file': (filename, BytesIO(image_data), content_type)}
        response = requests.post(url, params={'pin': 'true', 'cid-version': 1}, files=files, timeout=UPLOAD_TIMEOUT)
        if response.status_code == 200:
            return response.json().get('Hash')
        self.logger.error(f"Kubo upload failed: {response.text}")
        return None

    def _upload_pinata(self, image_data: bytes, filename: str, content_type: str) -> Optional[str]:
        url = "https://api.pinata.cloud/pinning/pinFileToIPFS"
        headers = {
            "pinata_api_key": self.pinata_api_key,
            "pinata_secret_api_key": self.pinata_secret_key
        }

        for attempt in range(1, PINATA_MAX_RETRIES + 1):
            files = {'file': (filename, BytesIO(image_data), content_type)}
            response = requests.post(url, files=files, headers=headers, timeout=UPLOAD_TIMEOUT)
            if response.status_code == 200:
                return response.json().get('IpfsHash')
            if response.status_code == 429 and attempt < PINATA_MAX_RETRIES:
                self.logger.warning(f"Pinata rate limited, retry {attempt}/{PINATA_MAX_RETRIES}")
                time.sleep(2 * attempt)
                continue
            self.logger.error(f"Pinata upload failed: {response.text}")
            return None
        return None

    def _upload_web3_storage(self, image_data: bytes, filename: str, content_type: str) -> Optional[str]:
        url = "https://api.web3.storage/upload"
        headers = {
            "Authorization": f"Bearer {self.web3_storage_token}",
            "X-NAME": filename
        }
        response = requests.post(url, data=image_data, headers=headers, timeout=UPLOAD_TIMEOUT)
        if response.status_code == 200:
            return response.json().get('cid')
        self.logger.error(f"Web3.storage upload failed: {response.text}")
        return None

    def upload_bytes(self, image_data: bytes, filename: str = 'token-image.png',
                     content_type: str = 'image/png') -> ImageUploadResult:
        """Upload through the providers in priority order (blocking)"""
        if len(image_data) > MAX_IMAGE_BYTES:
            return ImageUploadResult.failed(IMAGE_TOO_LARGE)

        status = self.provider_status()
        uploaders = [
            ('kubo_local', self._upload_kubo),
            ('pinata', self._upload_pinata),
            ('web3_storage', self._upload_web3_storage),
        ]

        attempted = False
        for provider, upload in uploaders:
            if not status[provider]:
                continue
            attempted = True
            try:
                cid = upload(image_data, filename, content_type)
            except (requests.RequestException, ValueError) as e:
                self.logger.error(f"IPFS upload via {provider} failed: {e}")
                continue
            if cid:
                self.logger.info(f"Image uploaded to IPFS via {provider}: {cid}")
                return ImageUploadResult(
                    success=True,
                    cid=cid,
                    url=gateway_url(cid),
                    source='uploaded',
                    provider=provider,
                    size=len(image_data),
                )

        if not attempted:
            self.logger.warning("No IPFS service configured for image upload")
            return ImageUploadResult.failed('No IPFS provider configured (set KUBO_API_URL or PINATA_API_KEY/PINATA_SECRET_KEY)')
        return ImageUploadResult.failed('All IPFS providers failed')

    async def process_image_input(self, url_or_cid) -> ImageUploadResult:
        """Pass a CID through, or download a URL and upload it"""
        if not url_or_cid:
            return ImageUploadResult.failed('No image provided')

        cleaned = str(url_or_cid).strip()
        if is_ipfs_cid(cleaned):
            cid = strip_ipfs_prefix(cleaned)
            return ImageUploadResult(success=True, cid=cid, url=gateway_url(cid), source='existing')

        if not cleaned.startswith(('http://', 'https://')):
            return ImageUploadResult.failed('Invalid image: provide a URL or IPFS CID')

        try:
            image_data, filename, content_type = await self.download_image(cleaned)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            message = redact_url(e) or 'Image download failed'
            self.logger.error(f"Error downloading image from {redact_url(cleaned)}: {message}")
            return ImageUploadResult.failed(message)

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.upload_bytes, image_data, filename, content_type)
