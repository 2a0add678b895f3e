"""
Off-chain listing metadata lookup.

Listing documents (title, description, tags, images) live in a
content-addressed store and are referenced on-chain by hash. They are
supplementary: every failure resolves to an empty document so that a slow
or missing gateway never blocks reconciliation.
"""

import json
import logging
import re
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_MAX_BYTES = 5 * 1024 * 1024

# CIDv0: "Qm" + 44 base58 characters; CIDv1: "b" + base32
_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
_CIDV1_RE = re.compile(r"^b[a-z2-7]{58,}$")


def is_valid_content_hash(content_hash: Optional[str]) -> bool:
    """Return True if the hash looks like an IPFS CID (v0 or v1)."""
    if not content_hash:
        return False
    return bool(_CIDV0_RE.match(content_hash) or _CIDV1_RE.match(content_hash))


def listing_fields(document: dict, on_chain_category: Optional[str]) -> dict:
    """
    Map a metadata document onto listing cache columns with defaults.

    The on-chain category wins over the document's own category.

    Args:
        document: Resolved metadata document (possibly empty)
        on_chain_category: Category emitted by the contract

    Returns:
        Dictionary with title, description, category, location, tags, images
    """
    document = document or {}

    tags = document.get('tags')
    images = document.get('images')

    return {
        'title': document.get('title') or 'Untitled',
        'description': document.get('description') or '',
        'category': on_chain_category or document.get('category') or 'General',
        'location': document.get('location') or 'Global',
        'tags': tags if isinstance(tags, list) else [],
        'images': images if isinstance(images, list) else [],
    }


class MetadataResolver:
    """Fetch JSON documents from an IPFS HTTP gateway."""

    def __init__(
        self,
        gateway_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_bytes: int = DEFAULT_MAX_BYTES,
        client: Optional[httpx.Client] = None
    ):
        """
        Initialize resolver.

        Args:
            gateway_url: Gateway base URL, the hash is appended as a path segment
            timeout: Total request timeout in seconds
            max_bytes: Largest accepted response body
            client: Pre-configured httpx client (optional, mainly for tests)
        """
        self.gateway_url = gateway_url.rstrip('/')
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    @classmethod
    def from_config(cls, metadata_config: dict) -> "MetadataResolver":
        return cls(
            gateway_url=metadata_config['gateway_url'],
            timeout=metadata_config.get('timeout_seconds', DEFAULT_TIMEOUT_SECONDS),
            max_bytes=metadata_config.get('max_bytes', DEFAULT_MAX_BYTES),
        )

    def resolve(self, content_hash: Optional[str]) -> dict:
        """
        Fetch the document stored under ``content_hash``.

        Args:
            content_hash: Content identifier emitted by the contract

        Returns:
            Parsed JSON object, or an empty dict on any failure
        """
        if not content_hash:
            return {}

        if not is_valid_content_hash(content_hash):
            logger.debug(f"Content hash {content_hash!r} is not a CID, fetching anyway")

        url = f"{self.gateway_url}/{content_hash}"
        try:
            body = self._fetch(url)
        except httpx.HTTPError as e:
            logger.warning(f"Metadata fetch failed for {content_hash}: {e}")
            return {}
        except ValueError as e:
            logger.warning(f"Metadata for {content_hash} rejected: {e}")
            return {}

        try:
            document = json.loads(body)
        except ValueError as e:
            logger.warning(f"Metadata for {content_hash} is not valid JSON: {e}")
            return {}

        if not isinstance(document, dict):
            logger.warning(f"Metadata for {content_hash} is not a JSON object, ignoring")
            return {}

        return document

    def _fetch(self, url: str) -> bytes:
        """Stream the response body, aborting once it exceeds ``max_bytes``."""
        with self.client.stream("GET", url, timeout=self.timeout) as response:
            response.raise_for_status()

            declared = response.headers.get('content-length')
            if declared and declared.isdigit() and int(declared) > self.max_bytes:
                raise ValueError(f"declared size {declared} exceeds {self.max_bytes} bytes")

            chunks = []
            received = 0
            for chunk in response.iter_bytes():
                received += len(chunk)
                if received > self.max_bytes:
                    raise ValueError(f"response exceeds {self.max_bytes} bytes")
                chunks.append(chunk)

        return b"".join(chunks)

    def close(self):
        self.client.close()
