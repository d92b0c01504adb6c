"""
Image resolution: turns an ImageInput (inline bytes, data URL, local path,
URL or storage key) into raw bytes.

Signed storage URLs expire.  Fresh ones come from a caller-supplied
``signer`` and are kept in an explicit :class:`SignedUrlCache` with a TTL.
An expired URL (HTTP 401/403/410) is re-signed at most ``max_refreshes``
times before :class:`ReferenceExpiredError` is raised.
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Callable, Tuple

import requests

from .errors import ImageUnavailableError, ReferenceExpiredError
from .models import ImageInput

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10    # seconds
READ_TIMEOUT = 60       # seconds
EXPIRED_STATUS = {401, 403, 410}
DEFAULT_TTL_SECONDS = 50 * 60


class SignedUrlCache:
    """Bounded key -> signed URL cache with an explicit TTL and injectable clock."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = 512,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            url, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return url

    def put(self, key: str, url: str) -> None:
        with self._lock:
            self._entries[key] = (url, self._clock() + self.ttl_seconds)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class ImageResolver:
    """
    Args:
        signer: maps a storage key to a fresh, fetchable URL.
        cache: signed URL cache; a private one is created when omitted.
        session: requests session used for downloads.
        max_refreshes: how many times an expired reference is re-signed.
    """

    def __init__(
        self,
        signer: Callable[[str], str] | None = None,
        cache: SignedUrlCache | None = None,
        session: requests.Session | None = None,
        max_refreshes: int = 1,
        timeout: Tuple[float, float] = (CONNECT_TIMEOUT, READ_TIMEOUT),
    ):
        self.signer = signer
        self.cache = cache or SignedUrlCache()
        self.session = session or requests.Session()
        self.max_refreshes = max_refreshes
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def resolve(self, image: ImageInput) -> bytes:
        """Return the image bytes. Raises ImageUnavailableError / ReferenceExpiredError."""
        ref = image.url_or_bytes
        if isinstance(ref, (bytes, bytearray)):
            return bytes(ref)

        ref = str(ref).strip()
        if ref.startswith("data:"):
            return self._decode_data_url(ref)
        if ref.startswith(("http://", "https://")):
            return self._fetch_with_refresh(ref, image.key)

        path = Path(ref)
        try:
            if path.is_file():
                return path.read_bytes()
        except OSError as exc:
            raise ImageUnavailableError(f"Cannot read image file: {exc}") from exc

        # anything else is a storage key
        key = image.key or ref
        return self._fetch_with_refresh(self._signed_url(key), key)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _signed_url(self, key: str, force: bool = False) -> str:
        if self.signer is None:
            raise ImageUnavailableError(f"No signer configured to resolve storage key '{key}'")
        if not force:
            cached = self.cache.get(key)
            if cached:
                return cached
        url = self.signer(key)
        self.cache.put(key, url)
        return url

    def _fetch_with_refresh(self, url: str, key: str | None) -> bytes:
        refreshes = 0
        while True:
            try:
                response = self.session.get(url, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as exc:
                raise ImageUnavailableError(f"Could not download image: {exc}") from exc

            if response.status_code in EXPIRED_STATUS:
                if key and self.signer is not None and refreshes < self.max_refreshes:
                    refreshes += 1
                    logger.info("Image reference for '%s' expired (HTTP %d); refreshing", key, response.status_code)
                    self.cache.invalidate(key)
                    url = self._signed_url(key, force=True)
                    continue
                raise ReferenceExpiredError(
                    f"Image reference expired (HTTP {response.status_code}) after {refreshes} refresh(es)"
                )

            try:
                response.raise_for_status()
            except requests.HTTPError as exc:
                raise ImageUnavailableError(f"Image download failed: {exc}") from exc
            return response.content

    @staticmethod
    def _decode_data_url(url: str) -> bytes:
        try:
            _, payload = url.split(",", 1)
            return base64.b64decode(payload, validate=False)
        except (ValueError, binascii.Error) as exc:
            raise ImageUnavailableError(f"Malformed data URL: {exc}") from exc

