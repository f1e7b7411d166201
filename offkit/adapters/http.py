"""
HTTP client — registry queries and artifact downloads.

The default client uses ``urllib.request`` with a fixed User-Agent,
streaming downloads in chunks to a ``.part`` file that is renamed only
once complete. Any network failure surfaces as a DownloadError.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from offkit import __version__
from offkit.core.errors import DownloadError

logger = logging.getLogger(__name__)

USER_AGENT = f"npm-offline-kit/{__version__}"
_CHUNK_SIZE = 64 * 1024


class HttpClient(ABC):
    """Abstract HTTP collaborator. Implementations raise DownloadError."""

    @abstractmethod
    def get_bytes(self, url: str, headers: dict[str, str] | None = None) -> bytes:
        """Fetch ``url`` fully into memory."""

    @abstractmethod
    def download(self, url: str, dest: Path, headers: dict[str, str] | None = None) -> None:
        """Stream ``url`` into ``dest`` (parent directory must exist)."""

    def get_text(self, url: str, headers: dict[str, str] | None = None) -> str:
        return self.get_bytes(url, headers).decode("utf-8")

    def get_json(self, url: str, headers: dict[str, str] | None = None) -> Any:
        hdrs = {"Accept": "application/json", **(headers or {})}
        raw = self.get_bytes(url, hdrs)
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise DownloadError(f"Invalid JSON from {url}: {e}") from e


class UrllibHttpClient(HttpClient):
    """HttpClient backed by ``urllib.request``."""

    def __init__(self, timeout: int = 60):
        self._timeout = timeout

    def _request(self, url: str, headers: dict[str, str] | None) -> urllib.request.Request:
        return urllib.request.Request(
            url, headers={"User-Agent": USER_AGENT, **(headers or {})},
        )

    def get_bytes(self, url: str, headers: dict[str, str] | None = None) -> bytes:
        logger.debug("GET %s", url)
        try:
            with urllib.request.urlopen(self._request(url, headers), timeout=self._timeout) as resp:
                return resp.read()
        except urllib.error.HTTPError as e:
            raise DownloadError(f"HTTP {e.code} for {url}") from e
        except (urllib.error.URLError, OSError) as e:
            raise DownloadError(f"Request failed for {url}: {e}") from e

    def download(self, url: str, dest: Path, headers: dict[str, str] | None = None) -> None:
        logger.info("Downloading %s", url)
        part = dest.with_name(dest.name + ".part")
        try:
            with urllib.request.urlopen(self._request(url, headers), timeout=self._timeout) as resp:
                with open(part, "wb") as f:
                    while True:
                        chunk = resp.read(_CHUNK_SIZE)
                        if not chunk:
                            break
                        f.write(chunk)
        except urllib.error.HTTPError as e:
            part.unlink(missing_ok=True)
            raise DownloadError(f"HTTP {e.code} downloading {url}") from e
        except (urllib.error.URLError, OSError) as e:
            part.unlink(missing_ok=True)
            raise DownloadError(f"Download failed for {url}: {e}") from e
        part.replace(dest)
