"""
HTTP Fetcher - Performs single network requests for the harvest stages.

The stages only depend on the Fetcher interface: fetch(url) returns the raw
payload bytes or raises. HTTPFetcher is the requests-based implementation,
with one pooled session per worker thread and transport-level retries
handled by urllib3.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import RequestException
from urllib3.util.retry import Retry

from .errors import AuthorizationError, FetchError


class Fetcher(ABC):
    """Performs one request and returns the raw payload."""

    @abstractmethod
    def fetch(self, url: str) -> bytes:
        """
        Fetch a URL.

        Raises:
            FetchError: the request failed for this URL only
            AuthorizationError: the remote refuses access; the run must stop
        """
        pass

    def close(self) -> None:
        """Release any pooled resources."""
        pass


@dataclass
class FetchConfig:
    """Configuration for HTTP fetching."""
    timeout_seconds: float = 30
    max_retries: int = 3
    retry_backoff_factor: float = 2.0
    retry_on_status: List[int] = field(default_factory=lambda: [429, 500, 502, 503, 504])

    # Status codes that mean the whole run is unauthorized
    fatal_status_codes: List[int] = field(default_factory=lambda: [401])

    user_agent: str = "CollectionHarvester/1.0"
    accept: str = "application/json, text/html;q=0.9, */*;q=0.8"
    headers: Dict[str, str] = field(default_factory=dict)
    verify_ssl: bool = True
    max_content_size_mb: int = 10

    # Connection pooling
    pool_connections: int = 10
    pool_maxsize: int = 20


class SessionManager:
    """Keeps one requests session per worker thread."""

    def __init__(self, config: FetchConfig):
        self.config = config
        self.sessions: Dict[int, requests.Session] = {}
        self.lock = threading.Lock()
        self.logger = logging.getLogger(self.__class__.__name__)

    def get_session(self) -> requests.Session:
        thread_id = threading.get_ident()
        with self.lock:
            if thread_id not in self.sessions:
                self.sessions[thread_id] = self._create_session()
                self.logger.debug(f"Created session for thread {thread_id}")
            return self.sessions[thread_id]

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        retry_strategy = Retry(
            total=self.config.max_retries,
            backoff_factor=self.config.retry_backoff_factor,
            status_forcelist=self.config.retry_on_status,
            allowed_methods=["GET", "HEAD"],
            raise_on_status=False
        )
        adapter = HTTPAdapter(max_retries=retry_strategy,
                              pool_connections=self.config.pool_connections,
                              pool_maxsize=self.config.pool_maxsize)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({
            'User-Agent': self.config.user_agent,
            'Accept': self.config.accept,
            'Connection': 'keep-alive',
        })
        session.headers.update(self.config.headers)
        return session

    def close_all(self):
        with self.lock:
            for session in self.sessions.values():
                session.close()
            self.sessions.clear()


class HTTPFetcher(Fetcher):
    """Fetches payloads with requests."""

    def __init__(self, config: FetchConfig, session_manager: SessionManager = None):
        self.config = config
        self.session_manager = session_manager or SessionManager(config)
        self.logger = logging.getLogger(self.__class__.__name__)

    def fetch(self, url: str) -> bytes:
        session = self.session_manager.get_session()
        max_bytes = self.config.max_content_size_mb * 1024 * 1024

        try:
            response = session.get(
                url, timeout=self.config.timeout_seconds,
                allow_redirects=True, verify=self.config.verify_ssl, stream=True
            )
        except RequestException as e:
            raise FetchError(url, f"Request error: {e}") from e

        try:
            status = response.status_code
            if status in self.config.fatal_status_codes:
                raise AuthorizationError(url, status)
            if not 200 <= status < 300:
                raise FetchError(url, f"HTTP {status}", status_code=status)

            content_length = response.headers.get('Content-Length')
            if content_length and content_length.isdigit() and int(content_length) > max_bytes:
                raise FetchError(url, "Content too large", status_code=status)

            content = b''
            for chunk in response.iter_content(chunk_size=8192):
                content += chunk
                if len(content) > max_bytes:
                    raise FetchError(url, "Content exceeded size limit", status_code=status)

            self.logger.debug(f"Fetched: {url} ({len(content)}b)")
            return content

        except RequestException as e:
            raise FetchError(url, f"Read error: {e}") from e
        finally:
            response.close()

    def close(self) -> None:
        self.session_manager.close_all()
