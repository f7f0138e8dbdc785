"""
Base classes for content sources.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..auth import AuthInjector
from ..config import Settings
from ..errors import SourceFetchError
from ..logging_conf import get_logger
from ..models import SourceConfig

logger = get_logger(__name__)


@dataclass
class RawFeed:
    """
    Candidates fetched from one source, before normalization.

    Channel fields are whatever the source itself declares (a script
    envelope or a feed header); empty strings mean "not provided".
    """
    candidates: list[dict]
    title: str = ""
    description: str = ""
    link: str = ""
    language: str = ""
    image: Optional[str] = None
    date_format: Optional[str] = None
    numbered: bool = False  # Untitled items get "Item N" placeholders
    logs: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.candidates)


class ContentSource(ABC):
    """
    Abstract base class for content sources.

    Each fetch mode (selector, feed, script) implements this interface.
    """

    def __init__(
        self,
        config: SourceConfig,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize content source.

        Args:
            config: Immutable source recipe
            settings: Application settings
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        self.settings = settings
        self.transport = transport

    @property
    def name(self) -> str:
        return self.config.title or self.config.id

    @abstractmethod
    async def fetch(self, route_params: Optional[dict[str, str]] = None) -> RawFeed:
        """
        Fetch raw candidates from this source.

        Raises:
            SiteFeedError subclasses on unrecoverable failures
        """
        pass

    async def get_document(self, accept: str = "text/html,application/xhtml+xml") -> str:
        """
        GET the source URL with credentials applied and return the body text.

        Transport errors are retried only when ``fetch_attempts`` > 1.
        """
        url = self.config.url
        headers = {"User-Agent": self.settings.user_agent, "Accept": accept}

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.request_timeout,
                follow_redirects=True,
                headers=headers,
                transport=self.transport,
            ) as client:
                AuthInjector(self.config.auth, self.config.id).apply_to_client(client, url)

                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self.settings.fetch_attempts),
                    wait=wait_exponential(multiplier=1, min=2, max=10),
                    retry=retry_if_exception_type(httpx.TransportError),
                    reraise=True,
                ):
                    with attempt:
                        response = await client.get(url)

                response.raise_for_status()

        except httpx.HTTPStatusError as e:
            logger.error("source_http_error", source=self.config.id, status=e.response.status_code)
            raise SourceFetchError(
                f"HTTP {e.response.status_code} fetching {url}",
                source_id=self.config.id,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("source_fetch_error", source=self.config.id, error=str(e))
            raise SourceFetchError(f"fetching {url} failed: {e}", source_id=self.config.id) from e

        logger.debug("document_fetched", source=self.config.id, chars=len(response.text))
        return response.text

    def __str__(self) -> str:
        return f"{type(self).__name__}({self.config})"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.config.id!r}, url={self.config.url!r})"
