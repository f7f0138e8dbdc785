"""
Selector-mode sources: list pages scraped with a SelectorSpec.

Static pages are fetched with httpx; pages that build their content with
JavaScript are rendered through the shared PageRenderer first.
"""

from typing import Optional

from ..config import Settings
from ..errors import SourceConfigError
from ..extractor import SelectorExtractor, validate_selector_spec
from ..logging_conf import get_logger
from ..models import RenderMode, RenderOptions, SourceConfig
from ..renderer import PageRenderer, get_page_renderer
from .base import ContentSource, RawFeed

logger = get_logger(__name__)


class HTMLSource(ContentSource):
    """
    Scraper for HTML list pages.

    Args:
        renderer: PageRenderer for rendered mode (defaults to the shared one,
            only created when a rendered fetch actually happens)
    """

    def __init__(
        self,
        config: SourceConfig,
        settings: Settings,
        renderer: Optional[PageRenderer] = None,
        **kwargs,
    ):
        super().__init__(config, settings, **kwargs)
        self._renderer = renderer

        problems = validate_selector_spec(config.selector)
        if problems:
            raise SourceConfigError("; ".join(problems), source_id=config.id)

    @property
    def renderer(self) -> PageRenderer:
        if self._renderer is None:
            self._renderer = get_page_renderer()
        return self._renderer

    def render_options(self) -> RenderOptions:
        """Merge per-source render tuning over the global defaults."""
        tuning = self.config.render
        return RenderOptions(
            url=self.config.url,
            auth=self.config.auth,
            timeout_ms=(tuning and tuning.timeout_ms) or self.settings.render_timeout_ms,
            wait_for_selector=tuning.wait_for_selector if tuning else None,
            extra_wait_ms=(
                tuning.extra_wait_ms
                if tuning and tuning.extra_wait_ms is not None
                else self.settings.render_extra_wait_ms
            ),
        )

    async def fetch(self, route_params: Optional[dict[str, str]] = None) -> RawFeed:
        """Fetch the page and extract one candidate per container."""
        if self.config.render_mode == RenderMode.RENDERED:
            logger.debug("fetching_rendered", source=self.config.id, url=self.config.url)
            document = await self.renderer.render(self.render_options())
        else:
            logger.debug("fetching_static", source=self.config.id, url=self.config.url)
            document = await self.get_document()

        spec = self.config.selector
        candidates = SelectorExtractor(spec, base_url=self.config.url).extract(document)

        logger.info("html_fetched", source=self.config.id, items=len(candidates))
        return RawFeed(
            candidates=candidates,
            date_format=spec.date_format,
        )
