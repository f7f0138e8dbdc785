"""
Declarative field extraction from HTML documents.

Given a SelectorSpec, finds every container node and resolves each declared
field to text, an attribute value or inner markup, optionally refined by a
regex. CSS selectors run on BeautifulSoup; XPath expressions run on lxml.
"""

import html as html_lib
import re
from typing import Any, Iterable, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from lxml import etree
from lxml import html as lxml_html
from soupsieve import SelectorSyntaxError

from .errors import SourceConfigError
from .logging_conf import get_logger
from .models import ExtractType, SelectorField, SelectorSpec, SelectorType

logger = get_logger(__name__)

URL_FIELDS = {"link": "href", "image": "src"}

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")


def validate_selector_spec(spec: SelectorSpec) -> list[str]:
    """Return human-readable problems with a selector spec (empty if usable)."""
    problems = []
    if not spec.container.strip():
        problems.append("container selector is required")
    container = spec.container.strip()
    if spec.selector_type == SelectorType.XPATH and container and not container.startswith(("/", "(", ".")):
        problems.append("xpath container should be an absolute or relative location path")
    if spec.selector_type == SelectorType.CSS and container.startswith("/"):
        problems.append("container looks like XPath but selectorType is css")
    return problems


def default_extract_type(name: str, field: SelectorField) -> ExtractType:
    if field.extract_type is not None:
        return field.extract_type
    if name in URL_FIELDS:
        return ExtractType.ATTR
    if name == "content":
        return ExtractType.HTML
    return ExtractType.TEXT


def refine(raw: str, field: SelectorField) -> str:
    """Apply the field's regex refinement to a raw extracted string."""
    pattern = field.compiled_regex()
    if pattern is None:
        return raw

    match = pattern.search(raw)
    if not match:
        return ""

    group = field.regex_group if field.regex_group is not None else 0
    if isinstance(group, str) and group.isdigit():
        group = int(group)
    try:
        value = match.group(group)
    except IndexError as e:
        logger.warning("regex_group_missing", pattern=field.regex_pattern, group=group, error=str(e))
        return ""
    return value or ""


def _collapse(text: str) -> str:
    return " ".join(text.split())


class SelectorExtractor:
    """
    Extracts one candidate item per container node.

    Candidates are plain dicts keyed by field name (``title``, ``content``,
    ``date``, ``link``, ``author``, ``image``) ready for FeedFormatter.
    """

    def __init__(self, spec: SelectorSpec, base_url: Optional[str] = None):
        self.spec = spec
        self.base_url = base_url

    def extract(self, document: str) -> list[dict]:
        """Extract candidates in document order. No I/O."""
        if not document or not document.strip():
            logger.info("extraction_empty", reason="empty_document")
            return []

        try:
            if self.spec.selector_type == SelectorType.XPATH:
                items = list(self._extract_xpath(document))
            else:
                items = list(self._extract_css(document))
        except SelectorSyntaxError as e:
            raise SourceConfigError(f"invalid CSS selector: {e}") from e
        except etree.XPathError as e:
            raise SourceConfigError(f"invalid XPath expression: {e}") from e

        if not items:
            logger.info(
                "extraction_empty",
                container=self.spec.container,
                selector_type=self.spec.selector_type.value,
            )
        else:
            logger.debug("extraction_complete", items=len(items))
        return items

    # ------------------------------------------------------------------
    # CSS

    def _extract_css(self, document: str) -> Iterable[dict]:
        soup = BeautifulSoup(document, "lxml")
        for container in soup.select(self.spec.container):
            item = {}
            for name, field in self.spec.fields().items():
                value = self._css_field(container, name, field)
                if value is not None:
                    item[name] = value
            if self.spec.link is None:
                item["link"] = self._css_fallback_link(container)
            self._resolve_urls(item)
            yield item

    def _css_field(self, container: Tag, name: str, field: SelectorField) -> Optional[str]:
        if field.selector.strip():
            node = container.select_one(field.selector)
        else:
            node = container
        if node is None:
            return None

        extract_type = default_extract_type(name, field)
        if extract_type == ExtractType.ATTR:
            raw = node.get(field.attr_name or URL_FIELDS.get(name, ""))
            if isinstance(raw, list):
                raw = " ".join(raw)
            if raw is None and name == "image":
                raw = node.get("data-src")
            raw = (raw or "").strip()
        elif extract_type == ExtractType.HTML:
            raw = node.decode_contents().strip()
        elif name == "date" and node.get("datetime") and field.extract_type is None:
            raw = node["datetime"].strip()
        else:
            raw = node.get_text(" ", strip=True)

        return refine(raw, field)

    def _css_fallback_link(self, container: Tag) -> str:
        if container.name == "a" and container.get("href"):
            return container["href"].strip()
        anchor = container.select_one("a[href]")
        return anchor["href"].strip() if anchor else ""

    # ------------------------------------------------------------------
    # XPath

    def _extract_xpath(self, document: str) -> Iterable[dict]:
        # lxml rejects str input that carries an encoding declaration
        tree = lxml_html.fromstring(_XML_DECLARATION.sub("", document, count=1))
        for container in tree.xpath(self.spec.container):
            if not _is_element(container):
                continue
            item = {}
            for name, field in self.spec.fields().items():
                value = self._xpath_field(container, name, field)
                if value is not None:
                    item[name] = value
            if self.spec.link is None:
                item["link"] = self._xpath_fallback_link(container)
            self._resolve_urls(item)
            yield item

    def _xpath_field(self, container: Any, name: str, field: SelectorField) -> Optional[str]:
        if field.selector.strip():
            result = container.xpath(field.selector)
        else:
            result = [container]

        if isinstance(result, list):
            if not result:
                return None
            node = result[0]
        else:
            # Scalar results from string(), count() and friends
            node = result

        if isinstance(node, bool):
            raw = "true" if node else "false"
        elif isinstance(node, float):
            raw = str(int(node)) if node.is_integer() else str(node)
        elif isinstance(node, str):
            # Attribute values and text() nodes
            raw = str(node).strip()
        elif _is_element(node):
            extract_type = default_extract_type(name, field)
            if extract_type == ExtractType.ATTR:
                raw = (node.get(field.attr_name or URL_FIELDS.get(name, "")) or "").strip()
            elif extract_type == ExtractType.HTML:
                raw = _inner_html(node).strip()
            elif name == "date" and node.get("datetime") and field.extract_type is None:
                raw = node.get("datetime").strip()
            else:
                raw = _collapse(node.text_content())
        else:
            return None

        return refine(raw, field)

    def _xpath_fallback_link(self, container: Any) -> str:
        if container.tag == "a" and container.get("href"):
            return container.get("href").strip()
        anchors = container.xpath(".//a[@href]")
        return anchors[0].get("href").strip() if anchors else ""

    # ------------------------------------------------------------------

    def _resolve_urls(self, item: dict) -> None:
        if not self.base_url:
            return
        for name in URL_FIELDS:
            value = item.get(name)
            if value and not value.startswith(("http://", "https://", "data:")):
                item[name] = urljoin(self.base_url, value)


def _is_element(node: Any) -> bool:
    return isinstance(node, etree._Element) and isinstance(node.tag, str)


def _inner_html(node: Any) -> str:
    parts = [html_lib.escape(node.text, quote=False)] if node.text else []
    for child in node:
        parts.append(etree.tostring(child, encoding="unicode", method="html"))
    return "".join(parts)
