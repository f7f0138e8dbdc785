"""
Tests for selector-based extraction.

Tests:
- CSS and XPath containers and fields
- Extraction types (text, attr, html) and defaults
- Regex refinement
- URL resolution and link fallback
- Invalid selectors
"""

import pytest

from sitefeed.errors import SourceConfigError
from sitefeed.extractor import SelectorExtractor, refine, validate_selector_spec
from sitefeed.models import SelectorField, SelectorSpec

BASE_URL = "https://news.example/list"


def css_spec(**fields) -> SelectorSpec:
    data = {"container": "li.item", "title": "a.headline"}
    data.update(fields)
    return SelectorSpec.model_validate(data)


class TestCssExtraction:
    """Tests for CSS container extraction."""

    def test_one_candidate_per_container_in_order(self, list_page):
        """Every container yields a candidate, in document order."""
        items = SelectorExtractor(css_spec(), BASE_URL).extract(list_page)

        assert [i["title"] for i in items] == ["First & foremost", "Second", "Third"]

    def test_attr_link_resolved_against_page_url(self, list_page):
        """Relative links become absolute; absolute ones are kept."""
        spec = css_spec(link={"selector": "a.headline", "extractType": "attr", "attrName": "href"})

        items = SelectorExtractor(spec, BASE_URL).extract(list_page)

        assert items[0]["link"] == "https://news.example/posts/1"
        assert items[1]["link"] == "https://other.example/posts/2"

    def test_link_falls_back_to_first_anchor(self, list_page):
        """Without a link field the container's first anchor is used."""
        items = SelectorExtractor(css_spec(), BASE_URL).extract(list_page)

        assert items[2]["link"] == "https://news.example/posts/3"

    def test_html_extraction_keeps_markup(self, list_page):
        """Content in html mode is the node's inner markup."""
        spec = css_spec(content={"selector": "div.body", "extractType": "html"})

        items = SelectorExtractor(spec, BASE_URL).extract(list_page)

        assert "<b>world</b>" in items[0]["content"]

    def test_date_prefers_datetime_attribute(self, list_page):
        """A <time datetime=...> value wins over its display text."""
        spec = css_spec(date="time")

        items = SelectorExtractor(spec, BASE_URL).extract(list_page)

        assert items[0]["date"] == "2024-01-01T08:00:00Z"
        assert "date" not in items[2]

    def test_image_uses_data_src_fallback(self, list_page):
        """Lazy-loaded images expose data-src instead of src."""
        spec = css_spec(image="img")

        items = SelectorExtractor(spec, BASE_URL).extract(list_page)

        assert items[0]["image"] == "https://news.example/img/1.png"
        assert items[1]["image"] == "https://news.example/img/2.png"

    def test_missing_field_is_absent(self, list_page):
        """Fields whose selector matches nothing are left out of the candidate."""
        spec = css_spec(author="span.by")

        items = SelectorExtractor(spec, BASE_URL).extract(list_page)

        assert items[0]["author"] == "Alice"
        assert "author" not in items[2]

    def test_no_containers_returns_empty(self, list_page):
        """A container selector that matches nothing yields no candidates."""
        spec = SelectorSpec.model_validate({"container": "article.post", "title": "h2"})

        assert SelectorExtractor(spec, BASE_URL).extract(list_page) == []

    def test_empty_document_returns_empty(self):
        """Empty documents are not an error."""
        assert SelectorExtractor(css_spec(), BASE_URL).extract("   ") == []

    def test_invalid_css_raises_config_error(self, list_page):
        """Malformed CSS is reported as a configuration problem."""
        spec = SelectorSpec.model_validate({"container": "li[", "title": "a"})

        with pytest.raises(SourceConfigError):
            SelectorExtractor(spec, BASE_URL).extract(list_page)


class TestXPathExtraction:
    """Tests for XPath container extraction."""

    def test_xpath_fields(self, list_page):
        """Relative XPath fields resolve against each container."""
        spec = SelectorSpec.model_validate({
            "selectorType": "xpath",
            "container": "//li[@class='item']",
            "title": ".//a[@class='headline']",
            "link": {"selector": ".//a[@class='headline']/@href"},
            "author": ".//span[@class='by']",
        })

        items = SelectorExtractor(spec, BASE_URL).extract(list_page)

        assert len(items) == 3
        assert items[0]["title"] == "First & foremost"
        assert items[0]["link"] == "https://news.example/posts/1"
        assert items[1]["author"] == "Bob"

    def test_xpath_html_extraction(self, list_page):
        """Inner markup is serialized for html extraction."""
        spec = SelectorSpec.model_validate({
            "selectorType": "xpath",
            "container": "//li[@class='item']",
            "title": ".//a",
            "content": {"selector": ".//div[@class='body']", "extractType": "html"},
        })

        items = SelectorExtractor(spec, BASE_URL).extract(list_page)

        assert "<b>world</b>" in items[0]["content"]

    def test_document_with_xml_declaration(self):
        """An XML declaration in front of the markup does not break parsing."""
        document = '<?xml version="1.0" encoding="utf-8"?><html><body><div class="p"><h2>Hi</h2></div></body></html>'
        spec = SelectorSpec.model_validate({
            "selectorType": "xpath",
            "container": "//div[@class='p']",
            "title": ".//h2",
        })

        items = SelectorExtractor(spec, BASE_URL).extract(document)

        assert items[0]["title"] == "Hi"

    def test_invalid_xpath_raises_config_error(self, list_page):
        """Malformed XPath is reported as a configuration problem."""
        spec = SelectorSpec.model_validate({
            "selectorType": "xpath",
            "container": "//li[",
            "title": ".//a",
        })

        with pytest.raises(SourceConfigError):
            SelectorExtractor(spec, BASE_URL).extract(list_page)


class TestRefine:
    """Tests for regex refinement of extracted values."""

    def test_no_pattern_returns_raw(self):
        assert refine("abc", SelectorField(selector="x")) == "abc"

    def test_numbered_group(self):
        """A capture group selects part of the match."""
        field = SelectorField(selector="x", regex_pattern=r"Posted (\d{4}-\d{2}-\d{2})", regex_group=1)

        assert refine("Posted 2024-03-05 by Jane", field) == "2024-03-05"

    def test_named_group_and_flags(self):
        """Named groups and flag letters are supported."""
        field = SelectorField(
            selector="x",
            regex_pattern=r"by (?P<who>\w+)",
            regex_flags="i",
            regex_group="who",
        )

        assert refine("Written BY Jane", field) == "Jane"

    def test_no_match_returns_empty(self):
        field = SelectorField(selector="x", regex_pattern=r"\d+")

        assert refine("no digits", field) == ""

    def test_missing_group_returns_empty(self):
        """A group index the pattern does not have yields an empty value."""
        field = SelectorField(selector="x", regex_pattern=r"(\d+)", regex_group=3)

        assert refine("abc 42", field) == ""


class TestValidateSelectorSpec:
    """Tests for selector spec sanity checks."""

    def test_valid_spec_has_no_problems(self):
        assert validate_selector_spec(css_spec()) == []

    def test_blank_container(self):
        spec = SelectorSpec.model_validate({"container": "  ", "title": "a"})

        assert validate_selector_spec(spec) == ["container selector is required"]

    def test_xpath_in_css_mode(self):
        spec = SelectorSpec.model_validate({"container": "//div", "title": "a"})

        assert validate_selector_spec(spec)
