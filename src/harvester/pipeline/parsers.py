"""
Payload Parsers - Translate raw payloads into pipeline data.

Listing parsers turn one listing page into item references plus an optional
next-page link. Detail parsers turn one detail payload into item details.
Both are pure: the same payload always yields the same result and nothing
outside the return value is touched.

Two payload formats are supported:
- json: REST-style collections addressed with dotted field paths
- html: server-rendered listings addressed with CSS selectors (BeautifulSoup)
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, FeatureNotFound

from .errors import ParseError
from .models import ItemDetails, ItemReference, ListingPage, PageTask


SUPPORTED_FORMATS = ("json", "html")


@dataclass
class ParserConfig:
    """Configuration for listing and detail parsing."""
    format: str = "json"  # 'json' or 'html'

    # JSON listing paths (dotted, e.g. "data.items")
    items_path: str = "items"
    next_path: str = "next"
    key_path: str = "id"
    detail_url_path: Optional[str] = "url"
    detail_url_template: Optional[str] = None  # e.g. "https://api.example.com/items/{key}"
    title_path: str = "title"
    description_path: str = "description"
    updated_at_path: str = "updated_at"

    # JSON detail payload root (dotted, empty = document root)
    detail_root: str = ""

    # HTML selectors
    item_selector: str = "a.item"
    next_selector: str = "a[rel=next]"
    key_attribute: Optional[str] = None  # defaults to the resolved detail URL
    html_parser: str = "html.parser"  # 'html.parser', 'lxml', or 'html5lib'


class ListingParser(ABC):
    """Parses a listing page into item references and a next link."""

    @abstractmethod
    def parse_listing(self, payload: bytes, page: PageTask) -> ListingPage:
        """
        Raises:
            ParseError: the payload is not a valid listing page
        """
        pass


class DetailParser(ABC):
    """Parses an item's detail payload."""

    @abstractmethod
    def parse_detail(self, payload: bytes, reference: ItemReference) -> ItemDetails:
        """
        Raises:
            ParseError: the payload is not a valid detail document
        """
        pass


def lookup(data: Any, path: Optional[str]) -> Any:
    """Resolve a dotted path ("a.b.0.c") in nested dicts/lists; None if absent."""
    if not path:
        return data
    current = data
    for part in path.split('.'):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
        if current is None:
            return None
    return current


def _load_json(payload: bytes, source: str) -> Any:
    try:
        return json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise ParseError(f"Invalid JSON from {source}: {e}") from e


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _top_level(path: Optional[str]) -> Optional[str]:
    return path.split('.')[0] if path else None


class JsonListingParser(ListingParser):
    """Listing parser for JSON collections."""

    def __init__(self, config: ParserConfig):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self._consumed = {
            _top_level(p) for p in (
                config.key_path, config.detail_url_path, config.title_path,
                config.description_path, config.updated_at_path,
            ) if p
        }

    def parse_listing(self, payload: bytes, page: PageTask) -> ListingPage:
        document = _load_json(payload, page.url)

        items = lookup(document, self.config.items_path)
        if items is None:
            items = []
        if not isinstance(items, list):
            raise ParseError(
                f"'{self.config.items_path}' is not a list on {page.url}"
            )

        references = []
        for position, item in enumerate(items):
            reference = self._build_reference(item, page)
            if reference is None:
                self.logger.warning(f"Skipping unusable item #{position} on {page.url}")
                continue
            references.append(reference)

        next_url = None
        if isinstance(document, dict):
            raw_next = lookup(document, self.config.next_path)
            if isinstance(raw_next, str) and raw_next.strip():
                next_url = urljoin(page.url, raw_next.strip())

        return ListingPage(items=references, next_url=next_url)

    def _build_reference(self, item: Any, page: PageTask) -> Optional[ItemReference]:
        if not isinstance(item, dict):
            return None

        key = lookup(item, self.config.key_path)
        if key is None or key == "":
            return None
        key = str(key)

        detail_url = None
        if self.config.detail_url_path:
            detail_url = _as_text(lookup(item, self.config.detail_url_path))
        if not detail_url and self.config.detail_url_template:
            detail_url = self.config.detail_url_template.format(key=key)
        if not detail_url:
            return None

        attributes = {k: v for k, v in item.items() if k not in self._consumed}

        return ItemReference(
            key=key,
            detail_url=urljoin(page.url, detail_url),
            source_page=page.url,
            title=_as_text(lookup(item, self.config.title_path)),
            description=_as_text(lookup(item, self.config.description_path)),
            updated_at=_as_text(lookup(item, self.config.updated_at_path)),
            attributes=attributes,
        )


class JsonDetailParser(DetailParser):
    """Detail parser for JSON documents."""

    def __init__(self, config: ParserConfig):
        self.config = config
        self._consumed = {
            _top_level(p) for p in (
                config.title_path, config.description_path, config.updated_at_path,
            ) if p
        }

    def parse_detail(self, payload: bytes, reference: ItemReference) -> ItemDetails:
        document = _load_json(payload, reference.detail_url)
        root = lookup(document, self.config.detail_root)
        if not isinstance(root, dict):
            raise ParseError(f"Detail document for '{reference.key}' is not an object")

        return ItemDetails(
            title=_as_text(lookup(root, self.config.title_path)),
            description=_as_text(lookup(root, self.config.description_path)),
            updated_at=_as_text(lookup(root, self.config.updated_at_path)),
            attributes={k: v for k, v in root.items() if k not in self._consumed},
        )


class _SoupMixin:
    """Shared BeautifulSoup construction with parser fallback."""

    def _init_soup(self, config: ParserConfig):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.html_parser = config.html_parser
        try:
            BeautifulSoup("", self.html_parser)
        except FeatureNotFound:
            self.logger.warning(f"Parser '{self.html_parser}' not available, "
                                f"falling back to 'html.parser'")
            self.html_parser = "html.parser"

    def _soup(self, payload: bytes) -> BeautifulSoup:
        return BeautifulSoup(payload, self.html_parser)


class HtmlListingParser(_SoupMixin, ListingParser):
    """Listing parser for server-rendered HTML pages."""

    def __init__(self, config: ParserConfig):
        self.config = config
        self._init_soup(config)

    def parse_listing(self, payload: bytes, page: PageTask) -> ListingPage:
        soup = self._soup(payload)

        references = []
        for tag in soup.select(self.config.item_selector):
            href = (tag.get('href') or '').strip()
            if not href:
                continue
            detail_url = urljoin(page.url, href)

            key = detail_url
            if self.config.key_attribute:
                key = (tag.get(self.config.key_attribute) or '').strip()
                if not key:
                    self.logger.warning(f"Item link {detail_url} has no "
                                        f"'{self.config.key_attribute}' on {page.url}")
                    continue

            attributes = {
                name[len('data-'):]: value
                for name, value in tag.attrs.items()
                if name.startswith('data-') and name != self.config.key_attribute
            }

            references.append(ItemReference(
                key=key,
                detail_url=detail_url,
                source_page=page.url,
                title=tag.get_text(strip=True) or None,
                attributes=attributes,
            ))

        next_url = None
        next_tag = soup.select_one(self.config.next_selector)
        if next_tag is not None and (next_tag.get('href') or '').strip():
            next_url = urljoin(page.url, next_tag['href'].strip())

        return ListingPage(items=references, next_url=next_url)


class HtmlDetailParser(_SoupMixin, DetailParser):
    """Detail parser for HTML item pages: title, description, Open Graph tags."""

    def __init__(self, config: ParserConfig):
        self.config = config
        self._init_soup(config)

    def parse_detail(self, payload: bytes, reference: ItemReference) -> ItemDetails:
        soup = self._soup(payload)
        open_graph = self._extract_open_graph(soup)

        return ItemDetails(
            title=self._extract_title(soup, open_graph),
            description=self._extract_description(soup, open_graph),
            updated_at=self._extract_updated_at(soup),
            attributes={f"og:{name}": value for name, value in open_graph.items()},
        )

    @staticmethod
    def _extract_open_graph(soup: BeautifulSoup) -> Dict[str, str]:
        og_data = {}
        for tag in soup.find_all('meta', property=re.compile(r'^og:')):
            name = tag.get('property', '')[len('og:'):]
            content = (tag.get('content') or '').strip()
            if name and content:
                og_data[name] = content
        return og_data

    @staticmethod
    def _extract_title(soup: BeautifulSoup, open_graph: Dict[str, str]) -> Optional[str]:
        title_tag = soup.find('title')
        if title_tag and title_tag.string and title_tag.string.strip():
            return title_tag.string.strip()
        if open_graph.get('title'):
            return open_graph['title']
        h1_tag = soup.find('h1')
        if h1_tag:
            return h1_tag.get_text(strip=True) or None
        return None

    @staticmethod
    def _extract_description(soup: BeautifulSoup, open_graph: Dict[str, str]) -> Optional[str]:
        meta_desc = soup.find('meta', attrs={'name': 'description'})
        if meta_desc and (meta_desc.get('content') or '').strip():
            return meta_desc['content'].strip()
        return open_graph.get('description')

    @staticmethod
    def _extract_updated_at(soup: BeautifulSoup) -> Optional[str]:
        modified = soup.find('meta', property='article:modified_time')
        if modified and (modified.get('content') or '').strip():
            return modified['content'].strip()
        time_tag = soup.find('time', datetime=True)
        if time_tag:
            return time_tag['datetime'].strip() or None
        return None


def create_parsers(config: ParserConfig) -> Tuple[ListingParser, DetailParser]:
    """Build the listing/detail parser pair for the configured payload format."""
    fmt = config.format.lower()
    if fmt == "json":
        return JsonListingParser(config), JsonDetailParser(config)
    if fmt == "html":
        return HtmlListingParser(config), HtmlDetailParser(config)
    raise ValueError(f"Unknown payload format '{config.format}' "
                     f"(expected one of {', '.join(SUPPORTED_FORMATS)})")
