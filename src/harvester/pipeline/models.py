"""
Pipeline Data Model - Units of work that flow between the harvest stages
File: src/harvester/pipeline/models.py
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Mapping


@dataclass(frozen=True)
class PageTask:
    """One page of the paginated listing. Consumed exactly once."""
    url: str
    depth: int = 0
    parent_url: Optional[str] = None

    def next_page(self, url: str) -> "PageTask":
        """Create the task for the page linked as 'next' from this one."""
        return PageTask(url=url, depth=self.depth + 1, parent_url=self.url)


@dataclass(frozen=True)
class ItemReference:
    """
    Pointer to one collection member as seen on a listing page.
    Carries whatever attributes the listing already exposes.
    """
    key: str
    detail_url: str
    source_page: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    updated_at: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class ItemDetails:
    """Attributes parsed from an item's detail payload."""
    title: Optional[str] = None
    description: Optional[str] = None
    updated_at: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ListingPage:
    """Result of parsing one listing page."""
    items: List[ItemReference] = field(default_factory=list)
    next_url: Optional[str] = None


@dataclass(frozen=True)
class Record:
    """Fully resolved entity: listing attributes merged with detail attributes."""
    key: str
    detail_url: str
    source_page: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    updated_at: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    fetched_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage/serialization"""
        return {
            'key': self.key,
            'detail_url': self.detail_url,
            'source_page': self.source_page,
            'title': self.title,
            'description': self.description,
            'updated_at': self.updated_at,
            'attributes': dict(self.attributes),
            'fetched_at': self.fetched_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Record":
        return cls(
            key=str(data['key']),
            detail_url=str(data['detail_url']),
            source_page=data.get('source_page'),
            title=data.get('title'),
            description=data.get('description'),
            updated_at=data.get('updated_at'),
            attributes=dict(data.get('attributes') or {}),
            fetched_at=data.get('fetched_at'),
        )

    def __repr__(self) -> str:
        return f"Record(key='{self.key}', title={self.title!r})"


def _prefer(detail_value: Optional[Any], listing_value: Optional[Any]) -> Optional[Any]:
    return detail_value if detail_value is not None else listing_value


def merge_record(reference: ItemReference, details: ItemDetails,
                 fetched_at: Optional[str] = None) -> Record:
    """
    Merge listing and detail attributes into a Record.

    The detail fetch is the source of truth: every detail value that is not
    None replaces the listing value, and detail attributes override listing
    attributes with the same name. Identity fields (key, detail_url,
    source_page) always come from the reference.

    Args:
        reference: Item as seen on the listing page
        details: Attributes parsed from the detail payload
        fetched_at: ISO timestamp of the detail fetch (defaults to now, UTC)

    Returns:
        Merged Record
    """
    attributes = dict(reference.attributes)
    attributes.update(details.attributes)

    if fetched_at is None:
        fetched_at = datetime.now(timezone.utc).isoformat()

    return Record(
        key=reference.key,
        detail_url=reference.detail_url,
        source_page=reference.source_page,
        title=_prefer(details.title, reference.title),
        description=_prefer(details.description, reference.description),
        updated_at=_prefer(details.updated_at, reference.updated_at),
        attributes=attributes,
        fetched_at=fetched_at,
    )
