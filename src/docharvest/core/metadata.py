"""
Document metadata schema and provenance tagging.

Backends emit a DocumentMetadata: typed fields for the keys the extraction
policy reads or writes (content type, page count, producing backend) and a
pass-through mapping for everything else a parser reports (title, author,
sheet names, OCR strategy, ...). Instances are immutable; every change
returns a new instance.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from .constants import CONTENT_TYPE_KEY, PAGE_COUNT_KEY, PARSED_BY_KEY

__all__ = ["DocumentMetadata", "page_count_of", "tag_provenance"]

_KNOWN_KEYS = frozenset({CONTENT_TYPE_KEY, PAGE_COUNT_KEY, PARSED_BY_KEY})


@dataclass(frozen=True)
class DocumentMetadata:
    """Metadata for one backend invocation."""
    content_type: Optional[str] = None
    page_count: Optional[int] = None
    parsed_by: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DocumentMetadata":
        """Split a flat mapping into the known fields and the pass-through extras."""
        page_count = data.get(PAGE_COUNT_KEY)
        return cls(
            content_type=data.get(CONTENT_TYPE_KEY),
            page_count=int(page_count) if page_count is not None else None,
            parsed_by=data.get(PARSED_BY_KEY),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )

    def with_extra(self, **values: Any) -> "DocumentMetadata":
        return replace(self, extra={**self.extra, **values})

    def to_dict(self) -> dict[str, Any]:
        """Flatten into the wire mapping (string keys, None values dropped)."""
        data = {k: v for k, v in self.extra.items() if v is not None}
        if self.content_type is not None:
            data[CONTENT_TYPE_KEY] = self.content_type
        if self.page_count is not None:
            data[PAGE_COUNT_KEY] = self.page_count
        if self.parsed_by is not None:
            data[PARSED_BY_KEY] = self.parsed_by
        return data


def page_count_of(metadata: Union[DocumentMetadata, Mapping[str, Any], None]) -> Optional[int]:
    """Page count reported by a parser, or None if it did not report one."""
    if metadata is None:
        return None
    if isinstance(metadata, DocumentMetadata):
        return metadata.page_count
    value = metadata.get(PAGE_COUNT_KEY)
    return int(value) if value is not None else None


def tag_provenance(metadata: DocumentMetadata, backend_id: Any) -> DocumentMetadata:
    """Return a copy of ``metadata`` attributed to ``backend_id`` (overwrites any previous tag)."""
    return replace(metadata, parsed_by=str(getattr(backend_id, "value", backend_id)))
