"""Data models used across the pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from estate_import.common.coerce import Number


class PropertyCategory(str, Enum):
    HOUSE = "house"
    APARTMENT = "apartment"
    PENTHOUSE = "penthouse"
    VILLA = "villa"
    LAND = "land"
    COMMERCIAL = "commercial"
    OFFICE = "office"
    GARAGE = "garage"
    PROPERTY = "property"


class DuplicatePolicy(str, Enum):
    UPDATE = "update"
    SKIP = "skip"
    FORCE_NEW = "force_new"


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class Attachment:
    id: str | None
    type: str | None
    url: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RawRecord:
    """One source record, alive only between its start and end tag."""

    scalar_fields: dict[str, str] = field(default_factory=dict)
    flags: dict[int, int] = field(default_factory=dict)
    metrics: dict[int, Number] = field(default_factory=dict)
    attachments: list[Attachment] = field(default_factory=list)


@dataclass(frozen=True)
class Listing:
    external_id: str
    title: str
    description: str | None
    price_sale: Number | None
    price_rent: Number | None
    area_sqm: int | None
    room_count: int | None
    bathroom_count: int | None
    region: str | None
    locality: str | None
    category_code: int
    category: PropertyCategory
    features: frozenset[str]
    derived_metrics: dict[str, Number]
    attachments: tuple[Attachment, ...]
    content_fingerprint: str
    listing_type: str = "unknown"
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    filtered: bool = False
    extra: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "external_id": self.external_id,
            "title": self.title,
            "description": self.description,
            "price_sale": self.price_sale,
            "price_rent": self.price_rent,
            "area_sqm": self.area_sqm,
            "room_count": self.room_count,
            "bathroom_count": self.bathroom_count,
            "region": self.region,
            "locality": self.locality,
            "category_code": self.category_code,
            "category": self.category.value,
            "features": sorted(self.features),
            "derived_metrics": dict(sorted(self.derived_metrics.items())),
            "attachments": [attachment.to_dict() for attachment in self.attachments],
            "content_fingerprint": self.content_fingerprint,
            "listing_type": self.listing_type,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "extra": dict(sorted(self.extra.items())),
        }
