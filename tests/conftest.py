from __future__ import annotations

import pytest

from estate_import.common.deterministic import compute_fingerprint
from estate_import.common.models import Listing, PropertyCategory


def build_listing(external_id: str = "1001", title: str = "Bilocale", price_sale=250000) -> Listing:
    return Listing(
        external_id=external_id,
        title=title,
        description=None,
        price_sale=price_sale,
        price_rent=None,
        area_sqm=None,
        room_count=None,
        bathroom_count=None,
        region="TN",
        locality=None,
        category_code=11,
        category=PropertyCategory.APARTMENT,
        features=frozenset(),
        derived_metrics={},
        attachments=(),
        content_fingerprint=compute_fingerprint(external_id, title, price_sale, None, None),
    )


@pytest.fixture()
def make_listing():
    return build_listing
