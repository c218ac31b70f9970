"""Shared fixtures for the deals dashboard tests."""

import itertools

import pytest

from models.deal_models import Deal

_ids = itertools.count(1)


def build_deal(**fields) -> Deal:
    """Deal from python field names, with id / name filled in when omitted."""
    n = next(_ids)
    fields.setdefault("id", f"d{n}")
    fields.setdefault("name", f"Deal {n}")
    return Deal(**fields)


@pytest.fixture
def make_deal():
    return build_deal


@pytest.fixture
def pipeline_deals():
    """A small mixed book: two brokers, three sources, settled / lost / open."""
    return [
        build_deal(
            id="a1", name="Harbour Refi", broker_name="Amy", value=500_000,
            enquiry_leads="2025-06-02", opportunity="2025-06-03",
            application="2025-06-04", settled="2025-06-06",
            latest_date="2025-06-06", created_time="2025-06-02",
            from_rednote=True,
        ),
        build_deal(
            id="a2", name="Bondi Purchase", broker_name="Amy", value=0,
            enquiry_leads="2025-06-03", latest_date="2025-06-03",
            created_time="2025-06-03",
        ),
        build_deal(
            id="j1", name="Parramatta Build", broker_name="Jo", value=300_000,
            enquiry_leads="2025-06-02", opportunity="2025-06-04",
            status="Lost", lost_date="2025-06-05", lost_reason="Rate too high",
            lost_from_process="Opportunity",
            latest_date="2025-06-05", created_time="2025-06-02",
            from_lifex=True,
        ),
        build_deal(
            id="j2", name="Manly Investment", broker_name="Jo", value=250_000,
            enquiry_leads="2025-06-09", opportunity="2025-06-10",
            application="2025-06-11", assessment="2025-06-12",
            latest_date="2025-06-12", created_time="2025-06-09",
        ),
    ]
