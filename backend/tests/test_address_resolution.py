# backend/tests/test_address_resolution.py
"""
Tests for the address resolution ladder.
"""

from contextlib import aclosing

import pytest

from storefront.exceptions import CarrierError
from storefront.integrations.base import SiteMatch
from storefront.models import ShippingDetails
from storefront.services.address_resolution import (
    AddressQuery,
    AddressResolutionChain,
    DegradedMinimal,
    DegradedPlaceholderStreet,
    Resolved,
    extract_street_number,
    pick_site,
    street_name_without_number,
)


def query(street="LALELELOR", city="BUCURESTI", number="5", postal="010011"):
    return AddressQuery(
        country="ROMANIA",
        city=city,
        street=street,
        street_number=number,
        postal_code=postal,
        one_line=f"Str. {street.title()} {number}, {city.title()}, {postal}",
    )


async def first_rung(chain, q):
    """The rung the provisioner tries first."""
    async with aclosing(chain.resolutions(q)) as ladder:
        async for resolution in ladder:
            return resolution


# =============================================================================
# Parsing helpers
# =============================================================================

@pytest.mark.parametrize("street, explicit, expected", [
    ("Strada Lalelelor 5", None, "5"),
    ("Bd. Unirii nr. 12A", None, "12"),
    ("Aleea Florilor", None, "1"),
    ("Strada Lalelelor 5", "7B", "7B"),
    ("Strada Lalelelor", "  ", "1"),
])
def test_extract_street_number(street, explicit, expected):
    assert extract_street_number(street, explicit) == expected


@pytest.mark.parametrize("street, expected", [
    ("Strada Lalelelor 5", "LALELELOR"),
    ("str. Mihai Viteazu nr. 10", "MIHAI VITEAZU"),
    ("Bulevardul 1 Decembrie 1918", "BULEVARDUL 1 DECEMBRIE"),
    ("Aleea Florilor", "ALEEA FLORILOR"),
])
def test_street_name_without_number(street, expected):
    assert street_name_without_number(street) == expected


def test_query_from_details():
    details = ShippingDetails(
        street="Strada Lalelelor 5",
        city="Cluj-Napoca",
        county="Cluj",
        postal_code="400001",
        country="Romania",
    )

    q = AddressQuery.from_details(details)

    assert q.country == "ROMANIA"
    assert q.city == "CLUJ-NAPOCA"
    assert q.street == "LALELELOR"
    assert q.street_number == "5"
    assert q.one_line == "Strada Lalelelor 5, Cluj-Napoca, Cluj, 400001, Romania"


def test_pick_site_disambiguates_by_postal_code():
    sites = [
        SiteMatch(site_id=1, name="SALCIA", post_code="227400"),
        SiteMatch(site_id=2, name="SALCIA", post_code="117620"),
        SiteMatch(site_id=3, name="SALCIA", post_code="117999"),
    ]

    assert pick_site(sites, "117620").site_id == 2
    assert pick_site(sites, "117655").site_id == 2
    assert pick_site(sites, "999999").site_id == 1
    assert pick_site([], "117620") is None
    assert pick_site(sites[2:], "000000").site_id == 3


# =============================================================================
# Ladder
# =============================================================================

@pytest.mark.asyncio
async def test_known_street_resolves_fully(carrier):
    resolution = await first_rung(AddressResolutionChain(carrier), query())

    assert isinstance(resolution, Resolved)
    assert resolution.recipient_address() == {
        "countryId": 642, "siteId": 1, "streetId": 100, "streetNo": "5",
    }
    assert resolution.notes == ""
    assert resolution.needs_manual_handling is False


@pytest.mark.asyncio
async def test_unknown_street_falls_back_to_placeholder(carrier):
    """Locality found, street not: generic street, real address in the notes, no exception."""
    q = query(street="INEXISTENTA", number="17")

    resolution = await first_rung(AddressResolutionChain(carrier, ["CENTRALA", "PRINCIPALA"]), q)

    assert isinstance(resolution, DegradedPlaceholderStreet)
    assert resolution.placeholder_name == "PRINCIPALA"
    assert resolution.street_id == 200
    assert resolution.street_no == "17"
    assert q.one_line in resolution.notes
    assert resolution.recipient_address()["addressNote"] == resolution.notes
    assert resolution.needs_manual_handling is False


@pytest.mark.asyncio
async def test_placeholder_rung_reuses_locality_lookup(carrier):
    await first_rung(AddressResolutionChain(carrier, ["PRINCIPALA"]), query(street="INEXISTENTA"))

    assert [kind for kind, _ in carrier.lookups] == ["country", "site", "street", "street"]


@pytest.mark.asyncio
async def test_unknown_locality_degrades_to_minimal(carrier):
    q = query(city="SATU NOU")

    resolution = await first_rung(AddressResolutionChain(carrier), q)

    assert isinstance(resolution, DegradedMinimal)
    assert resolution.needs_manual_handling is True
    assert resolution.country_id == 642
    address = resolution.recipient_address()
    assert address["siteId"] == 0 and address["streetId"] == 0
    assert q.one_line in address["addressNote"]


@pytest.mark.asyncio
async def test_lookup_exception_counts_as_rung_failure(carrier):
    async def broken(country_id, name):
        raise CarrierError("DPD location API down", status_code=503)

    carrier.find_sites = broken

    resolution = await first_rung(AddressResolutionChain(carrier), query())

    assert isinstance(resolution, DegradedMinimal)


@pytest.mark.asyncio
async def test_resolutions_yield_each_rung_in_order(carrier):
    chain = AddressResolutionChain(carrier, ["PRINCIPALA"])

    tiers = [r.tier async for r in chain.resolutions(query())]

    assert tiers == ["resolved", "placeholder_street", "minimal"]
