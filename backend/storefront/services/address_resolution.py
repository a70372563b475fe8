# storefront/services/address_resolution.py
"""
Address Resolution Chain
========================
Turns a free-text delivery address into carrier location identifiers.

Rungs, tried strictly in order, each at most once:

1. Resolved                   country -> locality -> street by name
2. DegradedPlaceholderStreet  locality found, street not: use a generic street
                              the carrier recognizes and put the real address
                              in the shipment notes
3. DegradedMinimal            nothing usable: zero identifiers, the whole
                              address in the notes, flagged for manual handling

A lookup that raises counts as that rung failing. The chain downgrades, it
never repeats a lookup: the country and locality ids found by rung 1 are
reused by rung 2.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Union

from storefront.config import get_settings
from storefront.integrations.base import CarrierConnector, SiteMatch
from storefront.models import ShippingDetails

logger = logging.getLogger(__name__)
settings = get_settings()

_DIGITS = re.compile(r"\d+")


def extract_street_number(street: str, street_number: Optional[str] = None) -> str:
    """Explicit number, else the first digit run in the street, else "1"."""
    if street_number and street_number.strip():
        return street_number.strip()
    match = _DIGITS.search(street or "")
    return match.group(0) if match else "1"


def street_name_without_number(street: str) -> str:
    """Carrier street search key: upper-cased, without a trailing house number or "str." prefix."""
    name = re.sub(r"[,\s]*(nr\.?\s*)?\d+\w*\s*$", "", street or "", flags=re.IGNORECASE)
    name = re.sub(r"^\s*str(ada)?\.?\s+", "", name, flags=re.IGNORECASE)
    return " ".join(name.split()).upper()


@dataclass(frozen=True)
class AddressQuery:
    country: str
    city: str
    street: str
    street_number: str
    postal_code: str = ""
    one_line: str = ""

    @classmethod
    def from_details(cls, details: ShippingDetails) -> "AddressQuery":
        return cls(
            country=settings.DPD_COUNTRY_NAME,
            city=details.city.strip().upper(),
            street=street_name_without_number(details.street),
            street_number=extract_street_number(details.street, details.street_number),
            postal_code=(details.postal_code or "").strip(),
            one_line=details.one_line_address,
        )


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class Resolved:
    country_id: int
    site_id: int
    street_id: int
    street_no: str
    tier: str = field(default="resolved", init=False)
    needs_manual_handling: bool = field(default=False, init=False)

    @property
    def notes(self) -> str:
        return ""

    def recipient_address(self) -> dict:
        return {
            "countryId": self.country_id,
            "siteId": self.site_id,
            "streetId": self.street_id,
            "streetNo": self.street_no,
        }


@dataclass(frozen=True)
class DegradedPlaceholderStreet:
    country_id: int
    site_id: int
    street_id: int
    street_no: str
    placeholder_name: str
    true_address: str
    tier: str = field(default="placeholder_street", init=False)
    needs_manual_handling: bool = field(default=False, init=False)

    @property
    def notes(self) -> str:
        return f"ADRESA REALA: {self.true_address}"

    def recipient_address(self) -> dict:
        return {
            "countryId": self.country_id,
            "siteId": self.site_id,
            "streetId": self.street_id,
            "streetNo": self.street_no,
            "addressNote": self.notes,
        }


@dataclass(frozen=True)
class DegradedMinimal:
    true_address: str
    country_id: int = 0
    tier: str = field(default="minimal", init=False)
    needs_manual_handling: bool = field(default=True, init=False)

    @property
    def notes(self) -> str:
        return f"ADRESA NEREZOLVATA, VERIFICARE MANUALA: {self.true_address}"

    def recipient_address(self) -> dict:
        return {
            "countryId": self.country_id,
            "siteId": 0,
            "streetId": 0,
            "streetNo": "1",
            "addressNote": self.notes,
        }


Resolution = Union[Resolved, DegradedPlaceholderStreet, DegradedMinimal]


# =============================================================================
# Chain
# =============================================================================

def pick_site(sites: List[SiteMatch], postal_code: str) -> Optional[SiteMatch]:
    """Single match wins; several matches are disambiguated by postal code."""
    if not sites:
        return None
    if len(sites) == 1 or not postal_code:
        return sites[0]
    for site in sites:
        if site.post_code and site.post_code == postal_code:
            return site
    # Same delivery area shares the leading digits
    for site in sites:
        if site.post_code and site.post_code[:4] == postal_code[:4]:
            return site
    return sites[0]


@dataclass
class _LookupState:
    country_id: Optional[int] = None
    site_id: Optional[int] = None


class AddressResolutionChain:
    """Yields resolutions in fallback order; the caller stops at the first one it can use."""

    def __init__(self, carrier: CarrierConnector, placeholder_streets: Optional[List[str]] = None):
        self.carrier = carrier
        self.placeholder_streets = placeholder_streets or list(settings.DPD_PLACEHOLDER_STREETS)

    async def resolutions(self, query: AddressQuery) -> AsyncIterator[Resolution]:
        state = _LookupState()

        resolved = await self._resolve_full(query, state)
        if resolved is not None:
            yield resolved

        placeholder = await self._resolve_placeholder(query, state)
        if placeholder is not None:
            yield placeholder

        logger.warning(f"⚠️ Address '{query.one_line}' needs manual handling")
        yield DegradedMinimal(true_address=query.one_line, country_id=state.country_id or 0)

    async def _resolve_full(self, query: AddressQuery, state: _LookupState) -> Optional[Resolved]:
        try:
            state.country_id = await self.carrier.find_country(query.country)
            if state.country_id is None:
                logger.warning(f"Country '{query.country}' not found by carrier")
                return None

            site = pick_site(
                await self.carrier.find_sites(state.country_id, query.city),
                query.postal_code,
            )
            if site is None:
                logger.warning(f"Locality '{query.city}' not found by carrier")
                return None
            state.site_id = site.site_id

            if not query.street:
                return None
            street_id = await self.carrier.find_street(site.site_id, query.street)
            if street_id is None:
                logger.info(f"Street '{query.street}' not found in {query.city}, trying placeholder streets")
                return None
        except Exception as e:
            logger.warning(f"Address lookup failed for '{query.one_line}': {e}")
            return None

        return Resolved(
            country_id=state.country_id,
            site_id=site.site_id,
            street_id=street_id,
            street_no=query.street_number,
        )

    async def _resolve_placeholder(
        self, query: AddressQuery, state: _LookupState
    ) -> Optional[DegradedPlaceholderStreet]:
        if state.country_id is None or state.site_id is None:
            return None

        for name in self.placeholder_streets:
            try:
                street_id = await self.carrier.find_street(state.site_id, name)
            except Exception as e:
                logger.warning(f"Placeholder street lookup failed: {e}")
                return None
            if street_id is not None:
                logger.info(f"Using placeholder street '{name}' for '{query.one_line}'")
                return DegradedPlaceholderStreet(
                    country_id=state.country_id,
                    site_id=state.site_id,
                    street_id=street_id,
                    street_no=query.street_number,
                    placeholder_name=name,
                    true_address=query.one_line,
                )
        return None
