"""Canonical country names for provider answers."""

from __future__ import annotations

from typing import Dict, Optional

# Provider spelling -> canonical name used throughout the cache and analytics.
COUNTRY_ALIASES: Dict[str, str] = {
    "United States of America": "United States",
    "USA": "United States",
    "US": "United States",
    "U.S.": "United States",
    "U.S.A.": "United States",
    "United Kingdom of Great Britain and Northern Ireland": "United Kingdom",
    "UK": "United Kingdom",
    "Britain": "United Kingdom",
    "Great Britain": "United Kingdom",
    "England": "United Kingdom",
    "Scotland": "United Kingdom",
    "Wales": "United Kingdom",
    "Northern Ireland": "United Kingdom",
    "Russia": "Russian Federation",
    "South Korea": "Republic of Korea",
    "North Korea": "Democratic People's Republic of Korea",
    "Czech Republic": "Czechia",
    "Burma": "Myanmar",
    "Swaziland": "Eswatini",
    "Ivory Coast": "Côte d'Ivoire",
    "Cape Verde": "Cabo Verde",
    "East Timor": "Timor-Leste",
    "Macedonia": "North Macedonia",
    "Iran": "Islamic Republic of Iran",
    "Syria": "Syrian Arab Republic",
    "Moldova": "Republic of Moldova",
    "Vatican": "Holy See",
    "Palestine": "State of Palestine",
    "Taiwan": "Taiwan, Province of China",
    "Congo": "Democratic Republic of the Congo",
}

_CASEFOLDED: Dict[str, str] = {
    alias.casefold(): canonical for alias, canonical in COUNTRY_ALIASES.items()
}


def normalize_country_name(country: Optional[str]) -> Optional[str]:
    """Map a provider country name to its canonical form.

    Unknown names are returned stripped but otherwise unchanged; blank input
    yields None.
    """

    if country is None:
        return None
    cleaned = country.strip()
    if not cleaned:
        return None
    return COUNTRY_ALIASES.get(cleaned) or _CASEFOLDED.get(cleaned.casefold(), cleaned)


__all__ = ["COUNTRY_ALIASES", "normalize_country_name"]
