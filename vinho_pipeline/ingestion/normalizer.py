"""
Label Normalizer Module
=======================

Cleans extracted label fields and builds the normalized keys used for
catalog uniqueness and name matching.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any

from vinho_pipeline.core.schema import ExtractedLabel

NON_VINTAGE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\bNV\b", re.IGNORECASE),
    re.compile(r"non[- ]?vintage", re.IGNORECASE),
    re.compile(r"multi[- ]?vintage", re.IGNORECASE),
    re.compile(r"\bsolera\b", re.IGNORECASE),
    re.compile(r"\bperpetual\b", re.IGNORECASE),
]

_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


def normalize_key(value: str | None) -> str:
    """
    Fold a name into its matching key.

    Case-folds, strips accents and punctuation, and collapses whitespace,
    so "Quinta da Villa-Oliveira" and "quinta da villa oliveira" share a key.
    """
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    no_punct = _PUNCTUATION.sub(" ", stripped.casefold())
    key = _WHITESPACE.sub(" ", no_punct).strip()
    # Names made only of punctuation still need a non-empty key.
    return key or value.strip().casefold()


def names_overlap(a: str | None, b: str | None) -> bool:
    """True if either name's key is contained in the other's."""
    key_a = normalize_key(a)
    key_b = normalize_key(b)
    if not key_a or not key_b:
        return False
    return key_a in key_b or key_b in key_a


def region_key(name: str, country: str) -> str:
    """Unique key for a (region, country) pair."""
    return f"{normalize_key(name)}|{normalize_key(country)}"


def is_non_vintage_name(name: str | None) -> bool:
    """Whether a wine name marks a non-vintage bottling."""
    if not name:
        return False
    return any(pattern.search(name) for pattern in NON_VINTAGE_PATTERNS)


@dataclass
class NormalizedLabel:
    """
    Cleaned label fields ready for entity resolution.
    """

    producer_name: str
    wine_name: str
    year: int | None = None
    region: str | None = None
    country: str | None = None
    varietals: list[str] = field(default_factory=list)
    abv: float | None = None
    confidence: float = 0.0

    @property
    def is_non_vintage(self) -> bool:
        return self.year is None and is_non_vintage_name(self.wine_name)


class LabelNormalizer:
    """
    Normalizes extracted label data into canonical forms.

    Handles:
    - Region aliases (e.g., "dao" -> "Dão")
    - Grape varietal aliases (e.g., "cab" -> "Cabernet Sauvignon")
    - Country aliases (e.g., "USA" -> "United States")
    - ABV sanity bounds
    """

    REGION_ALIASES: dict[str, str] = {
        # Portugal
        "dao": "Dão",
        "douro": "Douro",
        "alentejo": "Alentejo",
        "vinho verde": "Vinho Verde",
        "bairrada": "Bairrada",
        "porto": "Porto",
        "port": "Porto",
        # France
        "burgundy": "Bourgogne",
        "bourgogne": "Bourgogne",
        "bordeaux": "Bordeaux",
        "champagne": "Champagne",
        "rhone": "Rhône",
        "rhone valley": "Rhône",
        "loire valley": "Loire",
        "saint emilion": "Saint-Émilion",
        "st emilion": "Saint-Émilion",
        # Italy
        "piedmont": "Piemonte",
        "tuscany": "Toscana",
        "sicily": "Sicilia",
        # Spain
        "rioja": "Rioja",
        "ribera del duero": "Ribera del Duero",
        "jerez": "Jerez",
        "sherry": "Jerez",
        # New World
        "napa": "Napa Valley",
        "sonoma county": "Sonoma",
        "barossa": "Barossa Valley",
        "maipo": "Maipo Valley",
        "hawkes bay": "Hawke's Bay",
    }

    GRAPE_ALIASES: dict[str, str] = {
        "cab": "Cabernet Sauvignon",
        "cab sauv": "Cabernet Sauvignon",
        "cabernet": "Cabernet Sauvignon",
        "cab franc": "Cabernet Franc",
        "pinot": "Pinot Noir",
        "shiraz": "Syrah",
        "grenache": "Grenache",
        "garnacha": "Grenache",
        "tempranillo": "Tempranillo",
        "tinta roriz": "Tempranillo",
        "aragonez": "Tempranillo",
        "touriga nacional": "Touriga Nacional",
        "touriga": "Touriga Nacional",
        "jaen": "Jaen",
        "mencia": "Jaen",
        "alfrocheiro": "Alfrocheiro",
        "encruzado": "Encruzado",
        "sauv blanc": "Sauvignon Blanc",
        "pinot grigio": "Pinot Gris",
        "chard": "Chardonnay",
        "riesling": "Riesling",
    }

    COUNTRY_ALIASES: dict[str, str] = {
        "usa": "United States",
        "us": "United States",
        "united states of america": "United States",
        "uk": "United Kingdom",
        "portugal": "Portugal",
        "france": "France",
        "italia": "Italy",
        "espana": "Spain",
        "deutschland": "Germany",
    }

    def normalize_label(self, label: ExtractedLabel) -> NormalizedLabel:
        """
        Normalize an extracted label.

        Args:
            label: Fields read off the label by the extractor

        Returns:
            NormalizedLabel with cleaned names and canonical aliases applied
        """
        return NormalizedLabel(
            producer_name=self._clean_string(label.winery_name) or label.winery_name,
            wine_name=self._clean_string(label.wine_name) or label.wine_name,
            year=label.year,
            region=self.normalize_region(label.region),
            country=self.normalize_country(label.country),
            varietals=self.normalize_grapes(label.varietals),
            abv=self.parse_abv(label.abv_percent),
            confidence=label.confidence,
        )

    def _clean_string(self, value: Any) -> str | None:
        """Trim and collapse whitespace."""
        if value is None:
            return None
        s = _WHITESPACE.sub(" ", str(value).strip())
        return s if s else None

    def normalize_region(self, region: str | None) -> str | None:
        """
        Normalize a region name to its canonical form.

        Args:
            region: Raw region name

        Returns:
            Canonical region name, or the cleaned original if no alias exists
        """
        cleaned = self._clean_string(region)
        if cleaned is None:
            return None
        return self.REGION_ALIASES.get(normalize_key(cleaned), cleaned)

    def normalize_country(self, country: str | None) -> str | None:
        cleaned = self._clean_string(country)
        if cleaned is None:
            return None
        return self.COUNTRY_ALIASES.get(normalize_key(cleaned), cleaned)

    def normalize_grapes(self, grapes: list[str] | str | None) -> list[str]:
        """
        Normalize grape varietal names, dropping duplicates.

        Args:
            grapes: List of grapes, comma-separated string, or None

        Returns:
            List of canonical grape names in label order
        """
        if grapes is None:
            return []
        if isinstance(grapes, str):
            grapes = re.split(r"[,;/&]|\band\b", grapes)

        normalized: list[str] = []
        seen: set[str] = set()
        for grape in grapes:
            cleaned = self._clean_string(grape)
            if not cleaned:
                continue
            canonical = self.GRAPE_ALIASES.get(normalize_key(cleaned), cleaned)
            key = normalize_key(canonical)
            if key not in seen:
                seen.add(key)
                normalized.append(canonical)
        return normalized

    def parse_abv(self, abv: float | int | str | None) -> float | None:
        """
        Parse ABV, rejecting values outside 0-25%.

        Args:
            abv: ABV value (e.g., "13.5%", 13.5)

        Returns:
            ABV as float, or None if missing or implausible
        """
        if abv is None:
            return None
        try:
            value = float(str(abv).replace("%", "").strip())
        except ValueError:
            return None
        return value if 0 < value <= 25 else None
