"""Bilingual geocoding of incident locations."""

import hashlib
import logging
import re
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import GeocodingError
from ..models import Coordinates, Location

logger = logging.getLogger(__name__)

_NEIGHBORHOOD_WORDS = re.compile(r"\bneighborhood\b|(?<!\S)\u062d\u064a(?!\S)", re.IGNORECASE)


@dataclass
class GeoCandidate:
    """One geocoder result."""
    lat: float
    lon: float
    quality: float = 0.5

    def to_coordinates(self) -> Coordinates:
        return Coordinates(lon=self.lon, lat=self.lat)


# resolve(place_name, admin_division, language) -> candidates, best first
Resolver = Callable[[str, str, str], List[GeoCandidate]]


class GeocodingBudget:
    """Caps the number of resolver calls; ``reset()`` starts a new allowance."""

    def __init__(self, max_calls: Optional[int] = None):
        self.max_calls = max_calls
        self.used = 0
        self._lock = threading.Lock()

    @property
    def remaining(self) -> Optional[int]:
        if self.max_calls is None:
            return None
        return max(0, self.max_calls - self.used)

    def consume(self) -> bool:
        """Take one call from the budget. False when exhausted."""
        with self._lock:
            if self.max_calls is not None and self.used >= self.max_calls:
                return False
            self.used += 1
            return True

    def reset(self):
        with self._lock:
            self.used = 0


def clean_place_name(name: str) -> str:
    return " ".join(_NEIGHBORHOOD_WORDS.sub(" ", name or "").split())


def cache_key(place_name: str, admin_division: str, language: str) -> str:
    normalized = f"{clean_place_name(place_name).lower()}_{(admin_division or '').lower().strip()}_{language}"
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()


class GeocodingService:
    """
    Resolves coordinates for a location from its English and Arabic names.

    Both populated languages are tried; the first result with the higher
    quality wins and Arabic wins ties. Results are cached per
    (name, division, language).
    """

    def __init__(
        self,
        resolver: Resolver,
        budget: Optional[GeocodingBudget] = None,
        cache: Optional[Dict[str, List[GeoCandidate]]] = None,
    ):
        self.resolver = resolver
        self.budget = budget or GeocodingBudget()
        self.cache = cache if cache is not None else {}
        self.stats = {"cache_hits": 0, "resolver_calls": 0, "failures": 0}

    def lookup(self, place_name: str, admin_division: str, language: str) -> List[GeoCandidate]:
        key = cache_key(place_name, admin_division, language)
        if key in self.cache:
            self.stats["cache_hits"] += 1
            return self.cache[key]

        if not self.budget.consume():
            raise GeocodingError(
                f"Geocoding budget of {self.budget.max_calls} call(s) exhausted",
                place_name=place_name,
            )

        self.stats["resolver_calls"] += 1
        results = list(self.resolver(clean_place_name(place_name), admin_division, language))
        if results:
            self.cache[key] = results
        return results

    def resolve_location(self, location: Location) -> Coordinates:
        """Coordinates for ``location``.

        Raises:
            GeocodingError: If no language yields a result.
        """
        attempts: Dict[str, str] = {}
        found: Dict[str, GeoCandidate] = {}

        for language in ("ar", "en"):
            name = location.name.get(language)
            if not name:
                continue
            division = location.administrative_division.get(language)
            try:
                results = self.lookup(name, division, language)
            except GeocodingError:
                raise
            except Exception as e:
                attempts[language] = str(e)
                logger.warning(f"Geocoding '{name}' ({language}) failed: {e}")
                continue
            if results:
                found[language] = results[0]
            else:
                attempts[language] = "no results"

        best = self._pick(found)
        if best is None:
            self.stats["failures"] += 1
            tried = ", ".join(f"{lang}={location.name.get(lang)!r}" for lang in ("ar", "en") if location.name.get(lang))
            raise GeocodingError(
                f"Could not find coordinates for location (tried {tried})",
                place_name=location.name.en,
                attempts=attempts,
            )

        language, candidate = best
        logger.info(f"📍 Geocoded '{location.name.en}' using {language} result (quality {candidate.quality})")
        return candidate.to_coordinates()

    @staticmethod
    def _pick(found: Dict[str, GeoCandidate]) -> Optional[Tuple[str, GeoCandidate]]:
        if "ar" in found and "en" in found:
            if found["ar"].quality >= found["en"].quality:
                return "ar", found["ar"]
            return "en", found["en"]
        for language in ("ar", "en"):
            if language in found:
                return language, found[language]
        return None
