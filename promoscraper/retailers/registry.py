"""Retailer-keyed lookup of extraction strategies."""

from __future__ import annotations

from promoscraper.errors import ConfigError
from promoscraper.retailers.albert_heijn import AlbertHeijnExtractor
from promoscraper.retailers.base import ExtractionProtocol
from promoscraper.retailers.dirk import DirkExtractor
from promoscraper.retailers.plus import PlusExtractor

EXTRACTORS: dict[str, type] = {
    AlbertHeijnExtractor.key: AlbertHeijnExtractor,
    DirkExtractor.key: DirkExtractor,
    PlusExtractor.key: PlusExtractor,
}


def get_extractor(key: str) -> ExtractionProtocol:
    """Return a fresh extractor for registry *key* (``albert-heijn``, ``dirk``, ``plus``)."""

    try:
        factory = EXTRACTORS[(key or "").strip().lower()]
    except KeyError:
        known = ", ".join(sorted(EXTRACTORS))
        raise ConfigError(f"No extractor registered for {key!r}. Known extractors: {known}") from None
    return factory()
