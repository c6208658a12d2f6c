import json
import logging
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from portfolio_allocator.core.models import Signal, Stock, Strategy

logger = logging.getLogger(__name__)


class CatalogSeed(BaseModel):
    strategies: List[Strategy] = Field(default_factory=list)
    stocks: List[Stock] = Field(default_factory=list)
    signals: List[Signal] = Field(default_factory=list)


def parse_catalog_seed(catalog_json: Optional[str]) -> CatalogSeed:
    """
    Parses a JSON catalog of strategies, stocks and signals.

    Blank input yields an empty catalog. Malformed input is logged and ignored so a bad
    seed never prevents the service from starting.
    """
    normalized_json = (catalog_json or "").strip()
    if not normalized_json:
        return CatalogSeed()
    try:
        raw = json.loads(normalized_json)
    except json.JSONDecodeError as exc:
        logger.warning("catalog.seed_invalid_json", extra={"extra_fields": {"error": str(exc)}})
        return CatalogSeed()
    if not isinstance(raw, dict):
        logger.warning("catalog.seed_not_an_object")
        return CatalogSeed()
    try:
        return CatalogSeed.model_validate(raw)
    except ValidationError as exc:
        logger.warning(
            "catalog.seed_invalid",
            extra={"extra_fields": {"error_count": exc.error_count()}},
        )
        return CatalogSeed()
