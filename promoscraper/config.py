"""Application settings and retailer scrape-target configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from promoscraper.discovery import HEADING_TEXT_PREFIX, heading_text
from promoscraper.errors import ConfigError, UnknownRetailerError
from promoscraper.logging_config import get_logger

LOGGER = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/retailers.yml")
_FALSE_VALUES = {"0", "false", "no", "off"}


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in _FALSE_VALUES


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        LOGGER.warning("Ignoring non-integer value for %s: %r", name, raw)
        return default


@dataclass(frozen=True)
class Settings:
    """Process-wide settings resolved from the environment."""

    database_url: str = "sqlite:///promoscraper.sqlite"
    config_path: Path = DEFAULT_CONFIG_PATH
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    scheduler_interval_minutes: int = 1
    recent_run_window_minutes: int = 60
    scheduler_retry_attempts: int = 1
    allow_empty_reconcile: bool = False
    healthcheck_url: str | None = None
    cookie_timeout_ms: int = 30000
    selector_timeout_ms: int = 30000
    navigation_timeout_ms: int = 60000


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from *env* (defaults to ``os.environ``)."""

    env = os.environ if env is None else env
    return Settings(
        database_url=env.get("PROMOSCRAPER_DATABASE_URL") or Settings.database_url,
        config_path=Path(env.get("PROMOSCRAPER_CONFIG") or DEFAULT_CONFIG_PATH),
        api_host=env.get("API_HOST") or Settings.api_host,
        api_port=_env_int(env, "API_PORT", Settings.api_port),
        scheduler_interval_minutes=max(1, _env_int(env, "PROMOSCRAPER_SCHEDULER_INTERVAL_MINUTES", 1)),
        recent_run_window_minutes=max(0, _env_int(env, "PROMOSCRAPER_RECENT_RUN_WINDOW_MINUTES", 60)),
        scheduler_retry_attempts=max(1, _env_int(env, "PROMOSCRAPER_SCHEDULER_RETRY_ATTEMPTS", 1)),
        allow_empty_reconcile=_as_bool(env.get("PROMOSCRAPER_ALLOW_EMPTY_RECONCILE"), False),
        healthcheck_url=(env.get("HEALTHCHECK_URL") or "").strip() or None,
        cookie_timeout_ms=_env_int(env, "PROMOSCRAPER_COOKIE_TIMEOUT_MS", 30000),
        selector_timeout_ms=_env_int(env, "PROMOSCRAPER_SELECTOR_TIMEOUT_MS", 30000),
        navigation_timeout_ms=_env_int(env, "PROMOSCRAPER_NAVIGATION_TIMEOUT_MS", 60000),
    )


@dataclass(frozen=True)
class ProductFieldSelectors:
    """Selector bundle used to read one product anchor.

    Each field is an ordered tuple; what the positions mean depends on the
    retailer's price-rendering convention (element + attribute, euro + cent
    nodes, ...).
    """

    name: tuple[str, ...]
    original_price: tuple[str, ...]
    discount_price: tuple[str, ...]
    promotional_tag: tuple[str, ...] = ()

    def as_payload(self) -> dict[str, list[str]]:
        """Return a JSON-serialisable copy for in-page evaluation."""

        return {
            "name": list(self.name),
            "original_price": list(self.original_price),
            "discount_price": list(self.discount_price),
            "promotional_tag": list(self.promotional_tag),
        }


@dataclass(frozen=True)
class WebIdentifiers:
    cookie_decline: str
    promotion_expires: str
    product_categories: tuple[str, ...]
    products: str
    product_fields: ProductFieldSelectors


@dataclass(frozen=True)
class ScrapeTarget:
    """Everything needed to scrape one retailer; immutable for a run."""

    key: str
    name: str
    short_name: str
    url: str
    identifiers: WebIdentifiers
    extractor: str
    enabled: bool = True


@dataclass(frozen=True)
class RetailerConfig:
    targets: Mapping[str, ScrapeTarget] = field(default_factory=dict)

    def keys(self) -> list[str]:
        return list(self.targets)

    def target(self, key: str) -> ScrapeTarget:
        normalized = normalize_key(key)
        try:
            return self.targets[normalized]
        except KeyError:
            raise UnknownRetailerError(key, known=self.keys()) from None

    def enabled_targets(self) -> list[ScrapeTarget]:
        return [target for target in self.targets.values() if target.enabled]

    def by_name(self, name: str) -> ScrapeTarget | None:
        for target in self.targets.values():
            if target.name == name:
                return target
        return None


def normalize_key(key: str) -> str:
    return (key or "").strip().lower()


def _string_tuple(value: Any, *, label: str, required: bool = True) -> tuple[str, ...]:
    if value is None:
        value = []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"{label} must be a string or a list of strings")
    cleaned = tuple(str(item).strip() for item in value if str(item).strip())
    if required and not cleaned:
        raise ConfigError(f"{label} must contain at least one selector")
    return cleaned


def _required_str(data: Mapping[str, Any], key: str, *, label: str) -> str:
    value = str(data.get(key) or "").strip()
    if not value:
        raise ConfigError(f"{label}.{key} is required")
    return value


def parse_target(key: str, data: Mapping[str, Any]) -> ScrapeTarget:
    """Validate one ``retailers.<key>`` mapping into a :class:`ScrapeTarget`."""

    label = f"retailers.{key}"
    if not isinstance(data, Mapping):
        raise ConfigError(f"{label} must be a mapping")

    identifiers = data.get("identifiers")
    if not isinstance(identifiers, Mapping):
        raise ConfigError(f"{label}.identifiers must be a mapping")
    fields = identifiers.get("product_fields")
    if not isinstance(fields, Mapping):
        raise ConfigError(f"{label}.identifiers.product_fields must be a mapping")

    field_label = f"{label}.identifiers.product_fields"
    product_fields = ProductFieldSelectors(
        name=_string_tuple(fields.get("name"), label=f"{field_label}.name"),
        original_price=_string_tuple(fields.get("original_price"), label=f"{field_label}.original_price"),
        discount_price=_string_tuple(fields.get("discount_price"), label=f"{field_label}.discount_price"),
        promotional_tag=_string_tuple(
            fields.get("promotional_tag"), label=f"{field_label}.promotional_tag", required=False
        ),
    )

    id_label = f"{label}.identifiers"
    categories = _string_tuple(identifiers.get("product_categories"), label=f"{id_label}.product_categories")
    for category in categories:
        if category.startswith(HEADING_TEXT_PREFIX) and not heading_text(category):
            raise ConfigError(f"{id_label}.product_categories has an empty {category!r} heading")
    web_identifiers = WebIdentifiers(
        cookie_decline=str(identifiers.get("cookie_decline") or "").strip(),
        promotion_expires=_required_str(identifiers, "promotion_expires", label=id_label),
        product_categories=categories,
        products=_required_str(identifiers, "products", label=id_label),
        product_fields=product_fields,
    )

    normalized = normalize_key(key)
    return ScrapeTarget(
        key=normalized,
        name=_required_str(data, "name", label=label),
        short_name=str(data.get("short_name") or normalized).strip(),
        url=_required_str(data, "url", label=label),
        identifiers=web_identifiers,
        extractor=normalize_key(str(data.get("extractor") or normalized)),
        enabled=bool(data.get("enabled", True)),
    )


def parse_retailer_config(data: Mapping[str, Any] | None) -> RetailerConfig:
    retailers = (data or {}).get("retailers")
    if not isinstance(retailers, Mapping) or not retailers:
        raise ConfigError("No retailers defined in configuration")
    targets = {normalize_key(key): parse_target(key, value) for key, value in retailers.items()}
    return RetailerConfig(targets=targets)


def load_retailer_config(path: str | Path) -> RetailerConfig:
    """Load and validate the retailer YAML file at *path*."""

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Retailer configuration not found: {config_path}")
    with config_path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
    config = parse_retailer_config(data)
    LOGGER.info("Loaded %d retailer targets from %s", len(config.targets), config_path)
    return config


def iter_targets(config: RetailerConfig, keys: Iterable[str] | None) -> list[ScrapeTarget]:
    """Resolve *keys* (or every enabled retailer when empty) to targets."""

    wanted = [key for key in (keys or []) if key]
    if not wanted:
        return config.enabled_targets()
    return [config.target(key) for key in wanted]
