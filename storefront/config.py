import logging
import os
from dataclasses import dataclass, field, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError, InvalidMoneyFormat
from .money import DEFAULT_CURRENCY, Money, to_decimal

logger = logging.getLogger("storefront.config")

ENV_PREFIX = "STOREFRONT_"


@dataclass(frozen=True)
class PricingConfig:
    tax_rate: Decimal = Decimal("0.21")
    free_shipping_threshold: Money = field(default_factory=lambda: Money.of("75"))
    standard_shipping_fee: Money = field(default_factory=lambda: Money.of("7.50"))
    tolerance_minor_units: int = 1
    debounce_seconds: float = 1.5
    currency: str = DEFAULT_CURRENCY
    locale: str = "nl-NL"
    max_quantity_per_item: int = 99
    block_checkout_on_transport_failure: bool = False
    api_base_url: str = "http://localhost:8080"
    request_timeout: float = 10.0

    def __post_init__(self) -> None:
        if not Decimal(0) <= self.tax_rate < Decimal(1):
            raise ConfigError(f"tax_rate must be in [0, 1), got {self.tax_rate}")
        if self.tolerance_minor_units < 0:
            raise ConfigError("tolerance_minor_units must not be negative")
        if self.debounce_seconds < 0:
            raise ConfigError("debounce_seconds must not be negative")
        if self.max_quantity_per_item < 1:
            raise ConfigError("max_quantity_per_item must be at least 1")
        for money in (self.free_shipping_threshold, self.standard_shipping_fee):
            if money.currency != self.currency:
                raise ConfigError(f"{money.currency} amount in a {self.currency} config")


def _coerce(name: str, raw: Any, currency: str) -> Any:
    try:
        if name == "tax_rate":
            return to_decimal(raw)
        if name in ("free_shipping_threshold", "standard_shipping_fee"):
            return Money.of(raw, currency)
        if name in ("tolerance_minor_units", "max_quantity_per_item"):
            return int(raw)
        if name in ("debounce_seconds", "request_timeout"):
            return float(raw)
        if name == "block_checkout_on_transport_failure":
            if isinstance(raw, bool):
                return raw
            return str(raw).strip().lower() in ("1", "true", "yes", "on")
        return str(raw)
    except (InvalidMoneyFormat, TypeError, ValueError) as exc:
        raise ConfigError(f"invalid value for {name}: {raw!r}") from exc


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"cannot parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    logger.debug("loaded config file %s", path)
    return data


def load_config(
    environment: str = "development",
    config_dir: str = "configs",
    environ: Optional[Mapping[str, str]] = None,
) -> PricingConfig:
    """Build a config from ``common.yaml``, ``<environment>.yaml`` and env vars.

    Later sources win: environment file over common file, ``STOREFRONT_*``
    variables over both.
    """
    environ = os.environ if environ is None else environ
    base = Path(config_dir)
    raw: Dict[str, Any] = {}
    raw.update(_read_yaml(base / "common.yaml"))
    raw.update(_read_yaml(base / f"{environment}.yaml"))

    known = {f.name for f in fields(PricingConfig)}
    for name in known:
        key = ENV_PREFIX + name.upper()
        if key in environ:
            raw[name] = environ[key]

    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(sorted(unknown))}")

    currency = str(raw.get("currency", DEFAULT_CURRENCY))
    values = {name: _coerce(name, value, currency) for name, value in raw.items()}
    # money defaults follow the configured currency
    config = PricingConfig(**{**_defaults_for(currency), **values})
    logger.info(
        "pricing config loaded: env=%s tax_rate=%s threshold=%s tolerance=%s",
        environment,
        config.tax_rate,
        config.free_shipping_threshold.amount,
        config.tolerance_minor_units,
    )
    return config


def _defaults_for(currency: str) -> Dict[str, Any]:
    return {
        "currency": currency,
        "free_shipping_threshold": Money.of("75", currency),
        "standard_shipping_fee": Money.of("7.50", currency),
    }
