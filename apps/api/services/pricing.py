"""Table-driven credit pricing.

Cost resolution order:

1. a caller-supplied ``estimated_cost`` that is a finite non-negative integer,
2. the first metadata rule of the feature whose lookup table has an entry
   for the request metadata,
3. the feature's static base price.

Anything else is ``FeatureUnknown``; there is no default charge.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from services.errors import FeatureUnknown


KEY_SEPARATOR = "|"


@dataclass(frozen=True)
class MetadataRule:
    """Price lookup keyed by one or more metadata fields, e.g. ``("aspect_ratio", "duration")``."""

    keys: Tuple[str, ...]
    prices: Mapping[Tuple[str, ...], int]

    def lookup(self, metadata: Mapping[str, Any]) -> Optional[int]:
        values = []
        for key in self.keys:
            token = normalize_metadata_value(metadata.get(key))
            if token is None:
                return None
            values.append(token)
        return self.prices.get(tuple(values))


@dataclass(frozen=True)
class PricingTable:
    base_prices: Mapping[str, int] = field(default_factory=dict)
    metadata_rules: Mapping[str, Tuple[MetadataRule, ...]] = field(default_factory=dict)


def _duration_rule(prices: Dict[int, int]) -> MetadataRule:
    return MetadataRule(keys=("duration",), prices={(str(k),): v for k, v in prices.items()})


DEFAULT_PRICING = PricingTable(
    base_prices={
        "translate_text": 10,
        "gemini_chat": 5,
        "heygen_video": 200,
        "voice_tts": 2,
        "photo_avatar": 50,
        "kling_video": 250,
        "test_feature": 10,
        "kling_v21_t2v": 300,
    },
    metadata_rules={
        "kling_video": (_duration_rule({5: 200, 10: 500}),),
        "video_gen": (_duration_rule({5: 200, 10: 500}),),
        "kling_v21_t2v": (
            MetadataRule(
                keys=("aspect_ratio", "duration"),
                prices={
                    ("16:9", "5"): 300,
                    ("9:16", "5"): 300,
                    ("1:1", "5"): 300,
                    ("16:9", "10"): 600,
                    ("9:16", "10"): 600,
                    ("1:1", "10"): 600,
                },
            ),
        ),
    },
)


def normalize_metadata_value(value: Any) -> Optional[str]:
    """Normalize a metadata value into a lookup token (``5``, ``5.0`` and ``"5"`` -> ``"5"``)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return text.lower()
        return normalize_metadata_value(number)
    return None


def explicit_cost_value(value: Any) -> Optional[int]:
    """Return ``value`` as a cost when it is a finite non-negative integer, else ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float) and math.isfinite(value) and value.is_integer() and value >= 0:
        return int(value)
    return None


def resolve_cost(
    feature_type: str,
    explicit_cost: Any = None,
    metadata: Optional[Mapping[str, Any]] = None,
    table: Optional[PricingTable] = None,
) -> int:
    """Resolve the credit cost of one feature usage."""
    pricing = table or DEFAULT_PRICING

    cost = explicit_cost_value(explicit_cost)
    if cost is not None:
        return cost

    if isinstance(metadata, Mapping):
        for rule in pricing.metadata_rules.get(feature_type, ()):
            price = rule.lookup(metadata)
            if price is not None:
                return price

    base_price = pricing.base_prices.get(feature_type)
    if base_price is not None:
        return base_price

    raise FeatureUnknown(
        f"No pricing rule for feature_type={feature_type} and no usable estimated_cost"
    )


def _require_price(value: Any, where: str) -> int:
    price = explicit_cost_value(value)
    if price is None:
        raise ValueError(f"Invalid price at {where}: {value!r}")
    return price


def pricing_table_from_dict(raw: Mapping[str, Any]) -> PricingTable:
    """Build a table from ``{"base_prices": {...}, "metadata_rules": {...}}``."""
    base_prices = {
        str(feature): _require_price(price, f"base_prices.{feature}")
        for feature, price in (raw.get("base_prices") or {}).items()
    }

    metadata_rules: Dict[str, Tuple[MetadataRule, ...]] = {}
    for feature, rules in (raw.get("metadata_rules") or {}).items():
        parsed = []
        for index, rule in enumerate(rules):
            if not isinstance(rule, dict):
                raise ValueError(f"metadata_rules.{feature}[{index}] must be an object")
            keys = tuple(str(key) for key in rule.get("keys") or ())
            if not keys:
                raise ValueError(f"metadata_rules.{feature}[{index}] has no keys")
            prices = {}
            for joined, price in (rule.get("prices") or {}).items():
                tokens = tuple(normalize_metadata_value(part) for part in str(joined).split(KEY_SEPARATOR))
                if len(tokens) != len(keys) or any(token is None for token in tokens):
                    raise ValueError(f"metadata_rules.{feature}[{index}] has a malformed key {joined!r}")
                prices[tokens] = _require_price(price, f"metadata_rules.{feature}[{index}].{joined}")
            parsed.append(MetadataRule(keys=keys, prices=prices))
        metadata_rules[str(feature)] = tuple(parsed)

    return PricingTable(base_prices=base_prices, metadata_rules=metadata_rules)


def load_pricing_table(path: str) -> PricingTable:
    """Load a pricing table from a JSON file, or the built-in table when ``path`` is empty."""
    if not path:
        return DEFAULT_PRICING
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Pricing table must be a JSON object")
    return pricing_table_from_dict(raw)
