"""Storage-safe encoding of category/item/sub-item/weight labels.

Every document id, map key and field-path segment written to the backing
store passes through :func:`encode`. Labels are human readable in memory and
encoded only at the persistence boundary.

The mapping is lossy: ``.`` and ``/`` both become ``_`` and :func:`decode`
turns every ``_`` back into ``.``. A label that contains a literal underscore
therefore does not survive a round trip unchanged; lookups that must match a
stored key compare in encoded space instead (see
:meth:`goldventory.thresholds.ThresholdStore.get_threshold_for`).
"""
from __future__ import annotations

from dataclasses import dataclass

from .exceptions import ValidationError

DEFAULT_TOKEN = "__default"
RESERVED_PREFIX = "__"
SHARED_TOKEN = "shared"
WEIGHT_KEY_SEPARATOR = "|"

_UNSAFE_CHARACTERS = (".", "/")


def encode(raw: str) -> str:
    """Return the storage-safe form of ``raw``."""

    key = str(raw).strip()
    if not key:
        return DEFAULT_TOKEN
    for character in _UNSAFE_CHARACTERS:
        key = key.replace(character, "_")
    return key


def decode(encoded: str) -> str:
    """Best-effort inverse of :func:`encode`; slashes are not restored."""

    if encoded == DEFAULT_TOKEN:
        return ""
    return encoded.replace("_", ".")


def is_reserved(key: str) -> bool:
    """Metadata keys that never name a real sub-item or weight column."""

    return key.startswith(RESERVED_PREFIX) or key == SHARED_TOKEN


def clean_label(value: str, field_name: str, *, allow_empty: bool = False) -> str:
    label = str(value if value is not None else "").strip()
    if not label and not allow_empty:
        raise ValidationError(f"{field_name} must not be empty", code="empty_key")
    if WEIGHT_KEY_SEPARATOR in label:
        raise ValidationError(
            f"{field_name} must not contain '{WEIGHT_KEY_SEPARATOR}'",
            code="invalid_key",
            details={field_name: label},
        )
    return label


@dataclass(frozen=True)
class StockKey:
    """Address of one stocked weight: category -> item -> sub-item -> weight.

    ``sub_item == ""`` is the item-level (shared) slot.
    """

    category: str
    item: str
    sub_item: str
    weight: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", clean_label(self.category, "category"))
        object.__setattr__(self, "item", clean_label(self.item, "item"))
        object.__setattr__(self, "sub_item", clean_label(self.sub_item, "sub_item", allow_empty=True))
        object.__setattr__(self, "weight", clean_label(self.weight, "weight"))

    @property
    def product_id(self) -> str:
        return encode(self.category)

    @property
    def weight_key(self) -> str:
        return WEIGHT_KEY_SEPARATOR.join(self.encoded_path)

    @property
    def encoded_path(self) -> tuple[str, str, str]:
        """Encoded ``(item, sub_item, weight)`` segments inside the product document."""

        return encode(self.item), encode(self.sub_item), encode(self.weight)

    @classmethod
    def from_ids(cls, product_id: str, weight_key: str) -> "StockKey":
        item, sub_item, weight = (decode(part) for part in split_weight_key(weight_key))
        return cls(decode(product_id), item, sub_item, weight)


def split_weight_key(weight_key: str) -> tuple[str, str, str]:
    """Split an encoded weight key into its encoded segments."""

    parts = weight_key.split(WEIGHT_KEY_SEPARATOR)
    if len(parts) != 3 or not all(parts):
        raise ValidationError(
            "weight_key must have the form item|sub_item|weight",
            code="invalid_weight_key",
            details={"weight_key": weight_key},
        )
    return parts[0], parts[1], parts[2]


__all__ = [
    "DEFAULT_TOKEN",
    "SHARED_TOKEN",
    "WEIGHT_KEY_SEPARATOR",
    "StockKey",
    "clean_label",
    "decode",
    "encode",
    "is_reserved",
    "split_weight_key",
]
