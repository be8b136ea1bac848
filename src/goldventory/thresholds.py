"""Threshold configuration: category -> item -> sub_item -> weight -> minimum.

The in-memory map holds human readable labels. Keys are encoded only when the
configuration is written (one ``threshold_documents`` row per category) and
decoded when it is read back. ``sub_item == ""`` is the item-level slot; a
weight whose value is ``None`` is a structural column with no minimum set.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable, Mapping
from copy import deepcopy
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import crud
from .exceptions import ValidationError
from .keys import DEFAULT_TOKEN, SHARED_TOKEN, clean_label, decode, encode, is_reserved
from .notifications import ChangeFeed, Topic
from .payloads import is_empty, unwrap, wrap

logger = logging.getLogger(__name__)

WeightMap = dict[str, "int | None"]
SubItemMap = dict[str, WeightMap]
ItemMap = dict[str, SubItemMap]
ThresholdMap = dict[str, ItemMap]


def coerce_threshold(value: Any) -> int | None:
    """Convert stored threshold values to non-negative integers or ``None``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        if value.strip() == "":
            return None
        try:
            parsed = int(value.strip())
        except ValueError:
            return None
    else:
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return None
    if parsed < 0:
        return None
    return parsed


def upgrade_document(data: Any) -> tuple[bool, dict[str, dict[str, dict[str, int | None]]]]:
    """Return ``(changed, canonical)`` for one stored category document.

    The canonical shape is item -> sub_item -> weight -> value. Older documents
    stored item -> weight -> value; those weights are moved under the item-level
    sub-item (:data:`~goldventory.keys.DEFAULT_TOKEN`). Keys stay encoded.
    """

    changed = False
    if not isinstance(data, Mapping):
        return True, {}
    canonical: dict[str, dict[str, dict[str, int | None]]] = {}
    for item_key, item_value in data.items():
        if not isinstance(item_value, Mapping):
            changed = True
            continue
        sub_items = canonical.setdefault(str(item_key), {})
        for sub_key, sub_value in item_value.items():
            if isinstance(sub_value, Mapping):
                weights = sub_items.setdefault(str(sub_key), {})
                for weight_key, raw in sub_value.items():
                    if isinstance(raw, (Mapping, list)):
                        changed = True
                        continue
                    weights[str(weight_key)] = coerce_threshold(raw)
            else:
                sub_items.setdefault(DEFAULT_TOKEN, {})[str(sub_key)] = coerce_threshold(sub_value)
                changed = True
    return changed, canonical


def _decode_items(items: Mapping[str, Mapping[str, Mapping[str, int | None]]]) -> ItemMap:
    return {
        decode(item): {
            decode(sub_item): {decode(weight): value for weight, value in weights.items()}
            for sub_item, weights in sub_items.items()
        }
        for item, sub_items in items.items()
    }


def _find_key(mapping: Mapping[str, Any], label: str) -> str | None:
    if label in mapping:
        return label
    target = encode(label)
    for key in mapping:
        if encode(key) == target:
            return key
    return None


def _weight_variants(weight: str) -> list[str]:
    variants = [weight, weight.replace(" ", "_"), weight.replace("_", " ")]
    return list(dict.fromkeys(variants))


def _rename_key(mapping: dict[str, Any], old: str, new: str) -> dict[str, Any]:
    return {(new if key == old else key): value for key, value in mapping.items()}


class ThresholdStore:
    """Owns the threshold configuration and its persistence.

    Mutators only touch memory and return ``False`` when the input is rejected;
    callers persist with :meth:`save`. Persistence failures are logged and
    reported as ``False`` instead of raised.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        feed: ChangeFeed | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._feed = feed
        self._thresholds: ThresholdMap = {}
        self._save_lock = asyncio.Lock()
        # set once memory mirrors storage; an empty store may then clear it
        self._synced = False

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    def as_nested_map(self) -> ThresholdMap:
        return deepcopy(self._thresholds)

    def categories(self) -> list[str]:
        return list(self._thresholds)

    def items_for(self, category: str) -> list[str]:
        return list(self._thresholds.get(category, {}))

    def sub_items_for(self, category: str, item: str) -> list[str]:
        sub_items = self._thresholds.get(category, {}).get(item, {})
        return [sub_item for sub_item in sub_items if not is_reserved(sub_item)]

    def weight_map(self, category: str, item: str, sub_item: str = "") -> WeightMap:
        return dict(self._thresholds.get(category, {}).get(item, {}).get(sub_item.strip(), {}))

    def get_threshold_for(
        self, category: str, item: str, sub_item: str | None, weight: str
    ) -> int | None:
        """Threshold for one exact (sub_item, weight) pair, or ``None``.

        The weight is also tried with spaces and underscores swapped, and every
        level falls back to comparing labels in encoded form.
        """

        items = self._lookup(self._thresholds, category)
        sub_items = self._lookup(items, item)
        weights = self._lookup(sub_items, (sub_item or "").strip())
        if not weights:
            return None
        for candidate in _weight_variants(weight.strip()):
            if candidate in weights:
                return coerce_threshold(weights[candidate])
        key = _find_key(weights, weight.strip())
        if key is None:
            return None
        return coerce_threshold(weights[key])

    @staticmethod
    def _lookup(mapping: Mapping[str, Any] | None, label: str) -> Any:
        if not mapping:
            return None
        key = _find_key(mapping, label)
        return None if key is None else mapping[key]

    # ------------------------------------------------------------------
    # Mutations (memory only)
    # ------------------------------------------------------------------
    def set_threshold(
        self, category: str, item: str, sub_item: str | None, weight: str, value: int
    ) -> bool:
        try:
            category, item, sub_item, weight = self._clean_path(category, item, sub_item, weight)
        except ValidationError as exc:
            logger.warning("Rejected threshold for %s/%s/%s: %s", category, item, weight, exc)
            return False
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            logger.warning("Rejected threshold value %r for %s/%s/%s", value, category, item, weight)
            return False
        self._ensure(category, item, sub_item)[weight] = value
        self._changed("set", category=category, item=item, sub_item=sub_item, weight=weight)
        return True

    def ensure_path(self, category: str, item: str, sub_item: str | None, weight: str) -> bool:
        """Create a structural weight column without overwriting an existing value."""

        try:
            category, item, sub_item, weight = self._clean_path(category, item, sub_item, weight)
        except ValidationError as exc:
            logger.warning("Rejected threshold path: %s", exc)
            return False
        weights = self._ensure(category, item, sub_item)
        if weight not in weights:
            weights[weight] = None
            self._changed("ensure", category=category, item=item, sub_item=sub_item, weight=weight)
        return True

    def remove_threshold(self, category: str, item: str, sub_item: str | None, weight: str) -> bool:
        """Delete one weight and prune parents left empty by the removal."""

        sub_item = (sub_item or "").strip()
        items = self._thresholds.get(category)
        if items is None:
            return False
        sub_items = items.get(item)
        if sub_items is None:
            return False
        weights = sub_items.get(sub_item)
        if weights is None or weight not in weights:
            return False
        del weights[weight]
        if not weights:
            del sub_items[sub_item]
        if not sub_items:
            del items[item]
        if not items:
            del self._thresholds[category]
        self._changed("remove", category=category, item=item, sub_item=sub_item, weight=weight)
        return True

    def create_category(self, category: str) -> bool:
        try:
            category = clean_label(category, "category")
        except ValidationError as exc:
            logger.warning("Rejected category: %s", exc)
            return False
        if category not in self._thresholds:
            self._thresholds[category] = {}
            self._changed("create", category=category)
        return True

    def create_item(self, category: str, item: str) -> bool:
        try:
            category = clean_label(category, "category")
            item = clean_label(item, "item")
        except ValidationError as exc:
            logger.warning("Rejected item: %s", exc)
            return False
        items = self._thresholds.setdefault(category, {})
        if item not in items:
            items[item] = {}
            self._changed("create", category=category, item=item)
        return True

    def create_sub_item(
        self, category: str, item: str, sub_item: str, weights: Iterable[str] = ()
    ) -> bool:
        try:
            category = clean_label(category, "category")
            item = clean_label(item, "item")
            sub_item = clean_label(sub_item, "sub_item")
            labels = self._clean_weights(weights)
        except ValidationError as exc:
            logger.warning("Rejected sub-item: %s", exc)
            return False
        columns = self._ensure(category, item, sub_item)
        for weight in labels:
            columns.setdefault(weight, None)
        self._changed("create", category=category, item=item, sub_item=sub_item)
        return True

    def set_sub_item_weights(
        self, category: str, item: str, sub_item: str, weights: Iterable[str]
    ) -> bool:
        """Replace a sub-item's weight columns, keeping values of retained weights."""

        try:
            category = clean_label(category, "category")
            item = clean_label(item, "item")
            sub_item = clean_label(sub_item, "sub_item")
            labels = self._clean_weights(weights)
        except ValidationError as exc:
            logger.warning("Rejected weight columns: %s", exc)
            return False
        current = self._ensure(category, item, sub_item)
        replacement = {weight: current.get(weight) for weight in labels}
        current.clear()
        current.update(replacement)
        self._changed("weights", category=category, item=item, sub_item=sub_item)
        return True

    def clear_item_weights(self, category: str, item: str) -> bool:
        sub_items = self._thresholds.get(category, {}).get(item)
        if sub_items is None:
            return False
        for weights in sub_items.values():
            weights.clear()
        self._changed("clear", category=category, item=item)
        return True

    def delete_node(self, category: str, item: str | None = None, sub_item: str | None = None) -> bool:
        """Delete a category, an item or a sub-item, pruning parents left empty."""

        items = self._thresholds.get(category)
        if items is None:
            return False
        if item is None:
            del self._thresholds[category]
            self._changed("delete", category=category)
            return True
        sub_items = items.get(item)
        if sub_items is None:
            return False
        if sub_item is None:
            del items[item]
        else:
            if sub_item not in sub_items:
                return False
            del sub_items[sub_item]
            if not sub_items:
                del items[item]
        if not items:
            del self._thresholds[category]
        self._changed("delete", category=category, item=item, sub_item=sub_item)
        return True

    def rename_node(
        self,
        new_name: str,
        category: str,
        item: str | None = None,
        sub_item: str | None = None,
    ) -> bool:
        """Rename one level of the hierarchy in place, preserving everything beneath it."""

        try:
            new_name = clean_label(new_name, "name")
        except ValidationError as exc:
            logger.warning("Rejected rename: %s", exc)
            return False
        if item is None:
            parent: dict[str, Any] | None = self._thresholds
            old_name = category
        elif sub_item is None:
            parent = self._thresholds.get(category)
            old_name = item
        else:
            parent = self._thresholds.get(category, {}).get(item)
            old_name = sub_item
        if parent is None or old_name not in parent:
            return False
        if old_name == new_name:
            return True
        if new_name in parent:
            logger.warning("Cannot rename %r to %r: target already exists", old_name, new_name)
            return False
        renamed = _rename_key(parent, old_name, new_name)
        parent.clear()
        parent.update(renamed)
        self._changed("rename", category=category, item=item, sub_item=sub_item, new_name=new_name)
        return True

    def _ensure(self, category: str, item: str, sub_item: str) -> WeightMap:
        return self._thresholds.setdefault(category, {}).setdefault(item, {}).setdefault(sub_item, {})

    @staticmethod
    def _clean_path(
        category: str, item: str, sub_item: str | None, weight: str
    ) -> tuple[str, str, str, str]:
        return (
            clean_label(category, "category"),
            clean_label(item, "item"),
            clean_label(sub_item or "", "sub_item", allow_empty=True),
            clean_label(weight, "weight"),
        )

    @staticmethod
    def _clean_weights(weights: Iterable[str]) -> list[str]:
        labels = [clean_label(weight, "weight", allow_empty=True) for weight in weights]
        return list(dict.fromkeys(label for label in labels if label))

    def _changed(self, action: str, **detail: Any) -> None:
        if self._feed is not None:
            self._feed.publish(Topic.THRESHOLDS, action=action, **detail)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def build_payload(self) -> dict[str, Any]:
        """Encoded, JSON-ready documents keyed by encoded category."""

        persistable = {
            category: {
                item: {
                    sub_item: {weight: value for weight, value in weights.items() if weight.strip()}
                    for sub_item, weights in sub_items.items()
                    if sub_item != SHARED_TOKEN
                }
                for item, sub_items in items.items()
            }
            for category, items in self._thresholds.items()
        }
        node = wrap(persistable, encode)
        if is_empty(node):
            return {}
        return unwrap(node)

    async def load(self) -> bool:
        """Replace the in-memory map with the stored configuration."""

        if self._session_factory is None:
            logger.warning("ThresholdStore.load(): persistence unavailable; keeping in-memory state")
            return False
        try:
            async with self._session_factory() as session:
                documents = await crud.list_threshold_documents(session)
                raw = [(document.category, document.data) for document in documents]
        except SQLAlchemyError:
            logger.exception("ThresholdStore.load() failed")
            return False

        loaded: ThresholdMap = {}
        migrated = False
        for category, data in raw:
            changed, canonical = upgrade_document(data)
            migrated = migrated or changed
            loaded[decode(category)] = _decode_items(canonical)
        self._thresholds.clear()
        self._thresholds.update(loaded)
        self._synced = True
        logger.info("Loaded thresholds for %d categories", len(loaded))
        self._changed("load")
        if migrated:
            logger.info("Re-saving thresholds migrated from the legacy item -> weight shape")
            await self.save()
        return True

    async def save(self) -> bool:
        """Write every category document and drop stored categories that are gone.

        An empty payload is never written. It only clears stored categories
        once this store has been loaded or saved, so an unloaded store cannot
        wipe storage. Returns whether storage now matches memory.
        """

        if self._session_factory is None:
            logger.warning("ThresholdStore.save(): persistence unavailable; skipping save")
            return False
        payload = self.build_payload()
        if not payload and not self._synced:
            logger.warning("ThresholdStore.save(): empty payload; skipping save")
            return False
        logger.debug("ThresholdStore.save(): payload = %s", json.dumps(payload, ensure_ascii=False))
        async with self._save_lock:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        await crud.replace_threshold_documents(session, payload)
            except SQLAlchemyError:
                logger.exception("ThresholdStore.save() failed")
                return False
        self._synced = True
        if payload:
            logger.info("Saved thresholds for %d categories", len(payload))
        else:
            logger.info("Cleared all stored thresholds")
        return True


__all__ = ["ThresholdStore", "coerce_threshold", "upgrade_document"]
