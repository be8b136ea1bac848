"""Weight column schemas: shared across an item's sub-items or per sub-item."""
from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import crud
from .keys import decode, encode, is_reserved
from .models import WeightMode
from .notifications import ChangeFeed, Topic
from .thresholds import ThresholdStore

logger = logging.getLogger(__name__)


class WeightSchemaResolver:
    """Resolves the weight columns shown for a sub-item.

    The mode of an item is chosen once. Later calls to :meth:`set_weight_mode`
    are refused; :meth:`reset_weight_mode` is the explicit way back and wipes
    the item's weight columns first.
    """

    def __init__(
        self,
        thresholds: ThresholdStore,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        feed: ChangeFeed | None = None,
    ) -> None:
        self._thresholds = thresholds
        self._session_factory = session_factory
        self._feed = feed
        self._modes: dict[tuple[str, str], WeightMode] = {}

    def weight_mode_for(self, category: str, item: str) -> WeightMode | None:
        return self._modes.get((category, item))

    def is_shared(self, category: str, item: str) -> bool:
        return self.weight_mode_for(category, item) is WeightMode.SHARED

    def weights_for(self, category: str, item: str, sub_item: str) -> list[str]:
        own = self._columns(category, item, sub_item)
        if own:
            return own
        if not self.is_shared(category, item):
            return []
        donor = self._donor_columns(category, item, exclude=sub_item)
        return donor or []

    def _columns(self, category: str, item: str, sub_item: str) -> list[str]:
        weights = self._thresholds.weight_map(category, item, sub_item)
        return [weight for weight in weights if not is_reserved(weight)]

    def _donor_columns(self, category: str, item: str, *, exclude: str | None = None) -> list[str] | None:
        for candidate in self._thresholds.sub_items_for(category, item):
            if candidate == exclude:
                continue
            columns = self._columns(category, item, candidate)
            if columns:
                return columns
        return None

    def create_sub_item(self, category: str, item: str, sub_item: str) -> bool:
        """Create a sub-item; in shared mode it starts with the donor's weight columns."""

        inherited: list[str] = []
        if self.is_shared(category, item):
            inherited = self._donor_columns(category, item, exclude=sub_item.strip()) or []
        created = self._thresholds.create_sub_item(category, item, sub_item, inherited)
        if created and inherited:
            logger.info("Copied %d shared weights to %s/%s/%s", len(inherited), category, item, sub_item)
        return created

    async def set_weight_mode(self, category: str, item: str, mode: WeightMode | str) -> bool:
        """Record the mode for an item; ``False`` when a mode is already locked in."""

        mode = WeightMode(mode)
        key = (category.strip(), item.strip())
        if not all(key):
            logger.warning("Rejected weight mode for empty category/item %r", key)
            return False
        current = self._modes.get(key)
        if current is not None:
            logger.info("Weight mode already set for %s|%s (%s); ignoring %s", *key, current.value, mode.value)
            return False
        self._modes[key] = mode
        await self._persist_mode(key, mode)
        self._changed("set", category=key[0], item=key[1], mode=mode.value)
        return True

    async def reset_weight_mode(self, category: str, item: str) -> bool:
        """Clear the item's weight columns and unlock its mode."""

        key = (category, item)
        if key not in self._modes and item not in self._thresholds.items_for(category):
            return False
        self._thresholds.clear_item_weights(category, item)
        self._modes.pop(key, None)
        if self._session_factory is None:
            logger.warning("Weight mode reset for %s|%s not persisted: persistence unavailable", *key)
        else:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        await crud.delete_weight_schema(session, encode(category), encode(item))
            except SQLAlchemyError:
                logger.exception("Failed to delete weight mode for %s|%s", *key)
        await self._thresholds.save()
        self._changed("reset", category=category, item=item)
        return True

    async def _persist_mode(self, key: tuple[str, str], mode: WeightMode) -> None:
        if self._session_factory is None:
            logger.warning("Weight mode for %s|%s not persisted: persistence unavailable", *key)
            return
        category, item = encode(key[0]), encode(key[1])
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await crud.create_weight_schema(session, category, item, mode.value)
        except IntegrityError:
            logger.info("Weight mode for %s|%s already stored by another client", *key)
        except SQLAlchemyError:
            logger.exception("Failed to persist weight mode for %s|%s", *key)

    async def load(self) -> bool:
        if self._session_factory is None:
            logger.warning("WeightSchemaResolver.load(): persistence unavailable")
            return False
        try:
            async with self._session_factory() as session:
                schemas = await crud.list_weight_schemas(session)
                rows = [(schema.category, schema.item, schema.mode) for schema in schemas]
        except SQLAlchemyError:
            logger.exception("WeightSchemaResolver.load() failed")
            return False
        self._modes.clear()
        for category, item, mode in rows:
            try:
                self._modes[(decode(category), decode(item))] = WeightMode(mode)
            except ValueError:
                logger.warning("Ignoring unknown weight mode %r for %s|%s", mode, category, item)
        self._changed("load")
        return True

    def _changed(self, action: str, **detail: object) -> None:
        if self._feed is not None:
            self._feed.publish(Topic.WEIGHT_MODES, action=action, **detail)


__all__ = ["WeightSchemaResolver"]
