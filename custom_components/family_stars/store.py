# File: store.py
"""Local cache of the family document.

The cache is what keeps star totals and pending approvals visible while the
remote store is unreachable. Each config entry owns one file
(``family_stars.<entry_id>``); records are keyed by their current id, which is
a ``local-`` id until the remote insert is confirmed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.helpers.storage import Store

from . import const

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant


class FamilyStarsStore:
    """Owns the on-disk copy of one device's family document."""

    def __init__(self, hass: HomeAssistant, storage_key: str) -> None:
        """Bind the store to ``storage_key`` without reading it yet."""
        self.hass = hass
        self._storage_key = storage_key
        self._store: Store[dict[str, Any]] = Store(
            hass, const.STORAGE_VERSION, storage_key
        )
        self._data: dict[str, Any] = {}

    @staticmethod
    def storage_key_for(entry_id: str) -> str:
        """Return the storage key for a config entry."""
        return f"{const.STORAGE_KEY_PREFIX}.{entry_id}"

    @staticmethod
    def get_default_structure() -> dict[str, Any]:
        """Return an empty family document with meta and an empty identity map."""
        document: dict[str, Any] = {
            collection: {} for collection in const.DATA_COLLECTIONS
        }
        document[const.DATA_IDENTITY_MAP] = {}
        document[const.DATA_META] = {
            const.DATA_META_SCHEMA_VERSION: const.SCHEMA_VERSION,
            const.DATA_META_LAST_REGENERATION_DAY: None,
            const.DATA_META_LAST_FULL_SYNC: None,
            const.DATA_META_LAST_SYNC_ERROR: None,
        }
        return document

    async def async_initialize(self) -> None:
        """Read the cached document, filling in any bucket the file lacks."""
        cached = await self._store.async_load()
        if cached is None:
            const.LOGGER.info(
                "INFO: No cached family document at %s, starting empty",
                self._storage_key,
            )
            self._data = self.get_default_structure()
            return

        defaults = self.get_default_structure()
        missing = [key for key in defaults if not isinstance(cached.get(key), dict)]
        for key in missing:
            cached[key] = defaults[key]
        self._data = cached
        const.LOGGER.debug(
            "DEBUG: Cache %s loaded (%s), added buckets: %s",
            self._storage_key,
            ", ".join(
                f"{collection}={len(cached[collection])}"
                for collection in const.DATA_COLLECTIONS
            ),
            missing or "none",
        )

    @property
    def data(self) -> dict[str, Any]:
        """The in-memory family document."""
        return self._data

    def set_data(self, new_data: dict[str, Any]) -> None:
        """Swap in a new family document; call a save afterwards."""
        self._data = new_data

    def async_delay_save(self) -> None:
        """Schedule a coalesced write of the document."""
        self._store.async_delay_save(lambda: self._data, const.STORAGE_SAVE_DELAY)

    async def async_save(self) -> None:
        """Write the document now; a failed write is logged, never raised."""
        try:
            await self._store.async_save(self._data)
        except OSError as err:
            const.LOGGER.error(
                "ERROR: Could not write family cache %s: %s", self._store.path, err
            )
        except (TypeError, ValueError) as err:
            const.LOGGER.error(
                "ERROR: Family cache %s holds a non-serializable value: %s",
                self._storage_key,
                err,
            )

    async def async_delete_storage(self) -> None:
        """Forget the cached document, on disk and in memory."""
        self._data = self.get_default_structure()
        try:
            await self._store.async_remove()
        except OSError as err:
            const.LOGGER.error(
                "ERROR: Could not remove family cache %s: %s", self._store.path, err
            )
            return
        const.LOGGER.info("INFO: Removed family cache %s", self._storage_key)
