# File: helpers/__init__.py
"""Home Assistant-bound helper functions for Family Stars.

This module contains functions that REQUIRE Home Assistant dependencies
(entity registry, auth). Functions that need no `hass` object belong in
utils/ instead.

Submodules:
    - entity_helpers: Signal names, unique_ids, entity registry cleanup
    - auth_helpers: Coordinator lookup and user authorization checks
"""

from . import auth_helpers, entity_helpers

__all__ = ["auth_helpers", "entity_helpers"]
