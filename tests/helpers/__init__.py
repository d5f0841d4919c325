"""Test helpers for Family Stars integration tests.

This module re-exports the helpers for convenient imports:

    from tests.helpers import FakeRemoteService, SetupResult, setup_from_yaml

See individual modules for full documentation:
- fakes.py: In-memory remote store with controllable push delivery
- setup.py: Scenario seeding and config entry setup
"""

from tests.helpers.fakes import FakeRemoteService
from tests.helpers.setup import (
    SetupResult,
    load_scenario,
    seed_scenario,
    setup_entry,
    setup_from_yaml,
    setup_scenario,
)

__all__ = [
    "FakeRemoteService",
    "SetupResult",
    "load_scenario",
    "seed_scenario",
    "setup_entry",
    "setup_from_yaml",
    "setup_scenario",
]
