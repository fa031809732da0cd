"""Shared runtime state package."""
from irrigation_hub.state.types import ZoneState, EventKind, SystemEvent, NodeSighting, ZoneRuntimeState
from irrigation_hub.state.store import StateStore

__all__ = [
    'ZoneState',
    'EventKind',
    'SystemEvent',
    'NodeSighting',
    'ZoneRuntimeState',
    'StateStore',
]
