"""
Core modules for the call worker.

This package contains the persisted lease, the poll loop and the call
lifecycle state machine.
"""

from .call_lifecycle import CallLifecycleController
from .kv_store import InMemoryKeyValueStore, KeyValueStore, SQLiteKeyValueStore
from .lease_store import LeaseStore
from .models import CallPhase, Lease, WorkItem
from .poller import PollState, WorkPoller
from .signals import CompletionChannel
from .timers import PendingTimer

__all__ = [
    'CallLifecycleController',
    'CallPhase',
    'CompletionChannel',
    'InMemoryKeyValueStore',
    'KeyValueStore',
    'Lease',
    'LeaseStore',
    'PendingTimer',
    'PollState',
    'SQLiteKeyValueStore',
    'WorkItem',
    'WorkPoller',
]
