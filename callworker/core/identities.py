"""Sending identities (SIM numbers) offered to the work queue."""

from __future__ import annotations

from typing import List, Optional, Sequence

from .kv_store import KeyValueStore

IDENTITY_KEYS = ("simNumber1", "simNumber2")


def identity_slots(kv: KeyValueStore, configured: Sequence[str] = ()) -> List[str]:
    """
    Return the identity stored for each SIM slot ("" when unset).

    A value saved in the store for a slot wins over the configured one.
    """
    stored = kv.transaction_sync(lambda view: [view.get(key) for key in IDENTITY_KEYS])
    slots: List[str] = []
    for index, value in enumerate(stored):
        if value is None:
            value = configured[index] if index < len(configured) else ""
        slots.append(str(value or "").strip())
    return slots


def resolve_identities(kv: KeyValueStore, configured: Sequence[str] = ()) -> List[str]:
    """Non-blank identities in slot order (0-2 entries)."""
    return [value for value in identity_slots(kv, configured) if value]


def save_identity(kv: KeyValueStore, slot: int, value: str) -> None:
    """Persist the identity for slot 1 or 2; a blank value clears the slot."""
    if slot not in (1, 2):
        raise ValueError("slot must be 1 or 2")
    kv.set_sync(IDENTITY_KEYS[slot - 1], (value or "").strip())


def slot_for_identity(origin_identity: Optional[str], slots: Sequence[str]) -> int:
    """
    Pick the SIM slot (0 or 1) used to place a call.

    Only an exact match with the first slot's identity selects slot 0;
    anything else, including a missing origin identity, uses slot 1.
    """
    if slots and slots[0] and origin_identity == slots[0]:
        return 0
    return 1
