import pytest

from callworker.core.identities import (
    identity_slots,
    resolve_identities,
    save_identity,
    slot_for_identity,
)


def test_configured_identities_fill_empty_slots(kv):
    assert identity_slots(kv, ["+15550000001"]) == ["+15550000001", ""]
    assert resolve_identities(kv, ["+15550000001"]) == ["+15550000001"]


def test_saved_identity_wins_over_configured(kv):
    save_identity(kv, 2, " +15550000002 ")

    assert identity_slots(kv, ["+15550000001", "+15559999999"]) == ["+15550000001", "+15550000002"]


def test_saving_blank_clears_slot(kv):
    save_identity(kv, 1, "")

    assert resolve_identities(kv, ["+15550000001"]) == []


def test_invalid_slot(kv):
    with pytest.raises(ValueError):
        save_identity(kv, 3, "+1555")


@pytest.mark.parametrize(
    "origin, slots, expected",
    [
        ("+15550000001", ["+15550000001", "+15550000002"], 0),
        ("+15550000002", ["+15550000001", "+15550000002"], 1),
        (None, ["+15550000001", "+15550000002"], 1),
        ("", ["", "+15550000002"], 1),
        ("+15550000001", [], 1),
    ],
)
def test_slot_for_identity(origin, slots, expected):
    assert slot_for_identity(origin, slots) == expected
