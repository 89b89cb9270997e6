import pytest

from callworker.core.models import CallPhase, Lease, WorkItem


def test_from_payload_maps_fields():
    item = WorkItem.from_payload({
        "callSequance": " +15551230001 ",
        "fileName": "job-42.mp3",
        "recordingDuration": "45",
        "simCardName": "+15550000001",
    })

    assert item == WorkItem("+15551230001", "job-42.mp3", 45, "+15550000001")
    assert item.duration_ms == 45_000


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"fileName": "job.mp3"},
        {"callSequance": "+1555"},
        {"callSequance": "  ", "fileName": "job.mp3"},
        {"callSequance": "+1555", "fileName": ""},
        {"callSequance": None, "fileName": None},
    ],
)
def test_from_payload_without_sequence_or_name_is_no_work(payload):
    assert WorkItem.from_payload(payload) is None


@pytest.mark.parametrize("raw", [None, "abc", 0, -5, [1]])
def test_from_payload_duration_falls_back_to_default(raw):
    item = WorkItem.from_payload({"callSequance": "*100#", "fileName": "x.mp3", "recordingDuration": raw})

    assert item.duration_seconds == 60
    assert item.origin_identity is None


def test_lease_age():
    assert Lease().age_ms(1000) is None
    assert Lease(in_progress=True, started_at_ms=400).age_ms(1000) == 600


@pytest.mark.parametrize(
    "signal, phase",
    [
        ("IDLE", CallPhase.IDLE),
        (0, CallPhase.IDLE),
        ("RINGING", CallPhase.RINGING),
        ("1", CallPhase.RINGING),
        ("OFFHOOK", CallPhase.CONNECTED),
        (2, CallPhase.CONNECTED),
        (CallPhase.CONNECTED, CallPhase.CONNECTED),
    ],
)
def test_call_phase_from_signal(signal, phase):
    assert CallPhase.from_signal(signal) is phase


def test_call_phase_rejects_unknown():
    with pytest.raises(ValueError):
        CallPhase.from_signal("DIALING")
