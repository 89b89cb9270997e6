from prometheus_client import REGISTRY


PER_ITEM_LABELS = ("artifact_name", "target_sequence", "file", "sim_card")


def _labelnames(metric) -> tuple:
    return tuple(getattr(metric, "_labelnames", ()) or ())


def test_no_per_item_labelnames_on_call_worker_metrics():
    from callworker.artifacts import uploader
    from callworker.core import call_lifecycle, lease_store, poller
    from callworker.ui import agent

    metrics = [
        lease_store._LEASE_HELD_GAUGE,
        lease_store._LEASE_EVENTS_TOTAL,
        poller._POLL_CYCLES_TOTAL,
        call_lifecycle._CALL_TRANSITIONS_TOTAL,
        agent._UI_ACTIVATIONS_TOTAL,
        uploader._UPLOAD_ATTEMPTS_TOTAL,
        uploader._UPLOAD_RESULTS_TOTAL,
    ]
    for metric in metrics:
        for label in PER_ITEM_LABELS:
            assert label not in _labelnames(metric)


def test_no_per_item_labels_emitted_for_call_worker_metric_families():
    for family in REGISTRY.collect():
        if not family.name.startswith("call_worker_"):
            continue
        for sample in family.samples:
            for label in PER_ITEM_LABELS:
                assert label not in (sample.labels or {})
