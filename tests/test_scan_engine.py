# tests/test_scan_engine.py
import pytest

from modules.awesome_scan.lib.adapters.stub import StubScanAdapter
from modules.awesome_scan.lib.engine import ScanOrchestrator, apply_enrichment
from modules.awesome_scan.lib.models import Repository
from service.errors import EnrichmentFailed, NoItemsFound, RateLimited, ScanFailed

SOURCE = "https://github.com/acme/awesome-things"


def _items(n, category="Tools"):
    return [{"owner": "acme", "name": f"repo{i}", "category": category} for i in range(1, n + 1)]


def _orchestrator(adapter, alerts=None, **kw):
    sleeps = []
    orch = ScanOrchestrator(
        adapter,
        alert=(lambda t, b: alerts.append((t, b))) if alerts is not None else None,
        sleep=sleeps.append,
        **kw,
    )
    return orch, sleeps


# ----------------------------------------------------------------------
# Item-level failures are skipped, order preserved
# ----------------------------------------------------------------------
def test_middle_item_failure_is_skipped_and_order_kept():
    adapter = StubScanAdapter(items=_items(3), failures={"acme/repo2": "error"})
    orch, _ = _orchestrator(adapter)

    outcome = orch.scan(SOURCE)

    assert [r.full_name for r in outcome.result.records] == ["acme/repo1", "acme/repo3"]
    assert outcome.error is None
    assert outcome.rate_limited is False
    assert len(outcome.skipped) == 1
    assert "acme/repo2" in str(outcome.skipped[0])
    # every item was attempted
    assert adapter.detail_calls == ["acme/repo1", "acme/repo2", "acme/repo3"]


@pytest.mark.parametrize("failing", [{1}, {2, 4}, {1, 5}, {3, 4, 5}])
def test_scattered_failures_keep_all_survivors_in_discovery_order(failing):
    adapter = StubScanAdapter(
        items=_items(5),
        failures={f"acme/repo{i}": "error" for i in failing},
    )
    orch, _ = _orchestrator(adapter)

    outcome = orch.scan(SOURCE)

    expected = [f"acme/repo{i}" for i in range(1, 6) if i not in failing]
    assert [r.full_name for r in outcome.result.records] == expected


def test_records_carry_discovery_category(frozen_utc):
    adapter = StubScanAdapter(items=_items(2, category="Databases"))
    orch, _ = _orchestrator(adapter)

    outcome = orch.scan(SOURCE)

    assert {r.category for r in outcome.result.records} == {"Databases"}
    assert outcome.result.scanned_at == "2025-01-01T00:00:00Z"


# ----------------------------------------------------------------------
# Rate-limit abort
# ----------------------------------------------------------------------
@pytest.mark.parametrize("n", [1, 2, 4])
def test_rate_limit_at_nth_item_keeps_first_n_minus_one(n):
    adapter = StubScanAdapter(items=_items(5), failures={f"acme/repo{n}": "rate_limit"})
    alerts = []
    orch, _ = _orchestrator(adapter, alerts)

    outcome = orch.scan(SOURCE)

    assert [r.full_name for r in outcome.result.records] == [f"acme/repo{i}" for i in range(1, n)]
    assert outcome.rate_limited is True
    assert isinstance(outcome.error, RateLimited)
    # no further items attempted after the abort
    assert adapter.detail_calls[-1] == f"acme/repo{n}"
    assert [t for t, _ in alerts].count("Stub Rate Limit Reached") == 1


def test_delay_follows_every_non_aborting_attempt():
    adapter = StubScanAdapter(items=_items(4), failures={"acme/repo2": "error", "acme/repo4": "rate_limit"})
    orch, sleeps = _orchestrator(adapter, delay_seconds=0.25)

    orch.scan(SOURCE)

    # repo1 ok, repo2 failed, repo3 ok -> 3 sleeps; repo4 aborts without one
    assert sleeps == [0.25, 0.25, 0.25]


# ----------------------------------------------------------------------
# Terminal errors
# ----------------------------------------------------------------------
def test_no_items_is_terminal():
    orch, _ = _orchestrator(StubScanAdapter(items=[]))

    outcome = orch.scan(SOURCE)

    assert isinstance(outcome.error, NoItemsFound)
    assert outcome.result.records == []


def test_discovery_rate_limit_reports_rate_limited_with_empty_result():
    alerts = []
    orch, _ = _orchestrator(StubScanAdapter(items=_items(2), discovery_error="rate_limit"), alerts)

    outcome = orch.scan(SOURCE)

    assert isinstance(outcome.error, RateLimited)
    assert outcome.rate_limited is True
    assert outcome.result.records == []
    assert alerts and alerts[0][0] == "Stub Rate Limit Reached"


def test_discovery_failure_is_scan_failed():
    orch, _ = _orchestrator(StubScanAdapter(items=_items(2), discovery_error="error"))

    outcome = orch.scan(SOURCE)

    assert isinstance(outcome.error, ScanFailed)


def test_all_items_failing_is_scan_failed_with_alert():
    adapter = StubScanAdapter(items=_items(2), failures={"acme/repo1": "error", "acme/repo2": "error"})
    alerts = []
    orch, _ = _orchestrator(adapter, alerts)

    outcome = orch.scan(SOURCE)

    assert isinstance(outcome.error, ScanFailed)
    assert alerts[0][0] == "Scan Failed"
    assert "Stub API rate limit" in alerts[0][1]


# ----------------------------------------------------------------------
# Progress
# ----------------------------------------------------------------------
def test_progress_advances_on_success_only():
    seen = []
    adapter = StubScanAdapter(items=_items(3), failures={"acme/repo2": "error"})
    orch, _ = _orchestrator(adapter, on_progress=seen.append)

    orch.scan(SOURCE)

    assert [(p.current, p.total) for p in seen] == [(0, 3), (1, 3), (3, 3)]
    assert orch.progress.current_item == "acme/repo3"


# ----------------------------------------------------------------------
# Enrichment
# ----------------------------------------------------------------------
def test_enrichment_fills_added_dates():
    adapter = StubScanAdapter(items=_items(2), enrichment={"ACME/repo1": "2020-01-01T00:00:00Z"})
    orch, _ = _orchestrator(adapter)

    outcome = orch.scan(SOURCE)

    by_name = {r.full_name: r for r in outcome.result.records}
    assert by_name["acme/repo1"].added_to_list_at == "2020-01-01T00:00:00Z"
    assert by_name["acme/repo2"].added_to_list_at is None


def test_enrichment_failure_never_touches_records():
    plain = StubScanAdapter(items=_items(3))
    failing = StubScanAdapter(items=_items(3), enrichment_error="error")

    ok_outcome = _orchestrator(plain)[0].scan(SOURCE)
    bad_outcome = _orchestrator(failing)[0].scan(SOURCE)

    assert bad_outcome.result.records == ok_outcome.result.records
    assert isinstance(bad_outcome.enrichment_error, EnrichmentFailed)
    assert bad_outcome.error is None


def test_enrichment_rate_limit_sends_soft_warning():
    alerts = []
    adapter = StubScanAdapter(items=_items(1), enrichment_error="rate_limit")
    orch, _ = _orchestrator(adapter, alerts)

    outcome = orch.scan(SOURCE)

    assert len(outcome.result.records) == 1
    assert [t for t, _ in alerts] == ["Rate Limit Warning"]


def test_enrichment_can_be_disabled():
    adapter = StubScanAdapter(items=_items(1), enrichment_error="error")
    orch, _ = _orchestrator(adapter, enrich=False)

    outcome = orch.scan(SOURCE)

    assert outcome.enrichment_error is None


def test_apply_enrichment_is_idempotent():
    records = [
        Repository(id=1, name="a", full_name="o/a", html_url="https://github.com/o/a"),
        Repository(id=2, name="b", full_name="o/b", html_url="https://github.com/o/b", added_to_list_at="2019-05-05T00:00:00Z"),
    ]
    dates = {"o/a": "2021-02-02T00:00:00Z"}

    once = apply_enrichment(records, dates)
    twice = apply_enrichment(once, dates)

    assert once == twice
    assert once[1] == records[1]
    assert once[0].added_to_list_at == "2021-02-02T00:00:00Z"
