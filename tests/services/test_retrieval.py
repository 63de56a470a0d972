"""
Tests for the staged retrieval pipeline.

Covers:
- Sequential config -> commission feed stages
- Defaults when a source fails or returns nothing
- Last-start-wins: superseded runs never commit
- Cancellation raised from inside a source
- Concurrent submission on an executor
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from billing_config.schema import BillingMode, CalcConfig
from billing_kernel.exceptions import ConfigurationUnavailableError
from billing_services.retrieval import StagedRetrieval


CONFIG_PAYLOAD = {"billing_breakdown_mode": "manual", "transfer_fee_pct": 0.03}
FEED_PAYLOAD = {"ownerPct": 70, "commissionBaseByCurrency": {"ARS": "1000"}}


class FakeConfigSource:
    def __init__(self, payload=CONFIG_PAYLOAD, error=None, on_fetch=None):
        self.payload = payload
        self.error = error
        self.on_fetch = on_fetch
        self.calls = []

    def fetch_calc_config(self, token):
        self.calls.append(token.sequence_id)
        if self.on_fetch is not None:
            self.on_fetch(token)
        if self.error is not None:
            raise self.error
        return self.payload


class FakeFeedSource:
    def __init__(self, payload=FEED_PAYLOAD, error=None, on_fetch=None):
        self.payload = payload
        self.error = error
        self.on_fetch = on_fetch
        self.calls = []

    def fetch_commission_feed(self, booking_id, token):
        self.calls.append((booking_id, token.sequence_id))
        if self.on_fetch is not None:
            self.on_fetch(booking_id, token)
        if self.error is not None:
            raise self.error
        return self.payload


class TestSuccessfulRetrieval:
    """Tests for a run that completes unchallenged."""

    def test_both_stages_parsed(self):
        pipeline = StagedRetrieval(FakeConfigSource(), FakeFeedSource())
        result = pipeline.run("B-1")

        assert result.booking_id == "B-1"
        assert result.sequence_id == 1
        assert result.calc_config.billing_breakdown_mode == BillingMode.MANUAL
        assert result.calc_config.transfer_fee_pct == Decimal("0.03")
        assert result.commission_feed.owner_pct == Decimal("70")
        assert result.commission_feed.commission_base_by_currency == {"ARS": Decimal("1000")}
        assert not result.using_defaults
        assert pipeline.current is result
        assert pipeline.current_config == result.calc_config

    def test_stages_run_in_order(self):
        order = []
        config = FakeConfigSource(on_fetch=lambda token: order.append("config"))
        feed = FakeFeedSource(on_fetch=lambda booking_id, token: order.append("feed"))
        StagedRetrieval(config, feed).run("B-1")
        assert order == ["config", "feed"]

    def test_sequence_ids_increase(self):
        pipeline = StagedRetrieval(FakeConfigSource(), FakeFeedSource())
        ids = [pipeline.run("B-1").sequence_id for _ in range(3)]
        assert ids == [1, 2, 3]
        assert pipeline.sequence_id == 3

    def test_committed_logged(self, captured_logs):
        StagedRetrieval(FakeConfigSource(), FakeFeedSource()).run("B-1")
        committed = [r for r in captured_logs() if r["message"] == "retrieval_committed"]
        assert len(committed) == 1
        assert committed[0]["booking_id"] == "B-1"
        assert committed[0]["using_defaults"] is False


class TestDefaults:
    """Tests for source failures falling back to defaults."""

    def test_config_unavailable(self, captured_logs):
        config = FakeConfigSource(error=ConfigurationUnavailableError("agency", "timeout"))
        result = StagedRetrieval(config, FakeFeedSource()).run("B-1")

        assert result.calc_config == CalcConfig.defaults()
        assert result.config_using_defaults
        assert not result.commission_using_defaults
        assert result.using_defaults
        assert any(r["message"] == "calc_config_unavailable" for r in captured_logs())

    def test_config_none(self):
        result = StagedRetrieval(FakeConfigSource(payload=None), FakeFeedSource()).run("B-1")
        assert result.calc_config == CalcConfig.defaults()
        assert result.config_using_defaults

    def test_feed_failure(self):
        feed = FakeFeedSource(error=RuntimeError("boom"))
        result = StagedRetrieval(FakeConfigSource(), feed).run("B-1")
        assert result.commission_feed is None
        assert result.commission_using_defaults
        assert result.calc_config.manual_mode

    def test_malformed_feed(self):
        feed = FakeFeedSource(payload=["not", "a", "mapping"])
        result = StagedRetrieval(FakeConfigSource(), feed).run("B-1")
        assert result.commission_feed is None
        assert result.commission_using_defaults

    def test_feed_still_fetched_after_config_failure(self):
        feed = FakeFeedSource()
        config = FakeConfigSource(error=ConfigurationUnavailableError("agency", "down"))
        StagedRetrieval(config, feed).run("B-1")
        assert feed.calls == [("B-1", 1)]


class TestSupersededRuns:
    """Tests for last-start-wins semantics."""

    def test_superseded_during_config_stage(self):
        pipeline = None
        config = FakeConfigSource(
            on_fetch=lambda token: pipeline.start() if token.sequence_id == 1 else None
        )
        feed = FakeFeedSource()
        pipeline = StagedRetrieval(config, feed)

        assert pipeline.run("B-1") is None
        assert pipeline.current is None
        assert pipeline.current_config is None
        # Feed stage never ran for the stale sequence.
        assert feed.calls == []

    def test_superseded_during_feed_stage(self, captured_logs):
        pipeline = None
        feed = FakeFeedSource(
            on_fetch=lambda booking_id, token: pipeline.start() if token.sequence_id == 1 else None
        )
        pipeline = StagedRetrieval(FakeConfigSource(), feed)

        assert pipeline.run("B-1") is None
        assert pipeline.current is None
        discarded = [r for r in captured_logs() if r["message"] == "retrieval_discarded"]
        assert discarded[0]["stage"] == "commission_feed"

    def test_stale_result_never_overwrites_newer(self):
        release = threading.Event()
        first_in_feed = threading.Event()

        def block_first(booking_id, token):
            if booking_id == "B-old":
                first_in_feed.set()
                release.wait(timeout=5)

        pipeline = StagedRetrieval(FakeConfigSource(), FakeFeedSource(on_fetch=block_first))
        with ThreadPoolExecutor(max_workers=2) as executor:
            old = pipeline.submit("B-old", executor)
            assert first_in_feed.wait(timeout=5)
            new = pipeline.submit("B-new", executor)
            new_result = new.result(timeout=5)
            release.set()
            old_result = old.result(timeout=5)

        assert old_result is None
        assert new_result.booking_id == "B-new"
        assert pipeline.current is new_result
        assert pipeline.current.sequence_id == 2

    def test_cancel(self):
        pipeline = None
        config = FakeConfigSource(on_fetch=lambda token: pipeline.cancel())
        pipeline = StagedRetrieval(config, FakeFeedSource())
        assert pipeline.run("B-1") is None


class TestCancellationFromSource:
    """Tests for sources honoring the cancellation token."""

    def test_source_raising_cancelled(self, captured_logs):
        pipeline = None

        def cancel_and_check(booking_id, token):
            pipeline.start()
            token.raise_if_cancelled()

        feed = FakeFeedSource(on_fetch=cancel_and_check)
        pipeline = StagedRetrieval(FakeConfigSource(), feed)

        assert pipeline.run("B-1") is None
        discarded = [r for r in captured_logs() if r["message"] == "retrieval_discarded"]
        assert discarded[0]["stage"] == "cancelled_by_source"

    def test_token_state(self):
        pipeline = StagedRetrieval(FakeConfigSource(), FakeFeedSource())
        first = pipeline.start()
        second = pipeline.start()
        assert first.cancelled
        assert not second.cancelled
        assert second.sequence_id == first.sequence_id + 1
