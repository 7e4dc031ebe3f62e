"""Error-rate tracker tests."""

from unittest.mock import Mock

import pytest

from conftest import FakeClock, RecordingChannel
from opswatch.monitoring.alerts import (
    AlertDeduplicator, AlertDispatcher, AlertingPipeline
)
from opswatch.monitoring.error_tracking import ErrorRateTracker, classify_status
from opswatch.monitoring.thresholds import ThresholdConfig, ThresholdEvaluator
from opswatch.storage.cache_store import MemoryStore
from opswatch.utils.exceptions import StoreError


class PaymentError(Exception):
    pass


class CardDeclined(PaymentError):
    pass


class TestClassifyStatus:

    def test_categories(self):
        assert classify_status(200) is None
        assert classify_status(302) is None
        assert classify_status(404) == 'ClientError'
        assert classify_status(499) == 'ClientError'
        assert classify_status(500) == 'ServerError'
        assert classify_status(503) == 'ServerError'


class TestErrorRateTracker:

    def setup_method(self):
        self.clock = FakeClock()
        self.store = MemoryStore(prefix='t:', clock=self.clock)
        self.thresholds = ThresholdConfig(error_rate_threshold=5, time_window_minutes=15)
        self.channel = RecordingChannel('collect')
        self.pipeline = AlertingPipeline(
            ThresholdEvaluator(self.thresholds),
            AlertDeduplicator(self.store, self.thresholds, clock=self.clock),
            AlertDispatcher({'collect': self.channel})
        )
        self.tracker = ErrorRateTracker(self.store, self.thresholds, self.pipeline, clock=self.clock)

    def test_fifth_error_fires_category_alert_exactly_once(self):
        fired_at = []
        for i in range(1, 7):
            events = self.tracker.record_exception(ValueError(f"bad {i}"))
            if any(event.type == 'high_error_type_rate:ValueError' for event in events):
                fired_at.append(i)

        assert fired_at == [5]
        sent_types = [event.type for event in self.channel.sent]
        assert sent_types.count('high_error_type_rate:ValueError') == 1
        assert sent_types.count('error_rate') == 1

    def test_undelivered_crossing_is_resent_on_later_errors(self):
        self.channel.fail = True
        for _ in range(5):
            self.tracker.record_error('ServerError')
        assert self.channel.sent == []

        self.channel.fail = False
        for _ in range(20):
            self.tracker.record_error('ServerError')

        sent = [(event.type, event.context['value']) for event in self.channel.sent]
        assert sent == [('error_rate', 6), ('high_error_type_rate:ServerError', 6)]
        assert self.store.get('alert_pending:error_rate:202311142200') is None

    def test_no_channels_leaves_nothing_pending(self):
        tracker = ErrorRateTracker(
            self.store, self.thresholds,
            AlertingPipeline(ThresholdEvaluator(self.thresholds),
                             AlertDeduplicator(self.store, self.thresholds, clock=self.clock),
                             AlertDispatcher({})),
            clock=self.clock
        )
        for _ in range(5):
            tracker.record_error('ServerError')
        assert self.store.get('alert_pending:error_rate:202311142200') is None
        assert tracker.record_error('ServerError') == []

    def test_new_window_starts_counting_again(self):
        for _ in range(4):
            self.tracker.record_error('ServerError')
        self.clock.advance(15 * 60)
        for _ in range(4):
            assert self.tracker.record_error('ServerError') == []
        assert self.tracker.record_error('ServerError') != []

    def test_overall_rate_mixes_categories(self):
        for _ in range(2):
            self.tracker.record_response(404)
        for _ in range(2):
            self.tracker.record_response(500)
        events = self.tracker.record_exception(KeyError('x'))
        assert [event.type for event in events] == ['error_rate']

    def test_successful_responses_are_ignored(self):
        assert self.tracker.record_response(200) == []
        assert self.tracker.get_error_stats()['total_errors'] == 0

    def test_error_stats(self):
        self.tracker.record_response(404, {'url': '/missing'})
        self.tracker.record_exception(RuntimeError('x' * 2000))
        stats = self.tracker.get_error_stats()

        assert stats['total_errors'] == 2
        assert stats['window'] == '202311142200'
        assert stats['recent_by_type'] == {'ClientError': 1, 'RuntimeError': 1}
        assert stats['recent_errors'][0]['url'] == '/missing'
        assert stats['recent_errors'][0]['status'] == 404
        assert len(stats['recent_errors'][1]['message']) == 500

    def test_store_failure_is_swallowed(self):
        broken = Mock()
        broken.incr.side_effect = StoreError('connection refused')
        tracker = ErrorRateTracker(broken, self.thresholds, clock=self.clock)
        assert tracker.record_error('ServerError') == []

    def test_without_pipeline_only_evaluates(self):
        tracker = ErrorRateTracker(self.store, ThresholdConfig(error_rate_threshold=1), clock=self.clock)
        events = tracker.record_error('ServerError')
        assert {event.type for event in events} == {'error_rate', 'high_error_type_rate:ServerError'}
        assert self.channel.sent == []


class TestExceptionAllowList:

    def test_empty_list_tracks_everything(self):
        tracker = ErrorRateTracker(MemoryStore(), ThresholdConfig())
        assert tracker.should_track_exception(ValueError())

    def test_short_and_dotted_names_match_subclasses(self):
        tracker = ErrorRateTracker(MemoryStore(), ThresholdConfig(),
                                   tracked_exceptions=['PaymentError', 'builtins.KeyError'])
        assert tracker.should_track_exception(CardDeclined())
        assert tracker.should_track_exception(KeyError('x'))
        assert not tracker.should_track_exception(ValueError())

    def test_untracked_exception_is_not_counted(self):
        store = MemoryStore()
        tracker = ErrorRateTracker(store, ThresholdConfig(), tracked_exceptions=['PaymentError'])
        assert tracker.record_exception(ValueError('ignored')) == []
        assert tracker.get_error_stats()['total_errors'] == 0


class TestObserve:

    def setup_method(self):
        self.store = MemoryStore()
        self.tracker = ErrorRateTracker(self.store, ThresholdConfig())

    def test_returns_value(self):
        assert self.tracker.observe(lambda a, b=0: a + b, 2, b=3) == 5
        assert self.tracker.get_error_stats()['total_errors'] == 0

    def test_reraises_original_exception(self):
        error = PaymentError('declined')

        def charge():
            raise error

        with pytest.raises(PaymentError) as excinfo:
            self.tracker.observe(charge)
        assert excinfo.value is error
        assert self.tracker.get_error_stats()['recent_by_type'] == {'PaymentError': 1}

    def test_tracking_failure_does_not_mask_exception(self):
        broken = Mock()
        broken.incr.side_effect = RuntimeError('store exploded')
        tracker = ErrorRateTracker(broken, ThresholdConfig())

        def fail():
            raise PaymentError('declined')

        with pytest.raises(PaymentError):
            tracker.observe(fail)
