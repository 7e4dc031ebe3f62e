"""Request performance tracking tests."""

import logging
from unittest.mock import Mock, patch

from flask import Flask

from conftest import FakeClock
from opswatch.middleware.performance import PerformanceMiddleware
from opswatch.monitoring.performance import (
    RequestPerformanceTracker, cache_stats, database_stats, percentile
)
from opswatch.storage.cache_store import MemoryStore
from opswatch.utils.exceptions import StoreError


class TestPercentile:

    def test_nearest_rank(self):
        values = [float(v) for v in range(1, 101)]
        assert percentile(values, 50) == 50.0
        assert percentile(values, 95) == 95.0
        assert percentile(values, 99) == 99.0

    def test_small_and_empty_samples(self):
        assert percentile([7.0], 99) == 7.0
        assert percentile([], 95) is None


class TestRequestPerformanceTracker:

    def setup_method(self):
        self.clock = FakeClock()
        self.store = MemoryStore(prefix='t:', clock=self.clock)
        self.tracker = RequestPerformanceTracker(self.store, clock=self.clock)

    def test_samples_land_in_hourly_buckets(self):
        self.tracker.record_request('GET', '/a', 200, 10.0)
        self.clock.advance(3600)
        self.tracker.record_request('GET', '/b', 200, 20.0)

        assert [s['path'] for s in self.tracker.get_samples(1)] == ['/b']
        assert [s['path'] for s in self.tracker.get_samples(2)] == ['/a', '/b']
        assert self.store.get_list('request_metrics:2023111422')[0]['path'] == '/a'

    def test_response_time_stats(self):
        for ms in (100.0, 200.0, 300.0, 1500.0):
            self.tracker.record_request('GET', '/orders', 200, ms)

        stats = self.tracker.response_time_stats(self.tracker.get_samples())

        assert stats['count'] == 4
        assert stats['average'] == 525.0
        assert stats['median'] == 250.0
        assert stats['p95'] == 1500.0
        assert stats['max'] == 1500.0
        assert stats['slow_requests'] == 1

    def test_memory_and_error_stats(self):
        self.tracker.record_request('GET', '/a', 200, 5.0, memory_delta_mb=2.0)
        self.tracker.record_request('GET', '/b', 404, 5.0, memory_delta_mb=60.0)
        self.tracker.record_request('POST', '/c', 500, 5.0)
        self.tracker.record_request('GET', '/d', 404, 5.0)
        samples = self.tracker.get_samples()

        memory = self.tracker.memory_stats(samples)
        assert memory['peak_mb'] == 60.0
        assert memory['heavy_requests'] == 1

        errors = self.tracker.error_stats(samples, hours=2)
        assert errors['total_errors'] == 3
        assert errors['error_rate_percent'] == 75.0
        assert errors['error_rate_per_hour'] == 1.5
        assert errors['by_category'] == {'ClientError': 2, 'ServerError': 1}
        assert errors['most_common_type'] == 'ClientError'

    def test_empty_window(self):
        samples = self.tracker.get_samples(24)
        assert self.tracker.response_time_stats(samples)['average'] is None
        assert self.tracker.error_stats(samples, 24)['error_rate_percent'] == 0.0

    def test_slow_and_heavy_requests_are_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger='opswatch.monitoring.performance'):
            self.tracker.record_request('GET', '/report', 200, 1200.0, memory_delta_mb=80.0)

        messages = [record.getMessage() for record in caplog.records]
        assert any('Slow request: GET /report' in m for m in messages)
        assert any('Memory-heavy request: GET /report' in m for m in messages)

    def test_store_failure_is_not_raised(self):
        broken = Mock()
        broken.push_bounded.side_effect = StoreError('down')
        broken.get_list.side_effect = StoreError('down')
        tracker = RequestPerformanceTracker(broken, clock=self.clock)

        assert tracker.record_request('GET', '/', 200, 1.0)['status'] == 200
        assert tracker.get_samples() == []


class TestSnapshotStats:

    def test_database_stats(self):
        snapshots = [
            {'database': {'query_time_ms': 10.0}},
            {'database': {'query_time_ms': 250.0}},
            {'database': {'error': 'connection refused'}},
        ]
        stats = database_stats(snapshots, slow_query_ms=100.0)
        assert stats == {
            'samples': 2,
            'avg_query_time_ms': 130.0,
            'max_query_time_ms': 250.0,
            'slow_queries_count': 1,
            'failed_checks': 1
        }

    def test_cache_stats(self):
        snapshots = [{'cache': {'response_time_ms': 1.0}}, {'cache': {'response_time_ms': 3.0}}]
        stats = cache_stats(snapshots, {'keyspace_hits': 85, 'keyspace_misses': 15})
        assert stats['avg_response_time_ms'] == 2.0
        assert stats['hit_rate'] == 85.0
        assert stats['miss_rate'] == 15.0

    def test_cache_stats_without_lookups(self):
        assert cache_stats([], {})['hit_rate'] is None


class TestPerformanceMiddleware:

    def test_requests_are_recorded(self, client, service):
        client.get('/health/ping')
        client.get('/missing')

        samples = service.performance.get_samples()
        assert [(s['path'], s['status']) for s in samples] == [('/health/ping', 200), ('/missing', 404)]
        assert samples[0]['endpoint'] == 'health.ping'
        assert samples[0]['response_time_ms'] >= 0

    def test_debug_headers(self, app, client):
        app.debug = True
        response = client.get('/health/ping')
        assert response.headers['X-Response-Time'].endswith('ms')
        assert response.headers['X-Memory-Usage'].endswith('MB')

    def test_no_headers_outside_debug(self, client):
        assert 'X-Response-Time' not in client.get('/health/ping').headers

    def test_tracker_failure_does_not_change_response(self):
        app = Flask(__name__)
        tracker = Mock()
        tracker.record_request.side_effect = RuntimeError('store exploded')
        PerformanceMiddleware(app, tracker=tracker)

        @app.route('/teapot')
        def teapot():
            return 'short and stout', 418

        response = app.test_client().get('/teapot')
        assert response.status_code == 418
        tracker.record_request.assert_called_once()

    @patch('opswatch.middleware.performance.psutil.Process')
    def test_memory_growth_is_measured(self, mock_process):
        rss = iter([100 * 1024 * 1024, 103 * 1024 * 1024])
        mock_process.return_value.memory_info.side_effect = lambda: Mock(rss=next(rss))
        app = Flask(__name__)
        tracker = Mock()
        tracker.record_request.return_value = {'response_time_ms': 1.0, 'memory_delta_mb': 3.0}
        PerformanceMiddleware(app, tracker=tracker)

        @app.route('/grow')
        def grow():
            return 'ok'

        app.test_client().get('/grow')
        args = tracker.record_request.call_args.args
        assert args[:3] == ('GET', '/grow', 200)
        assert args[4] == 3.0
