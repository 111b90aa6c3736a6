"""
Unit tests for TuningMetricsClient

Tests the Prometheus metrics wrapper without requiring an actual
Prometheus Push Gateway.
"""

import sys
import os
from unittest.mock import MagicMock, patch
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../..'))

from tcpwin.metrics_client import RUN_STATES, TuningMetricsClient
from tcpwin.orchestrator import RunState


class TestTuningMetricsClientInitialization:
    """Test TuningMetricsClient initialization and configuration"""

    @patch('tcpwin.metrics_client.CollectorRegistry')
    def test_initialization_enabled(self, mock_registry):
        """Test client initializes correctly when enabled"""
        client = TuningMetricsClient(
            server='10.0.0.10',
            host='tuned-host',
            pushgateway_url='http://test-pushgateway:9091',
            enabled=True
        )

        assert client.server == '10.0.0.10'
        assert client.host == 'tuned-host'
        assert client.pushgateway_url == 'http://test-pushgateway:9091'
        assert client.enabled is True
        mock_registry.assert_called_once()

    @patch.dict(os.environ, {'PUSH_METRICS_ENABLED': 'true', 'PUSH_GATEWAY_URL': 'http://gw:9091'})
    @patch('tcpwin.metrics_client.CollectorRegistry')
    def test_enabled_from_environment(self, mock_registry):
        """Test PUSH_METRICS_ENABLED and PUSH_GATEWAY_URL are honoured"""
        client = TuningMetricsClient(server='10.0.0.10', host='h')

        assert client.enabled is True
        assert client.pushgateway_url == 'http://gw:9091'

    @patch.dict(os.environ, {}, clear=True)
    @patch('tcpwin.metrics_client.CollectorRegistry')
    def test_disabled_by_default(self, mock_registry):
        """Test metrics are off unless explicitly enabled"""
        client = TuningMetricsClient(server='10.0.0.10', host='h')

        assert client.enabled is False
        mock_registry.assert_not_called()


class TestMetricCreation:
    """Test that Prometheus metrics are created"""

    @patch('tcpwin.metrics_client.CollectorRegistry')
    @patch('tcpwin.metrics_client.Gauge')
    @patch('tcpwin.metrics_client.Counter')
    def test_metrics_created(self, mock_counter, mock_gauge, mock_registry):
        """Test gauges and counters are registered by name"""
        TuningMetricsClient(server='s', host='h', enabled=True)

        gauge_names = [c[0][0] for c in mock_gauge.call_args_list]
        counter_names = [c[0][0] for c in mock_counter.call_args_list]

        assert 'tcpwin_window_size_bytes' in gauge_names
        assert 'tcpwin_rtt_seconds' in gauge_names
        assert 'tcpwin_throughput_gbps' in gauge_names
        assert 'tcpwin_parameter_writes_total' in counter_names
        assert 'tcpwin_restores_total' in counter_names


class TestMetricMethods:
    """Test that metric methods correctly update metrics"""

    @pytest.fixture
    def client(self):
        with patch('tcpwin.metrics_client.CollectorRegistry'), \
                patch('tcpwin.metrics_client.Gauge'), \
                patch('tcpwin.metrics_client.Counter'):
            yield TuningMetricsClient(server='10.0.0.10', host='h', enabled=True)

    def test_set_window_size(self, client):
        """Test window size gauge is labelled and set"""
        client.set_window_size(134217728)

        client._window_size.labels.assert_called_with(host='h', server='10.0.0.10')
        client._window_size.labels.return_value.set.assert_called_with(134217728)

    def test_set_throughput_skips_none(self, client):
        """Test missing throughput values are not recorded"""
        client.set_throughput('upload', None)

        client._throughput.labels.assert_not_called()

    def test_inc_parameter_writes(self, client):
        """Test write counter increments by count"""
        client.inc_parameter_writes('apply', 'success', 13)

        client._parameter_writes.labels.assert_called_with(
            host='h', server='10.0.0.10', phase='apply', status='success'
        )
        client._parameter_writes.labels.return_value.inc.assert_called_with(13)

    def test_inc_parameter_writes_zero_skipped(self, client):
        """Test zero counts do not touch the counter"""
        client.inc_parameter_writes('restore', 'failure', 0)

        client._parameter_writes.labels.assert_not_called()

    def test_disabled_methods_are_noops(self):
        """Test methods on a disabled client do nothing"""
        client = TuningMetricsClient(server='s', host='h', enabled=False)

        client.mark_running()
        client.set_rtt(0.01)
        client.set_window_size(1)
        client.inc_restore('success')

        assert client.push() is False


class TestPush:
    """Test pushing to the gateway"""

    @patch('tcpwin.metrics_client.push_to_gateway')
    @patch('tcpwin.metrics_client.CollectorRegistry')
    def test_push_success(self, mock_registry, mock_push):
        """Test successful push"""
        client = TuningMetricsClient(server='s', host='h', pushgateway_url='http://gw:9091', enabled=True)

        assert client.push() is True
        mock_push.assert_called_once_with('http://gw:9091', job='tcpwin_h', registry=client.registry)

    @patch('tcpwin.metrics_client.push_to_gateway', side_effect=ConnectionError('refused'))
    @patch('tcpwin.metrics_client.CollectorRegistry')
    def test_push_failure_returns_false(self, mock_registry, mock_push):
        """Test push errors are logged, not raised"""
        client = TuningMetricsClient(server='s', host='h', enabled=True)

        assert client.push() is False


class TestRunStateGauge:
    """Test the run state gauge against a real registry"""

    def _states(self, client):
        return {
            state: client.registry.get_sample_value(
                'tcpwin_run_status', {'host': 'h', 'server': 's', 'state': state}
            )
            for state in RUN_STATES
        }

    def test_only_current_state_is_set(self):
        """Test earlier states read 0 after a transition"""
        client = TuningMetricsClient(server='s', host='h', enabled=True)

        client.mark_running()
        client.mark_state('backing_up')
        client.mark_state('tuning')
        client.mark_state('done')

        states = self._states(client)
        assert states['done'] == 1.0
        assert [s for s, v in states.items() if v != 0.0] == ['done']

    def test_running_cleared_by_first_state(self):
        """Test mark_running is replaced by the next state"""
        client = TuningMetricsClient(server='s', host='h', enabled=True)

        client.mark_running()
        assert self._states(client)['running'] == 1.0

        client.mark_state('backing_up')
        assert self._states(client)['running'] == 0.0
        assert self._states(client)['backing_up'] == 1.0

    def test_every_run_state_has_a_label(self):
        """Test the orchestrator states are all known to the gauge"""
        assert {state.value for state in RunState} <= set(RUN_STATES)
