"""
Tuning Metrics Client

Thin wrapper around prometheus_client for tcpwin runs.
Pushes the outcome of a tuning run to a Prometheus Push Gateway.

Dependencies:
    pip install prometheus_client

Usage:
    from tcpwin.metrics_client import TuningMetricsClient

    metrics = TuningMetricsClient(server='10.0.0.10')
    metrics.mark_running()
    metrics.set_window_size(134217728)
    metrics.push()
"""

import os
import socket
import logging
from typing import Optional
from prometheus_client import CollectorRegistry, Gauge, Counter, push_to_gateway

logger = logging.getLogger(__name__)

# Values of the state label, one is set to 1 at a time
RUN_STATES = ['running', 'idle', 'backing_up', 'tuning', 'testing', 'restoring', 'done']


class TuningMetricsClient:
    """
    Prometheus metrics client for tcpwin.

    Disabled unless PUSH_METRICS_ENABLED=true, every method is then a no-op.
    """

    def __init__(self, server: str, host: Optional[str] = None,
                 pushgateway_url: Optional[str] = None, enabled: Optional[bool] = None):
        """
        Initialize metrics client for one tuning run.

        Args:
            server: Throughput test server address
            host: Name of the tuned host (default: local hostname)
            pushgateway_url: Push Gateway URL (default from env or http://pushgateway:9091)
            enabled: Force pushing on or off (default from PUSH_METRICS_ENABLED)
        """
        self.server = server
        self.host = host or socket.gethostname()

        if enabled is None:
            enabled = os.getenv("PUSH_METRICS_ENABLED", "false").lower() == "true"
        self.enabled = enabled
        self.pushgateway_url = pushgateway_url or os.getenv("PUSH_GATEWAY_URL", "http://pushgateway:9091")

        if not self.enabled:
            logger.debug("Prometheus metrics pushing disabled via PUSH_METRICS_ENABLED")
            return

        self.registry = CollectorRegistry()
        self._init_metrics()

        logger.debug(f"Initialized {self.__class__.__name__} for {self.host} -> {self.server}")

    def _init_metrics(self):
        """Initialize Prometheus metrics"""
        # Run status: 1=current state, 0=all others
        self._run_status = Gauge(
            'tcpwin_run_status',
            'Tuning run state',
            ['host', 'server', 'state'],
            registry=self.registry
        )

        self._rtt = Gauge(
            'tcpwin_rtt_seconds',
            'Measured round-trip time to the test server',
            ['host', 'server'],
            registry=self.registry
        )

        self._window_size = Gauge(
            'tcpwin_window_size_bytes',
            'TCP window ceiling applied for the run',
            ['host', 'server'],
            registry=self.registry
        )

        self._throughput = Gauge(
            'tcpwin_throughput_gbps',
            'Aggregate receiver throughput',
            ['host', 'server', 'direction'],
            registry=self.registry
        )

        # Parameter writes during apply and restore
        self._parameter_writes = Counter(
            'tcpwin_parameter_writes_total',
            'Kernel parameter writes',
            ['host', 'server', 'phase', 'status'],
            registry=self.registry
        )

        self._restore_count = Counter(
            'tcpwin_restores_total',
            'Restores of backed up settings',
            ['host', 'server', 'status'],
            registry=self.registry
        )

    def push(self) -> bool:
        """
        Push all metrics to Push Gateway.

        Returns:
            True if push succeeded, False otherwise
        """
        if not self.enabled:
            return False

        try:
            push_to_gateway(
                self.pushgateway_url,
                job=f'tcpwin_{self.host}',
                registry=self.registry
            )
            logger.debug(f"Pushed metrics to {self.pushgateway_url}")
            return True
        except Exception as e:
            logger.warning(f"Failed to push metrics to {self.pushgateway_url}: {e}")
            return False

    def mark_state(self, state: str):
        """Set the current run state gauge to 1 and every other state to 0"""
        if not self.enabled:
            return
        for other in RUN_STATES:
            if other != state:
                self._run_status.labels(host=self.host, server=self.server, state=other).set(0)
        self._run_status.labels(host=self.host, server=self.server, state=state).set(1)

    def mark_running(self):
        self.mark_state('running')

    def set_rtt(self, rtt_seconds: float):
        if not self.enabled:
            return
        self._rtt.labels(host=self.host, server=self.server).set(rtt_seconds)

    def set_window_size(self, window_size: int):
        if not self.enabled:
            return
        self._window_size.labels(host=self.host, server=self.server).set(window_size)

    def set_throughput(self, direction: str, gbps: Optional[float]):
        """
        Record throughput for a direction.

        Args:
            direction: 'download' or 'upload'
            gbps: Throughput in Gbits/sec, None is skipped
        """
        if not self.enabled or gbps is None:
            return
        self._throughput.labels(host=self.host, server=self.server, direction=direction).set(gbps)

    def inc_parameter_writes(self, phase: str, status: str, count: int = 1):
        """
        Increment parameter write counter.

        Args:
            phase: 'apply' or 'restore'
            status: 'success' or 'failure'
            count: Number of writes
        """
        if not self.enabled or count <= 0:
            return
        self._parameter_writes.labels(
            host=self.host,
            server=self.server,
            phase=phase,
            status=status
        ).inc(count)

    def inc_restore(self, status: str):
        """
        Increment restore counter.

        Args:
            status: 'success', 'partial' or 'failed'
        """
        if not self.enabled:
            return
        self._restore_count.labels(host=self.host, server=self.server, status=status).inc()
