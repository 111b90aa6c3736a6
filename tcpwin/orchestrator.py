#
# Copyright (c) 2019 Matthias Tafelmeier.
#
# This file is part of tcpwin
#
# tcpwin is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# tcpwin is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this tcpwin. If not, see <http://www.gnu.org/licenses/>.
#

import enum
import logging
from typing import Dict, Any, Optional

from effectuation.ethtool import tune_interface
from effectuation.sysctl import KernelConfigStore, SysctlStore
from reconnaissance.iperf import Iperf3Tester, ThroughputTester
from reconnaissance.ping import EchoProbe, PingProbe, measure_rtt
from tcpwin import preflight
from tcpwin.config import TuningConfig
from tcpwin.errors import (
    BackupError, BackupNotFound, InvalidInput, PartialRestoreFailure, PrivilegeError, UsageError
)
from tcpwin.metrics_client import TuningMetricsClient
from tcpwin.parameter_registry import backup_parameters
from tcpwin.settings_applier import SettingsApplier
from tcpwin.settings_store import SettingsSnapshotStore
from tcpwin.window_calculator import calculate_window, previous_power_of_two

logger = logging.getLogger(__name__)


class RunState(enum.Enum):
    IDLE = 'idle'
    BACKING_UP = 'backing_up'
    TUNING = 'tuning'
    TESTING = 'testing'
    RESTORING = 'restoring'
    DONE = 'done'


class Orchestrator:
    """
    Sequences one tuning run against a single server:
    backup -> measure RTT -> calculate window -> apply -> test -> restore.
    """

    def __init__(self, config: Optional[TuningConfig] = None,
                 kernel: Optional[KernelConfigStore] = None,
                 probe: Optional[EchoProbe] = None,
                 tester: Optional[ThroughputTester] = None,
                 store: Optional[SettingsSnapshotStore] = None,
                 metrics: Optional[TuningMetricsClient] = None,
                 interface_tuner=tune_interface,
                 check_privileges: bool = True,
                 check_tools: bool = True):
        self.config = config or TuningConfig()
        self.kernel = kernel or SysctlStore()
        self.probe = probe or PingProbe()
        self.tester = tester or Iperf3Tester.from_config(self.config)
        self.store = store or SettingsSnapshotStore(self.kernel, self.config.backup_file)
        self.applier = SettingsApplier(self.kernel, self.config)
        self.metrics = metrics
        self.interface_tuner = interface_tuner
        self.check_privileges = check_privileges
        self.check_tools = check_tools
        self.state = RunState.IDLE

    def _enter(self, state: RunState):
        logger.debug(f"State {self.state.value} -> {state.value}")
        self.state = state
        if self.metrics:
            self.metrics.mark_state(state.value)

    def _preflight(self, server: Optional[str], require_server: bool = True, check_tools: bool = True):
        result = preflight.main(
            config=self.config.raw,
            server=server,
            require_server=require_server,
            check_privileges=self.check_privileges,
            check_tools=self.check_tools and check_tools
        )
        if result['result'] == 'SUCCESS':
            return

        if result['error_type'] == 'privilege':
            raise PrivilegeError(result['error'])
        raise UsageError(result['error'])

    def _backup(self) -> bool:
        if not self.config.backup_enabled:
            logger.warning("Backup disabled - proceeding without backup, settings will not be restored")
            return False

        self._enter(RunState.BACKING_UP)
        try:
            self.store.backup(backup_parameters(self.config.extra_backup_params))
        except BackupError as e:
            logger.warning(f"{e} - proceeding without backup, settings will not be restored")
            return False
        return True

    def _window_for(self, rtt_seconds: float) -> int:
        try:
            window = calculate_window(
                self.config.bandwidth_gbps,
                rtt_seconds,
                max_allowed=self.config.max_window_bytes
            )
        except InvalidInput as e:
            logger.warning(f"Error in calculations ({e}), using default window size {self.config.fallback_window_bytes}")
            window = self.config.fallback_window_bytes

        if window < self.config.min_window_bytes:
            logger.warning(f"Window size {window} below floor, raising to {self.config.min_window_bytes} bytes")
            window = self.config.min_window_bytes

        ceiling = self.config.max_window_bytes
        if ceiling is not None and window > ceiling:
            window = previous_power_of_two(ceiling)
            logger.warning(f"Window size above ceiling, limiting to {window} bytes")

        return window

    def _tune(self, server: str, summary: Dict[str, Any]) -> int:
        self._enter(RunState.TUNING)

        if self.config.tune_interface and self.interface_tuner:
            logger.info("Optimizing network interface...")
            try:
                summary['interface'] = self.interface_tuner(
                    self.config.interface,
                    ring_size=self.config.ring_size,
                    mtu=self.config.mtu
                )
            except Exception as e:
                logger.warning(f"Interface tuning failed, continuing: {e}")

        logger.info("Optimizing system settings...")
        rtt_seconds = measure_rtt(
            server,
            probe=self.probe,
            samples=self.config.rtt_samples,
            fallback_seconds=self.config.rtt_fallback_seconds
        )
        summary['rtt_seconds'] = rtt_seconds

        window = self._window_for(rtt_seconds)
        summary['window_size'] = window

        apply_result = self.applier.apply(window)
        summary['apply'] = apply_result.as_dict()

        if self.metrics:
            self.metrics.set_rtt(rtt_seconds)
            self.metrics.set_window_size(window)
            self.metrics.inc_parameter_writes('apply', 'success', len(apply_result.applied))
            self.metrics.inc_parameter_writes('apply', 'failure', len(apply_result.failed))

        return window

    def _test(self, server: str, window: int, summary: Dict[str, Any]):
        self._enter(RunState.TESTING)
        logger.info("Starting throughput tests...")
        try:
            result = self.tester.run(server, window)
        except Exception as e:
            logger.error(f"Throughput test failed: {e}", exc_info=True)
            summary['throughput'] = {'errors': [str(e)]}
            return

        logger.info(f"Throughput result: {result}")
        summary['throughput'] = result.as_dict()

        if self.metrics:
            self.metrics.set_throughput('download', result.download_gbps)
            self.metrics.set_throughput('upload', result.upload_gbps)

    def _restore(self, summary: Dict[str, Any]):
        self._enter(RunState.RESTORING)
        logger.info("Restoring system settings...")
        try:
            report = self.store.restore()
        except BackupNotFound as e:
            logger.error(f"{e} - restoration skipped")
            summary['restore'] = {'success': False, 'error': str(e)}
            if self.metrics:
                self.metrics.inc_restore('failed')
            return

        summary['restore'] = report.as_dict()
        if not report.success:
            logger.warning(f"Partial restore failure for {report.failed}, diagnostic log at {report.log_path}")

        if self.metrics:
            self.metrics.inc_parameter_writes('restore', 'success', len(report.restored))
            self.metrics.inc_parameter_writes('restore', 'failure', len(report.failed))
            self.metrics.inc_restore('success' if report.success else 'partial')

    @staticmethod
    def _status(summary: Dict[str, Any]) -> str:
        """'completed' when every recorded phase succeeded, 'partial' otherwise"""
        apply_ok = bool(summary['apply'] and summary['apply']['success'])
        throughput_ok = bool(summary['throughput']) and not summary['throughput'].get('errors')
        # No restore is expected when no backup was taken
        restore_ok = summary['restore'] is None or summary['restore']['success']
        return 'completed' if apply_ok and throughput_ok and restore_ok else 'partial'

    def run(self, server: str) -> Dict[str, Any]:
        """
        Execute one tuning run.

        Raises:
            UsageError: No server supplied or invalid configuration
            PrivilegeError: Not running as root
        """
        self.state = RunState.IDLE
        self._preflight(server)

        if self.metrics is None:
            self.metrics = TuningMetricsClient(server=server)
        self.metrics.mark_running()

        summary = {
            'status': None,
            'server': server,
            'backup': False,
            'rtt_seconds': None,
            'window_size': None,
            'apply': None,
            'throughput': None,
            'restore': None,
        }

        backed_up = self._backup()
        summary['backup'] = backed_up

        try:
            window = self._tune(server, summary)
            self._test(server, window, summary)
        finally:
            if backed_up:
                self._restore(summary)
            else:
                logger.warning("No backup taken - skipping restore")

        self._enter(RunState.DONE)
        summary['state'] = self.state.value
        summary['status'] = self._status(summary)
        self.metrics.push()

        logger.info(f"Run against {server} {summary['status']}: window {summary['window_size']} bytes")
        return summary

    def backup_only(self):
        """Take a snapshot without tuning anything"""
        self._preflight(None, require_server=False, check_tools=False)
        self._enter(RunState.BACKING_UP)
        record = self.store.backup(backup_parameters(self.config.extra_backup_params))
        self._enter(RunState.DONE)
        return record

    def restore_only(self):
        """
        Replay the canonical snapshot.

        Raises:
            BackupNotFound: No snapshot to restore from
            PartialRestoreFailure: One or more parameters could not be restored
        """
        self._preflight(None, require_server=False, check_tools=False)
        self._enter(RunState.RESTORING)
        report = self.store.restore()
        self._enter(RunState.DONE)
        if not report.success:
            raise PartialRestoreFailure(report)
        return report
