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

"""
Pytest configuration for tcpwin unit tests.

Provides in-memory stand-ins for the kernel, the echo probe and the
throughput tester so no test touches sysctl, ping or iperf3.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from effectuation.sysctl import KernelConfigStore
from reconnaissance.iperf import ThroughputResult, ThroughputTester
from reconnaissance.ping import EchoProbe


class FakeKernel(KernelConfigStore):
    """Dict backed kernel; names in `rejected` fail on write"""

    def __init__(self, values=None, rejected=None):
        self.values = dict(values or {})
        self.rejected = set(rejected or [])
        self.writes = []

    def get(self, name):
        return self.values.get(name)

    def set(self, name, value):
        self.writes.append((name, value))
        if name in self.rejected:
            return False, f"sysctl: permission denied on key \"{name}\""
        self.values[name] = value
        return True, f"{name} = {value}"


class FakeProbe(EchoProbe):

    def __init__(self, samples=None, error=None):
        self.samples = samples if samples is not None else []
        self.error = error
        self.calls = []

    def ping(self, target, count):
        self.calls.append((target, count))
        if self.error:
            raise self.error
        return list(self.samples)


class FakeTester(ThroughputTester):

    def __init__(self, result=None, error=None, kernel=None):
        self.result = result or ThroughputResult(download_gbps=9.4, upload_gbps=9.1)
        self.error = error
        self.kernel = kernel
        self.calls = []
        self.kernel_during_test = None

    def run(self, server, window_size):
        self.calls.append((server, window_size))
        if self.kernel is not None:
            self.kernel_during_test = dict(self.kernel.values)
        if self.error:
            raise self.error
        return self.result


KERNEL_DEFAULTS = {
    'net.core.rmem_max': '212992',
    'net.core.wmem_max': '212992',
    'net.core.rmem_default': '212992',
    'net.core.wmem_default': '212992',
    'net.ipv4.tcp_rmem': '4096 131072 6291456',
    'net.ipv4.tcp_wmem': '4096 16384 4194304',
    'net.ipv4.tcp_window_scaling': '1',
    'net.ipv4.tcp_max_syn_backlog': '1024',
    'net.core.netdev_max_backlog': '1000',
    'net.ipv4.tcp_no_metrics_save': '0',
    'net.ipv4.tcp_moderate_rcvbuf': '1',
    'net.ipv4.tcp_congestion_control': 'cubic',
    'net.ipv4.tcp_mtu_probing': '0',
    'net.ipv4.tcp_slow_start_after_idle': '1',
    'net.core.netdev_budget': '300',
    'net.core.netdev_budget_usecs': '2000',
    'net.ipv4.tcp_timestamps': '1',
    'net.ipv4.tcp_sack': '1',
}


@pytest.fixture
def kernel():
    """Kernel with typical defaults; tcp_low_latency is absent as on 4.14+"""
    return FakeKernel(KERNEL_DEFAULTS)


@pytest.fixture
def backup_file(tmp_path):
    return str(tmp_path / 'network-settings.backup')
