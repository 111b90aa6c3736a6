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

import abc
import re
import time
import shutil
import logging
import subprocess
from datetime import datetime
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

UNIT_TO_GBITS = {
    'bits': 1e-9,
    'Kbits': 1e-6,
    'Mbits': 1e-3,
    'Gbits': 1.0,
    'Tbits': 1e3,
}

_RECEIVER_LINE = re.compile(
    r'^\[\s*(?P<id>SUM|\d+)\]\s+\S+\s+sec\s+[0-9.]+\s+\S+\s+'
    r'(?P<rate>[0-9.]+)\s+(?P<unit>[KMGT]?bits)/sec\b.*\breceiver\s*$'
)


def parse_receiver_throughput(output: str) -> Optional[float]:
    """
    Aggregate receiver throughput in Gbits/sec from iperf3 text output.

    The [SUM] receiver line wins; single stream runs have none, so the last
    per-stream receiver line is used instead. None if neither is present.
    """
    stream_rate = None
    for line in (output or '').splitlines():
        match = _RECEIVER_LINE.match(line.strip())
        if not match:
            continue
        rate = float(match.group('rate')) * UNIT_TO_GBITS[match.group('unit')]
        if match.group('id') == 'SUM':
            return rate
        stream_rate = rate
    return stream_rate


class ThroughputResult:
    """Outcome of a forward and reverse throughput test"""

    def __init__(self, download_gbps: Optional[float] = None, upload_gbps: Optional[float] = None,
                 log_path: Optional[str] = None, errors: Optional[List[str]] = None):
        self.download_gbps = download_gbps
        self.upload_gbps = upload_gbps
        self.log_path = log_path
        self.errors = errors or []

    def as_dict(self) -> Dict[str, Any]:
        return {
            'download_gbps': self.download_gbps,
            'upload_gbps': self.upload_gbps,
            'log_path': self.log_path,
            'errors': list(self.errors),
        }

    def __repr__(self):
        return f"ThroughputResult({self.as_dict()})"


class ThroughputTester(abc.ABC):
    """Runs a throughput test against a server with a given TCP window"""

    @abc.abstractmethod
    def run(self, server: str, window_size: int) -> ThroughputResult:
        pass


class Iperf3Tester(ThroughputTester):
    """ThroughputTester driving iperf3, download (-R) first, then upload"""

    def __init__(self, parallel_streams: int = 8, test_duration: int = 30, buffer_size: str = '128K',
                 inter_test_delay: int = 5, use_numactl: bool = True, log_dir: str = '.'):
        self.parallel_streams = parallel_streams
        self.test_duration = test_duration
        self.buffer_size = buffer_size
        self.inter_test_delay = inter_test_delay
        self.use_numactl = use_numactl
        self.log_dir = log_dir

    @classmethod
    def from_config(cls, config) -> 'Iperf3Tester':
        return cls(
            parallel_streams=config.parallel_streams,
            test_duration=config.test_duration,
            buffer_size=config.buffer_size,
            inter_test_delay=config.inter_test_delay,
            use_numactl=config.use_numactl,
        )

    def command(self, server: str, window_size: int, reverse: bool = False) -> List[str]:
        cmd = []
        if self.use_numactl and shutil.which('numactl'):
            cmd += ['numactl', '--localalloc']
        cmd += [
            'iperf3', '-c', server,
            '-P', str(self.parallel_streams),
            '-t', str(self.test_duration),
            '-l', str(self.buffer_size),
            '-w', str(window_size),
            '-Z',
        ]
        if reverse:
            cmd.append('-R')
        return cmd

    def _run_single(self, direction: str, cmd: List[str], log_path: str) -> Optional[float]:
        logger.info(f"Testing {direction} speed: {' '.join(cmd)}")

        result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.test_duration + 30)

        with open(log_path, 'a') as log:
            log.write(f"### {direction}: {' '.join(cmd)}\n")
            log.write(result.stdout)
            if result.stderr:
                log.write(result.stderr)

        if result.returncode != 0:
            raise RuntimeError(f"iperf3 {direction} test exited with {result.returncode}: {result.stderr.strip()}")

        rate = parse_receiver_throughput(result.stdout)
        if rate is None:
            logger.warning(f"No receiver summary found in iperf3 {direction} output")
        else:
            logger.info(f"{direction} speed: {rate:.2f} Gbits/sec")
        return rate

    def run(self, server: str, window_size: int) -> ThroughputResult:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        log_path = f"{self.log_dir.rstrip('/')}/iperf_test_{timestamp}.log"
        logger.info(f"Starting tests - results will be logged to {log_path}")

        outcome = ThroughputResult(log_path=log_path)

        for index, (direction, reverse) in enumerate([('download', True), ('upload', False)]):
            if index > 0 and self.inter_test_delay > 0:
                time.sleep(self.inter_test_delay)
            try:
                rate = self._run_single(direction, self.command(server, window_size, reverse=reverse), log_path)
            except (OSError, subprocess.TimeoutExpired, RuntimeError) as e:
                logger.error(f"iperf3 {direction} test failed: {e}")
                outcome.errors.append(f"{direction}: {e}")
                continue

            if reverse:
                outcome.download_gbps = rate
            else:
                outcome.upload_gbps = rate

        logger.info(f"Tests completed - full results in {log_path}")
        return outcome
