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
import logging
import subprocess
from typing import List, Optional

from reconnaissance.aggregation import aggregate_samples
from tcpwin.errors import MeasurementFailure

logger = logging.getLogger(__name__)

DEFAULT_SAMPLES = 5
DEFAULT_FALLBACK_SECONDS = 0.001

_REPLY_TIME = re.compile(r'\btime[=<]\s*([0-9]+(?:\.[0-9]+)?)\s*ms\b')
_SUMMARY = re.compile(r'=\s*([0-9.]+)/([0-9.]+)/([0-9.]+)(?:/([0-9.]+))?\s*ms')


def parse_ping_output(output: str) -> List[float]:
    """
    Extract round-trip times in milliseconds from ping output.

    Per-reply `time=<ms>` values are preferred; without any, the average of
    the `rtt min/avg/max/mdev` summary line is used.

    Raises:
        ValueError: If the output holds no round-trip time at all
    """
    if not output:
        raise ValueError("Empty ping output")

    samples = [float(m.group(1)) for m in _REPLY_TIME.finditer(output)]
    if samples:
        return samples

    for line in reversed(output.splitlines()):
        match = _SUMMARY.search(line)
        if match:
            return [float(match.group(2))]

    raise ValueError(f"No round-trip time found in ping output: {output[:80]!r}")


class EchoProbe(abc.ABC):
    """Issues echo probes against a target"""

    @abc.abstractmethod
    def ping(self, target: str, count: int) -> List[float]:
        """Round-trip times in milliseconds of the successful probes"""


class PingProbe(EchoProbe):
    """EchoProbe backed by the ping command line tool"""

    def __init__(self, binary: str = "ping", timeout_per_probe: int = 2):
        self.binary = binary
        self.timeout_per_probe = timeout_per_probe

    def ping(self, target: str, count: int) -> List[float]:
        cmd = [self.binary, '-c', str(count), target]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=count * self.timeout_per_probe + 5
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise MeasurementFailure(f"ping against {target} failed: {e}")

        # ping exits non-zero on partial loss, the replies that did arrive still count
        try:
            return parse_ping_output(result.stdout)
        except ValueError as e:
            raise MeasurementFailure(str(e))


def measure_rtt(target: str,
                probe: Optional[EchoProbe] = None,
                samples: int = DEFAULT_SAMPLES,
                fallback_seconds: float = DEFAULT_FALLBACK_SECONDS) -> float:
    """
    Estimate the round-trip time to target in seconds.

    Never raises: any probe failure, unparsable output or a zero mean yields
    fallback_seconds so that one bad measurement cannot abort a tuning run.

    Args:
        target: Host name or address to probe
        probe: EchoProbe to use, PingProbe by default
        samples: Number of echo probes
        fallback_seconds: Value returned when no usable RTT is measured

    Returns:
        Mean RTT in seconds, always > 0
    """
    probe = probe or PingProbe()

    try:
        rtt_values = list(probe.ping(target, samples) or [])
        rtt_ms = aggregate_samples(rtt_values, 'mean')
    except MeasurementFailure as e:
        logger.warning(f"RTT measurement against {target} failed, using fallback {fallback_seconds}s: {e}")
        return fallback_seconds
    except Exception as e:
        logger.error(f"Unexpected RTT measurement error for {target}, using fallback {fallback_seconds}s: {e}", exc_info=True)
        return fallback_seconds

    if rtt_ms is None or rtt_ms <= 0:
        logger.warning(f"No usable RTT samples for {target} ({rtt_values}), using fallback {fallback_seconds}s")
        return fallback_seconds

    rtt_seconds = rtt_ms / 1000
    logger.info(f"Measured RTT to {target}: {rtt_ms:.3f} ms over {len(rtt_values)} samples")
    return rtt_seconds
