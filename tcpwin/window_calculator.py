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

import logging
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Optional

from tcpwin.config import GIB
from tcpwin.errors import InvalidInput

logger = logging.getLogger(__name__)

MAX_ALLOWED_WINDOW = GIB


def _validate_bandwidth(bandwidth_gbps) -> int:
    if isinstance(bandwidth_gbps, bool):
        raise InvalidInput(f"Invalid bandwidth: {bandwidth_gbps!r}")

    if isinstance(bandwidth_gbps, str):
        if not bandwidth_gbps.strip().isdigit():
            raise InvalidInput(f"Invalid bandwidth: {bandwidth_gbps!r}")
        bandwidth_gbps = int(bandwidth_gbps.strip())

    if not isinstance(bandwidth_gbps, int) or bandwidth_gbps <= 0:
        raise InvalidInput(f"Bandwidth must be a positive integer (Gbps), got {bandwidth_gbps!r}")

    return bandwidth_gbps


def _validate_rtt(rtt_seconds) -> Decimal:
    if isinstance(rtt_seconds, bool) or not isinstance(rtt_seconds, (int, float, str, Decimal)):
        raise InvalidInput(f"Invalid RTT: {rtt_seconds!r}")

    try:
        # str() keeps 0.01 as 0.01 instead of its binary float expansion
        rtt = Decimal(str(rtt_seconds).strip())
    except InvalidOperation:
        raise InvalidInput(f"Invalid RTT: {rtt_seconds!r}")

    if not rtt.is_finite() or rtt < 0:
        raise InvalidInput(f"RTT must be a non-negative number of seconds, got {rtt_seconds!r}")

    return rtt


def bandwidth_delay_product(bandwidth_gbps, rtt_seconds) -> int:
    """Bandwidth-delay product in bytes, floored to an integer"""
    bandwidth = _validate_bandwidth(bandwidth_gbps)
    rtt = _validate_rtt(rtt_seconds)

    bits_per_sec = bandwidth * 1000 * 1000 * 1000
    bdp = (Decimal(bits_per_sec) * rtt / 8).to_integral_value(rounding=ROUND_FLOOR)
    return int(bdp)


def is_power_of_two(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0 and value & (value - 1) == 0


def previous_power_of_two(value: int) -> int:
    """Largest power of two <= value, value must be >= 1"""
    return 1 << (value.bit_length() - 1)


def next_power_of_two(value: int) -> int:
    """Smallest power of two >= value, 1 for anything <= 1"""
    power = 1
    while power < value:
        power *= 2
    return power


def _mb(value: int) -> str:
    return f"{value / 1024 / 1024:.2f} MB"


def calculate_window(bandwidth_gbps, rtt_seconds, max_allowed: Optional[int] = MAX_ALLOWED_WINDOW) -> int:
    """
    Calculate the TCP window ceiling for a link.

    The bandwidth-delay product is rounded up to the next power of two and
    clamped down to max_allowed when a ceiling is given.

    Args:
        bandwidth_gbps: Target bandwidth in Gbps, positive integer
        rtt_seconds: Round-trip time in seconds, non-negative
        max_allowed: Window ceiling in bytes, None disables clamping. A
            ceiling that is not a power of two is lowered to one.

    Returns:
        Window size in bytes (a power of two)

    Raises:
        InvalidInput: If either input is not a well-formed number, or
            max_allowed is not a positive integer
    """
    if max_allowed is not None:
        if isinstance(max_allowed, bool) or not isinstance(max_allowed, int) or max_allowed <= 0:
            raise InvalidInput(f"Window ceiling must be a positive integer, got {max_allowed!r}")
        if not is_power_of_two(max_allowed):
            ceiling = previous_power_of_two(max_allowed)
            logger.warning(f"Window ceiling {max_allowed} is not a power of two, using {ceiling} bytes")
            max_allowed = ceiling

    bdp = bandwidth_delay_product(bandwidth_gbps, rtt_seconds)
    rtt_ms = _validate_rtt(rtt_seconds) * 1000

    logger.info("Calculating optimal TCP window size:")
    logger.info(f"- Bandwidth: {_validate_bandwidth(bandwidth_gbps)} Gbps")
    logger.info(f"- RTT: {rtt_ms:.3f} ms")
    logger.info(f"- Calculated window size: {bdp} bytes ({_mb(bdp)})")

    window = next_power_of_two(bdp)
    logger.info(f"- Rounded window size: {window} bytes ({_mb(window)})")

    if max_allowed is not None and window > max_allowed:
        logger.warning(f"Calculated window size {window} too large, limiting to {max_allowed} bytes ({_mb(max_allowed)})")
        window = max_allowed

    return window
