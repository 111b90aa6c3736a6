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
from collections import OrderedDict
from typing import Dict, Any, List, Optional, Tuple

from effectuation.sysctl import KernelConfigStore
from tcpwin.config import TuningConfig
from tcpwin.errors import InvalidInput

logger = logging.getLogger(__name__)

AUXILIARY_SETTINGS = OrderedDict([
    ('net.core.netdev_max_backlog', '250000'),
    ('net.core.netdev_budget', '600'),
    ('net.core.netdev_budget_usecs', '6000'),
    ('net.ipv4.tcp_low_latency', '1'),
    ('net.ipv4.tcp_slow_start_after_idle', '0'),
    ('net.ipv4.tcp_timestamps', '1'),
    ('net.ipv4.tcp_sack', '1'),
    ('net.ipv4.tcp_no_metrics_save', '1'),
])


def tuned_settings(window_size: int, auxiliary: bool = True,
                   buffer_min: int = 4096, buffer_default: int = 87380) -> 'OrderedDict[str, str]':
    """Ordered sysctl name -> value mapping for a window size, nothing applied"""
    if isinstance(window_size, bool) or not isinstance(window_size, int) or window_size <= 0:
        raise InvalidInput(f"Window size must be a positive integer, got {window_size!r}")

    triple = f"{buffer_min} {buffer_default} {window_size}"
    settings = OrderedDict([
        ('net.core.rmem_max', str(window_size)),
        ('net.core.wmem_max', str(window_size)),
        ('net.ipv4.tcp_rmem', triple),
        ('net.ipv4.tcp_wmem', triple),
        ('net.ipv4.tcp_window_scaling', '1'),
    ])

    if auxiliary:
        settings.update(AUXILIARY_SETTINGS)

    return settings


class ApplyResult:
    """Outcome of each parameter write"""

    def __init__(self, results: Optional[List[Tuple[str, str, bool]]] = None):
        self.results = results or []

    @property
    def applied(self) -> List[str]:
        return [name for name, _, ok in self.results if ok]

    @property
    def failed(self) -> List[str]:
        return [name for name, _, ok in self.results if not ok]

    @property
    def success(self) -> bool:
        return not self.failed

    def as_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'applied_count': len(self.applied),
            'failed_count': len(self.failed),
            'failed': self.failed,
        }


class SettingsApplier:

    def __init__(self, kernel: KernelConfigStore, config: Optional[TuningConfig] = None):
        self.kernel = kernel
        self.config = config or TuningConfig()

    def apply(self, window_size: int) -> ApplyResult:
        """
        Push the window size and the tuning bundle into the live kernel.

        A failed write is logged and recorded, the remaining parameters are
        still attempted.
        """
        settings = tuned_settings(
            window_size,
            auxiliary=self.config.auxiliary_tuning,
            buffer_min=self.config.buffer_min,
            buffer_default=self.config.buffer_default
        )

        logger.info(f"Applying TCP window settings ({window_size} bytes)...")

        result = ApplyResult()
        for name, value in settings.items():
            try:
                success, output = self.kernel.set(name, value)
            except Exception as e:
                logger.error(f"Failed to apply {name}={value}: {e}", exc_info=True)
                success = False
            else:
                if not success:
                    logger.error(f"Failed to apply {name}={value}: {output}")
            result.results.append((name, value, success))

        if result.success:
            logger.info("Settings applied successfully!")
        else:
            logger.warning(f"Settings applied with {len(result.failed)}/{len(result.results)} failures: {result.failed}")

        return result
