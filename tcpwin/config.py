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

import os
import json
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

GIB = 1024 * 1024 * 1024

DEFAULTS = {
    # Link and throughput test
    'bandwidth_gbps': 100,
    'parallel_streams': 8,
    'test_duration': 30,
    'buffer_size': '128K',
    'inter_test_delay': 5,
    'use_numactl': True,

    # RTT sampling
    'rtt_samples': 5,
    'rtt_fallback_seconds': 0.001,

    # Window sizing
    'max_window_bytes': GIB,
    'min_window_bytes': 65536,
    'fallback_window_bytes': 16777216,
    'buffer_min': 4096,
    'buffer_default': 87380,
    'auxiliary_tuning': True,

    # Interface tuning
    'tune_interface': True,
    'interface': None,
    'ring_size': 4096,
    'mtu': 9000,

    # Snapshot store
    'backup_enabled': True,
    'backup_file': './network-settings.backup',
    'extra_backup_params': [],
}


class TuningConfig:
    """
    Named configuration for a tuning run.

    Built from a plain dict, every field falls back to DEFAULTS. The backup
    path may be overridden through TCPWIN_BACKUP_FILE.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.raw = dict(config or {})
        settings = dict(DEFAULTS)
        settings.update({k: v for k, v in self.raw.items() if v is not None})

        self.bandwidth_gbps = settings['bandwidth_gbps']
        self.parallel_streams = settings['parallel_streams']
        self.test_duration = settings['test_duration']
        self.buffer_size = settings['buffer_size']
        self.inter_test_delay = settings['inter_test_delay']
        self.use_numactl = settings['use_numactl']

        self.rtt_samples = settings['rtt_samples']
        self.rtt_fallback_seconds = settings['rtt_fallback_seconds']

        # None disables the ceiling, an explicit null in the dict is kept
        self.max_window_bytes = self.raw.get('max_window_bytes', DEFAULTS['max_window_bytes'])
        self.min_window_bytes = settings['min_window_bytes']
        self.fallback_window_bytes = settings['fallback_window_bytes']
        self.buffer_min = settings['buffer_min']
        self.buffer_default = settings['buffer_default']
        self.auxiliary_tuning = settings['auxiliary_tuning']

        self.tune_interface = settings['tune_interface']
        self.interface = settings['interface']
        self.ring_size = settings['ring_size']
        self.mtu = settings['mtu']

        self.backup_enabled = settings['backup_enabled']
        self.backup_file = os.environ.get("TCPWIN_BACKUP_FILE", settings['backup_file'])
        self.extra_backup_params = list(settings['extra_backup_params'])

    @classmethod
    def from_file(cls, path: str, overrides: Optional[Dict[str, Any]] = None) -> 'TuningConfig':
        """Load a JSON config file, then apply non-None overrides on top"""
        with open(path) as f:
            config = json.load(f)

        if not isinstance(config, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")

        logger.info(f"Loaded configuration from {path}")
        config.update({k: v for k, v in (overrides or {}).items() if v is not None})
        return cls(config)

    def as_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, key) for key in DEFAULTS}

    def __repr__(self):
        return f"TuningConfig({self.as_dict()})"
