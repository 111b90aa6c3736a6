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
import subprocess
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


def _run(cmd: List[str]) -> Dict[str, Any]:
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=DEFAULT_TIMEOUT)
    except (OSError, subprocess.TimeoutExpired) as e:
        return {'command': ' '.join(cmd), 'success': False, 'error': str(e)}

    if result.returncode != 0:
        return {
            'command': ' '.join(cmd),
            'success': False,
            'error': (result.stderr or result.stdout).strip() or f"exit code {result.returncode}"
        }
    return {'command': ' '.join(cmd), 'success': True, 'output': result.stdout.strip()}


def parse_default_interface(route_output: str) -> Optional[str]:
    """Interface name of the first default route in `ip route` output"""
    for line in route_output.splitlines():
        fields = line.split()
        if not fields or fields[0] != 'default':
            continue
        if 'dev' in fields:
            index = fields.index('dev')
            if index + 1 < len(fields):
                return fields[index + 1]
    return None


def default_interface() -> Optional[str]:
    result = _run(['ip', 'route'])
    if not result['success']:
        logger.warning(f"Could not read routing table: {result['error']}")
        return None
    return parse_default_interface(result['output'])


def interface_commands(interface: str, ring_size: int = 4096, mtu: int = 9000) -> List[List[str]]:
    return [
        # Ring buffer sizes
        ['ethtool', '-G', interface, 'rx', str(ring_size), 'tx', str(ring_size)],
        # Offloading features
        ['ethtool', '-K', interface, 'tso', 'on', 'gso', 'on', 'gro', 'on'],
        # Adaptive interrupt coalescing
        ['ethtool', '-C', interface, 'adaptive-rx', 'on', 'adaptive-tx', 'on'],
        # Jumbo frames
        ['ip', 'link', 'set', 'dev', interface, 'mtu', str(mtu)],
    ]


def tune_interface(interface: Optional[str] = None, ring_size: int = 4096, mtu: int = 9000) -> Dict[str, Any]:
    """
    Best-effort tuning of the NIC carrying the default route.

    Every command is attempted; failures are logged and tolerated since many
    drivers reject some of these settings.

    Args:
        interface: Interface name, discovered from the default route if None
        ring_size: RX/TX ring buffer size
        mtu: MTU to set

    Returns:
        Dictionary with aggregated command results
    """
    interface = interface or default_interface()
    if not interface:
        logger.warning("No default route interface found, skipping interface tuning")
        return {'status': 'skipped', 'interface': None, 'results': []}

    logger.info(f"Optimizing interface: {interface}")

    all_results = []
    for cmd in interface_commands(interface, ring_size=ring_size, mtu=mtu):
        result = _run(cmd)
        if result['success']:
            logger.debug(f"Interface tuning applied: {result['command']}")
        else:
            logger.warning(f"Interface tuning ignored failure: {result['command']}: {result['error']}")
        all_results.append(result)

    success_count = sum(1 for r in all_results if r.get('success', False))
    logger.info(f"Interface tuning completed: {success_count}/{len(all_results)} successful")

    return {
        'status': 'completed',
        'interface': interface,
        'successful_changes': success_count,
        'failed_changes': len(all_results) - success_count,
        'results': all_results
    }
