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
import logging
import subprocess
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


def normalize_value(value: str) -> str:
    """Collapse the tab separated multi-value output of sysctl into single spaces"""
    return " ".join(value.split())


class KernelConfigStore(abc.ABC):
    """Read and write access to live kernel parameters"""

    @abc.abstractmethod
    def get(self, name: str) -> Optional[str]:
        """Current value of name, or None if the kernel does not expose it"""

    @abc.abstractmethod
    def set(self, name: str, value: str) -> Tuple[bool, str]:
        """Write name=value, returning (success, tool output)"""


class SysctlStore(KernelConfigStore):
    """KernelConfigStore backed by the sysctl command line tool"""

    def __init__(self, binary: str = "sysctl", timeout: int = DEFAULT_TIMEOUT):
        self.binary = binary
        self.timeout = timeout

    def _run(self, args) -> Tuple[bool, str]:
        try:
            result = subprocess.run(
                [self.binary] + list(args),
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            return False, f"{self.binary} timed out after {self.timeout}s"
        except OSError as e:
            return False, f"{self.binary} could not be executed: {e}"

        if result.returncode != 0:
            return False, (result.stderr or result.stdout).strip()
        return True, result.stdout.strip()

    def get(self, name: str) -> Optional[str]:
        success, output = self._run(["-n", name])
        if not success:
            logger.debug(f"sysctl read of {name} failed: {output}")
            return None
        return normalize_value(output)

    def set(self, name: str, value: str) -> Tuple[bool, str]:
        success, output = self._run(["-w", f"{name}={value}"])
        if success:
            logger.debug(f"Applied: {name} = {value}")
        else:
            logger.warning(f"Failed to set {name}: {output}")
        return success, output
