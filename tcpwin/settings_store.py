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
Settings snapshot store.

Captures kernel network parameters into a single canonical backup file and
replays it to restore them. The file is a flat text format:

    # Network settings backup created on <date>
    # System: <uname -a>

    net.core.rmem_max=212992
    # net.ipv4.tcp_foo not found

Absent parameters keep their line as a `not found` comment so every record
of the same parameter list has the same shape.
"""

import os
import re
import logging
import platform
import tempfile
from datetime import datetime
from typing import Dict, Any, List, Optional, Sequence, Tuple

from effectuation.sysctl import KernelConfigStore
from tcpwin.errors import BackupError, BackupNotFound
from tcpwin.parameter_registry import is_network_parameter

logger = logging.getLogger(__name__)

RESTORED = 'restored'
FAILED = 'failed'

_CREATED = re.compile(r'^#\s*Network settings backup created on\s+(.*)$')
_SYSTEM = re.compile(r'^#\s*System:\s*(.*)$')
_NOT_FOUND = re.compile(r'^#\s*(\S+)\s+not found\s*$')


def system_identification() -> str:
    """Equivalent of `uname -a`"""
    return ' '.join(part for part in platform.uname() if part)


class SettingsRecord:
    """Ordered kernel parameter values captured at backup time"""

    def __init__(self, entries: Sequence[Tuple[str, Optional[str]]],
                 created_at: Optional[str] = None, system: Optional[str] = None):
        self.entries = list(entries)
        self.created_at = created_at or datetime.now().strftime('%a %b %d %H:%M:%S %Y')
        self.system = system if system is not None else system_identification()

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.entries]

    @property
    def values(self) -> Dict[str, str]:
        """Parameters that were present, name -> value"""
        return {name: value for name, value in self.entries if value is not None}

    @property
    def missing(self) -> List[str]:
        return [name for name, value in self.entries if value is None]

    def to_text(self) -> str:
        lines = [
            f"# Network settings backup created on {self.created_at}",
            f"# System: {self.system}",
            "",
        ]
        for name, value in self.entries:
            if value is None:
                lines.append(f"# {name} not found")
            else:
                lines.append(f"{name}={value}")
        return "\n".join(lines) + "\n"

    @classmethod
    def from_text(cls, text: str) -> 'SettingsRecord':
        entries = []
        created_at = None
        system = ''

        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line:
                continue

            if line.startswith('#'):
                match = _CREATED.match(line)
                if match:
                    created_at = match.group(1).strip()
                    continue
                match = _SYSTEM.match(line)
                if match:
                    system = match.group(1).strip()
                    continue
                match = _NOT_FOUND.match(line)
                if match:
                    entries.append((match.group(1), None))
                continue

            if '=' not in line:
                logger.warning(f"Ignoring malformed backup line: {line!r}")
                continue

            name, value = line.split('=', 1)
            entries.append((name.strip(), value.strip()))

        return cls(entries, created_at=created_at, system=system)

    def __eq__(self, other):
        if not isinstance(other, SettingsRecord):
            return NotImplemented
        return self.entries == other.entries

    def __repr__(self):
        return f"SettingsRecord({len(self.entries)} entries, created {self.created_at})"


class RestoreReport:
    """Per parameter outcome of a restore"""

    def __init__(self, outcomes: Optional[List[Tuple[str, str]]] = None, log_path: Optional[str] = None):
        self.outcomes = outcomes or []
        self.log_path = log_path

    @property
    def failed(self) -> List[str]:
        return [name for name, outcome in self.outcomes if outcome == FAILED]

    @property
    def restored(self) -> List[str]:
        return [name for name, outcome in self.outcomes if outcome == RESTORED]

    @property
    def success(self) -> bool:
        return not self.failed

    def as_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'restored_count': len(self.restored),
            'failed_count': len(self.failed),
            'failed': self.failed,
            'log_path': self.log_path,
        }

    def __repr__(self):
        return f"RestoreReport({self.as_dict()})"


class SettingsSnapshotStore:
    """Backs up and restores kernel parameters through a KernelConfigStore"""

    def __init__(self, kernel: KernelConfigStore, backup_file: str = './network-settings.backup'):
        self.kernel = kernel
        self.backup_file = backup_file

    def exists(self) -> bool:
        return os.path.isfile(self.backup_file)

    def _write_atomically(self, text: str) -> None:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        temp_file = f"{self.backup_file}_{timestamp}"

        try:
            with open(temp_file, 'w') as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_file, self.backup_file)
        except OSError as e:
            if os.path.exists(temp_file):
                os.remove(temp_file)
            raise BackupError(f"Error creating backup {self.backup_file}: {e}")

    def backup(self, param_names: Sequence[str]) -> SettingsRecord:
        """
        Capture the current value of every parameter, in order.

        Args:
            param_names: Ordered kernel parameter names

        Returns:
            The written SettingsRecord

        Raises:
            BackupError: If the record could not be written
        """
        logger.info("Backing up current network settings...")

        entries = []
        for name in param_names:
            value = self.kernel.get(name)
            if value is None:
                logger.debug(f"{name} not found on running kernel")
            entries.append((name, value))

        record = SettingsRecord(entries)
        self._write_atomically(record.to_text())

        logger.info(f"Backup completed successfully to {self.backup_file}")
        logger.info(f"Backup contains {len(record.values)} parameters ({len(record.missing)} not found)")
        return record

    def load(self) -> SettingsRecord:
        if not self.exists():
            raise BackupNotFound(f"Backup file {self.backup_file} not found")

        with open(self.backup_file) as f:
            return SettingsRecord.from_text(f.read())

    def restore(self, record: Optional[SettingsRecord] = None) -> RestoreReport:
        """
        Apply every recorded network parameter back to the kernel.

        All parameters are attempted regardless of earlier failures. The
        diagnostic log is removed when everything was restored and kept
        otherwise, its path is reported on the RestoreReport.

        Args:
            record: Record to replay, the canonical backup file if None

        Raises:
            BackupNotFound: If record is None and no backup file exists
        """
        if record is None:
            record = self.load()

        logger.info(f"Restoring network settings from {self.backup_file}...")

        fd, log_path = tempfile.mkstemp(prefix='tcpwin-restore-', suffix='.log')
        outcomes = []

        with os.fdopen(fd, 'w') as log:
            for name, value in record.entries:
                if value is None or not is_network_parameter(name):
                    continue

                logger.debug(f"Restoring {name} to {value}")
                try:
                    success, output = self.kernel.set(name, value)
                except Exception as e:
                    success, output = False, f"error: {e}"
                log.write(f"{name}={value}: {'ok' if success else 'error'}: {output}\n")

                if success:
                    logger.info(f"Successfully restored {name}")
                    outcomes.append((name, RESTORED))
                else:
                    logger.error(f"Failed to restore {name}: {output}")
                    outcomes.append((name, FAILED))

        report = RestoreReport(outcomes)
        if report.success:
            os.remove(log_path)
            logger.info("All settings restored successfully")
        else:
            report.log_path = log_path
            logger.warning(f"Some errors occurred during restoration. Check {log_path} for details")

        return report
