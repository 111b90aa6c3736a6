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

"""Error taxonomy shared by the tuning components."""


class TuningError(Exception):
    """Base class for all tcpwin errors"""


class InvalidInput(TuningError, ValueError):
    """Malformed numeric input to the window calculator or applier"""


class MeasurementFailure(TuningError):
    """Echo probe produced no usable round-trip time"""


class BackupError(TuningError):
    """Settings backup could not be written"""


class BackupNotFound(TuningError):
    """Restore attempted without a canonical backup record"""


class PartialRestoreFailure(TuningError):
    """One or more parameters failed to restore"""

    def __init__(self, report):
        self.report = report
        super().__init__(
            f"{len(report.failed)} parameter(s) failed to restore, see {report.log_path}"
        )


class UsageError(TuningError):
    """Invalid invocation, e.g. no server address supplied"""


class PrivilegeError(TuningError):
    """Caller lacks the rights to mutate kernel settings"""
