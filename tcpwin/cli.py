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
import sys
import logging
import argparse

from tcpwin.config import TuningConfig
from tcpwin.errors import (
    BackupError, BackupNotFound, PartialRestoreFailure, PrivilegeError, UsageError
)
from tcpwin.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class UsageArgumentParser(argparse.ArgumentParser):
    """ArgumentParser exiting with status 1 instead of 2 on usage errors"""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\nExample: {self.prog} 10.0.0.10\n")


def build_parser() -> argparse.ArgumentParser:
    parser = UsageArgumentParser(
        prog='tcpwin',
        description='Tune TCP window settings for a link and run iperf3 against a server',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('server_ip', nargs='?', help='iperf3 server address')
    parser.add_argument('--config', help='JSON configuration file')
    parser.add_argument('--backup-file', help='Canonical backup file path')
    parser.add_argument('--bandwidth-gbps', type=int, help='Target link bandwidth in Gbps')
    parser.add_argument('--no-interface-tuning', action='store_true', help='Skip ethtool/MTU tuning')
    parser.add_argument('--no-auxiliary', action='store_true', help='Only apply buffer settings')
    parser.add_argument('--log-level', default=os.environ.get('TCPWIN_LOG_LEVEL', 'INFO'),
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    parser.add_argument('--log-file', help='Also write log output to this file')

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--backup-only', action='store_true', help='Only back up current settings')
    mode.add_argument('--restore-only', action='store_true', help='Only restore the last backup')
    return parser


def setup_logging(level: str, log_file=None):
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        handlers=handlers
    )


def load_config(args) -> TuningConfig:
    overrides = {
        'backup_file': args.backup_file,
        'bandwidth_gbps': args.bandwidth_gbps,
    }
    if args.no_interface_tuning:
        overrides['tune_interface'] = False
    if args.no_auxiliary:
        overrides['auxiliary_tuning'] = False

    if args.config:
        return TuningConfig.from_file(args.config, overrides)
    return TuningConfig({k: v for k, v in overrides.items() if v is not None})


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not (args.backup_only or args.restore_only) and not args.server_ip:
        parser.error("exactly one server address is required")

    setup_logging(args.log_level, args.log_file)

    try:
        config = load_config(args)
    except (OSError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    orchestrator = Orchestrator(config)

    try:
        if args.backup_only:
            orchestrator.backup_only()
        elif args.restore_only:
            orchestrator.restore_only()
        else:
            orchestrator.run(args.server_ip)
    except (UsageError, PrivilegeError) as e:
        logger.error(str(e))
        return 1
    except (BackupError, BackupNotFound) as e:
        logger.error(str(e))
        return 1
    except PartialRestoreFailure as e:
        logger.error(f"Restore incomplete: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
