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

import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../..'))
from unittest.mock import MagicMock, patch

from reconnaissance.iperf import Iperf3Tester, ThroughputResult, parse_receiver_throughput
from tcpwin.config import TuningConfig

MULTI_STREAM = """[ ID] Interval           Transfer     Bitrate         Retr
[  5]   0.00-30.00  sec  4.31 GBytes  1.23 Gbits/sec  120             sender
[  5]   0.00-30.04  sec  4.30 GBytes  1.23 Gbits/sec                  receiver
[SUM]   0.00-30.00  sec  34.5 GBytes  9.88 Gbits/sec  960             sender
[SUM]   0.00-30.04  sec  34.4 GBytes  9.85 Gbits/sec                  receiver

iperf Done.
"""

SINGLE_STREAM = """[  5]   0.00-10.00  sec  1.10 GBytes   941 Mbits/sec    0             sender
[  5]   0.00-10.04  sec  1.09 GBytes   933 Mbits/sec                  receiver
"""


class TestParseReceiverThroughput:
    """Test extraction of aggregate receiver throughput"""

    def test_sum_receiver_line(self):
        """Test the [SUM] receiver line is used for parallel streams"""
        assert parse_receiver_throughput(MULTI_STREAM) == pytest.approx(9.85)

    def test_single_stream_receiver(self):
        """Test per-stream receiver line in Mbits is converted to Gbits"""
        assert parse_receiver_throughput(SINGLE_STREAM) == pytest.approx(0.933)

    @pytest.mark.parametrize('output', ['', None, 'iperf3: error - unable to connect to server'])
    def test_no_summary(self, output):
        """Test None without a receiver line"""
        assert parse_receiver_throughput(output) is None


class TestIperf3Command:
    """Test iperf3 command construction"""

    @patch('reconnaissance.iperf.shutil.which', return_value=None)
    def test_forward_command(self, mock_which):
        """Test streams, duration, buffer and window are passed"""
        tester = Iperf3Tester(parallel_streams=8, test_duration=30, buffer_size='128K')

        cmd = tester.command('10.0.0.10', 134217728)

        assert cmd == ['iperf3', '-c', '10.0.0.10', '-P', '8', '-t', '30', '-l', '128K',
                       '-w', '134217728', '-Z']

    @patch('reconnaissance.iperf.shutil.which', return_value='/usr/bin/numactl')
    def test_reverse_with_numactl(self, mock_which):
        """Test reverse mode and numactl prefix"""
        cmd = Iperf3Tester().command('h', 65536, reverse=True)

        assert cmd[:2] == ['numactl', '--localalloc']
        assert cmd[-1] == '-R'

    def test_from_config(self):
        """Test tester settings come from TuningConfig"""
        tester = Iperf3Tester.from_config(TuningConfig({'parallel_streams': 4, 'test_duration': 10}))

        assert tester.parallel_streams == 4
        assert tester.test_duration == 10
        assert tester.buffer_size == '128K'


class TestIperf3Run:
    """Test running both directions"""

    @patch('reconnaissance.iperf.time.sleep')
    @patch('reconnaissance.iperf.subprocess.run')
    def test_download_then_upload(self, mock_run, mock_sleep, tmp_path):
        """Test download runs reversed first, results and log are recorded"""
        mock_run.side_effect = [
            MagicMock(returncode=0, stdout=MULTI_STREAM, stderr=''),
            MagicMock(returncode=0, stdout=SINGLE_STREAM, stderr=''),
        ]
        tester = Iperf3Tester(use_numactl=False, inter_test_delay=5, log_dir=str(tmp_path))

        result = tester.run('10.0.0.10', 65536)

        assert result.download_gbps == pytest.approx(9.85)
        assert result.upload_gbps == pytest.approx(0.933)
        assert '-R' in mock_run.call_args_list[0][0][0]
        assert '-R' not in mock_run.call_args_list[1][0][0]
        mock_sleep.assert_called_once_with(5)
        with open(result.log_path) as f:
            assert '### download' in f.read()

    @patch('reconnaissance.iperf.time.sleep')
    @patch('reconnaissance.iperf.subprocess.run')
    def test_failed_direction_recorded(self, mock_run, mock_sleep, tmp_path):
        """Test a failing direction is reported and the other still runs"""
        mock_run.side_effect = [
            MagicMock(returncode=1, stdout='', stderr='unable to connect'),
            MagicMock(returncode=0, stdout=MULTI_STREAM, stderr=''),
        ]
        tester = Iperf3Tester(use_numactl=False, log_dir=str(tmp_path))

        result = tester.run('10.0.0.10', 65536)

        assert result.download_gbps is None
        assert result.upload_gbps == pytest.approx(9.85)
        assert len(result.errors) == 1
        assert result.errors[0].startswith('download')

    def test_result_as_dict(self):
        """Test result serialisation"""
        result = ThroughputResult(download_gbps=1.0, upload_gbps=2.0, log_path='x.log')

        assert result.as_dict() == {
            'download_gbps': 1.0, 'upload_gbps': 2.0, 'log_path': 'x.log', 'errors': []
        }
