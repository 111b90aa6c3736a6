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

import statistics
from typing import List, Optional


def aggregate_samples(samples: List[Optional[float]], method: str = 'mean') -> Optional[float]:
    """
    Aggregate multiple samples using specified method

    Args:
        samples: List of sample values (may contain None)
        method: Aggregation method ('median', 'mean', 'min', 'max')

    Returns:
        Aggregated value, or None if no valid samples exist
    """
    valid_samples = [s for s in samples if s is not None and s != float('inf') and s >= 0]

    if not valid_samples:
        return None

    if method == 'median':
        return statistics.median(valid_samples)
    elif method == 'mean':
        return statistics.mean(valid_samples)
    elif method == 'min':
        return min(valid_samples)
    elif method == 'max':
        return max(valid_samples)
    else:
        # Default to mean for unknown methods
        return statistics.mean(valid_samples)
