"""
Preflight validation for tcpwin.

This script performs validation before any kernel setting is touched:
- Validates a server address was supplied
- Validates the process may mutate kernel settings
- Validates numeric configuration fields and extra backup parameters
- Checks the external tools a run shells out to

Returns an error instead of raising, allowing the caller to fail fast.
"""

import os
import shutil
import logging

from tcpwin.config import GIB
from tcpwin.parameter_registry import PARAMETER_REGISTRY, is_network_parameter
from tcpwin.window_calculator import is_power_of_two

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ['sysctl', 'ping', 'iperf3']
OPTIONAL_TOOLS = ['ethtool', 'numactl', 'ip']

POSITIVE_INT_FIELDS = [
    'bandwidth_gbps', 'parallel_streams', 'test_duration', 'rtt_samples',
    'min_window_bytes', 'fallback_window_bytes', 'buffer_min', 'buffer_default',
    'ring_size', 'mtu',
]

POWER_OF_TWO_FIELDS = ['max_window_bytes', 'min_window_bytes', 'fallback_window_bytes']


def _is_positive_int(value):
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _failure(error_type, error, warnings=None):
    return {
        "result": "FAILURE",
        "error_type": error_type,
        "error": error,
        "warnings": warnings or []
    }


def is_privileged():
    return os.geteuid() == 0


def validate_config(config):
    """Return (errors, warnings) for a plain configuration dict"""
    errors = []
    warnings = []

    for field in POSITIVE_INT_FIELDS:
        if field in config and config[field] is not None and not _is_positive_int(config[field]):
            errors.append(f"{field}: must be a positive integer, got {config[field]!r}")

    fallback = config.get('rtt_fallback_seconds')
    if fallback is not None:
        if isinstance(fallback, bool) or not isinstance(fallback, (int, float)) or fallback <= 0:
            errors.append(f"rtt_fallback_seconds: must be a positive number, got {fallback!r}")

    if 'max_window_bytes' in config and config['max_window_bytes'] is not None:
        if not _is_positive_int(config['max_window_bytes']):
            errors.append(f"max_window_bytes: must be a positive integer or null, got {config['max_window_bytes']!r}")

    for field in POWER_OF_TWO_FIELDS:
        value = config.get(field)
        if _is_positive_int(value) and not is_power_of_two(value):
            errors.append(f"{field}: must be a power of two, got {value}")

    max_window = config.get('max_window_bytes', GIB)
    min_window = config.get('min_window_bytes', 65536)
    if _is_positive_int(max_window) and _is_positive_int(min_window) and min_window > max_window:
        errors.append(f"min_window_bytes ({min_window}) must not exceed max_window_bytes ({max_window})")

    buffer_min = config.get('buffer_min', 4096)
    buffer_default = config.get('buffer_default', 87380)
    if _is_positive_int(buffer_min) and _is_positive_int(buffer_default) and buffer_min > buffer_default:
        errors.append(f"buffer_min ({buffer_min}) must not exceed buffer_default ({buffer_default})")

    delay = config.get('inter_test_delay')
    if delay is not None and (isinstance(delay, bool) or not isinstance(delay, (int, float)) or delay < 0):
        errors.append(f"inter_test_delay: must be a non-negative number, got {delay!r}")

    extra = config.get('extra_backup_params', [])
    if not isinstance(extra, list):
        errors.append("extra_backup_params: must be a list")
    else:
        for name in extra:
            if not isinstance(name, str) or not is_network_parameter(name):
                errors.append(f"extra_backup_params.{name}: only net.* parameters can be backed up")
            elif name not in PARAMETER_REGISTRY:
                # Unknown parameters are allowed to permit experimentation
                warnings.append(f"extra_backup_params.{name}: not in parameter registry")

    return errors, warnings


def main(config=None, server=None, require_server=True, check_privileges=True, check_tools=True):
    """
    Validate a tuning run before it starts.

    Args:
        config: Configuration dict (raw form of TuningConfig)
        server: Throughput test server address
        require_server: Whether a server address is mandatory
        check_privileges: Whether root is required
        check_tools: Whether to look up external tools on PATH

    Returns:
        dict with result status and either success or error details
    """
    if config is None:
        config = {}

    if not isinstance(config, dict):
        return _failure("config", "Config must be a dict")

    if require_server and not (server and str(server).strip()):
        return _failure("usage", "No server address supplied")

    if check_privileges and not is_privileged():
        return _failure("privilege", "Please run as root or with sudo")

    try:
        errors, warnings = validate_config(config)

        if check_tools:
            for tool in REQUIRED_TOOLS:
                if not shutil.which(tool):
                    errors.append(f"required tool '{tool}' not found on PATH")
            for tool in OPTIONAL_TOOLS:
                if not shutil.which(tool):
                    warnings.append(f"optional tool '{tool}' not found on PATH")

        for warning in warnings:
            logger.warning(f"Preflight: {warning}")

        if errors:
            error_msg = "Preflight validation failed:\n" + "\n".join(f"  - {err}" for err in errors)
            return _failure("config", error_msg, warnings)

        return {
            "result": "SUCCESS",
            "warnings": warnings,
            "data": {
                "message": "Preflight validation passed"
            }
        }

    except Exception as e:
        return _failure("config", f"Preflight validation error: {str(e)}")
