"""
Parameter Registry for tcpwin.

Kernel parameters that tcpwin reads for backup or writes while tuning.
The applied values themselves live in settings_applier; this registry only
carries metadata and the backup ordering.
"""

NETWORK_PREFIX = "net."

PARAMETER_REGISTRY = {
    # =========================================================================
    # SOCKET BUFFERS (net.core.*)
    # =========================================================================
    "net.core.rmem_max": {
        "type": "int",
        "category": "buffer",
        "description": "Max socket receive buffer",
    },
    "net.core.wmem_max": {
        "type": "int",
        "category": "buffer",
        "description": "Max socket send buffer",
    },
    "net.core.rmem_default": {
        "type": "int",
        "category": "buffer",
        "description": "Default socket receive buffer",
    },
    "net.core.wmem_default": {
        "type": "int",
        "category": "buffer",
        "description": "Default socket send buffer",
    },

    # =========================================================================
    # TCP BUFFERS & WINDOW (net.ipv4.*)
    # =========================================================================
    "net.ipv4.tcp_rmem": {
        "type": "triple",
        "category": "buffer",
        "description": "TCP read buffer (min, default, max)",
    },
    "net.ipv4.tcp_wmem": {
        "type": "triple",
        "category": "buffer",
        "description": "TCP write buffer (min, default, max)",
    },
    "net.ipv4.tcp_window_scaling": {
        "type": "categorical",
        "category": "buffer",
        "description": "TCP window scaling (RFC 7323)",
        "available_values": [0, 1],
    },
    "net.ipv4.tcp_moderate_rcvbuf": {
        "type": "categorical",
        "category": "buffer",
        "description": "Receive buffer auto-tuning",
        "available_values": [0, 1],
    },

    # =========================================================================
    # CONNECTION & CONGESTION
    # =========================================================================
    "net.ipv4.tcp_max_syn_backlog": {
        "type": "int",
        "category": "auxiliary",
        "description": "Max pending SYN connections",
        "typical_range": [128, 8192],
    },
    "net.ipv4.tcp_congestion_control": {
        "type": "categorical",
        "category": "auxiliary",
        "description": "TCP congestion algorithm",
        "available_values": ["reno", "cubic", "bbr", "bbr2", "htcp", "veno", "scalable"],
    },
    "net.ipv4.tcp_mtu_probing": {
        "type": "int",
        "category": "auxiliary",
        "description": "MTU probing",
        "typical_range": [0, 2],
    },
    "net.ipv4.tcp_slow_start_after_idle": {
        "type": "categorical",
        "category": "auxiliary",
        "description": "Restart slow start after idle",
        "available_values": [0, 1],
    },
    "net.ipv4.tcp_no_metrics_save": {
        "type": "categorical",
        "category": "auxiliary",
        "description": "Do not cache metrics on closing connections",
        "available_values": [0, 1],
    },
    "net.ipv4.tcp_low_latency": {
        "type": "categorical",
        "category": "auxiliary",
        "description": "Low latency mode (deprecated)",
        "available_values": [0, 1],
    },
    "net.ipv4.tcp_timestamps": {
        "type": "categorical",
        "category": "auxiliary",
        "description": "TCP timestamps (PAWS)",
        "available_values": [0, 1],
    },
    "net.ipv4.tcp_sack": {
        "type": "categorical",
        "category": "auxiliary",
        "description": "TCP selective acknowledgments",
        "available_values": [0, 1],
    },

    # =========================================================================
    # NETWORK DEVICE
    # =========================================================================
    "net.core.netdev_max_backlog": {
        "type": "int",
        "category": "auxiliary",
        "description": "Device backlog queue",
        "typical_range": [100, 250000],
    },
    "net.core.netdev_budget": {
        "type": "int",
        "category": "auxiliary",
        "description": "NAPI polling budget",
        "typical_range": [10, 600],
    },
    "net.core.netdev_budget_usecs": {
        "type": "int",
        "category": "auxiliary",
        "description": "NAPI budget in microseconds",
        "typical_range": [1000, 10000],
    },
}

# Order of the classic backup script, then the auxiliary parameters the
# applier writes that it never captured
BACKUP_PARAMETERS = [
    "net.core.rmem_max",
    "net.core.wmem_max",
    "net.core.rmem_default",
    "net.core.wmem_default",
    "net.ipv4.tcp_rmem",
    "net.ipv4.tcp_wmem",
    "net.ipv4.tcp_window_scaling",
    "net.ipv4.tcp_max_syn_backlog",
    "net.core.netdev_max_backlog",
    "net.ipv4.tcp_no_metrics_save",
    "net.ipv4.tcp_moderate_rcvbuf",
    "net.ipv4.tcp_congestion_control",
    "net.ipv4.tcp_mtu_probing",
    "net.ipv4.tcp_slow_start_after_idle",
    "net.core.netdev_budget",
    "net.core.netdev_budget_usecs",
    "net.ipv4.tcp_low_latency",
    "net.ipv4.tcp_timestamps",
    "net.ipv4.tcp_sack",
]


def is_network_parameter(name: str) -> bool:
    return name.startswith(NETWORK_PREFIX)


def backup_parameters(extra=None):
    """BACKUP_PARAMETERS followed by any extra names, duplicates dropped"""
    params = list(BACKUP_PARAMETERS)
    for name in extra or []:
        if name not in params:
            params.append(name)
    return params
