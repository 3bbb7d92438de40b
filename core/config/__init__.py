# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 02 OCT 2026
# ============================================================================
"""
Configuration Module

Environment-driven defaults plus the project deploy file loader.
"""

from core.config.defaults import (
    SSHDefaults,
    FanoutDefaults,
    LockDefaults,
    RegistryDefaults,
    GCDefaults,
    AuditDefaults,
    DnsDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)
from core.config.loader import (
    DeployConfig,
    SSHConfig,
    ServiceConfig,
    NetworkConfig,
    load_config,
)

__all__ = [
    "SSHDefaults",
    "FanoutDefaults",
    "LockDefaults",
    "RegistryDefaults",
    "GCDefaults",
    "AuditDefaults",
    "DnsDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
    "DeployConfig",
    "SSHConfig",
    "ServiceConfig",
    "NetworkConfig",
    "load_config",
]
