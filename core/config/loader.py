# ============================================================================
# DEPLOY CONFIGURATION LOADER
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core - Deploy file parsing
# PURPOSE: Load .jiji/deploy.yml into typed config and resolve target hosts
# CREATED: 03 OCT 2026
# ============================================================================
"""
Deploy Configuration Loader

Reads the project's deploy file (YAML) into a pydantic DeployConfig.
Only the parts the coordination layer needs are modelled: project name,
SSH settings, service -> hosts mapping and network settings. Unknown keys
(builder, proxy, env, ...) are ignored.

Example deploy.yml:
    project: shop
    ssh:
      user: deploy
      key_path: ~/.ssh/id_ed25519
    services:
      web:
        hosts: [10.0.1.10, 10.0.1.11]
      worker:
        hosts: [10.0.1.12]
    network:
      enabled: true
      cluster_cidr: 10.210.0.0/16

Usage:
    from core.config.loader import load_config

    config = load_config()            # JIJI_CONFIG or .jiji/deploy.yml
    hosts = config.resolve_hosts(services=["web"])
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from core.contracts import DiscoveryMode
from core.config.defaults import get_defaults
from core.errors import ConfigurationError, UnsafeValueError
from core.validation import validate_hostname, validate_project_name, validate_service_name

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = ".jiji/deploy.yml"


class SSHConfig(BaseModel):
    """SSH settings for every host in the project."""
    user: str = Field(default_factory=lambda: get_defaults().ssh.user)
    port: int = Field(default_factory=lambda: get_defaults().ssh.port, ge=1, le=65535)
    key_path: Optional[str] = Field(default_factory=lambda: get_defaults().ssh.key_path)
    connect_timeout: int = Field(default_factory=lambda: get_defaults().ssh.connect_timeout, ge=1)
    max_connections: int = Field(default_factory=lambda: get_defaults().ssh.max_connections, ge=1)

    model_config = {"frozen": False, "extra": "ignore"}


class ServiceConfig(BaseModel):
    """One deployable service and the hosts it runs on."""
    hosts: List[str] = Field(default_factory=list)

    model_config = {"frozen": False, "extra": "ignore"}

    @field_validator("hosts", mode="before")
    @classmethod
    def handle_string_input(cls, v):
        """Allow single string as shorthand for single-item list."""
        if isinstance(v, str):
            return [v]
        return v


class NetworkConfig(BaseModel):
    """Private network settings."""
    enabled: bool = False
    cluster_cidr: str = "10.210.0.0/16"
    service_domain: str = Field(default_factory=lambda: get_defaults().dns.service_domain)
    discovery: DiscoveryMode = DiscoveryMode.CORROSION

    model_config = {"frozen": False, "extra": "ignore"}


class DeployConfig(BaseModel):
    """
    Parsed deploy configuration.

    Host order follows first appearance across services, so fanout
    summaries list hosts in the order the operator wrote them.
    """
    project: str = Field(..., max_length=128)
    ssh: SSHConfig = Field(default_factory=SSHConfig)
    services: Dict[str, ServiceConfig] = Field(default_factory=dict)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    config_path: Optional[str] = None

    model_config = {"frozen": False, "extra": "ignore"}

    @field_validator("project")
    @classmethod
    def validate_project(cls, v: str) -> str:
        try:
            return validate_project_name(v)
        except UnsafeValueError as e:
            raise ValueError(str(e)) from None

    @field_validator("services")
    @classmethod
    def validate_services(cls, v: Dict[str, ServiceConfig]) -> Dict[str, ServiceConfig]:
        try:
            for name, service in v.items():
                validate_service_name(name)
                for host in service.hosts:
                    validate_hostname(host)
        except UnsafeValueError as e:
            raise ValueError(str(e)) from None
        return v

    def all_hosts(self) -> List[str]:
        """Every configured host, de-duplicated, in first-seen order."""
        seen: Dict[str, None] = {}
        for service in self.services.values():
            for host in service.hosts:
                seen.setdefault(host, None)
        return list(seen)

    def resolve_hosts(
        self,
        services: Optional[Sequence[str]] = None,
        hosts: Optional[Sequence[str]] = None,
    ) -> List[str]:
        """
        Resolve target hosts from optional service / host filters.

        Args:
            services: Service names to restrict to (trailing * allowed)
            hosts: Explicit hosts; must belong to the project

        Returns:
            Ordered list of target hosts

        Raises:
            ConfigurationError: If a filter matches nothing
        """
        if services:
            selected: Dict[str, None] = {}
            for pattern in services:
                matched = [
                    name for name in self.services
                    if name == pattern or (pattern.endswith("*") and name.startswith(pattern[:-1]))
                ]
                if not matched:
                    raise ConfigurationError(f"No service matches '{pattern}'")
                for name in matched:
                    for host in self.services[name].hosts:
                        selected.setdefault(host, None)
            candidates = list(selected)
        else:
            candidates = self.all_hosts()

        if hosts:
            unknown = [h for h in hosts if h not in candidates]
            if unknown:
                raise ConfigurationError(
                    f"Host(s) not configured for the selected services: {', '.join(unknown)}"
                )
            candidates = [h for h in candidates if h in hosts]

        if not candidates:
            raise ConfigurationError("No target hosts configured")
        return candidates


def load_config(path: Optional[str] = None) -> DeployConfig:
    """
    Load the deploy configuration.

    Args:
        path: Config file path. Defaults to $JIJI_CONFIG, then .jiji/deploy.yml

    Returns:
        DeployConfig instance

    Raises:
        ConfigurationError: If the file is missing, not YAML, or invalid
    """
    config_path = Path(path or os.getenv("JIJI_CONFIG") or DEFAULT_CONFIG_PATH).expanduser()

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

    try:
        config = DeployConfig(**{**data, "config_path": str(config_path)})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    logger.debug(
        f"Loaded config for project {config.project} "
        f"({len(config.services)} services, {len(config.all_hosts())} hosts)"
    )
    return config


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "SSHConfig",
    "ServiceConfig",
    "NetworkConfig",
    "DeployConfig",
    "load_config",
]
