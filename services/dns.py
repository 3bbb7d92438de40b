# ============================================================================
# DNS PROJECTION
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Service - Registry to hosts-file projection
# PURPOSE: Service hostnames and the "regenerate hosts" trigger on a host
# CREATED: 07 OCT 2026
# ============================================================================
"""
DNS Projection

Each host runs a small script that regenerates its hosts file from the
registry. Registering a container makes its service resolvable as
<project>-<service>.<domain> (and <project>-<service>-<instance>.<domain>
for a specific instance) once the script has run.

The projection is a collaborator of the registry, not part of it:
callers treat every failure here as best-effort.
"""

import logging
from typing import List, Optional

from core.config.defaults import DnsDefaults, get_defaults
from core.validation import validate_container_id, validate_project_name, validate_service_name
from infrastructure.remote_shell import Shell

logger = logging.getLogger(__name__)


class DnsProjection:
    """Hostname bookkeeping and hosts-file regeneration on one host."""

    def __init__(self, project: str, service_domain: Optional[str] = None, defaults: Optional[DnsDefaults] = None):
        self.defaults = defaults or get_defaults().dns
        self.project = validate_project_name(project)
        self.service_domain = service_domain or self.defaults.service_domain

    @property
    def enabled(self) -> bool:
        return self.defaults.enabled

    def hostnames(self, service: str, instance_id: Optional[str] = None) -> List[str]:
        """Names a container of this service answers to."""
        validate_service_name(service)
        names = [f"{self.project}-{service}.{self.service_domain}"]
        if instance_id:
            validate_container_id(instance_id)
            names.append(f"{self.project}-{service}-{instance_id}.{self.service_domain}")
        return names

    def register_hostname(self, service: str, instance_id: Optional[str] = None) -> List[str]:
        names = self.hostnames(service, instance_id)
        logger.debug(f"DNS names for {service}: {', '.join(names)}")
        return names

    def unregister_hostname(self, service: str, instance_id: Optional[str] = None) -> List[str]:
        names = self.hostnames(service, instance_id)
        logger.debug(f"DNS names withdrawn for {service}: {', '.join(names)}")
        return names

    async def trigger_hosts_update(self, shell: Shell) -> None:
        """
        Regenerate the hosts file on a host.

        Raises:
            CommandError: If the script is missing or fails
        """
        script = self.defaults.update_script_path
        await shell.run(f"test -x {script} && {script}", timeout=60)
        logger.debug(f"Hosts file regenerated on {shell.host}")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["DnsProjection"]
