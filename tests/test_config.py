# ============================================================================
# CONFIGURATION TESTS
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Tests - Deploy file loading and host resolution
# PURPOSE: Verify YAML loading, validation errors and target host selection
# CREATED: 11 OCT 2026
# ============================================================================
"""
Configuration Tests

Covers:
1. load_config reads YAML, fills defaults, ignores unknown keys
2. Missing / malformed / invalid files raise ConfigurationError
3. JIJI_CONFIG overrides the default path
4. resolve_hosts: all hosts, service filter, wildcard, host filter, errors
5. Environment overrides for defaults

Run with:
    pytest tests/test_config.py -v
"""

import textwrap

import pytest

from core.config import get_defaults, load_config
from core.contracts import DiscoveryMode
from core.errors import ConfigurationError


DEPLOY_YML = """
project: shop
builder:
  arch: amd64
ssh:
  user: deploy
  port: 2222
services:
  web:
    hosts: [10.0.1.10, 10.0.1.11]
  web-admin:
    hosts: 10.0.1.11
  worker:
    hosts: [10.0.1.12]
network:
  enabled: true
  cluster_cidr: 10.210.0.0/16
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "deploy.yml"
    path.write_text(textwrap.dedent(DEPLOY_YML))
    return path


@pytest.fixture
def config(config_file):
    return load_config(str(config_file))


# ============================================================================
# LOADING
# ============================================================================

class TestLoadConfig:

    def test_loads_sections(self, config, config_file):
        assert config.project == "shop"
        assert config.ssh.user == "deploy"
        assert config.ssh.port == 2222
        assert config.services["web-admin"].hosts == ["10.0.1.11"]
        assert config.network.enabled
        assert config.network.discovery == DiscoveryMode.CORROSION
        assert config.network.service_domain == "jiji"
        assert config.config_path == str(config_file)

    def test_ssh_defaults_fill_in(self, tmp_path):
        path = tmp_path / "deploy.yml"
        path.write_text("project: shop\nservices: {}\n")
        config = load_config(str(path))
        assert config.ssh.user == get_defaults().ssh.user
        assert config.ssh.max_connections == 30

    def test_env_path(self, config_file, monkeypatch):
        monkeypatch.setenv("JIJI_CONFIG", str(config_file))
        assert load_config().project == "shop"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(str(tmp_path / "nope.yml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "deploy.yml"
        path.write_text("project: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(str(path))

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "deploy.yml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(str(path))

    @pytest.mark.parametrize("body", [
        "services: {}\n",
        "project: 'shop; rm -rf /'\n",
        "project: shop\nservices:\n  web:\n    hosts: ['10.0.0.1 && reboot']\n",
    ])
    def test_invalid_content(self, tmp_path, body):
        path = tmp_path / "deploy.yml"
        path.write_text(body)
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_config(str(path))


# ============================================================================
# HOST RESOLUTION
# ============================================================================

class TestResolveHosts:

    def test_all_hosts_deduplicated_in_order(self, config):
        assert config.resolve_hosts() == ["10.0.1.10", "10.0.1.11", "10.0.1.12"]

    def test_service_filter(self, config):
        assert config.resolve_hosts(services=["worker"]) == ["10.0.1.12"]

    def test_wildcard(self, config):
        assert config.resolve_hosts(services=["web*"]) == ["10.0.1.10", "10.0.1.11"]

    def test_host_filter(self, config):
        assert config.resolve_hosts(services=["web"], hosts=["10.0.1.11"]) == ["10.0.1.11"]

    def test_unknown_service(self, config):
        with pytest.raises(ConfigurationError, match="No service matches 'db'"):
            config.resolve_hosts(services=["db"])

    def test_host_outside_selection(self, config):
        with pytest.raises(ConfigurationError, match="10.0.1.12"):
            config.resolve_hosts(services=["web"], hosts=["10.0.1.12"])

    def test_no_hosts_configured(self, tmp_path):
        path = tmp_path / "deploy.yml"
        path.write_text("project: shop\nservices:\n  web:\n    hosts: []\n")
        with pytest.raises(ConfigurationError, match="No target hosts"):
            load_config(str(path)).resolve_hosts()


# ============================================================================
# DEFAULTS
# ============================================================================

class TestDefaults:

    def test_builtin_values(self):
        defaults = get_defaults()
        assert defaults.gc.stale_threshold_seconds == 180
        assert defaults.gc.offline_threshold_seconds == 600
        assert defaults.lock.lock_path("shop") == ".jiji/shop/deploy.lock"
        assert defaults.audit.audit_path("shop") == ".jiji/shop/audit.txt"

    def test_env_overrides(self, monkeypatch):
        from core.config import reset_defaults

        monkeypatch.setenv("JIJI_STATE_DIR", "/srv/jiji")
        monkeypatch.setenv("JIJI_GC_STALE_THRESHOLD", "60")
        monkeypatch.setenv("JIJI_DNS_ENABLED", "no")
        reset_defaults()

        defaults = get_defaults()
        assert defaults.lock.lock_path("shop") == "/srv/jiji/shop/deploy.lock"
        assert defaults.gc.stale_threshold_seconds == 60
        assert defaults.dns.enabled is False
