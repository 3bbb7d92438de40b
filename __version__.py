# ============================================================================
# VERSION - JIJI
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# ============================================================================
"""
Version information for Jiji.

This is the single source of truth for the application version.
Also written into every lock record so operators can tell which
release took a lock.
"""
# Version format: major.minor.patch
__version__ = "0.4.1"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-14"

EPOCH = 1
CODENAME = "Jiji Fleet"
