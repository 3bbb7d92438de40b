# ============================================================================
# SCHEMA MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core - Schema generation from Pydantic models
# PURPOSE: Generate registry SQLite DDL from Pydantic models (single source of truth)
# LAST_REVIEWED: 11 OCT 2026
# ============================================================================

from core.schema.sql_generator import RegistrySchema

__all__ = [
    "RegistrySchema",
]
