# ============================================================================
# PYDANTIC TO SQLITE GENERATOR
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core - DDL generation from Pydantic models
# PURPOSE: Generate registry CREATE / ALTER statements from Pydantic models
# LAST_REVIEWED: 11 OCT 2026
# EXPORTS: RegistrySchema
# DEPENDENCIES: pydantic
# ============================================================================
"""
Pydantic to SQLite Schema Generator.

The registry is SQLite replicated by Corrosion, so the DDL is plain SQLite:
TEXT / INTEGER / REAL columns, inline single-column primary keys, and
CREATE ... IF NOT EXISTS throughout so the statements can be re-applied on
every host.

Model Metadata Convention:
    Models define SQL metadata via ClassVar attributes:
    - __sql_table__: Table name
    - __sql_primary_key__: Primary key column(s) - string or list
    - __sql_indexes__: List of (name, columns) tuples
    - __sql_migrations__: Columns added after the first release

    A field alias, when set, is the column name.

Usage:
    schema = RegistrySchema()
    for stmt in schema.generate_all():
        await client.execute(stmt)
"""

import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, Union, get_args, get_origin

from pydantic import BaseModel
from pydantic.fields import FieldInfo
from pydantic_core import PydanticUndefined

logger = logging.getLogger(__name__)

_SQL_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


def _check_name(name: str) -> str:
    if not _SQL_NAME_RE.match(name):
        raise ValueError(f"Invalid SQL identifier in model metadata: {name!r}")
    return name


class RegistrySchema:
    """
    Convert Pydantic models to SQLite DDL statements.

    Analyzes Pydantic models with __sql_* metadata and generates the
    corresponding CREATE TABLE, CREATE INDEX and ALTER TABLE statements.
    """

    TYPE_MAP = {
        str: "TEXT",
        int: "INTEGER",
        bool: "INTEGER",
        float: "REAL",
        dict: "TEXT",
        list: "TEXT",
    }

    def __init__(self, models: Optional[Sequence[Type[BaseModel]]] = None):
        if models is None:
            from core.models.registry import REGISTRY_TABLES
            models = REGISTRY_TABLES
        self.models = list(models)

    # =========================================================================
    # METADATA EXTRACTION
    # =========================================================================

    @staticmethod
    def get_model_metadata(model: Type[BaseModel]) -> Dict[str, Any]:
        """
        Extract SQL DDL metadata from a Pydantic model.

        Args:
            model: Pydantic model class

        Returns:
            Dict with table, primary_key, indexes, migrations
        """
        metadata = {
            "table": getattr(model, "__sql_table__", None),
            "primary_key": getattr(model, "__sql_primary_key__", []),
            "indexes": getattr(model, "__sql_indexes__", []),
            "migrations": getattr(model, "__sql_migrations__", []),
        }

        if isinstance(metadata["primary_key"], str):
            metadata["primary_key"] = [metadata["primary_key"]]

        if not metadata["table"]:
            raise ValueError(f"Model {model.__name__} missing __sql_table__ attribute")

        return metadata

    @staticmethod
    def column_name(field_name: str, field_info: FieldInfo) -> str:
        return _check_name(field_info.alias or field_name)

    # =========================================================================
    # TYPE CONVERSION
    # =========================================================================

    def python_type_to_sql(self, field_type: Any) -> Tuple[str, bool]:
        """
        Convert a Python annotation to an SQLite type.

        Returns:
            (sql_type, is_optional)
        """
        actual_type = field_type
        is_optional = False
        origin = get_origin(field_type)

        if origin is Union:
            args = [a for a in get_args(field_type) if a is not type(None)]
            is_optional = len(args) < len(get_args(field_type))
            actual_type = args[0] if args else str
            origin = get_origin(actual_type)

        if origin in (dict, list, Dict, List):
            return "TEXT", is_optional

        if isinstance(actual_type, type) and issubclass(actual_type, Enum):
            return "TEXT", is_optional

        return self.TYPE_MAP.get(actual_type, "TEXT"), is_optional

    @staticmethod
    def default_literal(value: Any) -> str:
        if value is None:
            return "NULL"
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (int, float)):
            return repr(value)
        return "'" + str(value).replace("'", "''") + "'"

    # =========================================================================
    # TABLE GENERATION
    # =========================================================================

    def column_definition(self, model: Type[BaseModel], field_name: str) -> str:
        """
        Render one column definition.

        Non-optional columns are NOT NULL and always carry a DEFAULT so they
        can be added to an existing table with ALTER TABLE.
        """
        meta = self.get_model_metadata(model)
        field_info = model.model_fields[field_name]
        column = self.column_name(field_name, field_info)
        sql_type, is_optional = self.python_type_to_sql(field_info.annotation)

        parts = [column, sql_type]

        if column in meta["primary_key"] and len(meta["primary_key"]) == 1:
            parts.append("NOT NULL PRIMARY KEY")
            return " ".join(parts)

        default = field_info.default
        if default is PydanticUndefined:
            # Required fields and default_factory collections
            default = "" if sql_type == "TEXT" else 0

        if is_optional:
            parts.append(f"DEFAULT {self.default_literal(default)}")
        else:
            parts.append(f"NOT NULL DEFAULT {self.default_literal(default)}")

        return " ".join(parts)

    def generate_table(self, model: Type[BaseModel]) -> str:
        """
        Generate CREATE TABLE DDL from a Pydantic model.

        Args:
            model: Pydantic model with __sql_* metadata

        Returns:
            CREATE TABLE IF NOT EXISTS statement
        """
        meta = self.get_model_metadata(model)
        table_name = _check_name(meta["table"])
        primary_key = meta["primary_key"]

        logger.debug(f"Generating table {table_name} from {model.__name__}")

        columns = [self.column_definition(model, name) for name in model.model_fields]

        if len(primary_key) > 1:
            pk_columns = ", ".join(_check_name(col) for col in primary_key)
            columns.append(f"PRIMARY KEY ({pk_columns})")

        body = ",\n  ".join(columns)
        return f"CREATE TABLE IF NOT EXISTS {table_name} (\n  {body}\n)"

    # =========================================================================
    # INDEX GENERATION
    # =========================================================================

    def generate_indexes(self, model: Type[BaseModel]) -> List[str]:
        """
        Generate CREATE INDEX statements from a model's __sql_indexes__.

        Args:
            model: Pydantic model with __sql_indexes__ attribute

        Returns:
            List of CREATE INDEX IF NOT EXISTS statements
        """
        meta = self.get_model_metadata(model)
        table_name = _check_name(meta["table"])

        result = []
        for idx_def in meta["indexes"]:
            if not isinstance(idx_def, tuple) or len(idx_def) < 2:
                continue
            name, columns = idx_def[0], idx_def[1]
            if isinstance(columns, str):
                columns = [columns]
            if not columns or not name:
                continue
            column_list = ", ".join(_check_name(c) for c in columns)
            result.append(
                f"CREATE INDEX IF NOT EXISTS {_check_name(name)} ON {table_name}({column_list})"
            )
        return result

    # =========================================================================
    # MIGRATIONS
    # =========================================================================

    def migration_columns(self, model: Type[BaseModel]) -> Dict[str, str]:
        """Column name -> definition for every column added after the first schema."""
        meta = self.get_model_metadata(model)
        columns = {}
        for field_name in meta["migrations"]:
            field_info = model.model_fields[field_name]
            columns[self.column_name(field_name, field_info)] = self.column_definition(model, field_name)
        return columns

    def generate_migrations(self, model: Type[BaseModel], existing_columns: Sequence[str]) -> List[str]:
        """
        ALTER TABLE statements for migration columns missing from a live table.

        Args:
            model: Table model
            existing_columns: Column names currently present

        Returns:
            ALTER TABLE ... ADD COLUMN statements (empty when up to date)
        """
        table_name = _check_name(self.get_model_metadata(model)["table"])
        existing = set(existing_columns)
        return [
            f"ALTER TABLE {table_name} ADD COLUMN {definition}"
            for column, definition in self.migration_columns(model).items()
            if column not in existing
        ]

    # =========================================================================
    # COMPLETE SCHEMA GENERATION
    # =========================================================================

    def generate_all(self) -> List[str]:
        """
        Generate complete DDL for all registry models.

        Returns:
            List of statements: tables first, then indexes
        """
        statements = [self.generate_table(model) for model in self.models]
        for model in self.models:
            statements.extend(self.generate_indexes(model))

        logger.debug(f"Generated {len(statements)} DDL statements for {len(self.models)} tables")
        return statements

    def table_for(self, table_name: str) -> Type[BaseModel]:
        for model in self.models:
            if self.get_model_metadata(model)["table"] == table_name:
                return model
        raise KeyError(table_name)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ['RegistrySchema']
