"""
Oracle -> PostgreSQL type defaults.

Used to fill in DDL when a column mapping carries no explicit target type.
"""

import re
from enum import Enum
from typing import Dict, Optional, Tuple


class IRType(Enum):
    # Numeric
    SMALLINT = "SMALLINT"
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    DECIMAL = "NUMERIC"  # With precision/scale
    REAL = "REAL"
    DOUBLE = "DOUBLE PRECISION"

    # String
    CHAR = "CHAR"
    VARCHAR = "VARCHAR"
    TEXT = "TEXT"

    # Binary
    BYTEA = "BYTEA"

    # Date/Time
    TIMESTAMP = "TIMESTAMP"
    TIMESTAMP_TZ = "TIMESTAMP WITH TIME ZONE"
    INTERVAL = "INTERVAL"


class TypeInfo:
    def __init__(self, ir_type: IRType, precision: Optional[int] = None,
                 scale: Optional[int] = None, length: Optional[int] = None):
        self.ir_type = ir_type
        self.precision = precision
        self.scale = scale
        self.length = length

    def __repr__(self):
        return f"TypeInfo({self.ir_type.name}, p={self.precision}, s={self.scale}, l={self.length})"


class TypeRegistry:
    # base_type -> (IRType, keep_precision)
    ORACLE_TO_IR: Dict[str, Tuple[IRType, bool]] = {
        'NUMBER': (IRType.DECIMAL, True),
        'INTEGER': (IRType.DECIMAL, False),
        'FLOAT': (IRType.DOUBLE, False),
        'BINARY_FLOAT': (IRType.REAL, False),
        'BINARY_DOUBLE': (IRType.DOUBLE, False),
        'VARCHAR2': (IRType.VARCHAR, True),
        'NVARCHAR2': (IRType.VARCHAR, True),
        'VARCHAR': (IRType.VARCHAR, True),
        'CHAR': (IRType.CHAR, True),
        'NCHAR': (IRType.CHAR, True),
        'CLOB': (IRType.TEXT, False),
        'NCLOB': (IRType.TEXT, False),
        'LONG': (IRType.TEXT, False),
        'BLOB': (IRType.BYTEA, False),
        'RAW': (IRType.BYTEA, False),
        'LONG RAW': (IRType.BYTEA, False),
        'DATE': (IRType.TIMESTAMP, False),
        'TIMESTAMP': (IRType.TIMESTAMP, False),
        'TIMESTAMP WITH TIME ZONE': (IRType.TIMESTAMP_TZ, False),
        'TIMESTAMP WITH LOCAL TIME ZONE': (IRType.TIMESTAMP_TZ, False),
        'INTERVAL DAY TO SECOND': (IRType.INTERVAL, False),
        'INTERVAL YEAR TO MONTH': (IRType.INTERVAL, False),
    }

    @staticmethod
    def map_to_ir(source_type: str) -> TypeInfo:
        """Map an Oracle column type to the intermediate representation"""
        base_type, precision, scale = TypeRegistry.parse_type_string(source_type)
        mapping = TypeRegistry.ORACLE_TO_IR.get(base_type)
        if not mapping:
            # e.g. 'TIMESTAMP(6) WITH TIME ZONE' parses to the full modifier string
            for key, val in TypeRegistry.ORACLE_TO_IR.items():
                if base_type.startswith(key):
                    mapping = val
                    break
        if not mapping:
            return TypeInfo(IRType.TEXT)

        ir_type, keep_precision = mapping
        if not keep_precision:
            return TypeInfo(ir_type)

        if ir_type == IRType.DECIMAL:
            # NUMBER(p,0) is an integer column
            if precision is not None and not scale:
                if precision <= 4:
                    return TypeInfo(IRType.SMALLINT)
                if precision <= 9:
                    return TypeInfo(IRType.INTEGER)
                if precision <= 18:
                    return TypeInfo(IRType.BIGINT)
            return TypeInfo(IRType.DECIMAL, precision, scale)

        return TypeInfo(ir_type, length=precision)

    @staticmethod
    def map_from_ir(type_info: TypeInfo) -> str:
        base_type = type_info.ir_type.value
        if type_info.ir_type == IRType.DECIMAL and type_info.precision:
            if type_info.scale:
                return f"{base_type}({type_info.precision},{type_info.scale})"
            return f"{base_type}({type_info.precision})"
        elif type_info.ir_type in (IRType.VARCHAR, IRType.CHAR) and type_info.length:
            return f"{base_type}({type_info.length})"
        return base_type

    @staticmethod
    def to_postgres(source_type: str) -> str:
        return TypeRegistry.map_from_ir(TypeRegistry.map_to_ir(source_type))

    @staticmethod
    def parse_type_string(type_str: str) -> Tuple[str, Optional[int], Optional[int]]:
        """Parse 'NUMBER(10,2)' -> ('NUMBER', 10, 2)
        Also handles 'TIMESTAMP(6) WITH TIME ZONE' -> ('TIMESTAMP WITH TIME ZONE', 6, None)
        """
        normalized = ' '.join((type_str or '').upper().split())
        match = re.match(r'^([^(]*)(?:\(([^)]*)\))?(.*)$', normalized)
        if not match:
            return (normalized, None, None)

        base_prefix = match.group(1).strip()
        args = (match.group(2) or '').split(',')
        trailing = match.group(3).strip()

        def _int_arg(index):
            if index >= len(args):
                return None
            digits = re.match(r'\s*(-?\d+)', args[index])
            return int(digits.group(1)) if digits else None

        precision = _int_arg(0)
        scale = _int_arg(1)

        base = (base_prefix + ' ' + trailing).strip() if trailing else base_prefix
        return (base, precision, scale)
