"""
Statement registry and call-time parameter validation.

Templates are keyed by (dialect, identifier). The same identifier may exist
once per dialect, so a project can ship a sqlite and a mysql file side by
side and let the configured backend pick its own.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .compiler import StatementFile
from .errors import ParseError, ValidationError
from .types import Dialect, Scalar, StatementTemplate, VariableSpec, VariableType


class StatementRegistry:
    def __init__(self) -> None:
        self._templates: Dict[Tuple[Dialect, str], StatementTemplate] = {}

    def add_file(self, statement_file: StatementFile) -> None:
        """Register every statement of a file, or none of them on conflict."""
        dialect = statement_file.dialect
        for t in statement_file.statements:
            if (dialect, t.identifier) in self._templates:
                raise ParseError(
                    f"statement `{t.identifier}` is already registered for {dialect.value}",
                    source=statement_file.source_name,
                )
        for t in statement_file.statements:
            self._templates[(dialect, t.identifier)] = t

    def get(self, dialect: Dialect, identifier: str) -> StatementTemplate:
        try:
            return self._templates[(Dialect(dialect), identifier)]
        except KeyError:
            raise ValidationError(
                f"unknown statement `{identifier}` for {Dialect(dialect).value}",
                details={"statement": identifier, "dialect": Dialect(dialect).value},
                remediation="Check the identifier and that the statement file for this dialect is loaded.",
            ) from None

    def identifiers(self, dialect: Dialect) -> List[str]:
        d = Dialect(dialect)
        return [ident for (dia, ident) in self._templates if dia is d]

    def templates(self, dialect: Dialect) -> Mapping[str, StatementTemplate]:
        d = Dialect(dialect)
        return MappingProxyType({ident: t for (dia, ident), t in self._templates.items() if dia is d})

    def __contains__(self, key: Tuple[Dialect, str]) -> bool:
        dialect, identifier = key
        return (Dialect(dialect), identifier) in self._templates

    def __len__(self) -> int:
        return len(self._templates)


def coerce_value(spec: VariableSpec, value: Any, statement: Optional[str] = None) -> Scalar:
    """Type-check a caller-supplied value against its variable spec."""
    t = spec.type
    if t is VariableType.STRING and isinstance(value, str):
        return value
    if t is VariableType.INT and not isinstance(value, bool):
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    if t is VariableType.FLOAT and not isinstance(value, bool) and isinstance(value, (int, float)):
        return float(value)
    if t is VariableType.BOOL:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)

    raise ValidationError(
        f"type mismatch for variable `{spec.name}`: expected {t.value}, got {type(value).__name__}",
        details={"statement": statement, "variable": spec.name, "expected": t.value, "got": repr(value)},
    )


def resolve_params(template: StatementTemplate, caller_params: Optional[Mapping[str, Any]] = None) -> Dict[str, Scalar]:
    """
    Build the parameter mapping for one call.

    Supplied values are coerced, omitted optional variables take their
    default, omitted required variables raise ValidationError. Names not
    declared by the template are ignored.
    """
    caller_params = caller_params or {}
    resolved: Dict[str, Scalar] = {}
    for spec in template.variables:
        if spec.name in caller_params:
            resolved[spec.name] = coerce_value(spec, caller_params[spec.name], template.identifier)
        elif spec.optional:
            resolved[spec.name] = spec.default
        else:
            raise ValidationError(
                f"missing required variable `{spec.name}`",
                details={"statement": template.identifier, "variable": spec.name},
                remediation=f"Pass `{spec.name}` or declare a default for it in the statement file.",
            )
    return resolved
