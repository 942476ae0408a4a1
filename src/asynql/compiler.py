# src/asynql/compiler.py
"""
Statement file compiler.

Turns an annotated SQL document into dialect-tagged StatementTemplates.

Format (one directive per line, directive prefix "-- #"):

    -- #! sqlite                  dialect; must be the first directive
    -- #{ player                  open a group (or statement) scope
    -- #  { load                  scopes nest; identifiers are dot-joined
    -- #    :name string "Steve"  variable of the enclosing statement
    SELECT * FROM players WHERE name = :name;
    -- #  }
    -- #}

Other lines starting with "--" are plain comments and are dropped. Every
remaining non-blank line is SQL for the innermost open statement.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .errors import ParseError
from .log import get_logger
from .types import VARIABLE_NAME_RE, Dialect, StatementTemplate, VariableSpec, VariableType

log = get_logger("compiler")

DIRECTIVE_PREFIX = "-- #"
COMMENT_PREFIX = "--"

_ARG_SPLIT = re.compile(r"[ \t]+")
_INT_PREFIX = re.compile(r"^\s*[+-]?\d+")
_FLOAT_PREFIX = re.compile(r"^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
TRUE_WORDS = frozenset({"true", "on", "yes", "1"})


@dataclass(frozen=True)
class StatementFile:
    dialect: Dialect
    statements: Tuple[StatementTemplate, ...]
    source_name: Optional[str] = None

    def by_identifier(self) -> Mapping[str, StatementTemplate]:
        return MappingProxyType({s.identifier: s for s in self.statements})


# =============================================================================
# Default value parsing
# =============================================================================

def parse_int(text: str) -> int:
    """Leading-integer parse that never fails: "7abc" -> 7, "abc" -> 0."""
    m = _INT_PREFIX.match(text)
    return int(m.group(0)) if m else 0


def parse_float(text: str) -> float:
    m = _FLOAT_PREFIX.match(text)
    return float(m.group(0)) if m else 0.0


def parse_default(vtype: VariableType, text: str) -> Tuple[bool, Any]:
    """
    Parse a default literal for a variable of type `vtype`.

    Returns (optional, default). An empty literal means the variable is
    required. Raises ValueError only for a malformed quoted string.
    """
    if text == "":
        return False, None
    if vtype is VariableType.BOOL:
        return True, text.lower() in TRUE_WORDS
    if vtype is VariableType.INT:
        return True, parse_int(text)
    if vtype is VariableType.FLOAT:
        return True, parse_float(text)
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        decoded = json.loads(text)
        if not isinstance(decoded, str):
            raise ValueError(f"expected a JSON string, got {type(decoded).__name__}")
        return True, decoded
    return True, text


def render_default(spec: VariableSpec) -> str:
    """Inverse of parse_default for an optional variable."""
    if spec.type is VariableType.BOOL:
        return "true" if spec.default else "false"
    if spec.type is VariableType.INT:
        return str(int(spec.default))
    if spec.type is VariableType.FLOAT:
        value = float(spec.default)
        if math.isinf(value):
            # "inf" is not a numeric literal here; an overflowing one parses back to it
            return "1e999" if value > 0 else "-1e999"
        return repr(value)
    return json.dumps(str(spec.default), ensure_ascii=False)


# =============================================================================
# Parser
# =============================================================================

class _Scope:
    __slots__ = ("name", "line", "sql", "variables", "has_children")

    def __init__(self, name: str, line: int) -> None:
        self.name = name
        self.line = line
        self.sql: List[str] = []
        self.variables: List[VariableSpec] = []
        self.has_children = False

    @property
    def is_statement(self) -> bool:
        return bool(self.sql or self.variables)


class _Compiler:
    def __init__(self, source_name: Optional[str]) -> None:
        self.source_name = source_name
        self.dialect: Optional[Dialect] = None
        self.stack: List[_Scope] = []
        self.statements: List[StatementTemplate] = []
        self.seen: Dict[str, int] = {}
        self.line_no = 0

    def error(self, message: str, line: Optional[int] = None) -> ParseError:
        return ParseError(message, line=self.line_no if line is None else line, source=self.source_name)

    def full_identifier(self) -> str:
        return ".".join(s.name for s in self.stack)

    def run(self, text: str) -> StatementFile:
        if text.startswith("\ufeff"):
            text = text[1:]
        for line_no, raw in enumerate(text.splitlines(), start=1):
            self.line_no = line_no
            line = raw.strip()
            if not line:
                continue
            if line.startswith(DIRECTIVE_PREFIX):
                self.directive(line[len(DIRECTIVE_PREFIX):])
            elif line.startswith(COMMENT_PREFIX):
                continue
            else:
                self.sql(line)

        if self.dialect is None:
            raise self.error("missing dialect declaration (-- #! sqlite|mysql)")
        if self.stack:
            scope = self.stack[-1]
            raise self.error(f"unclosed scope `{self.full_identifier()}` at end of document", line=scope.line)
        return StatementFile(self.dialect, tuple(self.statements), self.source_name)

    def directive(self, body: str) -> None:
        body = body.strip()
        if not body:
            raise self.error("empty directive")
        symbol, args = body[0], body[1:].strip()
        if self.dialect is None and symbol != "!":
            raise self.error("dialect declaration must be the first directive")
        if symbol == "!":
            self.declare_dialect(args)
        elif symbol == "{":
            self.open_scope(args)
        elif symbol == "}":
            self.close_scope(args)
        elif symbol == ":":
            self.declare_variable(args)
        else:
            raise self.error(f"unknown directive `{symbol}`")

    def declare_dialect(self, args: str) -> None:
        if self.dialect is not None:
            raise self.error("dialect already declared")
        parts = _ARG_SPLIT.split(args) if args else []
        if len(parts) != 1:
            raise self.error("dialect declaration takes exactly one argument")
        try:
            self.dialect = Dialect(parts[0].lower())
        except ValueError:
            raise self.error(f"unknown dialect `{parts[0]}` (expected sqlite or mysql)") from None

    def open_scope(self, args: str) -> None:
        parts = _ARG_SPLIT.split(args) if args else []
        if len(parts) != 1:
            raise self.error("`{` takes exactly one identifier")
        if self.stack:
            parent = self.stack[-1]
            if parent.is_statement:
                raise self.error(f"cannot open `{parts[0]}` inside statement `{self.full_identifier()}`")
            parent.has_children = True
        self.stack.append(_Scope(parts[0], self.line_no))

    def close_scope(self, args: str) -> None:
        if args:
            raise self.error("`}` takes no arguments")
        if not self.stack:
            raise self.error("unmatched `}`")
        identifier = self.full_identifier()
        scope = self.stack.pop()
        if not scope.sql:
            if scope.variables:
                raise self.error(f"statement `{identifier}` declares variables but has no SQL")
            return  # a group

        if identifier in self.seen:
            raise self.error(f"duplicate statement `{identifier}` (first declared on line {self.seen[identifier]})")
        self.seen[identifier] = scope.line

        assert self.dialect is not None
        template = StatementTemplate(
            identifier=identifier,
            dialect=self.dialect,
            raw_text="\n".join(scope.sql),
            variables=tuple(scope.variables),
        )
        _warn_unresolved(template, self.source_name)
        self.statements.append(template)

    def declare_variable(self, args: str) -> None:
        if not self.stack:
            raise self.error("variable declared outside a statement")
        scope = self.stack[-1]
        if scope.has_children:
            raise self.error(f"cannot mix variables with nested groups in `{self.full_identifier()}`")

        parts = _ARG_SPLIT.split(args, maxsplit=2) if args else []
        if len(parts) < 2:
            raise self.error("variable declaration needs a name and a type")
        name, type_token = parts[0], parts[1]
        default_text = parts[2].lstrip() if len(parts) > 2 else ""

        if not VARIABLE_NAME_RE.match(name):
            raise self.error(f"invalid variable name `{name}`")
        if any(v.name == name for v in scope.variables):
            raise self.error(f"duplicate variable `{name}` in `{self.full_identifier()}`")
        try:
            vtype = VariableType(type_token.lower())
        except ValueError:
            raise self.error(f"unknown variable type `{type_token}` (expected string, int, float or bool)") from None
        try:
            optional, default = parse_default(vtype, default_text)
        except ValueError as e:
            raise self.error(f"invalid default for `{name}`: {e}") from None

        scope.variables.append(VariableSpec(name, vtype, optional, default))

    def sql(self, line: str) -> None:
        if self.dialect is None:
            raise self.error("SQL text before dialect declaration")
        if not self.stack:
            raise self.error("SQL text outside of a statement")
        scope = self.stack[-1]
        if scope.has_children:
            raise self.error(f"cannot mix SQL text with nested groups in `{self.full_identifier()}`")
        scope.sql.append(line)


def _warn_unresolved(template: StatementTemplate, source_name: Optional[str]) -> None:
    declared = {v.name for v in template.variables}
    used = set(template.placeholders)
    for name in template.placeholders:
        if name not in declared:
            log.warning("%s: statement %s references undeclared variable :%s",
                        source_name or "<string>", template.identifier, name)
    for v in template.variables:
        if v.name not in used:
            log.warning("%s: statement %s declares unused variable %s",
                        source_name or "<string>", template.identifier, v.name)


# =============================================================================
# Public API
# =============================================================================

def compile_statements(source: str, *, source_name: Optional[str] = None) -> StatementFile:
    """Compile statement source text. Raises ParseError on malformed input."""
    return _Compiler(source_name).run(source)


def load_statement_file(path: Union[str, Path]) -> StatementFile:
    p = Path(path)
    return compile_statements(p.read_text(encoding="utf-8"), source_name=str(p))


def render_statements(dialect: Dialect, templates: Iterable[StatementTemplate]) -> str:
    """
    Serialize templates back into source form.

    Scopes are emitted flat (one `-- #{ full.identifier` per statement), which
    compiles back to the same identifiers, variables and SQL.
    """
    lines = [f"{DIRECTIVE_PREFIX}! {Dialect(dialect).value}"]
    for t in templates:
        lines.append(f"{DIRECTIVE_PREFIX}{{ {t.identifier}")
        for v in t.variables:
            decl = f"{DIRECTIVE_PREFIX}  : {v.name} {v.type.value}"
            if v.optional:
                decl += " " + render_default(v)
            lines.append(decl)
        lines.extend(t.raw_text.split("\n"))
        lines.append(f"{DIRECTIVE_PREFIX}}}")
    return "\n".join(lines) + "\n"
