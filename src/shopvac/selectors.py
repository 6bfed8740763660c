"""
Label and field selector evaluation

Selectors are parsed once into a tuple of clauses and evaluated as a pure
conjunction. Label clauses support equality, inequality, existence and
non-existence; field clauses support equality and inequality against a dotted
path into the API representation of the pod (e.g. ``status.phase``).
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from shopvac.errors import FieldPathError, SelectorError

_LABEL_KEY = re.compile(
    r"^([a-z0-9]([-a-z0-9.]*[a-z0-9])?/)?[A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?$"
)
_LABEL_VALUE = re.compile(r"^([A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?)?$")
_FIELD_PATH = re.compile(r"^[A-Za-z][A-Za-z0-9]*(\.[A-Za-z][A-Za-z0-9]*)*$")

# field paths the API server accepts as pod list field selectors; anything
# else is only evaluated locally
SERVER_FIELD_PATHS = frozenset({
    "metadata.name",
    "metadata.namespace",
    "spec.nodeName",
    "spec.restartPolicy",
    "spec.schedulerName",
    "spec.serviceAccountName",
    "spec.hostNetwork",
    "status.phase",
    "status.podIP",
    "status.podIPs",
    "status.nominatedNodeName",
})


class Target(Enum):
    LABEL = "label"
    FIELD = "field"


class Operator(Enum):
    EQUALS = "="
    NOT_EQUALS = "!="
    EXISTS = "exists"
    NOT_EXISTS = "!exists"


@dataclass(frozen=True)
class Clause:
    target: Target
    key: str
    operator: Operator
    value: Optional[str] = None

    def holds(self, labels: Mapping[str, str], fields: Mapping[str, Any], pod_key: str = "") -> bool:
        if self.target is Target.LABEL:
            present = self.key in labels
            if self.operator is Operator.EXISTS:
                return present
            if self.operator is Operator.NOT_EXISTS:
                return not present
            if self.operator is Operator.EQUALS:
                return present and labels[self.key] == self.value
            return not present or labels[self.key] != self.value

        actual = format_field_value(resolve_field_path(fields, self.key, pod_key))
        if self.operator is Operator.EQUALS:
            return actual == self.value
        return actual != self.value

    def __str__(self):
        if self.operator is Operator.EXISTS:
            return self.key
        if self.operator is Operator.NOT_EXISTS:
            return f"!{self.key}"
        value = self.value
        if self.target is Target.FIELD:
            value = _escape(value)
        return f"{self.key}{self.operator.value}{value}"


@dataclass(frozen=True)
class Selector:
    """Conjunction of label and field clauses; empty matches everything"""

    clauses: Tuple[Clause, ...] = ()

    @classmethod
    def parse(cls, label_selector: Optional[str] = None,
              field_selector: Optional[str] = None) -> "Selector":
        return cls(parse_label_selector(label_selector) + parse_field_selector(field_selector))

    @property
    def empty(self) -> bool:
        return not self.clauses

    def matches(self, labels: Optional[Mapping[str, str]], fields: Mapping[str, Any],
                pod_key: str = "") -> bool:
        """Evaluate every clause; raises FieldPathError on an unresolvable field path"""
        labels = labels or {}
        # evaluate all clauses so an unresolvable path is reported even when
        # an earlier clause already failed
        results = [clause.holds(labels, fields, pod_key) for clause in self.clauses]
        return all(results)

    def label_query(self) -> Optional[str]:
        return self._query(Target.LABEL)

    def field_query(self) -> Optional[str]:
        return self._query(Target.FIELD)

    def _query(self, target):
        parts = [
            str(c) for c in self.clauses
            if c.target is target and (target is Target.LABEL or c.key in SERVER_FIELD_PATHS)
        ]
        return ",".join(parts) or None


def parse_label_selector(text: Optional[str]) -> Tuple[Clause, ...]:
    clauses = []
    for raw in _split(text):
        if "(" in raw or re.search(r"\s(in|notin)\s", raw):
            raise SelectorError(f"set-based label requirement '{raw}' is not supported")

        if raw.startswith("!"):
            key, operator, value = raw[1:].strip(), Operator.NOT_EXISTS, None
        elif "!=" in raw:
            key, value = raw.split("!=", 1)
            operator = Operator.NOT_EQUALS
        elif "==" in raw:
            key, value = raw.split("==", 1)
            operator = Operator.EQUALS
        elif "=" in raw:
            key, value = raw.split("=", 1)
            operator = Operator.EQUALS
        else:
            key, operator, value = raw, Operator.EXISTS, None

        key = key.strip()
        if not _LABEL_KEY.match(key):
            raise SelectorError(f"invalid label key '{key}' in selector clause '{raw}'")
        if value is not None:
            value = value.strip()
            if not _LABEL_VALUE.match(value):
                raise SelectorError(f"invalid label value '{value}' in selector clause '{raw}'")
        clauses.append(Clause(Target.LABEL, key, operator, value))
    return tuple(clauses)


def parse_field_selector(text: Optional[str]) -> Tuple[Clause, ...]:
    clauses = []
    for raw in _split(text, escapes=True):
        operator = None
        for token, op in (("!=", Operator.NOT_EQUALS), ("==", Operator.EQUALS), ("=", Operator.EQUALS)):
            index = _find_unescaped(raw, token)
            if index >= 0:
                key, value = raw[:index], raw[index + len(token):]
                operator = op
                break
        if operator is None:
            raise SelectorError(f"field selector clause '{raw}' needs an '=', '==' or '!=' operator")

        key = key.strip()
        if not _FIELD_PATH.match(key):
            raise SelectorError(f"invalid field path '{key}' in selector clause '{raw}'")
        clauses.append(Clause(Target.FIELD, key, operator, _unescape(value.strip())))
    return tuple(clauses)


def resolve_field_path(fields: Mapping[str, Any], path: str, pod_key: str = "") -> Any:
    value: Any = fields
    for part in path.split("."):
        if not isinstance(value, Mapping) or part not in value or value[part] is None:
            raise FieldPathError(path, pod_key)
        value = value[part]
    if isinstance(value, (Mapping, list)):
        raise FieldPathError(path, pod_key)
    return value


def format_field_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _split(text, escapes=False):
    if not text or not text.strip():
        return []
    parts, current, escaped = [], [], False
    for char in text:
        if escaped:
            current.append(char)
            escaped = False
        elif escapes and char == "\\":
            current.append(char)
            escaped = True
        elif char == ",":
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))

    clauses = [part.strip() for part in parts]
    if any(not clause for clause in clauses):
        raise SelectorError(f"empty clause in selector '{text}'")
    return clauses


def _find_unescaped(text, token):
    index = 0
    while index < len(text):
        if text[index] == "\\":
            index += 2
            continue
        if text.startswith(token, index):
            return index
        index += 1
    return -1


def _unescape(value):
    return re.sub(r"\\(.)", r"\1", value)


def _escape(value):
    return re.sub(r"([\\,=])", r"\\\1", value)
