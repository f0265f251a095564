"""Condition and value expressions evaluated against workflow variables.

Expressions use Python syntax restricted to a whitelist of AST nodes, plus a
few conveniences common in workflow definitions::

    amount > 100 && status == "approved"
    !escalated || customer.tier == 'gold'
    parse_datetime(contract.start) + days(30)

Mappings support attribute access (``customer.tier``) as well as subscripts
(``customer['tier']``). Only the helper functions in ``_FUNCTIONS`` may be
called.
"""

from __future__ import annotations

import ast
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Protocol

from .exceptions import ExpressionError
from .utils.clock import parse_datetime, utcnow

logger = logging.getLogger(__name__)


class ExpressionEvaluator(Protocol):
    def evaluate_condition(self, expression: str | None, variables: Mapping[str, Any]) -> bool:
        """Return the truth value of ``expression``; empty is true."""

    def evaluate(self, expression: str | None, variables: Mapping[str, Any]) -> Any:
        """Return the value of ``expression``."""


def _today() -> datetime:
    now = utcnow()
    return datetime(now.year, now.month, now.day, tzinfo=timezone.utc)


_FUNCTIONS: Dict[str, Any] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "now": utcnow,
    "today": _today,
    "days": lambda n: timedelta(days=n),
    "hours": lambda n: timedelta(hours=n),
    "minutes": lambda n: timedelta(minutes=n),
    "parse_datetime": parse_datetime,
}

_LITERALS: Dict[str, Any] = {"true": True, "false": False, "null": None}

_ALLOWED_NODES = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.Compare,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.In,
    ast.NotIn,
    ast.Is,
    ast.IsNot,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.BinOp,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.FloorDiv,
    ast.Mod,
    ast.IfExp,
    ast.Subscript,
    ast.Slice,
    ast.Attribute,
    ast.Call,
    ast.List,
    ast.Tuple,
    ast.Dict,
)


class _Namespace(dict):
    """Mapping that also exposes its keys as attributes."""

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None


def _wrap(value: Any) -> Any:
    if isinstance(value, Mapping):
        return _Namespace((k, _wrap(v)) for k, v in value.items())
    if isinstance(value, list):
        return [_wrap(v) for v in value]
    return value


def _normalize_operators(expression: str) -> str:
    """Rewrite ``&&``, ``||`` and ``!`` outside string literals."""
    out: list[str] = []
    quote: str | None = None
    i = 0
    while i < len(expression):
        ch = expression[i]
        if quote:
            out.append(ch)
            if ch == "\\" and i + 1 < len(expression):
                out.append(expression[i + 1])
                i += 1
            elif ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif expression.startswith("&&", i):
            out.append(" and ")
            i += 1
        elif expression.startswith("||", i):
            out.append(" or ")
            i += 1
        elif ch == "!" and not expression.startswith("!=", i):
            out.append(" not ")
        else:
            out.append(ch)
        i += 1
    return "".join(out)


class SafeExpressionEvaluator(ExpressionEvaluator):
    """Evaluate expressions in a restricted namespace.

    ``evaluate`` always raises ``ExpressionError`` on failure. Conditions are
    lenient by default: a malformed or failing condition counts as false.
    With ``strict=True`` they raise instead.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict
        self._cache: Dict[str, Any] = {}

    def _compile(self, expression: str) -> Any:
        code = self._cache.get(expression)
        if code is not None:
            return code
        try:
            tree = ast.parse(_normalize_operators(expression).strip(), mode="eval")
        except SyntaxError as exc:
            raise ExpressionError(expression, f"invalid syntax ({exc.msg})") from exc
        self._validate(expression, tree)
        code = compile(tree, "<expression>", "eval")
        self._cache[expression] = code
        return code

    @staticmethod
    def _validate(expression: str, tree: ast.AST) -> None:
        for node in ast.walk(tree):
            if not isinstance(node, _ALLOWED_NODES):
                raise ExpressionError(
                    expression, f"'{type(node).__name__}' is not allowed"
                )
            if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
                raise ExpressionError(expression, f"access to '{node.attr}' is not allowed")
            if isinstance(node, ast.Name) and node.id.startswith("__"):
                raise ExpressionError(expression, f"name '{node.id}' is not allowed")
            if isinstance(node, ast.Call):
                if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
                    raise ExpressionError(expression, "only helper functions may be called")
                if node.keywords:
                    raise ExpressionError(expression, "keyword arguments are not supported")

    def evaluate(self, expression: str | None, variables: Mapping[str, Any]) -> Any:
        if not expression or not expression.strip():
            return None
        code = self._compile(expression)
        namespace: Dict[str, Any] = dict(_LITERALS)
        namespace.update(
            (k, _wrap(v)) for k, v in (variables or {}).items() if k not in _FUNCTIONS
        )
        try:
            return eval(code, {"__builtins__": {}, **_FUNCTIONS}, namespace)
        except NameError as exc:
            raise ExpressionError(expression, f"undefined variable ({exc})") from exc
        except Exception as exc:
            raise ExpressionError(expression, str(exc)) from exc

    def evaluate_condition(
        self, expression: str | None, variables: Mapping[str, Any]
    ) -> bool:
        if not expression or not expression.strip():
            return True
        try:
            return bool(self.evaluate(expression, variables))
        except ExpressionError as exc:
            if self.strict:
                raise
            logger.debug(f"Condition treated as false: {exc}")
            return False
