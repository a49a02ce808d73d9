"""Best-effort Jsonnet evaluation for error discovery.

The evaluator walks the tree produced by ``jsonnet_lsp.parser`` and raises
``EvaluationError`` for errors it can prove: unknown variables, explicit
``error`` expressions, failed assertions, type errors, bad indexing, wrong
call arity. Whatever it cannot model (the standard library, ``self``,
``super``, ``$``, imports, hidden fields) evaluates to ``UNKNOWN``, which
propagates silently instead of turning into a false report.

Local bindings and call arguments are lazy, as in Jsonnet, so an unused
binding that would fail is never reported.

Usage:
    from jsonnet_lsp.evaluator import EvaluationError, Evaluator
    from jsonnet_lsp.parser import parse

    outcome = parse("local x = 1; x + y")
    try:
        Evaluator().evaluate(outcome.tree)
    except EvaluationError as e:
        print(e.message)  # Unknown variable: y
"""

from __future__ import annotations

import json
import logging
import math
import operator
import re
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

from lark import Token, Tree

from jsonnet_lsp.parser import SourceLocation

logger = logging.getLogger(__name__)


class EvaluationError(Exception):
    """A definite runtime error found while evaluating a document."""

    def __init__(self, message: str, location: SourceLocation | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location


class _Unknown:
    """Value the evaluator cannot determine."""

    def __repr__(self) -> str:
        return "UNKNOWN"


UNKNOWN = _Unknown()

# Names bound before evaluation starts
PREDEFINED: dict[str, Any] = {"std": UNKNOWN}


# =============================================================================
# Runtime Values
# =============================================================================


class Thunk:
    """Lazily computed value, forced at most once."""

    __slots__ = ("_compute", "_value")

    def __init__(self, compute: Callable[[], Any]) -> None:
        # None once the value has been computed
        self._compute: Callable[[], Any] | None = compute
        self._value: Any = None

    @classmethod
    def ready(cls, value: Any) -> Thunk:
        thunk = cls(lambda: value)
        thunk.force()
        return thunk

    def force(self) -> Any:
        compute = self._compute
        if compute is not None:
            self._value = compute()
            self._compute = None
        return self._value


Env = dict[str, Thunk]


@dataclass
class Closure:
    """A function value: parameters, body and defining scope."""

    params: list[tuple[str, Tree | None]]
    body: Tree
    env: Env


def type_name(value: Any) -> str:
    """Jsonnet name of a runtime value's type."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, Closure):
        return "function"
    return "unknown"


# =============================================================================
# String Literals
# =============================================================================

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    '"': '"',
    "'": "'",
    "\\": "\\",
    "/": "/",
}
_ESCAPE_RE = re.compile(r"\\(u[0-9a-fA-F]{4}|.)", re.DOTALL)


def _unescape(match: re.Match[str]) -> str:
    code = match.group(1)
    if len(code) == 5 and code.startswith("u"):
        return chr(int(code[1:], 16))
    return _ESCAPES.get(code, code)


def decode_string(token: Token) -> str:
    """Decode a string token (quoted, verbatim or text block) to its value."""
    value = str(token)
    if token.type == "VERBATIM_STRING":
        quote = value[1]
        return value[2:-1].replace(quote * 2, quote)
    if token.type == "TEXT_BLOCK":
        return _text_block(value)
    return _ESCAPE_RE.sub(_unescape, value[1:-1])


def _text_block(value: str) -> str:
    header, _, rest = value.partition("\n")
    chomp = header.rstrip().endswith("-")
    body = rest.rsplit("\n", 1)[0]
    lines = body.split("\n")
    first = next((line for line in lines if line.strip()), "")
    indent = first[: len(first) - len(first.lstrip(" \t"))]
    stripped = [line[len(indent) :] if line.startswith(indent) else line.lstrip(" \t") for line in lines]
    text = "\n".join(stripped)
    return text if chomp else text + "\n"


# =============================================================================
# Helpers
# =============================================================================


def _location(node: Tree | Token) -> SourceLocation | None:
    if isinstance(node, Token):
        if node.start_pos is None:
            return None
        return SourceLocation(offset=node.start_pos, line=node.line, column=node.column)
    meta = node.meta
    if getattr(meta, "empty", True):
        return None
    return SourceLocation(offset=meta.start_pos, line=meta.line, column=meta.column)


def _contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, list):
        return any(_contains_unknown(item) for item in value)
    if isinstance(value, dict):
        return any(_contains_unknown(item) for item in value.values())
    return False


def _format_number(value: float) -> str:
    if value.is_integer() and abs(value) < 1e17:
        return str(int(value))
    return repr(value)


def _plain(value: Any, node: Tree) -> Any:
    if isinstance(value, Closure):
        raise EvaluationError("Couldn't manifest function as JSON", _location(node))
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e17:
        return int(value)
    if isinstance(value, list):
        return [_plain(item, node) for item in value]
    if isinstance(value, dict):
        return {key: _plain(item, node) for key, item in value.items()}
    return value


def _to_string(value: Any, node: Tree) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, float):
        return _format_number(value)
    return json.dumps(_plain(value, node), indent=3)


def _equal(left: Any, right: Any, node: Tree) -> bool:
    if isinstance(left, Closure) or isinstance(right, Closure):
        raise EvaluationError("Cannot test equality of functions", _location(node))
    if type_name(left) != type_name(right):
        return False
    if isinstance(left, list):
        return len(left) == len(right) and all(_equal(a, b, node) for a, b in zip(left, right))
    if isinstance(left, dict):
        return left.keys() == right.keys() and all(_equal(left[k], right[k], node) for k in left)
    return left == right


_COMPARISONS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

_BITWISE = {
    "<<": operator.lshift,
    ">>": operator.rshift,
    "&": operator.and_,
    "|": operator.or_,
    "^": operator.xor,
}


# =============================================================================
# Evaluator
# =============================================================================


class Evaluator:
    """Tree-walking evaluator over the Jsonnet grammar's parse trees."""

    def evaluate(self, tree: Tree) -> Any:
        """Evaluate a document tree.

        Raises:
            EvaluationError: If the document definitely fails at runtime
        """
        env = {name: Thunk.ready(value) for name, value in PREDEFINED.items()}
        try:
            return self._eval(tree, env)
        except RecursionError:
            raise EvaluationError("Max stack frames exceeded", _location(tree)) from None

    def _eval(self, node: Tree, env: Env) -> Any:
        handler = getattr(self, f"_eval_{node.data}", None)
        if handler is None:
            logger.debug("No evaluation rule for %s", node.data)
            return UNKNOWN
        return handler(node, env)

    # -- literals -------------------------------------------------------------

    def _eval_null(self, node: Tree, env: Env) -> Any:
        return None

    def _eval_true(self, node: Tree, env: Env) -> Any:
        return True

    def _eval_false(self, node: Tree, env: Env) -> Any:
        return False

    def _eval_number(self, node: Tree, env: Env) -> Any:
        return float(node.children[0])

    def _eval_string(self, node: Tree, env: Env) -> Any:
        return decode_string(node.children[0])

    def _eval_unknown(self, node: Tree, env: Env) -> Any:
        return UNKNOWN

    _eval_self = _eval_unknown
    _eval_dollar = _eval_unknown
    _eval_super_field = _eval_unknown
    _eval_super_index = _eval_unknown
    _eval_in_super = _eval_unknown
    _eval_import_expr = _eval_unknown
    _eval_importstr_expr = _eval_unknown
    _eval_importbin_expr = _eval_unknown

    # -- variables and bindings -----------------------------------------------

    def _eval_var(self, node: Tree, env: Env) -> Any:
        name = str(node.children[0])
        thunk = env.get(name)
        if thunk is None:
            raise EvaluationError(f"Unknown variable: {name}", _location(node))
        return thunk.force()

    def _bind(self, binds: list[Tree], env: Env) -> Env:
        scope = dict(env)
        declared: set[str] = set()
        for bind in binds:
            name = str(bind.children[0])
            if name in declared:
                raise EvaluationError(f"Duplicate local var: {name}", _location(bind))
            declared.add(name)
            if bind.data == "bind_function":
                params = bind.children[1] if len(bind.children) == 3 else None
                scope[name] = Thunk(partial(self._closure, params, bind.children[-1], scope))
            else:
                scope[name] = Thunk(partial(self._eval, bind.children[1], scope))
        return scope

    def _eval_local_expr(self, node: Tree, env: Env) -> Any:
        *binds, body = node.children
        return self._eval(body, self._bind(binds, env))

    # -- control flow ---------------------------------------------------------

    def _condition(self, node: Tree, env: Env, context: str) -> Any:
        value = self._eval(node, env)
        if value is UNKNOWN:
            return UNKNOWN
        if not isinstance(value, bool):
            raise EvaluationError(
                f"{context} must be boolean, got {type_name(value)}", _location(node)
            )
        return value

    def _eval_if_expr(self, node: Tree, env: Env) -> Any:
        condition = self._condition(node.children[0], env, "Condition")
        if condition is UNKNOWN:
            return UNKNOWN
        if condition:
            return self._eval(node.children[1], env)
        if len(node.children) == 3:
            return self._eval(node.children[2], env)
        return None

    def _check_assertion(self, assertion: Tree, env: Env) -> None:
        condition = self._condition(assertion.children[0], env, "Assertion")
        if condition is UNKNOWN or condition:
            return
        message = "Assertion failed"
        if len(assertion.children) > 1:
            detail = self._eval(assertion.children[1], env)
            if detail is not UNKNOWN and not _contains_unknown(detail):
                message = _to_string(detail, assertion)
        raise EvaluationError(message, _location(assertion))

    def _eval_assert_expr(self, node: Tree, env: Env) -> Any:
        assertion, body = node.children
        self._check_assertion(assertion, env)
        return self._eval(body, env)

    def _eval_error_expr(self, node: Tree, env: Env) -> Any:
        value = self._eval(node.children[0], env)
        if _contains_unknown(value):
            message = "Error raised by error expression"
        else:
            message = _to_string(value, node)
        raise EvaluationError(message, _location(node))

    # -- functions ------------------------------------------------------------

    def _closure(self, params: Tree | None, body: Tree, env: Env) -> Closure:
        specs: list[tuple[str, Tree | None]] = []
        if params is not None:
            for param in params.children:
                default = param.children[1] if len(param.children) > 1 else None
                specs.append((str(param.children[0]), default))
        return Closure(params=specs, body=body, env=env)

    def _eval_function_expr(self, node: Tree, env: Env) -> Any:
        params = node.children[0] if len(node.children) == 2 else None
        return self._closure(params, node.children[-1], env)

    def _eval_call(self, node: Tree, env: Env) -> Any:
        function = self._eval(node.children[0], env)
        if function is UNKNOWN:
            return UNKNOWN
        if not isinstance(function, Closure):
            raise EvaluationError(
                f"Unexpected type {type_name(function)}, expected function", _location(node)
            )

        positional: list[Thunk] = []
        named: dict[str, Thunk] = {}
        if len(node.children) > 1:
            for arg in node.children[1].children:
                if arg.data == "named_arg":
                    named[str(arg.children[0])] = Thunk(partial(self._eval, arg.children[1], env))
                else:
                    positional.append(Thunk(partial(self._eval, arg, env)))
        return self._apply(function, positional, named, node)

    def _apply(
        self, function: Closure, positional: list[Thunk], named: dict[str, Thunk], node: Tree
    ) -> Any:
        names = [name for name, _ in function.params]
        if len(positional) > len(names):
            raise EvaluationError(
                f"Too many arguments: expected at most {len(names)}, got {len(positional)}",
                _location(node),
            )

        call_env = dict(function.env)
        bound = dict(zip(names, positional))
        for name, thunk in named.items():
            if name not in names:
                raise EvaluationError(f"Function has no parameter {name}", _location(node))
            if name in bound:
                raise EvaluationError(f"Argument {name} already provided", _location(node))
            bound[name] = thunk
        for name, default in function.params:
            if name in bound:
                continue
            if default is None:
                raise EvaluationError(f"Missing argument: {name}", _location(node))
            bound[name] = Thunk(partial(self._eval, default, call_env))
        call_env.update(bound)
        return self._eval(function.body, call_env)

    # -- objects and arrays ---------------------------------------------------

    def _field_name(self, fieldname: Tree, env: Env) -> Any:
        if fieldname.data == "field_id":
            return str(fieldname.children[0])
        if fieldname.data == "field_str":
            return decode_string(fieldname.children[0])
        name = self._eval(fieldname.children[0], env)
        if name is None or name is UNKNOWN or isinstance(name, str):
            return name
        raise EvaluationError(
            f"Field name must be string, got {type_name(name)}", _location(fieldname)
        )

    def _add_field(self, result: dict[str, Any], member: Tree, env: Env) -> None:
        name = self._field_name(member.children[0], env)
        if name is None:
            return
        if name is UNKNOWN:
            # Cannot tell which field this is; the object shape is unknown.
            raise _Indeterminate
        if name in result:
            raise EvaluationError(f"Duplicate field name: {name!r}", _location(member))

        separator = next(
            child for child in member.children if isinstance(child, Tree) and child.data == "field_sep"
        )
        if str(separator.children[0]).lstrip("+") == "::":
            result[name] = UNKNOWN
        elif member.data == "method":
            params = member.children[1] if len(member.children) == 4 else None
            result[name] = self._closure(params, member.children[-1], env)
        else:
            result[name] = self._eval(member.children[-1], env)

    def _eval_object(self, node: Tree, env: Env) -> Any:
        members = node.children
        scope = self._bind([m.children[0] for m in members if m.data == "objlocal"], env)
        result: dict[str, Any] = {}
        try:
            for member in members:
                if member.data == "assertion":
                    self._check_assertion(member, scope)
                elif member.data in ("field", "method"):
                    self._add_field(result, member, scope)
        except _Indeterminate:
            return UNKNOWN
        return result

    def _comprehension(self, specs: list[Tree], env: Env) -> list[Env] | None:
        """Expand for/if specs into one scope per iteration, or None if unknown."""
        scopes = [env]
        for spec in specs:
            if spec.data == "forspec":
                name = str(spec.children[0])
                expanded: list[Env] = []
                for scope in scopes:
                    items = self._eval(spec.children[1], scope)
                    if items is UNKNOWN:
                        return None
                    if not isinstance(items, list):
                        raise EvaluationError(
                            f"In comprehension, can only iterate over array, got {type_name(items)}",
                            _location(spec),
                        )
                    expanded.extend({**scope, name: Thunk.ready(item)} for item in items)
                scopes = expanded
            else:
                kept: list[Env] = []
                for scope in scopes:
                    condition = self._condition(spec.children[0], scope, "Comprehension condition")
                    if condition is UNKNOWN:
                        return None
                    if condition:
                        kept.append(scope)
                scopes = kept
        return scopes

    def _eval_object_comp(self, node: Tree, env: Env) -> Any:
        field, forspec, compspec = node.children
        scopes = self._comprehension([forspec, *compspec.children], env)
        if scopes is None:
            return UNKNOWN
        result: dict[str, Any] = {}
        try:
            for scope in scopes:
                self._add_field(result, field, scope)
        except _Indeterminate:
            return UNKNOWN
        return result

    def _eval_array(self, node: Tree, env: Env) -> Any:
        return [self._eval(child, env) for child in node.children]

    def _eval_array_comp(self, node: Tree, env: Env) -> Any:
        body, forspec, compspec = node.children
        scopes = self._comprehension([forspec, *compspec.children], env)
        if scopes is None:
            return UNKNOWN
        return [self._eval(body, scope) for scope in scopes]

    def _eval_apply(self, node: Tree, env: Env) -> Any:
        base = self._eval(node.children[0], env)
        extension = self._eval(node.children[1], env)
        if base is UNKNOWN or extension is UNKNOWN:
            return UNKNOWN
        if not isinstance(base, dict):
            raise EvaluationError(
                f"Unexpected type {type_name(base)}, expected object", _location(node)
            )
        return {**base, **extension}

    # -- indexing -------------------------------------------------------------

    def _index(self, target: Any, key: Any, node: Tree) -> Any:
        if target is UNKNOWN or key is UNKNOWN:
            return UNKNOWN
        if isinstance(target, dict):
            if not isinstance(key, str):
                raise EvaluationError(
                    f"Object index must be string, got {type_name(key)}", _location(node)
                )
            if key not in target:
                raise EvaluationError(f"Field does not exist: {key}", _location(node))
            return target[key]
        if isinstance(target, (list, str)):
            if not isinstance(key, float):
                raise EvaluationError(
                    f"{type_name(target).capitalize()} index must be number, got {type_name(key)}",
                    _location(node),
                )
            if not key.is_integer():
                raise EvaluationError(f"Index must be an integer, got {key}", _location(node))
            index = int(key)
            if index < 0 or index >= len(target):
                raise EvaluationError(
                    f"Index {index} out of bounds, not within [0, {len(target)})", _location(node)
                )
            return target[index]
        raise EvaluationError(
            f"Unexpected type {type_name(target)}, expected array, object or string",
            _location(node),
        )

    def _eval_field_access(self, node: Tree, env: Env) -> Any:
        target = self._eval(node.children[0], env)
        return self._index(target, str(node.children[1]), node)

    def _eval_index(self, node: Tree, env: Env) -> Any:
        target = self._eval(node.children[0], env)
        key = self._eval(node.children[1], env)
        return self._index(target, key, node)

    def _eval_slice(self, node: Tree, env: Env) -> Any:
        target = self._eval(node.children[0], env)
        bounds: dict[str, Any] = {"slice_start": None, "slice_end": None, "slice_step": None}
        for part in node.children[1:]:
            bounds[part.data] = self._eval(part.children[0], env)
        values = [target, *bounds.values()]
        if any(value is UNKNOWN for value in values):
            return UNKNOWN
        if not isinstance(target, (list, str)):
            raise EvaluationError(
                f"Can only slice arrays and strings, got {type_name(target)}", _location(node)
            )
        indices: list[int | None] = []
        for value in bounds.values():
            if value is None:
                indices.append(None)
            elif isinstance(value, float) and value.is_integer():
                indices.append(int(value))
            else:
                raise EvaluationError(
                    f"Slice bounds must be integers, got {type_name(value)}", _location(node)
                )
        start, end, step = indices
        if step is not None and step <= 0:
            raise EvaluationError(f"Slice step must be positive, got {step}", _location(node))
        return target[start:end:step]

    # -- operators ------------------------------------------------------------

    def _eval_unary_op(self, node: Tree, env: Env) -> Any:
        op = str(node.children[0])
        value = self._eval(node.children[1], env)
        if value is UNKNOWN:
            return UNKNOWN
        if op == "!":
            if not isinstance(value, bool):
                raise EvaluationError(
                    f"Unary operator ! does not operate on type {type_name(value)}", _location(node)
                )
            return not value
        if not isinstance(value, float):
            raise EvaluationError(
                f"Unary operator {op} does not operate on type {type_name(value)}", _location(node)
            )
        if op == "-":
            return -value
        if op == "~":
            return float(~int(value))
        return value

    def _eval_in_expr(self, node: Tree, env: Env) -> Any:
        key = self._eval(node.children[0], env)
        target = self._eval(node.children[1], env)
        if key is UNKNOWN or target is UNKNOWN:
            return UNKNOWN
        if not isinstance(key, str) or not isinstance(target, dict):
            raise EvaluationError(
                f"Binary operator in does not operate on {type_name(key)} and {type_name(target)}",
                _location(node),
            )
        return key in target

    def _eval_binary(self, node: Tree, env: Env) -> Any:
        left_node, op_token, right_node = node.children
        op = str(op_token)
        left = self._eval(left_node, env)

        if op in ("&&", "||"):
            if left is UNKNOWN:
                return UNKNOWN
            if not isinstance(left, bool):
                raise EvaluationError(
                    f"Binary operator {op} does not operate on {type_name(left)}", _location(node)
                )
            if (op == "&&" and not left) or (op == "||" and left):
                return left
            right = self._condition(right_node, env, f"Right operand of {op}")
            return right

        right = self._eval(right_node, env)
        if left is UNKNOWN or right is UNKNOWN:
            return UNKNOWN
        return self._binary(op, left, right, node)

    def _binary(self, op: str, left: Any, right: Any, node: Tree) -> Any:
        def mismatch() -> EvaluationError:
            return EvaluationError(
                f"Binary operator {op} does not operate on {type_name(left)} and {type_name(right)}",
                _location(node),
            )

        numbers = isinstance(left, float) and isinstance(right, float)

        if op == "+":
            if isinstance(left, str) or isinstance(right, str):
                if _contains_unknown(left) or _contains_unknown(right):
                    return UNKNOWN
                return _to_string(left, node) + _to_string(right, node)
            if numbers:
                return left + right
            if isinstance(left, list) and isinstance(right, list):
                return left + right
            if isinstance(left, dict) and isinstance(right, dict):
                return {**left, **right}
            raise mismatch()

        if op in ("==", "!="):
            if _contains_unknown(left) or _contains_unknown(right):
                return UNKNOWN
            equal = _equal(left, right, node)
            return equal if op == "==" else not equal

        if op == "%" and isinstance(left, str):
            # String formatting needs std.format
            return UNKNOWN

        if op in _COMPARISONS:
            if numbers or (isinstance(left, str) and isinstance(right, str)):
                return _COMPARISONS[op](left, right)
            if isinstance(left, list) and isinstance(right, list):
                return UNKNOWN
            raise mismatch()

        if not numbers:
            raise mismatch()
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op in ("/", "%"):
            if right == 0:
                raise EvaluationError("Division by zero", _location(node))
            return left / right if op == "/" else math.fmod(left, right)
        if op in _BITWISE:
            if op in ("<<", ">>") and right < 0:
                raise EvaluationError(f"Shift by negative exponent {right}", _location(node))
            return float(_BITWISE[op](int(left), int(right)))
        raise mismatch()


class _Indeterminate(Exception):
    """Raised internally when an object's shape depends on unknown values."""


def evaluate(tree: Tree) -> Any:
    """Evaluate ``tree`` with a fresh evaluator."""
    return Evaluator().evaluate(tree)


__all__ = [
    "PREDEFINED",
    "UNKNOWN",
    "Closure",
    "EvaluationError",
    "Evaluator",
    "Thunk",
    "decode_string",
    "evaluate",
    "type_name",
]
