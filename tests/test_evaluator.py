"""Tests for best-effort evaluation."""

import pytest
from lark import Token

from jsonnet_lsp.evaluator import (
    UNKNOWN,
    Closure,
    EvaluationError,
    Thunk,
    decode_string,
    evaluate,
    type_name,
)
from jsonnet_lsp.parser import Parsed, parse


def run(text: str):
    outcome = parse(text)
    assert isinstance(outcome, Parsed), outcome
    return evaluate(outcome.tree)


def fails(text: str) -> EvaluationError:
    with pytest.raises(EvaluationError) as excinfo:
        run(text)
    return excinfo.value


class TestValues:
    """Documents that evaluate to known values."""

    def test_arithmetic(self):
        assert run("1 + 2 * 3") == 7.0

    def test_object(self):
        assert run("{ a: 1, b: 'x', c: [true, null] }") == {"a": 1.0, "b": "x", "c": [True, None]}

    def test_locals(self):
        assert run("local x = 1, y = x + 1; y * 10") == 20.0

    def test_function_defaults_and_named_args(self):
        assert run("local f(a, b=2) = a + b; f(1)") == 3.0
        assert run("local f(a, b=2) = a + b; f(1, b=5)") == 6.0
        assert run("(function(x) x * x)(4)") == 16.0

    def test_array_comprehension(self):
        assert run("[x * 2 for x in [1, 2, 3] if x > 1]") == [4.0, 6.0]

    def test_object_comprehension(self):
        assert run("{ [k]: 1 for k in ['a', 'b'] }") == {"a": 1.0, "b": 1.0}

    def test_string_concatenation(self):
        assert run("'a' + 1") == "a1"
        assert run("'n=' + 1.5") == "n=1.5"

    def test_object_inheritance(self):
        assert run("{ a: 1 } + { b: 2 }") == {"a": 1.0, "b": 2.0}
        assert run("{ a: 1 } { a: 2 }") == {"a": 2.0}

    def test_conditionals(self):
        assert run("if 1 < 2 then 'yes' else 'no'") == "yes"
        assert run("if false then 1") is None

    def test_short_circuit(self):
        assert run("false && error 'never'") is False
        assert run("true || error 'never'") is True

    def test_in_operator(self):
        assert run("'a' in { a: 1 }") is True
        assert run("'b' in { a: 1 }") is False

    def test_equality_distinguishes_types(self):
        assert run("true == 1") is False
        assert run("[1, 'a'] == [1, 'a']") is True

    def test_slice(self):
        assert run("[1, 2, 3, 4][1:3]") == [2.0, 3.0]
        assert run("'hello'[::2]") == "hlo"

    def test_lazy_locals(self):
        """An unused failing binding is never evaluated."""
        assert run("local x = error 'no'; 1") == 1.0

    def test_functions_are_closures(self):
        assert isinstance(run("function(a) a"), Closure)

    def test_quoted_field_names(self):
        assert run('{"a": 1, "b": [1, 2]}') == {"a": 1.0, "b": [1.0, 2.0]}
        assert run("{ 'd': 4, 'e'+: 5 }") == {"d": 4.0, "e": 5.0}


class TestUnknown:
    """Constructs the evaluator does not model."""

    def test_std(self):
        assert run("std.length([1])") is UNKNOWN

    def test_self(self):
        assert run("{ a: 1, b: self.a }") == {"a": 1.0, "b": UNKNOWN}

    def test_hidden_field(self):
        assert run("{ a:: 1 }.a") is UNKNOWN
        assert run("{ 'a':: 1, \"b\"::: 2 }") == {"a": UNKNOWN, "b": 2.0}

    def test_import(self):
        assert run("import 'lib.libsonnet'") is UNKNOWN

    def test_unknown_propagates_through_operators(self):
        assert run("std.foo + 1") is UNKNOWN
        assert run("if std.foo then error 'a' else error 'b'") is UNKNOWN

    def test_string_format(self):
        assert run("'%d' % [1]") is UNKNOWN


class TestErrors:
    """Definite runtime errors."""

    def test_unknown_variable(self):
        error = fails("local x = 1; y")
        assert error.message == "Unknown variable: y"
        assert error.location.offset == 13

    def test_explicit_error(self):
        assert fails("error 'boom'").message == "boom"

    def test_failed_assertion(self):
        assert fails("assert 1 == 2 : 'nope'; 1").message == "nope"
        assert fails("assert false; 1").message == "Assertion failed"

    def test_object_assertion(self):
        assert fails("{ assert self.x > 0 || false, b: 1, assert 1 > 2 }").message == (
            "Assertion failed"
        )

    def test_division_by_zero(self):
        assert fails("1 / 0").message == "Division by zero"

    def test_index_out_of_bounds(self):
        assert fails("[1, 2][5]").message.startswith("Index 5 out of bounds")

    def test_missing_field(self):
        assert fails("{ a: 1 }.b").message == "Field does not exist: b"

    def test_too_many_arguments(self):
        assert fails("local f(a) = a; f(1, 2)").message.startswith("Too many arguments")

    def test_missing_argument(self):
        assert fails("local f(a) = a; f()").message == "Missing argument: a"

    def test_unknown_named_argument(self):
        assert fails("local f(a) = a; f(b=1)").message == "Function has no parameter b"

    def test_type_error(self):
        error = fails("1 - 'a'")
        assert error.message == "Binary operator - does not operate on number and string"

    def test_non_boolean_condition(self):
        assert fails("if 1 then 2").message == "Condition must be boolean, got number"

    def test_duplicate_field(self):
        assert fails("{ a: 1, a: 2 }").message.startswith("Duplicate field name")

    def test_calling_non_function(self):
        assert fails("local x = 1; x(2)").message == "Unexpected type number, expected function"

    def test_infinite_recursion(self):
        assert fails("local f(x) = f(x); f(1)").message == "Max stack frames exceeded"


class TestStrings:
    """Tests for string literal decoding."""

    def test_escapes(self):
        assert decode_string(Token("STRING", "'a\\nb\\t\\'c'")) == "a\nb\t'c"

    def test_unicode_escape(self):
        assert decode_string(Token("STRING", '"\\u0041"')) == "A"

    def test_verbatim(self):
        assert decode_string(Token("VERBATIM_STRING", "@'it''s'")) == "it's"
        assert decode_string(Token("VERBATIM_STRING", '@"a\\b"')) == "a\\b"

    def test_text_block(self):
        block = "|||\n  hello\n    world\n|||"
        assert decode_string(Token("TEXT_BLOCK", block)) == "hello\n  world\n"

    def test_chomped_text_block(self):
        assert decode_string(Token("TEXT_BLOCK", "|||-\n  a\n|||")) == "a"


class TestTypeName:
    """Tests for type_name."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(None, "null"), (True, "boolean"), (1.0, "number"), ("s", "string"), ([], "array"), ({}, "object")],
    )
    def test_names(self, value, expected):
        assert type_name(value) == expected


class TestThunk:
    """Tests for lazy values."""

    def test_forced_once(self):
        calls = []
        thunk = Thunk(lambda: calls.append(1) or len(calls))
        assert thunk.force() == 1
        assert thunk.force() == 1
        assert calls == [1]

    def test_failure_is_retried(self):
        attempts = []

        def compute():
            attempts.append(1)
            if len(attempts) == 1:
                raise EvaluationError("first attempt")
            return "done"

        thunk = Thunk(compute)
        with pytest.raises(EvaluationError):
            thunk.force()
        assert thunk.force() == "done"

    def test_ready_holds_none(self):
        assert Thunk.ready(None).force() is None
