"""
Test fixtures and helpers for Mex compiler tests.

The key abstractions are:

- ExprAssertion (AssertExpr): compiles an expression after some module
  definitions and checks its value, its expansion, or the error it raises
- parse_one / expand_one: small helpers for tree-level tests
"""

import sys
from pathlib import Path
from typing import Any, List, Optional, Type

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from mexc.compiler import Compiler, CompiledUnit
from mexc.errors import MacroError
from mexc.parser import parse_source
from mexc.parser.ast_nodes import format_node, nodes_equal


def parse_one(source: str) -> Any:
    """Parse source holding exactly one form."""
    forms = parse_source(source)
    assert len(forms) == 1, f"Expected one form, got {len(forms)}"
    return forms[0]


class ExprAssertion:
    """
    Fluent assertion helper for testing Mex expressions.

    Usage:
        AssertExpr("<+ 1 2>").gives(3)
        AssertExpr("<Logic.unless false 1>").with_module(LOGIC).gives(1)
        AssertExpr("<loop 1>").with_module(LOOP).does_not_compile(ExpansionDepthExceededError)
    """

    def __init__(self, expr: str):
        self.expr = expr
        self.modules: List[str] = []
        self.max_depth: Optional[int] = None
        self.expected_warnings: Optional[List[str]] = None
        self.expect_no_warnings: bool = False

    def with_module(self, code: str) -> 'ExprAssertion':
        self.modules.append(code)
        return self

    def with_max_depth(self, depth: int) -> 'ExprAssertion':
        self.max_depth = depth
        return self

    def with_warnings(self, *codes: str) -> 'ExprAssertion':
        self.expected_warnings = list(codes)
        return self

    def without_warnings(self) -> 'ExprAssertion':
        self.expect_no_warnings = True
        return self

    def _get_compiler(self) -> Compiler:
        if self.max_depth is not None:
            return Compiler(max_expansion_depth=self.max_depth)
        return Compiler()

    def _source(self) -> str:
        return "\n".join(self.modules + [self.expr])

    def _check_warnings(self, compiler: Compiler) -> None:
        warnings = compiler.get_warnings()
        codes = [w.split(':', 1)[0] for w in warnings]
        if self.expected_warnings:
            for code in self.expected_warnings:
                assert code in codes, f"Expected warning {code}, got {warnings}"
        if self.expect_no_warnings:
            assert not warnings, f"Expected no warnings, got {warnings}"

    def compiles(self) -> CompiledUnit:
        """Assert that the source expands and runs without error."""
        compiler = self._get_compiler()
        unit = compiler.compile_string(self._source())
        self._check_warnings(compiler)
        return unit

    def does_not_compile(self, error_type: Type[Exception] = MacroError) -> Exception:
        """Assert that expansion (or loading a module) fails with error_type."""
        compiler = self._get_compiler()
        with pytest.raises(error_type) as info:
            compiler.compile_string(self._source(), run_script=False)
        return info.value

    def fails_at_call(self, error_type: Type[Exception] = MacroError) -> Exception:
        """Assert that the source compiles but running the expression fails."""
        compiler = self._get_compiler()
        unit = compiler.compile_string(self._source(), run_script=False)
        with pytest.raises(error_type) as info:
            compiler.run_script(unit)
        return info.value

    def gives(self, expected: Any) -> None:
        """Assert that the expression evaluates to expected."""
        unit = self.compiles()
        assert nodes_equal(unit.result, expected), \
            f"Expected {format_node(expected)}, got {format_node(unit.result)}"

    def prints_as(self, expected: str) -> None:
        """Assert that the expression's value renders as expected."""
        unit = self.compiles()
        actual = format_node(unit.result)
        assert actual == expected, f"Expected {expected}, got {actual}"

    def expands_to(self, expected: Any) -> None:
        """Assert that the expression expands to expected (source text or a tree)."""
        compiler = self._get_compiler()
        script = compiler.expand_string(self._source())
        assert script, "Expected the expression to expand to a form"
        if isinstance(expected, str):
            expected = parse_one(expected)
        actual = script[-1]
        assert nodes_equal(actual, expected), \
            f"Expected {format_node(expected)}, got {format_node(actual)}"
        self._check_warnings(compiler)


AssertExpr = ExprAssertion


@pytest.fixture
def compiler() -> Compiler:
    return Compiler()
