"""Tests for the Mex parser."""

import pytest

from mexc.errors import MalformedNodeError
from mexc.parser import parse_source
from mexc.parser.ast_nodes import (
    Atom, CallNode, NO_CONTEXT, VarNode, dotted_parts, make_call, make_var,
)
from .conftest import parse_one


class TestForms:
    """Tests for call forms."""

    def test_simple_call(self):
        """Test <f 1 2>."""
        node = parse_one("<f 1 2>")
        assert isinstance(node, CallNode)
        assert node == make_call("f", [1, 2])
        assert node.name == "f"
        assert node.arity == 2

    def test_zero_argument_call(self):
        """Test <callFunction>."""
        assert parse_one("<callFunction>") == make_call("callFunction")

    def test_dotted_head(self):
        """Test that Mod.fun becomes a dotted call head."""
        node = parse_one("<Logic.unless .x 1>")
        assert dotted_parts(node.head) == ("Logic", "unless")
        assert node.args == [make_var("x"), 1]

    def test_nested_module_name(self):
        """Test that only the last dot separates the function."""
        node = parse_one("<Deep.Math.double 2>")
        assert dotted_parts(node.head) == ("Deep.Math", "double")

    def test_form_head(self):
        """Test a form used as a head."""
        node = parse_one("<<f> 1>")
        assert node.head == make_call("f")
        assert node.name is None

    def test_meta_records_position(self):
        """Test that nodes record line and column."""
        node = parse_one("\n  <f .x>")
        assert node.meta == {'line': 2, 'column': 3}
        assert node.args[0].meta == {'line': 2, 'column': 6}

    def test_multiple_forms(self):
        """Test parsing several top-level forms."""
        forms = parse_source("<a> 1 .x")
        assert forms == [make_call("a"), 1, make_var("x")]


class TestLiterals:
    """Tests for literal syntax."""

    def test_atoms_and_variables(self):
        """Test that bare words are atoms and .names are variables."""
        node = parse_one("<f name .name>")
        assert node.args[0] == Atom("name")
        var = node.args[1]
        assert isinstance(var, VarNode)
        assert var.name == "name"
        assert var.context == NO_CONTEXT

    def test_list_literal(self):
        """Test (a 1 "s")."""
        assert parse_one('(a 1 "s")') == [Atom("a"), 1, "s"]

    def test_pair_literal(self):
        """Test [a 1]."""
        assert parse_one("[a 1]") == (Atom("a"), 1)

    def test_pair_needs_two_elements(self):
        """Test that a pair literal must have exactly two elements."""
        with pytest.raises(MalformedNodeError, match="exactly two"):
            parse_source("[a b c]")


class TestQuoteShorthands:
    """Tests for `, ~ and ~!."""

    def test_quasiquote(self):
        """Test `x becomes <quote x>."""
        assert parse_one("`<f 1>") == make_call("quote", [make_call("f", [1])])

    def test_unquote(self):
        """Test ~x becomes <unquote x>."""
        node = parse_one("`<f ~.x>")
        assert node.args[0].args[0] == make_call("unquote", [make_var("x")])

    def test_splice_unquote(self):
        """Test ~!x becomes <unquote_splicing x>."""
        node = parse_one("`<f ~!.xs>")
        assert node.args[0].args[0] == make_call("unquote_splicing", [make_var("xs")])

    def test_unquoted_head(self):
        """Test an unquote in head position."""
        node = parse_one("`<~.name 1>")
        assert node.args[0].head == make_call("unquote", [make_var("name")])


class TestParseErrors:
    """Tests for syntax errors."""

    def test_empty_form(self):
        with pytest.raises(SyntaxError, match="Empty form"):
            parse_source("<>")

    def test_unterminated_form(self):
        with pytest.raises(SyntaxError, match="Unterminated form"):
            parse_source("<f 1")

    def test_unexpected_close(self):
        with pytest.raises(SyntaxError, match="Unexpected"):
            parse_source(")")

    def test_invalid_head(self):
        with pytest.raises(SyntaxError, match="Invalid form head"):
            parse_source("<1 2>")

    def test_error_location(self):
        """Test that errors carry file, line and column."""
        with pytest.raises(SyntaxError, match=r"^prog\.mex:2:"):
            parse_source("<f>\n)", "prog.mex")

    @pytest.mark.parametrize("head", ["a..b", "Mod..fun", "A.B..c"])
    def test_empty_dotted_segment(self, head):
        with pytest.raises(SyntaxError, match=r"^<input>:1:2: Invalid dotted name"):
            parse_source(f"<{head} 1>")
