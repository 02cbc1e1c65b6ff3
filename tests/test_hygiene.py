"""Tests for context tokens, var! and context-scoped declarations."""

import pytest

from mexc.errors import CompileError, MalformedNodeError
from mexc.parser.ast_nodes import Atom, Context, NO_CONTEXT, VarNode, make_call, make_var
from mexc.parser.hygiene import (
    DeclarationTable, binding_key, context_of, is_escaped, resolve_var_bang,
    same_binding, var_bang,
)
from .conftest import parse_one


class TestBindings:
    """Two variables are one binding only when name and context match."""

    def test_binding_key(self):
        assert binding_key(make_var("x", "M")) == ("x", Context("M"))

    def test_same_binding(self):
        assert same_binding(make_var("x", "M"), make_var("x", "M"))
        assert not same_binding(make_var("x", "M"), make_var("x"))
        assert not same_binding(make_var("x"), make_var("y"))
        assert not same_binding(make_var("x"), Atom("x"))

    def test_context_of(self):
        assert context_of(make_var("x", "M")) == Context("M")
        assert context_of(make_call("f", [], {'context': Context("M")})) == Context("M")
        assert context_of(make_call("f")) == NO_CONTEXT
        assert context_of(1) == NO_CONTEXT


class TestVarBang:
    """Tests for the hygiene escape."""

    def test_escape_to_caller(self):
        var = var_bang(make_var("x", "M"))
        assert var.context == NO_CONTEXT
        assert is_escaped(var)
        assert not is_escaped(make_var("x"))

    def test_escape_to_target_scope(self):
        assert var_bang(make_var("x"), "Other").context == Context("Other")
        assert var_bang(make_var("x"), Atom("Other")).context == Context("Other")

    def test_atom_names_a_variable(self):
        var = var_bang(Atom("x"))
        assert isinstance(var, VarNode)
        assert var.name == "x"

    def test_rejects_other_nodes(self):
        with pytest.raises(MalformedNodeError, match="expects a variable"):
            var_bang(1)

    def test_resolve_call(self):
        var = resolve_var_bang(parse_one("<var! .x>"))
        assert var == make_var("x")
        assert is_escaped(var)
        assert resolve_var_bang(parse_one("<var! .x Other>")).context == Context("Other")

    def test_resolve_call_errors(self):
        with pytest.raises(MalformedNodeError, match="1 or 2 arguments"):
            resolve_var_bang(parse_one("<var!>"))
        with pytest.raises(MalformedNodeError, match="scope name"):
            resolve_var_bang(parse_one("<var! .x 1>"))


class TestDeclarationTable:
    """Aliases and dependencies apply only to nodes of the declaring context."""

    def test_alias(self):
        table = DeclarationTable("App")
        assert table.add_alias("Long.Name") is None
        assert table.resolve_alias("Name") == "Long.Name"
        assert table.resolve_alias("Name.Sub") == "Long.Name.Sub"
        assert table.resolve_alias("Other") == "Other"

    def test_alias_with_short_name(self):
        table = DeclarationTable("App")
        table.add_alias("Long.Name", "N")
        assert table.resolve_alias("N") == "Long.Name"
        assert table.resolve_alias("Name") == "Name"

    def test_alias_replacement(self):
        table = DeclarationTable("App")
        table.add_alias("A.X")
        assert table.add_alias("B.X") == "A.X"
        assert table.resolve_alias("X") == "B.X"

    def test_alias_target_is_kept_as_written(self):
        table = DeclarationTable("App")
        table.add_alias("Foo.Foo")
        assert table.resolve_alias("Foo") == "Foo.Foo"
        assert table.resolve_alias("Foo.Foo") == "Foo.Foo"
        assert table.resolve_alias("Foo.Bar") == "Foo.Foo.Bar"

    def test_alias_is_context_scoped(self):
        table = DeclarationTable("App")
        table.add_alias("Long.Name", context=Context("Lib"))
        assert table.resolve_alias("Name") == "Name"
        assert table.resolve_alias("Name", Context("Lib")) == "Long.Name"

    def test_alias_name_is_one_segment(self):
        with pytest.raises(CompileError):
            DeclarationTable("App").add_alias("Long.Name", "A.B")

    def test_imports_in_declaration_order(self):
        table = DeclarationTable("App")
        table.add_import("B")
        table.add_import("A")
        table.add_import("C", Context("Lib"))
        table.add_import("B")
        assert table.imports() == ["B", "A"]
        assert table.imports(Context("Lib")) == ["C"]

    def test_depends_on(self):
        table = DeclarationTable("App")
        table.add_require("R")
        table.add_import("I", Context("Lib"))
        assert table.depends_on("R")
        assert not table.depends_on("I")
        assert table.depends_on("I", Context("Lib"))
        assert table.dependencies() == ["R", "I"]
