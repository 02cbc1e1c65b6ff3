"""Tests for the Mex lexer."""

import pytest

from mexc.lexer import Lexer, TokenType


def types(source):
    return [t.type for t in Lexer(source).tokenize()]


def test_basic_form():
    """Test lexing a basic form."""
    source = "<def go () <quit>>"
    tokens = Lexer(source).tokenize()

    assert tokens[0].type == TokenType.LANGLE
    assert tokens[1].type == TokenType.ATOM
    assert tokens[1].value == "def"
    assert tokens[2].type == TokenType.ATOM
    assert tokens[2].value == "go"
    assert tokens[3].type == TokenType.LPAREN
    assert tokens[4].type == TokenType.RPAREN
    assert tokens[-1].type == TokenType.EOF


def test_strings():
    """Test string literals and escapes."""
    tokens = Lexer(r'<print "Hello, \"World\"\n">').tokenize()

    string_token = [t for t in tokens if t.type == TokenType.STRING][0]
    assert string_token.value == 'Hello, "World"\n'


def test_numbers():
    """Test integer and float literals."""
    tokens = Lexer("<+ 1 -2 3.5 1.0e3>").tokenize()

    numbers = [t.value for t in tokens if t.type == TokenType.NUMBER]
    assert numbers == [1, -2, 3.5, 1000.0]
    assert isinstance(numbers[0], int)
    assert isinstance(numbers[2], float)


def test_operator_words_are_atoms():
    """Test that +, - and names ending in ? lex as atoms."""
    tokens = Lexer("<- .a 1> <less? 1 2> <== 1 1>").tokenize()

    atoms = [t.value for t in tokens if t.type == TokenType.ATOM]
    assert atoms == ["-", "less?", "=="]


def test_local_variables():
    """Test .name variables."""
    tokens = Lexer("<f .x .long_name ._tmp>").tokenize()

    names = [t.value for t in tokens if t.type == TokenType.LOCAL_VAR]
    assert names == ["x", "long_name", "_tmp"]


def test_dotted_variable_is_an_error():
    """Test that a variable name cannot contain a dot."""
    with pytest.raises(SyntaxError, match="Invalid variable name"):
        Lexer("<f .a.b>").tokenize()


def test_dotted_atom():
    """Test that Mod.fun stays one atom."""
    tokens = Lexer("<Logic.unless .x .y>").tokenize()

    assert tokens[1].type == TokenType.ATOM
    assert tokens[1].value == "Logic.unless"


def test_quote_shorthands():
    """Test `, ~ and ~! tokens."""
    assert types("`<f ~.x ~!.ys>") == [
        TokenType.QUASIQUOTE, TokenType.LANGLE, TokenType.ATOM,
        TokenType.UNQUOTE, TokenType.LOCAL_VAR,
        TokenType.SPLICE_UNQUOTE, TokenType.LOCAL_VAR,
        TokenType.RANGLE, TokenType.EOF,
    ]


def test_lists_and_pairs():
    """Test list and pair delimiters."""
    assert types("(a [b c])") == [
        TokenType.LPAREN, TokenType.ATOM, TokenType.LBRACKET, TokenType.ATOM,
        TokenType.ATOM, TokenType.RBRACKET, TokenType.RPAREN, TokenType.EOF,
    ]


def test_comments():
    """Test that ; comments run to the end of the line."""
    assert types("; a comment <not> a form\n<f>") == [
        TokenType.LANGLE, TokenType.ATOM, TokenType.RANGLE, TokenType.EOF,
    ]


def test_positions():
    """Test line and column tracking."""
    tokens = Lexer("<f\n  .x>").tokenize()

    var = tokens[2]
    assert var.type == TokenType.LOCAL_VAR
    assert (var.line, var.column) == (2, 3)


def test_unterminated_string():
    """Test that an unterminated string is reported with its location."""
    with pytest.raises(SyntaxError, match=r"^prog\.mex:1:\d+: Unterminated string"):
        Lexer('<print "oops', "prog.mex").tokenize()
