"""
Mex Parser - Builds the tree from tokens.

Surface syntax:
    <head arg ...>      call (head Mod.fun becomes a dotted call)
    .name               variable, typed at the use site (NO_CONTEXT)
    name                atom
    123 4.5 "text"      numbers and strings
    (a b c)             list literal
    [a b]               pair literal
    `x ~x ~!x           <quote x> <unquote x> <unquote_splicing x>
"""

from typing import Any, Dict, List, Optional

from ..lexer import Lexer, Token, TokenType
from ..errors import MalformedNodeError
from .ast_nodes import *


class Parser:
    """Parses Mex tokens into tree values."""

    def __init__(self, tokens: List[Token], filename: str = "<input>"):
        self.tokens = tokens
        self.filename = filename
        self.pos = 0
        self.current_token = self.tokens[0] if tokens else None

    def error(self, message: str):
        """Raise a parser error with location information."""
        if self.current_token:
            raise SyntaxError(
                f"{self.filename}:{self.current_token.line}:{self.current_token.column}: {message}"
            )
        else:
            raise SyntaxError(f"{self.filename}: {message}")

    def peek(self, offset: int = 0) -> Optional[Token]:
        """Peek at token at current position + offset."""
        pos = self.pos + offset
        if pos < len(self.tokens):
            return self.tokens[pos]
        return None

    def advance(self) -> Token:
        """Consume and return current token."""
        token = self.current_token
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
            self.current_token = self.tokens[self.pos]
        return token

    def expect(self, token_type: TokenType) -> Token:
        """Consume token of expected type or raise error."""
        if self.current_token.type != token_type:
            self.error(f"Expected {token_type.name}, got {self.current_token.type.name} ({repr(self.current_token.value)})")
        return self.advance()

    @staticmethod
    def meta(token: Token) -> Dict[str, Any]:
        return {'line': token.line, 'column': token.column}

    def parse(self) -> List[Any]:
        """Parse the entire source into a list of top-level forms."""
        forms = []
        if self.current_token is None:
            return forms
        while self.current_token.type != TokenType.EOF:
            forms.append(self.parse_expression())
        return forms

    def parse_expression(self) -> Any:
        """Parse one tree value."""
        token = self.current_token
        ttype = token.type

        if ttype == TokenType.LANGLE:
            return self.parse_form()
        elif ttype == TokenType.LPAREN:
            return self.parse_list()
        elif ttype == TokenType.LBRACKET:
            return self.parse_pair()
        elif ttype == TokenType.ATOM:
            self.advance()
            return Atom(token.value, self.meta(token))
        elif ttype in (TokenType.NUMBER, TokenType.STRING):
            self.advance()
            return token.value
        elif ttype == TokenType.LOCAL_VAR:
            self.advance()
            return VarNode(token.value, self.meta(token), NO_CONTEXT)
        elif ttype in (TokenType.QUASIQUOTE, TokenType.UNQUOTE, TokenType.SPLICE_UNQUOTE):
            return self.parse_prefix()
        elif ttype == TokenType.EOF:
            self.error("Unexpected end of input")
        else:
            self.error(f"Unexpected {ttype.name} ({token.value!r})")

    def parse_prefix(self) -> CallNode:
        """Parse `x, ~x and ~!x shorthands."""
        token = self.advance()
        names = {
            TokenType.QUASIQUOTE: "quote",
            TokenType.UNQUOTE: "unquote",
            TokenType.SPLICE_UNQUOTE: "unquote_splicing",
        }
        if self.current_token.type == TokenType.EOF:
            self.error(f"Expected expression after {token.value}")
        return CallNode(names[token.type], self.meta(token), [self.parse_expression()])

    def parse_form(self) -> CallNode:
        """Parse <head arg ...>."""
        start = self.expect(TokenType.LANGLE)
        if self.current_token.type == TokenType.RANGLE:
            self.error("Empty form <>")

        head = self.parse_head()
        args = []
        while self.current_token.type != TokenType.RANGLE:
            if self.current_token.type == TokenType.EOF:
                self.error(f"Unterminated form starting at {start.line}:{start.column}")
            args.append(self.parse_expression())
        self.advance()  # >

        return CallNode(head, self.meta(start), args)

    def parse_head(self) -> Any:
        """Parse the head of a form: a name, a dotted name, or a node."""
        token = self.current_token
        if token.type == TokenType.ATOM:
            self.advance()
            return self.split_head(token.value, self.meta(token))
        if token.type in (TokenType.LANGLE, TokenType.LOCAL_VAR, TokenType.UNQUOTE):
            return self.parse_expression()
        self.error(f"Invalid form head {token.type.name} ({token.value!r})")

    def split_head(self, name: str, meta: Dict[str, Any]) -> Any:
        """Mod.fun as a head becomes the dotted call <. Mod fun>."""
        inner = name.strip('.')
        if inner == name and '.' in name:
            if '' in name.split('.'):
                raise SyntaxError(f"{self.filename}:{meta['line']}:{meta['column']}: "
                                  f"Invalid dotted name: {name}")
            module, function = name.rsplit('.', 1)
            return make_dotted(module, function, meta)
        return name

    def parse_list(self) -> List[Any]:
        """Parse (item ...)."""
        start = self.expect(TokenType.LPAREN)
        items = []
        while self.current_token.type != TokenType.RPAREN:
            if self.current_token.type == TokenType.EOF:
                self.error(f"Unterminated list starting at {start.line}:{start.column}")
            items.append(self.parse_expression())
        self.advance()  # )
        return items

    def parse_pair(self) -> tuple:
        """Parse [left right]."""
        start = self.expect(TokenType.LBRACKET)
        items = []
        while self.current_token.type != TokenType.RBRACKET:
            if self.current_token.type == TokenType.EOF:
                self.error(f"Unterminated pair starting at {start.line}:{start.column}")
            items.append(self.parse_expression())
        self.advance()  # ]
        if len(items) != 2:
            raise MalformedNodeError(
                f"Pair literal must have exactly two elements, got {len(items)}",
                self.meta(start), self.filename)
        return make_pair(items[0], items[1], self.meta(start))


def parse_source(source: str, filename: str = "<input>") -> List[Any]:
    """Lex and parse source text into top-level forms."""
    return Parser(Lexer(source, filename).tokenize(), filename).parse()
