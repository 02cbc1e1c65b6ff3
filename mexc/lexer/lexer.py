"""
Mex Lexer - Tokenizes Mex source code into tokens.

Handles:
- Angle brackets <> (call forms)
- Parentheses () (list literals) and square brackets [] (pairs)
- Atoms, numbers and strings
- Local variables (.name)
- Quote shorthands: ` (quote), ~ (unquote), ~! (unquote_splicing)
- Line comments starting with ;
"""

import re
from enum import Enum, auto
from dataclasses import dataclass
from typing import Any, List, Optional


class TokenType(Enum):
    """Mex token types."""
    # Delimiters
    LANGLE = auto()      # <
    RANGLE = auto()      # >
    LPAREN = auto()      # (
    RPAREN = auto()      # )
    LBRACKET = auto()    # [
    RBRACKET = auto()    # ]

    # Literals
    ATOM = auto()        # identifier/symbol
    STRING = auto()      # "text"
    NUMBER = auto()      # 123, -4.5

    # Variables
    LOCAL_VAR = auto()   # .name

    # Quote shorthands
    QUASIQUOTE = auto()      # `
    UNQUOTE = auto()         # ~
    SPLICE_UNQUOTE = auto()  # ~!

    # End of file
    EOF = auto()


@dataclass
class Token:
    """Represents a single token."""
    type: TokenType
    value: Any
    line: int
    column: int

    def __repr__(self):
        return f"Token({self.type.name}, {self.value!r}, {self.line}:{self.column})"


# Characters that end a word
DELIMITERS = frozenset('<>()[]";`~ \t\n\r\f')

INT_RE = re.compile(r'^[+-]?\d+$')
FLOAT_RE = re.compile(r'^[+-]?\d+\.\d+([eE][+-]?\d+)?$')

ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '"': '"', '\\': '\\'}


class Lexer:
    """Tokenizes Mex source code."""

    def __init__(self, source: str, filename: str = "<input>"):
        self.source = source
        self.filename = filename
        self.pos = 0
        self.line = 1
        self.column = 1
        self.tokens: List[Token] = []

    def error(self, message: str):
        """Raise a lexer error with location information."""
        raise SyntaxError(f"{self.filename}:{self.line}:{self.column}: {message}")

    def peek(self, offset: int = 0) -> Optional[str]:
        """Peek at character at current position + offset."""
        pos = self.pos + offset
        if pos < len(self.source):
            return self.source[pos]
        return None

    def advance(self) -> Optional[str]:
        """Consume and return current character."""
        if self.pos >= len(self.source):
            return None

        ch = self.source[self.pos]
        self.pos += 1

        if ch == '\n':
            self.line += 1
            self.column = 1
        else:
            self.column += 1

        return ch

    def skip_whitespace(self):
        """Skip whitespace characters."""
        while self.peek() and self.peek() in ' \t\n\r\f':
            self.advance()

    def skip_comment(self):
        """Skip a ; comment up to the end of the line."""
        while self.peek() is not None and self.peek() != '\n':
            self.advance()

    def read_string(self) -> str:
        """Read a double-quoted string literal."""
        self.advance()  # opening "
        chars = []
        while True:
            ch = self.advance()
            if ch is None:
                self.error("Unterminated string")
            if ch == '"':
                break
            if ch == '\\':
                esc = self.advance()
                if esc is None:
                    self.error("Unterminated string")
                chars.append(ESCAPES.get(esc, esc))
            else:
                chars.append(ch)
        return ''.join(chars)

    def read_word(self) -> str:
        """Read characters up to the next delimiter."""
        start = self.pos
        while self.peek() is not None and self.peek() not in DELIMITERS:
            self.advance()
        return self.source[start:self.pos]

    def add_token(self, token_type: TokenType, value: Any, line: int, column: int):
        self.tokens.append(Token(token_type, value, line, column))

    def tokenize(self) -> List[Token]:
        """Tokenize the entire source."""
        simple = {
            '<': TokenType.LANGLE,
            '>': TokenType.RANGLE,
            '(': TokenType.LPAREN,
            ')': TokenType.RPAREN,
            '[': TokenType.LBRACKET,
            ']': TokenType.RBRACKET,
            '`': TokenType.QUASIQUOTE,
        }

        while True:
            self.skip_whitespace()
            ch = self.peek()
            if ch is None:
                break

            line, column = self.line, self.column

            if ch == ';':
                self.skip_comment()
            elif ch in simple:
                self.advance()
                self.add_token(simple[ch], ch, line, column)
            elif ch == '~':
                self.advance()
                if self.peek() == '!':
                    self.advance()
                    self.add_token(TokenType.SPLICE_UNQUOTE, '~!', line, column)
                else:
                    self.add_token(TokenType.UNQUOTE, '~', line, column)
            elif ch == '"':
                self.add_token(TokenType.STRING, self.read_string(), line, column)
            else:
                word = self.read_word()
                self.add_token(*self.classify_word(word), line, column)

        self.tokens.append(Token(TokenType.EOF, None, self.line, self.column))
        return self.tokens

    def classify_word(self, word: str) -> tuple:
        """Decide whether a bare word is a number, variable or atom."""
        if INT_RE.match(word):
            return TokenType.NUMBER, int(word)
        if FLOAT_RE.match(word):
            return TokenType.NUMBER, float(word)
        if len(word) > 1 and word[0] == '.' and (word[1].isalpha() or word[1] == '_'):
            name = word[1:]
            if '.' in name:
                self.error(f"Invalid variable name: {word}")
            return TokenType.LOCAL_VAR, name
        return TokenType.ATOM, word
