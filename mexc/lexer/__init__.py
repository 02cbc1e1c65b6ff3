"""Mex Lexer - Tokenizes source text."""

from .lexer import Lexer, Token, TokenType

__all__ = ['Lexer', 'Token', 'TokenType']
