"""Mex Parser - Builds the tree from tokens and expands macros in it."""

from .parser import Parser, parse_source
from .ast_nodes import *
from .quote import quote, unquote, unquote_splice, var_bang
from .macro_registry import CompilationSession, MacroDefinition, MacroRegistry, Visibility
from .macro_expander import MacroExpander

__all__ = [
    'Parser', 'parse_source',
    'quote', 'unquote', 'unquote_splice', 'var_bang',
    'CompilationSession', 'MacroDefinition', 'MacroRegistry', 'Visibility',
    'MacroExpander',
]
