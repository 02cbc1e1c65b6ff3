"""
Mex Compiler (mexc) - Expands macros in a homoiconic language.

This package provides a compile-time macro expansion engine: a uniform tree
model, quote/unquote, a per-unit macro registry, a fixpoint expander and
context-token hygiene, plus a small reader and reference evaluator.
"""

__version__ = "0.1.0"
__author__ = "Mex Compiler Project"
