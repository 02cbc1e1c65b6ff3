"""
Error types raised while reading, expanding and lowering Mex code.

Every error carries the ``meta`` mapping of the node it originated from so the
compiler can report ``file:line:column`` the same way for all of them.
"""

from typing import Any, Mapping, Optional


class MacroError(Exception):
    """Base class for all expansion-time and call-time errors."""

    def __init__(self, message: str, meta: Optional[Mapping[str, Any]] = None,
                 filename: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.meta = dict(meta) if meta else {}
        self.filename = filename

    @property
    def line(self) -> int:
        return self.meta.get('line', 0)

    @property
    def column(self) -> int:
        return self.meta.get('column', 0)

    def __str__(self):
        prefix = []
        if self.filename:
            prefix.append(self.filename)
        if self.line:
            prefix.append(str(self.line))
            if self.column:
                prefix.append(str(self.column))
        if prefix:
            return f"{':'.join(prefix)}: {self.message}"
        return self.message


class MalformedNodeError(MacroError):
    """A value violates the Call/Variable/Literal shape invariant."""
    pass


class DuplicateMacroError(MacroError):
    """A macro with the same (scope, name, arity) is already registered."""
    pass


class SpecialFormOverrideError(MacroError):
    """A macro name collides with the Special Form Table."""
    pass


class SpliceArityError(MacroError):
    """A list-splice was used outside an argument-sequence position."""
    pass


class ExpansionDepthExceededError(MacroError):
    """Recursive macro expansion went deeper than the configured limit."""
    pass


class UnresolvedCallError(MacroError):
    """A call matched neither a macro nor a function when it was invoked."""
    pass


class RegistryFrozenError(MacroError):
    """A finalized (published) registry was asked to change."""
    pass


class CompileError(MacroError):
    """A definitional form (defmodule, def, defmacro, alias...) is malformed."""
    pass


class EvaluationError(MacroError):
    """The reference evaluator could not evaluate a form."""
    pass
