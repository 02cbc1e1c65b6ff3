"""
Quote builder and unquote injector.

quote(scope, fragment) turns a surface fragment into a tree value:
- variables written in the fragment are tagged with the quote's context
- calls written in the fragment record the context in their meta
- literals are returned as they are
- unquote(v) placeholders are replaced by v verbatim, keeping v's own tags
- unquote_splice(seq) placeholders splice seq into the enclosing argument
  list (or list literal); anywhere else they raise SpliceArityError

These four functions (with var_bang) are what macro bodies use to build trees.
"""

from typing import Any, List, Mapping, Optional, Sequence

from .ast_nodes import (
    Atom, CallNode, Context, Unquote, UnquoteSplice, VarNode,
    as_context, node_type, validate_node,
)
from .hygiene import CONTEXT_META, is_escaped, var_bang
from ..errors import MalformedNodeError, SpliceArityError

__all__ = ['quote', 'unquote', 'unquote_splice', 'var_bang']


def unquote(node: Any, meta: Optional[Mapping[str, Any]] = None) -> Unquote:
    """Placeholder injecting a single value into a quote."""
    return Unquote(node, meta)


def unquote_splice(nodes: Sequence[Any], meta: Optional[Mapping[str, Any]] = None) -> UnquoteSplice:
    """Placeholder splicing a sequence of values into a quote's argument list."""
    return UnquoteSplice(nodes, meta)


def quote(context_scope: Any, fragment: Any) -> Any:
    """Build a tree from a fragment, tagging it with context_scope."""
    return _quote(fragment, as_context(context_scope))


def _inject(placeholder: Unquote) -> Any:
    try:
        return validate_node(placeholder.value)
    except MalformedNodeError as e:
        raise MalformedNodeError(f"cannot unquote {placeholder.value!r}: {e.message}",
                                 placeholder.meta) from e


def _quote(value: Any, context: Context) -> Any:
    if isinstance(value, Unquote):
        return _inject(value)

    if isinstance(value, UnquoteSplice):
        raise SpliceArityError("unquote_splicing used outside of an argument list",
                               value.meta)

    if isinstance(value, VarNode):
        if is_escaped(value) or value.context == context:
            return value
        return VarNode(value.name, value.meta, context)

    if isinstance(value, CallNode):
        head = value.head
        if isinstance(head, Unquote):
            head = _inject(head)
            if isinstance(head, Atom):
                head = head.name
        elif not isinstance(head, str):
            head = _quote(head, context)
        meta = dict(value.meta)
        meta[CONTEXT_META] = context
        return CallNode(head, meta, _quote_sequence(value.args, context))

    if isinstance(value, list):
        return _quote_sequence(value, context)

    if isinstance(value, tuple):
        node_type(value)
        return (_quote(value[0], context), _quote(value[1], context))

    # Atoms, numbers and strings quote to themselves
    node_type(value)
    return value


def _quote_sequence(items: Sequence[Any], context: Context) -> List[Any]:
    """Quote an argument list, splicing unquote_splice placeholders in place."""
    result = []
    for item in items:
        if isinstance(item, UnquoteSplice):
            values = item.values
            if isinstance(values, (str, bytes)) or not isinstance(values, (list, tuple)):
                raise MalformedNodeError(
                    f"unquote_splicing expects a list, got {values!r}", item.meta)
            for value in values:
                result.append(_inject(Unquote(value, item.meta)))
        else:
            result.append(_quote(item, context))
    return result
