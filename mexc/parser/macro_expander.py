"""
Macro expansion engine for Mex.

Rewrites a tree until no macro calls remain:
- at every call, the registry is consulted before the arguments are visited
- a macro body receives the raw, unexpanded argument nodes
- the replacement is expanded again, one level deeper; the depth is bounded
- quote subtrees are data and are left alone
- alias, import and require calls are recorded as they are reached, with the
  context of the node that declared them

A call that is not a macro when it is reached stays an ordinary call. It is
resolved (or reported as unresolved) by the lowering stage.

The walk keeps its own stack instead of recursing, so the depth of a tree
(or of a macro result that keeps nesting itself) is limited by max_depth
and not by the interpreter's recursion limit.
"""

import logging
from typing import Any, Callable, List, Optional

from .ast_nodes import *
from .hygiene import (
    DECLARATION_FORMS, context_of, is_resolved, resolve_var_bang, resolved_meta,
)
from .macro_registry import MacroDefinition, MacroRegistry
from ..errors import CompileError, ExpansionDepthExceededError, MalformedNodeError

logger = logging.getLogger(__name__)


DEFAULT_MAX_DEPTH = 256

# Calls whose arguments the expander never enters
OPAQUE_FORMS = frozenset({'quote', 'defmodule'})

# Work stack entries: (task, item, extra)
_VISIT = 0      # expand item; extra is the re-expansion depth
_REBUILD = 1    # rebuild call item from the results; extra is its new head
_COLLECT = 2    # rebuild list or pair item from the results

# Head still to be taken from the results
_PENDING = object()


def module_name(value: Any, meta: Optional[dict] = None) -> str:
    """Name of a module given as an atom or a string."""
    if isinstance(value, Atom):
        return value.name
    if isinstance(value, str) and value:
        return value
    raise CompileError(f"expected a module name, got {format_node(value)}", meta)


class MacroExpander:
    """Expands macro calls against a registry."""

    def __init__(self, registry: MacroRegistry, max_depth: int = DEFAULT_MAX_DEPTH,
                 on_warning: Optional[Callable[[str, str], None]] = None):
        if max_depth < 1:
            raise ValueError(f"max_depth must be positive, got {max_depth}")
        self.registry = registry
        self.max_depth = max_depth
        self.on_warning = on_warning
        self.expansions = 0

    def warn(self, code: str, message: str):
        if self.on_warning is not None:
            self.on_warning(code, message)
        else:
            logger.warning("%s: %s", code, message)

    def resolve(self, node: Any, scope: str) -> Optional[MacroDefinition]:
        """Macro definition a call refers to from scope, or None."""
        if not isinstance(node, CallNode):
            return None
        context = context_of(node)
        if isinstance(node.head, str):
            return self.registry.lookup(scope, node.head, node.arity, context)
        parts = dotted_parts(node.head)
        if parts is None:
            return None
        module, name = parts
        if not is_resolved(node.head):
            module = self._resolve_alias(scope, module, context)
        return self.registry.lookup(scope, name, node.arity, context, target=module)

    def is_macro_call(self, node: Any, scope: str) -> bool:
        return self.resolve(node, scope) is not None

    def _resolve_alias(self, scope: str, module: str, context: Context) -> str:
        table = self.registry.declarations_for(scope)
        if table is None:
            return module
        return table.resolve_alias(module, context)

    def expand_once(self, node: Any, scope: str) -> Any:
        """Apply a single macro expansion at the root of node, if any."""
        definition = self.resolve(node, scope)
        if definition is None:
            return node
        return self._invoke(definition, node)

    def expand(self, node: Any, scope: str, depth: int = 0) -> Any:
        """Fully expand node as code written in scope."""
        stack = [(_VISIT, node, depth)]
        results: List[Any] = []
        while stack:
            task, item, extra = stack.pop()
            if task == _VISIT:
                self._visit(item, scope, extra, stack, results)
            elif task == _REBUILD:
                results.append(self._rebuild_call(item, extra, scope, results))
            else:
                items = self._collect(item, results)
                if items is not item and isinstance(item, tuple):
                    items = (items[0], items[1])
                results.append(items)
        return results.pop()

    def expand_all(self, forms: List[Any], scope: str) -> List[Any]:
        """Expand a scope's forms in declaration order."""
        return [self.expand(form, scope) for form in forms]

    def _visit(self, node: Any, scope: str, depth: int, stack: list, results: list):
        if isinstance(node, (list, tuple)):
            stack.append((_COLLECT, node, None))
            self._push_all(node, depth, stack)
            return
        if not isinstance(node, CallNode):
            # Variables and scalar literals; placeholders are rejected here
            node_type(node)
            results.append(node)
            return

        definition = self.resolve(node, scope)
        if definition is not None:
            if depth >= self.max_depth:
                raise ExpansionDepthExceededError(
                    f"expansion of {definition.name}/{definition.arity} exceeded "
                    f"the maximum depth of {self.max_depth}", node.meta)
            stack.append((_VISIT, self._invoke(definition, node), depth + 1))
            return

        name = node.name
        if name in OPAQUE_FORMS:
            results.append(node)
        elif name in ('unquote', 'unquote_splicing'):
            raise MalformedNodeError(f"{name} used outside of a quote", node.meta)
        elif name == 'var!':
            results.append(resolve_var_bang(node))
        elif name == '__MODULE__' and not node.args:
            results.append(Atom(scope))
        elif isinstance(node.head, str) or dotted_parts(node.head) is not None:
            head = self._expand_head(node.head, scope, context_of(node))
            stack.append((_REBUILD, node, head))
            self._push_all(node.args, depth, stack)
        else:
            # The head is expanded before the arguments
            stack.append((_REBUILD, node, _PENDING))
            self._push_all(node.args, depth, stack)
            stack.append((_VISIT, node.head, depth))

    @staticmethod
    def _push_all(items: Any, depth: int, stack: list):
        for item in reversed(items):
            stack.append((_VISIT, item, depth))

    @staticmethod
    def _collect(items: Any, results: list) -> Any:
        """Take len(items) results; items itself when none of them changed."""
        start = len(results) - len(items)
        expanded = results[start:]
        del results[start:]
        if all(new is old for new, old in zip(expanded, items)):
            return items
        return expanded

    def _rebuild_call(self, node: CallNode, head: Any, scope: str, results: list) -> Any:
        args = self._collect(node.args, results)
        if head is _PENDING:
            head = results.pop()

        if head is node.head and args is node.args:
            result = node
        else:
            result = CallNode(head, node.meta, args)

        if node.name in DECLARATION_FORMS:
            result = self._declare(result, scope)
        return result

    def _expand_head(self, head: Any, scope: str, context: Context) -> Any:
        """Rewrite an aliased Mod.fun head to the full module name, once."""
        if isinstance(head, str) or is_resolved(head):
            return head
        module, function = dotted_parts(head)
        resolved = self._resolve_alias(scope, module, context)
        return make_dotted(resolved, function, resolved_meta(head.meta))

    def _invoke(self, definition: MacroDefinition, node: CallNode) -> Any:
        logger.debug("Expanding %r at %s", definition, location(node.meta) or "?")
        self.expansions += 1
        result = definition.body_builder(*node.args)
        try:
            return validate_node(result)
        except MalformedNodeError as e:
            raise MalformedNodeError(
                f"macro {definition.name}/{definition.arity} returned an invalid tree: "
                f"{e.message}", node.meta) from e

    def _declare(self, node: CallNode, scope: str) -> CallNode:
        """Record an alias, import or require reached in scope.

        Returns the declaration with its module name resolved and marked, so
        expanding it again records the same module.
        """
        context = context_of(node)
        table = self.registry.declarations(scope)
        name = node.name

        if name == 'alias':
            if not 1 <= node.arity <= 2:
                raise CompileError(f"alias expects 1 or 2 arguments, got {node.arity}", node.meta)
        elif node.arity != 1:
            raise CompileError(f"{name} expects 1 argument, got {node.arity}", node.meta)

        module = module_name(node.args[0], node.meta)
        if not is_resolved(node):
            module = table.resolve_alias(module, context)

        if name == 'alias':
            short = module_name(node.args[1], node.meta) if node.arity == 2 else None
            previous = table.add_alias(module, short, context)
            if previous is not None and previous != module:
                self.warn("MEX0102", f"alias {short or module.rsplit('.', 1)[-1]} "
                                     f"in {scope} now refers to {module} instead of {previous}")
            logger.debug("%s aliases %s (context %r)", scope, module, context)
        else:
            self.registry.declare_dependency(scope, module, context, imported=(name == 'import'))

        if is_resolved(node):
            return node
        return CallNode(node.head, resolved_meta(node.meta),
                        [Atom(module, node.meta)] + node.args[1:])
