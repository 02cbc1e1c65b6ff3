"""
Hygiene context manager.

A variable's context token is fixed when it is quoted: the scope active
during the quote, or NO_CONTEXT for code typed at the use site. Two
variables are the same binding only when name and context are both equal,
so a variable introduced by a macro body never captures (or is captured by)
a caller's variable of the same name.

var! opts out: it re-tags one variable with NO_CONTEXT (or a named target
scope) so it resolves in the caller.

The same equality rule scopes alias, import and require declarations: a
declaration made by a node with context C only applies to nodes with
context C.
"""

from typing import Any, Dict, List, Optional, Tuple

from .ast_nodes import Atom, CallNode, Context, NO_CONTEXT, VarNode, as_context
from ..errors import CompileError, MalformedNodeError


# Meta key: context of a call built by a quote
CONTEXT_META = "context"
# Meta key: variable was produced by var! and must keep its context
ESCAPED_META = "escaped"
# Meta key: False on a dotted head or declaration whose module name is
# already resolved through the aliases
ALIAS_META = "alias"

# Calls whose effect is scoped by the context of the declaring node
DECLARATION_FORMS = frozenset({"alias", "import", "require"})


def context_of(node: Any) -> Context:
    """Context token carried by a node (NO_CONTEXT for literals)."""
    if isinstance(node, VarNode):
        return node.context
    if isinstance(node, CallNode):
        return node.meta.get(CONTEXT_META, NO_CONTEXT)
    return NO_CONTEXT


def binding_key(var: VarNode) -> Tuple[str, Context]:
    """Key under which a variable's binding is stored."""
    return (var.name, var.context)


def same_binding(a: Any, b: Any) -> bool:
    """True if two variables refer to the same binding."""
    return (isinstance(a, VarNode) and isinstance(b, VarNode)
            and binding_key(a) == binding_key(b))


def is_escaped(var: VarNode) -> bool:
    return bool(var.meta.get(ESCAPED_META))


def is_resolved(node: Any) -> bool:
    return isinstance(node, CallNode) and node.meta.get(ALIAS_META) is False


def resolved_meta(meta: Dict[str, Any]) -> Dict[str, Any]:
    return dict(meta, **{ALIAS_META: False})


def var_bang(node: Any, target_scope: Any = None) -> VarNode:
    """Escape hygiene for one variable.

    Returns a copy of node whose context is NO_CONTEXT, or the context of
    target_scope when given, marked so that quoting keeps that context.
    """
    if isinstance(node, VarNode):
        name, meta = node.name, dict(node.meta)
    elif isinstance(node, Atom):
        name, meta = node.name, {}
    else:
        raise MalformedNodeError(f"var! expects a variable, got {node!r}",
                                 getattr(node, 'meta', None))
    meta[ESCAPED_META] = True
    return VarNode(name, meta, as_context(target_scope))


def resolve_var_bang(call: CallNode) -> VarNode:
    """Turn a <var! .name [Target]> call into the escaped variable."""
    if not 1 <= len(call.args) <= 2:
        raise MalformedNodeError(
            f"var! expects 1 or 2 arguments, got {len(call.args)}", call.meta)
    target = None
    if len(call.args) == 2:
        target = call.args[1]
        if not isinstance(target, (Atom, str)):
            raise MalformedNodeError(f"var! target must be a scope name, got {target!r}",
                                     call.meta)
    return var_bang(call.args[0], target)


class DeclarationTable:
    """Aliases and dependency declarations of one scope.

    Every entry remembers the context of the node that declared it and is
    only visible to nodes carrying an equal context.
    """

    def __init__(self, scope: str):
        self.scope = scope
        self._aliases: Dict[Tuple[str, Context], str] = {}
        self._imports: List[Tuple[str, Context]] = []
        self._requires: List[Tuple[str, Context]] = []

    def add_alias(self, module: str, short: Optional[str] = None,
                  context: Context = NO_CONTEXT) -> Optional[str]:
        """Declare <alias module short>. Returns the alias it replaced, if any."""
        if short is None:
            short = module.rsplit('.', 1)[-1]
        if '.' in short:
            raise CompileError(f"alias name must be a single segment, got {short}")
        key = (short, context)
        previous = self._aliases.get(key)
        self._aliases[key] = module
        return previous

    def resolve_alias(self, name: str, context: Context = NO_CONTEXT) -> str:
        """Expand the first segment of a module name through the aliases.

        A name some alias of this context already stands for is kept as
        written, so <alias Foo.Foo> does not grow when it is seen again.
        """
        if name in self._alias_targets(context):
            return name
        first, _, rest = name.partition('.')
        module = self._aliases.get((first, context))
        if module is None:
            return name
        return f"{module}.{rest}" if rest else module

    def _alias_targets(self, context: Context) -> List[str]:
        return [module for (_, ctx), module in self._aliases.items() if ctx == context]

    def add_import(self, module: str, context: Context = NO_CONTEXT):
        entry = (module, context)
        if entry not in self._imports:
            self._imports.append(entry)

    def add_require(self, module: str, context: Context = NO_CONTEXT):
        entry = (module, context)
        if entry not in self._requires:
            self._requires.append(entry)

    def imports(self, context: Context = NO_CONTEXT) -> List[str]:
        """Modules imported by nodes with this context, in declaration order."""
        return [module for module, ctx in self._imports if ctx == context]

    def depends_on(self, module: str, context: Context = NO_CONTEXT) -> bool:
        """True if a node with this context declared a dependency on module."""
        return ((module, context) in self._requires
                or (module, context) in self._imports)

    def dependencies(self) -> List[str]:
        """Every module this scope depends on, in declaration order."""
        seen = []
        for module, _ in self._requires + self._imports:
            if module not in seen:
                seen.append(module)
        return seen

    def __repr__(self):
        return (f"DeclarationTable({self.scope}, {len(self._aliases)} aliases, "
                f"{len(self._imports)} imports, {len(self._requires)} requires)")
