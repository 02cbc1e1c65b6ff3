"""
Macro registry.

Maps (scope, name, arity) to a macro definition for one compilation unit.
Lookups follow the visibility rules:
- a scope always sees its own macros, private ones included
- public macros of another scope are visible once the caller declared a
  dependency on it (import for unqualified calls, import or require for
  qualified Mod.name calls)
- a node carrying the context of scope S also sees S's public macros and
  the dependencies S declared itself, so a macro body's quoted calls resolve
  where they were written

Names in the Special Form Table are never macros and cannot be registered.

A finished unit freezes its registry and publishes it to the
CompilationSession, where later units read it without changing it.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .ast_nodes import Atom, Context, NO_CONTEXT, VarNode
from .hygiene import DeclarationTable
from ..errors import DuplicateMacroError, RegistryFrozenError, SpecialFormOverrideError

logger = logging.getLogger(__name__)


# Built-in forms handled by the expander, the compiler or the evaluator
SPECIAL_FORMS = frozenset({
    # quoting and hygiene
    'quote', 'unquote', 'unquote_splicing', 'var!',
    # structure
    '__block__', '__aliases__', '=', '.', '^', '&', '::', '{}', '%{}',
    # scope and definitions
    'defmodule', 'def', 'defp', 'defmacro', 'defmacrop',
    'alias', 'import', 'require',
    '__MODULE__', '__CALLER__', '__ENV__', '__DIR__',
    # control forms reserved for the lowering stage
    'fn', 'case', 'cond', 'receive', 'try', 'for', 'with', 'super',
})


class Visibility(Enum):
    """Macro visibility."""
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class MacroDefinition:
    """A registered macro.

    body_builder receives the raw argument nodes positionally and returns
    the replacement tree.
    """
    scope: str
    name: str
    arity: int
    params: Tuple[str, ...]
    body_builder: Callable[..., Any] = field(compare=False)
    visibility: Visibility = Visibility.PUBLIC
    meta: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> Tuple[str, str, int]:
        return (self.scope, self.name, self.arity)

    @property
    def is_public(self) -> bool:
        return self.visibility == Visibility.PUBLIC

    def __repr__(self):
        kind = "defmacro" if self.is_public else "defmacrop"
        return f"Macro({kind} {self.scope}.{self.name}/{self.arity})"


def _param_name(param: Any) -> str:
    if isinstance(param, VarNode):
        return param.name
    if isinstance(param, Atom):
        return param.name
    return str(param)


class MacroRegistry:
    """Macro definitions and declarations of one compilation unit."""

    def __init__(self, session: Optional['CompilationSession'] = None, unit: str = "<unit>"):
        self.session = session
        self.unit = unit
        self.frozen = False
        self._macros: Dict[Tuple[str, str, int], MacroDefinition] = {}
        self._declarations: Dict[str, DeclarationTable] = {}
        # Scopes never published to the session (the unit script scope)
        self._local: set = set()

    def _check_writable(self, scope: str, meta: Optional[Mapping[str, Any]] = None):
        if self.frozen:
            raise RegistryFrozenError(
                f"registry of {self.unit} is finalized; cannot change scope {scope}", meta)
        if self.session is not None and self.session.is_finalized(scope):
            raise RegistryFrozenError(
                f"scope {scope} was finalized by another compilation unit", meta)

    def register(self, definition: MacroDefinition) -> MacroDefinition:
        """Add a macro definition to its scope."""
        if definition.name in SPECIAL_FORMS:
            raise SpecialFormOverrideError(
                f"cannot define macro {definition.name}/{definition.arity}: "
                f"{definition.name} is a special form", definition.meta)
        self._check_writable(definition.scope, definition.meta)
        if definition.key in self._macros:
            raise DuplicateMacroError(
                f"macro {definition.scope}.{definition.name}/{definition.arity} is already defined",
                definition.meta)

        self._macros[definition.key] = definition
        self._declarations.setdefault(definition.scope, DeclarationTable(definition.scope))
        logger.debug("Registered %r", definition)
        return definition

    def define_macro(self, scope: str, name: str, params: Sequence[Any],
                     body_builder: Callable[..., Any],
                     visibility: Any = Visibility.PUBLIC,
                     meta: Optional[Mapping[str, Any]] = None) -> MacroDefinition:
        """Create and register a macro definition."""
        if isinstance(visibility, str):
            visibility = Visibility(visibility)
        names = tuple(_param_name(p) for p in params)
        definition = MacroDefinition(scope, name, len(names), names, body_builder,
                                     visibility, dict(meta) if meta else {})
        return self.register(definition)

    def declarations(self, scope: str) -> DeclarationTable:
        """Declaration table of a scope owned by this unit (created on demand)."""
        table = self._declarations.get(scope)
        if table is None:
            self._check_writable(scope)
            table = self._declarations[scope] = DeclarationTable(scope)
        return table

    def declarations_for(self, scope: str) -> Optional[DeclarationTable]:
        """Declaration table of any known scope, without creating one."""
        table = self._declarations.get(scope)
        if table is None and self.session is not None:
            registry = self.session.registry_for(scope)
            if registry is not None and registry is not self:
                table = registry.declarations_for(scope)
        return table

    def declare_dependency(self, scope: str, dependency: str,
                           context: Context = NO_CONTEXT, imported: bool = True):
        """Record that scope depends on dependency (import or require)."""
        table = self.declarations(scope)
        if imported:
            table.add_import(dependency, context)
        else:
            table.add_require(dependency, context)
        logger.debug("%s %s %s (context %r)", scope,
                     "imports" if imported else "requires", dependency, context)

    def owns(self, scope: str) -> bool:
        return scope in self._declarations

    def mark_local(self, scope: str):
        """Keep a scope private to this unit when the registry is published."""
        self._local.add(scope)
        self.declarations(scope)

    def scopes(self) -> List[str]:
        return list(self._declarations)

    def shared_scopes(self) -> List[str]:
        return [scope for scope in self._declarations if scope not in self._local]

    def macros(self, scope: Optional[str] = None) -> List[MacroDefinition]:
        """Definitions in registration order, optionally for one scope."""
        return [m for m in self._macros.values() if scope is None or m.scope == scope]

    def _get(self, scope: str, name: str, arity: int) -> Optional[MacroDefinition]:
        definition = self._macros.get((scope, name, arity))
        if definition is None and self.session is not None and not self.owns(scope):
            registry = self.session.registry_for(scope)
            if registry is not None and registry is not self:
                definition = registry._macros.get((scope, name, arity))
        return definition

    def lookup(self, caller_scope: str, name: str, arity: int,
               context: Context = NO_CONTEXT,
               target: Optional[str] = None) -> Optional[MacroDefinition]:
        """Find the macro a call resolves to, or None if it is not a macro call."""
        if name in SPECIAL_FORMS:
            return None
        if target is not None:
            return self._lookup_qualified(caller_scope, target, name, arity, context)

        # Own scope first: private macros are visible here only
        definition = self._get(caller_scope, name, arity)
        if definition is not None:
            return definition

        table = self.declarations_for(caller_scope)
        if table is not None:
            for module in table.imports(context):
                definition = self._get(module, name, arity)
                if definition is not None and definition.is_public:
                    return definition

        if context != NO_CONTEXT:
            origin = context.name
            if origin != caller_scope:
                definition = self._get(origin, name, arity)
                if definition is not None and definition.is_public:
                    return definition
            # Quoted code also sees what its own scope imported
            origin_table = self.declarations_for(origin)
            if origin_table is not None:
                for module in origin_table.imports(NO_CONTEXT):
                    definition = self._get(module, name, arity)
                    if definition is not None and definition.is_public:
                        return definition

        return None

    def _lookup_qualified(self, caller_scope: str, target: str, name: str, arity: int,
                          context: Context) -> Optional[MacroDefinition]:
        definition = self._get(target, name, arity)
        if definition is None:
            return None
        if target == caller_scope:
            return definition
        if not definition.is_public:
            return None
        table = self.declarations_for(caller_scope)
        if table is not None and table.depends_on(target, context):
            return definition
        if context != NO_CONTEXT:
            if context.name == target:
                return definition
            origin_table = self.declarations_for(context.name)
            if origin_table is not None and origin_table.depends_on(target):
                return definition
        return None

    def freeze(self):
        """Make the registry read-only."""
        self.frozen = True

    def __len__(self):
        return len(self._macros)

    def __repr__(self):
        state = "frozen" if self.frozen else "open"
        return f"MacroRegistry({self.unit}, {len(self._macros)} macros, {state})"


class CompilationSession:
    """Finished units' registries, shared read-only with later units.

    Units compiled in parallel each own a registry; publish() is the only
    point where the shared map changes, and it is guarded by a lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._finalized: Dict[str, MacroRegistry] = {}

    def new_registry(self, unit: str = "<unit>") -> MacroRegistry:
        return MacroRegistry(self, unit)

    def publish(self, registry: MacroRegistry):
        """Freeze a unit's registry and make its scopes visible to later units."""
        registry.freeze()
        with self._lock:
            for scope in registry.shared_scopes():
                owner = self._finalized.get(scope)
                if owner is not None and owner is not registry:
                    raise RegistryFrozenError(
                        f"scope {scope} is defined by both {owner.unit} and {registry.unit}")
            for scope in registry.shared_scopes():
                self._finalized[scope] = registry
        logger.debug("Published %r", registry)

    def registry_for(self, scope: str) -> Optional[MacroRegistry]:
        with self._lock:
            return self._finalized.get(scope)

    def is_finalized(self, scope: str) -> bool:
        with self._lock:
            return scope in self._finalized

    def scopes(self) -> List[str]:
        with self._lock:
            return list(self._finalized)
