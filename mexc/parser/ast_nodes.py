"""
Abstract Syntax Tree node definitions for Mex.

Every piece of code is one of a closed set of shapes:
- Call:     <head arg1 arg2 ...>    head is a name or another node
- Variable: .name                   tagged with a context token
- Literal:  atom, number, string, (list ...) or [left right] pair

Literals are plain Python values (Atom, int/float, str, list, tuple) so that
quoting a literal yields the literal itself.
"""

from enum import Enum, auto
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..errors import MalformedNodeError


class NodeType(Enum):
    """Tree value kinds."""
    CALL = auto()       # <head args...>
    VARIABLE = auto()   # .name (with context)

    # Literals
    ATOM = auto()
    NUMBER = auto()
    STRING = auto()
    LIST = auto()       # (a b c)
    PAIR = auto()       # [a b]


class Context:
    """Opaque context token.

    Identifies the scope a quote happened in. Tokens only support equality
    (and hashing consistent with it, so they can key binding tables).
    """
    __slots__ = ('_name',)

    def __init__(self, name: Optional[str] = None):
        self._name = name

    @property
    def name(self) -> Optional[str]:
        return self._name

    def __eq__(self, other):
        return isinstance(other, Context) and other._name == self._name

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash((Context, self._name))

    def __repr__(self):
        if self._name is None:
            return "Context(none)"
        return f"Context({self._name})"


# Context of nodes typed directly at the use site
NO_CONTEXT = Context()


class Atom:
    """Symbolic atom literal."""
    __slots__ = ('name',)

    def __init__(self, name: str, meta: Optional[Mapping[str, Any]] = None):
        # meta only locates construction errors; atoms compare by name alone
        if not isinstance(name, str) or not name:
            raise MalformedNodeError(f"Atom name must be a non-empty string, got {name!r}", meta)
        self.name = name

    def __eq__(self, other):
        return isinstance(other, Atom) and other.name == self.name

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash((Atom, self.name))

    def __repr__(self):
        return f"Atom({self.name})"


TRUE = Atom("true")
FALSE = Atom("false")
NIL = Atom("nil")


def as_context(scope: Any) -> Context:
    """Coerce a scope name (str, Atom, None) or Context into a Context."""
    if isinstance(scope, Context):
        return scope
    if scope is None:
        return NO_CONTEXT
    if isinstance(scope, Atom):
        return Context(scope.name)
    if isinstance(scope, str) and scope:
        return Context(scope)
    raise MalformedNodeError(f"Not a context token or scope name: {scope!r}")


class Unquote:
    """Placeholder for a single value injected into a quote."""
    __slots__ = ('value', 'meta')

    def __init__(self, value: Any, meta: Optional[Mapping[str, Any]] = None):
        self.value = value
        self.meta = dict(meta) if meta else {}

    def __eq__(self, other):
        return isinstance(other, Unquote) and nodes_equal(self.value, other.value)

    __hash__ = None

    def __repr__(self):
        return f"Unquote({self.value!r})"


class UnquoteSplice:
    """Placeholder for a sequence of values spliced into a quote."""
    __slots__ = ('values', 'meta')

    def __init__(self, values: Any, meta: Optional[Mapping[str, Any]] = None):
        self.values = values
        self.meta = dict(meta) if meta else {}

    def __eq__(self, other):
        return isinstance(other, UnquoteSplice) and nodes_equal(self.values, other.values)

    __hash__ = None

    def __repr__(self):
        return f"UnquoteSplice({self.values!r})"


PLACEHOLDERS = (Unquote, UnquoteSplice)


class ASTNode:
    """Base class for the two non-literal node shapes."""
    node_type: NodeType = None
    meta: Dict[str, Any]

    def __eq__(self, other):
        return nodes_equal(self, other)

    def __ne__(self, other):
        return not nodes_equal(self, other)

    __hash__ = None


class CallNode(ASTNode):
    """Call node: <head arg1 arg2 ...>"""
    node_type = NodeType.CALL

    def __init__(self, head: Any, meta: Optional[Mapping[str, Any]] = None,
                 args: Sequence[Any] = ()):
        if isinstance(head, str):
            if not head:
                raise MalformedNodeError("Call head must not be empty", meta)
        elif not isinstance(head, (CallNode, VarNode, Unquote, UnquoteSplice)):
            raise MalformedNodeError(
                f"Call head must be a name or a node, got {type(head).__name__}", meta)
        if meta is not None and not isinstance(meta, Mapping):
            raise MalformedNodeError(f"Node meta must be a mapping, got {type(meta).__name__}")
        if isinstance(args, Context):
            raise MalformedNodeError(
                f"Call {head!r} carries a context token instead of arguments", meta)
        if not isinstance(args, (list, tuple)):
            raise MalformedNodeError(
                f"Call arguments must be a sequence, got {type(args).__name__}", meta)
        for arg in args:
            _check_member(arg, meta)

        self.head = head
        self.meta = dict(meta) if meta else {}
        self.args = list(args)

    @property
    def name(self) -> Optional[str]:
        """The call name when the head is a plain name token."""
        return self.head if isinstance(self.head, str) else None

    @property
    def arity(self) -> int:
        return len(self.args)

    def __repr__(self):
        return f"Call({self.head!r}, {self.args!r})"


class VarNode(ASTNode):
    """Variable node: .name tagged with the context it was written in."""
    node_type = NodeType.VARIABLE

    def __init__(self, name: str, meta: Optional[Mapping[str, Any]] = None,
                 context: Context = NO_CONTEXT):
        if not isinstance(name, str) or not name:
            raise MalformedNodeError(f"Variable name must be a non-empty string, got {name!r}", meta)
        if meta is not None and not isinstance(meta, Mapping):
            raise MalformedNodeError(f"Node meta must be a mapping, got {type(meta).__name__}")
        if not isinstance(context, Context):
            raise MalformedNodeError(
                f"Variable {name} must carry a context token, got {type(context).__name__}", meta)
        self.name = name
        self.meta = dict(meta) if meta else {}
        self.context = context

    @property
    def head(self) -> str:
        return self.name

    def __repr__(self):
        if self.context == NO_CONTEXT:
            return f"Var({self.name})"
        return f"Var({self.name}, {self.context.name})"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_member(value: Any, meta: Optional[Mapping[str, Any]] = None):
    """Check a value placed inside a node or literal container.

    Calls and variables were checked when built; plain Python containers
    were not, so lists and pairs are walked here.
    """
    if isinstance(value, (ASTNode, Atom, str, Unquote, UnquoteSplice)) or _is_number(value):
        return
    if isinstance(value, list):
        for item in value:
            _check_member(item, meta)
        return
    if isinstance(value, tuple):
        if len(value) != 2:
            raise MalformedNodeError(
                f"Tuple literals must have exactly two elements, got {len(value)}", meta)
        _check_member(value[0], meta)
        _check_member(value[1], meta)
        return
    raise MalformedNodeError(f"Not a tree value: {value!r}", meta)


def node_type(value: Any) -> NodeType:
    """Classify a tree value, raising MalformedNodeError for anything else."""
    if isinstance(value, ASTNode):
        return value.node_type
    if isinstance(value, Atom):
        return NodeType.ATOM
    if _is_number(value):
        return NodeType.NUMBER
    if isinstance(value, str):
        return NodeType.STRING
    if isinstance(value, list):
        return NodeType.LIST
    if isinstance(value, tuple) and len(value) == 2:
        return NodeType.PAIR
    if isinstance(value, PLACEHOLDERS):
        raise MalformedNodeError("unquote used outside of a quote", value.meta)
    raise MalformedNodeError(f"Not a tree value: {value!r}")


def is_node(value: Any) -> bool:
    """True if value is a valid tree value (checked deeply)."""
    try:
        validate_node(value)
    except MalformedNodeError:
        return False
    return True


def is_literal(value: Any) -> bool:
    try:
        return node_type(value) not in (NodeType.CALL, NodeType.VARIABLE)
    except MalformedNodeError:
        return False


def validate_node(value: Any) -> Any:
    """Deep shape check. Returns value unchanged or raises MalformedNodeError."""
    kind = node_type(value)
    if kind == NodeType.CALL:
        if not isinstance(value.head, str):
            validate_node(value.head)
        for arg in value.args:
            validate_node(arg)
    elif kind in (NodeType.LIST, NodeType.PAIR):
        for item in value:
            validate_node(item)
    return value


# Constructors

def make_call(head: Any, args: Sequence[Any] = (),
              meta: Optional[Mapping[str, Any]] = None) -> CallNode:
    return CallNode(head, meta, args)


def make_var(name: str, context: Any = NO_CONTEXT,
             meta: Optional[Mapping[str, Any]] = None) -> VarNode:
    return VarNode(name, meta, as_context(context))


def make_atom(name: str, meta: Optional[Mapping[str, Any]] = None) -> Atom:
    return Atom(name, meta)


def make_number(value: Any, meta: Optional[Mapping[str, Any]] = None) -> Any:
    if not _is_number(value):
        raise MalformedNodeError(f"Not a number: {value!r}", meta)
    return value


def make_string(value: Any, meta: Optional[Mapping[str, Any]] = None) -> str:
    if not isinstance(value, str):
        raise MalformedNodeError(f"Not a string: {value!r}", meta)
    return value


def make_list(items: Sequence[Any], meta: Optional[Mapping[str, Any]] = None) -> List[Any]:
    items = list(items)
    for item in items:
        _check_member(item, meta)
    return items


def make_pair(left: Any, right: Any, meta: Optional[Mapping[str, Any]] = None) -> tuple:
    pair = (left, right)
    _check_member(pair, meta)
    return pair


def make_dotted(module: str, function: str,
                meta: Optional[Mapping[str, Any]] = None) -> CallNode:
    """Head of a remote call: <Mod.fun ...> has head <. Mod fun>."""
    return CallNode(".", meta, [Atom(module, meta), Atom(function, meta)])


def dotted_parts(head: Any) -> Optional[tuple]:
    """Return (module, function) for a dotted call head, else None."""
    if (isinstance(head, CallNode) and head.head == "." and len(head.args) == 2
            and isinstance(head.args[0], Atom) and isinstance(head.args[1], Atom)):
        return head.args[0].name, head.args[1].name
    return None


def nodes_equal(a: Any, b: Any) -> bool:
    """Structural equality.

    Meta annotations are ignored; variable contexts are compared.
    """
    if isinstance(a, CallNode):
        if not isinstance(b, CallNode) or len(a.args) != len(b.args):
            return False
        if isinstance(a.head, str) or isinstance(b.head, str):
            if a.head != b.head:
                return False
        elif not nodes_equal(a.head, b.head):
            return False
        return all(nodes_equal(x, y) for x, y in zip(a.args, b.args))
    if isinstance(a, VarNode):
        return isinstance(b, VarNode) and a.name == b.name and a.context == b.context
    if isinstance(a, (list, tuple)):
        if type(a) is not type(b) or len(a) != len(b):
            return False
        return all(nodes_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, bool) or isinstance(b, bool):
        return a is b
    if _is_number(a):
        return _is_number(b) and a == b
    if isinstance(a, PLACEHOLDERS):
        return a == b
    return type(a) is type(b) and a == b


def location(meta: Optional[Mapping[str, Any]]) -> str:
    """Format 'line:column' from node meta (empty if unknown)."""
    if not meta or not meta.get('line'):
        return ""
    if meta.get('column'):
        return f"{meta['line']}:{meta['column']}"
    return str(meta['line'])


def _format_string(value: str) -> str:
    escaped = value.replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'


def format_node(value: Any, show_context: bool = False) -> str:
    """Render a tree back into surface syntax.

    With show_context, variables from a quote print as .name#Context.
    """
    if isinstance(value, CallNode):
        parts = dotted_parts(value.head)
        if parts:
            head = f"{parts[0]}.{parts[1]}"
        elif isinstance(value.head, str):
            head = value.head
        else:
            head = format_node(value.head, show_context)
        args = [format_node(arg, show_context) for arg in value.args]
        return "<" + " ".join([head] + args) + ">"
    if isinstance(value, VarNode):
        if show_context and value.context != NO_CONTEXT:
            return f".{value.name}#{value.context.name}"
        return f".{value.name}"
    if isinstance(value, Atom):
        return value.name
    if isinstance(value, str):
        return _format_string(value)
    if isinstance(value, list):
        return "(" + " ".join(format_node(item, show_context) for item in value) + ")"
    if isinstance(value, tuple):
        return "[" + " ".join(format_node(item, show_context) for item in value) + "]"
    if isinstance(value, Unquote):
        return "~" + format_node(value.value, show_context)
    if isinstance(value, UnquoteSplice):
        return "~!" + format_node(value.values, show_context)
    return repr(value)
