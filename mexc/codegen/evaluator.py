"""
Reference lowering for expanded Mex trees.

Evaluates fully expanded trees directly:
- variables are bound and read by (name, context), so identically named
  variables from different quotes never meet
- <def ...> and <defp ...> define functions while a module body is loaded
- calls resolve to a function of the current module, then of its imports,
  then to a kernel builtin; <Mod.fun ...> calls another module's public
  function. Anything else raises UnresolvedCallError when it is invoked.

The same evaluator runs macro bodies written in source at expansion time.
"""

import logging
import operator
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..parser.ast_nodes import *
from ..parser.hygiene import DeclarationTable, binding_key, context_of, resolve_var_bang
from ..parser.macro_registry import SPECIAL_FORMS
from ..parser.quote import quote
from ..errors import CompileError, EvaluationError, MacroError, UnresolvedCallError

logger = logging.getLogger(__name__)


KERNEL_MODULE = "Kernel"


@dataclass
class Function:
    """A function defined with def or defp."""
    module: str
    name: str
    params: Tuple[VarNode, ...]
    body: List[Any]
    public: bool = True
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def arity(self) -> int:
        return len(self.params)

    def __repr__(self):
        kind = "def" if self.public else "defp"
        return f"Function({kind} {self.module}.{self.name}/{self.arity})"


@dataclass
class Module:
    """Functions of one loaded scope."""
    name: str
    declarations: Optional[DeclarationTable] = None
    functions: Dict[Tuple[str, int], Function] = field(default_factory=dict)

    def function(self, name: str, arity: int) -> Optional[Function]:
        return self.functions.get((name, arity))


class Frame:
    """Evaluation state: the current module and its variable bindings."""

    def __init__(self, module: Module, env: Optional[Dict[Tuple[str, Context], Any]] = None,
                 function: Optional[Function] = None):
        self.module = module
        self.env = env if env is not None else {}
        self.function = function

    def bind(self, var: VarNode, value: Any):
        self.env[binding_key(var)] = value

    def lookup(self, var: VarNode) -> Any:
        key = binding_key(var)
        if key not in self.env:
            raise EvaluationError(f"undefined variable {format_node(var, show_context=True)}",
                                  var.meta)
        return self.env[key]


def is_truthy(value: Any) -> bool:
    return value != FALSE and value != NIL


def as_bool(value: bool) -> Atom:
    return TRUE if value else FALSE


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _number(value: Any, meta: Dict[str, Any]) -> Any:
    if _is_number(value):
        return value
    raise EvaluationError(f"expected a number, got {format_node(value)}", meta)


def _divide(a, b):
    if b == 0:
        raise ZeroDivisionError("division by zero")
    return a / b


def _arithmetic(fn: Callable[[Any, Any], Any]) -> Callable[..., Any]:
    def apply(meta, a, b):
        return fn(_number(a, meta), _number(b, meta))
    return apply


def _compare(fn: Callable[[Any, Any], bool]) -> Callable[..., Any]:
    def apply(meta, a, b):
        return as_bool(fn(_number(a, meta), _number(b, meta)))
    return apply


def _sequence(value: Any, meta: Dict[str, Any]) -> Sequence[Any]:
    if isinstance(value, (list, tuple)):
        return value
    raise EvaluationError(f"expected a list, got {format_node(value)}", meta)


def _hd(meta, value):
    items = _sequence(value, meta)
    if not items:
        raise EvaluationError("hd of an empty list", meta)
    return items[0]


def _tl(meta, value):
    items = _sequence(value, meta)
    if not items:
        raise EvaluationError("tl of an empty list", meta)
    return list(items[1:])


def _elem(meta, value, index):
    items = _sequence(value, meta)
    index = _number(index, meta)
    if not isinstance(index, int) or not 0 <= index < len(items):
        raise EvaluationError(f"index {index} out of range", meta)
    return items[index]


def _to_string(meta, value):
    if isinstance(value, str):
        return value
    return format_node(value)


def _concat(meta, a, b):
    if isinstance(a, str) and isinstance(b, str):
        return a + b
    return list(_sequence(a, meta)) + list(_sequence(b, meta))


def _raise(meta, message):
    raise EvaluationError(_to_string(meta, message), meta)


# Builtins take the call's meta followed by the evaluated arguments.
# Arity None means any number of arguments.
KERNEL: Dict[str, Tuple[Callable[..., Any], Optional[int]]] = {
    '+': (_arithmetic(operator.add), 2),
    '-': (_arithmetic(operator.sub), 2),
    '*': (_arithmetic(operator.mul), 2),
    '/': (_arithmetic(_divide), 2),
    'less?': (_compare(operator.lt), 2),
    'greater?': (_compare(operator.gt), 2),
    '==': (lambda meta, a, b: as_bool(nodes_equal(a, b)), 2),
    '!=': (lambda meta, a, b: as_bool(not nodes_equal(a, b)), 2),
    'list': (lambda meta, *items: list(items), None),
    'length': (lambda meta, value: len(_sequence(value, meta)), 1),
    'hd': (_hd, 1),
    'tl': (_tl, 1),
    'elem': (_elem, 2),
    'concat': (_concat, 2),
    'to_string': (_to_string, 1),
    'is_atom': (lambda meta, value: as_bool(isinstance(value, Atom)), 1),
    'is_number': (lambda meta, value: as_bool(_is_number(value)), 1),
    'is_list': (lambda meta, value: as_bool(isinstance(value, list)), 1),
    'is_call': (lambda meta, value: as_bool(isinstance(value, CallNode)), 1),
    'raise': (_raise, 1),
}


def kernel_function(name: str, arity: int) -> Optional[Callable[..., Any]]:
    entry = KERNEL.get(name)
    if entry is None:
        return None
    fn, expected = entry
    if expected is not None and expected != arity:
        return None
    return fn


class Evaluator:
    """Loads modules and evaluates expanded trees."""

    def __init__(self):
        self._lock = threading.Lock()
        self.modules: Dict[str, Module] = {}

    # Modules

    def define_module(self, name: str, declarations: Optional[DeclarationTable] = None) -> Module:
        with self._lock:
            if name in self.modules:
                raise CompileError(f"module {name} is already defined")
            module = self.modules[name] = Module(name, declarations)
        return module

    def get_module(self, name: str) -> Optional[Module]:
        with self._lock:
            return self.modules.get(name)

    def unload_module(self, module: Module):
        """Forget a loaded module (only if it is still the one registered under its name)."""
        with self._lock:
            if self.modules.get(module.name) is module:
                del self.modules[module.name]
        logger.debug("Unloaded module %s", module.name)

    def load_module(self, name: str, forms: List[Any],
                    declarations: Optional[DeclarationTable] = None) -> Module:
        """Evaluate a module body, defining its functions."""
        module = self.define_module(name, declarations)
        frame = Frame(module)
        try:
            for form in forms:
                self.evaluate(form, frame)
        except Exception:
            self.unload_module(module)
            raise
        logger.debug("Loaded module %s with %d functions", name, len(module.functions))
        return module

    def run_script(self, module: Module, forms: List[Any]) -> Any:
        """Evaluate top-level forms in module, returning the last value."""
        frame = Frame(module)
        result = NIL
        for form in forms:
            result = self.evaluate(form, frame)
        return result

    def call(self, module_name: str, name: str, args: Sequence[Any] = (),
             meta: Optional[Dict[str, Any]] = None) -> Any:
        """Call a public function from outside any module."""
        return self._call_remote(None, module_name, name, list(args), meta or {})

    def macro_builder(self, scope: str, name: str, params: Sequence[VarNode], body: List[Any],
                      declarations: Optional[DeclarationTable] = None) -> Callable[..., Any]:
        """Body builder running a source-level macro body at expansion time."""
        params = tuple(params)

        def build(*args):
            module = self.get_module(scope) or Module(scope, declarations)
            frame = Frame(module)
            for param, arg in zip(params, args):
                frame.bind(param, arg)
            return self._eval_body(body, frame)

        build.__name__ = f"{scope}.{name}/{len(params)}"
        return build

    # Evaluation

    def evaluate(self, node: Any, frame: Frame) -> Any:
        if isinstance(node, CallNode):
            return self._eval_call(node, frame)
        if isinstance(node, VarNode):
            return frame.lookup(node)
        if isinstance(node, list):
            return [self.evaluate(item, frame) for item in node]
        if isinstance(node, tuple):
            return (self.evaluate(node[0], frame), self.evaluate(node[1], frame))
        node_type(node)
        return node

    def _eval_body(self, body: List[Any], frame: Frame) -> Any:
        result = NIL
        for form in body:
            result = self.evaluate(form, frame)
        return result

    def _eval_call(self, node: CallNode, frame: Frame) -> Any:
        parts = dotted_parts(node.head)
        if parts is not None:
            args = [self.evaluate(arg, frame) for arg in node.args]
            return self._call_remote(frame.module, parts[0], parts[1], args, node.meta)

        name = node.name
        if name is None:
            raise EvaluationError(f"cannot call {format_node(node.head)}", node.meta)

        method = FORM_METHODS.get(name)
        if method is not None:
            return getattr(self, "_form_" + method)(node, frame)
        if name in SPECIAL_FORMS:
            raise EvaluationError(f"special form {name} is not supported by the evaluator",
                                  node.meta)

        args = [self.evaluate(arg, frame) for arg in node.args]
        return self._call_local(frame.module, name, args, node)

    def _call_local(self, module: Module, name: str, args: List[Any], node: CallNode) -> Any:
        owner, function = module, module.function(name, len(args))
        if function is None and module.declarations is not None:
            for imported in module.declarations.imports(context_of(node)):
                other = self.get_module(imported)
                if other is None:
                    continue
                candidate = other.function(name, len(args))
                if candidate is not None and candidate.public:
                    owner, function = other, candidate
                    break
        if function is not None:
            return self._apply(owner, function, args)

        builtin = kernel_function(name, len(args))
        if builtin is not None:
            return self._apply_builtin(builtin, args, node.meta)

        raise UnresolvedCallError(
            f"undefined function {name}/{len(args)} in {module.name}", node.meta)

    def _call_remote(self, caller: Optional[Module], module_name: str, name: str,
                     args: List[Any], meta: Dict[str, Any]) -> Any:
        if module_name == KERNEL_MODULE:
            builtin = kernel_function(name, len(args))
            if builtin is not None:
                return self._apply_builtin(builtin, args, meta)

        module = self.get_module(module_name)
        if module is None:
            raise UnresolvedCallError(
                f"undefined function {module_name}.{name}/{len(args)} "
                f"(module {module_name} is not available)", meta)
        function = module.function(name, len(args))
        if function is None or (not function.public and caller is not module):
            raise UnresolvedCallError(
                f"undefined function {module_name}.{name}/{len(args)}", meta)
        return self._apply(module, function, args)

    def _apply(self, module: Module, function: Function, args: List[Any]) -> Any:
        frame = Frame(module, function=function)
        for param, arg in zip(function.params, args):
            frame.bind(param, arg)
        return self._eval_body(function.body, frame)

    @staticmethod
    def _apply_builtin(builtin: Callable[..., Any], args: List[Any], meta: Dict[str, Any]) -> Any:
        try:
            return builtin(meta, *args)
        except MacroError:
            raise
        except (TypeError, ValueError, ZeroDivisionError) as e:
            raise EvaluationError(str(e), meta) from e

    # Forms

    def _form_block(self, node: CallNode, frame: Frame) -> Any:
        return self._eval_body(node.args, frame)

    def _form_match(self, node: CallNode, frame: Frame) -> Any:
        if node.arity != 2 or not isinstance(node.args[0], VarNode):
            raise EvaluationError("= expects a variable and a value", node.meta)
        value = self.evaluate(node.args[1], frame)
        frame.bind(node.args[0], value)
        return value

    def _form_if(self, node: CallNode, frame: Frame) -> Any:
        if node.arity not in (2, 3):
            raise EvaluationError(f"if expects 2 or 3 arguments, got {node.arity}", node.meta)
        if is_truthy(self.evaluate(node.args[0], frame)):
            return self.evaluate(node.args[1], frame)
        if node.arity == 3:
            return self.evaluate(node.args[2], frame)
        return NIL

    def _form_not(self, node: CallNode, frame: Frame) -> Any:
        if node.arity != 1:
            raise EvaluationError(f"not expects 1 argument, got {node.arity}", node.meta)
        return as_bool(not is_truthy(self.evaluate(node.args[0], frame)))

    def _form_and(self, node: CallNode, frame: Frame) -> Any:
        result = TRUE
        for arg in node.args:
            result = self.evaluate(arg, frame)
            if not is_truthy(result):
                return result
        return result

    def _form_or(self, node: CallNode, frame: Frame) -> Any:
        result = FALSE
        for arg in node.args:
            result = self.evaluate(arg, frame)
            if is_truthy(result):
                return result
        return result

    def _form_quote(self, node: CallNode, frame: Frame) -> Any:
        if node.arity != 1:
            raise EvaluationError(f"quote expects 1 argument, got {node.arity}", node.meta)
        fragment = self._fragment(node.args[0], frame)
        return quote(Context(frame.module.name), fragment)

    def _fragment(self, node: Any, frame: Frame) -> Any:
        """Surface fragment of a quote with its unquotes evaluated."""
        if isinstance(node, CallNode):
            name = node.name
            if name in ('unquote', 'unquote_splicing'):
                if node.arity != 1:
                    raise EvaluationError(f"{name} expects 1 argument, got {node.arity}",
                                          node.meta)
                value = self.evaluate(node.args[0], frame)
                if name == 'unquote':
                    return Unquote(value, node.meta)
                return UnquoteSplice(value, node.meta)
            if name == 'var!':
                return resolve_var_bang(node)
            if name == 'quote':
                return node
            head = node.head
            if not isinstance(head, str):
                head = self._fragment(head, frame)
            return CallNode(head, node.meta, [self._fragment(arg, frame) for arg in node.args])
        if isinstance(node, list):
            return [self._fragment(item, frame) for item in node]
        if isinstance(node, tuple):
            return (self._fragment(node[0], frame), self._fragment(node[1], frame))
        return node

    def _form_var_bang(self, node: CallNode, frame: Frame) -> Any:
        return frame.lookup(resolve_var_bang(node))

    def _form_module(self, node: CallNode, frame: Frame) -> Any:
        return Atom(frame.module.name)

    def _form_def(self, node: CallNode, frame: Frame) -> Any:
        if frame.function is not None:
            raise EvaluationError(f"{node.name} cannot be used inside a function body",
                                  node.meta)
        function = parse_function(node, frame.module.name)
        module = frame.module
        key = (function.name, function.arity)
        if key in module.functions:
            raise CompileError(
                f"function {function.name}/{function.arity} is already defined in {module.name}",
                node.meta)
        module.functions[key] = function
        logger.debug("Defined %r", function)
        return Atom(function.name)

    def _form_nested_macro(self, node: CallNode, frame: Frame) -> Any:
        raise CompileError(f"{node.name} must appear at the top level of a module", node.meta)

    def _form_declaration(self, node: CallNode, frame: Frame) -> Any:
        # Recorded while expanding; nothing left to do at run time
        return node.args[0] if node.args else NIL


# Form name -> suffix of the Evaluator._form_* method handling it
FORM_METHODS = {
    '__block__': 'block',
    '=': 'match',
    'if': 'if',
    'not': 'not',
    'and': 'and',
    'or': 'or',
    'quote': 'quote',
    'var!': 'var_bang',
    '__MODULE__': 'module',
    'def': 'def',
    'defp': 'def',
    'defmacro': 'nested_macro',
    'defmacrop': 'nested_macro',
    'alias': 'declaration',
    'import': 'declaration',
    'require': 'declaration',
}


def definition_name(node: CallNode) -> str:
    """Name given to a def/defmacro form."""
    if not node.args:
        raise CompileError(f"{node.name} expects a name", node.meta)
    target = node.args[0]
    if isinstance(target, Atom):
        return target.name
    if isinstance(target, str) and target:
        return target
    raise CompileError(f"{node.name} expects a name, got {format_node(target)}", node.meta)


def definition_params(node: CallNode) -> Tuple[VarNode, ...]:
    """Parameter list of a def/defmacro form."""
    if len(node.args) < 2 or not isinstance(node.args[1], list):
        raise CompileError(f"{node.name} expects a parameter list", node.meta)
    params = node.args[1]
    for param in params:
        if not isinstance(param, VarNode):
            raise CompileError(f"{node.name} parameters must be variables, "
                               f"got {format_node(param)}", node.meta)
    names = [binding_key(param) for param in params]
    if len(set(names)) != len(names):
        raise CompileError(f"{node.name} has duplicate parameter names", node.meta)
    return tuple(params)


def parse_function(node: CallNode, module: str) -> Function:
    name = definition_name(node)
    params = definition_params(node)
    return Function(module, name, params, list(node.args[2:]),
                    public=(node.name == 'def'), meta=dict(node.meta))
