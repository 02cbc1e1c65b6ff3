"""
Main Mex Compiler.

Coordinates reading, macro expansion and lowering. Every definitional scope
(a defmodule body, or the top-level script) goes through two phases:
1. expansion: every macro call in the scope is expanded, dead branches
   included, and macros are registered in declaration order
2. lowering: the expanded forms are handed to the evaluator, which defines
   the scope's functions (and, for the script, runs it)
"""

import logging
import os
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import CompileError, MacroError
from .parser import parse_source
from .parser.ast_nodes import CallNode, NIL, format_node
from .parser.macro_expander import DEFAULT_MAX_DEPTH, MacroExpander, module_name
from .parser.macro_registry import CompilationSession, MacroRegistry, Visibility
from .codegen.evaluator import Evaluator, Module, definition_name, definition_params

logger = logging.getLogger(__name__)


# Scope of top-level forms outside any defmodule
TOP_LEVEL_SCOPE = "__top__"

MACRO_FORMS = {'defmacro': Visibility.PUBLIC, 'defmacrop': Visibility.PRIVATE}


@dataclass
class CompiledUnit:
    """Result of compiling one source text."""
    filename: str
    registry: MacroRegistry
    modules: List[str] = field(default_factory=list)
    # Expanded forms per scope, the script scope included
    expanded: Dict[str, List[Any]] = field(default_factory=dict)
    result: Any = NIL

    @property
    def script(self) -> List[Any]:
        return self.expanded.get(TOP_LEVEL_SCOPE, [])


class _UnitState:
    """Per-unit compilation state."""

    def __init__(self, unit: CompiledUnit, expander: MacroExpander):
        self.unit = unit
        self.registry = unit.registry
        self.expander = expander
        # Modules loaded into the evaluator so far, dropped again if the unit fails
        self.loaded: List[Module] = []


class Compiler:
    """Main Mex compiler class."""

    def __init__(self, max_expansion_depth: int = DEFAULT_MAX_DEPTH, verbose: bool = False,
                 include_paths: Optional[list] = None, jobs: int = 1):
        self.max_expansion_depth = max_expansion_depth
        self.verbose = verbose
        self.include_paths = include_paths or []  # Additional paths to search for sources
        self.jobs = jobs
        self.session = CompilationSession()
        self.evaluator = Evaluator()
        self.warnings: List[str] = []  # Compilation warnings
        self._warnings_lock = threading.Lock()

    def log(self, message: str):
        """Log a progress message if verbose mode is enabled."""
        if self.verbose:
            logger.info(message)

    def warn(self, code: str, message: str):
        """Add a compilation warning with a code."""
        warning = f"{code}: {message}"
        with self._warnings_lock:
            self.warnings.append(warning)
        logger.warning("Warning: %s", warning)

    def get_warnings(self) -> List[str]:
        """Get all warnings generated during compilation."""
        with self._warnings_lock:
            return self.warnings.copy()

    # Entry points

    def compile_string(self, source: str, filename: str = "<input>",
                       run_script: bool = True) -> CompiledUnit:
        """
        Compile Mex source text.

        Modules are expanded and loaded as they are reached; the top-level
        script is expanded and, unless run_script is False, evaluated.
        The unit's registry is published to the session once it succeeds.
        """
        try:
            return self._compile(source, filename, run_script)
        except MacroError as e:
            if e.filename is None:
                e.filename = filename
            raise

    def compile_file(self, input_path: str, run_script: bool = True) -> CompiledUnit:
        """Compile a .mex file, searching include_paths when it is not found as given."""
        path = self.find_source(input_path)
        self.log(f"Reading {path}...")
        source = path.read_text(encoding='utf-8')
        return self.compile_string(source, str(path), run_script)

    def find_source(self, name: str) -> Path:
        path = Path(name)
        if path.exists():
            return path
        for directory in self.include_paths:
            candidate = Path(directory) / name
            if candidate.exists():
                return candidate
        raise FileNotFoundError(f"Source file not found: {name}")

    def compile_units(self, units: Sequence[Tuple[str, str]],
                      jobs: Optional[int] = None) -> List[CompiledUnit]:
        """
        Compile several (filename, source) units.

        With jobs == 1 units are compiled in order, each seeing the macros
        of the units before it. With more jobs the units are compiled in
        parallel and must not depend on each other. jobs <= 0 uses one
        worker per CPU.
        """
        if jobs is None:
            jobs = self.jobs
        if jobs <= 0:
            jobs = os.cpu_count() or 1

        if jobs == 1 or len(units) <= 1:
            return [self.compile_string(source, filename) for filename, source in units]

        self.log(f"Compiling {len(units)} units with {jobs} workers")
        with ThreadPoolExecutor(max_workers=jobs) as pool:
            futures = [pool.submit(self.compile_string, source, filename)
                       for filename, source in units]
            return [future.result() for future in futures]

    def expand_string(self, source: str, filename: str = "<input>") -> List[Any]:
        """Expand source text and return the script's expanded forms without running them."""
        return self.compile_string(source, filename, run_script=False).script

    def run_script(self, unit: CompiledUnit) -> Any:
        """Evaluate a unit's expanded top-level forms and record the last value."""
        module = Module(TOP_LEVEL_SCOPE, unit.registry.declarations_for(TOP_LEVEL_SCOPE))
        unit.result = self._lower_phase(module, unit.script)
        return unit.result

    def run(self, function: str, *args: Any) -> Any:
        """Call a public function given as 'Module.name'."""
        module, sep, name = function.rpartition('.')
        if not sep or not module or not name:
            raise ValueError(f"Expected Module.function, got {function!r}")
        return self.evaluator.call(module, name, args)

    # Phases

    def _compile(self, source: str, filename: str, run_script: bool) -> CompiledUnit:
        self.log(f"Parsing {filename}...")
        forms = parse_source(source, filename)

        registry = self.session.new_registry(filename)
        registry.mark_local(TOP_LEVEL_SCOPE)
        expander = MacroExpander(registry, self.max_expansion_depth, on_warning=self.warn)
        state = _UnitState(CompiledUnit(filename, registry), expander)

        try:
            script = self._expand_phase(TOP_LEVEL_SCOPE, forms, state)
            state.unit.expanded[TOP_LEVEL_SCOPE] = script

            if run_script:
                self.run_script(state.unit)

            self.session.publish(registry)
        except Exception:
            for module in reversed(state.loaded):
                self.evaluator.unload_module(module)
            raise
        self.log(f"Compiled {filename}: {len(state.unit.modules)} modules, "
                 f"{len(registry)} macros, {expander.expansions} expansions")
        return state.unit

    def _expand_phase(self, scope: str, forms: List[Any], state: _UnitState) -> List[Any]:
        """Expand a scope's forms in order, registering its macros and modules."""
        self.log(f"Expanding {scope}")
        expanded = []
        for form in forms:
            for item in self._top_level_forms(state.expander.expand(form, scope)):
                kind = item.name if isinstance(item, CallNode) else None
                if kind == 'defmodule':
                    if scope != TOP_LEVEL_SCOPE:
                        raise CompileError(
                            f"defmodule cannot be nested (inside {scope})", item.meta)
                    self._compile_module(item, state)
                elif kind in MACRO_FORMS:
                    self._define_macro(scope, item, state)
                else:
                    expanded.append(item)
        return expanded

    @staticmethod
    def _top_level_forms(form: Any) -> List[Any]:
        """Splice top-level blocks so definitions inside them are seen in order."""
        if isinstance(form, CallNode) and form.name == '__block__':
            result = []
            for item in form.args:
                result.extend(Compiler._top_level_forms(item))
            return result
        return [form]

    def _lower_phase(self, module: Module, forms: List[Any]) -> Any:
        self.log(f"Lowering {module.name}")
        return self.evaluator.run_script(module, forms)

    def _compile_module(self, node: CallNode, state: _UnitState):
        if not node.args:
            raise CompileError("defmodule expects a module name", node.meta)
        name = module_name(node.args[0], node.meta)
        if (state.registry.owns(name) or self.session.is_finalized(name)
                or self.evaluator.get_module(name) is not None):
            raise CompileError(f"module {name} is already defined", node.meta)

        table = state.registry.declarations(name)
        state.unit.modules.append(name)
        self.log(f"Compiling module {name}")

        forms = self._expand_phase(name, list(node.args[1:]), state)
        state.unit.expanded[name] = forms

        self.log(f"Lowering {name}")
        module = self.evaluator.load_module(name, forms, table)
        state.loaded.append(module)
        self._check_shadowed_functions(module, state.registry)

    def _define_macro(self, scope: str, node: CallNode, state: _UnitState):
        name = definition_name(node)
        params = definition_params(node)
        body = list(node.args[2:])
        builder = self.evaluator.macro_builder(scope, name, params, body,
                                               state.registry.declarations(scope))
        state.registry.define_macro(scope, name, params, builder, MACRO_FORMS[node.name],
                                    node.meta)

    def _check_shadowed_functions(self, module: Module, registry: MacroRegistry):
        # Macros are expanded before any function is resolved, so they always win
        for function in module.functions.values():
            macro = registry.lookup(module.name, function.name, function.arity)
            if macro is not None:
                self.warn("MEX0101", f"function {module.name}.{function.name}/{function.arity} "
                                     f"is shadowed by macro {macro.scope}.{macro.name}/{macro.arity}")


def format_unit(unit: CompiledUnit) -> str:
    """Render every expanded scope of a unit as source text."""
    lines = []
    for scope, forms in unit.expanded.items():
        if scope != TOP_LEVEL_SCOPE:
            lines.append(f"; module {scope}")
        lines.extend(format_node(form) for form in forms)
    return "\n".join(lines)


def main():
    """Command-line entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description='Mex Compiler - expands macros and evaluates Mex source'
    )
    parser.add_argument('input', help='Input .mex source file')
    parser.add_argument('--expand', action='store_true',
                        help='Print the expanded source instead of running the script')
    parser.add_argument('--call', metavar='MODULE.FUNCTION',
                        help='Call a zero-argument public function after compiling')
    parser.add_argument('-i', '--include', action='append', default=[],
                        help='Compile an additional .mex file first (can be used multiple times)')
    parser.add_argument('--max-depth', type=int, default=DEFAULT_MAX_DEPTH,
                        help=f'Maximum macro re-expansion depth (default: {DEFAULT_MAX_DEPTH})')
    parser.add_argument('-j', '--jobs', type=int, default=1,
                        help='Compile included files in parallel (0 = one per CPU)')
    parser.add_argument('--verbose', action='store_true',
                        help='Verbose output')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[mexc] %(levelname)s: %(message)s",
    )

    compiler = Compiler(max_expansion_depth=args.max_depth, verbose=args.verbose,
                        jobs=args.jobs)

    try:
        if args.include:
            units = []
            for name in args.include:
                path = compiler.find_source(name)
                units.append((str(path), path.read_text(encoding='utf-8')))
            compiler.compile_units(units)

        unit = compiler.compile_file(args.input, run_script=not args.expand)
        if args.expand:
            print(format_unit(unit))
        elif unit.result != NIL:
            print(format_node(unit.result))

        if args.call:
            print(format_node(compiler.run(args.call)))
        success = True
    except (MacroError, SyntaxError, FileNotFoundError, ValueError) as e:
        print(f"Compilation error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        success = False

    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
