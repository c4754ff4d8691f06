# kern.py

import inspect
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional
from dataclasses import dataclass, field

from koine import Parser
from kern.kern_transformer import KernTransformer
from kern.kern_interpreter import Evaluator, create_root_environment
from kern.kern_printer import Printer
from kern.kern_binder import bind, check_formals
from kern.kern_datatypes import (
    Pair, Symbol, Nil, Ignore, Inert, Environment, Operative, Applicative,
    TailCall, KernError, TypeMismatch, DivisionByZero, UserError,
    ReadError, values_equal, values_identical, is_combiner
)


def kern_primitive(name: str, operative: bool = False):
    """A decorator marking a method as a Kern primitive named `name`.

    Operative primitives receive their operands unevaluated; the rest are
    wrapped into applicatives when the root environment is built.
    """
    def decorator(func):
        func._kern_name = name
        func._kern_operative = operative
        return func
    return decorator


def collect_primitives(obj: Any) -> Dict[str, Any]:
    """Gathers the @kern_primitive methods of obj, keyed by Kern name."""
    found = {}
    for _, member in inspect.getmembers(obj, callable):
        name = getattr(member, "_kern_name", None)
        if name is not None:
            found[name] = member
    return found


def _require_integer(value, operator: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeMismatch(f"integer operand for {operator}", value)
    return value


def _christen(value: Any, name: str):
    """Names an anonymous compound combiner after the first symbol bound to it."""
    target = value.underlying if isinstance(value, Applicative) else value
    while isinstance(target, Applicative):
        target = target.underlying
    if isinstance(target, Operative) and target.name is None:
        target.name = name


# ===================================================================
# 1. Primitive Library
# ===================================================================

class StdLib:
    """The bootstrap primitives the prelude is written against."""

    def __init__(self, evaluator: Evaluator):
        self.evaluator = evaluator

    # --- Core forms ---

    @kern_primitive("$vau", operative=True)
    def _vau(self, formals, eformal, *body, env: Environment):
        names = check_formals(formals)
        if isinstance(eformal, Symbol):
            if eformal in names:
                raise TypeMismatch("environment parameter distinct from the operand formals", eformal)
        elif eformal is not Ignore and eformal is not Nil:
            raise TypeMismatch("symbol, #ignore or () as environment parameter", eformal)
        return Operative(env, formals, eformal, list(body))

    @kern_primitive("$define!", operative=True)
    def _define(self, definiend, expression, *, env: Environment):
        check_formals(definiend)
        value = self.evaluator._eval(expression, env)
        bind(definiend, value, env)
        if isinstance(definiend, Symbol):
            _christen(value, definiend.name)
        return Inert

    @kern_primitive("$sequence", operative=True)
    def _sequence(self, *body, env: Environment):
        if not body:
            return Inert
        for form in body[:-1]:
            self.evaluator._eval(form, env)
        return TailCall(body[-1], env)

    @kern_primitive("$set!", operative=True)
    def _set(self, name, expression, *, env: Environment):
        if not isinstance(name, Symbol):
            raise TypeMismatch("symbol", name)
        value = self.evaluator._eval(expression, env)
        env.assign(name, value)
        return Inert

    # --- Combiners and environments ---

    @kern_primitive("wrap")
    def _wrap(self, combiner):
        if not is_combiner(combiner):
            raise TypeMismatch("combiner", combiner)
        return Applicative(combiner)

    @kern_primitive("unwrap")
    def _unwrap(self, applicative):
        if not isinstance(applicative, Applicative):
            raise TypeMismatch("applicative", applicative)
        return applicative.underlying

    @kern_primitive("eval")
    def _eval_in(self, expression, environment):
        if not isinstance(environment, Environment):
            raise TypeMismatch("environment", environment)
        return TailCall(expression, environment)

    @kern_primitive("make-environment")
    def _make_environment(self, parent=None):
        if parent is not None and not isinstance(parent, Environment):
            raise TypeMismatch("environment", parent)
        return Environment(parent=parent)

    # --- Pairs ---

    @kern_primitive("cons")
    def _cons(self, head, tail): return Pair(head, tail)

    @kern_primitive("head")
    def _head(self, pair):
        if not isinstance(pair, Pair):
            raise TypeMismatch("pair", pair)
        return pair.head

    @kern_primitive("tail")
    def _tail(self, pair):
        if not isinstance(pair, Pair):
            raise TypeMismatch("pair", pair)
        return pair.tail

    @kern_primitive("set-head!")
    def _set_head(self, pair, value):
        if not isinstance(pair, Pair):
            raise TypeMismatch("pair", pair)
        pair.head = value
        return Inert

    @kern_primitive("set-tail!")
    def _set_tail(self, pair, value):
        if not isinstance(pair, Pair):
            raise TypeMismatch("pair", pair)
        pair.tail = value
        return Inert

    # --- Integers ---

    @kern_primitive("+")
    def _add(self, *operands):
        return sum(_require_integer(x, "+") for x in operands)

    @kern_primitive("*")
    def _mul(self, *operands):
        result = 1
        for x in operands:
            result *= _require_integer(x, "*")
        return result

    @kern_primitive("-")
    def _sub(self, first, *rest):
        result = _require_integer(first, "-")
        if not rest:
            return -result
        for x in rest:
            result -= _require_integer(x, "-")
        return result

    @kern_primitive("quotient")
    def _quotient(self, a, b):
        a = _require_integer(a, "quotient"); b = _require_integer(b, "quotient")
        if b == 0:
            raise DivisionByZero("quotient", a)
        q = abs(a) // abs(b)
        return q if (a < 0) == (b < 0) else -q

    @kern_primitive("remainder")
    def _remainder(self, a, b):
        a = _require_integer(a, "remainder"); b = _require_integer(b, "remainder")
        if b == 0:
            raise DivisionByZero("remainder", a)
        return a - b * self._quotient(a, b)

    @kern_primitive("modulo")
    def _modulo(self, a, b):
        a = _require_integer(a, "modulo"); b = _require_integer(b, "modulo")
        if b == 0:
            raise DivisionByZero("modulo", a)
        return a % b

    def _chain(self, operator, compare, operands):
        values = [_require_integer(x, operator) for x in operands]
        return all(compare(x, y) for x, y in zip(values, values[1:]))

    @kern_primitive("<")
    def _lt(self, a, b, *rest): return self._chain("<", lambda x, y: x < y, (a, b) + rest)

    @kern_primitive(">")
    def _gt(self, a, b, *rest): return self._chain(">", lambda x, y: x > y, (a, b) + rest)

    @kern_primitive("<=")
    def _lte(self, a, b, *rest): return self._chain("<=", lambda x, y: x <= y, (a, b) + rest)

    @kern_primitive(">=")
    def _gte(self, a, b, *rest): return self._chain(">=", lambda x, y: x >= y, (a, b) + rest)

    # --- Equivalence ---

    @kern_primitive("=")
    def _eq(self, a, b, *rest):
        values = (a, b) + rest
        return all(values_equal(x, y) for x, y in zip(values, values[1:]))

    @kern_primitive("eq?")
    def _eq_q(self, a, b): return values_identical(a, b)

    # --- Type predicates ---

    @kern_primitive("null?")
    def _null_q(self, x): return x is Nil

    @kern_primitive("pair?")
    def _pair_q(self, x): return isinstance(x, Pair)

    @kern_primitive("symbol?")
    def _symbol_q(self, x): return isinstance(x, Symbol)

    @kern_primitive("integer?")
    def _integer_q(self, x): return isinstance(x, int) and not isinstance(x, bool)

    @kern_primitive("string?")
    def _string_q(self, x): return isinstance(x, str)

    @kern_primitive("boolean?")
    def _boolean_q(self, x): return isinstance(x, bool)

    @kern_primitive("environment?")
    def _environment_q(self, x): return isinstance(x, Environment)

    @kern_primitive("operative?")
    def _operative_q(self, x): return is_combiner(x) and not isinstance(x, (Applicative, bool))

    @kern_primitive("applicative?")
    def _applicative_q(self, x): return isinstance(x, (Applicative, bool))

    @kern_primitive("combiner?")
    def _combiner_q(self, x): return is_combiner(x)

    @kern_primitive("ignore?")
    def _ignore_q(self, x): return x is Ignore

    @kern_primitive("inert?")
    def _inert_q(self, x): return x is Inert

    # --- Effects ---

    @kern_primitive("display")
    def _display(self, *values):
        message = " ".join(Printer(display=True).pformat(v) for v in values)
        self.evaluator.side_effects.append({'topics': ['stdout'], 'message': message})
        return Inert

    @kern_primitive("error")
    def _error(self, *irritants):
        if irritants and isinstance(irritants[0], str):
            raise UserError(irritants[0], list(irritants[1:]))
        raise UserError("error", list(irritants))


# ===================================================================
# 2. Script Execution
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error: Optional[KernError] = None
    error_message: Optional[str] = None
    error_loc: Optional[Dict[str, Any]] = None
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_loc and 'line' in self.error_loc:
            line = self.error_loc.get('line')
            col = self.error_loc.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class ScriptRunner:
    """Reads and evaluates Kern source against one root environment."""

    _parser: Optional[Parser] = None
    _transformer: Optional[KernTransformer] = None
    _core_forms: Optional[List[Any]] = None

    # Frames shown in a stack trace; deeper stacks keep the innermost ones.
    trace_depth = 12

    def __init__(self, primitives: Optional[Mapping[Any, Any]] = None, load_core: bool = True,
                 step_limit: Optional[int] = None):
        if ScriptRunner._parser is None:
            grammar_path = Path(__file__).parent / "kern_grammar.yaml"
            ScriptRunner._parser = Parser.from_file(str(grammar_path))

        if ScriptRunner._transformer is None:
            ScriptRunner._transformer = KernTransformer()

        self.parser = ScriptRunner._parser
        self.transformer = ScriptRunner._transformer

        self.evaluator = Evaluator(step_limit=step_limit)
        self.stdlib = StdLib(self.evaluator)
        table = collect_primitives(self.stdlib)
        # Host primitives override the built-in set.
        table.update(primitives or {})
        self.root_env = create_root_environment(table)

        if load_core:
            self._load_core()

    def _load_core(self):
        """Evaluates root.kern into the root environment."""
        # Forms are read once and cached on the class
        if ScriptRunner._core_forms is None:
            core_path = Path(__file__).parent / "root.kern"
            ScriptRunner._core_forms = self.read(core_path.read_text(encoding="utf-8"), source='core')
        for form in ScriptRunner._core_forms:
            self.evaluator.reset()
            self.evaluator.eval(form, self.root_env)
        self.evaluator.reset()

    def read(self, source_code: str, source: str = 'script') -> List[Any]:
        """Parses source text into a list of top-level forms."""
        try:
            parse_out = self.parser.parse(source_code)
            if parse_out.get('status') != 'success':
                raise ReadError(parse_out.get('message') or "parse failed")
            return self.transformer.transform(parse_out['ast'], source=source)
        except RecursionError as e:
            raise ReadError("source nested too deeply to read") from e

    def eval(self, expr: Any) -> Any:
        """Evaluates one value tree in the root environment."""
        self.evaluator.reset()
        return self.evaluator.eval(expr, self.root_env)

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            ln = str(i).rjust(width)
            out.append(f"{prefix} {ln} | {lines[i - 1]}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)

    def _format_stacktrace(self) -> str:
        stack = self.evaluator.call_stack
        if not stack:
            return ""
        printer = Printer(max_width=40)
        frames = [printer.pformat(frame) for frame in stack[-self.trace_depth:]]
        if len(stack) > self.trace_depth:
            frames.insert(0, f"... {len(stack) - self.trace_depth} more")
        return "Kern stacktrace: " + " ".join(frames)

    def _script_loc(self) -> Optional[Dict[str, Any]]:
        """Location of the innermost frame that came from the user's script."""
        for frame in reversed(self.evaluator.call_stack):
            loc = getattr(frame, 'loc', None)
            if loc and loc.get('source') == 'script':
                return loc
        return None

    def _format_runtime_error(self, e: KernError, source: str) -> tuple[str, Optional[dict]]:
        msg = f"{e.kind}: {e.describe()}"
        loc = self._script_loc()
        if loc is not None:
            line, col = loc['line'], loc['col']
            msg = f"{msg}\n(line {line}, col {col})\n{self._source_context(source, line, col)}"
        st = self._format_stacktrace()
        if st:
            msg += "\n" + st
        return msg, loc

    def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script."""
        self.evaluator.side_effects = []
        self.evaluator.reset()

        # 1. Read
        try:
            forms = self.read(source_code)
        except ReadError as e:
            msg = f"ReadError: {e.describe()}"
            self.evaluator.side_effects.append({'topics': ['stderr'], 'message': msg})
            return ExecutionResult(status='error', error=e, error_message=msg,
                                   side_effects=self.evaluator.side_effects)

        # 2. Evaluate, threading the root environment through every form
        result = Inert
        try:
            for form in forms:
                self.evaluator.reset()
                result = self.evaluator.eval(form, self.root_env)
        except KernError as e:
            err_msg, err_loc = self._format_runtime_error(e, source_code)
            self.evaluator.side_effects.append({'topics': ['stderr'], 'message': err_msg})
            return ExecutionResult(status='error', error=e, error_message=err_msg, error_loc=err_loc,
                                   side_effects=self.evaluator.side_effects)

        return ExecutionResult(status='success', value=result, side_effects=self.evaluator.side_effects)
