"""
Defines the core data types for the Kern language runtime.

This module provides the value model the evaluator works with: the special
constants, interned symbols, pairs, environments and combiners, together
with structural equality and the failure taxonomy raised by the core.
"""

import inspect
from abc import ABC
from typing import Any, Dict, List, Optional, Iterable


# =================================================================
# Failures
# =================================================================

def _show(value: Any) -> str:
    from kern.kern_printer import Printer  # local import to avoid a cycle
    return Printer(max_width=80).pformat(value)


class KernError(Exception):
    """Base class for every failure surfaced by the Kern core."""
    kind = "KernError"

    def __str__(self) -> str:
        return self.describe()

    def describe(self) -> str:
        return self.args[0] if self.args else self.kind


class UnboundSymbol(KernError):
    kind = "UnboundSymbol"

    def __init__(self, name: 'Symbol'):
        super().__init__(name)
        self.name = name

    def describe(self) -> str:
        return f"unbound symbol: {self.name.name}"


class ArityMismatch(KernError):
    kind = "ArityMismatch"

    def __init__(self, expected: Any, actual: Any):
        super().__init__(expected, actual)
        self.expected = expected
        self.actual = actual

    def describe(self) -> str:
        expected = self.expected if isinstance(self.expected, str) else _show(self.expected)
        return f"expected {expected}, got {_show(self.actual)}"


class NotCombinable(KernError):
    kind = "NotCombinable"

    def __init__(self, value: Any):
        super().__init__(value)
        self.value = value

    def describe(self) -> str:
        return f"not a combiner: {_show(self.value)}"


class TypeMismatch(KernError):
    kind = "TypeMismatch"

    def __init__(self, expected: str, actual: Any):
        super().__init__(expected, actual)
        self.expected = expected
        self.actual = actual

    def describe(self) -> str:
        return f"expected {self.expected}, got {_show(self.actual)}"


class StackExhausted(KernError):
    kind = "StackExhausted"

    def describe(self) -> str:
        return "host stack exhausted by non-tail nesting"


class StepLimitExceeded(KernError):
    kind = "StepLimitExceeded"

    def __init__(self, limit: int):
        super().__init__(limit)
        self.limit = limit

    def describe(self) -> str:
        return f"evaluation exceeded {self.limit} steps"


class DivisionByZero(KernError):
    kind = "DivisionByZero"

    def __init__(self, operator: str, dividend: int):
        super().__init__(operator, dividend)
        self.operator = operator
        self.dividend = dividend

    def describe(self) -> str:
        return f"({self.operator} {self.dividend} 0)"


class UserError(KernError):
    """Raised by the `error` primitive."""
    kind = "UserError"

    def __init__(self, message: str, irritants: List[Any]):
        super().__init__(message, irritants)
        self.message = message
        self.irritants = irritants

    def describe(self) -> str:
        parts = [self.message] + [_show(i) for i in self.irritants]
        return " ".join(p for p in parts if p)


class ReadError(KernError):
    kind = "ReadError"


# =================================================================
# Special constants
# =================================================================

class _SpecialConstant:
    """Internal helper class for the stateless, self-evaluating constants."""
    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


# The empty list. Also terminates every proper list.
Nil = _SpecialConstant("()")
# The ignore marker: as a formal it consumes an operand without binding.
Ignore = _SpecialConstant("#ignore")
# Result of forms evaluated only for effect.
Inert = _SpecialConstant("#inert")


# =================================================================
# Symbols and Pairs
# =================================================================

class Symbol:
    """An interned symbol. Identical names yield the identical object."""
    _table: Dict[str, 'Symbol'] = {}

    def __new__(cls, name: str):
        sym = cls._table.get(name)
        if sym is None:
            sym = super().__new__(cls)
            sym.name = name
            cls._table[name] = sym
        return sym

    def __repr__(self) -> str:
        return f"Symbol<{self.name!r}>"

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (Symbol, (self.name,))


class Pair:
    """A mutable cons cell. Proper lists are right-nested Pairs ending in Nil."""
    def __init__(self, head: Any, tail: Any):
        self.head = head
        self.tail = tail

    def __iter__(self):
        """Iterates the elements of a proper list; fails on a dotted tail."""
        node = self
        while isinstance(node, Pair):
            yield node.head
            node = node.tail
        if node is not Nil:
            raise TypeMismatch("proper list", self)

    def __repr__(self) -> str:
        return f"Pair({_show(self)})"

    def __eq__(self, other):
        if not isinstance(other, Pair):
            return NotImplemented
        return values_equal(self, other)

    __hash__ = None


def is_list(value: Any) -> bool:
    """True for Nil and for Pair chains terminated by Nil."""
    while isinstance(value, Pair):
        value = value.tail
    return value is Nil


def make_list(items: Iterable[Any], tail: Any = Nil) -> Any:
    """Builds a list from a Python iterable, optionally with a dotted tail."""
    result = tail
    for item in reversed(list(items)):
        result = Pair(item, result)
    return result


# =================================================================
# Environments
# =================================================================

class Environment:
    """A mutable binding frame with an optional parent.

    Lookup walks the parent chain outward and the first frame holding the
    symbol wins. `define` always writes the frame itself; `assign` rewrites
    the binding in whichever frame owns it. Frames are shared by reference,
    so every closure over a frame observes later mutations.
    """
    def __init__(self, parent: Optional['Environment'] = None):
        self.bindings: Dict[Symbol, Any] = {}
        self.parent = parent

    def find_owner(self, symbol: Symbol) -> Optional['Environment']:
        """Finds the Environment in the parent chain that binds symbol."""
        env = self
        while env is not None:
            if symbol in env.bindings:
                return env
            env = env.parent
        return None

    def lookup(self, symbol: Symbol) -> Any:
        env = self
        while env is not None:
            bindings = env.bindings
            if symbol in bindings:
                return bindings[symbol]
            env = env.parent
        raise UnboundSymbol(symbol)

    def define(self, symbol: Symbol, value: Any):
        if not isinstance(symbol, Symbol):
            raise TypeMismatch("symbol", symbol)
        self.bindings[symbol] = value

    def assign(self, symbol: Symbol, value: Any):
        owner = self.find_owner(symbol)
        if owner is None:
            raise UnboundSymbol(symbol)
        owner.bindings[symbol] = value

    def _normalize_key(self, key):
        """Allow plain strings as keys from host code."""
        if isinstance(key, str):
            return Symbol(key)
        return key

    def __getitem__(self, key: Any) -> Any:
        return self.lookup(self._normalize_key(key))

    def __setitem__(self, key: Any, value: Any):
        self.define(self._normalize_key(key), value)

    def __contains__(self, key: Any) -> bool:
        key = self._normalize_key(key)
        return isinstance(key, Symbol) and self.find_owner(key) is not None

    def keys(self):
        """Returns the names bound in this frame only."""
        return [s.name for s in self.bindings]

    def __repr__(self) -> str:
        keys = ', '.join(self.keys())
        parent_id = f", parent=#{id(self.parent)}" if self.parent else ""
        return f"<Environment bindings=[{keys}]{parent_id}>"


# =================================================================
# Combiners
# =================================================================

class KernCombiner(ABC):
    """Abstract base class for everything invocable in operator position."""
    name: Optional[str] = None


class Operative(KernCombiner):
    """A compound operative built by `$vau`.

    It closes over the environment where it was constructed. Each call binds
    the unevaluated operand tree against `formals` in a fresh child of that
    environment and, unless `dynamic_param` is #ignore or (), binds the
    caller's environment to `dynamic_param`.
    """
    def __init__(self, static_env: Environment, formals: Any, dynamic_param: Any, body: List[Any]):
        self.static_env = static_env
        self.formals = formals
        self.dynamic_param = dynamic_param
        self.body = tuple(body)
        self.name: Optional[str] = None

    def __repr__(self) -> str:
        return f"<Operative {self.name or 'anonymous'}>"


class Applicative(KernCombiner):
    """Evaluates its operands, then passes them to the underlying combiner."""
    def __init__(self, underlying: KernCombiner):
        self.underlying = underlying

    @property
    def name(self) -> Optional[str]:
        return getattr(self.underlying, "name", None)

    def __repr__(self) -> str:
        return f"<Applicative {self.name or 'anonymous'}>"

    def __eq__(self, other):
        if not isinstance(other, Applicative):
            return NotImplemented
        return self.underlying is other.underlying

    def __hash__(self):
        return hash(id(self.underlying))


class Primitive(KernCombiner):
    """A host function acting as a combiner.

    Positional operands are passed as positional arguments. A keyword-only
    `env` parameter receives the dynamic environment. The accepted operand
    count is read from the function signature once, at construction.
    """
    def __init__(self, name: str, func):
        self.name = name
        self.func = func
        params = inspect.signature(func).parameters.values()
        positional = [p for p in params if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)]
        self.min_args = sum(1 for p in positional if p.default is p.empty)
        has_varargs = any(p.kind == p.VAR_POSITIONAL for p in params)
        self.max_args: Optional[int] = None if has_varargs else len(positional)
        self.wants_env = any(p.name == 'env' and p.kind == p.KEYWORD_ONLY for p in params)

    def arity(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args} operands"
        if self.min_args == self.max_args:
            return f"{self.min_args} operands"
        return f"{self.min_args} to {self.max_args} operands"

    def __repr__(self) -> str:
        return f"<Primitive {self.name}>"


class TailCall:
    """Returned by primitives to continue evaluation in tail position."""
    __slots__ = ('expr', 'env')

    def __init__(self, expr: Any, env: Environment):
        self.expr = expr
        self.env = env


def is_combiner(value: Any) -> bool:
    # Booleans select between their two evaluated operands.
    return isinstance(value, (KernCombiner, bool))


# =================================================================
# Equality
# =================================================================

def _atom_equal(a: Any, b: Any) -> bool:
    # bool is a subclass of int in Python; the kinds must match first.
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, int) and isinstance(b, int):
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if isinstance(a, Applicative) and isinstance(b, Applicative):
        return a.underlying is b.underlying
    return a is b


def values_equal(a: Any, b: Any) -> bool:
    """Structural equality.

    Pairs are equal when their heads and tails are equal; atoms compare by
    kind and value; environments and operatives by identity. Tails are
    walked in a loop so long lists never recurse on the host stack.
    """
    while True:
        if a is b:
            return True
        if isinstance(a, Pair) and isinstance(b, Pair):
            if not values_equal(a.head, b.head):
                return False
            a, b = a.tail, b.tail
            continue
        if isinstance(a, Pair) or isinstance(b, Pair):
            return False
        return _atom_equal(a, b)


def values_identical(a: Any, b: Any) -> bool:
    """Identity for objects, value comparison for atoms (`eq?`)."""
    if isinstance(a, Pair) or isinstance(b, Pair):
        return a is b
    return _atom_equal(a, b)


# =================================================================
# Host conversion
# =================================================================

def from_python(obj: Any) -> Any:
    """Converts nested Python lists/tuples into Kern lists. None becomes ()."""
    if obj is None:
        return Nil
    if isinstance(obj, (list, tuple)):
        result = Nil
        for item in reversed(obj):
            result = Pair(from_python(item), result)
        return result
    return obj


def to_python(value: Any) -> Any:
    """Converts proper Kern lists into Python lists; other values pass through."""
    if value is Nil:
        return []
    if isinstance(value, Pair) and is_list(value):
        return [to_python(item) for item in value]
    return value
