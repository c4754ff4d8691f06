"""
The core Kern interpreter: the Evaluator and root environment construction.
"""
import os
import sys
from typing import Any, List, Mapping, Optional

from kern.kern_datatypes import (
    Pair, Symbol, Nil, Inert, Environment, Operative, Applicative, Primitive,
    KernCombiner, TailCall, ArityMismatch, NotCombinable, TypeMismatch,
    StackExhausted, StepLimitExceeded, make_list
)
from kern.kern_binder import bind


def make_combiner(name: str, impl: Any) -> KernCombiner:
    """Turns a primitive implementation into a combiner.

    Either a ready combiner or a Python callable. Callables marked
    operative (see `kern_primitive`) receive their operands unevaluated;
    all others are wrapped once so they receive evaluated operands.
    """
    if isinstance(impl, KernCombiner):
        return impl
    if not callable(impl):
        raise TypeError(f"Primitive {name!r} is not callable: {impl!r}")
    prim = Primitive(name, impl)
    if getattr(impl, "_kern_operative", False):
        return prim
    return Applicative(prim)


def create_root_environment(primitives: Mapping[Any, Any]) -> Environment:
    """Builds a parentless environment seeded with the given primitives."""
    env = Environment()
    for key, impl in primitives.items():
        name = key.name if isinstance(key, Symbol) else str(key)
        env.define(Symbol(name), make_combiner(name, impl))
    return env


class Evaluator:
    """The Kern execution engine."""

    def __init__(self, step_limit: Optional[int] = None):
        self.side_effects: List[Any] = []
        # Combinations currently being reduced, outermost first. A tail call
        # overwrites its own frame.
        self.call_stack: List[Any] = []
        self.step_limit = step_limit
        self.steps = 0
        self.debug = bool(os.environ.get("KERN_DEBUG"))

    def _dbg(self, *parts):
        if self.debug:
            print("[DBG]", *parts, file=sys.stderr)

    def reset(self):
        """Clears per-run state before a new top-level evaluation."""
        self.call_stack.clear()
        self.steps = 0

    def eval(self, expr: Any, env: Environment) -> Any:
        """Public entry point for evaluation."""
        if not isinstance(env, Environment):
            raise TypeMismatch("environment", env)
        try:
            return self._eval(expr, env)
        except RecursionError as e:
            raise StackExhausted() from e

    def apply(self, combiner: Any, args: List[Any], env: Optional[Environment] = None) -> Any:
        """Calls combiner with already-evaluated arguments.

        An applicative is unwrapped once so its arguments are not evaluated
        again. Operatives receive args as their operand list.
        """
        if isinstance(combiner, Applicative):
            combiner = combiner.underlying
        return self.eval(Pair(combiner, make_list(args)), env if env is not None else Environment())

    def _tick(self):
        self.steps += 1
        if self.step_limit is not None and self.steps > self.step_limit:
            raise StepLimitExceeded(self.step_limit)

    def _eval(self, expr: Any, env: Environment) -> Any:
        base = len(self.call_stack)
        while True:
            self._tick()
            if isinstance(expr, Symbol):
                value = env.lookup(expr)
                break
            if not isinstance(expr, Pair):
                # Everything except symbols and pairs evaluates to itself.
                value = expr
                break

            if len(self.call_stack) > base:
                self.call_stack[base] = expr
            else:
                self.call_stack.append(expr)

            combiner = self._eval(expr.head, env)
            operands = expr.tail
            while isinstance(combiner, Applicative):
                operands = self._eval_operands(operands, env)
                combiner = combiner.underlying

            if isinstance(combiner, Operative):
                self._dbg("operative", combiner.name or "anonymous")
                call_env = Environment(parent=combiner.static_env)
                bind(combiner.formals, operands, call_env)
                if isinstance(combiner.dynamic_param, Symbol):
                    call_env.define(combiner.dynamic_param, env)
                body = combiner.body
                if not body:
                    value = Inert
                    break
                for form in body[:-1]:
                    self._eval(form, call_env)
                expr, env = body[-1], call_env
                continue

            if isinstance(combiner, Primitive):
                self._dbg("primitive", combiner.name)
                result = self._call_primitive(combiner, operands, env)
                if isinstance(result, TailCall):
                    expr, env = result.expr, result.env
                    continue
                value = result
                break

            if isinstance(combiner, bool):
                # #t and #f select their first or second evaluated operand.
                args = self._operand_list(self._eval_operands(operands, env), "2 operands")
                if len(args) != 2:
                    raise ArityMismatch("2 operands", operands)
                value = args[0] if combiner else args[1]
                break

            raise NotCombinable(combiner)

        del self.call_stack[base:]
        return value

    def _eval_operands(self, operands: Any, env: Environment) -> Any:
        """Evaluates each element of an operand list, left to right."""
        values = []
        node = operands
        while isinstance(node, Pair):
            values.append(self._eval(node.head, env))
            node = node.tail
        if node is not Nil:
            raise ArityMismatch("proper operand list", operands)
        return make_list(values)

    def _operand_list(self, operands: Any, expected: str) -> List[Any]:
        args = []
        node = operands
        while isinstance(node, Pair):
            args.append(node.head)
            node = node.tail
        if node is not Nil:
            raise ArityMismatch(expected, operands)
        return args

    def _call_primitive(self, prim: Primitive, operands: Any, env: Environment) -> Any:
        args = self._operand_list(operands, prim.arity())
        if len(args) < prim.min_args or (prim.max_args is not None and len(args) > prim.max_args):
            raise ArityMismatch(prim.arity(), operands)
        if prim.wants_env:
            return prim.func(*args, env=env)
        return prim.func(*args)
