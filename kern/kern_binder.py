"""
Destructures formal-parameter trees against operand trees.

A formal tree is built from Pairs, Symbols, () and #ignore. A symbol takes
whatever operand value sits at its position, which makes a dotted tail and
a bare symbol formal the same rule.
"""
from typing import Any, List, Tuple

from kern.kern_datatypes import (
    Pair, Symbol, Nil, Ignore, Environment, ArityMismatch, TypeMismatch
)


def match(pattern: Any, operands: Any) -> List[Tuple[Symbol, Any]]:
    """Matches pattern against operands and returns the bindings it implies.

    Raises ArityMismatch when the shapes disagree. Nothing is bound here, so
    a failed match never leaves partial bindings behind.
    """
    bindings: List[Tuple[Symbol, Any]] = []
    pending = [(pattern, operands)]
    while pending:
        pat, ops = pending.pop()
        # Walk the spine in place; only heads are deferred.
        while True:
            if isinstance(pat, Symbol):
                bindings.append((pat, ops))
                break
            if pat is Ignore:
                break
            if pat is Nil:
                if ops is not Nil:
                    raise ArityMismatch(pattern, operands)
                break
            if isinstance(pat, Pair):
                if not isinstance(ops, Pair):
                    raise ArityMismatch(pattern, operands)
                pending.append((pat.head, ops.head))
                pat, ops = pat.tail, ops.tail
                continue
            raise TypeMismatch("formal parameter tree", pattern)
    return bindings


def bind(pattern: Any, operands: Any, target_env: Environment):
    """Binds every symbol of pattern in target_env's own frame."""
    for symbol, value in match(pattern, operands):
        target_env.define(symbol, value)


def check_formals(pattern: Any) -> List[Symbol]:
    """Validates a formal tree and returns the symbols it binds.

    Leaves must be symbols, () or #ignore, and no symbol may appear twice.
    """
    seen: List[Symbol] = []
    seen_set = set()
    pending = [pattern]
    while pending:
        node = pending.pop()
        while isinstance(node, Pair):
            pending.append(node.head)
            node = node.tail
        if isinstance(node, Symbol):
            if node in seen_set:
                raise TypeMismatch("formal tree without repeated symbols", pattern)
            seen.append(node)
            seen_set.add(node)
        elif node is not Nil and node is not Ignore:
            raise TypeMismatch("formal parameter tree", pattern)
    return seen
