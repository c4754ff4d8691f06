"""
A printer for Kern values.
"""
import json

from kern.kern_datatypes import (
    Pair, Symbol, Nil, Ignore, Inert, Environment, Operative, Applicative, Primitive
)


class Printer:
    """Formats Kern values as readable Kern source text.

    With `display=True` strings are written without quotes or escapes. With
    `max_width` the output is cut short and ends in '...', and lists nested
    deeper than `max_width` levels print as '...' without being walked.
    """

    def __init__(self, display=False, max_width=None):
        self.display = display
        self.max_width = max_width
        self._depth = 0
        self._handlers = self._create_handlers()

    def pformat(self, obj) -> str:
        """Public entry point to format an object."""
        text = self._format(obj)
        if self.max_width is not None and len(text) > self.max_width:
            return text[:max(self.max_width - 3, 0)] + "..."
        return text

    def _format(self, obj) -> str:
        # Fast path for singletons
        if obj is Nil: return "()"
        if obj is Ignore: return "#ignore"
        if obj is Inert: return "#inert"
        handler = self._handlers.get(type(obj))
        if handler is None:
            return repr(obj)
        return handler(obj)

    def _create_handlers(self):
        return {
            bool: self._pformat_bool,
            int: self._pformat_int,
            str: self._pformat_str,
            Symbol: self._pformat_symbol,
            Pair: self._pformat_pair,
            Environment: self._pformat_environment,
            Operative: self._pformat_operative,
            Applicative: self._pformat_applicative,
            Primitive: self._pformat_primitive,
        }

    def _pformat_bool(self, obj):
        return "#t" if obj else "#f"

    def _pformat_int(self, obj):
        return str(obj)

    def _pformat_str(self, obj):
        if self.display:
            return obj
        return json.dumps(obj, ensure_ascii=False)

    def _pformat_symbol(self, obj):
        return obj.name

    def _pformat_pair(self, obj):
        # Every level opens a paren, so anything deeper cannot fit the width.
        if self.max_width is not None and self._depth >= self.max_width:
            return "..."
        self._depth += 1
        try:
            return self._pformat_spine(obj)
        finally:
            self._depth -= 1

    def _pformat_spine(self, obj):
        parts = []
        node = obj
        while isinstance(node, Pair):
            parts.append(self._format(node.head))
            node = node.tail
            # Stop early once the text is already too long to show.
            if self.max_width is not None and sum(len(p) + 1 for p in parts) > self.max_width:
                return "(" + " ".join(parts) + " ...)"
        if node is not Nil:
            parts.append(".")
            parts.append(self._format(node))
        return "(" + " ".join(parts) + ")"

    def _pformat_environment(self, obj):
        return "#[environment]"

    def _pformat_operative(self, obj):
        return f"#[operative {obj.name}]" if obj.name else "#[operative]"

    def _pformat_applicative(self, obj):
        return f"#[applicative {obj.name}]" if obj.name else "#[applicative]"

    def _pformat_primitive(self, obj):
        return f"#[primitive {obj.name}]"
