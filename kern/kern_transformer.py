"""
Transforms the raw parser AST into Kern value trees.
"""
import json
from typing import Any, List, Optional

from kern.kern_datatypes import Pair, Symbol, Nil, Ignore, Inert, ReadError


class KernTransformer:
    def _attach_loc(self, obj, node):
        line = node.get('line'); col = node.get('col')
        if line is not None and col is not None and hasattr(obj, '__dict__'):
            obj.loc = {'line': line, 'col': col, 'source': self._source}
        return obj

    def transform(self, node: Any, source: Optional[str] = None) -> Any:
        """Transforms a koine AST. A `program` node yields a list of forms."""
        self._source = source
        return self._transform(node)

    def _transform(self, node: Any) -> Any:
        if isinstance(node, list):
            return [self._transform(n) for n in node]

        # Primitives already in final form
        if not isinstance(node, dict):
            return node

        tag = node.get('tag')
        children = node.get('children', [])

        match tag:
            case 'program':
                return [self._transform(c) for c in children]
            case 'list':
                return self._list(node, children)
            case 'integer':
                return int(node['text'])
            case 'string':
                try:
                    return json.loads(node['text'])
                except json.JSONDecodeError as e:
                    raise ReadError(f"bad string literal {node['text']} (line {node.get('line')}, col {node.get('col')}): {e.msg}") from e
            case 'boolean':
                return node['text'] in ('#t', '#true')
            case 'constant':
                return Ignore if node['text'] == '#ignore' else Inert
            case 'nil':
                return Nil
            case 'symbol':
                return Symbol(node['text'])
            case _:
                raise ReadError(f"unexpected syntax node: {tag!r}")

    def _list(self, node: dict, children: List[Any]) -> Any:
        tail = Nil
        if children and isinstance(children[-1], dict) and children[-1].get('tag') == 'tail':
            if len(children) == 1:
                raise ReadError(f"dotted list without a head (line {node.get('line')}, col {node.get('col')})")
            dotted = children[-1].get('children') or []
            if len(dotted) != 1:
                raise ReadError(f"expected one datum after '.' (line {node.get('line')}, col {node.get('col')})")
            tail = self._transform(dotted[0])
            children = children[:-1]
        items = [self._transform(c) for c in children]
        if not items:
            return Nil
        result = tail
        for item in reversed(items):
            result = Pair(item, result)
        return self._attach_loc(result, node)
