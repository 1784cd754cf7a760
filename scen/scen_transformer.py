"""
Transforms the koine parse tree of one scenario line into an Event.

An Event is a plain list whose items are `str` tokens or nested Events:
`Comptroller EnterMarkets (bZRX bBNB)` becomes
`['Comptroller', 'EnterMarkets', ['bZRX', 'bBNB']]`.
"""

from typing import Any, List


class ScenarioTransformer:
    _CONTAINERS = ('event', 'group')

    def transform(self, node: Any) -> List[Any]:
        out = self._node(node)
        # A single-term line may come back promoted
        if not isinstance(out, list) or (isinstance(node, dict) and node.get('tag') == 'group'):
            return [out]
        return out

    def _items(self, children: Any) -> List[Any]:
        # Named-children dicts (no 'tag')
        if isinstance(children, dict) and 'tag' not in children:
            children = list(children.values())
        if not isinstance(children, list):
            children = [children]

        out = []
        for child in children:
            if child is None:
                continue
            if isinstance(child, list):
                out.extend(self._items(child))
                continue
            if isinstance(child, dict):
                tag = child.get('tag')
                if tag not in self._CONTAINERS and tag not in ('atom', 'string'):
                    # Anonymous sequence wrappers produced by inline rules: splice
                    out.extend(self._items(child.get('children', [])))
                    continue
            out.append(self._node(child))
        return out

    def _node(self, node: Any) -> Any:
        if isinstance(node, list):
            return self._items(node)
        if not isinstance(node, dict):
            return node

        match node.get('tag'):
            case 'atom':
                return node['text']
            case 'string':
                text = node['text']
                return text[1:-1] if len(text) >= 2 and text[0] == text[-1] == '"' else text
            case 'event' | 'group':
                return self._items(node.get('children', []))
            case _:
                return self._items(node.get('children', []))
