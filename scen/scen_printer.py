"""
A pretty-printer for scenario values, actions and run results.
"""
import collections.abc
from textwrap import dedent

import pystache

from scen.scen_invoke import Invokation
from scen.scen_values import (
    AddressV, BoolV, EventV, ListV, NumberV, StringV, format_event
)
from scen.scen_world import Action, Contract


REPORT_TEMPLATE = dedent("""
    Scenario {{status}}
    {{#actions}}
    {{index}}. {{description}}{{#result}} [{{result}}]{{/result}}
    {{/actions}}
    {{^actions}}
    (no actions)
    {{/actions}}
    {{#error}}
    {{error}}
    {{/error}}
    """).strip("\n")


class Printer:
    """Formats scenario objects into readable strings."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, collections.abc.Mapping): return self._pformat_dict
        if isinstance(obj, (list, tuple)): return self._pformat_list
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_primitive,
            float: self._pformat_primitive,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            NumberV: self._pformat_value,
            AddressV: self._pformat_value,
            BoolV: self._pformat_value,
            StringV: self._pformat_string_v,
            ListV: self._pformat_value,
            EventV: self._pformat_event,
            Contract: self._pformat_contract,
            Action: self._pformat_action,
            Invokation: self._pformat_invokation,
        }

    def _pformat_primitive(self, obj, level):
        return str(obj)

    def _pformat_str(self, obj, level):
        return obj

    def _pformat_bool(self, obj, level):
        return 'true' if obj else 'false'

    def _pformat_none(self, obj, level):
        return 'none'

    def _pformat_value(self, obj, level):
        return obj.show()

    def _pformat_string_v(self, obj, level):
        return f'"{obj.val}"'

    def _pformat_event(self, obj, level):
        return f"({format_event(obj.val)})"

    def _pformat_contract(self, obj, level):
        return f"{obj.kind} {obj.name} ({obj.address})"

    def _pformat_invokation(self, obj, level):
        if obj.skipped:
            return "skipped"
        if obj.failed:
            return f"failed {obj.error}"
        parts = ["ok"]
        if obj.value is not None:
            parts.append(f"value={self.pformat(obj.value, level)}")
        if obj.tx_hash:
            parts.append(f"tx={obj.tx_hash}")
        return " ".join(parts)

    def _pformat_result(self, result, level):
        if result is None:
            return ""
        if isinstance(result, (list, tuple)):
            return ", ".join(self._pformat_invokation(i, level) for i in result)
        return self.pformat(result, level)

    def _pformat_action(self, obj, level):
        result = self._pformat_result(obj.invokation, level)
        return f"{obj.description} [{result}]" if result else obj.description

    def _pformat_list(self, obj, level):
        if not obj:
            return "[]"
        return self._pformat_block([self.pformat(item, level + 1) for item in obj], level, '[', ']')

    def _pformat_dict(self, obj, level):
        if not obj:
            return "{}"
        entries = [f"{self.pformat(k, level + 1)}: {self.pformat(v, level + 1)}" for k, v in obj.items()]
        return self._pformat_block(entries, level, '{', '}')

    def _pformat_block(self, rendered, level, open_char, close_char):
        outer_indent = self._indent_char * level
        inner_indent = self._indent_char * (level + 1)
        lines = []
        for text in rendered:
            text_lines = text.splitlines() or [""]
            # Nested lines are already indented by the recursive call
            lines.append("\n".join([inner_indent + text_lines[0]] + text_lines[1:]))
        return f"{open_char}\n" + "\n".join(lines) + f"\n{outer_indent}{close_char}"

    # --- Run reports ---
    def report_context(self, result) -> dict:
        actions = []
        for i, action in enumerate(result.actions, start=1):
            actions.append({
                'index': i,
                'description': action.description,
                'result': self._pformat_result(action.invokation, 0),
            })
        return {
            'status': 'succeeded' if result.status == 'success' else 'failed',
            'actions': actions,
            'error': result.format_error() or None,
        }


def render_report(result, template: str = REPORT_TEMPLATE) -> str:
    """Renders a run (ExecutionResult) as text with a Mustache template."""
    renderer = pystache.Renderer(escape=lambda u: u)
    return renderer.render(template, Printer().report_context(result))
