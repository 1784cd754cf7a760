from __future__ import annotations

import collections.abc
import json
import re
from typing import Any, Callable, Dict, Optional

import yaml

from scen.scen_values import Value

_CHARSET_RE = re.compile(r'charset\s*=\s*"?([^\s;"]+)', re.IGNORECASE)
_EXTENSIONS = {'.json': 'json', '.yaml': 'yaml', '.yml': 'yaml'}


# --------------------------
# Helpers
# --------------------------

def _as_text(data: bytes | bytearray | str, content_type: Optional[str]) -> str:
    if isinstance(data, str):
        return data
    if not isinstance(data, (bytes, bytearray)):
        return str(data)
    m = _CHARSET_RE.search(content_type or "")
    try:
        return data.decode(m.group(1) if m else 'utf-8', errors='replace')
    except LookupError:
        # Unknown charset names fall back to utf-8
        return data.decode('utf-8', errors='replace')


def _to_builtin(obj: Any) -> Any:
    # Values keep their wire encoding; containers are rebuilt as plain lists/dicts
    if isinstance(obj, Value):
        return _to_builtin(obj.encode())
    if isinstance(obj, collections.abc.Mapping):
        return {str(k): _to_builtin(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_builtin(item) for item in obj]
    return obj


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e}") from e


def _load_yaml(text: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValueError(f"invalid YAML: {e}") from e


_LOADERS: Dict[str, Callable[[str], Any]] = {'json': _load_json, 'yaml': _load_yaml}

_DUMPERS: Dict[str, Callable[[Any, bool], str]] = {
    'json': lambda data, pretty: json.dumps(data, ensure_ascii=False, indent=2 if pretty else None),
    'yaml': lambda data, pretty: yaml.safe_dump(data, sort_keys=False, default_flow_style=not pretty),
}


def detect_format(content_type: Optional[str] = None, data_hint: Optional[str] = None,
                  path: Optional[str] = None) -> Optional[str]:
    """
    Returns 'json', 'yaml' or None.
    The Content-Type wins, then the file extension, then a look at the data.
    """
    ct = (content_type or "").lower()
    for fmt in ('json', 'yaml'):
        if fmt in ct:
            return fmt

    if path:
        suffix = "." + str(path).rsplit(".", 1)[-1].lower() if "." in str(path) else ""
        if suffix in _EXTENSIONS:
            return _EXTENSIONS[suffix]

    hint = (data_hint or "").lstrip()
    if not hint:
        return None
    return 'json' if hint[0] in '{[' else 'yaml'


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str,
                *,
                content_type: Optional[str] = None,
                fmt: Optional[str] = None,
                path: Optional[str] = None) -> Any:
    """
    Parses json or yaml text (or bytes) into plain Python data.
    Without `fmt` the format is detected from `content_type`, `path` and the
    text itself. Blank input gives None; malformed input raises ValueError.
    """
    text = _as_text(data, content_type)
    f = fmt or detect_format(content_type, text, path)
    if f is None and not text.strip():
        return None
    loader = _LOADERS.get(f)
    if loader is None:
        raise ValueError(f"Unsupported serialization format: {f!r}")
    return loader(text)


def serialize(value: Any,
              *,
              fmt: str,
              pretty: bool = True) -> str:
    """
    Renders Values, World dumps, dicts and lists as json or yaml text.
    """
    dumper = _DUMPERS.get((fmt or '').lower())
    if dumper is None:
        raise ValueError(f"Unsupported serialization format: {fmt!r}")
    return dumper(_to_builtin(value), pretty)


# --------------------------
# World inspection
# --------------------------

def invokation_to_data(invokation: Any) -> Any:
    # Batches are tuples of Invokations
    if isinstance(invokation, (list, tuple)):
        return [invokation_to_data(i) for i in invokation]
    if invokation is None:
        return None
    data = {
        'call': invokation.call.show() if invokation.call is not None else None,
        'status': 'skipped' if invokation.skipped else ('failed' if invokation.failed else 'ok'),
    }
    if invokation.value is not None:
        data['value'] = invokation.value
    if invokation.tx_hash:
        data['tx_hash'] = invokation.tx_hash
    if invokation.error is not None:
        data['error'] = {'code': invokation.error.code, 'detail': invokation.error.detail}
    return data


def world_to_data(world) -> dict:
    """Inspection dump of a World: its action log, aliases and contracts."""
    return {
        'dry_run': world.dry_run,
        'default_from': world.default_from,
        'accounts': dict(world.accounts),
        'aliases': dict(world.aliases),
        'contracts': [
            {'name': c.name, 'kind': c.kind, 'address': c.address} for c in world.contracts
        ],
        'actions': [
            {'description': a.description, 'result': invokation_to_data(a.invokation)}
            for a in world.actions
        ],
    }


__all__ = [
    "deserialize",
    "serialize",
    "detect_format",
    "invokation_to_data",
    "world_to_data",
]
