"""
Commands, the argument binder and the command registry.

A scoped instruction arrives as a name plus raw tokens. The registry holds,
per scope, an ordered list of candidate specs for each name; dispatch binds
the tokens against each candidate in registration order and runs the first
one that binds. After a state-changing handler returns, the dispatcher
appends exactly one action-log entry to the World it got back.
"""

import textwrap
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from scen.scen_errors import (
    ArityError,
    BindingError,
    CommandDefinitionError,
    ExternalInvocationFailure,
    MalformedValue,
    NoMatchingOverload,
)
from scen.scen_invoke import _dbg, all_skipped, first_failure
from scen.scen_values import ListV, Token
from scen.scen_world import World


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT = _NoDefault()


class Arg:
    """One argument spec.

    Non-implicit getters are called as `getter(world, token)`. Implicit
    resolvers are called as `getter(world, bound)` after every positional
    argument is bound, `bound` being a read-only view of the siblings.
    """

    def __init__(self, name: str, getter: Callable, *, implicit: bool = False,
                 variadic: bool = False, mapped: bool = False, default: Any = NO_DEFAULT):
        self.name = name
        self.getter = getter
        self.implicit = implicit
        self.variadic = variadic
        self.mapped = mapped
        self.default = default

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT

    def usage(self) -> str:
        if self.variadic and self.mapped:
            return f"...({self.name})"
        if self.variadic:
            return f"...{self.name}"
        if self.mapped:
            return f"(<{self.name}> ...)"
        if self.has_default:
            return f"[{self.name}]"
        return f"<{self.name}>"

    def __repr__(self) -> str:
        flags = [f for f in ("implicit", "variadic", "mapped") if getattr(self, f)]
        return f"<Arg {self.name}{' ' + ','.join(flags) if flags else ''}>"


@dataclass
class Effect:
    """What a command handler hands back: the new World and one action to log."""
    world: World
    description: str
    invokation: Any = None


class Command:
    """A state-changing instruction: `handler(world, from_, args) -> Effect | World`."""
    is_view = False

    def __init__(self, doc: str, name: str, args: Sequence[Arg], handler: Callable[..., Awaitable[Any]]):
        self.doc = textwrap.dedent(doc).strip()
        self.name = name
        self.args: List[Arg] = list(args)
        self.handler = handler

    @property
    def positional(self) -> List[Arg]:
        return [a for a in self.args if not a.implicit]

    def usage(self) -> str:
        parts = [self.name] + [a.usage() for a in self.positional]
        return " ".join(parts)

    def validate(self):
        names = [a.name for a in self.args]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise CommandDefinitionError(f"{self.name}: duplicate argument name(s) {', '.join(dupes)}")
        positional = self.positional
        for i, arg in enumerate(positional):
            if arg.variadic and i != len(positional) - 1:
                raise CommandDefinitionError(f"{self.name}: variadic argument '{arg.name}' must be last")
        mapped = [a.name for a in self.args if a.mapped]
        if len(mapped) > 1:
            raise CommandDefinitionError(
                f"{self.name}: at most one mapped argument is allowed, got {', '.join(mapped)}")
        for arg in self.args:
            if arg.implicit and (arg.has_default or arg.variadic or arg.mapped):
                raise CommandDefinitionError(
                    f"{self.name}: implicit argument '{arg.name}' cannot be variadic, mapped or defaulted")
        seen_optional = False
        for arg in positional:
            if arg.has_default:
                seen_optional = True
            elif seen_optional and not arg.variadic:
                raise CommandDefinitionError(
                    f"{self.name}: required argument '{arg.name}' follows an optional one")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.usage()}>"


class View(Command):
    """A read-only instruction: `handler(world, args) -> data`. Never logs an action."""
    is_view = True


# ===================================================================
# Argument binder
# ===================================================================

def bind_args(specs: Sequence[Arg], tokens: Sequence[Token], world: World) -> Dict[str, Any]:
    """Binds raw tokens against `specs`. Pure: no invocation, no World change."""
    bound: Dict[str, Any] = {}
    remaining = list(tokens)
    positional = [a for a in specs if not a.implicit]

    for arg in positional:
        if arg.variadic:
            rest, remaining = remaining, []
            if arg.mapped:
                bound[arg.name] = ListV([arg.getter(world, t) for t in rest])
            elif not rest and arg.has_default:
                bound[arg.name] = arg.default
            else:
                bound[arg.name] = arg.getter(world, rest)
            continue

        if not remaining:
            if arg.has_default:
                bound[arg.name] = arg.default
                continue
            required = sum(1 for a in positional if not a.has_default and not a.variadic)
            raise ArityError(
                f"missing argument '{arg.name}' (expected at least {required} token(s), got {len(tokens)})",
                expected=arg.usage(), got=len(tokens))

        token = remaining.pop(0)
        if arg.mapped:
            if not isinstance(token, list):
                raise MalformedValue(f"list for '{arg.name}'", token, "mapped arguments take a ( ... ) group")
            bound[arg.name] = ListV([arg.getter(world, t) for t in token])
        else:
            bound[arg.name] = arg.getter(world, token)

    if remaining:
        raise ArityError(
            f"{len(remaining)} unexpected trailing token(s) (expected at most {len(positional)}, got {len(tokens)})",
            expected=" ".join(a.usage() for a in positional), got=len(tokens))

    for arg in specs:
        if arg.implicit:
            bound[arg.name] = arg.getter(world, MappingProxyType(dict(bound)))
    return bound


# ===================================================================
# Registry / dispatcher
# ===================================================================

class CommandRegistry:
    """Scoped, ordered table of command specs. Scope "" holds the core commands."""

    def __init__(self):
        self._scopes: Dict[str, Dict[str, List[Command]]] = {}

    def register(self, scope: str, *commands: Command) -> 'CommandRegistry':
        table = self._scopes.setdefault(scope, {})
        for cmd in commands:
            if not isinstance(cmd, Command):
                raise CommandDefinitionError(f"not a command spec: {cmd!r}")
            cmd.validate()
            table.setdefault(cmd.name, []).append(cmd)
        return self

    def resolve(self, scope: str, name: str) -> List[Command]:
        return list(self._scopes.get(scope, {}).get(name, []))

    def has_scope(self, scope: str) -> bool:
        return bool(scope) and scope in self._scopes

    def scopes(self) -> List[str]:
        return [s for s in self._scopes if s]

    def help(self, scope: str = "") -> List[Tuple[str, str]]:
        table = self._scopes.get(scope, {})
        return [(cmd.usage(), cmd.doc) for cmds in table.values() for cmd in cmds]

    async def dispatch(self, scope: str, name: str, tokens: Sequence[Token], world: World,
                       from_: Optional[str] = None) -> Tuple[World, Any]:
        """Runs the first candidate that binds. Returns `(world, value)`."""
        candidates = self.resolve(scope, name)
        if not candidates:
            raise NoMatchingOverload(scope, name)

        failures = []
        for cmd in candidates:
            try:
                bound = bind_args(cmd.args, tokens, world)
            except BindingError as e:
                _dbg("bind failed", scope or "<core>", cmd.usage(), e.kind, str(e))
                failures.append((cmd, e))
                continue
            _dbg("dispatch", scope or "<core>", cmd.usage(), "from", from_)
            return await self._run(cmd, bound, world, from_)

        raise NoMatchingOverload(scope, name, failures)

    async def _run(self, cmd: Command, bound: Mapping[str, Any], world: World,
                   from_: Optional[str]) -> Tuple[World, Any]:
        if cmd.is_view:
            value = await cmd.handler(world, bound)
            return world, value

        result = await cmd.handler(world, from_, bound)
        # Delegating commands return what the nested dispatch returned; it already logged.
        if isinstance(result, World):
            return result, None
        if isinstance(result, tuple) and len(result) == 2 and isinstance(result[0], World):
            return result
        if not isinstance(result, Effect):
            raise TypeError(f"handler for {cmd.name} returned {type(result).__name__}, expected Effect")

        failed = first_failure(result.invokation)
        if failed is not None:
            next_world = result.world.with_action(result.description, result.invokation)
            raise ExternalInvocationFailure(
                failed.error.code, failed.error.detail, result.description, world=next_world)

        description = result.description
        if all_skipped(result.invokation):
            description = f"Dry run: skipped {description}"
            _dbg(description)
        return result.world.with_action(description, result.invokation), description
