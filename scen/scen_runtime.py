# scen_runtime.py

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from koine import Parser

from scen.scen_command import Arg, Command, CommandRegistry, Effect, View
from scen.scen_errors import (
    ExternalInvocationFailure,
    MalformedValue,
    ParseError,
    ScenarioError,
)
from scen.scen_invoke import _dbg
from scen.scen_transformer import ScenarioTransformer
from scen.scen_values import (
    StringV,
    Token,
    format_event,
    get_address_v,
    get_event_v,
    get_string_v,
)
from scen.scen_world import Contract, World

COMMENT_PREFIXES = ("--", "#")

# ===================================================================
# 1. Results
# ===================================================================


@dataclass
class Step:
    """One executed instruction."""
    line: int
    source: str
    kind: Literal['command', 'view']
    value: Any = None


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    world: Optional[World] = None
    steps: List[Step] = field(default_factory=list)
    value: Any = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    error_line: Optional[int] = None
    side_effects: List[Dict] = field(default_factory=list)

    @property
    def actions(self):
        return self.world.actions if self.world is not None else ()

    def format_error(self) -> str:
        """Formats the halting error with its line number when known."""
        if self.status != 'error':
            return ""
        msg = f"{self.error_kind or 'Error'}: {self.error_message or 'Unknown error'}"
        if self.error_line is not None:
            return f"Error on line {self.error_line}: {msg}"
        return msg


# ===================================================================
# 2. Instruction splitting / execution
# ===================================================================

def split_instruction(event: Sequence[Token], registry: CommandRegistry) -> Tuple[str, str, List[Token]]:
    """`[scope] Name tokens...` -> (scope, name, tokens). Scope "" is the core."""
    if not event:
        raise ParseError("empty instruction")
    head = event[0]
    if not isinstance(head, str):
        raise ParseError(f"expected an instruction name, got ({format_event(head)})")
    if registry.has_scope(head):
        if len(event) < 2 or not isinstance(event[1], str):
            raise ParseError(f"missing instruction name after scope '{head}'")
        return head, event[1], list(event[2:])
    return "", head, list(event[1:])


async def run_event(registry: CommandRegistry, event: Sequence[Token], world: World,
                    from_: Optional[str] = None) -> Tuple[World, Any]:
    scope, name, tokens = split_instruction(event, registry)
    if from_ is None:
        from_ = world.default_from
    return await registry.dispatch(scope, name, tokens, world, from_)


# ===================================================================
# 3. Core commands
# ===================================================================

def _get_message(world, tokens) -> StringV:
    words = [t if isinstance(t, str) else f"({format_event(t)})" for t in tokens]
    return StringV(" ".join(words))


def _get_kind(world, token) -> StringV:
    kind = get_string_v(world, token)
    if not kind.val or not kind.val[0].isupper():
        raise MalformedValue("contract kind", token, "kinds are capitalised, e.g. BToken")
    return kind


def core_commands(registry: CommandRegistry) -> List[Command]:
    """Commands available without a scope prefix. Nested events run through `registry`."""

    async def from_account(world, from_, args):
        account = args['account'].val
        return await run_event(registry, args['event'].val, world, account)

    async def dry_run(world, from_, args):
        previous = world.is_dry_run()
        next_world, value = await run_event(registry, args['event'].val, world.with_dry_run(True), from_)
        return next_world.with_dry_run(previous), value

    async def alias(world, from_, args):
        name, address = args['name'].val, args['address'].val
        return Effect(world.with_alias(name, address), f"Aliased {name} to {address}")

    async def register(world, from_, args):
        contract = Contract(args['name'].val, args['kind'].val, args['address'].val)
        return Effect(
            world.with_contract(contract),
            f"Registered {contract.kind} {contract.name} at {contract.address}",
        )

    async def print_message(world, from_, args):
        message = args['message'].val
        world.emit(message)
        return Effect(world, f"Printed: {message}")

    async def help_view(world, args):
        scope = args['scope'].val
        entries = [{'usage': usage, 'doc': doc} for usage, doc in registry.help(scope)]
        if not entries and scope and not registry.has_scope(scope):
            world.emit(f"No commands in scope '{scope}'. Scopes: {', '.join(registry.scopes())}")
        for entry in entries:
            world.emit(f"{(scope + ' ') if scope else ''}{entry['usage']}")
        return entries

    return [
        Command("""
            #### From

            * "From <User> <Event>" - Runs the event as the given user
              * E.g. "From Geoff (Comptroller AcceptAdmin)"
            """,
            "From",
            [
                Arg("account", get_address_v),
                Arg("event", get_event_v, variadic=True),
            ],
            from_account,
        ),
        Command("""
            #### DryRun

            * "DryRun <Event>" - Runs the event without sending state-changing calls
              * E.g. "DryRun (Comptroller SupportMarket bZRX)"
            """,
            "DryRun",
            [Arg("event", get_event_v, variadic=True)],
            dry_run,
        ),
        Command("""
            #### Alias

            * "Alias <Name> <Address>" - Names an address in action descriptions
            """,
            "Alias",
            [
                Arg("name", get_string_v),
                Arg("address", get_address_v),
            ],
            alias,
        ),
        Command("""
            #### Register

            * "Register <Kind> <Name> <Address>" - Records a deployed contract handle
              * E.g. "Register BToken bZRX 0x..."
            """,
            "Register",
            [
                Arg("kind", _get_kind),
                Arg("name", get_string_v),
                Arg("address", get_address_v),
            ],
            register,
        ),
        Command("""
            #### Print

            * "Print <Message...>" - Prints a line
            """,
            "Print",
            [Arg("message", _get_message, variadic=True)],
            print_message,
        ),
        View("""
            #### Help

            * "Help [Scope]" - Lists the commands of a scope (core commands by default)
            """,
            "Help",
            [Arg("scope", get_string_v, default=StringV(""))],
            help_view,
        ),
    ]


def default_registry() -> CommandRegistry:
    from scen.scen_comptroller import comptroller_commands

    registry = CommandRegistry()
    registry.register("", *core_commands(registry))
    registry.register("Comptroller", *comptroller_commands())
    return registry


# ===================================================================
# 4. Runner
# ===================================================================

class ScenarioRunner:
    """Parses scenario lines and threads one World through them."""

    _parser: Optional[Parser] = None
    _transformer: Optional[ScenarioTransformer] = None

    def __init__(self, registry: Optional[CommandRegistry] = None, world: Optional[World] = None,
                 config=None):
        if ScenarioRunner._parser is None:
            grammar_path = Path(__file__).parent / "scen_grammar.yaml"
            ScenarioRunner._parser = Parser.from_file(str(grammar_path))
        if ScenarioRunner._transformer is None:
            ScenarioRunner._transformer = ScenarioTransformer()

        self.parser = ScenarioRunner._parser
        self.transformer = ScenarioRunner._transformer
        self.registry = registry if registry is not None else default_registry()
        self.config = config
        if world is None:
            world = config.build_world() if config is not None else World()
        self.world = world

    def parse_line(self, text: str) -> List[Token]:
        parse_out = self.parser.parse(text)
        if isinstance(parse_out, dict) and 'status' in parse_out:
            if parse_out.get('status') != 'success':
                raise ParseError(parse_out.get('message') or "parse failed")
            ast_node = parse_out.get('ast')
        else:
            ast_node = parse_out
        if ast_node is None:
            raise ParseError("missing AST in parser result")
        event = self.transformer.transform(ast_node)
        if not event:
            raise ParseError("empty instruction")
        return event

    def parse_script(self, source: str) -> List[Tuple[int, str]]:
        """Instruction lines with their 1-based line numbers."""
        lines = []
        for line_no, raw in enumerate(source.splitlines(), start=1):
            text = raw.strip()
            if not text or text.startswith(COMMENT_PREFIXES):
                continue
            lines.append((line_no, text))
        return lines

    async def execute(self, event: List[Token], world: World) -> Tuple[World, Step]:
        before = len(world.actions)
        next_world, value = await run_event(self.registry, event, world)
        kind = 'command' if len(next_world.actions) > before else 'view'
        return next_world, Step(0, format_event(event), kind, value)

    async def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script. Never raises for script failures."""
        side_effects: List[Dict] = []
        world = dataclasses.replace(self.world, side_effects=side_effects)
        steps: List[Step] = []
        line_no: Optional[int] = None

        try:
            for line_no, text in self.parse_script(source_code):
                _dbg("line", line_no, text)
                event = self.parse_line(text)
                world, step = await self.execute(event, world)
                step.line, step.source = line_no, text
                steps.append(step)
        except ScenarioError as e:
            if isinstance(e, ExternalInvocationFailure) and e.world is not None:
                world = e.world
            return self._halt(world, steps, e.kind, str(e), line_no, side_effects)
        except Exception as e:
            _dbg("internal error", repr(e))
            return self._halt(world, steps, "InternalError", str(e) or type(e).__name__, line_no, side_effects)

        self.world = world
        return ExecutionResult(
            status='success',
            world=world,
            steps=steps,
            value=steps[-1].value if steps else None,
            side_effects=side_effects,
        )

    def _halt(self, world, steps, kind, message, line_no, side_effects) -> ExecutionResult:
        # Already-applied actions stay in the World handed back
        self.world = world
        result = ExecutionResult(
            status='error',
            world=world,
            steps=steps,
            error_kind=kind,
            error_message=message,
            error_line=line_no,
            side_effects=side_effects,
        )
        side_effects.append({'topics': ['stderr'], 'message': result.format_error()})
        return result
