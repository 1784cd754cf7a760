"""
The World: the explicit state record threaded through every instruction.

A World is never mutated in place by a handler. Every accessor that changes
state returns a new World (copy-on-write of the small tables it holds), so the
value a handler returns is the only live owner of the script state. The
invoker and the side-effect sink are shared handles, not state.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from scen.scen_errors import MissingImplicitArgument
from scen.scen_values import Value

ZERO_ADDRESS = "0x" + "0" * 40


@dataclass(frozen=True)
class Contract(Value):
    """A live handle on a deployed contract-like object."""
    name: str
    kind: str
    address: str

    tag = "contract"

    def encode(self) -> str:
        return self.address

    def show(self) -> str:
        return self.name


@dataclass(frozen=True)
class Action:
    """One action-log entry: what happened, and the raw invocation behind it."""
    description: str
    invokation: Any = None


@dataclass(frozen=True)
class World:
    actions: Tuple[Action, ...] = ()
    accounts: Mapping[str, str] = field(default_factory=dict)
    aliases: Mapping[str, str] = field(default_factory=dict)
    contracts: Tuple[Contract, ...] = ()
    dry_run: bool = False
    default_from: Optional[str] = None
    invoker: Any = None
    side_effects: List[Dict] = field(default_factory=list, compare=False)

    # --- Action log ---
    def with_action(self, description: str, invokation: Any = None) -> 'World':
        return dataclasses.replace(self, actions=self.actions + (Action(description, invokation),))

    @property
    def last_action(self) -> Optional[Action]:
        return self.actions[-1] if self.actions else None

    # --- Flags ---
    def is_dry_run(self) -> bool:
        return self.dry_run

    def with_dry_run(self, flag: bool) -> 'World':
        return dataclasses.replace(self, dry_run=bool(flag))

    # --- Aliases / settings ---
    def lookup_alias(self, address: str) -> str:
        """Human-readable name for an address, or the address itself."""
        addr = str(address).lower()
        for table in (self.aliases, self.accounts):
            for name, value in table.items():
                if value.lower() == addr:
                    return name
        for contract in reversed(self.contracts):
            if contract.address.lower() == addr:
                return contract.name
        return str(address)

    def describe_user(self, address: Optional[str]) -> str:
        if address is None:
            return "<unknown>"
        alias = self.lookup_alias(address)
        if alias != str(address):
            return f"{alias} ({address})"
        return str(address)

    def resolve_address(self, name: str) -> Optional[str]:
        if name in self.accounts:
            return self.accounts[name]
        if name in self.aliases:
            return self.aliases[name]
        contract = self.find_contract(name)
        if contract is not None:
            return contract.address
        return None

    def with_alias(self, name: str, address: str) -> 'World':
        aliases = dict(self.aliases)
        aliases[name] = address.lower()
        return dataclasses.replace(self, aliases=aliases)

    # --- Contracts (lookup boundary) ---
    def with_contract(self, contract: Contract) -> 'World':
        return dataclasses.replace(self, contracts=self.contracts + (contract,))

    def find_contract(self, name_or_address: str, kind: Optional[str] = None) -> Optional[Contract]:
        """Most recently registered contract matching a name or address."""
        key = str(name_or_address).lower()
        for contract in reversed(self.contracts):
            if kind is not None and contract.kind != kind:
                continue
            if contract.name == name_or_address or contract.address.lower() == key:
                return contract
        return None

    def latest_contract(self, kind: str) -> Optional[Contract]:
        for contract in reversed(self.contracts):
            if contract.kind == kind:
                return contract
        return None

    # --- Output ---
    def emit(self, message: str, topic: str = "stdout") -> None:
        self.side_effects.append({'topics': [topic], 'message': message})


def contract_resolver(kind: str):
    """Builds an implicit-argument resolver returning the latest contract of `kind`."""
    def resolve(world: World, bound: Mapping[str, Any]) -> Contract:
        contract = world.latest_contract(kind)
        if contract is None:
            raise MissingImplicitArgument(kind.lower(), f"no {kind} has been deployed or registered")
        return contract
    resolve.__name__ = f"get_{kind.lower()}"
    return resolve
