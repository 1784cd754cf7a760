"""
Scenario configuration.

A config file (YAML or JSON) describes the network to drive and the names a
script may use:

    provider: http://localhost:8545/
    accounts: {Admin: "0x...", Geoff: "0x..."}   # the first is the default sender
    aliases: {Oracle: "0x..."}
    contracts:
      - {name: Comptroller, kind: Comptroller, address: "0x..."}
    dry_run: false
    timeout: 5.0
    retries: 2
    backoff: 0.2

`PROVIDER` and `SCEN_DRY_RUN` in the environment override the file.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from scen.scen_errors import ConfigError, MalformedValue
from scen.scen_invoke import Invoker, RpcInvoker
from scen.scen_serialize import deserialize
from scen.scen_values import AddressV
from scen.scen_world import Contract, World

_TRUTHY = ("1", "true", "yes", "on")


def _address(where: str, value: Any) -> str:
    try:
        return AddressV(str(value)).val
    except MalformedValue as e:
        raise ConfigError(f"{where}: {e}") from e


@dataclass
class ScenarioConfig:
    provider: Optional[str] = None
    accounts: Dict[str, str] = field(default_factory=dict)
    aliases: Dict[str, str] = field(default_factory=dict)
    contracts: List[Contract] = field(default_factory=list)
    dry_run: bool = False
    timeout: float = 5.0
    retries: int = 2
    backoff: float = 0.2

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'ScenarioConfig':
        data = dict(data or {})
        known = {f for f in cls.__dataclass_fields__}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown configuration key(s): {', '.join(unknown)}")

        accounts = {str(k): _address(f"accounts.{k}", v) for k, v in (data.get('accounts') or {}).items()}
        aliases = {str(k): _address(f"aliases.{k}", v) for k, v in (data.get('aliases') or {}).items()}
        contracts = []
        for i, entry in enumerate(data.get('contracts') or []):
            if not isinstance(entry, Mapping) or not {'name', 'kind', 'address'} <= set(entry):
                raise ConfigError(f"contracts[{i}]: expected a mapping with name, kind and address")
            contracts.append(Contract(
                str(entry['name']), str(entry['kind']), _address(f"contracts[{i}]", entry['address'])))

        try:
            config = cls(
                provider=data.get('provider'),
                accounts=accounts,
                aliases=aliases,
                contracts=contracts,
                dry_run=bool(data.get('dry_run', False)),
                timeout=float(data.get('timeout', 5.0)),
                retries=int(data.get('retries', 2)),
                backoff=float(data.get('backoff', 0.2)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid configuration value: {e}") from e
        if config.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {config.timeout}")
        if config.retries < 0:
            raise ConfigError(f"retries must not be negative, got {config.retries}")
        if config.backoff < 0:
            raise ConfigError(f"backoff must not be negative, got {config.backoff}")
        return config

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> 'ScenarioConfig':
        env = os.environ if environ is None else environ
        if env.get('PROVIDER'):
            self.provider = env['PROVIDER']
        if 'SCEN_DRY_RUN' in env:
            self.dry_run = env['SCEN_DRY_RUN'].strip().lower() in _TRUTHY
        return self

    def make_invoker(self) -> Optional[Invoker]:
        if not self.provider:
            return None
        return RpcInvoker(self.provider, timeout=self.timeout, retries=self.retries, backoff=self.backoff)

    def build_world(self, invoker: Optional[Invoker] = None, side_effects: Optional[List[Dict]] = None) -> World:
        """The initial World of a run. The first account is the default sender."""
        return World(
            accounts=dict(self.accounts),
            aliases=dict(self.aliases),
            contracts=tuple(self.contracts),
            dry_run=self.dry_run,
            default_from=next(iter(self.accounts.values()), None),
            invoker=invoker if invoker is not None else self.make_invoker(),
            side_effects=side_effects if side_effects is not None else [],
        )


def load_config(path: str, environ: Optional[Mapping[str, str]] = None) -> ScenarioConfig:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    try:
        data = deserialize(text, path=str(p))
    except ValueError as e:
        raise ConfigError(f"{path}: {e}") from e
    if data is not None and not isinstance(data, Mapping):
        raise ConfigError(f"{path}: expected a mapping at the top level")
    return ScenarioConfig.from_dict(data).apply_env(environ)
