import pytest

from scen.scen_errors import InvokerError
from scen.scen_invoke import Invoker, Receipt
from scen.scen_runtime import ScenarioRunner
from scen.scen_world import Contract, World

ADMIN = "0x" + "1" * 40
GEOFF = "0x" + "2" * 40
TORREY = "0x" + "3" * 40
COBURN = "0x" + "4" * 40
COMPTROLLER = "0x" + "c" * 40
BZRX = "0x" + "d" * 40
BBAT = "0x" + "e" * 40

E18 = 10 ** 18


class FakeLedger(Invoker):
    """In-memory stand-in for a node running a Comptroller and two markets."""

    def __init__(self):
        self.sent = []
        self.reads = []
        self.deployed = []
        self.events = []
        self.liquidity = {}
        self.failures = {}
        self.block = 100000
        self._next_address = 1

    async def send(self, call, from_):
        self.sent.append((call, from_))
        if call.method in self.failures:
            return Receipt(failure=self.failures[call.method])
        value = None
        if call.method == "fastForward":
            self.block += int(call.args[0])
            value = self.block
        elif call.method == "enterMarkets":
            for market in call.args[0]:
                self.events.append({
                    'target': call.target,
                    'event': 'MarketEntered',
                    'returnValues': {'bToken': market, 'account': from_},
                })
        return Receipt(value=value, tx_hash="0x%064x" % len(self.sent))

    async def call(self, call):
        self.reads.append(call)
        if call.method == "getAccountLiquidity":
            return list(self.liquidity.get(call.args[0], (0, 0, 0)))
        raise InvokerError(f"unsupported read {call.method}")

    async def past_events(self, target, event):
        return [e for e in self.events if e['target'] == target and e['event'] == event]

    async def deploy(self, kind, args, from_):
        address = "0x%040x" % self._next_address
        self._next_address += 1
        self.deployed.append((kind, list(args), from_))
        return Receipt(value=address, tx_hash="0x%064x" % self._next_address)

    def methods(self):
        return [call.method for call, _ in self.sent]


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def world(ledger):
    return World(
        accounts={'Admin': ADMIN, 'Geoff': GEOFF, 'Torrey': TORREY, 'Coburn': COBURN},
        contracts=(
            Contract("Comptroller", "Comptroller", COMPTROLLER),
            Contract("bZRX", "BToken", BZRX),
            Contract("bBAT", "BToken", BBAT),
        ),
        default_from=ADMIN,
        invoker=ledger,
    )


@pytest.fixture
def runner(world):
    return ScenarioRunner(world=world)


def stdout_lines(result):
    return [e['message'] for e in result.side_effects if e['topics'] == ['stdout']]
