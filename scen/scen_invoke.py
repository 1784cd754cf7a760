"""
The invocation boundary.

Handlers never talk to a ledger directly. They build a `CallDescriptor`, hand
it to `invoke()` together with the error reporter of the module they target,
and get back an `Invokation`: a success carrying the raw receipt, a failure
already decoded into `{code, detail}`, or a skip when the World is a dry run.
The concrete transport lives behind the `Invoker` interface.
"""

import asyncio
import itertools
import os
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

from scen.scen_errors import InvokerError
from scen.scen_reporter import DecodedFailure, ErrorReporter, NoErrorReporter


def _dbg(*parts):
    if os.environ.get("SCEN_DEBUG"):
        try:
            print("[DBG]", *parts, file=sys.stderr)
        except Exception:
            pass


# ===================================================================
# 1. Call / result records
# ===================================================================

@dataclass(frozen=True)
class CallDescriptor:
    """What to call: target address, method name and already-encoded args."""
    target: str
    method: str
    args: Tuple[Any, ...] = ()

    def to_wire(self) -> Dict[str, Any]:
        return {'target': self.target, 'method': self.method, 'args': list(self.args)}

    def show(self) -> str:
        return f"{self.method}({', '.join(str(a) for a in self.args)})"


@dataclass(frozen=True)
class Receipt:
    """Raw outcome reported by an Invoker.

    `failure` is the undecoded discriminant: a mapping such as
    `{'error': 9, 'info': 7, 'detail': 0}` or `{'message': 'revert ...'}`.
    """
    value: Any = None
    failure: Optional[Mapping[str, Any]] = None
    tx_hash: Optional[str] = None


@dataclass(frozen=True)
class Invokation:
    call: Optional[CallDescriptor] = None
    receipt: Optional[Receipt] = None
    error: Optional[DecodedFailure] = None
    skipped: bool = False

    @property
    def success(self) -> bool:
        return not self.skipped and self.error is None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def value(self) -> Any:
        return self.receipt.value if self.receipt is not None else None

    @property
    def tx_hash(self) -> Optional[str]:
        return self.receipt.tx_hash if self.receipt is not None else None


def first_failure(result: Any) -> Optional[Invokation]:
    """The first failed Invokation in a single result or a batch of them."""
    if isinstance(result, Invokation):
        return result if result.failed else None
    if isinstance(result, (list, tuple)):
        for item in result:
            failed = first_failure(item)
            if failed is not None:
                return failed
    return None


def all_skipped(result: Any) -> bool:
    if isinstance(result, Invokation):
        return result.skipped
    if isinstance(result, (list, tuple)) and result:
        return all(all_skipped(item) for item in result)
    return False


# ===================================================================
# 2. Invoker interface
# ===================================================================

class Invoker(ABC):
    """Transport to the external system driven by a scenario."""

    @abstractmethod
    async def send(self, call: CallDescriptor, from_: Optional[str]) -> Receipt:
        """State-changing call. Rejections come back as `Receipt.failure`."""

    @abstractmethod
    async def call(self, call: CallDescriptor) -> Any:
        """Read-only call returning the decoded return value."""

    @abstractmethod
    async def past_events(self, target: str, event: str) -> List[Dict[str, Any]]:
        """Past log entries named `event` emitted by `target`."""

    @abstractmethod
    async def deploy(self, kind: str, args: Sequence[Any], from_: Optional[str]) -> Receipt:
        """Creates a new contract; `Receipt.value` is its address."""


def _require_invoker(world) -> Invoker:
    invoker = getattr(world, 'invoker', None)
    if invoker is None:
        raise InvokerError("no invoker is configured for this world")
    return invoker


async def invoke(world, call: CallDescriptor, from_: Optional[str],
                 reporter: ErrorReporter = NoErrorReporter) -> Invokation:
    """Sends a state-changing call, decoding any failure through `reporter`."""
    if world.is_dry_run():
        _dbg("invoke skipped (dry run)", call.target, call.show())
        return Invokation(call=call, skipped=True)
    invoker = _require_invoker(world)
    _dbg("invoke", call.target, call.show(), "from", from_)
    receipt = await invoker.send(call, from_)
    if receipt.failure is not None:
        decoded = reporter.decode(receipt.failure)
        _dbg("invoke failed", call.show(), str(decoded))
        return Invokation(call=call, receipt=receipt, error=decoded)
    return Invokation(call=call, receipt=receipt)


async def invoke_deploy(world, kind: str, args: Sequence[Any], from_: Optional[str],
                        reporter: ErrorReporter = NoErrorReporter) -> Invokation:
    call = CallDescriptor("", f"deploy {kind}", tuple(args))
    if world.is_dry_run():
        _dbg("deploy skipped (dry run)", kind)
        return Invokation(call=call, skipped=True)
    invoker = _require_invoker(world)
    _dbg("deploy", kind, "args", list(args), "from", from_)
    receipt = await invoker.deploy(kind, list(args), from_)
    if receipt.failure is not None:
        return Invokation(call=call, receipt=receipt, error=reporter.decode(receipt.failure))
    return Invokation(call=call, receipt=receipt)


async def read(world, call: CallDescriptor) -> Any:
    """Read-only call. Dry-run does not affect reads."""
    _dbg("read", call.target, call.show())
    return await _require_invoker(world).call(call)


async def past_events(world, target: str, event: str) -> List[Dict[str, Any]]:
    _dbg("past_events", target, event)
    return await _require_invoker(world).past_events(target, event)


# ===================================================================
# 3. JSON-RPC transport
# ===================================================================

class RpcInvoker(Invoker):
    """JSON-RPC 2.0 client for a scenario node (methods `scen_send`, `scen_call`, ...)."""

    def __init__(self, url: str, *, timeout: float = 5.0, retries: int = 2,
                 backoff: float = 0.2, headers: Optional[Dict[str, str]] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        if int(retries) < 0:
            raise ValueError(f"retries must not be negative, got {retries}")
        self.url = url
        self.timeout = float(timeout)
        self.retries = int(retries)
        self.backoff = float(backoff)
        self.headers = dict(headers or {})
        self.transport = transport
        self._ids = itertools.count(1)

    async def _rpc(self, method: str, params: list) -> Dict[str, Any]:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport,
                                     follow_redirects=True) as client:
            for attempt in range(self.retries + 1):
                try:
                    resp = await client.post(self.url, json=payload, headers=self.headers)
                    resp.raise_for_status()
                    body = resp.json()
                    break
                except (httpx.HTTPError, ValueError) as e:
                    _dbg("rpc attempt failed", method, attempt, repr(e))
                    if attempt < self.retries:
                        await asyncio.sleep(self.backoff * (2 ** attempt))
                        continue
                    raise InvokerError(
                        f"{method} to {self.url} failed after {self.retries + 1} attempt(s): {e}"
                    ) from e
        if not isinstance(body, dict) or ('result' not in body and 'error' not in body):
            raise InvokerError(f"malformed JSON-RPC response for {method}: {body!r}")
        return body

    @staticmethod
    def _error_message(body: Mapping) -> str:
        err = body.get('error') or {}
        if isinstance(err, Mapping):
            return str(err.get('message', err))
        return str(err)

    @staticmethod
    def _receipt(result: Any) -> Receipt:
        if not isinstance(result, Mapping):
            return Receipt(value=result)
        return Receipt(
            value=result.get('value'),
            failure=result.get('failure'),
            tx_hash=result.get('txHash'),
        )

    def _failed_receipt(self, body: Mapping) -> Receipt:
        err = body.get('error') or {}
        data = err.get('data') if isinstance(err, Mapping) else None
        if isinstance(data, Mapping):
            return Receipt(failure=data)
        return Receipt(failure={'message': self._error_message(body)})

    async def send(self, call: CallDescriptor, from_: Optional[str]) -> Receipt:
        body = await self._rpc("scen_send", [call.to_wire(), from_])
        if 'error' in body:
            return self._failed_receipt(body)
        return self._receipt(body['result'])

    async def call(self, call: CallDescriptor) -> Any:
        body = await self._rpc("scen_call", [call.to_wire()])
        if 'error' in body:
            raise InvokerError(f"call {call.show()} failed: {self._error_message(body)}")
        return body['result']

    async def past_events(self, target: str, event: str) -> List[Dict[str, Any]]:
        body = await self._rpc("scen_pastEvents", [target, event])
        if 'error' in body:
            raise InvokerError(f"past events {event} failed: {self._error_message(body)}")
        return list(body['result'] or [])

    async def deploy(self, kind: str, args: Sequence[Any], from_: Optional[str]) -> Receipt:
        body = await self._rpc("scen_deploy", [kind, list(args), from_])
        if 'error' in body:
            return self._failed_receipt(body)
        return self._receipt(body['result'])
