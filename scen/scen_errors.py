"""
Error taxonomy for the scenario interpreter.

Every failure below the dispatcher is raised as one of these typed errors.
The dispatcher aggregates binding failures, and the ScenarioRunner is the
single place that turns any of them into a halted script.
"""

from typing import Any, List, Optional


class ScenarioError(Exception):
    """Base class for all structured scenario failures."""

    @property
    def kind(self) -> str:
        return type(self).__name__


# =================================================================
# Value and binding errors
# =================================================================

class BindingError(ScenarioError):
    """A token stream could not be bound against an argument spec list."""


class MalformedValue(BindingError):
    """A token does not match the lexical rules of its declared Value variant."""
    def __init__(self, expected: str, token: Any, reason: Optional[str] = None):
        self.expected = expected
        self.token = token
        msg = f"expected {expected}, got {token!r}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class ArityError(BindingError):
    def __init__(self, message: str, expected: Optional[str] = None, got: Optional[int] = None):
        super().__init__(message)
        self.expected = expected
        self.got = got


class MissingImplicitArgument(BindingError):
    def __init__(self, name: str, reason: Optional[str] = None):
        self.name = name
        msg = f"could not resolve implicit argument '{name}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class IncompatibleScale(ScenarioError):
    """Two Numbers of different fixed-point scale were combined."""
    def __init__(self, op: str, left_scale: int, right_scale: int):
        self.op = op
        self.left_scale = left_scale
        self.right_scale = right_scale
        super().__init__(f"cannot {op} numbers of scale {left_scale} and {right_scale}")


# =================================================================
# Registration, dispatch and invocation errors
# =================================================================

class CommandDefinitionError(ScenarioError):
    """A CommandSpec was rejected at registration time."""


class NoMatchingOverload(ScenarioError):
    """No registered candidate for an instruction bound successfully."""
    def __init__(self, scope: str, name: str, failures: Optional[List[tuple]] = None):
        self.scope = scope
        self.name = name
        # [(command, BindingError), ...] in registration order
        self.failures = list(failures or [])
        target = f"{scope} {name}" if scope else name
        if not self.failures:
            msg = f"unknown instruction '{target}'"
        else:
            reasons = "; ".join(
                f"#{i + 1} {cmd.usage()}: {err.kind}: {err}"
                for i, (cmd, err) in enumerate(self.failures)
            )
            msg = f"no overload of '{target}' matched the given arguments ({reasons})"
        super().__init__(msg)


class ExternalInvocationFailure(ScenarioError):
    """The invocation boundary rejected a call; code/detail come from the ErrorReporter."""
    def __init__(self, code: str, detail: str, description: str = "", world: Any = None):
        self.code = code
        self.detail = detail
        self.description = description
        # World including the action entry recording this failure
        self.world = world
        msg = f"{code}: {detail}" if detail else code
        if description:
            msg = f"{description} failed with {msg}"
        super().__init__(msg)


class InvokerError(ScenarioError):
    """The transport behind the invocation boundary could not complete a request."""


class ParseError(ScenarioError):
    """A script line could not be parsed into an instruction."""


class ConfigError(ScenarioError):
    """A configuration file is missing, unreadable or has invalid entries."""
