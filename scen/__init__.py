from scen.scen_command import Arg, Command, CommandRegistry, Effect, NO_DEFAULT, View, bind_args
from scen.scen_config import ScenarioConfig, load_config
from scen.scen_errors import (
    ArityError,
    BindingError,
    CommandDefinitionError,
    ConfigError,
    ExternalInvocationFailure,
    IncompatibleScale,
    InvokerError,
    MalformedValue,
    MissingImplicitArgument,
    NoMatchingOverload,
    ParseError,
    ScenarioError,
)
from scen.scen_invoke import CallDescriptor, Invokation, Invoker, Receipt, RpcInvoker, invoke
from scen.scen_reporter import (
    ComptrollerErrorReporter,
    DecodedFailure,
    ErrorReporter,
    NoErrorReporter,
    TokenErrorReporter,
)
from scen.scen_runtime import ExecutionResult, ScenarioRunner, Step, default_registry, split_instruction
from scen.scen_values import AddressV, BoolV, EventV, ListV, NumberV, StringV, Value
from scen.scen_world import Action, Contract, World
