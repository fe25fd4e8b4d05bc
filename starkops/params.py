import json
import typing
from abc import ABC, abstractmethod
from collections import OrderedDict
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

from starkops.calldata import (
    Uint256,
    compile_calldata,
    get_selector_from_name,
    to_felt,
)
from starkops.confirm import _confirm_resolution, _continue
from starkops.constants import (
    CLASS_ALREADY_DECLARED,
    CONTRACT_DEPLOYED_EVENT,
    DECLARE_POLL_INTERVAL,
    UDC_ADDRESS,
    UDC_DEPLOY_ENTRYPOINT,
)
from starkops.errors import (
    DeploymentConfigError,
    MalformedResponse,
    RpcError,
    StarkOpsError,
    Unconfirmed,
)
from starkops.executor import PendingOperation, ResilientExecutor, Signer
from starkops.registry import DeploymentRecord, PendingDeployment, RegistryEntry
from starkops.utils import _load_json, _load_yaml, validate_config

CONTRACT_CONSTRUCTOR_PARAMETER_KEY = "constructor"
CONTRACT_INITIALIZE_PARAMETER_KEY = "initialize"

SIERRA_CLASS_FIELDS = ("sierra_program", "contract_class_version", "entry_points_by_type", "abi")


class VariableContext:
    def __init__(
        self,
        contract_names: List[str],
        contract_name: str,
        deployer: int,
        constants: typing.Dict[str, Any] = None,
    ):
        # only contracts that appear earlier in the plan can be referenced
        self.contract_names = contract_names or list()
        self.contract_name = contract_name
        self.deployer = deployer
        self.constants = constants or dict()
        self.dependencies: List[str] = list()


# Variables


class Variable(ABC):
    VARIABLE_PREFIX = "$"

    @abstractmethod
    def resolve(self, record: DeploymentRecord) -> Any:
        raise NotImplementedError

    @classmethod
    def is_variable(cls, param: Any) -> bool:
        """Returns True if the param is a variable."""
        result = isinstance(param, str) and param.startswith(cls.VARIABLE_PREFIX)
        return result


class DeployerAccount(Variable):
    DEPLOYER_INDICATOR = "deployer"

    def __init__(self, context: VariableContext):
        self.address = context.deployer

    @classmethod
    def is_deployer(cls, value: str) -> bool:
        """Returns True if the variable is a special deployer variable."""
        return value == cls.DEPLOYER_INDICATOR

    def resolve(self, record: DeploymentRecord) -> Any:
        return self.address


class Constant(Variable):
    def __init__(self, constant_name: str, context: VariableContext):
        try:
            self.constant_value = context.constants[constant_name]
        except KeyError:
            raise DeploymentConfigError(f"Constant '{constant_name}' not found in plan file.")

    @classmethod
    def is_constant(cls, value: str) -> bool:
        """Returns True if the variable is a plan constant."""
        return value.isupper()

    def resolve(self, record: DeploymentRecord) -> Any:
        return self.constant_value


class U256(Variable):
    U256_PREFIX = "u256:"

    def __init__(self, variable: str, context: VariableContext):
        raw_value = variable[len(self.U256_PREFIX) :]
        if Constant.is_constant(raw_value):
            raw_value = Constant(raw_value, context).constant_value
        try:
            self.value = Uint256.from_int(int(raw_value))
        except (TypeError, ValueError) as e:
            raise DeploymentConfigError(
                f"Invalid u256 value '{raw_value}' for {context.contract_name}: {e}"
            )

    @classmethod
    def is_u256(cls, value: str) -> bool:
        """Returns True if the variable is a value to send as two 128-bit limbs."""
        return value.startswith(cls.U256_PREFIX)

    def resolve(self, record: DeploymentRecord) -> Any:
        return self.value


class ContractName(Variable):
    def __init__(self, contract_name: str, context: VariableContext):
        if contract_name not in context.contract_names:
            raise DeploymentConfigError(
                f"Contract name {contract_name} referenced by {context.contract_name} "
                "is not deployed earlier in the plan"
            )
        self.contract_name = contract_name
        if contract_name != context.contract_name:
            context.dependencies.append(contract_name)

    def resolve(self, record: DeploymentRecord) -> Any:
        """Resolves a contract address."""
        return record.address_of(self.contract_name)


def _resolve_param(value: Any, record: DeploymentRecord) -> Any:
    """Resolves a single parameter value, or a list or struct of parameter values."""
    if isinstance(value, list):
        return [_resolve_param(v, record) for v in value]

    if isinstance(value, dict):
        return OrderedDict((k, _resolve_param(v, record)) for k, v in value.items())

    if isinstance(value, Variable):
        return value.resolve(record)

    return value  # literally a value


def _variable_from_value(variable: Any, context: VariableContext) -> Variable:
    variable = variable[len(Variable.VARIABLE_PREFIX) :]
    if DeployerAccount.is_deployer(variable):
        return DeployerAccount(context)
    elif U256.is_u256(variable):
        return U256(variable, context)
    elif Constant.is_constant(variable):
        return Constant(variable, context)
    else:
        return ContractName(variable, context)


def _process_raw_value(value: Any, variable_context: VariableContext) -> Any:
    if isinstance(value, list):
        return [_process_raw_value(v, variable_context) for v in value]

    if isinstance(value, dict):
        return OrderedDict((k, _process_raw_value(v, variable_context)) for k, v in value.items())

    if Variable.is_variable(value):
        value = _variable_from_value(value, variable_context)

    return value


# Steps


class ClassArtifact(NamedTuple):
    """The class a step deploys, identified by its expected class hash."""

    class_hash: int
    compiled_class_hash: Optional[int] = None
    sierra: Optional[Path] = None

    def load_contract_class(self, name: Optional[str] = None) -> Dict[str, Any]:
        """Loads the sierra class in the shape starknet_addDeclareTransaction expects."""
        label = f"{name}: " if name else ""
        if self.sierra is None or self.compiled_class_hash is None:
            raise DeploymentConfigError(
                f"{label}Class {hex(self.class_hash)} is not declared and the plan has no "
                "'sierra' file and 'compiled_class_hash' to declare it."
            )
        try:
            sierra = _load_json(self.sierra)
        except (OSError, ValueError) as e:
            raise DeploymentConfigError(f"{label}cannot read sierra file {self.sierra}: {e}") from e
        if not isinstance(sierra, dict):
            raise DeploymentConfigError(f"{label}{self.sierra} is not a sierra contract class.")
        missing = [field for field in SIERRA_CLASS_FIELDS if field not in sierra]
        if missing:
            raise DeploymentConfigError(f"{label}{self.sierra} is missing {', '.join(missing)}.")
        contract_class = {field: sierra[field] for field in SIERRA_CLASS_FIELDS}
        if not isinstance(contract_class["abi"], str):
            contract_class["abi"] = json.dumps(contract_class["abi"])
        return contract_class


class Initializer(NamedTuple):
    entrypoint: str
    arguments: Callable[[DeploymentRecord], Any]


class StepSpec(NamedTuple):
    """
    A single declare -> deploy -> initialize step. `constructor` and the
    initializer arguments are evaluated lazily against the record built so far.
    """

    name: str
    artifact: ClassArtifact
    constructor: Callable[[DeploymentRecord], Any]
    depends_on: Tuple[str, ...] = ()
    initialize: Optional[Initializer] = None


def validate_steps(steps: Sequence[StepSpec]) -> None:
    """Checks names are unique and dependencies point to earlier steps."""
    seen = list()
    for step in steps:
        if step.name in seen:
            raise DeploymentConfigError(f"Step '{step.name}' appears more than once.")
        for dependency in step.depends_on:
            if dependency not in seen:
                raise DeploymentConfigError(
                    f"Step '{step.name}' depends on '{dependency}' which is not an earlier step."
                )
        seen.append(step.name)


class PlanParameters:
    """Represents the ordered deployment steps of a plan."""

    def __init__(self, steps: List[StepSpec]):
        validate_steps(steps)
        self.steps = steps

    @classmethod
    def from_config(
        cls, config: typing.Dict, deployer: int, base_path: Optional[Path] = None
    ) -> "PlanParameters":
        """Loads the deployment steps from a plan config."""
        print("Processing plan parameters...")
        constants = config.get("constants")
        contract_names: List[str] = list()
        steps = list()
        for contract_info in config["contracts"]:
            if not isinstance(contract_info, dict) or len(contract_info) != 1:
                raise DeploymentConfigError("Malformed plan YAML.")

            contract_name = list(contract_info.keys())[0]  # only one entry
            contract_data = contract_info[contract_name]
            if not isinstance(contract_data, dict):
                raise DeploymentConfigError(f"Malformed plan entry for {contract_name}.")

            context = VariableContext(
                contract_names=list(contract_names),
                contract_name=contract_name,
                deployer=deployer,
                constants=constants,
            )
            constructor_values = cls._process_parameters(contract_data, context)
            initializer = cls._process_initializer(contract_data, contract_names, context)
            steps.append(
                StepSpec(
                    name=contract_name,
                    artifact=cls._process_artifact(contract_name, contract_data, base_path),
                    constructor=partial(_resolve_param, constructor_values),
                    depends_on=tuple(OrderedDict.fromkeys(context.dependencies)),
                    initialize=initializer,
                )
            )
            contract_names.append(contract_name)

        return cls(steps=steps)

    @classmethod
    def _process_parameters(cls, contract_data: Dict, context: VariableContext) -> OrderedDict:
        parameters = contract_data.get(CONTRACT_CONSTRUCTOR_PARAMETER_KEY) or OrderedDict()
        if not isinstance(parameters, dict):
            raise DeploymentConfigError(
                f"Constructor parameters of {context.contract_name} must be a mapping."
            )
        return _process_raw_value(parameters, context)

    @classmethod
    def _process_initializer(
        cls, contract_data: Dict, contract_names: List[str], context: VariableContext
    ) -> Optional[Initializer]:
        initialize_data = contract_data.get(CONTRACT_INITIALIZE_PARAMETER_KEY)
        if initialize_data is None:
            return None
        if not isinstance(initialize_data, dict) or "entrypoint" not in initialize_data:
            raise DeploymentConfigError(
                f"Initializer of {context.contract_name} must name an 'entrypoint'."
            )
        # the initializer may also reference the contract it initializes
        context.contract_names = contract_names + [context.contract_name]
        arguments = _process_raw_value(initialize_data.get("calldata") or OrderedDict(), context)
        return Initializer(
            entrypoint=initialize_data["entrypoint"],
            arguments=partial(_resolve_param, arguments),
        )

    @classmethod
    def _process_artifact(
        cls, contract_name: str, contract_data: Dict, base_path: Optional[Path]
    ) -> ClassArtifact:
        if "class_hash" not in contract_data:
            raise DeploymentConfigError(f"class_hash is not set for {contract_name}.")
        try:
            class_hash = to_felt(contract_data["class_hash"])
            compiled_class_hash = contract_data.get("compiled_class_hash")
            if compiled_class_hash is not None:
                compiled_class_hash = to_felt(compiled_class_hash)
        except (TypeError, ValueError) as e:
            raise DeploymentConfigError(f"Invalid class hash for {contract_name}: {e}")

        sierra = contract_data.get("sierra")
        if sierra is not None:
            sierra = Path(sierra)
            if not sierra.is_absolute() and base_path is not None:
                sierra = base_path / sierra
        return ClassArtifact(
            class_hash=class_hash, compiled_class_hash=compiled_class_hash, sierra=sierra
        )


class Transactor:
    """
    Represents a signer plus validated/annotated transaction execution.
    """

    def __init__(self, executor: ResilientExecutor, signer: Signer, autosign: bool = False):
        self.executor = executor
        self._signer = signer
        if autosign:
            print("WARNING: Autosign is enabled. Transactions will be signed automatically.")
        self._autosign = autosign

    @property
    def address(self) -> int:
        return self._signer.address

    def get_signer(self) -> Signer:
        """Returns the transactor signer."""
        return self._signer

    def transact(
        self,
        contract: int,
        entrypoint: str,
        calldata: Sequence[int] = (),
        name: Optional[str] = None,
    ) -> PendingOperation:
        """Submits a write and waits for it to be confirmed."""
        label = name or "contract"
        base_message = f"\nTransacting {label}[{hex(contract)[:10]}].{entrypoint}"
        if calldata:
            pretty_args = "\n\t".join(hex(value) for value in calldata)
            message = f"{base_message} with calldata:\n\t{pretty_args}"
        else:
            message = f"{base_message} with no arguments"
        print(message)
        if not self._autosign:
            _continue()

        operation = self.executor.submit_write(contract, entrypoint, calldata, self._signer)
        self.executor.await_confirmation(operation)
        return operation


# Orchestration

BLOCKED = "blocked"
DECLARE = "declare"
DEPLOY = "deploy"
INITIALIZE = "initialize"


class StepFailure(NamedTuple):
    name: str
    phase: str
    error: Optional[Exception] = None
    missing: Tuple[str, ...] = ()
    address: Optional[int] = None

    @property
    def unconfirmed(self) -> bool:
        return isinstance(self.error, Unconfirmed)

    def describe(self) -> str:
        if self.phase == BLOCKED:
            return f"{self.name}: blocked by {', '.join(self.missing)}"
        outcome = "unconfirmed" if self.unconfirmed else "failed"
        return f"{self.name}: {self.phase} {outcome} - {self.error}"


class DeploymentResult(NamedTuple):
    record: DeploymentRecord
    failures: Dict[str, StepFailure]

    @property
    def succeeded(self) -> bool:
        return not self.failures


class Deployer(Transactor):
    """
    Represents a signer plus the deployment steps of a plan,
    plus validated/annotated, resumable execution.
    """

    def __init__(
        self,
        config: typing.Dict,
        path: Optional[Path],
        executor: ResilientExecutor,
        signer: Signer,
        chain_id: str,
        autosign: bool = False,
        registry_filepath: Optional[Path] = None,
    ):
        super().__init__(executor=executor, signer=signer, autosign=autosign)

        self.path = path
        self.config = config
        self.chain_id = chain_id
        self.registry_filepath = validate_config(config=self.config, chain_id=chain_id)
        if registry_filepath is not None:
            self.registry_filepath = registry_filepath
        base_path = path.parent if path else None
        self.plan = PlanParameters.from_config(
            self.config, deployer=signer.address, base_path=base_path
        )
        self._last_salt = 0
        self._print_deployment_info()

        if not self._autosign:
            # Confirms the start of the deployment.
            _continue()

    @classmethod
    def from_yaml(cls, filepath: Path, *args, **kwargs) -> "Deployer":
        config = _load_yaml(filepath)
        return cls(config=config, path=filepath, *args, **kwargs)

    @property
    def steps(self) -> List[StepSpec]:
        return self.plan.steps

    def _next_salt(self) -> int:
        """Time-derived salt, strictly increasing within this deployer."""
        salt = max(int(self.executor.clock() * 1000), self._last_salt + 1)
        self._last_salt = salt
        return salt

    def run(self, steps: Optional[Sequence[StepSpec]] = None) -> DeploymentResult:
        """
        Runs the steps in order against the persisted record; recorded steps are skipped.
        A failed step only blocks the steps that depend on it.
        """
        steps = self.steps if steps is None else list(steps)
        record = DeploymentRecord.load(self.registry_filepath, chain_id=self.chain_id)
        failures: Dict[str, StepFailure] = OrderedDict()

        for step in steps:
            if step.name in record:
                entry = record[step.name]
                if step.initialize is None or entry.initialized:
                    print(f"(i) {step.name} already deployed at {hex(entry.address)}, skipping")
                    continue
                print(f"(i) {step.name} already deployed at {hex(entry.address)}, initializing")
                phase = INITIALIZE
            elif step.name in record.pending:
                tx_hash = record.pending[step.name].tx_hash
                print(
                    f"(i) {step.name} deploy {hex(tx_hash)} was confirmed earlier, "
                    "reading its address"
                )
                phase = DEPLOY
            else:
                missing = tuple(name for name in step.depends_on if name not in record)
                if missing:
                    print(f"(!) {step.name} is blocked by {', '.join(missing)}")
                    failures[step.name] = StepFailure(step.name, BLOCKED, missing=missing)
                    continue
                phase = DECLARE

            try:
                if phase == DECLARE:
                    class_hash = self.declare(step)
                    phase = DEPLOY
                    self.deploy(step, class_hash=class_hash, record=record)
                elif phase == DEPLOY:
                    self.record_deployment(step, record.pending[step.name], record=record)
                phase = INITIALIZE
                if step.initialize is not None:
                    self.initialize(step, record=record)
            except StarkOpsError as e:
                print(f"(!) {step.name} {phase} failed: {e}")
                address = record.address_of(step.name) if step.name in record else None
                failures[step.name] = StepFailure(step.name, phase, error=e, address=address)

        return DeploymentResult(record=record, failures=failures)

    def declare(self, step: StepSpec) -> int:
        """Declares the step's class unless the network already knows it."""
        artifact = step.artifact
        if self.executor.class_exists(artifact.class_hash):
            print(f"(i) {step.name} class {hex(artifact.class_hash)} already declared")
            return artifact.class_hash

        contract_class = artifact.load_contract_class(name=step.name)
        print(f"\nDeclaring {step.name} class {hex(artifact.class_hash)}")
        if not self._autosign:
            _continue()
        try:
            operation = self.executor.submit_declare(
                contract_class, artifact.compiled_class_hash, self._signer
            )
        except RpcError as e:
            if e.code == CLASS_ALREADY_DECLARED:
                print(f"(i) {step.name} class {hex(artifact.class_hash)} already declared")
                return artifact.class_hash
            raise

        self.executor.await_confirmation(operation, poll_interval=DECLARE_POLL_INTERVAL)
        if operation.class_hash != artifact.class_hash:
            raise DeploymentConfigError(
                f"{step.name} was declared as {hex(operation.class_hash)} "
                f"but the plan expects {hex(artifact.class_hash)}"
            )
        return operation.class_hash

    def deploy(self, step: StepSpec, class_hash: int, record: DeploymentRecord) -> RegistryEntry:
        """Deploys through the Universal Deployer and appends the instance to the record."""
        resolved_params = step.constructor(record)
        try:
            constructor_calldata = compile_calldata(resolved_params)
        except (TypeError, ValueError) as e:
            raise DeploymentConfigError(f"Invalid constructor parameters for {step.name}: {e}")
        if not self._autosign:
            _confirm_resolution(resolved_params, step.name)

        salt = self._next_salt()
        deploy_calldata = compile_calldata([class_hash, salt, False, constructor_calldata])
        print(f"\nDeploying {step.name} (class {hex(class_hash)}, salt {salt})")
        operation = self.executor.submit_write(
            UDC_ADDRESS, UDC_DEPLOY_ENTRYPOINT, deploy_calldata, self._signer
        )
        self.executor.await_confirmation(operation)

        # pending until the instance address is read back
        pending = PendingDeployment(name=step.name, class_hash=class_hash, tx_hash=operation.tx_hash)
        record.add_pending(pending)
        record.save(self.registry_filepath)
        return self.record_deployment(step, pending, record=record)

    def record_deployment(
        self, step: StepSpec, pending: PendingDeployment, record: DeploymentRecord
    ) -> RegistryEntry:
        """Reads the instance address of a confirmed deploy and appends it to the record."""
        entry = RegistryEntry(
            chain_id=self.chain_id,
            name=step.name,
            class_hash=pending.class_hash,
            address=self._deployed_address(pending.tx_hash),
            tx_hash=pending.tx_hash,
            deployer=self.address,
            initialized=step.initialize is None,
        )
        record.add(entry)
        record.save(self.registry_filepath)
        print(f"(i) {step.name} deployed at {hex(entry.address)}")
        return entry

    def initialize(self, step: StepSpec, record: DeploymentRecord) -> PendingOperation:
        initializer = step.initialize
        try:
            calldata = compile_calldata(initializer.arguments(record))
        except (TypeError, ValueError) as e:
            raise DeploymentConfigError(f"Invalid initializer arguments for {step.name}: {e}")
        operation = self.transact(
            record.address_of(step.name), initializer.entrypoint, calldata, name=step.name
        )
        record.mark_initialized(step.name)
        record.save(self.registry_filepath)
        return operation

    def _deployed_address(self, tx_hash: int) -> int:
        receipt = self.executor.get_receipt(tx_hash)
        event_selector = get_selector_from_name(CONTRACT_DEPLOYED_EVENT)
        for event in receipt.get("events", []):
            try:
                if (
                    to_felt(event["from_address"]) == UDC_ADDRESS
                    and to_felt(event["keys"][0]) == event_selector
                ):
                    return to_felt(event["data"][0])
            except (KeyError, IndexError, TypeError, ValueError):
                continue
        raise MalformedResponse(
            f"receipt has no {CONTRACT_DEPLOYED_EVENT} event", operation=f"deploy {hex(tx_hash)}"
        )

    def _print_deployment_info(self):
        print(
            f"Account: {hex(self.address)}",
            f"Plan: {self.path}",
            f"Registry: {self.registry_filepath}",
            f"Chain ID: {self.chain_id}",
            f"Endpoints: {', '.join(self.executor.pool.names)}",
            f"Steps: {', '.join(step.name for step in self.steps)}",
            sep="\n",
        )
