"""Ordered, idempotent rollout of a contract suite.

Per contract::

    NOT_DEPLOYED -> INSTALLING -> INSTALLED (no init) | INIT_PENDING -> INITIALIZED | FAILED

A contract counts as installed when the deployer account holds its package
named key (or the manifest already lists it). Nothing is recorded in the
manifest before its install transaction is confirmed.
"""
import logging
import threading
import time
import typing as tp
from dataclasses import dataclass, field

import allure
import requests

from dexstate.codecs import Identifier
from dexstate.consts import DEFAULT_TX_WAIT_SLEEP, DEFAULT_TX_WAIT_TRIES, DeploymentState, FinalityStatus, ValueType
from dexstate.errors import (
    DeploymentError,
    DexStateError,
    FinalityTimeout,
    NoActiveVersion,
    TransactionFailure,
)
from dexstate.manifest import ContractHashes, DeploymentManifest
from dexstate.resolver import StateResolver
from dexstate.schemas import FieldDescriptor
from dexstate.submitter import SessionArg

LOG = logging.getLogger(__name__)


class _Deployer:
    def __repr__(self):
        return "DEPLOYER"


DEPLOYER = _Deployer()


@dataclass(frozen=True)
class ManifestRef:
    """Session arg value taken from a contract deployed earlier in the run."""

    name: str
    kind: str = "package"


@dataclass(frozen=True)
class InitCall:
    entry_point: str
    args: tp.Tuple[SessionArg, ...] = ()
    # reads a value once the call has been made
    done_field: tp.Optional[FieldDescriptor] = None


@dataclass(frozen=True)
class ContractSpec:
    name: str
    wasm_path: str
    package_key_name: str
    args: tp.Tuple[SessionArg, ...] = ()
    init: tp.Optional[InitCall] = None
    payment: tp.Optional[int] = None


@dataclass(frozen=True)
class CallSpec:
    target: str
    entry_point: str
    args: tp.Tuple[SessionArg, ...] = ()
    done_field: tp.Optional[FieldDescriptor] = None
    done_value: tp.Any = None

    @property
    def name(self) -> str:
        return f"{self.target}.{self.entry_point}"


@dataclass
class ContractHandle:
    name: str
    package_hash: Identifier
    contract_hash: Identifier
    state: DeploymentState
    transaction_hash: tp.Optional[str] = None


@dataclass(frozen=True)
class FinalityResult:
    status: FinalityStatus
    attempts: int
    message: tp.Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == FinalityStatus.SUCCESS


@dataclass
class DeploymentResult:
    manifest: DeploymentManifest
    handles: tp.List[ContractHandle] = field(default_factory=list)
    error_kind: tp.Optional[str] = None
    message: tp.Optional[str] = None
    failed_step: tp.Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None


def error_kind(exc: Exception) -> str:
    if isinstance(exc, TransactionFailure):
        return "failure"
    if isinstance(exc, FinalityTimeout):
        return "timeout"
    if isinstance(exc, DeploymentError):
        return exc.kind
    if isinstance(exc, NoActiveVersion):
        return "no_active_version"
    if isinstance(exc, requests.exceptions.RequestException):
        return "transport"
    return "error"


class DeploymentOrchestrator:
    def __init__(
        self,
        resolver: StateResolver,
        submitter,
        deployer: Identifier,
        manifest: tp.Optional[DeploymentManifest] = None,
        manifest_path: tp.Optional[str] = None,
        max_attempts: int = DEFAULT_TX_WAIT_TRIES,
        poll_interval: float = DEFAULT_TX_WAIT_SLEEP,
        cancel: tp.Optional[threading.Event] = None,
    ):
        self.resolver = resolver
        self.submitter = submitter
        self.deployer = deployer
        self.manifest = manifest if manifest is not None else DeploymentManifest()
        self.manifest_path = manifest_path
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self.cancel = cancel or threading.Event()

    def await_finality(
        self,
        tx_hash: str,
        max_attempts: tp.Optional[int] = None,
        poll_interval: tp.Optional[float] = None,
        deadline: tp.Optional[float] = None,
        cancel: tp.Optional[threading.Event] = None,
    ) -> FinalityResult:
        """Poll the transaction status until it is terminal.

        ``deadline`` is a ``time.monotonic()`` timestamp. A passed deadline,
        a set ``cancel`` event or ``max_attempts`` polls without a terminal
        status all give ``TIMEOUT``.
        """
        max_attempts = self.max_attempts if max_attempts is None else max_attempts
        poll_interval = self.poll_interval if poll_interval is None else poll_interval
        cancel = cancel or self.cancel
        attempts = 0
        with allure.step(f"Wait for transaction {tx_hash}"):
            while attempts < max_attempts:
                if cancel.is_set() or (deadline is not None and time.monotonic() >= deadline):
                    LOG.warning(f"Stopped waiting for {tx_hash} after {attempts} polls")
                    break
                attempts += 1
                status, message = self.submitter.status(tx_hash)
                if status == FinalityStatus.SUCCESS:
                    LOG.info(f"Transaction {tx_hash} succeeded after {attempts} polls")
                    return FinalityResult(FinalityStatus.SUCCESS, attempts)
                if status == FinalityStatus.FAILURE:
                    LOG.error(f"Transaction {tx_hash} failed: {message}")
                    return FinalityResult(FinalityStatus.FAILURE, attempts, message)
                if attempts == max_attempts:
                    break
                wait = poll_interval
                if deadline is not None:
                    wait = max(0.0, min(wait, deadline - time.monotonic()))
                if cancel.wait(wait):
                    LOG.warning(f"Waiting for {tx_hash} cancelled")
                    break
        return FinalityResult(FinalityStatus.TIMEOUT, attempts)

    def _confirm(self, tx_hash: str) -> FinalityResult:
        result = self.await_finality(tx_hash)
        if result.status == FinalityStatus.FAILURE:
            raise TransactionFailure(result.message, transaction_hash=tx_hash)
        if result.status == FinalityStatus.TIMEOUT:
            raise FinalityTimeout(tx_hash, attempts=result.attempts)
        return result

    def resolve_arg(self, arg: SessionArg) -> SessionArg:
        value = arg.value
        if value is DEPLOYER:
            value = self.deployer.formatted()
        elif isinstance(value, ManifestRef):
            if value.name not in self.manifest:
                raise DeploymentError(arg.name, f"{value.name} is not deployed yet", kind="dependency")
            hashes = self.manifest[value.name]
            value = hashes.contract_ref if value.kind == "contract" else hashes.package_ref
        elif isinstance(value, Identifier):
            value = value.formatted()
        elif isinstance(value, bool):
            value = "true" if value else "false"
        return SessionArg(arg.name, arg.cl_type, str(value))

    def _installed_package(self, spec: ContractSpec) -> tp.Optional[Identifier]:
        recorded = self.manifest.get(spec.name)
        if recorded is not None:
            return recorded.package_hash
        return self.resolver.read_named_value(self.deployer, spec.package_key_name, ValueType.ADDRESS)

    @allure.step("Ensure contract is deployed")
    def ensure_deployed(self, spec: ContractSpec) -> ContractHandle:
        package = self._installed_package(spec)
        tx_hash = None
        if package is None:
            args = [self.resolve_arg(arg) for arg in spec.args]
            LOG.info(f"Installing {spec.name} from {spec.wasm_path}")
            tx_hash = self.submitter.install(spec.wasm_path, spec.package_key_name, args, payment=spec.payment)
            self._confirm(tx_hash)
            package = self.resolver.read_named_value(self.deployer, spec.package_key_name, ValueType.ADDRESS)
            if package is None:
                raise DeploymentError(spec.name, f"named key {spec.package_key_name} missing after install {tx_hash}")
        else:
            LOG.info(f"{spec.name} already deployed: {package.hex}")
        contract = self.resolver.resolve_active_contract(package)
        self.manifest.record(spec.name, package, contract)
        return ContractHandle(spec.name, package, contract, DeploymentState.INSTALLED, tx_hash)

    @allure.step("Initialize contract")
    def initialize(self, handle: ContractHandle, spec: ContractSpec) -> ContractHandle:
        init = spec.init
        if init is None:
            return handle
        if init.done_field is not None:
            if self.resolver.read(handle.contract_hash, init.done_field) is not None:
                LOG.info(f"{spec.name} already initialized")
                handle.state = DeploymentState.INITIALIZED
                return handle
        elif handle.transaction_hash is None:
            # no way to observe the call, only make it right after a fresh install
            handle.state = DeploymentState.INITIALIZED
            return handle
        handle.state = DeploymentState.INIT_PENDING
        args = [self.resolve_arg(arg) for arg in init.args]
        tx_hash = self.submitter.call(ContractHashes(handle.package_hash, handle.contract_hash).package_ref,
                                      init.entry_point, args)
        try:
            self._confirm(tx_hash)
        except DexStateError:
            handle.state = DeploymentState.FAILED
            raise
        handle.state = DeploymentState.INITIALIZED
        return handle

    @allure.step("Call entry point")
    def call(self, spec: CallSpec) -> tp.Optional[str]:
        if spec.target not in self.manifest:
            raise DeploymentError(spec.name, f"{spec.target} is not deployed yet", kind="dependency")
        target = self.manifest[spec.target]
        if spec.done_field is not None:
            current = self.resolver.read(target.contract_hash, spec.done_field)
            expected = spec.done_value
            if isinstance(expected, (ManifestRef, _Deployer)):
                expected = Identifier.parse(self.resolve_arg(SessionArg("", "key", expected)).value)
            if current is not None and (expected is None or current == expected):
                LOG.info(f"{spec.name} already applied")
                return None
        args = [self.resolve_arg(arg) for arg in spec.args]
        tx_hash = self.submitter.call(target.package_ref, spec.entry_point, args)
        self._confirm(tx_hash)
        return tx_hash

    def run(self, steps: tp.Sequence[tp.Union[ContractSpec, CallSpec]]) -> DeploymentResult:
        """Process steps in order; the first failing step ends the run."""
        handles = []
        for step in steps:
            try:
                if isinstance(step, ContractSpec):
                    handle = self.ensure_deployed(step)
                    handles.append(handle)
                    self.initialize(handle, step)
                else:
                    self.call(step)
            except (DexStateError, requests.exceptions.RequestException) as e:
                LOG.error(f"Step {step.name} failed: {e}")
                return DeploymentResult(self.manifest.copy(), handles, error_kind(e), str(e), step.name)
        if self.manifest_path:
            self.manifest.save(self.manifest_path)
            LOG.info(f"Manifest saved to {self.manifest_path}")
        return DeploymentResult(self.manifest.copy(), handles)
