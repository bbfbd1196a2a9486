import allure
import pytest

from dexstate.codecs import Identifier
from dexstate.consts import DeploymentState, ValueType
from dexstate.errors import DeploymentError
from dexstate.manifest import DeploymentManifest
from dexstate.orchestrator import (
    DEPLOYER,
    CallSpec,
    ContractSpec,
    DeploymentOrchestrator,
    InitCall,
    ManifestRef,
)
from dexstate.schemas import FACTORY_SCHEMA, ROUTER_SCHEMA
from dexstate.submitter import SessionArg
from dexstate.values import encode_cl_value

from integration.tests.helpers.fake_node import FakeSubmitter

FACTORY_ARGS = (
    SessionArg("fee_to_setter", "key", DEPLOYER),
    SessionArg("pair_factory", "key", ManifestRef("pair_factory")),
)


def token(name):
    return ContractSpec(name, f"wasm/{name}.wasm", f"{name}_package_hash")


def factory_spec():
    return ContractSpec(
        "factory",
        "wasm/Factory.wasm",
        "factory_package_hash",
        FACTORY_ARGS,
        init=InitCall("init", FACTORY_ARGS, done_field=FACTORY_SCHEMA.descriptor("pair_factory")),
    )


def store_arg(fake_node, index, arg_name):
    """Effect of an entry point that stores one key argument at ``index``."""

    def apply(package_hash, args):
        contract = fake_node.active_contract(Identifier.parse(package_hash))
        value = next(arg.value for arg in args if arg.name == arg_name)
        fake_node.set_field(contract, index, encode_cl_value(ValueType.ADDRESS, Identifier.parse(value)))

    return apply


class ForgetfulSubmitter(FakeSubmitter):
    """Installs succeed but the package named key never shows up."""

    def install(self, wasm_path, package_key_name, args=(), payment=None):
        self.installs.append((wasm_path, package_key_name, list(args)))
        return self._submit(package_key_name, lambda: self.node.add_contract(package_key_name))


@allure.feature("Deployment")
@allure.story("Idempotent install")
class TestEnsureDeployed:
    def test_second_call_does_not_install(self, submitter, orchestrator):
        first = orchestrator.ensure_deployed(token("wcspr"))
        second = orchestrator.ensure_deployed(token("wcspr"))
        assert len(submitter.installs) == 1
        assert first.package_hash == second.package_hash
        assert first.transaction_hash is not None
        assert second.transaction_hash is None

    def test_marker_on_chain_is_trusted(self, fake_node, submitter, orchestrator, deployer):
        package, contract = fake_node.add_contract("wcspr")
        fake_node.set_account_key(deployer, "wcspr_package_hash", package.formatted())
        handle = orchestrator.ensure_deployed(token("wcspr"))
        assert submitter.installs == []
        assert handle.contract_hash == contract
        assert orchestrator.manifest["wcspr"].package_hash == package

    def test_install_records_active_contract(self, fake_node, orchestrator):
        handle = orchestrator.ensure_deployed(token("usdc"))
        assert handle.state == DeploymentState.INSTALLED
        assert handle.contract_hash == fake_node.active_contract(handle.package_hash)
        assert orchestrator.manifest["usdc"].contract_ref == handle.contract_hash.formatted("contract-")

    def test_install_args_are_resolved(self, submitter, orchestrator, deployer):
        orchestrator.ensure_deployed(token("pair_factory"))
        orchestrator.ensure_deployed(ContractSpec("factory", "wasm/Factory.wasm", "factory_package_hash", FACTORY_ARGS))
        args = submitter.installs[-1][2]
        assert args[0] == SessionArg("fee_to_setter", "key", deployer.formatted())
        assert args[1] == SessionArg("pair_factory", "key", orchestrator.manifest["pair_factory"].package_ref)

    def test_missing_marker_after_install(self, resolver, fake_node, deployer):
        orchestrator = DeploymentOrchestrator(
            resolver, ForgetfulSubmitter(fake_node, deployer), deployer, max_attempts=3, poll_interval=0
        )
        with pytest.raises(DeploymentError) as e:
            orchestrator.ensure_deployed(token("wcspr"))
        assert "wcspr_package_hash" in str(e.value)
        assert "wcspr" not in orchestrator.manifest


@allure.feature("Deployment")
@allure.story("Ordered rollout")
class TestRun:
    def test_full_plan(self, fake_node, submitter, orchestrator):
        submitter.effects["init"] = store_arg(fake_node, 3, "pair_factory")
        steps = [token("wcspr"), token("pair_factory"), factory_spec()]
        result = orchestrator.run(steps)
        assert result.ok
        assert [install[1] for install in submitter.installs] == [
            "wcspr_package_hash",
            "pair_factory_package_hash",
            "factory_package_hash",
        ]
        assert [call[1] for call in submitter.calls] == ["init"]
        assert [handle.state for handle in result.handles] == [
            DeploymentState.INSTALLED,
            DeploymentState.INSTALLED,
            DeploymentState.INITIALIZED,
        ]
        assert list(result.manifest) == ["wcspr", "pair_factory", "factory"]

    def test_rerun_is_a_no_op(self, fake_node, submitter, orchestrator):
        submitter.effects["init"] = store_arg(fake_node, 3, "pair_factory")
        steps = [token("pair_factory"), factory_spec()]
        orchestrator.run(steps)
        result = orchestrator.run(steps)
        assert result.ok
        assert len(submitter.installs) == 2
        assert len(submitter.calls) == 1
        assert result.handles[1].state == DeploymentState.INITIALIZED

    def test_rerun_from_chain_state_only(self, fake_node, submitter, orchestrator, resolver, deployer):
        submitter.effects["init"] = store_arg(fake_node, 3, "pair_factory")
        steps = [token("pair_factory"), factory_spec()]
        orchestrator.run(steps)
        fresh = DeploymentOrchestrator(resolver, submitter, deployer, max_attempts=5, poll_interval=0)
        assert fresh.run(steps).ok
        assert len(submitter.installs) == 2
        assert len(submitter.calls) == 1

    def test_failed_step_stops_the_run(self, submitter, orchestrator, tmp_path):
        orchestrator.manifest_path = str(tmp_path / "deploy.out.env")
        submitter.failures["factory_package_hash"] = "User error: 1"
        result = orchestrator.run([token("pair_factory"), factory_spec(), token("router")])
        assert not result.ok
        assert result.error_kind == "failure"
        assert result.failed_step == "factory"
        assert result.message == "User error: 1"
        assert list(result.manifest) == ["pair_factory"]
        assert [install[1] for install in submitter.installs] == ["pair_factory_package_hash", "factory_package_hash"]
        assert not (tmp_path / "deploy.out.env").exists()

    def test_timeout_is_reported(self, submitter, orchestrator):
        submitter.stuck.add("router_package_hash")
        result = orchestrator.run([token("router")])
        assert result.error_kind == "timeout"
        assert result.failed_step == "router"
        assert "router" not in result.manifest

    def test_failed_init(self, submitter, orchestrator):
        submitter.failures["init"] = "User error: 5"
        result = orchestrator.run([token("pair_factory"), factory_spec()])
        assert result.error_kind == "failure"
        assert result.handles[-1].state == DeploymentState.FAILED
        # the install itself is confirmed and stays recorded
        assert "factory" in result.manifest

    def test_rpc_error_during_marker_check_does_not_reinstall(self, fake_node, submitter, orchestrator):
        orchestrator.run([token("router")])
        fake_node._rpc_query_global_state = lambda params: {
            "jsonrpc": "2.0",
            "id": 1,
            "error": {"code": -32601, "message": "Method not found"},
        }
        fresh = DeploymentOrchestrator(orchestrator.resolver, submitter, orchestrator.deployer, max_attempts=5, poll_interval=0)
        result = fresh.run([token("router")])
        assert not result.ok
        assert result.error_kind == "error"
        assert "Method not found" in result.message
        assert len(submitter.installs) == 1

    def test_dependency_must_come_first(self, submitter, orchestrator):
        result = orchestrator.run([factory_spec()])
        assert result.error_kind == "dependency"
        assert submitter.installs == []

    def test_manifest_saved_on_success(self, submitter, orchestrator, tmp_path):
        path = tmp_path / "deploy.out.env"
        orchestrator.manifest_path = str(path)
        result = orchestrator.run([token("wcspr"), token("usdc")])
        assert result.ok
        loaded = DeploymentManifest.load(str(path))
        assert list(loaded) == ["wcspr", "usdc"]
        assert loaded["usdc"] == result.manifest["usdc"]


@allure.feature("Deployment")
@allure.story("Initialization")
class TestInitialize:
    def test_init_without_marker_runs_after_fresh_install(self, submitter, orchestrator):
        spec = ContractSpec("lp", "wasm/LpToken.wasm", "lp_package_hash", init=InitCall("init"))
        orchestrator.run([spec])
        orchestrator.run([spec])
        assert [call[1] for call in submitter.calls] == ["init"]

    def test_init_skipped_when_already_done(self, fake_node, submitter, orchestrator):
        router_init = InitCall(
            "init",
            (SessionArg("factory", "key", ManifestRef("factory")),),
            done_field=ROUTER_SCHEMA.descriptor("factory"),
        )
        orchestrator.manifest.record("factory", *fake_node.add_contract("factory"))
        handle = orchestrator.ensure_deployed(token("router"))
        factory_package = orchestrator.manifest["factory"].package_hash
        fake_node.set_field(handle.contract_hash, 0, encode_cl_value(ValueType.ADDRESS, factory_package))
        spec = ContractSpec("router", "wasm/Router.wasm", "router_package_hash", init=router_init)
        orchestrator.initialize(handle, spec)
        assert submitter.calls == []
        assert handle.state == DeploymentState.INITIALIZED


@allure.feature("Deployment")
@allure.story("Entry point calls")
class TestCallSpec:
    def test_call_after_installs(self, submitter, orchestrator, deployer):
        steps = [
            ContractSpec("scspr_token", "wasm/ScsprToken.wasm", "scspr_token_package_hash",
                         (SessionArg("staking_manager", "key", DEPLOYER),)),
            ContractSpec("staking_manager", "wasm/StakingManager.wasm", "staking_manager_package_hash",
                         (SessionArg("scspr_token_address", "key", ManifestRef("scspr_token")),)),
            CallSpec("scspr_token", "set_staking_manager",
                     (SessionArg("new_manager", "key", ManifestRef("staking_manager")),)),
        ]
        result = orchestrator.run(steps)
        assert result.ok
        package_hash, entry_point, args = submitter.calls[0]
        assert package_hash == result.manifest["scspr_token"].package_ref
        assert entry_point == "set_staking_manager"
        assert args == [SessionArg("new_manager", "key", result.manifest["staking_manager"].package_ref)]

    def test_call_skipped_when_value_matches(self, fake_node, submitter, orchestrator):
        submitter.effects["set_factory"] = store_arg(fake_node, 0, "factory")
        step = CallSpec(
            "router",
            "set_factory",
            (SessionArg("factory", "key", ManifestRef("factory")),),
            done_field=ROUTER_SCHEMA.descriptor("factory"),
            done_value=ManifestRef("factory"),
        )
        steps = [token("factory"), token("router"), step]
        assert orchestrator.run(steps).ok
        assert orchestrator.run(steps).ok
        assert [call[1] for call in submitter.calls] == ["set_factory"]

    def test_unknown_target(self, orchestrator):
        result = orchestrator.run([CallSpec("router", "set_factory")])
        assert result.error_kind == "dependency"
        assert result.failed_step == "router.set_factory"
