import logging
import os
import pathlib
import typing as tp

import tabulate

from dexstate.codecs import Identifier
from dexstate.manifest import DeploymentManifest
from dexstate.node_client import CasperNodeClient
from dexstate.orchestrator import (
    DEPLOYER,
    CallSpec,
    ContractSpec,
    DeploymentOrchestrator,
    DeploymentResult,
    InitCall,
    ManifestRef,
)
from dexstate.resolver import StateResolver
from dexstate.schemas import FACTORY_SCHEMA, ROUTER_SCHEMA
from dexstate.submitter import CasperClientSubmitter, SessionArg

from deploy.cli.network_manager import NetworkConfig

LOG = logging.getLogger(__name__)

REPORT_HEADERS = ["Contract", "State", "Package hash", "Contract hash", "Transaction"]
WASM_DIR = os.environ.get("WASM_DIR", "wasm")
DEX_MANIFEST = "scripts/deploy-new.out.env"
LST_MANIFEST = "scripts/deploy-lst.out.env"

# manifest name, wasm file, install args
DEX_TOKENS = (
    ("wcspr", "LpToken.wasm", (SessionArg("name", "string", "Wrapped CSPR"), SessionArg("symbol", "string", "WCSPR"))),
    ("ecto", "EctoToken.wasm", ()),
    ("usdc", "UsdcToken.wasm", ()),
    ("weth", "WethToken.wasm", ()),
    ("wbtc", "WbtcToken.wasm", ()),
)


def package_key_name(name: str) -> str:
    return f"{name}_package_hash"


def dex_plan(wasm_dir: str = WASM_DIR) -> tp.List[tp.Union[ContractSpec, CallSpec]]:
    wasm = pathlib.Path(wasm_dir)
    steps = [
        ContractSpec(name, str(wasm / wasm_file), package_key_name(name), args, payment=600_000_000_000)
        for name, wasm_file, args in DEX_TOKENS
    ]
    factory_args = (
        SessionArg("fee_to_setter", "key", DEPLOYER),
        SessionArg("pair_factory", "key", ManifestRef("pair_factory")),
    )
    steps.extend(
        [
            ContractSpec(
                "pair_factory", str(wasm / "PairFactory.wasm"), package_key_name("pair_factory"),
                payment=750_000_000_000,
            ),
            ContractSpec(
                "factory",
                str(wasm / "Factory.wasm"),
                package_key_name("factory"),
                factory_args,
                init=InitCall("init", factory_args, done_field=FACTORY_SCHEMA.descriptor("pair_factory")),
                payment=500_000_000_000,
            ),
            ContractSpec(
                "router",
                str(wasm / "Router.wasm"),
                package_key_name("router"),
                (
                    SessionArg("factory", "key", ManifestRef("factory")),
                    SessionArg("wcspr", "key", ManifestRef("wcspr")),
                ),
                init=InitCall(
                    "init",
                    (
                        SessionArg("factory", "key", ManifestRef("factory")),
                        SessionArg("wcspr", "key", ManifestRef("wcspr")),
                    ),
                    done_field=ROUTER_SCHEMA.descriptor("factory"),
                ),
                payment=600_000_000_000,
            ),
        ]
    )
    return steps


def lst_plan(wasm_dir: str = WASM_DIR) -> tp.List[tp.Union[ContractSpec, CallSpec]]:
    wasm = pathlib.Path(wasm_dir)
    return [
        # the deployer stands in as staking manager until the real one exists
        ContractSpec(
            "scspr_token",
            str(wasm / "ScsprToken.wasm"),
            package_key_name("scspr_token"),
            (SessionArg("staking_manager", "key", DEPLOYER),),
        ),
        ContractSpec(
            "staking_manager",
            str(wasm / "StakingManager.wasm"),
            package_key_name("staking_manager"),
            (SessionArg("scspr_token_address", "key", ManifestRef("scspr_token")),),
        ),
        CallSpec(
            "scspr_token",
            "set_staking_manager",
            (SessionArg("new_manager", "key", ManifestRef("staking_manager")),),
        ),
    ]


def check_wasm(steps: tp.Iterable[tp.Union[ContractSpec, CallSpec]]) -> tp.List[str]:
    return [step.wasm_path for step in steps if isinstance(step, ContractSpec) and not os.path.exists(step.wasm_path)]


def build_orchestrator(
    network: NetworkConfig, manifest: tp.Optional[DeploymentManifest] = None
) -> DeploymentOrchestrator:
    node = CasperNodeClient(network.node_url)
    submitter = CasperClientSubmitter(
        node,
        network.chain_name,
        network.secret_key_path,
        network.payment_install,
        network.payment_call,
        network.gas_price_tolerance,
    )
    return DeploymentOrchestrator(
        StateResolver(node),
        submitter,
        Identifier.parse(network.deployer_account_hash),
        manifest=manifest,
        max_attempts=network.tx_wait_tries,
        poll_interval=network.tx_wait_sleep,
    )


def manifest_header(network: NetworkConfig) -> tp.Dict[str, str]:
    return {
        "NODE_ADDRESS": network.node_url,
        "CHAIN_NAME": network.chain_name,
        "DEPLOYER_ACCOUNT_HASH": network.deployer_account_hash,
    }


def run_plan(
    network: NetworkConfig,
    steps: tp.Sequence[tp.Union[ContractSpec, CallSpec]],
    out_path: str,
    resume: bool = False,
) -> DeploymentResult:
    manifest = DeploymentManifest.load(out_path) if resume and os.path.exists(out_path) else None
    result = build_orchestrator(network, manifest).run(steps)
    if result.ok:
        result.manifest.save(out_path, extra=manifest_header(network))
        LOG.info(f"Manifest saved to {out_path}")
    return result


def deployment_report(result: DeploymentResult) -> str:
    rows = [
        [
            handle.name,
            handle.state.value,
            handle.package_hash.formatted(),
            result.manifest[handle.name].contract_ref if handle.name in result.manifest else "",
            handle.transaction_hash or "-",
        ]
        for handle in result.handles
    ]
    return tabulate.tabulate(rows, REPORT_HEADERS, tablefmt="simple")
