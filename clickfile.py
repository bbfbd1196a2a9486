#!/usr/bin/env python3
import functools
import logging
import os
import pathlib
import shutil
import subprocess
import sys
import typing as tp


try:
    import click
except ImportError:
    print("Please install click library: pip install click==8.1.7")
    sys.exit(1)

try:
    from dexstate import setup_logging
    from dexstate.errors import DexStateError
    from dexstate.manifest import DeploymentManifest
    from dexstate.pairs import PairLookupService
    from dexstate.schemas import SCHEMAS

    from deploy.cli import dex as dex_cli
    from deploy.cli import state as state_cli
    from deploy.cli.network_manager import NetworkManager
except ImportError as e:
    print(f"Can't load {e}")


CMD_ERROR_LOG = "click_cmd_err.log"

ERR_MESSAGES = {
    "run": "Unsuccessful tests executing.",
    "dex": "Unsuccessful DEX deployment.",
    "lst": "Unsuccessful LST deployment.",
}

SRC_ALLURE_CATEGORIES = pathlib.Path("./allure/categories.json")

DST_ALLURE_CATEGORIES = pathlib.Path("./allure-results/categories.json")

TEST_GROUPS = {
    "codecs": "integration/tests/codecs",
    "resolver": "integration/tests/resolver",
    "deploy": "integration/tests/deploy",
    "all": "integration/tests",
}

NETWORK_NAME = os.environ.get("NETWORK_NAME", "local")

HOME_DIR = pathlib.Path(__file__).absolute().parent


def green(s):
    return click.style(s, fg="green")


def red(s):
    return click.style(s, fg="red")


def catch_traceback(func: tp.Callable) -> tp.Callable:
    """Catch traceback to file"""

    def create_report(func_name, exc=None):
        data = ""
        exc = f"\n*Error:* {exc}" if exc else ""
        path = pathlib.Path(CMD_ERROR_LOG)
        if path.exists() and path.stat().st_size != 0:
            with path.open("r") as fd:
                data = f"{fd.read()}\n"
            path.unlink()
        err_msg = f"*{ERR_MESSAGES.get(func_name)}*{exc}\n{data}"
        with open(CMD_ERROR_LOG, "w") as fd:
            fd.write(err_msg)

    @functools.wraps(func)
    def wrap(*args, **kwargs) -> tp.Any:
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            create_report(func.__name__, e)
            raise
        finally:
            e = sys.exc_info()
            if e[0] and e[0].__name__ == "SystemExit" and e[1] != 0:
                create_report(func.__name__)

        return result

    return wrap


def get_network(network: str):
    try:
        return NetworkManager().get_network_object(network)
    except (KeyError, FileNotFoundError) as e:
        raise click.ClickException(str(e))


def node_url_for(network: str) -> str:
    return get_network(network).node_url


def load_manifest(path: str) -> DeploymentManifest:
    if not os.path.exists(path):
        raise click.ClickException(f"Manifest {path} not found, deploy the DEX first")
    return DeploymentManifest.load(path)


def resolve_ref(ref: str, manifest_path: str) -> str:
    """Accept a formatted hash or a manifest name like ``wcspr``."""
    if "-" in ref:
        return ref
    manifest = load_manifest(manifest_path)
    if ref not in manifest:
        raise click.ClickException(f"{ref} is not in {manifest_path}")
    return manifest[ref].package_ref


network_option = click.option(
    "-n", "--network", default=NETWORK_NAME, type=str, help="Network name from envs.json"
)
manifest_option = click.option(
    "-m", "--manifest", "manifest_path", default=dex_cli.DEX_MANIFEST, show_default=True, help="Manifest file"
)


@click.group()
@click.option("-v", "--verbose", is_flag=True, default=False, help="Debug logging")
def cli(verbose):
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    setup_logging(logging.DEBUG if verbose else logging.INFO)


@cli.command(help="Run tests")
@click.option("-n", "--network", default="local", type=str, help="In which stand run tests")
@click.argument("name", required=True, type=click.Choice(list(TEST_GROUPS)))
@catch_traceback
def run(name, network):
    command = f"py.test {TEST_GROUPS[name]} --network={network} --alluredir=allure-results"
    cmd = subprocess.run(command, shell=True)
    if SRC_ALLURE_CATEGORIES.exists():
        shutil.copyfile(SRC_ALLURE_CATEGORIES, DST_ALLURE_CATEGORIES)
    if cmd.returncode != 0:
        sys.exit(cmd.returncode)


@cli.group("deploy", help="Deploy contract suites")
def deploy():
    pass


def run_deployment(network: str, steps, out_path: str, resume: bool):
    config = get_network(network)
    missing = dex_cli.check_wasm(steps)
    if missing:
        raise click.ClickException(f"Missing wasm: {', '.join(missing)}. Run: cargo odra build")
    if not config.deployer_account_hash:
        raise click.ClickException("DEPLOYER_ACCOUNT_HASH is not set")
    click.echo(f"Deploying to {config.chain_name} ({config.node_url})")
    try:
        result = dex_cli.run_plan(config, steps, out_path, resume=resume)
    except DexStateError as e:
        raise click.ClickException(str(e))
    click.echo(dex_cli.deployment_report(result))
    if not result.ok:
        click.echo(red(f"Step {result.failed_step} failed ({result.error_kind}): {result.message}"))
        sys.exit(1)
    click.echo(green(f"Deployment complete, manifest saved to {out_path}"))


@deploy.command("dex", help="Deploy tokens, PairFactory, Factory and Router")
@network_option
@click.option("-w", "--wasm-dir", default=dex_cli.WASM_DIR, show_default=True)
@click.option("-o", "--out", default=dex_cli.DEX_MANIFEST, show_default=True, help="Manifest output")
@click.option("--resume", is_flag=True, default=False, help="Trust entries of an existing manifest")
@catch_traceback
def dex(network, wasm_dir, out, resume):
    run_deployment(network, dex_cli.dex_plan(wasm_dir), out, resume)


@deploy.command("lst", help="Deploy sCSPR token and StakingManager")
@network_option
@click.option("-w", "--wasm-dir", default=dex_cli.WASM_DIR, show_default=True)
@click.option("-o", "--out", default=dex_cli.LST_MANIFEST, show_default=True, help="Manifest output")
@click.option("--resume", is_flag=True, default=False, help="Trust entries of an existing manifest")
@catch_traceback
def lst(network, wasm_dir, out, resume):
    run_deployment(network, dex_cli.lst_plan(wasm_dir), out, resume)


@cli.group("state", help="Read contract state")
def state():
    pass


def pair_service(network: str, manifest_path: str) -> PairLookupService:
    manifest = load_manifest(manifest_path)
    if "factory" not in manifest:
        raise click.ClickException(f"factory is not in {manifest_path}")
    return PairLookupService(state_cli.make_resolver(node_url_for(network)), manifest["factory"].package_hash)


@state.command("pair", help="Find the pair of two tokens and show its state")
@network_option
@manifest_option
@click.argument("token_a")
@click.argument("token_b")
def pair(network, manifest_path, token_a, token_b):
    service = pair_service(network, manifest_path)
    click.echo(
        state_cli.pair_table(service, resolve_ref(token_a, manifest_path), resolve_ref(token_b, manifest_path))
    )


@state.command("reserves", help="Show reserves of a pair")
@network_option
@manifest_option
@click.argument("pair_ref")
def reserves(network, manifest_path, pair_ref):
    click.echo(state_cli.reserves_table(pair_service(network, manifest_path), pair_ref))


@state.command("pools", help="Check which pools exist between the manifest tokens")
@network_option
@manifest_option
def pools(network, manifest_path):
    click.echo(state_cli.pools_table(pair_service(network, manifest_path), load_manifest(manifest_path)))


@state.command("events", help="Decode the events of a contract")
@network_option
@manifest_option
@click.argument("contract_ref")
def events(network, manifest_path, contract_ref):
    resolver = state_cli.make_resolver(node_url_for(network))
    click.echo(state_cli.events_table(resolver, resolve_ref(contract_ref, manifest_path)))


@state.command("active-contract", help="Resolve the active contract of a package")
@network_option
@manifest_option
@click.argument("package_ref")
def active_contract(network, manifest_path, package_ref):
    resolver = state_cli.make_resolver(node_url_for(network))
    try:
        contract = resolver.resolve_active_contract(resolve_ref(package_ref, manifest_path))
    except DexStateError as e:
        raise click.ClickException(str(e))
    click.echo(contract.formatted("contract-"))


@state.command("probe", help="Dump storage indices of a contract with decoded values")
@network_option
@manifest_option
@click.option("-s", "--schema", "schema_name", required=True, type=click.Choice(sorted(SCHEMAS)))
@click.option("-e", "--extra", default=2, help="Indices to read past the schema width")
@click.argument("contract_ref")
def probe(network, manifest_path, schema_name, extra, contract_ref):
    resolver = state_cli.make_resolver(node_url_for(network))
    click.echo(
        state_cli.probe_table(resolver, resolve_ref(contract_ref, manifest_path), SCHEMAS[schema_name], extra)
    )


@cli.group("infra", help="Manage network settings")
def infra():
    pass


@infra.command("print-network-param")
@network_option
@click.option("-p", "--param", type=str, help="any network param like node_url, chain_name e.t.c")
def print_network_param(network, param):
    print(NetworkManager().get_network_param(network, param))


if __name__ == "__main__":
    cli()
