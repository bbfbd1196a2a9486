import json
import logging
import pathlib
from dataclasses import dataclass

import pytest
from _pytest.config import Config
from _pytest.runner import runtestprotocol

from dexstate import create_allure_environment_opts, setup_logging
from dexstate.allure_log_handler import AllureLogger


@dataclass
class EnvironmentConfig:
    node_url: str
    chain_name: str
    deployer_account_hash: str = ""
    secret_key_path: str = ""
    payment_install: int = 0
    payment_call: int = 0
    gas_price_tolerance: int = 1
    tx_wait_tries: int = 180
    tx_wait_sleep: float = 5


def pytest_addoption(parser):
    parser.addoption("--network", action="store", default="local", help="Which network use")
    parser.addoption(
        "--make-report",
        action="store_true",
        default=False,
        help="Store tests result to file",
    )
    parser.addoption("--envs", action="store", default="envs.json", help="Filename with environments")


def pytest_sessionstart(session):
    """Hook for clearing the error log used by the CLI notifications"""
    path = pathlib.Path(f"click_cmd_err.log")
    if path.exists():
        path.unlink()


def pytest_runtest_protocol(item, nextitem):
    ihook = item.ihook
    ihook.pytest_runtest_logstart(nodeid=item.nodeid, location=item.location)
    reports = runtestprotocol(item, nextitem=nextitem)
    ihook.pytest_runtest_logfinish(nodeid=item.nodeid, location=item.location)
    if item.config.getoption("--make-report"):
        path = pathlib.Path(f"click_cmd_err.log")
        with path.open("a") as fd:
            for report in reports:
                if report.when == "call" and report.outcome == "failed":
                    fd.write(f"`{report.outcome.upper()}` {item.nodeid}\n")
    return True


def pytest_configure(config: Config):
    network_name = config.getoption("--network")
    envs_file = config.getoption("--envs")
    with open(pathlib.Path(__file__).parent / envs_file, "r") as f:
        environments = json.load(f)
    assert network_name in environments, f"Environment {network_name} doesn't exist in envs.json"
    config.environment = EnvironmentConfig(**environments[network_name])
    setup_logging()
    logging.getLogger().addHandler(AllureLogger())


@pytest.fixture(scope="session", autouse=True)
def allure_environment(pytestconfig: Config):
    opts = {
        "Network": pytestconfig.getoption("--network"),
        "Node": pytestconfig.environment.node_url,
        "Chain": pytestconfig.environment.chain_name,
    }

    yield opts

    allure_dir = pytestconfig.getoption("--alluredir", default=None)
    if allure_dir:
        allure_path = pathlib.Path() / allure_dir
        allure_path.mkdir(parents=True, exist_ok=True)
        create_allure_environment_opts(opts, allure_path / "environment.properties")
