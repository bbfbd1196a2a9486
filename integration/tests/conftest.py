import pytest

from dexstate.codecs import Identifier
from dexstate.node_client import CasperNodeClient
from dexstate.orchestrator import DeploymentOrchestrator
from dexstate.pairs import PairLookupService
from dexstate.resolver import StateResolver

from integration.tests.helpers.fake_node import FakeCasperNode, FakeSubmitter, fake_hash


@pytest.fixture
def fake_node() -> FakeCasperNode:
    return FakeCasperNode()


@pytest.fixture
def node_client(fake_node) -> CasperNodeClient:
    return fake_node.client()


@pytest.fixture
def resolver(node_client) -> StateResolver:
    return StateResolver(node_client)


@pytest.fixture
def factory(fake_node):
    package, contract = fake_node.add_contract("factory")
    return package, contract


@pytest.fixture
def pair_service(resolver, factory) -> PairLookupService:
    return PairLookupService(resolver, factory[0])


@pytest.fixture
def deployer(fake_node) -> Identifier:
    account = Identifier.account(fake_hash("deployer"))
    fake_node.add_account(account)
    return account


@pytest.fixture
def submitter(fake_node, deployer) -> FakeSubmitter:
    return FakeSubmitter(fake_node, deployer)


@pytest.fixture
def orchestrator(resolver, submitter, deployer) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(resolver, submitter, deployer, max_attempts=5, poll_interval=0)
