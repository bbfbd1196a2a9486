import json
import os

import allure
import pytest

from dexstate.codecs import Identifier
from dexstate.errors import ManifestError
from dexstate.manifest import DeploymentManifest

from integration.tests.helpers.fake_node import fake_hash

PACKAGE = Identifier.contract(fake_hash("factory-package"))
CONTRACT = Identifier.contract(fake_hash("factory-contract"))


@pytest.fixture
def manifest():
    manifest = DeploymentManifest()
    manifest.record("factory", PACKAGE, CONTRACT)
    return manifest


@allure.feature("Manifest")
@allure.story("Format")
class TestManifestFormat:
    def test_env_keys(self, manifest):
        assert manifest.to_env() == {
            "FACTORY_PACKAGE_HASH": f"hash-{PACKAGE.hex}",
            "FACTORY_CONTRACT_HASH": f"contract-{CONTRACT.hex}",
        }

    def test_header_comes_first(self, manifest):
        lines = manifest.dumps(extra={"CHAIN_NAME": "casper-test"}).splitlines()
        assert lines == [
            "CHAIN_NAME=casper-test",
            f"FACTORY_PACKAGE_HASH=hash-{PACKAGE.hex}",
            f"FACTORY_CONTRACT_HASH=contract-{CONTRACT.hex}",
        ]

    def test_json(self, manifest):
        assert json.loads(manifest.dumps("json")) == manifest.to_dict()

    def test_unknown_format(self, manifest):
        with pytest.raises(ValueError):
            manifest.dumps("yaml")

    def test_record_accepts_formatted_refs(self):
        manifest = DeploymentManifest()
        manifest.record("router", f"hash-{PACKAGE.hex}", f"contract-{CONTRACT.hex}")
        assert manifest["router"].package_hash == PACKAGE

    @pytest.mark.parametrize("name", ["", "1factory", "fac-tory", "fac tory"])
    def test_bad_name(self, name):
        with pytest.raises(ManifestError):
            DeploymentManifest().record(name, PACKAGE, CONTRACT)

    def test_account_hash_is_rejected(self):
        with pytest.raises(ManifestError):
            DeploymentManifest().record("factory", Identifier.account(fake_hash("acc")), CONTRACT)

    def test_garbage_hash_is_rejected(self):
        with pytest.raises(ManifestError):
            DeploymentManifest().record("factory", "hash-xyz", CONTRACT)


@allure.feature("Manifest")
@allure.story("Files")
class TestManifestFiles:
    @pytest.mark.parametrize("filename", ["deploy.out.env", "deploy.json"])
    def test_save_and_load(self, manifest, tmp_path, filename):
        path = str(tmp_path / filename)
        manifest.save(path, extra={"NODE_ADDRESS": "http://localhost:11101/rpc"})
        loaded = DeploymentManifest.load(path)
        assert list(loaded) == ["factory"]
        assert loaded["factory"] == manifest["factory"]
        assert os.listdir(str(tmp_path)) == [filename]

    def test_save_replaces_existing(self, manifest, tmp_path):
        path = tmp_path / "deploy.out.env"
        path.write_text("OLD=1\n")
        manifest.save(str(path))
        assert "OLD" not in path.read_text()

    def test_load_skips_comments_and_other_keys(self, tmp_path):
        path = tmp_path / "deploy.out.env"
        path.write_text(
            "# generated\n"
            "NODE_ADDRESS=http://localhost:11101/rpc\n\n"
            f"WCSPR_PACKAGE_HASH=hash-{PACKAGE.hex}\n"
            f"WCSPR_CONTRACT_HASH=contract-{CONTRACT.hex}\n"
        )
        loaded = DeploymentManifest.load(str(path))
        assert list(loaded) == ["wcspr"]

    def test_missing_contract_hash(self, tmp_path):
        path = tmp_path / "deploy.out.env"
        path.write_text(f"WCSPR_PACKAGE_HASH=hash-{PACKAGE.hex}\n")
        with pytest.raises(ManifestError):
            DeploymentManifest.load(str(path))

    @pytest.mark.parametrize("value", [f"hash-{PACKAGE.hex.upper()}", f"{PACKAGE.hex}", "hash-abc"])
    def test_bad_value(self, value):
        with pytest.raises(ManifestError):
            DeploymentManifest.from_mapping(
                {"WCSPR_PACKAGE_HASH": value, "WCSPR_CONTRACT_HASH": f"contract-{CONTRACT.hex}"}
            )
