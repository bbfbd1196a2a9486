"""Name to hash record of a deployment, consumed by the UI and later scripts.

Flat form::

    FACTORY_PACKAGE_HASH=hash-<64 lowercase hex>
    FACTORY_CONTRACT_HASH=contract-<64 lowercase hex>
"""
import json
import os
import re
import tempfile
import typing as tp
from collections import OrderedDict
from dataclasses import dataclass

from dexstate.codecs import Identifier
from dexstate.consts import CONTRACT_HASH_PREFIX, PACKAGE_HASH_PREFIX, IdentifierTag
from dexstate.errors import MalformedIdentifier, ManifestError

NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
VALUE_RE = re.compile(r"^(hash|contract)-[0-9a-f]{64}$")
PACKAGE_SUFFIX = "_PACKAGE_HASH"
CONTRACT_SUFFIX = "_CONTRACT_HASH"


def _contract_identifier(value: tp.Union[Identifier, str]) -> Identifier:
    try:
        identifier = value if isinstance(value, Identifier) else Identifier.parse(value)
    except MalformedIdentifier as e:
        raise ManifestError(str(e))
    if identifier.tag != IdentifierTag.CONTRACT_HASH:
        raise ManifestError(f"{value} is not a contract or package hash")
    return identifier


@dataclass(frozen=True)
class ContractHashes:
    package_hash: Identifier
    contract_hash: Identifier

    @property
    def package_ref(self) -> str:
        return self.package_hash.formatted(PACKAGE_HASH_PREFIX)

    @property
    def contract_ref(self) -> str:
        return self.contract_hash.formatted(CONTRACT_HASH_PREFIX)


class DeploymentManifest:
    def __init__(self):
        self._entries: "OrderedDict[str, ContractHashes]" = OrderedDict()

    def __contains__(self, name):
        return name in self._entries

    def __getitem__(self, name) -> ContractHashes:
        return self._entries[name]

    def __iter__(self):
        return iter(self._entries)

    def __len__(self):
        return len(self._entries)

    def __repr__(self):
        return f"DeploymentManifest({list(self._entries)})"

    def get(self, name, default=None) -> tp.Optional[ContractHashes]:
        return self._entries.get(name, default)

    def items(self):
        return self._entries.items()

    def record(self, name: str, package_hash, contract_hash) -> ContractHashes:
        if not NAME_RE.match(name or ""):
            raise ManifestError(f"bad contract name {name!r}")
        hashes = ContractHashes(_contract_identifier(package_hash), _contract_identifier(contract_hash))
        self._entries[name] = hashes
        return hashes

    def copy(self) -> "DeploymentManifest":
        manifest = DeploymentManifest()
        manifest._entries.update(self._entries)
        return manifest

    def to_env(self) -> "OrderedDict[str, str]":
        env = OrderedDict()
        for name, hashes in self._entries.items():
            env[f"{name.upper()}{PACKAGE_SUFFIX}"] = hashes.package_ref
            env[f"{name.upper()}{CONTRACT_SUFFIX}"] = hashes.contract_ref
        return env

    def to_dict(self) -> tp.Dict[str, str]:
        return dict(self.to_env())

    def dumps(self, fmt: str = "env", extra: tp.Optional[tp.Dict[str, str]] = None) -> str:
        values = OrderedDict(extra or {})
        values.update(self.to_env())
        if fmt == "json":
            return json.dumps(values, indent=2) + "\n"
        if fmt != "env":
            raise ValueError(f"unknown manifest format {fmt!r}")
        return "".join(f"{key}={value}\n" for key, value in values.items())

    def save(self, path: str, extra: tp.Optional[tp.Dict[str, str]] = None) -> str:
        """Write to a temporary sibling and rename it over ``path``."""
        fmt = "json" if path.endswith(".json") else "env"
        content = self.dumps(fmt, extra)
        directory = os.path.dirname(os.path.abspath(path))
        fd, tmp_path = tempfile.mkstemp(prefix=".manifest-", dir=directory)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return path

    @classmethod
    def from_mapping(cls, values: tp.Dict[str, str]) -> "DeploymentManifest":
        """Build from flat ``*_PACKAGE_HASH``/``*_CONTRACT_HASH`` keys; other keys are ignored."""
        manifest = cls()
        for key, value in values.items():
            if not key.endswith(PACKAGE_SUFFIX):
                continue
            name = key[: -len(PACKAGE_SUFFIX)]
            contract = values.get(f"{name}{CONTRACT_SUFFIX}")
            if contract is None:
                raise ManifestError(f"{key} has no matching {name}{CONTRACT_SUFFIX}")
            for item in (value, contract):
                if not VALUE_RE.match(item):
                    raise ManifestError(f"bad manifest value {item!r} for {name}")
            manifest.record(name.lower(), value, contract)
        return manifest

    @classmethod
    def load(cls, path: str) -> "DeploymentManifest":
        with open(path) as f:
            content = f.read()
        if path.endswith(".json"):
            return cls.from_mapping(json.loads(content))
        values = {}
        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            values[key.strip()] = value.strip()
        return cls.from_mapping(values)
