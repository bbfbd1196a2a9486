"""Binary codecs for platform identifiers and integers.

Identifiers are serialized as one tag byte followed by the 32-byte hash.
Storage indices are fixed-width big-endian; large integers are
variable-length little-endian.
"""
import functools
import typing as tp
from dataclasses import dataclass

from construct import ConstructError, StreamError, ValidationError

from dexstate.consts import (
    ACCOUNT_HASH_PREFIX,
    IDENTIFIER_HASH_LENGTH,
    IDENTIFIER_LENGTH,
    MAX_INDEX,
    PACKAGE_HASH_PREFIX,
    IdentifierTag,
)
from dexstate.errors import MalformedIdentifier
from dexstate.layouts import BIG_UINT_LAYOUT, BYTE_LIST_LAYOUT, IDENTIFIER_LAYOUT, STORAGE_INDEX_LAYOUT

# longest prefix first, "contract-package-" must win over "contract-"
FORMATTED_PREFIXES = (
    (ACCOUNT_HASH_PREFIX, IdentifierTag.ACCOUNT),
    ("contract-package-", IdentifierTag.CONTRACT_HASH),
    ("entity-contract-", IdentifierTag.CONTRACT_HASH),
    ("contract-", IdentifierTag.CONTRACT_HASH),
    ("package-", IdentifierTag.CONTRACT_HASH),
    (PACKAGE_HASH_PREFIX, IdentifierTag.CONTRACT_HASH),
)

NATIVE_KEY_VARIANTS = {
    "Account": IdentifierTag.ACCOUNT,
    "AccountHash": IdentifierTag.ACCOUNT,
    "Hash": IdentifierTag.CONTRACT_HASH,
    "Contract": IdentifierTag.CONTRACT_HASH,
    "ContractPackage": IdentifierTag.CONTRACT_HASH,
    "ContractPackageHash": IdentifierTag.CONTRACT_HASH,
    "Package": IdentifierTag.CONTRACT_HASH,
}


@functools.total_ordering
@dataclass(frozen=True, eq=True)
class Identifier:
    tag: IdentifierTag
    hash: bytes

    def __post_init__(self):
        object.__setattr__(self, "hash", bytes(self.hash))
        if len(self.hash) != IDENTIFIER_HASH_LENGTH:
            raise MalformedIdentifier(f"identifier hash must be {IDENTIFIER_HASH_LENGTH} bytes, got {len(self.hash)}")
        try:
            object.__setattr__(self, "tag", IdentifierTag(self.tag))
        except ValueError:
            raise MalformedIdentifier(f"unknown identifier tag {self.tag!r}")

    def __lt__(self, other):
        if not isinstance(other, Identifier):
            return NotImplemented
        return AddressCodec.encode(self) < AddressCodec.encode(other)

    @classmethod
    def account(cls, hash_: tp.Union[bytes, str]) -> "Identifier":
        return cls(IdentifierTag.ACCOUNT, _hash_bytes(hash_))

    @classmethod
    def contract(cls, hash_: tp.Union[bytes, str]) -> "Identifier":
        return cls(IdentifierTag.CONTRACT_HASH, _hash_bytes(hash_))

    @classmethod
    def parse(cls, text: str) -> "Identifier":
        """Parse a formatted key such as ``hash-<hex>`` or ``account-hash-<hex>``."""
        text = text.strip()
        for prefix, tag in FORMATTED_PREFIXES:
            if text.startswith(prefix):
                return cls(tag, _hash_bytes(text[len(prefix):]))
        if len(text) == IDENTIFIER_LENGTH * 2:
            return AddressCodec.decode(_from_hex(text))
        raise MalformedIdentifier(f"unrecognized identifier format: {text!r}")

    @property
    def hex(self) -> str:
        return self.hash.hex()

    def formatted(self, prefix: tp.Optional[str] = None) -> str:
        if self.tag == IdentifierTag.ACCOUNT:
            return f"{ACCOUNT_HASH_PREFIX}{self.hex}"
        return f"{prefix or PACKAGE_HASH_PREFIX}{self.hex}"

    def __str__(self):
        return self.formatted()


def _from_hex(text: str) -> bytes:
    if text.startswith("0x"):
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError:
        raise MalformedIdentifier(f"not a hex string: {text!r}")


def _hash_bytes(value: tp.Union[bytes, str]) -> bytes:
    if isinstance(value, str):
        value = _from_hex(value)
    return bytes(value)


class AddressCodec:
    @staticmethod
    def encode(identifier: Identifier) -> bytes:
        return IDENTIFIER_LAYOUT.build(dict(tag=int(identifier.tag), hash=identifier.hash))

    @staticmethod
    def decode(data: tp.Union[bytes, bytearray, tp.Sequence[int]]) -> Identifier:
        data = bytes(data)
        if len(data) != IDENTIFIER_LENGTH:
            raise MalformedIdentifier(f"identifier must be {IDENTIFIER_LENGTH} bytes, got {len(data)}")
        try:
            parsed = IDENTIFIER_LAYOUT.parse(data)
        except ValidationError:
            raise MalformedIdentifier(f"unknown identifier tag {data[0]}")
        return Identifier(IdentifierTag(parsed.tag), parsed.hash)

    @classmethod
    def decode_ambiguous(cls, cl_value: tp.Any) -> Identifier:
        """Decode an identifier from whatever wire shape the node used.

        The same logical field shows up as a native tagged key (formatted
        string or ``{"Hash": ...}`` object) or as an opaque 33-byte list,
        depending on where it is stored.
        """
        if isinstance(cl_value, Identifier):
            return cl_value
        if isinstance(cl_value, str):
            return Identifier.parse(cl_value)
        if isinstance(cl_value, (bytes, bytearray)):
            return cls.decode(cl_value)
        if isinstance(cl_value, (list, tuple)):
            if not all(isinstance(item, int) for item in cl_value):
                raise MalformedIdentifier(f"byte list contains non-integers: {cl_value!r}")
            return cls.decode(bytes(cl_value))
        if isinstance(cl_value, dict):
            if "cl_type" in cl_value:
                return cls._decode_cl_value(cl_value)
            if len(cl_value) == 1:
                variant, inner = next(iter(cl_value.items()))
                if variant in NATIVE_KEY_VARIANTS:
                    if isinstance(inner, str) and not any(inner.startswith(p) for p, _ in FORMATTED_PREFIXES):
                        return Identifier(NATIVE_KEY_VARIANTS[variant], _hash_bytes(inner))
                    return cls.decode_ambiguous(inner)
        raise MalformedIdentifier(f"cannot decode identifier from {cl_value!r}")

    @classmethod
    def _decode_cl_value(cls, cl_value: tp.Dict) -> Identifier:
        parsed = cl_value.get("parsed")
        if parsed is not None:
            return cls.decode_ambiguous(parsed)
        raw = _from_hex(cl_value.get("bytes", ""))
        if cl_value["cl_type"] == {"List": "U8"}:
            raw = bytes(BYTE_LIST_LAYOUT.parse(raw))
        return cls.decode(raw)


class NumericCodec:
    @staticmethod
    def encode_index(index: int) -> bytes:
        if not 0 <= index <= MAX_INDEX:
            raise ValueError(f"storage index {index} does not fit in u32")
        return STORAGE_INDEX_LAYOUT.build(index)

    @staticmethod
    def decode_uint(data: tp.Union[bytes, bytearray, tp.Sequence[int]]) -> int:
        return int.from_bytes(bytes(data), "little")

    @staticmethod
    def encode_uint(value: int) -> bytes:
        if value < 0:
            raise ValueError(f"unsigned value expected, got {value}")
        return value.to_bytes((value.bit_length() + 7) // 8, "little")

    @classmethod
    def decode_prefixed_uint(cls, data: tp.Union[bytes, bytearray, tp.Sequence[int]]) -> tp.Tuple[int, int]:
        """Return ``(value, consumed)`` for a length-prefixed little-endian integer."""
        try:
            parsed = BIG_UINT_LAYOUT.parse(bytes(data))
        except (StreamError, ConstructError) as e:
            raise ValueError(f"truncated big integer: {e}")
        return cls.decode_uint(parsed.data), 1 + parsed.length

    @classmethod
    def encode_prefixed_uint(cls, value: int) -> bytes:
        data = cls.encode_uint(value)
        return BIG_UINT_LAYOUT.build(dict(length=len(data), data=data))
