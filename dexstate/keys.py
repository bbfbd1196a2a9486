"""Storage key derivation for the contract ``state`` dictionary.

A plain field lives under ``blake2b-256(be32(index))``; a mapping entry under
``blake2b-256(be32(index) ++ serialized_key)``. Nothing here knows about
schemas, callers pass the final index.
"""
import hashlib
import typing as tp

from dexstate.codecs import AddressCodec, Identifier, NumericCodec
from dexstate.consts import STORAGE_KEY_LENGTH, ValueType
from dexstate.layouts import SCALAR_LAYOUTS


def blake2b256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=STORAGE_KEY_LENGTH).digest()


def plain_key(index: int) -> bytes:
    return blake2b256(NumericCodec.encode_index(index))


def mapping_key(index: int, lookup_key: tp.Union[bytes, bytearray]) -> bytes:
    return blake2b256(NumericCodec.encode_index(index) + bytes(lookup_key))


def storage_key(index: int, lookup_key: tp.Optional[bytes] = None) -> bytes:
    if lookup_key is None:
        return plain_key(index)
    return mapping_key(index, lookup_key)


def dictionary_item_key(key: bytes) -> str:
    """Dictionary item keys travel over RPC as lowercase hex."""
    return key.hex()


def sort_pair(token_a: Identifier, token_b: Identifier) -> tp.Tuple[Identifier, Identifier]:
    return (token_a, token_b) if token_a <= token_b else (token_b, token_a)


def pair_lookup_key(token_a: Identifier, token_b: Identifier) -> bytes:
    first, second = sort_pair(token_a, token_b)
    return AddressCodec.encode(first) + AddressCodec.encode(second)


def serialize_lookup_key(value: tp.Any, key_type: tp.Optional[ValueType] = None) -> bytes:
    """Serialize a mapping key the way the contract runtime does."""
    if isinstance(value, Identifier):
        return AddressCodec.encode(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, tuple):
        return b"".join(serialize_lookup_key(item) for item in value)
    if isinstance(value, str):
        return SCALAR_LAYOUTS[ValueType.STRING].build(value)
    if isinstance(value, bool):
        return SCALAR_LAYOUTS[ValueType.BOOL].build(value)
    if isinstance(value, int):
        key_type = key_type or ValueType.U32
        if key_type.is_big_uint:
            return NumericCodec.encode_prefixed_uint(value)
        return SCALAR_LAYOUTS[key_type].build(value)
    raise TypeError(f"unsupported mapping key type: {type(value).__name__}")
