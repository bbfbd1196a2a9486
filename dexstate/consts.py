from enum import Enum, IntEnum

IDENTIFIER_HASH_LENGTH = 32
IDENTIFIER_LENGTH = IDENTIFIER_HASH_LENGTH + 1
STORAGE_KEY_LENGTH = 32
MAX_INDEX = 2 ** 32 - 1

# named keys the contract runtime writes on every installed contract
STATE_DICTIONARY = "state"
EVENTS_DICTIONARY = "__events"
EVENTS_LENGTH = "__events_length"

# "nothing stored there" is a query-failed code carrying one of these markers
QUERY_FAILED_CODES = (-32003, -32006, -32007)
NOT_FOUND_MARKERS = ("ValueNotFound", "value not found", "Failed to find dictionary item")

DEFAULT_TX_WAIT_TRIES = 180
DEFAULT_TX_WAIT_SLEEP = 5.0

PACKAGE_HASH_PREFIX = "hash-"
CONTRACT_HASH_PREFIX = "contract-"
ACCOUNT_HASH_PREFIX = "account-hash-"


class IdentifierTag(IntEnum):
    ACCOUNT = 0
    CONTRACT_HASH = 1


class FieldKind(Enum):
    PLAIN = "plain"
    MAPPING = "mapping"


class ValueType(Enum):
    ADDRESS = "address"
    BOOL = "bool"
    U8 = "u8"
    U32 = "u32"
    U64 = "u64"
    U128 = "u128"
    U256 = "u256"
    U512 = "u512"
    STRING = "string"
    BYTES = "bytes"
    EVENT = "event"

    @property
    def is_big_uint(self):
        return self in (ValueType.U128, ValueType.U256, ValueType.U512)

    @property
    def fixed_width(self):
        return {ValueType.BOOL: 1, ValueType.U8: 1, ValueType.U32: 4, ValueType.U64: 8}.get(self)


class DeploymentState(Enum):
    NOT_DEPLOYED = "not_deployed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    INIT_PENDING = "init_pending"
    INITIALIZED = "initialized"
    FAILED = "failed"


class FinalityStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
