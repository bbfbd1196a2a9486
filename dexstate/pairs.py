import logging
import typing as tp
from dataclasses import dataclass

import allure

from dexstate import keys
from dexstate.codecs import Identifier
from dexstate.events import EVENT_SCHEMAS, EventGap, EventRecord
from dexstate.resolver import EntityRef, StateResolver, as_identifier
from dexstate.schemas import FACTORY_SCHEMA, PAIR_SCHEMA, ContractSchema

LOG = logging.getLogger(__name__)

PAIR_CREATED = "PairCreated"


@dataclass(frozen=True)
class PairState:
    """Pair fields as stored; None marks a field never written."""

    token0: tp.Optional[Identifier]
    token1: tp.Optional[Identifier]
    reserve0: tp.Optional[int]
    reserve1: tp.Optional[int]
    block_timestamp_last: tp.Optional[int]


class PairLookupService:
    def __init__(
        self,
        resolver: StateResolver,
        factory_ref: EntityRef,
        factory_schema: ContractSchema = FACTORY_SCHEMA,
        pair_schema: ContractSchema = PAIR_SCHEMA,
    ):
        self.resolver = resolver
        self.factory_ref = factory_ref
        self.factory_schema = factory_schema
        self.pair_schema = pair_schema

    @allure.step("Find pair")
    def find_pair(
        self, token_a: EntityRef, token_b: EntityRef, state_root: tp.Optional[str] = None
    ) -> tp.Optional[Identifier]:
        """Pair registered for two tokens, in either order; None if the factory has none."""
        lookup_key = keys.pair_lookup_key(as_identifier(token_a), as_identifier(token_b))
        pair = self.resolver.read(
            self.factory_ref, self.factory_schema.descriptor("pairs"), lookup_key, state_root=state_root
        )
        if pair is None:
            LOG.info(f"No pair for {token_a} / {token_b}")
        return pair

    @allure.step("Get pair reserves")
    def get_reserves(
        self, pair_ref: EntityRef, state_root: tp.Optional[str] = None
    ) -> tp.Optional[tp.Tuple[int, int]]:
        """None when neither reserve was ever written; a pair with liquidity always has both."""
        snapshot = self.resolver.snapshot(pair_ref, state_root)
        reserve0, reserve1 = snapshot.read_many(
            [self.pair_schema.descriptor("reserve0"), self.pair_schema.descriptor("reserve1")]
        )
        if reserve0 is None and reserve1 is None:
            LOG.info(f"No reserves stored for {pair_ref}")
            return None
        return reserve0 or 0, reserve1 or 0

    @allure.step("Get pair state")
    def get_pair_state(self, pair_ref: EntityRef, state_root: tp.Optional[str] = None, workers: int = 1) -> PairState:
        snapshot = self.resolver.snapshot(pair_ref, state_root)
        names = ("token0", "token1", "reserve0", "reserve1", "block_timestamp_last")
        values = dict(
            zip(names, snapshot.read_many([self.pair_schema.descriptor(name) for name in names], workers=workers))
        )
        return PairState(
            token0=values["token0"],
            token1=values["token1"],
            reserve0=values["reserve0"],
            reserve1=values["reserve1"],
            block_timestamp_last=values["block_timestamp_last"],
        )

    def all_pairs_length(self, state_root: tp.Optional[str] = None) -> int:
        length = self.resolver.read(
            self.factory_ref, self.factory_schema.descriptor("all_pairs_length"), state_root=state_root
        )
        return length or 0

    def pair_at(self, index: int, state_root: tp.Optional[str] = None) -> tp.Optional[Identifier]:
        return self.resolver.read(
            self.factory_ref, self.factory_schema.descriptor("all_pairs"), index, state_root=state_root
        )

    @allure.step("List pairs")
    def list_pairs(self, state_root: tp.Optional[str] = None) -> tp.List[Identifier]:
        snapshot = self.resolver.snapshot(self.factory_ref, state_root)
        length = snapshot.read(self.factory_schema.descriptor("all_pairs_length")) or 0
        field = self.factory_schema.descriptor("all_pairs")
        pairs = []
        for index in range(length):
            pair = snapshot.read(field, index)
            if pair is None:
                LOG.warning(f"all_pairs[{index}] is empty although all_pairs_length is {length}")
                continue
            pairs.append(pair)
        return pairs

    @allure.step("Get PairCreated events")
    def pair_created_events(self, state_root: tp.Optional[str] = None) -> tp.List[tp.Union[EventRecord, EventGap]]:
        """Factory events narrowed to pair creations; gaps are kept so callers see what was skipped."""
        events = self.resolver.read_events(self.factory_ref, EVENT_SCHEMAS, state_root=state_root)
        return [event for event in events if isinstance(event, EventGap) or event.short_name == PAIR_CREATED]
