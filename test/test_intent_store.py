"""
Tests for the intent store: uniqueness rules, compare-and-swap transitions,
failure recording and lease re-claims.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from coinlaunch.database import IntentDatabase
from coinlaunch.errors import (
    DuplicateNameError,
    DuplicatePostError,
    DuplicateSymbolError,
    ImmutableFieldError,
    IntentNotFoundError,
    InvalidTransitionError,
    StaleStateError,
)
from coinlaunch.models import IntentState, can_transition


class TestCreateIntent:

    def test_new_intent_awaits_mint(self, store):
        intent = store.create_intent('p1', 'Bitcoin', 'BTC', 'user-1',
                                     logo_ref='https://img/1.png', requester_username='alice')

        assert intent.state == IntentState.AWAITING_MINT
        assert intent.name == 'Bitcoin'
        assert intent.symbol == 'BTC'
        assert intent.requester_username == 'alice'
        assert intent.logo_ref == 'https://img/1.png'
        assert intent.token_address is None
        assert store.get(intent.id) == intent

    def test_duplicate_post_rejected(self, store):
        store.create_intent('p1', 'Bitcoin', 'BTC', 'user-1')
        with pytest.raises(DuplicatePostError):
            store.create_intent('p1', 'Other', 'OTH', 'user-2')

    def test_duplicate_name_rejected(self, store):
        store.create_intent('p1', 'Bitcoin', 'BTC', 'user-1')
        with pytest.raises(DuplicateNameError):
            store.create_intent('p2', 'Bitcoin', 'XBT', 'user-2')

    def test_duplicate_symbol_rejected(self, store):
        store.create_intent('p1', 'Bitcoin', 'BTC', 'user-1')
        with pytest.raises(DuplicateSymbolError):
            store.create_intent('p2', 'Bitcoin Two', 'BTC', 'user-2')

    def test_failed_intent_releases_name_and_symbol(self, store):
        first = store.create_intent('p1', 'Bitcoin', 'BTC', 'user-1')
        store.record_failure(first.id, 'on-chain revert')

        second = store.create_intent('p2', 'Bitcoin', 'BTC', 'user-1')
        assert second.state == IntentState.AWAITING_MINT

    def test_comment_failed_keeps_name_and_symbol(self, store, minted_intent):
        intent = minted_intent(name='Bitcoin', symbol='BTC')
        store.transition(intent.id, IntentState.MINTED, IntentState.COMMENTING)
        assert store.record_failure(intent.id, 'unauthorized').state == IntentState.COMMENT_FAILED

        with pytest.raises(DuplicateNameError):
            store.create_intent('p-new', 'Bitcoin', 'BTC2', 'user-2')

    def test_get_missing_raises(self, store):
        with pytest.raises(IntentNotFoundError):
            store.get(999)
        assert store.get_by_post_id('nope') is None


class TestTransitions:

    def test_lifecycle_edges(self):
        assert can_transition(IntentState.AWAITING_MINT, IntentState.MINTING)
        assert can_transition(IntentState.AWAITING_MINT, IntentState.MINTED)
        assert can_transition(IntentState.MINTING, IntentState.MINTING)
        assert can_transition(IntentState.COMMENTING, IntentState.COMMENT_FAILED)
        assert not can_transition(IntentState.MINTED, IntentState.FAILED)
        assert not can_transition(IntentState.COMMENTED, IntentState.COMMENTING)
        assert not can_transition(IntentState.FAILED, IntentState.AWAITING_MINT)

    def test_claim_moves_state_and_applies_patch(self, store, make_intent):
        intent = make_intent()
        claimed = store.transition(intent.id, IntentState.AWAITING_MINT, IntentState.MINTING,
                                   {'escrow_wallet': '0xabc'})

        assert claimed.state == IntentState.MINTING
        assert claimed.escrow_wallet == '0xabc'
        assert claimed.updated_at >= intent.updated_at

    def test_edge_outside_graph_rejected(self, store, make_intent):
        intent = make_intent()
        with pytest.raises(InvalidTransitionError):
            store.transition(intent.id, IntentState.AWAITING_MINT, IntentState.COMMENTED)
        assert store.get(intent.id).state == IntentState.AWAITING_MINT

    def test_stale_from_state_rejected(self, store, make_intent):
        intent = make_intent()
        store.transition(intent.id, IntentState.AWAITING_MINT, IntentState.MINTING)

        with pytest.raises(StaleStateError):
            store.transition(intent.id, IntentState.AWAITING_MINT, IntentState.MINTING)

    def test_token_address_is_immutable(self, minted_intent, store):
        intent = minted_intent(token_address='0x' + 'ab' * 20)

        with pytest.raises(ImmutableFieldError):
            store.transition(intent.id, IntentState.MINTED, IntentState.COMMENTING,
                             {'token_address': '0x' + 'ef' * 20})
        assert store.get(intent.id).state == IntentState.MINTED

    def test_unknown_patch_field_rejected(self, store, make_intent):
        intent = make_intent()
        with pytest.raises(ValueError):
            store.transition(intent.id, IntentState.AWAITING_MINT, IntentState.MINTING, {'name': 'Hacked'})

    def test_exactly_one_concurrent_claimant_wins(self, db_path, make_intent):
        intent = make_intent()
        # Separate store objects, as separate processes would have
        stores = [IntentDatabase(db_path) for _ in range(8)]

        def claim(s):
            try:
                s.transition(intent.id, IntentState.AWAITING_MINT, IntentState.MINTING)
                return True
            except StaleStateError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(claim, stores))

        assert results.count(True) == 1
        assert stores[0].get(intent.id).state == IntentState.MINTING


class TestRecordFailure:

    def test_mint_stage_becomes_failed(self, store, make_intent):
        intent = make_intent()
        failed = store.record_failure(intent.id, 'on-chain revert')

        assert failed.state == IntentState.FAILED
        assert failed.error == 'on-chain revert'

    def test_comment_stage_becomes_comment_failed(self, store, minted_intent):
        intent = minted_intent()
        assert store.record_failure(intent.id, 'too long').state == IntentState.COMMENT_FAILED

    def test_terminal_state_keeps_state(self, store, make_intent):
        intent = make_intent()
        store.record_failure(intent.id, 'first')
        again = store.record_failure(intent.id, 'second')

        assert again.state == IntentState.FAILED
        assert again.error == 'second'

    def test_reason_truncated(self, store, make_intent):
        intent = make_intent()
        assert len(store.record_failure(intent.id, 'x' * 2000).error) == 500


class TestQueries:

    def test_find_by_state_oldest_first_with_limit(self, store, make_intent):
        ids = [make_intent().id for _ in range(4)]

        found = store.find_by_state(IntentState.AWAITING_MINT, limit=3)
        assert [i.id for i in found] == ids[:3]

    def test_find_by_state_tx_ref_filter(self, store, make_intent):
        with_tx = make_intent()
        without_tx = make_intent()
        for intent in (with_tx, without_tx):
            store.transition(intent.id, IntentState.AWAITING_MINT, IntentState.MINTING)
        store.transition(with_tx.id, IntentState.MINTING, IntentState.MINTING, {'mint_tx_hash': '0x01'})

        assert [i.id for i in store.find_by_state(IntentState.MINTING, with_tx_ref=True)] == [with_tx.id]
        assert [i.id for i in store.find_by_state(IntentState.MINTING, with_tx_ref=False)] == [without_tx.id]

    def test_find_by_state_claimed_before(self, store, make_intent):
        make_intent()
        past = datetime.now() - timedelta(minutes=10)
        future = datetime.now() + timedelta(seconds=5)

        assert store.find_by_state(IntentState.AWAITING_MINT, claimed_before=past) == []
        assert len(store.find_by_state(IntentState.AWAITING_MINT, claimed_before=future)) == 1

    def test_count_by_state(self, store, make_intent):
        make_intent()
        failed = make_intent()
        store.record_failure(failed.id, 'boom')

        counts = store.count_by_state()
        assert counts['AWAITING_MINT'] == 1
        assert counts['FAILED'] == 1
        assert counts['COMMENTED'] == 0

    def test_requester_id_for_username(self, store, make_intent):
        make_intent(requester_id='42', requester_username='Alice')

        assert store.requester_id_for('@alice') == '42'
        assert store.requester_id_for('bob') is None


class TestReclaim:

    def test_reclaim_requires_expired_lease(self, store, make_intent):
        intent = make_intent()
        store.transition(intent.id, IntentState.AWAITING_MINT, IntentState.MINTING)

        with pytest.raises(StaleStateError):
            store.reclaim(intent.id, IntentState.MINTING, datetime.now() - timedelta(minutes=10))

        reclaimed = store.reclaim(intent.id, IntentState.MINTING, datetime.now() + timedelta(seconds=5))
        assert reclaimed.state == IntentState.MINTING

    def test_reclaim_wrong_state(self, store, make_intent):
        intent = make_intent()
        with pytest.raises(StaleStateError):
            store.reclaim(intent.id, IntentState.MINTING, datetime.now() + timedelta(seconds=5))

    def test_reclaim_only_for_transient_states(self, store, make_intent):
        intent = make_intent()
        with pytest.raises(InvalidTransitionError):
            store.reclaim(intent.id, IntentState.AWAITING_MINT, datetime.now())
