"""
NFT staking pool tests.

Exercises the deposit / withdraw / emergency / claim state machine against
real ERC20 and ERC721 contracts with a manual clock.
"""

import pytest

from nftstake.core.contracts.erc721 import ERC721_RECEIVED
from nftstake.core.defi.nft_staking_pool import NFTStakingPool
from nftstake.core.staking_exceptions import (
    AlreadyInitializedError,
    AssetAlreadyStakedError,
    ClaimsDisabledError,
    CustodyTransferError,
    InvalidConfigurationError,
    InvalidScoreError,
    NotInitializedError,
    OwnershipMismatchError,
    ReentrancyError,
    UnauthorizedError,
)
from nftstake.core.vm.exceptions import VMExecutionError

from ..conftest import ADMIN, ALICE, BOB, CAROL, POOL_FUNDING

MALLORY = "0x" + "9" * 40


def event_types(pool):
    return [event.event_type for event in pool.events]


# ==================== Reward Accrual ====================


class TestRewardAccrual:
    def test_two_depositors_share_pro_rata(self, pool, clock):
        pool.deposit(ALICE, 1)  # score 100 at t=0
        clock.advance(10)
        assert pool.pending_reward(ALICE) == 100

        pool.deposit(BOB, 4)  # score 100 at t=10
        clock.advance(10)
        assert pool.pending_reward(ALICE) == 150
        assert pool.pending_reward(BOB) == 50

    def test_claim_pays_and_zeroes_pending(self, pool, clock, reward_token):
        pool.deposit(ALICE, 1)
        clock.advance(10)
        pool.deposit(BOB, 4)
        clock.advance(10)

        paid = pool.claim_reward(ALICE)

        assert paid == 150
        assert reward_token.balance_of(ALICE) == 150
        assert reward_token.balance_of(pool.address) == POOL_FUNDING - 150
        assert pool.pending_reward(ALICE) == 0
        record = pool.ledger.get(ALICE)
        assert record.earned_cumulative == record.released_cumulative == 150
        assert pool.events[-1].event_type == "RewardPaid"
        assert pool.events[-1].amount == 150

    def test_second_claim_at_same_instant_pays_nothing(self, pool, clock):
        pool.deposit(ALICE, 1)
        clock.advance(10)
        assert pool.claim_reward(ALICE) == 100
        assert pool.claim_reward(ALICE) == 0
        assert pool.ledger.get(ALICE).released_cumulative == 100

    def test_no_retroactive_credit_on_first_deposit(self, pool, clock):
        pool.deposit(BOB, 4)
        clock.advance(100)
        pool.deposit(ALICE, 1)
        assert pool.pending_reward(ALICE) == 0
        assert pool.pending_reward(BOB) == 1000

    def test_zero_stake_interval_accrues_nothing(self, pool, clock, reward_token):
        pool.deposit(ALICE, 1)
        clock.advance(10)
        assert pool.withdraw(ALICE, 1) == 100
        assert pool.ledger.get(ALICE) is None

        clock.advance(40)  # nothing staked from t=10 to t=50
        pool.deposit(BOB, 4)
        clock.advance(10)
        assert pool.pending_reward(BOB) == 100
        assert reward_token.balance_of(ALICE) == 100

    def test_rate_change_applies_from_change_onward(self, pool, clock):
        pool.deposit(ALICE, 1)
        clock.advance(10)
        pool.set_emission_rate(ADMIN, 20)
        clock.advance(10)
        assert pool.pending_reward(ALICE) == 100 + 200

    def test_weights_scale_shares(self, pool, clock):
        pool.deposit(ALICE, 1)  # 100
        pool.deposit(BOB, 5)  # 300
        clock.advance(40)
        assert pool.pending_reward(ALICE) == 100
        assert pool.pending_reward(BOB) == 300

    def test_zero_score_asset_earns_nothing(self, pool, clock):
        assert pool.deposit(BOB, 6) == 0
        clock.advance(10)
        assert pool.pending_reward(BOB) == 0
        assert pool.withdraw(BOB, 6) == 0
        assert pool.ledger.get(BOB) is None

    def test_unknown_depositor_has_no_pending(self, pool):
        assert pool.pending_reward(CAROL) == 0
        assert pool.claim_reward(CAROL) == 0

    def test_pending_is_zero_while_pool_is_empty(self, pool, clock):
        pool.deposit(ALICE, 1)
        clock.advance(10)
        pool.deposit(ALICE, 2)  # settles 100 into earned
        pool.emergency_withdraw(ALICE, 1)
        pool.emergency_withdraw(ALICE, 2)

        assert pool.accumulator.total_staked_weight == 0
        assert pool.pending_reward(ALICE) == 0
        assert pool.ledger.get(ALICE).unclaimed == 100

        # Credited reward shows again once anything is staked
        pool.deposit(BOB, 4)
        assert pool.pending_reward(ALICE) == 100


# ==================== Claims ====================


class TestClaims:
    def test_payout_capped_at_pool_balance(self, pool, clock, reward_token):
        reward_token.transfer(pool.address, ADMIN, POOL_FUNDING - 30)
        pool.deposit(ALICE, 1)
        clock.advance(10)

        paid = pool.claim_reward(ALICE)

        assert paid == 30
        assert reward_token.balance_of(ALICE) == 30
        assert reward_token.balance_of(pool.address) == 0
        record = pool.ledger.get(ALICE)
        assert record.earned_cumulative == 100
        assert record.released_cumulative == 100
        assert pool.events[-1].amount == 30

    def test_claims_disabled(self, pool, clock):
        pool.set_claims_enabled(ADMIN, False)
        pool.deposit(ALICE, 1)
        clock.advance(10)

        with pytest.raises(ClaimsDisabledError) as exc_info:
            pool.claim_reward(ALICE)

        assert exc_info.value.recoverable is True
        record = pool.ledger.get(ALICE)
        assert record.released_cumulative == 0
        assert pool.pending_reward(ALICE) == 100

    def test_withdraw_requires_claims(self, pool, clock):
        pool.set_claims_enabled(ADMIN, False)
        pool.deposit(ALICE, 1)
        clock.advance(10)

        with pytest.raises(ClaimsDisabledError):
            pool.withdraw(ALICE, 1)

        assert pool.staked_assets_of(ALICE) == [1]
        assert pool.owner_of_stake(1) == ALICE

    def test_claims_start_disabled(self, bare_pool, reward_token, collection, oracle):
        bare_pool.initialize(ADMIN, reward_token, collection, oracle, emission_rate=1)
        with pytest.raises(ClaimsDisabledError):
            bare_pool.claim_reward(ALICE)


# ==================== Withdrawals ====================


class TestWithdraw:
    def test_withdraw_returns_custody(self, pool, clock, collection):
        pool.deposit(ALICE, 1)
        assert collection.owner_of(1) == pool.address
        clock.advance(5)

        pool.withdraw(ALICE, 1)

        assert collection.owner_of(1) == ALICE
        assert pool.owner_of_stake(1) is None
        assert pool.accumulator.total_staked_weight == 0
        assert event_types(pool)[-2:] == ["RewardPaid", "Unstaked"]

    def test_swap_and_truncate_keeps_index(self, pool):
        for asset_id in (1, 2, 3):
            pool.deposit(ALICE, asset_id)

        pool.withdraw(ALICE, 1)

        assert pool.staked_assets_of(ALICE) == [3, 2]
        assert pool.ledger.get(ALICE).asset_index == {3: 0, 2: 1}
        assert pool.accumulator.total_staked_weight == 150
        pool.check_invariants()

    def test_non_owner_cannot_withdraw(self, pool):
        pool.deposit(ALICE, 1)
        with pytest.raises(OwnershipMismatchError) as exc_info:
            pool.withdraw(BOB, 1)
        assert exc_info.value.asset_id == 1
        with pytest.raises(OwnershipMismatchError):
            pool.emergency_withdraw(BOB, 1)
        with pytest.raises(OwnershipMismatchError):
            pool.withdraw(ALICE, 2)
        assert pool.staked_assets_of(ALICE) == [1]


# ==================== Emergency Withdraw ====================


class TestEmergencyWithdraw:
    def test_skips_settlement(self, pool, clock, collection, reward_token):
        pool.deposit(ALICE, 1)
        pool.deposit(ALICE, 2)
        clock.advance(10)
        assert pool.claim_reward(ALICE) == 100
        clock.advance(10)

        assert pool.emergency_withdraw(ALICE, 1) == 100

        record = pool.ledger.get(ALICE)
        assert record.earned_cumulative == 100
        assert record.released_cumulative == 100
        assert pool.staked_assets_of(ALICE) == [2]
        assert pool.owner_of_stake(1) is None
        assert collection.owner_of(1) == ALICE
        assert reward_token.balance_of(ALICE) == 100
        assert pool.events[-1].event_type == "EmergencyUnstake"

        # Asset 2 keeps its full share; asset 1's unsettled accrual is forfeited
        clock.advance(10)
        assert pool.pending_reward(ALICE) == 150
        pool.check_invariants()

    def test_unsettled_record_is_discarded(self, pool, clock, reward_token):
        pool.deposit(ALICE, 1)
        clock.advance(10)
        pool.emergency_withdraw(ALICE, 1)
        assert pool.ledger.get(ALICE) is None
        assert pool.pending_reward(ALICE) == 0
        assert reward_token.balance_of(ALICE) == 0

    def test_credited_reward_survives_full_exit(self, pool, clock, reward_token):
        pool.deposit(ALICE, 1)
        pool.deposit(ALICE, 2)
        clock.advance(10)
        pool.deposit(ALICE, 3)  # settles 100 into earned
        clock.advance(10)
        for asset_id in (1, 2, 3):
            pool.emergency_withdraw(ALICE, asset_id)

        record = pool.ledger.get(ALICE)
        assert record is not None
        assert record.weight == 0
        assert record.unclaimed == 100

        assert pool.claim_reward(ALICE) == 100
        assert reward_token.balance_of(ALICE) == 100
        assert pool.ledger.get(ALICE) is None

    def test_works_while_reward_token_is_paused(self, pool, clock, reward_token, collection):
        pool.deposit(ALICE, 1)
        clock.advance(10)
        reward_token.pause(ADMIN)

        with pytest.raises(VMExecutionError, match="paused"):
            pool.withdraw(ALICE, 1)
        assert pool.owner_of_stake(1) == ALICE

        pool.emergency_withdraw(ALICE, 1)
        assert collection.owner_of(1) == ALICE


# ==================== Atomicity ====================


class TestRollback:
    def test_deposit_rolls_back_on_custody_failure(self, pool, clock, collection):
        clock.advance(5)
        events_before = len(pool.events)
        collection.pause(ADMIN)

        with pytest.raises(CustodyTransferError):
            pool.deposit(ALICE, 1)

        assert len(pool.ledger) == 0
        assert pool.token_owner == {}
        assert pool.accumulator.total_staked_weight == 0
        assert pool.accumulator.last_checkpoint_time == 0
        assert len(pool.events) == events_before
        assert collection.owner_of(1) == ALICE

    def test_depositing_someone_elses_asset_fails(self, pool, collection):
        with pytest.raises(CustodyTransferError, match="incorrect owner"):
            pool.deposit(BOB, 1)
        assert pool.ledger.get(BOB) is None
        assert collection.owner_of(1) == ALICE

    def test_withdraw_rolls_back_claim_on_custody_failure(self, pool, clock, collection, reward_token):
        pool.deposit(ALICE, 1)
        clock.advance(10)
        events_before = len(pool.events)
        collection.pause(ADMIN)

        with pytest.raises(CustodyTransferError):
            pool.withdraw(ALICE, 1)

        record = pool.ledger.get(ALICE)
        assert record.earned_cumulative == 0
        assert record.released_cumulative == 0
        assert record.staked_asset_ids == [1]
        assert reward_token.balance_of(ALICE) == 0
        assert reward_token.balance_of(pool.address) == POOL_FUNDING
        assert pool.accumulator.last_checkpoint_time == 0
        assert len(pool.events) == events_before
        assert pool.pending_reward(ALICE) == 100

        collection.unpause(ADMIN)
        assert pool.withdraw(ALICE, 1) == 100

    def test_invalid_score_reverts_deposit(self, bare_pool, reward_token, collection):
        class BrokenOracle:
            def __init__(self, score):
                self.score = score

            def get_score(self, asset_id):
                return self.score

        for bad_score in (-5, 1.5, "100"):
            pool = NFTStakingPool(address="0x" + "6" * 40, time_provider=bare_pool.time_provider)
            pool.initialize(ADMIN, reward_token, collection, BrokenOracle(bad_score), emission_rate=1)
            collection.set_approval_for_all(ALICE, pool.address, True)
            with pytest.raises(InvalidScoreError):
                pool.deposit(ALICE, 1)
            assert pool.ledger.get(ALICE) is None
            assert collection.owner_of(1) == ALICE


# ==================== Reentrancy ====================


class ReentrantReceiver:
    """Depositor contract that tries to claim while its asset is being returned."""

    def __init__(self, pool):
        self.pool = pool
        self.errors = []

    def on_erc721_received(self, operator, from_addr, token_id, data):
        try:
            self.pool.claim_reward(MALLORY)
        except ReentrancyError as exc:
            self.errors.append(exc)
            raise
        return ERC721_RECEIVED


class RefusingReceiver:
    def on_erc721_received(self, operator, from_addr, token_id, data):
        raise RuntimeError("receiver refuses asset")


class CrossPoolReceiver:
    """Depositor contract that stakes in a second pool while receiving an asset."""

    def __init__(self, other_pool):
        self.other_pool = other_pool
        self.errors = []

    def on_erc721_received(self, operator, from_addr, token_id, data):
        try:
            self.other_pool.deposit(BOB, 5)
        except ReentrancyError as exc:
            self.errors.append(exc)
        raise RuntimeError("receiver refuses asset")


class TestReentrancy:
    def test_receiver_hook_cannot_reenter(self, pool, clock, collection, oracle, reward_token):
        collection.mint(ADMIN, MALLORY, 9)
        oracle.set_score(ADMIN, 9, 100)
        collection.set_approval_for_all(MALLORY, pool.address, True)
        pool.deposit(MALLORY, 9)
        receiver = ReentrantReceiver(pool)
        collection.register_receiver(MALLORY, receiver)
        clock.advance(10)

        with pytest.raises(CustodyTransferError) as exc_info:
            pool.withdraw(MALLORY, 9)

        assert isinstance(exc_info.value.__cause__, ReentrancyError)
        assert len(receiver.errors) == 1
        assert collection.owner_of(9) == pool.address
        assert pool.owner_of_stake(9) == MALLORY
        assert reward_token.balance_of(MALLORY) == 0
        assert pool.pending_reward(MALLORY) == 100

        # Guard is released after the failed call
        pool.deposit(ALICE, 1)

    def test_oracle_cannot_reenter(self, bare_pool, reward_token, collection):
        class ReentrantOracle:
            def __init__(self):
                self.pool = None

            def get_score(self, asset_id):
                self.pool.deposit(ALICE, 2)
                return 1

        oracle = ReentrantOracle()
        oracle.pool = bare_pool
        bare_pool.initialize(ADMIN, reward_token, collection, oracle, emission_rate=1)
        collection.set_approval_for_all(ALICE, bare_pool.address, True)

        with pytest.raises(ReentrancyError):
            bare_pool.deposit(ALICE, 1)
        assert len(bare_pool.ledger) == 0
        assert bare_pool._locked is False

    def test_direct_transfers_to_pool_are_refused(self, pool, collection):
        with pytest.raises(VMExecutionError, match="direct transfers"):
            collection.safe_transfer_from(ALICE, ALICE, pool.address, 1)
        assert collection.owner_of(1) == ALICE

    def test_receiver_error_is_wrapped_as_custody_failure(self, pool, clock, collection, reward_token):
        pool.deposit(BOB, 4)
        collection.register_receiver(BOB, RefusingReceiver())
        clock.advance(10)

        with pytest.raises(CustodyTransferError) as exc_info:
            pool.withdraw(BOB, 4)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert collection.owner_of(4) == pool.address
        assert pool.owner_of_stake(4) == BOB
        assert reward_token.balance_of(BOB) == 0

    def test_hook_cannot_operate_another_pool_on_shared_contracts(
        self, pool, clock, collection, reward_token, oracle
    ):
        other = NFTStakingPool(address="0x" + "7" * 40, time_provider=clock)
        other.initialize(ADMIN, reward_token, collection, oracle, emission_rate=10)
        collection.set_approval_for_all(BOB, other.address, True)
        pool.deposit(BOB, 4)
        receiver = CrossPoolReceiver(other)
        collection.register_receiver(BOB, receiver)
        clock.advance(10)

        with pytest.raises(CustodyTransferError):
            pool.withdraw(BOB, 4)

        assert len(receiver.errors) == 1
        assert other.owner_of_stake(5) is None
        assert other.accumulator.total_staked_weight == 0
        assert collection.owner_of(5) == BOB
        assert collection.owner_of(4) == pool.address
        assert collection.locked_by == ""
        assert reward_token.locked_by == ""

        # Contracts are free again once the failed operation is over
        other.deposit(BOB, 5)
        assert collection.owner_of(5) == other.address
        other.check_invariants()

    def test_default_pool_addresses_are_distinct(self, clock):
        first = NFTStakingPool(time_provider=clock)
        second = NFTStakingPool(time_provider=clock)
        assert first.address != second.address


# ==================== Deposit Preconditions ====================


class TestDeposit:
    def test_deposit_records_stake(self, pool, collection):
        assert pool.deposit(ALICE, 1) == 100
        assert pool.staked_assets_of(ALICE) == [1]
        assert pool.owner_of_stake(1) == ALICE
        assert collection.owner_of(1) == pool.address
        event = pool.events[-1]
        assert (event.event_type, event.user, event.amount, event.token_id) == ("Staked", ALICE, 100, 1)

    def test_asset_cannot_be_staked_twice(self, pool):
        pool.deposit(ALICE, 1)
        with pytest.raises(AssetAlreadyStakedError):
            pool.deposit(ALICE, 1)
        assert pool.accumulator.total_staked_weight == 100

    def test_uninitialized_pool_rejects_calls(self, bare_pool):
        with pytest.raises(NotInitializedError):
            bare_pool.deposit(ALICE, 1)
        with pytest.raises(NotInitializedError):
            bare_pool.pending_reward(ALICE)

    def test_weight_recorded_at_deposit_is_removed_on_withdraw(self, pool, oracle, clock):
        pool.deposit(BOB, 5)
        oracle.set_score(ADMIN, 5, 1)
        assert pool.score_of(5) == 1
        clock.advance(1)
        pool.withdraw(BOB, 5)
        assert pool.accumulator.total_staked_weight == 0
        pool.check_invariants()


# ==================== Administration ====================


class TestAdministration:
    def test_initialize_only_once(self, pool, reward_token, collection, oracle):
        with pytest.raises(AlreadyInitializedError):
            pool.initialize(ADMIN, reward_token, collection, oracle, emission_rate=10)

    def test_initialize_rejects_zero_rate(self, bare_pool, reward_token, collection, oracle):
        with pytest.raises(InvalidConfigurationError):
            bare_pool.initialize(ADMIN, reward_token, collection, oracle, emission_rate=0)
        assert bare_pool.config is None

    def test_initialize_emits_reward_token_binding(self, pool, reward_token):
        first = pool.events[0]
        assert first.event_type == "RewardsTokenUpdated"
        assert first.value == reward_token.address

    def test_admin_only_setters(self, pool):
        with pytest.raises(UnauthorizedError):
            pool.set_emission_rate(ALICE, 5)
        with pytest.raises(UnauthorizedError):
            pool.set_claims_enabled(ALICE, False)
        with pytest.raises(UnauthorizedError):
            pool.transfer_ownership(ALICE, ALICE)
        assert pool.config.emission_rate == 10

    def test_zero_emission_rate_rejected(self, pool):
        with pytest.raises(InvalidConfigurationError):
            pool.set_emission_rate(ADMIN, 0)
        assert pool.config.emission_rate == 10

    def test_setters_emit_events(self, pool):
        pool.set_emission_rate(ADMIN, 25)
        pool.set_claims_enabled(ADMIN, False)
        assert event_types(pool)[-2:] == ["EmissionRateUpdated", "ClaimableStatusUpdated"]
        assert pool.events[-2].value == 25
        assert pool.events[-1].value is False

    def test_transfer_ownership(self, pool):
        pool.transfer_ownership(ADMIN, BOB)
        assert pool.config.admin == BOB
        with pytest.raises(UnauthorizedError):
            pool.set_emission_rate(ADMIN, 1)
        pool.set_emission_rate(BOB, 1)
        assert pool.config.emission_rate == 1
        with pytest.raises(InvalidConfigurationError):
            pool.transfer_ownership(BOB, "0x" + "0" * 40)


# ==================== Queries & Serialization ====================


class TestQueries:
    def test_score_of(self, pool):
        assert pool.score_of(5) == 300

    def test_stake_info(self, pool, clock):
        pool.deposit(ALICE, 1)
        pool.deposit(ALICE, 3)
        clock.advance(3)
        info = pool.stake_info(ALICE)
        assert info["staked_asset_ids"] == [1, 3]
        assert info["weight"] == 150
        assert info["pending"] == 30
        assert pool.stake_info(CAROL)["weight"] == 0

    def test_serialization_preserves_accounting(self, pool, clock, reward_token, collection, oracle):
        pool.deposit(ALICE, 1)
        pool.deposit(BOB, 5)
        clock.advance(10)
        pool.claim_reward(BOB)

        restored = NFTStakingPool.from_dict(
            pool.to_dict(), reward_token, collection, oracle, time_provider=clock
        )

        assert restored.pending_reward(ALICE) == pool.pending_reward(ALICE) == 25
        assert restored.pending_reward(BOB) == 0
        assert restored.staked_assets_of(BOB) == [5]
        assert restored.config.claims_enabled is True
        restored.check_invariants()

    def test_serialization_rejects_wrong_contracts(self, pool, collection, oracle):
        from nftstake.core.contracts.erc20 import ERC20Token

        other = ERC20Token(name="Other", symbol="OTH", owner=ADMIN, address="0x" + "f" * 40)
        with pytest.raises(InvalidConfigurationError):
            NFTStakingPool.from_dict(pool.to_dict(), other, collection, oracle)
