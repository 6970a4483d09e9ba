"""Tests for ``ledger_sync.sync.merge``."""

from __future__ import annotations

from decimal import Decimal

import pytest

from helpers import make_record, ts
from ledger_sync.errors import MalformedRecordError
from ledger_sync.models import Record
from ledger_sync.sync.merge import (
    ConflictReason,
    ConflictResolution,
    Side,
    apply_resolutions,
    merge_records,
)


def _ids(records: list[Record]) -> set[str]:
    return {r.id for r in records}


class TestAdds:
    def test_disjoint_sets_are_classified_by_origin(self) -> None:
        local = [make_record("l1"), make_record("l2")]
        remote = [make_record("r1"), make_record("r2"), make_record("r3")]

        result = merge_records(local, remote)

        assert _ids(result.added_from_local) == {"l1", "l2"}
        assert _ids(result.added_from_remote) == {"r1", "r2", "r3"}
        assert len(result.merged) == 5
        assert not result.updated_from_local
        assert not result.updated_from_remote
        assert not result.has_conflicts

    def test_empty_sides_degrade_to_union(self) -> None:
        only = [make_record("a")]
        assert merge_records(only, []).merged == only
        assert merge_records([], only).merged == only
        assert merge_records([], []).merged == []


class TestNewerWins:
    def test_remote_newer_beyond_threshold(self) -> None:
        local = make_record("a", updated=0, amount="100")
        remote = make_record("a", updated=10, amount="150")

        result = merge_records([local], [remote], conflict_threshold_ms=1000)

        assert result.merged == [remote]
        assert result.updated_from_remote == [remote]
        assert len(result.auto_resolved) == 1
        assert result.auto_resolved[0].winner is Side.REMOTE
        assert result.auto_resolved[0].reason is ConflictReason.NEWER_TIMESTAMP

    def test_local_newer_beyond_threshold(self) -> None:
        local = make_record("a", updated=10, amount="100")
        remote = make_record("a", updated=0, amount="150")

        result = merge_records([local], [remote], conflict_threshold_ms=1000)

        assert result.merged == [local]
        assert result.updated_from_local == [local]
        assert result.auto_resolved[0].winner is Side.LOCAL

    def test_equal_timestamps_remote_wins_when_not_a_conflict(self) -> None:
        local = make_record("a", updated=5, amount="100")
        remote = make_record("a", updated=5, amount="150")

        result = merge_records([local], [remote], conflict_threshold_ms=-1)

        assert result.merged == [remote]
        assert result.updated_from_remote == [remote]

    def test_soft_delete_propagates_as_newer_edit(self) -> None:
        local = make_record("a", updated=100, deleted=100)
        remote = make_record("a", updated=0)

        result = merge_records([local], [remote])

        assert result.merged[0].is_deleted
        assert result.updated_from_local == [local]

    def test_winner_is_independent_of_argument_order(self) -> None:
        a_old = make_record("a", updated=0, amount="1")
        a_new = make_record("a", updated=30, amount="2")
        b_new = make_record("b", updated=60, amount="3")
        b_old = make_record("b", updated=0, amount="4")

        forward = merge_records([a_old, b_new], [a_new, b_old])
        backward = merge_records([a_new, b_old], [a_old, b_new])

        assert forward.merged == backward.merged
        assert {r.amount for r in forward.merged} == {Decimal("2"), Decimal("3")}


class TestTrueConflicts:
    def test_within_threshold_is_excluded_from_merged(self) -> None:
        local = make_record("a", updated=0, amount="100")
        remote = make_record("a", updated=0.5, amount="150")

        result = merge_records([local], [remote], conflict_threshold_ms=1000)

        assert result.has_conflicts
        assert "a" not in _ids(result.merged)
        conflict = result.true_conflicts[0]
        assert conflict.reason is ConflictReason.WITHIN_THRESHOLD
        assert conflict.local_version == local
        assert conflict.remote_version == remote

    def test_equal_timestamps_conflict_reason(self) -> None:
        result = merge_records(
            [make_record("a", updated=3, amount="1")],
            [make_record("a", updated=3, amount="2")],
        )
        assert result.true_conflicts[0].reason is ConflictReason.EQUAL_TIMESTAMPS

    def test_five_seconds_apart_with_sixty_second_threshold(self) -> None:
        local = make_record("a", updated=0, amount="100")
        remote = make_record("a", updated=5, amount="120")

        result = merge_records([local], [remote], conflict_threshold_ms=60_000)

        assert len(result.true_conflicts) == 1
        assert result.true_conflicts[0].record_id == "a"
        assert result.merged == []

    def test_resolution_moves_conflict_into_merged(self) -> None:
        local = make_record("a", updated=0, amount="100")
        remote = make_record("a", updated=0.2, amount="150")

        result = merge_records(
            [local],
            [remote],
            [ConflictResolution(record_id="a", choice=Side.LOCAL)],
        )

        assert not result.has_conflicts
        assert result.merged == [local]
        assert result.updated_from_local == [local]

    def test_apply_resolutions_keeps_unresolved_and_ignores_unknown(self) -> None:
        result = merge_records(
            [make_record("a", amount="1"), make_record("b", amount="1")],
            [make_record("a", amount="2"), make_record("b", amount="2")],
        )

        resolved = apply_resolutions(
            result,
            [
                ConflictResolution(record_id="a", choice=Side.REMOTE),
                ConflictResolution(record_id="zzz", choice=Side.LOCAL),
            ],
        )

        assert [c.record_id for c in resolved.true_conflicts] == ["b"]
        assert [r.amount for r in resolved.merged] == [Decimal("2")]
        # The input result is untouched.
        assert len(result.true_conflicts) == 2


class TestIdempotence:
    def test_merge_with_itself_is_identity(self) -> None:
        records = [
            make_record("a", created=0, updated=0),
            make_record("b", created=10, updated=20),
            make_record("c", created=5, updated=50, deleted=50),
        ]

        result = merge_records(records, list(records))

        assert result.merged == sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)
        assert not result.has_changes
        assert not result.has_conflicts
        assert not result.auto_resolved

    def test_identical_content_keeps_newer_stamp_unclassified(self) -> None:
        local = make_record("a", updated=0)
        remote = make_record("a", updated=0.1)

        result = merge_records([local], [remote])

        assert result.merged == [remote]
        assert not result.has_changes
        assert not result.has_conflicts

    def test_classifications_never_double_count(self) -> None:
        local = [
            make_record("same"),
            make_record("newer-local", updated=100, amount="1"),
            make_record("conflict", updated=0, amount="1"),
            make_record("only-local"),
        ]
        remote = [
            make_record("same"),
            make_record("newer-local", updated=0, amount="2"),
            make_record("conflict", updated=0.1, amount="2"),
            make_record("only-remote"),
        ]

        result = merge_records(local, remote)

        classified = (
            result.added_from_remote
            + result.added_from_local
            + result.updated_from_remote
            + result.updated_from_local
        )
        ids = [r.id for r in classified] + [c.record_id for c in result.true_conflicts]
        assert len(ids) == len(set(ids)) == 4
        assert "same" not in ids


class TestOrdering:
    def test_merged_is_newest_created_first_then_id(self) -> None:
        records = [
            make_record("b", created=0),
            make_record("a", created=0),
            make_record("c", created=60, updated=60),
        ]
        result = merge_records(records, [])
        assert [r.id for r in result.merged] == ["c", "b", "a"]


class TestEndToEndScenario:
    def test_three_device_edit_scenario(self) -> None:
        two_hours = 2 * 60 * 60
        a_local = make_record("A", updated=0, amount="100")
        b_local = make_record("B", updated=0)
        a_remote = make_record("A", updated=two_hours, amount="150")
        c_remote = make_record("C", updated=0)

        result = merge_records([a_local, b_local], [a_remote, c_remote])

        assert _ids(result.merged) == {"A", "B", "C"}
        merged_a = next(r for r in result.merged if r.id == "A")
        assert merged_a.amount == Decimal("150")
        assert merged_a.updated_at == ts(two_hours)
        assert result.updated_from_remote == [a_remote]
        assert result.added_from_local == [b_local]
        assert result.added_from_remote == [c_remote]
        assert result.true_conflicts == []


class TestMalformedInput:
    def test_duplicate_id_on_one_side(self) -> None:
        with pytest.raises(MalformedRecordError):
            merge_records([make_record("a"), make_record("a", updated=5)], [])

    def test_missing_updated_at(self) -> None:
        broken = Record.model_construct(**{**make_record("a").model_dump(), "updated_at": None})
        with pytest.raises(MalformedRecordError):
            merge_records([], [broken])

    def test_missing_id_is_also_a_value_error(self) -> None:
        broken = Record.model_construct(**{**make_record("a").model_dump(), "id": ""})
        with pytest.raises(ValueError):
            merge_records([broken], [])
