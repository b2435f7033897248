from __future__ import annotations

import pytest

from tracker_engine.state.models import ChatMessage, TrackerField, TrackerSnapshot
from tracker_engine.state.snapshot_store import SnapshotStore


def test_record_pending_overlays_present_fields_only() -> None:
    store = SnapshotStore(
        pending=TrackerSnapshot(
            user_stats=TrackerField.text("Health: 90"),
            info_box=TrackerField.text("Location: Road"),
        )
    )

    pending = store.record_pending(TrackerSnapshot(info_box=TrackerField.text("Location: Cave")))

    assert pending.user_stats == TrackerField.text("Health: 90")
    assert pending.info_box == TrackerField.text("Location: Cave")
    assert store.committed.is_empty()


def test_commit_if_empty_only_seeds_first_snapshot() -> None:
    store = SnapshotStore()
    first = TrackerSnapshot(info_box=TrackerField.text("Location: Road"))

    assert store.commit_if_empty(first) is True
    assert store.committed == first
    assert store.commit_if_empty(TrackerSnapshot(info_box=TrackerField.text("Location: Cave"))) is False
    assert store.committed == first


def test_placeholder_headers_count_as_empty() -> None:
    snapshot = TrackerSnapshot(
        info_box=TrackerField.text("Info Box\n---\n"),
        character_thoughts=TrackerField.text("Present Characters\n---\n"),
        user_stats=TrackerField.text("   "),
    )

    assert snapshot.is_empty() is True
    assert SnapshotStore(committed=snapshot).commit_if_empty(
        TrackerSnapshot(info_box=TrackerField.text("Location: Road"))
    )


def test_user_edit_updates_both_snapshots() -> None:
    store = SnapshotStore(
        pending=TrackerSnapshot(info_box=TrackerField.text("Location: Road")),
        committed=TrackerSnapshot(info_box=TrackerField.text("Location: Gate")),
    )

    store.apply_user_edit("info_box", TrackerField.text("Location: Castle"))

    assert store.pending.info_box == TrackerField.text("Location: Castle")
    assert store.committed.info_box == TrackerField.text("Location: Castle")
    with pytest.raises(KeyError):
        store.apply_user_edit("inventory", TrackerField.text("sword"))


def test_clear_resets_slots_guard_and_archives() -> None:
    store = SnapshotStore(
        pending=TrackerSnapshot(info_box=TrackerField.text("Location: Road")),
        commit_guard=4,
    )
    transcript = [
        ChatMessage(text="Hi", is_user=True),
        ChatMessage(
            text="Hello",
            is_user=False,
            archived={
                0: TrackerSnapshot(info_box=TrackerField.text("a")),
                1: TrackerSnapshot(info_box=TrackerField.text("b")),
            },
        ),
    ]

    removed = store.clear(transcript)

    assert removed == 2
    assert transcript[1].archived == {}
    assert store.pending.is_empty() and store.committed.is_empty()
    assert store.commit_guard == -1


def test_payload_round_trip() -> None:
    store = SnapshotStore(
        pending=TrackerSnapshot(user_stats=TrackerField.json({"health": 80})),
        committed=TrackerSnapshot(info_box=TrackerField.text("Location: Road")),
        commit_guard=6,
    )

    restored = SnapshotStore.from_payload(store.to_payload())

    assert restored.pending == store.pending
    assert restored.committed == store.committed
    assert restored.commit_guard == 6


def test_legacy_untagged_values_are_classified() -> None:
    restored = SnapshotStore.from_payload(
        {
            "pending": {
                "user_stats": '{"health": 80}',
                "info_box": "Location: Road",
                "character_thoughts": "[not json",
            },
            "committed": None,
            "commit_guard": "7",
        }
    )

    assert restored.pending.user_stats == TrackerField(format="json", value='{"health": 80}')
    assert restored.pending.info_box == TrackerField(format="text", value="Location: Road")
    assert restored.pending.character_thoughts.format == "text"
    assert restored.committed == TrackerSnapshot()
    assert restored.commit_guard == -1
