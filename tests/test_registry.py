"""Tests for the channel registry, the submission ledger and their JSON documents."""

import json
from datetime import UTC, datetime, timedelta

from bastion.core.ledger import SubmissionLedger
from bastion.core.registry import ChannelRegistry
from bastion.core.storage import read_json, write_json_atomic
from bastion.models.defence import ChannelMessage, Coordinates, DefenceCall, Submission

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


def make_call(channel_id: str = "1", **overrides) -> DefenceCall:
    fields = {
        "channel_id": channel_id,
        "guild_id": "1000",
        "channel_name": f"def-{channel_id}",
        "requested_amount": 5000,
        "coordinates": Coordinates(x=10, y=20),
        "created_at": NOW,
        "expires_at": NOW + timedelta(hours=2),
    }
    fields.update(overrides)
    return DefenceCall(**fields)


def make_submission(channel_id: str = "1", units: int = 5000) -> Submission:
    return Submission(
        channel_id=channel_id,
        units=units,
        declared_time="18:00",
        user_id="42",
        display_name="Leonidas",
        submitted_at=NOW,
        coordinates=Coordinates(x=10, y=20),
    )


class TestStorage:
    def test_write_then_read(self, tmp_path) -> None:
        path = tmp_path / "nested" / "doc.json"
        write_json_atomic(path, {"a": [1, 2]})
        assert read_json(path, None) == {"a": [1, 2]}
        assert not path.with_suffix(".json.tmp").exists()

    def test_missing_file_gives_default(self, tmp_path) -> None:
        assert read_json(tmp_path / "absent.json", []) == []

    def test_corrupt_file_gives_default(self, tmp_path) -> None:
        path = tmp_path / "doc.json"
        path.write_text("[{not json", encoding="utf-8")
        assert read_json(path, []) == []


class TestChannelRegistry:
    def test_add_persists_whole_document(self, tmp_path) -> None:
        registry = ChannelRegistry(tmp_path / "calls.json")
        assert registry.add(make_call("1"))
        assert registry.add(make_call("2"))
        on_disk = json.loads((tmp_path / "calls.json").read_text(encoding="utf-8"))
        assert [record["channel_id"] for record in on_disk] == ["1", "2"]

    def test_duplicate_channel_rejected(self, tmp_path) -> None:
        registry = ChannelRegistry(tmp_path / "calls.json")
        registry.add(make_call("1"))
        assert not registry.add(make_call("1", requested_amount=1))
        assert registry.get("1").requested_amount == 5000

    def test_append_message(self, tmp_path) -> None:
        registry = ChannelRegistry(tmp_path / "calls.json")
        registry.add(make_call("1"))
        assert registry.append_message("1", ChannelMessage(content="3k/5k", timestamp=NOW))
        reloaded = ChannelRegistry(tmp_path / "calls.json")
        reloaded.load_all()
        assert [m.content for m in reloaded.get("1").messages] == ["3k/5k"]

    def test_append_to_untracked_channel(self, tmp_path) -> None:
        registry = ChannelRegistry(tmp_path / "calls.json")
        assert not registry.append_message("9", ChannelMessage(content="hi"))

    def test_remove_unknown_is_noop_without_write(self, tmp_path) -> None:
        registry = ChannelRegistry(tmp_path / "calls.json")
        assert not registry.remove("9")
        assert not (tmp_path / "calls.json").exists()

    def test_remove(self, tmp_path) -> None:
        registry = ChannelRegistry(tmp_path / "calls.json")
        registry.add(make_call("1"))
        assert registry.remove("1")
        assert "1" not in registry
        assert json.loads((tmp_path / "calls.json").read_text(encoding="utf-8")) == []

    def test_load_all_round_trips_fields(self, tmp_path) -> None:
        registry = ChannelRegistry(tmp_path / "calls.json")
        attack = NOW + timedelta(hours=5)
        registry.add(make_call("1", kind="normal", attack_time=attack, deadline_label="18:00"))
        reloaded = ChannelRegistry(tmp_path / "calls.json")
        (call,) = reloaded.load_all()
        assert call.attack_time == attack
        assert call.deadline_label == "18:00"
        assert call.expires_at == NOW + timedelta(hours=2)

    def test_invalid_records_are_skipped(self, tmp_path) -> None:
        path = tmp_path / "calls.json"
        good = make_call("1").model_dump(mode="json")
        path.write_text(json.dumps([good, {"channel_id": "2"}]), encoding="utf-8")
        registry = ChannelRegistry(path)
        assert [c.channel_id for c in registry.load_all()] == ["1"]

    def test_corrupt_document_forgets_calls(self, tmp_path) -> None:
        path = tmp_path / "calls.json"
        path.write_text("{{{", encoding="utf-8")
        assert ChannelRegistry(path).load_all() == []

    def test_non_list_document_forgets_calls(self, tmp_path) -> None:
        path = tmp_path / "calls.json"
        path.write_text('{"calls": []}', encoding="utf-8")
        assert ChannelRegistry(path).load_all() == []

    def test_write_failure_keeps_memory_state(self, tmp_path) -> None:
        blocked = tmp_path / "calls.json"
        blocked.mkdir()
        registry = ChannelRegistry(blocked)
        assert registry.add(make_call("1"))
        assert "1" in registry


class TestSubmissionLedger:
    def test_record_and_reload(self, tmp_path) -> None:
        ledger = SubmissionLedger(tmp_path / "subs.json")
        ledger.record(make_submission("1"))
        ledger.record(make_submission("1", units=3000))
        reloaded = SubmissionLedger(tmp_path / "subs.json")
        reloaded.load()
        assert [s.units for s in reloaded.for_channel("1")] == [5000, 3000]

    def test_document_shape(self, tmp_path) -> None:
        ledger = SubmissionLedger(tmp_path / "subs.json")
        ledger.record(make_submission("1"))
        doc = json.loads((tmp_path / "subs.json").read_text(encoding="utf-8"))
        assert list(doc) == ["submissions"]
        assert doc["submissions"]["1"][0]["display_name"] == "Leonidas"

    def test_purge(self, tmp_path) -> None:
        ledger = SubmissionLedger(tmp_path / "subs.json")
        ledger.record(make_submission("1"))
        ledger.record(make_submission("2"))
        assert ledger.purge("1")
        assert ledger.channels() == ["2"]
        assert not ledger.purge("1")

    def test_snapshot_is_a_copy(self, tmp_path) -> None:
        ledger = SubmissionLedger(tmp_path / "subs.json")
        ledger.record(make_submission("1"))
        snapshot = ledger.snapshot()
        snapshot["1"].clear()
        assert len(ledger.for_channel("1")) == 1
