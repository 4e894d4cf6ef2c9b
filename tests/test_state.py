"""Tests for image records and the state file manager."""

import pytest

from amiforge.provisioners.translator import from_remote
from amiforge.state.manager import StateLockError, StateManager, StateNotFoundError
from amiforge.state.models import FieldDrift, ImageRecord, StateFile
from amiforge.utils.errors import StateError

from conftest import make_config


def tracked_record(name="test-image"):
    record = ImageRecord(name=name, config=make_config(name=name, tags={"env": "dev"}))
    record.mark_created("ami-0123", manage_ebs_snapshots=True)
    record.observed = from_remote(
        {
            "ImageId": "ami-0123",
            "State": "available",
            "Name": name,
            "RootDeviceName": "/dev/sda1",
            "BlockDeviceMappings": [
                {"DeviceName": "/dev/sda1", "Ebs": {"SnapshotId": "snap-1", "VolumeSize": 8}},
            ],
            "Tags": [{"Key": "env", "Value": "dev"}],
        },
        region="us-east-1",
    )
    record.drift = [FieldDrift(field="architecture", declared="x86_64", observed="")]
    return record


class TestImageRecord:
    def test_mark_created_sets_ownership_once(self):
        record = ImageRecord(name="test-image", config=make_config())

        record.mark_created("ami-1", manage_ebs_snapshots=True)

        assert record.exists
        assert record.new_resource is True
        assert record.manage_ebs_snapshots is True
        assert record.created_at is not None
        with pytest.raises(StateError):
            record.mark_created("ami-2", manage_ebs_snapshots=False)
        assert record.image_id == "ami-1"

    def test_mark_absent_allows_recreation(self):
        record = tracked_record()

        record.mark_absent()

        assert not record.exists
        assert record.observed is None
        assert record.drift == []
        assert record.manage_ebs_snapshots is False
        record.mark_created("ami-2", manage_ebs_snapshots=False)
        assert record.image_id == "ami-2"

    def test_ownership_cannot_be_reassigned(self):
        record = ImageRecord(name="test-image", config=make_config())
        record.mark_created("ami-1", manage_ebs_snapshots=False)

        with pytest.raises(StateError):
            record.manage_ebs_snapshots = True

        assert record.manage_ebs_snapshots is False

    def test_ownership_is_loaded_from_state(self):
        record = ImageRecord(
            name="test-image", config=make_config(), image_id="ami-1", manage_ebs_snapshots=True
        )

        assert record.manage_ebs_snapshots is True


class TestStateManager:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "state" / "state.json"
        manager = StateManager(str(path))
        manager.initialize("us-east-1")
        manager.put_record(tracked_record())

        state = StateManager(str(path)).load()

        record = state.get("test-image")
        assert state.region == "us-east-1"
        assert record.image_id == "ami-0123"
        assert record.manage_ebs_snapshots is True
        assert record.observed.ebs_block_devices["/dev/sda1"].snapshot_id == "snap-1"
        assert record.observed.tags == {"env": "dev"}
        assert record.drift[0].field == "architecture"
        assert not path.with_suffix(".tmp").exists()

    def test_remove_record(self, tmp_path):
        manager = StateManager(str(tmp_path / "state.json"))
        manager.initialize("us-east-1")
        manager.put_record(tracked_record("first-image"))
        manager.put_record(tracked_record("second-image"))

        removed = manager.remove_record("first-image")

        assert removed.name == "first-image"
        assert list(StateManager(str(tmp_path / "state.json")).load().images) == ["second-image"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(StateNotFoundError):
            StateManager(str(tmp_path / "missing.json")).load()

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        with pytest.raises(StateError, match="Failed to parse"):
            StateManager(str(path)).load()

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text('{"images": {}}')

        with pytest.raises(StateError, match="Invalid state file"):
            StateManager(str(path)).load()

    def test_save_without_state(self, tmp_path):
        with pytest.raises(StateError):
            StateManager(str(tmp_path / "state.json")).save()

    def test_context_manager_locks_and_loads(self, tmp_path):
        path = tmp_path / "state.json"
        StateManager(str(path)).save(StateFile(region="us-west-2"))

        with StateManager(str(path)) as manager:
            assert manager.get_state().region == "us-west-2"
            with pytest.raises(StateLockError):
                StateManager(str(path)).lock(timeout=0)

        other = StateManager(str(path))
        other.lock(timeout=0)
        other.unlock()

    def test_corrupt_file_releases_the_lock(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        with pytest.raises(StateError):
            with StateManager(str(path)):
                pass

        other = StateManager(str(path))
        other.lock(timeout=0)
        other.unlock()
