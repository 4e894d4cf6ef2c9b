"""Tests for bounded polling of remote state."""

import pytest

from amiforge.provisioners.waiter import (
    await_state,
    image_state_probe,
    wait_for_available,
    wait_for_destroyed,
)
from amiforge.state.models import ImageStatus
from amiforge.utils.errors import ResourceNotFoundError, UnexpectedStatusError, WaitTimeoutError


class ScriptedProbe:
    """Probe returning scripted statuses; ``None`` entries mean not found."""

    def __init__(self, clock, statuses):
        self.clock = clock
        self.statuses = list(statuses)
        self.probe_times = []

    def __call__(self):
        self.probe_times.append(self.clock.now)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if status is None:
            raise ResourceNotFoundError("not there")
        return {"State": status}, status


def wait(clock, probe, **kwargs):
    params = dict(
        pending={"pending"},
        target={"available"},
        timeout=60,
        min_poll_interval=3,
        clock=clock.monotonic,
        sleep=clock.sleep,
    )
    params.update(kwargs)
    return await_state(probe, **params)


class TestAwaitState:
    def test_succeeds_on_third_probe_with_minimum_interval(self, clock):
        probe = ScriptedProbe(clock, ["pending", "pending", "available"])

        result = wait(clock, probe)

        assert result == {"State": "available"}
        assert len(probe.probe_times) == 3
        assert len(clock.sleeps) == 2
        assert all(s >= 3 for s in clock.sleeps)

    def test_timeout_reports_last_status(self, clock):
        probe = ScriptedProbe(clock, ["pending"])
        start = clock.now

        with pytest.raises(WaitTimeoutError) as exc_info:
            wait(clock, probe, timeout=5)

        assert exc_info.value.last_status == "pending"
        assert exc_info.value.timeout == 5
        assert "pending" in str(exc_info.value)
        assert all(t < start + 5 for t in probe.probe_times)
        assert clock.now == pytest.approx(start + 5)

    def test_poll_delay_precedes_first_probe(self, clock):
        probe = ScriptedProbe(clock, ["available"])
        start = clock.now

        wait(clock, probe, poll_delay=5)

        assert probe.probe_times == [start + 5]

    def test_backoff_grows_to_max_and_never_shrinks(self, clock):
        probe = ScriptedProbe(clock, ["pending"] * 8 + ["available"])

        wait(clock, probe, min_poll_interval=0, max_poll_interval=1.0)

        assert clock.sleeps == sorted(clock.sleeps)
        assert clock.sleeps[0] == pytest.approx(0.1)
        assert max(clock.sleeps) == pytest.approx(1.0)

    def test_status_outside_expected_sets_fails_immediately(self, clock):
        probe = ScriptedProbe(clock, ["pending", "failed", "available"])

        with pytest.raises(UnexpectedStatusError) as exc_info:
            wait(clock, probe)

        assert exc_info.value.status == "failed"
        assert exc_info.value.expected == ["available"]
        assert len(probe.probe_times) == 2

    def test_not_found_is_transient_for_new_resources(self, clock):
        probe = ScriptedProbe(clock, [None, None, "pending", "available"])

        result = wait(clock, probe, is_new=True)

        assert result["State"] == "available"
        assert len(probe.probe_times) == 4

    def test_not_found_means_destroyed_for_existing_resources(self, clock):
        probe = ScriptedProbe(clock, [None])

        with pytest.raises(UnexpectedStatusError) as exc_info:
            wait(clock, probe, is_new=False)

        assert exc_info.value.status == ImageStatus.DESTROYED

    def test_not_found_can_be_the_target(self, clock):
        probe = ScriptedProbe(clock, ["available", None])

        result = wait(
            clock,
            probe,
            pending={"available"},
            target={ImageStatus.DESTROYED},
        )

        assert result is None

    def test_timeout_while_never_found(self, clock):
        probe = ScriptedProbe(clock, [None])

        with pytest.raises(WaitTimeoutError) as exc_info:
            wait(clock, probe, timeout=10, is_new=True)

        assert exc_info.value.last_status is None
        assert "not found" in str(exc_info.value)


class TestImageWaits:
    def test_image_state_probe(self, fake_ec2, image_client):
        image_id = fake_ec2.add_image(states=("pending",))

        image, status = image_state_probe(image_client, image_id)()

        assert image["ImageId"] == image_id
        assert status == "pending"

    def test_wait_for_available(self, fake_ec2, image_client, clock):
        image_id = fake_ec2.add_image(states=("pending", "pending", "available"))

        image = wait_for_available(
            image_client, image_id, timeout=600, poll_delay=5, min_poll_interval=3,
            clock=clock.monotonic, sleep=clock.sleep,
        )

        assert image["State"] == "available"
        assert clock.sleeps[0] == 5

    def test_wait_for_available_failure_names_image(self, fake_ec2, image_client, clock):
        image_id = fake_ec2.add_image(states=("pending", "failed"))

        with pytest.raises(UnexpectedStatusError) as exc_info:
            wait_for_available(
                image_client, image_id, timeout=600, poll_delay=0, min_poll_interval=3,
                clock=clock.monotonic, sleep=clock.sleep,
            )

        assert f"Error waiting for AMI ({image_id}) to be ready" in str(exc_info.value)
        assert exc_info.value.context.resource_id == image_id

    def test_wait_for_destroyed(self, fake_ec2, image_client, clock):
        image_id = fake_ec2.add_image()
        fake_ec2.deregister_image(ImageId=image_id)

        wait_for_destroyed(
            image_client, image_id, timeout=600, poll_delay=0, min_poll_interval=3,
            clock=clock.monotonic, sleep=clock.sleep,
        )

        assert fake_ec2.call_names()[-1] == "describe_images"

    def test_wait_for_destroyed_timeout(self, fake_ec2, image_client, clock):
        image_id = fake_ec2.add_image()

        with pytest.raises(WaitTimeoutError) as exc_info:
            wait_for_destroyed(
                image_client, image_id, timeout=30, poll_delay=0, min_poll_interval=3,
                clock=clock.monotonic, sleep=clock.sleep,
            )

        assert exc_info.value.last_status == "available"
        assert "to be deleted" in str(exc_info.value)
