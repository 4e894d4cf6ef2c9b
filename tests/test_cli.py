"""Tests for the command line front end."""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from amiforge.cli.main import cli

from conftest import client_error

CONFIG = """
provider:
  region: us-east-1
images:
  - name: base-image
    root_device_name: /dev/sda1
    virtualization_type: hvm
    ebs_block_devices:
      - device_name: /dev/sda1
        snapshot_id: snap-root
        volume_size: 8
        volume_type: gp2
    tags:
      env: dev
"""

STATE_PATH = ".amiforge/state.json"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("amiforge.cli.main.setup_logging"):
        yield


@pytest.fixture
def use_provisioner(provisioner):
    with patch("amiforge.cli.main.create_provisioner", return_value=provisioner):
        yield provisioner


def load_state():
    with open(STATE_PATH) as f:
        return json.load(f)


def test_plan_apply_show_destroy(runner, use_provisioner, fake_ec2):
    with runner.isolated_filesystem():
        with open("amiforge.yaml", "w") as f:
            f.write(CONFIG)

        result = runner.invoke(cli, ["plan"])
        assert result.exit_code == 0, result.output
        assert "1 to create" in result.output

        result = runner.invoke(cli, ["apply", "--yes"])
        assert result.exit_code == 0, result.output
        image_id = load_state()["images"]["base-image"]["image_id"]
        assert image_id in fake_ec2.images

        result = runner.invoke(cli, ["apply", "--yes"])
        assert result.exit_code == 0, result.output
        assert "match the configuration" in result.output

        result = runner.invoke(cli, ["show"])
        assert result.exit_code == 0, result.output
        assert image_id in result.output

        result = runner.invoke(cli, ["show", "base-image"])
        assert result.exit_code == 0, result.output
        assert "snap-root" in result.output

        result = runner.invoke(cli, ["destroy", "--yes"])
        assert result.exit_code == 0, result.output
        assert load_state()["images"] == {}
        assert fake_ec2.called("delete_snapshot") == []


def test_failed_create_keeps_image_id(runner, use_provisioner, fake_ec2):
    original_register = fake_ec2.register_image

    def register_then_fail(**kwargs):
        response = original_register(**kwargs)
        fake_ec2.script(response["ImageId"], "failed")
        return response

    fake_ec2.register_image = register_then_fail

    with runner.isolated_filesystem():
        with open("amiforge.yaml", "w") as f:
            f.write(CONFIG)

        result = runner.invoke(cli, ["apply", "--yes"])

        assert result.exit_code == 1
        record = load_state()["images"]["base-image"]
        assert record["image_id"] in fake_ec2.images
        assert record["new_resource"] is True


def test_refresh_drops_vanished_images(runner, use_provisioner, fake_ec2):
    with runner.isolated_filesystem():
        with open("amiforge.yaml", "w") as f:
            f.write(CONFIG)
        runner.invoke(cli, ["apply", "--yes"])
        fake_ec2.images.clear()

        result = runner.invoke(cli, ["refresh"])

        assert result.exit_code == 0, result.output
        assert "removed from state" in result.output
        assert load_state()["images"] == {}


def test_destroy_reports_partial_failure(runner, use_provisioner, fake_ec2):
    fake_ec2.copy_mappings = [
        {"DeviceName": "/dev/sda1", "Ebs": {"SnapshotId": "snap-1", "VolumeSize": 8}},
        {"DeviceName": "/dev/sdb", "Ebs": {"SnapshotId": "snap-2", "VolumeSize": 8}},
    ]
    fake_ec2.snapshot_failures["snap-2"] = client_error("InvalidSnapshot.InUse", "DeleteSnapshot")
    config = """
images:
  - name: copied-image
    copy_from:
      source_image_id: ami-source
      source_region: us-west-2
"""

    with runner.isolated_filesystem():
        with open("amiforge.yaml", "w") as f:
            f.write(config)
        runner.invoke(cli, ["apply", "--yes"])

        result = runner.invoke(cli, ["destroy", "copied-image", "--yes"])

        assert result.exit_code == 1
        assert "snap-2" in result.output
        assert "manual cleanup" in result.output
        assert load_state()["images"] == {}


def test_invalid_config(runner):
    with runner.isolated_filesystem():
        with open("amiforge.yaml", "w") as f:
            f.write("images:\n  - name: x\n")

        result = runner.invoke(cli, ["plan"])

        assert result.exit_code == 1
        assert "Configuration validation failed" in result.output


def test_show_without_state(runner):
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["show"])

        assert result.exit_code == 0
        assert "No images tracked yet" in result.output


def test_config_option_per_command(runner, use_provisioner):
    with runner.isolated_filesystem():
        with open("images.yaml", "w") as f:
            f.write(CONFIG)

        result = runner.invoke(cli, ["plan", "--config", "images.yaml"])

        assert result.exit_code == 0, result.output
        assert "1 to create" in result.output
