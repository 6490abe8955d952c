"""Unit tests for ZfsClient command construction."""

import pytest

from zfs_zap.config import Settings
from zfs_zap.models import Destination
from zfs_zap.services import zfs_client as zfs_client_module
from zfs_zap.services.remote_shell import CommandError, CommandRunner, SSHRunner
from zfs_zap.services.zfs_client import ZfsClient


class RecordingRunner(CommandRunner):
    """Runner that records commands and answers from a canned table."""

    def __init__(self, outputs=None, failing=(), returncode=1, stderr="cannot open: dataset does not exist"):
        self.outputs = outputs or {}
        self.failing = set(failing)
        self.returncode = returncode
        self.stderr = stderr
        self.commands = []

    def run(self, argv):
        self.commands.append(list(argv))
        key = " ".join(argv)
        if key in self.failing:
            raise CommandError(argv, self.returncode, self.stderr)
        return self.outputs.get(key, "")


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def client(runner):
    return ZfsClient(runner=runner)


class TestQueries:
    """Test suite for read-only zfs queries."""

    def test_list_datasets_with_property(self):
        """Test parsing of tab separated name/value output."""
        runner = RecordingRunner(
            {
                "zfs list -H -o name,zap:snap -t filesystem,volume": (
                    "tank\t-\ntank/home\ton\ntank/tmp\toff\n"
                )
            }
        )
        client = ZfsClient(runner=runner)

        assert client.list_datasets_with_property("zap:snap") == [
            ("tank", "-"),
            ("tank/home", "on"),
            ("tank/tmp", "off"),
        ]

    def test_list_snapshots_of_dataset(self, client, runner):
        """Test that snapshots are listed oldest first for one dataset only."""
        client.list_snapshots("tank/home")

        assert runner.commands == [
            [
                "zfs", "list", "-H", "-o", "name", "-t", "snapshot",
                "-s", "creation", "-d", "1", "tank/home",
            ]
        ]

    def test_list_all_snapshots(self):
        """Test listing snapshots of every dataset."""
        runner = RecordingRunner(
            {"zfs list -H -o name -t snapshot -s creation": "tank@a\n\ntank/home@b\n"}
        )

        assert ZfsClient(runner=runner).list_snapshots() == ["tank@a", "tank/home@b"]

    def test_exists_checks(self):
        """Test that failing list commands mean absence."""
        runner = RecordingRunner(
            failing={
                "zfs list -H -o name tank/nope",
                "zfs list -H -o name -t bookmark tank/home#x",
            }
        )
        client = ZfsClient(runner=runner)

        assert not client.dataset_exists("tank/nope")
        assert client.dataset_exists("tank/home")
        assert not client.bookmark_exists("tank/home#x")
        assert client.snapshot_exists("tank/home@x")

    @pytest.mark.parametrize("method", ["dataset_exists", "snapshot_exists", "bookmark_exists"])
    def test_exists_checks_propagate_connection_failures(self, method):
        """Test that an unreachable host is not mistaken for a missing dataset."""
        runner = RecordingRunner(
            failing={
                "zfs list -H -o name backup/home",
                "zfs list -H -o name -t snapshot backup/home",
                "zfs list -H -o name -t bookmark backup/home",
            },
            returncode=255,
            stderr="ssh: connect to host beta port 22: Connection refused",
        )
        client = ZfsClient(runner=runner)

        with pytest.raises(CommandError) as excinfo:
            getattr(client, method)("backup/home")

        assert excinfo.value.returncode == 255

    def test_get_property(self):
        """Test reading a single property value."""
        runner = RecordingRunner({"zfs get -H -o value canmount tank/home": "on\n"})
        assert ZfsClient(runner=runner).get_property("tank/home", "canmount") == "on"

    def test_pool_status_uses_zpool_program(self, runner):
        """Test that the configured zpool program is used."""
        ZfsClient(runner=runner, zpool_program="/sbin/zpool").pool_status("tank")
        assert runner.commands == [["/sbin/zpool", "status", "tank"]]


class TestMutations:
    """Test suite for mutating commands."""

    def test_create_snapshot(self, client, runner):
        client.create_snapshot("tank/home", "ZAP_alpha_x--1d")
        client.create_snapshot("tank/home", "ZAP_alpha_x--1d", recursive=True)

        assert runner.commands == [
            ["zfs", "snapshot", "tank/home@ZAP_alpha_x--1d"],
            ["zfs", "snapshot", "-r", "tank/home@ZAP_alpha_x--1d"],
        ]

    def test_destroy_bookmark_and_properties(self, client, runner):
        client.destroy("tank/home@s")
        client.create_bookmark("tank/home@s", "tank/home#s")
        client.set_property("backup/home", "canmount", "noauto")
        client.inherit_property("backup/home", "zap:rep")

        assert runner.commands == [
            ["zfs", "destroy", "tank/home@s"],
            ["zfs", "bookmark", "tank/home@s", "tank/home#s"],
            ["zfs", "set", "canmount=noauto", "backup/home"],
            ["zfs", "inherit", "zap:rep", "backup/home"],
        ]

    def test_dry_run_only_logs(self, runner, caplog):
        """Test that a dry run never executes mutating commands."""
        caplog.set_level("INFO")
        client = ZfsClient(runner=runner, dry_run=True)

        client.create_snapshot("tank/home", "s")
        client.destroy("tank/home@s")
        client.list_snapshots("tank/home")

        assert runner.commands == [
            [
                "zfs", "list", "-H", "-o", "name", "-t", "snapshot",
                "-s", "creation", "-d", "1", "tank/home",
            ]
        ]
        assert "would run: zfs snapshot tank/home@s" in caplog.text
        assert "would run: zfs destroy tank/home@s" in caplog.text

    def test_failure_propagates(self):
        runner = RecordingRunner(failing={"zfs destroy tank/home@s"})
        with pytest.raises(CommandError):
            ZfsClient(runner=runner).destroy("tank/home@s")


class TestTransfers:
    """Test suite for send/receive construction."""

    def test_full_send_command(self, client):
        assert client.send_command("tank/home@s", properties=True) == [
            "zfs", "send", "-c", "-p", "tank/home@s"
        ]

    def test_incremental_send_commands(self, client):
        assert client.send_command("tank/home@b", base="tank/home@a", intermediates=True) == [
            "zfs", "send", "-c", "-I", "tank/home@a", "tank/home@b"
        ]
        assert client.send_command("tank/home@b", base="tank/home#a", compressed=False) == [
            "zfs", "send", "-i", "tank/home#a", "tank/home@b"
        ]

    def test_receive_command(self, client):
        assert client.receive_command("backup") == ["zfs", "receive", "-d", "-u", "backup"]
        assert client.receive_command("backup", force=True) == [
            "zfs", "receive", "-d", "-u", "-F", "backup"
        ]

    def test_send_to_remote_with_filters(self, client, monkeypatch):
        """Test the pipeline legs of a filtered remote send."""
        captured = []
        monkeypatch.setattr(zfs_client_module, "run_pipeline", captured.append)
        target = client.for_destination(Destination.parse("bob@beta:backup"))

        client.send(
            "tank/home@s",
            target,
            "backup",
            local_filter=["gzip"],
            remote_filter=["gzip", "-d"],
        )

        (legs,) = captured
        assert [runner.label for runner, _ in legs] == ["local", "local", "bob@beta"]
        assert legs[0][1] == [["zfs", "send", "-c", "tank/home@s"]]
        assert legs[1][1] == [["gzip"]]
        assert legs[2][1] == [["gzip", "-d"], ["zfs", "receive", "-d", "-u", "backup"]]
        assert legs[2][0].command_line(legs[2][1]) == [
            "ssh", "-o", "BatchMode=yes", "bob@beta", "gzip -d | zfs receive -d -u backup"
        ]

    def test_send_to_local_ignores_filters(self, client, monkeypatch):
        """Test that filters are not used when the destination is this host."""
        captured = []
        monkeypatch.setattr(zfs_client_module, "run_pipeline", captured.append)
        target = client.for_destination(Destination.parse("backup"))

        client.send("tank/home@s", target, "backup", local_filter=["gzip"], remote_filter=["gzip", "-d"])

        (legs,) = captured
        assert len(legs) == 2
        assert legs[1][1] == [["zfs", "receive", "-d", "-u", "backup"]]

    def test_dry_run_send_does_not_run(self, runner, monkeypatch, caplog):
        caplog.set_level("INFO")
        monkeypatch.setattr(zfs_client_module, "run_pipeline", pytest.fail)
        client = ZfsClient(runner=runner, dry_run=True)
        target = client.for_destination(Destination.parse("beta:backup"))

        client.send("tank/home@s", target, "backup")

        assert "zfs send -c tank/home@s" in caplog.text


class TestConstruction:
    """Test suite for client factories."""

    def test_from_settings(self):
        settings = Settings(zfs_program="/usr/sbin/zfs", zpool_program="/usr/sbin/zpool")
        client = ZfsClient.from_settings(settings, dry_run=True)

        assert client.zfs_program == "/usr/sbin/zfs"
        assert client.zpool_program == "/usr/sbin/zpool"
        assert client.dry_run

    def test_for_destination(self, client):
        remote = client.for_destination(Destination.parse("bob@beta:backup"), ssh_program="/usr/bin/ssh")
        local = client.for_destination(Destination.parse("localhost:backup"))

        assert isinstance(remote.runner, SSHRunner)
        assert remote.runner.ssh_program == "/usr/bin/ssh"
        assert remote.is_remote
        assert remote.label == "bob@beta"
        assert not local.is_remote
