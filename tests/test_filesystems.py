"""Tests for the filesystem gateway (vm_agent/storage/filesystems.py).

Volumes are real ISO9660 images built with pycdlib in tmp_path.
"""

import stat

import pycdlib
import pytest

from vm_agent.storage import filesystems
from vm_agent.storage.devices import BlockDevice, PartitionTable
from vm_agent.storage.exceptions import (
    EntryNotFoundError,
    FilesystemError,
    NotADirectoryEntryError,
)
from vm_agent.storage.filesystems import RootFilesystem, VolumeFilesystem


CONFIG = {
    "named.conf": b"options { directory \"/var/named\"; };\n",
    "named.conf.internal": b"zone \"example.internal\" { type master; };\n",
    "zones/zonefile.db": b"$TTL 3600\n@ IN SOA ns1 admin 1 3600 600 86400 3600\n",
}


def names(entries):
    return sorted(entry.name for entry in entries)


class TestNormalize:
    @pytest.mark.parametrize(
        "path,expected",
        [("", "/"), ("/", "/"), ("zones", "/zones"), ("/zones/", "/zones"), ("//a//b", "/a/b")],
    )
    def test_normalize(self, path, expected):
        assert filesystems._normalize(path) == expected

    @pytest.mark.parametrize(
        "name,expected",
        [("NAMED.CON;1", "NAMED.CON"), ("README.;1", "README"), ("zones", "zones")],
    )
    def test_strip_version(self, name, expected):
        assert filesystems._strip_version(name) == expected


class TestVolumeFilesystem:
    def test_lists_rock_ridge_names_with_pseudo_entries(self, iso_factory):
        with filesystems.open_volume(iso_factory(CONFIG)) as volume:
            entries = volume.list_dir("/")

        assert names(entries) == sorted([".", "..", "named.conf", "named.conf.internal", "zones"])
        zones = [entry for entry in entries if entry.name == "zones"][0]
        assert zones.is_dir

    def test_joliet_only_volume(self, iso_factory):
        with filesystems.open_volume(iso_factory(CONFIG, rock_ridge=False)) as volume:
            assert "named.conf.internal" in names(volume.list_dir("/"))
            assert names(volume.list_dir("/zones")) == [".", "..", "zonefile.db"]

    def test_volume_without_long_names_is_rejected(self, iso_factory):
        path = iso_factory({"README": b"x"}, rock_ridge=False, joliet=False)

        with pytest.raises(FilesystemError):
            filesystems.open_volume(path)

    def test_stat_file_and_directory(self, iso_factory):
        with filesystems.open_volume(iso_factory(CONFIG)) as volume:
            named = volume.stat("/named.conf")
            zones = volume.stat("zones")

        assert named.name == "named.conf"
        assert not named.is_dir
        assert named.size == len(CONFIG["named.conf"])
        assert zones.is_dir

    def test_list_dir_of_file(self, iso_factory):
        with filesystems.open_volume(iso_factory(CONFIG)) as volume:
            with pytest.raises(NotADirectoryEntryError):
                volume.list_dir("/named.conf")

    def test_missing_entry(self, iso_factory):
        with filesystems.open_volume(iso_factory(CONFIG)) as volume:
            with pytest.raises(EntryNotFoundError, match="could not be found"):
                volume.stat("/missing.conf")

    def test_open_file_reads_content(self, iso_factory):
        with filesystems.open_volume(iso_factory(CONFIG)) as volume:
            with volume.open_file("/zones/zonefile.db") as handle:
                data = handle.read()

        assert data == CONFIG["zones/zonefile.db"]

    def test_open_directory_fails(self, iso_factory):
        with filesystems.open_volume(iso_factory(CONFIG)) as volume:
            with pytest.raises(FilesystemError, match="is a directory"):
                volume.open_file("/zones")

    def test_close_is_idempotent(self, iso_factory):
        volume = filesystems.open_volume(iso_factory(CONFIG))

        volume.close()
        volume.close()

    def test_unreadable_image(self, tmp_path):
        garbage = tmp_path / "garbage.iso"
        garbage.write_bytes(b"not an iso" * 100)

        with pytest.raises(FilesystemError, match="Failed to read volume"):
            filesystems.open_volume(str(garbage))

    def test_requires_rock_ridge_or_joliet(self, mocker):
        iso = mocker.Mock(spec=pycdlib.PyCdlib)
        iso.has_rock_ridge.return_value = False
        iso.has_joliet.return_value = False

        with pytest.raises(FilesystemError, match="neither Rock Ridge nor Joliet"):
            VolumeFilesystem(iso, label="scsi1")


class TestGetFilesystemFromDisk:
    def test_index_zero_is_whole_device(self, iso_factory):
        path = iso_factory(CONFIG)

        with filesystems.get_filesystem_from_disk(BlockDevice(path, -1), 0) as volume:
            assert volume.label == path

    def test_partition_index(self, iso_factory, mocker):
        path = iso_factory(CONFIG)
        table = PartitionTable.from_sfdisk_json(
            {"partitiontable": {"label": "dos", "partitions": [{"node": path, "start": 2048, "size": 100}]}}
        )
        mocker.patch("vm_agent.storage.filesystems.get_partition_table", return_value=table)

        with filesystems.get_filesystem_from_disk(BlockDevice("/dev/sdc", -1), 1) as volume:
            assert "named.conf" in names(volume.list_dir("/"))

    def test_partition_out_of_range(self, mocker):
        table = PartitionTable.from_sfdisk_json({"partitiontable": {"partitions": []}})
        mocker.patch("vm_agent.storage.filesystems.get_partition_table", return_value=table)

        with pytest.raises(FilesystemError, match="requested partition 1"):
            filesystems.get_filesystem_from_disk(BlockDevice("/dev/sdc", -1), 1)

    def test_negative_index(self):
        with pytest.raises(FilesystemError):
            filesystems.get_filesystem_from_disk(BlockDevice("/dev/sdc", -1), -1)


class TestRootFilesystem:
    def test_resolve_stays_under_root(self, tmp_path):
        fs = RootFilesystem(tmp_path)

        assert fs.resolve("/etc/named.conf") == tmp_path / "etc" / "named.conf"
        assert fs.resolve("../../etc") == tmp_path / "etc"

    def test_create_read_and_stat(self, tmp_path):
        fs = RootFilesystem(tmp_path)
        fs.make_directory("/etc/named", parents=True)
        with fs.create_file("/etc/named/zone.db") as handle:
            handle.write(b"zone")
        fs.chmod("/etc/named/zone.db", 0o640)

        info = fs.stat("/etc/named/zone.db")

        assert info.size == 4
        assert info.mode == 0o640
        assert not info.is_dir
        with fs.open_file("/etc/named/zone.db") as handle:
            assert handle.read() == b"zone"

    def test_list_dir_is_sorted_without_pseudo_entries(self, tmp_path):
        fs = RootFilesystem(tmp_path)
        for name in ("b", "a", "c"):
            (tmp_path / name).write_text(name)

        assert [entry.name for entry in fs.list_dir("/")] == ["a", "b", "c"]

    def test_list_dir_errors(self, tmp_path):
        fs = RootFilesystem(tmp_path)
        (tmp_path / "file").write_text("x")

        with pytest.raises(NotADirectoryEntryError):
            fs.list_dir("/file")
        with pytest.raises(EntryNotFoundError):
            fs.list_dir("/missing")

    def test_create_file_on_directory(self, tmp_path):
        fs = RootFilesystem(tmp_path)
        fs.make_directory("/etc")

        with pytest.raises(IsADirectoryError):
            fs.create_file("/etc")

    def test_make_directory_exists_ok(self, tmp_path):
        fs = RootFilesystem(tmp_path)
        fs.make_directory("/opt")
        fs.make_directory("/opt")

        assert stat.S_ISDIR((tmp_path / "opt").stat().st_mode)

    def test_missing_stat_and_open(self, tmp_path):
        fs = RootFilesystem(tmp_path)

        assert not fs.exists("/nope")
        with pytest.raises(EntryNotFoundError):
            fs.stat("/nope")
        with pytest.raises(EntryNotFoundError):
            fs.open_file("/nope")
