"""Tests for ownership and permission helpers (vm_agent/storage/ownership.py)."""

import stat

import pytest

from vm_agent.storage import ownership
from vm_agent.storage.exceptions import FilesystemError, OwnershipError, UnknownUserError


@pytest.fixture
def tree(root_fs):
    """/srv/app/{a.txt, sub/b.txt}"""
    root_fs.make_directory("/srv/app/sub", parents=True)
    (root_fs.root / "srv" / "app" / "a.txt").write_text("a")
    (root_fs.root / "srv" / "app" / "sub" / "b.txt").write_text("b")
    return root_fs


def mode_of(root_fs, path):
    return stat.S_IMODE(root_fs.resolve(path).stat().st_mode)


class TestLookupUid:
    def test_known_user(self, fake_users):
        assert ownership.lookup_uid("named") == 25

    def test_unknown_user(self, fake_users):
        with pytest.raises(UnknownUserError) as exc_info:
            ownership.lookup_uid("nobody-here")

        assert exc_info.value.username == "nobody-here"


class TestSetOwner:
    def test_single_path(self, tree, fake_users):
        ownership.set_owner("/srv/app", "named", fs=tree)

        assert tree.chown_calls == ["/srv/app"]
        assert tree.owners["/srv/app"] == 25

    def test_recursive_is_depth_first(self, tree, fake_users):
        ownership.set_owner("/srv/app", "haproxy", recursive=True, fs=tree)

        assert tree.chown_calls == [
            "/srv/app/a.txt",
            "/srv/app/sub/b.txt",
            "/srv/app/sub",
            "/srv/app",
        ]
        assert set(tree.owners.values()) == {188}

    def test_unknown_user_changes_nothing(self, tree, fake_users):
        with pytest.raises(UnknownUserError):
            ownership.set_owner("/srv/app", "ghost", recursive=True, fs=tree)

        assert tree.chown_calls == []

    def test_missing_path(self, tree, fake_users):
        with pytest.raises(OwnershipError, match="Failed to stat"):
            ownership.set_owner("/srv/missing", "named", fs=tree)

    def test_failure_aborts_walk(self, tree, fake_users, mocker):
        def chown(path, uid, gid):
            tree.chown_calls.append(path)
            if path.endswith("b.txt"):
                raise PermissionError("Operation not permitted")

        mocker.patch.object(tree, "chown", side_effect=chown)

        with pytest.raises(OwnershipError, match="b.txt"):
            ownership.set_owner("/srv/app", "named", recursive=True, fs=tree)

        assert "/srv/app" not in tree.chown_calls

    def test_keeps_group(self, tree, fake_users, mocker):
        chown = mocker.patch.object(tree, "chown")
        gid = tree.resolve("/srv/app").stat().st_gid

        ownership.set_owner("/srv/app", "vault", fs=tree)

        chown.assert_called_once_with("/srv/app", 990, gid)


class TestSetPermissions:
    def test_single_path(self, tree):
        ownership.set_permissions("/srv/app/a.txt", 0o600, fs=tree)

        assert mode_of(tree, "/srv/app/a.txt") == 0o600

    def test_recursive_changes_children_first(self, tree):
        ownership.set_permissions("/srv/app/sub", 0o750, recursive=True, fs=tree)

        assert tree.chmod_calls == ["/srv/app/sub/b.txt", "/srv/app/sub"]
        assert mode_of(tree, "/srv/app/sub/b.txt") == 0o750
        assert mode_of(tree, "/srv/app/sub") == 0o750
        assert "/srv/app/a.txt" not in tree.chmod_calls

    def test_missing_path(self, tree):
        with pytest.raises(OwnershipError):
            ownership.set_permissions("/srv/nope", 0o600, fs=tree)


class TestFileHelpers:
    def test_create_directory_sets_mode_despite_umask(self, root_fs):
        ownership.create_directory("/etc/named", recursive=True, mode=0o750, fs=root_fs)

        assert mode_of(root_fs, "/etc/named") == 0o750

    def test_create_directory_is_repeatable(self, root_fs):
        ownership.create_directory("/opt", fs=root_fs)
        ownership.create_directory("/opt", fs=root_fs)

        assert root_fs.exists("/opt")

    def test_create_directory_without_parents(self, root_fs):
        with pytest.raises(FilesystemError):
            ownership.create_directory("/a/b/c", fs=root_fs)

    def test_write_and_read_file_contents(self, root_fs):
        root_fs.make_directory("/etc")

        ownership.write_file_contents("/etc/secret", b"s3cr3t", mode=0o400, fs=root_fs)

        assert ownership.read_file_contents("/etc/secret", fs=root_fs) == b"s3cr3t"
        assert mode_of(root_fs, "/etc/secret") == 0o400
