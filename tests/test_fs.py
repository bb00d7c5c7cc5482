import pytest

from davgate.acls import AuthorizationError, RootProtectedError
from davgate.auth import Identity
from davgate.fs import JailFileSystem
from davgate.paths import PathValidationError
from davgate.store import ConfigStore

from .conftest import identity

ADMIN = identity("admin", "crud")
LJ = identity("lj", "cru")
READER = identity("reader", "r")


@pytest.fixture
def fs(store):
    return JailFileSystem(store)


class TestJail:
    def test_littlejohn_writes_into_own_jail(self, fs, tmp_path):
        f = fs.open(LJ, "/notes/../hello.txt", "wb")
        with f:
            f.write(b"hi")
        assert (tmp_path / "littlejohn" / "hello.txt").read_bytes() == b"hi"
        assert not (tmp_path / "hello.txt").exists()

    def test_traversal_stays_in_jail(self, fs, tmp_path):
        (tmp_path / "secret.txt").write_text("x")
        with pytest.raises(FileNotFoundError):
            fs.stat(LJ, "/../secret.txt")
        assert fs.resolve(LJ, "../../secret.txt") == str(tmp_path / "littlejohn" / "secret.txt")

    def test_unjailed_user_sees_base(self, fs, tmp_path):
        assert fs.root(ADMIN) == str(tmp_path)
        assert fs.root(LJ) == str(tmp_path / "littlejohn")

    def test_illegal_name(self, fs):
        with pytest.raises(PathValidationError):
            fs.stat(ADMIN, "bad\x00name")


class TestRootProtection:
    @pytest.mark.parametrize("name", ["", "/", ".", "/..", "a/../.."])
    def test_remove_root(self, fs, name):
        with pytest.raises(RootProtectedError):
            fs.remove_all(ADMIN, name)

    def test_rename_from_or_to_root(self, fs, tmp_path):
        (tmp_path / "a").write_text("x")
        with pytest.raises(RootProtectedError):
            fs.rename(ADMIN, "/", "/b")
        with pytest.raises(RootProtectedError):
            fs.rename(ADMIN, "/a", "/")
        assert (tmp_path / "a").exists()


class TestCapabilities:
    def test_mkdir_needs_create(self, fs, tmp_path):
        with pytest.raises(AuthorizationError):
            fs.mkdir(READER, "/d")
        fs.mkdir(LJ, "/d")
        assert (tmp_path / "littlejohn" / "d").is_dir()

    def test_write_without_create_is_soft(self, fs, tmp_path):
        assert fs.open(READER, "/f.txt", "wb") is None
        assert fs.open(READER, "/f.txt", "ab") is None
        assert not (tmp_path / "f.txt").exists()

    def test_read_needs_read(self, fs, tmp_path):
        (tmp_path / "f.txt").write_bytes(b"data")
        writer = identity("writer", "c")
        with pytest.raises(AuthorizationError):
            fs.open(writer, "/f.txt", "rb")
        with fs.open(READER, "/f.txt") as f:
            assert f.read() == b"data"

    def test_remove_needs_delete(self, fs, tmp_path):
        target = tmp_path / "littlejohn" / "x"
        target.write_text("x")
        with pytest.raises(AuthorizationError):
            fs.remove_all(LJ, "/x")
        assert target.exists()

    def test_remove_tree(self, fs, tmp_path):
        (tmp_path / "d" / "e").mkdir(parents=True)
        (tmp_path / "d" / "e" / "f").write_text("x")
        fs.remove_all(ADMIN, "/d")
        assert not (tmp_path / "d").exists()

    def test_remove_missing_is_noop(self, fs):
        fs.remove_all(ADMIN, "/missing")

    def test_rename_needs_update(self, fs, tmp_path):
        (tmp_path / "a").write_text("x")
        with pytest.raises(AuthorizationError):
            fs.rename(READER, "/a", "/b")
        fs.rename(ADMIN, "/a", "/b")
        assert (tmp_path / "b").read_text() == "x"

    def test_stat(self, fs, tmp_path):
        (tmp_path / "f").write_text("abc")
        assert fs.stat(READER, "/f").st_size == 3
        assert fs.stat(READER, "/missing") is None
        with pytest.raises(FileNotFoundError):
            fs.stat(ADMIN, "/missing")
        with pytest.raises(AuthorizationError):
            fs.stat(identity("writer", "c"), "/f")

    def test_listdir_sorted(self, fs, tmp_path):
        for name in ("b", "a", "c"):
            (tmp_path / "littlejohn" / name).write_text("")
        assert fs.listdir(LJ, "/") == ["a", "b", "c"]


class TestBypassMode:
    def test_anonymous_holds_everything(self, make_config, tmp_path):
        fs = JailFileSystem(ConfigStore(make_config()))
        anon = Identity.anonymous()
        fs.mkdir(anon, "/d")
        with fs.open(anon, "/d/f", "wb") as f:
            f.write(b"x")
        fs.rename(anon, "/d/f", "/d/g")
        fs.remove_all(anon, "/d")
        assert not (tmp_path / "d").exists()


class TestAudit:
    def test_operations_logged_when_enabled(self, make_config, default_users, tmp_path):
        events = []

        class Recorder:
            def operation(self, action, user, **paths):
                events.append((action, user, paths))

        cfg = make_config(default_users, log={"create": True, "delete": True})
        fs = JailFileSystem(ConfigStore(cfg), audit=Recorder())
        fs.mkdir(ADMIN, "/d")
        fs.remove_all(ADMIN, "/d")
        assert [e[0] for e in events] == ["mkdir", "delete"]
        assert events[0][2]["path"] == str(tmp_path / "d")


class TestRequestSnapshot:
    def test_calls_use_the_pinned_config(self, fs, store, make_config, tmp_path):
        entry = store.snapshot()
        store.apply(make_config({"lj": {"permissions": "cru", "subdir": "/elsewhere"}}))

        with fs.open(LJ, "/pinned.txt", "wb", cfg=entry) as f:
            f.write(b"x")
        with fs.open(LJ, "/live.txt", "wb") as f:
            f.write(b"x")

        assert (tmp_path / "littlejohn" / "pinned.txt").exists()
        assert (tmp_path / "elsewhere" / "live.txt").exists()
        assert fs.root(LJ, entry) == str(tmp_path / "littlejohn")
