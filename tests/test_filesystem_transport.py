import pytest

from src.domain.updates import TransportError, TransportMode
from src.infrastructure.transport import FilesystemTransport, content_revision


def test_write_creates_parent_directories(tmp_path):
    transport = FilesystemTransport(tmp_path)
    revision = transport.write_file("lib/deep/foo.ts", "export const a = 1")

    assert (tmp_path / "lib" / "deep" / "foo.ts").read_text() == "export const a = 1"
    assert revision == content_revision(b"export const a = 1")
    assert transport.mode == TransportMode.FILESYSTEM


def test_read_file_snapshot(tmp_path):
    (tmp_path / "a.txt").write_bytes(b"hello")
    transport = FilesystemTransport(tmp_path)

    snapshot = transport.read_file("a.txt")

    assert snapshot.content == "hello"
    assert snapshot.revision == content_revision(b"hello")
    assert transport.read_file("missing.txt") is None


def test_paths_outside_root_are_refused(tmp_path):
    root = tmp_path / "app"
    root.mkdir()
    transport = FilesystemTransport(root)

    with pytest.raises(TransportError):
        transport.write_file("../escaped.txt", "x")
    assert not (tmp_path / "escaped.txt").exists()


def test_delete_is_idempotent(tmp_path):
    (tmp_path / "a.txt").write_text("x")
    transport = FilesystemTransport(tmp_path)
    transport.delete_file("a.txt")
    transport.delete_file("a.txt")
    assert not transport.exists("a.txt")


def test_serverless_root_is_not_writable(tmp_path):
    assert FilesystemTransport(tmp_path).is_writable()
    assert not FilesystemTransport(tmp_path, serverless=True).is_writable()


def test_write_failure_names_path(tmp_path):
    (tmp_path / "lib").write_text("a file where a directory should be")
    transport = FilesystemTransport(tmp_path)
    with pytest.raises(TransportError) as exc:
        transport.write_file("lib/foo.ts", "x")
    assert exc.value.path == "lib/foo.ts"
