import pytest

from app.teamspace.storage import LocalStorage, S3Storage, StorageError, storage_from_config


def test_local_save_open_and_url(tmp_path):
    store = LocalStorage(tmp_path / "files")
    store.save("chat-attachments/1-a b.txt", b"hello")
    assert store.exists("chat-attachments/1-a b.txt")
    with store.open("chat-attachments/1-a b.txt") as fh:
        assert fh.read() == b"hello"
    assert store.url_for_key("chat-attachments/1-a b.txt") == "/storage/chat-attachments/1-a%20b.txt"


def test_local_rejects_keys_outside_root(tmp_path):
    store = LocalStorage(tmp_path / "files")
    with pytest.raises(StorageError):
        store.save("../escape.txt", b"x")
    assert store.exists("../escape.txt") is False


def test_storage_from_config_local_root(tmp_path):
    store = storage_from_config({"STORAGE_BACKEND": "local", "STORAGE_LOCAL_ROOT": str(tmp_path)})
    assert isinstance(store, LocalStorage)
    assert store.root == tmp_path


def test_storage_from_config_s3_urls():
    store = storage_from_config(
        {"STORAGE_BACKEND": "S3", "S3_ENDPOINT": "nyc3.example.com", "S3_BUCKET": "team"}
    )
    assert isinstance(store, S3Storage)
    assert store.url_for_key("chat-attachments/x.png") == "https://team.nyc3.example.com/chat-attachments/x.png"

    cdn = storage_from_config({"STORAGE_BACKEND": "s3", "S3_BUCKET": "team", "STORAGE_PUBLIC_BASE_URL": "https://cdn.example.com/"})
    assert cdn.url_for_key("/k.png") == "https://cdn.example.com/k.png"
