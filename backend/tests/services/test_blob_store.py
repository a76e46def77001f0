import pytest

from quotagate.storage.blob_store import LocalBlobStore


@pytest.mark.asyncio
async def test_put_get_delete(tmp_path):
    store = LocalBlobStore(tmp_path)
    key = store.new_key("report.pdf")

    await store.put(key, b"%PDF-1.7")

    assert key.endswith("-report.pdf")
    assert await store.get(key) == b"%PDF-1.7"

    await store.delete(key)
    await store.delete(key)  # already gone
    assert list(tmp_path.iterdir()) == []


def test_keys_drop_directory_components(tmp_path):
    store = LocalBlobStore(tmp_path)

    assert "/" not in store.new_key("../../etc/passwd")


@pytest.mark.asyncio
async def test_keys_cannot_escape_the_root(tmp_path):
    store = LocalBlobStore(tmp_path / "blobs")

    with pytest.raises(ValueError):
        await store.get("../secrets.txt")
