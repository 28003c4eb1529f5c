"""Client-side encrypted credential → address cache."""

import sqlite3
from contextlib import closing

import pytest

from fluxus.registry import EncryptedMappingStore, LocalStorage
from fluxus.registry.local_store import (
    ACTIVE_CREDENTIAL_KEY,
    LAST_ACTIVE_CREDENTIAL_KEY,
    REGISTRY_SALT_KEY,
)

ADDRESS = "0x" + "1" * 40
OTHER_ADDRESS = "0x" + "2" * 40
CREDENTIAL = "credential-abc-123"


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "local-storage.json")


def make_store(tmp_path, storage, origin="https://wallet.example", **kwargs):
    return EncryptedMappingStore(
        tmp_path / "wallet-registry.sqlite",
        storage,
        origin=origin,
        iterations=1000,
        **kwargs,
    )


@pytest.fixture
def local_store(tmp_path, storage):
    return make_store(tmp_path, storage)


def rows(path):
    with closing(sqlite3.connect(path)) as conn:
        return conn.execute(
            "SELECT credential_hash, address_ciphertext, iv, created_at, updated_at FROM wallet_mappings"
        ).fetchall()


@pytest.mark.asyncio
async def test_put_then_get_round_trips(local_store):
    assert await local_store.has_any() is False

    await local_store.put(CREDENTIAL, ADDRESS)

    assert await local_store.get(CREDENTIAL) == ADDRESS
    assert await local_store.has_any() is True


@pytest.mark.asyncio
async def test_unknown_credential_returns_none(local_store):
    await local_store.put(CREDENTIAL, ADDRESS)
    assert await local_store.get("someone-else") is None
    assert await local_store.get("") is None


@pytest.mark.asyncio
async def test_records_are_scoped_to_origin(tmp_path, storage):
    await make_store(tmp_path, storage, origin="https://a.example").put(CREDENTIAL, ADDRESS)

    assert await make_store(tmp_path, storage, origin="https://b.example").get(CREDENTIAL) is None
    assert await make_store(tmp_path, storage, origin="https://a.example").get(CREDENTIAL) == ADDRESS


@pytest.mark.asyncio
async def test_nothing_stored_in_plaintext(local_store):
    await local_store.put(CREDENTIAL, ADDRESS)

    [row] = rows(local_store.db_path)
    assert CREDENTIAL not in row[0]
    assert ADDRESS not in row[1]
    assert ADDRESS.lower()[2:] not in row[1]


@pytest.mark.asyncio
async def test_upsert_keeps_created_at_and_rotates_iv(local_store):
    await local_store.put(CREDENTIAL, ADDRESS)
    [first] = rows(local_store.db_path)

    await local_store.put(CREDENTIAL, OTHER_ADDRESS)
    [second] = rows(local_store.db_path)

    assert second[0] == first[0]
    assert second[3] == first[3]
    assert second[2] != first[2]
    assert second[4] >= first[4]
    assert await local_store.get(CREDENTIAL) == OTHER_ADDRESS


@pytest.mark.asyncio
async def test_salt_is_generated_once(local_store, storage):
    await local_store.put(CREDENTIAL, ADDRESS)
    salt = storage.get_item(REGISTRY_SALT_KEY)
    assert salt

    await local_store.put("another-credential", OTHER_ADDRESS)
    assert storage.get_item(REGISTRY_SALT_KEY) == salt


@pytest.mark.asyncio
async def test_lost_salt_makes_records_unreadable(local_store, storage):
    await local_store.put(CREDENTIAL, ADDRESS)
    storage.remove_item(REGISTRY_SALT_KEY)

    assert await local_store.get(CREDENTIAL) is None


@pytest.mark.asyncio
async def test_corrupted_record_reads_as_missing(local_store):
    await local_store.put(CREDENTIAL, ADDRESS)
    with closing(sqlite3.connect(local_store.db_path)) as conn:
        with conn:
            conn.execute("UPDATE wallet_mappings SET address_ciphertext = 'AAAA'")

    assert await local_store.get(CREDENTIAL) is None


@pytest.mark.asyncio
async def test_disabled_store_is_inert(tmp_path, storage):
    store = make_store(tmp_path, storage, enabled=False)

    await store.put(CREDENTIAL, ADDRESS)

    assert store.can_use_registry() is False
    assert await store.get(CREDENTIAL) is None
    assert await store.has_any() is False
    assert not store.db_path.exists()


@pytest.mark.asyncio
async def test_unreadable_database_degrades(tmp_path, storage):
    db_path = tmp_path / "wallet-registry.sqlite"
    db_path.write_bytes(b"this is not a sqlite database, just garbage bytes" * 10)
    store = make_store(tmp_path, storage)

    assert await store.has_any() is False
    assert await store.get(CREDENTIAL) is None
    await store.put(CREDENTIAL, ADDRESS)


def test_active_credential_falls_back_to_last_active(local_store, storage):
    assert local_store.get_active_credential_id() is None

    storage.set_item(LAST_ACTIVE_CREDENTIAL_KEY, "older")
    assert local_store.get_active_credential_id() == "older"

    local_store.set_active_credential_id("newer")
    assert storage.get_item(ACTIVE_CREDENTIAL_KEY) == "newer"
    assert local_store.get_active_credential_id() == "newer"


def test_local_storage_keys(storage):
    storage.set_item("a", "1")
    storage.set_item("b", "2")
    storage.remove_item("a")
    storage.remove_item("missing")

    assert storage.keys() == ["b"]
    assert storage.get_item("a") is None
