"""Shared fixtures for HybridChat tests."""

import pytest

from hybridchat.exchange import InMemoryBlobStore, InMemoryKeyBundleExchange, KeyDirectory
from hybridchat.keys import export_public_key, generate_keypair, private_key_to_bytes
from hybridchat.keystore import KeyPairStore
from hybridchat.storage import InMemoryKeyStorage

# RSA generation is slow; every test shares these identities.
USER_IDS = ("1", "2", "3", "4", "99")


@pytest.fixture(scope="session")
def identities():
    """Private/public key pairs by user id."""
    return {user_id: generate_keypair() for user_id in USER_IDS}


@pytest.fixture(scope="session")
def public_keys(identities):
    """Base64 SPKI public keys by user id."""
    return {user_id: export_public_key(pair[1]) for user_id, pair in identities.items()}


@pytest.fixture
def exchange(public_keys):
    """Key-bundle exchange with every test identity published."""
    exchange = InMemoryKeyBundleExchange()
    exchange._bundles.update(public_keys)
    return exchange


@pytest.fixture
def directory(exchange):
    return KeyDirectory(exchange)


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def make_key_store(identities, exchange):
    """Factory for a device key store holding the given users' private keys."""

    def make(*user_ids: str) -> KeyPairStore:
        storage = InMemoryKeyStorage()
        for user_id in user_ids:
            storage._keys[user_id] = private_key_to_bytes(identities[user_id][0])
        return KeyPairStore(storage, exchange)

    return make
