"""Tests for vault encryption, key wrapping and transaction tag composition."""
import asyncio

import pytest

from lvault.client import VaultClient
from lvault.constants import Function, ObjectType
from lvault.crypto import (
    CryptoError,
    decrypt_bytes,
    decrypt_string,
    encrypt_bytes,
    encrypt_string,
    gen_vault_key,
    open_from_x25519,
    seal_to_x25519,
    unwrap_vault_keys,
    wrap_vault_keys,
)
from lvault.exceptions import IncorrectEncryptionKey
from lvault.keys import Wallet, gen_wallet
from lvault.local import LocalLedger, LocalStorage
from lvault.models import NodeCreateOptions, tag_values
from lvault.node import NodeKind, NodeService
from lvault.service import Service, VaultContext


def run(coro):
    return asyncio.run(coro)


def make_service(wallet=None, is_public=False, keys=None):
    storage = LocalStorage()
    svc = Service(wallet or gen_wallet(), LocalLedger(storage), storage)
    if keys is None:
        keys = () if is_public else (gen_vault_key(0),)
    svc.use_vault_context(VaultContext(vault_id="vault-1", is_public=is_public, keys=tuple(keys), vault={}))
    return svc


def tag_names(tags):
    return [t["name"] for t in tags]


# =============================================================================
# Symmetric Encryption
# =============================================================================

class TestVaultKeyEncryption:
    """Encrypt/decrypt with a versioned vault key set."""

    def test_string_round_trip(self):
        keys = [gen_vault_key(0)]
        ct = encrypt_string("quarterly report", keys)
        assert ct != "quarterly report"
        assert decrypt_string(ct, keys) == "quarterly report"

    def test_bytes_round_trip(self):
        keys = [gen_vault_key(0)]
        blob = encrypt_bytes(b"\x00\x01binary", keys)
        assert decrypt_bytes(blob, keys) == b"\x00\x01binary"

    def test_nonce_makes_ciphertexts_differ(self):
        keys = [gen_vault_key(0)]
        assert encrypt_string("same", keys) != encrypt_string("same", keys)

    def test_encrypts_with_latest_key(self):
        old, new = gen_vault_key(0), gen_vault_key(1)
        ct = encrypt_string("rotated", [old, new])
        assert decrypt_string(ct, [new]) == "rotated"
        with pytest.raises(CryptoError, match="no key with id 1"):
            decrypt_string(ct, [old])

    def test_old_payload_readable_after_rotation(self):
        old = gen_vault_key(0)
        ct = encrypt_string("before rotation", [old])
        assert decrypt_string(ct, [old, gen_vault_key(1)]) == "before rotation"

    def test_wrong_key_fails(self):
        ct = encrypt_string("secret", [gen_vault_key(0)])
        with pytest.raises(CryptoError, match="decryption failed"):
            decrypt_string(ct, [gen_vault_key(0)])

    def test_no_keys_fails(self):
        with pytest.raises(CryptoError, match="no encryption keys"):
            encrypt_string("x", [])

    def test_short_blob_fails(self):
        with pytest.raises(CryptoError, match="too short"):
            decrypt_bytes(b"abc", [gen_vault_key(0)])


# =============================================================================
# Key Wrapping
# =============================================================================

class TestKeyWrapping:
    """Vault keys sealed to a member's X25519 key."""

    def test_seal_and_open(self):
        wallet = gen_wallet()
        sealed = seal_to_x25519(wallet.public_key(), b"k" * 32)
        assert open_from_x25519(wallet.enc_priv, sealed) == b"k" * 32

    def test_other_wallet_cannot_open(self):
        sealed = seal_to_x25519(gen_wallet().public_key(), b"k" * 32)
        with pytest.raises(CryptoError, match="not addressed to this wallet"):
            open_from_x25519(gen_wallet().enc_priv, sealed)

    def test_wrap_unwrap_key_set(self):
        wallet = gen_wallet()
        keys = [gen_vault_key(0), gen_vault_key(1)]
        wrapped = wrap_vault_keys(keys, wallet.public_key())
        assert [k["keyId"] for k in wrapped] == [0, 1]
        assert all(k["publicKey"] == wallet.public_key() for k in wrapped)
        assert unwrap_vault_keys(wallet, wrapped) == keys

    def test_wallet_dump_load(self):
        wallet = gen_wallet("ana@example.com")
        restored = Wallet.load(wallet.dump())
        assert restored.address == wallet.address
        assert restored.public_key() == wallet.public_key()
        assert restored.email == "ana@example.com"


# =============================================================================
# Service Processing Helpers
# =============================================================================

class TestProcessHelpers:
    """Service-level encryption maps crypto failures to IncorrectEncryptionKey."""

    def test_private_string_round_trip(self):
        svc = make_service()
        ct = svc.process_write_string("hello")
        assert ct != "hello"
        assert svc.process_read_string(ct) == "hello"

    def test_private_bytes_round_trip(self):
        svc = make_service()
        blob = svc.process_write_bytes(b"payload")
        assert blob != b"payload"
        assert svc.process_read_bytes(blob) == b"payload"

    def test_wrong_key_set_raises_incorrect_key(self):
        ct = make_service().process_write_string("hello")
        with pytest.raises(IncorrectEncryptionKey):
            make_service().process_read_string(ct)

    def test_wrong_key_set_bytes_raises_incorrect_key(self):
        blob = make_service().process_write_bytes(b"payload")
        with pytest.raises(IncorrectEncryptionKey):
            make_service().process_read_bytes(blob)

    def test_malformed_ciphertext_raises_incorrect_key(self):
        with pytest.raises(IncorrectEncryptionKey):
            make_service().process_read_string("x")

    def test_public_vault_is_identity(self):
        svc = make_service(is_public=True)
        assert svc.process_write_string("hello") == "hello"
        assert svc.process_read_string("hello") == "hello"
        assert svc.process_write_bytes(b"raw") == b"raw"
        assert svc.process_read_bytes(b"raw") == b"raw"

    def test_private_vault_without_keys_raises(self):
        svc = make_service(keys=())
        with pytest.raises(IncorrectEncryptionKey):
            svc.process_write_string("hello")


# =============================================================================
# Transaction Tags
# =============================================================================

class TestTxTags:
    """Tag composition for ledger transactions."""

    def _node_service(self, is_public=False, group_ref=None, user_tags=None):
        storage = LocalStorage()
        svc = NodeService(NodeKind.STACK, gen_wallet(), LocalLedger(storage), storage)
        keys = () if is_public else (gen_vault_key(0), gen_vault_key(3))
        svc.use_vault_context(VaultContext(vault_id="vault-1", is_public=is_public, keys=keys, vault={}))
        svc.object_id = "node-1"
        svc.function = Function.NODE_CREATE
        svc.action_ref = svc._action("CREATE")
        svc.group_ref = group_ref
        svc.tags = list(user_tags or [])
        return svc

    def test_private_tag_order(self):
        tags = self._node_service().get_tx_tags()
        assert tag_names(tags) == [
            "Protocol-Name",
            "Protocol-Version",
            "Function-Name",
            "Signer-Address",
            "Vault-Id",
            "Node-Type",
            "Node-Id",
            "Public",
            "Encryption-Key-Version",
            "Action-Ref",
        ]

    def test_key_version_is_latest(self):
        tags = self._node_service().get_tx_tags()
        assert tag_values(tags, "Encryption-Key-Version") == ["3"]

    def test_public_omits_key_version(self):
        tags = self._node_service(is_public=True).get_tx_tags()
        assert "Encryption-Key-Version" not in tag_names(tags)
        assert tag_values(tags, "Public") == ["true"]

    def test_group_ref_before_action_ref(self):
        names = tag_names(self._node_service(group_ref="g-1").get_tx_tags())
        assert names.index("Group-Ref") == names.index("Action-Ref") - 1

    def test_user_tags_trail(self):
        tags = self._node_service(user_tags=["finance", "2024"]).get_tx_tags()
        assert tags[-2:] == [{"name": "Tag", "value": "finance"}, {"name": "Tag", "value": "2024"}]

    def test_signer_and_node_type(self):
        svc = self._node_service()
        tags = svc.get_tx_tags()
        assert tag_values(tags, "Signer-Address") == [svc.wallet.address]
        assert tag_values(tags, "Node-Type") == [ObjectType.STACK.value]
        assert tag_values(tags, "Action-Ref") == ["STACK_CREATE"]

    def test_note_posts_as_stack_with_note_action(self):
        storage = LocalStorage()
        svc = NodeService(NodeKind.NOTE, gen_wallet(), LocalLedger(storage), storage)
        assert svc.object_type == ObjectType.STACK
        assert svc._action("CREATE").value == "NOTE_CREATE"

    def test_tags_on_posted_transaction(self):
        storage = LocalStorage()
        ledger = LocalLedger(storage)
        wallet = gen_wallet("ana@example.com")
        ledger.register_user("ana@example.com", wallet.public_data())
        client = VaultClient(wallet, ledger, storage)

        async def scenario():
            vault = await client.vault.create("Tagged")
            await client.folder.create(vault.vault_id, "Docs", NodeCreateOptions(tags=["team"]))
            return vault.vault_id, await ledger.get_transactions(vault.vault_id)

        vault_id, txs = run(scenario())
        create = txs[-1]
        assert create["input"]["function"] == "node:create"
        assert tag_values(create["tags"], "Vault-Id") == [vault_id]
        assert tag_values(create["tags"], "Tag") == ["team"]
        assert "Group-Ref" not in tag_names(create["tags"])
