"""Tests for folders, stacks and notes: lifecycle, versions and file transfer."""
import asyncio

import pytest

from lvault.client import VaultClient
from lvault.config import Config, FileConfig
from lvault.constants import Status
from lvault.exceptions import BadRequest, GatewayError, NotFound, UploadCancelled
from lvault.hooks import CancelHook
from lvault.keys import gen_wallet
from lvault.local import LocalLedger, LocalStorage
from lvault.models import (
    FileLike,
    ListOptions,
    NodeCreateOptions,
    NoteCreateOptions,
    StackCreateOptions,
    tag_values,
)


def run(coro):
    return asyncio.run(coro)


def make_client(email="ana@example.com", config=None):
    storage = LocalStorage()
    ledger = LocalLedger(storage)
    wallet = gen_wallet(email)
    ledger.register_user(email, wallet.public_data())
    return VaultClient(wallet, ledger, storage, config)


def make_vault(client, name="Workspace", is_public=False):
    return run(client.vault.create(name, is_public=is_public)).vault_id


# =============================================================================
# Folders
# =============================================================================

class TestFolders:
    """Folder create, rename, move and listing."""

    @pytest.fixture
    def client(self):
        return make_client()

    @pytest.fixture
    def vault_id(self, client):
        return make_vault(client)

    def test_create_decrypts_name(self, client, vault_id):
        created = run(client.folder.create(vault_id, "Contracts"))
        assert created.object.name == "Contracts"
        assert created.object.status == Status.ACTIVE.value
        assert created.object.owner == client.address

    def test_name_is_encrypted_at_rest(self, client, vault_id):
        created = run(client.folder.create(vault_id, "Contracts"))
        raw = run(client.folder.get(created.node_id, should_decrypt=False))
        assert raw.name != "Contracts"

    def test_public_vault_name_is_plain(self, client):
        vault_id = make_vault(client, "Open", is_public=True)
        created = run(client.folder.create(vault_id, "Press"))
        raw = run(client.folder.get(created.node_id, should_decrypt=False))
        assert raw.name == "Press"

    def test_rename(self, client, vault_id):
        created = run(client.folder.create(vault_id, "Draft"))
        renamed = run(client.folder.rename(created.node_id, "Final"))
        assert renamed.object.name == "Final"
        assert run(client.folder.get(created.node_id)).name == "Final"

    def test_move_and_move_to_root(self, client, vault_id):
        async def scenario():
            top = await client.folder.create(vault_id, "Top")
            child = await client.folder.create(vault_id, "Child")
            moved = await client.folder.move(child.node_id, top.node_id)
            back = await client.folder.move(child.node_id)
            return top, moved, back

        top, moved, back = run(scenario())
        assert moved.object.parent_id == top.node_id
        assert back.object.parent_id is None

    def test_list_filters_by_parent(self, client, vault_id):
        async def scenario():
            top = await client.folder.create(vault_id, "Top")
            await client.folder.create(vault_id, "Inside", NodeCreateOptions(parent_id=top.node_id))
            await client.folder.create(vault_id, "Outside")
            return await client.folder.list(vault_id, ListOptions(parent_id=top.node_id))

        assert [f.name for f in run(scenario())] == ["Inside"]

    def test_list_default_hides_revoked(self, client, vault_id):
        async def scenario():
            kept = await client.folder.create(vault_id, "Kept")
            gone = await client.folder.create(vault_id, "Gone")
            await client.folder.revoke(gone.node_id)
            active = await client.folder.list(vault_id)
            revoked = await client.folder.list(vault_id, ListOptions(statuses=[Status.REVOKED.value]))
            return kept, gone, active, revoked

        kept, gone, active, revoked = run(scenario())
        assert [f.id for f in active] == [kept.node_id]
        assert [f.id for f in revoked] == [gone.node_id]

    def test_list_without_decrypt(self, client, vault_id):
        run(client.folder.create(vault_id, "Secret"))
        folders = run(client.folder.list(vault_id, ListOptions(should_decrypt=False)))
        assert folders[0].name != "Secret"

    def test_get_with_wrong_type_not_found(self, client, vault_id):
        created = run(client.folder.create(vault_id, "Docs"))
        with pytest.raises(NotFound):
            run(client.stack.get(created.node_id))


# =============================================================================
# Status Machine
# =============================================================================

class TestNodeStatus:
    """ACTIVE <-> REVOKED, anything -> DELETED, nothing leaves DELETED."""

    @pytest.fixture
    def client(self):
        return make_client()

    @pytest.fixture
    def stack_id(self, client):
        vault_id = make_vault(client)
        return run(client.stack.create(vault_id, FileLike("a.txt", b"alpha"))).node_id

    def test_revoke_restore(self, client, stack_id):
        assert run(client.stack.revoke(stack_id)).object.status == Status.REVOKED.value
        assert run(client.stack.restore(stack_id)).object.status == Status.ACTIVE.value

    def test_revoked_can_be_renamed(self, client, stack_id):
        run(client.stack.revoke(stack_id))
        renamed = run(client.stack.rename(stack_id, "b.txt"))
        assert renamed.object.name == "b.txt"
        assert renamed.object.status == Status.REVOKED.value

    def test_restore_active_rejected(self, client, stack_id):
        with pytest.raises(BadRequest, match="only a revoked node can be restored"):
            run(client.stack.restore(stack_id))

    def test_revoke_twice_rejected(self, client, stack_id):
        run(client.stack.revoke(stack_id))
        with pytest.raises(BadRequest, match="only an active node can be revoked"):
            run(client.stack.revoke(stack_id))

    def test_delete_from_revoked(self, client, stack_id):
        run(client.stack.revoke(stack_id))
        assert run(client.stack.delete(stack_id)).object.status == Status.DELETED.value

    @pytest.mark.parametrize("action", ["revoke", "restore", "delete", "rename", "move"])
    def test_deleted_is_terminal(self, client, stack_id, action):
        run(client.stack.delete(stack_id))
        call = {
            "revoke": lambda: client.stack.revoke(stack_id),
            "restore": lambda: client.stack.restore(stack_id),
            "delete": lambda: client.stack.delete(stack_id),
            "rename": lambda: client.stack.rename(stack_id, "again.txt"),
            "move": lambda: client.stack.move(stack_id),
        }[action]
        with pytest.raises(BadRequest, match="is deleted"):
            run(call())
        assert run(client.stack.get(stack_id)).status == Status.DELETED.value


# =============================================================================
# Stacks
# =============================================================================

class TestStacks:
    """Versioned files."""

    @pytest.fixture
    def client(self):
        return make_client()

    @pytest.fixture
    def vault_id(self, client):
        return make_vault(client)

    def test_create_and_read_back(self, client, vault_id):
        async def scenario():
            created = await client.stack.create(vault_id, FileLike("report.pdf", b"%PDF-1.4 body", "application/pdf"))
            content = await client.stack.get_version(created.node_id)
            return created, content

        created, content = run(scenario())
        assert created.object.name == "report.pdf"
        assert created.object.current_version.type == "application/pdf"
        assert created.object.current_version.size == len(b"%PDF-1.4 body")
        assert content.data == b"%PDF-1.4 body"
        assert content.name == "report.pdf"

    def test_default_mime_type(self, client, vault_id):
        created = run(client.stack.create(vault_id, FileLike("blob", b"\x00\x01")))
        assert created.object.current_version.type == "application/octet-stream"

    def test_mime_type_option_overrides_file(self, client, vault_id):
        options = StackCreateOptions(mime_type="text/csv")
        created = run(client.stack.create(vault_id, FileLike("a", b"x,y", "text/plain"), options=options))
        assert created.object.current_version.type == "text/csv"

    def test_each_revision_adds_one_version(self, client, vault_id):
        async def scenario():
            created = await client.stack.create(vault_id, FileLike("log.txt", b"v1"))
            counts = [len(created.object.versions)]
            for body in (b"v2", b"v3"):
                result = await client.stack.upload_revision(created.node_id, FileLike("log.txt", body))
                counts.append(len(result.object.versions))
            first = await client.stack.get_version(created.node_id, 0)
            latest = await client.stack.get_version(created.node_id)
            return counts, first, latest

        counts, first, latest = run(scenario())
        assert counts == [1, 2, 3]
        assert first.data == b"v1"
        assert latest.data == b"v3"

    def test_missing_version_index(self, client, vault_id):
        created = run(client.stack.create(vault_id, FileLike("a.txt", b"a")))
        with pytest.raises(NotFound) as exc:
            run(client.stack.get_version(created.node_id, 5))
        assert exc.value.search_key == "5"

    def test_user_tags_on_create(self, client, vault_id):
        options = StackCreateOptions(tags=["invoice"])
        run(client.stack.create(vault_id, FileLike("a.txt", b"a"), options=options))
        txs = run(client.ledger.get_transactions(vault_id))
        assert tag_values(txs[-1]["tags"], "Tag") == ["invoice"]

    def test_vault_size_counts_versions(self, client, vault_id):
        async def scenario():
            created = await client.stack.create(vault_id, FileLike("a.txt", b"12345"))
            await client.stack.upload_revision(created.node_id, FileLike("a.txt", b"123"))
            return await client.vault.get(vault_id)

        assert run(scenario()).size == 8

    def test_public_stack_stored_plain(self, client):
        vault_id = make_vault(client, "Open", is_public=True)
        created = run(client.stack.create(vault_id, FileLike("a.txt", b"visible")))
        url = created.object.current_version.resource("s3")
        assert client.storage._files[url]["data"] == b"visible"

    def test_private_stack_stored_encrypted(self, client, vault_id):
        created = run(client.stack.create(vault_id, FileLike("a.txt", b"hidden")))
        url = created.object.current_version.resource("s3")
        assert client.storage._files[url]["data"] != b"hidden"

    def test_tampered_content_detected(self, client, vault_id):
        created = run(client.stack.create(vault_id, FileLike("a.txt", b"original")))
        url = created.object.current_version.resource("s3")
        client.storage._files[url]["data"] = b"tampered"
        with pytest.raises(GatewayError, match="does not match its hash"):
            run(client.stack.get_version(created.node_id))


# =============================================================================
# File Transfer
# =============================================================================

class TestFileTransfer:
    """Chunking, progress and cancellation."""

    @pytest.fixture
    def client(self):
        return make_client(config=Config(file=FileConfig(chunk_size_bytes=10)))

    @pytest.fixture
    def vault_id(self, client):
        return make_vault(client)

    def test_chunked_round_trip(self, client, vault_id):
        data = bytes(range(35))

        async def scenario():
            created = await client.stack.create(vault_id, FileLike("big.bin", data))
            return created, await client.stack.get_version(created.node_id)

        created, content = run(scenario())
        version = created.object.current_version
        assert version.number_of_chunks == 4
        assert version.chunk_size == 10
        assert content.data == data
        resource = version.resource("s3")
        assert all(f"{resource}_{i}" in client.storage._files for i in range(4))

    def test_small_file_single_chunk(self, client, vault_id):
        created = run(client.stack.create(vault_id, FileLike("tiny.bin", b"abc")))
        assert created.object.current_version.number_of_chunks == 1
        assert created.object.current_version.chunk_size is None

    def test_empty_file(self, client, vault_id):
        async def scenario():
            created = await client.stack.create(vault_id, FileLike("empty.bin", b""))
            return await client.stack.get_version(created.node_id)

        assert run(scenario()).data == b""

    def test_progress_reaches_100(self, client, vault_id):
        seen = []
        options = StackCreateOptions(progress_hook=lambda percent, info: seen.append((percent, info)))
        run(client.stack.create(vault_id, FileLike("big.bin", bytes(35)), options=options))
        percents = [p for p, _ in seen]
        assert percents == sorted(percents)
        assert percents[-1] == 100.0
        assert seen[-1][1] == {"id": "big.bin", "total": 35}

    def test_cancelled_upload_raises(self, client, vault_id):
        cancel = CancelHook()
        cancel.cancel()
        with pytest.raises(UploadCancelled):
            run(client.stack.create(vault_id, FileLike("a.bin", b"abc"), options=StackCreateOptions(cancel_hook=cancel)))
        assert run(client.stack.list(vault_id)) == []

    def test_cancel_mid_upload(self, client, vault_id):
        cancel = CancelHook()

        def progress(percent, info):
            if percent >= 50:
                cancel.cancel()

        options = StackCreateOptions(progress_hook=progress, cancel_hook=cancel)
        with pytest.raises(UploadCancelled):
            run(client.stack.create(vault_id, FileLike("big.bin", bytes(40)), options=options))

    def test_download_progress(self, client, vault_id):
        created = run(client.stack.create(vault_id, FileLike("big.bin", bytes(35))))
        seen = []
        run(client.stack.get_version(created.node_id, progress_hook=lambda p, info: seen.append(p)))
        assert seen == [25.0, 50.0, 75.0, 100.0]

    def test_cancel_hook_notifies_once(self):
        cancel = CancelHook()
        calls = []
        cancel.add_listener(lambda: calls.append(1))
        cancel.cancel()
        cancel.cancel()
        assert calls == [1]
        assert cancel.cancelled


# =============================================================================
# Notes
# =============================================================================

class TestNotes:
    """Text documents stored as stacks."""

    @pytest.fixture
    def client(self):
        return make_client()

    @pytest.fixture
    def vault_id(self, client):
        return make_vault(client)

    def test_folder_note_revoke_restore_flow(self, client, vault_id):
        async def scenario():
            folder = await client.folder.create(vault_id, "Research")
            note = await client.note.create(vault_id, "hello", "readme.md", NoteCreateOptions(parent_id=folder.node_id))
            read = await client.note.get(note.node_id)
            revoked = await client.note.revoke(note.node_id)
            restored = await client.note.restore(note.node_id)
            return folder, read, revoked, restored

        folder, read, revoked, restored = run(scenario())
        assert read.parent_id == folder.node_id
        assert read.name == "readme.md"
        assert read.current_version.message == "hello"
        assert read.current_version.type == "text/markdown"
        assert revoked.object.status == Status.REVOKED.value
        assert restored.object.status == Status.ACTIVE.value

    def test_json_note(self, client, vault_id):
        options = NoteCreateOptions(mime_type="application/json")
        created = run(client.note.create(vault_id, '{"a": 1}', "data.json", options))
        assert created.object.current_version.type == "application/json"

    def test_unsupported_type_rejected(self, client, vault_id):
        with pytest.raises(BadRequest, match="unsupported note type"):
            run(client.note.create(vault_id, "x", "a.txt", NoteCreateOptions(mime_type="text/plain")))

    def test_revisions(self, client, vault_id):
        async def scenario():
            note = await client.note.create(vault_id, "first", "log.md")
            await client.note.upload_revision(note.node_id, "second")
            return (
                await client.note.get_version(note.node_id),
                await client.note.get_version(note.node_id, 0),
                await client.note.get(note.node_id),
            )

        latest, first, note = run(scenario())
        assert latest == "second"
        assert first == "first"
        assert [v.message for v in note.versions] == ["first", "second"]

    def test_get_without_decrypt_leaves_message_empty(self, client, vault_id):
        note = run(client.note.create(vault_id, "hello", "a.md"))
        raw = run(client.note.get(note.node_id, should_decrypt=False))
        assert raw.current_version.message is None

    def test_list_only_notes(self, client, vault_id):
        async def scenario():
            await client.note.create(vault_id, "text", "a.md")
            await client.stack.create(vault_id, FileLike("b.bin", b"\x00"))
            return await client.note.list(vault_id), await client.stack.list(vault_id)

        notes, stacks = run(scenario())
        assert [n.name for n in notes] == ["a.md"]
        assert sorted(s.name for s in stacks) == ["a.md", "b.bin"]

    def test_note_action_refs(self, client, vault_id):
        note = run(client.note.create(vault_id, "x", "a.md"))
        run(client.note.rename(note.node_id, "b.md"))
        txs = run(client.ledger.get_transactions(vault_id))
        assert [tag_values(tx["tags"], "Action-Ref")[0] for tx in txs[-2:]] == ["NOTE_CREATE", "NOTE_RENAME"]
        assert tag_values(txs[-1]["tags"], "Node-Type") == ["Stack"]
