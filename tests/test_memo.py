"""Tests for memos and reactions across members of a shared vault."""
import asyncio

import pytest

from lvault.client import VaultClient
from lvault.constants import ReactionEmoji, Status
from lvault.exceptions import BadRequest, NotFound
from lvault.keys import gen_wallet
from lvault.local import LocalLedger, LocalStorage


def run(coro):
    return asyncio.run(coro)


def make_world(*emails):
    storage = LocalStorage()
    ledger = LocalLedger(storage)
    clients = {}
    for email in emails:
        wallet = gen_wallet(email)
        ledger.register_user(email, wallet.public_data())
        clients[email] = VaultClient(wallet, ledger, storage)
    return ledger, clients


def shared_vault(owner, member, role="CONTRIBUTOR"):
    async def setup():
        vault = await owner.vault.create("Team")
        invited = await owner.membership.invite(vault.vault_id, member.wallet.email, role)
        await member.membership.accept(invited.membership_id)
        return vault.vault_id

    return run(setup())


def reactions_of(memo):
    return [(r.owner, r.reaction) for r in memo.current_version.reactions]


# =============================================================================
# Memo Basics
# =============================================================================

class TestMemo:
    """Memo create and read."""

    @pytest.fixture
    def world(self):
        return make_world("ana@example.com", "ben@example.com")

    def test_create_decrypts_message(self, world):
        _, clients = world
        ana = clients["ana@example.com"]
        vault_id = run(ana.vault.create("Notes")).vault_id
        created = run(ana.memo.create(vault_id, "status update"))
        assert created.object.current_version.message == "status update"
        assert created.object.current_version.owner == ana.address
        assert created.object.current_version.reactions == []

    def test_message_encrypted_at_rest(self, world):
        _, clients = world
        ana = clients["ana@example.com"]
        vault_id = run(ana.vault.create("Notes")).vault_id
        created = run(ana.memo.create(vault_id, "status update"))
        raw = run(ana.memo.get(created.node_id, should_decrypt=False))
        assert raw.current_version.message != "status update"

    def test_member_reads_memo(self, world):
        _, clients = world
        ana, ben = clients["ana@example.com"], clients["ben@example.com"]
        vault_id = shared_vault(ana, ben)
        created = run(ana.memo.create(vault_id, "hi team"))
        assert run(ben.memo.get(created.node_id)).current_version.message == "hi team"

    def test_memo_cannot_move(self, world):
        _, clients = world
        ana = clients["ana@example.com"]

        async def scenario():
            vault = await ana.vault.create("Notes")
            memo = await ana.memo.create(vault.vault_id, "pinned")
            await ana.memo._engine().node_move(memo.node_id)

        with pytest.raises(BadRequest, match="cannot be moved"):
            run(scenario())

    def test_memo_lifecycle(self, world):
        _, clients = world
        ana = clients["ana@example.com"]

        async def scenario():
            vault = await ana.vault.create("Notes")
            memo = await ana.memo.create(vault.vault_id, "temporary")
            await ana.memo.revoke(memo.node_id)
            await ana.memo.restore(memo.node_id)
            return await ana.memo.delete(memo.node_id)

        assert run(scenario()).object.status == Status.DELETED.value


# =============================================================================
# Reactions
# =============================================================================

class TestReactions:
    """Reactions are per member and removal only touches the caller's own."""

    @pytest.fixture
    def world(self):
        return make_world("ana@example.com", "ben@example.com")

    def test_owner_memo_member_reacts(self, world):
        _, clients = world
        ana, ben = clients["ana@example.com"], clients["ben@example.com"]
        vault_id = shared_vault(ana, ben)

        async def scenario():
            memo = await ana.memo.create(vault_id, "status update")
            await ben.memo.add_reaction(memo.node_id, ReactionEmoji.THUMBS_UP)
            return await ana.memo.get(memo.node_id)

        memo = run(scenario())
        assert memo.current_version.message == "status update"
        assert reactions_of(memo) == [(ben.address, ReactionEmoji.THUMBS_UP.value)]

    def test_remove_only_own_reaction(self, world):
        _, clients = world
        ana, ben = clients["ana@example.com"], clients["ben@example.com"]
        vault_id = shared_vault(ana, ben)

        async def scenario():
            memo = await ana.memo.create(vault_id, "launch")
            await ana.memo.add_reaction(memo.node_id, ReactionEmoji.FIRE)
            await ben.memo.add_reaction(memo.node_id, ReactionEmoji.FIRE)
            await ana.memo.remove_reaction(memo.node_id, ReactionEmoji.FIRE)
            return await ben.memo.get(memo.node_id)

        memo = run(scenario())
        assert reactions_of(memo) == [(ben.address, ReactionEmoji.FIRE.value)]

    def test_remove_missing_reaction(self, world):
        _, clients = world
        ana = clients["ana@example.com"]

        async def scenario():
            vault = await ana.vault.create("Notes")
            memo = await ana.memo.create(vault.vault_id, "quiet")
            await ana.memo.add_reaction(memo.node_id, ReactionEmoji.HEART)
            await ana.memo.remove_reaction(memo.node_id, ReactionEmoji.THUMBS_UP)

        with pytest.raises(NotFound) as exc:
            run(scenario())
        assert exc.value.search_key == ReactionEmoji.THUMBS_UP.value

    def test_cannot_remove_someone_elses_reaction(self, world):
        _, clients = world
        ana, ben = clients["ana@example.com"], clients["ben@example.com"]
        vault_id = shared_vault(ana, ben)

        async def scenario():
            memo = await ana.memo.create(vault_id, "mine")
            await ben.memo.add_reaction(memo.node_id, ReactionEmoji.PRAY)
            await ana.memo.remove_reaction(memo.node_id, ReactionEmoji.PRAY)

        with pytest.raises(NotFound):
            run(scenario())

    def test_duplicate_reaction_removed_one_at_a_time(self, world):
        _, clients = world
        ana = clients["ana@example.com"]

        async def scenario():
            vault = await ana.vault.create("Notes")
            memo = await ana.memo.create(vault.vault_id, "twice")
            await ana.memo.add_reaction(memo.node_id, ReactionEmoji.JOY)
            doubled = await ana.memo.add_reaction(memo.node_id, ReactionEmoji.JOY)
            single = await ana.memo.remove_reaction(memo.node_id, ReactionEmoji.JOY)
            return doubled.object, single.object

        doubled, single = run(scenario())
        assert len(doubled.current_version.reactions) == 2
        assert reactions_of(single) == [(ana.address, ReactionEmoji.JOY.value)]

    def test_reaction_encrypted_at_rest(self, world):
        _, clients = world
        ana = clients["ana@example.com"]

        async def scenario():
            vault = await ana.vault.create("Notes")
            memo = await ana.memo.create(vault.vault_id, "secret")
            await ana.memo.add_reaction(memo.node_id, ReactionEmoji.CRY)
            return await ana.memo.get(memo.node_id, should_decrypt=False)

        raw = run(scenario())
        assert raw.current_version.reactions[0].reaction != ReactionEmoji.CRY.value

    def test_plain_string_reaction(self, world):
        _, clients = world
        ana = clients["ana@example.com"]

        async def scenario():
            vault = await ana.vault.create("Notes")
            memo = await ana.memo.create(vault.vault_id, "strings")
            await ana.memo.add_reaction(memo.node_id, "\U0001F632")
            return await ana.memo.remove_reaction(memo.node_id, ReactionEmoji.ASTONISHED)

        assert run(scenario()).object.current_version.reactions == []

    def test_viewer_cannot_react(self, world):
        _, clients = world
        ana, ben = clients["ana@example.com"], clients["ben@example.com"]
        vault_id = shared_vault(ana, ben, role="VIEWER")

        async def scenario():
            memo = await ana.memo.create(vault_id, "read only")
            await ben.memo.add_reaction(memo.node_id, ReactionEmoji.THUMBS_DOWN)

        with pytest.raises(BadRequest, match="requires contributor or owner"):
            run(scenario())
