"""Memos: short encrypted messages with emoji reactions."""
from __future__ import annotations

from typing import Any, Dict, Optional, Union

from .config import merge_options
from .constants import ReactionEmoji
from .exceptions import NotFound
from .models import NodeCreateOptions, NodeCreateResult, TransactionResult, now_ms
from .node import NodeKind, NodeModule, NodeService, PatchOp


def find_reaction(engine: NodeService, state: Dict[str, Any], reaction: str) -> int:
    """Index of the first reaction on the latest version held by the engine's wallet.

    A reaction belongs to the wallet when its owner, address or signing key
    matches; its decrypted text must equal ``reaction``.
    """
    wallet = engine.wallet
    address = wallet.address
    signing_key = wallet.signing_public_key()
    for index, record in enumerate(state["versions"][-1].get("reactions", [])):
        mine = (
            record.get("owner") == address
            or record.get("address") == address
            or record.get("publicSigningKey") == signing_key
        )
        if mine and engine.process_read_string(record["reaction"]) == reaction:
            return index
    raise NotFound(f"Could not find reaction {reaction} for {address}", search_key=reaction)


class MemoService(NodeModule):
    kind = NodeKind.MEMO

    async def create(self, vault_id: str, message: str, options: Optional[NodeCreateOptions] = None) -> NodeCreateResult:
        opts = merge_options(NodeCreateOptions(), options)
        engine = self._engine()
        await engine.set_vault_context(vault_id)
        return await engine.node_create({"message": message}, parent_id=opts.parent_id, extra_tags=opts.tags)

    async def add_reaction(self, memo_id: str, reaction: Union[ReactionEmoji, str]) -> TransactionResult:
        engine = self._engine()
        await engine.set_vault_context_from_node_id(memo_id)
        wallet = engine.wallet
        record = {
            "reaction": engine.process_write_string(getattr(reaction, "value", reaction)),
            "owner": wallet.address,
            "address": wallet.address,
            "publicSigningKey": wallet.signing_public_key(),
            "createdAt": now_ms(),
        }
        return await engine.node_update(memo_id, "ADD_REACTION", {"op": PatchOp.ADD_REACTION.value, "reaction": record})

    async def remove_reaction(self, memo_id: str, reaction: Union[ReactionEmoji, str]) -> TransactionResult:
        engine = self._engine()
        await engine.set_vault_context_from_node_id(memo_id)
        state = await engine.get_current_state()
        index = find_reaction(engine, state, getattr(reaction, "value", reaction))
        return await engine.node_update(memo_id, "REMOVE_REACTION", {"op": PatchOp.REMOVE_REACTION.value, "index": index})
