"""Generic node engine and the per-kind capability table.

Folder, Stack, Note and Memo share one lifecycle: create, rename, move,
revoke, restore, delete, read. What differs per kind is captured by a
:class:`NodeCapabilities` entry selected from :data:`CAPABILITIES` by
:class:`NodeKind`:

- ``build_initial_state``: shape of version-0 state for a create
- ``apply_patch``: copy-on-write state change for an update
- ``validate_transition``: local precondition check before any post

Status machine: ACTIVE <-> REVOKED via revoke/restore, ACTIVE|REVOKED ->
DELETED via delete, and nothing leaves DELETED.
"""
from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Type

from .config import Config, merge_options
from .constants import ActionRef, Function, ObjectType, Status, action_ref_for
from .exceptions import BadRequest
from .gateway import LedgerGateway, StorageGateway
from .keys import Wallet
from .logging_config import get_logger
from .models import (
    ContractInput,
    Folder,
    ListOptions,
    Memo,
    Node,
    NodeCreateResult,
    Note,
    Stack,
    TransactionResult,
    now_ms,
)
from .service import PreparedTransaction, Service, VaultContext

logger = get_logger("lvault.node")


class NodeKind(str, Enum):
    FOLDER = "Folder"
    STACK = "Stack"
    NOTE = "Note"
    MEMO = "Memo"


class PatchOp(str, Enum):
    RENAME = "rename"
    ADD_VERSION = "add_version"
    ADD_REACTION = "add_reaction"
    REMOVE_REACTION = "remove_reaction"


@dataclass(frozen=True)
class NodeCapabilities:
    kind: NodeKind
    object_type: ObjectType  # Node-Type on the ledger
    action_prefix: str
    model: Type[Node]
    build_initial_state: Callable[["NodeService", Dict[str, Any]], Dict[str, Any]]
    apply_patch: Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any]]
    validate_transition: Callable[[Dict[str, Any], Function], None]


# ---------- initial state ----------

def _named_initial_state(svc: "NodeService", params: Dict[str, Any]) -> Dict[str, Any]:
    return {"name": svc.process_write_string(params["name"])}


def _versioned_initial_state(svc: "NodeService", params: Dict[str, Any]) -> Dict[str, Any]:
    return {"name": svc.process_write_string(params["name"]), "versions": [params["version"]]}


def _memo_initial_state(svc: "NodeService", params: Dict[str, Any]) -> Dict[str, Any]:
    version = {
        "owner": svc.wallet.address,
        "message": svc.process_write_string(params["message"]),
        "createdAt": now_ms(),
        "reactions": [],
        "attachments": [],
    }
    return {"versions": [version]}


# ---------- patches ----------

def _apply_patch(allowed: FrozenSet[PatchOp], state: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Return a patched deep copy; ``state`` itself is never mutated."""
    op = PatchOp(patch["op"])
    if op not in allowed:
        raise BadRequest(f"{op.value} is not supported for this node type")
    new_state = copy.deepcopy(state)
    if op == PatchOp.RENAME:
        new_state["name"] = patch["name"]
    elif op == PatchOp.ADD_VERSION:
        new_state.setdefault("versions", []).append(copy.deepcopy(patch["version"]))
    elif op == PatchOp.ADD_REACTION:
        # no uniqueness check on insert; removal takes the first match
        new_state["versions"][-1].setdefault("reactions", []).append(copy.deepcopy(patch["reaction"]))
    elif op == PatchOp.REMOVE_REACTION:
        del new_state["versions"][-1]["reactions"][patch["index"]]
    return new_state


# ---------- transitions ----------

def _validate_transition(movable: bool, obj: Dict[str, Any], function: Function) -> None:
    status = obj["status"]
    label = f"{obj.get('type', 'node')} {obj['id']}"
    if status == Status.DELETED.value:
        raise BadRequest(f"{label} is deleted")
    if function == Function.NODE_REVOKE and status != Status.ACTIVE.value:
        raise BadRequest(f"{label} is {status}; only an active node can be revoked")
    if function == Function.NODE_RESTORE and status != Status.REVOKED.value:
        raise BadRequest(f"{label} is {status}; only a revoked node can be restored")
    if function == Function.NODE_MOVE and not movable:
        raise BadRequest(f"{label} cannot be moved")


_VERSIONED_OPS = frozenset({PatchOp.RENAME, PatchOp.ADD_VERSION})

CAPABILITIES: Dict[NodeKind, NodeCapabilities] = {
    NodeKind.FOLDER: NodeCapabilities(
        kind=NodeKind.FOLDER,
        object_type=ObjectType.FOLDER,
        action_prefix="FOLDER",
        model=Folder,
        build_initial_state=_named_initial_state,
        apply_patch=partial(_apply_patch, frozenset({PatchOp.RENAME})),
        validate_transition=partial(_validate_transition, True),
    ),
    NodeKind.STACK: NodeCapabilities(
        kind=NodeKind.STACK,
        object_type=ObjectType.STACK,
        action_prefix="STACK",
        model=Stack,
        build_initial_state=_versioned_initial_state,
        apply_patch=partial(_apply_patch, _VERSIONED_OPS),
        validate_transition=partial(_validate_transition, True),
    ),
    # notes live on the ledger as stacks holding a text file
    NodeKind.NOTE: NodeCapabilities(
        kind=NodeKind.NOTE,
        object_type=ObjectType.STACK,
        action_prefix="NOTE",
        model=Note,
        build_initial_state=_versioned_initial_state,
        apply_patch=partial(_apply_patch, _VERSIONED_OPS),
        validate_transition=partial(_validate_transition, True),
    ),
    NodeKind.MEMO: NodeCapabilities(
        kind=NodeKind.MEMO,
        object_type=ObjectType.MEMO,
        action_prefix="MEMO",
        model=Memo,
        build_initial_state=_memo_initial_state,
        apply_patch=partial(_apply_patch, frozenset({PatchOp.ADD_REACTION, PatchOp.REMOVE_REACTION})),
        validate_transition=partial(_validate_transition, False),
    ),
}


class NodeService(Service):
    """Node lifecycle engine for one kind; one instance per operation."""

    def __init__(
        self,
        kind: NodeKind,
        wallet: Wallet,
        ledger: LedgerGateway,
        storage: StorageGateway,
        config: Optional[Config] = None,
        contexts: Optional[Dict[str, VaultContext]] = None,
    ):
        super().__init__(wallet, ledger, storage, config, contexts)
        self.kind = NodeKind(kind)
        self.capabilities = CAPABILITIES[self.kind]
        self.object_type = self.capabilities.object_type

    def _new_instance(self) -> "NodeService":
        return NodeService(
            self.kind, self.wallet, self.ledger, self.storage, self.config,
            self.contexts if self._shared_contexts else None,
        )

    def _action(self, action: str) -> ActionRef:
        return action_ref_for(self.capabilities.action_prefix, action)

    async def set_vault_context_from_node_id(self, node_id: str) -> Dict[str, Any]:
        obj = await self.ledger.get_node(node_id, self.object_type.value)
        self.object = obj
        self.object_id = node_id
        self.prev_hash = obj.get("hash")
        await self.set_vault_context(obj["vaultId"])
        return obj

    async def _ensure_node(self, node_id: str) -> Dict[str, Any]:
        if self.object_id != node_id or self.object is None:
            return await self.set_vault_context_from_node_id(node_id)
        return self.object

    async def get_current_state(self) -> Dict[str, Any]:
        """Latest state blob of the loaded node; earlier blobs are history."""
        return await self.storage.get_node_state(self.object["data"][-1])

    def process_node(self, obj: Dict[str, Any], should_decrypt: Optional[bool] = None) -> Node:
        if should_decrypt is None:
            should_decrypt = self.config.service.default_should_decrypt
        node = self.capabilities.model.from_dict(obj)
        if should_decrypt and not self.is_public:
            node.decrypt(self.process_read_string)
        return node

    # ---------- create ----------

    async def prepare_create(
        self,
        params: Dict[str, Any],
        parent_id: Optional[str] = None,
        extra_tags: Optional[List[str]] = None,
    ) -> PreparedTransaction:
        """Build and upload version-0 state; the vault context must be set."""
        self.object_id = str(uuid.uuid4())
        self.function = Function.NODE_CREATE
        self.action_ref = self._action("CREATE")
        self.tags = list(extra_tags or [])
        state = self.capabilities.build_initial_state(self, params)
        state_id = await self.upload_state(state)
        return self.prepare(ContractInput(function=self.function.value, data=state_id, parent_id=parent_id))

    async def submit_create(self, prepared: PreparedTransaction) -> NodeCreateResult:
        tx_id, obj = await self.submit(prepared)
        self.object = obj
        return NodeCreateResult(node_id=prepared.object_id, transaction_id=tx_id, object=self.process_node(obj))

    async def node_create(
        self,
        params: Dict[str, Any],
        parent_id: Optional[str] = None,
        extra_tags: Optional[List[str]] = None,
    ) -> NodeCreateResult:
        prepared = await self.prepare_create(params, parent_id, extra_tags)
        return await self.submit_create(prepared)

    # ---------- updates ----------

    async def node_update(
        self,
        node_id: str,
        action: str,
        patch: Optional[Dict[str, Any]] = None,
        function: Function = Function.NODE_UPDATE,
        parent_id: Optional[str] = None,
    ) -> TransactionResult:
        obj = await self._ensure_node(node_id)
        self.capabilities.validate_transition(obj, function)
        self.function = function
        self.action_ref = self._action(action)
        data = None
        if patch is not None:
            state = await self.get_current_state()
            data = await self.upload_state(self.capabilities.apply_patch(state, patch))
        input = ContractInput(function=function.value, data=data, parent_id=parent_id, prev_hash=self.prev_hash)
        tx_id, obj = await self.post(input)
        self.object = obj
        self.prev_hash = obj.get("hash")
        return TransactionResult(transaction_id=tx_id, object=self.process_node(obj))

    async def node_rename(self, node_id: str, name: str) -> TransactionResult:
        await self._ensure_node(node_id)
        patch = {"op": PatchOp.RENAME.value, "name": self.process_write_string(name)}
        return await self.node_update(node_id, "RENAME", patch)

    async def node_move(self, node_id: str, parent_id: Optional[str] = None) -> TransactionResult:
        return await self.node_update(node_id, "MOVE", function=Function.NODE_MOVE, parent_id=parent_id)

    async def node_revoke(self, node_id: str) -> TransactionResult:
        return await self.node_update(node_id, "REVOKE", function=Function.NODE_REVOKE)

    async def node_restore(self, node_id: str) -> TransactionResult:
        return await self.node_update(node_id, "RESTORE", function=Function.NODE_RESTORE)

    async def node_delete(self, node_id: str) -> TransactionResult:
        return await self.node_update(node_id, "DELETE", function=Function.NODE_DELETE)

    # ---------- reads ----------

    async def get(self, node_id: str, should_decrypt: Optional[bool] = None) -> Node:
        obj = await self.set_vault_context_from_node_id(node_id)
        return self.process_node(obj, should_decrypt)

    async def list(self, vault_id: str, options: Optional[ListOptions] = None) -> List[Node]:
        opts = merge_options(
            ListOptions(should_decrypt=self.config.service.default_should_decrypt),
            ListOptions(statuses=[Status.ACTIVE.value]),
            options,
        )
        await self.set_vault_context(vault_id)
        nodes = []
        for obj in await self.ledger.get_nodes_by_vault_id(vault_id, self.object_type.value):
            if obj["status"] not in opts.statuses:
                continue
            if opts.parent_id is not None and obj.get("parentId") != opts.parent_id:
                continue
            nodes.append(self.process_node(obj, opts.should_decrypt))
        return nodes


class NodeModule:
    """Client-facing operations shared by every node kind.

    Each call runs on its own :class:`NodeService`.
    """

    kind: NodeKind

    def __init__(self, wallet: Wallet, ledger: LedgerGateway, storage: StorageGateway, config: Optional[Config] = None):
        self.wallet = wallet
        self.ledger = ledger
        self.storage = storage
        self.config = config

    def _engine(self, contexts: Optional[Dict[str, VaultContext]] = None) -> NodeService:
        return NodeService(self.kind, self.wallet, self.ledger, self.storage, self.config, contexts)

    async def revoke(self, node_id: str) -> TransactionResult:
        return await self._engine().node_revoke(node_id)

    async def restore(self, node_id: str) -> TransactionResult:
        return await self._engine().node_restore(node_id)

    async def delete(self, node_id: str) -> TransactionResult:
        return await self._engine().node_delete(node_id)

    async def get(self, node_id: str, should_decrypt: Optional[bool] = None) -> Node:
        return await self._engine().get(node_id, should_decrypt)

    async def list(self, vault_id: str, options: Optional[ListOptions] = None) -> List[Node]:
        return await self._engine().list(vault_id, options)
