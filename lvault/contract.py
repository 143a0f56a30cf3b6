"""Vault contract: validate and fold ordered transactions into vault state.

The fold is pure. Object state is a function of the transaction sequence
alone; state blobs referenced by ``data`` pointers are only resolved when an
object is materialized for a reader (see :func:`materialize_node`).
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .constants import Function, ObjectType, ProtocolTag, Role, Status
from .exceptions import ContractError
from .models import Transaction, tag_value

NODE_TYPES = (ObjectType.FOLDER.value, ObjectType.STACK.value, ObjectType.MEMO.value)
WRITE_ROLES = (Role.CONTRIBUTOR.value, Role.OWNER.value)
ROLES = tuple(r.value for r in Role)

StateReader = Callable[[str], Dict[str, Any]]


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ContractError(msg)


@dataclass
class VaultState:
    vault_id: str
    status: Optional[str] = None
    owner: Optional[str] = None
    public: bool = False
    data: List[str] = field(default_factory=list)
    memberships: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    nodes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    created_at: int = 0
    updated_at: int = 0
    hash: Optional[str] = None
    height: int = 0

    def snapshot(self) -> Dict[str, Any]:
        return {
            "vault_id": self.vault_id,
            "status": self.status,
            "owner": self.owner,
            "public": self.public,
            "data": list(self.data),
            "memberships": copy.deepcopy(self.memberships),
            "nodes": copy.deepcopy(self.nodes),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "hash": self.hash,
            "height": self.height,
        }

    @staticmethod
    def from_snapshot(s: Dict[str, Any]) -> "VaultState":
        return VaultState(
            vault_id=str(s["vault_id"]),
            status=s.get("status"),
            owner=s.get("owner"),
            public=bool(s.get("public", False)),
            data=list(s.get("data", [])),
            memberships=copy.deepcopy(s.get("memberships", {})),
            nodes=copy.deepcopy(s.get("nodes", {})),
            created_at=int(s.get("created_at", 0)),
            updated_at=int(s.get("updated_at", 0)),
            hash=s.get("hash"),
            height=int(s.get("height", 0)),
        )

    def role_of(self, address: str) -> Optional[str]:
        """Role of the address's accepted membership, or None."""
        for m in self.memberships.values():
            if m["address"] == address and m["status"] == Status.ACCEPTED.value:
                return m["role"]
        return None

    def live_membership_for(self, address: str) -> Optional[Dict[str, Any]]:
        """Pending or accepted membership of the address, if any."""
        for m in self.memberships.values():
            if m["address"] == address and m["status"] in (Status.PENDING.value, Status.ACCEPTED.value):
                return m
        return None

    def owner_count(self) -> int:
        return sum(
            1 for m in self.memberships.values()
            if m["role"] == Role.OWNER.value and m["status"] == Status.ACCEPTED.value
        )


# ---------- validation ----------

def _validate_parent(st: VaultState, parent_id: Optional[str], node_id: str) -> None:
    if parent_id is None:
        return
    parent = st.nodes.get(parent_id)
    _require(parent is not None, f"parent {parent_id} not found in vault {st.vault_id}")
    _require(parent["type"] == ObjectType.FOLDER.value, "parent must be a folder")
    _require(parent["status"] != Status.DELETED.value, "parent folder is deleted")
    # walk up to make sure the node would not become its own ancestor
    cursor: Optional[str] = parent_id
    while cursor is not None:
        _require(cursor != node_id, "cannot move a folder into itself")
        cursor = st.nodes[cursor].get("parentId")


def _validate_vault_tx(st: VaultState, tx: Transaction, fn: str) -> None:
    if fn == Function.VAULT_INIT.value:
        _require(st.status is None, "vault already initialised")
        _require(isinstance(tx.input.get("data"), str), "vault:init missing data")
        return
    _require(st.role_of(tx.signer) == Role.OWNER.value, f"{fn} requires owner")
    if fn == Function.VAULT_UPDATE.value:
        _require(st.status == Status.ACTIVE.value, "vault is not active")
        _require(isinstance(tx.input.get("data"), str), "vault:update missing data")
    elif fn == Function.VAULT_ARCHIVE.value:
        _require(st.status == Status.ACTIVE.value, "only an active vault can be archived")
    elif fn == Function.VAULT_RESTORE.value:
        _require(st.status == Status.ARCHIVED.value, "only an archived vault can be restored")


def _validate_membership_tx(st: VaultState, tx: Transaction, fn: str) -> None:
    mid = tag_value(tx.tags, ProtocolTag.MEMBERSHIP_ID)
    _require(bool(mid), f"{fn} missing Membership-Id tag")
    _require(st.status == Status.ACTIVE.value, "vault is not active")
    member = st.memberships.get(mid)
    inp = tx.input

    if fn == Function.MEMBERSHIP_ADD.value:
        _require(tx.signer == st.owner, "membership:add is reserved to the vault creator")
        _require(not st.memberships, "vault owner already has a membership")
        _require(inp.get("address") == tx.signer, "membership:add must target the signer")
        _require(inp.get("role") == Role.OWNER.value, "membership:add must grant OWNER")
        _require(member is None, "membership id already used")
        return

    if fn in (Function.MEMBERSHIP_INVITE.value, Function.MEMBERSHIP_CONFIRM.value):
        _require(st.role_of(tx.signer) == Role.OWNER.value, f"{fn} requires owner")
        _require(isinstance(inp.get("address"), str), f"{fn} missing address")
        _require(inp.get("role") in ROLES, f"{fn} bad role")
        _require(isinstance(inp.get("data"), str), f"{fn} missing data")
        _require(member is None, "membership id already used")
        _require(st.live_membership_for(inp["address"]) is None, "address is already a member of this vault")
        return

    _require(member is not None, f"membership {mid} not found")
    status = member["status"]
    prev = inp.get("prevHash")
    _require(prev is None or prev == member["hash"], "membership changed since it was read")

    if fn == Function.MEMBERSHIP_ACCEPT.value:
        _require(tx.signer == member["address"], "only the invitee can accept")
        _require(status == Status.PENDING.value, "only a pending membership can be accepted")
    elif fn == Function.MEMBERSHIP_REJECT.value:
        _require(tx.signer == member["address"], "only the member can reject or leave")
        _require(status in (Status.PENDING.value, Status.ACCEPTED.value), "membership is not pending or accepted")
        if status == Status.ACCEPTED.value and member["role"] == Role.OWNER.value:
            _require(st.owner_count() > 1, "the last owner cannot leave the vault")
    elif fn == Function.MEMBERSHIP_REVOKE.value:
        _require(st.role_of(tx.signer) == Role.OWNER.value, f"{fn} requires owner")
        _require(member["address"] != tx.signer, "cannot revoke own membership")
        _require(status in (Status.PENDING.value, Status.ACCEPTED.value), "membership is not pending or accepted")
    elif fn == Function.MEMBERSHIP_RESTORE.value:
        _require(st.role_of(tx.signer) == Role.OWNER.value, f"{fn} requires owner")
        _require(status == Status.REVOKED.value, "only a revoked membership can be restored")
    elif fn == Function.MEMBERSHIP_CHANGE_ROLE.value:
        _require(st.role_of(tx.signer) == Role.OWNER.value, f"{fn} requires owner")
        _require(inp.get("role") in ROLES, f"{fn} bad role")
        _require(status in (Status.PENDING.value, Status.ACCEPTED.value), "membership is not pending or accepted")
    else:
        raise ContractError(f"unknown function {fn}")


def _validate_node_tx(st: VaultState, tx: Transaction, fn: str) -> None:
    node_id = tag_value(tx.tags, ProtocolTag.NODE_ID)
    node_type = tag_value(tx.tags, ProtocolTag.NODE_TYPE)
    _require(bool(node_id), f"{fn} missing Node-Id tag")
    _require(node_type in NODE_TYPES, f"{fn} bad Node-Type {node_type}")
    _require(st.status == Status.ACTIVE.value, "vault is not active")
    _require(st.role_of(tx.signer) in WRITE_ROLES, f"{fn} requires contributor or owner")
    inp = tx.input

    if fn == Function.NODE_CREATE.value:
        _require(node_id not in st.nodes, "node id already used")
        _require(isinstance(inp.get("data"), str), "node:create missing data")
        _validate_parent(st, inp.get("parentId"), node_id)
        return

    node = st.nodes.get(node_id)
    _require(node is not None, f"node {node_id} not found")
    _require(node["type"] == node_type, f"node {node_id} is not a {node_type}")
    _require(node["status"] != Status.DELETED.value, "node is deleted")
    prev = inp.get("prevHash")
    _require(prev is None or prev == node["hash"], "node changed since it was read")

    if fn == Function.NODE_UPDATE.value:
        _require(isinstance(inp.get("data"), str), "node:update missing data")
    elif fn == Function.NODE_MOVE.value:
        _validate_parent(st, inp.get("parentId"), node_id)
    elif fn == Function.NODE_REVOKE.value:
        _require(node["status"] == Status.ACTIVE.value, "only an active node can be revoked")
    elif fn == Function.NODE_RESTORE.value:
        _require(node["status"] == Status.REVOKED.value, "only a revoked node can be restored")
    elif fn != Function.NODE_DELETE.value:
        raise ContractError(f"unknown function {fn}")


def validate_tx(st: VaultState, tx: Transaction) -> None:
    fn = tx.input.get("function")
    _require(isinstance(fn, str), "tx missing function")
    _require(tx.vault_id == st.vault_id, "wrong vault id")
    _require(tx.height == st.height, f"wrong height {tx.height}, expected {st.height}")
    _require(st.status != Status.DELETED.value, "vault is deleted")
    _require(st.status is not None or fn == Function.VAULT_INIT.value, "vault not initialised")

    if fn.startswith("vault:"):
        _validate_vault_tx(st, tx, fn)
    elif fn.startswith("membership:"):
        _validate_membership_tx(st, tx, fn)
    elif fn.startswith("node:"):
        _validate_node_tx(st, tx, fn)
    else:
        raise ContractError(f"unknown function {fn}")


# ---------- application ----------

_NODE_STATUS = {
    Function.NODE_REVOKE.value: Status.REVOKED.value,
    Function.NODE_RESTORE.value: Status.ACTIVE.value,
    Function.NODE_DELETE.value: Status.DELETED.value,
}

_MEMBERSHIP_STATUS = {
    Function.MEMBERSHIP_ADD.value: Status.ACCEPTED.value,
    Function.MEMBERSHIP_INVITE.value: Status.PENDING.value,
    Function.MEMBERSHIP_CONFIRM.value: Status.ACCEPTED.value,
    Function.MEMBERSHIP_ACCEPT.value: Status.ACCEPTED.value,
    Function.MEMBERSHIP_REJECT.value: Status.REJECTED.value,
    Function.MEMBERSHIP_REVOKE.value: Status.REVOKED.value,
    Function.MEMBERSHIP_RESTORE.value: Status.ACCEPTED.value,
}

_VAULT_STATUS = {
    Function.VAULT_INIT.value: Status.ACTIVE.value,
    Function.VAULT_ARCHIVE.value: Status.ARCHIVED.value,
    Function.VAULT_RESTORE.value: Status.ACTIVE.value,
    Function.VAULT_DELETE.value: Status.DELETED.value,
}


def apply_tx(st: VaultState, tx: Transaction) -> None:
    """Apply an already validated transaction in place."""
    fn = tx.function
    inp = tx.input
    data = inp.get("data")

    if fn.startswith("vault:"):
        if fn == Function.VAULT_INIT.value:
            st.owner = tx.signer
            st.public = tag_value(tx.tags, ProtocolTag.PUBLIC) == "true"
            st.created_at = tx.timestamp
        if fn in _VAULT_STATUS:
            st.status = _VAULT_STATUS[fn]
        if data is not None:
            st.data.append(data)
        st.hash = tx.id

    elif fn.startswith("membership:"):
        mid = tag_value(tx.tags, ProtocolTag.MEMBERSHIP_ID)
        member = st.memberships.get(mid)
        if member is None:
            member = {
                "id": mid,
                "vaultId": st.vault_id,
                "address": inp["address"],
                "owner": inp["address"],
                "role": inp["role"],
                "status": None,
                "data": [],
                "createdAt": tx.timestamp,
            }
            st.memberships[mid] = member
        if fn in _MEMBERSHIP_STATUS:
            member["status"] = _MEMBERSHIP_STATUS[fn]
        if fn == Function.MEMBERSHIP_CHANGE_ROLE.value:
            member["role"] = inp["role"]
        if data is not None:
            member["data"].append(data)
        member["updatedAt"] = tx.timestamp
        member["hash"] = tx.id

    else:
        node_id = tag_value(tx.tags, ProtocolTag.NODE_ID)
        if fn == Function.NODE_CREATE.value:
            st.nodes[node_id] = {
                "id": node_id,
                "vaultId": st.vault_id,
                "type": tag_value(tx.tags, ProtocolTag.NODE_TYPE),
                "owner": tx.signer,
                "parentId": inp.get("parentId"),
                "status": Status.ACTIVE.value,
                "data": [],
                "createdAt": tx.timestamp,
            }
        node = st.nodes[node_id]
        if fn == Function.NODE_MOVE.value:
            node["parentId"] = inp.get("parentId")
        if fn in _NODE_STATUS:
            node["status"] = _NODE_STATUS[fn]
        if data is not None:
            node["data"].append(data)
        node["updatedAt"] = tx.timestamp
        node["hash"] = tx.id

    st.updated_at = tx.timestamp
    st.height += 1


def append_tx(st: VaultState, tx: Transaction) -> VaultState:
    """Validate against a copy and return the new state; ``st`` is left untouched."""
    new_state = VaultState.from_snapshot(st.snapshot())
    validate_tx(new_state, tx)
    apply_tx(new_state, tx)
    return new_state


def fold(vault_id: str, txs: List[Transaction]) -> VaultState:
    """Re-derive a vault's state from its full ordered history."""
    st = VaultState(vault_id=vault_id)
    for tx in txs:
        validate_tx(st, tx)
        apply_tx(st, tx)
    return st


# ---------- materialization ----------

def materialize_node(record: Dict[str, Any], read_state: StateReader) -> Dict[str, Any]:
    """Ledger view of a node: its latest state blob overlaid by contract fields."""
    blob = read_state(record["data"][-1]) if record.get("data") else {}
    return {**copy.deepcopy(blob), **copy.deepcopy(record)}


def materialize_membership(
    record: Dict[str, Any], read_state: StateReader, email: Optional[str] = None
) -> Dict[str, Any]:
    blob = read_state(record["data"][-1]) if record.get("data") else {}
    merged: Dict[str, Any] = {}
    # keys and signing key survive later blobs that do not repeat them
    for state_id in record.get("data", []):
        merged.update(read_state(state_id))
    merged.update(blob)
    return {**merged, **copy.deepcopy(record), "email": email}


def materialize_vault(st: VaultState, read_state: StateReader) -> Dict[str, Any]:
    blob = read_state(st.data[-1]) if st.data else {}
    size = 0
    for node in st.nodes.values():
        if node["type"] != ObjectType.STACK.value or node["status"] == Status.DELETED.value:
            continue
        for version in read_state(node["data"][-1]).get("versions", []):
            size += int(version.get("size", 0))
    return {
        **copy.deepcopy(blob),
        "id": st.vault_id,
        "public": st.public,
        "status": st.status,
        "owner": st.owner,
        "size": size,
        "data": list(st.data),
        "memberships": sorted(st.memberships),
        "nodes": sorted(st.nodes),
        "createdAt": st.created_at,
        "updatedAt": st.updated_at,
        "hash": st.hash,
    }
