"""In-process ledger and storage gateways.

``LocalLedger`` keeps one ordered transaction log per vault and folds it with
:mod:`lvault.contract`; ``LocalStorage`` is a content-addressed blob store.
Both yield to the event loop on every call so they interleave like network
transports. Used for offline work and as the test backend.
"""
from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .canonical import canonical_json, hash_obj, sha256_hex
from .constants import ProtocolTag, Role, Status
from .contract import (
    VaultState,
    append_tx,
    fold,
    materialize_membership,
    materialize_node,
    materialize_vault,
)
from .exceptions import BadRequest, ContractError, NotFound, Unauthorized, UploadCancelled
from .hooks import ByteProgressHook, CancelHook
from .keys import address_from_sign_pub, b64d, load_sign_pub_raw, verify_detached
from .logging_config import get_logger
from .models import ContractInput, Tags, Transaction, now_ms, signing_payload, tag_value

logger = get_logger("lvault.local")


class LocalStorage:
    """Content-addressed state blobs plus a flat file store."""

    def __init__(self, piece_size: int = 64 * 1024):
        self.piece_size = piece_size
        self._states: Dict[str, bytes] = {}
        self._files: Dict[str, Dict[str, Any]] = {}

    async def upload_state(self, state: Dict[str, Any], tags: Optional[Tags] = None) -> str:
        await asyncio.sleep(0)
        raw = canonical_json(state).encode("utf-8")
        state_id = sha256_hex(raw)
        self._states[state_id] = raw
        return state_id

    def read_state(self, state_id: str) -> Dict[str, Any]:
        raw = self._states.get(state_id)
        if raw is None:
            raise NotFound(f"state {state_id} not found", search_key=state_id)
        return json.loads(raw.decode("utf-8"))

    async def get_node_state(self, state_id: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        return self.read_state(state_id)

    async def _stream(self, url: str, size: int, progress_hook: Optional[ByteProgressHook],
                      cancel_hook: Optional[CancelHook]) -> None:
        for start in range(0, max(size, 1), self.piece_size):
            if cancel_hook is not None and cancel_hook.cancelled:
                raise UploadCancelled(f"transfer of {url} cancelled")
            await asyncio.sleep(0)
            if progress_hook is not None:
                progress_hook(min(size, start + self.piece_size))

    async def upload_file(
        self,
        data: bytes,
        tags: Tags,
        is_public: bool = False,
        resource_id: Optional[str] = None,
        progress_hook: Optional[ByteProgressHook] = None,
        cancel_hook: Optional[CancelHook] = None,
    ) -> Dict[str, str]:
        url = resource_id or sha256_hex(data)
        await self._stream(url, len(data), progress_hook, cancel_hook)
        self._files[url] = {"data": bytes(data), "tags": list(tags), "public": bool(is_public)}
        return {"resourceUrl": url, "resourceTx": hash_obj({"url": url, "tags": tags})}

    async def download_file(
        self,
        url: str,
        is_public: bool = False,
        progress_hook: Optional[ByteProgressHook] = None,
        cancel_hook: Optional[CancelHook] = None,
    ) -> Dict[str, Any]:
        entry = self._files.get(url)
        if entry is None:
            raise NotFound(f"file {url} not found", search_key=url)
        await self._stream(url, len(entry["data"]), progress_hook, cancel_hook)
        headers = {t["name"]: t["value"] for t in entry["tags"]}
        return {"fileData": entry["data"], "headers": headers}


@dataclass
class _Contract:
    state: VaultState
    txs: List[Transaction] = field(default_factory=list)


class LocalLedger:
    """Single-process ledger: per-vault transaction logs, user registry, invites."""

    def __init__(self, storage: LocalStorage):
        self.storage = storage
        self._contracts: Dict[str, _Contract] = {}
        self._node_index: Dict[str, str] = {}
        self._membership_index: Dict[str, str] = {}
        self._users: Dict[str, Dict[str, str]] = {}
        self._emails: Dict[str, str] = {}  # address -> email
        # vault_id -> membership_id -> out-of-band invite
        self._invites: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._resends: Dict[str, int] = {}

    # ---------- users ----------

    def register_user(self, email: str, public_data: Dict[str, str]) -> None:
        if email in self._users:
            raise BadRequest(f"user {email} already registered")
        self._users[email] = dict(public_data)
        self._emails[public_data["address"]] = email

    async def exists_user(self, email: str) -> bool:
        await asyncio.sleep(0)
        return email in self._users

    async def get_user_public_data(self, email: str) -> Dict[str, str]:
        await asyncio.sleep(0)
        data = self._users.get(email)
        if data is None:
            raise NotFound(f"user {email} not found", search_key=email)
        return dict(data)

    # ---------- contracts ----------

    def _contract(self, vault_id: str) -> _Contract:
        contract = self._contracts.get(vault_id)
        if contract is None:
            raise NotFound(f"vault {vault_id} not found", search_key=vault_id)
        return contract

    async def init_contract(self, tags: Tags) -> str:
        await asyncio.sleep(0)
        vault_id = str(uuid.uuid4())
        self._contracts[vault_id] = _Contract(state=VaultState(vault_id=vault_id))
        self._invites[vault_id] = {}
        logger.debug(f"Initialised contract {vault_id}")
        return vault_id

    def _verify_signature(self, vault_id: str, inp: Dict[str, Any], tags: Tags, signature: Dict[str, str]) -> str:
        pub_b64 = signature.get("publicSigningKey", "")
        try:
            pub = load_sign_pub_raw(b64d(pub_b64))
            sig = b64d(signature.get("signature", ""))
        except ValueError as e:
            raise ContractError(f"bad transaction signer: {e}") from e
        if not verify_detached(pub, signing_payload(vault_id, inp, tags), sig):
            raise ContractError("bad transaction signature")
        signer = address_from_sign_pub(pub_b64)
        if tag_value(tags, ProtocolTag.SIGNER_ADDRESS) != signer:
            raise ContractError("Signer-Address tag does not match signature")
        return signer

    async def post_contract_transaction(
        self,
        vault_id: str,
        input: ContractInput,
        tags: Tags,
        signature: Dict[str, str],
    ) -> Dict[str, Any]:
        await asyncio.sleep(0)
        contract = self._contract(vault_id)
        inp = input.to_dict()
        signer = self._verify_signature(vault_id, inp, tags, signature)
        tx = Transaction(
            id="",
            vault_id=vault_id,
            height=len(contract.txs),
            input=inp,
            tags=list(tags),
            signer=signer,
            public_signing_key=signature["publicSigningKey"],
            signature=signature["signature"],
            timestamp=now_ms(),
        )
        tx.id = hash_obj(tx.header_dict())

        contract.state = append_tx(contract.state, tx)
        contract.txs.append(tx)

        fn = tx.function
        if fn.startswith("node:"):
            self._node_index[tag_value(tags, ProtocolTag.NODE_ID)] = vault_id
        elif fn.startswith("membership:"):
            mid = tag_value(tags, ProtocolTag.MEMBERSHIP_ID)
            self._membership_index[mid] = vault_id
            self._invites[vault_id].pop(mid, None)

        logger.debug(f"Applied {fn} to vault {vault_id} at height {tx.height}")
        return {"id": tx.id, "object": self._object_for(contract, tx)}

    def _object_for(self, contract: _Contract, tx: Transaction) -> Dict[str, Any]:
        st = contract.state
        fn = tx.function
        if fn.startswith("node:"):
            return materialize_node(st.nodes[tag_value(tx.tags, ProtocolTag.NODE_ID)], self.storage.read_state)
        if fn.startswith("membership:"):
            record = st.memberships[tag_value(tx.tags, ProtocolTag.MEMBERSHIP_ID)]
            return self._membership_view(record)
        return materialize_vault(st, self.storage.read_state)

    def _membership_view(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return materialize_membership(record, self.storage.read_state, self._emails.get(record["address"]))

    def current_state(self, vault_id: str) -> VaultState:
        return self._contract(vault_id).state

    def replay(self, vault_id: str) -> VaultState:
        """Fold the vault's full history from scratch."""
        contract = self._contract(vault_id)
        return fold(vault_id, list(contract.txs))

    async def get_transactions(self, vault_id: str) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        return [tx.to_dict() for tx in self._contract(vault_id).txs]

    # ---------- reads ----------

    async def get_vault(self, vault_id: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        st = self._contract(vault_id).state
        if st.status is None:
            raise NotFound(f"vault {vault_id} not initialised", search_key=vault_id)
        return materialize_vault(st, self.storage.read_state)

    async def get_vaults(self, address: str) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        return [
            materialize_vault(c.state, self.storage.read_state)
            for c in self._contracts.values()
            if c.state.status is not None and c.state.role_of(address) is not None
        ]

    async def get_node(self, node_id: str, node_type: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        vault_id = self._node_index.get(node_id)
        if vault_id is None:
            raise NotFound(f"{node_type} {node_id} not found", search_key=node_id)
        record = self._contract(vault_id).state.nodes[node_id]
        if record["type"] != node_type:
            raise NotFound(f"{node_type} {node_id} not found", search_key=node_id)
        return materialize_node(record, self.storage.read_state)

    async def get_nodes_by_vault_id(self, vault_id: str, node_type: str) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        st = self._contract(vault_id).state
        return [
            materialize_node(record, self.storage.read_state)
            for record in st.nodes.values()
            if record["type"] == node_type
        ]

    async def get_membership(self, membership_id: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        vault_id = self._membership_index.get(membership_id)
        if vault_id is not None:
            return self._membership_view(self._contract(vault_id).state.memberships[membership_id])
        for invites in self._invites.values():
            if membership_id in invites:
                return dict(invites[membership_id])
        raise NotFound(f"membership {membership_id} not found", search_key=membership_id)

    async def get_members(self, vault_id: str) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        st = self._contract(vault_id).state
        members = [self._membership_view(m) for m in st.memberships.values()]
        members.extend(dict(invite) for invite in self._invites[vault_id].values())
        return members

    async def get_membership_keys(self, vault_id: str, address: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        st = self._contract(vault_id).state
        if st.public:
            return {"isEncrypted": False, "keys": []}
        record = st.live_membership_for(address)
        if record is None:
            raise Unauthorized(f"{address} has no access to vault {vault_id}")
        return {"isEncrypted": True, "keys": list(self._membership_view(record).get("keys", []))}

    # ---------- out-of-band invites ----------

    def _require_owner(self, vault_id: str, inviter: Optional[str]) -> VaultState:
        st = self._contract(vault_id).state
        if inviter is None or st.role_of(inviter) != Role.OWNER.value:
            raise Unauthorized(f"only a vault owner can invite to {vault_id}")
        return st

    async def invite_new_user(
        self,
        vault_id: str,
        email: str,
        role: str,
        message: Optional[str] = None,
        inviter: Optional[str] = None,
    ) -> Dict[str, Any]:
        await asyncio.sleep(0)
        self._require_owner(vault_id, inviter)
        for invite in self._invites[vault_id].values():
            if invite["email"] == email:
                raise BadRequest(f"{email} was already invited to vault {vault_id}")
        membership_id = str(uuid.uuid4())
        ts = now_ms()
        self._invites[vault_id][membership_id] = {
            "id": membership_id,
            "vaultId": vault_id,
            "email": email,
            "role": getattr(role, "value", role),
            "status": Status.INVITED.value,
            "address": None,
            "owner": None,
            "keys": [],
            "data": [],
            "message": message,
            "createdAt": ts,
            "updatedAt": ts,
            "hash": None,
        }
        logger.info(f"Invited unregistered user to vault {vault_id} as {membership_id}")
        return {"id": membership_id}

    async def invite_resend(self, vault_id: str, membership_id: str, inviter: Optional[str] = None) -> Dict[str, Any]:
        await asyncio.sleep(0)
        st = self._require_owner(vault_id, inviter)
        invite = self._invites[vault_id].get(membership_id)
        record = st.memberships.get(membership_id)
        if invite is None and (record is None or record["status"] != Status.PENDING.value):
            raise BadRequest(f"membership {membership_id} has no pending invite")
        self._resends[membership_id] = self._resends.get(membership_id, 0) + 1
        return {"id": membership_id, "resent": self._resends[membership_id]}
