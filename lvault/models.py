"""Typed views of ledger objects, contract inputs and operation results.

Ledger objects travel as camelCase dicts; every model converts with
``from_dict`` / ``to_dict``. Models holding encrypted fields expose
``decrypt(read)`` where ``read`` maps a stored string to its plaintext
(a Base Service's ``process_read_string``).
"""
from __future__ import annotations

import mimetypes
import os
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .canonical import canonical_json
from .hooks import CancelHook, ProgressHook

Tags = List[Dict[str, str]]
ReadFn = Callable[[str], str]


def tag(name: Any, value: Any) -> Dict[str, str]:
    name = getattr(name, "value", name)
    return {"name": str(name), "value": str(value)}


def tag_value(tags: Tags, name: Any) -> Optional[str]:
    """First value of the named tag, or None."""
    name = getattr(name, "value", name)
    for t in tags:
        if t.get("name") == name:
            return t.get("value")
    return None


def tag_values(tags: Tags, name: Any) -> List[str]:
    name = getattr(name, "value", name)
    return [t["value"] for t in tags if t.get("name") == name]


def now_ms() -> int:
    return int(time.time() * 1000)


# ---------- contract input / transactions ----------

def signing_payload(vault_id: str, input: Dict[str, Any], tags: Tags) -> bytes:
    """Bytes a wallet signs to authorise one transaction."""
    return canonical_json({"vaultId": vault_id, "input": input, "tags": tags}).encode("utf-8")


@dataclass
class ContractInput:
    function: str
    data: Optional[str] = None  # uploaded state id
    role: Optional[str] = None
    address: Optional[str] = None
    parent_id: Optional[str] = None
    prev_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"function": getattr(self.function, "value", self.function)}
        if self.data is not None:
            d["data"] = self.data
        if self.role is not None:
            d["role"] = getattr(self.role, "value", self.role)
        if self.address is not None:
            d["address"] = self.address
        if self.parent_id is not None:
            d["parentId"] = self.parent_id
        if self.prev_hash is not None:
            d["prevHash"] = self.prev_hash
        return d

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "ContractInput":
        return ContractInput(
            function=str(d["function"]),
            data=d.get("data"),
            role=d.get("role"),
            address=d.get("address"),
            parent_id=d.get("parentId"),
            prev_hash=d.get("prevHash"),
        )


@dataclass
class Transaction:
    """One entry of a vault's ordered transaction log."""
    id: str
    vault_id: str
    height: int
    input: Dict[str, Any]
    tags: Tags
    signer: str  # signer address
    public_signing_key: str
    signature: str
    timestamp: int

    def header_dict(self) -> Dict[str, Any]:
        return {
            "vaultId": self.vault_id,
            "height": int(self.height),
            "input": self.input,
            "tags": self.tags,
            "signer": self.signer,
            "publicSigningKey": self.public_signing_key,
            "signature": self.signature,
            "timestamp": int(self.timestamp),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {**self.header_dict(), "id": self.id}

    @property
    def function(self) -> str:
        return str(self.input.get("function"))

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Transaction":
        return Transaction(
            id=str(d["id"]),
            vault_id=str(d["vaultId"]),
            height=int(d["height"]),
            input=dict(d["input"]),
            tags=list(d.get("tags", [])),
            signer=str(d["signer"]),
            public_signing_key=str(d.get("publicSigningKey", "")),
            signature=str(d.get("signature", "")),
            timestamp=int(d.get("timestamp", 0)),
        )


# ---------- vault & membership ----------

@dataclass
class Vault:
    id: str
    public: bool
    status: str
    owner: str
    name: Optional[str] = None
    terms_of_access: Optional[str] = None
    size: int = 0
    data: List[str] = field(default_factory=list)
    memberships: List[str] = field(default_factory=list)
    nodes: List[str] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0
    hash: Optional[str] = None

    def decrypt(self, read: ReadFn) -> None:
        if self.name is not None:
            self.name = read(self.name)
        if self.terms_of_access is not None:
            self.terms_of_access = read(self.terms_of_access)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "public": self.public,
            "status": self.status,
            "owner": self.owner,
            "name": self.name,
            "termsOfAccess": self.terms_of_access,
            "size": self.size,
            "data": list(self.data),
            "memberships": list(self.memberships),
            "nodes": list(self.nodes),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "hash": self.hash,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Vault":
        return Vault(
            id=str(d["id"]),
            public=bool(d.get("public", False)),
            status=str(d.get("status", "")),
            owner=str(d.get("owner", "")),
            name=d.get("name"),
            terms_of_access=d.get("termsOfAccess"),
            size=int(d.get("size", 0)),
            data=list(d.get("data", [])),
            memberships=list(d.get("memberships", [])),
            nodes=list(d.get("nodes", [])),
            created_at=int(d.get("createdAt", 0)),
            updated_at=int(d.get("updatedAt", 0)),
            hash=d.get("hash"),
        )


@dataclass
class Membership:
    id: str
    vault_id: str
    status: str
    role: str
    address: Optional[str] = None
    owner: Optional[str] = None
    email: Optional[str] = None
    keys: List[Dict[str, Any]] = field(default_factory=list)
    enc_public_signing_key: Optional[str] = None
    data: List[str] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0
    hash: Optional[str] = None

    def decrypt(self, read: ReadFn) -> None:
        if self.enc_public_signing_key is not None:
            self.enc_public_signing_key = read(self.enc_public_signing_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "vaultId": self.vault_id,
            "status": self.status,
            "role": self.role,
            "address": self.address,
            "owner": self.owner,
            "email": self.email,
            "keys": list(self.keys),
            "encPublicSigningKey": self.enc_public_signing_key,
            "data": list(self.data),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "hash": self.hash,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Membership":
        return Membership(
            id=str(d["id"]),
            vault_id=str(d["vaultId"]),
            status=str(d["status"]),
            role=str(d["role"]),
            address=d.get("address"),
            owner=d.get("owner"),
            email=d.get("email"),
            keys=list(d.get("keys", [])),
            enc_public_signing_key=d.get("encPublicSigningKey"),
            data=list(d.get("data", [])),
            created_at=int(d.get("createdAt", 0)),
            updated_at=int(d.get("updatedAt", 0)),
            hash=d.get("hash"),
        )


# ---------- nodes ----------

@dataclass
class Node:
    id: str
    vault_id: str
    type: str
    owner: str
    status: str
    parent_id: Optional[str] = None
    name: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    data: List[str] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0
    hash: Optional[str] = None

    def decrypt(self, read: ReadFn) -> None:
        if self.name is not None:
            self.name = read(self.name)

    def _base_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "vaultId": self.vault_id,
            "type": self.type,
            "owner": self.owner,
            "status": self.status,
            "parentId": self.parent_id,
            "name": self.name,
            "tags": list(self.tags),
            "data": list(self.data),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "hash": self.hash,
        }

    def to_dict(self) -> Dict[str, Any]:
        return self._base_dict()

    @staticmethod
    def _base_kwargs(d: Dict[str, Any]) -> Dict[str, Any]:
        return dict(
            id=str(d["id"]),
            vault_id=str(d["vaultId"]),
            type=str(d.get("type", "")),
            owner=str(d.get("owner", "")),
            status=str(d.get("status", "")),
            parent_id=d.get("parentId"),
            name=d.get("name"),
            tags=list(d.get("tags", [])),
            data=list(d.get("data", [])),
            created_at=int(d.get("createdAt", 0)),
            updated_at=int(d.get("updatedAt", 0)),
            hash=d.get("hash"),
        )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Node":
        return cls(**cls._base_kwargs(d))


@dataclass
class Folder(Node):
    pass


@dataclass
class FileVersion:
    owner: str
    name: str
    type: str
    size: int
    resource_uri: List[str] = field(default_factory=list)
    created_at: int = 0
    number_of_chunks: int = 1
    chunk_size: Optional[int] = None
    # decoded body, filled in for notes only
    message: Optional[str] = None

    def decrypt(self, read: ReadFn) -> None:
        self.name = read(self.name)

    def resource(self, scheme: str) -> Optional[str]:
        prefix = f"{scheme}:"
        for uri in self.resource_uri:
            if uri.startswith(prefix):
                return uri[len(prefix):]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "name": self.name,
            "type": self.type,
            "size": self.size,
            "resourceUri": list(self.resource_uri),
            "createdAt": self.created_at,
            "numberOfChunks": self.number_of_chunks,
            "chunkSize": self.chunk_size,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "FileVersion":
        return FileVersion(
            owner=str(d.get("owner", "")),
            name=str(d["name"]),
            type=str(d.get("type", "")),
            size=int(d.get("size", 0)),
            resource_uri=list(d.get("resourceUri", [])),
            created_at=int(d.get("createdAt", 0)),
            number_of_chunks=int(d.get("numberOfChunks", 1)),
            chunk_size=d.get("chunkSize"),
        )


@dataclass
class Stack(Node):
    versions: List[FileVersion] = field(default_factory=list)

    @property
    def current_version(self) -> FileVersion:
        return self.versions[-1]

    def decrypt(self, read: ReadFn) -> None:
        super().decrypt(read)
        for v in self.versions:
            v.decrypt(read)

    def to_dict(self) -> Dict[str, Any]:
        return {**self._base_dict(), "versions": [v.to_dict() for v in self.versions]}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Stack":
        return cls(**cls._base_kwargs(d), versions=[FileVersion.from_dict(v) for v in d.get("versions", [])])


@dataclass
class Note(Stack):
    pass


@dataclass
class MemoReaction:
    reaction: str
    owner: str
    address: Optional[str] = None
    public_signing_key: Optional[str] = None
    created_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reaction": self.reaction,
            "owner": self.owner,
            "address": self.address,
            "publicSigningKey": self.public_signing_key,
            "createdAt": self.created_at,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "MemoReaction":
        return MemoReaction(
            reaction=str(d["reaction"]),
            owner=str(d.get("owner", "")),
            address=d.get("address"),
            public_signing_key=d.get("publicSigningKey"),
            created_at=int(d.get("createdAt", 0)),
        )


@dataclass
class MemoVersion:
    owner: str
    message: str
    created_at: int = 0
    reactions: List[MemoReaction] = field(default_factory=list)
    attachments: List[Dict[str, Any]] = field(default_factory=list)

    def decrypt(self, read: ReadFn) -> None:
        self.message = read(self.message)
        for r in self.reactions:
            r.reaction = read(r.reaction)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "message": self.message,
            "createdAt": self.created_at,
            "reactions": [r.to_dict() for r in self.reactions],
            "attachments": list(self.attachments),
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "MemoVersion":
        return MemoVersion(
            owner=str(d.get("owner", "")),
            message=str(d["message"]),
            created_at=int(d.get("createdAt", 0)),
            reactions=[MemoReaction.from_dict(r) for r in d.get("reactions", [])],
            attachments=list(d.get("attachments", [])),
        )


@dataclass
class Memo(Node):
    versions: List[MemoVersion] = field(default_factory=list)

    @property
    def current_version(self) -> MemoVersion:
        return self.versions[-1]

    def decrypt(self, read: ReadFn) -> None:
        super().decrypt(read)
        for v in self.versions:
            v.decrypt(read)

    def to_dict(self) -> Dict[str, Any]:
        return {**self._base_dict(), "versions": [v.to_dict() for v in self.versions]}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Memo":
        return cls(**cls._base_kwargs(d), versions=[MemoVersion.from_dict(v) for v in d.get("versions", [])])


# ---------- files ----------

@dataclass
class FileLike:
    """In-memory file handed to the upload pipeline."""
    name: str
    data: bytes
    mime_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @staticmethod
    def from_path(path: str, mime_type: Optional[str] = None) -> "FileLike":
        with open(path, "rb") as f:
            data = f.read()
        if mime_type is None:
            mime_type, _ = mimetypes.guess_type(path)
        return FileLike(name=os.path.basename(path), data=data, mime_type=mime_type)

    @staticmethod
    def from_text(name: str, text: str, mime_type: str) -> "FileLike":
        return FileLike(name=name, data=text.encode("utf-8"), mime_type=mime_type)


@dataclass
class FileContent:
    name: str
    type: str
    data: bytes


# ---------- results ----------

@dataclass
class NodeCreateResult:
    node_id: str
    transaction_id: str
    object: Node


@dataclass
class TransactionResult:
    transaction_id: str
    object: Any = None


@dataclass
class VaultCreateResult:
    vault_id: str
    membership_id: str
    transaction_id: str
    object: Vault


@dataclass
class MembershipCreateResult:
    membership_id: str
    transaction_id: Optional[str]  # None for out-of-band invites
    object: Optional[Membership] = None


@dataclass
class BatchError:
    identifier: str
    message: str
    cause: Optional[BaseException] = None


@dataclass
class BatchResult:
    data: List[Any] = field(default_factory=list)
    errors: List[BatchError] = field(default_factory=list)
    cancelled: int = 0


# ---------- options ----------
# Fields left as None fall through to the next layer in config.merge_options.

@dataclass
class ListOptions:
    should_decrypt: Optional[bool] = None
    statuses: Optional[List[str]] = None
    parent_id: Optional[str] = None


@dataclass
class NodeCreateOptions:
    parent_id: Optional[str] = None
    tags: Optional[List[str]] = None


@dataclass
class StackCreateOptions:
    parent_id: Optional[str] = None
    tags: Optional[List[str]] = None
    mime_type: Optional[str] = None
    progress_hook: Optional[ProgressHook] = None
    cancel_hook: Optional[CancelHook] = None


@dataclass
class NoteCreateOptions:
    parent_id: Optional[str] = None
    tags: Optional[List[str]] = None
    mime_type: Optional[str] = None


@dataclass
class BatchStackItem:
    file: FileLike
    name: Optional[str] = None
    parent_id: Optional[str] = None
    tags: Optional[List[str]] = None


@dataclass
class BatchNodeItem:
    id: str
    type: str  # NodeKind value


@dataclass
class BatchRoleItem:
    id: str
    role: str


@dataclass
class BatchInviteItem:
    email: str
    role: str


@dataclass
class BatchStackCreateOptions:
    chunk_size: Optional[int] = None
    progress_hook: Optional[ProgressHook] = None
    cancel_hook: Optional[CancelHook] = None
    processing_count_hook: Optional[Callable[[int], None]] = None
    on_stack_created: Optional[Callable[[NodeCreateResult], Awaitable[None]]] = None
