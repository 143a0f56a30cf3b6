"""Base service: per-operation vault context, encryption helpers and transaction posting.

A service instance holds the mutable context of exactly one operation (vault
id, keys, object being mutated, function, action and group references, user
tags). Public entry points fork a fresh instance so concurrent operations
never share it; only the read-only :class:`VaultContext` is shared, and only
between the items of one batch.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .config import Config, get_config
from .constants import ActionRef, Function, ObjectType, ProtocolTag
from .crypto import (
    CryptoError,
    VaultKey,
    decrypt_bytes,
    decrypt_string,
    encrypt_bytes,
    encrypt_string,
    latest_key_id,
    unwrap_vault_keys,
)
from .exceptions import IncorrectEncryptionKey
from .gateway import LedgerGateway, StorageGateway
from .keys import Wallet
from .logging_config import Timer, get_logger
from .models import ContractInput, Tags, signing_payload, tag

logger = get_logger("lvault.service")

_NODE_OBJECT_TYPES = (ObjectType.FOLDER, ObjectType.STACK, ObjectType.NOTE, ObjectType.MEMO)


@dataclass(frozen=True)
class VaultContext:
    """Vault metadata and unwrapped keys, fetched once and then read-only."""
    vault_id: str
    is_public: bool
    keys: Tuple[VaultKey, ...]
    vault: Dict[str, Any]


@dataclass
class PreparedTransaction:
    """A transaction ready to post: state uploaded, tags computed."""
    vault_id: str
    input: ContractInput
    tags: Tags
    object_id: Optional[str] = None


def new_group_ref() -> str:
    return str(uuid.uuid4())


class Service:
    object_type: ObjectType = ObjectType.VAULT

    def __init__(
        self,
        wallet: Wallet,
        ledger: LedgerGateway,
        storage: StorageGateway,
        config: Optional[Config] = None,
        contexts: Optional[Dict[str, VaultContext]] = None,
    ):
        self.wallet = wallet
        self.ledger = ledger
        self.storage = storage
        self.config = config or get_config()
        self._shared_contexts = contexts is not None
        self.contexts: Dict[str, VaultContext] = contexts if contexts is not None else {}

        self.vault_id: str = ""
        self.is_public: bool = False
        self.keys: List[VaultKey] = []
        self.vault: Optional[Dict[str, Any]] = None
        self.object: Optional[Dict[str, Any]] = None
        self.object_id: Optional[str] = None
        self.prev_hash: Optional[str] = None
        self.function: Optional[Function] = None
        self.action_ref: Optional[ActionRef] = None
        self.group_ref: Optional[str] = None
        self.tags: List[str] = []

    def _new_instance(self) -> "Service":
        return type(self)(
            self.wallet, self.ledger, self.storage, self.config,
            self.contexts if self._shared_contexts else None,
        )

    def _fork(self) -> "Service":
        """Fresh context for one operation, keeping group ref and any shared vault contexts."""
        clone = self._new_instance()
        clone.group_ref = self.group_ref
        return clone

    # ---------- vault context ----------

    async def set_vault_context(self, vault_id: str) -> VaultContext:
        ctx = self.contexts.get(vault_id)
        if ctx is None:
            vault = await self.ledger.get_vault(vault_id)
            is_public = bool(vault.get("public", False))
            keys: List[VaultKey] = [] if is_public else await self._load_keys(vault_id)
            ctx = VaultContext(vault_id=vault_id, is_public=is_public, keys=tuple(keys), vault=vault)
            self.contexts[vault_id] = ctx
        self.use_vault_context(ctx)
        return ctx

    def use_vault_context(self, ctx: VaultContext) -> None:
        self.vault_id = ctx.vault_id
        self.is_public = ctx.is_public
        self.keys = list(ctx.keys)
        self.vault = ctx.vault

    async def _load_keys(self, vault_id: str) -> List[VaultKey]:
        result = await self.ledger.get_membership_keys(vault_id, self.wallet.address)
        try:
            return unwrap_vault_keys(self.wallet, result.get("keys", []))
        except CryptoError as e:
            raise IncorrectEncryptionKey(e) from e

    # ---------- encryption helpers ----------

    def process_write_string(self, plain: str) -> str:
        if self.is_public:
            return plain
        try:
            return encrypt_string(plain, self.keys)
        except CryptoError as e:
            raise IncorrectEncryptionKey(e) from e

    def process_read_string(self, value: str) -> str:
        if self.is_public:
            return value
        try:
            return decrypt_string(value, self.keys)
        except CryptoError as e:
            raise IncorrectEncryptionKey(e) from e

    def process_write_bytes(self, data: bytes) -> bytes:
        if self.is_public:
            return data
        try:
            return encrypt_bytes(data, self.keys)
        except CryptoError as e:
            raise IncorrectEncryptionKey(e) from e

    def process_read_bytes(self, data: bytes) -> bytes:
        if self.is_public:
            return data
        try:
            return decrypt_bytes(data, self.keys)
        except CryptoError as e:
            raise IncorrectEncryptionKey(e) from e

    # ---------- tags ----------

    def get_tx_tags(self) -> Tags:
        """Protocol tags for the current context, in ledger order."""
        service_config = self.config.service
        tags = [
            tag(ProtocolTag.PROTOCOL_NAME, service_config.protocol_name),
            tag(ProtocolTag.PROTOCOL_VERSION, service_config.protocol_version),
            tag(ProtocolTag.FUNCTION_NAME, self.function.value),
            tag(ProtocolTag.SIGNER_ADDRESS, self.wallet.address),
            tag(ProtocolTag.VAULT_ID, self.vault_id),
            tag(ProtocolTag.NODE_TYPE, self.object_type.value),
        ]
        if self.object_type == ObjectType.MEMBERSHIP:
            tags.append(tag(ProtocolTag.MEMBERSHIP_ID, self.object_id))
        elif self.object_type in _NODE_OBJECT_TYPES:
            tags.append(tag(ProtocolTag.NODE_ID, self.object_id))
        tags.append(tag(ProtocolTag.PUBLIC, "true" if self.is_public else "false"))
        if not self.is_public and self.keys:
            tags.append(tag(ProtocolTag.ENCRYPTION_KEY_VERSION, latest_key_id(self.keys)))
        if self.group_ref:
            tags.append(tag(ProtocolTag.GROUP_REF, self.group_ref))
        tags.append(tag(ProtocolTag.ACTION_REF, self.action_ref.value))
        for user_tag in self.tags:
            tags.append(tag(ProtocolTag.TAG, user_tag))
        return tags

    # ---------- storage & ledger ----------

    async def upload_state(self, state: Dict[str, Any]) -> str:
        return await self.storage.upload_state(state)

    def prepare(self, input: ContractInput) -> PreparedTransaction:
        return PreparedTransaction(
            vault_id=self.vault_id,
            input=input,
            tags=self.get_tx_tags(),
            object_id=self.object_id,
        )

    async def submit(self, prepared: PreparedTransaction) -> Tuple[str, Dict[str, Any]]:
        """Sign and post a prepared transaction; returns (transaction id, ledger object)."""
        payload = signing_payload(prepared.vault_id, prepared.input.to_dict(), prepared.tags)
        signature = {
            "address": self.wallet.address,
            "publicSigningKey": self.wallet.signing_public_key(),
            "signature": self.wallet.sign(payload),
        }
        function = prepared.input.function
        with Timer(logger, f"post {function}"):
            result = await self.ledger.post_contract_transaction(
                prepared.vault_id, prepared.input, prepared.tags, signature
            )
        logger.info(f"Posted {function} to vault {prepared.vault_id}: tx {result['id']}")
        return result["id"], result["object"]

    async def post(self, input: ContractInput) -> Tuple[str, Dict[str, Any]]:
        return await self.submit(self.prepare(input))
