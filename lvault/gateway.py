"""Transport interfaces consumed by the services.

Any object implementing these methods can back a :class:`~lvault.client.VaultClient`;
:mod:`lvault.local` provides the in-process implementation.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from .hooks import ByteProgressHook, CancelHook
from .models import ContractInput, Tags


class LedgerGateway(Protocol):
    """Contract ledger plus its user registry and invite side channel."""

    async def init_contract(self, tags: Tags) -> str:
        """Allocate a new vault contract and return its id."""
        ...

    async def post_contract_transaction(
        self,
        vault_id: str,
        input: ContractInput,
        tags: Tags,
        signature: Dict[str, str],
    ) -> Dict[str, Any]:
        """Append a transaction; returns ``{"id": tx_id, "object": mutated_entity}``."""
        ...

    async def get_vault(self, vault_id: str) -> Dict[str, Any]: ...

    async def get_vaults(self, address: str) -> List[Dict[str, Any]]: ...

    async def get_node(self, node_id: str, node_type: str) -> Dict[str, Any]: ...

    async def get_nodes_by_vault_id(self, vault_id: str, node_type: str) -> List[Dict[str, Any]]: ...

    async def get_membership(self, membership_id: str) -> Dict[str, Any]: ...

    async def get_members(self, vault_id: str) -> List[Dict[str, Any]]: ...

    async def get_membership_keys(self, vault_id: str, address: str) -> Dict[str, Any]:
        """``{"isEncrypted": bool, "keys": [wrapped key, ...]}`` for the member."""
        ...

    async def exists_user(self, email: str) -> bool: ...

    async def get_user_public_data(self, email: str) -> Dict[str, str]: ...

    async def invite_new_user(
        self,
        vault_id: str,
        email: str,
        role: str,
        message: Optional[str] = None,
        inviter: Optional[str] = None,
    ) -> Dict[str, Any]: ...

    async def invite_resend(self, vault_id: str, membership_id: str, inviter: Optional[str] = None) -> Dict[str, Any]: ...


class StorageGateway(Protocol):
    """Bulk data store for state blobs and file bytes."""

    async def upload_state(self, state: Dict[str, Any], tags: Optional[Tags] = None) -> str: ...

    async def get_node_state(self, state_id: str) -> Dict[str, Any]: ...

    async def upload_file(
        self,
        data: bytes,
        tags: Tags,
        is_public: bool = False,
        resource_id: Optional[str] = None,
        progress_hook: Optional[ByteProgressHook] = None,
        cancel_hook: Optional[CancelHook] = None,
    ) -> Dict[str, str]:
        """Returns ``{"resourceUrl": ..., "resourceTx": ...}``."""
        ...

    async def download_file(
        self,
        url: str,
        is_public: bool = False,
        progress_hook: Optional[ByteProgressHook] = None,
        cancel_hook: Optional[CancelHook] = None,
    ) -> Dict[str, Any]:
        """Returns ``{"fileData": bytes, "headers": {...}}``."""
        ...
