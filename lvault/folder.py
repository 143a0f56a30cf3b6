from __future__ import annotations

from typing import Optional

from .config import merge_options
from .models import NodeCreateOptions, NodeCreateResult, TransactionResult
from .node import NodeKind, NodeModule


class FolderService(NodeModule):
    """Folders carry only an encrypted name."""

    kind = NodeKind.FOLDER

    async def create(self, vault_id: str, name: str, options: Optional[NodeCreateOptions] = None) -> NodeCreateResult:
        opts = merge_options(NodeCreateOptions(), options)
        engine = self._engine()
        await engine.set_vault_context(vault_id)
        return await engine.node_create({"name": name}, parent_id=opts.parent_id, extra_tags=opts.tags)

    async def rename(self, folder_id: str, name: str) -> TransactionResult:
        return await self._engine().node_rename(folder_id, name)

    async def move(self, folder_id: str, parent_id: Optional[str] = None) -> TransactionResult:
        """Move under ``parent_id``, or to the vault root when None."""
        return await self._engine().node_move(folder_id, parent_id)
