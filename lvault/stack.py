"""Stacks: named, versioned files."""
from __future__ import annotations

from dataclasses import replace
from typing import Optional

from .config import merge_options
from .exceptions import NotFound
from .file import FileService
from .hooks import CancelHook, ProgressHook
from .models import FileContent, FileLike, FileVersion, NodeCreateResult, Stack, StackCreateOptions, TransactionResult
from .node import NodeKind, NodeModule, PatchOp


def pick_version(stack: Stack, index: Optional[int]) -> FileVersion:
    if index is None:
        return stack.current_version
    if index < 0 or index >= len(stack.versions):
        raise NotFound(f"version {index} not found in {stack.id}", search_key=str(index))
    return stack.versions[index]


class StackService(NodeModule):
    kind = NodeKind.STACK

    async def create(
        self,
        vault_id: str,
        file: FileLike,
        name: Optional[str] = None,
        options: Optional[StackCreateOptions] = None,
    ) -> NodeCreateResult:
        opts = merge_options(StackCreateOptions(), options)
        engine = self._engine()
        await engine.set_vault_context(vault_id)
        if opts.mime_type:
            file = replace(file, mime_type=opts.mime_type)
        version = await FileService(engine).upload(file, progress_hook=opts.progress_hook, cancel_hook=opts.cancel_hook)
        return await engine.node_create(
            {"name": name or file.name, "version": version},
            parent_id=opts.parent_id,
            extra_tags=opts.tags,
        )

    async def upload_revision(
        self,
        stack_id: str,
        file: FileLike,
        progress_hook: Optional[ProgressHook] = None,
        cancel_hook: Optional[CancelHook] = None,
    ) -> TransactionResult:
        """Append exactly one new version holding ``file``."""
        engine = self._engine()
        await engine.set_vault_context_from_node_id(stack_id)
        version = await FileService(engine).upload(file, progress_hook=progress_hook, cancel_hook=cancel_hook)
        return await engine.node_update(stack_id, "UPLOAD_REVISION", {"op": PatchOp.ADD_VERSION.value, "version": version})

    async def rename(self, stack_id: str, name: str) -> TransactionResult:
        return await self._engine().node_rename(stack_id, name)

    async def move(self, stack_id: str, parent_id: Optional[str] = None) -> TransactionResult:
        return await self._engine().node_move(stack_id, parent_id)

    async def get_version(
        self,
        stack_id: str,
        index: Optional[int] = None,
        progress_hook: Optional[ProgressHook] = None,
        cancel_hook: Optional[CancelHook] = None,
    ) -> FileContent:
        """Decrypted name, type and bytes of one version (latest by default)."""
        engine = self._engine()
        stack = await engine.get(stack_id, should_decrypt=True)
        version = pick_version(stack, index)
        data = await FileService(engine).download(version, progress_hook=progress_hook, cancel_hook=cancel_hook)
        return FileContent(name=version.name, type=version.type, data=data)
