"""Batch orchestration over many items sharing one group reference.

Update batches (revoke, restore, delete, move, role change) run item by item.
``stack_create`` splits preparation from posting: chunks of items are uploaded
concurrently by a producer task, and the prepared transactions are posted one
at a time, in enqueue order, by a single consumer. ``membership_invite``
posts concurrently under a semaphore since invites do not depend on order.

Per-item failures are collected in ``BatchResult.errors`` and never abort the
batch; only failing to resolve the vault up front raises.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import Config, get_config, merge_options
from .exceptions import UploadCancelled
from .file import FileService
from .gateway import LedgerGateway, StorageGateway
from .hooks import CancelHook
from .keys import Wallet
from .logging_config import get_logger
from .membership import MembershipService
from .models import (
    BatchError,
    BatchInviteItem,
    BatchNodeItem,
    BatchResult,
    BatchRoleItem,
    BatchStackCreateOptions,
    BatchStackItem,
)
from .node import NodeKind, NodeService
from .service import PreparedTransaction, VaultContext, new_group_ref

logger = get_logger("lvault.batch")


@dataclass
class _Queued:
    engine: NodeService
    prepared: PreparedTransaction
    item: BatchStackItem


# end-of-production marker
_DONE = object()
# wakes the consumer when the cancel hook fires
_CANCELLED = object()


def _item_name(item: BatchStackItem) -> str:
    return item.name or item.file.name


class BatchService:
    def __init__(self, wallet: Wallet, ledger: LedgerGateway, storage: StorageGateway, config: Optional[Config] = None):
        self.wallet = wallet
        self.ledger = ledger
        self.storage = storage
        self.config = config or get_config()

    def _node_engine(self, kind: Any, contexts: Dict[str, VaultContext], group_ref: Optional[str]) -> NodeService:
        engine = NodeService(NodeKind(kind), self.wallet, self.ledger, self.storage, self.config, contexts)
        engine.group_ref = group_ref
        return engine

    # ---------- update batches ----------

    async def _run_each(self, identifiers: List[str], run: Callable[[int], Awaitable[Any]]) -> BatchResult:
        result = BatchResult()
        for index, identifier in enumerate(identifiers):
            try:
                result.data.append(await run(index))
            except Exception as e:
                logger.warning(f"Batch item {identifier} failed: {type(e).__name__}: {e}")
                result.errors.append(BatchError(identifier=identifier, message=str(e), cause=e))
        logger.info(f"Batch finished: {len(result.data)} ok, {len(result.errors)} failed")
        return result

    async def _node_batch(self, items: List[BatchNodeItem], op: Callable[[NodeService, BatchNodeItem], Awaitable[Any]]) -> BatchResult:
        group_ref = new_group_ref() if len(items) > 1 else None
        contexts: Dict[str, VaultContext] = {}

        async def run(index: int) -> Any:
            item = items[index]
            return await op(self._node_engine(item.type, contexts, group_ref), item)

        return await self._run_each([item.id for item in items], run)

    async def revoke(self, items: List[BatchNodeItem]) -> BatchResult:
        return await self._node_batch(items, lambda engine, item: engine.node_revoke(item.id))

    async def restore(self, items: List[BatchNodeItem]) -> BatchResult:
        return await self._node_batch(items, lambda engine, item: engine.node_restore(item.id))

    async def delete(self, items: List[BatchNodeItem]) -> BatchResult:
        return await self._node_batch(items, lambda engine, item: engine.node_delete(item.id))

    async def move(self, items: List[BatchNodeItem], parent_id: Optional[str] = None) -> BatchResult:
        return await self._node_batch(items, lambda engine, item: engine.node_move(item.id, parent_id))

    async def membership_change_role(self, items: List[BatchRoleItem]) -> BatchResult:
        group_ref = new_group_ref() if len(items) > 1 else None
        service = MembershipService(self.wallet, self.ledger, self.storage, self.config, {})
        service.group_ref = group_ref

        async def run(index: int) -> Any:
            return await service.change_role(items[index].id, items[index].role)

        return await self._run_each([item.id for item in items], run)

    # ---------- stack create ----------

    async def stack_create(
        self,
        vault_id: str,
        items: List[BatchStackItem],
        options: Optional[BatchStackCreateOptions] = None,
    ) -> BatchResult:
        opts = merge_options(BatchStackCreateOptions(chunk_size=self.config.batch.chunk_size), options)
        cancel_hook = opts.cancel_hook or CancelHook()
        group_ref = new_group_ref() if len(items) > 1 else None
        contexts: Dict[str, VaultContext] = {}
        result = BatchResult()

        # resolve vault and keys once; failure here aborts the whole batch
        await self._node_engine(NodeKind.STACK, contexts, group_ref).set_vault_context(vault_id)

        if cancel_hook.cancelled:
            result.cancelled = len(items)
            return result

        total_bytes = sum(item.file.size for item in items)
        uploaded: Dict[int, int] = {}
        prepared_count = 0
        if opts.processing_count_hook is not None:
            opts.processing_count_hook(prepared_count)

        def on_bytes(index: int, sent: int) -> None:
            uploaded[index] = sent
            if opts.progress_hook is None:
                return
            done = sum(uploaded.values())
            percent = 100.0 if total_bytes == 0 else done * 100.0 / total_bytes
            opts.progress_hook(max(0.0, min(100.0, percent)), {"total": total_bytes, "uploaded": done})

        queue: asyncio.Queue = asyncio.Queue()

        async def prepare(index: int, item: BatchStackItem) -> None:
            nonlocal prepared_count
            engine = self._node_engine(NodeKind.STACK, contexts, group_ref)
            await engine.set_vault_context(vault_id)
            version = await FileService(engine).upload(
                item.file,
                cancel_hook=cancel_hook,
                byte_hook=lambda sent: on_bytes(index, sent),
            )
            prepared = await engine.prepare_create(
                {"name": _item_name(item), "version": version},
                parent_id=item.parent_id,
                extra_tags=item.tags,
            )
            prepared_count += 1
            if opts.processing_count_hook is not None:
                opts.processing_count_hook(prepared_count)
            queue.put_nowait(_Queued(engine=engine, prepared=prepared, item=item))

        indexed = list(enumerate(items))

        async def produce() -> None:
            try:
                for start in range(0, len(indexed), opts.chunk_size):
                    if cancel_hook.cancelled:
                        break
                    chunk = indexed[start:start + opts.chunk_size]
                    outcomes = await asyncio.gather(
                        *(prepare(index, item) for index, item in chunk), return_exceptions=True
                    )
                    for (_, item), outcome in zip(chunk, outcomes):
                        if not isinstance(outcome, BaseException):
                            continue
                        if isinstance(outcome, (UploadCancelled, asyncio.CancelledError)) and cancel_hook.cancelled:
                            continue
                        logger.warning(f"Preparing {_item_name(item)} failed: {type(outcome).__name__}: {outcome}")
                        result.errors.append(BatchError(identifier=_item_name(item), message=str(outcome), cause=outcome))
            finally:
                queue.put_nowait(_DONE)

        def wake() -> None:
            queue.put_nowait(_CANCELLED)

        cancel_hook.add_listener(wake)
        producer = asyncio.create_task(produce())
        try:
            while not cancel_hook.cancelled:
                queued = await queue.get()
                if queued is _DONE or cancel_hook.cancelled:
                    break
                if queued is _CANCELLED:
                    continue
                try:
                    created = await queued.engine.submit_create(queued.prepared)
                    if opts.on_stack_created is not None:
                        await opts.on_stack_created(created)
                    result.data.append(created)
                except Exception as e:
                    name = _item_name(queued.item)
                    logger.warning(f"Posting {name} failed: {type(e).__name__}: {e}")
                    result.errors.append(BatchError(identifier=name, message=str(e), cause=e))
        finally:
            cancel_hook.remove_listener(wake)

        # uploads stop on the cancel hook, so the producer settles before counts are taken
        await producer
        if cancel_hook.cancelled:
            result.cancelled = len(items) - len(result.data) - len(result.errors)
            logger.info(f"Batch stack create cancelled: {len(result.data)} created, {result.cancelled} cancelled")
            return result

        logger.info(f"Batch stack create finished: {len(result.data)} created, {len(result.errors)} failed")
        return result

    # ---------- membership invite ----------

    async def membership_invite(
        self,
        vault_id: str,
        items: List[BatchInviteItem],
        message: Optional[str] = None,
    ) -> BatchResult:
        group_ref = new_group_ref() if len(items) > 1 else None
        contexts: Dict[str, VaultContext] = {}
        seed = MembershipService(self.wallet, self.ledger, self.storage, self.config, contexts)
        await seed.set_vault_context(vault_id)
        members = await self.ledger.get_members(vault_id)
        semaphore = asyncio.Semaphore(self.config.batch.max_concurrent_invites)
        outcomes: List[Any] = [None] * len(items)

        async def invite(index: int, item: BatchInviteItem) -> None:
            async with semaphore:
                service = MembershipService(self.wallet, self.ledger, self.storage, self.config, contexts)
                service.group_ref = group_ref
                await service.set_vault_context(vault_id)
                try:
                    outcomes[index] = await service.invite_member(item.email, item.role, members, message)
                except Exception as e:
                    logger.warning(f"Inviting {item.email} failed: {type(e).__name__}: {e}")
                    outcomes[index] = BatchError(identifier=item.email, message=str(e), cause=e)

        await asyncio.gather(*(invite(index, item) for index, item in enumerate(items)))

        result = BatchResult()
        for outcome in outcomes:
            if isinstance(outcome, BatchError):
                result.errors.append(outcome)
            else:
                result.data.append(outcome)
        logger.info(f"Batch invite finished: {len(result.data)} invited, {len(result.errors)} failed")
        return result
