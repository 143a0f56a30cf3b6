"""Notes: text documents stored as single-file stacks of a note MIME type."""
from __future__ import annotations

from typing import List, Optional

from .config import merge_options
from .constants import NoteType
from .exceptions import BadRequest
from .file import FileService
from .models import FileLike, ListOptions, Note, NodeCreateResult, NoteCreateOptions, TransactionResult
from .node import NodeKind, NodeModule, PatchOp
from .stack import pick_version

NOTE_TYPES = tuple(t.value for t in NoteType)


def _check_note_type(mime_type: str) -> None:
    if mime_type not in NOTE_TYPES:
        raise BadRequest(f"unsupported note type {mime_type}; expected one of {', '.join(NOTE_TYPES)}")


class NoteService(NodeModule):
    kind = NodeKind.NOTE

    async def create(
        self,
        vault_id: str,
        content: str,
        name: str,
        options: Optional[NoteCreateOptions] = None,
    ) -> NodeCreateResult:
        opts = merge_options(NoteCreateOptions(mime_type=NoteType.MD.value), options)
        _check_note_type(opts.mime_type)
        engine = self._engine()
        await engine.set_vault_context(vault_id)
        version = await FileService(engine).upload(FileLike.from_text(name, content, opts.mime_type))
        return await engine.node_create({"name": name, "version": version}, parent_id=opts.parent_id, extra_tags=opts.tags)

    async def upload_revision(self, note_id: str, content: str, mime_type: Optional[str] = None) -> TransactionResult:
        engine = self._engine()
        obj = await engine.set_vault_context_from_node_id(note_id)
        current = engine.process_node(obj, should_decrypt=True)
        mime_type = mime_type or current.current_version.type
        _check_note_type(mime_type)
        file = FileLike.from_text(current.name, content, mime_type)
        version = await FileService(engine).upload(file)
        return await engine.node_update(note_id, "UPLOAD_REVISION", {"op": PatchOp.ADD_VERSION.value, "version": version})

    async def rename(self, note_id: str, name: str) -> TransactionResult:
        return await self._engine().node_rename(note_id, name)

    async def move(self, note_id: str, parent_id: Optional[str] = None) -> TransactionResult:
        return await self._engine().node_move(note_id, parent_id)

    async def get(self, note_id: str, should_decrypt: Optional[bool] = None) -> Note:
        """Fetch the note; decrypted reads also carry each version's text in ``message``."""
        engine = self._engine()
        note = await engine.get(note_id, should_decrypt)
        if should_decrypt is None:
            should_decrypt = engine.config.service.default_should_decrypt
        if should_decrypt or engine.is_public:
            files = FileService(engine)
            for version in note.versions:
                version.message = (await files.download(version)).decode("utf-8")
        return note

    async def get_version(self, note_id: str, index: Optional[int] = None) -> str:
        engine = self._engine()
        note = await engine.get(note_id, should_decrypt=True)
        data = await FileService(engine).download(pick_version(note, index))
        return data.decode("utf-8")

    async def list(self, vault_id: str, options: Optional[ListOptions] = None) -> List[Note]:
        """Stacks of the vault whose latest version is a note type."""
        nodes = await super().list(vault_id, options)
        return [n for n in nodes if n.versions and n.current_version.type in NOTE_TYPES]
