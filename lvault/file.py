"""File transfer pipeline: encryption, chunked upload/download, progress and cancellation.

Files larger than ``FileConfig.chunk_size_bytes`` are split; each chunk is
encrypted on its own and stored under ``{resource}_{index}``. A version's
``resourceUri`` holds ``s3:<resource>`` and ``hash:<sha256 of stored bytes>``.
"""
from __future__ import annotations

import hashlib
import uuid
from typing import Any, Dict, List, Optional

from .constants import ProtocolTag
from .exceptions import GatewayError, NotFound, UploadCancelled
from .hooks import ByteProgressHook, CancelHook, ProgressHook
from .logging_config import get_logger, log_operation
from .models import FileLike, FileVersion, now_ms, tag
from .service import Service

logger = get_logger("lvault.file")


class FileService:
    """Moves file bytes for the vault context held by ``service``."""

    def __init__(self, service: Service):
        self.service = service
        self.chunk_size = service.config.file.chunk_size_bytes

    def _storage_tags(self, mime_type: str) -> List[Dict[str, str]]:
        svc = self.service
        return [
            tag("Content-Type", mime_type),
            tag(ProtocolTag.VAULT_ID, svc.vault_id),
            tag(ProtocolTag.PUBLIC, "true" if svc.is_public else "false"),
        ]

    @log_operation(logger, "file upload")
    async def upload(
        self,
        file: FileLike,
        progress_hook: Optional[ProgressHook] = None,
        cancel_hook: Optional[CancelHook] = None,
        byte_hook: Optional[ByteProgressHook] = None,
    ) -> Dict[str, Any]:
        """Upload ``file`` and return the (encrypted) version record for it."""
        svc = self.service
        mime_type = file.mime_type or svc.config.file.default_mime_type
        total = file.size
        chunks = [file.data[i:i + self.chunk_size] for i in range(0, total, self.chunk_size)] or [b""]
        resource = uuid.uuid4().hex if len(chunks) > 1 else None
        tags = self._storage_tags(mime_type)
        digest = hashlib.sha256()

        def report(uploaded: int) -> None:
            if byte_hook is not None:
                byte_hook(uploaded)
            if progress_hook is not None:
                percent = 100.0 if total == 0 else min(100.0, uploaded * 100.0 / total)
                progress_hook(percent, {"id": file.name, "total": total})

        done = 0
        for index, chunk in enumerate(chunks):
            if cancel_hook is not None and cancel_hook.cancelled:
                raise UploadCancelled(f"upload of {file.name} cancelled")
            payload = svc.process_write_bytes(chunk)
            digest.update(payload)

            def on_bytes(sent: int, offset: int = done, plain: int = len(chunk), stored: int = len(payload)) -> None:
                report(offset + (plain if stored == 0 else min(plain, sent * plain // stored)))

            result = await svc.storage.upload_file(
                payload,
                tags,
                is_public=svc.is_public,
                resource_id=f"{resource}_{index}" if resource else None,
                progress_hook=on_bytes,
                cancel_hook=cancel_hook,
            )
            done += len(chunk)
            if resource is None:
                resource = result["resourceUrl"]

        logger.debug(f"Uploaded {file.name}: {total} bytes in {len(chunks)} chunk(s)")
        return {
            "owner": svc.wallet.address,
            "name": svc.process_write_string(file.name),
            "type": mime_type,
            "size": total,
            "resourceUri": [f"s3:{resource}", f"hash:{digest.hexdigest()}"],
            "createdAt": now_ms(),
            "numberOfChunks": len(chunks),
            "chunkSize": self.chunk_size if len(chunks) > 1 else None,
        }

    @log_operation(logger, "file download")
    async def download(
        self,
        version: FileVersion,
        progress_hook: Optional[ProgressHook] = None,
        cancel_hook: Optional[CancelHook] = None,
    ) -> bytes:
        svc = self.service
        resource = version.resource("s3")
        if resource is None:
            raise NotFound(f"version {version.name} has no stored resource", search_key=version.name)
        count = version.number_of_chunks
        urls = [f"{resource}_{i}" for i in range(count)] if count > 1 else [resource]

        payloads = []
        digest = hashlib.sha256()
        for index, url in enumerate(urls):
            if cancel_hook is not None and cancel_hook.cancelled:
                raise UploadCancelled(f"download of {version.name} cancelled")
            result = await svc.storage.download_file(url, is_public=svc.is_public, cancel_hook=cancel_hook)
            payloads.append(result["fileData"])
            digest.update(result["fileData"])
            if progress_hook is not None:
                progress_hook((index + 1) * 100.0 / len(urls), {"id": version.name, "total": version.size})

        expected = version.resource("hash")
        if expected is not None and digest.hexdigest() != expected:
            raise GatewayError(f"stored content of {version.name} does not match its hash")
        return b"".join(svc.process_read_bytes(p) for p in payloads)
