from __future__ import annotations

import asyncio
import mimetypes
import secrets
from pathlib import Path
from typing import Protocol, Union

from .models import AttachmentData

AttachmentRef = Union[str, Path, AttachmentData]


class AttachmentStore(Protocol):
    """Resolves an attachment reference into bytes plus metadata."""

    async def load(self, ref: AttachmentRef) -> AttachmentData: ...


def fallback_filename(content_type: str) -> str:
    """Name for data that arrives without one, e.g. a pasted image."""

    ext = (mimetypes.guess_extension(content_type) or ".bin").lstrip(".")
    return f"pygchat{secrets.randbelow(1 << 32)}.{ext}"


class FileAttachmentStore:
    """Loads attachments from the local filesystem (or passes `AttachmentData` through)."""

    async def load(self, ref: AttachmentRef) -> AttachmentData:
        if isinstance(ref, AttachmentData):
            if ref.filename:
                return ref
            return AttachmentData(
                data=ref.data,
                filename=fallback_filename(ref.content_type),
                content_type=ref.content_type,
            )

        p = Path(ref).expanduser()
        data = await asyncio.to_thread(p.read_bytes)
        content_type = mimetypes.guess_type(str(p))[0] or "application/octet-stream"
        return AttachmentData(data=data, filename=p.name, content_type=content_type)
