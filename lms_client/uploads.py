import logging
from dataclasses import dataclass, field
from typing import Optional

from module_service.schemas import ContentFileOut
from .errors import LmsError

logger = logging.getLogger("lms_client")

# hint only; the server enforces its own limit
MAX_UPLOAD_BYTES = 50 * 1024 * 1024


@dataclass
class FailedUpload:
    filename: str
    error: str


@dataclass
class BatchResult:
    uploaded: list[ContentFileOut] = field(default_factory=list)
    failed: list[FailedUpload] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def error_message(self) -> Optional[str]:
        if not self.failed:
            return None
        return "Failed to upload: " + "; ".join(f"{f.filename} ({f.error})" for f in self.failed)

    @property
    def success_message(self) -> Optional[str]:
        n = len(self.uploaded)
        if not n:
            return None
        return f"{n} file{'s' if n > 1 else ''} uploaded successfully"


async def upload_batch(
    api,
    module_id: int,
    target: str,
    files: list[tuple[str, bytes]],
    *,
    index: Optional[int] = None,
    file_type: str = "pdf",
) -> BatchResult:
    """Upload files one at a time; a failed file is reported and the rest still go through."""
    result = BatchResult()
    for filename, content in files:
        if len(content) > MAX_UPLOAD_BYTES:
            result.failed.append(FailedUpload(filename, "File too large (max 50MB)"))
            continue
        try:
            out = await api.upload_file(module_id, target, filename, content, index=index, file_type=file_type)
        except LmsError as e:
            logger.warning("Upload of %s failed: %s", filename, e.message)
            result.failed.append(FailedUpload(filename, e.message))
            continue
        result.uploaded.append(out.file)
    return result
