"""
Local-disk storage for uploaded documents.

Config (env):
  UPLOAD_DIR          root folder for uploads (default: uploads)
  MAX_UPLOAD_BYTES    per-file size cap (default: 10 MiB, 0 disables)
  ALLOWED_FILE_TYPES  comma separated extensions
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional

from instructo.errors import FileTooLarge, ValidationError
from instructo.utils.identifiers import unique_filename

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024
DEFAULT_ALLOWED_FILE_TYPES = "pdf,doc,docx,xls,xlsx,jpg,jpeg,png"


@dataclass(frozen=True)
class StoredFile:
    path: str  # relative to the storage root, POSIX separators
    original_name: str
    size_bytes: int
    content_type: Optional[str] = None


class DocumentStorage:
    def __init__(
        self,
        root: str | Path,
        *,
        max_bytes: int = 10 * 1024 * 1024,
        allowed_extensions: Iterable[str] = DEFAULT_ALLOWED_FILE_TYPES.split(","),
    ) -> None:
        self.root = Path(root).resolve()
        self.max_bytes = max_bytes
        self.allowed_extensions = {
            ext.strip().lower().lstrip(".") for ext in allowed_extensions if ext.strip()
        }

    @classmethod
    def from_env(cls) -> "DocumentStorage":
        return cls(
            os.getenv("UPLOAD_DIR", "uploads"),
            max_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)) or "0"),
            allowed_extensions=(
                os.getenv("ALLOWED_FILE_TYPES") or DEFAULT_ALLOWED_FILE_TYPES
            ).split(","),
        )

    def _ensure_safe_path(self, path: Path) -> Path:
        resolved = path.resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise ValidationError("Invalid file path.")
        return resolved

    def resolve(self, relative_path: str) -> Path:
        return self._ensure_safe_path(self.root / relative_path)

    def check_extension(self, filename: Optional[str], *, field: str = "file") -> None:
        ext = Path(filename or "").suffix.lower().lstrip(".")
        if not ext or ext not in self.allowed_extensions:
            raise ValidationError(
                f"Invalid file type. Allowed types: {', '.join(sorted(self.allowed_extensions))}",
                detail=[{"field": field, "reason": "file type not allowed"}],
            )

    def save(self, upload: Any, *, folder: str, field: str = "file") -> StoredFile:
        """
        Stream an UploadFile-like object (`.filename`, `.file`) into
        `<root>/<folder>/`. A partially written file is removed on failure.
        """
        filename = getattr(upload, "filename", None)
        self.check_extension(filename, field=field)

        target_dir = self._ensure_safe_path(self.root / folder)
        target_dir.mkdir(parents=True, exist_ok=True)
        dest_path = self._ensure_safe_path(target_dir / unique_filename(filename))

        total = 0
        try:
            with dest_path.open("wb") as out:
                while True:
                    chunk = upload.file.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    total += len(chunk)
                    if self.max_bytes and total > self.max_bytes:
                        raise FileTooLarge(detail=[{"field": field, "reason": "file too large"}])
                    out.write(chunk)
        except Exception:
            self._unlink(dest_path)
            raise

        if total == 0:
            self._unlink(dest_path)
            raise ValidationError(
                "Uploaded file is empty",
                detail=[{"field": field, "reason": "empty file"}],
            )

        return StoredFile(
            path=dest_path.relative_to(self.root).as_posix(),
            original_name=Path(filename).name,
            size_bytes=total,
            content_type=getattr(upload, "content_type", None),
        )

    def _unlink(self, path: Path) -> None:
        try:
            if path.exists():
                path.unlink()
        except OSError:
            logger.warning("Could not remove stored file %s", path)

    def delete(self, relative_path: Optional[str]) -> None:
        if not relative_path:
            return
        try:
            path = self.resolve(relative_path)
        except ValidationError:
            logger.warning("Refusing to delete path outside storage root: %s", relative_path)
            return
        self._unlink(path)

    def exists(self, relative_path: str) -> bool:
        return self.resolve(relative_path).is_file()


def get_storage() -> DocumentStorage:
    return DocumentStorage.from_env()
