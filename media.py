import logging
import os
import re
import time
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Optional, Tuple
from urllib.parse import quote

from errors import NoFileUploaded, OversizedUpload
from schemas import MediaKind, MediaReference
from settings import DEFAULT_MAX_UPLOAD_BYTES, UPLOADS_URL_PREFIX

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def now_ms() -> int:
    return int(time.time() * 1000)


def classify(content_type: Optional[str]) -> MediaKind:
    """Map a declared MIME type to a media kind. The client's type is trusted."""
    mime = (content_type or "").lower()
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("audio/"):
        return "audio"
    if mime.startswith("video/"):
        return "video"
    return "file"


def stored_name(original: Optional[str], stamp: Optional[int] = None) -> str:
    """Build `<base>-<millis><ext>` from a client filename.

    Directory parts are discarded and whitespace runs in the base become `-`.
    """
    filename = PurePosixPath((original or "").replace("\\", "/")).name
    stem, ext = os.path.splitext(filename)
    base = re.sub(r"\s+", "-", stem.strip()) or "upload"
    return f"{base}-{stamp if stamp is not None else now_ms()}{ext}"


class MediaStore:
    """Persists uploaded binaries under collision-free names."""

    def __init__(self, directory: Path, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES):
        self.directory = Path(directory)
        self.max_bytes = max_bytes
        self.directory.mkdir(parents=True, exist_ok=True)

    def _open_unique(self, name: str) -> Tuple[Path, BinaryIO]:
        # "x" mode fails if the file exists, so two writers never share a path
        stem, ext = os.path.splitext(name)
        candidate = name
        n = 1
        while True:
            path = self.directory / candidate
            try:
                return path, open(path, "xb")
            except FileExistsError:
                candidate = f"{stem}-{n}{ext}"
                n += 1

    def save(
        self,
        source: Optional[BinaryIO],
        filename: Optional[str],
        content_type: Optional[str],
        size: Optional[int] = None,
    ) -> MediaReference:
        if source is None:
            raise NoFileUploaded()
        if size is not None and size > self.max_bytes:
            raise OversizedUpload()

        path, dest = self._open_unique(stored_name(filename))
        written = 0
        try:
            with dest:
                while True:
                    chunk = source.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.max_bytes:
                        raise OversizedUpload()
                    dest.write(chunk)
        except BaseException:
            path.unlink(missing_ok=True)
            raise

        kind = classify(content_type)
        logger.info("Stored upload %s (%d bytes, %s)", path.name, written, kind)
        return MediaReference(url=f"{UPLOADS_URL_PREFIX}/{quote(path.name)}", kind=kind)

