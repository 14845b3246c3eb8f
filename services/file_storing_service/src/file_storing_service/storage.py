import hashlib
import re
from pathlib import Path, PurePath
from typing import BinaryIO

CHUNK_SIZE = 1024 * 1024  # 1MB
MAX_STEM_LENGTH = 100

_DANGEROUS_PATH = re.compile(r"(\.\.(\\|/))|(%2e%2e)|(%252e%252e)", re.IGNORECASE)
_INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

TEXT_EXTENSIONS = {
    ".txt", ".md", ".csv", ".log", ".json", ".xml", ".yml", ".yaml", ".ini",
    ".html", ".css", ".js", ".ts", ".py", ".java", ".cs", ".cpp", ".h", ".sql", ".sh",
}


def write_stream(source: BinaryIO, destination: Path) -> tuple[int, str]:
    """Copy ``source`` into ``destination`` chunk by chunk, returning size and sha256."""
    destination.parent.mkdir(parents=True, exist_ok=True)

    hasher = hashlib.sha256()
    size = 0

    with destination.open("wb") as out:
        while True:
            chunk = source.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            hasher.update(chunk)
            out.write(chunk)

    return size, hasher.hexdigest()


def safe_file_name(original: str | None, work_id: int) -> str:
    """Build the on-disk name ``<work_id>_<stem><ext>`` from a client-supplied name."""
    name = PurePath((original or "").replace("\\", "/")).name
    name = _INVALID_NAME_CHARS.sub("", name).strip(" .")
    if not name:
        return f"{work_id}_file.bin"

    path = PurePath(name)
    suffix = path.suffix
    stem = path.stem[:MAX_STEM_LENGTH] or str(work_id)
    return f"{work_id}_{stem}{suffix}"


def is_path_safe(file_path: str, base_dir: str) -> bool:
    if not file_path or _DANGEROUS_PATH.search(file_path):
        return False
    full = Path(file_path).resolve()
    base = Path(base_dir).resolve()
    return full == base or base in full.parents


def is_text_file(file_name: str) -> bool:
    return PurePath(file_name).suffix.lower() in TEXT_EXTENSIONS


def storage_usage(base_dir: str) -> tuple[bool, int, int]:
    """(exists, file count, total bytes) for the storage root."""
    root = Path(base_dir)
    if not root.is_dir():
        return False, 0, 0
    files = [p for p in root.iterdir() if p.is_file()]
    return True, len(files), sum(p.stat().st_size for p in files)
