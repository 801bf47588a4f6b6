from pathlib import Path
from typing import Optional
import logging
import os
import secrets
import time

logger = logging.getLogger(__name__)


class LocalFileStorage:
    """Flat blob namespace on the local disk, shared by all upload requests"""

    def __init__(self, root: str, url_prefix: Optional[str] = None):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.url_prefix = url_prefix if url_prefix is not None else "/" + self.root.as_posix().strip("/")

    @staticmethod
    def generate_name(original_filename: str, prefix: str = "warenannahme", extension: Optional[str] = None) -> str:
        """Collision resistant name: millisecond timestamp plus a random suffix"""
        if extension is None:
            extension = os.path.splitext(original_filename or "")[1].lower()
        suffix = secrets.randbelow(10 ** 9)
        return f"{prefix}-{int(time.time() * 1000)}-{suffix}{extension}"

    def path(self, name: str) -> Path:
        if not name or name != os.path.basename(name) or name in (".", ".."):
            raise ValueError(f"Invalid storage name: {name!r}")
        return self.root / name

    def temp_path(self, name: str) -> Path:
        return self.path(name).with_name(name + ".tmp")

    def url(self, name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        return f"{self.url_prefix}/{name}"

    def put(self, name: str, data: bytes) -> Path:
        target = self.path(name)
        temp = self.temp_path(name)
        try:
            with open(temp, "wb") as buffer:
                buffer.write(data)
            os.replace(temp, target)
        except OSError:
            temp.unlink(missing_ok=True)
            raise
        return target

    def get(self, name: str) -> bytes:
        return self.path(name).read_bytes()

    def exists(self, name: str) -> bool:
        return self.path(name).exists()

    def size(self, name: str) -> int:
        return self.path(name).stat().st_size

    def delete(self, name: Optional[str]) -> bool:
        """Remove a stored file; missing files are not an error"""
        if not name:
            return False
        try:
            file_path = self.path(name)
        except ValueError:
            logger.warning(f"Refusing to delete invalid storage name: {name!r}")
            return False
        try:
            file_path.unlink()
            return True
        except FileNotFoundError:
            return False
