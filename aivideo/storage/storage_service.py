"""Storage service - opaque sink/source for composed artifacts."""

import shutil
from pathlib import Path
from typing import Any, BinaryIO, Optional, Protocol, Union

from aivideo.core.config import Settings

StoragePayload = Union[bytes, BinaryIO, Path]


class StorageService(Protocol):
    """Interface the composition pipeline hands finished files to."""

    def put(self, key: str, data: StoragePayload, content_type: str, length: Optional[int] = None) -> str: ...

    def presigned_url(self, key: str, expires_seconds: int = 3600) -> str: ...


class LocalStorageService:
    """Stores objects on the local filesystem under ``storage_path/objects``."""

    def __init__(self, settings: Settings, logger: Any):
        """
        Initialize local storage.

        Args:
            settings: Application settings
            logger: Logger instance
        """
        self.settings = settings
        self.logger = logger
        self.root = Path(settings.storage_path) / "objects"
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        path = (self.root / key.lstrip("/")).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Storage key escapes storage root: {key}")
        return path

    def put(self, key: str, data: StoragePayload, content_type: str, length: Optional[int] = None) -> str:
        """
        Store an object.

        Args:
            key: Object key (relative path)
            data: Bytes, a binary stream or a local file path
            content_type: MIME type (recorded in logs only)
            length: Expected size in bytes, checked when given

        Returns:
            The key the object was stored under
        """
        target = self._path_for(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, Path):
            shutil.copyfile(data, target)
        elif isinstance(data, (bytes, bytearray)):
            target.write_bytes(data)
        else:
            with open(target, "wb") as f:
                shutil.copyfileobj(data, f)

        size = target.stat().st_size
        if length is not None and size != length:
            target.unlink()
            raise IOError(f"Stored {size} bytes for {key}, expected {length}")
        self.logger.info(f"Stored {key} ({content_type}, {size} bytes)")
        return key

    def presigned_url(self, key: str, expires_seconds: int = 3600) -> str:
        """Local objects never expire; returns a file:// URL."""
        return self._path_for(key).as_uri()

    def local_path(self, key: str) -> Path:
        """Filesystem path of a stored object."""
        return self._path_for(key)
