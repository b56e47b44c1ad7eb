"""
storage.py - Collaborator contracts for byte and metadata storage.

The engine never talks to an object store or a database directly.  It
depends on two small contracts:

    ByteStore      put(data, path_hint) -> StoredObject, delete(url) -> bool
    MetadataStore  save_study(study) -> id, find_study_by_uid(uid),
                   find_patient_by_id(id)

A filesystem store and in-memory stores are provided for local runs and
tests.  Production deployments plug in their own implementations.
"""

import logging
import os
import random
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Optional, Protocol
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from imaging_engine.errors import StorageError
from imaging_engine.models import StoredObject, StudyAggregate

logger = logging.getLogger(__name__)


class ByteStore(Protocol):
    def put(self, data: bytes, path_hint: str) -> StoredObject: ...

    def delete(self, url: str) -> bool: ...


class MetadataStore(Protocol):
    def save_study(self, study: StudyAggregate) -> str: ...

    def find_study_by_uid(self, uid: str) -> Optional[StudyAggregate]: ...

    def find_patient_by_id(self, patient_id: str) -> Optional[dict[str, Any]]: ...


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------

class LocalByteStore:
    """Writes objects below *root* and addresses them with file:// URLs."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path_hint: str) -> Path:
        parts = [p for p in path_hint.replace("\\", "/").split("/") if p not in ("", ".", "..")]
        if not parts:
            raise ValueError(f"Invalid path hint: {path_hint!r}")
        return self.root.joinpath(*parts)

    def put(self, data: bytes, path_hint: str) -> StoredObject:
        target = self._resolve(path_hint)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug("Stored %d bytes at %s", len(data), target)
        return StoredObject(url=target.as_uri(), size_bytes=len(data))

    def delete(self, url: str) -> bool:
        parsed = urlparse(url)
        if parsed.scheme != "file":
            return False
        path = Path(url2pathname(unquote(parsed.path))).resolve()
        if self.root not in path.parents or not path.exists():
            return False
        os.remove(path)
        return True


class InMemoryByteStore:
    """Keeps objects in a dict keyed by ``memory://`` URL."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes, path_hint: str) -> StoredObject:
        url = f"memory://{path_hint}"
        with self._lock:
            self.objects[url] = bytes(data)
        return StoredObject(url=url, size_bytes=len(data))

    def delete(self, url: str) -> bool:
        with self._lock:
            return self.objects.pop(url, None) is not None


class InMemoryMetadataStore:
    """Dict-backed study and patient lookup."""

    def __init__(self, patients: Optional[dict[str, dict[str, Any]]] = None):
        self.patients: dict[str, dict[str, Any]] = dict(patients or {})
        self.studies: dict[str, StudyAggregate] = {}
        self._lock = threading.Lock()

    def add_patient(self, patient_id: str, record: dict[str, Any]) -> None:
        self.patients[patient_id] = {"id": patient_id, **record}

    def save_study(self, study: StudyAggregate) -> str:
        study_id = uuid.uuid4().hex
        with self._lock:
            self.studies[study_id] = study
        return study_id

    def find_study_by_uid(self, uid: str) -> Optional[StudyAggregate]:
        with self._lock:
            return next(
                (s for s in self.studies.values() if s.study_instance_uid == uid), None
            )

    def find_patient_by_id(self, patient_id: str) -> Optional[dict[str, Any]]:
        return self.patients.get(patient_id)


# ---------------------------------------------------------------------------
# Upload with exponential backoff
# ---------------------------------------------------------------------------

def store_with_retry(
    store: ByteStore,
    data: bytes,
    path_hint: str,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
) -> StoredObject:
    """
    Write *data* to *store*, retrying transient failures.

    The delay before each retry is:

        delay = min(base_delay * 2^attempt + uniform(0, 1), max_delay)

    Parameters
    ----------
    store : ByteStore
        Destination store.
    data : bytes
        Object contents.
    path_hint : str
        Suggested object path.
    max_attempts : int
        Maximum number of attempts before giving up.
    base_delay : float
        Starting delay in seconds.
    max_delay : float
        Maximum delay cap in seconds.

    Returns
    -------
    StoredObject

    Raises
    ------
    StorageError
        If every attempt fails.
    """
    last_error: Optional[Exception] = None
    for attempt in range(max_attempts):
        try:
            stored = store.put(data, path_hint)
        except Exception as exc:
            last_error = exc
            if attempt + 1 >= max_attempts:
                break
            delay = min(base_delay * (2 ** attempt) + random.uniform(0, 1), max_delay)
            logger.warning(
                "Store attempt %d/%d failed for %s (%s). Retrying in %.2fs…",
                attempt + 1, max_attempts, path_hint, exc, delay,
            )
            time.sleep(delay)
        else:
            logger.debug("Stored %s (attempt %d).", path_hint, attempt + 1)
            return stored

    logger.error("All %d store attempts failed for %s.", max_attempts, path_hint)
    raise StorageError(f"Failed to store {path_hint}: {last_error}") from last_error
