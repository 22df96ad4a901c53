"""Per-image writer lock.

An image file is the only resource shared by all partition groups of a
batch. Writes into it are serialized per image path so partition groups may
be processed from several threads without two writers on one file.

Usage:
    from wic_patch.storage.image_lock import image_write_lock

    with image_write_lock(image):
        copier.copy_in(scratch, image, info)
"""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Union

from wic_patch.logging import LoggerFactory


log = LoggerFactory.for_system()

# Guards the registry, not the images themselves
_registry_lock = threading.Lock()
_image_locks: dict[str, threading.Lock] = {}
_active_writers: dict[str, int] = {}


def _key(image: Union[str, Path]) -> str:
    return os.path.realpath(str(image))


def _lock_for(key: str) -> threading.Lock:
    with _registry_lock:
        lock = _image_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _image_locks[key] = lock
        return lock


@contextmanager
def image_write_lock(image: Union[str, Path]) -> Generator[None, None, None]:
    """Hold the single writer slot of an image for the duration of the block."""
    key = _key(image)
    lock = _lock_for(key)
    with lock:
        with _registry_lock:
            _active_writers[key] = _active_writers.get(key, 0) + 1
        log.debug(f"Write lock acquired for {key}")
        try:
            yield
        finally:
            with _registry_lock:
                _active_writers[key] -= 1
                if _active_writers[key] == 0:
                    del _active_writers[key]
            log.debug(f"Write lock released for {key}")


def is_image_locked(image: Union[str, Path]) -> bool:
    """Check whether a writer currently holds the image."""
    with _registry_lock:
        return _active_writers.get(_key(image), 0) > 0
