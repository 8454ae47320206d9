"""
Stream buffering and content hashing.
"""

from __future__ import annotations

import hashlib
import io
from typing import BinaryIO

_READ_SIZE = 64 * 1024


def ensure_seekable(stream: BinaryIO) -> BinaryIO:
    """
    Return ``stream`` itself when it supports seeking, otherwise an in-memory
    copy of its remaining bytes. Hashing and parsing both re-read the content.
    """
    try:
        seekable = stream.seekable()
    except (AttributeError, ValueError):
        seekable = False

    if seekable:
        return stream
    return io.BytesIO(stream.read())


def content_hash(stream: BinaryIO) -> str:
    """
    SHA-256 hex digest of the whole stream. The stream is rewound before and
    after reading, so it must be seekable.
    """
    digest = hashlib.sha256()
    stream.seek(0)
    for block in iter(lambda: stream.read(_READ_SIZE), b""):
        digest.update(block)
    stream.seek(0)
    return digest.hexdigest()


def stream_size(stream: BinaryIO) -> int:
    position = stream.tell()
    size = stream.seek(0, io.SEEK_END)
    stream.seek(position)
    return size
