"""Sequential zip reader for non-seekable streams.

DSU packages arrive as zip files, often straight from an HTTP download, so
the central directory at the end of the file is never available. Entries are
read one local file header at a time, the same way ``unzip -`` would.

Supported:
    - STORED and DEFLATED entries
    - Entries whose sizes follow the data in a data descriptor (bit 3)
    - Zip64 sizes in the local extra field and in data descriptors
"""

from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional, Tuple

from dsu_sideloader.logging import get_logger

from .exceptions import InvalidPackageError


log = get_logger(source="archive", tags=["install", "archive"])

LOCAL_FILE_HEADER_SIGNATURE = 0x04034B50
CENTRAL_DIRECTORY_SIGNATURE = 0x02014B50
END_OF_CENTRAL_DIRECTORY_SIGNATURE = 0x06054B50
ZIP64_END_OF_CENTRAL_DIRECTORY_SIGNATURE = 0x06064B50
DATA_DESCRIPTOR_SIGNATURE = 0x08074B50

# version, flags, method, mtime, mdate, crc32, csize, usize, name_len, extra_len
_LOCAL_HEADER = struct.Struct("<5HIIIHH")
_EXTRA_HEADER = struct.Struct("<HH")

METHOD_STORED = 0
METHOD_DEFLATED = 8

FLAG_ENCRYPTED = 0x0001
FLAG_DATA_DESCRIPTOR = 0x0008
FLAG_UTF8 = 0x0800

ZIP64_EXTRA_ID = 0x0001
ZIP64_MARKER = 0xFFFFFFFF


@dataclass(frozen=True)
class ArchiveEntry:
    """Metadata from one local file header."""

    name: str
    method: int
    flags: int
    crc32: int
    compressed_size: int  # 0 when deferred to a data descriptor
    file_size: int  # 0 when deferred to a data descriptor
    zip64: bool = False

    @property
    def has_data_descriptor(self) -> bool:
        return bool(self.flags & FLAG_DATA_DESCRIPTOR)

    @property
    def is_encrypted(self) -> bool:
        return bool(self.flags & FLAG_ENCRYPTED)

    @property
    def is_dir(self) -> bool:
        return self.name.endswith("/")

    @property
    def sizes_known(self) -> bool:
        return not self.has_data_descriptor or self.compressed_size > 0


class _PushbackReader:
    """Wraps a stream so over-read bytes can be handed back."""

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._pushback = b""

    def read(self, size: int) -> bytes:
        if self._pushback:
            data = self._pushback[:size]
            self._pushback = self._pushback[size:]
            return data
        return self._stream.read(size)

    def read_exact(self, size: int) -> bytes:
        """Read ``size`` bytes, returning fewer only at end of stream."""
        parts = []
        remaining = size
        while remaining > 0:
            data = self.read(remaining)
            if not data:
                break
            parts.append(data)
            remaining -= len(data)
        return b"".join(parts)

    def unread(self, data: bytes) -> None:
        self._pushback = data + self._pushback

    def skip(self, size: int, chunk_size: int) -> int:
        skipped = 0
        while skipped < size:
            data = self.read(min(chunk_size, size - skipped))
            if not data:
                break
            skipped += len(data)
        return skipped


class EntryReader:
    """File-like view of the uncompressed body of the current entry."""

    def __init__(self, source: _PushbackReader, entry: ArchiveEntry, chunk_size: int):
        self._source = source
        self.entry = entry
        self._chunk_size = chunk_size
        self._compressed_remaining: Optional[int] = (
            entry.compressed_size if entry.sizes_known else None
        )
        self._decompressor = (
            zlib.decompressobj(-zlib.MAX_WBITS)
            if entry.method == METHOD_DEFLATED
            else None
        )
        self._crc = 0
        self._size = 0
        self._started = False
        self._finished = False

    @property
    def bytes_read(self) -> int:
        return self._size

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            parts = []
            while True:
                data = self.read(self._chunk_size)
                if not data:
                    return b"".join(parts)
                parts.append(data)
        if self._finished or size == 0:
            return b""
        self._check_readable()
        self._started = True
        if self._decompressor is not None:
            return self._read_deflated(size)
        return self._read_stored(size)

    def skip(self) -> None:
        """Consume whatever is left of the entry."""
        if self._finished:
            return
        if self._compressed_remaining is not None:
            skipped = self._source.skip(self._compressed_remaining, self._chunk_size)
            if skipped < self._compressed_remaining:
                raise InvalidPackageError("unexpected end of archive", self.entry.name)
            self._compressed_remaining = 0
            self._finished = True
            if self.entry.has_data_descriptor:
                self._read_data_descriptor()
            return
        if self._decompressor is None:
            raise InvalidPackageError(
                "cannot skip a stored entry of unknown size", self.entry.name
            )
        while self.read(self._chunk_size):
            pass

    def _check_readable(self) -> None:
        if self.entry.is_encrypted:
            raise InvalidPackageError("encrypted entries are not supported", self.entry.name)
        if self.entry.method not in (METHOD_STORED, METHOD_DEFLATED):
            raise InvalidPackageError(
                f"unsupported compression method {self.entry.method}", self.entry.name
            )
        if self._decompressor is None and self._compressed_remaining is None:
            raise InvalidPackageError(
                "stored entry without sizes in its local header", self.entry.name
            )

    def _read_compressed(self) -> bytes:
        if self._compressed_remaining is None:
            return self._source.read(self._chunk_size)
        if self._compressed_remaining == 0:
            return b""
        data = self._source.read(min(self._chunk_size, self._compressed_remaining))
        self._compressed_remaining -= len(data)
        return data

    def _read_stored(self, size: int) -> bytes:
        if self._compressed_remaining == 0:
            self._finish()
            return b""
        data = self._source.read(min(size, self._compressed_remaining))
        if not data:
            raise InvalidPackageError("unexpected end of archive", self.entry.name)
        self._compressed_remaining -= len(data)
        self._account(data)
        if self._compressed_remaining == 0:
            self._finish()
        return data

    def _read_deflated(self, size: int) -> bytes:
        decompressor = self._decompressor
        while not decompressor.eof:
            data = decompressor.unconsumed_tail or self._read_compressed()
            if not data:
                out = decompressor.flush()
                if not decompressor.eof:
                    raise InvalidPackageError("unexpected end of archive", self.entry.name)
                if out:
                    self._account(out)
                    self._finish()
                    return out
                break
            try:
                out = decompressor.decompress(data, size)
            except zlib.error as error:
                raise InvalidPackageError(
                    f"corrupt deflate data: {error}", self.entry.name
                ) from error
            if decompressor.eof and decompressor.unused_data:
                if self._compressed_remaining is None:
                    self._source.unread(decompressor.unused_data)
            if out:
                self._account(out)
                if decompressor.eof:
                    self._finish()
                return out
        self._finish()
        return b""

    def _account(self, data: bytes) -> None:
        self._crc = zlib.crc32(data, self._crc)
        self._size += len(data)

    def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        if self._compressed_remaining:
            # Padding after the end of the deflate stream
            self._source.skip(self._compressed_remaining, self._chunk_size)
            self._compressed_remaining = 0
        expected_crc = self.entry.crc32
        expected_size = self.entry.file_size
        if self.entry.has_data_descriptor:
            expected_crc, expected_size = self._read_data_descriptor()
        if self._crc != expected_crc:
            raise InvalidPackageError("CRC mismatch", self.entry.name)
        if self._size != expected_size:
            raise InvalidPackageError(
                f"size mismatch ({self._size} != {expected_size})", self.entry.name
            )

    def _read_data_descriptor(self) -> Tuple[int, int]:
        size_format = "<QQ" if self.entry.zip64 else "<II"
        first = self._source.read_exact(4)
        if len(first) < 4:
            raise InvalidPackageError("missing data descriptor", self.entry.name)
        (value,) = struct.unpack("<I", first)
        if value == DATA_DESCRIPTOR_SIGNATURE:
            crc_bytes = self._source.read_exact(4)
            if len(crc_bytes) < 4:
                raise InvalidPackageError("missing data descriptor", self.entry.name)
            (crc,) = struct.unpack("<I", crc_bytes)
        else:
            crc = value
        sizes = self._source.read_exact(struct.calcsize(size_format))
        if len(sizes) < struct.calcsize(size_format):
            raise InvalidPackageError("missing data descriptor", self.entry.name)
        _compressed_size, file_size = struct.unpack(size_format, sizes)
        return crc, file_size


def _parse_zip64_extra(extra: bytes, file_size: int, compressed_size: int) -> Tuple[int, int]:
    offset = 0
    while offset + _EXTRA_HEADER.size <= len(extra):
        header_id, data_size = _EXTRA_HEADER.unpack_from(extra, offset)
        offset += _EXTRA_HEADER.size
        data = extra[offset : offset + data_size]
        offset += data_size
        if header_id != ZIP64_EXTRA_ID:
            continue
        position = 0
        if file_size == ZIP64_MARKER and position + 8 <= len(data):
            (file_size,) = struct.unpack_from("<Q", data, position)
            position += 8
        if compressed_size == ZIP64_MARKER and position + 8 <= len(data):
            (compressed_size,) = struct.unpack_from("<Q", data, position)
        break
    return file_size, compressed_size


def _has_zip64_extra(extra: bytes) -> bool:
    offset = 0
    while offset + _EXTRA_HEADER.size <= len(extra):
        header_id, data_size = _EXTRA_HEADER.unpack_from(extra, offset)
        if header_id == ZIP64_EXTRA_ID:
            return True
        offset += _EXTRA_HEADER.size + data_size
    return False


class StreamingZipReader:
    """Iterates the entries of a zip stream in archive order.

    Each entry body must be consumed (or abandoned) before the iterator
    advances; the reader skips whatever the caller left unread.

    Example:
        for entry, body in StreamingZipReader(stream):
            if entry.name.endswith(".img"):
                shutil.copyfileobj(body, target)
    """

    def __init__(self, stream: BinaryIO, chunk_size: int = 8192):
        self._source = _PushbackReader(stream)
        self.chunk_size = chunk_size

    def __iter__(self) -> Iterator[Tuple[ArchiveEntry, EntryReader]]:
        return self.entries()

    def entries(self) -> Iterator[Tuple[ArchiveEntry, EntryReader]]:
        first = True
        while True:
            signature_bytes = self._source.read_exact(4)
            if not signature_bytes:
                if first:
                    raise InvalidPackageError("package is empty")
                log.debug("Archive ended without a central directory")
                return
            if len(signature_bytes) < 4:
                raise InvalidPackageError("unexpected end of archive")
            (signature,) = struct.unpack("<I", signature_bytes)
            if signature in (
                CENTRAL_DIRECTORY_SIGNATURE,
                END_OF_CENTRAL_DIRECTORY_SIGNATURE,
                ZIP64_END_OF_CENTRAL_DIRECTORY_SIGNATURE,
            ):
                return
            if signature != LOCAL_FILE_HEADER_SIGNATURE:
                raise InvalidPackageError(f"unexpected signature 0x{signature:08x}")
            first = False
            entry = self._read_local_header()
            reader = EntryReader(self._source, entry, self.chunk_size)
            yield entry, reader
            reader.skip()

    def _read_local_header(self) -> ArchiveEntry:
        header = self._source.read_exact(_LOCAL_HEADER.size)
        if len(header) < _LOCAL_HEADER.size:
            raise InvalidPackageError("truncated local file header")
        (
            _version,
            flags,
            method,
            _mtime,
            _mdate,
            crc32,
            compressed_size,
            file_size,
            name_length,
            extra_length,
        ) = _LOCAL_HEADER.unpack(header)
        raw_name = self._source.read_exact(name_length)
        extra = self._source.read_exact(extra_length)
        if len(raw_name) < name_length or len(extra) < extra_length:
            raise InvalidPackageError("truncated local file header")
        encoding = "utf-8" if flags & FLAG_UTF8 else "cp437"
        name = raw_name.decode(encoding, errors="replace")
        zip64 = _has_zip64_extra(extra)
        if zip64:
            file_size, compressed_size = _parse_zip64_extra(
                extra, file_size, compressed_size
            )
        if flags & FLAG_DATA_DESCRIPTOR and compressed_size == 0:
            file_size = 0
        return ArchiveEntry(
            name=name,
            method=method,
            flags=flags,
            crc32=crc32,
            compressed_size=compressed_size,
            file_size=file_size,
            zip64=zip64,
        )
