"""
Streaming codec readers and writers.

Every supported compression format is exposed through the same small
interface:

- ``CodecReader.read_chunk()`` returns decoded bytes, ``b""`` at end of stream
- ``CodecWriter.write_chunk(data)`` / ``finish()`` / ``close()``

Readers and writers own their file handle and close it exactly once. Writers
for gzip, BGZF and xz cut the byte stream into independent blocks and
compress them on a bounded thread pool; results are written back in
submission order so the output is one valid stream whatever the worker
count. zstd uses the zstandard library's own worker threads. Workers only
ever see opaque byte blocks.
"""

from __future__ import annotations

import bz2
import gzip
import logging
import lzma
import struct
import zlib
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from types import TracebackType
from typing import BinaryIO, ClassVar

import zstandard

from dehost.core.compression import Codec, sniff_stream
from dehost.core.constants import (
    BGZF_BLOCK_SIZE,
    BGZF_EOF,
    BGZF_MAX_BLOCK_SIZE,
    BZIP2_DEFAULT_LEVEL,
    GZIP_BLOCK_SIZE,
    GZIP_DEFAULT_LEVEL,
    READ_CHUNK_SIZE,
    XZ_BLOCK_SIZE,
    XZ_DEFAULT_LEVEL,
    ZSTD_DEFAULT_LEVEL,
)
from dehost.core.exceptions import FormatError

logger = logging.getLogger(__name__)


# =============================================================================
# Readers
# =============================================================================


class CodecReader:
    """Decoded byte stream over a (possibly compressed) file.

    Subclasses wrap ``raw`` in a decompressing stream. Decompression errors
    are reported as ``FormatError`` carrying the compressed byte offset.
    """

    decode_errors: ClassVar[tuple[type[BaseException], ...]] = ()

    def __init__(self, raw: BinaryIO, path: Path, codec: Codec = Codec.NONE):
        self.path = path
        self.codec = codec
        self._raw = raw
        self._closed = False
        self._stream = self._open_stream(raw)

    def _open_stream(self, raw: BinaryIO) -> BinaryIO:
        return raw

    def read_chunk(self, size: int = READ_CHUNK_SIZE) -> bytes:
        """Return up to ``size`` decoded bytes; ``b""`` signals end of stream."""
        try:
            return self._stream.read(size)
        except self.decode_errors as e:
            if not self._is_corrupt(e):
                raise
            raise FormatError(
                self.path,
                f"corrupt {self.codec.value} stream ({e})",
                offset=self._raw_offset(),
            ) from e

    def _is_corrupt(self, error: BaseException) -> bool:
        """Whether a caught decode error means bad input rather than failed I/O."""
        return True

    def _raw_offset(self) -> int | None:
        try:
            return self._raw.tell()
        except (OSError, ValueError):
            return None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._stream is not self._raw:
                self._stream.close()
        finally:
            self._raw.close()

    def __enter__(self) -> CodecReader:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class GzipReader(CodecReader):
    """Reads gzip and BGZF (both are sequences of gzip members)."""

    decode_errors = (gzip.BadGzipFile, EOFError, zlib.error)

    def _open_stream(self, raw: BinaryIO) -> BinaryIO:
        return gzip.GzipFile(fileobj=raw, mode="rb")


class Bzip2Reader(CodecReader):
    # bz2 reports invalid data as an OSError without an errno
    decode_errors = (OSError, EOFError)

    def _is_corrupt(self, error: BaseException) -> bool:
        return not isinstance(error, OSError) or error.errno is None

    def _open_stream(self, raw: BinaryIO) -> BinaryIO:
        return bz2.BZ2File(raw, mode="rb")


class XzReader(CodecReader):
    decode_errors = (lzma.LZMAError, EOFError)

    def _open_stream(self, raw: BinaryIO) -> BinaryIO:
        return lzma.LZMAFile(raw, mode="rb")


class ZstdReader(CodecReader):
    """Reads one or more zstd frames, one decompression object per frame.

    Running out of input inside a frame is a truncated stream and raises
    ``FormatError``.
    """

    def _open_stream(self, raw: BinaryIO) -> BinaryIO:
        self._decompressor = zstandard.ZstdDecompressor()
        self._frame: zstandard.ZstdDecompressionObj | None = None
        self._unused = b""
        self._decoded = bytearray()
        self._exhausted = False
        return raw

    def read_chunk(self, size: int = READ_CHUNK_SIZE) -> bytes:
        while len(self._decoded) < size and not self._exhausted:
            self._decode_more()
        chunk = bytes(self._decoded[:size])
        del self._decoded[:size]
        return chunk

    def _decode_more(self) -> None:
        data = self._unused or self._raw.read(READ_CHUNK_SIZE)
        self._unused = b""
        if not data:
            if self._frame is not None:
                raise FormatError(
                    self.path,
                    "truncated zstd stream (input ended inside a frame)",
                    offset=self._raw_offset(),
                )
            self._exhausted = True
            return

        if self._frame is None:
            self._frame = self._decompressor.decompressobj()
        try:
            self._decoded += self._frame.decompress(data)
        except zstandard.ZstdError as e:
            raise FormatError(
                self.path, f"corrupt zstd stream ({e})", offset=self._raw_offset()
            ) from e
        if self._frame.eof:
            self._unused = self._frame.unused_data
            self._frame = None


_READERS: dict[Codec, type[CodecReader]] = {
    Codec.NONE: CodecReader,
    Codec.GZIP: GzipReader,
    Codec.BGZF: GzipReader,
    Codec.BZIP2: Bzip2Reader,
    Codec.XZ: XzReader,
    Codec.ZSTD: ZstdReader,
}


def open_reader(path: Path) -> CodecReader:
    """Open ``path`` for decoded reading, detecting its codec from magic bytes.

    Args:
        path: Read file, compressed with any supported codec or not at all.

    Returns:
        Reader owning the file handle.

    Raises:
        OSError: If the file cannot be opened.
    """
    raw = path.open("rb")
    try:
        codec = sniff_stream(raw)
        logger.debug("Detected %s compression for %s", codec.value, path)
        return _READERS[codec](raw, path, codec)
    except BaseException:
        raw.close()
        raise


# =============================================================================
# Writers
# =============================================================================


class CodecWriter:
    """Encoding byte sink that owns its output handle.

    ``finish()`` writes any trailer and flushes; it is idempotent. Leaving the
    context manager with an exception closes the handle without finishing.
    """

    codec: ClassVar[Codec] = Codec.NONE

    def __init__(self, handle: BinaryIO, *, threads: int = 1, level: int | None = None):
        self._handle = handle
        self.threads = max(1, threads)
        self.level = level
        self.bytes_written = 0
        self._finished = False
        self._closed = False

    def write_chunk(self, data: bytes) -> None:
        if self._finished:
            msg = "write_chunk() called after finish()"
            raise ValueError(msg)
        self.bytes_written += len(data)
        self._encode(data)

    def _encode(self, data: bytes) -> None:
        self._handle.write(data)

    def _finalize(self) -> None:
        """Flush encoder state and write the trailer."""

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._finalize()
        self._handle.flush()

    def _release(self) -> None:
        """Free encoder resources (thread pools, contexts)."""

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._release()
        finally:
            self._handle.close()

    def __enter__(self) -> CodecWriter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is None:
                self.finish()
        finally:
            self.close()


class BlockWriter(CodecWriter):
    """Writer that compresses fixed-size blocks as self-contained members.

    With ``threads > 1`` blocks are compressed on a ``ThreadPoolExecutor``;
    at most ``2 * threads`` blocks are in flight and completed blocks are
    written strictly in submission order.
    """

    block_size: ClassVar[int]

    def __init__(self, handle: BinaryIO, *, threads: int = 1, level: int | None = None):
        super().__init__(handle, threads=threads, level=level)
        self._buffer = bytearray()
        self._pending: deque[Future[bytes]] = deque()
        self._blocks = 0
        self._pool = (
            ThreadPoolExecutor(
                max_workers=self.threads,
                thread_name_prefix=f"dehost-{self.codec.value}",
            )
            if self.threads > 1
            else None
        )

    def compress_block(self, block: bytes) -> bytes:
        """Compress one block into an independently decodable unit."""
        raise NotImplementedError

    def _encode(self, data: bytes) -> None:
        self._buffer += data
        while len(self._buffer) >= self.block_size:
            block = bytes(self._buffer[: self.block_size])
            del self._buffer[: self.block_size]
            self._submit(block)

    def _submit(self, block: bytes) -> None:
        self._blocks += 1
        if self._pool is None:
            self._handle.write(self.compress_block(block))
            return
        self._pending.append(self._pool.submit(self.compress_block, block))
        while len(self._pending) >= 2 * self.threads:
            self._handle.write(self._pending.popleft().result())

    def _trailer(self) -> bytes:
        return b""

    def _finalize(self) -> None:
        if self._buffer:
            self._submit(bytes(self._buffer))
            self._buffer.clear()
        while self._pending:
            self._handle.write(self._pending.popleft().result())
        self._handle.write(self._trailer())

    def _release(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True, cancel_futures=True)
            self._pool = None
        self._pending.clear()


class GzipWriter(BlockWriter):
    """Multi-member gzip output, one member per block."""

    codec = Codec.GZIP
    block_size = GZIP_BLOCK_SIZE

    def compress_block(self, block: bytes) -> bytes:
        level = GZIP_DEFAULT_LEVEL if self.level is None else self.level
        return gzip.compress(block, compresslevel=level, mtime=0)

    def _trailer(self) -> bytes:
        # An empty run still yields a decodable gzip file
        if self._blocks == 0:
            return self.compress_block(b"")
        return b""


class BgzfWriter(BlockWriter):
    """Blocked gzip (BGZF) output, terminated by the standard EOF block."""

    codec = Codec.BGZF
    block_size = BGZF_BLOCK_SIZE

    def compress_block(self, block: bytes) -> bytes:
        level = GZIP_DEFAULT_LEVEL if self.level is None else self.level
        deflated = _raw_deflate(block, level)
        if len(deflated) + 26 > BGZF_MAX_BLOCK_SIZE:
            deflated = _raw_deflate(block, 0)
        header = struct.pack(
            "<4BIBBHBBHH",
            0x1F, 0x8B, 8, 4,  # magic, deflate, FEXTRA
            0,  # mtime
            0, 0xFF,  # xfl, os
            6,  # xlen
            ord("B"), ord("C"), 2,
            len(deflated) + 25,  # total block size - 1
        )
        trailer = struct.pack("<II", zlib.crc32(block), len(block))
        return header + deflated + trailer

    def _trailer(self) -> bytes:
        return BGZF_EOF


def _raw_deflate(data: bytes, level: int) -> bytes:
    compressor = zlib.compressobj(level, zlib.DEFLATED, -15)
    return compressor.compress(data) + compressor.flush()


class XzWriter(BlockWriter):
    """Concatenated xz streams, one per block."""

    codec = Codec.XZ
    block_size = XZ_BLOCK_SIZE

    def compress_block(self, block: bytes) -> bytes:
        preset = XZ_DEFAULT_LEVEL if self.level is None else self.level
        return lzma.compress(
            block, format=lzma.FORMAT_XZ, check=lzma.CHECK_CRC64, preset=preset
        )

    def _trailer(self) -> bytes:
        if self._blocks == 0:
            return self.compress_block(b"")
        return b""


class Bzip2Writer(CodecWriter):
    codec = Codec.BZIP2

    def __init__(self, handle: BinaryIO, *, threads: int = 1, level: int | None = None):
        super().__init__(handle, threads=threads, level=level)
        if self.threads > 1:
            logger.debug("bzip2 compression is single-threaded; ignoring threads=%d", threads)
        self._compressor = bz2.BZ2Compressor(BZIP2_DEFAULT_LEVEL if level is None else level)

    def _encode(self, data: bytes) -> None:
        self._handle.write(self._compressor.compress(data))

    def _finalize(self) -> None:
        self._handle.write(self._compressor.flush())


class ZstdWriter(CodecWriter):
    codec = Codec.ZSTD

    def __init__(self, handle: BinaryIO, *, threads: int = 1, level: int | None = None):
        super().__init__(handle, threads=threads, level=level)
        compressor = zstandard.ZstdCompressor(
            level=ZSTD_DEFAULT_LEVEL if level is None else level,
            threads=self.threads if self.threads > 1 else 0,
            write_checksum=True,
        )
        self._stream = compressor.stream_writer(handle, closefd=False)

    def _encode(self, data: bytes) -> None:
        self._stream.write(data)

    def _finalize(self) -> None:
        self._stream.flush(zstandard.FLUSH_FRAME)


_WRITERS: dict[Codec, type[CodecWriter]] = {
    Codec.NONE: CodecWriter,
    Codec.GZIP: GzipWriter,
    Codec.BGZF: BgzfWriter,
    Codec.BZIP2: Bzip2Writer,
    Codec.XZ: XzWriter,
    Codec.ZSTD: ZstdWriter,
}


def open_writer(
    path: Path,
    codec: Codec,
    *,
    threads: int = 1,
    level: int | None = None,
) -> CodecWriter:
    """Create ``path`` and return a writer encoding with ``codec``.

    Args:
        path: Destination file (created or truncated).
        codec: Output compression.
        threads: Worker threads for block-parallel codecs.
        level: Compression level; codec default when None.

    Raises:
        OSError: If the file cannot be created.
    """
    handle = path.open("wb")
    try:
        return _WRITERS[codec](handle, threads=threads, level=level)
    except BaseException:
        handle.close()
        raise
