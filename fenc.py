#!/usr/bin/env python3
"""
fenc (.fenc) - Single-file encryption container with a self-describing header

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.

Layout:
 - 128-byte header: signature, version, hash id, digest slot, IV, random filler.
 - body: gzip(plaintext) -> PKCS7 padding -> AES-CBC, read until end of input.
 - the digest covers the original plaintext. It is only known after the body is
   written, so the header is written twice: placeholder first, final copy at offset 0.

The digest is an integrity check, not an authentication tag. It detects a wrong
key and accidental corruption; it proves nothing against someone who can rewrite
the whole file.
"""

import os
import shutil
import struct
import tempfile
import zlib
from types import MappingProxyType
from typing import Callable, Iterator, NamedTuple, Optional, Union

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from fenc_errors import (
    HeaderFormatError,
    SeekError,
    UnsupportedAlgorithm,
    UnsupportedVersion,
    WrongKeyOrCorruptData,
)

# === Format identifiers ===
SIGNATURE = b"FENC"
VERSION = 1
HEADER_SIZE = 128
DIGEST_SLOT_SIZE = 64  # room for a 512-bit digest
IV_SIZE = algorithms.AES.block_size // 8
RESERVED_SIZE = HEADER_SIZE - len(SIGNATURE) - 2 - 2 - DIGEST_SLOT_SIZE - IV_SIZE

# signature | version u16 | hash id u16 | digest slot | iv | reserved
_HEADER_STRUCT = struct.Struct(f"<{len(SIGNATURE)}sHH{DIGEST_SLOT_SIZE}s{IV_SIZE}s{RESERVED_SIZE}s")

# === Pipeline settings ===
CHUNK_SIZE = 64 * 1024
COMPRESS_LEVEL = 6
GZIP_WBITS = 16 + zlib.MAX_WBITS  # deflate with gzip header and trailer
SPOOL_SIZE = 8 * 1024 * 1024
DEFAULT_HASH = "sha256"

# === Key sizes ===
AES128_KEY_SIZE = 16
AES192_KEY_SIZE = 24
AES256_KEY_SIZE = 32
FIT_INFO = b"fenc-fit-to-block"


# ----------------------
# Hash registry
# ----------------------
class HashDescriptor(NamedTuple):
    id: int
    name: str
    size: int
    new: Callable[[], hashes.Hash]


def _descriptor(hash_id: int, name: str, algorithm) -> HashDescriptor:
    return HashDescriptor(hash_id, name, algorithm.digest_size, lambda: hashes.Hash(algorithm()))


# Ids match the numbering the container format has always stored on disk.
_HASHES_BY_ID = MappingProxyType({d.id: d for d in (
    _descriptor(2, "md5", hashes.MD5),
    _descriptor(3, "sha1", hashes.SHA1),
    _descriptor(5, "sha256", hashes.SHA256),
    _descriptor(7, "sha512", hashes.SHA512),
)})
_HASHES_BY_NAME = MappingProxyType({d.name: d for d in _HASHES_BY_ID.values()})


def hash_from_name(name: str) -> HashDescriptor:
    try:
        return _HASHES_BY_NAME[name]
    except KeyError:
        raise UnsupportedAlgorithm(f"unsupported hash function: {name!r}") from None


def hash_from_id(hash_id: int) -> HashDescriptor:
    try:
        return _HASHES_BY_ID[hash_id]
    except KeyError:
        raise UnsupportedAlgorithm(f"unsupported hash function id: {hash_id}") from None


def resolve_hash(algorithm: Union[str, int]) -> HashDescriptor:
    """Look a hash up by name (``"sha256"``) or by its on-disk id (``5``)."""
    if isinstance(algorithm, str):
        return hash_from_name(algorithm)
    return hash_from_id(algorithm)


def supported_hashes() -> list:
    return [_HASHES_BY_ID[i].name for i in sorted(_HASHES_BY_ID)]


# ----------------------
# Key fitting
# ----------------------
def fit_to_block(data: bytes, size: int) -> bytes:
    """Stretch or squeeze ``data`` to exactly ``size`` bytes.

    HKDF-SHA256 with no salt and a fixed info string: the same passphrase always
    gives the same key, and every byte of the passphrase affects every key byte.
    """
    hkdf = HKDF(algorithm=hashes.SHA256(), length=size, salt=None, info=FIT_INFO)
    return hkdf.derive(data)


def fit_key(passphrase: Union[bytes, str], fit: Callable[[bytes, int], bytes] = fit_to_block) -> bytes:
    """Turn a passphrase of any length into an AES-128/192/256 key.

    Lengths 16, 24 and 32 are used as they are, anything longer is cut to 32
    bytes, an empty passphrase becomes 16 zero bytes, and the lengths in between
    go through ``fit`` up to the next key size.
    """
    if isinstance(passphrase, str):
        passphrase = passphrase.encode("utf-8")
    n = len(passphrase)
    if n == 0:
        return bytes(AES128_KEY_SIZE)
    if n in (AES128_KEY_SIZE, AES192_KEY_SIZE, AES256_KEY_SIZE):
        return bytes(passphrase)
    if n > AES256_KEY_SIZE:
        return bytes(passphrase[:AES256_KEY_SIZE])
    if n > AES192_KEY_SIZE:
        return fit(passphrase, AES256_KEY_SIZE)
    if n > AES128_KEY_SIZE:
        return fit(passphrase, AES192_KEY_SIZE)
    return fit(passphrase, AES128_KEY_SIZE)


def cipher_block(passphrase: Union[bytes, str], fit: Callable[[bytes, int], bytes] = fit_to_block) -> algorithms.AES:
    return algorithms.AES(fit_key(passphrase, fit))


# ----------------------
# Header
# ----------------------
def _read_exact(source, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        chunk = source.read(size - len(buf))
        if not chunk:
            break
        buf.extend(chunk)
    return bytes(buf)


class Header:
    """The 128-byte preamble of a container.

    A fresh header has no digest until ``set_digest`` is called; a parsed one
    carries the digest sliced to its algorithm's size and is not modified again.
    """

    def __init__(self, hash_id: int, iv: bytes, version: int = VERSION):
        self._hash = hash_from_id(hash_id)
        if len(iv) != IV_SIZE:
            raise ValueError(f"header: invalid iv size {len(iv)}, expected {IV_SIZE}")
        self.version = version
        self.iv = bytes(iv)
        self.digest: Optional[bytes] = None

    @classmethod
    def new(cls, hash_id: int, iv: Optional[bytes] = None) -> "Header":
        if iv is None:
            iv = os.urandom(IV_SIZE)
        return cls(hash_id, iv)

    @property
    def hash_id(self) -> int:
        return self._hash.id

    @property
    def hash_name(self) -> str:
        return self._hash.name

    @property
    def digest_size(self) -> int:
        return self._hash.size

    def new_hash(self) -> hashes.Hash:
        return self._hash.new()

    def set_digest(self, digest: bytes) -> None:
        if self.digest is not None:
            raise ValueError("header: digest already set")
        if len(digest) != self._hash.size:
            raise ValueError(f"header: wrong digest size {len(digest)} for {self._hash.name}")
        self.digest = bytes(digest)

    def pack(self) -> bytes:
        # Unused digest bytes and the reserved area are random so a placeholder
        # header carries no run of zeros.
        slot = self.digest or b""
        slot += os.urandom(DIGEST_SLOT_SIZE - len(slot))
        return _HEADER_STRUCT.pack(SIGNATURE, self.version, self.hash_id, slot, self.iv, os.urandom(RESERVED_SIZE))

    @classmethod
    def unpack(cls, raw: bytes) -> "Header":
        if len(raw) != HEADER_SIZE:
            raise HeaderFormatError(f"header: read {len(raw)} of {HEADER_SIZE} bytes")
        signature, version, hash_id, slot, iv, _ = _HEADER_STRUCT.unpack(raw)
        if signature != SIGNATURE:
            raise HeaderFormatError("header: signature mismatch")
        if version > VERSION:
            raise UnsupportedVersion(f"header: unsupported version {version} (newest known is {VERSION})")
        try:
            hg = hash_from_id(hash_id)
        except UnsupportedAlgorithm:
            raise UnsupportedAlgorithm(f"header: unrecognized hash ID={hash_id}") from None
        h = cls(hash_id, iv, version=version)
        h.digest = slot[:hg.size]
        return h

    def write(self, sink) -> None:
        sink.write(self.pack())

    def update(self, sink) -> None:
        """Rewrite the header at offset 0 and go back to where the sink was."""
        try:
            end = sink.tell()
            sink.seek(0)
        except (AttributeError, OSError) as e:
            raise SeekError(f"header: failed to seek file start: {e}") from e
        self.write(sink)
        sink.seek(end)

    @classmethod
    def read(cls, source) -> "Header":
        return cls.unpack(_read_exact(source, HEADER_SIZE))

    def __repr__(self) -> str:
        digest = self.digest.hex() if self.digest is not None else None
        return f"Header(version={self.version}, hash={self.hash_name!r}, digest={digest}, iv={self.iv.hex()})"


# ----------------------
# ENCRYPT
# ----------------------
def _check_sink(sink) -> None:
    seekable = getattr(sink, "seekable", None)
    if seekable is None:
        return
    if not seekable():
        raise SeekError("encrypt: sink cannot seek back to offset 0 (use encrypt_stream)")
    position = sink.tell()
    if position != 0:
        raise ValueError(f"encrypt: sink must start at offset 0, not {position}")


def encrypt(hash_id: int, block: algorithms.AES, iv: Optional[bytes], source, sink) -> Header:
    """Write one container for everything ``source`` yields.

    ``sink`` must be seekable and positioned at 0: the header is written as a
    placeholder, the body is streamed, then the header is rewritten with the
    plaintext digest. Returns the final header.
    """
    header = Header.new(hash_id, iv)
    _check_sink(sink)
    hasher = header.new_hash()
    header.write(sink)

    encryptor = Cipher(block, modes.CBC(header.iv)).encryptor()
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    gzipper = zlib.compressobj(COMPRESS_LEVEL, zlib.DEFLATED, GZIP_WBITS)

    def emit(data: bytes) -> None:
        if data:
            sink.write(encryptor.update(padder.update(data)))

    while True:
        chunk = source.read(CHUNK_SIZE)
        if not chunk:
            break
        hasher.update(chunk)
        emit(gzipper.compress(chunk))
    emit(gzipper.flush())
    sink.write(encryptor.update(padder.finalize()) + encryptor.finalize())

    header.set_digest(hasher.finalize())
    header.update(sink)
    return header


def encrypt_stream(hash_id: int, block: algorithms.AES, iv: Optional[bytes], source, sink,
                   spool_size: int = SPOOL_SIZE) -> Header:
    """Like ``encrypt`` but also works for pipes and sockets.

    When ``sink`` cannot be rewound to a start at offset 0 the container is built
    in a spooled temporary file (memory up to ``spool_size``, disk beyond) and
    copied out once the header is final.
    """
    seekable = getattr(sink, "seekable", None)
    if seekable is not None and seekable() and sink.tell() == 0:
        return encrypt(hash_id, block, iv, source, sink)

    with tempfile.SpooledTemporaryFile(max_size=spool_size) as spool:
        header = encrypt(hash_id, block, iv, source, spool)
        spool.seek(0)
        shutil.copyfileobj(spool, sink, CHUNK_SIZE)
    return header


# --------------------
# DECRYPT
# --------------------
def _inflate(gunzipper, data: bytes) -> Iterator[bytes]:
    # One gzip member only; pieces are capped at CHUNK_SIZE.
    while data:
        if gunzipper.eof:
            raise WrongKeyOrCorruptData("decrypt failed: data after the end of the compressed stream")
        try:
            piece = gunzipper.decompress(data, CHUNK_SIZE)
        except zlib.error as e:
            raise WrongKeyOrCorruptData() from e
        if gunzipper.unused_data:
            raise WrongKeyOrCorruptData("decrypt failed: data after the end of the compressed stream")
        data = gunzipper.unconsumed_tail
        if piece:
            yield piece


def _finish_inflate(gunzipper) -> bytes:
    try:
        rest = gunzipper.flush()
    except zlib.error as e:
        raise WrongKeyOrCorruptData() from e
    if not gunzipper.eof:
        raise WrongKeyOrCorruptData("decrypt failed: compressed stream is truncated")
    return rest


def decrypt(block: algorithms.AES, source, sink) -> Header:
    """Read one container from ``source`` and write the plaintext to ``sink``.

    Raises ``HeaderFormatError`` (or a subclass) before any body byte is read,
    and ``WrongKeyOrCorruptData`` when the body does not decompress cleanly or the
    plaintext digest differs from the header. Bytes already written to ``sink``
    are not usable after a failure.
    """
    header = Header.read(source)
    hasher = header.new_hash()

    decryptor = Cipher(block, modes.CBC(header.iv)).decryptor()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    gunzipper = zlib.decompressobj(GZIP_WBITS)

    def drain(pieces) -> None:
        for piece in pieces:
            hasher.update(piece)
            sink.write(piece)

    while True:
        chunk = source.read(CHUNK_SIZE)
        if not chunk:
            break
        drain(_inflate(gunzipper, unpadder.update(decryptor.update(chunk))))

    try:
        tail = unpadder.update(decryptor.finalize()) + unpadder.finalize()
    except ValueError as e:
        raise WrongKeyOrCorruptData() from e
    drain(_inflate(gunzipper, tail))
    rest = _finish_inflate(gunzipper)
    if rest:
        drain([rest])

    if hasher.finalize() != header.digest:
        raise WrongKeyOrCorruptData()
    return header
