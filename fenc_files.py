#!/usr/bin/env python3
"""
fenc (.fenc) - File-level helpers around the container codec

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.

Opening, naming and sniffing files. Whether an input is readable, whether an
output may be replaced and what to do with a half-written output after a
failure is left to the caller.
"""
import os
import struct
import sys
from typing import Any, Dict, Optional, Tuple

from cryptography.hazmat.primitives.ciphers import algorithms

from fenc import (
    DEFAULT_HASH,
    HEADER_SIZE,
    IV_SIZE,
    SIGNATURE,
    Header,
    decrypt,
    encrypt,
    hash_from_name,
)

EXTENSION = ".fenc"
_VERSION_PROBE_SIZE = len(SIGNATURE) + 2


def _status(quiet: bool, message: str) -> None:
    if not quiet:
        print(message, file=sys.stderr)


def _output_mode(overwrite: bool) -> str:
    return "wb" if overwrite else "xb"


def encrypt_file(hash_id: int, block: algorithms.AES, input_path: str, output_path: str,
                 overwrite: bool = False, quiet: bool = True) -> Header:
    """Encrypt ``input_path`` into a new container at ``output_path`` with a fresh random IV."""
    with open(input_path, "rb") as inf, open(output_path, _output_mode(overwrite)) as outf:
        header = encrypt(hash_id, block, os.urandom(IV_SIZE), inf, outf)
    _status(quiet, f"[fenc encrypted] -> {output_path} ({header.hash_name})")
    return header


def decrypt_file(block: algorithms.AES, input_path: str, output_path: str,
                 overwrite: bool = False, quiet: bool = True) -> Header:
    with open(input_path, "rb") as inf, open(output_path, _output_mode(overwrite)) as outf:
        header = decrypt(block, inf, outf)
    _status(quiet, f"[fenc decrypted] -> {output_path} (format: V{header.version}, hash: {header.hash_name})")
    return header


def decrypt_to_stdout(block: algorithms.AES, input_path: str) -> Header:
    out = sys.stdout.buffer
    with open(input_path, "rb") as inf:
        header = decrypt(block, inf, out)
    out.flush()
    return header


def output_path_for(path: str) -> Tuple[bool, str]:
    """Return ``(encrypting, output_path)``: containers lose the extension, anything else gains it."""
    if os.path.basename(path) == EXTENSION:
        raise ValueError(f"Cannot derive an output name from {path!r}")
    if path.endswith(EXTENSION):
        return False, path[:-len(EXTENSION)]
    return True, path + EXTENSION


def process_file(block: algorithms.AES, path: str, hash_name: str = DEFAULT_HASH,
                 overwrite: bool = False, quiet: bool = True) -> str:
    """Encrypt or decrypt ``path`` depending on its extension; returns the output path."""
    encrypting, output_path = output_path_for(path)
    if encrypting:
        encrypt_file(hash_from_name(hash_name).id, block, path, output_path, overwrite=overwrite, quiet=quiet)
    else:
        decrypt_file(block, path, output_path, overwrite=overwrite, quiet=quiet)
    return output_path


def detect_fenc_version(filepath: str) -> Optional[int]:
    """Container version from the first bytes of ``filepath``, or None if it is not a container."""
    if not os.path.isfile(filepath):
        return None
    try:
        with open(filepath, "rb") as f:
            head = f.read(_VERSION_PROBE_SIZE)
    except OSError:
        return None

    if len(head) < _VERSION_PROBE_SIZE or head[:len(SIGNATURE)] != SIGNATURE:
        return None
    return struct.unpack("<H", head[len(SIGNATURE):])[0]


def inspect_container(filepath: str) -> Dict[str, Any]:
    with open(filepath, "rb") as f:
        header = Header.read(f)
    return {
        "version": header.version,
        "hash": header.hash_name,
        "hash_id": header.hash_id,
        "digest": header.digest.hex(),
        "iv": header.iv.hex(),
        "body_size": os.path.getsize(filepath) - HEADER_SIZE,
    }
