#!/usr/bin/env python3
"""
test_fenc_files.py
Verifies the file-level helpers ('fenc_files.py'): encrypting and decrypting
files on disk, output naming, container sniffing and header inspection.

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.
"""
import io
import sys

import pytest

from fenc import HEADER_SIZE, VERSION, cipher_block, hash_from_name
from fenc_errors import HeaderFormatError, WrongKeyOrCorruptData
from fenc_files import (
    EXTENSION,
    decrypt_file,
    decrypt_to_stdout,
    detect_fenc_version,
    encrypt_file,
    inspect_container,
    output_path_for,
    process_file,
)

PASSPHRASE = b"correct horse battery staple"
TEST_FILE_CONTENT = b"The quick brown fox jumps over the lazy dog. " * 300
SHA256_ID = hash_from_name("sha256").id


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "source.txt"
    path.write_bytes(TEST_FILE_CONTENT)
    return path


@pytest.fixture
def block():
    return cipher_block(PASSPHRASE)


def test_file_round_trip(tmp_path, source, block):
    container = tmp_path / "source.txt.fenc"
    restored = tmp_path / "restored.txt"

    header = encrypt_file(SHA256_ID, block, str(source), str(container))
    assert header.hash_name == "sha256"
    assert container.stat().st_size > HEADER_SIZE

    decrypt_file(block, str(container), str(restored))
    assert restored.read_bytes() == TEST_FILE_CONTENT


def test_each_file_gets_its_own_iv(tmp_path, source, block):
    a = encrypt_file(SHA256_ID, block, str(source), str(tmp_path / "a.fenc"))
    b = encrypt_file(SHA256_ID, block, str(source), str(tmp_path / "b.fenc"))
    assert a.iv != b.iv
    assert (tmp_path / "a.fenc").read_bytes()[HEADER_SIZE:] != (tmp_path / "b.fenc").read_bytes()[HEADER_SIZE:]


def test_existing_output_needs_overwrite(tmp_path, source, block):
    container = tmp_path / "out.fenc"
    container.write_bytes(b"keep me")
    with pytest.raises(FileExistsError):
        encrypt_file(SHA256_ID, block, str(source), str(container))
    assert container.read_bytes() == b"keep me"

    encrypt_file(SHA256_ID, block, str(source), str(container), overwrite=True)
    assert detect_fenc_version(str(container)) == VERSION


def test_missing_input_creates_no_output(tmp_path, block):
    out = tmp_path / "never.fenc"
    with pytest.raises(FileNotFoundError):
        encrypt_file(SHA256_ID, block, str(tmp_path / "missing.txt"), str(out))
    assert not out.exists()


def test_decrypt_file_wrong_passphrase(tmp_path, source, block):
    container = tmp_path / "source.txt.fenc"
    encrypt_file(SHA256_ID, block, str(source), str(container))
    with pytest.raises(WrongKeyOrCorruptData):
        decrypt_file(cipher_block(b"not the passphrase"), str(container), str(tmp_path / "out.txt"))


def test_decrypt_file_rejects_plain_file(tmp_path, source, block):
    with pytest.raises(HeaderFormatError):
        decrypt_file(block, str(source), str(tmp_path / "out.txt"))


def test_decrypt_to_stdout(tmp_path, source, block, monkeypatch):
    container = tmp_path / "source.txt.fenc"
    encrypt_file(SHA256_ID, block, str(source), str(container))

    fake_stdout = io.TextIOWrapper(io.BytesIO())
    monkeypatch.setattr(sys, "stdout", fake_stdout)
    decrypt_to_stdout(block, str(container))
    assert fake_stdout.buffer.getvalue() == TEST_FILE_CONTENT


def test_status_lines_go_to_stderr(tmp_path, source, block, capsys):
    container = tmp_path / "source.txt.fenc"
    encrypt_file(SHA256_ID, block, str(source), str(container), quiet=False)
    decrypt_file(block, str(container), str(tmp_path / "out.txt"), quiet=False)
    captured = capsys.readouterr()
    assert captured.out == ""
    assert f"[fenc encrypted] -> {container} (sha256)" in captured.err
    assert "[fenc decrypted]" in captured.err


def test_quiet_by_default(tmp_path, source, block, capsys):
    encrypt_file(SHA256_ID, block, str(source), str(tmp_path / "out.fenc"))
    captured = capsys.readouterr()
    assert captured.out == "" and captured.err == ""


def test_output_path_for():
    assert output_path_for("notes.txt") == (True, "notes.txt" + EXTENSION)
    assert output_path_for("notes.txt.fenc") == (False, "notes.txt")
    assert output_path_for("dir/archive.fenc") == (False, "dir/archive")
    with pytest.raises(ValueError):
        output_path_for("dir/.fenc")


def test_process_file_both_directions(tmp_path, source, block):
    container = process_file(block, str(source), hash_name="sha1")
    assert container == str(source) + EXTENSION
    assert inspect_container(container)["hash"] == "sha1"

    source.unlink()
    restored = process_file(block, container)
    assert restored == str(source)
    assert source.read_bytes() == TEST_FILE_CONTENT


def test_detect_fenc_version(tmp_path, source, block):
    container = tmp_path / "c.fenc"
    encrypt_file(SHA256_ID, block, str(source), str(container))
    assert detect_fenc_version(str(container)) == VERSION

    assert detect_fenc_version(str(source)) is None
    assert detect_fenc_version(str(tmp_path / "missing")) is None
    assert detect_fenc_version(str(tmp_path)) is None

    short = tmp_path / "short.fenc"
    short.write_bytes(b"FENC\x01")
    assert detect_fenc_version(str(short)) is None


def test_inspect_container(tmp_path, source, block):
    container = tmp_path / "c.fenc"
    header = encrypt_file(hash_from_name("md5").id, block, str(source), str(container))
    info = inspect_container(str(container))
    assert info["version"] == VERSION
    assert info["hash"] == "md5"
    assert info["hash_id"] == 2
    assert info["digest"] == header.digest.hex()
    assert info["iv"] == header.iv.hex()
    assert info["body_size"] == container.stat().st_size - HEADER_SIZE
    assert info["body_size"] % 16 == 0


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
