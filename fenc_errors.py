"""
fenc - Exception hierarchy for the .fenc container codec

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.
"""


class FencError(Exception):
    """Base class for every error raised by the fenc codec."""


class HeaderFormatError(FencError, ValueError):
    """The 128-byte container header is missing, short or malformed."""


class UnsupportedVersion(HeaderFormatError):
    """The container was written by a newer format version than this reader knows."""


class UnsupportedAlgorithm(HeaderFormatError):
    """Unknown hash algorithm name or numeric id."""


class WrongKeyOrCorruptData(FencError, ValueError):
    """Decryption produced data that failed decompression or digest verification."""

    def __init__(self, message: str = "decrypt failed (wrong password?)"):
        super().__init__(message)


class SeekError(FencError, IOError):
    """The sink could not rewind to offset 0 to finalize the header."""
