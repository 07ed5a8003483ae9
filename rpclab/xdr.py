"""External Data Representation (XDR) encoding and decoding."""

from __future__ import annotations

import struct

_INT = struct.Struct(">i")
_UINT = struct.Struct(">I")
_UHYPER = struct.Struct(">Q")


class XdrError(ValueError):
    """Raised when a value cannot be encoded or a buffer cannot be decoded."""


def _padding(length: int) -> int:
    return (4 - length % 4) % 4


class Packer:
    """Accumulates XDR-encoded values into a byte buffer."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def _pack(self, fmt: struct.Struct, value: int, name: str) -> None:
        try:
            self._buffer += fmt.pack(value)
        except struct.error as err:
            raise XdrError(f"{name} out of range: {value!r}") from err

    def pack_int(self, value: int) -> None:
        """Encode a signed 32-bit integer."""
        self._pack(_INT, value, "int")

    def pack_uint(self, value: int) -> None:
        """Encode an unsigned 32-bit integer."""
        self._pack(_UINT, value, "unsigned int")

    def pack_uhyper(self, value: int) -> None:
        """Encode an unsigned 64-bit integer."""
        self._pack(_UHYPER, value, "unsigned hyper")

    def pack_fixed_opaque(self, data: bytes) -> None:
        """Encode bytes whose length both sides already know, padded to 4."""
        self._buffer += bytes(data)
        self._buffer += b"\0" * _padding(len(data))

    def pack_opaque(self, data: bytes, max_length: int | None = None) -> None:
        """Encode length-prefixed bytes, refusing more than ``max_length``."""
        if max_length is not None and len(data) > max_length:
            raise XdrError(f"opaque of {len(data)} bytes exceeds limit {max_length}")
        self.pack_uint(len(data))
        self.pack_fixed_opaque(data)

    def pack_string(self, value: str | bytes, max_length: int | None = None) -> None:
        """Encode a string as UTF-8, refusing more than ``max_length`` bytes."""
        if isinstance(value, str):
            value = value.encode("utf-8")
        self.pack_opaque(value, max_length)

    def get_buffer(self) -> bytes:
        """Return everything packed so far."""
        return bytes(self._buffer)


class Unpacker:
    """Reads XDR-encoded values from a byte buffer in order."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def _take(self, size: int) -> bytes:
        end = self._pos + size
        if size < 0 or end > len(self._data):
            raise XdrError("buffer too short")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def unpack_int(self) -> int:
        """Decode a signed 32-bit integer."""
        return _INT.unpack(self._take(4))[0]

    def unpack_uint(self) -> int:
        """Decode an unsigned 32-bit integer."""
        return _UINT.unpack(self._take(4))[0]

    def unpack_uhyper(self) -> int:
        """Decode an unsigned 64-bit integer."""
        return _UHYPER.unpack(self._take(8))[0]

    def unpack_fixed_opaque(self, size: int) -> bytes:
        """Decode ``size`` bytes and skip their padding."""
        data = self._take(size)
        self._take(_padding(size))
        return data

    def unpack_opaque(self, max_length: int | None = None) -> bytes:
        """Decode length-prefixed bytes, refusing more than ``max_length``."""
        length = self.unpack_uint()
        if max_length is not None and length > max_length:
            raise XdrError(f"opaque of {length} bytes exceeds limit {max_length}")
        return self.unpack_fixed_opaque(length)

    def unpack_string(self, max_length: int | None = None) -> str:
        """Decode a UTF-8 string, refusing more than ``max_length`` bytes."""
        raw = self.unpack_opaque(max_length)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as err:
            raise XdrError("string is not valid UTF-8") from err

    def done(self) -> None:
        """Raise if any bytes are left unread."""
        if self._pos < len(self._data):
            raise XdrError(f"{len(self._data) - self._pos} unread bytes left")