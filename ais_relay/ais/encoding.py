"""Bit-level primitives for AIS payload construction.

Bitstrings are plain ``str`` objects of '0'/'1' characters, assembled
field by field in the order ITU-R M.1371 defines.
"""

from typing import Optional

# Six-bit character table, index == six-bit code
SIXBIT_TABLE = "@ABCDEFGHIJKLMNOPQRSTUVWXYZ[\\]^_ !\"#$%&'()*+,-./0123456789:;<=>?"

SPACE_FILL = " "
CALLSIGN_FILL = "@"


class EncodingError(ValueError):
    """Raised when a value cannot be represented in its AIS field."""

    pass


def uint_bits(value: int, width: int) -> str:
    """Render an unsigned integer as a fixed-width bitstring."""
    value = int(value)
    if value < 0 or value >= 1 << width:
        raise EncodingError(f"{value} does not fit {width} unsigned bits")
    return format(value, f"0{width}b")


def twos_complement(value: int, width: int) -> int:
    """Map a signed integer onto an unsigned field of ``width`` bits.

    Callers must clamp beforehand; out-of-range magnitudes are rejected.
    """
    value = int(value)
    limit = 1 << (width - 1)
    if value < -limit or value >= limit:
        raise EncodingError(f"{value} does not fit {width} signed bits")
    if value < 0:
        value += 1 << width
    return value


def int_bits(value: int, width: int) -> str:
    """Render a signed integer as a two's complement bitstring."""
    return uint_bits(twos_complement(value, width), width)


def sixbit_encode(index: int) -> str:
    """Armor a six-bit value (0-63) as its printable payload character."""
    if index < 0 or index > 63:
        raise EncodingError(f"6-bit value out of range: {index}")
    return chr(index + 48) if index <= 39 else chr(index + 56)


def sixbit_decode(char: str) -> int:
    """Reverse of :func:`sixbit_encode`."""
    code = ord(char)
    if 48 <= code <= 87:
        return code - 48
    if 96 <= code <= 119:
        return code - 56
    raise EncodingError(f"Invalid payload character: {char!r}")


def text_to_sixbit(text: Optional[str], length: int, fill: str = SPACE_FILL) -> str:
    """Encode text as ``length`` six-bit characters.

    The text is uppercased and truncated or padded with ``fill``. Characters
    outside the AIS alphabet are replaced by ``fill`` as well, so name fields
    use space and callsign fields use '@'.
    """
    fill_index = SIXBIT_TABLE.index(fill)
    text = (text or "").upper()[:length].ljust(length, fill)

    bits = []
    for char in text:
        index = SIXBIT_TABLE.find(char)
        if index < 0:
            index = fill_index
        bits.append(format(index, "06b"))
    return "".join(bits)


def callsign_to_sixbit(callsign: Optional[str]) -> str:
    """Encode a callsign as 7 '@'-filled characters (42 bits)."""
    return text_to_sixbit((callsign or "").strip(), 7, fill=CALLSIGN_FILL)


def fill_bits_for(bit_length: int) -> int:
    """Zero bits needed to reach the next multiple of six."""
    return (6 - bit_length % 6) % 6


def bits_to_payload(bits: str) -> str:
    """Pad a bitstring to whole sextets and armor it."""
    bits = bits + "0" * fill_bits_for(len(bits))
    return "".join(sixbit_encode(int(bits[i:i + 6], 2)) for i in range(0, len(bits), 6))


def payload_to_bits(payload: str) -> str:
    """Expand an armored payload back into its (padded) bitstring."""
    return "".join(format(sixbit_decode(char), "06b") for char in payload)


def checksum(sentence: str) -> str:
    """NMEA checksum: XOR of every character after a leading '!' or '$'."""
    if sentence[:1] in ("!", "$"):
        sentence = sentence[1:]
    value = 0
    for char in sentence:
        value ^= ord(char)
    return f"{value:02X}"


class BitBuilder:
    """Accumulates fixed-width fields into one bitstring."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._length = 0

    def _append(self, bits: str) -> "BitBuilder":
        self._parts.append(bits)
        self._length += len(bits)
        return self

    def uint(self, value: int, width: int) -> "BitBuilder":
        return self._append(uint_bits(value, width))

    def signed(self, value: int, width: int) -> "BitBuilder":
        return self._append(int_bits(value, width))

    def text(self, text: Optional[str], length: int, fill: str = SPACE_FILL) -> "BitBuilder":
        return self._append(text_to_sixbit(text, length, fill))

    def callsign(self, callsign: Optional[str]) -> "BitBuilder":
        return self._append(callsign_to_sixbit(callsign))

    def pad_to(self, length: int) -> "BitBuilder":
        if self._length < length:
            self._append("0" * (length - self._length))
        return self

    @property
    def bits(self) -> str:
        return "".join(self._parts)

    def __len__(self) -> int:
        return self._length
