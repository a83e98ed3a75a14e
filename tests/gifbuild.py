"""Build small GIF files in memory for the probe tests."""
import struct
from typing import List, Optional, Sequence

TRAILER = b"\x3B"


def lzw_encode(indices: Sequence[int], min_code_size: int,
               deferred_clear: bool = False) -> bytes:
    """GIF LZW encode.

    By default a clear code is sent when the table is about to fill. With
    ``deferred_clear`` the full table is simply kept for the rest of the
    stream, which decoders must also accept.
    """
    clear_code = 1 << min_code_size
    end_code = clear_code + 1
    out = bytearray()
    acc = 0
    nbits = 0

    def emit(code: int, width: int) -> None:
        nonlocal acc, nbits
        acc |= code << nbits
        nbits += width
        while nbits >= 8:
            out.append(acc & 0xFF)
            acc >>= 8
            nbits -= 8

    def fresh():
        return {(i,): i for i in range(clear_code)}, min_code_size + 1, end_code + 1

    table, width, next_code = fresh()
    last_code = 4096 if deferred_clear else 4095
    emit(clear_code, width)
    prefix = ()
    for px in indices:
        candidate = prefix + (px,)
        if candidate in table:
            prefix = candidate
            continue
        emit(table[prefix], width)
        # the decoder widens one code later than it learns the entry
        if next_code >= (1 << width) and width < 12:
            width += 1
        if next_code < last_code:
            table[candidate] = next_code
            next_code += 1
        elif not deferred_clear:
            emit(clear_code, width)
            table, width, next_code = fresh()
        prefix = (px,)
    if prefix:
        emit(table[prefix], width)
        if next_code >= (1 << width) and width < 12:
            width += 1
    emit(end_code, width)
    if nbits:
        out.append(acc & 0xFF)
    return bytes(out)


def sub_blocks(data: bytes) -> bytes:
    out = bytearray()
    for i in range(0, len(data), 255):
        chunk = data[i:i+255]
        out.append(len(chunk))
        out += chunk
    out.append(0)
    return bytes(out)


def size_exp(size: int) -> int:
    return size.bit_length() - 2


def color_table(size: int) -> bytes:
    return bytes((i * 7) & 0xFF for i in range(3 * size))


def screen(width: int, height: int, gct_size: Optional[int] = None,
           version: bytes = b"GIF89a") -> bytes:
    packed = 0
    table = b""
    if gct_size:
        packed = 0x80 | size_exp(gct_size)
        table = color_table(gct_size)
    return version + struct.pack("<HHBBB", width, height, packed, 0, 0) + table


def gce(delay_cs: int = 0, disposal: int = 0, transparent_index: Optional[int] = None) -> bytes:
    packed = (disposal << 2) | (1 if transparent_index is not None else 0)
    return struct.pack("<BBBBHBB", 0x21, 0xF9, 4, packed, delay_cs,
                       transparent_index or 0, 0)


def image(width: int, height: int, indices: Optional[List[int]] = None,
          lct_size: Optional[int] = None, min_code_size: int = 2,
          interlace: bool = False, data: Optional[bytes] = None) -> bytes:
    if indices is None:
        indices = [0] * (width * height)
    packed = 0
    table = b""
    if lct_size:
        packed |= 0x80 | size_exp(lct_size)
        table = color_table(lct_size)
    if interlace:
        packed |= 0x40
    if data is None:
        data = lzw_encode(indices, min_code_size)
    return (struct.pack("<BHHHHB", 0x2C, 0, 0, width, height, packed) + table
            + bytes([min_code_size]) + sub_blocks(data))


def comment(text: bytes = b"made by hand") -> bytes:
    return b"\x21\xFE" + sub_blocks(text)


def netscape_loop(loops: int = 0) -> bytes:
    return (b"\x21\xFF\x0bNETSCAPE2.0" + bytes([3, 1]) + struct.pack("<H", loops)
            + b"\x00")


def plain_text() -> bytes:
    return b"\x21\x01\x0c" + bytes(12) + sub_blocks(b"hi")
