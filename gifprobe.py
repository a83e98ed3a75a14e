#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
GIF transparency probe (no external deps)

Answers one question cheaply: does this GIF *actually* show transparent
pixels? A transparent index that is declared but never drawn does not count.
A few structural facts are collected along the way.

For the common GIF there are only two ways to end up with real transparency:
- the first frame draws pixels with its transparent index, or
- a later frame is disposed with "restore to background". The format says
  to fill with the background color, but every viewer clears to transparent.

So only the first frame is ever LZW-decoded (and only if it declares a
transparent index); all other frames are walked structurally and their
pixel data is skipped. Nothing is composited.

Budgets (duration, canvas pixels, memory) abort the probe. It either succeeds
or it doesn't: any file that fails to probe should be treated as invalid.

Usage examples:
    python gifprobe.py -i file.gif
    python gifprobe.py -i - -j 60000 -d 16777216 < file.gif

Example output:
    {"alpha":false,"max_colors":256,"duration":2670,"frames":40,"width":480,"height":270}
"""
from __future__ import annotations
import argparse
import json
import logging
import sys
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, List, Optional, Union

logger = logging.getLogger(__name__)

# -----------------------------
# Errors
# -----------------------------
class GIFError(Exception):
    pass


class Malformed(GIFError):
    """Structurally invalid file: bad signature, block or extension."""


class Truncated(Malformed):
    pass


class CorruptStream(Malformed):
    """Invalid LZW data in the first frame."""


class ResourceExceeded(GIFError):
    def __init__(self, resource: str, used: int, limit: int):
        super().__init__(f"{resource} budget exceeded ({used} > {limit})")
        self.resource = resource
        self.used = used
        self.limit = limit


class Empty(GIFError):
    pass

# -----------------------------
# GIF structures
# -----------------------------
SIGNATURES = (b"GIF87a", b"GIF89a")

EXTENSION_INTRODUCER = 0x21
IMAGE_SEPARATOR = 0x2C
TRAILER = 0x3B

GRAPHIC_CONTROL_LABEL = 0xF9
COMMENT_LABEL = 0xFE
PLAIN_TEXT_LABEL = 0x01
APPLICATION_LABEL = 0xFF
# Contents never matter to the probe, only their extent
SKIPPED_EXTENSIONS = frozenset((COMMENT_LABEL, PLAIN_TEXT_LABEL, APPLICATION_LABEL))

MAX_LZW_BITS = 12
MAX_LZW_CODES = 1 << MAX_LZW_BITS
# palette indices are single bytes
MAX_MIN_CODE_SIZE = 8


class Disposal(IntEnum):
    UNSPECIFIED = 0
    DO_NOT_DISPOSE = 1
    RESTORE_TO_BACKGROUND = 2
    RESTORE_TO_PREVIOUS = 3

    @classmethod
    def from_packed(cls, value: int) -> "Disposal":
        # 4-7 are reserved
        return cls(value) if value <= cls.RESTORE_TO_PREVIOUS else cls.UNSPECIFIED


@dataclass
class LogicalScreen:
    width: int
    height: int
    gct_flag: bool
    gct_size_exp: int  # size = 2^(N+1)
    bg_color_index: int
    pixel_aspect_ratio: int

    @property
    def gct_size(self) -> int:
        return 2 ** (self.gct_size_exp + 1) if self.gct_flag else 0


@dataclass
class ImageDescriptor:
    left: int
    top: int
    width: int
    height: int
    lct_flag: bool
    interlace: bool
    lct_size_exp: int

    @property
    def lct_size(self) -> int:
        return 2 ** (self.lct_size_exp + 1) if self.lct_flag else 0

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass
class GraphicControl:
    disposal: Disposal
    transparent_index: Optional[int]
    delay_cs: int  # centiseconds

    @property
    def delay_ms(self) -> int:
        return self.delay_cs * 10


@dataclass
class FrameRecord:
    index: int
    disposal: Disposal
    delay_ms: int
    width: int
    height: int
    # Set only for frame 0, and only when its transparent index is usable
    transparent_index: Optional[int] = None
    indices: Optional[bytearray] = None


@dataclass(frozen=True)
class ProbeResult:
    alpha: bool
    max_colors: int
    duration_ms: int
    frame_count: int
    width: int
    height: int

    def to_dict(self) -> dict:
        return {
            "alpha": self.alpha,
            "max_colors": self.max_colors,
            "duration": self.duration_ms,
            "frames": self.frame_count,
            "width": self.width,
            "height": self.height,
        }

# -----------------------------
# Byte cursor
# -----------------------------
class ByteCursor:
    """Forward-only reader over a binary stream (file, pipe or BytesIO)."""

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._scratch = memoryview(bytearray(255))
        self.offset = 0

    def read_exact(self, n: int) -> bytes:
        b = self._stream.read(n)
        # pipes may hand back short reads before EOF
        while len(b) < n:
            more = self._stream.read(n - len(b))
            if not more:
                raise Truncated(f"Unexpected EOF at offset {self.offset + len(b)} "
                                f"while reading {n} bytes")
            b += more
        self.offset += n
        return b

    def read_u8(self) -> int:
        return self.read_exact(1)[0]

    def read_u16le(self) -> int:
        b = self.read_exact(2)
        return b[0] | (b[1] << 8)

    def read_sub_blocks(self, skip: bool = False) -> Union[bytes, int]:
        """Consume a sub-block chain through its zero-length terminator.

        Returns the joined payload, or with ``skip`` the number of payload
        bytes thrown away. Skipped payload goes through one fixed scratch
        buffer so later frames cost no allocation.
        """
        if skip:
            total = 0
            while True:
                n = self.read_u8()
                if n == 0:
                    return total
                self._discard(n)
                total += n
        chunks = []
        while True:
            n = self.read_u8()
            if n == 0:
                return b"".join(chunks)
            chunks.append(self.read_exact(n))

    def _discard(self, n: int) -> None:
        readinto = getattr(self._stream, "readinto", None)
        got = 0
        while got < n:
            if readinto is not None:
                k = readinto(self._scratch[got:n])
            else:
                # read()-only streams: chunks are at most one sub-block long
                k = len(self._stream.read(n - got))
            if not k:
                raise Truncated(f"Unexpected EOF at offset {self.offset + got} "
                                f"inside a {n}-byte sub-block")
            got += k
        self.offset += n

# -----------------------------
# LZW decompression for GIF
# -----------------------------

def lzw_decode(min_code_size: int, data: bytes, pixel_count: int,
               stop_at: Optional[int] = None) -> bytearray:
    """Decode GIF LZW data into color table indices, in raster order.

    Sub-block framing must already be removed from ``data``. Decoding ends at
    the end code or once ``pixel_count`` indices exist; with ``stop_at`` it
    also ends as soon as that index is produced, so the result may be short.
    """
    if not 1 <= min_code_size <= MAX_MIN_CODE_SIZE:
        raise CorruptStream(f"LZW: invalid minimum code size {min_code_size}")

    clear_code = 1 << min_code_size
    end_code = clear_code + 1
    code_size = min_code_size + 1
    code_mask = (1 << code_size) - 1

    # clear and end keep their slots so codes index the table directly
    table: List[bytes] = [bytes((i,)) for i in range(clear_code)] + [b"", b""]
    next_code = end_code + 1
    prev: Optional[bytes] = None

    out = bytearray()
    total = len(data)
    pos = 0
    acc = 0
    nbits = 0

    while len(out) < pixel_count:
        while nbits < code_size:
            if pos >= total:
                raise CorruptStream("LZW: data ended before end code")
            acc |= data[pos] << nbits
            pos += 1
            nbits += 8
        code = acc & code_mask
        acc >>= code_size
        nbits -= code_size

        if code == clear_code:
            del table[end_code + 1:]
            code_size = min_code_size + 1
            code_mask = (1 << code_size) - 1
            next_code = end_code + 1
            prev = None
            continue
        if code == end_code:
            break

        if code < next_code:
            entry = table[code]
        elif code == next_code and prev is not None:
            # KwKwK case
            entry = prev + prev[:1]
        else:
            raise CorruptStream(f"LZW: code {code} out of range (next free {next_code})")

        out += entry

        # Full table: keep decoding with it until the encoder sends a clear
        if prev is not None and next_code < MAX_LZW_CODES:
            table.append(prev + entry[:1])
            next_code += 1
            if next_code == (1 << code_size) and code_size < MAX_LZW_BITS:
                code_size += 1
                code_mask = (1 << code_size) - 1
        prev = entry

        if stop_at is not None and stop_at in entry:
            break

    del out[pixel_count:]
    return out

# -----------------------------
# Resource budgets
# -----------------------------
@dataclass
class Limits:
    # None or 0 disables a budget
    max_duration: Optional[int] = None  # ms
    max_pixels: Optional[int] = None  # canvas width*height
    max_memory: Optional[int] = None  # bytes


class ResourceGovernor:
    """Checks the probe against its budgets at fixed points of the parse.

    Memory is tracked as the bytes currently held: the global color table
    for the whole parse, plus the local color table and frame 0 index buffer
    while their frame is being read.
    """

    def __init__(self, limits: Optional[Limits] = None):
        self.limits = limits or Limits()
        self.resident = 0

    def check_pixels(self, width: int, height: int) -> None:
        limit = self.limits.max_pixels
        area = width * height
        if limit and area > limit:
            raise ResourceExceeded("pixels", area, limit)

    def check_duration(self, duration_ms: int) -> None:
        limit = self.limits.max_duration
        if limit and duration_ms > limit:
            raise ResourceExceeded("duration", duration_ms, limit)

    def reserve(self, nbytes: int, what: str) -> None:
        limit = self.limits.max_memory
        wanted = self.resident + nbytes
        if limit and wanted > limit:
            raise ResourceExceeded("memory", wanted, limit)
        self.resident = wanted
        logger.debug("reserved %d bytes for %s (%d resident)", nbytes, what, wanted)

    def release(self, nbytes: int) -> None:
        self.resident -= nbytes

# -----------------------------
# Accumulated facts
# -----------------------------
@dataclass
class ProbeAccumulator:
    width: int = 0
    height: int = 0
    max_colors: int = 0
    duration_ms: int = 0
    frame_count: int = 0
    alpha: bool = False

    def add_color_table(self, size: int) -> None:
        self.max_colors = max(self.max_colors, size)

    def add_frame(self, frame: FrameRecord) -> None:
        self.frame_count += 1
        self.duration_ms += frame.delay_ms

    def mark_alpha(self) -> None:
        self.alpha = True

    def finish(self) -> ProbeResult:
        if self.frame_count == 0:
            raise Empty("Trailer reached without any image blocks")
        return ProbeResult(self.alpha, self.max_colors, self.duration_ms,
                           self.frame_count, self.width, self.height)

# -----------------------------
# Parsing
# -----------------------------

def read_header(cur: ByteCursor) -> str:
    header = cur.read_exact(6)
    if header not in SIGNATURES:
        raise Malformed("Not a GIF file (missing GIF87a/89a)")
    return header.decode("ascii")


def read_logical_screen(cur: ByteCursor) -> LogicalScreen:
    width = cur.read_u16le()
    height = cur.read_u16le()
    packed = cur.read_u8()
    bg_color_index = cur.read_u8()
    pixel_aspect_ratio = cur.read_u8()
    return LogicalScreen(width, height,
                         gct_flag=(packed & 0b1000_0000) != 0,
                         gct_size_exp=packed & 0b0000_0111,
                         bg_color_index=bg_color_index,
                         pixel_aspect_ratio=pixel_aspect_ratio)


def skip_color_table(cur: ByteCursor, size: int, governor: ResourceGovernor,
                     what: str) -> None:
    governor.reserve(3 * size, what)
    # only the size is used; the colors themselves are never looked at
    cur.read_exact(3 * size)


def read_graphic_control(cur: ByteCursor) -> GraphicControl:
    block_size = cur.read_u8()
    if block_size != 4:
        raise Malformed(f"Bad GCE block size {block_size}")
    packed = cur.read_u8()
    delay_cs = cur.read_u16le()
    transparent_index = cur.read_u8()
    if cur.read_u8() != 0:
        raise Malformed("Missing GCE block terminator")
    transparent_flag = (packed & 1) == 1
    return GraphicControl(Disposal.from_packed((packed >> 2) & 0b111),
                          transparent_index if transparent_flag else None,
                          delay_cs)


def read_image_descriptor(cur: ByteCursor) -> ImageDescriptor:
    left = cur.read_u16le()
    top = cur.read_u16le()
    width = cur.read_u16le()
    height = cur.read_u16le()
    packed = cur.read_u8()
    return ImageDescriptor(left, top, width, height,
                           lct_flag=(packed & 0b1000_0000) != 0,
                           interlace=(packed & 0b0100_0000) != 0,
                           lct_size_exp=packed & 0b0000_0111)


def usable_transparent_index(gce: Optional[GraphicControl], table_size: int) -> Optional[int]:
    """Transparent index of ``gce`` if it can address the frame's color table."""
    if gce is None or gce.transparent_index is None:
        return None
    # no color table at all: any byte value may be drawn
    if gce.transparent_index >= (table_size or 256):
        return None
    return gce.transparent_index


def read_frame(cur: ByteCursor, index: int, gce: Optional[GraphicControl],
               gct_size: int, governor: ResourceGovernor,
               acc: ProbeAccumulator) -> FrameRecord:
    d = read_image_descriptor(cur)
    frame = FrameRecord(index,
                        gce.disposal if gce else Disposal.UNSPECIFIED,
                        gce.delay_ms if gce else 0,
                        d.width, d.height)
    held = 0
    table_size = gct_size
    if d.lct_flag:
        table_size = d.lct_size
        skip_color_table(cur, table_size, governor, f"local color table of frame {index}")
        held += 3 * table_size
        acc.add_color_table(table_size)

    if index == 0:
        frame.transparent_index = usable_transparent_index(gce, table_size)
    decode = frame.transparent_index is not None

    min_code_size = cur.read_u8()
    if decode:
        governor.reserve(d.area, "frame 0 index buffer")
        held += d.area
        data = cur.read_sub_blocks()
        frame.indices = lzw_decode(min_code_size, data, d.area,
                                   stop_at=frame.transparent_index)
    else:
        cur.read_sub_blocks(skip=True)

    governor.release(held)
    logger.debug("frame %d: %dx%d%s, disposal %s, delay %d ms, %s",
                 index, d.width, d.height, " interlaced" if d.interlace else "",
                 frame.disposal.name, frame.delay_ms,
                 "decoded" if decode else "skipped")
    return frame


def frame_shows_alpha(frame: FrameRecord) -> bool:
    if frame.index == 0:
        return frame.indices is not None and frame.transparent_index in frame.indices
    return (frame.disposal == Disposal.RESTORE_TO_BACKGROUND
            and frame.width > 0 and frame.height > 0)


def probe_stream(stream: BinaryIO, limits: Optional[Limits] = None) -> ProbeResult:
    """Probe one GIF read forward from ``stream``.

    Raises a GIFError subclass on any failure; a partial result is never
    returned. Parsing stops early once transparency is established, so
    frames after that point are neither counted nor timed.
    """
    cur = ByteCursor(stream)
    governor = ResourceGovernor(limits)
    acc = ProbeAccumulator()

    version = read_header(cur)
    ls = read_logical_screen(cur)
    governor.check_pixels(ls.width, ls.height)
    acc.width, acc.height = ls.width, ls.height
    logger.debug("%s canvas %dx%d, global color table %d",
                 version, ls.width, ls.height, ls.gct_size)

    if ls.gct_flag:
        skip_color_table(cur, ls.gct_size, governor, "global color table")
        acc.add_color_table(ls.gct_size)

    gce: Optional[GraphicControl] = None
    while True:
        b0 = cur.read_u8()
        if b0 == TRAILER:
            break
        elif b0 == EXTENSION_INTRODUCER:
            label = cur.read_u8()
            if label == GRAPHIC_CONTROL_LABEL:
                gce = read_graphic_control(cur)
            elif label in SKIPPED_EXTENSIONS:
                cur.read_sub_blocks(skip=True)
            else:
                raise Malformed(f"Unknown extension label: 0x{label:02X}")
        elif b0 == IMAGE_SEPARATOR:
            frame = read_frame(cur, acc.frame_count, gce, ls.gct_size, governor, acc)
            gce = None  # GCE applies to next image only
            if frame_shows_alpha(frame):
                acc.mark_alpha()
            acc.add_frame(frame)
            governor.check_duration(acc.duration_ms)
            if acc.alpha:
                logger.debug("transparency found at frame %d, stopping", frame.index)
                break
        else:
            raise Malformed(f"Unknown block introducer: 0x{b0:02X} at offset {cur.offset - 1}")

    return acc.finish()


def probe_file(path: str, limits: Optional[Limits] = None) -> ProbeResult:
    with open(path, "rb") as f:
        return probe_stream(f, limits)

# -----------------------------
# CLI
# -----------------------------
DEFAULT_MAX_MEMORY = 20 * 1024 * 1024


def non_negative_int(value: str) -> int:
    n = int(value)
    if n < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value}")
    return n


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Probe a GIF for actually used transparency and basic metrics (no deps)")
    p.add_argument("-i", "--input", required=True,
                   help="Path to .gif, or - to read from stdin")
    p.add_argument("-j", "--max-duration", type=non_negative_int, default=None,
                   help="Fail once summed frame delays exceed this many ms")
    p.add_argument("-d", "--max-pixels", type=non_negative_int, default=None,
                   help="Fail if canvas width*height is larger than this")
    p.add_argument("-m", "--max-memory", type=non_negative_int, default=DEFAULT_MAX_MEMORY,
                   help="Fail rather than hold more than this many bytes "
                        "(default: 20 MiB, 0 = unlimited)")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Log parse checkpoints to stderr")
    return p


def setup_logging(verbose: bool) -> None:
    # Avoid adding handlers multiple times
    if not verbose or logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(levelname)-8s | %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


def main(argv: List[str]) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.verbose)
    limits = Limits(args.max_duration, args.max_pixels, args.max_memory)
    try:
        if args.input == "-":
            result = probe_stream(sys.stdin.buffer, limits)
        else:
            result = probe_file(args.input, limits)
    except GIFError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(json.dumps(result.to_dict(), separators=(",", ":")))
    return 0


def run() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    run()
