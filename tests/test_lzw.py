import random

import pytest

from gifbuild import lzw_encode
from gifprobe import CorruptStream, lzw_decode


def test_decodes_literals():
    pixels = [0, 1, 2, 3]
    assert lzw_decode(2, lzw_encode(pixels, 2), 4) == bytearray(pixels)


def test_repeated_runs_hit_kwkwk():
    pixels = [1] * 50
    assert lzw_decode(2, lzw_encode(pixels, 2), 50) == bytearray(pixels)


def test_code_width_grows_and_table_fills():
    rng = random.Random(7)
    pixels = [rng.randrange(4) for _ in range(20000)]
    data = lzw_encode(pixels, 2)
    assert lzw_decode(2, data, len(pixels)) == bytearray(pixels)


def test_full_table_kept_without_clear():
    rng = random.Random(11)
    pixels = [rng.randrange(256) for _ in range(60000)]
    data = lzw_encode(pixels, 8, deferred_clear=True)
    # a single clear code at the start; everything after runs on a full table
    assert len(data) * 8 > 12 * 4096
    assert lzw_decode(8, data, len(pixels)) == bytearray(pixels)


def test_eight_bit_palette():
    pixels = [(x * 31 + y) % 256 for y in range(40) for x in range(40)]
    assert lzw_decode(8, lzw_encode(pixels, 8), len(pixels)) == bytearray(pixels)


def test_stops_at_requested_index():
    pixels = [0] * 10 + [3] + [1] * 100
    out = lzw_decode(2, lzw_encode(pixels, 2), len(pixels), stop_at=3)
    assert 3 in out
    assert len(out) < len(pixels)


def test_output_capped_at_pixel_count():
    pixels = [2] * 30
    assert lzw_decode(2, lzw_encode(pixels, 2), 8) == bytearray([2] * 8)


def test_ends_at_end_code_when_short():
    # fewer pixels than the region owes is not an error
    assert lzw_decode(2, lzw_encode([1, 2], 2), 100) == bytearray([1, 2])


def test_data_ends_before_end_code():
    # clear, literal 0, then only two bits left
    with pytest.raises(CorruptStream):
        lzw_decode(2, b"\x04", 4)


def test_code_out_of_range():
    # clear (4) followed by code 7 while the next free code is 6
    with pytest.raises(CorruptStream):
        lzw_decode(2, bytes([4 | (7 << 3)]), 4)


@pytest.mark.parametrize("min_code_size", [0, 9, 12])
def test_invalid_min_code_size(min_code_size):
    with pytest.raises(CorruptStream):
        lzw_decode(min_code_size, b"\x00\x00", 1)


def test_zero_pixels_reads_nothing():
    assert lzw_decode(2, b"", 0) == bytearray()
