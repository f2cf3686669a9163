import io
import os
import tempfile
import unittest
from chip8 import Chip8, MAX_ROM_SIZE, RomTooLarge, TruncatedSource
from rom import read_rom, load_rom_file


class TrickleStream:
    """binary stream handing out at most a few bytes per read"""
    def __init__(self, data, chunk=3):
        self.inner = io.BytesIO(data)
        self.chunk = chunk
        self.reads = 0

    def read(self, size=-1):
        self.reads += 1
        return self.inner.read(min(size, self.chunk))


class TestReadRom(unittest.TestCase):
    def test_partial_reads_are_retried(self):
        stream = TrickleStream(b"\x00\xe0\x12\x00\xff", chunk=2)
        self.assertEqual(read_rom(stream, 5), b"\x00\xe0\x12\x00\xff")
        self.assertEqual(stream.reads, 3)

    def test_truncated_source(self):
        with self.assertRaises(TruncatedSource) as ctx:
            read_rom(TrickleStream(b"\x00\xe0\x12"), 6)
        self.assertEqual((ctx.exception.expected, ctx.exception.received), (6, 3))

    def test_declared_size_too_large(self):
        stream = TrickleStream(b"")
        with self.assertRaises(RomTooLarge):
            read_rom(stream, MAX_ROM_SIZE + 1)
        self.assertEqual(stream.reads, 0)

    def test_unknown_size_reads_till_end(self):
        self.assertEqual(read_rom(TrickleStream(b"\xa2\x2a\x60\x0c")), b"\xa2\x2a\x60\x0c")

    def test_unknown_size_too_large(self):
        with self.assertRaises(RomTooLarge):
            read_rom(io.BytesIO(bytes(MAX_ROM_SIZE + 1)))

    def test_unknown_size_largest_rom(self):
        self.assertEqual(len(read_rom(io.BytesIO(bytes(MAX_ROM_SIZE)))), MAX_ROM_SIZE)


class TestLoadRomFile(unittest.TestCase):
    def setUp(self):
        fd, self.path = tempfile.mkstemp(suffix=".ch8")
        os.close(fd)

    def tearDown(self):
        os.remove(self.path)

    def write(self, data):
        with open(self.path, "wb") as f:
            f.write(data)

    def test_load(self):
        self.write(b"\x60\x2a\x12\x00")
        chip = Chip8()
        self.assertEqual(load_rom_file(chip, self.path), 4)
        chip.step()
        self.assertEqual(chip.v_regs[0], 0x2A)

    def test_file_too_large(self):
        self.write(bytes(MAX_ROM_SIZE + 1))
        chip = Chip8()
        with self.assertRaises(RomTooLarge):
            load_rom_file(chip, self.path)
        self.assertEqual(chip.mem[0x200], 0)


if __name__ == "__main__":
    unittest.main()
