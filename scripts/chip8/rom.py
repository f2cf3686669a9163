import os

from chip8 import DEBUG, MAX_ROM_SIZE, RomTooLarge, TruncatedSource


def read_rom(stream, size=None) -> bytes:
    """
    read a whole ROM out of a binary stream
    a read may return fewer bytes than asked for, so keep asking until the ROM is complete
    with a known size an early end of stream is an error, without it the stream is read till its end
    """
    if size is not None and size > MAX_ROM_SIZE:
        raise RomTooLarge(size)
    limit = size if size is not None else MAX_ROM_SIZE + 1
    rom = bytearray()
    while len(rom) < limit:
        chunk = stream.read(limit - len(rom))
        if not chunk:
            if size is not None:
                raise TruncatedSource(size, len(rom))
            break
        rom += chunk
    if len(rom) > MAX_ROM_SIZE:
        raise RomTooLarge(len(rom))
    return bytes(rom)


def load_rom_file(chip, path) -> int:
    """load ROM file from user specified path into the machine, return how many bytes were loaded"""
    with open(path, mode='rb') as f:
        size = os.fstat(f.fileno()).st_size
        rom = read_rom(f, size)
    chip.load_rom(rom)
    if DEBUG: print(f"The ROM at path {path} has been loaded successfully")
    return len(rom)
