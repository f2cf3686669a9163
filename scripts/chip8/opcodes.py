# OPCODE FIELDS
#
# every CHIP-8 instruction is a 16 bit word, read big-endian from memory
#
#   kind  x     y     n
#   ----  ----  ----  ----
#   1101  0001  0010  0101      -> 0xD125 = DRW V1, V2, 5
#               ---------
#                  nn
#         ---------------
#               nnn


def kind(opcode: int) -> int:
    """instruction family, the highest nibble"""
    return (opcode & 0xF000) >> 12

def x(opcode: int) -> int:
    """first register index"""
    return (opcode & 0x0F00) >> 8

def y(opcode: int) -> int:
    """second register index"""
    return (opcode & 0x00F0) >> 4

def n(opcode: int) -> int:
    """4 bit immediate (sprite height, sub-selector of family 8)"""
    return opcode & 0x000F

def nn(opcode: int) -> int:
    """8 bit immediate"""
    return opcode & 0x00FF

def nnn(opcode: int) -> int:
    """12 bit address"""
    return opcode & 0x0FFF
