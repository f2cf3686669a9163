# CHIP-8 INFO
# https://chip-8.github.io/extensions/#chip-8
# https://chip-8.github.io/links/
#
# COMPATIBILITY QUIRKS TABLE
# https://games.gulrak.net/cadmium/chip8-opcode-table.html#quirk6
#
# MASTERING CHIP-8
# https://github.com/mattmikolay/chip-8/wiki/Mastering-CHIP%E2%80%908
#
# TEST SUITE
# https://github.com/Timendus/chip8-test-suite


import os
import random
from functools import wraps

import opcodes as op


# ******************** STATIC SECTION
C8_FONTS = [0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
            0x20, 0x60, 0x20, 0x20, 0x70,  # 1
            0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
            0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
            0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
            0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
            0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
            0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
            0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
            0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
            0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
            0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
            0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
            0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
            0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
            0xF0, 0x80, 0xF0, 0x80, 0x80]  # F

MEMORY_SIZE = 4096
FONT_START_ADDRESS = 0x050
FONT_SIZE = 5                   # bytes per glyph
ROM_START_ADDRESS = 0x200
MAX_ROM_SIZE = MEMORY_SIZE - ROM_START_ADDRESS
STACK_DEPTH = 16
REGISTERS = 16
KEYS = 16
DEBUG = True if int(os.getenv('DEBUG', 0)) >= 1 else False
SCREEN_HEIGHT = 32
SCREEN_WIDTH = 64

# which bits of the opcode identify the instruction, per family
# families not listed here are identified by their highest nibble alone
DECODE_MASKS = {
    0x0: 0xFFFF,    # 00E0, 00EE
    0x5: 0xF00F,    # 5xy0
    0x8: 0xF00F,    # 8xy0 ... 8xyE
    0x9: 0xF00F,    # 9xy0
    0xE: 0xF0FF,    # Ex9E, ExA1
    0xF: 0xF0FF,    # Fx07 ... Fx65
}
DEFAULT_DECODE_MASK = 0xF000


# ******************** ERRORS SECTION
class Chip8Error(Exception):
    """base class of every error raised by the virtual machine"""

class RomTooLarge(Chip8Error):
    def __init__(self, size):
        super().__init__(f"ROM of {size} bytes does not fit in memory (max {MAX_ROM_SIZE} bytes)")
        self.size = size

class TruncatedSource(Chip8Error):
    def __init__(self, expected, received):
        super().__init__(f"ROM source ended after {received} of {expected} bytes")
        self.expected = expected
        self.received = received

class UnknownOpcode(Chip8Error):
    def __init__(self, opcode, address):
        super().__init__(f"Unknown opcode 0x{opcode:04x} at 0x{address:04x}")
        self.opcode = opcode
        self.address = address

class StackOverflow(Chip8Error):
    pass

class StackUnderflow(Chip8Error):
    pass

class OutOfBounds(Chip8Error):
    pass


# ******************** UTILITIES SECTION
def asm(msg):
    """decorator to print out the ASM of the instruction being called"""
    def decorator(fn):
        @wraps(fn)
        def wrapper_fn(*args, **kwargs):
            mem_addr = args[0].pc - 0x2     # args[0] equals self, pc has already moved past the instruction
            vals = fn(*args, **kwargs)      # use the locals() values of each decorated function in the print
            vals['mem_addr'] = mem_addr
            if DEBUG: print(msg.format(**vals))
        return wrapper_fn
    return decorator

def _check_index(index, size, what):
    if not 0 <= index < size:
        raise OutOfBounds(f"{what} index {index} out of range 0..{size - 1}")


# ******************** I/O SECTION
# ********** 64x32 MONOCHROME GRID, READ BY THE HOST TO RENDER THE SCREEN
class Framebuffer:
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT):
        self.w, self.h = w, h
        self.buffer = [False] * h * w

    def __getitem__(self, pos):
        """return True if pixel (x, y) is ON"""
        x, y = pos
        return self.buffer[self._offset(x, y)]

    def __setitem__(self, pos, value):
        x, y = pos
        self.buffer[self._offset(x, y)] = bool(value)

    def _offset(self, x, y):
        _check_index(x, self.w, "screen column")
        _check_index(y, self.h, "screen row")
        return y * self.w + x

    def rows(self):
        """the grid as a list of rows, top to bottom"""
        return [self.buffer[r * self.w:(r + 1) * self.w] for r in range(self.h)]

    def lit(self):
        """(x, y) coordinates of every pixel that is ON"""
        return [(i % self.w, i // self.w) for i, p in enumerate(self.buffer) if p]

    def clear(self):
        self.buffer = [False] * self.h * self.w

# ********** 16 KEY STATES, WRITTEN BY THE HOST BETWEEN STEPS
class Keypad:
    def __init__(self):
        self.keys = [False] * KEYS

    def __getitem__(self, key):
        _check_index(key, KEYS, "key")
        return self.keys[key]

    def __setitem__(self, key, value):
        _check_index(key, KEYS, "key")
        self.keys[key] = bool(value)

    def untouched(self):
        return not any(self.keys)

    def first(self):
        """lowest key currently pressed"""
        return self.keys.index(True)

    def release_all(self):
        self.keys = [False] * KEYS


# ******************** MEMORY SECTION
# ********** FIXED 16 SLOTS, sp IS THE NEXT FREE SLOT
class Stack:
    def __init__(self):
        self.slots = [0] * STACK_DEPTH
        self.sp = 0

    def __len__(self):
        return self.sp

    def __repr__(self):
        return f"Stack(sp={self.sp}, {[hex(a) for a in self.slots[:self.sp]]})"

    def append(self, address):
        if self.sp >= STACK_DEPTH:
            raise StackOverflow(f"The CHIP-8 stack can contain at most {STACK_DEPTH} addresses. Limit exceeded")
        self.slots[self.sp] = address
        self.sp += 1

    def pop(self):
        if self.sp == 0:
            raise StackUnderflow("Return with an empty CHIP-8 stack")
        self.sp -= 1
        return self.slots[self.sp]

# ********** 4KB OF MAIN MEMORY, EVERY ACCESS IS BOUNDS CHECKED
class Memory:
    def __init__(self):
        self.inner = bytearray(MEMORY_SIZE)
        self.inner[FONT_START_ADDRESS:FONT_START_ADDRESS+len(C8_FONTS)] = bytes(C8_FONTS)

    def __len__(self):
        return len(self.inner)

    def __setitem__(self, key, value):
        if isinstance(key, slice):
            start, stop = self._check_slice(key)
            if len(value) != stop - start:
                raise ValueError("Memory cannot be resized")
        else:
            _check_index(key, MEMORY_SIZE, "memory")
        self.inner[key] = value

    def __getitem__(self, index):
        if isinstance(index, slice):
            self._check_slice(index)
        else:
            _check_index(index, MEMORY_SIZE, "memory")
        return self.inner[index]

    def _check_slice(self, s):
        start = 0 if s.start is None else s.start
        stop = MEMORY_SIZE if s.stop is None else s.stop
        if s.step not in (None, 1) or not 0 <= start <= stop <= MEMORY_SIZE:
            raise OutOfBounds(f"memory range {start}..{stop} out of range 0..{MEMORY_SIZE}")
        return start, stop

    def load(self, address, data):
        """copy data verbatim starting at address"""
        self[address:address+len(data)] = data


# ******************** CPU SECTION
class Chip8:
    def __init__(self, rng=None):
        self.rng = rng if rng is not None else random.Random()
        self.instructions = {
            0x00E0: self._clear_screen,
            0x00EE: self._return,
            0x1000: self._jump,
            0x2000: self._call_addr,
            0x3000: self._skip_if_eq,
            0x4000: self._skip_if_not_eq,
            0x5000: self._skip_if_eq_regs,
            0x6000: self._set_vk,
            0x7000: self._add_to_vk,
            0x8000: self._set_vx_to_vy,
            0x8001: self._set_vx_or_vy,
            0x8002: self._set_vx_and_vy,
            0x8003: self._set_vx_xor_vy,
            0x8004: self._add_vx_vy,
            0x8005: self._sub_vx_vy,
            0x8006: self._shr,
            0x8007: self._subn_vx_vy,
            0x800E: self._shl,
            0x9000: self._skip_if_not_eq_regs,
            0xA000: self._set_idx,
            0xB000: self._jump_plus,
            0xC000: self._random_byte_and,
            0xD000: self._to_screen,
            0xE09E: self._skip_if_pressed,
            0xE0A1: self._skip_if_not_pressed,
            0xF007: self._set_vx_dt,
            0xF00A: self._wait_keypress,
            0xF015: self._set_dt_vx,
            0xF018: self._set_st,
            0xF01E: self._add_to_idx,
            0xF029: self._select_char,
            0xF033: self._bcd_repr,
            0xF055: self._store_vregs,
            0xF065: self._load_vregs,
        }
        self.reset()

    def reset(self):
        """bring the machine back to its power-on state, the random source is kept"""
        self.mem = Memory()
        self.stack = Stack()
        self.v_regs = [0] * REGISTERS
        self.pc = ROM_START_ADDRESS
        self.idx = 0    # specify where the sprites reside in memory
        self.dt = 0     # delay timer, active when non-zero
        self.st = 0     # sound timer, active when non-zero
        self.draw = False
        self.screen = Framebuffer()
        self.keypad = Keypad()

    def __str__(self):
        registers = f"PC_REGISTER:0x{self.pc:04x} | IDX_REGISTER:0x{self.idx:04x} | VARIABLE_REGISTERS:{self.v_regs}"
        stack = f"STACK:{self.stack!r}"
        timers = f"DELAY_TIMER:{self.dt} | SOUND_TIMER:{self.st}"
        flags = f"DRAW: {self.draw}"
        return f"{registers}\n{stack}\n{timers}\n{flags}"

    @property
    def sound_on(self):
        return self.st > 0

    def load_rom(self, rom):
        """stage the ROM bytes at 0x200, memory is left untouched if they don't fit"""
        if len(rom) > MAX_ROM_SIZE:
            raise RomTooLarge(len(rom))
        self.mem.load(ROM_START_ADDRESS, rom)
        if DEBUG: print(f"{len(rom)} bytes of ROM have been loaded successfully")

    def tick_timers(self):
        """60Hz timer clock, driven by the host independently from step()"""
        if self.dt > 0:
            self.dt -= 1
        if self.st > 0:
            self.st -= 1

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SKP V{x}")
    def _skip_if_pressed(self, opcode):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is pressed"""
        x = op.x(opcode)
        key = self.v_regs[x]
        if self.keypad[key]:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SKNP V{x}")
    def _skip_if_not_pressed(self, opcode):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is NOT pressed"""
        x = op.x(opcode)
        key = self.v_regs[x]
        if not self.keypad[key]:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x}, K")
    def _wait_keypress(self, opcode):
        """wait for a key press and store its value in Vx"""
        x = op.x(opcode)
        if self.keypad.untouched():
            self.pc -= 0x2      # stay on the same instruction until a key is pressed
        else:
            self.v_regs[x] = self.keypad.first()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x}, DT")
    def _set_vx_dt(self, opcode):
        """set Vx = DT (delay timer) value"""
        x = op.x(opcode)
        self.v_regs[x] = self.dt
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD DT, V{x}")
    def _set_dt_vx(self, opcode):
        """set DT (delay timer) = Vx"""
        x = op.x(opcode)
        self.dt = self.v_regs[x]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: CLS")
    def _clear_screen(self, opcode):
        self.screen.clear()
        self.draw = True
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: RET")
    def _return(self, opcode):
        """return from a subroutine"""
        self.pc = self.stack.pop()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: JP 0x{address:04x}")
    def _jump(self, opcode):
        address = op.nnn(opcode)
        self.pc = address
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: CALL 0x{address:04x}")
    def _call_addr(self, opcode):
        address = op.nnn(opcode)
        self.stack.append(self.pc)
        self.pc = address
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SE V{x}, {comparison_value}")
    def _skip_if_eq(self, opcode):
        x, comparison_value = op.x(opcode), op.nn(opcode)
        if self.v_regs[x] == comparison_value:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SNE V{x}, {comparison_value}")
    def _skip_if_not_eq(self, opcode):
        x, comparison_value = op.x(opcode), op.nn(opcode)
        if self.v_regs[x] != comparison_value:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SE V{x}, V{y}")
    def _skip_if_eq_regs(self, opcode):
        x, y = op.x(opcode), op.y(opcode)
        if self.v_regs[x] == self.v_regs[y]:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SNE V{x}, V{y}")
    def _skip_if_not_eq_regs(self, opcode):
        x, y = op.x(opcode), op.y(opcode)
        if self.v_regs[x] != self.v_regs[y]:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x}, {value}")
    def _set_vk(self, opcode):
        """set the value of one of the 16 variable registers, Vx"""
        x, value = op.x(opcode), op.nn(opcode)
        self.v_regs[x] = value
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: ADD V{x}, {value}")
    def _add_to_vk(self, opcode):
        """add to the value already present in one of the variable registers, VF untouched"""
        x, value = op.x(opcode), op.nn(opcode)
        self.v_regs[x] = (self.v_regs[x] + value) & 0xFF    # keep only the lowest 8 bits from the result and store them in Vx
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x}, V{y}")
    def _set_vx_to_vy(self, opcode):
        """set the value of Vx equal to that of Vy"""
        x, y = op.x(opcode), op.y(opcode)
        self.v_regs[x] = self.v_regs[y]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: OR V{x}, V{y}")
    def _set_vx_or_vy(self, opcode):
        """set the value of Vx to Vx OR Vy"""
        x, y = op.x(opcode), op.y(opcode)
        self.v_regs[x] |= self.v_regs[y]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: AND V{x}, V{y}")
    def _set_vx_and_vy(self, opcode):
        """set the value of Vx to Vx AND Vy"""
        x, y = op.x(opcode), op.y(opcode)
        self.v_regs[x] &= self.v_regs[y]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: XOR V{x}, V{y}")
    def _set_vx_xor_vy(self, opcode):
        """set the value of Vx to Vx XOR Vy"""
        x, y = op.x(opcode), op.y(opcode)
        self.v_regs[x] ^= self.v_regs[y]
        return locals()

    # the arithmetic below writes Vx first and VF last,
    # so with x == 0xF the register ends up holding the flag

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: ADD V{x}, V{y}")
    def _add_vx_vy(self, opcode):
        """set the value of Vx to Vx + Vy, VF = carry"""
        x, y = op.x(opcode), op.y(opcode)
        total = self.v_regs[x] + self.v_regs[y]
        self.v_regs[x] = total & 0xFF   # keep only the lowest 8 bits from the result and store them in Vx
        self.v_regs[0xF] = 1 if total > 0xFF else 0
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SUB V{x}, V{y}")
    def _sub_vx_vy(self, opcode):
        """set the value of Vx to Vx - Vy, VF = NOT borrow"""
        x, y = op.x(opcode), op.y(opcode)
        not_borrow = 1 if self.v_regs[x] >= self.v_regs[y] else 0
        self.v_regs[x] = (self.v_regs[x] - self.v_regs[y]) & 0xFF
        self.v_regs[0xF] = not_borrow
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SHR V{x} 1")
    def _shr(self, opcode):
        """set Vx equal to Vx SHR 1, VF = bit shifted out"""
        x = op.x(opcode)
        LSB = self.v_regs[x] & 0x1
        self.v_regs[x] = self.v_regs[x] >> 1
        self.v_regs[0xF] = LSB
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SUBN V{x}, V{y}")
    def _subn_vx_vy(self, opcode):
        """set the value of Vx to Vy - Vx, VF = NOT borrow"""
        x, y = op.x(opcode), op.y(opcode)
        not_borrow = 1 if self.v_regs[y] >= self.v_regs[x] else 0
        self.v_regs[x] = (self.v_regs[y] - self.v_regs[x]) & 0xFF
        self.v_regs[0xF] = not_borrow
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SHL V{x} 1")
    def _shl(self, opcode):
        """set Vx equal to Vx SHL 1, VF = bit shifted out"""
        x = op.x(opcode)
        MSB = (self.v_regs[x] & 0x80) >> 7
        self.v_regs[x] = (self.v_regs[x] << 1) & 0xFF   # multiply by 2 and keep only the lowest 8 bits from the result
        self.v_regs[0xF] = MSB
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD I, 0x{value:04x}")
    def _set_idx(self, opcode):
        """set the value of the I register"""
        value = op.nnn(opcode)
        self.idx = value
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: JP V0, 0x{address:04x}")
    def _jump_plus(self, opcode):
        address = op.nnn(opcode)
        v0 = self.v_regs[0x0]
        self.pc = address + v0      # may land outside memory, the next fetch reports it
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: RND V{x}, 0x{kk:02x}")
    def _random_byte_and(self, opcode):
        x, kk = op.x(opcode), op.nn(opcode)
        rnd = self.rng.randint(0, 255)
        self.v_regs[x] = rnd & kk
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD ST, V{register}")
    def _set_st(self, opcode):
        """set ST = Vx"""
        register = op.x(opcode)
        self.st = self.v_regs[register]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: ADD I, V{register}")
    def _add_to_idx(self, opcode):
        """set I = I + Vx, VF untouched"""
        register = op.x(opcode)
        self.idx = (self.idx + self.v_regs[register]) & 0xFFFF
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD F, V{register}")
    def _select_char(self, opcode):
        """set I to location of sprite for digit Vx"""
        register = op.x(opcode)
        self.idx = FONT_START_ADDRESS + self.v_regs[register] * FONT_SIZE
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD [I], V{x}")
    def _store_vregs(self, opcode):
        """store registers V0 through Vx (included) in memory starting at location I"""
        x = op.x(opcode)
        self.mem[self.idx:self.idx+x+1] = bytes(self.v_regs[:x+1])
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x}, [I]")
    def _load_vregs(self, opcode):
        """read registers V0 through Vx (included) from memory starting at location I"""
        x = op.x(opcode)
        self.v_regs[:x+1] = list(self.mem[self.idx:self.idx+x+1])
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD B, V{x}")
    def _bcd_repr(self, opcode):
        """store the hundreds digit of Vx in memory at I, the tens digit at I+1, the ones digit at I+2"""
        x = op.x(opcode)
        value = self.v_regs[x]
        hundreds, tens, ones = value // 100, (value // 10) % 10, value % 10
        self.mem[self.idx:self.idx+3] = bytes((hundreds, tens, ones))
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: DRW V{x}, V{y}, {n_bytes}")
    def _to_screen(self, opcode):
        """display n-byte sprite starting at memory location I at (Vx, Vy), set VF = collision"""
        x, y, n_bytes = op.x(opcode), op.y(opcode), op.n(opcode)
        origin_x = self.v_regs[x] % self.screen.w
        origin_y = self.v_regs[y] % self.screen.h
        sprite = self.mem[self.idx:self.idx+n_bytes]
        collision = 0
        for i, sprite_byte in enumerate(sprite):
            # increment y by one for each new sprite's byte read
            # this allows for wrap around of displayed sprites
            y_coordinate = (origin_y + i) % self.screen.h
            for j in range(8):
                if not (sprite_byte >> (7 - j)) & 0x1:
                    continue
                x_coordinate = (origin_x + j) % self.screen.w
                # sprites are XORed onto the existing screen, a pixel
                # already ON that is hit again gets erased: collision
                if self.screen[x_coordinate, y_coordinate]:
                    collision = 1
                self.screen[x_coordinate, y_coordinate] = not self.screen[x_coordinate, y_coordinate]
        self.v_regs[0xF] = collision
        self.draw = True
        return locals()

    def _goto_next_instruction(self):
        self.pc += 0x2

    def fetch(self):
        """read the big-endian opcode at pc"""
        if not 0 <= self.pc < MEMORY_SIZE - 1:
            raise OutOfBounds(f"Program counter 0x{self.pc:04x} outside of memory")
        return self.mem[self.pc] << 8 | self.mem[self.pc + 1]

    def decode(self, opcode):
        """decode opcodes using the family's mask and return respective function"""
        mask = DECODE_MASKS.get(op.kind(opcode), DEFAULT_DECODE_MASK)
        if DEBUG: print(f"opcode: 0x{opcode:04x}", end="    ")
        instruction = self.instructions.get(opcode & mask)
        if instruction is None:
            if DEBUG: print()
            raise UnknownOpcode(opcode, self.pc - 0x2)
        return instruction

    def step(self):
        """emulate one machine cycle: fetch, advance pc, decode, execute"""
        self.draw = False
        # fetch (each instruction is two bytes long)
        opcode = self.fetch()
        self._goto_next_instruction()
        # decode + execute
        instruction = self.decode(opcode)
        instruction(opcode)
