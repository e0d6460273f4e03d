# CHIP-8 INFO
# https://chip-8.github.io/extensions/#chip-8
# https://chip-8.github.io/links/
#
# OPCODE TABLE
# https://en.wikipedia.org/wiki/CHIP-8#Opcode_table
#
# MASTERING CHIP-8
# https://github.com/mattmikolay/chip-8/wiki/Mastering-CHIP%E2%80%908
#
# TEST SUITE
# https://github.com/Timendus/chip8-test-suite
#
# This module is the interpreter core only: machine state plus the
# fetch/decode/execute engine. Windowing, input and pacing live in chip8_host.


import logging
import os
import random
from functools import wraps


logger = logging.getLogger(__name__)


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
FONT_BYTES_PER_GLYPH = 5
ROM_START_ADDRESS = 0x200
ETI_660_START_ADDRESS = 0x600      # ETI 660 programs start the program counter further up
STACK_SIZE = 16
KEYPAD_SIZE = 16
SCREEN_HEIGHT = 32
SCREEN_WIDTH = 64
SPRITE_WIDTH = 8
DEBUG = True if int(os.getenv('DEBUG', 0)) >= 1 else False


# ******************** ERRORS SECTION
class Chip8Error(Exception):
    """base class for every error the interpreter can surface from a cycle"""

class SegmentationFault(Chip8Error):
    """a computed address falls outside the memory available to the interpreter"""

class SubroutineStackOverflow(Chip8Error):
    """a subroutine call was attempted with all 16 stack slots in use"""

class SubroutineStackEmpty(Chip8Error):
    """a subroutine return was attempted with an empty stack"""

class IndexOutOfBounds(Chip8Error):
    """an index derived from program data points outside an internal array"""

class UnexpectedError(Chip8Error):
    """a dispatch branch that should never be reached was reached"""


# ******************** UTILITIES SECTION
def asm(msg):
    """decorator to log the ASM of the instruction being executed"""
    def decorator(fn):
        @wraps(fn)
        def wrapper_fn(*args, **kwargs):
            mem_addr = (args[0].pc - 2) & 0xFFFF    # args[0] equals self, pc was already moved past the opcode
            vals = fn(*args, **kwargs)              # use the locals() values of each decorated function in the message
            if logger.isEnabledFor(logging.DEBUG):
                vals['mem_addr'] = mem_addr
                logger.debug(msg.format(**vals))
        return wrapper_fn
    return decorator


# ******************** I/O SECTION
class Row:
    """
    view over one row of a Framebuffer
    it owns nothing, every access is translated into an index of the flat pixel list
    """
    def __init__(self, pixels, y, w):
        self._pixels = pixels
        self._start = y * w
        self._w = w

    def _index(self, x):
        if x < 0:
            x += self._w
        if not 0 <= x < self._w:
            raise IndexError(f"column {x} is outside a row of width {self._w}")
        return self._start + x

    def __getitem__(self, x):
        if isinstance(x, slice):
            return [self._pixels[self._start + i] for i in range(*x.indices(self._w))]
        return self._pixels[self._index(x)]

    def __setitem__(self, x, value):
        self._pixels[self._index(x)] = value

    def __len__(self):
        return self._w

    def __iter__(self):
        return iter(self[:])

    def __repr__(self):
        return f"Row({self[:]})"

class Framebuffer:
    """
    monochrome screen stored as a flat, row-major list of w*h pixels
    pixels are 0 (unset) or 1 (set), although a renderer may store wider values: anything non-zero counts as set
    indexing the framebuffer with a y coordinate returns a Row view, so screen[y][x] addresses a single pixel
    """
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT):
        self.w, self.h = w, h
        self.pixels = [0] * w * h

    def __getitem__(self, y):
        if y < 0:
            y += self.h
        if not 0 <= y < self.h:
            raise IndexError(f"row {y} is outside a screen of height {self.h}")
        return Row(self.pixels, y, self.w)

    def __len__(self):
        return self.h

    def read_pixel(self, x, y):
        """return 1 if pixel is ON, return 0 if pixel is OFF"""
        return 1 if self.pixels[y * self.w + x] else 0

    def clear(self):
        # in place, views handed out earlier keep pointing at live data
        self.pixels[:] = [0] * self.w * self.h

class Keypad:
    """
    pressed/released state of the 16 hex keys
    the host writes it, the interpreter only reads it
    """
    def __init__(self):
        self.keys = [False] * KEYPAD_SIZE

    def __getitem__(self, key):
        if not 0 <= key < KEYPAD_SIZE:
            raise IndexOutOfBounds(f"Key 0x{key:02x} does not exist on a {KEYPAD_SIZE} keys keypad")
        return self.keys[key]

    def __setitem__(self, key, pressed):
        if not 0 <= key < KEYPAD_SIZE:
            raise IndexOutOfBounds(f"Key 0x{key:02x} does not exist on a {KEYPAD_SIZE} keys keypad")
        self.keys[key] = bool(pressed)

    def untouched(self):
        return not any(self.keys)

    def first(self):
        """get the lowest key currently pressed"""
        return self.keys.index(True)

    def release_all(self):
        self.keys[:] = [False] * KEYPAD_SIZE

    def __str__(self):
        return "".join(f"{k:X}" if pressed else "." for k, pressed in enumerate(self.keys))


# ******************** MEMORY SECTION
# ********** FIXED SIZE RETURN ADDRESS STACK, sp COUNTS THE SLOTS IN USE
class Stack:
    def __init__(self, size=STACK_SIZE):
        self.addr_list = [0] * size
        self.sp = 0

    def __len__(self):
        return self.sp

    def __str__(self):
        return f"SP:{self.sp} {[f'0x{a:03x}' for a in self.addr_list[:self.sp]]}"

    def push(self, address):
        if self.sp >= len(self.addr_list):
            raise SubroutineStackOverflow(f"The CHIP-8 stack can contain at most {len(self.addr_list)} addresses. Limit exceeded")
        self.addr_list[self.sp] = address
        self.sp += 1

    def pop(self):
        """remove the top address from the stack, clearing its slot"""
        if self.sp == 0:
            raise SubroutineStackEmpty("Tried to return from a subroutine with an empty stack")
        self.sp -= 1
        address = self.addr_list[self.sp]
        self.addr_list[self.sp] = 0
        return address

    def reset(self):
        self.addr_list[:] = [0] * len(self.addr_list)
        self.sp = 0

# ********** WRAPS A BYTEARRAY TO REPRESENT THE MAIN MEMORY WITH A LIMITED SIZE OF 4KB
class Memory:
    def __init__(self, eti_660=False):
        self.inner = bytearray(MEMORY_SIZE)
        self.workspace_start = ETI_660_START_ADDRESS if eti_660 else ROM_START_ADDRESS
        self.initialize()

    def __setitem__(self, key, value):
        self.inner[key] = value

    def __getitem__(self, index):
        return self.inner[index]

    def __len__(self):
        return len(self.inner)

    def initialize(self):
        """zero the whole address space and seed the font glyphs"""
        self.inner[:] = bytes(MEMORY_SIZE)
        self.inner[FONT_START_ADDRESS:FONT_START_ADDRESS+len(C8_FONTS)] = bytes(C8_FONTS)

    def in_workspace(self, address):
        return self.workspace_start <= address < len(self.inner)

    def font_set(self):
        return bytes(self.inner[FONT_START_ADDRESS:FONT_START_ADDRESS+len(C8_FONTS)])

    def load(self, data):
        """copy a program into the workspace and return the number of bytes copied"""
        capacity = len(self.inner) - self.workspace_start
        if len(data) > capacity:
            raise SegmentationFault(
                f"A program of {len(data)} bytes does not fit the {capacity} bytes workspace starting at 0x{self.workspace_start:03x}"
            )
        self.inner[self.workspace_start:self.workspace_start+len(data)] = data
        return len(data)

    def load_rom(self, path):
        """load ROM file from user specified path, errors opening or reading the file propagate"""
        with open(path, mode='rb') as f:
            rom = f.read()
        size = self.load(rom)
        logger.info("The ROM at path %s has been loaded successfully (%d bytes)", path, size)
        return size


# ******************** CPU SECTION
class Chip8:
    # WATCH OUT: masks order is important!!!
    # the most specific masks come first, decode stops at the first match
    MASKS = {
        0xFFFF: (0x00E0, 0x00EE),
        0xF0FF: (0xE09E, 0xE0A1, 0xF007, 0xF00A, 0xF015, 0xF018, 0xF01E, 0xF029, 0xF033, 0xF055, 0xF065),
        0xF00F: (0x5000, 0x8000, 0x8001, 0x8002, 0x8003, 0x8004, 0x8005, 0x8006, 0x8007, 0x800E, 0x9000),
        0xF000: (0x0000, 0x1000, 0x2000, 0x3000, 0x4000, 0x6000, 0x7000, 0xA000, 0xB000, 0xC000, 0xD000),
    }

    def __init__(self, keypad=None, eti_660=False):
        self.eti_660 = eti_660
        self.mem = Memory(eti_660)
        self.stack = Stack()
        self.v_regs = [0] * 16
        self.pc = self.mem.workspace_start
        self.idx = 0    # specify where the sprites reside in memory
        self.dt = 0     # delay timer, active when non-zero
        self.st = 0     # sound timer, active when non-zero
        self.opcode = 0
        self.screen = Framebuffer()
        self.keypad = keypad if keypad is not None else Keypad()
        # per cycle signals read by the host
        self.draw = False
        self.delay_expired = False
        self.beep = False
        self.instructions = {
            0x00E0: self._clear_screen,
            0x00EE: self._return,
            0x0000: self._machine_code,
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
        self.initialize()

    def __str__(self):
        registers = f"PC_REGISTER:0x{self.pc:04x} | IDX_REGISTER:0x{self.idx:04x} | VARIABLE_REGISTERS:{self.v_regs}"
        timers = f"DELAY_TIMER:{self.dt} | SOUND_TIMER:{self.st}"
        stack = f"STACK:{self.stack}"
        devices = f"KEYPAD:{self.keypad}"
        flags = f"OPCODE:0x{self.opcode:04x} | DRAW:{self.draw} | ETI_660:{self.eti_660}"
        return f"{registers}\n{timers}\n{stack}\n{devices}\n{flags}"

    @property
    def screen_2d(self):
        """row view of the screen, screen_2d[y][x]"""
        return self.screen

    def initialize(self):
        """reset every piece of machine state and re-seed the fonts"""
        self.mem.initialize()
        self.stack.reset()
        self.v_regs[:] = [0] * 16
        self.pc = self.mem.workspace_start
        self.idx = 0
        self.dt = 0
        self.st = 0
        self.opcode = 0
        self.screen.clear()
        self.keypad.release_all()
        self.draw = False
        self.delay_expired = False
        self.beep = False

    def load(self, data):
        return self.mem.load(data)

    def load_rom(self, path):
        return self.mem.load_rom(path)

    def font_set(self):
        return self.mem.font_set()

    # ********** FLOW CONTROL
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SYS 0x{address:03x}")
    def _machine_code(self, opcode):
        """0NNN calls a machine code routine of the host CPU, there is none to call"""
        address = opcode & 0x0FFF
        logger.warning("Encountered opcode 0x%04x, which relies on executing machine-specific code. Ignoring.", opcode)
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: RET")
    def _return(self, opcode):
        """return from a subroutine"""
        address = self.stack.pop()
        if not self.mem.in_workspace(address):
            raise SegmentationFault(f"Return address 0x{address:04x} lies outside the workspace")
        self.pc = address
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: JP 0x{address:03x}")
    def _jump(self, opcode):
        address = opcode & 0x0FFF
        if address >= len(self.mem):
            raise SegmentationFault(f"Jump target 0x{address:04x} lies outside memory")
        self.pc = address
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: CALL 0x{address:03x}")
    def _call_addr(self, opcode):
        address = opcode & 0x0FFF
        if not self.mem.in_workspace(address):
            raise SegmentationFault(f"Subroutine address 0x{address:04x} lies outside the workspace")
        self.stack.push(self.pc)
        self.pc = address
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: JP V0, 0x{address:03x}")
    def _jump_plus(self, opcode):
        address = opcode & 0x0FFF
        target = address + self.v_regs[0x0]
        if target > 0xFFF:
            logger.warning("0x%04x opcode jump overflowed with V0=0x%02x, wrapping around", opcode, self.v_regs[0x0])
        self.pc = target & 0xFFF
        return locals()

    # ********** CONDITIONAL SKIPS
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SE V{x:X}, {comparison_value}")
    def _skip_if_eq(self, opcode):
        x = (opcode & 0x0F00) >> 8
        comparison_value = opcode & 0x00FF
        if self.v_regs[x] == comparison_value:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SNE V{x:X}, {comparison_value}")
    def _skip_if_not_eq(self, opcode):
        x = (opcode & 0x0F00) >> 8
        comparison_value = opcode & 0x00FF
        if self.v_regs[x] != comparison_value:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SE V{x:X}, V{y:X}")
    def _skip_if_eq_regs(self, opcode):
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        if self.v_regs[x] == self.v_regs[y]:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SNE V{x:X}, V{y:X}")
    def _skip_if_not_eq_regs(self, opcode):
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        if self.v_regs[x] != self.v_regs[y]:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SKP V{x:X}")
    def _skip_if_pressed(self, opcode):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is pressed"""
        x = (opcode & 0x0F00) >> 8
        key = self.v_regs[x]
        if self.keypad[key]:
            self._goto_next_instruction()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SKNP V{x:X}")
    def _skip_if_not_pressed(self, opcode):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is NOT pressed"""
        x = (opcode & 0x0F00) >> 8
        key = self.v_regs[x]
        if not self.keypad[key]:
            self._goto_next_instruction()
        return locals()

    # ********** REGISTERS
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, {value}")
    def _set_vk(self, opcode):
        """set the value of one of the 16 variable registers, Vx"""
        x, value = (opcode & 0x0F00) >> 8, opcode & 0x00FF
        self.v_regs[x] = value
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: ADD V{x:X}, {value}")
    def _add_to_vk(self, opcode):
        """add to the value already present in one of the variable registers, VF is left alone"""
        x, value = (opcode & 0x0F00) >> 8, opcode & 0x00FF
        self.v_regs[x] = (self.v_regs[x] + value) & 0xFF    # keep only the lowest 8 bits from the result and store them in Vx
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, V{y:X}")
    def _set_vx_to_vy(self, opcode):
        """set the value of Vx equal to that of Vy"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        self.v_regs[x] = self.v_regs[y]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: OR V{x:X}, V{y:X}")
    def _set_vx_or_vy(self, opcode):
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        self.v_regs[x] |= self.v_regs[y]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: AND V{x:X}, V{y:X}")
    def _set_vx_and_vy(self, opcode):
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        self.v_regs[x] &= self.v_regs[y]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: XOR V{x:X}, V{y:X}")
    def _set_vx_xor_vy(self, opcode):
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        self.v_regs[x] ^= self.v_regs[y]
        return locals()

    # the ALU instructions below write Vx first and VF last, so VF holds the flag even when x is 0xF
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: ADD V{x:X}, V{y:X}")
    def _add_vx_vy(self, opcode):
        """set the value of Vx to Vx + Vy, VF = carry"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        total = self.v_regs[x] + self.v_regs[y]
        self.v_regs[x] = total & 0xFF       # keep only the lowest 8 bits from the result and store them in Vx
        self.v_regs[0xF] = 1 if total > 0xFF else 0
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SUB V{x:X}, V{y:X}")
    def _sub_vx_vy(self, opcode):
        """set the value of Vx to Vx - Vy, VF = NOT borrow"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        not_borrow = 1 if self.v_regs[x] >= self.v_regs[y] else 0
        self.v_regs[x] = (self.v_regs[x] - self.v_regs[y]) & 0xFF
        self.v_regs[0xF] = not_borrow
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SHR V{x:X}")
    def _shr(self, opcode):
        """set Vx equal to Vx SHR 1, VF = the bit shifted out"""
        x = (opcode & 0x0F00) >> 8
        lsb = self.v_regs[x] & 0x1
        self.v_regs[x] >>= 1
        self.v_regs[0xF] = lsb
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SUBN V{x:X}, V{y:X}")
    def _subn_vx_vy(self, opcode):
        """set the value of Vx to Vy - Vx, VF = NOT borrow"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        not_borrow = 1 if self.v_regs[y] >= self.v_regs[x] else 0
        self.v_regs[x] = (self.v_regs[y] - self.v_regs[x]) & 0xFF
        self.v_regs[0xF] = not_borrow
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SHL V{x:X}")
    def _shl(self, opcode):
        """set Vx equal to Vx SHL 1, VF = the bit shifted out"""
        x = (opcode & 0x0F00) >> 8
        msb = (self.v_regs[x] & 0x80) >> 7
        self.v_regs[x] = (self.v_regs[x] << 1) & 0xFF   # multiply by 2 and keep only the lowest 8 bits from the result
        self.v_regs[0xF] = msb
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: RND V{x:X}, 0x{kk:02x}")
    def _random_byte_and(self, opcode):
        x, kk = (opcode & 0x0F00) >> 8, opcode & 0x00FF
        rnd = random.randint(0, 255)
        self.v_regs[x] = rnd & kk
        return locals()

    # ********** INDEX REGISTER
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD I, 0x{value:03x}")
    def _set_idx(self, opcode):
        """set the value of the I register"""
        value = opcode & 0x0FFF
        self.idx = value
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: ADD I, V{register:X}")
    def _add_to_idx(self, opcode):
        """set I = I + Vx, VF is left alone"""
        register = (opcode & 0x0F00) >> 8
        total = self.idx + self.v_regs[register]
        if total > 0xFFFF:
            logger.warning("0x%04x opcode overflowed I: 0x%04x Vx: 0x%02x", opcode, self.idx, self.v_regs[register])
        self.idx = total & 0xFFFF
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD F, V{register:X}")
    def _select_char(self, opcode):
        """set I to location of sprite for digit Vx"""
        register = (opcode & 0x0F00) >> 8
        digit = self.v_regs[register] & 0xF
        self.idx = FONT_START_ADDRESS + digit * FONT_BYTES_PER_GLYPH
        return locals()

    # ********** MEMORY
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD B, V{x:X}")
    def _bcd_repr(self, opcode):
        """store the hundreds digit of Vx in memory at I, the tens digit at I+1, the ones digit at I+2"""
        x = (opcode & 0x0F00) >> 8
        if self.idx + 2 >= len(self.mem):
            raise SegmentationFault(f"BCD of V{x:X} at I=0x{self.idx:04x} would write past the end of memory")
        value = self.v_regs[x]
        hundreds, tens, ones = value // 100, (value // 10) % 10, value % 10
        self.mem[self.idx], self.mem[self.idx+1], self.mem[self.idx+2] = hundreds, tens, ones
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD [I], V{x:X}")
    def _store_vregs(self, opcode):
        """store registers V0 through Vx (included) in memory starting at location I, I is unchanged"""
        x = self._block_transfer(opcode)
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, [I]")
    def _load_vregs(self, opcode):
        """read registers V0 through Vx (included) from memory starting at location I, I is unchanged"""
        x = self._block_transfer(opcode)
        return locals()

    def _block_transfer(self, opcode):
        x = (opcode & 0x0F00) >> 8
        if self.idx + x >= len(self.mem):
            logger.warning("0x%04x opcode requested to access past addressable memory bounds. Begin: %d End: %d",
                           opcode, self.idx, self.idx + x)
            raise SegmentationFault(f"Registers V0..V{x:X} do not fit in memory starting at I=0x{self.idx:04x}")
        operation = opcode & 0xF0FF
        if operation == 0xF055:
            self.mem[self.idx:self.idx+x+1] = self.v_regs[:x+1]
        elif operation == 0xF065:
            self.v_regs[:x+1] = self.mem[self.idx:self.idx+x+1]
        else:
            logger.error("Encountered unexpected opcode case. Should not have reached here. Code: 0x%04x", opcode)
            raise UnexpectedError(f"0x{opcode:04x} is not a register block transfer")
        return x

    # ********** TIMERS AND KEYPAD
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, DT")
    def _set_vx_dt(self, opcode):
        """set Vx = DT (delay timer) value"""
        x = (opcode & 0x0F00) >> 8
        self.v_regs[x] = self.dt
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD DT, V{x:X}")
    def _set_dt_vx(self, opcode):
        """set DT (delay timer) = Vx"""
        x = (opcode & 0x0F00) >> 8
        self.dt = self.v_regs[x]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD ST, V{register:X}")
    def _set_st(self, opcode):
        """set ST = Vx"""
        register = (opcode & 0x0F00) >> 8
        self.st = self.v_regs[register]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, K")
    def _wait_keypress(self, opcode):
        """wait for a key press and store its value in Vx"""
        x = (opcode & 0x0F00) >> 8
        if self.keypad.untouched():
            self.pc -= 0x2      # stay on the same instruction until a key is pressed
        else:
            self.v_regs[x] = self.keypad.first()
        return locals()

    # ********** DISPLAY
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: CLS")
    def _clear_screen(self, opcode):
        self.screen.clear()
        self.draw = True
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: DRW V{x:X}, V{y:X}, {n_bytes}")
    def _to_screen(self, opcode):
        """
        display n-byte sprite starting at memory location I at (Vx, Vy), set VF = collision
        sprites are XORed onto the existing screen and if this causes any pixel to be erased then VF=1, otherwise VF=0
        coordinates are not wrapped: the part of the sprite past the right or bottom edge is clipped
        """
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        n_bytes = opcode & 0x000F
        start_x, start_y = self.v_regs[x], self.v_regs[y]
        if n_bytes == 0:
            logger.warning("Opcode 0x%04x attempted to draw sprite with height 0. Skipping draw step", opcode)
            return locals()
        if start_x >= self.screen.w or start_y >= self.screen.h:
            logger.warning("Opcode 0x%04x attempted to draw sprite starting at (%d, %d) outside window. Skipping draw step",
                           opcode, start_x, start_y)
            return locals()
        sprite_end = self.idx + SPRITE_WIDTH * n_bytes
        if sprite_end > len(self.mem):
            logger.warning("Opcode 0x%04x attempted to map sprite data that spanned beyond mappable memory. Start: %d, End: %d",
                           opcode, self.idx, sprite_end)
            raise SegmentationFault(f"Sprite data [0x{self.idx:04x}, 0x{sprite_end:04x}) lies outside memory")

        end_x = min(start_x + SPRITE_WIDTH, self.screen.w)
        end_y = min(start_y + n_bytes, self.screen.h)
        if end_x - start_x < SPRITE_WIDTH or end_y - start_y < n_bytes:
            logger.warning("Attempted to draw a sprite outside of the screen bounds at (%d, %d). "
                           "A partial sprite will be drawn in the viewable screen.", start_x, start_y)

        collision = 0
        for i in range(end_y - start_y):
            sprite_byte = self.mem[self.idx + i]
            row = self.screen_2d[start_y + i]
            for j in range(end_x - start_x):
                bit = (sprite_byte >> (7 - j)) & 0x1        # sprite bytes are read MSB first
                if not bit:
                    continue
                pixel_state = 1 if row[start_x + j] else 0
                if pixel_state:
                    collision = 1
                row[start_x + j] = pixel_state ^ bit
        self.v_regs[0xF] = collision
        self.draw = True
        return locals()

    # ********** FALLBACK
    def _unknown_opcode(self, opcode):
        """opcodes outside the instruction set are ignored, pc was already moved past them by the fetch"""
        logger.warning("Encountered unknown opcode 0x%04x at 0x%04x. Skipping.", opcode, (self.pc - 2) & 0xFFFF)

    def _goto_next_instruction(self):
        self.pc += 0x2

    def decode(self, opcode):
        """decode opcodes using masks and return respective function"""
        for mask, ops in self.MASKS.items():
            if (opcode & mask) in ops:
                return self.instructions[opcode & mask]     # retrieve and return relative instruction
        return self._unknown_opcode

    def execute(self, opcode):
        """decode and run an opcode that was already fetched"""
        self.opcode = opcode
        instruction = self.decode(opcode)
        instruction(opcode)

    def tick_timers(self):
        self.delay_expired = False
        self.beep = False
        if self.dt > 0:
            self.dt -= 1
            if self.dt == 0:
                self.delay_expired = True
                logger.info("Delay expired!")
        if self.st > 0:
            self.beep = True
            logger.info("BEEP!")
            self.st -= 1

    def cycle(self):
        """emulate one machine cycle: fetch opcode, decode opcode, execute opcode, update timers"""
        self.draw = False
        # fetch (each instruction is two bytes long)
        if self.pc + 1 >= len(self.mem):
            raise SegmentationFault(f"Cannot fetch an instruction at 0x{self.pc:04x}")
        opcode = self.mem[self.pc] << 8 | self.mem[self.pc + 1]
        self._goto_next_instruction()
        # decode + execute
        self.execute(opcode)
        # delay/sound timers (dt/st)
        self.tick_timers()
