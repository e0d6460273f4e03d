# Host side of the interpreter: window, keyboard, command line and the paced
# emulation loop. The interpreter core in chip8.py knows nothing about any of it.


import argparse
import logging
import os
import sys

os.environ["PYGAME_HIDE_SUPPORT_PROMPT"] = "no welcome message"   # this env var disable pygame's welcome message when imported
import pygame
from pygame.locals import (
    K_0, K_1, K_2, K_3,
    K_4, K_5, K_6, K_7,
    K_8, K_9, K_a, K_b,
    K_c, K_d, K_e, K_f,
)

from chip8 import DEBUG, SCREEN_HEIGHT, SCREEN_WIDTH, Chip8, Chip8Error


logger = logging.getLogger(__name__)


# ******************** STATIC SECTION
KEY_MAPPINGS = {
    K_0: 0x0,
    K_1: 0x1,
    K_2: 0x2,
    K_3: 0x3,
    K_4: 0x4,
    K_5: 0x5,
    K_6: 0x6,
    K_7: 0x7,
    K_8: 0x8,
    K_9: 0x9,
    K_a: 0xA,
    K_b: 0xB,
    K_c: 0xC,
    K_d: 0xD,
    K_e: 0xE,
    K_f: 0xF,
}

SCALE = 15
CYCLES_PER_SECOND = 300
ON_ERROR_POLICIES = ("abort", "reset")
BLUE = pygame.Color(80,69,155,255)
LIGHT_BLUE = pygame.Color(136,126,203,255)
LOG_FORMAT = "[%(levelname)s]:  %(message)s"


# ******************** UTILITIES SECTION
def get_args(argv=None):
    parser = argparse.ArgumentParser(description="CHIP-8 interpreter")
    parser.add_argument("-f", "--file", required=True, help="input rom file")
    parser.add_argument("--eti-660", action="store_true", help="load the rom and start execution at 0x600 (ETI 660 programs)")
    parser.add_argument("--hz", type=int, default=CYCLES_PER_SECOND, help="cycles executed per second")
    parser.add_argument("--scale", type=int, default=SCALE, help="size in window pixels of a single CHIP-8 pixel")
    parser.add_argument("--on-error", choices=ON_ERROR_POLICIES, default="abort",
                        help="abort: quit printing the machine state, reset: reinitialize the machine and reload the rom")
    args = parser.parse_args(argv)
    if args.hz <= 0:
        parser.error("--hz must be a positive number of cycles per second")
    if args.scale <= 0:
        parser.error("--scale must be a positive number")
    return args

def configure_logging(debug=DEBUG):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stdout,
    )


# ******************** I/O SECTION
class Screen:
    """pygame window showing a Framebuffer, each CHIP-8 pixel becomes a scale x scale square"""
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT, s=SCALE, bg_color=BLUE, fg_color=LIGHT_BLUE):
        self.w, self.h, self.scale = w, h, s
        self.background = bg_color
        self.foreground = fg_color
        self.surface = pygame.display.set_mode(
            (w * self.scale, h * self.scale),
        )
        self.surface.fill(self.background)

    def read_pixel(self, x, y):
        """return 1 if pixel is ON, return 0 if pixel is OFF"""
        p = self.surface.get_at_mapped((x * self.scale, y * self.scale))
        return 0 if p == self.surface.map_rgb(self.background) else 1

    def write_pixel(self, x, y, color):
        """
        set a pixel on the screen, being it a foreground pixel or a background one
        the change won't be immediatly visible because it'll require a call to the static method refresh
        """
        pygame.draw.rect(
            self.surface,
            self.background if color==0 else self.foreground,
            (x * self.scale, y * self.scale, self.scale, self.scale)
        )

    def draw(self, framebuffer):
        """repaint the whole window from the interpreter's framebuffer"""
        for y in range(self.h):
            for x in range(self.w):
                self.write_pixel(x, y, framebuffer.read_pixel(x, y))

    @staticmethod
    def refresh():
        pygame.display.flip()

    def clear(self):
        self.surface.fill(self.background)
        pygame.display.flip()


def handle_events(keypad, events=None):
    """
    apply keyboard events to the keypad
    return False when the user asked to quit, True otherwise
    """
    if events is None:
        events = pygame.event.get()
    run = True
    for event in events:
        if event.type == pygame.QUIT:
            run = False
        elif event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
            run = False
        elif event.type in (pygame.KEYDOWN, pygame.KEYUP) and event.key in KEY_MAPPINGS:
            pressed = event.type == pygame.KEYDOWN
            keypad[KEY_MAPPINGS[event.key]] = pressed
            logger.debug("Key State Changed.  Key: %X, Pressed: %s.", KEY_MAPPINGS[event.key], pressed)
    return run


# ******************** EMULATION LOOP SECTION
def run(chip, screen, rom, hz=CYCLES_PER_SECOND, on_error="abort", max_cycles=None):
    """
    drive the interpreter one cycle at a time, paced to hz cycles per second
    max_cycles bounds the loop, None runs until the user quits
    """
    clock = pygame.time.Clock()
    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        clock.tick(hz)
        cycles += 1
        if not handle_events(chip.keypad):
            break
        try:
            chip.cycle()    # emulate one machine cycle (fetch opcode, decode opcode, execute opcode, update timers)
        except Chip8Error as err:
            if on_error == "reset":
                logger.error("%s: %s. Resetting the machine.", type(err).__name__, err)
                chip.initialize()
                chip.load_rom(rom)
                screen.clear()
                continue
            logger.error("%s: %s", type(err).__name__, err)
            sys.exit(f"********** THE EMULATOR CRASHED WITH THE FOLLOWING STATE\n{chip}")
        # refresh screen if needed
        if chip.draw:
            screen.draw(chip.screen)
            screen.refresh()
    return cycles


# ******************** ENTRY POINT SECTION
def main(argv=None):
    args = get_args(argv)
    configure_logging()
    chip = Chip8(eti_660=args.eti_660)
    try:
        chip.load_rom(args.file)
    except (OSError, Chip8Error) as err:
        sys.exit(f"Cannot load {args.file}: {err}")
    # pygame initialization
    pygame.init()
    try:
        pygame.display.set_caption(os.path.basename(args.file))
        s = Screen(s=args.scale)
        run(chip, s, args.file, hz=args.hz, on_error=args.on_error)
    finally:
        pygame.quit()


if __name__ == "__main__":
    main()
