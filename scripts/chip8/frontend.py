import argparse
import sys

import os
os.environ["PYGAME_HIDE_SUPPORT_PROMPT"] = "no welcome message"   # this env var disable pygame's welcome message when imported
import pygame
from pygame.locals import (
    K_1, K_2, K_3, K_4,
    K_q, K_w, K_e, K_r,
    K_a, K_s, K_d, K_f,
    K_z, K_x, K_c, K_v,
)

from chip8 import SCREEN_HEIGHT, SCREEN_WIDTH, Chip8, Chip8Error
from rom import load_rom_file


# ******************** STATIC SECTION
# Keypad       Keyboard
# +-+-+-+-+    +-+-+-+-+
# |1|2|3|C|    |1|2|3|4|
# +-+-+-+-+    +-+-+-+-+
# |4|5|6|D|    |Q|W|E|R|
# +-+-+-+-+ => +-+-+-+-+
# |7|8|9|E|    |A|S|D|F|
# +-+-+-+-+    +-+-+-+-+
# |A|0|B|F|    |Z|X|C|V|
# +-+-+-+-+    +-+-+-+-+
KEY_MAPPINGS = {
    K_1: 0x1, K_2: 0x2, K_3: 0x3, K_4: 0xC,
    K_q: 0x4, K_w: 0x5, K_e: 0x6, K_r: 0xD,
    K_a: 0x7, K_s: 0x8, K_d: 0x9, K_f: 0xE,
    K_z: 0xA, K_x: 0x0, K_c: 0xB, K_v: 0xF,
}

FPS = 60                        # timers tick once per frame
DEFAULT_SPEED = 600             # instructions per second
SCALE = 15
BLUE = pygame.Color(80,69,155,255)
LIGHT_BLUE = pygame.Color(136,126,203,255)


# ******************** UTILITIES SECTION
def get_args(argv=None):
    parser = argparse.ArgumentParser()
    parser.add_argument("-f", "--file", required=True, help="input rom file")
    parser.add_argument("-s", "--speed", type=int, default=DEFAULT_SPEED, help="instructions executed per second")
    parser.add_argument("--scale", type=int, default=SCALE, help="size in pixels of a CHIP-8 pixel")
    return parser.parse_args(argv)


# ******************** I/O SECTION
class Screen:
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT, s=SCALE, bg_color=BLUE, fg_color=LIGHT_BLUE):
        self.w, self.h, self.scale = w, h, s
        self.background = bg_color
        self.foreground = fg_color
        self.surface = pygame.display.set_mode(
            (w * self.scale, h * self.scale),
        )
        self.surface.fill(self.background)

    def render(self, framebuffer):
        """repaint the whole surface from the machine framebuffer and show it"""
        self.surface.fill(self.background)
        for x, y in framebuffer.lit():
            pygame.draw.rect(
                self.surface,
                self.foreground,
                (x * self.scale, y * self.scale, self.scale, self.scale)
            )
        pygame.display.flip()


def handle_event(chip, event):
    """update the keypad from a pygame event, return False when the user wants to quit"""
    if event.type == pygame.QUIT:
        return False
    if event.type == pygame.KEYDOWN:
        if event.key == pygame.K_ESCAPE:
            return False
        if event.key in KEY_MAPPINGS:
            chip.keypad[KEY_MAPPINGS[event.key]] = True       # register keypress
    elif event.type == pygame.KEYUP and event.key in KEY_MAPPINGS:
        chip.keypad[KEY_MAPPINGS[event.key]] = False          # register key release
    return True


def run_frame(chip, steps):
    """one host frame: execute steps instructions, then tick the timers; True if the screen changed"""
    redraw = False
    for _ in range(steps):
        chip.step()
        redraw = redraw or chip.draw
    chip.tick_timers()
    return redraw


# ******************** ENTRY POINT SECTION
def main(argv=None):
    args = get_args(argv)
    chip = Chip8()
    try:
        load_rom_file(chip, args.file)
    except (OSError, Chip8Error) as e:
        sys.exit(f"Unable to load {args.file}: {e}")
    # pygame initialization
    pygame.init()
    clock = pygame.time.Clock()
    pygame.display.set_caption(os.path.basename(args.file))
    s = Screen(s=args.scale)
    steps_per_frame = max(1, args.speed // FPS)
    # emulation loop
    run = True
    try:
        while run:
            # frames per second
            clock.tick(FPS)
            # process user input
            # loop throught the event queue
            for event in pygame.event.get():
                run = handle_event(chip, event) and run
            if run and run_frame(chip, steps_per_frame):
                s.render(chip.screen)
    except Chip8Error as e:
        sys.exit(f"********** THE EMULATOR CRASHED ({e}) WITH THE FOLLOWING STATE\n{chip}")
    finally:
        pygame.quit()


if __name__ == "__main__":
    main()
