#!/usr/bin/env python3
"""
Slideshow Display Module
Two-slot pygame presentation surface for HDMI output
Auto-detects the best video driver (X11, KMSDRM or framebuffer), downloads
and scales images off the main thread and animates the crossfade
"""

import io
import logging
import os
import threading
from functools import partial
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse

import requests
from PIL import Image, UnidentifiedImageError

from config_validation import SlideshowConfig
from exceptions import FetchError, InitializationFailed, LoadError

# Don't import pygame yet - we need to set SDL_VIDEODRIVER first
pygame = None
_pygame_lock = threading.Lock()

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds
GOOGLE_HOSTS = ('google.com', 'googleusercontent.com', 'googleapis.com')

# Key bindings
KEY_COMMANDS = {
    'escape': 'quit',
    'q': 'quit',
    'space': 'skip',
    'right': 'skip',
    'p': 'pause',
    'r': 'refresh',
}


def get_pygame():
    global pygame
    if pygame is not None:
        return pygame
    with _pygame_lock:
        # Double-check after acquiring lock
        if pygame is not None:
            return pygame
        import pygame as pg
        pygame = pg
        return pygame


# ============= Geometry =============

def parse_css_size(value: str, reference: int) -> int:
    """Resolve '100%', '800px' or '800' against a reference length (never larger than it)"""
    value = value.strip()
    if value.endswith('%'):
        size = int(reference * float(value[:-1]) / 100)
    else:
        if value.endswith('px'):
            value = value[:-2]
        size = int(float(value))
    return max(1, min(size, reference))


def calculate_fit_size(img_width: int, img_height: int,
                       box_width: int, box_height: int) -> Tuple[int, int, int, int]:
    """
    Calculate scaled dimensions and position to fit image in the box
    maintaining aspect ratio (letterbox/pillarbox as needed)

    Returns: (x, y, width, height)
    """
    img_ratio = img_width / img_height
    box_ratio = box_width / box_height

    if img_ratio > box_ratio:
        # Image is wider - fit to width
        new_width = box_width
        new_height = max(1, int(box_width / img_ratio))
    else:
        # Image is taller - fit to height
        new_height = box_height
        new_width = max(1, int(box_height * img_ratio))

    x = (box_width - new_width) // 2
    y = (box_height - new_height) // 2
    return x, y, new_width, new_height


def calculate_fill_size(img_width: int, img_height: int,
                        box_width: int, box_height: int) -> Tuple[int, int, int, int]:
    """
    Calculate the crop that fills the box without distortion
    Returns: (source_x, source_y, source_w, source_h)
    """
    img_ratio = img_width / img_height
    box_ratio = box_width / box_height

    if img_ratio > box_ratio:
        # Image is wider - crop sides
        crop_height = img_height
        crop_width = max(1, int(img_height * box_ratio))
        crop_x = (img_width - crop_width) // 2
        crop_y = 0
    else:
        # Image is taller - crop top/bottom
        crop_width = img_width
        crop_height = max(1, int(img_width / box_ratio))
        crop_x = 0
        crop_y = (img_height - crop_height) // 2

    return crop_x, crop_y, crop_width, crop_height


# ============= Image loading (worker threads) =============

def _is_google_url(url: str) -> bool:
    host = urlparse(url).hostname or ''
    return any(host == h or host.endswith('.' + h) for h in GOOGLE_HOSTS)


def fetch_image(url: str, credentials=None, timeout: int = REQUEST_TIMEOUT) -> bytes:
    """Download image bytes. Google URLs get the Drive bearer token when one is available."""
    headers = {}
    if credentials is not None and _is_google_url(url):
        try:
            credentials.get_credential().apply(headers)
        except FetchError as e:
            logger.debug(f"Fetching {url} without credentials: {e}")

    try:
        response = requests.get(url, headers=headers, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise LoadError(url, str(e)) from e

    content_type = response.headers.get('content-type', '')
    if content_type.startswith('text/html'):
        raise LoadError(url, "got an HTML page instead of an image")
    return response.content


def prepare_image(data: bytes, box: Tuple[int, int], mode: str = 'contain',
                  bg_color: Tuple[int, int, int] = (0, 0, 0), url: str = "") -> Image.Image:
    """
    Decode and scale to exactly box size.
    cover crops to fill, contain letterboxes on bg_color, fill stretches.
    """
    box_width, box_height = box
    try:
        with Image.open(io.BytesIO(data)) as pil_image:
            # Convert to RGB if necessary
            if pil_image.mode != 'RGB':
                pil_image = pil_image.convert('RGB')
            img_width, img_height = pil_image.size

            if mode == 'cover':
                crop_x, crop_y, crop_w, crop_h = calculate_fill_size(img_width, img_height, box_width, box_height)
                cropped = pil_image.crop((crop_x, crop_y, crop_x + crop_w, crop_y + crop_h))
                return cropped.resize((box_width, box_height), Image.Resampling.LANCZOS)
            if mode == 'fill':
                return pil_image.resize((box_width, box_height), Image.Resampling.LANCZOS)

            x, y, new_width, new_height = calculate_fit_size(img_width, img_height, box_width, box_height)
            resized = pil_image.resize((new_width, new_height), Image.Resampling.LANCZOS)
            background = Image.new('RGB', (box_width, box_height), bg_color)
            background.paste(resized, (x, y))
            return background
    except UnidentifiedImageError as e:
        raise LoadError(url, f"unsupported image format: {e}") from e
    except (OSError, ValueError) as e:
        raise LoadError(url, f"cannot decode image: {e}") from e
    except MemoryError as e:
        raise LoadError(url, "out of memory") from e


def load_image(url: str, box: Tuple[int, int], mode: str,
               bg_color: Tuple[int, int, int], credentials=None) -> Image.Image:
    return prepare_image(fetch_image(url, credentials), box, mode, bg_color, url)


# ============= Slots and overlay =============

class PygameSlot:
    """One image slot. Loads run on the dispatcher; only the newest load is kept."""

    def __init__(self, index: int, display: "PygameDisplay"):
        self.index = index
        self._display = display
        self.image = None
        self.alpha = 0.0
        self.target = 0.0
        self._token = 0
        # Decoded but not yet accepted; becomes the image when the slot is faded in
        self._pending_image = None

    def set_source(self, url: str, on_success: Callable[[], None],
                   on_failure: Callable[[Optional[Exception]], None]) -> None:
        self._token += 1
        token = self._token
        self._pending_image = None
        d = self._display
        d.dispatcher.submit(
            load_image, url, d.image_box(), d.config.mode, d.config.background_color, d.credentials,
            on_success=partial(self._loaded, token, on_success, on_failure),
            on_failure=partial(self._failed, token, on_failure),
        )

    def _loaded(self, token: int, on_success, on_failure, pil_image: Image.Image) -> None:
        if token != self._token:
            return
        pg = get_pygame()
        try:
            surface = self._to_surface(pil_image)
        except (pg.error, ValueError) as e:
            on_failure(e)
            return
        self._pending_image = surface
        on_success()

    @staticmethod
    def _to_surface(pil_image: Image.Image):
        pg = get_pygame()
        surface = pg.image.frombytes(pil_image.tobytes(), pil_image.size, pil_image.mode)
        if pg.display.get_surface() is not None:
            surface = surface.convert()
        return surface

    def _failed(self, token: int, on_failure, error: Exception) -> None:
        if token != self._token:
            return
        self._pending_image = None
        on_failure(error)

    def set_opacity(self, value: float) -> None:
        if value > 0 and self._pending_image is not None:
            # Swap only when this slot becomes the visible one, never mid fade-out
            self.image = self._pending_image
            self._pending_image = None
            self.alpha = 0.0
        self.target = value

    def step(self, dt: float, fade_seconds: float) -> None:
        """Move alpha toward the target opacity"""
        if fade_seconds <= 0:
            self.alpha = self.target
            return
        delta = dt / fade_seconds
        if self.alpha < self.target:
            self.alpha = min(self.target, self.alpha + delta)
        elif self.alpha > self.target:
            self.alpha = max(self.target, self.alpha - delta)


class TextOverlay:
    """Photo info caption drawn over the bottom of the screen"""

    def __init__(self):
        self.text = ""

    def set_text(self, text: str) -> None:
        self.text = text or ""


# ============= Display =============

class PygameDisplay:
    """Fullscreen two-slot slideshow surface"""

    def __init__(self, config: SlideshowConfig, dispatcher, credentials=None):
        self.config = config
        self.dispatcher = dispatcher
        self.credentials = credentials
        self.slots: List[PygameSlot] = [PygameSlot(0, self), PygameSlot(1, self)]
        self.overlay: Optional[TextOverlay] = TextOverlay() if config.show_photo_info else None
        self.message: Optional[str] = None

        self.screen = None
        self.screen_width = 0
        self.screen_height = 0
        self.display_mode = None  # 'x11', 'kmsdrm', 'fbcon' or 'sdl-default'
        self.font = None
        self.message_font = None

    # ----- presentation surface interface -----

    def viewport(self) -> Tuple[int, int]:
        return self.screen_width or 1920, self.screen_height or 1080

    def image_box(self) -> Tuple[int, int]:
        width, height = self.viewport()
        return (parse_css_size(self.config.max_width, width),
                parse_css_size(self.config.max_height, height))

    def show_message(self, text: str) -> None:
        logger.info(f"Status: {text}")
        self.message = text

    def clear_message(self) -> None:
        self.message = None

    # ----- setup -----

    def _get_display_resolution(self) -> Tuple[int, int]:
        """Try to get display resolution from the framebuffer, fall back to 1080p"""
        try:
            with open('/sys/class/graphics/fb0/virtual_size', 'r') as f:
                width, height = map(int, f.read().strip().split(','))
                logger.info(f"Framebuffer resolution: {width}x{height}")
                return width, height
        except (OSError, ValueError):
            pass
        return 1920, 1080

    def _is_x11_running(self) -> bool:
        """Check if X11 is running by checking for X11 socket files"""
        if os.environ.get('DISPLAY'):
            return True
        return any(os.path.exists(f'/tmp/.X11-unix/X{d}') for d in (0, 1))

    def _init_x11(self) -> bool:
        os.environ['SDL_VIDEODRIVER'] = 'x11'
        os.environ.setdefault('DISPLAY', ':0')
        logger.info(f"Trying X11 driver on DISPLAY={os.environ['DISPLAY']}...")
        return True

    def _init_kmsdrm(self) -> bool:
        logger.info("Trying KMSDRM driver...")
        os.environ['SDL_VIDEODRIVER'] = 'kmsdrm'
        os.environ['SDL_NOMOUSE'] = '1'
        return True

    def _init_framebuffer(self) -> bool:
        fb_device = '/dev/fb0'
        if not os.access(fb_device, os.R_OK | os.W_OK):
            logger.debug(f"No access to {fb_device}; add user to video group: sudo usermod -a -G video $USER")
            return False
        os.environ['SDL_VIDEODRIVER'] = 'fbcon'
        os.environ['SDL_FBDEV'] = fb_device
        os.environ['SDL_NOMOUSE'] = '1'
        logger.info("Trying framebuffer (fbcon) driver...")
        return True

    def _init_sdl_default(self) -> bool:
        logger.info("Trying SDL default driver (auto-detect)...")
        os.environ.pop('SDL_VIDEODRIVER', None)
        return True

    def _load_font(self, size: int):
        pg = get_pygame()
        for name in ('Noto Sans CJK SC', 'DejaVuSans'):
            try:
                return pg.font.SysFont(name, size, bold=True)
            except (pg.error, FileNotFoundError):
                continue
        return pg.font.Font(None, size)

    def init_display(self) -> None:
        """Initialize pygame display, trying video drivers in order"""
        pg = get_pygame()
        width, height = self._get_display_resolution()

        if self._is_x11_running():
            drivers = [('x11', self._init_x11), ('kmsdrm', self._init_kmsdrm), ('fbcon', self._init_framebuffer)]
        else:
            drivers = [('kmsdrm', self._init_kmsdrm), ('fbcon', self._init_framebuffer), ('x11', self._init_x11)]
        drivers.append(('sdl-default', self._init_sdl_default))

        for driver_name, init_func in drivers:
            try:
                if not init_func():
                    continue
                pg.init()
                pg.display.init()

                if self.config.fullscreen:
                    flags = pg.FULLSCREEN | pg.DOUBLEBUF | pg.NOFRAME
                    self.screen = pg.display.set_mode((width, height), flags)
                else:
                    self.screen = pg.display.set_mode((width // 2, height // 2))
                self.screen_width, self.screen_height = self.screen.get_size()

                pg.mouse.set_visible(False)
                pg.display.set_caption("gFrame")
                self.font = self._load_font(22)
                self.message_font = self._load_font(32)
                self.display_mode = driver_name
                logger.info(f"Display initialized using {driver_name} driver "
                            f"({self.screen_width}x{self.screen_height})")
                return
            except pg.error as e:
                logger.warning(f"Failed to initialize {driver_name}: {e}")
                pg.quit()

        tried = ", ".join(d[0] for d in drivers)
        raise InitializationFailed(
            f"Failed to initialize display. Tried: {tried}\n"
            "Troubleshooting:\n"
            "  - Ensure HDMI display is connected\n"
            "  - Install pygame-ce: pip install pygame-ce\n"
            "  - Make sure you're in the video group: groups $USER"
        )

    # ----- main loop hooks -----

    def handle_events(self) -> List[str]:
        """Translate pygame events into commands ('quit', 'skip', 'pause', 'refresh')"""
        pg = get_pygame()
        commands = []
        for event in pg.event.get():
            if event.type == pg.QUIT:
                commands.append('quit')
            elif event.type == pg.KEYDOWN:
                command = KEY_COMMANDS.get(pg.key.name(event.key))
                if command:
                    commands.append(command)
        return commands

    def render(self, dt: float) -> None:
        pg = get_pygame()
        if self.screen is None:
            return

        self.screen.fill(self.config.background_color)

        box_width, box_height = self.image_box()
        x = (self.screen_width - box_width) // 2
        y = (self.screen_height - box_height) // 2

        # Fading-out slot first, fading-in slot on top
        for slot in sorted(self.slots, key=lambda s: s.target):
            slot.step(dt, self.config.transition_speed)
            if slot.image is None or slot.alpha <= 0:
                continue
            slot.image.set_alpha(int(255 * slot.alpha * self.config.opacity))
            self.screen.blit(slot.image, (x, y))

        if self.overlay is not None and self.overlay.text:
            self._draw_caption(self.overlay.text)
        if self.message:
            self._draw_message(self.message)

        pg.display.flip()

    def _draw_caption(self, text: str) -> None:
        pg = get_pygame()
        text_surface = self.font.render(text, True, (230, 230, 230))
        bar_height = text_surface.get_height() + 16
        bar = pg.Surface((self.screen_width, bar_height), pg.SRCALPHA)
        bar.fill((30, 30, 30, 110))
        self.screen.blit(bar, (0, self.screen_height - bar_height))
        self.screen.blit(text_surface, (20, self.screen_height - bar_height + 8))

    def _draw_message(self, text: str) -> None:
        text_surface = self.message_font.render(text, True, (200, 200, 200))
        rect = text_surface.get_rect(center=(self.screen_width // 2, self.screen_height // 2))
        self.screen.blit(text_surface, rect)

    def close(self) -> None:
        if self.screen is not None:
            get_pygame().quit()
            self.screen = None
