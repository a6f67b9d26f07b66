#!/usr/bin/env python3
"""
gFrame - Google Drive Photo Frame for Raspberry Pi
Shows a crossfading slideshow of the photos in a Google Drive folder

Usage:
    python main.py [--settings settings.json] [--list-only] [--windowed]

Keys:
    SPACE / RIGHT  next photo
    P              pause / resume
    R              refresh folder now
    ESC / Q        quit
"""

import argparse
import json
import logging
import signal
import sys
import time
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from config_validation import DEFAULT_SETTINGS, SlideshowConfig, validate_settings
from exceptions import ConfigError, DisplayError, FetchError

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
MAX_LOG_SIZE_MB = 10
MAX_LOG_BACKUPS = 3

FRAME_RATE = 30
CREDENTIAL_CHECK_INTERVAL = 60  # seconds

# Set up logging
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger(__name__)


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None) -> None:
    """Apply the configured level and optionally add a rotating log file"""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # googleapiclient logs every discovery lookup at INFO
    logging.getLogger('googleapiclient.discovery_cache').setLevel(logging.ERROR)

    if not log_file:
        return
    try:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=MAX_LOG_SIZE_MB * 1024 * 1024,
            backupCount=MAX_LOG_BACKUPS
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)
        logger.info(f"Logging to {log_file}")
    except OSError as e:
        logger.warning(f"Could not set up log file {log_file}: {e}")


def check_dependencies() -> bool:
    """Check if required dependencies are installed"""
    missing = []

    try:
        import pygame  # noqa: F401
    except ImportError:
        missing.append('pygame-ce')

    try:
        from PIL import Image  # noqa: F401
    except ImportError:
        missing.append('Pillow')

    try:
        import requests  # noqa: F401
    except ImportError:
        missing.append('requests')

    try:
        import googleapiclient  # noqa: F401
    except ImportError:
        missing.append('google-api-python-client')

    if missing:
        logger.error(f"Missing dependencies: {', '.join(missing)}")
        logger.info("Install with: pip install " + " ".join(missing))
        return False

    return True


def create_default_settings(path: str) -> None:
    """Create a default settings file"""
    default_settings = {"folderId": ""}
    default_settings.update({k: v for k, v in DEFAULT_SETTINGS.items() if v is not None})

    with open(path, 'w') as f:
        json.dump(default_settings, f, indent=4)

    logger.info(f"Created default settings at: {path}")
    logger.warning("Please edit settings.json and add your Google Drive folder ID!")


def load_settings(settings_path: str = "settings.json") -> dict:
    """Load settings from JSON file, creating a default one when missing"""
    try:
        with open(settings_path, 'r') as f:
            return json.load(f)
    except FileNotFoundError:
        logger.error(f"Settings file not found: {settings_path}")
        logger.info("Creating default settings file...")
        create_default_settings(settings_path)
        with open(settings_path, 'r') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError("settings", f"Invalid JSON in {settings_path}: {e}")


def list_photos(config: SlideshowConfig) -> int:
    """--list-only: print what the slideshow would show and exit"""
    from auth import TokenFileCredentials
    from gdrive_sync import GoogleDriveGateway

    credentials = TokenFileCredentials(config.token_path, config.credentials_path)
    gateway = GoogleDriveGateway(credentials)
    try:
        photos = gateway.list_images(config.folder_id, config.recursive_search)
    except FetchError as e:
        logger.error(f"Listing failed: {e}")
        return 1

    for photo in photos:
        created = photo.created_at.strftime('%Y-%m-%d') if photo.created_at else '----------'
        print(f"{created}  {photo.id}  {photo.display_name}")
    print(f"{len(photos)} photos")
    return 0


def run(config: SlideshowConfig) -> int:
    """Main slideshow loop"""
    from auth import TokenFileCredentials
    from dispatch import MainLoopDispatcher
    from display import PygameDisplay, get_pygame
    from gdrive_sync import GoogleDriveGateway
    from slideshow import SlideshowController

    running = True

    def _signal_handler(signum, frame):
        nonlocal running
        logger.info("Received signal, shutting down...")
        running = False

    # Setup signal handlers for clean shutdown
    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    credentials = TokenFileCredentials(config.token_path, config.credentials_path)
    gateway = GoogleDriveGateway(credentials)
    dispatcher = MainLoopDispatcher(max_workers=2)
    display = PygameDisplay(config, dispatcher, credentials)

    try:
        display.init_display()
    except DisplayError as e:
        logger.error(str(e))
        dispatcher.shutdown()
        return 1

    controller = SlideshowController(config, gateway, display, dispatcher)
    controller.start()

    clock = get_pygame().time.Clock()
    last_credential_check = time.monotonic()

    try:
        while running:
            for command in display.handle_events():
                if command == 'quit':
                    logger.info("Exit requested")
                    running = False
                elif command == 'skip':
                    controller.skip()
                elif command == 'pause':
                    if controller.paused:
                        controller.resume()
                    else:
                        controller.pause()
                elif command == 'refresh':
                    logger.info("Manual refresh triggered (R key)")
                    controller.scheduler.refresh_now()

            dispatcher.run_pending()
            controller.poll()

            now = time.monotonic()
            if now - last_credential_check >= CREDENTIAL_CHECK_INTERVAL:
                last_credential_check = now
                if credentials.check_for_update():
                    controller.credential_updated()

            dt = clock.tick(FRAME_RATE) / 1000.0
            display.render(dt)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        dispatcher.shutdown()
        display.close()

    logger.info("Slideshow ended")
    return 0


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='gFrame - Google Drive Photo Frame'
    )
    parser.add_argument(
        '--settings',
        default='settings.json',
        help='Path to settings file (default: settings.json)'
    )
    parser.add_argument(
        '--list-only',
        action='store_true',
        help='List the photos of the configured folder and exit'
    )
    parser.add_argument(
        '--windowed',
        action='store_true',
        help='Run in a window instead of fullscreen'
    )

    args = parser.parse_args()

    try:
        config = validate_settings(load_settings(args.settings))
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    if args.windowed:
        config = replace(config, fullscreen=False)

    setup_logging(config.log_level, config.log_file)

    if args.list_only:
        sys.exit(list_photos(config))

    # Check dependencies
    if not check_dependencies():
        sys.exit(1)

    try:
        sys.exit(run(config))
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
