"""Settings management - saves and loads user preferences."""
import json
import logging
from pathlib import Path
from typing import Optional

from .constants import DEFAULT_ADDRESS, DEFAULT_PORT, TICK_RATE, Color

logger = logging.getLogger(__name__)

# Settings file location (in user's home directory)
SETTINGS_DIR = Path.home() / ".netchess"
SETTINGS_FILE = SETTINGS_DIR / "settings.json"

# Default settings
DEFAULT_SETTINGS = {
    "port": DEFAULT_PORT,
    "address": DEFAULT_ADDRESS,
    "host_color": "BLACK",  # color a joining player asks the host to play
    "tick_rate": TICK_RATE,
}


def load_settings(path: Optional[Path] = None) -> dict:
    """Load settings from file, or return defaults if file doesn't exist."""
    path = path or SETTINGS_FILE
    try:
        if path.exists():
            with open(path, 'r', encoding='utf-8') as f:
                saved = json.load(f)
            if not isinstance(saved, dict):
                raise ValueError("settings file must hold a JSON object")
            # Merge with defaults (in case new settings were added)
            settings = DEFAULT_SETTINGS.copy()
            settings.update(saved)
            logger.debug(f"Settings loaded from {path}: {settings}")
            return settings
        logger.debug(f"Settings file not found at {path}, using defaults")
    except (ValueError, OSError) as e:
        logger.warning(f"Failed to load settings: {e}")
    return DEFAULT_SETTINGS.copy()


def save_settings(settings: dict, path: Optional[Path] = None):
    """Save settings to file."""
    path = path or SETTINGS_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(settings, f, indent=2)
    logger.info(f"Settings saved to {path}")


def get_port(settings: dict) -> int:
    port = settings.get("port", DEFAULT_PORT)
    if isinstance(port, bool) or not isinstance(port, int) or not 0 <= port <= 65535:
        logger.warning(f"Invalid port {port!r} in settings, using {DEFAULT_PORT}")
        return DEFAULT_PORT
    return port


def get_address(settings: dict) -> str:
    return str(settings.get("address", DEFAULT_ADDRESS))


def get_host_color(settings: dict) -> Color:
    name = str(settings.get("host_color", DEFAULT_SETTINGS["host_color"])).upper()
    if name not in Color.__members__:
        logger.warning(f"Invalid host_color {name!r} in settings, using BLACK")
        return Color.BLACK
    return Color[name]


def get_tick_rate(settings: dict) -> int:
    rate = settings.get("tick_rate", TICK_RATE)
    if isinstance(rate, bool) or not isinstance(rate, int) or rate <= 0:
        return TICK_RATE
    return rate
