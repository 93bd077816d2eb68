"""
Sound Search Configuration Loader
Loads values from the environment (and an optional .env file).
"""
import os
import sys
from pathlib import Path
from dotenv import load_dotenv

# ==========================================
# Path Configuration
# ==========================================
if "__compiled__" in globals() or getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.executable).parent
else:
    ROOT_DIR = Path(__file__).parent

# ==========================================
# Version
# ==========================================
VERSION = "0.1.0"

# Only load .env if it exists
env_file = ROOT_DIR / '.env'
if env_file.exists():
    load_dotenv(env_file)


# Helper to prefer Env Var > Default
def conf(key, default=None, cast=None):
    env_val = os.getenv(key.upper().replace('.', '_'))
    if env_val is None:
        return default
    if cast is None:
        return env_val
    if cast is bool:
        return env_val.strip().lower() in ('true', '1', 'yes', 'on')
    try:
        return cast(env_val)
    except (TypeError, ValueError):
        # Can't use logger here (not configured yet), so use print
        print(f"Warning: Invalid value for {key}: {env_val!r}, using default {default!r}")
        return default


# ==========================================
# EXPORTED CONFIG DICTS
# ==========================================

DEBUG = {
    "log_file": conf("debug.log_file", "sound_search.log"),
    "log_level": conf("debug.log_level", "WARNING" if getattr(sys, 'frozen', False) else "INFO"),
    "log_to_console": conf("debug.log_to_console", not getattr(sys, 'frozen', False), cast=bool),
}

# ACRCloud identification API
# Secrets are read from the environment only (keep them in .env, never in code)
ACRCLOUD = {
    "host": os.getenv("ACRCLOUD_HOST", ""),
    "access_key": os.getenv("ACRCLOUD_ACCESS_KEY", ""),
    "access_secret": os.getenv("ACRCLOUD_ACCESS_SECRET", ""),
    # ~5-10 seconds of audio; smaller samples are rejected before any request
    "min_sample_bytes": conf("acrcloud.min_sample_bytes", 50000, cast=int),
}

# Microphone capture
CAPTURE = {
    "sample_rate": conf("capture.sample_rate", 44100, cast=int),
    "block_size": conf("capture.block_size", 4096, cast=int),
    "max_seconds": conf("capture.max_seconds", 60.0, cast=float),
    "refresh_interval": conf("capture.refresh_interval", 1 / 60, cast=float),
    "device_id": conf("capture.device_id", None, cast=int),  # None = system default
    "device_name": conf("capture.device_name", ""),
    "fft_size": conf("capture.fft_size", 256, cast=int),
    # Container formats in order of preference, resolved through formats.FALLBACKS
    "mime_preferences": [
        m.strip() for m in conf("capture.mime_preferences", "audio/wav").split(",") if m.strip()
    ],
}

# Listen button behaviour (display-side policy, not enforced by capture)
LISTEN = {
    "min_duration": conf("listen.min_duration", 10.0, cast=float),
    "loud_threshold": conf("listen.loud_threshold", 0.1, cast=float),
}
