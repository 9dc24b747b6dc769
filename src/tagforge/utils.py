"""
Utility functions and configuration for tagforge.
"""

import os
import sys
import logging
import hashlib
import tempfile
from pathlib import Path
from typing import Optional, Union
from logging.handlers import RotatingFileHandler
from threading import Lock

logger = logging.getLogger(__name__)

_TRUTHY = ('1', 'true', 'yes')


def _env_flag(name: str) -> bool:
    """Interpret an environment variable as a boolean flag."""
    return os.getenv(name, '').strip().lower() in _TRUTHY


# ---------- Configuration ----------
class Config:
    """Configuration management with validation."""
    MAX_FILE_SIZE = 500 * 1024 * 1024  # 500MB
    CHUNK_SIZE = 64 * 1024  # 64KB for hashing

    # Multithreading configuration (batch.py only; a single file is never shared)
    MAX_WORKERS = min(32, (os.cpu_count() or 1) + 4)
    MIN_FILES_FOR_PARALLEL = 10
    PROGRESS_LOCK = Lock()

    # Parsing policy
    STRICT_ENCODING = False      # raise InvalidEncodingError instead of lossy replacement
    STRICT_FRAME_SIZES = False   # raise FrameSizeOverflowError instead of keeping parsed frames
    VERIFY_OGG_CRC = True

    DEFAULT_VERBOSE = False

    @classmethod
    def validate(cls) -> None:
        """Validate configuration values."""
        if cls.MAX_FILE_SIZE <= 0:
            raise ValueError("MAX_FILE_SIZE must be positive")
        if cls.CHUNK_SIZE <= 0:
            raise ValueError("CHUNK_SIZE must be positive")
        if cls.MAX_WORKERS <= 0:
            raise ValueError("MAX_WORKERS must be positive")
        if cls.MIN_FILES_FOR_PARALLEL <= 0:
            raise ValueError("MIN_FILES_FOR_PARALLEL must be positive")

    @classmethod
    def load_from_env(cls) -> None:
        """Load configuration from environment variables, updating class attributes."""
        if os.getenv('TAGFORGE_MAX_FILE_SIZE'):
            cls.MAX_FILE_SIZE = int(os.getenv('TAGFORGE_MAX_FILE_SIZE'))
        if os.getenv('TAGFORGE_MAX_WORKERS'):
            cls.MAX_WORKERS = int(os.getenv('TAGFORGE_MAX_WORKERS'))
        if os.getenv('TAGFORGE_MIN_PARALLEL'):
            cls.MIN_FILES_FOR_PARALLEL = int(os.getenv('TAGFORGE_MIN_PARALLEL'))
        if 'TAGFORGE_STRICT_ENCODING' in os.environ:
            cls.STRICT_ENCODING = _env_flag('TAGFORGE_STRICT_ENCODING')
        if 'TAGFORGE_STRICT_FRAME_SIZES' in os.environ:
            cls.STRICT_FRAME_SIZES = _env_flag('TAGFORGE_STRICT_FRAME_SIZES')
        if 'TAGFORGE_VERIFY_OGG_CRC' in os.environ:
            cls.VERIFY_OGG_CRC = _env_flag('TAGFORGE_VERIFY_OGG_CRC')
        if 'TAGFORGE_VERBOSE' in os.environ:
            cls.DEFAULT_VERBOSE = _env_flag('TAGFORGE_VERBOSE')
        cls.validate()


# Thread-safe output helpers
def print_progress_safe(message: str = '', **kwargs) -> None:
    """Thread-safe print function for progress updates."""
    with Config.PROGRESS_LOCK:
        print(message, **kwargs)


# ---------- Logging Setup ----------
def setup_logging(verbose: Optional[bool] = None) -> None:
    """Configure logging with rotation and proper formatting; verbose defaults to Config.DEFAULT_VERBOSE."""
    if verbose is None:
        verbose = Config.DEFAULT_VERBOSE
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir = Path('logs')
    log_dir.mkdir(exist_ok=True)

    file_handler = RotatingFileHandler(
        log_dir / 'tagforge.log',
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            file_handler
        ]
    )


# ---------- File Helpers ----------
def get_file_hash(file_path: Path) -> str:
    """Calculate file hash for verification."""
    hasher = hashlib.sha256()
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(Config.CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def atomic_write(path: Union[str, Path], data: bytes) -> None:
    """
    Replace the contents of path with data in one step.

    The bytes go to a temporary file in the same directory, are flushed to disk,
    and the temporary file is renamed over the original. If anything fails before
    the rename the original file is left exactly as it was.

    Args:
        path: File to replace
        data: Complete new file contents
    """
    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        try:
            os.chmod(tmp_path, path.stat().st_mode & 0o7777)
        except FileNotFoundError:
            pass
        os.replace(tmp_path, path)
    except BaseException:
        try:
            tmp_path.unlink()
        except OSError as cleanup_error:
            logger.warning(f"Failed to remove temporary file {tmp_path}: {cleanup_error}")
        raise
