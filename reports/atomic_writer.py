"""
Atomic file writer - ensures no partial writes or corrupted files.
Implements temp-write → fsync → rename pattern for durability.
"""

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Dict, Any

logger = logging.getLogger(__name__)


class AtomicWriteError(Exception):
    """Raised when atomic write operations fail."""
    pass


def write_text_atomic(content: str, output_path: Path) -> Dict[str, Any]:
    """
    Write text atomically: readers see the old file or the new one, never a partial file.

    Args:
        content: Text to write
        output_path: Final path

    Returns:
        Dictionary with write results: status, output_path, bytes_written, duration_seconds

    Raises:
        AtomicWriteError: If the write or rename fails (the temp file is removed)
    """
    start_time = time.time()
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    # Temp file in the same directory so the rename stays on one filesystem
    temp_fd, temp_path_str = tempfile.mkstemp(
        suffix='.tmp',
        prefix=f'{output_path.stem}_',
        dir=output_path.parent
    )
    temp_path = Path(temp_path_str)

    try:
        with os.fdopen(temp_fd, 'w', encoding='utf-8') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, output_path)

    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        raise AtomicWriteError(f"Failed to write {output_path}: {e}") from e

    data = content.encode('utf-8')
    logger.debug(f"Wrote {len(data)} bytes to {output_path}")

    return {
        'status': 'completed',
        'output_path': str(output_path),
        'bytes_written': len(data),
        'duration_seconds': time.time() - start_time
    }


def write_json_atomic(payload: Dict[str, Any], output_path: Path) -> Dict[str, Any]:
    """
    Serialize a dict to JSON and write it atomically.

    Dates and datetimes are written as ISO strings.

    Raises:
        AtomicWriteError: If serialization or the write fails
    """
    try:
        # Serialize first so a bad payload never touches the disk
        json_content = json.dumps(payload, indent=2, default=str)
    except (TypeError, ValueError) as e:
        raise AtomicWriteError(f"JSON serialization failed: {e}") from e

    return write_text_atomic(json_content, output_path)
