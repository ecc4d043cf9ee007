"""
=============================================================================
CONTENT LOADING
=============================================================================

The server answers every GET with one blob of bytes. The blob is read
exactly once, before the listener is bound, from one of two sources:

    --file PATH     Read the whole file.
    (no --file)     Read STDIN until EOF, giving up after
                    --stdin-read-timeout-seconds.

=============================================================================
WHY A HELPER THREAD FOR STDIN?
=============================================================================

sys.stdin.buffer.read() blocks until EOF and cannot be interrupted. Running
it on a daemon thread and join()-ing with a timeout lets the main thread give
up on a silent pipe; the daemon thread dies with the process.

    main thread                       reader thread (daemon)
    ───────────                       ──────────────────────
    start reader ───────────────────► sys.stdin.buffer.read()
    join(timeout)                          │ (blocks)
       │                                   ▼
       ├── reader finished ◄──────── result stored
       └── timeout ──► ContentError

=============================================================================
"""

import logging
import sys
import threading
from dataclasses import dataclass
from typing import BinaryIO, Optional


logger = logging.getLogger(__name__)


class ContentError(Exception):
    """Raised when the content to serve cannot be obtained."""


@dataclass(frozen=True)
class ContentBlob:
    """
    The immutable payload served to every GET request.

    Shared by reference with every handler and connection; responses write
    it out directly and never copy it.
    """

    data: bytes
    source: str = "<memory>"

    def __post_init__(self):
        if not isinstance(self.data, bytes):
            raise TypeError(f"Content must be bytes, got {type(self.data).__name__}")
        if not self.data:
            raise ContentError(
                "No file contents -- please ensure you've specified a file "
                "or fed in data via STDIN"
            )

    def __len__(self) -> int:
        return len(self.data)


def read_file(path: str) -> bytes:
    """
    Read a whole file.

    Raises:
        ContentError: If the file cannot be opened or read.
    """
    logger.info(f"Reading file from path [{path}]")
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise ContentError(f"Failed to read {path}: {e}") from e


def read_stream(stream: BinaryIO, timeout: float) -> bytes:
    """
    Read `stream` to EOF on a daemon thread, waiting at most `timeout`.

    Raises:
        ContentError: On timeout or a read error.
    """
    result: dict = {}

    def reader():
        try:
            result["data"] = stream.read()
        except (OSError, ValueError) as e:
            result["error"] = e

    thread = threading.Thread(target=reader, name="stdin-reader", daemon=True)
    thread.start()
    thread.join(timeout)

    if thread.is_alive():
        raise ContentError(f"Failed to read from STDIN after waiting {timeout:g} seconds")

    if "error" in result:
        raise ContentError(f"Failed to read from STDIN: {result['error']}")

    return result.get("data") or b""


def load_content(
    file_path: Optional[str] = None,
    stdin_timeout: float = 60.0,
    stdin: Optional[BinaryIO] = None,
) -> ContentBlob:
    """
    Obtain the blob to serve.

    Args:
        file_path: File to read. When None, read standard input.
        stdin_timeout: Seconds to wait for standard input to reach EOF.
        stdin: Binary stream to use instead of sys.stdin.buffer.

    Returns:
        A non-empty ContentBlob.

    Raises:
        ContentError: If the source cannot be read, times out, or is empty.
    """
    if file_path:
        data = read_file(file_path)
        source = file_path
    else:
        logger.info(
            f"No file path provided, waiting for input on STDIN "
            f"(max {stdin_timeout:g} seconds)..."
        )
        data = read_stream(stdin if stdin is not None else sys.stdin.buffer, stdin_timeout)
        source = "<stdin>"
        logger.info("Successfully read input from STDIN")

    blob = ContentBlob(data=data, source=source)
    logger.info(f"Read [{len(blob)}] bytes")
    return blob
