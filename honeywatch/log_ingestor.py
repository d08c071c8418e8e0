# honeywatch/log_ingestor.py
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class TailerStartError(Exception):
    """Raised when a configured log path can never be watched."""


@dataclass(frozen=True)
class Chunk:
    start: int
    end: int
    data: bytes
    rotated: bool = False   # offset was reset because the file shrank


class LogTailer:
    """
    Tracks a byte offset into an append-only log file.

    read_new() hands out [offset, size) without moving the offset,
    commit() moves it once the caller is done with the chunk. A chunk
    that no longer starts at the offset is ignored by commit(), so the
    same range can never be counted twice.
    """

    def __init__(self, path, from_start: bool = False) -> None:
        self.path = Path(path)
        self.from_start = from_start
        self.offset = 0

    def start(self) -> None:
        if not self.path.parent.is_dir():
            raise TailerStartError(
                f"Log directory does not exist: {self.path.parent}")

        if self.from_start:
            self.offset = 0
            return

        # skip history, only new writes matter
        try:
            self.offset = self.path.stat().st_size
        except FileNotFoundError:
            # cowrie has not created the file yet
            self.offset = 0

    def read_new(self) -> Optional[Chunk]:
        """
        Return the newly appended bytes, an empty chunk when nothing grew,
        or None when the file could not be read this time.
        """
        try:
            size = self.path.stat().st_size
        except OSError as e:
            logger.warning("Cannot stat %s, keeping offset %d: %s",
                           self.path, self.offset, e)
            return None

        start = self.offset
        rotated = False
        if size < start:
            logger.info("%s shrank from %d to %d bytes, reading from start",
                        self.path, start, size)
            start = 0
            rotated = True

        if size == start:
            return Chunk(start=start, end=size, data=b"", rotated=rotated)

        try:
            with self.path.open("rb") as f:
                f.seek(start)
                data = f.read(size - start)
        except OSError as e:
            logger.warning("Cannot read %s, keeping offset %d: %s",
                           self.path, self.offset, e)
            return None

        return Chunk(start=start, end=start + len(data), data=data,
                     rotated=rotated)

    def commit(self, chunk: Chunk) -> bool:
        """Advance the offset past chunk. Returns False if it was stale."""
        if chunk.rotated:
            if chunk.start != 0:
                return False
        elif chunk.start != self.offset:
            return False
        if chunk.end == self.offset:
            return False
        self.offset = chunk.end
        return True


if __name__ == "__main__":
    # manual test: print whatever gets appended to the given file
    import sys
    import time

    tailer = LogTailer(sys.argv[1] if len(sys.argv) > 1 else os.devnull)
    tailer.start()
    print(f"Tailing {tailer.path} from offset {tailer.offset}")
    while True:
        chunk = tailer.read_new()
        if chunk and chunk.data:
            print(chunk.data.decode("utf-8", errors="replace"), end="")
            tailer.commit(chunk)
        time.sleep(1)
