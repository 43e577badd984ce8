# hostblock/log_reader.py
import logging
from pathlib import Path
from typing import Iterator, Tuple

from .models import Config, LogFile
from .storage import DataStore

logger = logging.getLogger(__name__)


def read_new_lines(log_file: LogFile) -> Iterator[str]:
    """
    Yield lines appended to a log file since its bookmark.

    If the file is now smaller than when it was last read it has been
    rotated, reading starts from the beginning. An unfinished last line is
    left for the next call. Bookmark and size are advanced as lines are read.
    """
    path = Path(log_file.path)
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        logger.debug("Log file %s does not exist", path)
        return

    if size < log_file.size or size < log_file.bookmark:
        logger.info("Log file %s rotated, reading from beginning", path)
        log_file.bookmark = 0
    log_file.size = size

    if log_file.bookmark == size:
        return

    with path.open("rb") as f:
        f.seek(log_file.bookmark)
        for raw in f:
            if not raw.endswith(b"\n"):
                break
            log_file.bookmark += len(raw)
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line.strip():
                continue
            yield line

    # file may have grown while reading
    log_file.size = max(log_file.size, log_file.bookmark)


def persist_bookmark(store: DataStore, log_file: LogFile) -> bool:
    if store.has_file_record(log_file.path):
        return store.update_file(log_file.path)
    return store.add_file(log_file.path)


def poll_log_files(config: Config, store: DataStore) -> Iterator[Tuple[str, str]]:
    """
    Yield (group name, line) for new lines of every configured log file,
    saving each file's bookmark once its lines have been consumed.
    """
    for group in config.log_groups:
        for log_file in group.log_files:
            bookmark, size = log_file.bookmark, log_file.size
            for line in read_new_lines(log_file):
                yield group.name, line
            if (log_file.bookmark, log_file.size) != (bookmark, size):
                if not persist_bookmark(store, log_file):
                    logger.error("Unable to save bookmark for %s", log_file.path)


if __name__ == "__main__":
    import sys

    from .config import configure_logging, load_config

    config = load_config(sys.argv[1] if len(sys.argv) > 1 else "hostblock.yaml")
    configure_logging(config.log_level)

    store = DataStore(config)
    if not store.load_data():
        sys.exit(1)

    for group_name, line in poll_log_files(config, store):
        print(f"[{group_name}] {line}")
