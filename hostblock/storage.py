# hostblock/storage.py
"""
Data file with suspicious activity per address and log file bookmarks.

Rewriting the whole file on every event would be simple but wasteful, so
single records are changed in place instead:

- a new record is appended to the end of the file
- an update overwrites the fixed-width fields after the record key, the line
  length never changes
- a removal overwrites the first byte of the line with "r", the rest of the
  line stays until the next full rewrite

save_data() rewrites the whole file from memory and drops removed lines. It
runs when the file is missing, after duplicate recovery and on shutdown.
"""
import logging
import os
from datetime import datetime
from typing import BinaryIO, Callable, Dict, Optional, Tuple

from . import records
from .models import AddressRecord, Config

logger = logging.getLogger(__name__)

BACKUP_TIME_FORMAT = "%Y%m%d%H%M%S"


def backup_path_for(data_path: str, when: datetime) -> str:
    return f"{data_path}_{when.strftime(BACKUP_TIME_FORMAT)}.bck"


class DataStore:
    def __init__(
        self,
        config: Config,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.path = config.datafile_path
        self.clock = clock
        self.addresses: Dict[str, AddressRecord] = {}
        # byte offset of the start of each live line, by address / log path
        self._address_offsets: Dict[str, int] = {}
        self._file_offsets: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Loading and full rewrite
    # ------------------------------------------------------------------
    def load_data(self) -> bool:
        """
        Read the data file into self.addresses and the configured log files.
        Config must be loaded already, bookmarks are matched by path.
        """
        logger.info("Loading data from %s", self.path)
        self.addresses.clear()
        self._address_offsets.clear()
        self._file_offsets.clear()

        duplicates_found = False
        orphans = []

        try:
            with open(self.path, "rb") as f:
                offset = 0
                for line in f:
                    record_type = line[:1]
                    if record_type == records.ADDRESS_TYPE:
                        if self._load_address_line(line, offset):
                            duplicates_found = True
                    elif record_type == records.BOOKMARK_TYPE:
                        orphan = self._load_bookmark_line(line, offset)
                        if orphan is not None:
                            orphans.append(orphan)
                    offset += len(line)
        except FileNotFoundError:
            logger.warning("Data file %s does not exist, creating empty one", self.path)
            if not self.save_data():
                logger.error("Unable to create new empty data file!")
                return False
            return True
        except OSError as e:
            logger.error("Unable to read data file %s: %s", self.path, e)
            return False

        for offset, path in orphans:
            self._remove_at(offset, path)

        if duplicates_found and not self._recover_duplicates():
            return False

        logger.info("Loaded %d address record(s)", len(self.addresses))
        return True

    def _load_address_line(self, line: bytes, offset: int) -> bool:
        """Store one "d" line, return True if the address was a duplicate."""
        record = records.parse_address_line(line)
        if record is None:
            logger.warning("Skipping corrupt address record at offset %d", offset)
            return False

        if record.address in self.addresses:
            logger.warning(
                "Address %s is duplicated in data file, new data file without "
                "duplicates will be created!",
                record.address,
            )
            return True

        if record.whitelisted and record.blacklisted:
            logger.warning(
                "Address %s is in whitelist and at the same time in blacklist! "
                "Removing address from blacklist...",
                record.address,
            )
            record.blacklisted = False

        self.addresses[record.address] = record
        self._address_offsets[record.address] = offset
        return False

    def _load_bookmark_line(self, line: bytes, offset: int) -> Optional[Tuple[int, str]]:
        """
        Apply one "b" line to the configured log file with the same path.
        Returns (offset, path) of a line that must be removed, otherwise None.
        """
        bookmark = records.parse_bookmark_line(line)
        if bookmark is None:
            logger.warning("Skipping corrupt bookmark record at offset %d", offset)
            return None

        log_file = self.config.find_log_file(bookmark.path)
        if log_file is None:
            logger.warning(
                "Bookmark for log file %s found in data file, but file not present "
                "in configuration. Removing from data file...",
                bookmark.path,
            )
            return offset, bookmark.path

        log_file.bookmark = bookmark.bookmark
        log_file.size = bookmark.size
        logger.debug("Bookmark: %d Size: %d Path: %s", bookmark.bookmark, bookmark.size, bookmark.path)

        # the last line for a path wins, an older one is removed
        previous = self._file_offsets.get(bookmark.path)
        self._file_offsets[bookmark.path] = offset
        if previous is not None:
            logger.warning("Bookmark for log file %s is duplicated in data file", bookmark.path)
            return previous, bookmark.path
        return None

    def _remove_at(self, offset: int, path: str) -> None:
        found = self._overwrite(
            records.BOOKMARK_TYPE,
            path,
            {path: offset},
            0,
            records.REMOVED_TYPE,
        )
        if found is False:
            logger.error("Unable to remove bookmark for %s at offset %d", path, offset)

    def _recover_duplicates(self) -> bool:
        backup_path = backup_path_for(self.path, self.clock())
        if os.path.exists(backup_path):
            logger.error(
                "Current data file contains duplicate entries and backup creation "
                "failed (backup %s already exists)!",
                backup_path,
            )
            return False
        try:
            os.rename(self.path, backup_path)
        except OSError as e:
            logger.error(
                "Current data file contains duplicate entries and backup creation "
                "failed (file rename failure: %s)!",
                e,
            )
            return False

        if not self.save_data():
            logger.error(
                "Current data file contains duplicate entries, renamed data file "
                "successfully, but failed to save new data file!"
            )
            return False

        logger.warning(
            "Duplicate data found while reading data file! Old data file stored as %s, "
            "new data file without duplicates saved! Merge manually if needed.",
            backup_path,
        )
        return True

    def save_data(self) -> bool:
        """
        Rewrite the whole data file from memory. Not meant for single record
        changes, use it on startup recovery and on shutdown to drop removed
        lines.
        """
        logger.info("Saving data to %s", self.path)
        tmp_path = self.path + ".tmp"
        address_offsets: Dict[str, int] = {}
        file_offsets: Dict[str, int] = {}

        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            with open(tmp_path, "wb") as f:
                offset = 0
                for address in sorted(self.addresses):
                    line = records.format_address_line(self.addresses[address])
                    f.write(line)
                    address_offsets[address] = offset
                    offset += len(line)

                for log_file in self.config.iter_log_files():
                    line = records.format_bookmark_line(log_file)
                    f.write(line)
                    file_offsets[log_file.path] = offset
                    offset += len(line)

                f.flush()
                os.fsync(f.fileno())

            os.replace(tmp_path, self.path)
        except (OSError, ValueError) as e:
            logger.error("Unable to write data file %s: %s", self.path, e)
            self._discard(tmp_path)
            return False

        self._address_offsets = address_offsets
        self._file_offsets = file_offsets
        return True

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Unable to remove temporary file %s: %s", path, e)

    # ------------------------------------------------------------------
    # Address records
    # ------------------------------------------------------------------
    def has_address_record(self, address: str) -> bool:
        return address in self._address_offsets

    def add_address(self, address: str, record: Optional[AddressRecord] = None) -> bool:
        """Append a record for an address that is not in the data file yet."""
        logger.debug("Adding address %s to %s", address, self.path)
        if record is not None:
            if record.address != address:
                logger.error(
                    "Unable to add %s to data file, record is for address %s!",
                    address,
                    record.address,
                )
                return False
            self.addresses[address] = record
        record = self.addresses.get(address)
        if record is None:
            logger.error("Unable to add %s to data file, address is unknown!", address)
            return False
        if address in self._address_offsets:
            logger.error("Unable to add %s to data file, record already exists!", address)
            return False

        try:
            line = records.format_address_line(record)
        except ValueError as e:
            logger.error("Unable to add %s to data file: %s", address, e)
            return False

        offset = self._append(line)
        if offset is None:
            return False
        self._address_offsets[address] = offset
        return True

    def update_address(self, address: str) -> bool:
        """Overwrite the stored fields of an address with the values in memory."""
        logger.debug("Updating address %s in %s", address, self.path)
        record = self.addresses.get(address)
        if record is None:
            logger.error("Unable to update %s in data file, address is unknown!", address)
            return False

        payload = records.format_address_payload(record)
        found = self._overwrite(
            records.ADDRESS_TYPE,
            address,
            self._address_offsets,
            records.ADDRESS_PAYLOAD_START,
            payload,
        )
        if found is None:
            return False
        if not found:
            logger.error("Unable to update %s in data file, record not found in data file!", address)
        return found

    def remove_address(self, address: str) -> bool:
        """Drop an address from memory and mark its line as removed."""
        logger.debug("Removing address %s from %s", address, self.path)
        self.addresses.pop(address, None)
        found = self._overwrite(
            records.ADDRESS_TYPE,
            address,
            self._address_offsets,
            0,
            records.REMOVED_TYPE,
        )
        if found is None:
            return False
        self._address_offsets.pop(address, None)
        if not found:
            logger.error(
                "Tried removing address %s from data file, but record is not present in data file!",
                address,
            )
        return found

    # ------------------------------------------------------------------
    # Log file bookmarks
    # ------------------------------------------------------------------
    def has_file_record(self, path: str) -> bool:
        return path in self._file_offsets

    def add_file(self, path: str) -> bool:
        """Append a bookmark for a configured log file."""
        logger.debug("Adding bookmark for %s to %s", path, self.path)
        log_file = self.config.find_log_file(path)
        if log_file is None:
            logger.error("Unable to add bookmark for %s, log file is not configured!", path)
            return False
        if path in self._file_offsets:
            logger.error("Unable to add bookmark for %s, record already exists!", path)
            return False

        try:
            line = records.format_bookmark_line(log_file)
        except ValueError as e:
            logger.error("Unable to add bookmark for %s: %s", path, e)
            return False

        offset = self._append(line)
        if offset is None:
            return False
        self._file_offsets[path] = offset
        return True

    def update_file(self, path: str) -> bool:
        """Overwrite bookmark and size of a log file, the path stays as is."""
        logger.debug("Updating bookmark for %s in %s", path, self.path)
        log_file = self.config.find_log_file(path)
        if log_file is None:
            logger.error("Unable to update bookmark for %s, log file is not configured!", path)
            return False

        found = self._overwrite(
            records.BOOKMARK_TYPE,
            path,
            self._file_offsets,
            records.BOOKMARK_PAYLOAD_START,
            records.format_bookmark_payload(log_file),
        )
        if found is None:
            return False
        if not found:
            logger.error("Unable to update bookmark for %s, record not found in data file!", path)
        return found

    def remove_file(self, path: str) -> bool:
        """Mark the bookmark line of a log file as removed."""
        logger.debug("Removing bookmark for %s from %s", path, self.path)
        found = self._overwrite(
            records.BOOKMARK_TYPE,
            path,
            self._file_offsets,
            0,
            records.REMOVED_TYPE,
        )
        if found is None:
            return False
        self._file_offsets.pop(path, None)
        if not found:
            logger.error(
                "Tried removing bookmark for %s from data file, but record is not present in data file!",
                path,
            )
        return found

    def replace_file(self, old_path: str, new_path: str) -> bool:
        """
        A path can not change in place since that changes the line length,
        so the old bookmark is removed and a new one appended.
        """
        if not self.remove_file(old_path):
            return False
        return self.add_file(new_path)

    # ------------------------------------------------------------------
    # Low level file access
    # ------------------------------------------------------------------
    def _append(self, line: bytes) -> Optional[int]:
        """Append a line, return the offset it was written at."""
        try:
            with open(self.path, "a+b") as f:
                f.seek(0, os.SEEK_END)
                offset = f.tell()
                if offset > 0:
                    f.seek(offset - 1)
                    if f.read(1) != records.NEWLINE:
                        # unfinished line left by a crash, keep it apart
                        logger.warning("Data file %s does not end with a newline", self.path)
                        f.write(records.NEWLINE)
                        offset += 1
                f.write(line)
        except OSError as e:
            logger.error("Unable to open data file %s for writing: %s", self.path, e)
            return None
        return offset

    def _overwrite(
        self,
        record_type: bytes,
        key: str,
        offsets: Dict[str, int],
        position: int,
        data: bytes,
    ) -> Optional[bool]:
        """
        Write data at position within the live line for key.
        Returns True when written, False when there is no such line and None
        on I/O errors.
        """
        try:
            with open(self.path, "r+b") as f:
                offset = self._locate(f, record_type, key, offsets)
                if offset is None:
                    return False
                f.seek(offset + position)
                f.write(data)
        except OSError as e:
            logger.error("Unable to open data file %s for update: %s", self.path, e)
            return None
        return True

    def _locate(
        self,
        f: BinaryIO,
        record_type: bytes,
        key: str,
        offsets: Dict[str, int],
    ) -> Optional[int]:
        offset = offsets.get(key)
        if offset is not None:
            f.seek(offset)
            if records.line_key(f.readline()) == (record_type, key):
                return offset
            logger.warning("Stale offset for %s in data file, scanning", key)

        f.seek(0)
        offset = 0
        for line in f:
            if records.line_key(line) == (record_type, key):
                offsets[key] = offset
                return offset
            offset += len(line)

        offsets.pop(key, None)
        return None


# TEST BLOCK
if __name__ == "__main__":
    import sys

    from .config import configure_logging, load_config

    config = load_config(sys.argv[1] if len(sys.argv) > 1 else "hostblock.yaml")
    configure_logging(config.log_level)

    store = DataStore(config)
    if not store.load_data():
        sys.exit(1)

    for address, record in sorted(store.addresses.items()):
        print(
            f"{address:>39} score={record.activity_score} count={record.activity_count} "
            f"refused={record.refused_count} whitelisted={record.whitelisted} "
            f"blacklisted={record.blacklisted}"
        )
    for log_file in config.iter_log_files():
        print(f"{log_file.path} bookmark={log_file.bookmark} size={log_file.size}")
