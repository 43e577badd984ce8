# models
from dataclasses import dataclass, field
from typing import Iterator, List, Optional


@dataclass
class AddressRecord:
    address: str
    last_activity: int = 0   # unix timestamp of last suspicious event
    activity_score: int = 0
    activity_count: int = 0  # pattern match count
    refused_count: int = 0   # connections dropped by the firewall
    whitelisted: bool = False
    blacklisted: bool = False
    # not stored in the data file, set by the firewall side after load
    iptables_rule: bool = field(default=False, compare=False)


@dataclass
class LogFile:
    path: str
    bookmark: int = 0        # bytes already read
    size: int = 0            # file size at last read, to detect rotation


@dataclass
class Pattern:
    pattern: str
    score: int = 1


@dataclass
class LogGroup:
    name: str
    log_files: List[LogFile] = field(default_factory=list)
    patterns: List[Pattern] = field(default_factory=list)


@dataclass
class Config:
    log_level: str = "INFO"
    log_check_interval: int = 30
    address_block_score: int = 10
    address_block_multiplier: int = 3600
    datafile_path: str = "/var/lib/hostblock/hostblock.data"
    log_groups: List[LogGroup] = field(default_factory=list)

    def iter_log_files(self) -> Iterator[LogFile]:
        for group in self.log_groups:
            yield from group.log_files

    def find_log_file(self, path: str) -> Optional[LogFile]:
        for log_file in self.iter_log_files():
            if log_file.path == path:
                return log_file
        return None
