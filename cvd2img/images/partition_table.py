"""GPT partition table construction for assembled disk images.

The assembler leaves 40 zeroed sectors before the first payload and after
the last one. This module fills them with a protective MBR, the primary GPT
header and entry array at the front, and the backup entry array and header
at the back. Payload sectors are never touched.

Writers implement a small protocol so the table can be produced either in
pure Python (:class:`GptTableWriter`) or by the system ``sgdisk`` tool
(:class:`SgdiskTableWriter`).
"""
from __future__ import annotations

import os
import shutil
import struct
import subprocess
import uuid
import zlib
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from cvd2img.domain.models import SECTOR_SIZE, LaidOutPartition, PartitionTableEntry
from cvd2img.logging import LoggerFactory

from .exceptions import PartitionCommitError, PartitionTableError

log = LoggerFactory.for_partitions()

FIRST_PARTITION_SECTOR = 40
DEFAULT_FS_HINT = "ext2"

GPT_SIGNATURE = b"EFI PART"
GPT_REVISION = 0x00010000
GPT_HEADER_SIZE = 92
GPT_ENTRY_COUNT = 128
GPT_ENTRY_SIZE = 128
GPT_ENTRY_SECTORS = GPT_ENTRY_COUNT * GPT_ENTRY_SIZE // SECTOR_SIZE  # 32
GPT_NAME_CHARS = 36
GPT_NAME_BYTES = GPT_NAME_CHARS * 2
GPT_HEADER_FORMAT = "<8sIIIIQQQQ16sQIII"
GPT_ENTRY_FORMAT = "<16s16sQQQ72s"

# Filesystem hints map to partition type GUIDs the same way parted does.
LINUX_DATA_GUID = uuid.UUID("0FC63DAF-8483-4772-8E79-3D69D8477DE4")
FS_TYPE_GUIDS = {
    "ext2": LINUX_DATA_GUID,
    "ext3": LINUX_DATA_GUID,
    "ext4": LINUX_DATA_GUID,
    "fat16": uuid.UUID("EBD0A0A2-B9E5-4433-87C0-68B6B72699C7"),
    "fat32": uuid.UUID("EBD0A0A2-B9E5-4433-87C0-68B6B72699C7"),
    "linux-swap": uuid.UUID("0657FD6D-A4AB-43C4-84E5-0933C84B4F4F"),
}
SGDISK_TYPE_CODES = {
    "ext2": "8300",
    "ext3": "8300",
    "ext4": "8300",
    "fat16": "0700",
    "fat32": "0700",
    "linux-swap": "8200",
}


class PartitionTableWriter(Protocol):
    def create_table(self) -> None:
        ...

    def add_partition(
        self, name: str, start_sector: int, end_sector: int, fs_hint: str = DEFAULT_FS_HINT
    ) -> None:
        ...

    def commit(self) -> None:
        ...


def compute_entries(
    layout: Sequence[LaidOutPartition],
    *,
    first_sector: int = FIRST_PARTITION_SECTOR,
    fs_hint: str = DEFAULT_FS_HINT,
) -> list[PartitionTableEntry]:
    """Derive contiguous table entries from an assembled layout."""
    entries: list[PartitionTableEntry] = []
    start_sector = first_sector
    for index, part in enumerate(layout, start=1):
        if part.byte_size <= 0:
            raise PartitionTableError(
                "partition payload is empty", index, part.partition_name
            )
        length = part.sector_count
        entries.append(
            PartitionTableEntry(
                name=part.partition_name,
                start_sector=start_sector,
                end_sector=start_sector + length - 1,
                fs_hint=fs_hint,
            )
        )
        start_sector += length
    return entries


# ==============================================================================
# Pure Python GPT writer
# ==============================================================================


def _crc32(data: bytes) -> int:
    return zlib.crc32(data) & 0xFFFFFFFF


def _encode_name(name: str) -> bytes:
    encoded = name.encode("utf-16-le")
    return encoded.ljust(GPT_NAME_BYTES, b"\x00")


def _protective_mbr(total_sectors: int) -> bytes:
    mbr = bytearray(SECTOR_SIZE)
    entry = struct.pack(
        "<B3sB3sII",
        0x00,
        b"\x00\x02\x00",
        0xEE,
        b"\xff\xff\xff",
        1,
        min(total_sectors - 1, 0xFFFFFFFF),
    )
    mbr[446:446 + len(entry)] = entry
    mbr[510:512] = b"\x55\xaa"
    return bytes(mbr)


class GptTableWriter:
    """Writes a GPT into the reserved head and tail sectors of a file."""

    def __init__(
        self,
        path: Path,
        *,
        disk_guid: Optional[uuid.UUID] = None,
        guid_factory: Callable[[], uuid.UUID] = uuid.uuid4,
    ):
        self.path = Path(path)
        self.disk_guid = disk_guid
        self.guid_factory = guid_factory
        self.total_sectors = 0
        self.partitions: list[tuple[PartitionTableEntry, uuid.UUID, uuid.UUID]] = []
        self._created = False

    @property
    def last_lba(self) -> int:
        return self.total_sectors - 1

    @property
    def first_usable_lba(self) -> int:
        return 2 + GPT_ENTRY_SECTORS

    @property
    def last_usable_lba(self) -> int:
        return self.last_lba - GPT_ENTRY_SECTORS - 1

    def create_table(self) -> None:
        try:
            size = self.path.stat().st_size
        except OSError as error:
            raise PartitionTableError(f"cannot open device {self.path}: {error}") from error
        self.total_sectors = size // SECTOR_SIZE
        if self.last_usable_lba < self.first_usable_lba:
            raise PartitionTableError(
                f"device {self.path} is too small for a GPT ({size} bytes)"
            )
        if self.disk_guid is None:
            self.disk_guid = self.guid_factory()
        self.partitions = []
        self._created = True

    def add_partition(
        self, name: str, start_sector: int, end_sector: int, fs_hint: str = DEFAULT_FS_HINT
    ) -> None:
        index = len(self.partitions) + 1
        if not self._created:
            raise PartitionTableError("no partition table created", index, name)
        if index > GPT_ENTRY_COUNT:
            raise PartitionTableError(
                f"table holds at most {GPT_ENTRY_COUNT} partitions", index, name
            )
        type_guid = FS_TYPE_GUIDS.get(fs_hint)
        if type_guid is None:
            raise PartitionTableError(f"unknown filesystem type {fs_hint!r}", index, name)
        if not name or len(name.encode("utf-16-le")) > GPT_NAME_BYTES:
            raise PartitionTableError(
                f"name must be 1-{GPT_NAME_CHARS} UTF-16 code units", index, name
            )
        if end_sector < start_sector:
            raise PartitionTableError(
                f"end sector {end_sector} precedes start sector {start_sector}", index, name
            )
        if start_sector < self.first_usable_lba or end_sector > self.last_usable_lba:
            raise PartitionTableError(
                f"sectors {start_sector}-{end_sector} outside usable range "
                f"{self.first_usable_lba}-{self.last_usable_lba}",
                index,
                name,
            )
        for existing, _, _ in self.partitions:
            if start_sector <= existing.end_sector and end_sector >= existing.start_sector:
                raise PartitionTableError(
                    f"overlaps partition {existing.name}", index, name
                )
        entry = PartitionTableEntry(name, start_sector, end_sector, fs_hint=fs_hint)
        self.partitions.append((entry, type_guid, self.guid_factory()))
        log.debug(f"partition {index} {name}: sectors {start_sector}-{end_sector}")

    def _entry_array(self) -> bytes:
        array = bytearray(GPT_ENTRY_COUNT * GPT_ENTRY_SIZE)
        for slot, (entry, type_guid, unique_guid) in enumerate(self.partitions):
            packed = struct.pack(
                GPT_ENTRY_FORMAT,
                type_guid.bytes_le,
                unique_guid.bytes_le,
                entry.start_sector,
                entry.end_sector,
                0,
                _encode_name(entry.name),
            )
            offset = slot * GPT_ENTRY_SIZE
            array[offset:offset + GPT_ENTRY_SIZE] = packed
        return bytes(array)

    def _header(self, current_lba: int, backup_lba: int, entries_lba: int, entries_crc: int) -> bytes:
        fields = [
            GPT_SIGNATURE,
            GPT_REVISION,
            GPT_HEADER_SIZE,
            0,
            0,
            current_lba,
            backup_lba,
            self.first_usable_lba,
            self.last_usable_lba,
            self.disk_guid.bytes_le,
            entries_lba,
            GPT_ENTRY_COUNT,
            GPT_ENTRY_SIZE,
            entries_crc,
        ]
        header = struct.pack(GPT_HEADER_FORMAT, *fields)
        fields[3] = _crc32(header)
        header = struct.pack(GPT_HEADER_FORMAT, *fields)
        return header.ljust(SECTOR_SIZE, b"\x00")

    def commit(self) -> None:
        if not self._created:
            raise PartitionCommitError("no partition table created")
        entries = self._entry_array()
        entries_crc = _crc32(entries)
        backup_entries_lba = self.last_lba - GPT_ENTRY_SECTORS
        primary = self._header(1, self.last_lba, 2, entries_crc)
        backup = self._header(self.last_lba, 1, backup_entries_lba, entries_crc)

        try:
            with open(self.path, "r+b") as f:
                f.seek(0)
                f.write(_protective_mbr(self.total_sectors))
                f.write(primary)
                f.write(entries)
                f.seek(backup_entries_lba * SECTOR_SIZE)
                f.write(entries)
                f.write(backup)
                f.flush()
                os.fsync(f.fileno())
        except OSError as error:
            raise PartitionCommitError(f"failed to write {self.path}: {error}") from error
        log.debug(f"committed {len(self.partitions)} partitions to {self.path}")


# ==============================================================================
# sgdisk backed writer
# ==============================================================================


class SgdiskTableWriter:
    """Collects partitions and commits them in a single ``sgdisk`` call."""

    def __init__(self, path: Path, *, sgdisk: str = "sgdisk"):
        self.path = Path(path)
        self.sgdisk = sgdisk
        self.partitions: list[PartitionTableEntry] = []
        self._created = False

    def create_table(self) -> None:
        if not self.path.exists():
            raise PartitionTableError(f"cannot open device {self.path}")
        if shutil.which(self.sgdisk) is None:
            raise PartitionTableError(f"{self.sgdisk} not found in PATH")
        self.partitions = []
        self._created = True

    def add_partition(
        self, name: str, start_sector: int, end_sector: int, fs_hint: str = DEFAULT_FS_HINT
    ) -> None:
        index = len(self.partitions) + 1
        if not self._created:
            raise PartitionTableError("no partition table created", index, name)
        if fs_hint not in SGDISK_TYPE_CODES:
            raise PartitionTableError(f"unknown filesystem type {fs_hint!r}", index, name)
        if end_sector < start_sector:
            raise PartitionTableError(
                f"end sector {end_sector} precedes start sector {start_sector}", index, name
            )
        self.partitions.append(PartitionTableEntry(name, start_sector, end_sector, fs_hint=fs_hint))

    def build_command(self) -> list[str]:
        command = [self.sgdisk, "--clear", "--set-alignment=1"]
        for index, entry in enumerate(self.partitions, start=1):
            command += [
                f"--new={index}:{entry.start_sector}:{entry.end_sector}",
                f"--change-name={index}:{entry.name}",
                f"--typecode={index}:{SGDISK_TYPE_CODES[entry.fs_hint]}",
            ]
        command.append(str(self.path))
        return command

    def commit(self) -> None:
        if not self._created:
            raise PartitionCommitError("no partition table created")
        command = self.build_command()
        log.debug(f"Running command: {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                text=True,
                encoding="utf-8",
                errors="replace",
                capture_output=True,
            )
        except OSError as error:
            raise PartitionCommitError(f"failed to run {self.sgdisk}: {error}") from error
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "Command failed"
            raise PartitionCommitError(f"{self.sgdisk} failed on {self.path}: {message}")


TABLE_BACKENDS = {
    "gpt": GptTableWriter,
    "sgdisk": SgdiskTableWriter,
}


def make_writer(backend: str, path: Path) -> PartitionTableWriter:
    try:
        writer_cls = TABLE_BACKENDS[backend]
    except KeyError:
        raise PartitionTableError(f"unknown table backend {backend!r}") from None
    return writer_cls(path)


def build_table(
    layout: Sequence[LaidOutPartition],
    out_file: Path,
    writer: Optional[PartitionTableWriter] = None,
) -> list[PartitionTableEntry]:
    """Write a GPT describing ``layout`` into ``out_file``.

    The table is committed only after every partition was accepted.
    """
    entries = compute_entries(layout)
    writer = writer if writer is not None else GptTableWriter(Path(out_file))
    writer.create_table()
    for entry in entries:
        writer.add_partition(entry.name, entry.start_sector, entry.end_sector, entry.fs_hint)
    writer.commit()
    log.info(f"Partition table with {len(entries)} entries written to {out_file}")
    return entries


# ==============================================================================
# Reading
# ==============================================================================


def read_partition_table(path: Path) -> list[PartitionTableEntry]:
    """Parse the primary GPT of ``path`` back into table entries."""
    path = Path(path)
    type_hints = {}
    for hint, guid in FS_TYPE_GUIDS.items():
        type_hints.setdefault(guid, hint)

    with open(path, "rb") as f:
        f.seek(SECTOR_SIZE)
        header_sector = f.read(SECTOR_SIZE)
        if len(header_sector) < GPT_HEADER_SIZE or header_sector[:8] != GPT_SIGNATURE:
            raise PartitionTableError(f"no GPT header found in {path}")
        fields = list(struct.unpack_from(GPT_HEADER_FORMAT, header_sector))
        header_crc = fields[3]
        fields[3] = 0
        if _crc32(struct.pack(GPT_HEADER_FORMAT, *fields)) != header_crc:
            raise PartitionTableError(f"GPT header checksum mismatch in {path}")
        entries_lba, entry_count, entry_size, entries_crc = fields[10:14]
        f.seek(entries_lba * SECTOR_SIZE)
        array = f.read(entry_count * entry_size)

    if _crc32(array) != entries_crc:
        raise PartitionTableError(f"GPT entry array checksum mismatch in {path}")

    entries: list[PartitionTableEntry] = []
    for slot in range(entry_count):
        raw = array[slot * entry_size:slot * entry_size + GPT_ENTRY_SIZE]
        type_guid, _, first_lba, last_lba, _, name = struct.unpack(GPT_ENTRY_FORMAT, raw)
        if type_guid == bytes(16):
            continue
        entries.append(
            PartitionTableEntry(
                name=name.decode("utf-16-le").rstrip("\x00"),
                start_sector=first_lba,
                end_sector=last_lba,
                fs_hint=type_hints.get(uuid.UUID(bytes_le=type_guid), "unknown"),
            )
        )
    return entries
