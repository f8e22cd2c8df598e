"""Memory providers consumed by the typed reader.

A provider only has to fetch raw bytes. ``read_bytes`` returns the bytes,
or None when the range could not be read (unmapped page, access fault).
Providers may also raise MemoryAccessError themselves.
"""

import ctypes
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Protocol, Set, Union

logger = logging.getLogger(__name__)

PROC_SELF_MEM = Path('/proc/self/mem')


class MemoryProvider(Protocol):
    """Anything that can fetch ``size`` bytes at a guest virtual address."""

    def read_bytes(self, address: int, size: int) -> Optional[bytes]:
        ...


class BufferMemory:
    """Memory image held in a bytes buffer, mapped at ``base_address``.

    Used for offline analysis of dumps and for tests.
    """

    def __init__(self, data: Union[bytes, bytearray], base_address: int = 0):
        self._data = bytes(data)
        self.base_address = base_address

    @classmethod
    def from_file(cls, path: Union[str, Path], base_address: int = 0) -> 'BufferMemory':
        """Map a raw memory dump file at ``base_address``."""
        with open(path, 'rb') as f:
            data = f.read()
        logger.info(f"Loaded {len(data)} byte image from {path} at 0x{base_address:X}")
        return cls(data, base_address)

    @property
    def end_address(self) -> int:
        return self.base_address + len(self._data)

    def contains(self, address: int, size: int = 1) -> bool:
        return self.base_address <= address and address + size <= self.end_address

    def read_bytes(self, address: int, size: int) -> Optional[bytes]:
        """Read bytes from the image, or None if the range is not mapped."""
        if size < 0 or not self.contains(address, size):
            logger.debug(f"Read of {size} bytes at 0x{address:X} outside image")
            return None
        start = address - self.base_address
        return self._data[start:start + size]

    def __len__(self) -> int:
        return len(self._data)


class ProcessMemory:
    """Reads memory of the current process.

    For analysis code running inside the target, whose address space is our
    own. On Linux the bytes come from ``/proc/self/mem``, where an unmapped
    page fails the read with EIO instead of raising SIGSEGV. On Windows,
    where an access violation surfaces as OSError, ``ctypes.memmove`` is used.
    Other platforms are refused when the provider is created.

    An address that failed once is refused from then on.
    """

    # x64 user space upper bound
    MAX_ADDRESS = 0x7FFFFFFFFFFF

    # The NULL page and low memory are never valid targets
    MIN_VALID_ADDRESS = 0x10000

    MAX_READ_SIZE = 1024 * 1024

    def __init__(self):
        if PROC_SELF_MEM.exists():
            self.backend = 'procfs'
        elif sys.platform == 'win32':
            self.backend = 'memmove'
        else:
            raise OSError(f"In-process memory reads are not supported on {sys.platform}")

        self._fd: Optional[int] = None
        self._faulted: Set[int] = set()
        self._read_count = 0
        self._error_count = 0
        self._last_error: Optional[str] = None
        logger.info(f"ProcessMemory using {self.backend} reads")

    def _rejection(self, address: int, size: int) -> Optional[str]:
        """Why a read may not be attempted, or None if it may."""
        if size <= 0 or size > self.MAX_READ_SIZE:
            return f"read size {size} out of range"
        if address < self.MIN_VALID_ADDRESS:
            return "address in the low guard region"
        if address + size - 1 > self.MAX_ADDRESS:
            return "range ends beyond user space"
        if address in self._faulted:
            return "address faulted before"
        return None

    def _read_procfs(self, address: int, size: int) -> bytes:
        if self._fd is None:
            self._fd = os.open(PROC_SELF_MEM, os.O_RDONLY)
        data = os.pread(self._fd, size, address)
        if len(data) != size:
            raise OSError(f"short read ({len(data)} of {size} bytes)")
        return data

    def _read_memmove(self, address: int, size: int) -> bytes:
        buffer = ctypes.create_string_buffer(size)
        ctypes.memmove(buffer, address, size)
        return buffer.raw

    def read_bytes(self, address: int, size: int) -> Optional[bytes]:
        """Read raw bytes from the current process.

        Returns:
            The bytes, or None if the read was refused or failed
        """
        reason = self._rejection(address, size)
        if reason is not None:
            self._error_count += 1
            logger.debug(f"Refusing {size} byte read at 0x{address:X}: {reason}")
            return None

        read = self._read_procfs if self.backend == 'procfs' else self._read_memmove
        try:
            data = read(address, size)
        except OSError as e:
            self._faulted.add(address)
            self._error_count += 1
            self._last_error = f"0x{address:X}: {e}"
            logger.warning(f"Memory access error at 0x{address:X}: {e}")
            return None

        self._read_count += 1
        return data

    @property
    def stats(self) -> dict:
        """Read counters and the most recent failure."""
        return {
            'backend': self.backend,
            'read_count': self._read_count,
            'error_count': self._error_count,
            'faulted_addresses': len(self._faulted),
            'last_error': self._last_error,
        }

    def reset_stats(self):
        self._read_count = 0
        self._error_count = 0
        self._last_error = None

    def close(self):
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> 'ProcessMemory':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
