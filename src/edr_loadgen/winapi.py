"""Low-level Win32 process query interface.

Uses ctypes to call kernel32 directly. Every process handle is opened through
`open_process()`, a context manager that closes the handle on every exit path.

Only importable on Windows.
"""

import ctypes
from collections.abc import Iterator
from contextlib import contextmanager
from ctypes import Structure, byref, wintypes

kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)

# ─────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────

PROCESS_QUERY_LIMITED_INFORMATION = 0x1000
MAX_PATH_CHARS = 32768

# FILETIME counts 100-nanosecond intervals
FILETIME_UNITS_PER_SECOND = 10_000_000


# ─────────────────────────────────────────────────────────────────────────────
# Structures
# ─────────────────────────────────────────────────────────────────────────────


class FileTime(Structure):
    """FILETIME from minwinbase.h."""

    _fields_ = [
        ("dwLowDateTime", wintypes.DWORD),
        ("dwHighDateTime", wintypes.DWORD),
    ]

    @property
    def seconds(self) -> float:
        """Interval length in seconds."""
        ticks = (self.dwHighDateTime << 32) | self.dwLowDateTime
        return ticks / FILETIME_UNITS_PER_SECOND


# ─────────────────────────────────────────────────────────────────────────────
# Function signatures
# ─────────────────────────────────────────────────────────────────────────────

kernel32.OpenProcess.argtypes = [wintypes.DWORD, wintypes.BOOL, wintypes.DWORD]
kernel32.OpenProcess.restype = wintypes.HANDLE

kernel32.CloseHandle.argtypes = [wintypes.HANDLE]
kernel32.CloseHandle.restype = wintypes.BOOL

kernel32.GetProcessTimes.argtypes = [
    wintypes.HANDLE,
    ctypes.POINTER(FileTime),
    ctypes.POINTER(FileTime),
    ctypes.POINTER(FileTime),
    ctypes.POINTER(FileTime),
]
kernel32.GetProcessTimes.restype = wintypes.BOOL

kernel32.QueryFullProcessImageNameW.argtypes = [
    wintypes.HANDLE,
    wintypes.DWORD,
    wintypes.LPWSTR,
    ctypes.POINTER(wintypes.DWORD),
]
kernel32.QueryFullProcessImageNameW.restype = wintypes.BOOL


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


@contextmanager
def open_process(pid: int) -> Iterator[wintypes.HANDLE]:
    """Open a query-only handle to a process.

    Raises:
        OSError: If the handle cannot be opened (no such PID, access denied).
    """
    handle = kernel32.OpenProcess(PROCESS_QUERY_LIMITED_INFORMATION, False, pid)
    if not handle:
        raise ctypes.WinError(ctypes.get_last_error())
    try:
        yield handle
    finally:
        kernel32.CloseHandle(handle)


def get_process_times(handle: wintypes.HANDLE) -> tuple[float, float]:
    """Return cumulative (user, kernel) CPU seconds for an open process handle.

    Raises:
        OSError: If GetProcessTimes fails.
    """
    creation, exit_, kernel, user = FileTime(), FileTime(), FileTime(), FileTime()
    if not kernel32.GetProcessTimes(
        handle, byref(creation), byref(exit_), byref(kernel), byref(user)
    ):
        raise ctypes.WinError(ctypes.get_last_error())
    return user.seconds, kernel.seconds


def get_image_name(handle: wintypes.HANDLE) -> str:
    """Return the full image path of an open process handle.

    Raises:
        OSError: If the name cannot be queried.
    """
    size = wintypes.DWORD(MAX_PATH_CHARS)
    buffer = ctypes.create_unicode_buffer(MAX_PATH_CHARS)
    if not kernel32.QueryFullProcessImageNameW(handle, 0, buffer, byref(size)):
        raise ctypes.WinError(ctypes.get_last_error())
    return buffer.value
