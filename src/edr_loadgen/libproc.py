"""Low-level libproc interface for macOS process CPU accounting.

Uses ctypes to call libproc.dylib directly - no subprocess overhead.

This module provides access to:
- proc_pid_rusage: cumulative user/system CPU time
- proc_name: Process name lookup
- mach_timebase_info: conversion of absolute time to nanoseconds

Only importable on macOS.
"""

import ctypes
from ctypes import POINTER, Structure, byref, c_int, c_uint8, c_uint32, c_uint64
from dataclasses import dataclass
from functools import cache

# ─────────────────────────────────────────────────────────────────────────────
# Library loading
# ─────────────────────────────────────────────────────────────────────────────

libproc = ctypes.CDLL("/usr/lib/libproc.dylib", use_errno=True)
libc = ctypes.CDLL(None, use_errno=True)  # For mach_timebase_info

# ─────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────

# proc_pid_rusage flavor. V2 is the oldest layout that still carries CPU time.
RUSAGE_INFO_V2 = 2

# proc_name buffer size (2 * MAXCOMLEN)
PROC_NAME_SIZE = 32


# ─────────────────────────────────────────────────────────────────────────────
# Structures
# ─────────────────────────────────────────────────────────────────────────────


class MachTimebaseInfo(Structure):
    """mach_timebase_info for converting mach_absolute_time to nanoseconds."""

    _fields_ = [
        ("numer", c_uint32),
        ("denom", c_uint32),
    ]


class RusageInfoV2(Structure):
    """rusage_info_v2 from sys/resource.h."""

    _fields_ = [
        ("ri_uuid", c_uint8 * 16),
        # CPU time (in mach_absolute_time units on Apple Silicon!)
        ("ri_user_time", c_uint64),
        ("ri_system_time", c_uint64),
        ("ri_pkg_idle_wkups", c_uint64),
        ("ri_interrupt_wkups", c_uint64),
        ("ri_pageins", c_uint64),
        ("ri_wired_size", c_uint64),
        ("ri_resident_size", c_uint64),
        ("ri_phys_footprint", c_uint64),
        ("ri_proc_start_abstime", c_uint64),
        ("ri_proc_exit_abstime", c_uint64),
        ("ri_child_user_time", c_uint64),
        ("ri_child_system_time", c_uint64),
        ("ri_child_pkg_idle_wkups", c_uint64),
        ("ri_child_interrupt_wkups", c_uint64),
        ("ri_child_pageins", c_uint64),
        ("ri_child_elapsed_abstime", c_uint64),
        ("ri_diskio_bytesread", c_uint64),
        ("ri_diskio_byteswritten", c_uint64),
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Function signatures
# ─────────────────────────────────────────────────────────────────────────────

# int proc_pid_rusage(pid_t pid, int flavor, rusage_info_t *buffer)
libproc.proc_pid_rusage.argtypes = [c_int, c_int, ctypes.c_void_p]
libproc.proc_pid_rusage.restype = c_int

# int proc_name(int pid, void *buffer, uint32_t buffersize)
libproc.proc_name.argtypes = [c_int, ctypes.c_void_p, c_uint32]
libproc.proc_name.restype = c_int

# kern_return_t mach_timebase_info(mach_timebase_info_t info)
libc.mach_timebase_info.argtypes = [POINTER(MachTimebaseInfo)]
libc.mach_timebase_info.restype = c_int


# ─────────────────────────────────────────────────────────────────────────────
# Time conversion
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TimebaseInfo:
    """Mach timebase info for converting absolute time to nanoseconds."""

    numer: int
    denom: int


@cache
def get_timebase_info() -> TimebaseInfo:
    """Get mach_timebase_info for time conversion, cached for the process lifetime.

    Note:
        Intel: (1, 1) - mach_absolute_time is already nanoseconds
        Apple Silicon: (125, 3) - ~41.67ns per tick
    """
    info = MachTimebaseInfo()
    libc.mach_timebase_info(byref(info))
    return TimebaseInfo(numer=info.numer, denom=info.denom)


def abs_to_seconds(abstime: int, timebase: TimebaseInfo) -> float:
    """Convert mach_absolute_time units to seconds."""
    return (abstime * timebase.numer) / timebase.denom / 1e9


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def get_cpu_times(pid: int) -> tuple[float, float] | None:
    """Get cumulative (user, system) CPU seconds for a process.

    Returns:
        Tuple of seconds on success, None if the process doesn't exist or
        permission is denied.
    """
    rusage = RusageInfoV2()
    result = libproc.proc_pid_rusage(pid, RUSAGE_INFO_V2, byref(rusage))
    if result != 0:
        return None
    timebase = get_timebase_info()
    return (
        abs_to_seconds(rusage.ri_user_time, timebase),
        abs_to_seconds(rusage.ri_system_time, timebase),
    )


def get_process_name(pid: int) -> str:
    """Get process name, or empty string if not found."""
    buffer = ctypes.create_string_buffer(PROC_NAME_SIZE)
    result = libproc.proc_name(pid, buffer, PROC_NAME_SIZE)
    if result > 0:
        return buffer.value.decode("utf-8", errors="replace")
    return ""
