"""Scan progress streaming."""

from .channel import ProgressChannel, ScanSession, ScanState
from .locks import LocalScanLock, RedisScanLock, ScanLock, build_scan_lock
from .producers import threaded
from .store import ScanStore

__all__ = [
    "LocalScanLock",
    "ProgressChannel",
    "RedisScanLock",
    "ScanLock",
    "ScanSession",
    "ScanState",
    "ScanStore",
    "build_scan_lock",
    "threaded",
]
