"""Remote processor states, error codes and memory descriptions."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from .vq_types import IoRegion

RSC_NOTIFY_ID_ANY = 0xFFFFFFFF
"""Notify ID that asks the host to allocate one."""

RPROC_MAX_NAME_LEN = 32
"""Longest name a resource or memory may carry."""

FW_RSC_U64_ADDR_ANY = 0xFFFFFFFFFFFFFFFF
"""64-bit address meaning "allocate anywhere"."""

FW_RSC_U32_ADDR_ANY = 0xFFFFFFFF
"""32-bit address meaning "allocate anywhere"."""


class RemoteprocState(enum.IntEnum):
    """Life-cycle states of a remote processor."""

    OFFLINE = 0
    CONFIGURED = 1
    READY = 2
    RUNNING = 3
    SUSPENDED = 4
    ERROR = 5
    STOPPED = 6
    LAST = 7


class RprocErrorCode(enum.IntEnum):
    """Remote processor error codes."""

    ENOMEM = 1
    EINVAL = 2
    ENODEV = 3
    EAGAIN = 4
    ERR_RSC_TAB_TRUNC = 5
    ERR_RSC_TAB_VER = 6
    ERR_RSC_TAB_RSVD = 7
    ERR_RSC_TAB_VDEV_NRINGS = 9
    ERR_RSC_TAB_NP = 10
    ERR_RSC_TAB_NS = 11
    ERR_LOADER_STATE = 12
    EMAX = 16


class RprocError(Exception):
    """Raised where a remote processor operation fails; ``code`` says why."""

    def __init__(self, code: RprocErrorCode, message: Optional[str] = None) -> None:
        self.code = RprocErrorCode(code)
        super().__init__(message or self.code.name.lower().replace("_", " "))

    def __str__(self) -> str:
        return f"{self.code.name} (-{int(self.code)}): {self.args[0]}"


@dataclass
class RemoteprocMemory:
    """A memory area the remote processor uses.

    ``da`` is the device address, ``pa`` the physical address. A name longer
    than ``RPROC_MAX_NAME_LEN`` characters is cut short; None becomes "".
    """

    name: Optional[str] = ""
    pa: int = 0
    da: int = 0
    size: int = 0
    io: Optional[IoRegion] = None

    def __post_init__(self) -> None:
        if self.name is None:
            self.name = ""
        self.name = self.name[:RPROC_MAX_NAME_LEN]
        if self.size < 0:
            raise RprocError(RprocErrorCode.EINVAL, f"negative memory size {self.size}")