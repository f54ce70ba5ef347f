"""Virtio rings, virtqueues and devices, ELF structures and remoteproc resource tables."""

__version__ = "0.1.0"

__all__ = [
    "ring",
    "vq_types",
    "virtqueue",
    "virtio",
    "elf",
    "remoteproc",
    "resource_table",
]