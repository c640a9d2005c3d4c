"""
Device selection for the transformers engine.

A requested device is honoured when it is usable; otherwise the engine
falls back to CPU with a warning instead of failing at load time.

Auto-detection order:
    1. MPS (Apple Silicon)
    2. CUDA
    3. CPU
"""

import logging
import platform
from typing import Dict, Optional

import torch

logger = logging.getLogger(__name__)

KNOWN_DEVICES = ("mps", "cuda", "cpu")


def is_mps_available() -> bool:
    try:
        return torch.backends.mps.is_available()
    except AttributeError:
        return False


def available_devices() -> Dict[str, bool]:
    return {
        'mps': is_mps_available(),
        'cuda': torch.cuda.is_available(),
        'cpu': True,
    }


def resolve_device(requested: Optional[str] = None) -> str:
    """
    Turn a user device choice into one that can run here.

    Args:
        requested: "mps", "cuda", "cpu", "cuda:N", "auto" or None

    Returns:
        str: Device string for torch.device()

    Raises:
        ValueError: If the device name is not recognised
    """
    devices = available_devices()

    if requested is None or requested == "auto":
        for name in KNOWN_DEVICES:
            if devices[name]:
                logger.info(f"Auto-selected device: {name}")
                return name

    kind = requested.split(":", 1)[0]
    if kind not in KNOWN_DEVICES:
        raise ValueError(f"Unknown device {requested!r}; choose from {KNOWN_DEVICES} or 'auto'")

    if not devices[kind]:
        logger.warning(f"Device {requested!r} is not available; falling back to cpu")
        return "cpu"

    return requested


def default_dtype(device: str) -> torch.dtype:
    """Half precision on accelerators, full precision on CPU."""
    if device.startswith(("mps", "cuda")):
        return torch.float16
    return torch.float32


def describe_platform() -> str:
    """One-line description of the host, e.g. 'Darwin arm64 (mps)'."""
    usable = [name for name, ok in available_devices().items() if ok]
    return f"{platform.system()} {platform.machine()} ({', '.join(usable)})"
