import os
from typing import Optional, Sequence, Union

import torch

_DEFAULT_DEVICE: Optional[torch.device] = None


def default_device() -> torch.device:
    """Resolve the default torch device (``UNIGRAM_DEVICE`` if set, else CPU)."""
    global _DEFAULT_DEVICE
    if _DEFAULT_DEVICE is None:
        env_override = os.environ.get("UNIGRAM_DEVICE")
        _DEFAULT_DEVICE = torch.device(env_override) if env_override else torch.device("cpu")
    return _DEFAULT_DEVICE


def resolve_device(device: Optional[Union[str, torch.device]] = None) -> torch.device:
    return torch.device(device) if device else default_device()


def ensure_tensor(
    data: Union[torch.Tensor, Sequence, float, int],
    *,
    dtype: Optional[torch.dtype] = None,
    device: Optional[Union[str, torch.device]] = None,
) -> torch.Tensor:
    """Convert arbitrary data to a tensor on the configured device."""
    if isinstance(data, torch.Tensor):
        tensor = data if dtype is None else data.to(dtype)
    else:
        tensor = torch.as_tensor(data, dtype=dtype)
    return tensor.to(resolve_device(device))


def full(
    shape: Union[int, Sequence[int]],
    fill_value: Union[float, int],
    *,
    dtype: torch.dtype = torch.float32,
    device: Optional[Union[str, torch.device]] = None,
) -> torch.Tensor:
    return torch.full(shape if isinstance(shape, (tuple, list)) else (shape,), fill_value, dtype=dtype, device=resolve_device(device))
