from __future__ import annotations

import os
from typing import Any, Optional, Tuple

import torch

from .config import DEFAULT_MODEL_SPEC


def get_device() -> torch.device:
    if torch.backends.mps.is_available():
        return torch.device("mps")
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


def _freeze(model: torch.nn.Module, device: torch.device) -> torch.nn.Module:
    model.eval()
    for p in model.parameters():
        p.requires_grad_(False)
    # float32 only: some archives carry float64 attributes that MPS rejects.
    return model.to(dtype=torch.float32).to(device)


def load_torchscript_matting_model(model_path: str, device: Optional[torch.device] = None) -> torch.nn.Module:
    """
    Load a TorchScript matting model saved with torch.jit.save (extension can be .pth).
    """
    if device is None:
        device = get_device()
    if not os.path.exists(model_path):
        raise FileNotFoundError(f"Model not found: {model_path}")

    torch.set_default_dtype(torch.float32)
    try:
        # Registers torchvision TorchScript ops (e.g. deform_conv2d) before loading.
        import torchvision  # noqa: F401

        model = torch.jit.load(model_path, map_location="cpu")
    except Exception as e:  # noqa: BLE001 - surface a helpful error
        raise RuntimeError(
            "Failed to load model. Expected a TorchScript matting model saved with torch.jit.save(); "
            "a plain state_dict must be exported to TorchScript first."
        ) from e
    return _freeze(model, device)


def load_birefnet_hf(hf_repo: str = "ZhengPeng7/BiRefNet", device: Optional[torch.device] = None) -> torch.nn.Module:
    """
    Load BiRefNet via Hugging Face transformers (trust_remote_code).
    """
    if device is None:
        device = get_device()
    try:
        from transformers import AutoModelForImageSegmentation
    except Exception as e:  # noqa: BLE001
        raise RuntimeError("transformers is not installed. Run: pip install transformers") from e

    torch.set_default_dtype(torch.float32)
    model = AutoModelForImageSegmentation.from_pretrained(
        hf_repo,
        trust_remote_code=True,
        low_cpu_mem_usage=False,
        device_map=None,
    )
    return _freeze(model, device)


def load_model(model_spec: str = DEFAULT_MODEL_SPEC) -> Tuple[torch.nn.Module, torch.device]:
    """
    "hf:<repo>" or "birefnet" loads from the Hub; anything else is a TorchScript path.
    """
    device = get_device()
    if model_spec.startswith("hf:"):
        model = load_birefnet_hf(model_spec[len("hf:") :], device=device)
    elif model_spec == "birefnet":
        model = load_birefnet_hf("ZhengPeng7/BiRefNet", device=device)
    else:
        model = load_torchscript_matting_model(model_spec, device=device)
    return model, device


def forward_model(model: torch.nn.Module, x: torch.Tensor) -> Any:
    with torch.no_grad():
        return model(x)
