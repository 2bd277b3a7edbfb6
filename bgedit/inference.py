from __future__ import annotations

import numpy as np
import torch

from .model import forward_model


def _primary_output(y):
    """
    Segmentation models may return a tensor, a tuple/list of stage outputs (final
    stage last) or a dict / ModelOutput; pick the final matte logits.
    """
    if hasattr(y, "logits") and isinstance(y.logits, torch.Tensor):
        return y.logits
    if isinstance(y, torch.Tensor):
        return y
    if isinstance(y, (list, tuple)) and len(y) > 0:
        for item in reversed(y):
            if isinstance(item, torch.Tensor):
                return item
        return y[-1]
    if isinstance(y, dict):
        for k in ("logits", "pred", "alpha", "mask"):
            v = y.get(k)
            if isinstance(v, torch.Tensor):
                return v
        for v in y.values():
            if isinstance(v, torch.Tensor):
                return v
    return y


def predict_matte(model: torch.nn.Module, x: torch.Tensor, device: torch.device) -> np.ndarray:
    """
    Forward pass, logits -> probability matte.

    Output: float32 (S, S) in [0, 1], S being the square input size.
    """
    if x.ndim != 4 or x.shape[0] != 1:
        raise ValueError(f"Expected input tensor (1,3,H,W), got {tuple(x.shape)}")
    size = tuple(x.shape[-2:])

    y = _primary_output(forward_model(model, x.float().to(device)))
    if not isinstance(y, torch.Tensor):
        raise RuntimeError(f"Model output is not a tensor: {type(y)}")

    # (1,C,H,W) / (1,H,W) / (H,W)
    if y.ndim == 4:
        y = y[0, 0]
    elif y.ndim == 3:
        y = y[0]
    elif y.ndim != 2:
        raise RuntimeError(f"Unexpected output tensor shape: {tuple(y.shape)}")

    if tuple(y.shape) != size:
        y = torch.nn.functional.interpolate(
            y[None, None], size=size, mode="bilinear", align_corners=False
        )[0, 0]

    p = torch.sigmoid(y.float())
    if torch.isnan(p).any():
        raise RuntimeError("NaNs detected in predicted matte.")
    matte = p.detach().to("cpu").numpy().astype(np.float32, copy=False)
    return np.clip(matte, 0.0, 1.0)
