"""
Benchmark Models
================

Models used to exercise the optimizer. They are NOT the subject of this
package -- only tools for the benchmark script.

Usage:
    from models import get_model

    model = get_model("mlp")
    model = get_model("mlp_layernorm", hidden_dims=(64, 64))
"""

from functools import partial

from models.mlp import MLP

MODEL_REGISTRY: dict[str, type | partial] = {
    "mlp": MLP,
    "mlp_layernorm": partial(MLP, layer_norm=True),
}


def get_model(name: str, **kwargs):
    """Instantiate a model by its registry name.

    Args:
        name: One of the keys in MODEL_REGISTRY.
        **kwargs: Forwarded to the model constructor.

    Returns:
        A model instance.
    """
    if name not in MODEL_REGISTRY:
        available = ", ".join(sorted(MODEL_REGISTRY.keys()))
        raise ValueError(f"Unknown model '{name}'. Available: {available}")
    return MODEL_REGISTRY[name](**kwargs)


def list_models() -> list[str]:
    """Return sorted list of available model names."""
    return sorted(MODEL_REGISTRY.keys())
