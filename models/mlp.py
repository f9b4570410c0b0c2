"""Small MLP for the synthetic regression benchmark.

1 -> 32 -> 32 -> 1 with ReLU. Trains in seconds on CPU, which is all the
optimizer benchmarks need.
"""

import torch
import torch.nn as nn


class MLP(nn.Module):
    """Fully connected regressor.

    Args:
        input_dim: Number of input features.
        hidden_dims: Tuple of hidden layer sizes.
        output_dim: Number of regression targets.
        layer_norm: Insert LayerNorm after each hidden layer (gives the
            optimizer 1-D scale parameters to exclude from weight decay).
    """

    def __init__(
        self,
        input_dim: int = 1,
        hidden_dims: tuple[int, ...] = (32, 32),
        output_dim: int = 1,
        layer_norm: bool = False,
    ):
        super().__init__()
        layers = []
        in_dim = input_dim
        for h_dim in hidden_dims:
            layers.append(nn.Linear(in_dim, h_dim))
            if layer_norm:
                layers.append(nn.LayerNorm(h_dim))
            layers.append(nn.ReLU())
            in_dim = h_dim
        layers.append(nn.Linear(in_dim, output_dim))
        self.net = nn.Sequential(*layers)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.net(x)
