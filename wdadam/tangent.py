"""
Tangent Vectors
===============

A ``TangentVector`` is one gradient-shaped value: a nested tree (dicts, lists,
tuples) of ``torch.Tensor`` leaves laid out exactly like a model's trainable
parameters. The optimizer never looks inside the tree; it only needs the
algebra below.

Operations:
    zeros_like(v)                 additive identity with v's shape
    v.scaled(by=c)                c * v
    a + b, a - b, a * b, a / b    leafwise, shapes must match
    v.sqrt()                      leafwise square root
    v.adding(c)                   v + c on every leaf
    v.global_norm()               sqrt(sum of squares over every leaf)
    v.clipped_by_global_norm(n)   v * n / ||v|| when ||v|| > n, else v

Trees are flattened once with ``torch.utils._pytree`` and kept as
(leaves, spec). Two vectors are compatible when their specs are equal and
every pair of leaves has the same shape; anything else raises
``TreeStructureError``.
"""

from __future__ import annotations

import math
from typing import Any, Callable

import torch
from torch import Tensor
from torch.utils import _pytree as pytree


class TreeStructureError(ValueError):
    """Two trees that must share a layout do not."""


class TangentVector:
    """A tree of tensors supporting the vector-space operations Adam needs.

    Args:
        tree: Nested dict/list/tuple structure with tensor (or number) leaves.
    """

    __slots__ = ("_leaves", "_spec")

    def __init__(self, tree: Any):
        leaves, spec = pytree.tree_flatten(tree)
        self._leaves = [
            leaf if isinstance(leaf, Tensor) else torch.as_tensor(leaf)
            for leaf in leaves
        ]
        self._spec = spec

    @classmethod
    def _from_leaves(cls, leaves: list[Tensor], spec) -> "TangentVector":
        vector = cls.__new__(cls)
        vector._leaves = leaves
        vector._spec = spec
        return vector

    @classmethod
    def zeros_like(cls, other: "TangentVector") -> "TangentVector":
        return cls._from_leaves([torch.zeros_like(l) for l in other._leaves], other._spec)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def leaves(self) -> list[Tensor]:
        return list(self._leaves)

    @property
    def tree(self) -> Any:
        """Rebuild the nested structure this vector was flattened from."""
        return pytree.tree_unflatten(list(self._leaves), self._spec)

    def __len__(self) -> int:
        return len(self._leaves)

    def check_compatible(self, other: "TangentVector") -> None:
        """Raise ``TreeStructureError`` unless ``other`` has this vector's shape."""
        if self._spec != other._spec:
            raise TreeStructureError(
                f"Tree layouts differ: {self._spec} vs {other._spec}"
            )
        for i, (a, b) in enumerate(zip(self._leaves, other._leaves)):
            if a.shape != b.shape:
                raise TreeStructureError(
                    f"Leaf {i} shape mismatch: {tuple(a.shape)} vs {tuple(b.shape)}"
                )

    def with_leaves(self, leaves: list[Tensor]) -> "TangentVector":
        """A vector with this layout but the given leaves, e.g. from a checkpoint."""
        leaves = list(leaves)
        if len(leaves) != len(self._leaves):
            raise TreeStructureError(
                f"Expected {len(self._leaves)} leaves, got {len(leaves)}"
            )
        other = TangentVector._from_leaves(leaves, self._spec)
        self.check_compatible(other)
        return other

    def map(self, fn: Callable[[Tensor], Tensor]) -> "TangentVector":
        return TangentVector._from_leaves([fn(l) for l in self._leaves], self._spec)

    def zip_map(
        self, other: "TangentVector", fn: Callable[[Tensor, Tensor], Tensor]
    ) -> "TangentVector":
        self.check_compatible(other)
        leaves = [fn(a, b) for a, b in zip(self._leaves, other._leaves)]
        return TangentVector._from_leaves(leaves, self._spec)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def scaled(self, by: float) -> "TangentVector":
        return self.map(lambda l: l * by)

    def adding(self, scalar: float) -> "TangentVector":
        return self.map(lambda l: l + scalar)

    def sqrt(self) -> "TangentVector":
        return self.map(torch.sqrt)

    def __add__(self, other: "TangentVector") -> "TangentVector":
        return self.zip_map(other, torch.add)

    def __sub__(self, other: "TangentVector") -> "TangentVector":
        return self.zip_map(other, torch.sub)

    def __mul__(self, other: "TangentVector") -> "TangentVector":
        # Elementwise product. Use ``scaled`` for scalars.
        return self.zip_map(other, torch.mul)

    def __truediv__(self, other: "TangentVector") -> "TangentVector":
        return self.zip_map(other, torch.div)

    def __neg__(self) -> "TangentVector":
        return self.map(torch.neg)

    # ------------------------------------------------------------------
    # Norms
    # ------------------------------------------------------------------

    def global_norm(self) -> float:
        """L2 norm of every leaf concatenated into one flat vector."""
        total = 0.0
        for leaf in self._leaves:
            total += float(leaf.detach().pow(2).sum())
        return math.sqrt(total)

    def clipped_by_global_norm(self, max_norm: float) -> "TangentVector":
        """Rescale so the global norm is at most ``max_norm``.

        Returns ``self`` untouched when already within bounds.
        """
        norm = self.global_norm()
        if norm > max_norm:
            return self.scaled(max_norm / norm)
        return self

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    def clone(self) -> "TangentVector":
        return self.map(lambda l: l.detach().clone())

    def to(self, device: torch.device | str) -> "TangentVector":
        """Copy every leaf onto ``device`` (always a fresh copy)."""
        return self.map(lambda l: l.detach().to(device, copy=True))

    def allclose(self, other: "TangentVector", rtol: float = 1e-5, atol: float = 1e-8) -> bool:
        self.check_compatible(other)
        return all(
            torch.allclose(a, b, rtol=rtol, atol=atol)
            for a, b in zip(self._leaves, other._leaves)
        )

    def __repr__(self) -> str:
        shapes = [tuple(l.shape) for l in self._leaves]
        return f"TangentVector(leaves={len(self._leaves)}, shapes={shapes})"
