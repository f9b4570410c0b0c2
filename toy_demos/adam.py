"""
Weight-decayed Adam demo: numpy hand-written vs wdadam, side by side.

Both halves train the same tiny network from the same initial weights on the
same batches. The numpy half spells the update out line by line; the torch
half uses autograd + ``WeightDecayedAdam``. The loss curves should overlap.

Architecture:  x -> Linear(1,16) -> tanh -> Linear(16,1) -> y_pred
Loss:          MSE = mean((y_pred - y_true)^2)

Switch `bias_correction` between "compounding", "scheduled" and "off" to see
the compounding rate freeze training after a handful of steps.

Run:  python toy_demos/adam.py
"""

import sys
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import torch

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from wdadam import ParameterModel, WeightDecayedAdam

# ═══════════════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════════════
rng = np.random.default_rng(0)

x_all = np.linspace(-2.0, 2.0, 128).reshape(-1, 1)
y_all = np.sin(2.0 * x_all)

batch_size = 16
epochs = 200
hidden = 16

lr = 1e-2
beta1, beta2, eps = 0.9, 0.999, 1e-6
weight_decay = 1e-3
max_grad_norm = 1.0
bias_correction = "scheduled"  # "compounding", "scheduled", or "off"

init = {
    "w1": rng.normal(size=(1, hidden)),
    "b1": np.zeros(hidden),
    "w2": rng.normal(size=(hidden, 1)) / np.sqrt(hidden),
    "b2": np.zeros(1),
}
order = [rng.permutation(len(x_all)) for _ in range(epochs)]


# ═══════════════════════════════════════════════════════════════════════
# Part 1: Numpy
# ═══════════════════════════════════════════════════════════════════════
def np_loss_and_grads(p, x, y):
    h = np.tanh(x @ p["w1"] + p["b1"])
    y_pred = h @ p["w2"] + p["b2"]
    err = y_pred - y
    dy = 2.0 * err / err.size
    dh = (dy @ p["w2"].T) * (1.0 - h**2)
    grads = {
        "w1": x.T @ dh,
        "b1": dh.sum(axis=0),
        "w2": h.T @ dy,
        "b2": dy.sum(axis=0),
    }
    return float(np.mean(err**2)), grads


def np_adam_update(p, g, state):
    """One weight-decayed Adam step, in the same order as WeightDecayedAdam.update."""
    norm = np.sqrt(sum(np.sum(v**2) for v in g.values()))
    if norm > max_grad_norm:
        g = {k: v * (max_grad_norm / norm) for k, v in g.items()}

    state["t"] += 1
    t = state["t"]
    correction = np.sqrt(1 - beta2**t) / (1 - beta1**t)
    if bias_correction == "off":
        state["lr"] = lr
    elif bias_correction == "compounding":
        state["lr"] *= correction
    else:
        state["lr"] = lr * correction

    for k in p:
        state["m"][k] = beta1 * state["m"][k] + (1 - beta1) * g[k]
        state["v"][k] = beta2 * state["v"][k] + (1 - beta2) * g[k] * g[k]
        delta = state["m"][k] / (np.sqrt(state["v"][k]) + eps) + weight_decay * p[k]
        p[k] = p[k] - state["lr"] * delta


np_params = {k: v.copy() for k, v in init.items()}
np_state = {
    "t": 0,
    "lr": lr,
    "m": {k: np.zeros_like(v) for k, v in init.items()},
    "v": {k: np.zeros_like(v) for k, v in init.items()},
}

print("=" * 60)
print(f"Part 1: Numpy (bias correction: {bias_correction})")
print("=" * 60)

np_loss_history = []
for epoch in range(epochs):
    losses = []
    for start in range(0, len(x_all), batch_size):
        idx = order[epoch][start : start + batch_size]
        loss, grads = np_loss_and_grads(np_params, x_all[idx], y_all[idx])
        np_adam_update(np_params, grads, np_state)
        losses.append(loss)
    np_loss_history.append(np.mean(losses))
    if epoch % 25 == 0 or epoch == epochs - 1:
        print(f"  Epoch {epoch:3d} | Loss: {np_loss_history[-1]:.6f} | LR: {np_state['lr']:.3e}")


# ═══════════════════════════════════════════════════════════════════════
# Part 2: wdadam
# ═══════════════════════════════════════════════════════════════════════
pt_params = {k: torch.tensor(v, dtype=torch.float64, requires_grad=True) for k, v in init.items()}
model = ParameterModel(pt_params)
optimizer = WeightDecayedAdam(
    model,
    lr,
    weight_decay_rate=weight_decay,
    use_bias_correction=bias_correction != "off",
    bias_correction_mode="scheduled" if bias_correction == "off" else bias_correction,
    beta1=beta1,
    beta2=beta2,
    epsilon=eps,
    max_gradient_global_norm=max_grad_norm,
)

x_all_t = torch.from_numpy(x_all)
y_all_t = torch.from_numpy(y_all)


def pt_forward(x):
    h = torch.tanh(x @ pt_params["w1"] + pt_params["b1"])
    return h @ pt_params["w2"] + pt_params["b2"]


print()
print("=" * 60)
print(f"Part 2: wdadam (bias correction: {bias_correction})")
print("=" * 60)

pt_loss_history = []
for epoch in range(epochs):
    losses = []
    for start in range(0, len(x_all), batch_size):
        idx = torch.from_numpy(order[epoch][start : start + batch_size])
        for p in model.parameters:
            p.grad = None
        loss = torch.mean((pt_forward(x_all_t[idx]) - y_all_t[idx]) ** 2)
        loss.backward()
        optimizer.update(model, model.gradient())
        losses.append(loss.item())
    pt_loss_history.append(np.mean(losses))
    if epoch % 25 == 0 or epoch == epochs - 1:
        print(f"  Epoch {epoch:3d} | Loss: {pt_loss_history[-1]:.6f} | LR: {optimizer.learning_rate:.3e}")


# ═══════════════════════════════════════════════════════════════════════
# Comparison
# ═══════════════════════════════════════════════════════════════════════
print()
print("=" * 60)
print("Comparison (max difference per epoch)")
print("=" * 60)
diffs = [abs(a - b) for a, b in zip(np_loss_history, pt_loss_history)]
print(f"  Max diff:  {max(diffs):.2e}")
print(f"  Mean diff: {np.mean(diffs):.2e}")
if max(diffs) < 1e-6:
    print("  PASS: numpy matches wdadam!")
else:
    print("  MISMATCH: the two update rules disagree.")

# ── Plot ──────────────────────────────────────────────────────────────
fig, axes = plt.subplots(1, 2, figsize=(12, 4))

axes[0].plot(np_loss_history, label="Numpy", linewidth=2.5, alpha=0.8)
axes[0].plot(pt_loss_history, label="wdadam", linewidth=1.5, linestyle="--", color="red")
axes[0].set_xlabel("Epoch")
axes[0].set_ylabel("MSE Loss")
axes[0].set_title(f"Training Loss ({bias_correction})")
axes[0].set_yscale("log")
axes[0].legend()

with torch.no_grad():
    y_fit = pt_forward(x_all_t).numpy()
axes[1].scatter(x_all, y_all, s=8, alpha=0.5, label="Ground truth")
axes[1].plot(x_all, y_fit, color="red", linewidth=2, label="wdadam fit")
axes[1].set_xlabel("x")
axes[1].set_ylabel("y")
axes[1].set_title(f"Fit ({bias_correction})")
axes[1].legend()

plt.tight_layout()
plt.savefig(f"toy_demos/adam_{bias_correction}_result.png", dpi=150)
plt.show()
print(f"Saved to toy_demos/adam_{bias_correction}_result.png")
