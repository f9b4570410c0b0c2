"""
Benchmark Training Script
=========================

Train a small model on a synthetic regression task with WeightDecayedAdam,
configured from the command line and/or a YAML file.

Usage:
    # Quick run with defaults (compounding bias correction)
    python benchmarks/train.py

    # Textbook bias correction, clipped gradients
    python benchmarks/train.py --bias-correction-mode scheduled --max-grad-norm 1.0

    # Load config from YAML (CLI arguments override it)
    python benchmarks/train.py --config benchmarks/configs/regression_mlp.yaml --epochs 50

Results are saved to results/<model>_<mode>_<timestamp>.json
"""

import argparse
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path

import torch
import torch.nn as nn
import yaml

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from models import get_model, list_models
from wdadam import OptimizerConfig, ParameterModel, exclude_bias_and_norm

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


def get_dataloaders(num_samples: int, batch_size: int, noise: float, seed: int):
    """Noisy samples of y = x^2 + 2x + 1 on [-3, 3], split 80/20.

    Returns:
        (train_loader, test_loader)
    """
    g = torch.Generator().manual_seed(seed)
    x = torch.rand(num_samples, 1, generator=g) * 6.0 - 3.0
    y = x**2 + 2 * x + 1 + noise * torch.randn(num_samples, 1, generator=g)

    split = int(0.8 * num_samples)
    train_ds = torch.utils.data.TensorDataset(x[:split], y[:split])
    test_ds = torch.utils.data.TensorDataset(x[split:], y[split:])
    train_loader = torch.utils.data.DataLoader(
        train_ds, batch_size=batch_size, shuffle=True, generator=g,
    )
    test_loader = torch.utils.data.DataLoader(test_ds, batch_size=batch_size, shuffle=False)
    return train_loader, test_loader


# ---------------------------------------------------------------------------
# Training and evaluation loops
# ---------------------------------------------------------------------------


def train_one_epoch(net, params, loader, optimizer, device):
    """Train one epoch. Returns (avg_loss, learning_rate_at_end)."""
    net.train()
    total_loss = 0.0
    total = 0

    for data, target in loader:
        data, target = data.to(device), target.to(device)

        net.zero_grad()
        loss = nn.functional.mse_loss(net(data), target)
        loss.backward()
        optimizer.update(params, params.gradient())

        total_loss += loss.item() * data.size(0)
        total += data.size(0)

    return total_loss / total, optimizer.learning_rate


@torch.no_grad()
def evaluate(net, loader, device):
    """Average MSE over the loader."""
    net.eval()
    total_loss = 0.0
    total = 0
    for data, target in loader:
        data, target = data.to(device), target.to(device)
        loss = nn.functional.mse_loss(net(data), target)
        total_loss += loss.item() * data.size(0)
        total += data.size(0)
    return total_loss / total


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main():
    parser = argparse.ArgumentParser(description="Weight-decayed Adam benchmark")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config file.")
    parser.add_argument("--model", type=str, default=None, help=f"Model name ({', '.join(list_models())}).")
    parser.add_argument("--lr", type=float, default=None, help="Constant learning rate (overrides config schedule).")
    parser.add_argument("--weight-decay", type=float, default=None, help="Weight decay rate.")
    parser.add_argument("--bias-correction-mode", type=str, default=None,
                        choices=["compounding", "scheduled", "off"], help="Bias correction.")
    parser.add_argument("--max-grad-norm", type=float, default=None, help="Global-norm clip.")
    parser.add_argument("--exclude-bias-and-norm", action="store_true",
                        help="No weight decay on biases and 1-D parameters.")
    parser.add_argument("--batch-size", type=int, default=None, help="Batch size.")
    parser.add_argument("--epochs", type=int, default=None, help="Number of epochs.")
    parser.add_argument("--num-samples", type=int, default=None, help="Dataset size.")
    parser.add_argument("--device", type=str, default="auto", help="Device (auto/cpu/cuda).")
    parser.add_argument("--seed", type=int, default=42, help="Random seed.")
    args = parser.parse_args()

    # Load config from YAML if provided
    config = {}
    if args.config:
        with open(args.config) as f:
            config = yaml.safe_load(f) or {}

    # CLI args override config
    model_name = args.model or config.get("model", "mlp")
    batch_size = args.batch_size or config.get("batch_size", 32)
    epochs = args.epochs or config.get("epochs", 30)
    num_samples = args.num_samples or config.get("num_samples", 1000)
    noise = float(config.get("noise", 0.1))

    opt_config = OptimizerConfig.from_dict(config.get("optimizer", {}))
    if args.lr is not None:
        opt_config.schedule = {"name": "constant", "value": args.lr}
    if args.weight_decay is not None:
        opt_config.weight_decay_rate = args.weight_decay
    if args.bias_correction_mode == "off":
        opt_config.use_bias_correction = False
    elif args.bias_correction_mode is not None:
        opt_config.use_bias_correction = True
        opt_config.bias_correction_mode = args.bias_correction_mode
    if args.max_grad_norm is not None:
        opt_config.max_gradient_global_norm = args.max_grad_norm
    mode = opt_config.bias_correction_mode if opt_config.use_bias_correction else "off"

    # Device
    if args.device == "auto":
        device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
    else:
        device = torch.device(args.device)

    # Seed
    torch.manual_seed(args.seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(args.seed)

    logger.info(f"Model: {model_name} | Bias correction: {mode} | Schedule: {opt_config.schedule}")
    logger.info(f"WD: {opt_config.weight_decay_rate} | Clip: {opt_config.max_gradient_global_norm} | "
                f"Batch: {batch_size} | Epochs: {epochs}")
    logger.info(f"Device: {device}")

    # Build model and optimizer
    net = get_model(model_name, **config.get("model_kwargs", {})).to(device)
    params = ParameterModel(
        net,
        exclude_from_weight_decay=exclude_bias_and_norm if args.exclude_bias_and_norm else None,
    )
    num_params = sum(p.numel() for p in params.parameters)
    logger.info(f"Model parameters: {num_params:,}")
    optimizer = opt_config.build(params)

    train_loader, test_loader = get_dataloaders(num_samples, batch_size, noise, args.seed)

    results = {
        "model": model_name,
        "bias_correction": mode,
        "optimizer": opt_config.to_dict(),
        "batch_size": batch_size,
        "epochs": epochs,
        "num_params": num_params,
        "history": [],
    }

    start_time = time.time()

    for epoch in range(1, epochs + 1):
        epoch_start = time.time()
        train_loss, lr = train_one_epoch(net, params, train_loader, optimizer, device)
        test_loss = evaluate(net, test_loader, device)
        epoch_time = time.time() - epoch_start

        logger.info(
            f"Epoch {epoch}/{epochs} | "
            f"Train Loss: {train_loss:.4f} | Test Loss: {test_loss:.4f} | "
            f"LR: {lr:.3e} | Step: {optimizer.step} | Time: {epoch_time:.1f}s"
        )
        results["history"].append({
            "epoch": epoch,
            "step": optimizer.step,
            "train_loss": train_loss,
            "test_loss": test_loss,
            "learning_rate": lr,
            "epoch_time": epoch_time,
        })

    total_time = time.time() - start_time
    results["total_time"] = total_time
    logger.info(f"Training complete in {total_time:.1f}s")

    # Save results
    results_dir = Path("results")
    results_dir.mkdir(exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    result_file = results_dir / f"{model_name}_{mode}_{timestamp}.json"
    with open(result_file, "w") as f:
        json.dump(results, f, indent=2)
    logger.info(f"Results saved to {result_file}")


if __name__ == "__main__":
    main()
