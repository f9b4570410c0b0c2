"""
Compare Benchmark Results
=========================

Load multiple result JSON files written by ``benchmarks/train.py`` and plot
loss and effective learning rate side by side. Useful for seeing how the
"compounding" bias correction freezes training next to "scheduled".

Usage:
    # Compare all results for a given model
    python benchmarks/compare.py --dir results/ --filter mlp_layernorm

    # Compare specific files
    python benchmarks/compare.py results/file1.json results/file2.json

    # Save plot to file instead of showing
    python benchmarks/compare.py --dir results/ --output comparison.png
"""

import argparse
import json
import sys
from pathlib import Path

import matplotlib.pyplot as plt


def load_results(paths: list[Path]) -> list[dict]:
    """Load result JSON files."""
    results = []
    for p in paths:
        with open(p) as f:
            data = json.load(f)
            data["_file"] = p.name
            results.append(data)
    return results


def _label(r: dict) -> str:
    opt = r["optimizer"]
    return f"{r['bias_correction']} (wd={opt['weight_decay_rate']}, clip={opt['max_gradient_global_norm']})"


def plot_comparison(results: list[dict], output: str | None = None):
    """Generate comparison plots from multiple experiment results."""
    if not results:
        print("No results to compare.")
        return

    fig, axes = plt.subplots(1, 3, figsize=(18, 5))

    for r in results:
        label = _label(r)
        epochs = [h["epoch"] for h in r["history"]]
        axes[0].plot(epochs, [h["train_loss"] for h in r["history"]], label=label)
        axes[1].plot(epochs, [h["test_loss"] for h in r["history"]], label=label)
        axes[2].plot(epochs, [h["learning_rate"] for h in r["history"]], label=label)

    for ax, title, ylabel in (
        (axes[0], "Train Loss", "MSE"),
        (axes[1], "Test Loss", "MSE"),
        (axes[2], "Effective Learning Rate", "lr"),
    ):
        ax.set_title(title)
        ax.set_xlabel("Epoch")
        ax.set_ylabel(ylabel)
        ax.set_yscale("log")
        ax.legend()
        ax.grid(True, alpha=0.3)

    model_name = results[0].get("model", "unknown")
    fig.suptitle(f"Bias-Correction Comparison: {model_name}", fontsize=14)
    plt.tight_layout()

    if output:
        plt.savefig(output, dpi=150, bbox_inches="tight")
        print(f"Plot saved to {output}")
    else:
        plt.show()

    # Print summary table
    print("\n" + "=" * 88)
    print(f"{'Run':<44} {'Final Train':<14} {'Best Test':<14} {'Final LR':<10} {'Time':<6}")
    print("=" * 88)

    for r in results:
        history = r["history"]
        final_train_loss = history[-1]["train_loss"]
        best_test = min(h["test_loss"] for h in history)
        final_lr = history[-1]["learning_rate"]
        total_time = f"{r.get('total_time', 0):.1f}s"
        print(f"{_label(r):<44} {final_train_loss:<14.4f} {best_test:<14.4f} {final_lr:<10.2e} {total_time:<6}")


def main():
    parser = argparse.ArgumentParser(description="Compare optimizer benchmark results")
    parser.add_argument("files", nargs="*", help="Result JSON files to compare.")
    parser.add_argument("--dir", type=str, default=None, help="Directory containing result files.")
    parser.add_argument("--filter", type=str, default=None, help="Filter filenames (substring match).")
    parser.add_argument("--output", type=str, default=None, help="Save plot to file.")
    args = parser.parse_args()

    paths = []
    if args.files:
        paths = [Path(f) for f in args.files]
    elif args.dir:
        result_dir = Path(args.dir)
        paths = sorted(result_dir.glob("*.json"))
        if args.filter:
            paths = [p for p in paths if args.filter in p.name]
    else:
        parser.print_help()
        sys.exit(1)

    if not paths:
        print("No result files found.")
        sys.exit(1)

    print(f"Loading {len(paths)} result files...")
    results = load_results(paths)
    plot_comparison(results, args.output)


if __name__ == "__main__":
    main()
