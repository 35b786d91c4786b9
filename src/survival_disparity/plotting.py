"""Disparity curve figure."""

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd


def plot_disparity_curve(
    summary: pd.DataFrame,
    focal: str = "Black",
    reference: str = "White",
):
    """
    Posterior mean disparity with its credible ribbon and a zero line.

    Returns:
        The matplotlib Figure; the caller saves and closes it.
    """
    fig, ax = plt.subplots(figsize=(7, 5))
    ax.fill_between(summary["policy_index"], summary["lower"], summary["upper"],
                    color="0.8", alpha=0.5, linewidth=0)
    ax.plot(summary["policy_index"], summary["mean_diff"], color="blue", linewidth=1.5)
    ax.axhline(0, color="black", linestyle="--", linewidth=0.8)
    ax.set_title(f"Posterior Mean Disparity ({focal} - {reference}) by Policy Index")
    ax.set_xlabel("Policy Index")
    ax.set_ylabel("Difference in Predicted 2-Year Survival")
    for side in ("top", "right"):
        ax.spines[side].set_visible(False)
    fig.tight_layout()
    return fig
