"""
Report charts rendered to PNG files (headless, Agg backend).
"""
import logging
from pathlib import Path
from typing import Sequence, Union

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
from matplotlib.figure import Figure  # noqa: E402

from ..domain.analysis import HOLDER_TEMPERATURE, HOLDER_TOLERANCE  # noqa: E402
from ..domain.models import MilkBatch  # noqa: E402
from .reports import WasteSummary  # noqa: E402

logger = logging.getLogger(__name__)


def _save(figure: Figure, output_path: Union[str, Path]) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    figure.tight_layout()
    figure.savefig(output_path, format="png")
    logger.info(f"Chart written: {output_path}")
    return output_path


def plot_pasteurization_curve(
    batch: MilkBatch,
    output_path: Union[str, Path],
    target: float = HOLDER_TEMPERATURE,
    tolerance: float = HOLDER_TOLERANCE,
) -> Path:
    """
    Plot the Holder temperature curve of a pasteurized batch.

    Args:
        batch: Batch with a pasteurization record
        output_path: PNG destination
        target: Holder target temperature (°C)
        tolerance: Accepted band below target (°C)

    Returns:
        Path of the written PNG

    Raises:
        ValueError: Batch has no pasteurization record
    """
    if batch.pasteurization is None or not batch.pasteurization.temp_curve:
        raise ValueError(f"Lote {batch.folio} sin registro de pasteurización")

    minutes = np.array([p.minute for p in batch.pasteurization.temp_curve])
    temperatures = np.array([p.temperature for p in batch.pasteurization.temp_curve])

    figure = Figure(figsize=(8, 4), dpi=80)
    ax = figure.add_subplot(1, 1, 1)
    ax.plot(minutes, temperatures, "o-", linewidth=2, label="Temperatura")
    ax.axhline(target, color="green", linestyle="--", label=f"Objetivo {target} °C")
    ax.axhspan(target - tolerance, target, color="green", alpha=0.1)
    ax.set_title(f"Pasteurización Holder - {batch.folio}")
    ax.set_xlabel("Minuto")
    ax.set_ylabel("°C")
    ax.grid(True, alpha=0.3)
    ax.legend(loc="lower right", fontsize=9)
    return _save(figure, output_path)


def plot_waste_by_source(summary: WasteSummary, output_path: Union[str, Path]) -> Path:
    """Bar chart of wasted volume (mL) per source."""
    labels: Sequence[str] = list(summary.volume_by_source.keys())
    volumes = [summary.volume_by_source[label] for label in labels]

    figure = Figure(figsize=(6, 4), dpi=80)
    ax = figure.add_subplot(1, 1, 1)
    colors = plt.cm.viridis(np.linspace(0.3, 0.9, max(len(volumes), 1)))
    ax.bar(range(len(labels)), volumes, color=colors[:len(volumes)], width=0.6)
    ax.set_xticks(range(len(labels)))
    ax.set_xticklabels(labels)
    ax.set_title(f"Desperdicio por origen ({summary.total_volume_ml:g} mL)")
    ax.set_ylabel("mL")
    ax.grid(True, axis="y", alpha=0.3)
    return _save(figure, output_path)
