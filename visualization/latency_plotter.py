import io
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns
from typing import Dict, List, Any, Optional
from measurement_client.logger import logger


def regional_latency_frame(results: List[Dict[str, Any]]) -> pd.DataFrame:
    rows = [
        {"region": r.get("region") or "Unknown", "latency_ms": float(r["latency_ms"])}
        for r in results
        if r.get("latency_ms") is not None
    ]
    if not rows:
        return pd.DataFrame(columns=["region", "median_latency_ms", "probe_count"])

    frame = pd.DataFrame(rows)
    grouped = frame.groupby("region")["latency_ms"].agg(
        median_latency_ms="median", probe_count="count"
    ).reset_index()
    return grouped.sort_values("median_latency_ms").reset_index(drop=True)


def plot_regional_latency(results: List[Dict[str, Any]], thresholds: Optional[Dict[str, float]] = None,
                          dpi: int = 150) -> Optional[bytes]:
    """Render median latency per region as a PNG; None when nothing has latency."""
    data = regional_latency_frame(results)
    if data.empty:
        logger.info("No latency data available for the regional chart")
        return None

    thresholds = thresholds or {"slow_latency_ms": 100.0, "warning_latency_ms": 200.0}
    slow = thresholds.get("slow_latency_ms", 100.0)
    warning = thresholds.get("warning_latency_ms", 200.0)

    colors = ['red' if lat > warning else 'orange' if lat > slow else 'green'
              for lat in data["median_latency_ms"]]

    fig, ax = plt.subplots(figsize=(10, 5))
    sns.barplot(data=data, x="region", y="median_latency_ms", hue="region",
                palette=colors, legend=False, ax=ax)

    ax.axhline(y=slow, color='orange', linestyle='--', alpha=0.7, label=f'{slow:.0f}ms threshold')
    ax.axhline(y=warning, color='red', linestyle='--', alpha=0.7, label=f'{warning:.0f}ms threshold')

    for i, row in data.iterrows():
        ax.annotate(f"{row['median_latency_ms']:.0f}ms\n({row['probe_count']} probes)",
                    (i, row["median_latency_ms"]), textcoords="offset points",
                    xytext=(0, 5), ha='center', fontsize=8)

    ax.set_xlabel('Region (sorted by latency)')
    ax.set_ylabel('Median Latency (ms)')
    ax.set_title(f'Regional Latency ({len(data)} regions)')
    ax.grid(True, axis='y', alpha=0.3)
    ax.legend()
    fig.tight_layout()

    buffer = io.BytesIO()
    fig.savefig(buffer, format="png", dpi=dpi)
    plt.close(fig)
    logger.debug(f"Rendered regional latency chart for {len(data)} regions")
    return buffer.getvalue()
