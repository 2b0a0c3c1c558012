from collections import defaultdict, OrderedDict
from statistics import median
from typing import Dict, List, Any, Optional
from measurement_client.logger import logger
from .status_types import STATUS_TYPES

NO_ALERTS_MESSAGE = "No instability detected. Normal connectivity in all tested regions."

PROVIDER_LABELS = {
    "globalping": "Globalping",
    "ripe_atlas": "RIPE Atlas",
}


def group_by_region(results: List[Dict[str, Any]]) -> "OrderedDict[str, List[Dict[str, Any]]]":
    regions: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
    for result in results:
        regions.setdefault(result.get("region") or "Unknown", []).append(result)
    return regions


def _affected_isps(probes: List[Dict[str, Any]]) -> List[str]:
    isps = []
    seen = set()
    for probe in probes:
        isp = probe.get("isp")
        if isp not in seen:
            seen.add(isp)
            isps.append(isp)
    return isps


def regional_alerts(results: List[Dict[str, Any]]) -> List[str]:
    """One alert per region that has failing or unstable probes.

    A region with any ERROR probe is critical; otherwise any WARNING probe makes
    it unstable. The ISPs of the affected probes are listed in first-seen order.
    """
    alerts = []

    for region, probes in group_by_region(results).items():
        errors = [p for p in probes if p.get("status") == "ERROR"]
        warnings = [p for p in probes if p.get("status") == "WARNING"]
        isps = ", ".join(_affected_isps(errors + warnings))

        if errors:
            label = STATUS_TYPES["ERROR"]["alert_label"]
            alerts.append(f"{label} {region}: critical failure detected ({isps})")
        elif warnings:
            label = STATUS_TYPES["WARNING"]["alert_label"]
            alerts.append(f"{label} {region}: instability in some providers ({isps})")

    return alerts


def describe_alerts(results: List[Dict[str, Any]]) -> str:
    alerts = regional_alerts(results)
    if not alerts:
        return NO_ALERTS_MESSAGE
    return " | ".join(alerts)


def build_summary(results: List[Dict[str, Any]], outcomes: Optional[Dict[str, Dict[str, Any]]] = None) -> str:
    parts = [f"Hybrid: {len(results)} unique probes found.", describe_alerts(results)]

    for provider, outcome in (outcomes or {}).items():
        if outcome.get("state") == "failed":
            parts.append(f"{PROVIDER_LABELS.get(provider, provider)} unavailable")

    summary = " | ".join(parts)
    logger.debug(f"Summary: {summary}")
    return summary


def regional_breakdown(results: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    breakdown = {}

    for region, probes in group_by_region(results).items():
        counts = defaultdict(int)
        for probe in probes:
            counts[probe.get("status", "OK")] += 1
        latencies = [p["latency_ms"] for p in probes if p.get("latency_ms") is not None]

        breakdown[region] = {
            "probe_count": len(probes),
            "ok": counts["OK"],
            "warning": counts["WARNING"],
            "error": counts["ERROR"],
            "median_latency_ms": float(median(latencies)) if latencies else None,
        }

    return breakdown
