import re
from typing import Dict, Any, Optional, Tuple, List
from .logger import logger

DOMAIN_PATTERN = re.compile(r'^([a-zA-Z0-9-]+\.)+[a-zA-Z]{2,}$')

STATUS_OK = "OK"
STATUS_WARNING = "WARNING"
STATUS_ERROR = "ERROR"

UNKNOWN_ISP = "Unknown ISP"


def is_valid_domain(domain: Any) -> bool:
    return isinstance(domain, str) and bool(DOMAIN_PATTERN.match(domain))


def format_ms(value: Optional[float], precision: int = 0) -> str:
    if value is None:
        return "N/A"
    return f"{value:.{precision}f}ms"


def format_asn(asn: Any) -> str:
    if asn in (None, "", 0):
        return "N/A"
    return f"AS{asn}"


def format_loss(loss: Optional[float]) -> str:
    if loss is None:
        return "N/A"
    if float(loss).is_integer():
        return f"{int(loss)}%"
    return f"{loss:.1f}%"


# Status and accessibility follow the worst of latency and loss
def classify(avg_ms: Optional[float], loss_pct: Optional[float], thresholds: Dict[str, float]) -> Tuple[str, str]:
    loss = loss_pct or 0.0

    if avg_ms is None and loss >= 100:
        return STATUS_ERROR, "Unreachable"
    if (avg_ms is not None and avg_ms > thresholds["error_latency_ms"]) or loss > thresholds["error_loss_percentage"]:
        return STATUS_ERROR, "Unreachable"
    if (avg_ms is not None and avg_ms > thresholds["warning_latency_ms"]) or loss > thresholds["warning_loss_percentage"]:
        return STATUS_WARNING, "Instability detected"
    return STATUS_OK, "Accessible"


def classify_speed(avg_ms: Optional[float], thresholds: Dict[str, float]) -> str:
    if avg_ms is None:
        return "Unknown"
    if avg_ms < thresholds["fast_latency_ms"]:
        return "Fast"
    if avg_ms > thresholds["slow_latency_ms"]:
        return "Slow"
    return "Normal"


def create_probe_result(probe_id: Any, source: str, measurement: str, region: Optional[str]) -> Dict[str, Any]:
    return {
        "probe_id": probe_id,
        "source": source,
        "measurement": measurement,
        "region": region or "Unknown",
        "ip": "N/A",
        "asn": "N/A",
        "isp": UNKNOWN_ISP,
        "reverse_dns": "N/A",
        "accessibility": "Accessible",
        "latency": "N/A",
        "latency_ms": None,
        "jitter": "N/A",
        "speed": "Unknown",
        "packet_loss": "N/A",
        "status": STATUS_OK,
    }


def _first_address(answers: List[Dict[str, Any]]) -> Optional[str]:
    # Globalping reports answers under "value"; older payloads used "data"
    for answer in answers:
        if answer.get("type") == "A":
            return answer.get("value") or answer.get("data")
    first = answers[0]
    return first.get("value") or first.get("data")


# Globalping DNS measurement -> one observation per probe that got an answer
def parse_globalping_dns(data: Dict[str, Any], country: str, probe_id_base: int) -> List[Dict[str, Any]]:
    observations = []

    for index, entry in enumerate(data.get("results") or []):
        result = entry.get("result") or {}
        answers = result.get("answers") or []
        if not answers:
            logger.debug(f"Globalping DNS result without answers in {country}, skipping")
            continue

        probe = entry.get("probe") or {}
        timings = result.get("timings") or {}
        total = timings.get("total") if isinstance(timings, dict) else None

        observation = create_probe_result(probe_id_base + index, "globalping", "dns", probe.get("country") or country)
        observation.update({
            "ip": _first_address(answers) or "N/A",
            "asn": format_asn(probe.get("asn")),
            "isp": probe.get("network") or UNKNOWN_ISP,
            "latency": format_ms(total),
            "latency_ms": float(total) if total is not None else None,
            "packet_loss": "0%",
            "speed": "Normal",
        })
        observations.append(observation)

    return observations


# Globalping ping measurement -> one observation per probe, jitter = max - min
def parse_globalping_ping(data: Dict[str, Any], country: str, probe_id_base: int,
                          thresholds: Dict[str, float]) -> List[Dict[str, Any]]:
    observations = []

    for index, entry in enumerate(data.get("results") or []):
        result = entry.get("result") or {}
        stats = result.get("stats")
        if not stats:
            logger.debug(f"Globalping ping result without stats in {country}, skipping")
            continue

        probe = entry.get("probe") or {}
        loss = stats.get("loss")
        loss = float(loss) if loss is not None else None
        ip = result.get("resolvedAddress") or stats.get("resolvedAddress") or "N/A"

        observation = create_probe_result(probe_id_base + index, "globalping", "ping", probe.get("country") or country)
        observation.update({
            "ip": ip,
            "asn": format_asn(probe.get("asn")),
            "isp": probe.get("network") or UNKNOWN_ISP,
            "packet_loss": format_loss(loss),
        })

        # Fully lost or no average reported: latency stays unknown
        if (loss is not None and loss >= 100) or stats.get("avg") is None:
            status, accessibility = classify(None, loss, thresholds)
            observation.update({"status": status, "accessibility": accessibility})
            observations.append(observation)
            continue

        avg = round(stats["avg"])
        low = round(stats["min"]) if stats.get("min") is not None else avg
        high = round(stats["max"]) if stats.get("max") is not None else avg
        status, accessibility = classify(avg, loss, thresholds)

        observation.update({
            "latency": format_ms(avg),
            "latency_ms": float(avg),
            "jitter": format_ms(abs(high - low)),
            "speed": classify_speed(avg, thresholds),
            "status": status,
            "accessibility": accessibility,
        })
        observations.append(observation)

    return observations


def _ripe_loss(result: Dict[str, Any]) -> Optional[float]:
    sent = result.get("sent")
    received = result.get("rcvd")
    if sent:
        return (sent - (received or 0)) / sent * 100
    pings = result.get("result")
    if isinstance(pings, list) and pings:
        lost = len([p for p in pings if p.get("x") or p.get("rtt") is None])
        return lost / len(pings) * 100
    return None


def _ripe_latency(result: Dict[str, Any]) -> Optional[float]:
    if result.get("type") == "dns" or isinstance(result.get("result"), dict):
        rt = (result.get("result") or {}).get("rt")
        return float(rt) if rt is not None else None
    avg = result.get("avg")
    if avg is None or avg < 0:
        return None
    return float(avg)


# One RIPE Atlas result plus the probe that produced it -> observation
def parse_ripe_result(result: Dict[str, Any], probe: Dict[str, Any], isp: str, reverse_dns: str,
                      thresholds: Dict[str, float]) -> Dict[str, Any]:
    measurement = "dns" if isinstance(result.get("result"), dict) or result.get("type") == "dns" else "ping"
    ip = result.get("dst_addr") or probe.get("address_v4") or "0.0.0.0"
    latency = _ripe_latency(result)
    loss = _ripe_loss(result) if measurement == "ping" else None

    observation = create_probe_result(probe.get("id", result.get("prb_id")), "ripe_atlas", measurement,
                                      probe.get("country_code"))
    observation.update({
        "ip": ip,
        "asn": format_asn(probe.get("asn_v4")),
        "isp": isp or UNKNOWN_ISP,
        "reverse_dns": reverse_dns or "N/A",
        "latency": format_ms(latency, 2),
        "latency_ms": latency,
        "packet_loss": format_loss(loss),
        "speed": classify_speed(latency, thresholds),
    })

    if result.get("error") or (measurement == "ping" and latency is None):
        observation.update({"status": STATUS_ERROR, "accessibility": "Unreachable"})
    else:
        status, accessibility = classify(latency, loss, thresholds)
        observation.update({"status": status, "accessibility": accessibility})

    return observation
