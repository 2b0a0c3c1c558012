STATUS_TYPES = {
    "OK": {
        "description": "Probe reached the target with latency and loss under the warning thresholds",
        "severity": 0,
        "alert_label": None
    },
    "WARNING": {
        "description": "Latency or packet loss above the warning threshold (e.g., > 200 ms or > 5% loss)",
        "severity": 1,
        "alert_label": "WARNING"
    },
    "ERROR": {
        "description": "Target unreachable, measurement error, or latency/loss above the error threshold",
        "severity": 2,
        "alert_label": "CRITICAL"
    }
}


def severity_of(status: str) -> int:
    return STATUS_TYPES.get(status, {}).get("severity", 0)
