import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Tuple
from measurement_client.logger import logger
from measurement_client.config import DEFAULT_CONFIG
from measurement_client.exceptions import (
    InvalidDomainError, ValidationError, DiagnosticError
)
from measurement_client.processors import is_valid_domain
from event_manager.status_types import severity_of
from event_manager.summary import build_summary, regional_breakdown

KNOWN_SCOPES = ("GLOBAL", "BR", "AWS", "AZURE")


def split_budget(limit: int, providers: int = 2) -> int:
    return math.ceil(limit / providers)


def _dedup_key(result: Dict[str, Any]) -> Tuple:
    asn = result.get("asn")
    ip = result.get("ip")
    if asn not in (None, "", "N/A") and ip not in (None, "", "N/A", "0.0.0.0"):
        return ("network", asn, ip)
    return ("probe", result.get("source"), result.get("probe_id"), result.get("measurement"))


def _preference(result: Dict[str, Any]) -> Tuple[int, bool, bool]:
    # Worse status wins, then a measured latency, then ping over dns
    return (
        severity_of(result.get("status", "OK")),
        result.get("latency_ms") is not None,
        result.get("measurement") == "ping",
    )


def deduplicate(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop repeated observations of the same network.

    Observations sharing an (ASN, IP) pair are one observation; those missing
    either value are keyed by their own provider and probe id instead. On a
    repeat the observation with the worse status is kept, so a failure on a
    network is never hidden behind a healthy reading of it. Between equal
    statuses one with a measured latency wins, then a ping over a DNS lookup.
    The slot keeps its first-appearance position.
    """
    seen: Dict[Tuple, int] = {}
    unique: List[Dict[str, Any]] = []

    for result in results:
        key = _dedup_key(result)
        if key not in seen:
            seen[key] = len(unique)
            unique.append(result)
            continue

        if _preference(result) > _preference(unique[seen[key]]):
            unique[seen[key]] = result

    return unique


def rank(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # Worst status first, then fastest, unknown latency last
    def sort_key(result):
        latency = result.get("latency_ms")
        return (
            -severity_of(result.get("status", "OK")),
            latency is None,
            latency if latency is not None else 0.0,
            result.get("region") or "",
        )
    return sorted(results, key=sort_key)


class DiagnosticAggregator:
    """Fans a diagnostic out to both providers and merges what comes back.

    A provider that raises is recorded as failed and the run continues with the
    other one; only when both fail is the run an error.
    """

    def __init__(self, globalping, ripe, store=None, config: Optional[Dict[str, Any]] = None):
        self.providers = {
            "globalping": globalping,
            "ripe_atlas": ripe,
        }
        self.store = store
        limits = (config or DEFAULT_CONFIG).get("limits") or DEFAULT_CONFIG["limits"]
        self.min_probes = int(limits.get("min_probes", 1))
        self.max_probes = int(limits.get("max_probes", 1000))

    def validate(self, domain: Any, scope: Any, limit: Any) -> Tuple[str, str, int]:
        if not is_valid_domain(domain):
            raise InvalidDomainError(str(domain))

        scope = str(scope or "GLOBAL").upper()
        if scope not in KNOWN_SCOPES:
            logger.warning(f"Unknown scope {scope}, measuring as GLOBAL")

        if isinstance(limit, bool) or (isinstance(limit, float) and not limit.is_integer()):
            raise ValidationError(f"Invalid probe limit: {limit}", details={"limit": limit})
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid probe limit: {limit}", details={"limit": limit})
        if not self.min_probes <= limit <= self.max_probes:
            raise ValidationError(
                f"Probe limit must be between {self.min_probes} and {self.max_probes}",
                details={"limit": limit}
            )

        return domain.lower(), scope, limit

    def _call_provider(self, name: str, domain: str, scope: str, budget: int) -> Dict[str, Any]:
        try:
            outcome = self.providers[name].execute_diagnostic(domain, scope, budget)
        except Exception as e:
            logger.error(f"Provider {name} failed for {domain}: {e}")
            return {"state": "failed", "error": str(e), "count": 0, "summary": None, "results": []}

        results = outcome.get("results") or []
        state = "ok" if results else "empty"
        logger.info(f"Provider {name} returned {len(results)} observations for {domain}")
        return {
            "state": state,
            "error": None,
            "count": len(results),
            "summary": outcome.get("summary"),
            "results": results,
        }

    def collect(self, domain: str, scope: str, budget: int) -> Dict[str, Dict[str, Any]]:
        with ThreadPoolExecutor(max_workers=len(self.providers)) as executor:
            futures = {
                name: executor.submit(self._call_provider, name, domain, scope, budget)
                for name in self.providers
            }
            return {name: future.result() for name, future in futures.items()}

    def run(self, domain: Any, scope: Any = "GLOBAL", limit: Any = 50) -> Dict[str, Any]:
        domain, scope, limit = self.validate(domain, scope, limit)
        budget = split_budget(limit, len(self.providers))
        logger.info(f"Running diagnostic for {domain} (scope={scope}, limit={limit}, {budget} per provider)")

        outcomes = self.collect(domain, scope, budget)

        if all(outcome["state"] == "failed" for outcome in outcomes.values()):
            raise DiagnosticError(
                f"All measurement providers failed for {domain}",
                details={name: outcome["error"] for name, outcome in outcomes.items()}
            )

        merged = []
        for outcome in outcomes.values():
            merged.extend(outcome["results"])

        unique = deduplicate(merged)
        logger.info(f"Merged {len(merged)} observations into {len(unique)} unique for {domain}")
        results = rank(unique)[:limit]

        diagnostic = {
            "domain": domain,
            "scope": scope,
            "limit": limit,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "summary": build_summary(results, outcomes),
            "results": results,
            "total_probes": len(results),
            "regions": regional_breakdown(results),
            "providers": {
                name: {
                    "state": outcome["state"],
                    "count": outcome["count"],
                    "error": outcome["error"],
                    "summary": outcome["summary"],
                }
                for name, outcome in outcomes.items()
            },
        }

        if self.store is not None:
            diagnostic = self.store.save(diagnostic)
        return diagnostic
