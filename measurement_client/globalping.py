import time
import requests
from typing import Dict, Any, List, Optional
from measurement_client.logger import logger
from measurement_client.config import DEFAULT_CONFIG
from measurement_client.exceptions import InvalidDomainError, ProviderError
from measurement_client.processors import (
    is_valid_domain, parse_globalping_dns, parse_globalping_ping
)
from event_manager.summary import describe_alerts

FINISHED_STATES = ("finished", "completed")


class GlobalpingService:
    """Runs DNS and ping measurements through the Globalping API.

    Each scope maps to a list of countries. For every country one DNS and one
    ping measurement are created, polled until finished, and every probe result
    becomes one observation.
    """

    def __init__(self, token: Optional[str] = None, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        settings = config.get("globalping", {})

        self.token = token or ""
        self.base_url = settings.get("base_url", "https://api.globalping.io").rstrip("/")
        self.probes_per_country = int(settings.get("probes_per_country", 3))
        self.poll_attempts = int(settings.get("poll_attempts", 30))
        self.poll_interval = float(settings.get("poll_interval", 0.5))
        self.create_timeout = float(settings.get("create_timeout", 15))
        self.request_timeout = float(settings.get("request_timeout", 15))
        self.scopes = config.get("scopes") or {"GLOBAL": ["US", "BR", "DE", "JP", "SG", "GB", "CA", "AU"]}
        self.thresholds = config.get("classification") or DEFAULT_CONFIG["classification"]

        logger.info(f"Globalping token: {'configured' if self.token else 'NOT CONFIGURED'}")

    def _headers(self, json_body: bool = False) -> Dict[str, str]:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def get_locations(self, scope: str, limit: int) -> List[str]:
        countries = self.scopes.get(scope) or self.scopes.get("GLOBAL", [])
        return list(countries)[:max(limit, 0)]

    def execute_diagnostic(self, domain: str, scope: str, limit: int) -> Dict[str, Any]:
        if not is_valid_domain(domain):
            raise InvalidDomainError(domain)

        locations = self.get_locations(scope, limit)
        logger.info(f"[Globalping] Measuring {domain} from {len(locations)} locations ({scope})")

        # Synthetic probe ids: one block of `stride` ids per country, ping ids after all dns ids
        stride = max(10, self.probes_per_country)
        ping_offset = max(100, stride * len(locations))

        results: List[Dict[str, Any]] = []
        for i, country in enumerate(locations):
            location = {"country": country, "limit": self.probes_per_country}
            base_id = i * stride

            dns = self.run_measurement(domain, "dns", location)
            if dns:
                results.extend(parse_globalping_dns(dns, country, base_id))

            ping = self.run_measurement(domain, "ping", location)
            if ping:
                results.extend(parse_globalping_ping(ping, country, base_id + ping_offset, self.thresholds))

        if not results:
            raise ProviderError("globalping", "No valid measurement returned")

        logger.info(f"[Globalping] {len(results)} observations for {domain}")
        return {
            "summary": describe_alerts(results),
            "results": results,
            "total_probes": len(results),
        }

    def create_measurement(self, target: str, measurement_type: str, location: Dict[str, Any]) -> Optional[str]:
        payload = {
            "type": measurement_type,
            "target": target,
            "locations": [location],
        }
        response = requests.post(
            f"{self.base_url}/v1/measurements",
            json=payload,
            headers=self._headers(json_body=True),
            timeout=self.create_timeout
        )
        response.raise_for_status()
        return (response.json() or {}).get("id")

    def poll_measurement(self, measurement_id: str) -> Optional[Dict[str, Any]]:
        for attempt in range(self.poll_attempts):
            time.sleep(self.poll_interval)

            response = requests.get(
                f"{self.base_url}/v1/measurements/{measurement_id}",
                headers=self._headers(),
                timeout=self.request_timeout
            )
            response.raise_for_status()
            data = response.json() or {}

            if data.get("status") in FINISHED_STATES:
                logger.debug(f"[Globalping] Measurement {measurement_id} finished after {attempt + 1} polls")
                return data

        logger.warning(f"[Globalping] Measurement {measurement_id} did not finish after {self.poll_attempts} polls")
        return None

    def run_measurement(self, target: str, measurement_type: str, location: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            measurement_id = self.create_measurement(target, measurement_type, location)
            if not measurement_id:
                logger.warning(f"[Globalping] No measurement id returned for {measurement_type} {target} {location}")
                return None
            return self.poll_measurement(measurement_id)
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[Globalping] {measurement_type} measurement for {target} in {location.get('country')} failed: {e}")
            return None
