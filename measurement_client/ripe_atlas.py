import time
import random
import ipaddress
import requests
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Any, List, Optional
from ripe.atlas.cousteau import (
    Ping, Dns, AtlasSource, AtlasCreateRequest, AtlasResultsRequest
)
from measurement_client.logger import logger
from measurement_client.config import DEFAULT_CONFIG
from measurement_client.exceptions import InvalidDomainError, ProviderError
from measurement_client.processors import (
    is_valid_domain, parse_ripe_result, classify, classify_speed,
    create_probe_result, format_asn, format_ms, UNKNOWN_ISP
)

SCOPE_FILTERS = {
    "BR": {"country_code": "BR"},
    "AWS": {"tags": "aws"},
    "AZURE": {"tags": "azure"},
}


class RipeAtlasService:
    """One-off RIPE Atlas measurements for a domain.

    Probes are selected by scope through the REST API, the measurement is
    created and its results fetched through ripe.atlas.cousteau, and each result
    is enriched with the ASN holder and the reverse DNS name of the address.
    """

    def __init__(self, api_key: Optional[str] = None, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        settings = config.get("ripe_atlas", {})

        self.api_key = api_key or ""
        self.base_url = settings.get("base_url", DEFAULT_CONFIG["ripe_atlas"]["base_url"]).rstrip("/")
        self.stat_url = settings.get("stat_url", DEFAULT_CONFIG["ripe_atlas"]["stat_url"])
        self.doh_url = settings.get("doh_url", DEFAULT_CONFIG["ripe_atlas"]["doh_url"])
        self.measurement_type = str(settings.get("measurement_type", "ping")).lower()
        self.packets = int(settings.get("packets", 3))
        self.poll_interval = float(settings.get("poll_interval", 3))
        self.max_wait = float(settings.get("max_wait", 60))
        self.result_cap = int(settings.get("result_cap", 50))
        self.request_timeout = float(settings.get("request_timeout", 15))
        self.enrichment_workers = int(settings.get("enrichment_workers", 8))
        self.allow_mock = bool(settings.get("allow_mock", True))
        self.thresholds = config.get("classification") or DEFAULT_CONFIG["classification"]

        self._asn_cache: Dict[int, str] = {}

        logger.info(f"[RIPE Atlas] API key configured: {'YES' if self.api_key else 'NO (mock results)'}")

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Key {self.api_key}"} if self.api_key else {}

    def select_probes(self, scope: str, limit: int) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"status": 1, "page_size": limit}
        params.update(SCOPE_FILTERS.get(scope, {}))

        try:
            logger.info(f"[RIPE Atlas] Selecting probes with params: {params}")
            response = requests.get(
                f"{self.base_url}/probes/",
                params=params,
                headers=self._auth_headers(),
                timeout=self.request_timeout
            )
            response.raise_for_status()
            probes = (response.json() or {}).get("results") or []
            logger.info(f"[RIPE Atlas] Probes found: {len(probes)}")
            return probes[:limit]
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[RIPE Atlas] Error selecting probes: {e}")
            return []

    def _create(self, measurement, probe_ids: List[int]) -> Optional[int]:
        if not self.api_key:
            logger.warning("[RIPE Atlas] API key not configured, cannot create measurements")
            return None

        source = AtlasSource(
            type="probes",
            value=",".join(str(probe_id) for probe_id in probe_ids),
            requested=len(probe_ids)
        )
        atlas_request = AtlasCreateRequest(
            key=self.api_key,
            measurements=[measurement],
            sources=[source],
            is_oneoff=True
        )

        try:
            is_success, response = atlas_request.create()
        except Exception as e:
            logger.error(f"[RIPE Atlas] Measurement request raised: {e}")
            return None

        if not is_success:
            logger.error(f"[RIPE Atlas] Failed to create measurement: {response}")
            return None

        return self._extract_measurement_id(response)

    def _extract_measurement_id(self, response) -> Optional[int]:
        try:
            if isinstance(response, dict) and "measurements" in response:
                return response["measurements"][0]
            logger.warning(f"[RIPE Atlas] Unexpected response format: {response}")
            return None
        except (IndexError, KeyError, TypeError) as e:
            logger.error(f"[RIPE Atlas] Failed to extract measurement ID from response: {e}")
            return None

    def create_ping_measurement(self, target: str, probe_ids: List[int]) -> Optional[int]:
        ping = Ping(
            af=4,
            target=target,
            packets=self.packets,
            description=f"Farol ping to {target}"
        )
        return self._create(ping, probe_ids)

    def create_dns_measurement(self, domain: str, probe_ids: List[int]) -> Optional[int]:
        dns = Dns(
            af=4,
            query_class="IN",
            query_type="A",
            query_argument=domain,
            use_probe_resolver=True,
            description=f"Farol DNS lookup of {domain}"
        )
        return self._create(dns, probe_ids)

    def get_measurement_results(self, measurement_id: int) -> List[Dict[str, Any]]:
        try:
            is_success, results = AtlasResultsRequest(msm_id=measurement_id).create()
        except Exception as e:
            logger.error(f"[RIPE Atlas] Error fetching results for {measurement_id}: {e}")
            return []

        if not is_success:
            logger.warning(f"[RIPE Atlas] Results request for {measurement_id} failed: {results}")
            return []
        return results or []

    def wait_for_results(self, measurement_id: int) -> List[Dict[str, Any]]:
        deadline = time.monotonic() + self.max_wait

        while time.monotonic() < deadline:
            results = self.get_measurement_results(measurement_id)
            if results:
                logger.info(f"[RIPE Atlas] Retrieved {len(results)} results for measurement {measurement_id}")
                return results
            time.sleep(self.poll_interval)

        logger.warning(f"[RIPE Atlas] No results for measurement {measurement_id} after {self.max_wait:.0f}s")
        return []

    def get_asn_holder(self, asn: Optional[int]) -> str:
        if not asn:
            return UNKNOWN_ISP
        if asn in self._asn_cache:
            return self._asn_cache[asn]

        try:
            response = requests.get(self.stat_url, params={"resource": f"AS{asn}"}, timeout=self.request_timeout)
            response.raise_for_status()
            holder = ((response.json() or {}).get("data") or {}).get("holder") or UNKNOWN_ISP
        except (requests.RequestException, ValueError) as e:
            logger.debug(f"[RIPE Atlas] ASN lookup for AS{asn} failed: {e}")
            return UNKNOWN_ISP

        self._asn_cache[asn] = holder
        return holder

    def resolve_reverse_dns(self, ip: str) -> str:
        try:
            pointer = ipaddress.ip_address(ip).reverse_pointer
        except ValueError:
            return "N/A"

        try:
            response = requests.get(self.doh_url, params={"name": pointer, "type": "PTR"}, timeout=self.request_timeout)
            response.raise_for_status()
            answers = (response.json() or {}).get("Answer") or []
        except (requests.RequestException, ValueError) as e:
            logger.debug(f"[RIPE Atlas] Reverse DNS for {ip} failed: {e}")
            return "N/A"

        if not answers:
            return "N/A"
        return str(answers[0].get("data", "N/A")).rstrip(".") or "N/A"

    def _normalize(self, result: Dict[str, Any], probe: Dict[str, Any]) -> Dict[str, Any]:
        ip = result.get("dst_addr") or probe.get("address_v4") or "0.0.0.0"
        isp = self.get_asn_holder(probe.get("asn_v4"))
        reverse_dns = self.resolve_reverse_dns(ip)
        return parse_ripe_result(result, probe, isp, reverse_dns, self.thresholds)

    def process_results(self, results: List[Dict[str, Any]], probes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        probes_by_id = {probe.get("id"): probe for probe in probes}
        pairs = []

        for index, result in enumerate(results[:self.result_cap]):
            probe = probes_by_id.get(result.get("prb_id"))
            if probe is None:
                probe = probes[index] if index < len(probes) else {"id": result.get("prb_id")}
            pairs.append((result, probe))

        if not pairs:
            return []

        workers = max(1, min(self.enrichment_workers, len(pairs)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(lambda pair: self._normalize(*pair), pairs))

    def generate_mock_results(self, domain: str, scope: str, probes: List[Dict[str, Any]]) -> Dict[str, Any]:
        sample = probes[:min(len(probes), 10)]
        results = []

        for probe in sample:
            rng = random.Random(probe.get("id"))
            latency = float(rng.randint(10, 210))
            status, accessibility = ("ERROR", "Unreachable") if rng.random() < 0.1 else classify(latency, 0.0, self.thresholds)

            observation = create_probe_result(probe.get("id"), "ripe_atlas_mock", self.measurement_type,
                                              probe.get("country_code"))
            observation.update({
                "ip": probe.get("address_v4") or f"192.0.2.{rng.randint(1, 254)}",
                "asn": format_asn(probe.get("asn_v4")),
                "isp": "Sample ISP (Mock Data)",
                "reverse_dns": f"host-{probe.get('id')}.example.net",
                "latency": format_ms(latency),
                "latency_ms": latency,
                "packet_loss": "0%",
                "speed": classify_speed(latency, self.thresholds),
                "status": status,
                "accessibility": accessibility,
            })
            results.append(observation)

        return {
            "summary": f"[MOCK] Simulated diagnostic for {domain} ({scope}). Configure RIPE_ATLAS_API_KEY for real measurements.",
            "results": results,
            "total_probes": len(probes),
        }

    def _fallback(self, domain: str, scope: str, probes: List[Dict[str, Any]], reason: str) -> Dict[str, Any]:
        if self.allow_mock:
            logger.warning(f"[RIPE Atlas] {reason}, returning mock results")
            return self.generate_mock_results(domain, scope, probes)
        raise ProviderError("ripe_atlas", reason)

    def execute_diagnostic(self, domain: str, scope: str, limit: int) -> Dict[str, Any]:
        if not is_valid_domain(domain):
            raise InvalidDomainError(domain)

        probes = self.select_probes(scope, limit)
        if not probes:
            return {
                "summary": "No probes available for this scope.",
                "results": [],
                "total_probes": 0,
            }

        if not self.api_key:
            return self._fallback(domain, scope, probes, "API key not configured")

        probe_ids = [probe["id"] for probe in probes if probe.get("id") is not None]
        if self.measurement_type == "dns":
            measurement_id = self.create_dns_measurement(domain, probe_ids)
        else:
            measurement_id = self.create_ping_measurement(domain, probe_ids)

        if not measurement_id:
            return self._fallback(domain, scope, probes, "Measurement creation failed")

        logger.info(f"[RIPE Atlas] Created {self.measurement_type} measurement {measurement_id} for {domain}")
        raw_results = self.wait_for_results(measurement_id)
        results = self.process_results(raw_results, probes)

        ok_count = len([r for r in results if r["status"] == "OK"])
        return {
            "summary": f"{scope} diagnostic completed. {ok_count}/{len(results)} probes responded successfully.",
            "results": results,
            "total_probes": len(probes),
            "measurement_id": measurement_id,
        }
