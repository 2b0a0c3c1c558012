import copy

from measurement_client.processors import create_probe_result


def make_result(source="globalping", probe_id=1, measurement="ping", region="BR", **fields):
    result = create_probe_result(probe_id, source, measurement, region)
    result.update(fields)
    return result


class FakeProvider:
    def __init__(self, results=None, error=None, summary="fake summary"):
        self.results = results or []
        self.error = error
        self.summary = summary
        self.calls = []

    def execute_diagnostic(self, domain, scope, limit):
        self.calls.append((domain, scope, limit))
        if self.error is not None:
            raise self.error
        return {
            "summary": self.summary,
            "results": copy.deepcopy(self.results),
            "total_probes": len(self.results),
        }
