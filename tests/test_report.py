import re

from visualization.latency_plotter import plot_regional_latency, regional_latency_frame
from visualization.report import format_result_line, render_pdf
from helpers import make_result


def _results(count):
    regions = ["BR", "US", "DE", "JP"]
    return [
        make_result("globalping", i, region=regions[i % len(regions)], ip=f"10.0.0.{i}",
                    asn=f"AS{i}", isp=f"ISP {i}", latency=f"{i * 10}ms", latency_ms=float(i * 10))
        for i in range(count)
    ]


def test_format_result_line():
    result = make_result(region="BR", isp="Claro", asn="AS28573", ip="1.2.3.4", latency="12ms")

    assert format_result_line(3, result) == "3. [BR] Claro (AS28573) -> IP: 1.2.3.4 | 12ms | OK"


def test_regional_latency_frame_sorts_by_median():
    frame = regional_latency_frame([
        make_result(region="BR", latency_ms=100.0),
        make_result(region="BR", latency_ms=300.0),
        make_result(region="US", latency_ms=20.0),
        make_result(region="DE", latency_ms=None),
    ])

    assert list(frame["region"]) == ["US", "BR"]
    assert list(frame["median_latency_ms"]) == [20.0, 200.0]
    assert list(frame["probe_count"]) == [1, 2]


def test_chart_is_skipped_without_latency():
    assert plot_regional_latency([make_result(latency_ms=None)]) is None


def test_chart_is_png():
    png = plot_regional_latency(_results(6), dpi=50)

    assert png.startswith(b"\x89PNG")


def test_render_pdf_with_many_results_spans_pages():
    diagnostic = {
        "domain": "example.com",
        "scope": "GLOBAL",
        "created_at": "2026-01-01T00:00:00+00:00",
        "summary": "Hybrid: 120 unique probes found. | " + "WARNING BR: instability in some providers (Claro) | " * 10,
        "total_probes": 120,
        "results": _results(120),
    }

    pdf = render_pdf(diagnostic)

    assert pdf.startswith(b"%PDF")
    page_counts = [int(n) for n in re.findall(rb"/Count (\d+)", pdf)]
    assert max(page_counts) > 1


def test_render_pdf_tolerates_missing_fields():
    pdf = render_pdf({"results": []}, include_chart=False)

    assert pdf.startswith(b"%PDF")
