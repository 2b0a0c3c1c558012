import io
from typing import Dict, List, Any, Optional
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas as rl_canvas
from measurement_client.logger import logger
from visualization.latency_plotter import plot_regional_latency

MARGIN = 50
FOOTER_TEXT = "Automatically generated document for technical connectivity diagnosis."


def format_result_line(index: int, result: Dict[str, Any]) -> str:
    return (
        f"{index}. [{result.get('region', '-')}] {result.get('isp', '-')} ({result.get('asn', '-')}) "
        f"-> IP: {result.get('ip', '-')} | {result.get('latency', '-')} | {result.get('status', '-')}"
    )


class _PageWriter:
    """Keeps the cursor on the current page and breaks pages as lines are written."""

    def __init__(self, canvas):
        self.canvas = canvas
        self.width, self.height = A4
        self.y = self.height - MARGIN
        self.font = ("Helvetica", 10)

    def set_font(self, name: str, size: int) -> None:
        self.font = (name, size)
        self.canvas.setFont(name, size)

    def ensure_space(self, needed: float) -> None:
        if self.y - needed < MARGIN:
            self.canvas.showPage()
            self.canvas.setFont(*self.font)
            self.y = self.height - MARGIN

    def line(self, text: str, leading: Optional[float] = None, centered: bool = False) -> None:
        leading = leading or self.font[1] + 4
        for chunk in simpleSplit(text, self.font[0], self.font[1], self.width - 2 * MARGIN) or [""]:
            self.ensure_space(leading)
            if centered:
                self.canvas.drawCentredString(self.width / 2, self.y, chunk)
            else:
                self.canvas.drawString(MARGIN, self.y, chunk)
            self.y -= leading

    def gap(self, size: float = 10) -> None:
        self.y -= size

    def image(self, png: bytes) -> None:
        reader = ImageReader(io.BytesIO(png))
        img_width, img_height = reader.getSize()
        draw_width = self.width - 2 * MARGIN
        draw_height = draw_width * img_height / img_width
        self.ensure_space(draw_height)
        self.canvas.drawImage(reader, MARGIN, self.y - draw_height, width=draw_width, height=draw_height)
        self.y -= draw_height + 10


def render_pdf(diagnostic: Dict[str, Any], include_chart: bool = True,
               thresholds: Optional[Dict[str, float]] = None) -> bytes:
    """Render a diagnostic as a PDF document and return its bytes.

    Expects ``domain``, ``results`` and optionally ``created_at``/``date``,
    ``summary`` and ``total_probes``; missing values print as "-".
    """
    results: List[Dict[str, Any]] = diagnostic.get("results") or []
    buffer = io.BytesIO()
    canvas = rl_canvas.Canvas(buffer, pagesize=A4)
    canvas.setTitle(f"Diagnostic: {diagnostic.get('domain', '-')}")
    writer = _PageWriter(canvas)

    writer.set_font("Helvetica-Bold", 18)
    writer.line(f"Diagnostic: {diagnostic.get('domain') or '-'}", centered=True)
    writer.gap()

    total = diagnostic.get("total_probes")
    writer.set_font("Helvetica", 10)
    writer.line(f"Domain: {diagnostic.get('domain') or '-'}")
    writer.line(f"Scope: {diagnostic.get('scope') or '-'}")
    writer.line(f"Date: {diagnostic.get('created_at') or diagnostic.get('date') or '-'}")
    writer.line(f"Total networks tested: {total if total is not None else len(results)}")
    writer.gap()

    writer.set_font("Helvetica-Bold", 12)
    writer.line("Summary:")
    writer.set_font("Helvetica", 10)
    writer.line(diagnostic.get("summary") or "-")
    writer.gap()

    if include_chart and results:
        try:
            png = plot_regional_latency(results, thresholds)
        except Exception as e:
            logger.warning(f"Could not render latency chart for PDF: {e}")
            png = None
        if png:
            writer.image(png)

    writer.set_font("Helvetica-Bold", 12)
    writer.line("Results:")
    writer.set_font("Helvetica", 9)
    if not results:
        writer.line("(no results)")
    for i, result in enumerate(results, start=1):
        writer.line(format_result_line(i, result), leading=12)

    writer.gap()
    writer.set_font("Helvetica", 8)
    writer.line(FOOTER_TEXT, centered=True)

    canvas.save()
    logger.info(f"Rendered PDF report for {diagnostic.get('domain')} with {len(results)} results")
    return buffer.getvalue()
