# ctms/utils/report_pdf.py
"""
Utility to generate the drug accountability report as a PDF using reportlab.
"""

from datetime import date, datetime
from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

COLUMNS = [
    "Subject",
    "Visit",
    "Drug Code",
    "Lot",
    "Dispensed",
    "Returned",
    "Days Used",
    "Expected",
    "Pills Used",
    "Compliance %",
]


def _fmt(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def generate_accountability_pdf(
    rows: list[dict],
    title: str = "Drug Accountability Report",
    site_label: str | None = None,
    generated_by: str | None = None,
) -> BytesIO:
    """
    Render accountability rows as a landscape A4 table.
    Returns a BytesIO buffer containing the PDF.
    """
    buffer = BytesIO()

    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        rightMargin=12 * mm,
        leftMargin=12 * mm,
        topMargin=12 * mm,
        bottomMargin=10 * mm,
    )

    elements = []

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "ReportTitle",
        parent=styles["Heading1"],
        fontSize=18,
        textColor=colors.black,
        spaceAfter=8,
        fontName="Helvetica-Bold",
    )
    small_style = ParagraphStyle(
        "ReportSmall",
        parent=styles["Normal"],
        fontSize=8,
        textColor=colors.black,
        spaceAfter=4,
    )

    elements.append(Paragraph(title, title_style))

    header_parts = [f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M')}"]
    if site_label:
        header_parts.append(f"Site: {site_label}")
    if generated_by:
        header_parts.append(f"By: {generated_by}")
    elements.append(Paragraph(" | ".join(header_parts), small_style))
    elements.append(Spacer(1, 4 * mm))

    table_data = [COLUMNS]
    for row in rows:
        table_data.append(
            [
                _fmt(row.get("subject_number")),
                _fmt(row.get("visit_name")),
                _fmt(row.get("drug_code")),
                _fmt(row.get("lot_number")),
                _fmt(row.get("qty_dispensed")),
                _fmt(row.get("qty_returned")),
                _fmt(row.get("days_used")),
                _fmt(row.get("expected_pills")),
                _fmt(row.get("pills_used")),
                _fmt(row.get("compliance_percentage")),
            ]
        )

    if len(table_data) == 1:
        elements.append(Paragraph("No accountability records.", small_style))
    else:
        table = Table(table_data, repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
                    ("FONTSIZE", (0, 0), (-1, -1), 8),
                    ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                    ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                    ("ALIGN", (4, 1), (-1, -1), "RIGHT"),
                    ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
                    ("TOPPADDING", (0, 0), (-1, -1), 3),
                ]
            )
        )
        elements.append(table)

    doc.build(elements)
    buffer.seek(0)
    return buffer
