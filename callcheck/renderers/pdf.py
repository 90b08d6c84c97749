import io
import logging
from typing import List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..schemas import Manager, StoredAnalysis
from .sections import Block, Section, report_sections

logger = logging.getLogger(__name__)

CUSTOM_FONT_NAME = "CallCheckFont"


def _register_font(font_path: Optional[str]) -> Optional[str]:
    """Register a TTF font for non-Latin transcripts; falls back to Helvetica"""
    if not font_path:
        return None
    if CUSTOM_FONT_NAME in pdfmetrics.getRegisteredFontNames():
        return CUSTOM_FONT_NAME
    try:
        pdfmetrics.registerFont(TTFont(CUSTOM_FONT_NAME, font_path))
        return CUSTOM_FONT_NAME
    except Exception as e:
        logger.warning(f"Could not load PDF font {font_path}: {e}. Using Helvetica.")
        return None


def _styles(font_name: Optional[str]):
    sample = getSampleStyleSheet()
    styles = {
        "title": ParagraphStyle("ReportTitle", parent=sample["Title"], fontSize=18, spaceAfter=6 * mm),
        "heading": ParagraphStyle("ReportHeading", parent=sample["Heading2"], spaceBefore=5 * mm),
        "subheading": ParagraphStyle("ReportSubheading", parent=sample["Heading4"], spaceBefore=3 * mm),
        "body": ParagraphStyle("ReportBody", parent=sample["BodyText"], fontSize=10, leading=13),
        "quote": ParagraphStyle(
            "ReportQuote", parent=sample["BodyText"], fontSize=10, leading=13,
            leftIndent=6 * mm, textColor=colors.HexColor("#444444"), fontName="Helvetica-Oblique",
        ),
        "cell": ParagraphStyle("ReportCell", parent=sample["BodyText"], fontSize=8.5, leading=10.5),
        "footer": ParagraphStyle(
            "ReportFooter", parent=sample["BodyText"], fontSize=8,
            textColor=colors.grey, alignment=TA_CENTER, spaceBefore=8 * mm,
        ),
    }
    if font_name:
        for style in styles.values():
            style.fontName = font_name
    return styles


def _paragraph(text: str, style) -> Paragraph:
    return Paragraph(escape(text or "").replace("\n", "<br/>"), style)


def _table(headers: List[str], rows: List[List[str]], styles, header: bool = True) -> Table:
    data = []
    if header:
        data.append([_paragraph(f"{h}", styles["cell"]) for h in headers])
    data.extend([_paragraph(value, styles["cell"]) for value in row] for row in rows)

    table = Table(data, repeatRows=1 if header else 0, hAlign="LEFT")
    commands = [
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#BBBBBB")),
        ("LEFTPADDING", (0, 0), (-1, -1), 4),
        ("RIGHTPADDING", (0, 0), (-1, -1), 4),
    ]
    if header:
        commands.append(("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#EEEEEE")))
    table.setStyle(TableStyle(commands))
    return table


def _block_flowables(block: Block, styles) -> list:
    if block.kind == "meta":
        return [_table([], block.rows, styles, header=False), Spacer(1, 3 * mm)]
    if block.kind == "paragraph":
        return [_paragraph(block.text, styles["body"])]
    if block.kind == "quote":
        return [_paragraph(block.text, styles["quote"]), Spacer(1, 1.5 * mm)]
    if block.kind == "subheading":
        return [_paragraph(block.text, styles["subheading"])]
    if block.kind == "bullets":
        return [_paragraph(f"• {item}", styles["body"]) for item in block.items]
    if block.kind == "table":
        return [_table(block.headers, block.rows, styles), Spacer(1, 2 * mm)]
    raise ValueError(f"Unknown block kind: {block.kind}")


def build_flowables(sections: List[Section], styles) -> list:
    story = []
    for section in sections:
        if section.key == "title":
            story.append(_paragraph(section.title, styles["title"]))
        elif section.key == "footer":
            story.extend(_paragraph(block.text, styles["footer"]) for block in section.blocks)
            continue
        else:
            story.append(_paragraph(section.title, styles["heading"]))

        for block in section.blocks:
            story.extend(_block_flowables(block, styles))
    return story


def render_pdf(analysis: StoredAnalysis, manager: Optional[Manager] = None, font_path: Optional[str] = None) -> bytes:
    """Render a stored analysis as a paginated PDF document"""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=16 * mm,
        bottomMargin=16 * mm,
        title=f"Analysis report {analysis.id}",
        author="CallCheck",
        invariant=1,
    )
    styles = _styles(_register_font(font_path))
    doc.build(build_flowables(report_sections(analysis, manager), styles))
    return buffer.getvalue()
