# idcard/pdf_summary.py
"""One-page application summary rendered with PyMuPDF (fitz)."""
from __future__ import annotations

import logging
import textwrap
from datetime import datetime
from typing import Any

import fitz

from .errors import ServiceError
from .form_data_builder import Role
from .utils import FormField, fields_for_role, DATE_FORMAT_STORAGE

logger = logging.getLogger(__name__)

FONT_NAME: str = "helv"
BOLD_FONT_NAME: str = "hebo"
FONT_SIZE: int = 10
LINE_HEIGHT: float = 16.0
LEFT_MARGIN: float = 50.0
VALUE_X: float = 210.0
VALUE_WRAP_CHARS: int = 60
# Rows stop this far above the bottom edge; the signature line sits below.
BODY_BOTTOM_MARGIN: float = 110.0

REQUEST_TITLES: dict[Role, str] = {
    Role.STUDENT: "ID Card Request - Student",
    Role.FACULTY: "ID Card Request - Faculty",
    Role.STAFF: "ID Card Request - Staff",
}

def display_value(field: FormField, value: Any) -> str:
    """How a stored value reads on paper."""
    if value is None or value == '' or value == []:
        return ''
    if isinstance(value, bool):
        return 'Yes' if value else 'No'
    if isinstance(value, list):
        return ', '.join(str(v) for v in value)
    if isinstance(field.options, dict):
        return field.options.get(str(value), str(value))
    if field.ui_type == 'date':
        try:
            return datetime.strptime(str(value), DATE_FORMAT_STORAGE).strftime('%d/%m/%Y')
        except ValueError:
            return str(value)
    return str(value)

def summary_rows(snapshot: dict[str, Any]) -> list[tuple[str, str]]:
    """(label, text) for every non-empty schema field, in schema order."""
    role = Role(snapshot['userType'])
    rows: list[tuple[str, str]] = []
    for field in fields_for_role(role):
        text = display_value(field, snapshot.get(field.key))
        if text:
            rows.append((field.label, text))
    return rows

class SummaryDocumentGenerator:
    def __init__(self, institution_name: str) -> None:
        self.institution_name = institution_name

    def render_summary(self, snapshot: dict[str, Any], include_watermark: bool = False) -> bytes:
        """
        Renders the snapshot onto a single A4 page and returns the PDF bytes.
        Raises ServiceError when PyMuPDF fails, so the caller can surface it.
        """
        try:
            return self._render(snapshot, include_watermark)
        except (RuntimeError, ValueError) as e:
            logger.error(f"PDF summary generation failed: {e}", exc_info=True)
            raise ServiceError("Could not generate the application PDF.") from e

    def _render(self, snapshot: dict[str, Any], include_watermark: bool) -> bytes:
        role = Role(snapshot['userType'])
        doc = fitz.open()
        try:
            width, height = fitz.paper_size('a4')
            page = doc.new_page(width=width, height=height)

            if include_watermark:
                center = fitz.Point(width / 2 - 150, height / 2 + 60)
                page.insert_text(center, "PREVIEW", fontname=BOLD_FONT_NAME, fontsize=90,
                                 color=(0.88, 0.88, 0.88), morph=(center, fitz.Matrix(35)))

            y = 60.0
            page.insert_text((LEFT_MARGIN, y), self.institution_name, fontname=BOLD_FONT_NAME, fontsize=13)
            y += LINE_HEIGHT * 1.5
            page.insert_text((LEFT_MARGIN, y), REQUEST_TITLES[role], fontname=BOLD_FONT_NAME, fontsize=12)
            y += LINE_HEIGHT
            reference = snapshot.get('provisionalApplicationId', '')
            page.insert_text((LEFT_MARGIN, y), f"Reference: {reference}", fontname=FONT_NAME, fontsize=FONT_SIZE)
            y += LINE_HEIGHT * 0.5
            page.draw_line((LEFT_MARGIN, y), (width - LEFT_MARGIN, y), color=(0.4, 0.4, 0.4), width=0.8)
            y += LINE_HEIGHT * 1.5

            lines = [
                (label if i == 0 else '', line)
                for label, text in summary_rows(snapshot)
                for i, line in enumerate(textwrap.wrap(text, VALUE_WRAP_CHARS) or [''])
            ]
            max_lines = int((height - BODY_BOTTOM_MARGIN - y) // LINE_HEIGHT) + 1
            if len(lines) > max_lines:
                logger.warning(f"Summary {reference} does not fit on one page; {len(lines) - max_lines} lines cut.")
                lines = lines[:max_lines]
                label, last = lines[-1]
                lines[-1] = (label, last[:VALUE_WRAP_CHARS - 3] + '...')

            for label, line in lines:
                if label:
                    page.insert_text((LEFT_MARGIN, y), f"{label}:", fontname=BOLD_FONT_NAME, fontsize=FONT_SIZE)
                page.insert_text((VALUE_X, y), line, fontname=FONT_NAME, fontsize=FONT_SIZE)
                y += LINE_HEIGHT

            y = height - 90
            page.insert_text((LEFT_MARGIN, y), "Signature of Applicant", fontname=FONT_NAME, fontsize=FONT_SIZE)
            page.insert_text((width - LEFT_MARGIN - 150, y), "Registrar", fontname=FONT_NAME, fontsize=FONT_SIZE)
            return doc.tobytes(garbage=4, deflate=True, clean=True)
        finally:
            doc.close()
