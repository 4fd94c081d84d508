"""Fill AcroForm fields and return either a flattened PDF or a text overlay.

``fill_form`` is the library entry point used by both the HTTP service and
the command-line tool. Each call works on its own copy of the document and
its own field index; nothing is shared between calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

import config
from field_index import FormField, build_field_index, field_name_sample, resolve_field
from pdf_engine import FormStructureError, PdfForm, widget_rect
from text_overlay import OverlayEntry, render_text_overlay

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldValue:
    field_name: str
    value: str | None = None


@dataclass(frozen=True)
class FillResult:
    pdf_bytes: bytes
    text_overlay: bool
    skipped_fields: tuple[str, ...] = field(default_factory=tuple)


def check_fillable(document: PdfForm) -> None:
    """Reject documents without a usable AcroForm before anything is modified."""
    acro_form = document.acro_form
    if acro_form is None:
        raise FormStructureError("The supplied PDF does not contain any form fields to fill.")
    if document.has_xfa():
        logger.warning("Received an XFA-based form which is not supported by the current processing pipeline.")
        raise FormStructureError(
            "XFA-based PDF forms are not supported. "
            "Please convert the template to a standard AcroForm PDF before submitting."
        )
    if not document.top_level_fields():
        raise FormStructureError("The supplied PDF does not contain any form fields to fill.")


def inject_value(document: PdfForm, form_field: FormField, value: str) -> None:
    document.set_value(form_field.obj, value)
    document.regenerate_appearance(form_field.obj)


def capture_placement(
    document: PdfForm,
    form_field: FormField,
    value: str,
    default_font_size: float = config.DEFAULT_FONT_SIZE,
) -> list[OverlayEntry]:
    """Record where ``value`` has to be drawn, one entry per widget.

    Widgets whose page or rectangle cannot be resolved are skipped on their
    own; the field's other widgets are still captured.
    """
    if not value.strip():
        return []

    font_size = document.font_size(form_field.obj, default_font_size)
    entries: list[OverlayEntry] = []
    for widget in form_field.widgets:
        page_number = document.page_number(widget)
        if page_number is None:
            logger.debug("Widget of '%s' is not placed on any page.", form_field.qualified_name)
            continue
        rect = widget_rect(widget)
        if rect is None:
            logger.debug("Widget of '%s' has no usable /Rect.", form_field.qualified_name)
            continue
        entries.append(OverlayEntry(page_number, rect, value, font_size))
    return entries


def fill_form(
    pdf_bytes: bytes,
    fields: Iterable[FieldValue],
    text_overlay: bool = False,
) -> FillResult:
    """Apply ``fields`` to the form in ``pdf_bytes``.

    Raises FormStructureError when the document has no fillable AcroForm.
    Names that match no field are skipped and reported in the result; any
    other failure propagates and no output is produced.
    """
    overlays: list[OverlayEntry] = []
    skipped: list[str] = []
    filled = 0

    with PdfForm(pdf_bytes) as document:
        check_fillable(document)
        index = build_field_index(document.top_level_fields())
        if not index:
            raise FormStructureError("The supplied PDF does not contain any form fields to fill.")
        logger.debug("Registered %d form fields for processing.", len(index))

        for item in fields:
            if not item.field_name.strip():
                logger.warning("Ignoring field with empty name.")
                continue

            entry = resolve_field(index, item.field_name)
            if entry is None:
                skipped.append(item.field_name)
                logger.warning(
                    "Field '%s' was not found in the PDF template. First matches: %s",
                    item.field_name,
                    ", ".join(field_name_sample(index, config.FIELD_SAMPLE_SIZE)),
                )
                continue

            value = item.value or ""
            inject_value(document, entry.field, value)
            filled += 1
            if text_overlay:
                overlays.extend(capture_placement(document, entry.field, value))

        if text_overlay:
            output = render_text_overlay(document.page_boxes(), overlays, font_name=config.OVERLAY_FONT)
        else:
            document.flatten()
            output = document.to_bytes()

    logger.info(
        "Filled %d field(s), skipped %d; output=%s",
        filled,
        len(skipped),
        "text-overlay" if text_overlay else "flattened",
    )
    return FillResult(output, text_overlay, tuple(skipped))
