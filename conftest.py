"""Helpers that build small AcroForm PDFs for the test suite.

Field specs are plain dicts::

    {"name": "Addr", "kids": [{"name": "Line1", "widgets": [{"page": 0, "rect": (72, 700, 272, 720)}]}]}

A field with exactly one widget and no kids is written as a merged
field/widget dictionary, like most authoring tools do; otherwise each widget
becomes a separate kid annotation.
"""

from __future__ import annotations

import io
from typing import Any

import fitz
import pytest
from pypdf import PdfWriter
from pypdf.generic import (
    ArrayObject,
    DecodedStreamObject,
    DictionaryObject,
    FloatObject,
    NameObject,
    NumberObject,
    TextStringObject,
)

LETTER = (612.0, 792.0)
A4_LANDSCAPE = (841.89, 595.28)


def _rect(values: tuple[float, ...]) -> ArrayObject:
    return ArrayObject(FloatObject(v) for v in values)


def _state_appearance(writer: PdfWriter, width: float, height: float, draw: bool) -> Any:
    stream = DecodedStreamObject()
    stream[NameObject("/Type")] = NameObject("/XObject")
    stream[NameObject("/Subtype")] = NameObject("/Form")
    stream[NameObject("/BBox")] = _rect((0, 0, width, height))
    stream.set_data(f"0 g 1 1 {width - 2} {height - 2} re f".encode("ascii") if draw else b"")
    return writer._add_object(stream)


def _attach_widget(writer: PdfWriter, pages: list, widget: DictionaryObject, ref: Any, placement: dict, states: list[str]) -> None:
    widget[NameObject("/Type")] = NameObject("/Annot")
    widget[NameObject("/Subtype")] = NameObject("/Widget")
    widget[NameObject("/F")] = NumberObject(4)
    rect = placement.get("rect")
    if rect is not None:
        widget[NameObject("/Rect")] = _rect(rect)
    if states:
        x0, y0, x1, y1 = rect
        normal = DictionaryObject()
        for state in states:
            normal[NameObject(state)] = _state_appearance(writer, x1 - x0, y1 - y0, state != "/Off")
        widget[NameObject("/AP")] = DictionaryObject({NameObject("/N"): normal})
        widget[NameObject("/AS")] = NameObject("/Off")

    page = pages[placement.get("page", 0)]
    if placement.get("on_page", True):
        if "/Annots" not in page:
            page[NameObject("/Annots")] = ArrayObject()
        page["/Annots"].append(ref)
    if placement.get("page_ref", True) and placement.get("on_page", True):
        widget[NameObject("/P")] = page.indirect_reference


def _add_field(writer: PdfWriter, pages: list, spec: dict, parent_ref: Any) -> Any:
    field = DictionaryObject()
    ref = writer._add_object(field)
    if spec.get("name") is not None:
        field[NameObject("/T")] = TextStringObject(spec["name"])
    if parent_ref is not None:
        field[NameObject("/Parent")] = parent_ref

    widgets = spec.get("widgets", [])
    kid_specs = spec.get("kids", [])
    if widgets or "ft" in spec:
        field[NameObject("/FT")] = NameObject(spec.get("ft", "/Tx"))
    if "da" in spec:
        field[NameObject("/DA")] = TextStringObject(spec["da"])
    if "ff" in spec:
        field[NameObject("/Ff")] = NumberObject(spec["ff"])
    if "value" in spec:
        field[NameObject("/V")] = TextStringObject(spec["value"])
    states = spec.get("states", [])

    kids = ArrayObject()
    if len(widgets) == 1 and not kid_specs and not spec.get("separate_widgets"):
        _attach_widget(writer, pages, field, ref, widgets[0], states)
    else:
        for placement in widgets:
            widget = DictionaryObject({NameObject("/Parent"): ref})
            widget_ref = writer._add_object(widget)
            _attach_widget(writer, pages, widget, widget_ref, placement, placement.get("states", states))
            kids.append(widget_ref)
    for kid_spec in kid_specs:
        kids.append(_add_field(writer, pages, kid_spec, ref))
    if kids:
        field[NameObject("/Kids")] = kids
    return ref


def build_form_pdf(
    fields: list[dict],
    page_sizes: tuple[tuple[float, float], ...] = (LETTER,),
    xfa: bool = False,
    acro_form: bool = True,
    da: str = "/Helv 0 Tf 0 g",
) -> bytes:
    writer = PdfWriter()
    pages = [writer.add_blank_page(width=w, height=h) for w, h in page_sizes]
    roots = ArrayObject(_add_field(writer, pages, spec, None) for spec in fields)

    if acro_form:
        font = writer._add_object(
            DictionaryObject(
                {
                    NameObject("/Type"): NameObject("/Font"),
                    NameObject("/Subtype"): NameObject("/Type1"),
                    NameObject("/BaseFont"): NameObject("/Helvetica"),
                    NameObject("/Encoding"): NameObject("/WinAnsiEncoding"),
                }
            )
        )
        form = DictionaryObject(
            {
                NameObject("/Fields"): roots,
                NameObject("/DA"): TextStringObject(da),
                NameObject("/DR"): DictionaryObject(
                    {NameObject("/Font"): DictionaryObject({NameObject("/Helv"): font})}
                ),
            }
        )
        if xfa:
            form[NameObject("/XFA")] = ArrayObject(
                [TextStringObject("template"), TextStringObject("<template/>")]
            )
        writer._root_object[NameObject("/AcroForm")] = writer._add_object(form)

    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def page_texts(pdf_bytes: bytes) -> list[str]:
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        return [page.get_text() for page in doc]
    finally:
        doc.close()


def text_spans(pdf_bytes: bytes) -> list[list[dict]]:
    """Per page: text spans with baseline origins in bottom-left coordinates."""
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    pages: list[list[dict]] = []
    try:
        for page in doc:
            page_h = float(page.rect.height)
            spans: list[dict] = []
            for block in page.get_text("dict").get("blocks", []):
                if block.get("type") != 0:
                    continue
                for line in block.get("lines", []):
                    for span in line.get("spans", []):
                        text = (span.get("text") or "").strip()
                        if not text:
                            continue
                        x, y = span["origin"]
                        spans.append({"text": text, "x": x, "y": page_h - y, "size": span.get("size")})
            pages.append(spans)
    finally:
        doc.close()
    return pages


def widget_count(pdf_bytes: bytes) -> int:
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        return sum(len(list(page.widgets())) for page in doc)
    finally:
        doc.close()


@pytest.fixture
def simple_form() -> bytes:
    return build_form_pdf(
        [
            {"name": "Name[0]", "da": "/Helv 12 Tf 0 g", "widgets": [{"page": 0, "rect": (72, 700, 300, 720)}]},
            {
                "name": "Addr",
                "kids": [
                    {"name": "Line1", "da": "/Helv 11 Tf 0 g", "widgets": [{"page": 0, "rect": (72, 660, 300, 680)}]},
                    {"name": "City", "widgets": [{"page": 0, "rect": (72, 620, 300, 640)}]},
                ],
            },
        ]
    )


@pytest.fixture
def two_page_form() -> bytes:
    return build_form_pdf(
        [
            {
                "name": "CaseNumber",
                "da": "/Helv 9 Tf 0 g",
                "widgets": [
                    {"page": 0, "rect": (400, 750, 560, 765)},
                    {"page": 1, "rect": (400, 550, 560, 565)},
                ],
            },
            {"name": "Notes", "widgets": [{"page": 1, "rect": (50, 300, 500, 330)}]},
        ],
        page_sizes=(LETTER, A4_LANDSCAPE),
    )
