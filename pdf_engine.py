"""pypdf-backed document engine used by the form filler.

Everything that touches the PDF object model lives here: opening and
serializing documents, walking AcroForm dictionaries, resolving widget
placement, writing field values and baking widget appearances into page
content. The rest of the project only sees ``PdfForm`` and the small field
accessor functions below.
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from typing import Any

from pypdf import PageObject, PdfReader, PdfWriter
from pypdf.generic import (
    ArrayObject,
    DecodedStreamObject,
    DictionaryObject,
    IndirectObject,
    NameObject,
    StreamObject,
    TextStringObject,
)

logger = logging.getLogger(__name__)

# /Parent chains are followed at most this far; deeper chains only occur in
# broken or hostile files.
MAX_PARENT_DEPTH = 64

_HIDDEN_FLAG = 1 << 1
_RADIO_FLAG = 1 << 15
_TRUTHY_VALUES = {"true", "yes", "on", "1", "x", "checked"}
_DA_FONT_SIZE = re.compile(r"/[^\s/]+\s+(-?\d*\.?\d+)\s+Tf")


class FormStructureError(ValueError):
    """The document cannot be filled: no AcroForm, an XFA form, or no fields."""


@dataclass(frozen=True)
class Rect:
    left: float
    bottom: float
    width: float
    height: float

    @property
    def top(self) -> float:
        return self.bottom + self.height

    @property
    def right(self) -> float:
        return self.left + self.width


@dataclass(frozen=True)
class PageBox:
    """Media box of a page in default user space units."""

    left: float
    bottom: float
    width: float
    height: float


def _resolve(obj: Any) -> Any:
    if obj is None:
        return None
    return obj.get_object()


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("latin-1")
    return str(value)


def _inherited(obj: DictionaryObject, key: str) -> Any:
    node: Any = obj
    for _ in range(MAX_PARENT_DEPTH):
        if not isinstance(node, DictionaryObject):
            return None
        if key in node:
            return _resolve(node.get(key))
        node = _resolve(node.get("/Parent"))
    return None


def _is_widget(obj: DictionaryObject) -> bool:
    return _resolve(obj.get("/Subtype")) == "/Widget"


def _is_pure_widget(obj: DictionaryObject) -> bool:
    return _is_widget(obj) and "/T" not in obj and "/Kids" not in obj


def _kid_dictionaries(field: DictionaryObject) -> list[DictionaryObject]:
    kids = _resolve(field.get("/Kids"))
    if not isinstance(kids, ArrayObject):
        return []
    resolved = (_resolve(kid) for kid in kids)
    return [kid for kid in resolved if isinstance(kid, DictionaryObject)]


def field_local_name(field: DictionaryObject) -> str | None:
    """Partial name (/T) of a field, or None when it is missing or blank."""
    name = _as_text(_resolve(field.get("/T")))
    if name is None or not name.strip():
        return None
    return name


def field_children(field: DictionaryObject) -> list[DictionaryObject]:
    """Child fields of a field; pure widget annotations are not fields."""
    return [kid for kid in _kid_dictionaries(field) if not _is_pure_widget(kid)]


def field_widgets(field: DictionaryObject) -> list[DictionaryObject]:
    """Widget annotations of a field, in document order.

    A field merged with its only widget is its own widget; otherwise the
    widgets are the pure widget annotations among its kids.
    """
    widgets = [field] if _is_widget(field) else []
    widgets.extend(kid for kid in _kid_dictionaries(field) if _is_pure_widget(kid))
    return widgets


def field_type(field: DictionaryObject) -> str | None:
    value = _inherited(field, "/FT")
    return str(value) if value is not None else None


def parse_da_font_size(da: str | None) -> float | None:
    if not da:
        return None
    matches = _DA_FONT_SIZE.findall(da)
    if not matches:
        return None
    return float(matches[-1])


def widget_rect(widget: DictionaryObject) -> Rect | None:
    """Normalized /Rect of a widget, or None when it is missing or malformed."""
    rect = _resolve(widget.get("/Rect"))
    if not isinstance(rect, ArrayObject) or len(rect) < 4:
        return None
    try:
        x0, y0, x1, y1 = (float(_resolve(value)) for value in rect[:4])
    except (TypeError, ValueError):
        return None
    return Rect(min(x0, x1), min(y0, y1), abs(x1 - x0), abs(y1 - y0))


def _engine_field_key(owner: DictionaryObject) -> str:
    # pypdf matches fields either by their partial name or by the qualified
    # name it derives from the /Parent chain (with /TM taking precedence).
    local = field_local_name(owner)
    if local is not None:
        return local
    parts: list[str] = []
    node: Any = owner
    for _ in range(MAX_PARENT_DEPTH):
        if not isinstance(node, DictionaryObject):
            break
        if "/TM" in node:
            parts.append(_as_text(_resolve(node.get("/TM"))) or "")
            break
        parts.append(_as_text(_resolve(node.get("/T"))) or "")
        node = _resolve(node.get("/Parent"))
    return ".".join(reversed(parts))


def _button_state(value: str, on_states: list[str], radio: bool) -> str:
    candidate = "/" + value.strip().lstrip("/") if value.strip() else ""
    if candidate in on_states:
        return candidate
    if not radio and on_states and value.strip().lower() in _TRUTHY_VALUES:
        return on_states[0]
    return "/Off"


def _appearance_matrix(stream: StreamObject, rect: Rect) -> tuple[float, ...]:
    """Matrix mapping an appearance stream's transformed /BBox onto ``rect``."""
    bbox = _resolve(stream.get("/BBox"))
    try:
        bx0, by0, bx1, by1 = (float(_resolve(v)) for v in bbox[:4])
    except (TypeError, ValueError, IndexError):
        bx0, by0, bx1, by1 = 0.0, 0.0, rect.width, rect.height
    matrix = _resolve(stream.get("/Matrix"))
    try:
        a, b, c, d, e, f = (float(_resolve(v)) for v in matrix[:6])
    except (TypeError, ValueError, IndexError):
        a, b, c, d, e, f = 1.0, 0.0, 0.0, 1.0, 0.0, 0.0

    xs: list[float] = []
    ys: list[float] = []
    for x, y in ((bx0, by0), (bx1, by0), (bx0, by1), (bx1, by1)):
        xs.append(a * x + c * y + e)
        ys.append(b * x + d * y + f)
    width = max(xs) - min(xs)
    height = max(ys) - min(ys)
    sx = rect.width / width if width else 1.0
    sy = rect.height / height if height else 1.0
    return (sx, 0.0, 0.0, sy, rect.left - min(xs) * sx, rect.bottom - min(ys) * sy)


class PdfForm:
    """A request-scoped, writable PDF document.

    Use as a context manager; the backing buffer is released on exit
    whether processing succeeded or not.
    """

    def __init__(self, data: bytes) -> None:
        self._stream = io.BytesIO(data)
        reader = PdfReader(self._stream)
        self._writer = PdfWriter(clone_from=reader)
        self._page_numbers: dict[int, int] | None = None

    def __enter__(self) -> "PdfForm":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._stream.close()
        self._page_numbers = None

    @property
    def _root(self) -> DictionaryObject:
        return self._writer._root_object  # type: ignore[attr-defined]

    @property
    def acro_form(self) -> DictionaryObject | None:
        acro = _resolve(self._root.get("/AcroForm"))
        return acro if isinstance(acro, DictionaryObject) else None

    def has_xfa(self) -> bool:
        acro = self.acro_form
        return acro is not None and "/XFA" in acro

    def top_level_fields(self) -> list[DictionaryObject]:
        acro = self.acro_form
        if acro is None:
            return []
        fields = _resolve(acro.get("/Fields"))
        if not isinstance(fields, ArrayObject):
            return []
        resolved = (_resolve(item) for item in fields)
        return [item for item in resolved if isinstance(item, DictionaryObject)]

    @property
    def page_count(self) -> int:
        return len(self._writer.pages)

    def page_boxes(self) -> list[PageBox]:
        boxes: list[PageBox] = []
        for page in self._writer.pages:
            box = page.mediabox
            boxes.append(PageBox(float(box.left), float(box.bottom), float(box.width), float(box.height)))
        return boxes

    def _build_page_numbers(self) -> dict[int, int]:
        # Keys are object numbers of both pages and their annotations.
        numbers: dict[int, int] = {}
        for page_number, page in enumerate(self._writer.pages, start=1):
            if page.indirect_reference is not None:
                numbers.setdefault(page.indirect_reference.idnum, page_number)
            annots = _resolve(page.get("/Annots"))
            if not isinstance(annots, ArrayObject):
                continue
            for ref in annots:
                if isinstance(ref, IndirectObject):
                    numbers.setdefault(ref.idnum, page_number)
        return numbers

    def page_number(self, widget: DictionaryObject) -> int | None:
        """1-based page holding ``widget``, via /Annots membership or /P."""
        if self._page_numbers is None:
            self._page_numbers = self._build_page_numbers()
        ref = widget.indirect_reference
        if ref is not None and ref.idnum in self._page_numbers:
            return self._page_numbers[ref.idnum]
        page_ref = widget.raw_get("/P") if "/P" in widget else None
        if isinstance(page_ref, IndirectObject):
            return self._page_numbers.get(page_ref.idnum)
        return None

    def font_size(self, field: DictionaryObject, default: float) -> float:
        da = _inherited(field, "/DA")
        if da is None and self.acro_form is not None:
            da = _resolve(self.acro_form.get("/DA"))
        size = parse_da_font_size(_as_text(da))
        if size is None or size <= 0:
            return default
        return size

    def set_value(self, field: DictionaryObject, value: str) -> None:
        kind = field_type(field)
        if kind == "/Sig":
            logger.warning("Signature field '%s' cannot be filled; leaving it untouched.", field_local_name(field))
            return
        if kind == "/Btn":
            self._set_button_state(field, value)
            return
        field[NameObject("/V")] = TextStringObject(value)

    def _set_button_state(self, field: DictionaryObject, value: str) -> None:
        radio = bool(int(_inherited(field, "/Ff") or 0) & _RADIO_FLAG)
        selected = "/Off"
        for widget in field_widgets(field):
            appearance = _resolve(widget.get("/AP"))
            normal = _resolve(appearance.get("/N")) if isinstance(appearance, DictionaryObject) else None
            on_states: list[str] = []
            if isinstance(normal, DictionaryObject) and not isinstance(normal, StreamObject):
                on_states = [str(state) for state in normal.keys() if state != "/Off"]
            state = _button_state(value, on_states, radio)
            widget[NameObject("/AS")] = NameObject(state)
            if state != "/Off" and selected == "/Off":
                selected = state
        field[NameObject("/V")] = NameObject(selected)

    def regenerate_appearance(self, field: DictionaryObject) -> None:
        """Rebuild the normal appearance stream of every widget of ``field``.

        Button states already carry their appearances, so only text and
        choice fields are regenerated. pypdf's generator is pointed at a
        scratch page holding just this field's widgets so that other fields
        sharing a partial name are never touched.
        """
        if field_type(field) in ("/Btn", "/Sig"):
            return
        value = _as_text(_inherited(field, "/V")) or ""
        refs = ArrayObject()
        values: dict[str, str] = {}
        for widget in field_widgets(field):
            if widget.indirect_reference is None:
                continue
            if "/FT" in widget and "/T" in widget:
                owner = widget
            else:
                owner = _resolve(widget.get("/Parent"))
            if not isinstance(owner, DictionaryObject):
                logger.debug("Widget without an owning field; appearance left as is.")
                continue
            refs.append(widget.indirect_reference)
            values[_engine_field_key(owner)] = value
        if not refs:
            return
        scratch = PageObject(pdf=self._writer)
        scratch[NameObject("/Annots")] = refs
        self._writer.update_page_form_field_values(scratch, values, auto_regenerate=False)

    def flatten(self) -> None:
        """Bake widget appearances into page content and drop the AcroForm."""
        for page in self._writer.pages:
            annots = _resolve(page.get("/Annots"))
            if not isinstance(annots, ArrayObject):
                continue
            kept = ArrayObject()
            operations: list[bytes] = []
            for ref in annots:
                annot = _resolve(ref)
                if not isinstance(annot, DictionaryObject) or not _is_widget(annot):
                    kept.append(ref)
                    continue
                operation = self._stamp_widget(page, annot)
                if operation:
                    operations.append(operation)
            if operations:
                self._append_content(page, b"".join(operations))
            if kept:
                page[NameObject("/Annots")] = kept
            else:
                del page["/Annots"]
        if "/AcroForm" in self._root:
            del self._root["/AcroForm"]
        self._page_numbers = None

    def _stamp_widget(self, page: PageObject, annot: DictionaryObject) -> bytes | None:
        if int(_resolve(annot.get("/F")) or 0) & _HIDDEN_FLAG:
            return None
        appearance = _resolve(annot.get("/AP"))
        if not isinstance(appearance, DictionaryObject) or "/N" not in appearance:
            return None
        stream_ref = appearance.raw_get("/N")
        stream = _resolve(stream_ref)
        if not isinstance(stream, StreamObject):
            if not isinstance(stream, DictionaryObject):
                return None
            state = _resolve(annot.get("/AS"))
            if state is None or state not in stream:
                return None
            stream_ref = stream.raw_get(state)
            stream = _resolve(stream_ref)
            if not isinstance(stream, StreamObject):
                return None
        rect = widget_rect(annot)
        if rect is None or rect.width <= 0 or rect.height <= 0:
            return None
        if not isinstance(stream_ref, IndirectObject):
            stream_ref = self._writer._add_object(stream)
        if "/Subtype" not in stream:
            stream[NameObject("/Type")] = NameObject("/XObject")
            stream[NameObject("/Subtype")] = NameObject("/Form")
        name = self._register_xobject(page, stream_ref)
        matrix = " ".join(f"{value:.4f}" for value in _appearance_matrix(stream, rect))
        return f"q {matrix} cm {name} Do Q\n".encode("ascii")

    def _register_xobject(self, page: PageObject, ref: IndirectObject) -> str:
        resources = _resolve(page.get("/Resources"))
        if not isinstance(resources, DictionaryObject):
            inherited = _inherited(page, "/Resources")
            resources = DictionaryObject(inherited) if isinstance(inherited, DictionaryObject) else DictionaryObject()
            page[NameObject("/Resources")] = resources
        xobjects = _resolve(resources.get("/XObject"))
        if not isinstance(xobjects, DictionaryObject):
            xobjects = DictionaryObject()
            resources[NameObject("/XObject")] = xobjects
        index = len(xobjects)
        while f"/FlatField{index}" in xobjects:
            index += 1
        name = f"/FlatField{index}"
        xobjects[NameObject(name)] = ref
        return name

    def _content_stream(self, data: bytes) -> IndirectObject:
        stream = DecodedStreamObject()
        stream.set_data(data)
        return self._writer._add_object(stream)

    def _append_content(self, page: PageObject, data: bytes) -> None:
        # The existing content is wrapped in q/Q so its graphics state cannot
        # leak into the stamped appearances.
        parts: list[Any] = []
        if "/Contents" in page:
            raw = page.raw_get("/Contents")
            contents = _resolve(raw)
            if isinstance(contents, ArrayObject):
                parts.extend(contents)
            elif isinstance(raw, IndirectObject):
                parts.append(raw)
            elif contents is not None:
                parts.append(self._writer._add_object(contents))
        page[NameObject("/Contents")] = ArrayObject(
            [self._content_stream(b"q\n"), *parts, self._content_stream(b"\nQ\n" + data)]
        )

    def to_bytes(self) -> bytes:
        buffer = io.BytesIO()
        self._writer.write(buffer)
        return buffer.getvalue()
