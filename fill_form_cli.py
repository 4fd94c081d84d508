import argparse
import json
from pathlib import Path

import config
from field_index import build_field_index
from form_filler import FieldValue, check_fillable, fill_form
from pdf_engine import PdfForm, widget_rect
from text_overlay import register_fonts_from_directory


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fill the AcroForm fields of a PDF and write a flattened copy or a text overlay."
    )
    parser.add_argument("--template", required=True, help="Path to the fillable PDF.")
    parser.add_argument(
        "--data-json",
        help="Path to JSON with values: a list of {fieldName, value} objects or a {name: value} mapping.",
    )
    parser.add_argument("--output", help="Output PDF path.")
    parser.add_argument(
        "--render-text-overlay",
        action="store_true",
        help="Write only the values on blank pages at the original field positions.",
    )
    parser.add_argument(
        "--list-fields",
        action="store_true",
        help="Print the qualified field names and widget rectangles, then exit.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def load_field_values(path: Path) -> list[FieldValue]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        if "fields" in data and isinstance(data["fields"], list):
            data = data["fields"]
        else:
            return [FieldValue(str(name), None if value is None else str(value)) for name, value in data.items()]
    if not isinstance(data, list):
        raise ValueError("Data JSON must be a list of {fieldName, value} objects or a {name: value} mapping.")

    values: list[FieldValue] = []
    for idx, item in enumerate(data):
        if not isinstance(item, dict) or not item.get("fieldName"):
            raise ValueError(f"Item {idx} must be an object with a non-empty 'fieldName'.")
        value = item.get("value")
        values.append(FieldValue(str(item["fieldName"]), None if value is None else str(value)))
    return values


def list_fields(template_path: Path) -> None:
    with PdfForm(template_path.read_bytes()) as document:
        check_fillable(document)
        index = build_field_index(document.top_level_fields())
        seen: set[int] = set()
        print(f"Template: {template_path}")
        print(f"Pages: {document.page_count}")
        for entry in index.values():
            if id(entry.field.obj) in seen:
                continue
            seen.add(id(entry.field.obj))
            placements = []
            for widget in entry.field.widgets:
                rect = widget_rect(widget)
                page = document.page_number(widget)
                if rect is None or page is None:
                    continue
                placements.append(
                    f"p{page}@({rect.left:.2f},{rect.bottom:.2f},{rect.width:.2f}x{rect.height:.2f})"
                )
            size = document.font_size(entry.field.obj, config.DEFAULT_FONT_SIZE)
            print(f"{entry.original_name} | size={size:.1f} | {' '.join(placements) or '-'}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    config.configure_logging("DEBUG" if args.debug else None)
    template_path = Path(args.template)

    if args.list_fields:
        list_fields(template_path)
        return

    if not args.data_json:
        raise ValueError("Provide --data-json.")
    if not args.output:
        raise ValueError("Provide --output.")

    register_fonts_from_directory(config.FONTS_DIR)
    result = fill_form(
        template_path.read_bytes(),
        load_field_values(Path(args.data_json)),
        text_overlay=args.render_text_overlay,
    )

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(result.pdf_bytes)
    for name in result.skipped_fields:
        print(f"Skipped: {name}")
    print(f"Wrote: {output_path}")


if __name__ == "__main__":
    main()
