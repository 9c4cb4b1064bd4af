"""Built-in formats: JSON, YAML, CSV and plain text."""

from __future__ import annotations

import csv
import io
import json
from typing import Any

import yaml

from urlstore.formats.base import Format


class JSON(Format):
    """JSON, pretty-printed with tabs."""

    name = "json"
    extensions = ("json",)
    mime_types = ("application/json",)
    default_options = {"stringify": {"indent": "\t"}}

    def _parse(self, text: str, options: dict[str, Any]) -> Any:
        return json.loads(text)

    def _stringify(self, data: Any, options: dict[str, Any]) -> str:
        return json.dumps(data, indent=options.get("indent"), ensure_ascii=False)


class YAML(Format):
    name = "yaml"
    extensions = ("yaml", "yml")
    mime_types = ("application/x-yaml", "text/yaml")
    default_options = {"stringify": {"sort_keys": False}}

    def _parse(self, text: str, options: dict[str, Any]) -> Any:
        return yaml.safe_load(text)

    def _stringify(self, data: Any, options: dict[str, Any]) -> str:
        return yaml.safe_dump(
            data,
            sort_keys=options.get("sort_keys", False),
            allow_unicode=True,
            default_flow_style=False,
        )


def _cast(value: str) -> Any:
    """Convert numeric-looking CSV cells to numbers."""
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


class CSV(Format):
    """CSV as a list of dicts keyed by the header row.

    Parse options: ``cast`` (convert numeric cells, default ``True``),
    ``delimiter``. Stringify options: ``header`` (default ``True``),
    ``delimiter``.
    """

    name = "csv"
    extensions = ("csv",)
    mime_types = ("text/csv",)
    default_options = {
        "parse": {"cast": True},
        "stringify": {"header": True},
    }

    def _parse(self, text: str, options: dict[str, Any]) -> Any:
        text = text.lstrip("\ufeff")
        reader = csv.DictReader(io.StringIO(text), delimiter=options.get("delimiter", ","))
        rows = []
        for row in reader:
            if not any(row.values()):
                continue
            if options.get("cast"):
                row = {key: _cast(value) if isinstance(value, str) else value for key, value in row.items()}
            rows.append(dict(row))
        return rows

    def _stringify(self, data: Any, options: dict[str, Any]) -> str:
        rows = list(data or [])
        fieldnames: list[str] = []
        for row in rows:
            for key in row:
                if key not in fieldnames:
                    fieldnames.append(key)

        buffer = io.StringIO()
        writer = csv.DictWriter(
            buffer,
            fieldnames=fieldnames,
            delimiter=options.get("delimiter", ","),
            lineterminator="\n",
        )
        if options.get("header"):
            writer.writeheader()
        writer.writerows(rows)
        return buffer.getvalue()


class Text(Format):
    name = "text"
    extensions = ("txt", "md")
    mime_types = ("text/plain",)

    def _parse(self, text: str, options: dict[str, Any]) -> Any:
        return text

    def _stringify(self, data: Any, options: dict[str, Any]) -> str:
        return "" if data is None else str(data)
