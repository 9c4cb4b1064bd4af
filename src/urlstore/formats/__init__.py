"""Data formats used to parse and serialise stored text.

The module-level :data:`formats` registry holds the built-in formats in this
order: JSON, YAML, CSV, Text.

Example::

    from urlstore.formats import formats

    fmt = formats.find(extension="yml")()
    data = fmt.parse("a: 1")
"""

from urlstore.formats.base import Format, FormatRegistry, FormatSpec
from urlstore.formats.builtin import CSV, JSON, YAML, Text

formats = FormatRegistry()
for _cls in (JSON, YAML, CSV, Text):
    formats.register(_cls)

__all__ = [
    "CSV",
    "JSON",
    "YAML",
    "Format",
    "FormatRegistry",
    "FormatSpec",
    "Text",
    "formats",
]
