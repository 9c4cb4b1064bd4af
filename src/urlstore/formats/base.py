"""Format contract and registry.

A :class:`Format` converts between the text a backend stores and the Python
data callers work with. Formats declare the file extensions and MIME types
they handle so a format can be picked from a file name or response header.

Options are layered: class-level :attr:`Format.default_options` (with
optional ``"parse"`` / ``"stringify"`` sub-dicts), then the options given to
the instance, then per-call keyword arguments.
"""

from __future__ import annotations

from typing import Any, ClassVar, Iterator, Optional, Union

from urlstore.exceptions import FormatError


class Format:
    """Base class for data formats.

    Subclasses implement :meth:`_parse` and :meth:`_stringify`.

    Args:
        **options: Options applied to every parse/stringify call.
    """

    name: ClassVar[str] = ""
    extensions: ClassVar[tuple[str, ...]] = ()
    mime_types: ClassVar[tuple[str, ...]] = ()
    default_options: ClassVar[dict[str, Any]] = {}

    def __init__(self, **options: Any) -> None:
        self.options = options

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def resolve_options(self, action: str, overrides: dict[str, Any]) -> dict[str, Any]:
        """Merge defaults, instance options and *overrides* for *action*."""
        merged: dict[str, Any] = {}
        for layer in (self.default_options, self.options, overrides):
            merged.update({k: v for k, v in layer.items() if k not in ("parse", "stringify")})
            merged.update(layer.get(action) or {})
        return merged

    def parse(self, text: str, **options: Any) -> Any:
        """Parse *text* into Python data.

        Raises:
            FormatError: If *text* is not valid for this format.
        """
        try:
            return self._parse(text, self.resolve_options("parse", options))
        except FormatError:
            raise
        except Exception as exc:
            raise FormatError(f"Could not parse {self.name}: {exc}") from exc

    def stringify(self, data: Any, **options: Any) -> str:
        """Serialise *data* to text.

        Raises:
            FormatError: If *data* cannot be represented in this format.
        """
        try:
            return self._stringify(data, self.resolve_options("stringify", options))
        except FormatError:
            raise
        except Exception as exc:
            raise FormatError(f"Could not serialise data as {self.name}: {exc}") from exc

    def _parse(self, text: str, options: dict[str, Any]) -> Any:
        raise NotImplementedError

    def _stringify(self, data: Any, options: dict[str, Any]) -> str:
        raise NotImplementedError


FormatSpec = Union[str, Format, type[Format]]


class FormatRegistry:
    """Registered formats in registration order, looked up by name, extension or MIME type."""

    def __init__(self) -> None:
        self._formats: dict[str, type[Format]] = {}

    def __iter__(self) -> Iterator[type[Format]]:
        return iter(self._formats.values())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._formats

    def register(self, cls: type[Format]) -> type[Format]:
        """Register *cls*; usable as a class decorator."""
        self._formats[cls.name.lower()] = cls
        return cls

    def get(self, name: str) -> Optional[type[Format]]:
        return self._formats.get(name.lower())

    def find(
        self,
        extension: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> Optional[type[Format]]:
        """First format handling *extension* or *mime_type*."""
        if extension:
            extension = extension.lower().lstrip(".")
        if mime_type:
            mime_type = mime_type.split(";")[0].strip().lower()
        for cls in self._formats.values():
            if mime_type and mime_type in cls.mime_types:
                return cls
            if extension and extension in cls.extensions:
                return cls
        return None

    def resolve(self, spec: FormatSpec) -> Format:
        """Turn a name, class or instance into a :class:`Format` instance.

        Raises:
            FormatError: If *spec* names an unknown format.
        """
        if isinstance(spec, Format):
            return spec
        if isinstance(spec, type) and issubclass(spec, Format):
            return spec()
        cls = self.get(spec)
        if cls is None:
            raise FormatError(f"Unknown format '{spec}'")
        return cls()
