"""
Field Mapper for discovery API items.

Pulls target fields out of a raw item with configurable source paths:
- Dot notation for nested fields: "location.name"
- Array indexing: "categoryNames[0]", "hosts[0].name"
- Candidate paths: ["id", "eventId"] takes the first non-empty value, which
  is how both upstream API versions map onto the same target fields

Mapped values can then be post-processed by transformations declared in
ingestion.yaml (template, strip_html, default).
"""

import logging
import re
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

FieldPath = Union[str, List[str]]

_PATH_TOKEN_RE = re.compile(r"([^.\[\]]+)|\[(\d+)\]")
_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


class FieldMapper:
    """
    Maps a raw item to a flat dict of target fields.

    Example:
        >>> mapper = FieldMapper({"title": ["name", "title"]})
        >>> mapper.map_event({"title": "Welcome Fair"})
        {'title': 'Welcome Fair'}
    """

    def __init__(
        self,
        field_mappings: Dict[str, FieldPath],
        transformations: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        """
        Args:
            field_mappings: Target field name -> source path, or a list of
                candidate source paths tried in order
            transformations: Target field name -> transformation config, e.g.
                {"source_url": {"type": "template",
                                "template": "https://example.com/event/{{external_id}}"}}
        """
        self.field_mappings = field_mappings
        self.transformations = transformations or {}
        self._handlers: Dict[str, Callable[[str, Dict[str, Any], Dict[str, Any]], None]] = {
            "template": self._template,
            "strip_html": self._strip_html,
            "default": self._default,
        }

    def map_event(self, raw_event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Resolve every configured field against one raw item.

        Returns:
            Dict with one key per mapped field (None where nothing matched),
            plus any fields produced by transformations
        """
        result: Dict[str, Any] = {}
        for target_field, source_path in self.field_mappings.items():
            candidates = [source_path] if isinstance(source_path, str) else source_path
            result[target_field] = self._first_value(raw_event, candidates)
        return self.apply_transformations(result)

    def _first_value(self, raw_event: Dict[str, Any], candidates: List[str]) -> Any:
        for candidate in candidates:
            value = self._extract_field(raw_event, candidate)
            if not _is_empty(value):
                return value
        return None

    def _extract_field(self, data: Any, path: str) -> Any:
        """Walk a dotted/indexed path; None as soon as a step is missing."""
        current = data
        for key, index in _PATH_TOKEN_RE.findall(path):
            if key:
                current = current.get(key) if isinstance(current, dict) else None
            else:
                position = int(index)
                if isinstance(current, list) and position < len(current):
                    current = current[position]
                else:
                    current = None
            if current is None:
                return None
        return current

    def apply_transformations(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run the configured transformations over mapped data.

        A transformation with a "when" key only runs if that field is
        non-empty. Unknown transformation types are logged and skipped.
        """
        result = dict(data)
        for field_name, transform_config in self.transformations.items():
            guard = transform_config.get("when")
            if guard and not result.get(guard):
                continue

            handler = self._handlers.get(transform_config.get("type"))
            if handler is None:
                logger.warning(
                    f"Unknown transformation '{transform_config.get('type')}' for {field_name}, skipping"
                )
                continue
            handler(field_name, transform_config, result)
        return result

    def _template(self, field_name: str, transform_config: Dict[str, Any], result: Dict[str, Any]) -> None:
        def _fill(match: "re.Match[str]") -> str:
            value = result.get(match.group(1))
            return "" if value is None else str(value)

        result[field_name] = _PLACEHOLDER_RE.sub(_fill, transform_config.get("template", ""))

    def _strip_html(self, field_name: str, transform_config: Dict[str, Any], result: Dict[str, Any]) -> None:
        value = result.get(transform_config.get("source", field_name))
        if isinstance(value, str):
            result[field_name] = _SPACE_RE.sub(" ", _TAG_RE.sub(" ", value)).strip()

    def _default(self, field_name: str, transform_config: Dict[str, Any], result: Dict[str, Any]) -> None:
        if _is_empty(result.get(field_name)):
            result[field_name] = transform_config.get("value")


def create_field_mapper_from_config(
    config: Dict[str, Any], base_mappings: Dict[str, FieldPath]
) -> FieldMapper:
    """
    Build a FieldMapper from the "normalization" section of ingestion.yaml.

    Configured field_mappings override base_mappings field by field.

    Example config:
        field_mappings:
          title: ["name", "title"]
        transformations:
          description:
            type: "strip_html"
    """
    return FieldMapper(
        field_mappings={**base_mappings, **(config.get("field_mappings") or {})},
        transformations=config.get("transformations") or {},
    )
