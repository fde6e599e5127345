"""
Response decoding and header helpers.
"""
import json
import xml.etree.ElementTree as ET
from typing import Any, Dict, Mapping, Optional

JSON_CONTENT_TYPES = ('application/json', 'application/x-amz-json-1.0')


def sort_by_keys(params: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a new dict with keys in ascending order."""
    return {key: params[key] for key in sorted(params)}


def canonicalize_headers(headers: Mapping[str, Any]) -> Dict[str, str]:
    """
    Normalize header names to Title-Case and values to strings.

    ``x-amz-target`` becomes ``X-Amz-Target``. When two names collide after
    normalization the later one wins.
    """
    canonical = {}
    for name, value in headers.items():
        canonical_name = '-'.join(part.capitalize() for part in str(name).split('-'))
        canonical[canonical_name] = str(value)
    return canonical


def media_type(content_type: Optional[str]) -> str:
    """``application/json; charset=utf-8`` -> ``application/json``"""
    if not content_type:
        return ''
    return content_type.split(';', 1)[0].strip().lower()


def is_json_content_type(content_type: Optional[str]) -> bool:
    return media_type(content_type) in JSON_CONTENT_TYPES


def _xml_key(tag: str) -> str:
    # Drop "{namespace}" and lower-camel the local name
    if '}' in tag:
        tag = tag.rsplit('}', 1)[1]
    return tag[:1].lower() + tag[1:]


def _element_to_value(element: ET.Element) -> Any:
    children = list(element)
    if not children:
        return (element.text or '').strip()

    value: Dict[str, Any] = {}
    for child in children:
        key = _xml_key(child.tag)
        child_value = _element_to_value(child)
        if key in value:
            if not isinstance(value[key], list):
                value[key] = [value[key]]
            value[key].append(child_value)
        else:
            value[key] = child_value
    return value


def xml_to_object(text: str) -> Dict[str, Any]:
    """
    Convert an XML document into nested dicts.

    The root element becomes the single top-level key, element names are
    lower-camel cased, repeated siblings become lists and leaf elements map
    to their stripped text::

        <ErrorResponse><Error><Code>X</Code></Error></ErrorResponse>
        -> {'errorResponse': {'error': {'code': 'X'}}}

    Args:
        text: XML document

    Returns:
        Decoded structure, an empty dict for an empty document

    Raises:
        xml.etree.ElementTree.ParseError: If the document is malformed
    """
    if not text or not text.strip():
        return {}
    root = ET.fromstring(text)
    return {_xml_key(root.tag): _element_to_value(root)}


def decode_body(text: str, as_json: bool) -> Any:
    """Decode a response body as JSON or XML. An empty body decodes to ``{}``."""
    if as_json:
        if not text or not text.strip():
            return {}
        return json.loads(text)
    return xml_to_object(text)
