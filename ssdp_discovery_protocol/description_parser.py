#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Conversion of UPnP device description XML into plain nested dicts/lists/strings.

The conversion follows the conventions that are widely used for UPnP descriptions:

  - The root element is dropped; its contents are returned.
  - Attributes of an element are collected in a dict under the key '$'. Namespace
    declarations are attributes too, e.g. {'xmlns': 'urn:schemas-upnp-org:device-1-0'}
    or {'xmlns:s': 'http://schemas.xmlsoap.org/soap/envelope/'}.
  - Element and attribute names are written as they appear in the document: a name in a
    prefixed namespace keeps its prefix ('s:Body'); a name in the default namespace has
    no prefix.
  - An element with only text content becomes that text (an empty element becomes '').
  - Text that accompanies attributes or child elements is stored under the key '_'.
  - A child element that occurs once is stored as a single value; a child element
    that occurs more than once is stored as a list of values in document order.

For example:

    <root xmlns="urn:schemas-upnp-org:device-1-0">
      <specVersion><major>1</major><minor>0</minor></specVersion>
      <device>
        <friendlyName>Living Room</friendlyName>
        <iconList><icon>...</icon><icon>...</icon></iconList>
      </device>
    </root>

becomes:

    {
      "$": {"xmlns": "urn:schemas-upnp-org:device-1-0"},
      "specVersion": {"major": "1", "minor": "0"},
      "device": {"friendlyName": "Living Room", "iconList": {"icon": [{...}, {...}]}}
    }
"""

from __future__ import annotations

import xml.etree.ElementTree as ET

from .internal_types import *
from .pkg_logging import logger
from .exceptions import DescriptionParseError

ATTRIBUTES_KEY = '$'
TEXT_KEY = '_'

XML_NAMESPACE = 'http://www.w3.org/XML/1998/namespace'

NamespaceDeclarations = List[Tuple[str, str]]
"""(prefix, uri) pairs declared on one element, in document order. The default namespace has prefix ''."""

class DescriptionParser(Protocol):
    """The capability of converting description XML text into a structured object."""

    def parse(self, xml: str) -> Optional[Jsonable]:
        """Returns the structured object for xml, or None if it cannot be parsed."""
        ...

def _qualified_name(name: str, prefixes: Mapping[str, str]) -> str:
    """Converts an ElementTree '{uri}local' name back to 'prefix:local' using the in-scope prefixes."""
    if not name.startswith('{'):
        return name
    uri, local = name[1:].split('}', 1)
    prefix = prefixes.get(uri, '')
    return f"{prefix}:{local}" if prefix != '' else local

class ElementTreeDescriptionParser:
    """A DescriptionParser built on xml.etree.ElementTree."""

    def parse_strict(self, xml: str) -> Jsonable:
        """Converts xml into a structured object.

        Raises DescriptionParseError if xml is not well-formed.
        """
        # ElementTree resolves prefixes away; the pull parser reports where each was declared
        parser = ET.XMLPullParser(events=('start-ns', 'start'))
        declarations: Dict[ET.Element, NamespaceDeclarations] = {}
        pending: NamespaceDeclarations = []
        root: Optional[ET.Element] = None
        try:
            parser.feed(xml)
            parser.close()
            for event, value in parser.read_events():
                if event == 'start-ns':
                    pending.append(value)
                elif event == 'start':
                    if len(pending) > 0:
                        declarations[value] = pending
                        pending = []
                    if root is None:
                        root = value
        except ET.ParseError as e:
            raise DescriptionParseError(f"Malformed description XML: {e}") from e
        if root is None:
            raise DescriptionParseError("Malformed description XML: no root element")
        return self._convert_element(root, declarations, { XML_NAMESPACE: 'xml' })

    def parse(self, xml: str) -> Optional[Jsonable]:
        try:
            return self.parse_strict(xml)
        except DescriptionParseError as e:
            logger.debug(f"Unable to parse description XML: {e}")
            return None

    def _convert_element(
            self,
            elem: ET.Element,
            declarations: Mapping[ET.Element, NamespaceDeclarations],
            prefixes: Mapping[str, str]
          ) -> Jsonable:
        result: Dict[str, Any] = {}
        attributes: Dict[str, str] = {}
        element_declarations = declarations.get(elem, [])
        if len(element_declarations) > 0:
            prefixes = dict(prefixes)
            for prefix, uri in element_declarations:
                prefixes[uri] = prefix
                attributes['xmlns' if prefix == '' else f"xmlns:{prefix}"] = uri
        for k, v in elem.attrib.items():
            attributes[_qualified_name(k, prefixes)] = v
        if len(attributes) > 0:
            result[ATTRIBUTES_KEY] = attributes

        # Whitespace between child elements is formatting, not content
        text_parts: List[str] = []
        if elem.text is not None and elem.text.strip() != '':
            text_parts.append(elem.text)
        for child in elem:
            name = _qualified_name(child.tag, prefixes)
            value = self._convert_element(child, declarations, prefixes)
            if name in result:
                existing = result[name]
                if isinstance(existing, list):
                    existing.append(value)
                else:
                    result[name] = [existing, value]
            else:
                result[name] = value
            if child.tail is not None and child.tail.strip() != '':
                text_parts.append(child.tail)

        if len(result) == 0:
            return elem.text if elem.text is not None else ''
        if len(text_parts) > 0:
            result[TEXT_KEY] = ''.join(text_parts)
        return result
