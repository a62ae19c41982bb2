"""Tests for conversion of description XML into nested objects."""

import pytest

from ssdp_discovery_protocol import ElementTreeDescriptionParser, DescriptionParseError

DESCRIPTION_XML = """<?xml version="1.0" encoding="utf-8"?>
<root xmlns="urn:schemas-upnp-org:device-1-0" configId="7">
  <specVersion>
    <major>1</major>
    <minor>0</minor>
  </specVersion>
  <device>
    <deviceType>urn:schemas-upnp-org:device:MediaRenderer:1</deviceType>
    <friendlyName>Living Room</friendlyName>
    <presentationURL></presentationURL>
    <iconList>
      <icon><mimetype>image/png</mimetype><width>48</width></icon>
      <icon><mimetype>image/jpeg</mimetype><width>120</width></icon>
    </iconList>
    <serviceList>
      <service><serviceType>urn:schemas-upnp-org:service:AVTransport:1</serviceType></service>
    </serviceList>
  </device>
</root>
"""


@pytest.fixture
def parser():
    return ElementTreeDescriptionParser()


def test_root_element_is_dropped_and_namespace_kept_as_attribute(parser):
    obj = parser.parse(DESCRIPTION_XML)
    assert obj["$"] == {"xmlns": "urn:schemas-upnp-org:device-1-0", "configId": "7"}
    assert obj["specVersion"] == {"major": "1", "minor": "0"}
    assert obj["device"]["friendlyName"] == "Living Room"
    assert obj["device"]["deviceType"] == "urn:schemas-upnp-org:device:MediaRenderer:1"


def test_single_and_repeated_children(parser):
    obj = parser.parse(DESCRIPTION_XML)
    icons = obj["device"]["iconList"]["icon"]
    assert icons == [
        {"mimetype": "image/png", "width": "48"},
        {"mimetype": "image/jpeg", "width": "120"},
    ]
    service = obj["device"]["serviceList"]["service"]
    assert service == {"serviceType": "urn:schemas-upnp-org:service:AVTransport:1"}


def test_empty_element_is_empty_string(parser):
    obj = parser.parse(DESCRIPTION_XML)
    assert obj["device"]["presentationURL"] == ""


def test_text_with_attributes(parser):
    obj = parser.parse('<r><name lang="en">Hello</name></r>')
    assert obj == {"name": {"$": {"lang": "en"}, "_": "Hello"}}


def test_text_only_root(parser):
    assert parser.parse("<r>text</r>") == "text"


def test_malformed_xml_yields_none(parser):
    assert parser.parse("<root><device></root>") is None
    assert parser.parse("not xml at all") is None


def test_parse_strict_raises(parser):
    with pytest.raises(DescriptionParseError):
        parser.parse_strict("<root>")


def test_prefixed_names_are_kept(parser):
    xml = (
        '<?xml version="1.0"?>'
        '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
        's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
        '<s:Body>'
        '<u:GetVolumeResponse xmlns:u="urn:schemas-upnp-org:service:RenderingControl:1">'
        '<CurrentVolume>12</CurrentVolume>'
        '</u:GetVolumeResponse>'
        '</s:Body>'
        '</s:Envelope>'
    )
    assert parser.parse(xml) == {
        "$": {
            "xmlns:s": "http://schemas.xmlsoap.org/soap/envelope/",
            "s:encodingStyle": "http://schemas.xmlsoap.org/soap/encoding/",
        },
        "s:Body": {
            "u:GetVolumeResponse": {
                "$": {"xmlns:u": "urn:schemas-upnp-org:service:RenderingControl:1"},
                "CurrentVolume": "12",
            },
        },
    }


def test_default_namespace_names_are_unprefixed(parser):
    xml = '<root xmlns="urn:a"><device xmlns:dlna="urn:b"><dlna:X_DLNADOC>DMR-1.50</dlna:X_DLNADOC></device></root>'
    assert parser.parse(xml) == {
        "$": {"xmlns": "urn:a"},
        "device": {"$": {"xmlns:dlna": "urn:b"}, "dlna:X_DLNADOC": "DMR-1.50"},
    }


def test_xml_lang_attribute(parser):
    assert parser.parse('<r><name xml:lang="en">Hi</name></r>') == {
        "name": {"$": {"xml:lang": "en"}, "_": "Hi"},
    }
