import asyncio
import logging
import aiohttp
import xml.etree.ElementTree as ET
from xml.sax.saxutils import escape
from urllib.parse import urljoin, urlparse

TCP = "TCP"
UDP = "UDP"

HTTP_TIMEOUT = 3.0

# Lowercased substrings identifying a WAN connection service type
WAN_SERVICE_MARKERS = (":wanipconnection:", ":wanpppconnection:")

def _local_name(tag):
    return tag.rsplit('}', 1)[-1]

def _child_text(elem, name):
    for child in elem:
        if _local_name(child.tag) == name:
            return (child.text or "").strip()
    return None

def parse_description(xml_content, location):
    """
    Finds the WAN connection service in a device description.
    Returns (control_url, service_type); raises ValueError if there is none.
    """
    try:
        root = ET.fromstring(xml_content)
    except ET.ParseError as e:
        raise ValueError(f"Malformed device description: {e}")

    base = location
    for elem in root:
        if _local_name(elem.tag) == "URLBase" and elem.text and elem.text.strip():
            base = elem.text.strip()

    for elem in root.iter():
        if _local_name(elem.tag) != "service":
            continue
        service_type = _child_text(elem, "serviceType")
        control_path = _child_text(elem, "controlURL")
        if not service_type or not control_path:
            continue
        if any(marker in service_type.lower() for marker in WAN_SERVICE_MARKERS):
            return urljoin(base, control_path), service_type

    raise ValueError("No compatible WAN connection service found")

def build_soap_request(service_type, action, params=None):
    args = "".join(
        f"<{key}>{escape(str(value))}</{key}>" for key, value in (params or {}).items()
    )
    return (
        '<?xml version="1.0"?>\r\n'
        '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
        's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
        '<s:Body>'
        f'<u:{action} xmlns:u="{service_type}">{args}</u:{action}>'
        '</s:Body>'
        '</s:Envelope>'
    )

def parse_soap_response(xml_content):
    """
    Flattens a SOAP response into {element name: text} for every leaf element.
    """
    try:
        root = ET.fromstring(xml_content)
    except ET.ParseError as e:
        raise ValueError(f"Malformed SOAP response: {e}")
    result = {}
    for elem in root.iter():
        if len(elem) == 0:
            result[_local_name(elem.tag)] = (elem.text or "").strip()
    return result

def _valid_port(port):
    return isinstance(port, int) and not isinstance(port, bool) and 0 <= port <= 65535

def _normalize_protocol(protocol):
    proto = str(protocol).upper()
    return proto if proto in (TCP, UDP) else None

class Gateway:
    """
    A discovered Internet Gateway Device, reachable from one local address.
    Control actions are SOAP calls against the WAN connection service.
    Public methods are blocking and never raise for refusals: they return
    False / None instead.
    """
    def __init__(self, local_ip, gateway_ip, control_url, service_type):
        self.local_ip = local_ip
        self.gateway_ip = gateway_ip
        self.control_url = control_url
        self.service_type = service_type

    def __repr__(self):
        return f"Gateway({self.gateway_ip} via {self.local_ip}, {self.service_type})"

    @classmethod
    async def from_location(cls, location, local_ip):
        """
        Fetches the description XML behind an SSDP LOCATION header.
        """
        timeout = aiohttp.ClientTimeout(total=HTTP_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(location) as resp:
                if resp.status != 200:
                    raise ValueError(f"Failed to fetch gateway description: {resp.status}")
                xml_content = await resp.text()

        control_url, service_type = parse_description(xml_content, location)
        return cls(local_ip, urlparse(location).hostname, control_url, service_type)

    async def _command(self, action, params=None):
        """
        Sends one SOAP action. Returns the response fields, or None on any failure.
        """
        body = build_soap_request(self.service_type, action, params)
        headers = {
            'Content-Type': 'text/xml; charset="utf-8"',
            'SOAPAction': f'"{self.service_type}#{action}"'
        }
        timeout = aiohttp.ClientTimeout(total=HTTP_TIMEOUT)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.control_url, data=body, headers=headers) as resp:
                    text = await resp.text()
                    if resp.status != 200:
                        logging.debug(f"UPnP: {action} refused ({resp.status}): {text}")
                        return None
            return parse_soap_response(text)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logging.debug(f"UPnP: {action} failed: {e}")
            return None

    def _run(self, action, params=None):
        return asyncio.run(self._command(action, params))

    def open_port(self, name, lease_duration, internal_port, external_port, protocol):
        proto = _normalize_protocol(protocol)
        if not _valid_port(internal_port) or not _valid_port(external_port) or proto is None:
            logging.warning(f"UPnP: Invalid mapping {internal_port}->{external_port} ({protocol})")
            return False

        params = {
            'NewRemoteHost': "",
            'NewExternalPort': external_port,
            'NewProtocol': proto,
            'NewInternalPort': internal_port,
            'NewInternalClient': self.local_ip,
            'NewEnabled': 1,
            'NewPortMappingDescription': name,
            'NewLeaseDuration': lease_duration,
        }
        ok = self._run("AddPortMapping", params) is not None
        if ok:
            logging.info(f"UPnP: Port {external_port} ({proto}) mapped to {self.local_ip}:{internal_port}")
        return ok

    def close_port(self, external_port, protocol):
        proto = _normalize_protocol(protocol)
        if not _valid_port(external_port) or proto is None:
            logging.warning(f"UPnP: Invalid port {external_port} ({protocol})")
            return False

        params = {
            'NewRemoteHost': "",
            'NewExternalPort': external_port,
            'NewProtocol': proto,
        }
        return self._run("DeletePortMapping", params) is not None

    def is_mapped(self, port, protocol):
        proto = _normalize_protocol(protocol)
        if not _valid_port(port) or proto is None:
            logging.warning(f"UPnP: Invalid port {port} ({protocol})")
            return False

        params = {
            'NewRemoteHost': "",
            'NewExternalPort': port,
            'NewProtocol': proto,
        }
        result = self._run("GetSpecificPortMappingEntry", params)
        return result is not None and result.get('NewInternalPort') is not None

    def get_external_ip(self):
        result = self._run("GetExternalIPAddress")
        if not result:
            return None
        return result.get('NewExternalIPAddress') or None

    def get_local_ip(self):
        return self.local_ip

    def get_gateway_ip(self):
        return self.gateway_ip
