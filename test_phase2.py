import unittest
import asyncio
import aiohttp
from unittest.mock import MagicMock, AsyncMock, patch
from gateway import Gateway, parse_description, build_soap_request, parse_soap_response

DESCRIPTION = """<?xml version="1.0"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <device>
    <deviceType>urn:schemas-upnp-org:device:InternetGatewayDevice:1</deviceType>
    <serviceList>
      <service>
        <serviceType>urn:schemas-upnp-org:service:Layer3Forwarding:1</serviceType>
        <controlURL>/ctl/L3F</controlURL>
      </service>
    </serviceList>
    <deviceList>
      <device>
        <deviceType>urn:schemas-upnp-org:device:WANConnectionDevice:1</deviceType>
        <serviceList>
          <service>
            <serviceType>urn:schemas-upnp-org:service:WANIPConnection:1</serviceType>
            <controlURL>/ctl/IPConn</controlURL>
          </service>
        </serviceList>
      </device>
    </deviceList>
  </device>
</root>"""

EXTERNAL_IP_RESPONSE = """<?xml version="1.0"?>
<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/">
  <s:Body>
    <u:GetExternalIPAddressResponse xmlns:u="urn:schemas-upnp-org:service:WANIPConnection:1">
      <NewExternalIPAddress>203.0.113.7</NewExternalIPAddress>
    </u:GetExternalIPAddressResponse>
  </s:Body>
</s:Envelope>"""

SERVICE = "urn:schemas-upnp-org:service:WANIPConnection:1"

def make_session(status, text):
    """
    aiohttp.ClientSession() -> session; session.get/post() -> response.
    """
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.text.return_value = text

    session = MagicMock()
    session.__aenter__.return_value = session
    session.get.return_value.__aenter__.return_value = mock_response
    session.post.return_value.__aenter__.return_value = mock_response
    return session

class TestDescriptionParsing(unittest.TestCase):
    def test_finds_wan_service_in_nested_device(self):
        control_url, service_type = parse_description(DESCRIPTION, "http://192.168.1.1:5000/rootDesc.xml")
        self.assertEqual(control_url, "http://192.168.1.1:5000/ctl/IPConn")
        self.assertEqual(service_type, SERVICE)

    def test_ppp_service_accepted(self):
        xml = DESCRIPTION.replace("WANIPConnection", "WANPPPConnection")
        _, service_type = parse_description(xml, "http://192.168.1.1/desc.xml")
        self.assertEqual(service_type, "urn:schemas-upnp-org:service:WANPPPConnection:1")

    def test_url_base_respected(self):
        xml = DESCRIPTION.replace("<device>", "<URLBase>http://10.0.0.1:8080/</URLBase><device>", 1)
        control_url, _ = parse_description(xml, "http://192.168.1.1/desc.xml")
        self.assertEqual(control_url, "http://10.0.0.1:8080/ctl/IPConn")

    def test_no_wan_service(self):
        xml = DESCRIPTION.replace("WANIPConnection", "WANCommonInterfaceConfig")
        with self.assertRaises(ValueError):
            parse_description(xml, "http://192.168.1.1/desc.xml")

    def test_malformed_xml(self):
        with self.assertRaises(ValueError):
            parse_description("<root><device>", "http://192.168.1.1/desc.xml")

class TestSoap(unittest.TestCase):
    def test_request_envelope(self):
        body = build_soap_request(SERVICE, "DeletePortMapping", {'NewExternalPort': 8080, 'NewProtocol': "TCP"})
        self.assertIn(f'<u:DeletePortMapping xmlns:u="{SERVICE}">', body)
        self.assertIn("<NewExternalPort>8080</NewExternalPort>", body)
        self.assertIn("<NewProtocol>TCP</NewProtocol>", body)

    def test_request_escapes_values(self):
        body = build_soap_request(SERVICE, "AddPortMapping", {'NewPortMappingDescription': "a<b&c"})
        self.assertIn("a&lt;b&amp;c", body)

    def test_response_fields(self):
        result = parse_soap_response(EXTERNAL_IP_RESPONSE)
        self.assertEqual(result['NewExternalIPAddress'], "203.0.113.7")

class TestGatewayFromLocation(unittest.IsolatedAsyncioTestCase):
    async def test_builds_gateway(self):
        with patch('aiohttp.ClientSession') as MockSession:
            MockSession.return_value = make_session(200, DESCRIPTION)
            gw = await Gateway.from_location("http://192.168.1.1:5000/rootDesc.xml", "192.168.1.50")

        self.assertEqual(gw.get_gateway_ip(), "192.168.1.1")
        self.assertEqual(gw.get_local_ip(), "192.168.1.50")
        self.assertEqual(gw.control_url, "http://192.168.1.1:5000/ctl/IPConn")

    async def test_http_error(self):
        with patch('aiohttp.ClientSession') as MockSession:
            MockSession.return_value = make_session(404, "")
            with self.assertRaises(ValueError):
                await Gateway.from_location("http://192.168.1.1:5000/rootDesc.xml", "192.168.1.50")

class TestGatewayCommands(unittest.TestCase):
    def setUp(self):
        self.gw = Gateway("192.168.1.50", "192.168.1.1", "http://192.168.1.1:5000/ctl/IPConn", SERVICE)

    def test_external_ip(self):
        with patch('aiohttp.ClientSession') as MockSession:
            session = make_session(200, EXTERNAL_IP_RESPONSE)
            MockSession.return_value = session
            self.assertEqual(self.gw.get_external_ip(), "203.0.113.7")

        args, kwargs = session.post.call_args
        self.assertEqual(args[0], self.gw.control_url)
        self.assertEqual(kwargs['headers']['SOAPAction'], f'"{SERVICE}#GetExternalIPAddress"')

    def test_refusal_is_not_an_exception(self):
        with patch('aiohttp.ClientSession') as MockSession:
            MockSession.return_value = make_session(500, "<s:Envelope/>")
            self.assertIsNone(self.gw.get_external_ip())
            self.assertFalse(self.gw.close_port(8080, "TCP"))

    def test_transport_error(self):
        with patch('aiohttp.ClientSession') as MockSession:
            session = make_session(200, "")
            session.post.side_effect = aiohttp.ClientConnectionError("refused")
            MockSession.return_value = session
            self.assertFalse(self.gw.open_port("test", 0, 80, 8080, "TCP"))

    def test_open_port_params(self):
        with patch.object(self.gw, '_command', new=AsyncMock(return_value={})) as cmd:
            self.assertTrue(self.gw.open_port("test", 3600, 80, 8080, "udp"))

        action, params = cmd.call_args[0]
        self.assertEqual(action, "AddPortMapping")
        self.assertEqual(params['NewInternalClient'], "192.168.1.50")
        self.assertEqual(params['NewProtocol'], "UDP")
        self.assertEqual(params['NewInternalPort'], 80)
        self.assertEqual(params['NewExternalPort'], 8080)
        self.assertEqual(params['NewLeaseDuration'], 3600)

    def test_is_mapped(self):
        with patch.object(self.gw, '_command', new=AsyncMock(return_value={'NewInternalPort': "80"})):
            self.assertTrue(self.gw.is_mapped(8080, "TCP"))
        with patch.object(self.gw, '_command', new=AsyncMock(return_value={})):
            self.assertFalse(self.gw.is_mapped(8080, "TCP"))
        with patch.object(self.gw, '_command', new=AsyncMock(return_value=None)):
            self.assertFalse(self.gw.is_mapped(8080, "TCP"))

    def test_invalid_arguments_rejected_without_traffic(self):
        with patch.object(self.gw, '_command', new=AsyncMock(return_value={})) as cmd:
            self.assertFalse(self.gw.open_port("test", 0, 80, 70000, "TCP"))
            self.assertFalse(self.gw.close_port(-1, "TCP"))
            self.assertFalse(self.gw.is_mapped(80, "SCTP"))
        cmd.assert_not_called()

if __name__ == '__main__':
    unittest.main()
