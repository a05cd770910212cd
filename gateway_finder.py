import asyncio
import socket
import logging
import threading
import re
import aiohttp
from gateway import Gateway

# Constants for SSDP
SSDP_ADDR = "239.255.255.250"
SSDP_PORT = 1900
SSDP_MX = 2
SEARCH_TARGETS = [
    "urn:schemas-upnp-org:device:InternetGatewayDevice:1",
    "urn:schemas-upnp-org:service:WANIPConnection:1",
    "urn:schemas-upnp-org:service:WANPPPConnection:1",
]
SEARCH_TIMEOUT = 3.0
RECV_BUFFER = 1536

LOCATION_RE = re.compile(r'^LOCATION:\s*(\S+)', re.IGNORECASE | re.MULTILINE)

def build_msearch(search_target):
    return (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {SSDP_ADDR}:{SSDP_PORT}\r\n"
        f"ST: {search_target}\r\n"
        'MAN: "ssdp:discover"\r\n'
        f"MX: {SSDP_MX}\r\n"
        "\r\n"
    ).encode()

def parse_location(response):
    match = LOCATION_RE.search(response)
    return match.group(1) if match else None

class GatewayFinder:
    """
    Searches for gateways from one local address, on a background thread.
    Every gateway found is passed to on_found; on_done is called exactly once
    when the search is over, whatever the outcome.
    """
    def __init__(self, timeout=SEARCH_TIMEOUT):
        self.timeout = timeout
        self.on_found = None
        self.on_done = None
        self.thread = None
        self._seen = set()

    def start(self, local_ip, on_found, on_done=None):
        if self.thread is not None:
            raise RuntimeError("GatewayFinder already started")
        self.on_found = on_found
        self.on_done = on_done
        self.thread = threading.Thread(
            target=self._run, args=(local_ip,), name=f"upnp-search-{local_ip}", daemon=True
        )
        self.thread.start()

    def is_searching(self):
        return self.thread is not None and self.thread.is_alive()

    def _run(self, local_ip):
        try:
            asyncio.run(self._search(local_ip))
        except Exception as e:
            logging.error(f"UPnP: Search from {local_ip} failed: {e}")
        finally:
            if self.on_done:
                self.on_done()

    async def _search(self, local_ip):
        logging.info(f"UPnP: Sending SSDP discovery from {local_ip}...")
        await asyncio.gather(*(self._probe(local_ip, st) for st in SEARCH_TARGETS))

    async def _probe(self, local_ip, search_target):
        """
        Sends one M-SEARCH and handles every answer until the timeout expires.
        """
        loop = asyncio.get_running_loop()
        handlers = []
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((local_ip, 0))
            # Binding alone does not pick the multicast egress interface
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(local_ip))
            sock.setblocking(False)
            sock.sendto(build_msearch(search_target), (SSDP_ADDR, SSDP_PORT))

            deadline = loop.time() + self.timeout
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    data = await asyncio.wait_for(loop.sock_recv(sock, RECV_BUFFER), timeout=remaining)
                except asyncio.TimeoutError:
                    break
                handlers.append(asyncio.create_task(self._handle_response(data, local_ip)))
        except OSError as e:
            logging.warning(f"UPnP: Probe {search_target} from {local_ip} failed: {e}")
        finally:
            sock.close()

        if handlers:
            await asyncio.gather(*handlers)

    async def _handle_response(self, data, local_ip):
        location = parse_location(data.decode(errors='ignore'))
        if not location:
            logging.debug("UPnP: SSDP response without LOCATION")
            return
        if location in self._seen:
            return
        self._seen.add(location)

        try:
            gateway = await Gateway.from_location(location, local_ip)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logging.debug(f"UPnP: Ignoring device at {location}: {e}")
            return

        logging.info(f"UPnP: Router found at {location}")
        self.on_found(gateway)
