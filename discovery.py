import threading
import logging
from gateway_finder import GatewayFinder

PENDING = "pending"
FOUND = "found"
ABSENT = "absent"

class GatewayDiscoveryCoordinator:
    """
    Runs one gateway search and keeps the first gateway reported.
    The retained gateway is never replaced, and once the search has settled
    (found or absent) nothing changes any more.
    """
    def __init__(self, finder=None):
        self.finder = finder if finder is not None else GatewayFinder()
        self._lock = threading.Lock()
        self._settled = threading.Event()
        self._gateway = None
        self._started = False

    def start(self, local_ip):
        with self._lock:
            if self._started:
                raise RuntimeError("Gateway discovery already started")
            self._started = True
        logging.info(f"UPnP: Starting gateway discovery from {local_ip}")
        self.finder.start(local_ip, self.on_gateway_found, self._on_search_done)

    def on_gateway_found(self, gateway):
        with self._lock:
            if self._gateway is not None or self._settled.is_set():
                return
            self._gateway = gateway
            self._settled.set()
        logging.info(f"UPnP: Using gateway {gateway}")

    def _on_search_done(self):
        with self._lock:
            if self._settled.is_set():
                return
            self._settled.set()
        logging.warning("UPnP: No Gateway found.")

    def is_searching(self):
        return not self._settled.is_set()

    def wait_until_settled(self):
        self._settled.wait()

    def default_gateway(self):
        return self._gateway

    @property
    def state(self):
        if not self._settled.is_set():
            return PENDING
        return FOUND if self._gateway is not None else ABSENT
