import ipaddress
from discovery import GatewayDiscoveryCoordinator
from gateway import TCP
import interfaces

class UPnP:
    """
    Quick access to UPnP port mapping on the default gateway.
    Discovery starts as soon as the object is built (takes ~3 seconds);
    every method waits for it to finish. If no gateway answered, methods
    return False or None instead of raising.
    """
    def __init__(self, local_ip, finder=None):
        if not local_ip:
            raise ValueError("UPnP needs the local IPv4 address to search from")
        self.local_ip = str(ipaddress.IPv4Address(local_ip))
        self.coordinator = GatewayDiscoveryCoordinator(finder)
        self.coordinator.start(self.local_ip)

    @staticmethod
    def get_local_ips():
        return interfaces.get_local_ips()

    def wait_init(self):
        """
        Blocks until discovery is over. Calling it manually is never required.
        """
        self.coordinator.wait_until_settled()

    def is_upnp_available(self):
        self.wait_init()
        return self.coordinator.default_gateway() is not None

    def open_port(self, name, lease_duration, internal_port, external_port, protocol=TCP):
        """
        Maps external_port on the gateway to internal_port on this machine.
        A lease_duration of 0 asks for a permanent mapping.
        """
        if not self.is_upnp_available():
            return False
        return self.coordinator.default_gateway().open_port(
            name, lease_duration, internal_port, external_port, protocol
        )

    def close_port(self, external_port, protocol=TCP):
        # Most gateways seem to refuse this
        if not self.is_upnp_available():
            return False
        return self.coordinator.default_gateway().close_port(external_port, protocol)

    def is_mapped(self, port, protocol=TCP):
        if not self.is_upnp_available():
            return False
        return self.coordinator.default_gateway().is_mapped(port, protocol)

    def get_external_ip(self):
        if not self.is_upnp_available():
            return None
        return self.coordinator.default_gateway().get_external_ip()

    def get_local_ip(self):
        if not self.is_upnp_available():
            return None
        return self.coordinator.default_gateway().get_local_ip()

    def get_default_gateway_ip(self):
        if not self.is_upnp_available():
            return None
        return self.coordinator.default_gateway().get_gateway_ip()
