import socket
import ipaddress
import logging
from collections import namedtuple
import psutil

# One host interface as seen by the enumerator.
# addresses is a sequence of (family, address) pairs.
InterfaceInfo = namedtuple('InterfaceInfo', [
    'name', 'label', 'is_up', 'is_loopback', 'is_virtual', 'is_point_to_point', 'addresses'
])

LocalAddress = namedtuple('LocalAddress', [
    'address', 'interface', 'label', 'is_up', 'is_loopback', 'is_virtual', 'is_point_to_point'
])

def _is_loopback_ip(address):
    try:
        return ipaddress.ip_address(address).is_loopback
    except ValueError:
        return False

def system_interfaces():
    """
    Reads the host interface table through psutil.
    Windows reports no flags, so loopback is also inferred from the addresses.
    """
    stats = psutil.net_if_stats()
    interfaces = []
    for name, snics in psutil.net_if_addrs().items():
        st = stats.get(name)
        flags = st.flags.split(',') if st and st.flags else []
        addresses = [(snic.family, snic.address) for snic in snics]
        ipv4 = [addr for family, addr in addresses if family == socket.AF_INET]

        interfaces.append(InterfaceInfo(
            name=name,
            label=name,
            is_up=bool(st and st.isup),
            is_loopback='loopback' in flags or any(_is_loopback_ip(a) for a in ipv4),
            # Linux alias interfaces (eth0:1) are the sub-interfaces
            is_virtual=':' in name,
            is_point_to_point='pointopoint' in flags,
            addresses=addresses,
        ))
    return interfaces

def _usable(iface):
    if not iface.is_up or iface.is_loopback or iface.is_virtual or iface.is_point_to_point:
        return False
    return 'virtual' not in iface.label.lower()

# Consecutive failures tolerated from one iterator before giving up on it
MAX_SKIPPED = 64

def _each(iterator, what):
    """
    Steps through an iterator, skipping entries whose retrieval raises.
    """
    skipped = 0
    while skipped < MAX_SKIPPED:
        try:
            item = next(iterator)
        except StopIteration:
            return
        except Exception as e:
            skipped += 1
            logging.debug(f"Skipping {what}: {e}")
            continue
        skipped = 0
        yield item

def enumerate_local_addresses(source=None):
    """
    Returns the IPv4 addresses of this host worth probing for a gateway.
    `source` is an iterable of interface descriptors (or a callable returning one);
    by default the real interface table is read. Never raises: an interface or
    address that cannot be read is skipped, the rest are kept in order.
    """
    if source is None:
        source = system_interfaces
    try:
        ifaces = iter(source() if callable(source) else source)
    except Exception as e:
        logging.warning(f"Interface enumeration failed: {e}")
        return []

    result = []
    for iface in _each(ifaces, "interface"):
        try:
            if not _usable(iface):
                continue
            name = iface.name
            addresses = iter(iface.addresses)
        except Exception as e:
            logging.debug(f"Skipping interface: {e}")
            continue

        for entry in _each(addresses, f"address of {name}"):
            try:
                family, address = entry
                if family != socket.AF_INET:
                    continue
                result.append(LocalAddress(
                    address, name, iface.label, iface.is_up,
                    iface.is_loopback, iface.is_virtual, iface.is_point_to_point
                ))
            except Exception as e:
                logging.debug(f"Skipping address {entry!r}: {e}")
    return result

def get_local_ips(source=None):
    return [la.address for la in enumerate_local_addresses(source)]
