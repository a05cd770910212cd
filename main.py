import sys
import logging
from upnp import UPnP

USAGE = "Usage: python main.py [open|close|check <port> [TCP|UDP]]"

def main():
    # Log to file, not console
    logging.basicConfig(
        filename='upnp.log',
        filemode='w',
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    # Suppress noisy logs from libraries
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('aiohttp').setLevel(logging.WARNING)

    args = sys.argv[1:]
    if args and (args[0] not in ('open', 'close', 'check') or len(args) < 2):
        print(USAGE)
        sys.exit(1)

    local_ips = UPnP.get_local_ips()
    if not local_ips:
        print("No usable network interface found.")
        sys.exit(1)

    print(f"Local addresses: {', '.join(local_ips)}")
    print("Searching for a UPnP gateway...")
    upnp = UPnP(local_ips[0])

    if not upnp.is_upnp_available():
        print("UPnP is not available.")
        sys.exit(1)

    if not args:
        print(f"Gateway:     {upnp.get_default_gateway_ip()}")
        print(f"Local IP:    {upnp.get_local_ip()}")
        print(f"External IP: {upnp.get_external_ip()}")
        return

    command = args[0]
    try:
        port = int(args[1])
    except ValueError:
        print(USAGE)
        sys.exit(1)
    protocol = args[2].upper() if len(args) > 2 else "TCP"

    if command == 'open':
        ok = upnp.open_port("UPnP Python", 0, port, port, protocol)
        print(f"Open {port}/{protocol}: {'OK' if ok else 'FAILED'}")
    elif command == 'close':
        ok = upnp.close_port(port, protocol)
        print(f"Close {port}/{protocol}: {'OK' if ok else 'FAILED'}")
    else:
        mapped = upnp.is_mapped(port, protocol)
        print(f"{port}/{protocol} is {'mapped' if mapped else 'not mapped'}")

if __name__ == '__main__':
    main()
