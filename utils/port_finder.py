import socket


def is_port_in_use(port: int, host: str = "0.0.0.0") -> bool:
    """Return True if binding `host:port` fails."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        try:
            probe.bind((host, port))
        except OSError:
            return True
    return False


def find_available_port(start_port: int, host: str = "0.0.0.0", max_tries: int = 100) -> int:
    """
    Return the first free port at or above `start_port`.

    Raises:
        RuntimeError: if no free port is found within `max_tries` ports.
    """
    for port in range(start_port, min(start_port + max_tries, 65536)):
        if not is_port_in_use(port, host):
            return port
    raise RuntimeError(f"No free port found in range {start_port}-{start_port + max_tries - 1}")
