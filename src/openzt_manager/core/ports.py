"""Host port allocation for instances.

Two independent inclusive ranges, one for remote-desktop ports and one for
console ports. Allocation always takes the lowest free value of each range
so that a given sequence of operations yields a reproducible assignment.
"""

import logging
import threading

from openzt_manager.core.errors import ExhaustedRangeError, InvalidConfigError
from openzt_manager.core.models import PortPair

logger = logging.getLogger(__name__)


class PortRange:
    """One inclusive range and the set of ports currently held from it.

    Not thread-safe on its own; PortAllocator serializes access.
    """

    def __init__(self, name: str, start: int, end: int) -> None:
        if start > end:
            raise ValueError(f"Invalid {name} range {start}-{end}")
        self.name = name
        self.start = start
        self.end = end
        self._held: set[int] = set()

    def __contains__(self, port: int) -> bool:
        return self.start <= port <= self.end

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    @property
    def available(self) -> int:
        return self.size - len(self._held)

    def is_held(self, port: int) -> bool:
        return port in self._held

    def take_lowest(self) -> int | None:
        for port in range(self.start, self.end + 1):
            if port not in self._held:
                self._held.add(port)
                return port
        return None

    def take(self, port: int) -> None:
        self._held.add(port)

    def give_back(self, port: int) -> None:
        self._held.discard(port)


class PortAllocator:
    """Allocates (rdp, console) port pairs without collisions.

    allocate_pair/release_pair are linearizable: a single lock covers the
    scan and the reservation, and a released port only becomes visible to
    allocate_pair once release_pair has returned.
    """

    def __init__(
        self,
        rdp_start: int,
        rdp_end: int,
        console_start: int,
        console_end: int,
    ) -> None:
        self._rdp = PortRange("rdp", rdp_start, rdp_end)
        self._console = PortRange("console", console_start, console_end)
        self._lock = threading.Lock()

    @property
    def rdp_available(self) -> int:
        with self._lock:
            return self._rdp.available

    @property
    def console_available(self) -> int:
        with self._lock:
            return self._console.available

    def allocate_pair(self) -> PortPair:
        """Reserve the lowest free port of each range.

        Raises:
            ExhaustedRangeError: If either range has no free port. Nothing is
                reserved in that case.
        """
        with self._lock:
            rdp = self._rdp.take_lowest()
            if rdp is None:
                raise ExhaustedRangeError("rdp")
            console = self._console.take_lowest()
            if console is None:
                self._rdp.give_back(rdp)
                raise ExhaustedRangeError("console")

        logger.debug("Allocated ports rdp=%d console=%d", rdp, console)
        return PortPair(rdp, console)

    def release_pair(self, rdp_port: int, console_port: int) -> None:
        """Return both ports to the free set. Releasing a free port is a no-op."""
        with self._lock:
            self._rdp.give_back(rdp_port)
            self._console.give_back(console_port)

        logger.debug("Released ports rdp=%d console=%d", rdp_port, console_port)

    def reserve_pair(self, rdp_port: int, console_port: int) -> PortPair:
        """Reserve a specific pair, used when adopting existing containers.

        Raises:
            InvalidConfigError: If a port lies outside its range or is already held.
        """
        with self._lock:
            for port, port_range in ((rdp_port, self._rdp), (console_port, self._console)):
                if port not in port_range:
                    raise InvalidConfigError(
                        f"Port {port} outside {port_range.name} range "
                        f"{port_range.start}-{port_range.end}"
                    )
                if port_range.is_held(port):
                    raise InvalidConfigError(
                        f"Port {port} already allocated in {port_range.name} range"
                    )
            self._rdp.take(rdp_port)
            self._console.take(console_port)

        return PortPair(rdp_port, console_port)
