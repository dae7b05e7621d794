# -*- coding: utf-8 -*-

"""
Registry of explicitly known port identifiers.

While the registry holds at least one identifier it is authoritative: only
the registered identifiers are reported as available and device discovery
is skipped. An empty registry falls back to discovery.
"""
import logging
import os
import threading

from typing import Callable
from typing import Iterable
from typing import List
from typing import Mapping
from typing import Optional

from .backend import default_backend

ENVIRON_KEY = 'SERIALIO_PORTS'

log = logging.getLogger('serialio.registry')

Discover = Callable[[], Iterable[str]]


def _discover_with_default_backend() -> List[str]:
    return default_backend.list_identifiers()


class PortRegistry:
    """
    Thread-safe set of registered port identifiers.

    Args:
        ports: identifiers to register up front
        discover: callable listing identifiers when nothing is registered
            (default: the default backend's ``list_identifiers``)
    """

    def __init__(
            self,
            ports: Iterable[str] = (),
            discover: Optional[Discover] = None
        ):
        self._lock = threading.Lock()
        self._ports = set(ports)
        self._discover = discover if discover is not None else _discover_with_default_backend

    @classmethod
    def from_environ(
            cls,
            environ: Optional[Mapping[str, str]] = None,
            discover: Optional[Discover] = None
        ) -> 'PortRegistry':
        """
        Build a registry seeded from ``SERIALIO_PORTS``.

        Entries are separated by ``os.pathsep``; blank entries are ignored.
        """
        if environ is None:
            environ = os.environ
        value = environ.get(ENVIRON_KEY, '')
        ports = [p for p in value.split(os.pathsep) if p.strip()]
        if ports:
            log.debug("Seeding port registry from %s: %s", ENVIRON_KEY, ports)
        return cls(ports, discover)

    def __contains__(self, port_id: str) -> bool:
        with self._lock:
            return port_id in self._ports

    def __len__(self) -> int:
        with self._lock:
            return len(self._ports)

    @property
    def is_authoritative(self) -> bool:
        """True while explicit identifiers override discovery"""
        with self._lock:
            return bool(self._ports)

    def available(self) -> List[str]:
        """Registered identifiers, or discovered ones if none are registered"""
        with self._lock:
            if self._ports:
                return sorted(self._ports)
        return sorted(set(self._discover()))

    def add(self, *port_ids: str) -> List[str]:
        """Register identifiers; already present ones are left alone"""
        with self._lock:
            self._ports.update(port_ids)
        log.debug("Registered ports: %s", port_ids)
        return self.available()

    def reset(self) -> List[str]:
        """Forget every registered identifier and return to discovery"""
        with self._lock:
            self._ports.clear()
        log.debug("Port registry reset, using discovery")
        return self.available()


default_registry = PortRegistry.from_environ()


def available_ports() -> List[str]:
    return default_registry.available()


def add_ports(*port_ids: str) -> List[str]:
    return default_registry.add(*port_ids)


def reset_ports() -> List[str]:
    return default_registry.reset()
