from dataclasses import dataclass, field
import threading

import zope.interface

from ..interfaces import ICredentialStore


@zope.interface.implementer(ICredentialStore)
@dataclass
class MemoryCredentialStore:
    """
    Keep credentials in a dict, for tests and single process apps.

    None of the methods fail.
    """

    credentials: dict = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, shop):
        with self.lock:
            return self.credentials.get(shop)

    def update(self, shop, credential):
        with self.lock:
            self.credentials[shop] = credential

    def delete(self, shop):
        with self.lock:
            self.credentials.pop(shop, None)
