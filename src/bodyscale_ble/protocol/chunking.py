"""Multi-packet payload reassembly for BLE scale protocols."""

from __future__ import annotations

import logging

from ..exceptions import ProtocolError
from .codec import byte_in_hex

_LOGGER = logging.getLogger(__name__)


class ReassemblyBuffer:
    """Assembles a logical record that the scale splits over several frames.

    Vendors announce fragments with a (total_count, current_index) pair:
    - a "first" fragment starts a new buffer (an unfinished one is dropped)
    - following fragments append their payload slice
    - the "last" fragment completes the record, which is handed back once
      and the buffer is reset

    Which index counts as first or last depends on the vendor, so callers
    decide and pass flags.
    """

    def __init__(self, name: str = "record"):
        """Initialize an empty buffer.

        Args:
            name: Label used in log messages
        """
        self.name = name
        self._data: bytearray | None = None
        self.fragments_received = 0

    def feed(self, payload: bytes, first: bool, last: bool) -> bytes | None:
        """Add one fragment payload.

        Args:
            payload: Fragment bytes with the vendor header already stripped
            first: True if this fragment starts a new record
            last: True if this fragment completes the record

        Returns:
            The assembled record when `last` is set, otherwise None
        """
        if first:
            if self._data is not None:
                _LOGGER.debug("Discarding unfinished %s (%d bytes)", self.name, len(self._data))
            self._data = bytearray(payload)
            self.fragments_received = 1
        elif self._data is None:
            _LOGGER.warning(
                "Got %s fragment without its first part, discarding [%s]",
                self.name,
                byte_in_hex(payload),
            )
            return None
        else:
            self._data.extend(payload)
            self.fragments_received += 1

        if not last:
            return None
        return self.take()

    def take(self) -> bytes:
        """Return the buffered bytes and reset.

        Raises:
            ProtocolError: If no record is being assembled
        """
        if self._data is None:
            raise ProtocolError(f"No {self.name} in progress")
        data = bytes(self._data)
        self.reset()
        return data

    def reset(self) -> None:
        self._data = None
        self.fragments_received = 0

    @property
    def in_progress(self) -> bool:
        """Check if a record has been started but not completed."""
        return self._data is not None

    def __len__(self) -> int:
        return 0 if self._data is None else len(self._data)
