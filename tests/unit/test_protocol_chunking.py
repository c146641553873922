"""Test multi-packet reassembly."""

import pytest

from bodyscale_ble.exceptions import ProtocolError
from bodyscale_ble.protocol.chunking import ReassemblyBuffer


class TestReassemblyBuffer:
    """Test multi-packet reassembly."""

    def test_in_order_fragments_complete_once(self):
        """Fragments 1..N yield the concatenated payload exactly once."""
        buffer = ReassemblyBuffer()
        fragments = [b"\x01\x02", b"\x03", b"\x04\x05\x06"]
        results = [
            buffer.feed(fragment, first=index == 0, last=index == len(fragments) - 1)
            for index, fragment in enumerate(fragments)
        ]
        assert results[:-1] == [None, None]
        assert results[-1] == b"\x01\x02\x03\x04\x05\x06"
        assert not buffer.in_progress
        assert len(buffer) == 0

    def test_truncated_sequence_yields_nothing(self):
        buffer = ReassemblyBuffer()
        assert buffer.feed(b"\x01", first=True, last=False) is None
        assert buffer.feed(b"\x02", first=False, last=False) is None
        assert buffer.in_progress
        assert buffer.fragments_received == 2

    def test_fragment_without_first_is_dropped(self):
        buffer = ReassemblyBuffer()
        assert buffer.feed(b"\x02", first=False, last=True) is None
        assert not buffer.in_progress

    def test_new_first_fragment_discards_unfinished(self):
        buffer = ReassemblyBuffer()
        buffer.feed(b"\xaa", first=True, last=False)
        assert buffer.feed(b"\x01", first=True, last=False) is None
        assert buffer.feed(b"\x02", first=False, last=True) == b"\x01\x02"

    def test_single_fragment_record(self):
        buffer = ReassemblyBuffer()
        assert buffer.feed(b"\x01\x02", first=True, last=True) == b"\x01\x02"

    def test_take_without_record_raises(self):
        with pytest.raises(ProtocolError, match="No measurement in progress"):
            ReassemblyBuffer("measurement").take()
