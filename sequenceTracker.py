import math

from normalize import Packet


class SequenceTracker:
    """
    Holds every packet received during a recovery run, keyed by sequence,
    and tracks the lowest and highest sequence seen so far.
    """
    def __init__(self):
        self._packets: dict[int, Packet] = {}
        self.min_observed = math.inf
        self.max_observed = 0

    def insert(self, packet: Packet) -> bool:
        """
        Stores the packet unless its sequence is already known.
        Returns True when the sequence was new.
        """
        seq = packet.sequence
        if seq in self._packets:
            return False

        self._packets[seq] = packet
        self.min_observed = min(self.min_observed, seq)
        self.max_observed = max(self.max_observed, seq)
        return True

    def contains(self, sequence: int) -> bool:
        return sequence in self._packets

    def range(self) -> tuple:
        return self.min_observed, self.max_observed

    def size(self) -> int:
        return len(self._packets)

    def is_empty(self) -> bool:
        return not self._packets

    def sequences(self) -> list[int]:
        return sorted(self._packets)

    def sorted_packets(self) -> list[Packet]:
        return [self._packets[seq] for seq in sorted(self._packets)]

    def __len__(self):
        return len(self._packets)

    def __contains__(self, sequence):
        return sequence in self._packets
