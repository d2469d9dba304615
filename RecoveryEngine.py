"""
================================================================================
RECOVERY ENGINE: GAP DETECTION & RE-REQUEST PROTOCOL
================================================================================
This module rebuilds the complete, ordered packet sequence [1, known_total]
from a feed server that may drop, reorder or truncate its bulk transfer.

Protocol stages, in order:

1. BULK_FETCH:
   - One "send all" request. Every frame that arrives before the server
     closes the connection goes into the SequenceTracker.
   - Failing to reach the server at all aborts the run. A fault after some
     packets arrived keeps those packets and moves on.

2. GAP_FILL:
   - Gaps are the holes inside the observed [min, max] range.
   - Each pass re-requests every gap (ascending) with a single-packet
     request, then recomputes the gaps. A failed request leaves its gap
     open for the next pass; it never stops the pass.
   - At most `max_attempts` passes, fewer once all known_total packets are
     held or no gap is left.

3. BOUNDARY_EXTEND_LOW / BOUNDARY_EXTEND_HIGH:
   - Walk below the observed minimum towards 1, then above the observed
     maximum towards known_total, one sequence at a time.
   - The first failed request ends the walk. A timeout and a missing
     sequence look the same from here and are treated the same.

4. DONE:
   - The store's packets, sorted by sequence, are handed back as a
     RecoveryResult for the persistence layer.
================================================================================
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from errors import ConfigurationError, MalformedFrameError, RequestTimeoutError, TransportError
from gapAnalyzer import compute_gaps, format_ranges, missing_from_total
from normalize import MAX_ENCODABLE_SEQUENCE, Packet, RequestKind
from sequenceTracker import SequenceTracker
from transport import TransportSession

logger = logging.getLogger(__name__)


class RecoveryState(Enum):
    BULK_FETCH = "BULK_FETCH"
    GAP_FILL = "GAP_FILL"
    BOUNDARY_EXTEND_LOW = "BOUNDARY_EXTEND_LOW"
    BOUNDARY_EXTEND_HIGH = "BOUNDARY_EXTEND_HIGH"
    DONE = "DONE"


class RecoveryResult(BaseModel):
    packets: list[Packet]
    known_total: int
    attempts: int
    missing: list[int]

    @property
    def complete(self) -> bool:
        return not self.missing


class RecoveryController:
    """
    Drives a TransportSession through the recovery protocol and owns the
    SequenceTracker holding everything received during the run.
    """
    def __init__(
        self,
        transport: TransportSession,
        known_total: int = 14,
        request_timeout_ms: int = 2000,
        max_attempts: int = 5,
        gap_concurrency: int = 1,
        store: Optional[SequenceTracker] = None,
    ):
        if not 1 <= known_total <= MAX_ENCODABLE_SEQUENCE:
            raise ConfigurationError(
                f"known_total must be between 1 and {MAX_ENCODABLE_SEQUENCE}, got {known_total}"
            )
        self.transport = transport
        self.known_total = known_total
        self.request_timeout_ms = request_timeout_ms
        self.max_attempts = max_attempts
        self.gap_concurrency = gap_concurrency
        self.store = store if store is not None else SequenceTracker()

        self.state = RecoveryState.BULK_FETCH
        self.attempts = 0

    async def run(self) -> RecoveryResult:
        """
        Runs every protocol stage once, in order.
        Only a failure to perform the initial bulk transfer propagates.
        """
        self.state = RecoveryState.BULK_FETCH
        await self.bulk_fetch()

        self.state = RecoveryState.GAP_FILL
        await self.fill_gaps()

        self.state = RecoveryState.BOUNDARY_EXTEND_LOW
        await self.extend_low()

        self.state = RecoveryState.BOUNDARY_EXTEND_HIGH
        await self.extend_high()

        self.state = RecoveryState.DONE
        return self.build_result()

    async def bulk_fetch(self) -> int:
        """Streams the "send all" transfer into the store. Returns packets received."""
        received = 0
        try:
            async for packet in self.transport.send_and_await_all(RequestKind.SEND_ALL):
                received += 1
                if self.accept(packet):
                    logger.info("Received sequence: %d", packet.sequence)
        except MalformedFrameError as e:
            logger.warning("Bulk transfer ended with a malformed frame: %s", e)
        except TransportError as e:
            if received == 0:
                raise
            logger.warning("Bulk transfer interrupted after %d packets: %s", received, e)

        logger.info("Received sequences: %s", ", ".join(map(str, self.store.sequences())))
        logger.info("Total unique sequences received: %d", self.store.size())
        return received

    async def fill_gaps(self) -> set[int]:
        """
        Re-requests the holes inside the observed range, pass by pass.
        Returns the gaps still open when the loop stops.
        """
        gaps = compute_gaps(self.store)
        logger.info("Potentially missed sequences: %s", format_ranges(gaps))

        while self.store.size() < self.known_total and self.attempts < self.max_attempts:
            if not gaps:
                break
            await self._fill_pass(sorted(gaps))
            gaps = compute_gaps(self.store)
            self.attempts += 1
            logger.info("Attempt %d: Missing sequences: %s", self.attempts, format_ranges(gaps))

        return gaps

    async def _fill_pass(self, gaps: list[int]) -> None:
        if self.gap_concurrency <= 1:
            for seq in gaps:
                await self.request_packet(seq)
            return

        semaphore = asyncio.Semaphore(self.gap_concurrency)

        async def bounded(seq: int) -> bool:
            async with semaphore:
                return await self.request_packet(seq)

        await asyncio.gather(*(bounded(seq) for seq in gaps))

    async def extend_low(self) -> None:
        """Probes downwards from the observed minimum until sequence 1 or a failure."""
        if self.store.is_empty():
            # min_observed is still the sentinel; there is nothing to walk down from
            logger.info("No packets held; skipping lower boundary discovery")
            return

        while self.store.min_observed > 1:
            previous = self.store.min_observed - 1
            if not await self.request_packet(previous):
                logger.info("sequence %d is not found.", previous)
                break
            logger.info("Successfully retrieved previous sequence: %d", previous)

        logger.info("No more previous sequences found.")

    async def extend_high(self) -> None:
        """Probes upwards from the observed maximum until known_total or a failure."""
        while self.store.max_observed < self.known_total:
            following = self.store.max_observed + 1
            if not await self.request_packet(following):
                logger.info("sequence %d is not found.", following)
                break
            logger.info("Successfully retrieved next sequence: %d", following)

        logger.info("No more sequences found.")

    async def request_packet(self, sequence: int) -> bool:
        """
        Single-packet request that never raises for network or frame faults.
        Returns True once the requested sequence is held by the store.
        """
        try:
            packet = await self.transport.send_and_await_one(
                RequestKind.SEND_ONE, sequence, self.request_timeout_ms
            )
        except (RequestTimeoutError, TransportError, MalformedFrameError) as e:
            logger.warning("Failed to retrieve sequence %d: %s", sequence, e)
            return False

        if packet.sequence != sequence:
            logger.warning("Asked for sequence %d but received %d", sequence, packet.sequence)
        if self.accept(packet):
            logger.info("Received missing sequence: %d", packet.sequence)
        return self.store.contains(sequence)

    def accept(self, packet: Packet) -> bool:
        """
        Inserts a packet whose sequence lies in [1, known_total].
        Anything outside that range is logged and dropped.
        Returns True when the store gained a new sequence.
        """
        if not 1 <= packet.sequence <= self.known_total:
            logger.warning(
                "Dropping packet with out-of-range sequence %d (expected 1-%d)",
                packet.sequence, self.known_total,
            )
            return False
        return self.store.insert(packet)

    def build_result(self) -> RecoveryResult:
        packets = self.store.sorted_packets()
        missing = sorted(missing_from_total(self.store, self.known_total))

        logger.debug("Final sequence check: %s", ", ".join(str(p.sequence) for p in packets))
        logger.info("Total sequences received: %d of %d", len(packets), self.known_total)
        if missing:
            logger.warning("Unresolved sequences: %s", format_ranges(missing))

        return RecoveryResult(
            packets=packets,
            known_total=self.known_total,
            attempts=self.attempts,
            missing=missing,
        )
