# gateway.py - reassembles segmented transactions and pushes each bundle at most once
import logging

from dispatcher import PushDispatcher
from errors import DecodeError, HashMismatch, IncompleteBundle, InternalInconsistency, MissingField, RelayError
from rawtx import txid_of
from segment_store import Bundle, Segment, SegmentStorage
import z85codec

logger = logging.getLogger(__name__)


class Gateway:
    """
    Reassembly engine. Owns references to a segment storage and a push
    dispatcher; all bundle state lives in the storage.

    Completion detection and the in-flight claim run under the storage's
    per-bundle lock, so a bundle is pushed at most once even when its last
    segment arrives on several threads at the same time. The push itself runs
    outside the lock; later arrivals for a claimed bundle return at once.
    """

    def __init__(self, storage: SegmentStorage, dispatcher: PushDispatcher,
                 evict_on_mismatch: bool = False):
        self.storage = storage
        self.dispatcher = dispatcher
        self.evict_on_mismatch = evict_on_mismatch

    def process_segment(self, segment: Segment) -> bool:
        """
        Store a segment and, once its bundle is complete, rebuild, verify and
        push the transaction.

        Returns True for stored partial progress, for redelivery of an already
        processed bundle or of one whose push is under way, and for a
        successful push. Returns False when the completed bundle failed to
        build or verify, or when the push failed.
        Raises MissingField or DecodeError for a malformed segment.
        """
        validate_segment(segment)
        bundle_id = segment.bundle_id

        # a retransmission must not wait behind a push already under way
        if self.storage.is_in_flight(bundle_id):
            logger.info("Bundle %s is being pushed. Skipped segment %s-%d",
                        bundle_id, bundle_id, segment.index)
            return True

        with self.storage.bundle_lock(bundle_id):
            if self.storage.has_processed_tx(bundle_id):
                logger.info("Bundle %s already processed. Skipped segment %s-%d",
                            bundle_id, bundle_id, segment.index)
                return True
            if self.storage.is_in_flight(bundle_id):
                return True

            self.storage.add_segment(segment)
            logger.debug("Stored segment %s-%d", bundle_id, segment.index)

            if not self.storage.has_all_segments(bundle_id):
                return True

            bundle = self.storage.get_bundle(bundle_id)
            if bundle is None:
                logger.error("%s", InternalInconsistency(f"bundle {bundle_id} vanished from storage"))
                return False
            # claimed under the lock: exactly one caller builds and pushes
            self.storage.mark_in_flight(bundle_id)

        try:
            return self._finalize(bundle)
        finally:
            self.storage.clear_in_flight(bundle_id)

    def _finalize(self, bundle: Bundle) -> bool:
        bundle_id = bundle.bundle_id
        logger.info("Trying to push bundle %s", bundle_id)
        try:
            raw_tx = self.build_tx(bundle)
        except HashMismatch as e:
            logger.warning("Rejected bundle %s: %s", bundle_id, e)
            if self.evict_on_mismatch:
                self.storage.delete_bundle(bundle_id)
            return False
        except RelayError as e:
            logger.warning("Unable to rebuild bundle %s: %s", bundle_id, e)
            return False

        try:
            pushed = self.dispatcher.push(raw_tx, bundle.network)
        except RelayError as e:
            logger.error("Push of bundle %s failed: %s", bundle_id, e)
            pushed = False

        if pushed:
            logger.info("Successfully pushed tx %s (%s)", bundle.txid, bundle_id)

        # recorded whatever the push outcome: duplicates must not re-push
        with self.storage.bundle_lock(bundle_id):
            self.storage.add_processed_tx(bundle_id, bundle.txid)
            self.storage.delete_bundle(bundle_id)
        return pushed

    def build_tx(self, bundle: Bundle) -> str:
        """
        Concatenate the bundle's payloads in index order, decode them (z85 or
        hex), parse the transaction and check its txid against the expected
        one. Returns the raw transaction in hex.

        Raises IncompleteBundle, DecodeError or HashMismatch.
        """
        if bundle.total <= 0 or len(bundle.segments) != bundle.total:
            raise IncompleteBundle(
                f"bundle {bundle.bundle_id} holds {len(bundle.segments)} of {bundle.total} segments")
        try:
            serialized = "".join(bundle.segments[i] for i in range(bundle.total))
        except KeyError as e:
            raise IncompleteBundle(f"bundle {bundle.bundle_id} is missing segment {e.args[0]}") from e

        expected = expected_txid(bundle.txid)
        raw = z85codec.text_to_bytes(serialized)
        computed = txid_of(raw)
        if computed != expected:
            raise HashMismatch(expected, computed)
        return raw.hex()


def expected_txid(h: str) -> str:
    if z85codec.is_z85(h):
        return z85codec.decode(h).hex()
    return h.lower()


def validate_segment(segment: Segment) -> None:
    if not segment.bundle_id:
        raise MissingField("i")
    if segment.index < 0:
        raise DecodeError(f"Parameter c must be non-negative: {segment.index}")
    if not segment.payload:
        raise MissingField("t")
    if segment.index == 0:
        if not segment.total:
            raise MissingField("s")
        if not segment.txid:
            raise MissingField("h")
