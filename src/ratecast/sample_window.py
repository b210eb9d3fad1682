import threading
from datetime import datetime
from typing import Iterable

from ratecast.models import UsageSample


class SampleWindow:
    """
    SampleWindow: Is a thread-safe rolling history of usage
    samples across all accounts.

    Sources usually return overlapping batches, so samples are
    deduplicated on (provider, account, collected_at); the first
    sample seen for a key wins. Old samples are dropped via
    evict_before() to keep memory bounded and velocity estimates
    focused on recent behaviour.
    """

    def __init__(self) -> "None":
        self._lock: "threading.Lock" = threading.Lock()
        self._samples: "dict[tuple[str, str, datetime], UsageSample]" = {}

    @staticmethod
    def _make_key(sample: "UsageSample") -> "tuple[str, str, datetime]":
        return (sample.provider, sample.account, sample.collected_at)

    def add(self, samples: "Iterable[UsageSample]") -> "int":
        """
        stores samples not seen before and returns how many were new.
        """
        added = 0
        with self._lock:
            for sample in samples:
                key = self._make_key(sample)
                if key in self._samples:
                    continue
                self._samples[key] = sample
                added += 1
        return added

    def snapshot(self) -> "list[UsageSample]":
        """
        returns a copy of the stored samples in insertion order.
        """
        with self._lock:
            return list(self._samples.values())

    def evict_before(self, cutoff: "datetime") -> "int":
        """
        removes all samples collected before cutoff.
        Returns the number of evicted samples.
        """
        with self._lock:
            to_remove = [
                k for k, s in self._samples.items() if s.collected_at < cutoff
            ]
            for k in to_remove:
                del self._samples[k]
            return len(to_remove)

    def __len__(self) -> "int":
        with self._lock:
            return len(self._samples)
