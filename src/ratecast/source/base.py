from datetime import datetime
from typing import Protocol, Sequence

from ratecast.models import UsageSample


class SampleSource(Protocol):
    """
    SampleSource stands as a common protocol that all
    telemetry backends must satisfy.

    Sources return the usage samples collected since a
    point in time, already mapped into UsageSample objects.
    """

    @property
    def name(self) -> "str": ...

    async def fetch_samples(
        self,
        since: "datetime",
    ) -> "Sequence[UsageSample]": ...

    async def close(self) -> "None": ...
