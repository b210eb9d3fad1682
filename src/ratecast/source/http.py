from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from ratecast.models import UsageSample

logger = structlog.get_logger()

SAMPLES_PATH = "/usage/samples"


def parse_timestamp(value: "Any") -> "datetime | None":
    """
    parses an ISO-8601 string or unix seconds into an aware UTC
    datetime. Naive timestamps are assumed to be UTC.
    """
    if value is None or value == "":
        return None

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"timestamp out of range: {value!r}") from exc

    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    raise ValueError(f"unsupported timestamp: {value!r}")


def parse_sample(row: "dict[str, Any]") -> "UsageSample":
    """
    maps a telemetry row into a UsageSample. Raises KeyError,
    TypeError or ValueError for malformed rows.
    """
    collected_at = parse_timestamp(row["collected_at"])
    if collected_at is None:
        raise ValueError("collected_at is required")

    return UsageSample(
        provider=str(row["provider"]),
        account=str(row["account"]),
        used_percent=float(row["used_percent"]),
        collected_at=collected_at,
        resets_at=parse_timestamp(row.get("resets_at")),
    )


class HttpSampleSource:
    """
    HttpSampleSource implements the SampleSource protocol for a
    telemetry store exposed over HTTP. It pages through the
    samples endpoint and skips rows it cannot parse.
    """

    def __init__(
        self,
        base_url: "str",
        token: "str" = "",
        name: "str" = "http",
        timeout: "float" = 10.0,
    ) -> "None":
        self._base_url = base_url.rstrip("/")
        self._name = name
        headers: "dict[str, str]" = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client: "httpx.AsyncClient" = httpx.AsyncClient(
            timeout=timeout,
            headers=headers,
        )

    @property
    def name(self) -> "str":
        return self._name

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def fetch_samples(self, since: "datetime") -> "list[UsageSample]":
        """
        fetches all samples collected since the given time,
        following pagination until no more pages are available.
        """
        samples: "list[UsageSample]" = []
        next_page = ""

        while True:
            params: "dict[str, str | int]" = {"since": int(since.timestamp())}
            if next_page:
                params["page"] = next_page

            url = f"{self._base_url}{SAMPLES_PATH}"
            logger.debug("source_fetch_samples", source=self._name, url=url)
            resp = await self._client.get(url, params=params)

            if resp.status_code in (403, 404):
                logger.warning(
                    "source_samples_unavailable",
                    source=self._name,
                    status=resp.status_code,
                )
                return samples
            resp.raise_for_status()

            data = resp.json()
            rows = data.get("data", []) if isinstance(data, dict) else None
            if not isinstance(rows, list):
                logger.warning(
                    "source_samples_unexpected_body",
                    source=self._name,
                    body_type=type(data).__name__,
                )
                return samples

            for row in rows:
                try:
                    samples.append(parse_sample(row))
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning(
                        "source_sample_malformed",
                        source=self._name,
                        error=str(exc),
                    )

            if not data.get("has_more"):
                break

            next_page = data.get("next_page", "")
            if not next_page:
                break

        logger.debug(
            "source_fetch_done",
            source=self._name,
            sample_count=len(samples),
        )
        return samples
