"""Ready-made jobs for the traffic reports the store is built for."""
from typing import Iterable, TypedDict

from .executor import AggregationResult
from .jobs import (
    AggregateKind,
    AggregationJob,
    FieldKey,
    OrderBy,
    StatusClassKey,
    StatusIn,
    TimeBucketKey,
)

MINUTE_PREFIX = len("2025-02-25 13:00")


class StatusRates(TypedDict):
    rate_2xx: float
    rate_4xx: float
    rate_5xx: float


def total_requests() -> AggregationJob:
    return AggregationJob(kind=AggregateKind.COUNT)


def status_distribution() -> AggregationJob:
    return AggregationJob(key=FieldKey("status_code"), order_by=OrderBy.KEY_ASC)


def status_class_distribution() -> AggregationJob:
    return AggregationJob(key=StatusClassKey(), order_by=OrderBy.KEY_ASC)


def top_pages(k: int = 10) -> AggregationJob:
    return AggregationJob(kind=AggregateKind.TOP_K, key=FieldKey("url"), k=k)


def user_agent_frequency(limit: int = None) -> AggregationJob:
    return AggregationJob(key=FieldKey("user_agent"), order_by=OrderBy.COUNT_DESC, limit=limit)


def volume_by_time(prefix_length: int = MINUTE_PREFIX) -> AggregationJob:
    return AggregationJob(key=TimeBucketKey(prefix_length), order_by=OrderBy.KEY_ASC)


def repeat_failures(threshold: int = 3, statuses: Iterable[int] = (404, 500)) -> AggregationJob:
    """Clients with more than `threshold` requests answered with one of `statuses`."""
    return AggregationJob(
        key=FieldKey("client_address"),
        where=StatusIn(statuses),
        having_gt=threshold,
        order_by=OrderBy.COUNT_DESC,
    )


def distinct_clients_per_page(limit: int = None) -> AggregationJob:
    return AggregationJob(
        kind=AggregateKind.DISTINCT_COUNT,
        key=FieldKey("url"),
        distinct_field="client_address",
        order_by=OrderBy.COUNT_DESC,
        limit=limit,
    )


def status_rates(result: AggregationResult) -> StatusRates:
    """2xx / 4xx / 5xx shares from a status_class_distribution result."""
    counted = {group: result.groups.get(group, 0) for group in ("2xx", "4xx", "5xx")}
    total_counted_status = sum(counted.values())
    if total_counted_status == 0:
        return {"rate_2xx": 0.0, "rate_4xx": 0.0, "rate_5xx": 0.0}
    return {
        "rate_2xx": round(counted["2xx"] / total_counted_status, 4),
        "rate_4xx": round(counted["4xx"] / total_counted_status, 4),
        "rate_5xx": round(counted["5xx"] / total_counted_status, 4),
    }


PRESETS = {
    "total": total_requests,
    "status-distribution": status_distribution,
    "status-classes": status_class_distribution,
    "top-pages": top_pages,
    "user-agents": user_agent_frequency,
    "volume": volume_by_time,
    "repeat-failures": repeat_failures,
    "distinct-clients": distinct_clients_per_page,
}
