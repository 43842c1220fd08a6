"""Bounded, stable viewport search over centers.

Every center carries an immutable ``ranking`` drawn uniformly from [0, 1).
For a viewport matching ``C`` centers the search returns the rows with
``ranking <= min(1, N / C)``: a Bernoulli sample of expected size ``N``
that changes incrementally as the viewport is panned or zoomed.
"""
import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from . import centers_store, metrics
from .config import settings
from .domain import Bounds, CenterFilter
from .models import Center, utcnow

logger = logging.getLogger("centers.sampler")


def sampling_fraction(count: int, limit: int) -> float:
    if count <= 0:
        return 0.0
    return min(1.0, limit / count)


def find_by_bounds(
    db: Session,
    bounds: Bounds,
    filters: CenterFilter | None = None,
    limit: int | None = None,
) -> list[Center]:
    filters = filters or CenterFilter()
    limit = settings.SAMPLER_LIMIT if limit is None else limit
    freshness = timedelta(weeks=settings.FRESHNESS_HORIZON_WEEKS)
    predicate = centers_store.bounds_predicate(bounds, filters, utcnow(), freshness)

    metrics.FIND_CENTERS_REQUESTS.inc()
    count = centers_store.count_matching(db, predicate)
    if count == 0:
        metrics.EMPTY_RESULTS.inc()
        return []

    fraction = sampling_fraction(count, limit)
    result = centers_store.find_matching(db, predicate, fraction)
    logger.debug("viewport matched %d centers, fraction %.4f, returned %d", count, fraction, len(result))
    metrics.DELIVERED_CENTERS.inc(len(result))
    return result
