from prometheus_client import Counter, Gauge, Histogram

HTTP_REQUESTS = Counter("http_requests_total", "HTTP requests", ["method", "path", "status"])
HTTP_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)

FIND_CENTERS_REQUESTS = Counter(
    "cwa_map_find_centers_request_count", "Number of public viewport searches"
)
DELIVERED_CENTERS = Counter(
    "cwa_map_delivered_centers_count", "Number of centers returned by viewport searches"
)
EMPTY_RESULTS = Counter(
    "cwa_map_empty_centers_count", "Number of viewport searches without any matching center"
)
GEOCODE_REQUESTS = Counter("cwa_map_geocode_request_count", "Number of geocoder lookups")
BUG_REPORTS = Counter("cwa_map_bug_reports_count", "Number of submitted bug reports")

TOTAL_CENTERS = Gauge("cwa_map_total_centers_count", "Total number of centers")
DCC_CENTERS = Gauge("cwa_map_dcc_centers_count", "Number of centers issuing a DCC")
INVISIBLE_CENTERS = Gauge("cwa_map_invisible_centers_count", "Number of hidden centers")
PARTNERS = Gauge("cwa_map_partners_count", "Number of operators")
PENDING_REPORTS = Gauge("cwa_map_pending_bug_reports_count", "Number of bug reports awaiting delivery")


def record_statistics(centers: dict, operators: int, pending_reports: int = 0) -> None:
    TOTAL_CENTERS.set(centers.get("total_count", 0))
    DCC_CENTERS.set(centers.get("dcc_count", 0))
    INVISIBLE_CENTERS.set(centers.get("invisible_count", 0))
    PARTNERS.set(operators)
    PENDING_REPORTS.set(pending_reports)
