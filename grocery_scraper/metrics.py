"""Prometheus metrics for the grocery scraper."""

from prometheus_client import Counter, Histogram, Info

# Application info
app_info = Info("grocery_scraper", "Grocery catalog scraper info")
app_info.info({"version": "0.1.0", "name": "grocery-catalog-scraper"})

# Page metrics
catalog_pages_total = Counter(
    "catalog_pages_total",
    "Total number of catalog pages processed",
    ["store", "status"],
)

catalog_page_duration_seconds = Histogram(
    "catalog_page_duration_seconds",
    "Time spent on a catalog page (navigation to extraction)",
    ["store"],
    buckets=[1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

# Product metrics
products_extracted_total = Counter(
    "products_extracted_total",
    "Total number of products extracted",
    ["store", "category"],
)

# Anti-bot metrics
challenges_detected_total = Counter(
    "challenges_detected_total",
    "Total number of access challenges detected",
    ["store", "reason"],
)

human_solves_total = Counter(
    "human_solves_total",
    "Total number of human-assisted challenge solves",
    ["store", "outcome"],
)

scrape_runs_aborted_total = Counter(
    "scrape_runs_aborted_total",
    "Total number of scrape runs terminated early",
    ["store", "reason"],
)


def record_page(store: str, status: str, duration: float):
    """Record a processed catalog page."""
    catalog_pages_total.labels(store=store, status=status).inc()
    catalog_page_duration_seconds.labels(store=store).observe(duration)


def record_products(store: str, category: str, count: int):
    """Record extracted products."""
    if count > 0:
        products_extracted_total.labels(store=store, category=category).inc(count)


def record_challenge(store: str, reason: str):
    """Record a detected challenge. Only the signal kind is used as label."""
    kind = reason.split(":", 1)[0] if reason else "unknown"
    challenges_detected_total.labels(store=store, reason=kind).inc()


def record_human_solve(store: str, solved: bool):
    """Record the outcome of a human solve attempt."""
    outcome = "solved" if solved else "timeout"
    human_solves_total.labels(store=store, outcome=outcome).inc()


def record_run_aborted(store: str, reason: str):
    """Record an aborted run."""
    scrape_runs_aborted_total.labels(store=store, reason=reason).inc()
