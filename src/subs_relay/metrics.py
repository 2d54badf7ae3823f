from prometheus_client import Counter, Histogram

REQ_LATENCY = Histogram("bgsubs_request_seconds", "Request latency seconds", ["route"])  # noqa: N816
SEARCH_COUNT = Counter("bgsubs_search_total", "Subtitle list requests", ["media_type"])  # noqa: N816
DOWNLOAD_COUNT = Counter("bgsubs_download_total", "Subtitle downloads", ["format", "source"])  # noqa: N816
PROVIDER_CALLS = Counter("bgsubs_provider_calls_total", "Provider search calls", ["provider", "outcome"])  # noqa: N816
PROXY_OUTCOMES = Counter("bgsubs_proxy_total", "Proxy request outcomes", ["outcome"])  # noqa: N816
