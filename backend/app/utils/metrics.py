"""Prometheus metrics for ingestion, retrieval and generation."""

from prometheus_client import Counter, Histogram

ingestion_documents_total = Counter(
    "ingestion_documents_total",
    "Documents that finished the detached ingestion phase",
    ["outcome"],
)

ingestion_chunks_total = Counter(
    "ingestion_chunks_total",
    "Chunks embedded and persisted",
)

retrieval_path_total = Counter(
    "retrieval_path_total",
    "Retrieval calls by the search path that served them",
    ["path"],
)

retrieval_low_confidence_total = Counter(
    "retrieval_low_confidence_total",
    "Retrievals where no chunk cleared the threshold",
    ["reason"],
)

generation_tokens_total = Counter(
    "generation_tokens_total",
    "Generation tokens consumed",
    ["kind"],
)

study_chat_latency_ms = Histogram(
    "study_chat_latency_ms",
    "Chat turn latency in milliseconds",
    ["outcome"],
    buckets=[100, 250, 500, 1000, 2000, 4000, 8000, 16000, 32000],
)


class PrometheusStudyMetrics:
    """Prometheus-based study assistant metrics."""

    def record_ingestion(self, outcome: str, chunks: int = 0) -> None:
        ingestion_documents_total.labels(outcome=outcome).inc()
        if chunks:
            ingestion_chunks_total.inc(chunks)

    def record_retrieval_path(self, path: str) -> None:
        retrieval_path_total.labels(path=path).inc()

    def record_low_confidence(self, reason: str) -> None:
        retrieval_low_confidence_total.labels(reason=reason).inc()

    def record_tokens(self, input_tokens: int, output_tokens: int) -> None:
        generation_tokens_total.labels(kind="input").inc(input_tokens)
        generation_tokens_total.labels(kind="output").inc(output_tokens)

    def record_chat_latency(self, outcome: str, latency_ms: float) -> None:
        study_chat_latency_ms.labels(outcome=outcome).observe(latency_ms)


metrics = PrometheusStudyMetrics()
