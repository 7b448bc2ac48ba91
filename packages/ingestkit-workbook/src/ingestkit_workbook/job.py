"""Queue-job adapter.

:func:`run_ingestion_job` is the body of one queue job: it fetches the
uploaded workbook from the object store, runs :class:`WorkbookRouter`, and
returns the small :class:`JobResult` summary.  Whole-job retries belong to
the queue; only individual store operations are retried here.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.models import JobResult
from ingestkit_workbook.protocols import ObjectStore, ProgressCallback
from ingestkit_workbook.retry import get_with_retry
from ingestkit_workbook.router import WorkbookRouter

logger = logging.getLogger("ingestkit_workbook")


class IngestionJob(BaseModel):
    """Payload of one ingestion job."""

    file_key: str = Field(min_length=1)
    document_id: str = Field(min_length=1)
    file_name: str | None = None
    output_prefix: str | None = None

    @property
    def resolved_file_name(self) -> str:
        return self.file_name or self.file_key.rsplit("/", 1)[-1]

    @property
    def resolved_output_prefix(self) -> str:
        return self.output_prefix or f"processed/{self.document_id}"


def run_ingestion_job(
    job: IngestionJob,
    store: ObjectStore,
    config: WorkbookProcessorConfig | None = None,
    on_progress: ProgressCallback | None = None,
) -> JobResult:
    """Fetch ``job.file_key``, ingest it, and return the job summary.

    Args:
        job: Source key, document id and optional naming overrides.
        store: Object store holding the upload and receiving the output.
        config: Pipeline configuration. Uses defaults when *None*.
        on_progress: Optional ``(percent, message)`` callback.

    Returns:
        The :class:`JobResult` reported back to the queue.

    Raises:
        WorkbookIngestException: On any fatal error, which marks the job failed.
    """
    config = config or WorkbookProcessorConfig()
    router = WorkbookRouter(store, config)
    logger.info("Job %s: fetching %s", job.document_id, job.file_key)

    stream = get_with_retry(store, job.file_key, config)
    try:
        result = router.process(
            stream,
            file_name=job.resolved_file_name,
            output_prefix=job.resolved_output_prefix,
            on_progress=on_progress,
            source_uri=job.file_key,
        )
    finally:
        stream.close()

    summary = result.to_job_result()
    logger.info(
        "Job %s done: %d rows, %d chunks, %d images (%d failed)",
        job.document_id,
        summary.total_rows,
        summary.total_chunks,
        summary.images_processed,
        summary.images_failed,
    )
    return summary
