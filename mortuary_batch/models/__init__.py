"""ORM models for batch jobs, per-case results and schedules."""

from mortuary_batch.models.batch import BatchItemModel, BatchJobModel, JobScheduleModel

__all__ = ["BatchItemModel", "BatchJobModel", "JobScheduleModel"]
