from cvpipeline.app.models.source_document import SourceDocument
from cvpipeline.app.models.processing_job import JobStatus, ProcessingJob, TERMINAL_STATUSES
from cvpipeline.app.models.processing_session import ProcessingSession
