#!/usr/bin/env python3
"""
Classification pipeline

NEW/RETRY record -> PROCESSING -> tokenize -> features -> classify ->
CLASSIFIED. Failures are classified by ErrorClassificationService and
recorded on the FileRecord, which decides between RETRY and ERROR.
"""

import logging
from pathlib import Path
from typing import Dict, Optional

from mediasorter.categories import CategoryFeedback
from mediasorter.classifier import Classifier, ClassificationResult
from mediasorter.error_classification import ErrorClassificationService, ErrorContext
from mediasorter.errors import ErrorKind
from mediasorter.records import FileRecord, FileStatus
from mediasorter.repository import FileRecordRepository
from mediasorter.result import Ok, Err, Result

logger = logging.getLogger(__name__)


def target_path_for(library_root: Path, category: str, filename: str) -> Path:
    """library/<CATEGORY>/<filename>"""
    return Path(library_root) / category / Path(filename).name


class ClassificationPipeline:
    """Drive FileRecords from discovery to a classified (or confirmed) state"""

    def __init__(self, repository: FileRecordRepository, classifier: Optional[Classifier] = None,
                 error_service: Optional[ErrorClassificationService] = None):
        self.repository = repository
        self.classifier = classifier or Classifier()
        self.error_service = error_service or ErrorClassificationService()

    def process(self, record: FileRecord) -> Result[ClassificationResult]:
        started = record.mark_as_processing()
        if started.is_err:
            return started
        self.repository.update(record)

        result = self.classifier.classify(record.filename)
        if result.is_err:
            self._record_failure(record, result)
            return result

        classification = result.value
        marked = record.mark_as_classified(classification.predicted_category, classification.confidence)
        if marked.is_err:
            record.record_error(marked.message, should_retry=False)
            self.repository.update(record)
            return marked

        self.repository.update(record)
        logger.info(f"Classified {record.filename}: {classification.predicted_category} "
                    f"({classification.confidence:.2f}, {classification.decision.value})")
        return Ok(classification)

    def _record_failure(self, record: FileRecord, failure: Err) -> None:
        error = failure.cause or ValueError(failure.message)
        verdict = self.error_service.classify_error(ErrorContext(
            error=error,
            operation_type='classify',
            file_hash=record.file_hash,
            path=record.original_path,
            retry_count=record.retry_count,
        ))
        status = record.record_error(failure.message, should_retry=verdict.should_retry)
        self.repository.update(record)

        if failure.kind in (ErrorKind.PARSE, ErrorKind.VALIDATION, ErrorKind.NOT_FOUND):
            logger.warning(f"Could not classify {record.filename}: {failure.message} -> {status.name}")
        else:
            logger.error(f"Classification failed for {record.filename}: {failure.message} -> {status.name}")

    def process_pending(self) -> Dict[str, Result[ClassificationResult]]:
        """Process every NEW and RETRY record; results keyed by file hash"""
        pending = self.repository.get_by_status(FileStatus.NEW) + self.repository.get_by_status(FileStatus.RETRY)
        results = {record.file_hash: self.process(record) for record in pending}

        failed = sum(1 for r in results.values() if r.is_err)
        logger.info(f"Processed {len(results)} pending files ({failed} failed)")
        return results

    def confirm(self, file_hash: str, category: str, library_root: Path) -> Result[Path]:
        """
        Accept a category for a classified file and fix its target path

        The category must pass CategoryService validation. Registered
        aliases resolve to their canonical name.
        """
        record = self.repository.get_by_hash(file_hash)
        if record is None:
            return Err(ErrorKind.NOT_FOUND, f"No file record for {file_hash}")

        categories = self.classifier.categories
        validation = categories.validate_category(category)
        if not validation.is_valid:
            return Err(ErrorKind.VALIDATION, f"Invalid category '{category}': {'; '.join(validation.issues)}")

        known = categories.get_category(validation.normalized_name)
        name = known.name if known else validation.normalized_name
        target = target_path_for(library_root, name, record.filename)

        confirmed = record.confirm_category(name, str(target))
        if confirmed.is_err:
            return confirmed
        self.repository.update(record)

        if record.suggested_category:
            categories.record_feedback(CategoryFeedback(
                filename=record.filename,
                predicted_category=record.suggested_category,
                actual_category=name,
                confidence=record.confidence,
            ))
        else:
            categories.increment_file_count(name)

        logger.info(f"Confirmed {record.filename} as {name} -> {target}")
        return Ok(target)
