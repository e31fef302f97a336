"""Link every journal committed by an import job to one tag for that job."""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Sequence

from importstore.config import DEFAULT_TAG_LABEL, DEFAULT_TAG_MODE
from importstore.database.models import Tag
from importstore.storage.errors import TagCreationError
from importstore.storage.interfaces import JobStatusSink, TagStore

logger = logging.getLogger(__name__)


class TaggingStage:
    def __init__(
        self,
        tags: TagStore,
        jobs: JobStatusSink,
        label_template: str = DEFAULT_TAG_LABEL,
        tag_mode: str = DEFAULT_TAG_MODE,
        today: Callable[[], date] = date.today,
    ):
        self.tags = tags
        self.jobs = jobs
        self.label_template = label_template
        self.tag_mode = tag_mode
        self.today = today

    def label_for(self, job_key: str) -> str:
        return self.label_template.format(key=job_key)

    def link_to_tag(self, user_id: int, job_key: str, journal_ids: Sequence[int]) -> Tag:
        """Create the job's tag and link all journals to it.

        Raises TagCreationError if the tag cannot be created or linked.
        """
        label = self.label_for(job_key)
        try:
            tag = self.tags.create_tag(user_id, label, self.today(), self.tag_mode)
        except Exception as e:
            raise TagCreationError(f'Could not create tag "{label}": {e}') from e
        logger.debug('Created tag #%d ("%s")', tag.id, tag.tag)
        try:
            self.tags.link_journals_to_tag(tag.id, list(journal_ids))
        except Exception as e:
            raise TagCreationError(f'Could not link journals to tag "{label}": {e}') from e
        logger.info('Linked %d journals to tag #%d ("%s")', len(journal_ids), tag.id, tag.tag)

        self.jobs.set_job_tag(job_key, tag.id)
        return tag
