"""Annotation store - investigator notes attached to existing events."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from auditgate.db.repositories import AuditEventRepository
from auditgate.errors import EventNotFound, ValidationError
from auditgate.models import Annotation
from auditgate.utils.time import utc_now

logger = logging.getLogger(__name__)


class AnnotationStore:
    """Appends to and reads ``metadata.annotations`` of stored events."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.events = AuditEventRepository(session)

    async def add_annotation(
        self,
        event_id: UUID,
        text: str,
        tags: Optional[list[str]] = None,
        author_id: Optional[str] = None,
    ) -> Annotation:
        """
        Append a note to an event. The event's own fields are never touched.

        Raises:
            ValidationError: blank text
            EventNotFound: unknown event id
        """
        if not text or not text.strip():
            raise ValidationError("Annotation text must not be empty")

        annotation = Annotation(
            text=text.strip(),
            tags=[t for t in (tags or []) if t],
            author_id=author_id,
            timestamp=utc_now(),
        )
        stored = await self.events.append_annotation(event_id, annotation)
        if stored is None:
            raise EventNotFound(str(event_id))

        logger.info(f"Annotated audit event {event_id} (author={author_id})")
        return stored

    async def get_annotations(self, event_id: UUID) -> list[Annotation]:
        """Annotations in the order they were added."""
        event = await self.events.get(event_id)
        if event is None:
            raise EventNotFound(str(event_id))
        return event.annotations
