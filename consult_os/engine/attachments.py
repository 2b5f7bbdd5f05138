"""Files bound to an encounter."""

import logging
from typing import Optional

from consult_os.engine.context import SessionContext
from consult_os.errors import NotFoundError
from consult_os.models import Attachment, Encounter

logger = logging.getLogger(__name__)


class AttachmentStore:
    """Upload, list and delete attachments of one encounter.

    The encounter's attachment list only changes on confirmed server
    responses: appends after a successful upload, full refetch after delete.
    """

    def __init__(self, ctx: SessionContext, encounter: Encounter):
        self.ctx = ctx
        self.encounter = encounter

    @property
    def items(self) -> list[Attachment]:
        return list(self.encounter.attachments)

    async def refresh(self) -> list[Attachment]:
        try:
            attachments = await self.ctx.client.list_attachments(self.encounter.id)
        except NotFoundError:
            attachments = []
        self.encounter.attachments = attachments
        return self.items

    async def upload(
        self,
        file_name: str,
        content: bytes,
        mime_type: str = "application/octet-stream",
        category: str = "exam",
    ) -> Attachment:
        with self.ctx.obs.operation(
            "upload_attachment", encounter_id=self.encounter.id, category=category
        ):
            attachment = await self.ctx.client.upload_attachment(
                encounter_id=self.encounter.id,
                patient_id=self.encounter.patient_id,
                file_name=file_name,
                content=content,
                mime_type=mime_type,
                category=category,
            )
        self.encounter.attachments = [*self.encounter.attachments, attachment]
        logger.info(f"Attached {file_name} to encounter {self.encounter.id}")
        return attachment

    async def delete(self, attachment_id: str) -> list[Attachment]:
        with self.ctx.obs.operation("delete_attachment", encounter_id=self.encounter.id):
            await self.ctx.client.delete_attachment(attachment_id)
        return await self.refresh()

    def view(self, attachment_id: str) -> Optional[Attachment]:
        for attachment in self.encounter.attachments:
            if attachment.id == attachment_id:
                return attachment
        return None

    async def download(self, attachment_id: str) -> bytes:
        attachment = self.view(attachment_id)
        if attachment is None:
            raise NotFoundError(f"Attachment {attachment_id} is not part of this encounter")
        return await self.ctx.client.download(attachment.url)
