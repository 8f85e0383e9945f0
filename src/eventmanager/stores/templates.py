"""
Template store for EventManager notifications.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..core.exceptions import DuplicateTemplateNameError, TemplateNotFoundError, ValidationError
from ..core.models import Channel, Template, TemplateState, ensure_utc
from ..database.manager import DatabaseError, DatabaseManager
from ..database.models import TemplateRecord
from ..notifications.naming import (
    DEFAULT_MODULE,
    TEMPLATE_NAME_SEPARATOR,
    TemplateName,
    compose_template_name,
    normalize_state,
    split_template_name,
)

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "Ya existe una plantilla con ese nombre y módulo. Elige un nombre diferente."
DUPLICATE_UPDATE_MESSAGE = "Ya existe otra plantilla con ese nombre y módulo."
DELETED_TEMPLATE_NAME = "Plantilla eliminada"
COPY_SUFFIX = " (Copia)"

UPDATABLE_FIELDS = {"name", "module", "channel", "subject", "body", "state"}


def check_module(module: Optional[str]) -> None:
    """Reject a module that would not survive a split of the stored name."""
    if module and TEMPLATE_NAME_SEPARATOR in module:
        raise ValidationError(
            f"Template module cannot contain '{TEMPLATE_NAME_SEPARATOR}'", field="module"
        )


def coerce_channel(value: Any) -> Optional[Channel]:
    """Parse a channel value case-insensitively; None when unknown."""
    if isinstance(value, Channel):
        return value
    if not isinstance(value, str):
        return None
    lowered = value.strip().lower()
    for channel in Channel:
        if channel.value.lower() == lowered:
            return channel
    return None


class TemplateStore:
    """CRUD over the plantillas table with name/module enrichment."""

    def __init__(self, db: DatabaseManager, default_module: str = DEFAULT_MODULE):
        self.db = db
        self.default_module = default_module

    def _to_template(self, record: TemplateRecord) -> Template:
        name = split_template_name(record.stored_name)
        return Template(
            id=record.id,
            stored_name=record.stored_name,
            name=name.base or record.stored_name,
            module=name.resolved_module(self.default_module),
            channel=coerce_channel(record.channel),
            subject=record.subject,
            body=record.body,
            state=normalize_state(record.state) or TemplateState.ACTIVE,
            created_at=ensure_utc(record.created_at),
            updated_at=ensure_utc(record.updated_at),
        )

    def placeholder(self, template_id: int) -> Template:
        """Stand-in for a template that no longer exists."""
        return Template(
            id=template_id,
            stored_name=DELETED_TEMPLATE_NAME,
            name=DELETED_TEMPLATE_NAME,
            module=self.default_module,
            state=TemplateState.INACTIVE,
            placeholder=True,
        )

    async def create(self, fields: Dict[str, Any]) -> Template:
        """
        Create a template.

        Args:
            fields: name, channel and optionally module, subject, body, state

        Returns:
            The stored template

        Raises:
            ValidationError: name or channel missing, or module contains the name separator
            DuplicateTemplateNameError: composite name already taken
        """
        base = split_template_name(fields.get("name") or "").base
        if not base:
            raise ValidationError("Template name is required", field="name")

        channel = coerce_channel(fields.get("channel"))
        if channel is None:
            raise ValidationError("Template channel must be Email or Push", field="channel")

        module = fields.get("module") or self.default_module
        check_module(module)
        stored_name = compose_template_name(base, module)
        state = normalize_state(fields.get("state")) or TemplateState.ACTIVE

        record = TemplateRecord(
            stored_name=stored_name,
            channel=channel.value,
            subject=fields.get("subject"),
            body=fields.get("body"),
            state=state.value,
        )

        try:
            async with await self.db.get_session() as session:
                session.add(record)
                await session.commit()
                await session.refresh(record)
        except IntegrityError as e:
            logger.warning(f"Duplicate template name: {stored_name}")
            raise DuplicateTemplateNameError(stored_name, DUPLICATE_MESSAGE) from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to create template {stored_name}: {e}")
            raise DatabaseError(f"Failed to create template: {e}") from e

        logger.info(f"Created template {record.id}: {stored_name}")
        return self._to_template(record)

    async def _select(self, *criteria, order_by=None) -> List[Template]:
        stmt = select(TemplateRecord)
        for criterion in criteria:
            stmt = stmt.where(criterion)
        if order_by is None:
            order_by = (TemplateRecord.created_at.desc(), TemplateRecord.id.desc())
        stmt = stmt.order_by(*order_by)

        try:
            async with await self.db.get_session() as session:
                result = await session.execute(stmt)
                return [self._to_template(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Failed to query templates: {e}")
            raise DatabaseError(f"Failed to query templates: {e}") from e

    async def get_all(self) -> List[Template]:
        """All templates, newest first."""
        return await self._select()

    async def get_by_id(self, template_id: int) -> Optional[Template]:
        try:
            async with await self.db.get_session() as session:
                record = await session.get(TemplateRecord, template_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to get template {template_id}: {e}")
            raise DatabaseError(f"Failed to get template: {e}") from e
        return self._to_template(record) if record else None

    async def resolve(self, template_id: Optional[int]) -> Optional[Template]:
        """
        Look up a template referenced by a notification.

        Returns None when there is no reference, and a placeholder when the
        referenced template was deleted.
        """
        if template_id is None:
            return None
        template = await self.get_by_id(template_id)
        return template or self.placeholder(template_id)

    async def get_active(self, channel: Union[Channel, str, None] = None) -> List[Template]:
        """Active templates ordered by name, optionally for one channel."""
        criteria = [TemplateRecord.state == TemplateState.ACTIVE.value]
        if channel is not None:
            parsed = coerce_channel(channel)
            if parsed is None:
                return []
            criteria.append(TemplateRecord.channel == parsed.value)
        return await self._select(*criteria, order_by=(TemplateRecord.stored_name.asc(),))

    async def get_by_module(self, module: str) -> List[Template]:
        """Templates whose resolved module matches, ignoring case."""
        wanted = (module or "").strip().lower()
        templates = await self._select(order_by=(TemplateRecord.stored_name.asc(),))
        return [t for t in templates if t.module.lower() == wanted]

    async def get_by_channel(self, channel: Union[Channel, str]) -> List[Template]:
        parsed = coerce_channel(channel)
        if parsed is None:
            return []
        return await self._select(
            TemplateRecord.channel == parsed.value,
            order_by=(TemplateRecord.stored_name.asc(),),
        )

    async def search(self, term: str) -> List[Template]:
        """Case-insensitive substring match on name, module or subject."""
        needle = (term or "").lower()
        return [
            t for t in await self.get_all()
            if needle in t.name.lower()
            or needle in t.module.lower()
            or needle in (t.subject or "").lower()
        ]

    async def update(self, template_id: int, fields: Dict[str, Any],
                     previous: Optional[TemplateName] = None) -> Template:
        """
        Update a template.

        The stored name is only rewritten when the base name or module differs
        from ``previous``. Without ``previous`` the current row is the baseline.

        Args:
            template_id: Template ID
            fields: Any of name, module, channel, subject, body, state
            previous: Name and module the caller loaded the template with

        Returns:
            The updated template
        """
        ignored = set(fields) - UPDATABLE_FIELDS
        if ignored:
            logger.debug(f"Ignoring non-updatable template fields: {sorted(ignored)}")

        try:
            async with await self.db.get_session() as session:
                record = await session.get(TemplateRecord, template_id)
                if record is None:
                    raise TemplateNotFoundError(f"Template {template_id} not found")

                current = split_template_name(record.stored_name)
                baseline = previous or TemplateName(current.base, current.resolved_module(self.default_module))
                baseline_module = baseline.resolved_module(self.default_module)

                if "name" in fields or "module" in fields:
                    new_base = split_template_name(fields.get("name") or baseline.base).base
                    if not new_base:
                        raise ValidationError("Template name is required", field="name")
                    new_module = fields["module"] if "module" in fields else baseline_module
                    check_module(new_module)
                    resolved_new_module = new_module or self.default_module
                    if new_base != baseline.base or resolved_new_module != baseline_module:
                        record.stored_name = compose_template_name(new_base, new_module or "")

                if "channel" in fields:
                    channel = coerce_channel(fields["channel"])
                    if channel is None:
                        raise ValidationError("Template channel must be Email or Push", field="channel")
                    record.channel = channel.value
                if "subject" in fields:
                    record.subject = fields["subject"]
                if "body" in fields:
                    record.body = fields["body"]
                if "state" in fields:
                    state = normalize_state(fields["state"])
                    if state is not None:
                        record.state = state.value

                await session.commit()
                await session.refresh(record)
        except IntegrityError as e:
            logger.warning(f"Duplicate template name on update of {template_id}")
            raise DuplicateTemplateNameError(record.stored_name, DUPLICATE_UPDATE_MESSAGE) from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to update template {template_id}: {e}")
            raise DatabaseError(f"Failed to update template: {e}") from e

        return self._to_template(record)

    async def update_state(self, template_id: int, value: Any) -> Template:
        """Set the Activo/Inactivo flag from any accepted representation."""
        state = normalize_state(value)
        if state is None:
            raise ValidationError(f"Unrecognized template state: {value!r}", field="state")
        return await self.update(template_id, {"state": state})

    async def update_content(self, template_id: int, subject: Optional[str], body: Optional[str]) -> Template:
        return await self.update(template_id, {"subject": subject, "body": body})

    async def delete(self, template_id: int) -> bool:
        """
        Hard-delete a template. Notifications keep their template_id.

        Returns:
            True if a row was deleted
        """
        try:
            async with await self.db.get_session() as session:
                result = await session.execute(
                    delete(TemplateRecord).where(TemplateRecord.id == template_id)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete template {template_id}: {e}")
            raise DatabaseError(f"Failed to delete template: {e}") from e

        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Deleted template {template_id}")
        return deleted

    async def delete_inactive(self) -> List[int]:
        """Delete every inactive template; returns the deleted ids."""
        deleted = []
        for template in await self.get_all():
            if not template.is_active and await self.delete(template.id):
                deleted.append(template.id)
        return deleted

    async def duplicate(self, template_id: int) -> Template:
        """Clone a template as an inactive copy named 'base (Copia)'."""
        original = await self.get_by_id(template_id)
        if original is None:
            raise TemplateNotFoundError(f"Template {template_id} not found")

        base = original.name.strip() or "Plantilla duplicada"
        return await self.create({
            "name": f"{base}{COPY_SUFFIX}",
            "module": original.module,
            "channel": original.channel,
            "subject": original.subject,
            "body": original.body,
            "state": TemplateState.INACTIVE,
        })
