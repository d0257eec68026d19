"""TemplateEngine — versioned template resolution, publishing and rendering."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..config import TemplateCacheConfig
from ..domain.template import (
    NotificationTemplate,
    TemplateStatus,
    activate,
    deprecate,
    new_version,
)
from ..primitives.exceptions import TemplateNotFoundError
from ..utils import utcnow
from .renderers import PlaceholderRenderer

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from ..domain.values import Channel, RenderedMessage
    from ..outbox.writer import OutboxWriter
    from ..ports.cache import ICacheService
    from ..ports.repository import ITemplateRepository
    from ..ports.unit_of_work import UnitOfWork
    from ..utils import Clock
    from .renderers import ITemplateRenderer

logger = logging.getLogger("notification_dispatch.template")


class TemplateEngine:
    """
    Resolves, publishes and renders notification templates.

    Active versions are served through a read-through cache keyed by
    (notification type, channel). Publishing or activating a version
    invalidates that key after the unit of work commits, so a reader never
    caches a version that was rolled back.

    Example:
        ```python
        engine = TemplateEngine(repo, outbox=writer, uow_factory=InMemoryUnitOfWork)
        await engine.publish(
            "order_shipped", Channel.EMAIL,
            subject="Order {{order_id}}", body="Hi {{name}}, it shipped.",
        )
        template = await engine.resolve("order_shipped", Channel.EMAIL)
        message = engine.render(template, {"order_id": 7, "name": "Ada"})
        ```
    """

    def __init__(
        self,
        repository: ITemplateRepository,
        *,
        outbox: OutboxWriter,
        uow_factory: Callable[[], UnitOfWork],
        cache: ICacheService | None = None,
        renderer: ITemplateRenderer | None = None,
        config: TemplateCacheConfig | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._repository = repository
        self._outbox = outbox
        self._uow_factory = uow_factory
        self._cache = cache
        self._renderer = renderer or PlaceholderRenderer()
        self._config = config or TemplateCacheConfig()
        self._clock = clock

    def cache_key(self, name: str, channel: Channel) -> str:
        return f"{self._config.key_prefix}:{name}:{channel.value}"

    # ── Reads ────────────────────────────────────────────────────────

    async def resolve(self, name: str, channel: Channel) -> NotificationTemplate:
        """Return the ACTIVE version of (name, channel)."""
        key = self.cache_key(name, channel)
        if self._cache is not None:
            cached = await self._cache.get(key, NotificationTemplate)
            if cached is not None:
                return cached  # type: ignore[no-any-return]

        template = await self._repository.get_active(name, channel)
        if template is None:
            raise TemplateNotFoundError(name, channel.value)

        if self._cache is not None:
            await self._cache.set(key, template, ttl=self._config.ttl)
        return template

    async def resolve_version(
        self, name: str, channel: Channel, version: int | None = None
    ) -> NotificationTemplate:
        """Return a specific version, or the active one when *version* is None.

        Pinned versions are immutable and never cached.
        """
        if version is None:
            return await self.resolve(name, channel)
        template = await self._repository.get_version(name, channel, version)
        if template is None:
            raise TemplateNotFoundError(name, channel.value, version)
        return template

    async def list_versions(
        self, name: str, channel: Channel
    ) -> list[NotificationTemplate]:
        return await self._repository.list_versions(name, channel)

    def render(
        self, template: NotificationTemplate, data: Mapping[str, Any]
    ) -> RenderedMessage:
        """Render *template* with *data*. Pure; raises MissingPlaceholderError."""
        return self._renderer.render(template, data)

    # ── Writes ───────────────────────────────────────────────────────

    async def publish(
        self,
        name: str,
        channel: Channel,
        *,
        body: str,
        subject: str | None = None,
    ) -> NotificationTemplate:
        """Store a new version and make it the active one.

        The previous active version is deprecated in the same unit of work;
        its content is left untouched.
        """
        return await self._create(name, channel, body, subject, TemplateStatus.ACTIVE)

    async def draft(
        self,
        name: str,
        channel: Channel,
        *,
        body: str,
        subject: str | None = None,
    ) -> NotificationTemplate:
        """Store a new version without activating it."""
        return await self._create(name, channel, body, subject, TemplateStatus.DRAFT)

    async def activate(
        self, name: str, channel: Channel, version: int
    ) -> NotificationTemplate:
        """Promote a DRAFT version to ACTIVE, deprecating the current one."""
        template = await self._repository.get_version(name, channel, version)
        if template is None:
            raise TemplateNotFoundError(name, channel.value, version)
        current = await self._repository.get_active(name, channel)

        async with self._uow_factory() as uow:
            if current is not None:
                await self._repository.save(
                    deprecate(current), expected_version=current.revision, uow=uow
                )
            activated = await self._repository.save(
                activate(template), expected_version=template.revision, uow=uow
            )
            self._invalidate_on_commit(uow, name, channel)

        logger.info("Activated template %s/%s v%d", name, channel.value, version)
        return activated

    async def _create(
        self,
        name: str,
        channel: Channel,
        body: str,
        subject: str | None,
        status: TemplateStatus,
    ) -> NotificationTemplate:
        versions = await self._repository.list_versions(name, channel)
        next_version = versions[-1].version + 1 if versions else 1
        current = next(
            (t for t in versions if t.status is TemplateStatus.ACTIVE), None
        )
        template, events = new_version(
            name=name,
            channel=channel,
            body_template=body,
            subject_template=subject,
            version=next_version,
            status=status,
            now=self._clock(),
        )

        async with self._uow_factory() as uow:
            if status is TemplateStatus.ACTIVE and current is not None:
                await self._repository.save(
                    deprecate(current), expected_version=current.revision, uow=uow
                )
            saved = await self._repository.save(template, expected_version=0, uow=uow)
            await self._outbox.append(events, uow)
            if status is TemplateStatus.ACTIVE:
                self._invalidate_on_commit(uow, name, channel)

        logger.info(
            "Stored template %s/%s v%d as %s",
            name,
            channel.value,
            next_version,
            status.value,
        )
        return saved

    def _invalidate_on_commit(
        self, uow: UnitOfWork, name: str, channel: Channel
    ) -> None:
        cache = self._cache
        if cache is None:
            return
        key = self.cache_key(name, channel)

        async def _invalidate() -> None:
            await cache.delete(key)
            logger.debug("Invalidated template cache key %s", key)

        uow.on_commit(_invalidate)
