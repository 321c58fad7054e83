"""
Server role: turn model mutations into published change envelopes.

The publisher registers three observers per broadcast model:

- ``before save`` captures the incoming patch and the prior record into the
  operation's hook state; it publishes nothing.
- ``after save`` publishes one envelope for a single saved instance, or
  re-queries the affected records of a bulk update and publishes one
  envelope per record.
- ``before delete`` re-queries the records about to be deleted and
  publishes one ``delete`` envelope per record.

Every record passes the filter chain on its own, and per-record publishes
run concurrently. Observers never raise: query and publish failures are
logged so the underlying mutation always proceeds.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Set

from app.api import metrics
from app.relay.context import capture_actor
from app.relay.models import (
    ChangeEnvelope,
    HookContext,
    MethodName,
    record_id,
    snapshot,
)
from app.relay.resolver import resolve_topic
from core.exceptions import ConfigurationError, PublishError, TransportError

if TYPE_CHECKING:
    from app.relay.relay import Relay

logger = logging.getLogger(__name__)

OBSERVED_EVENTS = ("before save", "after save", "before delete")


class Publisher:
    """
    Publishes change envelopes for the models a server relay broadcasts.

    Args:
        relay: Owning relay (provides environment, service name, filters, transport)
    """

    def __init__(self, relay: "Relay"):
        self.relay = relay
        self._app: Any = None
        self._observed: Set[str] = set()

    @property
    def observed_models(self) -> List[str]:
        return sorted(self._observed)

    def configure_server(self, app: Any, model_names: Iterable[str]) -> List[str]:
        """
        Register lifecycle observers on every named model found on ``app``.

        Models that are already observed are left alone, so re-applying the
        server role never publishes twice.

        Args:
            app: Object exposing ``models`` (name -> observable model)
            model_names: Models to broadcast

        Returns:
            Names of all models this publisher observes.

        Raises:
            ConfigurationError: If ``app`` is missing or ``model_names`` is empty.
        """
        if app is None:
            raise ConfigurationError("app is required for relay server")
        model_names = list(model_names or [])
        if not model_names:
            raise ConfigurationError(
                "modelsToBroadcast is required for relay server",
                {"service_name": self.relay.service_name},
            )

        self._app = app
        models = getattr(app, "models", None) or {}
        for name in model_names:
            if not name or name in self._observed:
                continue
            model = models.get(name)
            if model is None:
                logger.warning(
                    f"Model {name} not found on app; not broadcasting it",
                    extra={"service_name": self.relay.service_name, "model_name": name},
                )
                continue

            model.observe("before save", self.before_save)
            model.observe("after save", self.after_save)
            model.observe("before delete", self.before_delete)
            self._observed.add(name)
            logger.info(
                f"Broadcasting {name} for {self.relay.service_name}",
                extra={"service_name": self.relay.service_name, "model_name": name},
            )

        return self.observed_models

    # ============================================================
    # Observers
    # ============================================================

    async def before_save(self, ctx: HookContext) -> None:
        """Snapshot the incoming payload and the prior record into hook state."""
        if ctx.data is not None:
            ctx.hook_state["update_data"] = snapshot(ctx.data)
        elif ctx.instance is not None:
            ctx.hook_state["update_data"] = snapshot(ctx.instance)

        if ctx.current_instance is not None and "data_before_update" not in ctx.hook_state:
            ctx.hook_state["data_before_update"] = snapshot(ctx.current_instance)

    async def after_save(self, ctx: HookContext) -> None:
        """Publish create/update envelopes for the saved record(s)."""
        model_name = ctx.model_name
        if not model_name:
            return

        method_name = MethodName.CREATE if ctx.is_new_instance else MethodName.UPDATE
        user_id = capture_actor(ctx)
        update_data = ctx.hook_state.get("update_data")

        if ctx.instance is not None and record_id(ctx.instance) not in (None, ""):
            await self._publish_records(
                ctx,
                method_name,
                [ctx.instance],
                user_id=user_id,
                update_data=update_data,
                data_before_update=ctx.hook_state.get("data_before_update"),
            )
            return

        if ctx.where is None:
            return

        records = await self._find_affected(model_name, ctx.where)
        if records:
            await self._publish_records(
                ctx, method_name, records, user_id=user_id, update_data=update_data
            )

    async def before_delete(self, ctx: HookContext) -> None:
        """Publish one delete envelope per record about to be removed."""
        model_name = ctx.model_name
        if not model_name:
            return

        where = ctx.where
        if where is None and record_id(ctx.instance) not in (None, ""):
            where = {"id": record_id(ctx.instance)}

        user_id = capture_actor(ctx)
        records = await self._find_affected(model_name, where)
        if records:
            await self._publish_records(ctx, MethodName.DELETE, records, user_id=user_id)

    # ============================================================
    # Envelope building and publishing
    # ============================================================

    async def _find_affected(
        self, model_name: str, where: Optional[Dict[str, Any]]
    ) -> Optional[List[Any]]:
        """Re-query the records matched by ``where``; None when the query failed."""
        models = getattr(self._app, "models", None) or {}
        model = models.get(model_name)
        if model is None:
            return []

        try:
            return await model.find(where)
        except Exception as e:
            self.relay.stats.publish_failures += 1
            metrics.publish_failures_total.labels(
                service_name=self.relay.service_name, model_name=model_name, stage="query"
            ).inc()
            logger.error(
                f"Failed to query affected {model_name} records: {e}",
                exc_info=True,
                extra={"service_name": self.relay.service_name, "model_name": model_name},
            )
            return None

    async def _publish_records(
        self,
        ctx: HookContext,
        method_name: MethodName,
        records: List[Any],
        user_id: Any = None,
        update_data: Any = None,
        data_before_update: Any = None,
    ) -> None:
        """Filter and publish each record independently and concurrently."""
        tasks = [
            self._publish_record(
                ctx,
                method_name,
                record,
                user_id=user_id,
                update_data=update_data,
                data_before_update=data_before_update,
            )
            for record in records
        ]
        await asyncio.gather(*tasks)

    async def _publish_record(
        self,
        ctx: HookContext,
        method_name: MethodName,
        record: Any,
        user_id: Any = None,
        update_data: Any = None,
        data_before_update: Any = None,
    ) -> Optional[str]:
        model_name = ctx.model_name
        data = snapshot(record)
        model_id = record_id(data)
        if model_id is None or model_id == "":
            logger.debug(f"Skipping {model_name} record without id")
            return None

        if not await self.relay.should_publish(model_name, method_name, data, ctx):
            self.relay.stats.filtered += 1
            metrics.envelopes_filtered_total.labels(
                service_name=self.relay.service_name,
                model_name=model_name,
                method_name=method_name.value,
            ).inc()
            logger.debug(
                f"Filter vetoed {method_name.value} of {model_name} {model_id}",
                extra={"model_name": model_name, "model_id": model_id},
            )
            return None

        envelope = ChangeEnvelope(
            model_name=model_name,
            method_name=method_name,
            model_id=model_id,
            data=data,
            update_data=update_data,
            data_before_update=data_before_update,
            user_id=user_id,
        )

        try:
            return await self.publish(envelope)
        except Exception as e:
            logger.error(
                f"Failed to publish {method_name.value} of {model_name} {model_id}: {e}",
                exc_info=not isinstance(e, TransportError),
                extra={
                    "service_name": self.relay.service_name,
                    "model_name": model_name,
                    "model_id": model_id,
                },
            )
            return None

    async def publish(self, envelope: ChangeEnvelope) -> str:
        """
        Publish one envelope to its model topic.

        Returns:
            Transport message id.

        Raises:
            TransportError: If the topic cannot be resolved or the publish fails.
        """
        try:
            topic = await resolve_topic(self.relay, envelope.model_name)
            message_id = await self.relay.transport.publish(
                topic,
                envelope.to_wire(),
                attributes={
                    "modelName": envelope.model_name,
                    "methodName": envelope.method_name.value,
                    "serviceName": self.relay.service_name,
                },
            )
        except Exception as e:
            self.relay.stats.publish_failures += 1
            metrics.publish_failures_total.labels(
                service_name=self.relay.service_name,
                model_name=envelope.model_name,
                stage="publish",
            ).inc()
            if isinstance(e, TransportError):
                raise
            raise PublishError(
                f"Publish failed: {e}", {"model_name": envelope.model_name}
            ) from e

        self.relay.stats.published += 1
        metrics.envelopes_published_total.labels(
            service_name=self.relay.service_name,
            model_name=envelope.model_name,
            method_name=envelope.method_name.value,
        ).inc()
        logger.debug(
            f"Published {envelope.method_name.value} of {envelope.model_name} "
            f"{envelope.model_id} as message {message_id}",
            extra={
                "service_name": self.relay.service_name,
                "model_name": envelope.model_name,
                "model_id": envelope.model_id,
                "message_id": message_id,
            },
        )
        return message_id
