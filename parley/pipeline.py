"""The suggestion pipeline.

trigger -> context + style (concurrently) -> sanitize -> admit -> generate
(stream through the output guard) -> deliver -> record (in the background).

Errors raised by any component surface here and are mapped to user notices.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import AsyncIterator, Optional, Union

import structlog

from parley.audit.audit_log import AuditLogger
from parley.config import Settings
from parley.context.assembler import ContextAssembler, ContextRequest, ContextSource
from parley.delivery.adapter import DeliveryAdapter, DeliveryTarget, Recipient
from parley.delivery.controls import Presentation
from parley.errors import (
    DeliveryFailure,
    GenerationFailure,
    GuardrailViolationError,
    ParleyError,
    QuotaExceededError,
    ValidationError,
)
from parley.feedback.recorder import FeedbackRecorder, FeedbackStore, SuggestionStore
from parley.generation.classifiers import AdvisoryClassifier
from parley.generation.knowledge import TemplateMatcher, TemplateStore
from parley.generation.orchestrator import (
    GenerationOrchestrator,
    GenerationRequest,
    PreparedPrompt,
    avoid_topics,
)
from parley.interactions import (
    AcceptAction,
    DismissAction,
    RefineAction,
    SendAction,
    TriggerEvent,
    parse_action,
    parse_trigger,
)
from parley.llm.client import AnthropicModelClient, CompletionUsage, ModelClient, estimate_cost
from parley.log import bind_request_context, clear_request_context
from parley.models.conversation import ConversationMessage
from parley.models.suggestion import (
    FeedbackAction,
    FeedbackEvent,
    SuggestionRecord,
    UseCase,
    new_suggestion_id,
)
from parley.moderation.models import GuardrailPolicy
from parley.moderation.moderator import GuardrailEngine
from parley.moderation.policy import PolicyRegistry
from parley.moderation.sanitizer import detect_injection, sanitize
from parley.moderation.stream_guard import StreamGuard
from parley.moderation.violations import ViolationLog
from parley.quota.controller import Allow, Deny, QuotaAdmissionController
from parley.quota.ledger import QuotaLedger, SQLiteQuotaLedger
from parley.quota.plans import PlanCatalog
from parley.quota.usage_log import UsageEvent, UsageLog
from parley.style.resolver import SettingsSource, StyleResolver
from parley.style.store import StyleSettingsStore
from parley.tasks import BackgroundDispatcher

logger = structlog.get_logger(__name__)


@dataclass
class SuggestionOutcome:
    """What happened to one trigger or interaction."""

    status: str  # delivered | quota_denied | blocked | failed | invalid | recorded
    suggestion_id: Optional[str] = None
    text: str = ""
    notice: str = ""


class SuggestionPipeline:
    """Coordinates one asynchronous pipeline run per trigger event."""

    def __init__(
        self,
        *,
        context: ContextAssembler,
        style: StyleResolver,
        guardrails: GuardrailEngine,
        quota: QuotaAdmissionController,
        orchestrator: GenerationOrchestrator,
        delivery: DeliveryAdapter,
        recorder: FeedbackRecorder,
        dispatcher: BackgroundDispatcher,
        window_minutes: int = 60,
        max_messages: int = 20,
    ) -> None:
        self.context = context
        self.style = style
        self.guardrails = guardrails
        self.quota = quota
        self.orchestrator = orchestrator
        self.delivery = delivery
        self.recorder = recorder
        self.dispatcher = dispatcher
        self._window_minutes = window_minutes
        self._max_messages = max_messages

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        source: ContextSource,
        target: DeliveryTarget,
        settings_source: Optional[SettingsSource] = None,
        ledger: Optional[QuotaLedger] = None,
        model_client: Optional[ModelClient] = None,
        classifier_client: Optional[ModelClient] = None,
    ) -> "SuggestionPipeline":
        """Wire every component from *settings* and the injected clients."""
        data_dir = settings.data_dir
        dispatcher = BackgroundDispatcher()

        primary = model_client or AnthropicModelClient(
            model=settings.model,
            api_key=settings.anthropic_api_key,
        )
        classifier = classifier_client or AnthropicModelClient(
            model=settings.classifier_model,
            api_key=settings.anthropic_api_key,
            max_retries=0,
        )

        quota = QuotaAdmissionController(
            ledger or SQLiteQuotaLedger(settings.sqlite_path),
            PlanCatalog(settings.plans, settings.subject_plans, settings.default_plan),
            usage_log=UsageLog(data_dir / "usage"),
            dispatcher=dispatcher,
        )
        orchestrator = GenerationOrchestrator(
            primary,
            classifier=AdvisoryClassifier(
                classifier,
                timeout=settings.classifier_timeout,
                retries=settings.classifier_retries,
            ),
            templates=TemplateMatcher(TemplateStore(data_dir / "templates")),
            max_tokens=settings.max_output_tokens,
            primary_timeout=settings.primary_timeout,
            slow_stream_warning=settings.slow_stream_warning,
        )
        return cls(
            context=ContextAssembler(source),
            style=StyleResolver(settings_source or StyleSettingsStore(data_dir / "style")),
            guardrails=GuardrailEngine(
                PolicyRegistry(settings.guardrail_policy_dir),
                ViolationLog(data_dir / "moderation"),
            ),
            quota=quota,
            orchestrator=orchestrator,
            delivery=DeliveryAdapter(target),
            recorder=FeedbackRecorder(
                FeedbackStore(data_dir / "feedback"),
                dispatcher,
                audit=AuditLogger(data_dir / "audit"),
                suggestions=SuggestionStore(data_dir / "feedback"),
            ),
            dispatcher=dispatcher,
            window_minutes=settings.context_window_minutes,
            max_messages=settings.context_max_messages,
        )

    async def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        """Wait for background writes before the process exits."""
        await self.dispatcher.drain(timeout=timeout)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _notify(self, recipient: Recipient, text: str) -> None:
        try:
            await self.delivery.notify(recipient, text)
        except DeliveryFailure as exc:
            logger.error("notice delivery failed", error=str(exc))

    @staticmethod
    def _sanitize_messages(messages: list[ConversationMessage]) -> list[ConversationMessage]:
        cleaned = []
        for message in messages:
            if detect_injection(message.text):
                logger.warning("possible prompt injection in context", author_id=message.author_id)
            cleaned.append(replace(message, text=sanitize(message.text)))
        return cleaned

    async def _guarded(
        self,
        stream: AsyncIterator[str],
        guard: StreamGuard,
        presentation: Presentation,
    ) -> AsyncIterator[str]:
        async for delta in stream:
            chunk = guard.feed(delta)
            if chunk:
                yield chunk
        if not guard.text.strip():
            raise GenerationFailure("Model returned an empty suggestion")
        tail, verdict = guard.finish()
        for warning in verdict.warnings:
            presentation.notes.append(f"Review before sending ({warning.rule})")
        if tail:
            yield tail

    def _record_usage(
        self,
        event_type: str,
        subject_id: str,
        channel_ref: str,
        suggestion_id: str,
        usage: CompletionUsage,
    ) -> None:
        model = self.orchestrator.model
        self.quota.record_consumption(
            UsageEvent(
                subject_id=subject_id,
                event_type=event_type,
                model=model,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cost_estimate=estimate_cost(model, usage.input_tokens, usage.output_tokens),
                channel_ref=channel_ref,
                suggestion_id=suggestion_id,
            )
        )

    async def _stream_once(
        self,
        prompt: PreparedPrompt,
        policy: GuardrailPolicy,
        recipient: Recipient,
        presentation: Presentation,
        usage: CompletionUsage,
        *,
        allow_regenerate: bool,
        organization_id: str,
        subject_id: str,
    ) -> str:
        guard = StreamGuard(
            self.guardrails,
            policy,
            allow_regenerate=allow_regenerate,
            organization_id=organization_id,
            subject_id=subject_id,
            suggestion_id=presentation.suggestion_id,
        )
        attempt = CompletionUsage()
        try:
            stream = self._guarded(self.orchestrator.stream(prompt, attempt), guard, presentation)
            return await self.delivery.deliver(recipient, stream, presentation)
        finally:
            usage.input_tokens += attempt.input_tokens
            usage.output_tokens += attempt.output_tokens

    async def _generate_and_deliver(
        self,
        request: GenerationRequest,
        recipient: Recipient,
        presentation: Presentation,
        usage: CompletionUsage,
        *,
        organization_id: str,
        subject_id: str,
    ) -> SuggestionOutcome:
        suggestion_id = presentation.suggestion_id
        ids = {"organization_id": organization_id, "subject_id": subject_id}
        try:
            prompt = await self.orchestrator.prepare(request)
            policy = self.guardrails.policies.get(organization_id)
            try:
                text = await self._stream_once(
                    prompt, policy, recipient, presentation, usage, allow_regenerate=True, **ids
                )
            except GuardrailViolationError as exc:
                if not exc.regenerate:
                    raise
                # One retry, inside the unit already reserved.
                topics = sorted({v.rule for v in exc.violations})
                logger.info("regenerating suggestion", avoid_topics=topics)
                text = await self._stream_once(
                    avoid_topics(prompt, topics),
                    policy,
                    recipient,
                    presentation,
                    usage,
                    allow_regenerate=False,
                    **ids,
                )
        except GuardrailViolationError as exc:
            await self._notify(recipient, exc.user_message)
            return SuggestionOutcome("blocked", suggestion_id, notice=exc.user_message)
        except GenerationFailure as exc:
            logger.error("generation failed", error=str(exc), error_type=type(exc).__name__)
            await self._notify(recipient, exc.user_message)
            return SuggestionOutcome("failed", suggestion_id, notice=exc.user_message)
        except DeliveryFailure as exc:
            logger.error("delivery failed", error=str(exc))
            return SuggestionOutcome("failed", suggestion_id, notice=exc.user_message)
        except ParleyError as exc:
            logger.error("suggestion failed", error=str(exc), error_type=type(exc).__name__)
            await self._notify(recipient, exc.user_message)
            return SuggestionOutcome("failed", suggestion_id, notice=exc.user_message)
        return SuggestionOutcome("delivered", suggestion_id, text=text)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def handle_trigger(self, payload: Union[TriggerEvent, dict]) -> SuggestionOutcome:
        """Run the full pipeline for one trigger event."""
        try:
            event = payload if isinstance(payload, TriggerEvent) else parse_trigger(payload)
        except ValidationError as exc:
            logger.warning("dropping malformed trigger", errors=exc.errors)
            return SuggestionOutcome("invalid")

        clear_request_context()
        bind_request_context(subject_id=event.subject_id, organization_id=event.organization_id)
        try:
            return await self._run_trigger(event)
        finally:
            clear_request_context()

    async def _run_trigger(self, event: TriggerEvent) -> SuggestionOutcome:
        recipient = Recipient(event.subject_id, event.channel_ref, event.thread_ref)

        messages, style = await asyncio.gather(
            self.context.assemble(
                ContextRequest(
                    channel_ref=event.channel_ref,
                    message_ref=event.message_ref,
                    thread_ref=event.thread_ref,
                    window_minutes=self._window_minutes,
                    max_messages=self._max_messages,
                )
            ),
            self.style.resolve(event.organization_id, event.subject_id),
        )

        if detect_injection(event.text):
            logger.warning("possible prompt injection in trigger", message_ref=event.message_ref)
        trigger_text = sanitize(event.text)
        messages = self._sanitize_messages(messages)

        admission = await self.quota.admit(event.subject_id, event.organization_id)
        if isinstance(admission, Deny):
            error = QuotaExceededError(admission.reason, admission.used, admission.limit)
            await self._notify(recipient, error.user_message)
            self.recorder.record_audit(
                event.subject_id,
                "suggestion.denied",
                "quota",
                event.subject_id,
                organization_id=event.organization_id,
                details={"used": admission.used, "limit": admission.limit},
                success=False,
            )
            return SuggestionOutcome("quota_denied", notice=error.user_message)
        if not isinstance(admission, Allow):
            raise TypeError(f"Unhandled admission result: {admission!r}")

        record = SuggestionRecord(
            suggestion_id=new_suggestion_id(),
            subject_id=event.subject_id,
            channel_ref=event.channel_ref,
            trigger_kind=event.kind,
            organization_id=event.organization_id,
        )
        bind_request_context(suggestion_id=record.suggestion_id)

        presentation = Presentation(
            suggestion_id=record.suggestion_id,
            channel_ref=event.channel_ref,
            thread_ref=event.thread_ref,
            trigger_reason=event.kind.reason,
            warning_level=admission.warning_level,
            used=admission.used,
            limit=admission.included,
        )
        request = GenerationRequest(
            use_case=event.use_case,
            organization_id=event.organization_id,
            trigger_text=trigger_text,
            trigger_reason=event.kind.reason,
            messages=messages,
            style=style,
        )
        usage = CompletionUsage()
        try:
            outcome = await self._generate_and_deliver(
                request,
                recipient,
                presentation,
                usage,
                organization_id=event.organization_id,
                subject_id=event.subject_id,
            )
        finally:
            self._record_usage("suggestion", event.subject_id, event.channel_ref, record.suggestion_id, usage)

        if outcome.status == "delivered":
            self.recorder.record_suggestion(record)
        self.recorder.record_audit(
            event.subject_id,
            f"suggestion.{outcome.status}",
            "suggestion",
            record.suggestion_id,
            organization_id=event.organization_id,
            details={
                "trigger": event.kind.value,
                "use_case": event.use_case.value,
                "context_messages": len(messages),
                "warning_level": admission.warning_level.value,
            },
            success=outcome.status == "delivered",
        )
        logger.info("suggestion finished", status=outcome.status)
        return outcome

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------

    async def handle_action(
        self, payload: Union[SendAction, AcceptAction, DismissAction, RefineAction, dict]
    ) -> SuggestionOutcome:
        """Apply a user's terminal action on a delivered suggestion."""
        if isinstance(payload, dict):
            try:
                action = parse_action(payload)
            except ValidationError as exc:
                logger.warning("dropping malformed interaction", errors=exc.errors)
                return SuggestionOutcome("invalid")
        else:
            action = payload

        clear_request_context()
        bind_request_context(
            subject_id=action.subject_id,
            organization_id=action.organization_id,
            suggestion_id=action.suggestion_id,
        )
        try:
            if isinstance(action, SendAction):
                return await self._send(action)
            if isinstance(action, AcceptAction):
                return self._feedback_only(action, FeedbackAction.accepted, action.final_text)
            if isinstance(action, DismissAction):
                return self._feedback_only(action, FeedbackAction.dismissed, None)
            if isinstance(action, RefineAction):
                return await self._refine(action)
            raise TypeError(f"Unhandled interaction action: {action!r}")
        finally:
            clear_request_context()

    def _feedback(
        self,
        action: Union[SendAction, AcceptAction, DismissAction, RefineAction],
        kind: FeedbackAction,
        final_text: Optional[str],
    ) -> None:
        self.recorder.record_feedback(
            FeedbackEvent(
                suggestion_id=action.suggestion_id,
                action=kind,
                original_text=action.suggestion_text,
                subject_id=action.subject_id,
                organization_id=action.organization_id,
                channel_ref=action.channel_ref,
                final_text=final_text,
            )
        )
        self.recorder.record_audit(
            action.subject_id,
            f"suggestion.{kind.value}",
            "suggestion",
            action.suggestion_id,
            organization_id=action.organization_id,
        )

    def _feedback_only(
        self,
        action: Union[AcceptAction, DismissAction],
        kind: FeedbackAction,
        final_text: Optional[str],
    ) -> SuggestionOutcome:
        self._feedback(action, kind, final_text)
        return SuggestionOutcome("recorded", action.suggestion_id)

    async def _send(self, action: SendAction) -> SuggestionOutcome:
        text = action.final_text or action.suggestion_text
        recipient = Recipient(action.subject_id, action.channel_ref, action.thread_ref)
        try:
            await self.delivery.send_as_user(recipient, text)
        except DeliveryFailure as exc:
            logger.error("send as user failed", error=str(exc))
            await self._notify(recipient, ParleyError.user_message)
            return SuggestionOutcome("failed", action.suggestion_id, notice=ParleyError.user_message)
        self._feedback(action, FeedbackAction.sent, text)
        return SuggestionOutcome("delivered", action.suggestion_id, text=text)

    async def _refine(self, action: RefineAction) -> SuggestionOutcome:
        """Regenerate under the refinement use case; consumes no quota unit."""
        recipient = Recipient(action.subject_id, action.channel_ref, action.thread_ref)
        style = await self.style.resolve(action.organization_id, action.subject_id)
        if detect_injection(action.instruction):
            logger.warning("possible prompt injection in refinement request")

        request = GenerationRequest(
            use_case=UseCase.refinement,
            organization_id=action.organization_id,
            trigger_text="",
            style=style,
            draft=sanitize(action.suggestion_text),
            instruction=sanitize(action.instruction),
        )
        presentation = Presentation(
            suggestion_id=action.suggestion_id,
            channel_ref=action.channel_ref,
            thread_ref=action.thread_ref,
            trigger_reason="you asked for a refinement",
        )
        usage = CompletionUsage()
        try:
            outcome = await self._generate_and_deliver(
                request,
                recipient,
                presentation,
                usage,
                organization_id=action.organization_id,
                subject_id=action.subject_id,
            )
        finally:
            self._record_usage("refinement", action.subject_id, action.channel_ref, action.suggestion_id, usage)

        if outcome.status == "delivered":
            self._feedback(action, FeedbackAction.refined, outcome.text)
        return outcome
