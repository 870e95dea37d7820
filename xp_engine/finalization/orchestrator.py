"""
Assessment finalization.

finalize_assessment() is the single entry point that turns a finished
attempt into a gradebook result and analytics events. Order of effects:

1. attempt lock, load state (missing/finalized -> NotFinalizableError)
2. proficiency lookup, XP calculation, banked XP (exercises only)
3. gradebook write (failure -> GradebookWriteError, nothing else happens)
4. attempt marked finalized (failure -> FinalizationError, nothing dispatched)
5. one ActivityCompleted event, one TimeSpent event if duration >= 1s
6. one gradebook entry per banked resource
7. progress cache, streak, proficiency hooks

The finalized marker is written before anything leaves the process, so a
call that gets the lock later (including after the lock TTL lapsed) sees
it and stops. Steps 5-7 are best-effort: their failures are logged and
never undo the gradebook write or re-dispatch events.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from loguru import logger

from config import Settings, get_settings
from xp_engine.core.clock import Clock, utc_now
from xp_engine.core.content_types import ContentType, get_policy, parse_content_type
from xp_engine.core.errors import (
    AssessmentValidationError,
    AttemptAlreadyFinalizedError,
    FinalizationError,
    GradebookWriteError,
    IdentityMismatchError,
    NotFinalizableError,
    XpEngineError,
)
from xp_engine.finalization.models import (
    FinalizationOptions,
    FinalizationResult,
    XpPenaltyInfo,
)
from xp_engine.ports import (
    ActivityCompletedEvent,
    ActivityContext,
    AnalyticsPort,
    CourseContentPort,
    GradebookPort,
    IdentityPort,
    ProficiencyPort,
    ProgressCachePort,
    StreakPort,
    TimeSpentEvent,
)
from xp_engine.integrations.analytics import AnalyticsClient
from xp_engine.state.attempts import AttemptStateRepository
from xp_engine.state.models import AttemptState
from xp_engine.state.read_time import ReadTimeRepository
from xp_engine.state.redis_store import RedisStateStore
from xp_engine.state.store import KeyValueStore
from xp_engine.xp.bank import BANKED_XP_REASON, BankedXpResolver, BankedXpResult
from xp_engine.xp.calculator import XpAward, XpCalculator, XpRequest

OPERATION = "finalize_assessment"


@dataclass
class _Computed:
    award: XpAward
    banked: BankedXpResult
    duration_seconds: int

    @property
    def total_xp(self) -> int:
        return self.award.final_xp + self.banked.banked_xp


class AssessmentFinalizer:
    """Finalizes assessment attempts exactly once."""

    def __init__(
        self,
        attempts: AttemptStateRepository,
        calculator: XpCalculator,
        resolver: BankedXpResolver,
        gradebook: GradebookPort,
        analytics: AnalyticsPort,
        identity: IdentityPort,
        proficiency: ProficiencyPort | None = None,
        streak: StreakPort | None = None,
        progress_cache: ProgressCachePort | None = None,
        clock: Clock = utc_now,
    ):
        self.attempts = attempts
        self.calculator = calculator
        self.resolver = resolver
        self.gradebook = gradebook
        self.analytics = analytics
        self.identity = identity
        self.proficiency = proficiency
        self.streak = streak
        self.progress_cache = progress_cache
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        content: CourseContentPort,
        identity: IdentityPort,
        settings: Settings | None = None,
        *,
        store: KeyValueStore | None = None,
        gradebook: GradebookPort | None = None,
        analytics: AnalyticsPort | None = None,
        proficiency: ProficiencyPort | None = None,
        streak: StreakPort | None = None,
        progress_cache: ProgressCachePort | None = None,
        clock: Clock = utc_now,
    ) -> AssessmentFinalizer:
        """
        Wire a finalizer from Settings.

        Missing collaborators default to the production adapters: a Redis
        state store on settings.redis_url, the SQL gradebook and the HTTP
        analytics client. Course content and identity have no default.
        """
        settings = settings or get_settings()
        if store is None:
            store = RedisStateStore.from_url(settings.redis_url)
        if gradebook is None:
            from xp_engine.integrations.gradebook import SqlGradebook

            gradebook = SqlGradebook()
        if analytics is None:
            analytics = AnalyticsClient.from_settings(settings)

        resolver = BankedXpResolver.from_settings(
            content, gradebook, ReadTimeRepository.from_settings(store, settings), settings
        )
        return cls(
            AttemptStateRepository.from_settings(store, settings, clock=clock),
            XpCalculator.from_settings(settings),
            resolver,
            gradebook,
            analytics,
            identity,
            proficiency=proficiency,
            streak=streak,
            progress_cache=progress_cache,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def finalize_assessment(self, options: FinalizationOptions) -> FinalizationResult:
        """
        Finalize the current attempt for options.user_id / options.resource_id.

        Raises:
            IdentityMismatchError: Caller is not options.user_id
            AssessmentValidationError: Malformed options or attempt data
            NotFinalizableError: No attempt, or it is already finalized
            ConcurrentFinalizationInProgressError: Another finalization holds the lock
            GradebookWriteError: The gradebook write failed; nothing was emitted
            FinalizationError: A scoring component failed, or the finalized marker was not stored
        """
        await self._authorize(options.user_id)
        content_type = parse_content_type(options.content_type)
        if options.expected_xp is None or options.expected_xp < 0:
            raise AssessmentValidationError(
                f"expected_xp must be >= 0, got {options.expected_xp}", operation=OPERATION
            )

        user_id, resource_id = options.user_id, options.resource_id
        async with self.attempts.finalization_lock(user_id, resource_id):
            state = await self.attempts.get(user_id, resource_id)
            if state is None:
                raise NotFinalizableError(
                    f"no attempt for user={user_id} resource={resource_id}", operation=OPERATION
                )
            if state.is_finalized:
                raise AttemptAlreadyFinalizedError(
                    f"attempt {state.attempt_number} for resource={resource_id} is already finalized",
                    operation=OPERATION,
                )
            if state.finalization_error:
                logger.info(
                    "Retrying finalization of attempt {} for {} / {} after: {}",
                    state.attempt_number, user_id, resource_id, state.finalization_error,
                )

            try:
                computed = await self._compute(options, content_type, state)
            except XpEngineError as e:
                await self._mark_failed(options, state, str(e))
                raise
            except Exception as e:
                await self._mark_failed(options, state, f"{type(e).__name__}: {e}")
                raise FinalizationError(f"scoring failed: {e}", operation=OPERATION) from e

            try:
                result_id = await self._save_gradebook(options, content_type, state, computed)
            except Exception as e:
                await self._mark_failed(options, state, f"gradebook write failed: {e}")
                logger.error(
                    "Gradebook write failed for {} / {} attempt {}: {}",
                    user_id, resource_id, state.attempt_number, e,
                )
                raise GradebookWriteError(f"gradebook write failed: {e}", operation=OPERATION) from e

            result = self._build_result(result_id, content_type, state, computed)

            try:
                committed = await self.attempts.mark_finalized(user_id, resource_id, state, result.to_summary())
            except Exception as e:
                await self._mark_failed(options, state, f"commit marker write failed: {e}")
                logger.error(
                    "Could not mark attempt {} for {} / {} finalized, nothing dispatched: {}",
                    state.attempt_number, user_id, resource_id, e,
                )
                raise FinalizationError(
                    f"could not mark attempt finalized: {e}", operation="mark_finalized"
                ) from e

            await self._dispatch_analytics(options, content_type, state, computed)
            result.failed_banked_resource_ids = await self._save_banked_entries(options, computed.banked)
            await self._run_hooks(options, computed)

            if result.failed_banked_resource_ids:
                try:
                    await self.attempts.update_final_summary(user_id, resource_id, committed, result.to_summary())
                except Exception as e:
                    logger.error("Final summary update failed for {} / {}: {}", user_id, resource_id, e)

        logger.info(
            "Finalized {} {} attempt {} for {}: xp={} banked={} analytics={} retry={}",
            content_type.value, resource_id, state.attempt_number, user_id,
            result.assessment_xp, result.banked_xp, result.analytics_xp, result.requires_retry,
        )
        return result

    # ------------------------------------------------------------------
    # Pre-commit
    # ------------------------------------------------------------------

    async def _authorize(self, user_id: str) -> None:
        caller_id = await self.identity.current_user_id()
        if caller_id != user_id:
            logger.bind(security=True).warning(
                "SECURITY identity mismatch on {}: caller={} user={}", OPERATION, caller_id, user_id
            )
            raise IdentityMismatchError(caller_id, user_id, operation=OPERATION)

    async def _compute(
        self,
        options: FinalizationOptions,
        content_type: ContentType,
        state: AttemptState,
    ) -> _Computed:
        elapsed = (self.clock() - state.started_at).total_seconds()
        duration_seconds = max(0, math.floor(elapsed))

        was_already_proficient = False
        if self.proficiency is not None:
            was_already_proficient = await self.proficiency.check_existing_proficiency(
                options.user_id, options.resource_id
            )

        award = self.calculator.calculate(
            XpRequest(
                content_type=content_type,
                base_xp=options.expected_xp,
                attempt_number=state.attempt_number,
                outcomes=state.outcomes(),
                duration_seconds=duration_seconds,
                was_already_proficient=was_already_proficient,
            )
        )

        banked = BankedXpResult()
        policy = get_policy(content_type)
        if (
            policy.banks_xp
            and award.final_xp > 0
            and award.accuracy >= self.calculator.mastery_threshold
        ):
            try:
                banked = await self.resolver.resolve(options.user_id, options.course_id, options.resource_id)
            except Exception as e:
                raise FinalizationError(f"banked XP resolution failed: {e}", operation="resolve_banked_xp") from e

        return _Computed(award=award, banked=banked, duration_seconds=duration_seconds)

    async def _mark_failed(self, options: FinalizationOptions, state: AttemptState, error: str) -> None:
        try:
            await self.attempts.mark_finalization_failed(options.user_id, options.resource_id, state, error)
        except Exception as e:
            logger.error("Could not record finalization failure for {}: {}", options.resource_id, e)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def _save_gradebook(
        self,
        options: FinalizationOptions,
        content_type: ContentType,
        state: AttemptState,
        computed: _Computed,
    ) -> str:
        award = computed.award
        metadata: dict[str, Any] = {
            **award.to_metadata(),
            "total_xp": computed.total_xp,
            "banked_xp": computed.banked.banked_xp,
            "banked_article_xp": computed.banked.article_xp,
            "banked_video_xp": computed.banked.video_xp,
            "banked_resource_ids": list(computed.banked.awarded_resource_ids),
            "duration_seconds": computed.duration_seconds,
            "lesson_type": get_policy(content_type).lesson_type,
            "content_type": content_type.value,
            "course_id": options.course_id,
            "unit_id": options.unit_id,
            "lesson_id": options.lesson_id,
            "assessment_title": options.assessment_title,
            "assessment_path": options.assessment_path,
            "completed_at": self.clock().isoformat(),
        }
        return await self.gradebook.save_result(
            options.resource_id,
            round(award.accuracy, 2),
            award.correct_count,
            award.scorable_count,
            options.user_id,
            options.course_id,
            metadata,
            attempt_number=state.attempt_number,
        )

    def _build_result(
        self,
        result_id: str,
        content_type: ContentType,
        state: AttemptState,
        computed: _Computed,
    ) -> FinalizationResult:
        award = computed.award
        penalty = None
        if award.penalty_applied:
            penalty = XpPenaltyInfo(
                penalty_xp=award.penalty_xp,
                pre_penalty_xp=award.pre_penalty_xp,
                final_xp=award.final_xp,
                reason=award.reason,
                avg_seconds_per_question=award.avg_seconds_per_question,
            )
        return FinalizationResult(
            result_id=result_id,
            attempt_number=state.attempt_number,
            content_type=content_type,
            score=round(award.accuracy, 2),
            correct_count=award.correct_count,
            total_questions=award.scorable_count,
            assessment_xp=award.final_xp,
            banked_xp=computed.banked.banked_xp,
            banked_article_xp=computed.banked.article_xp,
            banked_video_xp=computed.banked.video_xp,
            total_xp=computed.total_xp,
            analytics_xp=award.analytics_xp,
            multiplier=award.multiplier,
            requires_retry=award.requires_retry,
            mastered_units=award.mastered_units,
            duration_seconds=computed.duration_seconds,
            reason=award.reason,
            penalty=penalty,
            awarded_resource_ids=list(computed.banked.awarded_resource_ids),
            banked_awards=dict(computed.banked.awards),
        )

    # ------------------------------------------------------------------
    # Post-commit (best-effort)
    # ------------------------------------------------------------------

    async def _dispatch_analytics(
        self,
        options: FinalizationOptions,
        content_type: ContentType,
        state: AttemptState,
        computed: _Computed,
    ) -> None:
        award = computed.award
        context = ActivityContext(
            user_id=options.user_id,
            resource_id=options.resource_id,
            course_id=options.course_id,
            title=options.assessment_title,
            path=options.assessment_path,
            activity_type=content_type.value,
        )
        try:
            await self.analytics.send_activity_completed_event(
                ActivityCompletedEvent(
                    context=context,
                    xp_earned=award.analytics_xp,
                    total_questions=award.scorable_count,
                    correct_questions=award.correct_count,
                    mastered_units=award.mastered_units,
                    attempt_number=state.attempt_number,
                )
            )
        except Exception as e:
            logger.error("ActivityCompleted event failed for {} / {}: {}", options.user_id, options.resource_id, e)

        if computed.duration_seconds >= 1:
            try:
                await self.analytics.send_time_spent_event(
                    TimeSpentEvent(context=context, active_seconds=computed.duration_seconds)
                )
            except Exception as e:
                logger.error("TimeSpent event failed for {} / {}: {}", options.user_id, options.resource_id, e)

    async def _save_banked_entries(self, options: FinalizationOptions, banked: BankedXpResult) -> list[str]:
        failed: list[str] = []
        for resource_id in banked.awarded_resource_ids:
            amount = banked.awards[resource_id]
            metadata = {
                "xp": amount,
                "multiplier": 1.0,
                "accuracy": 100,
                "penalty_applied": False,
                "xp_reason": BANKED_XP_REASON,
                "requires_retry": False,
                "banked_from": options.resource_id,
                "lesson_id": banked.lesson_ids.get(resource_id),
                "course_id": options.course_id,
                "completed_at": self.clock().isoformat(),
            }
            try:
                await self.gradebook.save_result(
                    resource_id, 100, 1, 1, options.user_id, options.course_id, metadata
                )
            except Exception as e:
                failed.append(resource_id)
                logger.error("Banked XP entry for {} ({} XP) failed: {}", resource_id, amount, e)
        return failed

    async def _run_hooks(self, options: FinalizationOptions, computed: _Computed) -> None:
        user_id, course_id = options.user_id, options.course_id

        if self.progress_cache is not None:
            try:
                await self.progress_cache.invalidate(user_id, course_id)
            except Exception as e:
                logger.error("Progress cache invalidation failed for {} / {}: {}", user_id, course_id, e)

        if self.streak is not None and computed.total_xp > 0:
            try:
                await self.streak.update(user_id, computed.total_xp)
            except Exception as e:
                logger.error("Streak update failed for {}: {}", user_id, e)

        if self.proficiency is not None:
            try:
                await self.proficiency.update_from_assessment(
                    user_id,
                    options.resource_id,
                    course_id,
                    computed.award.accuracy,
                    computed.award.mastered_units,
                )
            except Exception as e:
                logger.error("Proficiency update failed for {} / {}: {}", user_id, options.resource_id, e)
