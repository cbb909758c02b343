"""Provisioning coordinator: runs the declared step sequence for one tenant.

Flow of a run::

  resolve slug
    -> preflight-cleanup (non-fatal)
    -> create-database* -> run-migrations* -> create-voice-agent
    -> create-repository* -> create-hosting* -> configure-auth
    -> trigger-deployment -> verify-deployment -> send-notification
  (* fatal: an error stops the run, skips the rest and rolls back)

Every step runs ``pending -> running -> (verifying) -> terminal`` in the
ledger. Resource handles enter the registry only when their step reaches
``success``; the registry is all rollback ever deletes.

``run`` never raises for provider errors. Whatever goes wrong inside a
step becomes that step's failure and is reported in the result.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, fields, is_dataclass, replace
from typing import Any, Awaitable, Callable

from ..observability import get_logger, provisioning_scope
from ..observability.metrics import (
    PROVISION_RUN_DURATION_SECONDS,
    PROVISION_RUNS_TOTAL,
    PROVISION_STEP_DURATION_SECONDS,
    PROVISION_STEPS_TOTAL,
)
from ..settings import FactorySettings, ReadinessBudget
from .cleanup import CleanupReport, PreflightCleaner
from .content import (
    auth_redirect_urls,
    build_hosting_env,
    build_repository_files,
    build_voice_agent_spec,
    build_welcome_message,
)
from .models import DeploymentOutput, ProvisioningRequest, ResourceKind, StepKind
from .protocols import Provisioners
from .readiness import Probe, ReadinessVerifier, fail_after_consecutive
from .registry import (
    DatabaseHandle,
    HostingHandle,
    RepositoryHandle,
    RESOURCE_HANDLE_TYPES,
    ResourceRegistry,
)
from .rollback import NOT_PERFORMED, RollbackEngine, RollbackReport
from .slug import resolve_slug, resource_name
from .steps import StepDefinition, StepLedger, StepRecord, StepStatus

logger = get_logger(__name__)

SERVICE_NAME = 'platform-factory'

NOT_ATTEMPTED = 'not attempted'

STEP_SEQUENCE: tuple[StepDefinition, ...] = (
    StepDefinition('preflight-cleanup', StepKind.CLEANUP, fatal=False),
    StepDefinition('create-database', StepKind.DATABASE, fatal=True, verifies=True),
    StepDefinition('run-migrations', StepKind.MIGRATION, fatal=True, verifies=True),
    StepDefinition('create-voice-agent', StepKind.VOICE_AGENT, fatal=False, verifies=True),
    StepDefinition('create-repository', StepKind.REPOSITORY, fatal=True, verifies=True),
    StepDefinition('create-hosting', StepKind.HOSTING, fatal=True),
    StepDefinition('configure-auth', StepKind.AUTH_CONFIG, fatal=False),
    StepDefinition('trigger-deployment', StepKind.DEPLOY_TRIGGER, fatal=False),
    StepDefinition('verify-deployment', StepKind.DEPLOY_VERIFY, fatal=False, verifies=True),
    StepDefinition('send-notification', StepKind.NOTIFY, fatal=False),
)

_DEFINITIONS = {step.id: step for step in STEP_SEQUENCE}


def describe_sequence() -> list[dict[str, Any]]:
    return [
        {
            'id': step.id,
            'kind': step.kind.value,
            'fatal': step.fatal,
            'verifies': step.verifies,
        }
        for step in STEP_SEQUENCE
    ]


@dataclass(frozen=True, slots=True)
class VerificationPolicy:
    """Rules deciding ``fully_verified`` from the finished ledger."""

    warnings_lower_full_verification: bool = True

    @classmethod
    def from_settings(cls, settings: FactorySettings) -> VerificationPolicy:
        return cls(
            warnings_lower_full_verification=settings.warnings_lower_full_verification,
        )

    def fully_verified(self, records: list[StepRecord], *, success: bool) -> bool:
        if not success:
            return False
        for record in records:
            definition = _DEFINITIONS.get(record.id)
            if definition is None or not definition.verifies:
                continue
            if record.status is StepStatus.SKIPPED:
                continue
            if record.verified is not True:
                return False
        if self.warnings_lower_full_verification:
            return not any(r.status is StepStatus.WARNING for r in records)
        return True


# ── Result ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class OrchestrationResult:
    """Outcome of one run. Produced exactly once, at the end of ``run``."""

    success: bool
    fully_verified: bool
    slug: str
    steps: tuple[StepRecord, ...]
    resources: ResourceRegistry
    rollback: RollbackReport = NOT_PERFORMED
    cleanup: CleanupReport | None = None
    platform_url: str | None = None
    error: str | None = None
    failed_step: str | None = None
    duration_ms: int = 0

    def step(self, step_id: str) -> StepRecord:
        for record in self.steps:
            if record.id == step_id:
                return record
        raise KeyError(step_id)

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready document with camelCase keys. Secrets are omitted."""
        return {
            'success': self.success,
            'fullyVerified': self.fully_verified,
            'platformUrl': self.platform_url,
            'slug': self.slug,
            'steps': [step_payload(record) for record in self.steps],
            'resources': self.resources.to_payload(),
            'cleanup': self.cleanup.to_payload() if self.cleanup else None,
            'rollback': self.rollback.to_payload(),
            'error': self.error,
            'failedStep': self.failed_step,
            'durationMs': self.duration_ms,
        }


def step_payload(record: StepRecord) -> dict[str, Any]:
    return {
        'id': record.id,
        'kind': record.kind.value,
        'fatal': record.fatal,
        'status': record.status.value,
        'message': record.message,
        'error': record.error,
        'durationMs': record.duration_ms,
        'verified': record.verified,
        'verificationDetail': record.verification_detail,
        'output': output_payload(record.output),
    }


def output_payload(output: Any) -> Any:
    if output is None:
        return None
    if hasattr(output, 'public_payload'):
        return output.public_payload()
    if hasattr(output, 'to_payload'):
        return output.to_payload()
    if is_dataclass(output):
        payload = {}
        for f in fields(output):
            value = getattr(output, f.name)
            if f.name == 'kind':
                value = value.value
            elif isinstance(value, tuple):
                value = list(value)
            payload[_camel(f.name)] = value
        return payload
    return output


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.capitalize() for part in rest)


# ── Coordinator ─────────────────────────────────────────────────────


@dataclass
class _Run:
    """Mutable per-run state. Never shared between runs."""

    request: ProvisioningRequest
    slug: str
    ledger: StepLedger
    registry: ResourceRegistry
    cleanup: CleanupReport | None = None
    failed: StepRecord | None = None
    outputs: dict[str, Any] = field(default_factory=dict)


StepHandler = Callable[[_Run, StepDefinition], Awaitable[None]]


class ProvisioningCoordinator:
    """Drive one tenant through ``STEP_SEQUENCE``.

    Holds no per-run state, so one instance may serve concurrent runs
    for different tenants.
    """

    def __init__(
        self,
        provisioners: Provisioners,
        settings: FactorySettings,
        *,
        verifier: ReadinessVerifier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provisioners = provisioners
        self._settings = settings
        self._verifier = verifier or ReadinessVerifier()
        self._clock = clock
        self._policy = VerificationPolicy.from_settings(settings)
        self._cleaner = PreflightCleaner(
            provisioners, settings, verifier=self._verifier,
        )
        self._handlers: dict[StepKind, StepHandler] = {
            StepKind.CLEANUP: self._preflight_cleanup,
            StepKind.DATABASE: self._create_database,
            StepKind.MIGRATION: self._run_migrations,
            StepKind.VOICE_AGENT: self._create_voice_agent,
            StepKind.REPOSITORY: self._create_repository,
            StepKind.HOSTING: self._create_hosting,
            StepKind.AUTH_CONFIG: self._configure_auth,
            StepKind.DEPLOY_TRIGGER: self._trigger_deployment,
            StepKind.DEPLOY_VERIFY: self._verify_deployment,
            StepKind.NOTIFY: self._send_notification,
        }

    @property
    def policy(self) -> VerificationPolicy:
        return self._policy

    async def run(self, request: ProvisioningRequest) -> OrchestrationResult:
        """Provision a tenant platform.

        Raises:
            ValueError: If the company name yields no slug.
        """
        started = self._clock()
        slug = resolve_slug(request.company_name)
        with provisioning_scope(slug=slug):
            return await self._run(request, slug, started)

    async def _run(
        self, request: ProvisioningRequest, slug: str, started: float,
    ) -> OrchestrationResult:
        run = _Run(
            request=request,
            slug=slug,
            ledger=StepLedger(STEP_SEQUENCE, clock=self._clock),
            registry=ResourceRegistry(),
        )
        logger.info('provisioning_started', company=request.company_name)

        for step in STEP_SEQUENCE:
            with provisioning_scope(step=step.id):
                try:
                    await self._handlers[step.kind](run, step)
                except Exception as exc:
                    logger.exception('step_crashed')
                    self._force_failure(run, step, f'unexpected error: {exc}')

            record = run.ledger.get(step.id)
            if record.status is StepStatus.ERROR and step.fatal:
                run.failed = record
                break

        rollback = NOT_PERFORMED
        error = None
        failed_step = None
        if run.failed is not None:
            failed_step = run.failed.id
            error = f'{failed_step}: {run.failed.error}'
            run.ledger.skip_remaining(message=NOT_ATTEMPTED)
            if request.rollback_on_failure:
                logger.warning(
                    'rollback_started',
                    failed_step=failed_step,
                    resources=[k.value for k in run.registry.kinds()],
                )
                rollback = await RollbackEngine(self._provisioners).rollback(
                    run.registry, slug=slug,
                )

        records = run.ledger.records()
        success = run.failed is None
        fully_verified = self._policy.fully_verified(records, success=success)
        hosting = run.registry.hosting
        duration_ms = int(round((self._clock() - started) * 1000))

        self._record_metrics(records, success, fully_verified, duration_ms)
        logger.info(
            'provisioning_finished',
            success=success,
            fully_verified=fully_verified,
            failed_step=failed_step,
            rollback_performed=rollback.performed,
            duration_ms=duration_ms,
        )
        return OrchestrationResult(
            success=success,
            fully_verified=fully_verified,
            slug=slug,
            steps=tuple(records),
            resources=run.registry,
            rollback=rollback,
            cleanup=run.cleanup,
            platform_url=hosting.url if success and hosting else None,
            error=error,
            failed_step=failed_step,
            duration_ms=duration_ms,
        )

    # ── Step execution ───────────────────────────────────────────────

    async def _execute(
        self,
        run: _Run,
        step: StepDefinition,
        action: Callable[[], Awaitable[Any]],
        *,
        probe: Callable[[Any], Probe] | None = None,
        budget: ReadinessBudget | None = None,
        finalize: Callable[[Any], Awaitable[Any]] | None = None,
        message: str = '',
    ) -> Any | None:
        """Run ``action``, verify its output, then mark the step terminal.

        Returns the step output on success, ``None`` otherwise.
        """
        ledger = run.ledger
        ledger.start(step.id)
        logger.info('step_started')
        try:
            output = await action()
        except Exception as exc:
            self._step_failed(run, step, str(exc) or type(exc).__name__)
            return None

        if probe is not None:
            ledger.begin_verification(step.id)
            outcome = await self._verifier.verify_with_budget(
                probe(output), budget, label=step.id,
            )
            ledger.record_verification(
                step.id, verified=outcome.verified, detail=outcome.detail,
            )
            if not outcome.verified:
                self._step_failed(
                    run, step, f'verification failed: {outcome.detail}', output=output,
                )
                return None

        if finalize is not None:
            try:
                output = await finalize(output)
            except Exception as exc:
                self._step_failed(run, step, str(exc) or type(exc).__name__, output=output)
                return None

        ledger.complete(step.id, message=message or 'completed', output=output)
        if isinstance(output, RESOURCE_HANDLE_TYPES):
            run.registry.register(output)
        run.outputs[step.id] = output
        self._log_finished(run, step)
        return output

    def _step_failed(
        self, run: _Run, step: StepDefinition, cause: str, *, output: Any = None,
    ) -> None:
        if step.fatal:
            run.ledger.fail(step.id, error=cause)
        else:
            run.ledger.warn(step.id, message=f'continuing: {cause}', error=cause, output=output)
        self._log_finished(run, step)

    def _force_failure(self, run: _Run, step: StepDefinition, cause: str) -> None:
        record = run.ledger.get(step.id)
        if record.is_terminal:
            return
        if record.status is StepStatus.PENDING:
            run.ledger.start(step.id)
        self._step_failed(run, step, cause)

    def _skip(self, run: _Run, step: StepDefinition, reason: str) -> None:
        run.ledger.skip(step.id, message=reason)
        self._log_finished(run, step)

    def _log_finished(self, run: _Run, step: StepDefinition) -> None:
        record = run.ledger.get(step.id)
        log = logger.warning if record.status in (
            StepStatus.ERROR, StepStatus.WARNING,
        ) else logger.info
        log(
            'step_finished',
            status=record.status.value,
            verified=record.verified,
            duration_ms=record.duration_ms,
            error=record.error,
        )

    # ── Handlers ─────────────────────────────────────────────────────

    async def _preflight_cleanup(self, run: _Run, step: StepDefinition) -> None:
        if run.request.skip_preflight_cleanup:
            self._skip(run, step, 'cleanup skipped by request')
            return
        run.ledger.start(step.id)
        logger.info('step_started')
        report = await self._cleaner.cleanup(run.slug)
        run.cleanup = report
        if report.resolved:
            run.ledger.complete(step.id, message=report.summary(), output=report)
        else:
            # A collision may still fail creation later; that step reports it.
            run.ledger.warn(
                step.id,
                message=report.summary(),
                error='; '.join(
                    f'{e.kind.value}: {e.error}' for e in report.unresolved
                ),
                output=report,
            )
        self._log_finished(run, step)

    async def _create_database(self, run: _Run, step: StepDefinition) -> None:
        database = self._provisioners.database
        await self._execute(
            run,
            step,
            lambda: database.create(resource_name(run.slug, ResourceKind.DATABASE)),
            probe=lambda handle: (lambda: database.probe(handle)),
            budget=self._settings.database_budget,
            finalize=database.fetch_credentials,
            message='database ready',
        )

    async def _run_migrations(self, run: _Run, step: StepDefinition) -> None:
        database = self._provisioners.database
        handle: DatabaseHandle = run.registry.database
        tables = self._settings.expected_tables
        await self._execute(
            run,
            step,
            lambda: database.run_migrations(handle),
            probe=lambda _output: fail_after_consecutive(
                lambda: database.probe_schema(handle, tables),
                self._settings.schema_missing_table_attempts,
            ),
            budget=self._settings.schema_budget,
            message=f'{len(tables)} tables queryable',
        )

    async def _create_voice_agent(self, run: _Run, step: StepDefinition) -> None:
        voice = self._provisioners.voice_agent
        if not run.request.voice_agent_enabled:
            self._skip(run, step, 'voice agent disabled by request')
            return
        if voice is None:
            self._skip(run, step, 'voice agent provider not configured')
            return
        spec = build_voice_agent_spec(
            run.request, resource_name(run.slug, ResourceKind.VOICE_AGENT),
        )
        await self._execute(
            run,
            step,
            lambda: voice.create(spec),
            probe=lambda handle: (lambda: voice.probe(handle)),
            budget=self._settings.voice_agent_budget,
            message='voice agent active',
        )

    async def _create_repository(self, run: _Run, step: StepDefinition) -> None:
        repository = self._provisioners.repository
        files = build_repository_files(
            run.request, run.slug, marker_file=self._settings.repository_marker_file,
        )
        await self._execute(
            run,
            step,
            lambda: repository.create(
                resource_name(run.slug, ResourceKind.REPOSITORY),
                files,
                description=f'{run.request.company_name} platform',
            ),
            probe=lambda handle: (lambda: repository.probe(handle)),
            budget=self._settings.repository_budget,
            message=f'{len(files)} files committed',
        )

    async def _create_hosting(self, run: _Run, step: StepDefinition) -> None:
        hosting = self._provisioners.hosting
        repo: RepositoryHandle = run.registry.repository
        env = build_hosting_env(
            run.request, run.registry.database, run.registry.voice_agent,
        )
        await self._execute(
            run,
            step,
            lambda: hosting.create(
                resource_name(run.slug, ResourceKind.HOSTING), repo, env,
            ),
            message='hosting project linked',
        )

    async def _configure_auth(self, run: _Run, step: StepDefinition) -> None:
        database = self._provisioners.database
        site_url = run.registry.hosting.url
        await self._execute(
            run,
            step,
            lambda: database.configure_auth(
                run.registry.database, site_url, auth_redirect_urls(site_url),
            ),
            message=f'auth redirects set for {site_url}',
        )

    async def _trigger_deployment(self, run: _Run, step: StepDefinition) -> None:
        repository = self._provisioners.repository
        await self._execute(
            run,
            step,
            lambda: repository.trigger_deployment(
                run.registry.repository,
                f'Initial deployment for {run.request.company_name}',
            ),
            message='deployment commit pushed',
        )

    async def _verify_deployment(self, run: _Run, step: StepDefinition) -> None:
        hosting = self._provisioners.hosting
        handle: HostingHandle = run.registry.hosting

        async def pending() -> DeploymentOutput:
            return DeploymentOutput(url=handle.url)

        async def live(output: DeploymentOutput) -> DeploymentOutput:
            return replace(output, state='READY')

        await self._execute(
            run,
            step,
            pending,
            probe=lambda _output: (lambda: hosting.probe_deployment(handle)),
            budget=self._settings.deployment_budget,
            finalize=live,
            message=f'{handle.url} live',
        )

    async def _send_notification(self, run: _Run, step: StepDefinition) -> None:
        notifier = self._provisioners.notifier
        if notifier is None:
            self._skip(run, step, 'notifier not configured')
            return
        repo: RepositoryHandle | None = run.registry.repository
        message = build_welcome_message(
            run.request, run.registry.hosting.url, repo.url if repo else None,
        )
        await self._execute(
            run,
            step,
            lambda: notifier.send(message),
            message=f'welcome email sent to {message.recipient}',
        )

    # ── Metrics ──────────────────────────────────────────────────────

    @staticmethod
    def _record_metrics(
        records: list[StepRecord],
        success: bool,
        fully_verified: bool,
        duration_ms: int,
    ) -> None:
        for record in records:
            PROVISION_STEPS_TOTAL.labels(
                step=record.id, status=record.status.value,
            ).inc()
            if record.status is not StepStatus.SKIPPED:
                PROVISION_STEP_DURATION_SECONDS.labels(step=record.id).observe(
                    record.duration_ms / 1000,
                )
        if not success:
            outcome = 'failed'
        elif fully_verified:
            outcome = 'success'
        else:
            outcome = 'degraded'
        PROVISION_RUNS_TOTAL.labels(outcome=outcome).inc()
        PROVISION_RUN_DURATION_SECONDS.observe(duration_ms / 1000)
