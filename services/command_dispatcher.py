"""Command dispatcher: the fixed pipeline every operation runs through.

Per request the pipeline moves through

    Received -> Validated -> Authorized -> TenantScoped -> Executed -> Completed

and stops at the first failing stage. The ordering lives in
``CommandDispatcher._run`` only; commands supply a payload schema, an access
requirement and a ``handle`` coroutine, never their own pipeline.
"""
import asyncio
import enum
import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from models.access import AccessRequirement
from models.principal import Principal
from services.authorization_gate import ensure_authorized
from services.errors import FleetOpsError, Forbidden, PrincipalNotFound
from services.identity_context import IdentityContext
from services.tenant_scope import TenantScope, scope as derive_scope, tenant_session

logger = logging.getLogger(__name__)


class DispatchStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    FORBIDDEN = "FORBIDDEN"
    HANDLER_FAILED = "HANDLER_FAILED"


class DispatchStage(str, enum.Enum):
    """Last pipeline stage a request reached."""
    RECEIVED = "Received"
    VALIDATED = "Validated"
    AUTHORIZED = "Authorized"
    TENANT_SCOPED = "TenantScoped"
    EXECUTED = "Executed"
    COMPLETED = "Completed"


@dataclass(frozen=True)
class ExecutionContext:
    """
    Immutable per-request context handed to a command handler.

    Attributes:
        principal: Resolved caller
        scope: Tenant scope the session is confined to
        session: Session of the request's transaction
        correlation_id: Id echoed in logs and in the result
    """
    principal: Principal
    scope: TenantScope
    session: AsyncSession
    correlation_id: str
    _post_commit: list = field(default_factory=list, repr=False, compare=False)

    @property
    def tenant_id(self) -> Optional[int]:
        return self.scope.tenant_id

    def after_commit(self, hook: Callable[[], Awaitable[None]]) -> None:
        """Run ``hook`` once the transaction has committed.

        Hooks are skipped when the command fails. Their own failures are
        logged and do not change the command's result.
        """
        self._post_commit.append(hook)


class Command(BaseModel):
    """
    Base class of every command and query.

    Subclasses declare their payload as pydantic fields, a class-level
    ``requirement`` and an async ``handle(ctx)``. Declaring a command without
    a requirement fails when the class is defined.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    requirement: ClassVar[AccessRequirement]

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs):
        super().__pydantic_init_subclass__(**kwargs)
        if not isinstance(getattr(cls, "requirement", None), AccessRequirement):
            raise TypeError(
                f"{cls.__name__} must declare an AccessRequirement as 'requirement'"
            )

    async def handle(self, ctx: ExecutionContext) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class DispatchResult:
    """
    Outcome of one dispatch.

    Attributes:
        status: Terminal status of the pipeline
        correlation_id: Id of this dispatch
        stage: Last stage reached
        body: Handler result (COMPLETED only)
        errors: Field-level errors (VALIDATION_FAILED only)
        code: Machine readable error code (failures only)
        message: Human readable error message (failures only)
        status_code: HTTP status the transport responds with
    """
    status: DispatchStatus
    correlation_id: str
    stage: DispatchStage
    body: Any = None
    errors: list = field(default_factory=list)
    code: Optional[str] = None
    message: Optional[str] = None
    status_code: int = 200

    @property
    def ok(self) -> bool:
        return self.status is DispatchStatus.COMPLETED

    def error_dict(self) -> dict:
        result = {
            "status": self.status.value,
            "code": self.code,
            "message": self.message,
            "correlation_id": self.correlation_id,
        }
        if self.errors:
            result["errors"] = self.errors
        return result


def _field_errors(error: ValidationError) -> list[dict[str, str]]:
    errors = []
    for err in error.errors():
        errors.append({
            "field": ".".join(str(part) for part in err["loc"]) or "__root__",
            "message": err["msg"],
            "type": err["type"],
        })
    return errors


class CommandDispatcher:
    """
    Routes typed commands through validation, identity, authorization,
    tenant scoping and execution, in that order.

    Args:
        identity: IdentityContext used to resolve principal ids
        session_factory: Async session factory; defaults to the global one
        default_timeout: Seconds bounding a whole dispatch, None for no bound
    """

    def __init__(
        self,
        identity: Optional[IdentityContext] = None,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        default_timeout: Optional[float] = None,
    ):
        self.identity = identity or IdentityContext(session_factory=session_factory)
        self.session_factory = session_factory
        self.default_timeout = default_timeout

    async def dispatch(
        self,
        principal_id: str,
        command_type: Type[Command],
        payload: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> DispatchResult:
        """
        Run ``command_type`` with ``payload`` on behalf of ``principal_id``.

        Args:
            principal_id: Authenticated principal id (member UUID)
            command_type: Command class to build from the payload
            payload: Raw payload; validated into ``command_type``
            timeout: Seconds bounding the dispatch; falls back to the
                dispatcher default

        Returns:
            DispatchResult; never raises for pipeline or handler failures
        """
        correlation_id = str(uuid.uuid4())
        timeout = timeout if timeout is not None else self.default_timeout

        logger.info(
            f"Dispatch received: command={command_type.__name__}, "
            f"correlation_id={correlation_id}"
        )

        reached = [DispatchStage.RECEIVED]
        run = self._run(principal_id, command_type, payload or {}, correlation_id, reached)
        if timeout is None:
            return await run

        try:
            return await asyncio.wait_for(run, timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"Dispatch timed out: command={command_type.__name__}, "
                f"correlation_id={correlation_id}, timeout={timeout}, "
                f"stage={reached[-1].value}"
            )
            return DispatchResult(
                status=DispatchStatus.HANDLER_FAILED,
                correlation_id=correlation_id,
                stage=reached[-1],
                code="TIMEOUT",
                message=f"Operation did not complete within {timeout} seconds",
                status_code=504,
            )

    async def _run(
        self,
        principal_id: str,
        command_type: Type[Command],
        payload: Mapping[str, Any],
        correlation_id: str,
        reached: list[DispatchStage],
    ) -> DispatchResult:
        name = command_type.__name__

        # Received -> Validated
        try:
            command = command_type.model_validate(payload)
        except ValidationError as e:
            errors = _field_errors(e)
            logger.info(
                f"Validation failed: command={name}, correlation_id={correlation_id}, "
                f"errors={len(errors)}"
            )
            return DispatchResult(
                status=DispatchStatus.VALIDATION_FAILED,
                correlation_id=correlation_id,
                stage=DispatchStage.RECEIVED,
                errors=errors,
                code="VALIDATION_FAILED",
                message="Payload validation failed",
                status_code=422,
            )

        reached.append(DispatchStage.VALIDATED)

        # Validated -> Authorized
        requirement = command_type.requirement
        try:
            principal = await self.identity.resolve(principal_id)
            ensure_authorized(principal, requirement)
        except (PrincipalNotFound, Forbidden) as e:
            logger.warning(
                f"Dispatch forbidden: command={name}, correlation_id={correlation_id}, "
                f"code={e.code}"
            )
            return DispatchResult(
                status=DispatchStatus.FORBIDDEN,
                correlation_id=correlation_id,
                stage=DispatchStage.VALIDATED,
                code=e.code,
                message=e.message,
                status_code=403,
            )
        except Exception as e:
            logger.error(
                f"Identity resolution raised: command={name}, "
                f"correlation_id={correlation_id}, error={e}",
                exc_info=True
            )
            return self._handler_failed(
                correlation_id, DispatchStage.VALIDATED, "INTERNAL_ERROR", "Internal error", 500
            )
        reached.append(DispatchStage.AUTHORIZED)

        # Authorized -> TenantScoped
        try:
            tenant_scope = derive_scope(principal, requirement)
        except Forbidden as e:
            return DispatchResult(
                status=DispatchStatus.FORBIDDEN,
                correlation_id=correlation_id,
                stage=DispatchStage.AUTHORIZED,
                code=e.code,
                message=e.message,
                status_code=403,
            )

        # TenantScoped -> Executed -> Completed
        stage = DispatchStage.TENANT_SCOPED
        reached.append(stage)
        try:
            async with tenant_session(tenant_scope, self.session_factory) as session:
                ctx = ExecutionContext(
                    principal=principal,
                    scope=tenant_scope,
                    session=session,
                    correlation_id=correlation_id,
                )
                body = await command.handle(ctx)
                stage = DispatchStage.EXECUTED
                reached.append(stage)
                await session.commit()
        except FleetOpsError as e:
            logger.info(
                f"Handler failed: command={name}, correlation_id={correlation_id}, "
                f"{tenant_scope}, code={e.code}"
            )
            return self._handler_failed(correlation_id, stage, e.code, e.message, e.status_code)
        except Exception as e:
            logger.error(
                f"Handler raised: command={name}, correlation_id={correlation_id}, "
                f"{tenant_scope}, error={e}",
                exc_info=True
            )
            return self._handler_failed(
                correlation_id, stage, "INTERNAL_ERROR", "Internal error", 500
            )

        await self._run_post_commit(ctx, name)

        logger.info(
            f"Dispatch completed: command={name}, correlation_id={correlation_id}, "
            f"{tenant_scope}"
        )
        return DispatchResult(
            status=DispatchStatus.COMPLETED,
            correlation_id=correlation_id,
            stage=DispatchStage.COMPLETED,
            body=body,
        )

    @staticmethod
    def _handler_failed(
        correlation_id: str,
        stage: DispatchStage,
        code: str,
        message: str,
        status_code: int,
    ) -> DispatchResult:
        return DispatchResult(
            status=DispatchStatus.HANDLER_FAILED,
            correlation_id=correlation_id,
            stage=stage,
            code=code,
            message=message,
            status_code=status_code,
        )

    @staticmethod
    async def _run_post_commit(ctx: ExecutionContext, name: str) -> None:
        for hook in ctx._post_commit:
            try:
                await hook()
            except Exception as e:
                logger.error(
                    f"Post-commit hook failed: command={name}, "
                    f"correlation_id={ctx.correlation_id}, error={e}",
                    exc_info=True
                )


_dispatcher: Optional[CommandDispatcher] = None


def get_command_dispatcher() -> CommandDispatcher:
    """Get or create the process-wide dispatcher."""
    global _dispatcher

    if _dispatcher is None:
        timeout = os.getenv("DISPATCH_TIMEOUT_SECONDS")
        _dispatcher = CommandDispatcher(
            default_timeout=float(timeout) if timeout else None
        )

    return _dispatcher
