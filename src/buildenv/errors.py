"""Typed error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across API and CLI surfaces."""

    VALIDATION = "E_VALIDATION"
    TOOLCHAIN_UNAVAILABLE = "E_TOOLCHAIN_UNAVAILABLE"
    PACKAGE_INSTALL = "E_PACKAGE_INSTALL"
    CONTEXT_ROOT_CONFLICT = "E_CONTEXT_ROOT_CONFLICT"
    STATE_TRANSITION = "E_STATE_TRANSITION"
    LOCKFILE = "E_LOCKFILE"
    BACKEND_EXECUTION = "E_BACKEND_EXECUTION"
    POLICY = "E_POLICY"


class BuildEnvError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: dict[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ValidationError(BuildEnvError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, hint=hint, context=context)


class ToolchainUnavailable(BuildEnvError):
    """The pinned toolchain image could not be fetched."""

    def __init__(
        self,
        message: str,
        *,
        image_ref: str,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        merged = {"image_ref": image_ref, **dict(context or {})}
        super().__init__(
            message,
            code=ErrorCode.TOOLCHAIN_UNAVAILABLE,
            hint=hint,
            context=merged,
        )
        self.image_ref = image_ref


class PackageInstallFailed(BuildEnvError):
    """A package of the package set could not be installed."""

    def __init__(
        self,
        message: str,
        *,
        package: str,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        merged = {"package": package, **dict(context or {})}
        super().__init__(message, code=ErrorCode.PACKAGE_INSTALL, hint=hint, context=merged)
        self.package = package


class ContextRootConflict(BuildEnvError):
    """The build context root is already occupied."""

    def __init__(
        self,
        message: str,
        *,
        path: str,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        merged = {"path": path, **dict(context or {})}
        super().__init__(
            message,
            code=ErrorCode.CONTEXT_ROOT_CONFLICT,
            hint=hint,
            context=merged,
        )
        self.path = path


class StateTransitionError(BuildEnvError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.STATE_TRANSITION, hint=hint, context=context)


class LockfileError(BuildEnvError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.LOCKFILE, hint=hint, context=context)


class BackendExecutionError(BuildEnvError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.BACKEND_EXECUTION, hint=hint, context=context)


class PolicyError(BuildEnvError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.POLICY, hint=hint, context=context)


__all__ = [
    "BackendExecutionError",
    "BuildEnvError",
    "ContextRootConflict",
    "ErrorCode",
    "LockfileError",
    "PackageInstallFailed",
    "PolicyError",
    "StateTransitionError",
    "ToolchainUnavailable",
    "ValidationError",
]
