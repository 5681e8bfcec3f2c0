"""Deployment build-log classification.

Provides:
- BuildErrorType: the five error classes a failed build can fall into
- ParsedError / DeploymentErrorInfo: structured result of parsing a log
- classify_build_log(): ordered rules, first match wins, default UNKNOWN

Only TYPE_ERROR is fixable: each TypeScript diagnostic names a file and
line the fixer can hand to the model. The other classes need a human.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum


class BuildErrorType(StrEnum):
    TYPE_ERROR = "type_error"
    BUILD_ERROR = "build_error"
    DEPENDENCY_ERROR = "dependency_error"
    CONFIG_ERROR = "config_error"
    UNKNOWN = "unknown"


FIXABLE_ERROR_TYPES = frozenset({BuildErrorType.TYPE_ERROR})

# tsc output: "src/App.tsx(12,5): error TS2304: Cannot find name 'foo'."
_TSC_PAREN_RE = re.compile(r"([^:\s]+\.tsx?)\((\d+),(\d+)\):\s*error\s+(TS\d+):\s*(.+)")
# bundler output: "src/App.tsx:12:5: error TS2304: Cannot find name 'foo'."
_TSC_COLON_RE = re.compile(r"([^:\s]+\.tsx?):(\d+):(\d+):\s*error\s+(TS\d+):\s*(.+)")

# Substring markers, checked in order once no TypeScript diagnostic matched
_DEPENDENCY_MARKERS: tuple[str, ...] = ("npm ERR!", "yarn install", "ERR_PNPM", "Could not resolve dependency")
_BUILD_MARKERS: tuple[str, ...] = ("webpack", "rollup", "vite build", "Build script returned non-zero exit code")
_CONFIG_MARKERS: tuple[str, ...] = ("config",)


@dataclass(frozen=True)
class ParsedError:
    file: str
    message: str
    line: int | None = None
    column: int | None = None
    code: str | None = None


@dataclass
class DeploymentErrorInfo:
    error_type: BuildErrorType
    errors: list[ParsedError]
    build_log: str
    can_fix: bool

    def errors_by_file(self) -> dict[str, list[ParsedError]]:
        """Group diagnostics by file, preserving first-seen file order."""
        grouped: dict[str, list[ParsedError]] = {}
        for error in self.errors:
            grouped.setdefault(error.file, []).append(error)
        return grouped

    @property
    def summary(self) -> str:
        if not self.errors:
            return self.error_type.value
        first = self.errors[0]
        location = f"{first.file}:{first.line}" if first.line is not None else first.file
        more = f" (+{len(self.errors) - 1} more)" if len(self.errors) > 1 else ""
        return f"{self.error_type.value}: {location} {first.message}{more}"


def _normalize_path(path: str) -> str:
    return path[2:] if path.startswith("./") else path


def _parse_type_errors(build_log: str) -> list[ParsedError]:
    errors: list[ParsedError] = []
    seen: set[tuple] = set()
    for pattern in (_TSC_PAREN_RE, _TSC_COLON_RE):
        for match in pattern.finditer(build_log):
            file, line, column, code, message = match.groups()
            parsed = ParsedError(
                file=_normalize_path(file),
                line=int(line),
                column=int(column),
                code=code,
                message=message.strip(),
            )
            key = (parsed.file, parsed.line, parsed.column, parsed.code)
            if key not in seen:
                seen.add(key)
                errors.append(parsed)
    return errors


def _has_marker(markers: tuple[str, ...]) -> Callable[[str], bool]:
    return lambda log: any(marker in log for marker in markers)


# Ordered (error_type, predicate) rules after the TypeScript parse; first match wins
_FALLBACK_RULES: tuple[tuple[BuildErrorType, Callable[[str], bool]], ...] = (
    (BuildErrorType.DEPENDENCY_ERROR, _has_marker(_DEPENDENCY_MARKERS)),
    (BuildErrorType.BUILD_ERROR, _has_marker(_BUILD_MARKERS)),
    (BuildErrorType.CONFIG_ERROR, _has_marker(_CONFIG_MARKERS)),
)


def classify_build_log(build_log: str, error_message: str | None = None) -> DeploymentErrorInfo:
    """Classify a failed deploy from its raw build log.

    Args:
        build_log: Raw build output from the hosting provider
        error_message: Provider's one-line failure summary, used as the
            message for non-TypeScript classes

    Returns:
        DeploymentErrorInfo; can_fix is True only for TYPE_ERROR with at
        least one parsed diagnostic
    """
    type_errors = _parse_type_errors(build_log)
    if type_errors:
        return DeploymentErrorInfo(
            error_type=BuildErrorType.TYPE_ERROR,
            errors=type_errors,
            build_log=build_log,
            can_fix=True,
        )

    error_type = BuildErrorType.UNKNOWN
    for candidate, matches in _FALLBACK_RULES:
        if matches(build_log):
            error_type = candidate
            break

    return DeploymentErrorInfo(
        error_type=error_type,
        errors=[ParsedError(file="unknown", message=error_message or "Build failed")],
        build_log=build_log,
        can_fix=False,
    )
