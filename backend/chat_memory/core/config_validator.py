from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from chat_memory.core.config import Settings

HealthLevel = Literal["healthy", "warning", "critical"]
IssueLevel = Literal["error", "warning", "info"]


@dataclass
class ConfigValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ConfigIssue:
    level: IssueLevel
    message: str


@dataclass
class ConfigHealthCheck:
    overall: HealthLevel
    issues: list[ConfigIssue] = field(default_factory=list)


def validate_memory_config(settings: Settings) -> ConfigValidationResult:
    """Check memory settings for hard errors and tuning problems.

    Hard errors cover values that would break summarization. Warnings and
    recommendations are advisory and never block startup.
    """

    errors: list[str] = []
    warnings: list[str] = []
    recommendations: list[str] = []

    threshold = settings.memory_threshold
    recent = settings.recent_messages_limit

    if threshold <= 0:
        errors.append("Memory threshold must be greater than 0")
    elif threshold < 5:
        warnings.append("Memory threshold is very low, may cause frequent summarization")
    elif threshold > 50:
        warnings.append("Memory threshold is very high, may use excessive memory")

    if recent <= 0:
        errors.append("Recent messages limit must be greater than 0")
    elif recent >= threshold:
        errors.append("Recent messages limit must be less than memory threshold")
    elif recent < 3:
        warnings.append("Recent messages limit is very low, may lose conversation context")

    if settings.session_timeout_hours <= 0:
        errors.append("Session timeout must be greater than 0")
    elif settings.session_timeout_hours > 168:
        warnings.append("Session timeout is very long, may accumulate too many sessions")

    if settings.max_sessions <= 0:
        errors.append("Max sessions must be greater than 0")
    elif settings.max_sessions < 10:
        warnings.append("Max sessions is very low, may cause frequent cleanup")
    elif settings.max_sessions > 10000:
        warnings.append("Max sessions is very high, may use excessive memory")

    if settings.summary_provider == "off":
        warnings.append("Summary provider is off, summarization will be disabled")
    elif settings.summary_provider == "gemini":
        if not settings.gemini_api_key:
            warnings.append("Gemini API key not configured, summarization will be disabled")
            recommendations.append(
                "Set GEMINI_API_KEY environment variable to enable summarization"
            )
        elif len(settings.gemini_api_key) < 20:
            warnings.append("Gemini API key appears to be too short")

    if threshold > 0:
        ratio = recent / threshold
        if ratio > 0.8:
            warnings.append("Recent messages limit is too close to memory threshold")
            recommendations.append(
                "Consider increasing memory threshold or decreasing recent messages limit"
            )
        elif ratio < 0.3:
            recommendations.append(
                "Recent messages limit is quite low relative to threshold, "
                "consider increasing for better context"
            )

    if threshold * settings.max_sessions > 100_000:
        recommendations.append(
            "High memory usage expected with current settings, monitor system resources"
        )

    return ConfigValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        recommendations=recommendations,
    )


def config_health_check(settings: Settings) -> ConfigHealthCheck:
    """Fold a validation result into a single health level."""

    validation = validate_memory_config(settings)
    issues = (
        [ConfigIssue("error", message) for message in validation.errors]
        + [ConfigIssue("warning", message) for message in validation.warnings]
        + [ConfigIssue("info", message) for message in validation.recommendations]
    )
    overall: HealthLevel = "healthy"
    if validation.errors:
        overall = "critical"
    elif validation.warnings:
        overall = "warning"
    return ConfigHealthCheck(overall=overall, issues=issues)


def generate_config_report(settings: Settings) -> str:
    validation = validate_memory_config(settings)
    health = config_health_check(settings)
    lines = [
        "=== Memory Configuration Report ===",
        f"Overall Health: {health.overall.upper()}",
        "",
        "Current Configuration:",
        f"  Memory Threshold: {settings.memory_threshold} messages",
        f"  Recent Messages Limit: {settings.recent_messages_limit} messages",
        f"  Session Timeout: {settings.session_timeout_hours} hours",
        f"  Max Sessions: {settings.max_sessions}",
        f"  Summary Provider: {settings.summary_provider}",
        f"  API Key Configured: {'Yes' if settings.gemini_api_key else 'No'}",
        "",
    ]
    for title, items in (
        ("ERRORS:", validation.errors),
        ("WARNINGS:", validation.warnings),
        ("RECOMMENDATIONS:", validation.recommendations),
    ):
        if items:
            lines.append(title)
            lines.extend(f"  - {item}" for item in items)
            lines.append("")
    return "\n".join(lines).rstrip()
