"""Validation of schedule form input."""

from prnotify.core.config import GIT_PROVIDERS, MESSAGING_PROVIDERS
from prnotify.models.schedule import EscalationConfig, ScheduleInput, ScheduleValidationError
from prnotify.notifications.filters import validate_filters
from prnotify.scheduling.cron import (
    TIMEZONES,
    CronValidationError,
    convert_cron_to_utc,
    validate_cron,
)


def collect_errors(data: ScheduleInput) -> dict[str, str]:
    """Every field-level problem with the input, keyed by field name."""
    errors: dict[str, str] = {}

    if not data.name.strip():
        errors["name"] = "Name is required"

    if data.timezone not in TIMEZONES:
        errors["timezone"] = f"Unsupported timezone: {data.timezone}"

    if not data.cron_expression.strip():
        errors["cron_expression"] = "Cron expression is required"
    else:
        try:
            validate_cron(data.cron_expression)
        except CronValidationError:
            errors["cron_expression"] = (
                "Invalid cron expression format. "
                "Expected format: 'minute hour day month dayOfWeek'"
            )

    if data.git_provider_type not in GIT_PROVIDERS:
        errors["git_provider_type"] = "Select a git provider"
    if not data.git_provider_id:
        errors["git_provider_id"] = "Select a git provider account"
    if not data.repositories:
        errors["repositories"] = "Select at least one repository"

    if data.messaging_provider_type not in MESSAGING_PROVIDERS:
        errors["messaging_provider_type"] = "Select a messaging provider"
    if not data.messaging_provider_id:
        errors["messaging_provider_id"] = "Select a messaging provider account"
    if not data.messaging_channel_id:
        errors["messaging_channel_id"] = "Select a channel"

    if data.escalation_provider_id or data.escalation_channel_id:
        if data.escalation_provider_type not in MESSAGING_PROVIDERS:
            errors["escalation_provider_type"] = "Select an escalation provider"
        if not data.escalation_provider_id:
            errors["escalation_provider_id"] = (
                "escalation_provider_id is required when an escalation channel is set"
            )
        if data.escalation_days is None:
            errors["escalation_days"] = (
                "escalation_days is required when escalation is configured"
            )
        if not data.escalation_channel_id:
            errors["escalation_channel_id"] = (
                "escalation_channel_id is required when escalation is configured"
            )
        elif (
            data.escalation_channel_id == data.messaging_channel_id
            and data.escalation_provider_id == data.messaging_provider_id
        ):
            errors["escalation_channel_id"] = (
                "Escalation channel must differ from the notification channel"
            )
    if data.escalation_days is not None and data.escalation_days < 1:
        errors["escalation_days"] = "escalation_days must be at least 1"

    if data.pr_filters is not None:
        errors.update(validate_filters(data.pr_filters))

    if "cron_expression" not in errors and "timezone" not in errors:
        try:
            convert_cron_to_utc(data.cron_expression, data.timezone)
        except CronValidationError as e:
            errors["cron_expression"] = str(e)

    return errors


def build_schedule_fields(data: ScheduleInput) -> dict:
    """
    Validate schedule input and convert it to stored schedule fields.

    Returns:
        Fields for ScheduleStore.create_schedule / update_schedule, with the
        cron expression converted to UTC and escalation nested

    Raises:
        ScheduleValidationError: With every field-level error found
    """
    errors = collect_errors(data)
    if errors:
        raise ScheduleValidationError(errors)

    escalation = None
    if data.escalation_provider_id:
        escalation = EscalationConfig(
            provider_type=data.escalation_provider_type,
            provider_id=data.escalation_provider_id,
            channel_id=data.escalation_channel_id,
            days=data.escalation_days,
            mentions=data.escalation_mentions,
        )

    pr_filters = data.pr_filters
    if pr_filters is not None and pr_filters.is_empty():
        pr_filters = None

    return {
        "name": data.name.strip(),
        "cron_expression": convert_cron_to_utc(data.cron_expression, data.timezone),
        "timezone": data.timezone,
        "git_provider_type": data.git_provider_type,
        "git_provider_id": data.git_provider_id,
        "repositories": data.repositories,
        "messaging_provider_type": data.messaging_provider_type,
        "messaging_provider_id": data.messaging_provider_id,
        "messaging_channel_id": data.messaging_channel_id,
        "escalation": escalation,
        "pr_filters": pr_filters,
        "send_when_empty": data.send_when_empty,
        "is_active": data.is_active,
    }
