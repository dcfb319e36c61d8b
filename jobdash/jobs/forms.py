"""Create / edit job form state and client-side validation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from jobdash.core.exceptions import MutationException, ValidationException
from jobdash.jobs.misfire import (
    DEFAULT_VARIANT_TAG,
    VARIANT_TAGS,
    MisfirePolicy,
    infer_duration,
    infer_variant_tag,
    policy_from_form,
)
from jobdash.jobs.models import CreateJobRequest, JobSpec, ShellRunner, UpdateJobRequest, has_duplicate_name
from jobdash.sync.mutations import MutationService


CRON_MACROS = {"@yearly", "@annually", "@monthly", "@weekly", "@daily", "@midnight", "@hourly"}
MONTH_NAMES = {
    name: number
    for number, name in enumerate(
        ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"], start=1
    )
}
WEEKDAY_NAMES = {name: number for number, name in enumerate(["SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"])}
_NUMBER_RE = re.compile(r"^[0-9]+$")


@dataclass(frozen=True)
class CronField:
    """Allowed values for one position of a cron expression."""
    name: str
    low: int
    high: int
    names: Mapping[str, int] = field(default_factory=dict)

    def value(self, token: str) -> Optional[int]:
        if _NUMBER_RE.match(token):
            number = int(token)
        else:
            number = self.names.get(token.upper())
        if number is None or not self.low <= number <= self.high:
            return None
        return number


SECOND = CronField("second", 0, 59)
MINUTE = CronField("minute", 0, 59)
HOUR = CronField("hour", 0, 23)
DAY = CronField("day", 1, 31)
MONTH = CronField("month", 1, 12, MONTH_NAMES)
WEEKDAY = CronField("weekday", 0, 7, WEEKDAY_NAMES)
YEAR = CronField("year", 1970, 2099)

# 5 fields is classic cron; 6 adds leading seconds, 7 a trailing year
CRON_LAYOUTS = {
    5: (MINUTE, HOUR, DAY, MONTH, WEEKDAY),
    6: (SECOND, MINUTE, HOUR, DAY, MONTH, WEEKDAY),
    7: (SECOND, MINUTE, HOUR, DAY, MONTH, WEEKDAY, YEAR),
}


def _valid_item(item: str, spec: CronField) -> bool:
    """One list item: ``*``, ``a``, ``a-b``, each optionally ``/step``."""
    base, slash, step = item.partition("/")
    if slash and not (_NUMBER_RE.match(step) and int(step) >= 1):
        return False
    if base == "*":
        return True
    start, dash, end = base.partition("-")
    low = spec.value(start)
    if low is None:
        return False
    if not dash:
        return True
    high = spec.value(end)
    return high is not None and low <= high


def _valid_day_marker(token: str, spec: CronField) -> bool:
    """Quartz day markers: ``?``, ``L``, ``LW``, ``15W``, ``5L``, ``FRI#2``."""
    token = token.upper()
    if spec is DAY:
        if token in ("?", "L", "LW"):
            return True
        return token.endswith("W") and spec.value(token[:-1]) is not None
    if spec is WEEKDAY:
        if token == "?":
            return True
        if token.endswith("L"):
            return spec.value(token[:-1]) is not None
        day, sep, nth = token.partition("#")
        return bool(sep) and spec.value(day) is not None and nth in ("1", "2", "3", "4", "5")
    return False


def is_valid_cron(expr: str) -> bool:
    """Check a 5-field cron (6/7 with seconds/year) or an @macro, field by field."""
    expr = (expr or "").strip()
    if not expr:
        return False
    if expr.startswith("@"):
        return expr.lower() in CRON_MACROS
    tokens = expr.split()
    layout = CRON_LAYOUTS.get(len(tokens))
    if layout is None:
        return False
    for token, spec in zip(tokens, layout):
        if _valid_day_marker(token, spec):
            continue
        if not all(_valid_item(item, spec) for item in token.split(",")):
            return False
    return True


@dataclass
class FormOutcome:
    """What happened on submit. ``job`` is set only when the server accepted it."""
    job: Optional[JobSpec] = None
    errors: Dict[str, str] = field(default_factory=dict)
    needs_confirmation: bool = False
    warning: Optional[str] = None
    error: Optional[str] = None

    @property
    def submitted(self) -> bool:
        return self.job is not None


class JobForm:
    """Controlled inputs for creating or editing a job."""

    def __init__(
        self,
        mutations: MutationService,
        existing_jobs: Optional[Iterable[JobSpec]] = None,
        initial: Optional[JobSpec] = None,
    ):
        self.mutations = mutations
        self.existing_jobs: List[JobSpec] = list(existing_jobs or [])
        self.initial = initial

        self.name = initial.name if initial else ""
        self.schedule_cron = (initial.schedule_cron or "") if initial else ""
        self.command = (initial.command or "") if initial else ""
        # only shell jobs carry a command the form can edit
        self.has_command = initial is None or isinstance(initial.runner_cfg, ShellRunner)
        self.max_concurrency = initial.max_concurrency if initial else 1
        self.misfire_tag = infer_variant_tag(initial.misfire_policy) if initial else DEFAULT_VARIANT_TAG
        self.misfire_seconds = infer_duration(initial.misfire_policy) if initial else 0

        self.errors: Dict[str, str] = {}
        self.mutation_error: Optional[str] = None

    @property
    def mode(self) -> str:
        return "edit" if self.initial is not None else "create"

    # ==================== Validation ====================

    def validate(self) -> Dict[str, str]:
        """Collect every field error. Nothing here touches the network."""
        errors: Dict[str, str] = {}
        checks = [
            self._check_name,
            self._check_command,
            self._check_cron,
            self._check_concurrency,
            self._check_misfire,
        ]
        for check in checks:
            try:
                check()
            except ValidationException as e:
                errors[e.field or "form"] = e.detail
        self.errors = errors
        return errors

    def _check_name(self) -> None:
        if not self.name.strip():
            raise ValidationException("Name is required", field="name")

    def _check_command(self) -> None:
        if self.has_command and not self.command.strip():
            raise ValidationException("Command is required", field="command")

    def _check_cron(self) -> None:
        if self.schedule_cron.strip() and not is_valid_cron(self.schedule_cron):
            raise ValidationException("Invalid cron expression", field="schedule_cron")

    def _check_concurrency(self) -> None:
        try:
            value = int(self.max_concurrency)
        except (TypeError, ValueError):
            raise ValidationException("Max concurrency must be a number", field="max_concurrency")
        if value < 1:
            raise ValidationException("Max concurrency must be at least 1", field="max_concurrency")

    def _check_misfire(self) -> None:
        if self.misfire_tag not in VARIANT_TAGS:
            raise ValidationException("Unknown misfire policy", field="misfire_policy")
        if self.misfire_tag != "run_if_late_within":
            return
        try:
            seconds = int(self.misfire_seconds)
        except (TypeError, ValueError):
            raise ValidationException("Duration must be a number of seconds", field="misfire_seconds")
        if seconds < 0:
            raise ValidationException("Duration must not be negative", field="misfire_seconds")

    def duplicate_name_warning(self) -> Optional[str]:
        candidate_id = self.initial.id if self.initial else None
        if has_duplicate_name(self.name.strip(), candidate_id, self.existing_jobs):
            return f'A job named "{self.name.strip()}" already exists'
        return None

    # ==================== Payloads ====================

    def misfire_policy(self) -> MisfirePolicy:
        return policy_from_form(self.misfire_tag, int(self.misfire_seconds))

    def to_create_request(self) -> CreateJobRequest:
        return CreateJobRequest(
            name=self.name.strip(),
            schedule_cron=self.schedule_cron.strip() or None,
            command=self.command.strip(),
            max_concurrency=int(self.max_concurrency),
            misfire_policy=self.misfire_policy(),
        )

    def to_update_request(self) -> UpdateJobRequest:
        fields = dict(
            name=self.name.strip(),
            schedule_cron=self.schedule_cron.strip() or None,
            max_concurrency=int(self.max_concurrency),
            misfire_policy=self.misfire_policy(),
        )
        if self.has_command:
            fields["command"] = self.command.strip()
        return UpdateJobRequest(**fields)

    # ==================== Submit ====================

    async def submit(self, confirm_duplicate: bool = False) -> FormOutcome:
        """Validate, warn on duplicate names, then create or update.

        A duplicate name does not block the submit; it only asks for
        ``confirm_duplicate=True`` first.
        """
        self.mutation_error = None
        errors = self.validate()
        if errors:
            return FormOutcome(errors=errors)

        warning = self.duplicate_name_warning()
        if warning and not confirm_duplicate:
            return FormOutcome(needs_confirmation=True, warning=warning)

        try:
            if self.initial is None:
                job = await self.mutations.create_job(self.to_create_request())
            else:
                job = await self.mutations.update_job(self.initial.id, self.to_update_request())
        except MutationException as e:
            self.mutation_error = e.detail
            return FormOutcome(warning=warning, error=e.detail)

        return FormOutcome(job=job, warning=warning)
