"""
Misfire policy variants and their label codec.

Wire form (what the backend sends and accepts):
    "skip" | "runImmediately" | "coalesce" | "runAll"
    {"runIfLateWithin": [seconds, nanos]}

Label form (what the form dropdown shows):
    "Skip" | "Run Immediately" | "Coalesce" | "Run All" | "Run if late (≤ Ns)"

The label only carries whole seconds, so nanos are always reconstructed as 0
when decoding a label.
"""

from __future__ import annotations

import math
import re
from typing import Any, Literal, Union

from pydantic import BaseModel, Field

from jobdash.core.exceptions import UnrecognizedLabelError


NANOS_PER_SECOND = 1_000_000_000


class Skip(BaseModel):
    kind: Literal["skip"] = "skip"


class RunImmediately(BaseModel):
    kind: Literal["runImmediately"] = "runImmediately"


class Coalesce(BaseModel):
    kind: Literal["coalesce"] = "coalesce"


class RunAll(BaseModel):
    kind: Literal["runAll"] = "runAll"


class RunIfLateWithin(BaseModel):
    """Fire a missed run only if it is at most ``seconds`` late."""
    kind: Literal["runIfLateWithin"] = "runIfLateWithin"
    seconds: int = Field(..., ge=0)
    nanos: int = Field(default=0, ge=0, lt=NANOS_PER_SECOND)

    @property
    def total_seconds(self) -> int:
        return self.seconds + _round_half_up(self.nanos / NANOS_PER_SECOND)


class UnknownMisfirePolicy(BaseModel):
    """A wire value none of the known variants match (e.g. a newer server)."""
    kind: Literal["unknown"] = "unknown"
    raw: Any = None


MisfirePolicy = Union[Skip, RunImmediately, Coalesce, RunAll, RunIfLateWithin, UnknownMisfirePolicy]


# ==================== Labels ====================

SKIP_LABEL = "Skip"
RUN_IMMEDIATELY_LABEL = "Run Immediately"
COALESCE_LABEL = "Coalesce"
RUN_ALL_LABEL = "Run All"
UNKNOWN_LABEL = "Unknown"

_RUN_IF_LATE_RE = re.compile(r"^Run if late \(≤ (\d+)s\)$")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def encode_label(policy: MisfirePolicy) -> str:
    """Render a policy as its dropdown label."""
    if isinstance(policy, Skip):
        return SKIP_LABEL
    if isinstance(policy, RunImmediately):
        return RUN_IMMEDIATELY_LABEL
    if isinstance(policy, Coalesce):
        return COALESCE_LABEL
    if isinstance(policy, RunAll):
        return RUN_ALL_LABEL
    if isinstance(policy, RunIfLateWithin):
        return f"Run if late (≤ {policy.total_seconds}s)"
    return UNKNOWN_LABEL


def decode_label(label: str) -> MisfirePolicy:
    """Parse a dropdown label back into a policy.

    Raises UnrecognizedLabelError for anything that is not one of the five
    known labels, "Unknown" included.
    """
    if label == SKIP_LABEL:
        return Skip()
    if label == RUN_IMMEDIATELY_LABEL:
        return RunImmediately()
    if label == COALESCE_LABEL:
        return Coalesce()
    if label == RUN_ALL_LABEL:
        return RunAll()

    match = _RUN_IF_LATE_RE.match(label or "")
    if match:
        return RunIfLateWithin(seconds=int(match.group(1)), nanos=0)

    raise UnrecognizedLabelError(label)


def safe_label(policy: Any) -> str:
    """Label for display; never raises."""
    if isinstance(policy, (Skip, RunImmediately, Coalesce, RunAll, RunIfLateWithin)):
        return encode_label(policy)
    return UNKNOWN_LABEL


# ==================== Form helpers ====================

VARIANT_TAGS = ("skip", "run_immediately", "coalesce", "run_all", "run_if_late_within")
DEFAULT_VARIANT_TAG = "run_immediately"


def infer_variant_tag(policy: MisfirePolicy) -> str:
    """Form dropdown tag for an existing policy; unknown falls back to the default."""
    if isinstance(policy, Skip):
        return "skip"
    if isinstance(policy, RunImmediately):
        return "run_immediately"
    if isinstance(policy, Coalesce):
        return "coalesce"
    if isinstance(policy, RunAll):
        return "run_all"
    if isinstance(policy, RunIfLateWithin):
        return "run_if_late_within"
    return DEFAULT_VARIANT_TAG


def infer_duration(policy: MisfirePolicy) -> int:
    """Seconds for run-if-late policies, 0 for everything else."""
    if isinstance(policy, RunIfLateWithin):
        return policy.seconds
    return 0


def policy_from_form(tag: str, seconds: int = 0) -> MisfirePolicy:
    """Build the policy a submitted form describes."""
    if tag == "skip":
        return Skip()
    if tag == "run_immediately":
        return RunImmediately()
    if tag == "coalesce":
        return Coalesce()
    if tag == "run_all":
        return RunAll()
    if tag == "run_if_late_within":
        return RunIfLateWithin(seconds=int(seconds), nanos=0)
    raise UnrecognizedLabelError(tag)


# ==================== Wire format ====================

_UNIT_VARIANTS = {
    "skip": Skip,
    "runImmediately": RunImmediately,
    "coalesce": Coalesce,
    "runAll": RunAll,
}


def parse_wire(value: Any) -> MisfirePolicy:
    """Decode a wire value. Unrecognized shapes become UnknownMisfirePolicy."""
    if isinstance(value, BaseModel) and isinstance(
        value, (Skip, RunImmediately, Coalesce, RunAll, RunIfLateWithin, UnknownMisfirePolicy)
    ):
        return value

    if isinstance(value, str) and value in _UNIT_VARIANTS:
        return _UNIT_VARIANTS[value]()

    if isinstance(value, dict) and "runIfLateWithin" in value:
        duration = value["runIfLateWithin"]
        if isinstance(duration, (list, tuple)) and len(duration) == 2:
            secs, nanos = duration
            if isinstance(secs, int) and isinstance(nanos, int) and secs >= 0 and 0 <= nanos < NANOS_PER_SECOND:
                return RunIfLateWithin(seconds=secs, nanos=nanos)

    return UnknownMisfirePolicy(raw=value)


def to_wire(policy: MisfirePolicy) -> Any:
    if isinstance(policy, RunIfLateWithin):
        return {"runIfLateWithin": [policy.seconds, policy.nanos]}
    if isinstance(policy, UnknownMisfirePolicy):
        return policy.raw
    return policy.kind
