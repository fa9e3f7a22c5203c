"""Post-hoc guardrail suites producing pass / warn / fail verdicts.

Suites:
  schema        warn when the output reports unknown values; fail for malformed output
  data-quality  extraction: entities and facts present, confidences within [0, 1]
  validation    validation: is_valid -> pass, otherwise fail
  policy        arbitration: ALLOW / WARN / BLOCK -> pass / warn / fail
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from docpipe.core.errors import MalformedStepOutput

logger = structlog.get_logger()


class Verdict(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


SCHEMA = "schema"
POLICY = "policy"
DATA_QUALITY = "data-quality"
VALIDATION = "validation"

# A fail from one of these suites ends the run in error
BLOCKING_SUITES = frozenset({VALIDATION, POLICY})


@dataclass(frozen=True)
class GuardrailVerdict:
    suite: str
    verdict: Verdict
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def blocks_run(self) -> bool:
        return self.verdict is Verdict.FAIL and self.suite in BLOCKING_SUITES


SuiteFn = Callable[[dict[str, Any]], GuardrailVerdict]


def schema_suite(output: dict[str, Any]) -> GuardrailVerdict:
    unknown = output.get("unknown_values") or []
    if unknown:
        return GuardrailVerdict(
            SCHEMA,
            Verdict.WARN,
            {"unknown_values_count": len(unknown), "unknown_fields": [u.get("field") for u in unknown]},
        )
    return GuardrailVerdict(SCHEMA, Verdict.PASS, {"unknown_values_count": 0})


def data_quality_suite(output: dict[str, Any]) -> GuardrailVerdict:
    entities = output.get("entities") or []
    facts = output.get("facts") or []
    valid_confidences = all(
        isinstance(f.get("confidence"), (int, float)) and 0 <= f["confidence"] <= 1
        for f in facts
    )
    verdict = Verdict.PASS if entities and facts and valid_confidences else Verdict.WARN
    return GuardrailVerdict(
        DATA_QUALITY,
        verdict,
        {
            "entities_extracted": len(entities),
            "facts_extracted": len(facts),
            "valid_confidences": valid_confidences,
        },
    )


def validation_suite(output: dict[str, Any]) -> GuardrailVerdict:
    is_valid = bool(output.get("is_valid"))
    return GuardrailVerdict(
        VALIDATION,
        Verdict.PASS if is_valid else Verdict.FAIL,
        {
            "is_valid": is_valid,
            "contradictions": len(output.get("contradictions") or []),
            "missing_citations": len(output.get("missing_citations") or []),
            "schema_errors": len(output.get("schema_errors") or []),
        },
    )


_DECISION_VERDICTS = {"ALLOW": Verdict.PASS, "WARN": Verdict.WARN, "BLOCK": Verdict.FAIL}


def policy_suite(output: dict[str, Any]) -> GuardrailVerdict:
    decision = output.get("decision")
    return GuardrailVerdict(
        POLICY,
        _DECISION_VERDICTS.get(decision, Verdict.FAIL),
        {
            "decision": decision,
            "reasons": output.get("reasons") or [],
            "pii_detected": len(output.get("pii_detected") or []),
        },
    )


DEFAULT_SUITES: dict[str, SuiteFn] = {
    SCHEMA: schema_suite,
    DATA_QUALITY: data_quality_suite,
    VALIDATION: validation_suite,
    POLICY: policy_suite,
}


class GuardrailEvaluator:
    def __init__(self, suites: dict[str, SuiteFn] | None = None) -> None:
        self.suites = dict(suites if suites is not None else DEFAULT_SUITES)

    def register(self, name: str, fn: SuiteFn) -> None:
        self.suites[name] = fn

    def evaluate(self, suite: str, output: dict[str, Any]) -> GuardrailVerdict:
        try:
            fn = self.suites[suite]
        except KeyError:
            raise ValueError(f"Unknown guardrail suite: {suite}") from None
        result = fn(output)
        logger.info("Guardrail evaluated", suite=suite, verdict=result.verdict.value)
        return result

    @staticmethod
    def malformed(error: MalformedStepOutput) -> GuardrailVerdict:
        return GuardrailVerdict(
            SCHEMA,
            Verdict.FAIL,
            {"error": error.message, "validation_errors": error.errors},
        )
