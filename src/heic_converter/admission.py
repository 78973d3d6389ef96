from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from .config import AppConfig
from .errors import BatchValidationError
from .models import AdmissionDecision, AdmissionReport, CandidateFile
from .utils import suffix_of

REASON_TOO_LARGE = "file too large"
REASON_UNSUPPORTED = "unsupported type"

# A rule returns True (accept), False (reject) or None (no opinion).
RuleCheck = Callable[[CandidateFile], bool | None]


@dataclass(frozen=True, slots=True)
class AdmissionRule:
    name: str
    check: RuleCheck
    reason: str | None = None


def _normalized_type(candidate: CandidateFile) -> str:
    return (candidate.media_type or "").strip().lower()


class AdmissionFilter:
    """Ordered first-match classification of candidate inputs."""

    def __init__(self, config: AppConfig, rules: Sequence[AdmissionRule] | None = None) -> None:
        self._config = config
        self._rules: tuple[AdmissionRule, ...] = tuple(rules) if rules is not None else self.default_rules()

    @property
    def rules(self) -> tuple[AdmissionRule, ...]:
        return self._rules

    def default_rules(self) -> tuple[AdmissionRule, ...]:
        runtime = self._config.runtime
        admission = self._config.admission
        suffixes = {s.lower() for s in admission.accepted_suffixes}
        media_types = {t.lower() for t in admission.accepted_media_types}
        fallback_suffixes = {s.lower() for s in admission.fallback_suffixes}
        fallback_types = {t.lower() for t in admission.fallback_media_types}

        rules = [
            AdmissionRule(
                "max-size",
                lambda c: False if c.size > runtime.max_file_size_bytes else None,
                REASON_TOO_LARGE,
            ),
            AdmissionRule("suffix", lambda c: True if suffix_of(c.name) in suffixes else None),
            AdmissionRule("media-type", lambda c: True if _normalized_type(c) in media_types else None),
            # Camera pipelines frequently omit the type; the codec makes the real check.
            AdmissionRule("missing-type", lambda c: True if not _normalized_type(c) else None),
        ]
        if admission.enable_fallback_codec:
            rules.append(
                AdmissionRule(
                    "fallback-type",
                    lambda c: True
                    if _normalized_type(c) in fallback_types or suffix_of(c.name) in fallback_suffixes
                    else None,
                )
            )
        rules.append(AdmissionRule("unsupported", lambda c: False, REASON_UNSUPPORTED))
        return tuple(rules)

    def admit(self, candidate: CandidateFile) -> AdmissionDecision:
        for rule in self._rules:
            verdict = rule.check(candidate)
            if verdict is None:
                continue
            if verdict:
                return AdmissionDecision(candidate=candidate, accepted=True, rule=rule.name)
            return AdmissionDecision(
                candidate=candidate,
                accepted=False,
                rule=rule.name,
                reason=rule.reason or REASON_UNSUPPORTED,
            )
        return AdmissionDecision(candidate=candidate, accepted=False, rule="exhausted", reason=REASON_UNSUPPORTED)

    def check_count(self, count: int) -> None:
        max_files = self._config.runtime.max_files
        if count > max_files:
            raise BatchValidationError(
                "TOO_MANY_FILES",
                f"Too many files: {count} submitted, at most {max_files} allowed",
            )

    def screen(self, candidates: Sequence[CandidateFile]) -> AdmissionReport:
        """Classify a whole submission.

        Raises :class:`BatchValidationError` when the submission must be
        rejected as a whole: too many files, any oversized file, or no
        acceptable file at all. Type rejections are only reported.
        """

        self.check_count(len(candidates))
        report = AdmissionReport()
        for candidate in candidates:
            decision = self.admit(candidate)
            if decision.accepted:
                report.accepted.append(candidate)
            else:
                report.rejected.append(decision)

        oversized = [d.candidate.name for d in report.rejected if d.reason == REASON_TOO_LARGE]
        if oversized:
            limit_mb = self._config.runtime.max_file_size_mb
            raise BatchValidationError(
                "FILE_TOO_LARGE",
                f"File exceeds the {limit_mb} MB limit: {', '.join(oversized)}",
                names=oversized,
            )
        if candidates and not report.accepted:
            raise BatchValidationError(
                "NO_VALID_FILES",
                "No valid files",
                names=[d.candidate.name for d in report.rejected],
            )
        return report


__all__ = [
    "AdmissionFilter",
    "AdmissionRule",
    "REASON_TOO_LARGE",
    "REASON_UNSUPPORTED",
]
