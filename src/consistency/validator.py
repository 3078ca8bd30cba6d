"""
Consistency Validator - business rules for cached record collections.

Every rule runs against every collection and violations aggregate into
one report. Two gates use the report:

- ``validate_before_write`` is preventive and raises, so the write never
  happens.
- ``validate_after_read`` is detective: it raises an alert through the
  monitor but still lets the caller use the data.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from ..shared.cache_monitor import AlertSeverity, CacheMonitor, safe_emit
from ..shared.config import ValidationSettings
from ..shared.exceptions import ValidationError

logger = structlog.get_logger(__name__)

Record = Dict[str, Any]


class RuleSeverity(str, Enum):
    """Rule severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ValidationRule:
    """
    A named business rule.

    ``check`` returns True when the collection complies; ``violations``
    describes the offending records.
    """
    name: str
    description: str
    check: Callable[[Sequence[Record]], bool]
    violations: Callable[[Sequence[Record]], List[str]]
    severity: RuleSeverity = RuleSeverity.HIGH


@dataclass
class ConsistencyReport:
    """Aggregated outcome of every rule."""
    valid: bool
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    violated_rules: List[str] = field(default_factory=list)
    statistics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'issues': list(self.issues),
            'warnings': list(self.warnings),
            'violated_rules': list(self.violated_rules),
            'statistics': dict(self.statistics),
        }


def describe(record: Record) -> str:
    """Human-readable label for a record."""
    name = " ".join(str(record[k]) for k in ('first_name', 'last_name') if record.get(k))
    if not name:
        name = str(record.get('name') or record.get('title') or "unnamed")
    if record.get('id') is not None:
        return f"{name} ({record['id']})"
    return name


def status_rule(
    name: str,
    field_name: str,
    expected: str,
    description: str,
    severity: RuleSeverity = RuleSeverity.HIGH
) -> ValidationRule:
    """Rule: every record has ``field_name == expected``."""

    def offenders(records):
        return [r for r in records if r.get(field_name) != expected]

    return ValidationRule(
        name=name,
        description=description,
        check=lambda records: not offenders(records),
        violations=lambda records: [f"{describe(r)} ({r.get(field_name)})" for r in offenders(records)],
        severity=severity
    )


def excluded_value_rule(
    name: str,
    field_name: str,
    excluded: str,
    description: str,
    severity: RuleSeverity = RuleSeverity.CRITICAL
) -> ValidationRule:
    """Rule: no record has ``field_name == excluded``."""

    def offenders(records):
        return [r for r in records if r.get(field_name) == excluded]

    return ValidationRule(
        name=name,
        description=description,
        check=lambda records: not offenders(records),
        violations=lambda records: [describe(r) for r in offenders(records)],
        severity=severity
    )


def flag_rule(
    name: str,
    field_name: str,
    description: str,
    severity: RuleSeverity = RuleSeverity.CRITICAL
) -> ValidationRule:
    """Rule: no record has the flag explicitly set to False. Missing counts as set."""

    def offenders(records):
        return [r for r in records if r.get(field_name) is False]

    return ValidationRule(
        name=name,
        description=description,
        check=lambda records: not offenders(records),
        violations=lambda records: [describe(r) for r in offenders(records)],
        severity=severity
    )


def denylist_rule(
    name: str,
    identities: Iterable[Tuple[str, str]],
    description: str = "Known-bad records must never be cached",
    fields: Tuple[str, str] = ('first_name', 'last_name')
) -> ValidationRule:
    """
    Regression guard: none of the given identities may appear.

    Identities are matched case-insensitively on the two ``fields``.
    """
    denied = {(a.strip().lower(), b.strip().lower()) for a, b in identities}

    def key(record):
        return (str(record.get(fields[0]) or "").strip().lower(),
                str(record.get(fields[1]) or "").strip().lower())

    def offenders(records):
        return [r for r in records if key(r) in denied]

    return ValidationRule(
        name=name,
        description=description,
        check=lambda records: not offenders(records),
        violations=lambda records: [f"{describe(r)} found in cache" for r in offenders(records)],
        severity=RuleSeverity.CRITICAL
    )


class ConsistencyValidator:
    """Runs business rules over record collections."""

    def __init__(
        self,
        rules: Optional[List[ValidationRule]] = None,
        monitor: Optional[CacheMonitor] = None,
        status_field: str = "registration_status",
        confirmed_status: str = "confirmed",
        active_field: str = "is_active"
    ):
        self.status_field = status_field
        self.confirmed_status = confirmed_status
        self.active_field = active_field
        self.monitor = monitor
        self._rules: List[ValidationRule] = list(rules) if rules is not None else self.default_rules()

    @classmethod
    def from_settings(cls, settings: ValidationSettings, monitor: Optional[CacheMonitor] = None) -> 'ConsistencyValidator':
        validator = cls(
            rules=[],
            monitor=monitor,
            status_field=settings.validation_status_field,
            confirmed_status=settings.validation_confirmed_status,
            active_field=settings.validation_active_field
        )
        for rule in validator.default_rules(pending_status=settings.validation_pending_status):
            validator.add_rule(rule)

        identities = settings.get_denylist()
        if identities:
            validator.add_rule(denylist_rule("no_denylisted_records", identities))
        return validator

    def default_rules(self, pending_status: str = "pending") -> List[ValidationRule]:
        return [
            status_rule(
                "confirmed_records_only",
                self.status_field,
                self.confirmed_status,
                "Only confirmed records may be cached"
            ),
            flag_rule(
                "active_records_only",
                self.active_field,
                "Inactive records must never be cached"
            ),
            excluded_value_rule(
                "no_pending_records",
                self.status_field,
                pending_status,
                "Pending records must never be cached"
            ),
        ]

    @property
    def rules(self) -> List[ValidationRule]:
        return list(self._rules)

    def add_rule(self, rule: ValidationRule) -> None:
        if any(r.name == rule.name for r in self._rules):
            raise ValueError(f"Rule already registered: {rule.name}")
        self._rules.append(rule)

    def validate_collection(self, records: Sequence[Record]) -> ConsistencyReport:
        issues = []
        warnings = []
        violated = []

        if not records:
            warnings.append("Collection is empty")

        for rule in self._rules:
            try:
                if rule.check(records):
                    continue
                offenders = rule.violations(records)
                issues.append(f"{rule.name}: {', '.join(offenders)}")
            except Exception as e:
                issues.append(f"{rule.name}: rule failed to run ({e})")
            violated.append(rule.name)

        return ConsistencyReport(
            valid=not issues,
            issues=issues,
            warnings=warnings,
            violated_rules=violated,
            statistics=self.statistics(records)
        )

    def detect_policy_bypass(self, records: Sequence[Record]) -> bool:
        """True when any critical rule is violated."""
        for rule in self._rules:
            if rule.severity != RuleSeverity.CRITICAL:
                continue
            try:
                if not rule.check(records):
                    return True
            except Exception as e:
                logger.warning("Critical rule failed to run", rule=rule.name, error=str(e))
                return True
        return False

    def statistics(self, records: Sequence[Record]) -> Dict[str, Any]:
        total = len(records)
        confirmed = sum(1 for r in records if r.get(self.status_field) == self.confirmed_status)
        active = sum(1 for r in records if r.get(self.active_field) is not False)
        compliant = sum(
            1 for r in records
            if r.get(self.status_field) == self.confirmed_status and r.get(self.active_field) is not False
        )
        return {
            'total_records': total,
            'confirmed_records': confirmed,
            'active_records': active,
            'filtered_out_records': total - compliant,
            'compliance_rate': (confirmed / total * 100) if total else 100.0,
        }

    def validate_before_write(self, records: Sequence[Record], resource: str = "collection") -> ConsistencyReport:
        """
        Preventive gate.

        Raises:
            ValidationError: If any rule is violated.
        """
        report = self.validate_collection(records)
        if not report.valid:
            logger.error("Refusing to cache invalid collection", resource=resource, issues=report.issues)
            raise ValidationError(
                f"Validation failed for {resource}: {'; '.join(report.issues)}",
                report=report
            )
        return report

    def validate_after_read(self, records: Sequence[Record], resource: str = "collection") -> ConsistencyReport:
        """Detective gate. Never raises; violations produce an alert."""
        try:
            report = self.validate_collection(records)
        except Exception as e:
            logger.error("Post-read validation failed to run", resource=resource, error=str(e))
            return ConsistencyReport(valid=False, issues=[f"validation failed to run: {e}"])

        if not report.valid:
            critical = self.detect_policy_bypass(records)
            logger.warning(
                "Cached collection violates business rules",
                resource=resource,
                issues=report.issues,
                critical=critical
            )
            safe_emit(
                self.monitor,
                'alert',
                AlertSeverity.CRITICAL if critical else AlertSeverity.HIGH,
                f"Cache validation failed: {resource}",
                "; ".join(report.issues),
                source="consistency_validator",
                details=report.to_dict()
            )
        return report

    def validation_report_text(self, records: Sequence[Record]) -> str:
        """Plain-text report for diagnostics."""
        report = self.validate_collection(records)
        stats = report.statistics
        lines = [
            "Data Validation Report",
            "======================",
            "",
            f"Total records: {stats['total_records']}",
            f"Confirmed records: {stats['confirmed_records']}",
            f"Active records: {stats['active_records']}",
            f"Filtered out: {stats['filtered_out_records']}",
            f"Compliance rate: {stats['compliance_rate']:.1f}%",
            "",
            f"Status: {'VALID' if report.valid else 'INVALID'}",
        ]
        if report.issues:
            lines.append("")
            lines.append("Issues:")
            lines.extend(f"  - {issue}" for issue in report.issues)
        if report.warnings:
            lines.append("")
            lines.append("Warnings:")
            lines.extend(f"  - {warning}" for warning in report.warnings)
        return "\n".join(lines)
