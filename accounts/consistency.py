"""
Therapist data consistency checks.

Therapist attributes are duplicated across User, TherapistEnrollment and
TherapistProfile. This module reports drift between the three and repairs it
using the enrollment as the source of truth.

Each table is repaired independently: a failure on one table is collected and
reported, and writes already made to the other tables are kept.
"""

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from .models import ConsistencyCheckLog, TherapistEnrollment, TherapistProfile, User

logger = logging.getLogger(__name__)

FIELD_ISSUE_PREFIXES = {
    'avatar': 'Avatar mismatch',
    'verification': 'Verification mismatch',
    'active_status': 'Active status mismatch',
    'name': 'Name mismatch',
    'bio': 'Bio mismatch',
    'experience': 'Experience mismatch',
}

_USER_FIELDS = ('id', 'email', 'full_name', 'avatar_url', 'is_verified', 'is_active')
_ENROLLMENT_FIELDS = ('id', 'email', 'full_name', 'status', 'is_active', 'profile_image_url', 'bio', 'experience_years')
_PROFILE_FIELDS = ('id', 'profile_image_url', 'bio', 'experience_years', 'is_verified', 'verification_status')


@dataclass
class ConsistencyCheck:
    email: str
    consistent: bool
    inconsistencies: List[str] = field(default_factory=list)
    data: Optional[Dict[str, Optional[dict]]] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FixResult:
    fixed: bool
    issues: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AuditReport:
    total: int
    consistent: int
    inconsistencies: int
    issues: List[dict]
    timestamp: str
    auto_fixed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FixAllResult:
    total: int = 0
    fixed: int = 0
    failed: int = 0
    errors: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _snapshot(instance, fields) -> Optional[dict]:
    if instance is None:
        return None
    return {name: getattr(instance, name) for name in fields}


def _load_records(email: str):
    user = User.objects.therapists().filter(email=email).first()
    enrollment = TherapistEnrollment.objects.filter(email=email).first()
    profile = None
    if user is not None:
        profile = TherapistProfile.objects.filter(user=user).first()
    return user, enrollment, profile


def check_therapist_consistency(email: str) -> ConsistencyCheck:
    """
    Compare one therapist's fields across the three tables.

    Args:
        email: Therapist email, the key shared by User and TherapistEnrollment

    Returns:
        ConsistencyCheck listing every mismatch found
    """
    inconsistencies = []
    user, enrollment, profile = _load_records(email)
    data = {
        'user': _snapshot(user, _USER_FIELDS),
        'enrollment': _snapshot(enrollment, _ENROLLMENT_FIELDS),
        'profile': _snapshot(profile, _PROFILE_FIELDS),
    }

    if user is None:
        inconsistencies.append('Missing user record')
    if enrollment is None:
        inconsistencies.append('Missing therapist_enrollments record')
    if user is not None and profile is None:
        inconsistencies.append('Missing therapist_profiles record')

    if user is None or enrollment is None:
        return ConsistencyCheck(email=email, consistent=False, inconsistencies=inconsistencies, data=data)

    if user.avatar_url != enrollment.profile_image_url:
        inconsistencies.append(
            f"Avatar mismatch: users.avatar_url ({user.avatar_url}) != "
            f"enrollments.profile_image_url ({enrollment.profile_image_url})"
        )
    if profile is not None and enrollment.profile_image_url != profile.profile_image_url:
        inconsistencies.append(
            'Avatar mismatch: enrollments.profile_image_url != profiles.profile_image_url'
        )

    if user.is_verified != enrollment.is_approved:
        inconsistencies.append(
            f"Verification mismatch: users.is_verified ({user.is_verified}) != "
            f"enrollments.status='approved' ({enrollment.is_approved})"
        )
    if profile is not None and user.is_verified != profile.is_verified:
        inconsistencies.append('Verification mismatch: users.is_verified != profiles.is_verified')

    if user.is_active != enrollment.is_active:
        inconsistencies.append(
            f"Active status mismatch: users.is_active ({user.is_active}) != "
            f"enrollments.is_active ({enrollment.is_active})"
        )

    if user.full_name != enrollment.full_name:
        inconsistencies.append(
            f'Name mismatch: users.full_name ("{user.full_name}") != '
            f'enrollments.full_name ("{enrollment.full_name}")'
        )

    if profile is not None and enrollment.bio != profile.bio:
        inconsistencies.append('Bio mismatch: enrollments.bio != profiles.bio')

    if profile is not None and enrollment.experience_years != profile.experience_years:
        inconsistencies.append(
            f"Experience mismatch: enrollments.experience_years ({enrollment.experience_years}) != "
            f"profiles.experience_years ({profile.experience_years})"
        )

    return ConsistencyCheck(
        email=email,
        consistent=not inconsistencies,
        inconsistencies=inconsistencies,
        data=data,
    )


def auto_fix_inconsistencies(email: str) -> FixResult:
    """
    Overwrite User and TherapistProfile from the enrollment record.

    A missing profile is created. Each table is written in its own atomic
    block, so one failing write leaves the other in place.
    """
    check = check_therapist_consistency(email)
    if check.consistent:
        return FixResult(fixed=False)

    logger.info("Auto-fixing %d inconsistencies for %s", len(check.inconsistencies), email)

    user, enrollment, _profile = _load_records(email)
    if enrollment is None:
        return FixResult(
            fixed=False,
            issues=check.inconsistencies,
            errors=['No enrollment data found - cannot auto-fix'],
        )
    if user is None:
        return FixResult(
            fixed=False,
            issues=check.inconsistencies,
            errors=['No user record found - cannot auto-fix'],
        )

    errors = []
    now = timezone.now()

    try:
        with transaction.atomic():
            User.objects.filter(pk=user.pk).update(
                full_name=enrollment.full_name,
                is_verified=enrollment.is_approved,
                is_active=enrollment.is_active,
                avatar_url=enrollment.profile_image_url,
                updated_at=now,
            )
    except DatabaseError as exc:
        logger.error("Failed to fix users row for %s: %s", email, exc)
        errors.append(f"Failed to fix users table: {exc}")

    try:
        with transaction.atomic():
            TherapistProfile.objects.update_or_create(
                user=user,
                defaults={
                    'profile_image_url': enrollment.profile_image_url,
                    'bio': enrollment.bio,
                    'experience_years': enrollment.experience_years,
                    'is_verified': enrollment.is_approved,
                    'verification_status': 'verified' if enrollment.is_approved else 'pending',
                },
            )
    except DatabaseError as exc:
        logger.error("Failed to fix therapist_profiles row for %s: %s", email, exc)
        errors.append(f"Failed to fix profiles table: {exc}")

    if errors:
        logger.warning("Auto-fix for %s finished with %d error(s)", email, len(errors))
    else:
        logger.info("Auto-fix completed for %s", email)

    return FixResult(fixed=not errors, issues=check.inconsistencies, errors=errors)


def audit_all_therapists() -> AuditReport:
    """Run check_therapist_consistency for every therapist account."""
    logger.info("Starting full therapist consistency audit")

    emails = list(User.objects.therapists().order_by('email').values_list('email', flat=True))
    consistent = 0
    issues = []

    for email in emails:
        check = check_therapist_consistency(email)
        if check.consistent:
            consistent += 1
        else:
            issues.append({'email': email, 'problems': check.inconsistencies})

    report = AuditReport(
        total=len(emails),
        consistent=consistent,
        inconsistencies=len(issues),
        issues=issues,
        timestamp=timezone.now().isoformat(),
    )
    logger.info(
        "Audit complete: total=%d consistent=%d inconsistent=%d",
        report.total, report.consistent, report.inconsistencies,
    )
    return report


def auto_fix_all() -> FixAllResult:
    """Audit, then auto-fix every therapist that came back inconsistent."""
    audit = audit_all_therapists()
    result = FixAllResult(total=audit.inconsistencies)

    for issue in audit.issues:
        fix = auto_fix_inconsistencies(issue['email'])
        if fix.fixed:
            result.fixed += 1
        else:
            result.failed += 1
            result.errors.append({
                'email': issue['email'],
                'error': ', '.join(fix.errors) or 'Unknown error',
            })

    logger.info("Auto-fix complete: fixed=%d failed=%d", result.fixed, result.failed)
    return result


def get_summary_report() -> dict:
    """Consistency rate plus the ten most frequent issue types."""
    audit = audit_all_therapists()

    issue_types = Counter(
        problem.split(':')[0]
        for item in audit.issues
        for problem in item['problems']
    )
    top_issues = [
        {'issue': issue, 'count': count}
        for issue, count in issue_types.most_common(10)
    ]
    consistency_rate = round(audit.consistent / audit.total * 100) if audit.total else 100

    return {
        'total_therapists': audit.total,
        'consistent': audit.consistent,
        'inconsistent': audit.inconsistencies,
        'consistency_rate': consistency_rate,
        'top_issues': top_issues,
    }


def check_field_consistency(field_name: str) -> dict:
    """
    Report which therapists have a mismatch on one field family.

    Args:
        field_name: One of FIELD_ISSUE_PREFIXES keys

    Raises:
        ValueError: If field_name is not a known field family
    """
    if field_name not in FIELD_ISSUE_PREFIXES:
        raise ValueError(
            f"Unknown field '{field_name}'. Expected one of: {', '.join(FIELD_ISSUE_PREFIXES)}"
        )

    keyword = FIELD_ISSUE_PREFIXES[field_name]
    audit = audit_all_therapists()
    affected = [
        item['email'] for item in audit.issues
        if any(problem.startswith(keyword) for problem in item['problems'])
    ]

    return {
        'total': audit.total,
        'consistent': audit.total - len(affected),
        'inconsistent': len(affected),
        'issues': affected,
    }


def run_consistency_check(auto_fix: Optional[bool] = None) -> AuditReport:
    """
    Scheduled audit of every therapist.

    Optionally repairs what it finds, records a ConsistencyCheckLog row and
    warns when the inconsistency count exceeds CONSISTENCY_ALERT_THRESHOLD.

    Args:
        auto_fix: Repair inconsistencies (defaults to AUTO_FIX_CONSISTENCY)

    Returns:
        AuditReport taken before any repair, with auto_fixed set
    """
    if auto_fix is None:
        auto_fix = settings.AUTO_FIX_CONSISTENCY

    report = audit_all_therapists()

    if report.inconsistencies:
        logger.warning("Found %d therapist(s) with inconsistent data", report.inconsistencies)
        if auto_fix:
            report.auto_fixed = auto_fix_all().fixed
    else:
        logger.info("All therapists consistent")

    ConsistencyCheckLog.objects.create(
        total_therapists=report.total,
        consistent=report.consistent,
        inconsistent=report.inconsistencies,
        auto_fixed=report.auto_fixed,
        issues_found=report.issues,
        timestamp=timezone.now(),
    )

    if report.inconsistencies > settings.CONSISTENCY_ALERT_THRESHOLD:
        logger.warning("High number of inconsistencies detected: %d", report.inconsistencies)

    return report
