"""Views for the accounts app: scheduled and on-demand consistency checks."""

import logging

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from . import consistency
from .permissions import IsPlatformAdmin, has_cron_secret

logger = logging.getLogger(__name__)


class ConsistencyCheckView(APIView):
    """
    Therapist data consistency audit.

    GET /api/cron/consistency-check/ - Scheduled audit (Bearer CRON_SECRET)
    POST /api/cron/consistency-check/ - On-demand audit and summary (admins)
    """

    def get_permissions(self):
        if self.request.method == 'POST':
            return [IsPlatformAdmin()]
        return [AllowAny()]

    def get(self, request):
        """Run the audit, log it, and optionally auto-fix."""
        if not has_cron_secret(request):
            return Response(
                {'success': False, 'error': 'Unauthorized', 'code': 'UNAUTHORIZED'},
                status=status.HTTP_401_UNAUTHORIZED,
            )

        logger.info("Scheduled consistency check started")
        report = consistency.run_consistency_check()

        return Response({
            'success': True,
            'timestamp': report.timestamp,
            'summary': {
                'total': report.total,
                'consistent': report.consistent,
                'inconsistent': report.inconsistencies,
                'auto_fixed': report.auto_fixed,
            },
            'issues': report.issues[:5],
        })

    def post(self, request):
        """Audit everything, optionally fixing, and return the summary report."""
        auto_fix = bool(request.data.get('autoFix', False))

        report = consistency.audit_all_therapists()
        fix_result = consistency.auto_fix_all().to_dict() if auto_fix and report.inconsistencies else None
        summary = consistency.get_summary_report()

        return Response({
            'success': True,
            'report': report.to_dict(),
            'summary': summary,
            'fixResult': fix_result,
        })


class TherapistConsistencyView(APIView):
    """
    Check or fix a single therapist.

    GET /api/admin/consistency/?email=X - Check one therapist
    POST /api/admin/consistency/ - Auto-fix one therapist ({"email": X})
    """

    permission_classes = [IsPlatformAdmin]

    def get(self, request):
        email = request.query_params.get('email')
        if not email:
            return Response(
                {'success': False, 'error': 'email is required', 'code': 'MISSING_EMAIL'},
                status=status.HTTP_400_BAD_REQUEST,
            )
        check = consistency.check_therapist_consistency(email)
        return Response({'success': True, 'check': check.to_dict()})

    def post(self, request):
        email = request.data.get('email')
        if not email:
            return Response(
                {'success': False, 'error': 'email is required', 'code': 'MISSING_EMAIL'},
                status=status.HTTP_400_BAD_REQUEST,
            )
        result = consistency.auto_fix_inconsistencies(email)
        return Response({'success': not result.errors, 'result': result.to_dict()})
