from django.http import HttpResponse
from django.utils import timezone
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import views
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.authentication import JWTAuthentication

from accounts.permissions import IsAdministrator, get_principal
from .serializers import AuditLogEntrySerializer, AuditLogQuerySerializer, AuditStatsQuerySerializer
from .services import AuditService


DEFAULT_LIST_LIMIT = 100

audit_query_params = [
    openapi.Parameter('actor_id', openapi.IN_QUERY, description="Actor ID ('system' for automated actions)", type=openapi.TYPE_STRING),
    openapi.Parameter('actor_email', openapi.IN_QUERY, description="Actor e-mail", type=openapi.TYPE_STRING),
    openapi.Parameter('action_type', openapi.IN_QUERY, description="Action type", type=openapi.TYPE_STRING),
    openapi.Parameter('severity', openapi.IN_QUERY, description="info, warning or critical", type=openapi.TYPE_STRING),
    openapi.Parameter('start', openapi.IN_QUERY, description="Earliest timestamp (ISO 8601)", type=openapi.TYPE_STRING),
    openapi.Parameter('end', openapi.IN_QUERY, description="Latest timestamp (ISO 8601)", type=openapi.TYPE_STRING),
    openapi.Parameter('limit', openapi.IN_QUERY, description="Maximum number of rows", type=openapi.TYPE_INTEGER),
]


def search_from_request(request, default_limit=None):
    serializer = AuditLogQuerySerializer(data=request.query_params)
    serializer.is_valid(raise_exception=True)
    filters = dict(serializer.validated_data)
    filters.setdefault('limit', default_limit)
    return AuditService().search(get_principal(request), **filters)


class AuditLogListAPIView(views.APIView):
    """
    Newest-first audit trail for administrators.
    """
    permission_classes = [IsAuthenticated, IsAdministrator]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Search the audit log",
        manual_parameters=audit_query_params,
        responses={200: AuditLogEntrySerializer(many=True), 403: "Forbidden"}
    )
    def get(self, request):
        entries = search_from_request(request, default_limit=DEFAULT_LIST_LIMIT)
        return Response({
            "count": len(entries),
            "results": AuditLogEntrySerializer(entries, many=True).data,
        })


class AuditLogExportAPIView(views.APIView):
    permission_classes = [IsAuthenticated, IsAdministrator]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Export the audit log as CSV",
        manual_parameters=audit_query_params,
        responses={200: "text/csv attachment", 403: "Forbidden"}
    )
    def get(self, request):
        entries = search_from_request(request)
        filename = f"audit-logs-{timezone.now():%Y-%m-%d}.csv"

        response = HttpResponse(AuditService().export_csv(entries), content_type='text/csv')
        response['Content-Disposition'] = f'attachment; filename="{filename}"'
        return response


class AuditLogStatsAPIView(views.APIView):
    permission_classes = [IsAuthenticated, IsAdministrator]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Audit log statistics",
        manual_parameters=[
            openapi.Parameter('days', openapi.IN_QUERY, description="Look-back window in days", type=openapi.TYPE_INTEGER),
        ],
        responses={200: openapi.Response(description="Totals, severity counts, top actions and top actors")}
    )
    def get(self, request):
        serializer = AuditStatsQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        return Response(AuditService().stats(get_principal(request), days=serializer.validated_data.get('days')))
