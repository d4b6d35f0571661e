import logging

from django.db import DatabaseError, connections
from django.utils.dateparse import parse_datetime
from rest_framework import status, viewsets
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from common.permissions import RoleCapabilityPermission
from core.models import AuditLog
from core.serializers import AuditLogSerializer, EmailOrUsernameTokenObtainPairSerializer, UserSerializer

logger = logging.getLogger(__name__)


class EmailOrUsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class MeView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(UserSerializer(request.user).data)


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "user.manage", "retrieve": "user.manage"}

    def get_queryset(self):
        qs = self.queryset.order_by("-created_at")
        params = self.request.query_params

        start_date = parse_datetime(params.get("start_date") or "")
        end_date = parse_datetime(params.get("end_date") or "")
        if start_date:
            qs = qs.filter(created_at__gte=start_date)
        if end_date:
            qs = qs.filter(created_at__lte=end_date)
        for field in ("action", "entity", "entity_id"):
            value = params.get(field)
            if value:
                qs = qs.filter(**{field: value})
        actor_id = params.get("actor_id")
        if actor_id:
            qs = qs.filter(actor_id=actor_id)
        return qs


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except DatabaseError as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None), "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
