from django.db.models import Q
from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import generics, status, views
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.authentication import JWTAuthentication

from accounts import guards
from accounts.permissions import IsPartyOrAdministrator, IsSystemOrAdministrator, get_principal
from .models import EscrowTransaction
from .serializers import (
    EscrowCreateSerializer,
    EscrowDisputeSerializer,
    EscrowHoldSerializer,
    EscrowRefundSerializer,
    EscrowTransactionSerializer,
)
from .services import EscrowService


escrow_id_param = openapi.Parameter(
    'pk',
    openapi.IN_PATH,
    description="Escrow transaction ID",
    type=openapi.TYPE_INTEGER,
)


def escrow_response(detail, escrow, http_status=status.HTTP_200_OK):
    return Response({
        "detail": detail,
        "escrow": EscrowTransactionSerializer(escrow).data,
    }, status=http_status)


class EscrowTransactionListCreateView(generics.ListAPIView):
    """List escrows relevant to the authenticated user, or open one (system/admin)."""

    serializer_class = EscrowTransactionSerializer
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status']

    @swagger_auto_schema(
        operation_summary="List escrow transactions for the current user",
        responses={200: EscrowTransactionSerializer(many=True)}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    @swagger_auto_schema(
        operation_summary="Open an escrow for an order",
        request_body=EscrowCreateSerializer,
        responses={201: EscrowTransactionSerializer(), 400: "Validation error", 403: "Forbidden", 409: "Already exists"}
    )
    def post(self, request, *args, **kwargs):
        serializer = EscrowCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        escrow = EscrowService().create(principal=get_principal(request), **serializer.validated_data)
        return escrow_response("Escrow created.", escrow, status.HTTP_201_CREATED)

    def get_queryset(self):
        queryset = EscrowTransaction.objects.select_related('order', 'buyer', 'seller')
        principal = get_principal(self.request)
        if guards.is_admin(principal) or guards.is_system(principal):
            return queryset
        return queryset.filter(Q(buyer_id=principal.id) | Q(seller_id=principal.id))


class EscrowTransactionDetailView(generics.RetrieveAPIView):
    serializer_class = EscrowTransactionSerializer
    permission_classes = [IsAuthenticated, IsPartyOrAdministrator]
    authentication_classes = [JWTAuthentication]
    queryset = EscrowTransaction.objects.select_related('order', 'buyer', 'seller')

    @swagger_auto_schema(
        operation_summary="Retrieve a specific escrow transaction",
        responses={200: EscrowTransactionSerializer(), 404: "Not found"}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class EscrowHoldView(views.APIView):
    permission_classes = [IsAuthenticated, IsSystemOrAdministrator]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Mark escrow funds as held after payment clears",
        manual_parameters=[escrow_id_param],
        request_body=EscrowHoldSerializer,
        responses={200: EscrowTransactionSerializer(), 403: "Forbidden", 404: "Not found", 409: "Invalid state"}
    )
    def post(self, request, pk):
        serializer = EscrowHoldSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        escrow = EscrowService().hold(
            pk,
            get_principal(request),
            payment_reference=serializer.validated_data.get('payment_reference'),
        )
        return escrow_response("Funds held in escrow.", escrow)


class EscrowReleaseFundsView(views.APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Release funds from an escrow to the seller",
        manual_parameters=[escrow_id_param],
        request_body=openapi.Schema(type=openapi.TYPE_OBJECT, properties={}),
        responses={
            200: EscrowTransactionSerializer(),
            403: "Forbidden",
            404: "Not found",
            409: "Already finalized",
        }
    )
    def post(self, request, pk):
        escrow = EscrowService().release(pk, approved_by=get_principal(request))
        return escrow_response("Escrow released.", escrow)


class EscrowDisputeView(views.APIView):
    permission_classes = [IsAuthenticated, IsSystemOrAdministrator]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Freeze a held escrow pending dispute resolution",
        manual_parameters=[escrow_id_param],
        request_body=EscrowDisputeSerializer,
        responses={200: EscrowTransactionSerializer(), 403: "Forbidden", 409: "Invalid state"}
    )
    def post(self, request, pk):
        serializer = EscrowDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        escrow = EscrowService().dispute(pk, serializer.validated_data['reason'], get_principal(request))
        return escrow_response("Escrow disputed.", escrow)


class EscrowRefundView(views.APIView):
    permission_classes = [IsAuthenticated, IsSystemOrAdministrator]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Refund a disputed escrow to the buyer",
        manual_parameters=[escrow_id_param],
        request_body=EscrowRefundSerializer,
        responses={200: EscrowTransactionSerializer(), 400: "Validation error", 403: "Forbidden", 409: "Invalid state"}
    )
    def post(self, request, pk):
        serializer = EscrowRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        escrow = EscrowService().refund(pk, serializer.validated_data['amount'], approved_by=get_principal(request))
        return escrow_response("Escrow refunded.", escrow)


class EscrowRequestReleaseView(views.APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Ask an administrator to release a held escrow",
        manual_parameters=[escrow_id_param],
        request_body=openapi.Schema(type=openapi.TYPE_OBJECT, properties={}),
        responses={200: EscrowTransactionSerializer(), 403: "Forbidden", 409: "Conflict"}
    )
    def post(self, request, pk):
        escrow = EscrowService().request_release(pk, get_principal(request))
        return escrow_response("Release requested. An administrator will review it.", escrow)
