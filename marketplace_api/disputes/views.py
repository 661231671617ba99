from django.db.models import Q
from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import filters, generics, status, views
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.authentication import JWTAuthentication

from accounts import guards
from accounts.permissions import IsAdministrator, IsPartyOrAdministrator, get_principal
from . import serializers as my_serializers
from .models import Dispute
from .services import DisputeService


dispute_id_param = openapi.Parameter(
    'id',
    openapi.IN_PATH,
    description="Dispute ID",
    type=openapi.TYPE_INTEGER,
)


class ListDisputesAPIView(generics.ListAPIView):
    """
    List disputes.
    - Administrators see all disputes.
    - Buyers/Sellers see only disputes on their own orders.
    """
    serializer_class = my_serializers.DisputeDetailSerializer
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]
    filter_backends = [filters.OrderingFilter, DjangoFilterBackend]
    filterset_fields = ['status', 'reason']
    ordering_fields = ['created_at', 'updated_at']
    ordering = ['-updated_at']

    @swagger_auto_schema(
        operation_summary="List disputes with optional filtering",
        manual_parameters=[
            openapi.Parameter(
                'status',
                openapi.IN_QUERY,
                description="Filter disputes by status",
                type=openapi.TYPE_STRING
            ),
            openapi.Parameter(
                'reason',
                openapi.IN_QUERY,
                description="Filter disputes by reason",
                type=openapi.TYPE_STRING
            ),
            openapi.Parameter(
                'ordering',
                openapi.IN_QUERY,
                description="Order results by one of: created_at, updated_at",
                type=openapi.TYPE_STRING
            ),
        ],
        responses={200: my_serializers.DisputeDetailSerializer(many=True)}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        queryset = Dispute.objects.select_related('buyer', 'seller', 'admin')
        principal = get_principal(self.request)
        if guards.is_admin(principal):
            return queryset
        return queryset.filter(Q(buyer_id=principal.id) | Q(seller_id=principal.id))


class RetrieveDisputeAPIView(generics.RetrieveAPIView):
    """
    Retrieve a single dispute's details.
    Accessible only by the buyer, the seller or an administrator.
    """
    serializer_class = my_serializers.DisputeDetailSerializer
    permission_classes = [IsAuthenticated, IsPartyOrAdministrator]
    authentication_classes = [JWTAuthentication]
    queryset = Dispute.objects.select_related('buyer', 'seller', 'admin')
    lookup_field = 'id'

    @swagger_auto_schema(
        operation_summary="Retrieve a dispute",
        responses={200: my_serializers.DisputeDetailSerializer(), 404: "Not found"}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class ReviewDisputeAPIView(views.APIView):
    """
    Allows an administrator to take an open dispute under review.
    """
    permission_classes = [IsAuthenticated, IsAdministrator]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Start reviewing a dispute",
        manual_parameters=[dispute_id_param],
        request_body=openapi.Schema(type=openapi.TYPE_OBJECT, properties={}),
        responses={200: my_serializers.DisputeDetailSerializer(), 409: "Invalid state"}
    )
    def post(self, request, id):
        dispute = DisputeService().start_review(id, get_principal(request))
        return Response({
            "detail": "Dispute is now under review.",
            "dispute": my_serializers.DisputeDetailSerializer(dispute).data,
        })


class ResolveDisputeAPIView(views.APIView):
    """
    Allows an administrator to resolve a dispute with one fund disposition.
    """
    permission_classes = [IsAuthenticated, IsAdministrator]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Resolve a dispute",
        manual_parameters=[dispute_id_param],
        request_body=my_serializers.DisputeResolveSerializer,
        responses={
            200: openapi.Response(description="Dispute resolved"),
            400: "Validation error",
            409: "Already resolved",
        }
    )
    def post(self, request, id):
        serializer = my_serializers.DisputeResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = DisputeService().resolve(
            id,
            get_principal(request),
            serializer.validated_data['resolution'],
            serializer.validated_data['admin_notes'],
            refund_amount=serializer.validated_data.get('refund_amount'),
        )
        return Response({
            "detail": "Dispute resolved successfully.",
            "dispute": my_serializers.DisputeDetailSerializer(result['dispute']).data,
            "order_status": result['order_status'],
            "escrow_status": result['escrow_status'],
        }, status=status.HTTP_200_OK)


class CloseDisputeAPIView(views.APIView):
    """
    Allows an administrator to archive a resolved dispute.
    """
    permission_classes = [IsAuthenticated, IsAdministrator]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Close a resolved dispute",
        manual_parameters=[dispute_id_param],
        request_body=my_serializers.DisputeCloseSerializer,
        responses={200: my_serializers.DisputeDetailSerializer(), 409: "Invalid state"}
    )
    def post(self, request, id):
        serializer = my_serializers.DisputeCloseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        dispute = DisputeService().close(id, get_principal(request), serializer.validated_data['admin_notes'])
        return Response({
            "detail": "Dispute closed.",
            "dispute": my_serializers.DisputeDetailSerializer(dispute).data,
        })
