from django.db.models import Q
from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import filters, generics, status, views
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.authentication import JWTAuthentication

from accounts import guards
from accounts.permissions import IsPartyOrAdministrator, get_principal
from disputes.serializers import DisputeCreateSerializer, DisputeDetailSerializer
from disputes.services import DisputeService
from . import serializers as my_serializers
from .filters import OrderFilter
from .models import Order
from .services import OrderLifecycleService


order_id_param = openapi.Parameter(
    'pk',
    openapi.IN_PATH,
    description="Order ID",
    type=openapi.TYPE_INTEGER,
)


class OrderListAPIView(generics.ListAPIView):
    """
    List orders.
    - Administrators see every order.
    - Buyers and sellers see only orders they are a party to.
    """
    serializer_class = my_serializers.OrderSerializer
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]
    filter_backends = [filters.OrderingFilter, DjangoFilterBackend]
    filterset_class = OrderFilter
    ordering_fields = ['created_at', 'updated_at', 'total_amount']
    ordering = ['-created_at']

    @swagger_auto_schema(
        operation_summary="List orders visible to the current user",
        manual_parameters=[
            openapi.Parameter('status', openapi.IN_QUERY, description="Filter orders by status", type=openapi.TYPE_STRING),
            openapi.Parameter('role', openapi.IN_QUERY, description="buyer or seller", type=openapi.TYPE_STRING),
        ],
        responses={200: my_serializers.OrderSerializer(many=True)}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        queryset = Order.objects.select_related('buyer', 'seller', 'escrow').prefetch_related('items')
        principal = get_principal(self.request)
        if guards.is_admin(principal):
            return queryset
        return queryset.filter(Q(buyer_id=principal.id) | Q(seller_id=principal.id))


class OrderDetailAPIView(generics.RetrieveAPIView):
    serializer_class = my_serializers.OrderSerializer
    permission_classes = [IsAuthenticated, IsPartyOrAdministrator]
    authentication_classes = [JWTAuthentication]
    queryset = Order.objects.select_related('buyer', 'seller', 'escrow').prefetch_related('items')

    @swagger_auto_schema(
        operation_summary="Retrieve an order",
        responses={200: my_serializers.OrderSerializer(), 404: "Not found"}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class OrderAdvanceAPIView(views.APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Move an order to its next fulfillment status",
        manual_parameters=[order_id_param],
        request_body=my_serializers.OrderAdvanceSerializer,
        responses={200: my_serializers.OrderSerializer(), 403: "Forbidden", 409: "Invalid transition"}
    )
    def post(self, request, pk):
        serializer = my_serializers.OrderAdvanceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = OrderLifecycleService().advance(
            pk,
            get_principal(request),
            serializer.validated_data['target_status'],
            tracking_number=serializer.validated_data.get('tracking_number'),
            estimated_delivery_date=serializer.validated_data.get('estimated_delivery_date'),
        )
        return Response({
            "detail": f"Order moved to {order.status}.",
            "order": my_serializers.OrderSerializer(order).data,
        }, status=status.HTTP_200_OK)


class OrderConfirmDeliveryAPIView(views.APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Confirm delivery of an order as its buyer",
        manual_parameters=[order_id_param],
        request_body=openapi.Schema(type=openapi.TYPE_OBJECT, properties={}),
        responses={200: my_serializers.OrderSerializer(), 403: "Forbidden", 409: "Invalid state"}
    )
    def post(self, request, pk):
        order = OrderLifecycleService().confirm_delivery(pk, get_principal(request))
        return Response({
            "detail": "Delivery confirmed.",
            "order": my_serializers.OrderSerializer(order).data,
        }, status=status.HTTP_200_OK)


class OrderCancelAPIView(views.APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Cancel an order before fulfillment starts",
        manual_parameters=[order_id_param],
        request_body=my_serializers.OrderCancelSerializer,
        responses={200: my_serializers.OrderSerializer(), 403: "Forbidden", 409: "Invalid state"}
    )
    def post(self, request, pk):
        serializer = my_serializers.OrderCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = OrderLifecycleService().cancel(pk, get_principal(request), serializer.validated_data['reason'])
        return Response({
            "detail": "Order cancelled.",
            "order": my_serializers.OrderSerializer(order).data,
        }, status=status.HTTP_200_OK)


class OrderShipmentAPIView(views.APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Update tracking details of an order as its seller",
        manual_parameters=[order_id_param],
        request_body=my_serializers.ShipmentUpdateSerializer,
        responses={200: my_serializers.OrderSerializer(), 403: "Forbidden", 409: "Invalid state"}
    )
    def patch(self, request, pk):
        serializer = my_serializers.ShipmentUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = OrderLifecycleService().update_shipment(
            pk,
            get_principal(request),
            tracking_number=serializer.validated_data.get('tracking_number'),
            estimated_delivery_date=serializer.validated_data.get('estimated_delivery_date'),
        )
        return Response({
            "detail": "Shipment details updated.",
            "order": my_serializers.OrderSerializer(order).data,
        }, status=status.HTTP_200_OK)


class OrderDisputesAPIView(views.APIView):
    """
    GET lists the disputes raised on an order; POST opens a new one (buyer only).
    """
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="List disputes for an order",
        manual_parameters=[
            order_id_param,
            openapi.Parameter(
                'status',
                openapi.IN_QUERY,
                description="Comma separated dispute statuses",
                type=openapi.TYPE_STRING,
            ),
        ],
        responses={200: DisputeDetailSerializer(many=True), 403: "Forbidden", 404: "Not found"}
    )
    def get(self, request, pk):
        raw = request.query_params.get('status', '')
        statuses = [value.strip() for value in raw.split(',') if value.strip()]
        disputes = DisputeService().disputes_for_order(pk, get_principal(request), statuses or None)
        return Response(DisputeDetailSerializer(disputes, many=True).data)

    @swagger_auto_schema(
        operation_summary="Open a dispute on an order",
        manual_parameters=[order_id_param],
        request_body=DisputeCreateSerializer,
        responses={
            201: openapi.Response(description="Dispute created successfully"),
            400: "Validation error",
            403: "Forbidden",
            409: "Conflict",
        }
    )
    def post(self, request, pk):
        # The service checks the order and its buyer before it looks at the input.
        dispute = DisputeService().open(
            pk,
            get_principal(request),
            request.data.get('reason'),
            request.data.get('description'),
            request.data.get('evidence_urls'),
        )
        return Response({
            "detail": "Dispute created successfully.",
            "dispute": DisputeDetailSerializer(dispute).data,
        }, status=status.HTTP_201_CREATED)
