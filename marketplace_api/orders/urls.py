from django.urls import path

from . import views

urlpatterns = [
    path('', views.OrderListAPIView.as_view(), name='order-list'),
    path('<int:pk>/', views.OrderDetailAPIView.as_view(), name='order-detail'),
    path('<int:pk>/advance/', views.OrderAdvanceAPIView.as_view(), name='order-advance'),
    path('<int:pk>/confirm-delivery/', views.OrderConfirmDeliveryAPIView.as_view(), name='order-confirm-delivery'),
    path('<int:pk>/cancel/', views.OrderCancelAPIView.as_view(), name='order-cancel'),
    path('<int:pk>/shipment/', views.OrderShipmentAPIView.as_view(), name='order-shipment'),
    path('<int:pk>/disputes/', views.OrderDisputesAPIView.as_view(), name='order-disputes'),
]
