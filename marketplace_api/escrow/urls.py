from django.urls import path

from . import views

urlpatterns = [
    path("", views.EscrowTransactionListCreateView.as_view(), name="escrow-list"),
    path("<int:pk>/", views.EscrowTransactionDetailView.as_view(), name="escrow-detail"),
    path("<int:pk>/hold/", views.EscrowHoldView.as_view(), name="escrow-hold"),
    path("<int:pk>/release/", views.EscrowReleaseFundsView.as_view(), name="escrow-release"),
    path("<int:pk>/dispute/", views.EscrowDisputeView.as_view(), name="escrow-dispute"),
    path("<int:pk>/refund/", views.EscrowRefundView.as_view(), name="escrow-refund"),
    path("<int:pk>/request-release/", views.EscrowRequestReleaseView.as_view(), name="escrow-request-release"),
]
