from django.urls import path

from . import views

urlpatterns = [
    path(
        '',
        views.ListDisputesAPIView.as_view(),
        name='disputes-list',
    ),
    path(
        '<int:id>/',
        views.RetrieveDisputeAPIView.as_view(),
        name='disputes-detail',
    ),
    path(
        '<int:id>/review/',
        views.ReviewDisputeAPIView.as_view(),
        name='disputes-review',
    ),
    path(
        '<int:id>/resolve/',
        views.ResolveDisputeAPIView.as_view(),
        name='disputes-resolve',
    ),
    path(
        '<int:id>/close/',
        views.CloseDisputeAPIView.as_view(),
        name='disputes-close',
    ),
]
