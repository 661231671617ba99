from django.urls import path

from . import views

urlpatterns = [
    path('', views.AuditLogListAPIView.as_view(), name='audit-log-list'),
    path('export/', views.AuditLogExportAPIView.as_view(), name='audit-log-export'),
    path('stats/', views.AuditLogStatsAPIView.as_view(), name='audit-log-stats'),
]
