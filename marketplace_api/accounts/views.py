from rest_framework_simplejwt import views as jwt_views, authentication
from rest_framework import generics, permissions
from drf_yasg.utils import swagger_auto_schema


from . import serializers as my_serializers
from .throttles import LoginRateThrottle


class CustomTokenObtainPairView(jwt_views.TokenObtainPairView):
    serializer_class = my_serializers.CustomTokenObtainPairSerializer
    throttle_classes = [LoginRateThrottle]


class CurrentUserRetrieveAPIView(generics.RetrieveAPIView):
    """
    Returns the account of the currently authenticated user, including the
    roles the marketplace services will see for it.
    """
    serializer_class = my_serializers.CurrentUserSerializer
    authentication_classes = [authentication.JWTAuthentication]
    permission_classes = [permissions.IsAuthenticated]

    @swagger_auto_schema(operation_summary="Retrieve the current user")
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_object(self):
        return self.request.user
