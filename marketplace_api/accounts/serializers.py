from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer
from rest_framework_simplejwt.exceptions import AuthenticationFailed

from .models import CustomUser
from .principal import Principal


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Serializer for login and token generation.

    Embeds the email and effective roles in the access token so that
    downstream consumers can display them without another lookup.
    """
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['email'] = user.email
        token['roles'] = sorted(Principal.from_user(user).roles)
        return token

    def validate(self, attrs):
        user = CustomUser.objects.filter(email=attrs.get('email')).first()
        if user is not None and not user.is_active:
            raise AuthenticationFailed("Your account is deactivated.")
        return super().validate(attrs)


class CurrentUserSerializer(serializers.ModelSerializer):
    """
    Read-only view of the authenticated account and the roles it acts with.
    """
    effective_roles = serializers.SerializerMethodField()

    class Meta:
        model = CustomUser
        fields = ['id', 'email', 'first_name', 'last_name', 'roles', 'effective_roles', 'created_at']
        read_only_fields = fields

    def get_effective_roles(self, obj):
        return sorted(Principal.from_user(obj).roles)
