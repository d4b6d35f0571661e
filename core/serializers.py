from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from core.models import AuditLog

User = get_user_model()


class EmailOrUsernameTokenObtainPairSerializer(TokenObtainPairSerializer):
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["role"] = getattr(user, "role", None)
        token["is_superuser"] = user.is_superuser
        return token

    def validate(self, attrs):
        username = attrs.get("username", "")
        if username and "@" in username:
            user = User.objects.filter(email__iexact=username).first()
            if user is not None:
                attrs["username"] = user.get_username()
        return super().validate(attrs)


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ["id", "username", "email", "first_name", "last_name", "role", "is_superuser"]
        read_only_fields = fields


class AuditLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "actor",
            "actor_username",
            "action",
            "entity",
            "entity_id",
            "before_snapshot",
            "after_snapshot",
            "request_id",
            "created_at",
        ]
        read_only_fields = fields
