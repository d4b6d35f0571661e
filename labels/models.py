import uuid

from django.db import models
from django.db.models import Q


class LabelTemplate(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    # Millimetres.
    width = models.FloatField()
    height = models.FloatField()
    # Ordered list of element dicts; list order is the z-order.
    elements = models.JSONField(default=list)
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["is_default"],
                condition=Q(is_default=True),
                name="labels_single_default_template",
            ),
        ]

    def __str__(self):
        return self.name
