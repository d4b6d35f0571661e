from rest_framework.routers import DefaultRouter

from labels.views import LabelTemplateViewSet

router = DefaultRouter()
router.register(r"labels", LabelTemplateViewSet, basename="label-template")

urlpatterns = router.urls
