from rest_framework.routers import DefaultRouter

router = DefaultRouter()

# Admin jobs de vérification
from jobs.views import JobAdminViewSet
router.register(r"admin/jobs", JobAdminViewSet, basename="admin-jobs")
