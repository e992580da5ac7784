from .verify_urls import urlpatterns  # noqa: F401
