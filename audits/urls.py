from django.urls import path

from . import views

app_name = "audits"

urlpatterns = [
    path("audits/<uuid:audit_id>/", views.audit_summary, name="summary"),
    path("audits/<uuid:audit_id>/compare/<uuid:other_id>/", views.audit_compare, name="compare"),
]
