from django.urls import path

from . import views

app_name = "widgets"

urlpatterns = [
    path("incr-widget-number/", views.incr_widget_number, name="incr_widget_number"),
]
