from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('widgets/', include('widgets.urls')),
    path('admin/', admin.site.urls),
]
