from django.contrib import admin

from .models import Option, WidgetInstance


@admin.register(WidgetInstance)
class WidgetInstanceAdmin(admin.ModelAdmin):
    list_display = ("widget_id", "title", "updated_at")
    search_fields = ("widget_id", "title")
    readonly_fields = ("created_at", "updated_at")


admin.site.register(Option)
