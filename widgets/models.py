from django.db import models


class WidgetInstance(models.Model):
    """One widget instance, addressed by its widget ID (``"{id_base}-{number}"``)."""

    widget_id = models.CharField(max_length=191, unique=True)
    title = models.CharField(max_length=255, blank=True, default="")
    content = models.TextField(blank=True, default="")
    legacy_content = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["widget_id"]

    def __str__(self):
        return self.widget_id


class Option(models.Model):
    """Generic named value stored as JSON text."""

    name = models.CharField(max_length=191, unique=True)
    value = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name
