from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver


def flush_number_cache(widget_id: str) -> None:
    from .posts import WidgetPosts, parse_widget_id

    parsed = parse_widget_id(widget_id)
    if parsed is None:
        return
    WidgetPosts().flush_instance_numbers_cache(parsed[0])


@receiver(post_save, sender="widgets.WidgetInstance")
def widget_instance_saved(sender, instance, **kwargs):
    flush_number_cache(instance.widget_id)


@receiver(post_delete, sender="widgets.WidgetInstance")
def widget_instance_deleted(sender, instance, **kwargs):
    flush_number_cache(instance.widget_id)
