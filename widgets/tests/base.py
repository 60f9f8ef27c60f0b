from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase

from widgets.context import Phase, WidgetRequestContext
from widgets.posts import WidgetPosts


class WidgetPostsTestCase(TestCase):
    def setUp(self):
        cache.clear()
        self.addCleanup(cache.clear)
        self.posts = WidgetPosts()
        self.posts.enable()

    def make_context(self, **kwargs):
        context = WidgetRequestContext(**kwargs)
        context.advance(Phase.FILTER_ACTIVE)
        return context

    def make_admin(self, username="admin"):
        return get_user_model().objects.create_superuser(
            username=username, email=f"{username}@example.com", password="pw"
        )

    def make_user(self, username="editor"):
        return get_user_model().objects.create_user(username=username, password="pw")
