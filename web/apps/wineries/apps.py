from django.apps import AppConfig


class WineriesConfig(AppConfig):
    name = "apps.wineries"
    label = "wineries"
