from django.apps import AppConfig


class BranchesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'branches'

    def ready(self):
        """Import signals when app is ready"""
        import branches.signals  # noqa
