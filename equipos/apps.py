from django.apps import AppConfig


class EquiposConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'equipos'
    verbose_name = 'Equipos Biomédicos'

    def ready(self):
        """Importar signals cuando la app esté lista."""
        import equipos.signals  # noqa
