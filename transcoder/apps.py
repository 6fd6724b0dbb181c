from django.apps import AppConfig


class TranscoderConfig(AppConfig):
    name = 'transcoder'
    default_auto_field = 'django.db.models.BigAutoField'
    verbose_name = 'Transcoder'
