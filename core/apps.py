from django.apps import AppConfig
from django.conf import settings


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'core'

    def ready(self):
        # Registra o receiver que recria os serviços quando o settings muda
        from core.servicos import obter_servicos

        # Varredura de sessões inativas (desligada nos testes e comandos de manutenção)
        if settings.SESSAO_VARREDURA_AUTOMATICA:
            obter_servicos().varredor.iniciar()
