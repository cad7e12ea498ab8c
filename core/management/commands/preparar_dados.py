"""
Comando Django para preparar o diretório de dados do verificador.
"""
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from core.datasets import BASE_CTOS, PROJETISTAS, TABULACOES, VI_ALA
from core.exceptions import ErroVerificador
from core.servicos import obter_servicos


class Command(BaseCommand):
    help = 'Cria as planilhas que faltam no DATA_DIR e migra o base.xlsx antigo'

    def handle(self, *args, **options):
        servicos = obter_servicos()
        self.stdout.write(f'Diretório de dados: {settings.DATA_DIR}')

        try:
            servicos.preparar_dados()
            # Listar as tabulações cria o arquivo com os valores padrão
            servicos.tabulacoes.listar()
        except ErroVerificador as e:
            raise CommandError(f'Erro ao preparar dados: {e}')

        for chave in (PROJETISTAS, TABULACOES, VI_ALA, BASE_CTOS):
            caminho = servicos.store.caminho_atual(chave)
            if caminho:
                self.stdout.write(self.style.SUCCESS(f'✓ {chave}: {caminho}'))
            else:
                self.stdout.write(self.style.WARNING(f'⚠ {chave}: ainda não existe'))
