"""
Comando Django para remover uploads temporários esquecidos no DATA_DIR/temp.
"""
from django.core.management.base import BaseCommand

from core.servicos import obter_servicos


class Command(BaseCommand):
    help = 'Remove arquivos temporários de upload mais antigos que a idade informada'

    def add_arguments(self, parser):
        parser.add_argument(
            '--idade',
            type=int,
            default=3600,
            help='Idade mínima em segundos para remover um arquivo (padrão: 3600)',
        )

    def handle(self, *args, **options):
        removidos = obter_servicos().upload.limpar_temporarios(options['idade'])

        if removidos == 0:
            self.stdout.write(
                self.style.SUCCESS('✓ Não há arquivos temporários para limpar.')
            )
            return

        self.stdout.write(
            self.style.SUCCESS(f'✓ {removidos} arquivo(s) temporário(s) removido(s).')
        )
