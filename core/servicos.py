"""
Instâncias compartilhadas dos serviços, montadas a partir do settings
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from django.conf import settings
from django.dispatch import receiver
from django.test.signals import setting_changed

from .backends import ArquivoBackend, BackendComFallback, PersistenceBackend, SupabaseBackend
from .datasets import BASE_CTOS, DatasetStore
from .locks import GerenciadorLocks
from .projetistas import ServicoProjetistas
from .sessoes import RastreadorSessoes, VarredorSessoes
from .tabulacoes import ServicoTabulacoes
from .upload import PipelineUpload
from .vi_ala import AlocadorVIALA

logger = logging.getLogger(__name__)


@dataclass
class Servicos:
    locks: GerenciadorLocks
    store: DatasetStore
    backend: PersistenceBackend
    supabase: Optional[SupabaseBackend]
    sessoes: RastreadorSessoes
    varredor: VarredorSessoes
    projetistas: ServicoProjetistas
    tabulacoes: ServicoTabulacoes
    vi_ala: AlocadorVIALA
    upload: PipelineUpload
    executor: ThreadPoolExecutor

    def preparar_dados(self) -> None:
        """Garante o diretório de dados, a base VI ALA e migra o base.xlsx antigo"""
        self.store.diretorio.mkdir(parents=True, exist_ok=True)
        self.vi_ala.garantir_base()
        self.store.migrar_legado(BASE_CTOS)

    def encerrar(self) -> None:
        self.varredor.parar(timeout=1)
        self.executor.shutdown(wait=False)


def construir_servicos() -> Servicos:
    diretorio = Path(settings.DATA_DIR)
    locks = GerenciadorLocks(timeout=settings.DATASTORE_LOCK_TIMEOUT)
    store = DatasetStore(diretorio, locks, retencao_backups=settings.DATASTORE_BACKUP_RETENTION)

    arquivos = ArquivoBackend(store)
    supabase = None
    backend: PersistenceBackend = arquivos
    if settings.SUPABASE_URL and settings.SUPABASE_SERVICE_KEY:
        supabase = SupabaseBackend(
            settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY, locks, timeout=settings.SUPABASE_TIMEOUT
        )
        backend = BackendComFallback(supabase, arquivos)
        logger.info("Supabase configurado, planilhas locais como fallback")
    else:
        logger.info("Supabase não configurado, usando apenas planilhas locais")

    sessoes = RastreadorSessoes(timeout=settings.SESSAO_TIMEOUT)
    return Servicos(
        locks=locks,
        store=store,
        backend=backend,
        supabase=supabase,
        sessoes=sessoes,
        varredor=VarredorSessoes(sessoes, settings.SESSAO_VARREDURA_INTERVALO),
        projetistas=ServicoProjetistas(backend, sessoes),
        tabulacoes=ServicoTabulacoes(backend),
        vi_ala=AlocadorVIALA(store, prefixo=settings.VI_ALA_PREFIXO),
        upload=PipelineUpload(store, diretorio / "temp", settings.UPLOAD_MAX_BYTES, espelho=supabase),
        executor=ThreadPoolExecutor(max_workers=1, thread_name_prefix="upload"),
    )


_servicos: Optional[Servicos] = None
_mutex = threading.Lock()


def obter_servicos() -> Servicos:
    global _servicos
    with _mutex:
        if _servicos is None:
            _servicos = construir_servicos()
        return _servicos


def redefinir_servicos() -> None:
    """Descarta as instâncias atuais (usado quando o settings muda, ex.: nos testes)"""
    global _servicos
    with _mutex:
        if _servicos is not None:
            _servicos.encerrar()
        _servicos = None


AJUSTES_SERVICOS = {
    "DATA_DIR", "DATASTORE_LOCK_TIMEOUT", "DATASTORE_BACKUP_RETENTION",
    "SESSAO_TIMEOUT", "SESSAO_VARREDURA_INTERVALO", "UPLOAD_MAX_BYTES",
    "VI_ALA_PREFIXO", "SUPABASE_URL", "SUPABASE_SERVICE_KEY", "SUPABASE_TIMEOUT",
}


@receiver(setting_changed)
def _ao_mudar_settings(sender, setting, **kwargs):
    if setting in AJUSTES_SERVICOS:
        redefinir_servicos()
