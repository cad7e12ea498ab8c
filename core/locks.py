"""
Locks por dataset para serializar leituras e escritas das planilhas
"""
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, TypeVar

from .exceptions import ErroVerificador, TempoEsgotadoLock

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMEOUT_PADRAO = 5.0


class GerenciadorLocks:
    """
    Registro de locks nomeados: no máximo uma operação por chave ao mesmo tempo

    - Espera limitada: passado ``timeout`` segundos a chamada falha com
      TempoEsgotadoLock em vez de bloquear indefinidamente.
    - Não é reentrante; nenhuma operação chama o lock da própria chave.
    """

    def __init__(self, timeout: float = TIMEOUT_PADRAO):
        self.timeout = timeout
        self._registro = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_para(self, chave: str) -> threading.Lock:
        with self._registro:
            lock = self._locks.get(chave)
            if lock is None:
                lock = threading.Lock()
                self._locks[chave] = lock
            return lock

    @contextmanager
    def bloquear(self, chave: str):
        lock = self._lock_para(chave)
        inicio = time.monotonic()
        if not lock.acquire(timeout=self.timeout):
            logger.error(f"Timeout ao aguardar lock {chave} ({self.timeout}s)")
            raise TempoEsgotadoLock(chave, self.timeout)
        espera = time.monotonic() - inicio
        if espera > 0.5:
            logger.info(f"Lock {chave} obtido após {espera:.2f}s de espera")
        try:
            yield
        finally:
            lock.release()

    def com_lock(self, chave: str, operacao: Callable[[], T]) -> T:
        """Executa ``operacao`` com a chave bloqueada e retorna o resultado"""
        with self.bloquear(chave):
            try:
                return operacao()
            except ErroVerificador as e:
                logger.debug(f"Operação com lock {chave} recusada: {e}")
                raise
            except Exception as e:
                logger.error(f"Erro na operação com lock {chave}: {e}")
                raise

    def ocupado(self, chave: str) -> bool:
        return self._lock_para(chave).locked()
