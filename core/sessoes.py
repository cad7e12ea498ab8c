"""
Controle em memória dos projetistas online (login, heartbeat, logout e expiração)
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .exceptions import ErroValidacao

logger = logging.getLogger(__name__)

TIMEOUT_PADRAO = 300
INTERVALO_VARREDURA_PADRAO = 60


@dataclass
class Sessao:
    usuario: str
    inicio: float
    ultima_atividade: float


@dataclass
class VisaoSessoes:
    """Fotografia do estado das sessões num instante"""
    online: List[str] = field(default_factory=list)
    info: Dict[str, Dict] = field(default_factory=dict)


def _limpar(usuario) -> str:
    return str(usuario or "").strip()


class RastreadorSessoes:
    """
    Sessões ativas e histórico de logout

    - Uma sessão sem atividade por mais de ``timeout`` segundos é considerada
      offline na listagem, mas só é removida por ``expirar`` (varredura).
    - Todos os acessos aos dicionários passam pelo mesmo mutex.
    """

    def __init__(self, timeout: float = TIMEOUT_PADRAO, relogio: Optional[Callable[[], float]] = None):
        self.timeout = timeout
        self._relogio = relogio or time.time
        self._mutex = threading.Lock()
        self._sessoes: Dict[str, Sessao] = {}
        self._historico_logout: Dict[str, float] = {}

    def _expirada(self, sessao: Sessao, agora: float) -> bool:
        return agora - sessao.ultima_atividade > self.timeout

    def login(self, usuario: str) -> Sessao:
        usuario = _limpar(usuario)
        if not usuario:
            raise ErroValidacao("Usuário é obrigatório")
        agora = self._relogio()
        with self._mutex:
            sessao = Sessao(usuario, agora, agora)
            self._sessoes[usuario] = sessao
            self._historico_logout.pop(usuario, None)
        logger.info(f"Usuário {usuario} fez login")
        return sessao

    def heartbeat(self, usuario: str) -> bool:
        """Renova a atividade; retorna False se não há sessão válida para o usuário"""
        usuario = _limpar(usuario)
        agora = self._relogio()
        with self._mutex:
            sessao = self._sessoes.get(usuario)
            if sessao is None or self._expirada(sessao, agora):
                return False
            sessao.ultima_atividade = agora
            return True

    def logout(self, usuario: str) -> bool:
        usuario = _limpar(usuario)
        agora = self._relogio()
        with self._mutex:
            sessao = self._sessoes.pop(usuario, None)
            if sessao is None:
                return False
            self._historico_logout[usuario] = agora
        logger.info(f"Usuário {usuario} fez logout")
        return True

    def listar_online(self) -> VisaoSessoes:
        agora = self._relogio()
        visao = VisaoSessoes()
        with self._mutex:
            for usuario, sessao in self._sessoes.items():
                if self._expirada(sessao, agora):
                    visao.info[usuario] = {"status": "offline", "logout_time": sessao.ultima_atividade}
                else:
                    visao.online.append(usuario)
                    visao.info[usuario] = {"status": "online", "login_time": sessao.inicio}
            for usuario, momento in self._historico_logout.items():
                visao.info.setdefault(usuario, {"status": "offline", "logout_time": momento})
        visao.online.sort()
        return visao

    def historico_logout(self) -> Dict[str, float]:
        """Momento de saída de cada usuário; sessões já expiradas entram com a última atividade"""
        agora = self._relogio()
        with self._mutex:
            historico = dict(self._historico_logout)
            for usuario, sessao in self._sessoes.items():
                if self._expirada(sessao, agora):
                    historico[usuario] = sessao.ultima_atividade
        return historico

    def renomear(self, antigo: str, novo: str) -> None:
        """Acompanha a renomeação de um projetista (sessão e histórico)"""
        antigo, novo = _limpar(antigo), _limpar(novo)
        if not antigo or not novo or antigo == novo:
            return
        with self._mutex:
            sessao = self._sessoes.pop(antigo, None)
            if sessao is not None:
                sessao.usuario = novo
                self._sessoes[novo] = sessao
            if antigo in self._historico_logout:
                self._historico_logout[novo] = self._historico_logout.pop(antigo)

    def expirar(self) -> List[str]:
        """Move as sessões inativas para o histórico de logout; retorna os usuários expirados"""
        agora = self._relogio()
        expirados = []
        with self._mutex:
            for usuario, sessao in list(self._sessoes.items()):
                if self._expirada(sessao, agora):
                    self._historico_logout[usuario] = sessao.ultima_atividade
                    del self._sessoes[usuario]
                    expirados.append(usuario)
        for usuario in expirados:
            logger.info(f"Sessão de {usuario} expirada por inatividade")
        return expirados


class VarredorSessoes:
    """Thread daemon que chama ``expirar`` periodicamente"""

    def __init__(self, rastreador: RastreadorSessoes, intervalo: float = INTERVALO_VARREDURA_PADRAO):
        self.rastreador = rastreador
        self.intervalo = intervalo
        self._parar = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def ativo(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def iniciar(self):
        if self.ativo:
            return
        self._parar.clear()
        self._thread = threading.Thread(target=self._executar, name="varredura-sessoes", daemon=True)
        self._thread.start()
        logger.info(f"Varredura de sessões iniciada (intervalo {self.intervalo}s)")

    def parar(self, timeout: Optional[float] = None):
        self._parar.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _executar(self):
        while not self._parar.wait(self.intervalo):
            try:
                self.rastreador.expirar()
            except Exception as e:
                logger.error(f"Erro na varredura de sessões: {e}")
