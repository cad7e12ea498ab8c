"""
Backends de persistência dos cadastros (planilhas locais e Supabase)

A escolha de onde ler e gravar fica em BackendComFallback; os serviços de
projetistas e tabulações só conhecem a interface PersistenceBackend.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence

import requests

from .datasets import BASE_CTOS, COLUNAS_CTO, PROJETISTAS, TABULACOES, DatasetStore
from .exceptions import ErroBackend
from .locks import GerenciadorLocks

logger = logging.getLogger(__name__)

TAMANHO_LOTE = 1000


class PersistenceBackend(ABC):
    nome = "abstrato"

    def disponivel(self) -> bool:
        return True

    @abstractmethod
    def ler(self, chave: str) -> List[Dict]:
        ...

    @abstractmethod
    def substituir(self, chave: str, registros: Sequence[Dict]) -> None:
        ...

    @abstractmethod
    def atualizar(self, chave: str, funcao: Callable[[List[Dict]], object]):
        ...

    @abstractmethod
    def existe(self, chave: str) -> bool:
        ...

    @abstractmethod
    def garantir(self, chave: str, registros: Sequence[Dict]) -> bool:
        """Grava ``registros`` se o dataset ainda não existir, numa única operação com lock"""
        ...

    def anexar(self, chave: str, registro: Dict) -> None:
        self.atualizar(chave, lambda registros: registros.append(dict(registro)))


class ArquivoBackend(PersistenceBackend):
    """Planilhas no DATA_DIR, via DatasetStore"""
    nome = "excel"

    def __init__(self, store: DatasetStore):
        self.store = store

    def ler(self, chave):
        return self.store.ler(chave)

    def substituir(self, chave, registros):
        self.store.substituir(chave, registros)

    def atualizar(self, chave, funcao):
        return self.store.atualizar(chave, funcao)

    def anexar(self, chave, registro):
        self.store.anexar(chave, registro)

    def existe(self, chave):
        return self.store.existe(chave)

    def garantir(self, chave, registros):
        return self.store.garantir(chave, registros)


class SupabaseBackend(PersistenceBackend):
    """
    Tabelas do Supabase acessadas pela API REST (PostgREST)

    A substituição é "apaga tudo e insere em lotes", sem transação: o último a
    gravar vence. Operações da mesma chave são serializadas só dentro deste
    processo.
    """
    nome = "supabase"

    TABELAS = {
        PROJETISTAS: ("projetistas", ("nome", "senha")),
        TABULACOES: ("tabulacoes", ("nome",)),
        BASE_CTOS: ("ctos", COLUNAS_CTO),
    }

    def __init__(self, url: str, chave_servico: str, locks: Optional[GerenciadorLocks] = None,
                 timeout: float = 10.0, espera_apos_falha: float = 60.0, sessao=None):
        self.url = url.rstrip("/")
        self.chave_servico = chave_servico
        self.locks = locks or GerenciadorLocks()
        self.timeout = timeout
        self.espera_apos_falha = espera_apos_falha
        self.sessao = sessao or requests.Session()
        self._indisponivel_ate = 0.0

    @property
    def headers(self):
        return {
            "apikey": self.chave_servico,
            "Authorization": f"Bearer {self.chave_servico}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }

    def disponivel(self) -> bool:
        return bool(self.url and self.chave_servico) and time.monotonic() >= self._indisponivel_ate

    def _tabela(self, chave: str):
        try:
            return self.TABELAS[chave]
        except KeyError:
            raise ErroBackend(f"Dataset {chave} não tem tabela no Supabase") from None

    def _requisicao(self, metodo: str, tabela: str, params=None, json=None):
        endpoint = f"{self.url}/rest/v1/{tabela}"
        try:
            resposta = self.sessao.request(
                metodo, endpoint, headers=self.headers, params=params, json=json, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            self._indisponivel_ate = time.monotonic() + self.espera_apos_falha
            logger.error(f"[Supabase] Erro de conexão em {metodo} {tabela}: {e}")
            raise ErroBackend(f"Supabase indisponível: {e}") from e
        if resposta.status_code >= 400:
            logger.error(f"[Supabase] {metodo} {tabela} retornou {resposta.status_code}: {resposta.text[:200]}")
            raise ErroBackend(f"Supabase retornou HTTP {resposta.status_code} para {tabela}")
        return resposta

    def _ler(self, chave: str) -> List[Dict]:
        tabela, colunas = self._tabela(chave)
        resposta = self._requisicao("GET", tabela, params={"select": ",".join(colunas)})
        try:
            linhas = resposta.json()
        except ValueError as e:
            raise ErroBackend(f"Resposta inválida do Supabase para {tabela}") from e
        return [{col: linha.get(col) for col in colunas} for linha in linhas]

    def _substituir(self, chave: str, registros: Sequence[Dict]) -> int:
        tabela, colunas = self._tabela(chave)
        self._requisicao("DELETE", tabela, params={"id": "neq.0"})
        linhas = [{col: registro.get(col) for col in colunas} for registro in registros]
        total_lotes = (len(linhas) + TAMANHO_LOTE - 1) // TAMANHO_LOTE
        for indice in range(0, len(linhas), TAMANHO_LOTE):
            lote = linhas[indice:indice + TAMANHO_LOTE]
            self._requisicao("POST", tabela, json=lote)
            logger.info(f"[Supabase] Lote {indice // TAMANHO_LOTE + 1}/{total_lotes} importado em {tabela} ({len(lote)} registros)")
        return len(linhas)

    def ler(self, chave):
        return self.locks.com_lock(f"supabase:{chave}", lambda: self._ler(chave))

    def substituir(self, chave, registros):
        registros = list(registros)
        return self.locks.com_lock(f"supabase:{chave}", lambda: self._substituir(chave, registros))

    def atualizar(self, chave, funcao):
        def operacao():
            registros = self._ler(chave)
            resultado = funcao(registros)
            self._substituir(chave, registros)
            return resultado

        return self.locks.com_lock(f"supabase:{chave}", operacao)

    def _existe(self, chave: str) -> bool:
        tabela, _ = self._tabela(chave)
        resposta = self._requisicao("GET", tabela, params={"select": "id", "limit": 1})
        try:
            return bool(resposta.json())
        except ValueError:
            return False

    def existe(self, chave):
        return self.locks.com_lock(f"supabase:{chave}", lambda: self._existe(chave))

    def garantir(self, chave, registros):
        registros = list(registros)

        def operacao():
            if self._existe(chave):
                return False
            self._substituir(chave, registros)
            return True

        return self.locks.com_lock(f"supabase:{chave}", operacao)


class BackendComFallback(PersistenceBackend):
    """Usa o backend preferido quando disponível e cai para o reserva em caso de ErroBackend"""

    def __init__(self, preferido: PersistenceBackend, reserva: PersistenceBackend):
        self.preferido = preferido
        self.reserva = reserva

    @property
    def nome(self):
        return f"{self.preferido.nome}+{self.reserva.nome}"

    def _executar(self, operacao: str, chave: str, chamada):
        if self.preferido.disponivel():
            try:
                resultado = chamada(self.preferido)
                logger.info(f"{operacao} {chave} atendido por {self.preferido.nome}")
                return resultado
            except ErroBackend as e:
                logger.error(f"Erro no backend {self.preferido.nome} em {operacao} {chave}, usando {self.reserva.nome}: {e}")
        resultado = chamada(self.reserva)
        logger.info(f"{operacao} {chave} atendido por {self.reserva.nome}")
        return resultado

    def ler(self, chave):
        return self._executar("ler", chave, lambda b: b.ler(chave))

    def substituir(self, chave, registros):
        registros = list(registros)
        return self._executar("substituir", chave, lambda b: b.substituir(chave, registros))

    def atualizar(self, chave, funcao):
        return self._executar("atualizar", chave, lambda b: b.atualizar(chave, funcao))

    def anexar(self, chave, registro):
        return self._executar("anexar", chave, lambda b: b.anexar(chave, registro))

    def existe(self, chave):
        return self._executar("existe", chave, lambda b: b.existe(chave))

    def garantir(self, chave, registros):
        registros = list(registros)
        return self._executar("garantir", chave, lambda b: b.garantir(chave, registros))
