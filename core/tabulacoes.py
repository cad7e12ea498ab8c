"""
Lista de tabulações (resultado da análise de viabilidade)
"""
import logging
from typing import List, Tuple

from . import planilhas
from .backends import PersistenceBackend
from .datasets import TABULACOES
from .exceptions import ErroValidacao, TabulacaoNaoEncontrada

logger = logging.getLogger(__name__)

TABULACOES_PADRAO = (
    "Aprovado Com Portas",
    "Aprovado Com Alívio de Rede/Cleanup",
    "Aprovado Prédio Não Cabeado",
    "Aprovado - Endereço não Localizado",
    "Fora da Área de Cobertura",
)


def _nomes(registros) -> List[str]:
    nomes = []
    for registro in registros:
        nome = str(planilhas.valor(registro, "nome")).strip()
        if nome and nome not in nomes:
            nomes.append(nome)
    return nomes


class ServicoTabulacoes:

    def __init__(self, backend: PersistenceBackend, padrao=TABULACOES_PADRAO):
        self.backend = backend
        self.padrao = tuple(padrao)

    def _garantir_padrao(self) -> bool:
        """Cria a lista com os valores padrão se ainda não existir; a checagem e a gravação são uma operação só"""
        criada = self.backend.garantir(TABULACOES, [{"nome": nome} for nome in sorted(self.padrao)])
        if criada:
            logger.info("Arquivo de tabulações não existia, criado com valores padrão")
        return criada

    def listar(self) -> List[str]:
        if self._garantir_padrao():
            return sorted(self.padrao)
        return sorted(_nomes(self.backend.ler(TABULACOES)))

    def adicionar(self, nome: str) -> Tuple[List[str], bool]:
        """Retorna (lista ordenada, criada); adicionar uma tabulação existente não altera nada"""
        nome = (nome or "").strip()
        if not nome:
            raise ErroValidacao("Nome da tabulação é obrigatório")
        self._garantir_padrao()

        def operacao(registros):
            nomes = _nomes(registros)
            criada = nome not in nomes
            if criada:
                nomes.append(nome)
            nomes.sort()
            registros[:] = [{"nome": n} for n in nomes]
            return nomes, criada

        nomes, criada = self.backend.atualizar(TABULACOES, operacao)
        if criada:
            logger.info(f"Tabulação '{nome}' adicionada")
        return nomes, criada

    def remover(self, nome: str) -> List[str]:
        nome = (nome or "").strip()
        if not nome:
            raise ErroValidacao("Nome da tabulação não pode estar vazio")
        self._garantir_padrao()

        def operacao(registros):
            nomes = _nomes(registros)
            if nome not in nomes:
                raise TabulacaoNaoEncontrada("Tabulação não encontrada")
            nomes.remove(nome)
            nomes.sort()
            registros[:] = [{"nome": n} for n in nomes]
            return nomes

        nomes = self.backend.atualizar(TABULACOES, operacao)
        logger.info(f"Tabulação '{nome}' removida")
        return nomes
