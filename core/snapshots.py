"""
Nomes dos snapshots de cada dataset (base atual, backups e arquivo legado)

O estado de cada arquivo (atual, backup, legado) é deduzido apenas do nome,
então os predicados precisam ser mutuamente exclusivos mesmo quando um
prefixo é prefixo do outro.
"""
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

FORMATO_DATA = "%d-%m-%Y"


class TipoArquivo(Enum):
    ATUAL = "atual"
    BACKUP = "backup"
    LEGADO = "legado"
    OUTRO = "outro"


@dataclass(frozen=True)
class ArquivoSnapshot:
    nome: str
    caminho: str
    tipo: TipoArquivo
    mtime_ns: int
    data_ordinal: int = 0
    sequencia: int = 1


def formatar_data_arquivo(momento: datetime) -> str:
    """DD-MM-YYYY, formato usado nos nomes de arquivo"""
    return momento.strftime(FORMATO_DATA)


class NomeadorSnapshots:
    """
    Regras de nome de um dataset

    Datasets versionados (base de CTOs) geram ``<prefixo_atual>DD-MM-YYYY.xlsx``
    e ``<prefixo_backup>DD-MM-YYYY.xlsx``; se o nome já existir recebe o sufixo
    ``_2``, ``_3``... Datasets de nome fixo (projetistas, tabulações, VI ALA)
    têm um único arquivo e nunca geram backups.
    """

    def __init__(self, prefixo_atual: str, prefixo_backup: Optional[str] = None,
                 extensao: str = ".xlsx", legado: Optional[str] = None, nome_fixo: Optional[str] = None):
        self.prefixo_atual = prefixo_atual
        self.prefixo_backup = prefixo_backup
        self.extensao = extensao
        self.legado = legado
        self.nome_fixo = nome_fixo
        self._padrao_sufixo = re.compile(
            r"(?P<data>\d{2}-\d{2}-\d{4})(?:_(?P<seq>\d+))?" + re.escape(extensao) + r"$"
        )

    @classmethod
    def fixo(cls, nome_arquivo: str) -> "NomeadorSnapshots":
        raiz, extensao = os.path.splitext(nome_arquivo)
        return cls(prefixo_atual=raiz, extensao=extensao, nome_fixo=nome_arquivo)

    @property
    def versionado(self) -> bool:
        return self.nome_fixo is None

    # Nomes

    def nome_atual(self, momento: datetime) -> str:
        if self.nome_fixo:
            return self.nome_fixo
        return f"{self.prefixo_atual}{formatar_data_arquivo(momento)}{self.extensao}"

    def nome_backup(self, momento: datetime) -> str:
        if not self.prefixo_backup:
            raise ValueError("Dataset sem esquema de backup")
        return f"{self.prefixo_backup}{formatar_data_arquivo(momento)}{self.extensao}"

    def nome_livre(self, nome: str, existentes: Iterable[str]) -> str:
        """
        Acrescenta _2, _3... quando o nome já existe

        O sufixo é sempre maior que o de qualquer variante existente, mesmo que
        um nome menor tenha sido liberado, para a ordem dos nomes seguir a
        ordem de gravação.
        """
        raiz = nome[: -len(self.extensao)] if nome.endswith(self.extensao) else nome
        padrao = re.compile(re.escape(raiz) + r"_(\d+)" + re.escape(self.extensao) + r"$")
        maior = 0
        for existente in existentes:
            if existente == nome:
                maior = max(maior, 1)
                continue
            encontrado = padrao.match(existente)
            if encontrado:
                maior = max(maior, int(encontrado.group(1)))
        if maior == 0:
            return nome
        return f"{raiz}_{maior + 1}{self.extensao}"

    # Predicados

    def eh_backup(self, nome: str) -> bool:
        if not self.prefixo_backup:
            return False
        return nome.startswith(self.prefixo_backup) and nome.endswith(self.extensao)

    def eh_legado(self, nome: str) -> bool:
        return bool(self.legado) and nome == self.legado

    def eh_atual(self, nome: str) -> bool:
        if self.nome_fixo:
            return nome == self.nome_fixo
        if not (nome.startswith(self.prefixo_atual) and nome.endswith(self.extensao)):
            return False
        # o prefixo de backup pode começar com o prefixo atual
        if self.eh_backup(nome) or self.eh_legado(nome):
            return False
        return True

    def classificar(self, nome: str) -> TipoArquivo:
        if self.eh_backup(nome):
            return TipoArquivo.BACKUP
        if self.eh_atual(nome):
            return TipoArquivo.ATUAL
        if self.eh_legado(nome):
            return TipoArquivo.LEGADO
        return TipoArquivo.OUTRO

    # Varredura e seleção

    def _ordem_do_nome(self, nome: str):
        encontrado = self._padrao_sufixo.search(nome)
        if not encontrado:
            return 0, 1
        try:
            data = datetime.strptime(encontrado.group("data"), FORMATO_DATA).toordinal()
        except ValueError:
            data = 0
        sequencia = int(encontrado.group("seq") or 1)
        return data, sequencia

    def escanear(self, diretorio) -> List[ArquivoSnapshot]:
        """Classifica uma única vez cada arquivo do diretório que pertence ao dataset"""
        try:
            nomes = os.listdir(diretorio)
        except FileNotFoundError:
            return []

        arquivos = []
        for nome in nomes:
            tipo = self.classificar(nome)
            if tipo is TipoArquivo.OUTRO:
                continue
            caminho = os.path.join(diretorio, nome)
            try:
                mtime_ns = os.stat(caminho).st_mtime_ns
            except FileNotFoundError:
                # removido entre o listdir e o stat
                logger.debug(f"Arquivo sumiu durante a varredura: {nome}")
                continue
            data, sequencia = self._ordem_do_nome(nome)
            arquivos.append(ArquivoSnapshot(nome, caminho, tipo, mtime_ns, data, sequencia))
        return arquivos

    @staticmethod
    def _mais_recentes(arquivos: Iterable[ArquivoSnapshot], tipo: TipoArquivo) -> List[ArquivoSnapshot]:
        candidatos = [a for a in arquivos if a.tipo is tipo]
        return sorted(
            candidatos,
            key=lambda a: (a.mtime_ns, a.data_ordinal, a.sequencia),
            reverse=True,
        )

    def atuais(self, arquivos: Iterable[ArquivoSnapshot]) -> List[ArquivoSnapshot]:
        return self._mais_recentes(arquivos, TipoArquivo.ATUAL)

    def backups(self, arquivos: Iterable[ArquivoSnapshot]) -> List[ArquivoSnapshot]:
        return self._mais_recentes(arquivos, TipoArquivo.BACKUP)

    def selecionar_atual(self, arquivos: Iterable[ArquivoSnapshot]) -> Optional[ArquivoSnapshot]:
        """
        Snapshot atual: o arquivo "atual" mais recente; sem nenhum, o legado.
        Nunca retorna um backup.
        """
        arquivos = list(arquivos)
        atuais = self.atuais(arquivos)
        if atuais:
            return atuais[0]
        legados = [a for a in arquivos if a.tipo is TipoArquivo.LEGADO]
        return legados[0] if legados else None

    def selecionar_backup_recente(self, arquivos: Iterable[ArquivoSnapshot]) -> Optional[ArquivoSnapshot]:
        backups = self.backups(arquivos)
        return backups[0] if backups else None
