"""
Armazenamento dos datasets em planilhas no DATA_DIR

Cada dataset (projetistas, tabulações, base VI ALA, base de CTOs) é lido e
gravado sob o lock da sua chave. Gravações passam sempre por um arquivo
temporário publicado com os.replace; na base de CTOs a base anterior vira
backup e apenas os backups mais recentes são mantidos.
"""
import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from . import planilhas
from .exceptions import ErroPlanilha
from .locks import GerenciadorLocks
from .snapshots import ArquivoSnapshot, NomeadorSnapshots, TipoArquivo

logger = logging.getLogger(__name__)

PROJETISTAS = "projetistas"
TABULACOES = "tabulacoes"
VI_ALA = "vi_ala"
BASE_CTOS = "base_ctos"

COLUNAS_PROJETISTAS = ("nome", "senha")
COLUNAS_TABULACOES = ("nome",)
COLUNAS_VI_ALA = ("VI ALA", "ALA", "DATA", "PROJETISTA", "CIDADE", "ENDEREÇO", "LATITUDE", "LONGITUDE")
COLUNAS_CTO = (
    "cid_rede", "estado", "pop", "olt", "slot", "pon", "id_cto", "cto",
    "latitude", "longitude", "status_cto", "data_cadastro",
    "portas", "ocupado", "livre", "pct_ocup",
)

RETENCAO_BACKUPS_PADRAO = 3


@dataclass(frozen=True)
class DefinicaoDataset:
    chave: str
    nomeador: NomeadorSnapshots
    colunas: Tuple[str, ...]
    aba: str


DEFINICOES_PADRAO = {
    PROJETISTAS: DefinicaoDataset(
        PROJETISTAS, NomeadorSnapshots.fixo("projetistas.xlsx"), COLUNAS_PROJETISTAS, "Projetistas"
    ),
    TABULACOES: DefinicaoDataset(
        TABULACOES, NomeadorSnapshots.fixo("tabulacoes.xlsx"), COLUNAS_TABULACOES, "Tabulações"
    ),
    VI_ALA: DefinicaoDataset(
        VI_ALA, NomeadorSnapshots.fixo("base_VI ALA.xlsx"), COLUNAS_VI_ALA, "VI ALA"
    ),
    BASE_CTOS: DefinicaoDataset(
        BASE_CTOS,
        NomeadorSnapshots("base_atual_", "backup_", legado="base.xlsx"),
        COLUNAS_CTO,
        "CTOs",
    ),
}


class DatasetStore:
    """
    Leitura, anexação e substituição dos datasets em disco

    Design
    - Estado: diretório de dados, registro de locks, definições dos datasets.
    - Toda operação que lê para depois gravar segura o lock da chave do começo ao fim.
    - Leitura de dataset inexistente ou corrompido retorna lista vazia.
    - Falhas ao rebaixar, remover bases antigas ou podar backups são registradas
      e não interrompem a substituição; falha ao publicar a nova base propaga.
    """

    def __init__(self, diretorio, locks: Optional[GerenciadorLocks] = None,
                 definicoes: Optional[Dict[str, DefinicaoDataset]] = None,
                 retencao_backups: int = RETENCAO_BACKUPS_PADRAO,
                 relogio: Optional[Callable[[], datetime]] = None):
        self.diretorio = Path(diretorio)
        self.locks = locks or GerenciadorLocks()
        self.definicoes = dict(definicoes or DEFINICOES_PADRAO)
        self.retencao_backups = retencao_backups
        self._relogio = relogio or datetime.now

    def definicao(self, chave: str) -> DefinicaoDataset:
        try:
            return self.definicoes[chave]
        except KeyError:
            raise ValueError(f"Dataset desconhecido: {chave}") from None

    def _garantir_diretorio(self):
        self.diretorio.mkdir(parents=True, exist_ok=True)

    def _atual(self, definicao: DefinicaoDataset) -> Optional[ArquivoSnapshot]:
        return definicao.nomeador.selecionar_atual(definicao.nomeador.escanear(self.diretorio))

    # Leitura

    def ler(self, chave: str, com_lock: bool = True) -> List[Dict]:
        """
        Registros do snapshot atual

        ``com_lock=False`` é para leitores que aceitam um dado levemente
        desatualizado em troca de não disputar o lock (ex.: proposta de VI ALA).
        """
        definicao = self.definicao(chave)
        if not com_lock:
            return self._ler(definicao)
        return self.locks.com_lock(chave, lambda: self._ler(definicao))

    def _ler(self, definicao: DefinicaoDataset) -> List[Dict]:
        atual = self._atual(definicao)
        if atual is None:
            return []
        try:
            return planilhas.desserializar(atual.caminho)
        except FileNotFoundError:
            logger.warning(f"Snapshot {atual.nome} removido durante a leitura")
            return []
        except ErroPlanilha as e:
            logger.error(f"Planilha {atual.nome} ilegível, tratando dataset {definicao.chave} como vazio: {e}")
            return []

    def ler_bytes(self, chave: str) -> Optional[Tuple[str, bytes]]:
        """(nome do arquivo, conteúdo) do snapshot atual, ou None"""
        definicao = self.definicao(chave)

        def operacao():
            atual = self._atual(definicao)
            if atual is None:
                return None
            with open(atual.caminho, "rb") as f:
                return atual.nome, f.read()

        return self.locks.com_lock(chave, operacao)

    def caminho_atual(self, chave: str) -> Optional[str]:
        atual = self._atual(self.definicao(chave))
        return atual.caminho if atual else None

    def ultima_modificacao(self, chave: str) -> Optional[datetime]:
        atual = self._atual(self.definicao(chave))
        if atual is None:
            return None
        return datetime.fromtimestamp(atual.mtime_ns / 1e9)

    def existe(self, chave: str) -> bool:
        return self._atual(self.definicao(chave)) is not None

    def backups(self, chave: str) -> List[str]:
        """Nomes dos backups, do mais recente para o mais antigo"""
        nomeador = self.definicao(chave).nomeador
        return [a.nome for a in nomeador.backups(nomeador.escanear(self.diretorio))]

    # Escrita

    def anexar(self, chave: str, registro: Dict) -> None:
        self.atualizar(chave, lambda registros: registros.append(dict(registro)))

    def atualizar(self, chave: str, funcao: Callable[[List[Dict]], object]):
        """
        Lê, aplica ``funcao`` sobre a lista de registros e grava, tudo sob o lock

        Se ``funcao`` levantar exceção nada é gravado.
        """
        definicao = self.definicao(chave)

        def operacao():
            registros = self._ler(definicao)
            resultado = funcao(registros)
            self._gravar(definicao, registros)
            return resultado

        return self.locks.com_lock(chave, operacao)

    def substituir(self, chave: str, registros: Sequence[Dict]) -> str:
        """Substitui o dataset inteiro; retorna o caminho do novo snapshot"""
        definicao = self.definicao(chave)
        registros = list(registros)
        return self.locks.com_lock(chave, lambda: self._gravar(definicao, registros))

    def substituir_arquivo(self, chave: str, origem) -> str:
        """
        Publica um arquivo já gerado (upload validado) como novo snapshot

        O arquivo de origem é movido; se estiver em outro volume é copiado e removido.
        """
        definicao = self.definicao(chave)

        def operacao():
            self._garantir_diretorio()
            temporario = self._caminho_temporario(definicao)
            try:
                os.replace(origem, temporario)
            except OSError as e:
                logger.warning(f"Erro ao mover {origem}, copiando... {e}")
                shutil.copyfile(origem, temporario)
                try:
                    os.remove(origem)
                except OSError as e:
                    logger.warning(f"Não foi possível remover o arquivo de origem {origem}: {e}")
            return self._publicar(definicao, temporario)

        return self.locks.com_lock(chave, operacao)

    def garantir(self, chave: str, registros: Sequence[Dict] = ()) -> bool:
        """
        Cria o dataset com ``registros`` (ou só o cabeçalho) se ainda não existir

        A verificação e a criação acontecem sob o mesmo lock; retorna True se criou.
        """
        definicao = self.definicao(chave)
        registros = list(registros)

        def operacao():
            if self._atual(definicao) is not None:
                return False
            logger.info(f"Arquivo do dataset {chave} não existe, criando...")
            self._gravar(definicao, registros)
            return True

        return self.locks.com_lock(chave, operacao)

    def migrar_legado(self, chave: str) -> Optional[str]:
        """Copia o arquivo legado (ex.: base.xlsx) para um snapshot atual, se ainda não houver um"""
        definicao = self.definicao(chave)
        nomeador = definicao.nomeador
        if not nomeador.legado:
            return None

        def operacao():
            arquivos = nomeador.escanear(self.diretorio)
            if nomeador.atuais(arquivos):
                return None
            legados = [a for a in arquivos if a.tipo is TipoArquivo.LEGADO]
            if not legados:
                return None
            temporario = self._caminho_temporario(definicao)
            shutil.copyfile(legados[0].caminho, temporario)
            destino = self._publicar(definicao, temporario)
            logger.info(f"{nomeador.legado} migrado para novo formato: {os.path.basename(destino)}")
            return destino

        return self.locks.com_lock(chave, operacao)

    # Internos (chamados com o lock da chave já obtido)

    def _colunas(self, definicao: DefinicaoDataset, registros: List[Dict]) -> List[str]:
        colunas = list(definicao.colunas)
        for registro in registros:
            for campo in registro:
                if campo not in colunas:
                    colunas.append(campo)
        return colunas

    def _caminho_temporario(self, definicao: DefinicaoDataset) -> str:
        # nome com ponto inicial nunca casa com os predicados do nomeador
        return str(self.diretorio / f".tmp-{definicao.chave}-{uuid.uuid4().hex}{definicao.nomeador.extensao}")

    def _gravar(self, definicao: DefinicaoDataset, registros: List[Dict]) -> str:
        self._garantir_diretorio()
        conteudo = planilhas.serializar(registros, self._colunas(definicao, registros), definicao.aba)
        temporario = self._caminho_temporario(definicao)
        try:
            with open(temporario, "wb") as f:
                f.write(conteudo)
                f.flush()
                os.fsync(f.fileno())
        except OSError:
            self._remover_silenciosamente(temporario)
            raise
        destino = self._publicar(definicao, temporario)
        logger.info(f"Dataset {definicao.chave} gravado: {len(registros)} registro(s) em {os.path.basename(destino)}")
        return destino

    def _publicar(self, definicao: DefinicaoDataset, temporario: str) -> str:
        """
        1. publica o temporário sob um nome de base atual livre
        2. rebaixa a base anterior para backup (rename, ou cópia + remoção)
        3. remove outras bases atuais que sobraram de falhas anteriores
        4. poda backups além da retenção

        A nova base existe antes de qualquer remoção, então o dataset nunca
        fica sem base atual.
        """
        nomeador = definicao.nomeador
        agora = self._relogio()
        try:
            anterior = nomeador.selecionar_atual(nomeador.escanear(self.diretorio))
            if nomeador.versionado:
                nome = nomeador.nome_livre(nomeador.nome_atual(agora), os.listdir(self.diretorio))
            else:
                nome = nomeador.nome_atual(agora)
            destino = str(self.diretorio / nome)
            os.replace(temporario, destino)
        except Exception:
            self._remover_silenciosamente(temporario)
            raise

        try:
            os.utime(destino, None)
        except OSError as e:
            logger.warning(f"Não foi possível atualizar mtime de {nome}: {e}")

        if not nomeador.versionado:
            return destino

        if anterior is not None and anterior.tipo is TipoArquivo.ATUAL and anterior.caminho != destino:
            self._rebaixar(definicao, anterior, agora)

        for sobra in nomeador.atuais(nomeador.escanear(self.diretorio)):
            if sobra.caminho == destino:
                continue
            try:
                os.remove(sobra.caminho)
                logger.info(f"Base antiga removida: {sobra.nome}")
            except OSError as e:
                logger.error(f"Erro ao remover base antiga {sobra.nome}: {e}")

        self._podar_backups(definicao)
        logger.info(f"Base de {definicao.chave} substituída - sistema agora usa: {nome}")
        return destino

    def _rebaixar(self, definicao: DefinicaoDataset, anterior: ArquivoSnapshot, agora: datetime):
        nomeador = definicao.nomeador
        nome_backup = nomeador.nome_livre(nomeador.nome_backup(agora), os.listdir(self.diretorio))
        caminho_backup = str(self.diretorio / nome_backup)
        try:
            os.rename(anterior.caminho, caminho_backup)
            logger.info(f"Base atual movida para backup: {nome_backup}")
            return
        except OSError as e:
            logger.warning(f"Erro ao renomear {anterior.nome}, tentando copiar... {e}")
        try:
            shutil.copy2(anterior.caminho, caminho_backup)
            os.remove(anterior.caminho)
            logger.info(f"Backup criado por cópia: {nome_backup}")
        except OSError as e:
            logger.error(f"Erro ao copiar {anterior.nome} para backup: {e}")

    def _podar_backups(self, definicao: DefinicaoDataset):
        nomeador = definicao.nomeador
        excedentes = nomeador.backups(nomeador.escanear(self.diretorio))[self.retencao_backups:]
        for backup in excedentes:
            try:
                os.remove(backup.caminho)
                logger.info(f"Backup antigo removido: {backup.nome}")
            except OSError as e:
                logger.error(f"Erro ao remover backup antigo {backup.nome}: {e}")

    @staticmethod
    def _remover_silenciosamente(caminho: str):
        try:
            os.remove(caminho)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Não foi possível remover temporário {caminho}: {e}")
