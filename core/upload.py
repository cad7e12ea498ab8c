"""
Upload da base de CTOs: recebe o arquivo, valida as colunas e substitui a base atual
"""
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

from django.utils.text import get_valid_filename

from . import planilhas
from .backends import SupabaseBackend
from .datasets import BASE_CTOS, COLUNAS_CTO, DatasetStore
from .exceptions import ErroBackend, ErroPlanilha, ErroValidacao

logger = logging.getLogger(__name__)

EXTENSOES_PERMITIDAS = (".xlsx", ".xls")
TAMANHO_MAXIMO_PADRAO = 100 * 1024 * 1024
COLUNAS_CRITICAS = ("latitude", "longitude")
PREFIXO_TEMPORARIO = "upload-"

ALIASES_COLUNAS = {
    "cid rede": "cid_rede",
    "id cto": "id_cto",
    "lat": "latitude",
    "long": "longitude",
    "lng": "longitude",
    "status cto": "status_cto",
    "data cadastro": "data_cadastro",
    "pct ocup": "pct_ocup",
}
COLUNAS_INTEIRAS = ("portas", "ocupado", "livre")


@dataclass
class ResultadoUpload:
    arquivo: str
    nome_original: str
    colunas: List[str]
    colunas_ausentes: List[str] = field(default_factory=list)
    espelho_importados: Optional[int] = None

    def como_dict(self) -> Dict:
        return {
            "arquivo": os.path.basename(self.arquivo),
            "nome_original": self.nome_original,
            "colunas": self.colunas,
            "colunas_ausentes": self.colunas_ausentes,
            "espelho_importados": self.espelho_importados,
        }


def _numero(valor) -> Optional[float]:
    if valor is None or valor == "":
        return None
    if isinstance(valor, str):
        valor = valor.strip().replace(",", ".")
    try:
        return float(valor)
    except (TypeError, ValueError):
        return None


def _inteiro(valor) -> Optional[int]:
    numero = _numero(valor)
    return int(numero) if numero is not None else None


def _data(valor) -> Optional[str]:
    if valor is None or valor == "":
        return None
    if isinstance(valor, datetime):
        return valor.date().isoformat()
    if isinstance(valor, date):
        return valor.isoformat()
    if isinstance(valor, (int, float)):
        # número de série de data do Excel
        return (date(1899, 12, 30) + timedelta(days=int(valor))).isoformat()
    texto = str(valor).strip()
    for formato in ("%Y-%m-%d", "%d/%m/%Y", "%Y-%m-%d %H:%M:%S", "%d-%m-%Y"):
        try:
            return datetime.strptime(texto, formato).date().isoformat()
        except ValueError:
            continue
    return None


def normalizar_linha_cto(linha: Dict) -> Optional[Dict]:
    """
    Converte uma linha da planilha para o formato da tabela ``ctos``

    Retorna None quando a linha não tem coordenadas válidas.
    """
    normalizada = {}
    for chave, conteudo in linha.items():
        nome = str(chave or "").strip().lower()
        nome = ALIASES_COLUNAS.get(nome, nome.replace(" ", "_"))
        normalizada[nome] = conteudo

    latitude = _numero(normalizada.get("latitude"))
    longitude = _numero(normalizada.get("longitude"))
    if latitude is None or longitude is None:
        return None
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        return None

    cto = {}
    for coluna in COLUNAS_CTO:
        conteudo = normalizada.get(coluna)
        cto[coluna] = conteudo if conteudo not in ("", None) else None
    cto["latitude"] = latitude
    cto["longitude"] = longitude
    cto["data_cadastro"] = _data(normalizada.get("data_cadastro"))
    for coluna in COLUNAS_INTEIRAS:
        cto[coluna] = _inteiro(normalizada.get(coluna))
    cto["pct_ocup"] = _numero(normalizada.get("pct_ocup"))
    return cto


class PipelineUpload:
    """
    Etapas do upload da base de CTOs

    1. ``receber``: valida extensão e tamanho e grava os bytes em DATA_DIR/temp
    2. ``processar_arquivo``: lê só o cabeçalho, exige latitude/longitude,
       opcionalmente espelha no Supabase e publica como nova base atual
       (.xls é convertido para .xlsx antes de publicar)

    O arquivo temporário é removido em qualquer falha.
    """

    def __init__(self, store: DatasetStore, diretorio_temp, tamanho_maximo: int = TAMANHO_MAXIMO_PADRAO,
                 espelho: Optional[SupabaseBackend] = None, chave: str = BASE_CTOS):
        self.store = store
        self.diretorio_temp = str(diretorio_temp)
        self.tamanho_maximo = tamanho_maximo
        self.espelho = espelho
        self.chave = chave

    def validar_extensao(self, nome_original: str) -> str:
        extensao = os.path.splitext(nome_original or "")[1].lower()
        if extensao not in EXTENSOES_PERMITIDAS:
            raise ErroValidacao("Apenas arquivos Excel (.xlsx, .xls) são permitidos")
        return extensao

    def _pedacos(self, conteudo) -> Iterable[bytes]:
        if isinstance(conteudo, (bytes, bytearray)):
            return [bytes(conteudo)]
        if hasattr(conteudo, "chunks"):
            return conteudo.chunks()
        return conteudo

    def receber(self, conteudo, nome_original: str) -> str:
        """Grava o upload no diretório temporário; ``conteudo`` é bytes ou um UploadedFile"""
        self.validar_extensao(nome_original)
        os.makedirs(self.diretorio_temp, exist_ok=True)
        nome_seguro = get_valid_filename(os.path.basename(nome_original))
        caminho = os.path.join(
            self.diretorio_temp,
            f"{PREFIXO_TEMPORARIO}{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{nome_seguro}",
        )
        tamanho = 0
        try:
            with open(caminho, "wb") as destino:
                for pedaco in self._pedacos(conteudo):
                    tamanho += len(pedaco)
                    if tamanho > self.tamanho_maximo:
                        raise ErroValidacao(
                            f"Arquivo muito grande. Tamanho máximo: {self.tamanho_maximo // (1024 * 1024)}MB"
                        )
                    destino.write(pedaco)
        except Exception:
            self._remover(caminho)
            raise
        if tamanho == 0:
            self._remover(caminho)
            raise ErroValidacao("Arquivo vazio")
        logger.info(f"Upload recebido: {nome_original} ({tamanho / 1024 / 1024:.2f} MB)")
        return caminho

    def validar_colunas(self, caminho: str):
        """
        Retorna (colunas encontradas, colunas opcionais ausentes)

        Raises:
            ErroValidacao: planilha ilegível ou sem latitude/longitude
        """
        try:
            colunas = planilhas.ler_cabecalho(caminho)
        except ErroPlanilha as e:
            raise ErroValidacao(f"Arquivo Excel inválido: {e}") from e

        faltando_criticas = [c for c in COLUNAS_CRITICAS if planilhas.localizar_coluna(colunas, c) is None]
        if faltando_criticas:
            raise ErroValidacao(
                f"Colunas críticas faltando: {', '.join(faltando_criticas)}. "
                f"Colunas encontradas: {', '.join(colunas) or '(nenhuma)'}. "
                f"Colunas esperadas: {', '.join(COLUNAS_CTO)}"
            )

        ausentes = [c for c in COLUNAS_CTO
                    if c not in COLUNAS_CRITICAS and planilhas.localizar_coluna(colunas, c) is None]
        if ausentes:
            logger.warning(f"Colunas opcionais ausentes no upload: {', '.join(ausentes)}")
        return colunas, ausentes

    def importar_espelho(self, caminho: str) -> Optional[int]:
        """Espelha as CTOs válidas no Supabase; falhas são registradas e não interrompem o upload"""
        if self.espelho is None or not self.espelho.disponivel():
            return None
        try:
            linhas = planilhas.desserializar(caminho)
        except ErroPlanilha as e:
            logger.error(f"[Supabase] Não foi possível ler a planilha para importação: {e}")
            return None

        ctos = []
        for linha in linhas:
            cto = normalizar_linha_cto(linha)
            if cto is not None:
                ctos.append(cto)
        logger.info(f"[Supabase] CTOs processadas: {len(ctos)} válidas, {len(linhas) - len(ctos)} inválidas")
        if not ctos:
            return 0
        try:
            return self.espelho.substituir(self.chave, ctos)
        except ErroBackend as e:
            logger.error(f"[Supabase] Erro ao importar CTOs, mantendo apenas o Excel: {e}")
            return None

    def converter_xls(self, caminho: str) -> str:
        """
        Regrava um .xls (formato binário antigo) como .xlsx ao lado do original

        A base atual é sempre publicada como .xlsx; o .xls é removido após a conversão.

        Raises:
            ErroValidacao: o .xls não pôde ser lido
        """
        destino = os.path.splitext(caminho)[0] + ".xlsx"
        try:
            registros = planilhas.desserializar(caminho)
            colunas = list(registros[0]) if registros else planilhas.ler_cabecalho(caminho)
            conteudo = planilhas.serializar(registros, colunas, self.store.definicao(self.chave).aba)
        except ErroPlanilha as e:
            raise ErroValidacao(f"Arquivo Excel inválido: {e}") from e
        try:
            with open(destino, "wb") as f:
                f.write(conteudo)
        except OSError:
            self._remover(destino)
            raise
        self._remover(caminho)
        logger.info(f"Upload .xls convertido para {os.path.basename(destino)} ({len(registros)} linhas)")
        return destino

    def processar_arquivo(self, caminho: str, nome_original: str) -> ResultadoUpload:
        temporarios = [caminho]
        try:
            colunas, ausentes = self.validar_colunas(caminho)
            if os.path.splitext(caminho)[1].lower() == ".xls":
                temporarios.append(os.path.splitext(caminho)[0] + ".xlsx")
                caminho = self.converter_xls(caminho)
            importados = self.importar_espelho(caminho)
            destino = self.store.substituir_arquivo(self.chave, caminho)
        except Exception:
            for temporario in temporarios:
                self._remover(temporario)
            raise
        logger.info(f"Upload {nome_original} publicado como {os.path.basename(destino)}")
        return ResultadoUpload(destino, nome_original, colunas, ausentes, importados)

    def processar(self, conteudo, nome_original: str) -> ResultadoUpload:
        caminho = self.receber(conteudo, nome_original)
        return self.processar_arquivo(caminho, nome_original)

    def limpar_temporarios(self, idade_maxima: float = 3600) -> int:
        """Remove uploads temporários mais antigos que ``idade_maxima`` segundos"""
        try:
            nomes = os.listdir(self.diretorio_temp)
        except FileNotFoundError:
            return 0
        limite = time.time() - idade_maxima
        removidos = 0
        for nome in nomes:
            if not nome.startswith(PREFIXO_TEMPORARIO):
                continue
            caminho = os.path.join(self.diretorio_temp, nome)
            try:
                if os.path.getmtime(caminho) < limite:
                    os.remove(caminho)
                    removidos += 1
            except OSError as e:
                logger.warning(f"Erro ao limpar arquivo temporário {nome}: {e}")
        if removidos:
            logger.info(f"{removidos} arquivo(s) temporário(s) de upload removido(s)")
        return removidos

    @staticmethod
    def _remover(caminho: str):
        try:
            os.remove(caminho)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Não foi possível remover temporário {caminho}: {e}")
