"""
Numeração sequencial VI ALA e registros da base_VI ALA.xlsx
"""
import logging
import re
from typing import Dict, Iterable, List, Optional

from . import planilhas
from .datasets import VI_ALA, DatasetStore
from .exceptions import ErroValidacao, VIALADuplicado

logger = logging.getLogger(__name__)

PREFIXO_PADRAO = "VI ALA"
DIGITOS = 7

# campo da requisição -> coluna da planilha
CAMPOS_REGISTRO = (
    ("ala", "ALA"),
    ("data", "DATA"),
    ("projetista", "PROJETISTA"),
    ("cidade", "CIDADE"),
    ("endereco", "ENDEREÇO"),
    ("latitude", "LATITUDE"),
    ("longitude", "LONGITUDE"),
)


def padrao_sequencia(prefixo: str = PREFIXO_PADRAO):
    """Regex que aceita o prefixo com espaços variáveis seguido de hífen/espaços e do número"""
    partes = [re.escape(parte) for parte in prefixo.split()]
    return re.compile(r"\s*".join(partes) + r"[-\s]*(\d+)", re.IGNORECASE)


def extrair_sequencia(identificador, prefixo: str = PREFIXO_PADRAO) -> Optional[int]:
    if identificador is None:
        return None
    encontrado = padrao_sequencia(prefixo).search(str(identificador).strip())
    if not encontrado:
        return None
    return int(encontrado.group(1))


def formatar_identificador(numero: int, prefixo: str = PREFIXO_PADRAO) -> str:
    return f"{prefixo}-{numero:0{DIGITOS}d}"


class AlocadorVIALA:
    """
    Gera e registra os números VI ALA

    ``proximo`` é só uma sugestão para a tela: lê sem lock e duas chamadas
    simultâneas podem receber o mesmo número. ``registrar`` calcula o número
    dentro da mesma operação com lock que grava o registro, então nunca emite
    número repetido.
    """

    def __init__(self, store: DatasetStore, prefixo: str = PREFIXO_PADRAO, chave: str = VI_ALA):
        self.store = store
        self.prefixo = prefixo
        self.chave = chave

    def _sequencia(self, registro: Dict) -> Optional[int]:
        return extrair_sequencia(planilhas.valor(registro, "VI ALA", None), self.prefixo)

    def _maior_sequencia(self, registros: Iterable[Dict]) -> int:
        maior = 0
        for registro in registros:
            sequencia = self._sequencia(registro)
            if sequencia is not None and sequencia > maior:
                maior = sequencia
        return maior

    def _montar_registro(self, identificador: str, dados: Dict) -> Dict:
        registro = {"VI ALA": identificador}
        for campo, coluna in CAMPOS_REGISTRO:
            conteudo = dados.get(campo)
            registro[coluna] = "" if conteudo is None else conteudo
        return registro

    def proximo(self) -> str:
        registros = self.store.ler(self.chave, com_lock=False)
        identificador = formatar_identificador(self._maior_sequencia(registros) + 1, self.prefixo)
        logger.info(f"Próximo VI ALA sugerido: {identificador} ({len(registros)} registro(s) na base)")
        return identificador

    def registrar(self, dados: Dict) -> str:
        """Aloca o próximo número e grava o registro; retorna o número emitido"""

        def operacao(registros: List[Dict]) -> str:
            identificador = formatar_identificador(self._maior_sequencia(registros) + 1, self.prefixo)
            registros.append(self._montar_registro(identificador, dados))
            return identificador

        identificador = self.store.atualizar(self.chave, operacao)
        logger.info(f"VI ALA {identificador} registrado")
        return identificador

    def salvar(self, dados: Dict) -> str:
        """
        Grava um registro cujo número já foi escolhido pelo cliente (fluxo antigo:
        GET /vi-ala/next seguido de POST /vi-ala/save)

        Raises:
            ErroValidacao: número ausente
            VIALADuplicado: a sequência já está registrada
        """
        identificador = str(dados.get("vi_ala") or "").strip()
        if not identificador:
            raise ErroValidacao("VI ALA é obrigatório")
        sequencia = extrair_sequencia(identificador, self.prefixo)

        def operacao(registros: List[Dict]):
            if sequencia is not None and any(self._sequencia(r) == sequencia for r in registros):
                raise VIALADuplicado(f"{identificador} já foi registrado")
            registros.append(self._montar_registro(identificador, dados))

        self.store.atualizar(self.chave, operacao)
        logger.info(f"VI ALA {identificador} salvo")
        return identificador

    def listar_recentes(self, limite: int = 10) -> List[Dict]:
        itens = []
        for registro in self.store.ler(self.chave):
            identificador = planilhas.valor(registro, "VI ALA")
            itens.append({
                "id": identificador,
                "numero": self._sequencia(registro) or 0,
                "numero_ala": planilhas.valor(registro, "ALA"),
                "projetista": planilhas.valor(registro, "PROJETISTA"),
                "cidade": planilhas.valor(registro, "CIDADE"),
                "endereco": planilhas.valor(registro, "ENDEREÇO"),
                "data_geracao": planilhas.valor(registro, "DATA"),
                "latitude": planilhas.valor(registro, "LATITUDE"),
                "longitude": planilhas.valor(registro, "LONGITUDE"),
            })
        itens.sort(key=lambda item: item["numero"], reverse=True)
        return itens[:limite]

    def garantir_base(self) -> bool:
        return self.store.garantir(self.chave)
