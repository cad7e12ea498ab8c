"""
Codec de planilhas: converte listas de registros em bytes .xlsx e vice-versa
"""
import io
import logging
import os
import zipfile
from typing import Dict, Iterable, List, Optional, Sequence, Union

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .exceptions import ErroPlanilha

logger = logging.getLogger(__name__)

Fonte = Union[bytes, str, os.PathLike]


def _abrir(fonte: Fonte):
    """Retorna algo que pandas/openpyxl aceitam, ou None se a fonte estiver vazia"""
    if isinstance(fonte, (bytes, bytearray)):
        if not fonte:
            return None
        return io.BytesIO(fonte)
    caminho = os.fspath(fonte)
    if not os.path.exists(caminho) or os.path.getsize(caminho) == 0:
        return None
    return caminho


def serializar(registros: Iterable[Dict], colunas: Optional[Sequence[str]] = None, aba: str = "Dados") -> bytes:
    """
    Gera os bytes de uma planilha .xlsx

    Args:
        registros: Sequência de dicionários (uma linha cada)
        colunas: Ordem das colunas; garante o cabeçalho mesmo sem linhas
        aba: Nome da planilha (máximo de 31 caracteres no Excel)
    """
    df = pd.DataFrame(list(registros), columns=list(colunas) if colunas else None)
    buffer = io.BytesIO()
    try:
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name=aba[:31], index=False)
    except (ValueError, TypeError) as e:
        raise ErroPlanilha(f"Erro ao gerar planilha: {e}") from e
    return buffer.getvalue()


def desserializar(fonte: Fonte) -> List[Dict]:
    """Lê a primeira planilha e retorna uma lista de registros (células vazias viram "")"""
    origem = _abrir(fonte)
    if origem is None:
        return []
    try:
        df = pd.read_excel(origem, sheet_name=0, dtype=object)
    except Exception as e:
        raise ErroPlanilha(f"Erro ao ler planilha: {e}") from e

    if df.empty:
        return []
    df = df.where(pd.notna(df), "")
    df.columns = [str(col) for col in df.columns]
    return df.to_dict(orient="records")


def ler_cabecalho(fonte: Fonte) -> List[str]:
    """
    Lê apenas a primeira linha da planilha

    Para arquivos em disco o openpyxl em modo read-only evita carregar a
    planilha inteira na memória.
    """
    origem = _abrir(fonte)
    if origem is None:
        return []
    try:
        workbook = load_workbook(origem, read_only=True, data_only=True)
        try:
            worksheet = workbook.worksheets[0] if workbook.worksheets else None
            if worksheet is None:
                return []
            for linha in worksheet.iter_rows(min_row=1, max_row=1, values_only=True):
                return [str(valor).strip() for valor in linha if valor is not None and str(valor).strip()]
            return []
        finally:
            workbook.close()
    except (InvalidFileException, zipfile.BadZipFile, KeyError):
        # .xls antigo: openpyxl não lê, pandas escolhe o engine
        if isinstance(origem, io.BytesIO):
            origem.seek(0)
        try:
            df = pd.read_excel(origem, sheet_name=0, nrows=0)
        except Exception as e:
            raise ErroPlanilha(f"Erro ao ler cabeçalho: {e}") from e
        return [str(col).strip() for col in df.columns if str(col).strip()]
    except Exception as e:
        raise ErroPlanilha(f"Erro ao ler cabeçalho: {e}") from e


def normalizar_nome(nome) -> str:
    return str(nome).strip().lower().replace("_", " ")


def localizar_coluna(colunas: Iterable, esperada: str) -> Optional[str]:
    """
    Encontra a coluna correspondente a um nome esperado

    Igualdade (sem diferenciar maiúsculas, espaços nas pontas ou "_") tem
    prioridade; na falta dela aceita uma coluna que contenha ou esteja contida
    no nome esperado, para tolerar cabeçalhos editados à mão.
    """
    alvo = normalizar_nome(esperada)
    candidatas = [(col, normalizar_nome(col)) for col in colunas]
    for col, nome in candidatas:
        if nome == alvo:
            return col
    for col, nome in candidatas:
        if nome and (alvo in nome or nome in alvo):
            return col
    return None


def valor(registro: Dict, esperada: str, padrao=""):
    """Valor de um campo pelo nome esperado, com a mesma tolerância de localizar_coluna"""
    coluna = localizar_coluna(registro.keys(), esperada)
    if coluna is None:
        return padrao
    conteudo = registro.get(coluna, padrao)
    return padrao if conteudo is None else conteudo
