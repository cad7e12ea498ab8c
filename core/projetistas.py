"""
Cadastro de projetistas (nome + senha) sobre o backend de persistência
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from django.contrib.auth.hashers import check_password, identify_hasher, make_password
from django.utils.crypto import constant_time_compare

from . import planilhas
from .backends import PersistenceBackend
from .datasets import PROJETISTAS
from .exceptions import ErroValidacao, ProjetistaJaExiste, ProjetistaNaoEncontrado
from .sessoes import RastreadorSessoes

logger = logging.getLogger(__name__)

TAMANHO_MINIMO_SENHA = 4
TAMANHO_MINIMO_NOME = 2


def eh_hash(senha: str) -> bool:
    try:
        identify_hasher(senha)
    except ValueError:
        return False
    return True


@dataclass
class Projetista:
    nome: str
    senha: str = ""

    @classmethod
    def de_registro(cls, registro: Dict) -> Optional["Projetista"]:
        """Linha da planilha -> Projetista; linhas antigas só com o nome ficam sem senha"""
        nome = str(planilhas.valor(registro, "nome")).strip()
        if not nome:
            return None
        senha = planilhas.valor(registro, "senha")
        return cls(nome, str(senha).strip() if senha not in ("", None) else "")

    def como_registro(self) -> Dict:
        senha = self.senha
        if senha and not eh_hash(senha):
            senha = make_password(senha)
        return {"nome": self.nome, "senha": senha}

    def confere(self, senha: str) -> bool:
        if not self.senha or not senha:
            return False
        if eh_hash(self.senha):
            return check_password(senha, self.senha)
        # senha antiga em texto puro, trocada por hash na próxima gravação
        return constant_time_compare(senha, self.senha)


def _chave_nome(nome: str) -> str:
    return nome.strip().lower()


def carregar(registros: List[Dict]) -> List[Projetista]:
    projetistas = []
    vistos = set()
    for registro in registros:
        projetista = Projetista.de_registro(registro)
        if projetista is None or _chave_nome(projetista.nome) in vistos:
            continue
        vistos.add(_chave_nome(projetista.nome))
        projetistas.append(projetista)
    return projetistas


class ServicoProjetistas:
    """
    Operações do cadastro de projetistas

    Cada mutação é uma única leitura-alteração-gravação no backend; se a
    validação falhar dentro dela nada é gravado.
    """

    def __init__(self, backend: PersistenceBackend, sessoes: Optional[RastreadorSessoes] = None):
        self.backend = backend
        self.sessoes = sessoes

    def _mutar(self, alteracao) -> List[str]:
        """Aplica ``alteracao`` à lista de Projetista, ordena, grava e retorna os nomes"""

        def operacao(registros: List[Dict]) -> List[str]:
            projetistas = carregar(registros)
            alteracao(projetistas)
            projetistas.sort(key=lambda p: _chave_nome(p.nome))
            registros[:] = [p.como_registro() for p in projetistas]
            return [p.nome for p in projetistas]

        return self.backend.atualizar(PROJETISTAS, operacao)

    @staticmethod
    def _buscar(projetistas: List[Projetista], nome: str) -> Optional[Projetista]:
        alvo = _chave_nome(nome)
        for projetista in projetistas:
            if _chave_nome(projetista.nome) == alvo:
                return projetista
        return None

    def listar(self) -> List[Projetista]:
        projetistas = carregar(self.backend.ler(PROJETISTAS))
        projetistas.sort(key=lambda p: _chave_nome(p.nome))
        return projetistas

    def listar_nomes(self) -> List[str]:
        return [p.nome for p in self.listar()]

    def adicionar(self, nome: str, senha: str) -> List[str]:
        nome = (nome or "").strip()
        senha = (senha or "").strip()
        if not nome:
            raise ErroValidacao("Nome do projetista é obrigatório")
        if not senha:
            raise ErroValidacao("Senha é obrigatória")
        senha_hash = make_password(senha)

        def alteracao(projetistas):
            if self._buscar(projetistas, nome):
                raise ProjetistaJaExiste("Projetista já existe")
            projetistas.append(Projetista(nome, senha_hash))

        nomes = self._mutar(alteracao)
        logger.info(f"Projetista '{nome}' adicionado")
        return nomes

    def remover(self, nome: str) -> List[str]:
        nome = (nome or "").strip()
        if not nome:
            raise ErroValidacao("Nome do projetista não pode estar vazio")
        removido = {}

        def alteracao(projetistas):
            projetista = self._buscar(projetistas, nome)
            if projetista is None:
                raise ProjetistaNaoEncontrado("Projetista não encontrado")
            removido["nome"] = projetista.nome
            projetistas.remove(projetista)

        nomes = self._mutar(alteracao)
        if self.sessoes is not None:
            self.sessoes.logout(removido.get("nome", nome))
        logger.info(f"Projetista '{nome}' removido")
        return nomes

    def atualizar_senha(self, nome: str, senha: str) -> None:
        nome = (nome or "").strip()
        senha = (senha or "").strip()
        if len(senha) < TAMANHO_MINIMO_SENHA:
            raise ErroValidacao(f"A senha deve ter pelo menos {TAMANHO_MINIMO_SENHA} caracteres")
        senha_hash = make_password(senha)

        def alteracao(projetistas):
            projetista = self._buscar(projetistas, nome)
            if projetista is None:
                raise ProjetistaNaoEncontrado("Projetista não encontrado")
            projetista.senha = senha_hash

        self._mutar(alteracao)
        logger.info(f"Senha do projetista '{nome}' atualizada")

    def renomear(self, nome: str, novo_nome: str) -> List[str]:
        nome = (nome or "").strip()
        novo_nome = (novo_nome or "").strip()
        if not nome:
            raise ErroValidacao("Nome do projetista não pode estar vazio")
        if len(novo_nome) < TAMANHO_MINIMO_NOME:
            raise ErroValidacao(f"O novo nome deve ter pelo menos {TAMANHO_MINIMO_NOME} caracteres")
        antigo = {}

        def alteracao(projetistas):
            projetista = self._buscar(projetistas, nome)
            if projetista is None:
                raise ProjetistaNaoEncontrado("Projetista não encontrado")
            outro = self._buscar(projetistas, novo_nome)
            if outro is not None and outro is not projetista:
                raise ProjetistaJaExiste("Este nome já está em uso por outro usuário")
            antigo["nome"] = projetista.nome
            projetista.nome = novo_nome

        nomes = self._mutar(alteracao)
        if self.sessoes is not None:
            self.sessoes.renomear(antigo.get("nome", nome), novo_nome)
        logger.info(f"Projetista '{nome}' renomeado para '{novo_nome}'")
        return nomes

    def autenticar(self, nome: str, senha: str) -> Optional[Projetista]:
        """Retorna o projetista se nome (sem diferenciar maiúsculas) e senha conferem"""
        nome = (nome or "").strip()
        senha = (senha or "").strip()
        if not nome or not senha:
            return None
        projetista = self._buscar(carregar(self.backend.ler(PROJETISTAS)), nome)
        if projetista is None or not projetista.confere(senha):
            return None
        return projetista
