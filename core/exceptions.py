"""
Exceções do armazenamento de planilhas e dos serviços que o utilizam
"""


class ErroVerificador(Exception):
    """Base para os erros previstos pelo backend"""


class ErroValidacao(ErroVerificador):
    """Dados de entrada inválidos (upload fora do formato, campos obrigatórios ausentes)"""


class TempoEsgotadoLock(ErroVerificador):
    """O lock de um dataset não foi liberado dentro do tempo máximo de espera"""

    def __init__(self, chave, timeout):
        self.chave = chave
        self.timeout = timeout
        super().__init__(f"Timeout ao aguardar lock {chave} ({timeout:.1f}s)")


class ErroPlanilha(ErroVerificador):
    """Falha ao decodificar ou gerar uma planilha"""


class ErroBackend(ErroVerificador):
    """Backend de persistência indisponível ou com erro"""


class ProjetistaJaExiste(ErroVerificador):
    pass


class ProjetistaNaoEncontrado(ErroVerificador):
    pass


class TabulacaoNaoEncontrada(ErroVerificador):
    pass


class VIALADuplicado(ErroVerificador):
    pass
