"""
Testes da lista de tabulações
"""
import shutil
import tempfile
import threading
from unittest import mock

from django.test import SimpleTestCase

from core.backends import ArquivoBackend
from core.datasets import TABULACOES, DatasetStore
from core.exceptions import ErroValidacao, TabulacaoNaoEncontrada
from core.locks import GerenciadorLocks
from core.tabulacoes import TABULACOES_PADRAO, ServicoTabulacoes


class ServicoTabulacoesTest(SimpleTestCase):

    def setUp(self):
        self.diretorio = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.diretorio, True)
        self.store = DatasetStore(self.diretorio, GerenciadorLocks(timeout=5))
        self.servico = ServicoTabulacoes(ArquivoBackend(self.store))

    def test_primeira_leitura_cria_lista_padrao(self):
        self.assertEqual(self.servico.listar(), sorted(TABULACOES_PADRAO))
        self.assertTrue(self.store.existe(TABULACOES))
        self.assertEqual(len(self.store.ler(TABULACOES)), len(TABULACOES_PADRAO))

    def test_adicionar_em_lista_inexistente_mantem_padrao(self):
        nomes, criada = self.servico.adicionar("Inviável - Sem Viabilidade Técnica")
        self.assertTrue(criada)
        self.assertEqual(len(nomes), len(TABULACOES_PADRAO) + 1)
        self.assertEqual(nomes, sorted(nomes))

    def test_adicionar_repetida_nao_altera(self):
        self.servico.adicionar("Nova")
        nomes, criada = self.servico.adicionar(" Nova ")
        self.assertFalse(criada)
        self.assertEqual(nomes.count("Nova"), 1)

    def test_adicionar_vazia(self):
        with self.assertRaises(ErroValidacao):
            self.servico.adicionar("   ")

    def test_remover(self):
        alvo = TABULACOES_PADRAO[0]
        nomes = self.servico.remover(alvo)
        self.assertNotIn(alvo, nomes)
        self.assertEqual(self.servico.listar(), nomes)
        with self.assertRaises(TabulacaoNaoEncontrada):
            self.servico.remover(alvo)

    def test_lista_vazia_nao_volta_ao_padrao(self):
        self.store.substituir(TABULACOES, [])
        self.assertEqual(self.servico.listar(), [])
        nomes, _ = self.servico.adicionar("Única")
        self.assertEqual(nomes, ["Única"])

    def test_padrao_configuravel(self):
        servico = ServicoTabulacoes(ArquivoBackend(self.store), padrao=("B", "A"))
        self.assertEqual(servico.listar(), ["A", "B"])

    def test_adicionar_durante_a_criacao_do_padrao(self):
        """Quem chega enquanto a lista padrão é gravada espera e não grava o padrão de novo"""
        servico = ServicoTabulacoes(ArquivoBackend(DatasetStore(self.diretorio, GerenciadorLocks(timeout=10))))
        original = DatasetStore._gravar
        gravando, liberar = threading.Event(), threading.Event()
        gravacoes = []

        def gravar(store, definicao, registros):
            gravacoes.append([r["nome"] for r in registros])
            if len(gravacoes) == 1:
                gravando.set()
                liberar.wait(5)
            return original(store, definicao, registros)

        with mock.patch.object(DatasetStore, "_gravar", autospec=True, side_effect=gravar):
            listar = threading.Thread(target=servico.listar)
            listar.start()
            self.assertTrue(gravando.wait(5))

            adicionar = threading.Thread(target=servico.adicionar, args=("Nova A",))
            adicionar.start()
            adicionar.join(0.2)
            self.assertTrue(adicionar.is_alive())

            liberar.set()
            listar.join(5)
            adicionar.join(5)

        esperado = sorted(TABULACOES_PADRAO + ("Nova A",))
        self.assertEqual(gravacoes, [sorted(TABULACOES_PADRAO), esperado])
        self.assertEqual(servico.listar(), esperado)
