"""
Testes da numeração VI ALA
"""
import shutil
import tempfile
import threading

from django.test import SimpleTestCase

from core.datasets import VI_ALA, DatasetStore
from core.exceptions import ErroValidacao, VIALADuplicado
from core.locks import GerenciadorLocks
from core.vi_ala import AlocadorVIALA, extrair_sequencia, formatar_identificador


class IdentificadorTest(SimpleTestCase):

    def test_formato_com_sete_digitos(self):
        self.assertEqual(formatar_identificador(8), "VI ALA-0000008")
        self.assertEqual(formatar_identificador(1234567), "VI ALA-1234567")

    def test_extrai_sequencia_de_formatos_antigos(self):
        self.assertEqual(extrair_sequencia("VI ALA-0000012"), 12)
        self.assertEqual(extrair_sequencia("vi ala 0000012"), 12)
        self.assertEqual(extrair_sequencia("VIALA-5"), 5)
        self.assertEqual(extrair_sequencia("  VI   ALA--0000040 "), 40)

    def test_ids_invalidos_retornam_none(self):
        self.assertIsNone(extrair_sequencia(None))
        self.assertIsNone(extrair_sequencia(""))
        self.assertIsNone(extrair_sequencia("ALA-0000003"))
        self.assertIsNone(extrair_sequencia("VI ALA-"))


class AlocadorVIALATest(SimpleTestCase):

    def setUp(self):
        self.diretorio = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.diretorio, True)
        self.store = DatasetStore(self.diretorio, GerenciadorLocks(timeout=30))
        self.alocador = AlocadorVIALA(self.store)

    def test_base_vazia_comeca_em_um(self):
        self.assertEqual(self.alocador.proximo(), "VI ALA-0000001")

    def test_proximo_usa_o_maior_numero_da_base(self):
        self.store.substituir(VI_ALA, [
            {"VI ALA": "VI ALA-0000003"},
            {"VI ALA": "VI ALA-0000007"},
            {"VI ALA": "VI ALA-0000002"},
        ])
        self.assertEqual(self.alocador.proximo(), "VI ALA-0000008")

    def test_ids_malformados_sao_ignorados(self):
        self.store.substituir(VI_ALA, [
            {"VI ALA": "sem numero"},
            {"VI ALA": ""},
            {"VI ALA": "VI ALA 0000004"},
        ])
        self.assertEqual(self.alocador.proximo(), "VI ALA-0000005")

    def test_proximo_nao_grava(self):
        self.alocador.proximo()
        self.assertFalse(self.store.existe(VI_ALA))

    def test_registrar_sequencial_e_estritamente_crescente(self):
        emitidos = [self.alocador.registrar({"projetista": "Ana"}) for _ in range(4)]
        sequencias = [extrair_sequencia(vi) for vi in emitidos]
        self.assertEqual(sequencias, [1, 2, 3, 4])
        registros = self.store.ler(VI_ALA)
        self.assertEqual([r["VI ALA"] for r in registros], emitidos)
        self.assertEqual(registros[0]["PROJETISTA"], "Ana")

    def test_registrar_concorrente_nunca_repete_numero(self):
        emitidos = []
        mutex = threading.Lock()

        def registrar():
            vi = self.alocador.registrar({"cidade": "Santos"})
            with mutex:
                emitidos.append(vi)

        threads = [threading.Thread(target=registrar) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(set(emitidos)), 6)
        self.assertEqual(sorted(extrair_sequencia(vi) for vi in emitidos), [1, 2, 3, 4, 5, 6])

    def test_salvar_exige_numero(self):
        with self.assertRaises(ErroValidacao):
            self.alocador.salvar({"vi_ala": "  "})
        self.assertFalse(self.store.existe(VI_ALA))

    def test_salvar_rejeita_sequencia_ja_registrada(self):
        self.alocador.salvar({"vi_ala": "VI ALA-0000001", "cidade": "Santos"})
        with self.assertRaises(VIALADuplicado):
            self.alocador.salvar({"vi_ala": "vi ala 1", "cidade": "Guarujá"})
        registros = self.store.ler(VI_ALA)
        self.assertEqual(len(registros), 1)
        self.assertEqual(registros[0]["CIDADE"], "Santos")

    def test_salvar_grava_colunas_do_ledger(self):
        self.alocador.salvar({
            "vi_ala": "VI ALA-0000010",
            "ala": "ALA-77",
            "data": "07/03/2024",
            "projetista": "Ana",
            "cidade": "Santos",
            "endereco": "Rua A, 10",
            "latitude": "-23.96",
            "longitude": "-46.33",
        })
        registro = self.store.ler(VI_ALA)[0]
        self.assertEqual(registro["ENDEREÇO"], "Rua A, 10")
        self.assertEqual(registro["ALA"], "ALA-77")
        self.assertEqual(self.alocador.proximo(), "VI ALA-0000011")

    def test_listar_recentes_do_maior_para_o_menor(self):
        for numero in (3, 12, 7):
            self.alocador.salvar({"vi_ala": formatar_identificador(numero), "projetista": f"P{numero}"})
        recentes = self.alocador.listar_recentes(limite=2)
        self.assertEqual([item["numero"] for item in recentes], [12, 7])
        self.assertEqual(recentes[0]["projetista"], "P12")
        self.assertEqual(recentes[0]["id"], "VI ALA-0000012")

    def test_prefixo_configuravel(self):
        alocador = AlocadorVIALA(self.store, prefixo="OS")
        self.assertEqual(alocador.registrar({}), "OS-0000001")
        self.assertEqual(alocador.proximo(), "OS-0000002")

    def test_garantir_base(self):
        self.assertTrue(self.alocador.garantir_base())
        self.assertFalse(self.alocador.garantir_base())
