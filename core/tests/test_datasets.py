"""
Testes do armazenamento de datasets (leitura, substituição, backups)
"""
import os
import shutil
import tempfile
import threading
import time
from datetime import datetime, timedelta
from unittest import mock

from django.test import SimpleTestCase

from core import planilhas
from core.datasets import BASE_CTOS, PROJETISTAS, TABULACOES, VI_ALA, DatasetStore
from core.exceptions import TempoEsgotadoLock
from core.locks import GerenciadorLocks
from core.snapshots import TipoArquivo


class RelogioDiario:
    """Relógio falso que avança um dia a cada chamada"""

    def __init__(self, inicio=datetime(2024, 3, 1, 10, 0)):
        self.momento = inicio

    def __call__(self):
        atual = self.momento
        self.momento += timedelta(days=1)
        return atual


def cto(numero):
    return {"cto": f"CTO-{numero}", "latitude": -23.5, "longitude": -46.6}


class DatasetStoreTestCase(SimpleTestCase):

    def setUp(self):
        self.diretorio = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.diretorio, True)
        self.store = DatasetStore(self.diretorio, GerenciadorLocks(timeout=2), relogio=RelogioDiario())

    def arquivos(self):
        return sorted(os.listdir(self.diretorio))

    def nomeador(self, chave=BASE_CTOS):
        return self.store.definicao(chave).nomeador

    def atual(self, chave=BASE_CTOS):
        nomeador = self.nomeador(chave)
        return nomeador.selecionar_atual(nomeador.escanear(self.diretorio))


class LeituraTest(DatasetStoreTestCase):

    def test_dataset_sem_arquivo_retorna_lista_vazia(self):
        for chave in (PROJETISTAS, VI_ALA, BASE_CTOS):
            self.assertEqual(self.store.ler(chave), [])
            self.assertEqual(self.store.ler(chave, com_lock=False), [])
        self.assertFalse(self.store.existe(BASE_CTOS))
        self.assertIsNone(self.store.ultima_modificacao(BASE_CTOS))

    def test_arquivo_corrompido_e_lido_como_vazio(self):
        with open(os.path.join(self.diretorio, "projetistas.xlsx"), "wb") as f:
            f.write(b"lixo")
        self.assertEqual(self.store.ler(PROJETISTAS), [])

    def test_dataset_desconhecido(self):
        with self.assertRaises(ValueError):
            self.store.ler("clientes")


class SubstituicaoTest(DatasetStoreTestCase):

    def test_primeira_gravacao_cria_base_atual_sem_backup(self):
        caminho = self.store.substituir(BASE_CTOS, [cto(1)])
        self.assertEqual(os.path.basename(caminho), "base_atual_01-03-2024.xlsx")
        self.assertEqual(self.store.backups(BASE_CTOS), [])
        self.assertEqual(self.store.ler(BASE_CTOS)[0]["cto"], "CTO-1")

    def test_base_anterior_vira_backup_mais_recente(self):
        self.store.substituir(BASE_CTOS, [cto(1)])
        novo = self.store.substituir(BASE_CTOS, [cto(2)])

        self.assertEqual(self.atual().caminho, novo)
        self.assertEqual(self.store.backups(BASE_CTOS), ["backup_02-03-2024.xlsx"])
        backup = os.path.join(self.diretorio, "backup_02-03-2024.xlsx")
        self.assertEqual(planilhas.desserializar(backup)[0]["cto"], "CTO-1")

    def test_sempre_uma_unica_base_atual(self):
        ultimo = None
        for numero in range(6):
            ultimo = self.store.substituir(BASE_CTOS, [cto(numero)])
            atuais = self.nomeador().atuais(self.nomeador().escanear(self.diretorio))
            self.assertEqual(len(atuais), 1)
            self.assertEqual(atuais[0].caminho, ultimo)
        self.assertEqual(self.store.ler(BASE_CTOS)[0]["cto"], "CTO-5")

    def test_retencao_mantem_os_backups_mais_recentes(self):
        self.store.retencao_backups = 3
        for numero in range(5):
            self.store.substituir(BASE_CTOS, [cto(numero)])

        backups = self.store.backups(BASE_CTOS)
        self.assertEqual(len(backups), 3)
        conteudos = [
            planilhas.desserializar(os.path.join(self.diretorio, nome))[0]["cto"] for nome in backups
        ]
        self.assertEqual(conteudos, ["CTO-3", "CTO-2", "CTO-1"])

    def test_duas_gravacoes_no_mesmo_dia_nao_sobrescrevem_backup(self):
        momento = datetime(2024, 5, 10, 9, 0)
        store = DatasetStore(self.diretorio, relogio=lambda: momento)
        for numero in range(4):
            store.substituir(BASE_CTOS, [cto(numero)])

        self.assertEqual(len(store.backups(BASE_CTOS)), 3)
        self.assertEqual(store.ler(BASE_CTOS)[0]["cto"], "CTO-3")
        conteudos = sorted(
            planilhas.desserializar(os.path.join(self.diretorio, nome))[0]["cto"]
            for nome in store.backups(BASE_CTOS)
        )
        self.assertEqual(conteudos, ["CTO-0", "CTO-1", "CTO-2"])

    def test_remove_bases_atuais_que_sobraram(self):
        sobra = os.path.join(self.diretorio, "base_atual_01-01-2020.xlsx")
        with open(sobra, "wb") as f:
            f.write(planilhas.serializar([cto(0)]))
        os.utime(sobra, (1_000, 1_000))
        antiga = os.path.join(self.diretorio, "base_atual_01-01-2021.xlsx")
        with open(antiga, "wb") as f:
            f.write(planilhas.serializar([cto(9)]))
        os.utime(antiga, (2_000, 2_000))

        novo = self.store.substituir(BASE_CTOS, [cto(1)])

        self.assertFalse(os.path.exists(sobra))
        self.assertEqual(self.atual().caminho, novo)
        self.assertEqual(len(self.store.backups(BASE_CTOS)), 1)

    def test_falha_ao_publicar_preserva_base_anterior(self):
        anterior = self.store.substituir(BASE_CTOS, [cto(1)])

        with mock.patch("core.datasets.os.replace", side_effect=OSError("sem espaço")):
            with self.assertRaises(OSError):
                self.store.substituir(BASE_CTOS, [cto(2)])

        self.assertEqual(self.atual().caminho, anterior)
        self.assertEqual(self.store.ler(BASE_CTOS)[0]["cto"], "CTO-1")
        self.assertFalse([nome for nome in self.arquivos() if nome.startswith(".tmp-")])

    def test_falha_ao_podar_backup_nao_interrompe(self):
        self.store.retencao_backups = 1
        for numero in range(2):
            self.store.substituir(BASE_CTOS, [cto(numero)])

        remover_original = os.remove

        def remover(caminho):
            if os.path.basename(caminho).startswith("backup_"):
                raise PermissionError("arquivo em uso")
            remover_original(caminho)

        with mock.patch("core.datasets.os.remove", side_effect=remover):
            novo = self.store.substituir(BASE_CTOS, [cto(2)])

        self.assertEqual(self.atual().caminho, novo)
        self.assertEqual(len(self.store.backups(BASE_CTOS)), 2)

    def test_rebaixamento_copia_quando_rename_falha(self):
        self.store.substituir(BASE_CTOS, [cto(1)])
        with mock.patch("core.datasets.os.rename", side_effect=OSError("volume diferente")):
            self.store.substituir(BASE_CTOS, [cto(2)])

        backups = self.store.backups(BASE_CTOS)
        self.assertEqual(len(backups), 1)
        self.assertEqual(
            planilhas.desserializar(os.path.join(self.diretorio, backups[0]))[0]["cto"], "CTO-1"
        )
        self.assertEqual(len(self.nomeador().atuais(self.nomeador().escanear(self.diretorio))), 1)

    def test_dataset_de_nome_fixo_nao_gera_backup(self):
        self.store.substituir(PROJETISTAS, [{"nome": "Ana", "senha": "x"}])
        self.store.substituir(PROJETISTAS, [{"nome": "Bruno", "senha": "y"}])
        self.assertEqual(self.arquivos(), ["projetistas.xlsx"])
        self.assertEqual(self.store.ler(PROJETISTAS), [{"nome": "Bruno", "senha": "y"}])


class AtualizacaoTest(DatasetStoreTestCase):

    def test_anexar_preserva_colunas_do_dataset(self):
        self.store.anexar(VI_ALA, {"VI ALA": "VI ALA-0000001", "CIDADE": "Santos"})
        self.assertEqual(
            planilhas.ler_cabecalho(self.store.caminho_atual(VI_ALA)),
            ["VI ALA", "ALA", "DATA", "PROJETISTA", "CIDADE", "ENDEREÇO", "LATITUDE", "LONGITUDE"],
        )
        self.assertEqual(self.store.ler(VI_ALA)[0]["CIDADE"], "Santos")

    def test_atualizar_nao_grava_quando_a_funcao_falha(self):
        self.store.substituir(PROJETISTAS, [{"nome": "Ana", "senha": "x"}])

        def alteracao(registros):
            registros.clear()
            raise ValueError("inválido")

        with self.assertRaises(ValueError):
            self.store.atualizar(PROJETISTAS, alteracao)
        self.assertEqual(len(self.store.ler(PROJETISTAS)), 1)

    def test_atualizar_retorna_resultado(self):
        resultado = self.store.atualizar(PROJETISTAS, lambda registros: len(registros))
        self.assertEqual(resultado, 0)
        self.assertTrue(self.store.existe(PROJETISTAS))

    def test_anexos_concorrentes_nao_se_perdem(self):
        store = DatasetStore(self.diretorio, GerenciadorLocks(timeout=30))
        threads = [
            threading.Thread(target=store.anexar, args=(VI_ALA, {"VI ALA": f"VI ALA-{n:07d}"}))
            for n in range(1, 9)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(store.ler(VI_ALA)), 8)

    def test_substituicoes_concorrentes_nao_se_sobrepoem(self):
        intervalos = []
        registro = threading.Lock()
        gravar_original = DatasetStore._gravar

        def gravar_instrumentado(store, definicao, registros):
            inicio = time.monotonic()
            resultado = gravar_original(store, definicao, registros)
            time.sleep(0.01)
            with registro:
                intervalos.append((inicio, time.monotonic()))
            return resultado

        store = DatasetStore(self.diretorio, GerenciadorLocks(timeout=10))
        with mock.patch.object(DatasetStore, "_gravar", gravar_instrumentado):
            threads = [
                threading.Thread(target=store.substituir, args=(BASE_CTOS, [cto(n)])) for n in range(5)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        intervalos.sort()
        self.assertEqual(len(intervalos), 5)
        for anterior, seguinte in zip(intervalos, intervalos[1:]):
            self.assertLessEqual(anterior[1], seguinte[0])

    def test_lock_ocupado_levanta_timeout(self):
        store = DatasetStore(self.diretorio, GerenciadorLocks(timeout=0.05))
        with store.locks.bloquear(VI_ALA):
            with self.assertRaises(TempoEsgotadoLock):
                store.anexar(VI_ALA, {"VI ALA": "VI ALA-0000001"})
        self.assertFalse(store.existe(VI_ALA))


class GarantirEMigrarTest(DatasetStoreTestCase):

    def test_garantir_cria_apenas_uma_vez(self):
        self.assertTrue(self.store.garantir(VI_ALA))
        self.assertFalse(self.store.garantir(VI_ALA))
        self.assertEqual(self.store.ler(VI_ALA), [])
        self.assertTrue(os.path.exists(os.path.join(self.diretorio, "base_VI ALA.xlsx")))

    def test_garantir_grava_registros_iniciais(self):
        self.assertTrue(self.store.garantir(TABULACOES, [{"nome": "Viável"}]))
        self.assertFalse(self.store.garantir(TABULACOES, [{"nome": "Outra"}]))
        self.assertEqual([r["nome"] for r in self.store.ler(TABULACOES)], ["Viável"])

    def test_legado_e_lido_e_migrado(self):
        legado = os.path.join(self.diretorio, "base.xlsx")
        with open(legado, "wb") as f:
            f.write(planilhas.serializar([cto(7)]))

        self.assertEqual(self.atual().tipo, TipoArquivo.LEGADO)
        self.assertEqual(self.store.ler(BASE_CTOS)[0]["cto"], "CTO-7")

        destino = self.store.migrar_legado(BASE_CTOS)
        self.assertEqual(self.atual().caminho, destino)
        self.assertTrue(os.path.exists(legado))
        self.assertEqual(self.store.backups(BASE_CTOS), [])
        self.assertIsNone(self.store.migrar_legado(BASE_CTOS))

    def test_substituir_arquivo_move_o_upload(self):
        origem = os.path.join(self.diretorio, "upload.xlsx")
        with open(origem, "wb") as f:
            f.write(planilhas.serializar([cto(3)]))

        destino = self.store.substituir_arquivo(BASE_CTOS, origem)

        self.assertFalse(os.path.exists(origem))
        self.assertEqual(self.atual().caminho, destino)
        self.assertEqual(self.store.ler_bytes(BASE_CTOS)[0], os.path.basename(destino))
