"""
Testes do controle de sessões online
"""
import threading

from django.test import SimpleTestCase

from core.exceptions import ErroValidacao
from core.sessoes import RastreadorSessoes, VarredorSessoes


class Relogio:
    """Relógio manual em segundos"""

    def __init__(self, agora=1_000.0):
        self.agora = agora

    def __call__(self):
        return self.agora

    def avancar(self, segundos):
        self.agora += segundos


class RastreadorSessoesTest(SimpleTestCase):

    def setUp(self):
        self.relogio = Relogio()
        self.sessoes = RastreadorSessoes(timeout=300, relogio=self.relogio)

    def test_login_exige_usuario(self):
        with self.assertRaises(ErroValidacao):
            self.sessoes.login("   ")

    def test_login_e_logout(self):
        self.sessoes.login(" Ana ")
        visao = self.sessoes.listar_online()
        self.assertEqual(visao.online, ["Ana"])
        self.assertEqual(visao.info["Ana"], {"status": "online", "login_time": 1_000.0})

        self.relogio.avancar(10)
        self.assertTrue(self.sessoes.logout("Ana"))
        self.assertFalse(self.sessoes.logout("Ana"))
        visao = self.sessoes.listar_online()
        self.assertEqual(visao.online, [])
        self.assertEqual(visao.info["Ana"], {"status": "offline", "logout_time": 1_010.0})

    def test_novo_login_limpa_historico(self):
        self.sessoes.login("Ana")
        self.sessoes.logout("Ana")
        self.sessoes.login("Ana")
        self.assertEqual(self.sessoes.historico_logout(), {})
        self.assertEqual(self.sessoes.listar_online().info["Ana"]["status"], "online")

    def test_heartbeat_mantem_sessao_viva(self):
        self.sessoes.login("Ana")
        self.relogio.avancar(200)
        self.assertTrue(self.sessoes.heartbeat("Ana"))
        self.relogio.avancar(200)
        self.assertEqual(self.sessoes.listar_online().online, ["Ana"])
        self.assertFalse(self.sessoes.heartbeat("Bruno"))

    def test_sessao_inativa_aparece_offline_antes_da_varredura(self):
        """Sessão sem atividade além do timeout sai da lista online e entra no histórico"""
        self.sessoes.login("Ana")
        self.sessoes.login("Bruno")
        self.relogio.avancar(100)
        self.sessoes.heartbeat("Bruno")
        self.relogio.avancar(250)

        visao = self.sessoes.listar_online()
        self.assertEqual(visao.online, ["Bruno"])
        self.assertEqual(visao.info["Ana"], {"status": "offline", "logout_time": 1_000.0})
        self.assertEqual(self.sessoes.historico_logout(), {"Ana": 1_000.0})

    def test_heartbeat_nao_revive_sessao_expirada(self):
        self.sessoes.login("Ana")
        self.relogio.avancar(301)
        self.assertFalse(self.sessoes.heartbeat("Ana"))
        self.assertEqual(self.sessoes.listar_online().online, [])

    def test_expirar_move_para_historico(self):
        self.sessoes.login("Ana")
        self.sessoes.login("Bruno")
        self.relogio.avancar(301)
        self.sessoes.heartbeat("Bruno")
        self.sessoes.login("Carla")

        self.assertEqual(self.sessoes.expirar(), ["Ana", "Bruno"])
        self.assertEqual(self.sessoes.expirar(), [])
        self.assertEqual(self.sessoes.historico_logout(), {"Ana": 1_000.0, "Bruno": 1_000.0})
        self.assertEqual(self.sessoes.listar_online().online, ["Carla"])

    def test_renomear_acompanha_sessao_e_historico(self):
        self.sessoes.login("Ana")
        self.sessoes.login("Bruno")
        self.sessoes.logout("Bruno")

        self.sessoes.renomear("Ana", "Ana Paula")
        self.sessoes.renomear("Bruno", "Bruno Lima")

        visao = self.sessoes.listar_online()
        self.assertEqual(visao.online, ["Ana Paula"])
        self.assertNotIn("Ana", visao.info)
        self.assertIn("Bruno Lima", self.sessoes.historico_logout())
        self.assertTrue(self.sessoes.heartbeat("Ana Paula"))


class VarredorSessoesTest(SimpleTestCase):

    def test_varredura_periodica_expira_sessoes(self):
        relogio = Relogio()
        expirou = threading.Event()

        class Rastreador(RastreadorSessoes):
            def expirar(self):
                expirados = super().expirar()
                if expirados:
                    expirou.set()
                return expirados

        sessoes = Rastreador(timeout=5, relogio=relogio)
        sessoes.login("Ana")
        relogio.avancar(10)

        varredor = VarredorSessoes(sessoes, intervalo=0.01)
        varredor.iniciar()
        try:
            self.assertTrue(varredor.ativo)
            self.assertTrue(expirou.wait(5))
        finally:
            varredor.parar(timeout=5)

        self.assertFalse(varredor.ativo)
        self.assertEqual(sessoes.historico_logout(), {"Ana": 1_000.0})

    def test_iniciar_duas_vezes_nao_cria_outra_thread(self):
        varredor = VarredorSessoes(RastreadorSessoes(), intervalo=60)
        varredor.iniciar()
        try:
            thread = varredor._thread
            varredor.iniciar()
            self.assertIs(varredor._thread, thread)
        finally:
            varredor.parar(timeout=5)
