# Configuração do Gunicorn para produção
import os

# Configuração do WSGI
wsgi_app = "viabilidade.wsgi:application"

# Os locks das planilhas e as sessões online vivem na memória do processo:
# um único worker, concorrência por threads
workers = 1
worker_class = "gthread"
threads = int(os.getenv("GUNICORN_THREADS", "8"))
timeout = 180  # uploads de até 100MB
keepalive = 5

# Configuração de logs
accesslog = "-"
errorlog = "-"
loglevel = "info"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"
backlog = 2048

# Sem preload: a thread de varredura de sessões precisa ser criada no worker, não no master
preload_app = False


def on_starting(server):
    """Callback quando o servidor inicia"""
    server.log.info("Servidor Gunicorn iniciando...")


def post_fork(server, worker):
    """Callback após criar um novo worker"""
    server.log.info(f"Worker {worker.pid} criado")


def when_ready(server):
    """Callback quando o servidor está pronto para aceitar conexões"""
    server.log.info("Servidor Gunicorn pronto para aceitar conexões")


def on_exit(server):
    """Callback quando o servidor encerra"""
    server.log.info("Servidor Gunicorn encerrando...")
