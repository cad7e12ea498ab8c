"""
API JSON do verificador (projetistas, sessões, tabulações, VI ALA e base de CTOs)
"""
import logging
from functools import wraps

from django.conf import settings
from django.http import HttpResponse
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, parser_classes
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.response import Response

from . import planilhas
from .audit_logger import (
    AuditLogger, get_client_ip, log_base_upload, log_failed_login, log_login,
    log_logout, log_projetista_change, log_vi_ala,
)
from .datasets import BASE_CTOS, COLUNAS_CTO, VI_ALA
from .exceptions import (
    ErroValidacao, ErroVerificador, ProjetistaJaExiste, ProjetistaNaoEncontrado,
    TabulacaoNaoEncontrada, TempoEsgotadoLock, VIALADuplicado,
)
from .servicos import obter_servicos

logger = logging.getLogger(__name__)

CONTENT_TYPE_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _erro(mensagem, status_code, **extra):
    return Response({"success": False, "error": mensagem, **extra}, status=status_code)


def tratar_erros(view):
    """Converte as exceções do verificador em respostas JSON com o status HTTP adequado"""

    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except TempoEsgotadoLock as e:
            AuditLogger.log_security_event(
                "lock_timeout", {"chave": e.chave, "path": request.path}, get_client_ip(request)
            )
            return _erro("Servidor ocupado, tente novamente em instantes", status.HTTP_503_SERVICE_UNAVAILABLE,
                         retry=True)
        except ErroValidacao as e:
            return _erro(str(e), status.HTTP_400_BAD_REQUEST)
        except (ProjetistaNaoEncontrado, TabulacaoNaoEncontrada) as e:
            return _erro(str(e), status.HTTP_404_NOT_FOUND)
        except (ProjetistaJaExiste, VIALADuplicado) as e:
            return _erro(str(e), status.HTTP_409_CONFLICT)
        except ErroVerificador as e:
            logger.error(f"Erro em {request.path}: {e}")
            return _erro(str(e), status.HTTP_500_INTERNAL_SERVER_ERROR)
        except Exception as e:
            logger.exception(f"Erro não tratado em {request.path}: {e}")
            return _erro("Erro interno do servidor", status.HTTP_500_INTERNAL_SERVER_ERROR)

    return wrapper


def _texto(dados, campo):
    conteudo = dados.get(campo)
    return "" if conteudo is None else str(conteudo).strip()


def _ms(segundos):
    return int(segundos * 1000) if segundos is not None else None


def _planilha(nome_arquivo, conteudo):
    response = HttpResponse(conteudo, content_type=CONTENT_TYPE_XLSX)
    response["Content-Disposition"] = f'attachment; filename="{nome_arquivo}"'
    response["Cache-Control"] = "no-store"
    return response


# Saúde

@api_view(["GET"])
def health(request):
    return Response({"status": "ok", "timestamp": timezone.now().isoformat()})


# Projetistas

@api_view(["GET", "POST"])
@tratar_erros
def projetistas(request):
    servicos = obter_servicos()
    if request.method == "GET":
        return Response({"success": True, "projetistas": servicos.projetistas.listar_nomes()})

    nome = _texto(request.data, "nome")
    try:
        nomes = servicos.projetistas.adicionar(nome, _texto(request.data, "senha"))
    except ProjetistaJaExiste as e:
        return Response({"success": False, "error": str(e)})
    log_projetista_change("projetista_created", nome, ip_address=get_client_ip(request))
    return Response({"success": True, "projetistas": nomes, "message": "Projetista adicionado com sucesso"})


@api_view(["DELETE"])
@tratar_erros
def projetista_remover(request, nome):
    nomes = obter_servicos().projetistas.remover(nome)
    log_projetista_change("projetista_deleted", nome.strip(), ip_address=get_client_ip(request))
    return Response({
        "success": True,
        "projetistas": nomes,
        "message": f"Projetista '{nome.strip()}' deletado com sucesso",
    })


@api_view(["PUT"])
@tratar_erros
def projetista_senha(request, nome):
    senha = _texto(request.data, "senha")
    if not senha:
        raise ErroValidacao("Senha é obrigatória")
    obter_servicos().projetistas.atualizar_senha(nome, senha)
    log_projetista_change("projetista_password_changed", nome.strip(), ip_address=get_client_ip(request))
    return Response({"success": True, "message": "Senha atualizada com sucesso"})


@api_view(["PUT"])
@tratar_erros
def projetista_nome(request, nome):
    novo_nome = _texto(request.data, "novoNome")
    if not novo_nome:
        raise ErroValidacao("Novo nome é obrigatório")
    nomes = obter_servicos().projetistas.renomear(nome, novo_nome)
    log_projetista_change(
        "projetista_renamed", nome.strip(), {"novo_nome": novo_nome}, ip_address=get_client_ip(request)
    )
    return Response({"success": True, "projetistas": nomes, "message": "Nome atualizado com sucesso"})


# Autenticação e sessões

@api_view(["POST"])
@tratar_erros
def auth_login(request):
    usuario = _texto(request.data, "usuario")
    senha = _texto(request.data, "senha")
    if not usuario:
        raise ErroValidacao("Usuário é obrigatório")
    if not senha:
        raise ErroValidacao("Senha é obrigatória")

    servicos = obter_servicos()
    ip = get_client_ip(request)
    projetista = servicos.projetistas.autenticar(usuario, senha)
    if projetista is None:
        log_failed_login(usuario, ip)
        return Response({"success": False, "error": "Usuário ou senha incorretos"})

    servicos.sessoes.login(projetista.nome)
    log_login(projetista.nome, ip)
    return Response({"success": True, "message": "Login realizado com sucesso", "usuario": projetista.nome})


@api_view(["POST"])
@tratar_erros
def auth_logout(request):
    usuario = _texto(request.data, "usuario")
    if usuario and obter_servicos().sessoes.logout(usuario):
        log_logout(usuario, get_client_ip(request))
    return Response({"success": True, "message": "Logout realizado com sucesso"})


@api_view(["GET"])
@tratar_erros
def users_online(request):
    visao = obter_servicos().sessoes.listar_online()
    users_info = {}
    for usuario, info in visao.info.items():
        if info["status"] == "online":
            users_info[usuario] = {"status": "online", "loginTime": _ms(info["login_time"])}
        else:
            users_info[usuario] = {"status": "offline", "logoutTime": _ms(info["logout_time"])}
    return Response({"success": True, "onlineUsers": visao.online, "usersInfo": users_info})


@api_view(["POST"])
@tratar_erros
def users_heartbeat(request):
    ativo = obter_servicos().sessoes.heartbeat(_texto(request.data, "usuario"))
    return Response({"success": True, "active": ativo})


# Tabulações

@api_view(["GET", "POST"])
@tratar_erros
def tabulacoes(request):
    servico = obter_servicos().tabulacoes
    if request.method == "GET":
        return Response({"success": True, "tabulacoes": servico.listar()})

    nomes, criada = servico.adicionar(_texto(request.data, "nome"))
    mensagem = "Tabulação adicionada com sucesso" if criada else "Tabulação já existe"
    return Response({"success": True, "tabulacoes": nomes, "message": mensagem, "created": criada})


@api_view(["DELETE"])
@tratar_erros
def tabulacao_remover(request, nome):
    nomes = obter_servicos().tabulacoes.remover(nome)
    return Response({"success": True, "tabulacoes": nomes, "message": "Tabulação removida com sucesso"})


# VI ALA

def _dados_vi_ala(dados):
    return {
        "vi_ala": _texto(dados, "viAla"),
        "ala": dados.get("ala"),
        "data": dados.get("data"),
        "projetista": dados.get("projetista"),
        "cidade": dados.get("cidade"),
        "endereco": dados.get("endereco"),
        "latitude": dados.get("latitude"),
        "longitude": dados.get("longitude"),
    }


@api_view(["GET"])
@tratar_erros
def vi_ala_next(request):
    return Response({"success": True, "viAla": obter_servicos().vi_ala.proximo()})


@api_view(["POST"])
@tratar_erros
def vi_ala_save(request):
    dados = _dados_vi_ala(request.data)
    identificador = obter_servicos().vi_ala.salvar(dados)
    log_vi_ala(identificador, dados.get("projetista"), get_client_ip(request))
    return Response({"success": True, "message": "Registro salvo com sucesso", "viAla": identificador})


@api_view(["POST"])
@tratar_erros
def vi_ala_registrar(request):
    dados = _dados_vi_ala(request.data)
    identificador = obter_servicos().vi_ala.registrar(dados)
    log_vi_ala(identificador, dados.get("projetista"), get_client_ip(request))
    return Response({"success": True, "message": "Registro salvo com sucesso", "viAla": identificador})


@api_view(["GET"])
@tratar_erros
def vi_ala_list(request):
    try:
        limite = int(request.query_params.get("limit", 10))
    except ValueError:
        raise ErroValidacao("Parâmetro limit inválido")
    return Response({"success": True, "viAlas": obter_servicos().vi_ala.listar_recentes(max(1, limite))})


@api_view(["GET"])
@tratar_erros
def vi_ala_ensure_base(request):
    obter_servicos().vi_ala.garantir_base()
    return Response({"success": True, "message": "Base VI ALA verificada/criada com sucesso"})


@api_view(["GET"])
@tratar_erros
def vi_ala_download(request):
    arquivo = obter_servicos().store.ler_bytes(VI_ALA)
    if arquivo is None:
        return Response({"success": False, "error": "Arquivo base_VI ALA.xlsx não encontrado"},
                        status=status.HTTP_404_NOT_FOUND)
    return _planilha(*arquivo)


# Base de CTOs

@api_view(["GET"])
@tratar_erros
def base_download(request):
    arquivo = obter_servicos().store.ler_bytes(BASE_CTOS)
    if arquivo is None:
        logger.warning("Nenhuma base de CTOs encontrada, enviando planilha vazia")
        return _planilha("base.xlsx", planilhas.serializar([], COLUNAS_CTO, "CTOs"))
    return _planilha(*arquivo)


@api_view(["GET"])
@tratar_erros
def base_last_modified(request):
    momento = obter_servicos().store.ultima_modificacao(BASE_CTOS)
    if momento is None:
        return Response({"success": False, "error": "Arquivo base de dados não encontrado"})
    return Response({"success": True, "lastModified": timezone.make_aware(momento).isoformat()})


@api_view(["POST"])
@parser_classes([MultiPartParser, FormParser])
@tratar_erros
def upload_base(request):
    arquivo = request.FILES.get("file")
    if arquivo is None:
        raise ErroValidacao("Nenhum arquivo enviado")

    servicos = obter_servicos()
    pipeline = servicos.upload
    if arquivo.size and arquivo.size > pipeline.tamanho_maximo:
        raise ErroValidacao(f"Arquivo muito grande. Tamanho máximo: {pipeline.tamanho_maximo // (1024 * 1024)}MB")
    caminho = pipeline.receber(arquivo, arquivo.name)
    ip = get_client_ip(request)

    if settings.UPLOAD_EM_BACKGROUND:
        futuro = servicos.executor.submit(pipeline.processar_arquivo, caminho, arquivo.name)
        futuro.add_done_callback(lambda f: _registrar_upload(f, arquivo.name, ip))
        return Response({
            "success": True,
            "message": "Arquivo recebido. O processamento está sendo feito em segundo plano.",
            "processing": True,
        }, status=status.HTTP_202_ACCEPTED)

    resultado = pipeline.processar_arquivo(caminho, arquivo.name)
    log_base_upload(arquivo.name, resultado.como_dict(), ip)
    return Response({"success": True, "message": "Base de dados atualizada com sucesso", **resultado.como_dict()})


def _registrar_upload(futuro, nome_arquivo, ip):
    erro = futuro.exception()
    if erro is not None:
        logger.error(f"Erro no processamento em segundo plano de {nome_arquivo}: {erro}")
        return
    log_base_upload(nome_arquivo, futuro.result().como_dict(), ip)
