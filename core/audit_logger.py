"""
Logs de auditoria do verificador (JSON, um evento por linha)
"""
import json
import logging

from django.utils import timezone

audit_logger = logging.getLogger('audit')


class AuditLogger:
    """Classe para gerenciar logs de auditoria"""

    @staticmethod
    def log_user_action(usuario, action, details=None, ip_address=None):
        """
        Log de ações de um projetista

        Args:
            usuario: Nome do projetista (ou None para anônimo)
            action: Tipo de ação (login, logout, vi_ala_registrado, etc.)
            details: Detalhes adicionais da ação
            ip_address: IP do cliente
        """
        log_data = {
            'usuario': usuario or 'anonymous',
            'action': action,
            'timestamp': timezone.now().isoformat(),
            'ip_address': ip_address,
            'details': details or {}
        }

        audit_logger.info(json.dumps(log_data, ensure_ascii=False, default=str))

    @staticmethod
    def log_security_event(event_type, details=None, ip_address=None):
        """
        Log de eventos de segurança

        Args:
            event_type: Tipo de evento (failed_login, lock_timeout, etc.)
            details: Detalhes do evento
            ip_address: IP relacionado
        """
        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
            'ip_address': ip_address,
            'details': details or {}
        }

        audit_logger.warning(json.dumps(log_data, ensure_ascii=False, default=str))


def get_client_ip(request):
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


# Funções de conveniência
def log_login(usuario, ip_address=None):
    AuditLogger.log_user_action(usuario, 'login_success', None, ip_address)


def log_logout(usuario, ip_address=None):
    AuditLogger.log_user_action(usuario, 'logout', None, ip_address)


def log_failed_login(usuario, ip_address=None):
    """Log de tentativa de login falhada"""
    AuditLogger.log_security_event('failed_login', {'usuario': usuario}, ip_address)


def log_projetista_change(action, nome, details=None, ip_address=None):
    """Log de alteração no cadastro de projetistas (criação, remoção, senha, nome)"""
    AuditLogger.log_user_action(None, action, dict(details or {}, projetista=nome), ip_address)


def log_base_upload(nome_arquivo, resultado=None, ip_address=None):
    """Log de upload da base de CTOs"""
    AuditLogger.log_user_action(
        None,
        'base_uploaded',
        {'filename': nome_arquivo, **(resultado or {})},
        ip_address
    )


def log_vi_ala(vi_ala, projetista=None, ip_address=None):
    """Log de emissão de número VI ALA"""
    AuditLogger.log_user_action(projetista, 'vi_ala_registrado', {'vi_ala': vi_ala}, ip_address)
