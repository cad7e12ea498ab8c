from django.conf import settings
from django.http import HttpResponse
from django.utils.deprecation import MiddlewareMixin
import logging

logger = logging.getLogger('security')

CORS_METODOS = 'GET, POST, PUT, DELETE, OPTIONS, PATCH'
CORS_HEADERS = 'Content-Type, Authorization, X-Requested-With'


class SecurityHeadersMiddleware(MiddlewareMixin):
    """
    Middleware para adicionar headers de segurança e CORS nas rotas da API

    O frontend roda em outro domínio, então as origens permitidas vêm de
    CORS_ALLOWED_ORIGINS ("*" libera qualquer origem).
    """

    def _origem_permitida(self, origem):
        if not origem:
            return None
        permitidas = settings.CORS_ALLOWED_ORIGINS
        if '*' in permitidas or origem in permitidas:
            return origem
        logger.warning(f"Origem não permitida pelo CORS: {origem}")
        return None

    def process_request(self, request):
        # Preflight do navegador: responde sem passar pela view
        if request.method == 'OPTIONS' and 'HTTP_ACCESS_CONTROL_REQUEST_METHOD' in request.META:
            return HttpResponse(status=204)
        return None

    def process_response(self, request, response):
        origem = self._origem_permitida(request.META.get('HTTP_ORIGIN'))
        if origem:
            response['Access-Control-Allow-Origin'] = origem
            response['Access-Control-Allow-Credentials'] = 'true'
            response['Access-Control-Allow-Methods'] = CORS_METODOS
            response['Access-Control-Allow-Headers'] = CORS_HEADERS
            response['Vary'] = 'Origin'

        # X-Content-Type-Options
        response['X-Content-Type-Options'] = 'nosniff'

        # X-Frame-Options
        response['X-Frame-Options'] = 'DENY'

        # Referrer Policy
        response['Referrer-Policy'] = 'strict-origin-when-cross-origin'

        # Strict-Transport-Security (apenas em HTTPS)
        if request.is_secure():
            response['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains; preload'

        # Respostas da API nunca devem ser cacheadas
        if request.path.startswith('/api/') and 'Cache-Control' not in response:
            response['Cache-Control'] = 'no-cache, no-store, must-revalidate'

        return response
