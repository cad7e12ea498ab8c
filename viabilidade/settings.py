from pathlib import Path
import os
import sys
from dotenv import load_dotenv
import dj_database_url

BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv(BASE_DIR / ".env")


def env_bool(nome, padrao="False"):
    return os.getenv(nome, padrao).lower() in ("1", "true", "on", "yes")


def env_lista(nome, padrao=""):
    return [item.strip() for item in os.getenv(nome, padrao).split(",") if item.strip()]


TESTING = "test" in sys.argv or "pytest" in os.path.basename(sys.argv[0] if sys.argv else "")

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
DEBUG = env_bool("DEBUG", "True")

# Validar SECRET_KEY em produção
if not DEBUG and not TESTING and SECRET_KEY == "dev-secret-key-change-me":
    raise ValueError("SECRET_KEY deve ser alterado em produção! Use uma chave forte e única.")

ALLOWED_HOSTS = env_lista("ALLOWED_HOSTS") or ["127.0.0.1", "localhost", "testserver"]

# Validar que não há wildcards
if "*" in ALLOWED_HOSTS and not DEBUG:
    raise ValueError(
        "Wildcard '*' não é permitido em ALLOWED_HOSTS em produção. "
        "Configure domínios específicos separados por vírgula."
    )

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "core",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "core.security_headers.SecurityHeadersMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "viabilidade.urls"

WSGI_APPLICATION = "viabilidade.wsgi.application"

# O verificador guarda tudo em planilhas; o banco só existe para os apps do Django
DATABASES = {
    "default": dj_database_url.config(
        default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
        conn_max_age=int(os.getenv("DB_CONN_MAX_AGE", "0")),
    )
}

LANGUAGE_CODE = "pt-br"
TIME_ZONE = "America/Sao_Paulo"
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# URLs da API não usam barra final
APPEND_SLASH = False

# API sem autenticação de sessão (o frontend controla o login dos projetistas)
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "UNAUTHENTICATED_USER": None,
}

CORS_ALLOWED_ORIGINS = env_lista("CORS_ALLOWED_ORIGINS", "*")

# Uploads grandes vão direto para disco em vez de ficar na memória
FILE_UPLOAD_MAX_MEMORY_SIZE = 5242880  # 5MB
DATA_UPLOAD_MAX_MEMORY_SIZE = 5242880  # 5MB

# ===== CONFIGURAÇÕES DO VERIFICADOR =====

# Planilhas (projetistas, tabulações, VI ALA, base de CTOs e backups)
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))

# Espera máxima pelo lock de um dataset, em segundos
DATASTORE_LOCK_TIMEOUT = float(os.getenv("DATASTORE_LOCK_TIMEOUT", "5"))
# Quantos backups da base de CTOs manter
DATASTORE_BACKUP_RETENTION = int(os.getenv("DATASTORE_BACKUP_RETENTION", "3"))

# Sessões de projetistas: 5 minutos sem heartbeat = offline
SESSAO_TIMEOUT = int(os.getenv("SESSAO_TIMEOUT", "300"))
SESSAO_VARREDURA_INTERVALO = int(os.getenv("SESSAO_VARREDURA_INTERVALO", "60"))
SESSAO_VARREDURA_AUTOMATICA = env_bool("SESSAO_VARREDURA_AUTOMATICA", "False" if TESTING else "True")

# Upload da base de CTOs
UPLOAD_MAX_BYTES = int(os.getenv("UPLOAD_MAX_BYTES", str(100 * 1024 * 1024)))
UPLOAD_EM_BACKGROUND = env_bool("UPLOAD_EM_BACKGROUND", "False")

VI_ALA_PREFIXO = os.getenv("VI_ALA_PREFIXO", "VI ALA")

# Supabase (opcional): sem URL/chave o verificador usa apenas as planilhas
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY", "")
SUPABASE_TIMEOUT = float(os.getenv("SUPABASE_TIMEOUT", "10"))

# ===== LOGGING =====

LOGS_DIR = BASE_DIR / "logs"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "audit": {
            "format": "{asctime} - {levelname} - {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "level": "INFO",
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "WARNING",
        },
        "core": {
            "handlers": ["console"],
            "level": os.getenv("CORE_LOG_LEVEL", "WARNING" if TESTING else "INFO"),
            "propagate": False,
        },
        "audit": {
            "handlers": ["console"],
            "level": "WARNING" if TESTING else "INFO",
            "propagate": False,
        },
        "security": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}

# Arquivos de log rotativos quando o diretório logs/ existe
if LOGS_DIR.exists():
    LOGGING["handlers"]["file"] = {
        "level": "INFO",
        "class": "logging.handlers.RotatingFileHandler",
        "filename": LOGS_DIR / "django.log",
        "maxBytes": 1024 * 1024 * 5,  # 5MB
        "backupCount": 5,
        "formatter": "verbose",
    }
    LOGGING["handlers"]["audit_file"] = {
        "level": "INFO",
        "class": "logging.handlers.RotatingFileHandler",
        "filename": LOGS_DIR / "audit.log",
        "maxBytes": 1024 * 1024 * 10,  # 10MB
        "backupCount": 10,
        "formatter": "audit",
    }
    LOGGING["loggers"]["django"]["handlers"].append("file")
    LOGGING["loggers"]["core"]["handlers"].append("file")
    LOGGING["loggers"]["audit"]["handlers"].append("audit_file")

# ===== SENTRY =====

# Monitoramento de erros: só ativa se o DSN estiver configurado
SENTRY_DSN = os.getenv("SENTRY_DSN", "")

if SENTRY_DSN and not TESTING:
    import logging

    import sentry_sdk
    from sentry_sdk.integrations.django import DjangoIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_logging = LoggingIntegration(
        level=logging.INFO,        # Capture info and above as breadcrumbs
        event_level=logging.ERROR  # Send errors as events
    )

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[DjangoIntegration(), sentry_logging],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
        send_default_pii=False,
    )
