"""
Django settings for sunat_gateway project.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

# Carga el archivo .env desde la raíz del proyecto
load_dotenv(BASE_DIR / '.env')

SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-sunat-gateway-dev')
DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
ALLOWED_HOSTS = [host for host in os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',') if host]

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'cpe',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'sunat_gateway.urls'
WSGI_APPLICATION = 'sunat_gateway.wsgi.application'

# Sin base de datos: los comprobantes no se persisten en ORM
DATABASES = {}

LANGUAGE_CODE = 'es-pe'
TIME_ZONE = 'America/Lima'
USE_I18N = True
USE_TZ = True

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
    ],
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.AllowAny',
    ],
    'UNAUTHENTICATED_USER': None,
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': True,
        },
        'cpe': {
            'handlers': ['console'],
            'level': os.getenv('CPE_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}

# Configuración SUNAT
SUNAT_CONFIG = {
    'ENVIRONMENT': os.getenv('SUNAT_ENVIRONMENT', 'beta'),
    'URL': os.getenv('SUNAT_URL', ''),
    'RUC': os.getenv('SUNAT_RUC', '20601546913'),
    'USUARIO_SOL': os.getenv('SUNAT_USUARIO_SOL', 'MODDATOS'),
    'TIMEOUT': float(os.getenv('SUNAT_TIMEOUT', '30')),
    'CONNECT_TIMEOUT': float(os.getenv('SUNAT_CONNECT_TIMEOUT', '10')),
    'VERIFY_TLS': os.getenv('SUNAT_VERIFY_TLS', 'True').lower() == 'true',
    'CERT_PATH': os.getenv('SUNAT_CERT_PATH', str(BASE_DIR / 'certs' / 'public.pem')),
    'CERT_PASSWORD': os.getenv('SUNAT_CERT_PASSWORD', ''),
    'KEY_PATH': os.getenv('SUNAT_KEY_PATH', str(BASE_DIR / 'certs' / 'private_pkcs8.key')),
    'KEY_PASSWORD': os.getenv('SUNAT_KEY_PASSWORD', ''),
    'SIGNATURE_ID': os.getenv('SUNAT_SIGNATURE_ID', 'SignatureSP'),
    'STYLESHEET': os.getenv('SUNAT_STYLESHEET', ''),
    'OUTPUT_DIR': os.getenv('SUNAT_OUTPUT_DIR', str(BASE_DIR / 'storage')),
}
