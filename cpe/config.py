# cpe/config.py

from dataclasses import dataclass
from typing import Optional

from django.conf import settings


BETA_URL = "https://e-beta.sunat.gob.pe/ol-ti-itcpfegem-beta/billService"
PROD_URL = "https://e-factura.sunat.gob.pe/ol-ti-itcpfegem/billService"


def _as_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'si')
    return bool(value)


@dataclass(frozen=True)
class SunatConfig:
    """
    Configuración inmutable para la firma y el envío a SUNAT.

    Se construye una vez a partir de ``settings.SUNAT_CONFIG`` y se pasa
    explícitamente al cliente SOAP y a la carga de credenciales.
    """

    ruc: str
    url: str = BETA_URL
    usuario_sol: str = "MODDATOS"
    timeout: float = 30.0
    connect_timeout: float = 10.0
    verify_tls: bool = True
    cert_path: Optional[str] = None
    cert_password: Optional[str] = None
    key_path: Optional[str] = None
    key_password: Optional[str] = None
    signature_id: str = "SignatureSP"
    stylesheet: Optional[str] = None
    output_dir: Optional[str] = None

    @property
    def username(self):
        # Usuario SOL = RUC + usuario secundario
        return f"{self.ruc}{self.usuario_sol}"

    @property
    def password(self):
        # En billService beta la clave es el propio RUC
        return self.ruc

    @classmethod
    def from_dict(cls, data):
        ruc = str(data.get('RUC') or '').strip()
        if not ruc:
            raise ValueError("SUNAT_CONFIG['RUC'] es requerido")

        environment = data.get('ENVIRONMENT', 'beta')
        if environment not in ('beta', 'produccion'):
            raise ValueError(f"Ambiente inválido: {environment}. Debe ser 'beta' o 'produccion'")
        default_url = BETA_URL if environment == 'beta' else PROD_URL

        return cls(
            ruc=ruc,
            url=data.get('URL') or default_url,
            usuario_sol=data.get('USUARIO_SOL') or "MODDATOS",
            timeout=float(data.get('TIMEOUT', 30)),
            connect_timeout=float(data.get('CONNECT_TIMEOUT', 10)),
            verify_tls=_as_bool(data.get('VERIFY_TLS', True)),
            cert_path=data.get('CERT_PATH') or None,
            cert_password=data.get('CERT_PASSWORD') or None,
            key_path=data.get('KEY_PATH') or None,
            key_password=data.get('KEY_PASSWORD') or None,
            signature_id=data.get('SIGNATURE_ID') or "SignatureSP",
            stylesheet=data.get('STYLESHEET') or None,
            output_dir=data.get('OUTPUT_DIR') or None,
        )


def get_sunat_config():
    """Lee ``settings.SUNAT_CONFIG``"""
    return SunatConfig.from_dict(getattr(settings, 'SUNAT_CONFIG', {}))
