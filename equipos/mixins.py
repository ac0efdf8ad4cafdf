"""
Mixins reutilizables para las vistas JSON.

ApiJsonMixin responde 401 en JSON cuando no hay sesión, establece el usuario
actual para los signals y traduce las excepciones de equipos.exceptions al
cuerpo {"error", "mensaje"} con su status HTTP.
"""
import json
import logging

from django.http import JsonResponse

from .exceptions import ErrorCustodia, ErrorValidacion, PermisoDenegado
from .signals import set_current_user

logger = logging.getLogger(__name__)


class ApiJsonMixin:
    """Sesión requerida y errores de negocio como JSON."""

    # None: cualquier usuario autenticado
    roles_permitidos = None

    def dispatch(self, request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse(
                {'error': 'unauthenticated', 'mensaje': 'Debe iniciar sesión'},
                status=401
            )

        # Establecer usuario actual para signals
        set_current_user(request.user)

        try:
            self.verificar_rol()
            return super().dispatch(request, *args, **kwargs)
        except ErrorCustodia as e:
            if e.status_http == 409:
                logger.warning(f'{request.method} {request.path} de {request.user.username}: {e.mensaje}')
            else:
                logger.info(f'{request.method} {request.path} rechazado para {request.user.username}: {e.mensaje}')
            return JsonResponse(e.como_dict(), status=e.status_http)

    def get_user_rol(self):
        """Obtiene el rol del usuario actual."""
        perfil = getattr(self.request.user, 'perfil', None)
        if perfil is None or not perfil.activo:
            return None
        return perfil.rol

    def verificar_rol(self):
        if self.roles_permitidos is None or self.request.user.is_superuser:
            return
        if self.get_user_rol() not in self.roles_permitidos:
            raise PermisoDenegado('Su rol no permite realizar esta operación')

    def leer_json(self):
        """Retorna el cuerpo de la petición como dict."""
        if not self.request.body:
            return {}
        try:
            datos = json.loads(self.request.body)
        except (ValueError, UnicodeDecodeError):
            raise ErrorValidacion('El cuerpo de la petición no es JSON válido')
        if not isinstance(datos, dict):
            raise ErrorValidacion('El cuerpo de la petición debe ser un objeto JSON')
        return datos
