"""
Endpoints JSON del motor de custodia.

Todas las vistas requieren sesión y mantienen la protección CSRF de Django.
Los errores de negocio se traducen en ApiJsonMixin.
"""
from django.views import View
from django.http import JsonResponse

from .exceptions import PrecondicionFallida
from .mixins import ApiJsonMixin
from .models import PerfilUsuario
from .ratelimit import RateLimitMixin
from .services.actas_internas import (
    aceptar_acta_interna, anular_acta_interna, crear_acta_interna,
)
from .services.asignaciones import (
    crear_asignacion, devolver_asignacion, egresar_paciente, registrar_firma_entrega,
)
from .services.estado import estado_efectivo, verificar_prestable
from .services.inventario import obtener_equipo


# Roles que entregan, reciben y dan de alta
ROLES_OPERATIVOS = (
    PerfilUsuario.Rol.GERENCIA,
    PerfilUsuario.Rol.INGENIERO_BIOMEDICO,
    PerfilUsuario.Rol.AUXILIAR_ADMINISTRATIVA,
)

CAMPOS_METADATOS_ACTA = ['cargo_recibe', 'ciudad', 'sede', 'area', 'observaciones']


# ============================================================================
# ACTAS INTERNAS
# ============================================================================

class ActaInternaCrearView(ApiJsonMixin, RateLimitMixin, View):
    """El ingeniero biomédico envía un acta interna a una auxiliar."""

    def post(self, request):
        datos = self.leer_json()
        metadatos = {campo: datos.get(campo) for campo in CAMPOS_METADATOS_ACTA}
        acta = crear_acta_interna(
            request.user,
            datos.get('equipo_ids'),
            datos.get('firma_entrega'),
            recibe_id=datos.get('recibe_id'),
            recibe_email=datos.get('recibe_email'),
            **metadatos
        )
        return JsonResponse({'id': acta.pk, 'consecutivo': acta.consecutivo}, status=201)


class ActaInternaAceptarView(ApiJsonMixin, RateLimitMixin, View):
    """La auxiliar designada acepta el acta y recibe la custodia."""

    def post(self, request, pk):
        datos = self.leer_json()
        aceptar_acta_interna(pk, request.user, datos.get('firma_recibe'))
        return JsonResponse({'ok': True})


class ActaInternaAnularView(ApiJsonMixin, RateLimitMixin, View):
    """Quien envió el acta la anula mientras siga pendiente."""

    def post(self, request, pk):
        datos = self.leer_json()
        liberados = anular_acta_interna(pk, request.user, datos.get('motivo', ''))
        return JsonResponse({'ok': True, 'equipos': liberados})


# ============================================================================
# ASIGNACIONES
# ============================================================================

class AsignacionCrearView(ApiJsonMixin, RateLimitMixin, View):
    """Entrega de un equipo a un paciente o profesional."""

    roles_permitidos = ROLES_OPERATIVOS

    def post(self, request):
        datos = self.leer_json()
        asignacion = crear_asignacion(
            datos.get('equipo_id'),
            datos.get('titular_id'),
            datos.get('tipo_titular'),
            observaciones_entrega=datos.get('observaciones_entrega', ''),
            fecha_entrega=datos.get('fecha_entrega'),
            usuario=request.user,
            ciudad=datos.get('ciudad', ''),
            sede=datos.get('sede', ''),
            firma_titular_entrega=datos.get('firma_titular_entrega', ''),
            firma_auxiliar=datos.get('firma_auxiliar', ''),
        )
        return JsonResponse({
            'id': asignacion.pk,
            'consecutivo': asignacion.consecutivo,
            'numero': asignacion.numero_display,
        }, status=201)


class AsignacionDevolverView(ApiJsonMixin, RateLimitMixin, View):
    """Devolución del equipo y cierre de la asignación."""

    roles_permitidos = ROLES_OPERATIVOS

    def post(self, request, pk):
        datos = self.leer_json()
        asignacion = devolver_asignacion(
            pk,
            observaciones_devolucion=datos.get('observaciones_devolucion', ''),
            estado_final=datos.get('estado_final'),
            firma_titular_devolucion=datos.get('firma_titular_devolucion', ''),
            usuario=request.user,
        )
        return JsonResponse({
            'ok': True,
            'id': asignacion.pk,
            'estado_final': asignacion.estado_final_equipo,
        })


class AsignacionFirmaEntregaView(ApiJsonMixin, RateLimitMixin, View):
    """El visitador registra la firma de entrega del titular."""

    def post(self, request, pk):
        datos = self.leer_json()
        registrar_firma_entrega(
            pk,
            datos.get('firma'),
            request.user,
            datos.get('capturado_por_nombre'),
        )
        return JsonResponse({'ok': True})


class PacienteEgresoView(ApiJsonMixin, RateLimitMixin, View):
    """Egreso del paciente; ok=false si aún tiene equipos asignados."""

    roles_permitidos = ROLES_OPERATIVOS

    def post(self, request, pk):
        return JsonResponse({'ok': egresar_paciente(pk, usuario=request.user)})


# ============================================================================
# CONSULTAS
# ============================================================================

class EquipoEstadoView(ApiJsonMixin, RateLimitMixin, View):
    """Estado efectivo de un equipo y si el usuario lo puede entregar."""

    ratelimit_key = 'consulta'

    def get(self, request, pk):
        equipo = obtener_equipo(pk)

        regla = None
        try:
            verificar_prestable(equipo, request.user)
        except PrecondicionFallida as e:
            regla = e.regla

        return JsonResponse({
            'id': equipo.pk,
            'codigo_inventario': equipo.codigo_inventario,
            'estado': equipo.estado,
            'estado_efectivo': estado_efectivo(equipo),
            'disponible_para_entrega': equipo.disponible_para_entrega,
            'acta_interna_pendiente': equipo.acta_interna_pendiente_id,
            'custodio': equipo.custodio.username if equipo.custodio_id else None,
            'prestable': regla is None,
            'motivo': regla,
        })
