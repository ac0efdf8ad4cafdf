"""
Registro de equipos del inventario.

Los campos de custodia (custodio, disponible_para_entrega,
acta_interna_pendiente) solo se escriben con fijar_bloqueo_custodia, que usa
el flujo de actas internas.
"""
import logging

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from ..exceptions import ConflictoConcurrencia, ErrorValidacion, NoEncontrado
from ..models import Equipo

logger = logging.getLogger(__name__)


CAMPOS_TEXTO_MAYUSCULAS = [
    'nombre', 'marca', 'modelo', 'numero_serie', 'empresa_alquiler',
    'propietario_nombre', 'propietario_nit', 'ubicacion_actual',
]

CAMPOS_REGISTRO = CAMPOS_TEXTO_MAYUSCULAS + [
    'estado', 'tipo_propiedad', 'propietario_telefono', 'observaciones',
    'fecha_ingreso',
]


def mensaje_validacion(error):
    """Convierte un ValidationError de Django en un texto plano."""
    if hasattr(error, 'message_dict'):
        partes = []
        for campo, mensajes in error.message_dict.items():
            partes.append(f"{campo}: {' '.join(mensajes)}")
        return '; '.join(partes)
    return ' '.join(error.messages)


def obtener_equipo(equipo_id, bloquear=False):
    consulta = Equipo.objects.select_for_update() if bloquear else Equipo.objects
    try:
        return consulta.get(pk=equipo_id)
    except (Equipo.DoesNotExist, ValueError, TypeError):
        raise NoEncontrado(f"El equipo {equipo_id} no existe")


def _normalizar(datos):
    limpios = {}
    for campo in CAMPOS_REGISTRO:
        if campo not in datos or datos[campo] is None:
            continue
        valor = datos[campo]
        if campo in CAMPOS_TEXTO_MAYUSCULAS:
            valor = str(valor).strip().upper()
        elif isinstance(valor, str):
            valor = valor.strip()
        limpios[campo] = valor
    return limpios


def registrar_equipo(datos, usuario):
    """
    Registra un equipo nuevo y le asigna el código de su tipo de propiedad.

    El equipo queda bajo custodia de quien lo registra y bloqueado para
    entrega hasta que pase por un acta interna, salvo que `datos` traiga
    disponible_para_entrega=True.
    """
    campos = _normalizar(datos)

    for requerido in ('nombre', 'marca', 'modelo'):
        if not campos.get(requerido):
            raise ErrorValidacion(f"El campo {requerido} es obligatorio")

    estado = campos.get('estado', Equipo.Estado.DISPONIBLE)
    if estado not in Equipo.Estado.values:
        raise ErrorValidacion(f"Estado inválido: {estado}")
    if estado == Equipo.Estado.ASIGNADO:
        raise ErrorValidacion("Un equipo nuevo no puede registrarse como ASIGNADO")

    tipo_propiedad = campos.get('tipo_propiedad', Equipo.TipoPropiedad.PROPIO)
    if tipo_propiedad not in Equipo.TipoPropiedad.values:
        raise ErrorValidacion(f"Tipo de propiedad inválido: {tipo_propiedad}")
    if tipo_propiedad != Equipo.TipoPropiedad.PROPIO and not campos.get('propietario_nombre'):
        raise ErrorValidacion("Los equipos de terceros deben registrar el nombre del propietario")

    numero_serie = campos.get('numero_serie', '')
    if numero_serie and Equipo.objects.filter(numero_serie=numero_serie).exists():
        raise ErrorValidacion(f"El número de serie {numero_serie} ya está registrado")

    disponible = datos.get('disponible_para_entrega', False)
    if not isinstance(disponible, bool):
        raise ErrorValidacion("disponible_para_entrega debe ser true o false")

    equipo = Equipo(
        **campos,
        disponible_para_entrega=disponible,
        custodio=usuario,
        creado_por=usuario,
    )
    equipo._usuario_cambio = usuario

    try:
        with transaction.atomic():
            equipo.save()
    except ValidationError as e:
        raise ErrorValidacion(mensaje_validacion(e))
    except IntegrityError as e:
        logger.warning(f"Conflicto al registrar equipo {numero_serie or campos['nombre']}: {e}")
        raise ConflictoConcurrencia("Otro registro simultáneo usó el mismo código o serial, intente de nuevo")

    logger.info(
        f"Equipo {equipo.codigo_inventario} registrado por "
        f"{usuario.username if usuario else 'sistema'}"
    )
    return equipo


def cambiar_estado_intrinseco(equipo_id, estado, usuario):
    """Cambio manual de estado (mantenimiento, baja, disponible)."""
    if estado not in Equipo.Estado.values:
        raise ErrorValidacion(f"Estado inválido: {estado}")
    if estado == Equipo.Estado.ASIGNADO:
        raise ErrorValidacion("El estado ASIGNADO solo se obtiene con una asignación activa")

    with transaction.atomic():
        equipo = obtener_equipo(equipo_id, bloquear=True)
        anterior = equipo.estado
        equipo.estado = estado
        if estado == Equipo.Estado.MANTENIMIENTO:
            equipo.fecha_mantenimiento = timezone.now()
        elif estado == Equipo.Estado.DADO_DE_BAJA:
            equipo.fecha_baja = timezone.now()
        equipo._usuario_cambio = usuario
        equipo.save()

    logger.info(
        f"Equipo {equipo.codigo_inventario}: estado {anterior} -> {estado} "
        f"por {usuario.username if usuario else 'sistema'}"
    )
    return equipo


def fijar_bloqueo_custodia(equipo, custodio, acta_pendiente, disponible_para_entrega, usuario=None):
    """
    Escribe los tres campos de custodia de un equipo ya bloqueado.

    Rechaza dejar un acta pendiente con el equipo disponible para entrega.
    """
    if acta_pendiente is not None and disponible_para_entrega:
        raise ErrorValidacion(
            f"El equipo {equipo.codigo_inventario} no puede quedar disponible con un acta interna pendiente"
        )

    equipo.custodio = custodio
    equipo.acta_interna_pendiente = acta_pendiente
    equipo.disponible_para_entrega = disponible_para_entrega
    equipo._usuario_cambio = usuario
    equipo.save(update_fields=[
        'custodio', 'acta_interna_pendiente', 'disponible_para_entrega', 'modificado_en',
    ])
    return equipo
