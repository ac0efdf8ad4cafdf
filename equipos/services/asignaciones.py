"""
Libro de asignaciones: entrega y devolución de equipos a titulares.

Una asignación ACTIVA es lo que hace que un equipo figure como ASIGNADO; al
devolverla queda FINALIZADA con el estado en que volvió el equipo. Las
asignaciones nunca se borran, son la hoja de vida del equipo.
"""
import logging
from datetime import datetime

from django.db import IntegrityError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from ..exceptions import (
    ConflictoConcurrencia, ErrorValidacion, NoEncontrado, PermisoDenegado,
    PrecondicionFallida,
)
from ..models import Asignacion, Equipo, Paciente, PerfilUsuario
from ..validators import validar_firma, validar_texto
from .estado import verificar_prestable
from .inventario import obtener_equipo
from .titulares import obtener_titular

logger = logging.getLogger(__name__)


def _nombre_usuario(usuario):
    if usuario is None:
        return ''
    return usuario.get_full_name() or usuario.username


def _parsear_fecha(valor):
    if valor is None or valor == '':
        return timezone.now()
    if isinstance(valor, str):
        fecha = parse_datetime(valor)
        if fecha is None:
            raise ErrorValidacion(f"Fecha de entrega inválida: {valor}")
        valor = fecha
    elif not isinstance(valor, datetime):
        raise ErrorValidacion(f"Fecha de entrega inválida: {valor}")
    if timezone.is_naive(valor):
        valor = timezone.make_aware(valor)
    return valor


def _obtener_asignacion(asignacion_id):
    try:
        return Asignacion.objects.select_for_update().get(pk=asignacion_id)
    except (Asignacion.DoesNotExist, ValueError, TypeError):
        raise NoEncontrado(f"La asignación {asignacion_id} no existe")


def crear_asignacion(equipo_id, titular_id, tipo_titular, observaciones_entrega='',
                     fecha_entrega=None, usuario=None, ciudad='', sede='',
                     firma_titular_entrega='', firma_auxiliar=''):
    """
    Entrega un equipo a un paciente o profesional.

    Bloquea la fila del equipo, revisa las reglas de préstamo bajo el bloqueo,
    numera con la serie del tipo de titular e inserta la asignación ACTIVA,
    todo en la misma transacción.
    """
    if tipo_titular not in Asignacion.TipoTitular.values:
        raise ErrorValidacion(f"Tipo de titular inválido: {tipo_titular}")
    fecha_entrega = _parsear_fecha(fecha_entrega)
    observaciones_entrega = validar_texto(observaciones_entrega, 'observaciones_entrega')
    ciudad = validar_texto(ciudad, 'ciudad').upper()
    sede = validar_texto(sede, 'sede').upper()
    if firma_titular_entrega:
        validar_firma(firma_titular_entrega, 'firma_titular_entrega')
    if firma_auxiliar:
        validar_firma(firma_auxiliar, 'firma_auxiliar')

    try:
        with transaction.atomic():
            equipo = obtener_equipo(equipo_id, bloquear=True)
            verificar_prestable(equipo, usuario)

            titular = obtener_titular(tipo_titular, titular_id, bloquear=True)
            if isinstance(titular, Paciente) and not titular.esta_activo:
                raise PrecondicionFallida(
                    f"El paciente {titular.nombre_completo} no está activo en el programa",
                    regla='titular_no_activo',
                )

            asignacion = Asignacion(
                tipo_titular=tipo_titular,
                equipo=equipo,
                fecha_entrega=fecha_entrega,
                observaciones_entrega=observaciones_entrega,
                ciudad=ciudad,
                sede=sede,
                firma_titular_entrega=firma_titular_entrega or '',
                firma_auxiliar=firma_auxiliar or '',
                usuario_asigna=_nombre_usuario(usuario),
                asignado_por=usuario,
            )
            if tipo_titular == Asignacion.TipoTitular.PACIENTE:
                asignacion.paciente = titular
            else:
                asignacion.profesional = titular
            asignacion.save()
    except IntegrityError as e:
        logger.warning(f"Conflicto al asignar el equipo {equipo_id}: {e}")
        raise ConflictoConcurrencia(
            f"El equipo {equipo_id} fue asignado por otra operación simultánea, intente de nuevo"
        )

    logger.info(
        f"Asignación {asignacion.numero_display} ({tipo_titular}) creada: "
        f"equipo {equipo.codigo_inventario} -> {titular}"
    )
    return asignacion


def devolver_asignacion(asignacion_id, observaciones_devolucion='', estado_final=None,
                        firma_titular_devolucion='', usuario=None):
    """Cierra una asignación ACTIVA y registra el estado en que vuelve el equipo."""
    if estado_final not in Equipo.Estado.values:
        raise ErrorValidacion(f"Estado final inválido: {estado_final}")
    if estado_final == Equipo.Estado.ASIGNADO:
        raise ErrorValidacion("Un equipo devuelto no puede quedar ASIGNADO")
    observaciones_devolucion = validar_texto(observaciones_devolucion, 'observaciones_devolucion')
    if firma_titular_devolucion:
        validar_firma(firma_titular_devolucion, 'firma_titular_devolucion')

    with transaction.atomic():
        asignacion = _obtener_asignacion(asignacion_id)
        if asignacion.estado != Asignacion.Estado.ACTIVA:
            raise PrecondicionFallida(
                f"La asignación {asignacion.numero_display} ya fue devuelta",
                regla='asignacion_finalizada',
            )

        asignacion.estado = Asignacion.Estado.FINALIZADA
        asignacion.fecha_devolucion = timezone.now()
        asignacion.estado_final_equipo = estado_final
        asignacion.observaciones_devolucion = observaciones_devolucion
        asignacion.firma_titular_devolucion = firma_titular_devolucion or ''
        asignacion._usuario_cambio = usuario
        asignacion.save(update_fields=[
            'estado', 'fecha_devolucion', 'estado_final_equipo',
            'observaciones_devolucion', 'firma_titular_devolucion',
        ])

    logger.info(
        f"Asignación {asignacion.numero_display} devuelta por "
        f"{_nombre_usuario(usuario) or 'sistema'}: equipo {asignacion.equipo.codigo_inventario} "
        f"queda {estado_final}"
    )
    return asignacion


def egresar_paciente(paciente_id, usuario=None):
    """
    Da de alta (egreso) a un paciente.

    Retorna False sin escribir nada si el paciente aún tiene equipos
    asignados.
    """
    with transaction.atomic():
        try:
            paciente = Paciente.objects.select_for_update().get(pk=paciente_id)
        except (Paciente.DoesNotExist, ValueError, TypeError):
            raise NoEncontrado(f"El paciente {paciente_id} no existe")

        if paciente.asignaciones.filter(estado=Asignacion.Estado.ACTIVA).exists():
            logger.info(f"Egreso rechazado: el paciente {paciente.consecutivo} tiene equipos asignados")
            return False

        if paciente.estado == Paciente.Estado.EGRESADO:
            return True

        paciente.estado = Paciente.Estado.EGRESADO
        paciente.fecha_salida = timezone.now()
        paciente.save(update_fields=['estado', 'fecha_salida'])

    logger.info(
        f"Paciente {paciente.consecutivo} egresado por {_nombre_usuario(usuario) or 'sistema'}"
    )
    return True


def registrar_firma_entrega(asignacion_id, firma, capturado_por, capturado_por_nombre):
    """
    Guarda la firma de entrega del titular capturada por un visitador.

    Solo aplica a asignaciones ACTIVAS que aún no tienen firma de entrega.
    """
    perfil = getattr(capturado_por, 'perfil', None)
    if perfil is None or perfil.rol != PerfilUsuario.Rol.VISITADOR:
        raise PermisoDenegado("Solo un visitador puede registrar la firma de entrega")

    capturado_por_nombre = validar_texto(capturado_por_nombre, 'capturado_por_nombre')
    if not capturado_por_nombre:
        raise ErrorValidacion("El nombre de quien captura la firma es obligatorio")
    validar_firma(firma, 'firma')

    with transaction.atomic():
        asignacion = _obtener_asignacion(asignacion_id)
        if asignacion.estado != Asignacion.Estado.ACTIVA:
            raise PrecondicionFallida(
                f"La asignación {asignacion.numero_display} ya fue devuelta",
                regla='asignacion_finalizada',
            )
        if asignacion.firma_titular_entrega:
            raise PrecondicionFallida(
                f"La asignación {asignacion.numero_display} ya tiene firma de entrega",
                regla='firma_ya_registrada',
            )

        asignacion.firma_titular_entrega = firma
        asignacion.firma_entrega_capturada_en = timezone.now()
        asignacion.firma_entrega_capturada_por = capturado_por
        asignacion.firma_entrega_capturada_por_nombre = capturado_por_nombre
        asignacion.save(update_fields=[
            'firma_titular_entrega', 'firma_entrega_capturada_en',
            'firma_entrega_capturada_por', 'firma_entrega_capturada_por_nombre',
        ])

    logger.info(
        f"Firma de entrega registrada en asignación {asignacion.numero_display} "
        f"por {capturado_por.username}"
    )
    return asignacion
