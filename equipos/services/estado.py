"""
Estado efectivo de los equipos.

El estado que se muestra y con el que se decide un préstamo no es el campo
Equipo.estado sino el resultado de mirar las asignaciones:

1. Con una asignación ACTIVA el equipo está ASIGNADO.
2. Si no, manda el estado final reportado en la última devolución.
3. Si nunca se ha devuelto con estado reportado, el estado intrínseco.

Nada de este módulo escribe en la base de datos.
"""
from django.db.models import F, Q
from django.db.models.functions import Coalesce

from ..exceptions import PrecondicionFallida
from ..models import Asignacion, Equipo


def _devoluciones_con_estado():
    return Asignacion.objects.filter(
        estado=Asignacion.Estado.FINALIZADA,
    ).exclude(
        estado_final_equipo='',
    ).order_by(
        Coalesce('fecha_devolucion', 'fecha_entrega').desc(),
        F('fecha_entrega').desc(),
        '-pk',
    )


def estado_efectivo(equipo):
    """Retorna el estado operativo actual de un equipo."""
    if equipo.asignaciones.filter(estado=Asignacion.Estado.ACTIVA).exists():
        return Equipo.Estado.ASIGNADO

    ultima = _devoluciones_con_estado().filter(equipo=equipo).values_list(
        'estado_final_equipo', flat=True
    ).first()
    if ultima:
        return ultima

    return equipo.estado


def estados_efectivos(equipos):
    """
    Calcula el estado efectivo de varios equipos con dos consultas.

    Retorna un dict {equipo.pk: estado}.
    """
    equipos = list(equipos)
    ids = [e.pk for e in equipos]

    activos = set(Asignacion.objects.filter(
        equipo_id__in=ids,
        estado=Asignacion.Estado.ACTIVA,
    ).values_list('equipo_id', flat=True))

    ultimos = {}
    for equipo_id, estado_final in _devoluciones_con_estado().filter(
        equipo_id__in=ids
    ).values_list('equipo_id', 'estado_final_equipo'):
        # Viene ordenado de la más reciente a la más antigua
        ultimos.setdefault(equipo_id, estado_final)

    resultado = {}
    for equipo in equipos:
        if equipo.pk in activos:
            resultado[equipo.pk] = Equipo.Estado.ASIGNADO
        else:
            resultado[equipo.pk] = ultimos.get(equipo.pk, equipo.estado)
    return resultado


def es_custodio_acotado(usuario):
    """True si el usuario solo puede entregar equipos bajo su custodia."""
    if usuario is None or usuario.is_superuser:
        return False
    perfil = getattr(usuario, 'perfil', None)
    return perfil is not None and perfil.es_custodio_acotado


def verificar_prestable(equipo, usuario):
    """
    Lanza PrecondicionFallida con la primera regla que impide prestar el equipo.

    Las reglas se revisan en este orden: estado efectivo, bloqueo de entrega,
    acta interna pendiente y custodia del usuario.
    """
    estado = estado_efectivo(equipo)
    if estado != Equipo.Estado.DISPONIBLE:
        raise PrecondicionFallida(
            f"El equipo {equipo.codigo_inventario} no está disponible (estado: {estado})",
            regla='equipo_no_disponible',
        )

    if not equipo.disponible_para_entrega:
        raise PrecondicionFallida(
            f"El equipo {equipo.codigo_inventario} está bloqueado para entrega",
            regla='entrega_bloqueada',
        )

    if equipo.acta_interna_pendiente_id is not None:
        raise PrecondicionFallida(
            f"El equipo {equipo.codigo_inventario} tiene un acta interna pendiente de aceptación",
            regla='acta_interna_pendiente',
        )

    if es_custodio_acotado(usuario) and equipo.custodio_id not in (None, usuario.pk):
        raise PrecondicionFallida(
            f"El equipo {equipo.codigo_inventario} está bajo custodia de otro usuario",
            regla='custodio_distinto',
        )


def es_prestable(equipo, usuario):
    try:
        verificar_prestable(equipo, usuario)
    except PrecondicionFallida:
        return False
    return True


def equipos_prestables(usuario):
    """Lista los equipos que el usuario puede entregar en este momento."""
    candidatos = Equipo.objects.filter(
        disponible_para_entrega=True,
        acta_interna_pendiente__isnull=True,
    ).exclude(
        asignaciones__estado=Asignacion.Estado.ACTIVA,
    )
    if es_custodio_acotado(usuario):
        candidatos = candidatos.filter(Q(custodio__isnull=True) | Q(custodio=usuario))

    candidatos = list(candidatos)
    estados = estados_efectivos(candidatos)
    return [e for e in candidatos if estados[e.pk] == Equipo.Estado.DISPONIBLE]
