"""
Numeración consecutiva de registros.

Cada serie tiene una fila en SerieConsecutivo que se bloquea mientras se
calcula max + 1 sobre la tabla destino. La inserción debe ocurrir en la misma
transacción, por eso estas funciones exigen un bloque atomic abierto.
"""
import logging

from django.db import transaction
from django.db.models import Max
from django.db.transaction import TransactionManagementError

from ..models import (
    ActaInterna, Asignacion, Equipo, Paciente, Profesional, SerieConsecutivo,
)

logger = logging.getLogger(__name__)


SERIE_PACIENTES = Paciente.SERIE
SERIE_PROFESIONALES = Profesional.SERIE
SERIE_ASIGNACIONES_PACIENTES = Asignacion.SERIES[Asignacion.TipoTitular.PACIENTE]
SERIE_ASIGNACIONES_PROFESIONALES = Asignacion.SERIES[Asignacion.TipoTitular.PROFESIONAL]
SERIE_ACTAS_INTERNAS = ActaInterna.SERIE


def _consulta_serie(serie):
    """Queryset sobre el que se calcula el máximo de cada serie."""
    if serie == SERIE_PACIENTES:
        return Paciente.objects.all()
    if serie == SERIE_PROFESIONALES:
        return Profesional.objects.all()
    if serie == SERIE_ASIGNACIONES_PACIENTES:
        return Asignacion.objects.filter(tipo_titular=Asignacion.TipoTitular.PACIENTE)
    if serie == SERIE_ASIGNACIONES_PROFESIONALES:
        return Asignacion.objects.filter(tipo_titular=Asignacion.TipoTitular.PROFESIONAL)
    if serie == SERIE_ACTAS_INTERNAS:
        return ActaInterna.objects.all()
    raise ValueError(f"Serie de consecutivos desconocida: {serie}")


def _bloquear_serie(serie):
    if not transaction.get_connection().in_atomic_block:
        raise TransactionManagementError(
            f"La serie '{serie}' solo se puede numerar dentro de transaction.atomic()"
        )
    SerieConsecutivo.objects.select_for_update().get_or_create(serie=serie)


def siguiente_numero(serie):
    """
    Retorna el siguiente consecutivo de la serie (1 si está vacía).

    Bloquea la fila de la serie hasta el final de la transacción actual.
    """
    consulta = _consulta_serie(serie)
    _bloquear_serie(serie)
    maximo = consulta.aggregate(maximo=Max('consecutivo'))['maximo']
    return (maximo or 0) + 1


def siguiente_codigo_inventario(prefijo):
    """
    Genera el próximo código de inventario para un prefijo (ej: MBG-001).

    El número se calcula sobre todos los códigos existentes con ese prefijo;
    pasado 999 el número simplemente crece (MBG-1000).
    """
    _bloquear_serie(f"codigo:{prefijo}")

    maximo = 0
    codigos = Equipo.objects.filter(
        codigo_inventario__startswith=prefijo
    ).values_list('codigo_inventario', flat=True)
    for codigo in codigos:
        try:
            numero = int(codigo[len(prefijo):])
        except ValueError:
            logger.warning(f"Código de inventario con formato inesperado: {codigo}")
            continue
        maximo = max(maximo, numero)

    return f"{prefijo}{maximo + 1:03d}"
