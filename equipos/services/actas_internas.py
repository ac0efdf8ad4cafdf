"""
Actas internas: traslado de custodia del ingeniero biomédico a una auxiliar
administrativa.

Flujo:
1. crear_acta_interna: el ingeniero envía uno o varios equipos. Cada equipo
   queda bloqueado para entrega, bajo su custodia y apuntando al acta.
2. aceptar_acta_interna: la auxiliar designada firma. Todos los equipos pasan
   a su custodia y quedan disponibles para entrega.
3. anular_acta_interna: el ingeniero retira un acta aún no aceptada. Los
   equipos dejan de estar pendientes pero siguen bloqueados y bajo su
   custodia.

Cada paso es una sola transacción: o se escriben el acta y todos sus equipos,
o no se escribe nada.
"""
import logging

from django.conf import settings
from django.contrib.auth.models import User
from django.db import IntegrityError, transaction
from django.utils import timezone

from ..exceptions import (
    ConflictoConcurrencia, ErrorValidacion, NoEncontrado, PermisoDenegado,
    PrecondicionFallida,
)
from ..models import ActaInterna, ActaInternaItem, Equipo, PerfilUsuario
from ..validators import validar_firma, validar_texto
from .inventario import fijar_bloqueo_custodia

logger = logging.getLogger(__name__)


def _max_equipos():
    return getattr(settings, 'ACTA_INTERNA_MAX_EQUIPOS', 200)


def _rol(usuario):
    perfil = getattr(usuario, 'perfil', None)
    if perfil is None or not perfil.activo:
        return None
    return perfil.rol


def _nombre(usuario):
    return usuario.get_full_name() or usuario.username


def _normalizar_ids(equipo_ids):
    """Quita duplicados conservando el orden en que llegaron."""
    if not isinstance(equipo_ids, (list, tuple)):
        raise ErrorValidacion("equipo_ids debe ser una lista")
    ids = []
    for valor in equipo_ids:
        if isinstance(valor, (bool, float)):
            raise ErrorValidacion(f"Id de equipo inválido: {valor}")
        try:
            equipo_id = int(valor)
        except (TypeError, ValueError):
            raise ErrorValidacion(f"Id de equipo inválido: {valor}")
        if equipo_id not in ids:
            ids.append(equipo_id)
    if not ids:
        raise ErrorValidacion("Debe incluir al menos un equipo")
    if len(ids) > _max_equipos():
        raise ErrorValidacion(f"Un acta interna admite máximo {_max_equipos()} equipos")
    return ids


def _resolver_receptor(recibe_id, recibe_email):
    if recibe_id:
        if isinstance(recibe_id, (bool, float)):
            raise ErrorValidacion(f"Id de usuario receptor inválido: {recibe_id}")
        try:
            recibe_id = int(recibe_id)
        except (TypeError, ValueError):
            raise ErrorValidacion(f"Id de usuario receptor inválido: {recibe_id}")
        receptor = User.objects.filter(pk=recibe_id).select_related('perfil').first()
        identificador = recibe_id
    else:
        receptor = User.objects.filter(email__iexact=recibe_email).select_related('perfil').first()
        identificador = recibe_email

    if receptor is None:
        raise NoEncontrado(f"El usuario receptor {identificador} no existe")
    if _rol(receptor) != PerfilUsuario.Rol.AUXILIAR_ADMINISTRATIVA:
        raise PrecondicionFallida(
            f"El usuario {receptor.username} no es auxiliar administrativa",
            regla='receptor_no_auxiliar',
        )
    return receptor


def _bloquear_equipos(ids):
    return {
        equipo.pk: equipo
        for equipo in Equipo.objects.select_for_update().filter(pk__in=ids).order_by('pk')
    }


def _bloquear_acta(acta_id):
    try:
        return ActaInterna.objects.select_for_update().get(pk=acta_id)
    except (ActaInterna.DoesNotExist, ValueError, TypeError):
        raise NoEncontrado(f"El acta interna {acta_id} no existe")


def crear_acta_interna(entrega, equipo_ids, firma_entrega, recibe_id=None,
                       recibe_email=None, **metadatos):
    """
    Envía un acta interna con los equipos indicados.

    metadatos admite: cargo_recibe (obligatorio), ciudad, sede, area,
    observaciones y fecha.
    """
    ids = _normalizar_ids(equipo_ids)
    validar_firma(firma_entrega, 'firma_entrega')

    cargo_recibe = validar_texto(metadatos.get('cargo_recibe'), 'cargo_recibe')
    if not cargo_recibe:
        raise ErrorValidacion("El cargo de quien recibe es obligatorio")

    recibe_email = validar_texto(recibe_email, 'recibe_email')
    textos = {
        campo: validar_texto(metadatos.get(campo), campo)
        for campo in ('ciudad', 'sede', 'area', 'observaciones')
    }
    if not recibe_id and not recibe_email:
        raise ErrorValidacion("Debe indicar el usuario o el email de quien recibe")

    if _rol(entrega) != PerfilUsuario.Rol.INGENIERO_BIOMEDICO:
        raise PermisoDenegado("Solo un ingeniero biomédico puede enviar actas internas")

    receptor = _resolver_receptor(recibe_id, recibe_email)

    try:
        with transaction.atomic():
            equipos = _bloquear_equipos(ids)
            for equipo_id in ids:
                if equipo_id not in equipos:
                    raise NoEncontrado(f"El equipo {equipo_id} no existe")

            for equipo_id in ids:
                equipo = equipos[equipo_id]
                if equipo.acta_interna_pendiente_id is not None:
                    raise PrecondicionFallida(
                        f"El equipo {equipo.codigo_inventario} ya tiene un acta interna pendiente",
                        regla='acta_interna_pendiente',
                    )

            acta = ActaInterna(
                entrega=entrega,
                entrega_nombre=_nombre(entrega),
                recibe=receptor,
                recibe_nombre=_nombre(receptor),
                recibe_email=receptor.email or recibe_email,
                cargo_recibe=cargo_recibe,
                ciudad=textos['ciudad'],
                sede=textos['sede'],
                area=textos['area'] or 'Biomedica',
                observaciones=textos['observaciones'],
                firma_entrega=firma_entrega,
            )
            if metadatos.get('fecha'):
                acta.fecha = metadatos['fecha']
            acta.save()

            ActaInternaItem.objects.bulk_create([
                ActaInternaItem(
                    acta=acta,
                    equipo=equipos[equipo_id],
                    orden=orden,
                    codigo_inventario=equipos[equipo_id].codigo_inventario,
                    numero_serie=equipos[equipo_id].numero_serie,
                    nombre=equipos[equipo_id].nombre,
                    marca=equipos[equipo_id].marca,
                    modelo=equipos[equipo_id].modelo,
                    estado=equipos[equipo_id].estado,
                )
                for orden, equipo_id in enumerate(ids, start=1)
            ])

            for equipo_id in ids:
                fijar_bloqueo_custodia(
                    equipos[equipo_id],
                    custodio=entrega,
                    acta_pendiente=acta,
                    disponible_para_entrega=False,
                    usuario=entrega,
                )
    except IntegrityError as e:
        logger.warning(f"Conflicto al crear acta interna de {entrega.username}: {e}")
        raise ConflictoConcurrencia("Otra operación simultánea modificó los equipos, intente de nuevo")

    logger.info(
        f"Acta interna {acta.numero_display} enviada por {entrega.username} a "
        f"{receptor.username} con {len(ids)} equipo(s)"
    )
    return acta


def aceptar_acta_interna(acta_id, usuario, firma_recibe):
    """
    La auxiliar designada acepta el acta y recibe la custodia de los equipos.

    Si algún equipo ya no apunta a esta acta no se acepta nada.
    """
    if _rol(usuario) != PerfilUsuario.Rol.AUXILIAR_ADMINISTRATIVA:
        raise PermisoDenegado("Solo una auxiliar administrativa puede aceptar actas internas")
    validar_firma(firma_recibe, 'firma_recibe')

    try:
        with transaction.atomic():
            acta = _bloquear_acta(acta_id)
            if acta.estado != ActaInterna.Estado.ENVIADA:
                raise PrecondicionFallida(
                    f"El acta interna {acta.numero_display} no está pendiente (estado: {acta.estado})",
                    regla='acta_no_enviada',
                )
            if acta.recibe_id != usuario.pk:
                raise PermisoDenegado(
                    f"El acta interna {acta.numero_display} está dirigida a otro usuario"
                )

            items = list(acta.items.all())
            if not items or len(items) > _max_equipos():
                raise PrecondicionFallida(
                    f"El acta interna {acta.numero_display} tiene {len(items)} equipos",
                    regla='acta_sin_items',
                )

            equipos = _bloquear_equipos([item.equipo_id for item in items])
            for item in items:
                equipo = equipos.get(item.equipo_id)
                if equipo is None or equipo.acta_interna_pendiente_id != acta.pk:
                    raise PrecondicionFallida(
                        f"El equipo {item.codigo_inventario} ya no está pendiente en el acta "
                        f"{acta.numero_display}",
                        regla='equipo_no_pendiente',
                    )

            acta.estado = ActaInterna.Estado.ACEPTADA
            acta.firma_recibe = firma_recibe
            acta.aceptada_en = timezone.now()
            acta.save(update_fields=['estado', 'firma_recibe', 'aceptada_en'])

            for item in items:
                fijar_bloqueo_custodia(
                    equipos[item.equipo_id],
                    custodio=usuario,
                    acta_pendiente=None,
                    disponible_para_entrega=True,
                    usuario=usuario,
                )
    except IntegrityError as e:
        logger.warning(f"Conflicto al aceptar acta interna {acta_id}: {e}")
        raise ConflictoConcurrencia("Otra operación simultánea modificó el acta, intente de nuevo")

    logger.info(
        f"Acta interna {acta.numero_display} aceptada por {usuario.username} "
        f"({len(items)} equipo(s))"
    )
    return acta


def anular_acta_interna(acta_id, usuario, motivo=''):
    """
    Anula un acta ENVIADA. Solo puede hacerlo quien la envió.

    Retorna la cantidad de equipos liberados del acta.
    """
    motivo = validar_texto(motivo, 'motivo')

    try:
        with transaction.atomic():
            acta = _bloquear_acta(acta_id)
            if acta.entrega_id != usuario.pk:
                raise PermisoDenegado(
                    f"Solo quien envió el acta interna {acta.numero_display} puede anularla"
                )
            if acta.estado != ActaInterna.Estado.ENVIADA:
                raise PrecondicionFallida(
                    f"El acta interna {acta.numero_display} no está pendiente (estado: {acta.estado})",
                    regla='acta_no_enviada',
                )

            equipos = _bloquear_equipos(list(acta.items.values_list('equipo_id', flat=True)))
            liberados = 0
            for equipo in equipos.values():
                if equipo.acta_interna_pendiente_id != acta.pk:
                    continue
                fijar_bloqueo_custodia(
                    equipo,
                    custodio=equipo.custodio,
                    acta_pendiente=None,
                    disponible_para_entrega=False,
                    usuario=usuario,
                )
                liberados += 1

            acta.estado = ActaInterna.Estado.ANULADA
            acta.anulada_en = timezone.now()
            acta.motivo_anulacion = motivo
            acta.save(update_fields=['estado', 'anulada_en', 'motivo_anulacion'])
    except IntegrityError as e:
        logger.warning(f"Conflicto al anular acta interna {acta_id}: {e}")
        raise ConflictoConcurrencia("Otra operación simultánea modificó el acta, intente de nuevo")

    logger.info(
        f"Acta interna {acta.numero_display} anulada por {usuario.username}; "
        f"{liberados} equipo(s) liberados"
    )
    return liberados
