from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver
from .models import Equipo, Asignacion, HistorialCambio
import threading

# Variable para almacenar el usuario actual (thread-local)
_thread_locals = threading.local()


def get_current_user():
    """Obtiene el usuario actual del thread local."""
    return getattr(_thread_locals, 'user', None)


def set_current_user(user):
    """Establece el usuario actual en el thread local."""
    _thread_locals.user = user


class CurrentUserMiddleware:
    """Middleware para capturar el usuario actual en cada request."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        set_current_user(request.user if request.user.is_authenticated else None)
        try:
            return self.get_response(request)
        finally:
            set_current_user(None)


def _usuario_del_cambio(instance):
    """El service que guarda puede indicar el usuario; si no, el del request."""
    return getattr(instance, '_usuario_cambio', None) or get_current_user()


# ============================================================================
# SEÑALES PARA HISTORIAL DE CAMBIOS EN EQUIPOS
# ============================================================================

# Campos de custodia y estado que se deben rastrear
CAMPOS_RASTREADOS = [
    'estado', 'custodio', 'disponible_para_entrega', 'acta_interna_pendiente',
    'ubicacion_actual', 'tipo_propiedad',
]


def _valor_legible(equipo, campo):
    if campo == 'custodio':
        return equipo.custodio.username if equipo.custodio_id else 'Sin custodio'
    if campo == 'acta_interna_pendiente':
        if equipo.acta_interna_pendiente_id:
            return f"Acta interna {equipo.acta_interna_pendiente.numero_display}"
        return 'Ninguna'
    if campo == 'disponible_para_entrega':
        return 'Sí' if equipo.disponible_para_entrega else 'No'
    valor = getattr(equipo, campo, None)
    return str(valor) if valor is not None else ''


@receiver(pre_save, sender=Equipo)
def capturar_valores_anteriores(sender, instance, **kwargs):
    """Captura los valores anteriores antes de guardar."""
    if instance.pk:
        try:
            instance._valores_anteriores = Equipo.objects.select_related(
                'custodio', 'acta_interna_pendiente'
            ).get(pk=instance.pk)
        except Equipo.DoesNotExist:
            instance._valores_anteriores = None
    else:
        instance._valores_anteriores = None


@receiver(post_save, sender=Equipo)
def registrar_cambios_equipo(sender, instance, created, **kwargs):
    """Registra los cambios realizados en un equipo."""
    usuario = _usuario_del_cambio(instance)

    if created:
        HistorialCambio.objects.create(
            equipo=instance,
            usuario=usuario,
            campo='_creacion',
            valor_anterior='',
            valor_nuevo=f'Equipo creado: {instance.codigo_inventario}'
        )
        return

    anterior = getattr(instance, '_valores_anteriores', None)
    if not anterior:
        return

    for campo in CAMPOS_RASTREADOS:
        attname = Equipo._meta.get_field(campo).attname
        if getattr(anterior, attname) == getattr(instance, attname):
            continue

        HistorialCambio.objects.create(
            equipo=instance,
            usuario=usuario,
            campo=campo,
            valor_anterior=_valor_legible(anterior, campo),
            valor_nuevo=_valor_legible(instance, campo)
        )


# ============================================================================
# SEÑALES PARA ENTREGAS Y DEVOLUCIONES
# ============================================================================

@receiver(post_save, sender=Asignacion)
def registrar_asignacion_en_historial(sender, instance, created, update_fields=None, **kwargs):
    """Deja en la hoja de vida del equipo cada entrega y devolución."""
    usuario = instance.asignado_por if created else _usuario_del_cambio(instance)

    if created:
        HistorialCambio.objects.create(
            equipo_id=instance.equipo_id,
            usuario=usuario,
            campo='_asignacion',
            valor_anterior='',
            valor_nuevo=f'Asignación {instance.numero_display} entregada a {instance.titular}'
        )
    elif update_fields and 'estado' in update_fields and instance.estado == Asignacion.Estado.FINALIZADA:
        HistorialCambio.objects.create(
            equipo_id=instance.equipo_id,
            usuario=usuario,
            campo='_devolucion',
            valor_anterior=f'Asignación {instance.numero_display}',
            valor_nuevo=f'Devuelto en estado {instance.estado_final_equipo}'
        )
