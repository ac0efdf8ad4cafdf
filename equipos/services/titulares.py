"""
Registro de titulares: pacientes y profesionales.

Los textos se guardan en mayúsculas y los documentos son únicos.
"""
import logging

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction

from ..exceptions import ConflictoConcurrencia, ErrorValidacion, NoEncontrado
from ..models import Asignacion, Paciente, Profesional
from .inventario import mensaje_validacion

logger = logging.getLogger(__name__)


CAMPOS_PACIENTE = [
    'nombre_completo', 'tipo_documento', 'numero_documento', 'direccion',
    'barrio', 'telefono', 'eps', 'diagnostico', 'tipo_servicio',
    'horas_prestadas', 'fecha_inicio_programa', 'nombre_familiar',
    'telefono_familiar', 'documento_familiar', 'parentesco_familiar',
]

CAMPOS_PROFESIONAL = ['nombre', 'cedula', 'direccion', 'telefono', 'cargo']

# No se pasan a mayúsculas
CAMPOS_SIN_NORMALIZAR = ['tipo_documento', 'fecha_inicio_programa', 'telefono', 'telefono_familiar']


def _normalizar(datos, campos):
    limpios = {}
    for campo in campos:
        valor = datos.get(campo)
        if valor is None:
            continue
        if isinstance(valor, str):
            valor = valor.strip()
            if campo not in CAMPOS_SIN_NORMALIZAR:
                valor = valor.upper()
        limpios[campo] = valor
    return limpios


def _guardar(instancia, descripcion):
    try:
        with transaction.atomic():
            instancia.full_clean(exclude=['consecutivo'])
            instancia.save()
    except ValidationError as e:
        raise ErrorValidacion(mensaje_validacion(e))
    except IntegrityError as e:
        logger.warning(f"Conflicto al registrar {descripcion}: {e}")
        raise ConflictoConcurrencia(f"Otro registro simultáneo afectó a {descripcion}, intente de nuevo")
    return instancia


def registrar_paciente(datos):
    """Registra un paciente ACTIVO con el siguiente consecutivo de la serie."""
    campos = _normalizar(datos, CAMPOS_PACIENTE)
    for requerido in ('nombre_completo', 'numero_documento'):
        if not campos.get(requerido):
            raise ErrorValidacion(f"El campo {requerido} es obligatorio")

    if Paciente.objects.filter(numero_documento=campos['numero_documento']).exists():
        raise ErrorValidacion(f"Ya existe un paciente con documento {campos['numero_documento']}")

    paciente = _guardar(Paciente(**campos), f"el paciente {campos['numero_documento']}")
    logger.info(f"Paciente {paciente.consecutivo} registrado: {paciente.nombre_completo}")
    return paciente


def registrar_profesional(datos, usuario=None):
    """Registra un profesional con el siguiente consecutivo de la serie."""
    campos = _normalizar(datos, CAMPOS_PROFESIONAL)
    for requerido in ('nombre', 'cedula'):
        if not campos.get(requerido):
            raise ErrorValidacion(f"El campo {requerido} es obligatorio")

    if Profesional.objects.filter(cedula=campos['cedula']).exists():
        raise ErrorValidacion(f"Ya existe un profesional con cédula {campos['cedula']}")

    profesional = _guardar(
        Profesional(**campos, creado_por=usuario),
        f"el profesional {campos['cedula']}"
    )
    logger.info(f"Profesional {profesional.consecutivo} registrado: {profesional.nombre}")
    return profesional


def obtener_titular(tipo_titular, titular_id, bloquear=False):
    """Retorna el paciente o profesional; NoEncontrado si no existe."""
    if tipo_titular == Asignacion.TipoTitular.PACIENTE:
        modelo = Paciente
    elif tipo_titular == Asignacion.TipoTitular.PROFESIONAL:
        modelo = Profesional
    else:
        raise ErrorValidacion(f"Tipo de titular inválido: {tipo_titular}")

    consulta = modelo.objects.select_for_update() if bloquear else modelo.objects
    try:
        return consulta.get(pk=titular_id)
    except (modelo.DoesNotExist, ValueError, TypeError):
        raise NoEncontrado(f"El {modelo._meta.verbose_name.lower()} {titular_id} no existe")
