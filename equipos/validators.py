"""
Validadores de firmas.

Las firmas llegan como DataURL desde el widget de captura. El sistema no las
interpreta: solo verifica que existan y que no superen el tamaño máximo.
"""

from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils.deconstruct import deconstructible

from .exceptions import ErrorValidacion


# Tamaño máximo por defecto de una firma: 512KB
MAX_FIRMA_SIZE = 512 * 1024


@deconstructible
class FirmaValidator:
    """
    Validador de firmas que verifica:
    - Que la firma sea un texto no vacío
    - Tamaño máximo en bytes
    """

    def __init__(self, max_size=None):
        self.max_size = max_size

    def get_max_size(self):
        return self.max_size or getattr(settings, 'FIRMA_MAX_BYTES', MAX_FIRMA_SIZE)

    def __call__(self, value):
        if not isinstance(value, str) or not value.strip():
            raise ValidationError('La firma es obligatoria.', code='firma_vacia')

        tamano = len(value.encode('utf-8'))
        if tamano > self.get_max_size():
            raise ValidationError(
                f'La firma ocupa {tamano // 1024}KB y el máximo es {self.get_max_size() // 1024}KB.',
                code='firma_muy_grande'
            )

    def __eq__(self, other):
        return isinstance(other, FirmaValidator) and self.max_size == other.max_size


validate_firma = FirmaValidator()


def validar_firma(valor, nombre='firma'):
    """Igual que validate_firma pero lanza ErrorValidacion para los services."""
    try:
        validate_firma(valor)
    except ValidationError as e:
        raise ErrorValidacion(f"{nombre}: {' '.join(e.messages)}")
    return valor


def validar_texto(valor, nombre):
    """
    Normaliza un campo de texto libre recibido por los services.

    None equivale a vacío; cualquier otro tipo que no sea str lanza
    ErrorValidacion. Retorna el texto sin espacios en los extremos.
    """
    if valor is None:
        return ''
    if not isinstance(valor, str):
        raise ErrorValidacion(f"{nombre}: debe ser texto")
    return valor.strip()
