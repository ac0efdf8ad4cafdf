"""
Errores de negocio del motor de custodia y asignación.

Todas las operaciones de los services lanzan una subclase de ErrorCustodia.
Cada clase lleva un código estable (el mismo que devuelven los endpoints JSON)
y el status HTTP correspondiente, para que las vistas no tengan que analizar
mensajes:

    ErrorCustodia
    +-- ErrorValidacion        invalid-argument     400
    +-- NoEncontrado           not-found            404
    +-- PrecondicionFallida    failed-precondition  412
    +-- PermisoDenegado        permission-denied    403
    +-- ConflictoConcurrencia  aborted              409

Cualquier error implica que no se escribió nada.
"""


class ErrorCustodia(Exception):
    """Clase base para los errores del motor de custodia."""

    codigo = 'internal'
    status_http = 500

    def __init__(self, mensaje):
        super().__init__(mensaje)
        self.mensaje = mensaje

    def como_dict(self):
        return {'error': self.codigo, 'mensaje': self.mensaje}


class ErrorValidacion(ErrorCustodia):
    """Datos de entrada mal formados o incompletos. Se puede reintentar corrigiendo la entrada."""

    codigo = 'invalid-argument'
    status_http = 400


class NoEncontrado(ErrorCustodia):
    """El id referenciado no existe."""

    codigo = 'not-found'
    status_http = 404


class PrecondicionFallida(ErrorCustodia):
    """
    Se violó una regla de negocio (equipo no disponible, asignación ya
    devuelta, titular no elegible, acta en un estado distinto al esperado).

    `regla` identifica la regla violada; el mensaje nombra la entidad.
    """

    codigo = 'failed-precondition'
    status_http = 412

    def __init__(self, mensaje, regla):
        super().__init__(mensaje)
        self.regla = regla

    def como_dict(self):
        datos = super().como_dict()
        datos['regla'] = self.regla
        return datos


class PermisoDenegado(ErrorCustodia):
    """El rol o la identidad del usuario no corresponde a la operación."""

    codigo = 'permission-denied'
    status_http = 403


class ConflictoConcurrencia(ErrorCustodia):
    """Otra escritura concurrente ganó la carrera. Reintentar con espera."""

    codigo = 'aborted'
    status_http = 409
