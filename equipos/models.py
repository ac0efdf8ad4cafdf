from django.db import models, transaction
from django.db.models import Q
from django.core.exceptions import ValidationError
from django.contrib.auth.models import User
from django.utils import timezone


# ============================================================================
# PERFIL DE USUARIO
# ============================================================================

class PerfilUsuario(models.Model):
    """Perfil extendido del usuario con el rol dentro del programa."""

    class Rol(models.TextChoices):
        GERENCIA = 'GERENCIA', 'Gerencia'
        INGENIERO_BIOMEDICO = 'INGENIERO_BIOMEDICO', 'Ingeniero Biomédico'
        AUXILIAR_ADMINISTRATIVA = 'AUXILIAR_ADMINISTRATIVA', 'Auxiliar Administrativa'
        VISITADOR = 'VISITADOR', 'Visitador'

    # Roles cuya entrega de equipos queda limitada a los equipos que custodian
    ROLES_CUSTODIOS = (Rol.INGENIERO_BIOMEDICO, Rol.AUXILIAR_ADMINISTRATIVA)

    usuario = models.OneToOneField(User, on_delete=models.CASCADE, related_name='perfil')
    rol = models.CharField(
        max_length=30,
        choices=Rol.choices,
        blank=True,
        help_text="Vacío hasta que un administrador asigne el rol"
    )
    cargo = models.CharField(max_length=100, blank=True)
    telefono = models.CharField(max_length=20, blank=True)
    activo = models.BooleanField(default=True)

    class Meta:
        verbose_name = "Perfil de Usuario"
        verbose_name_plural = "Perfiles de Usuario"

    def __str__(self):
        if self.rol:
            return f"{self.nombre_mostrado} - {self.get_rol_display()}"
        return f"{self.nombre_mostrado} - Sin rol"

    @property
    def nombre_mostrado(self):
        return self.usuario.get_full_name() or self.usuario.username

    @property
    def es_ingeniero(self):
        return self.rol == self.Rol.INGENIERO_BIOMEDICO

    @property
    def es_auxiliar(self):
        return self.rol == self.Rol.AUXILIAR_ADMINISTRATIVA

    @property
    def es_visitador(self):
        return self.rol == self.Rol.VISITADOR

    @property
    def es_custodio_acotado(self):
        """True si el rol solo puede entregar equipos bajo su propia custodia."""
        return self.activo and self.rol in self.ROLES_CUSTODIOS


# ============================================================================
# TITULARES: PACIENTES Y PROFESIONALES
# ============================================================================

class Paciente(models.Model):
    """Paciente del programa de atención domiciliaria."""

    class TipoDocumento(models.TextChoices):
        CC = 'CC', 'Cédula de ciudadanía'
        TI = 'TI', 'Tarjeta de identidad'
        CE = 'CE', 'Cédula de extranjería'
        RC = 'RC', 'Registro civil'

    class Estado(models.TextChoices):
        ACTIVO = 'ACTIVO', 'Activo'
        EGRESADO = 'EGRESADO', 'Egresado'

    SERIE = 'pacientes'

    consecutivo = models.PositiveIntegerField(
        unique=True,
        editable=False,
        help_text="Número visible del paciente (1, 2, 3...)"
    )
    nombre_completo = models.CharField(max_length=200)
    tipo_documento = models.CharField(max_length=2, choices=TipoDocumento.choices, default=TipoDocumento.CC)
    numero_documento = models.CharField(max_length=30, unique=True)
    direccion = models.CharField(max_length=250, blank=True)
    barrio = models.CharField(max_length=100, blank=True, help_text="Barrio o municipio")
    telefono = models.CharField(max_length=30, blank=True)
    eps = models.CharField(max_length=50, blank=True)
    diagnostico = models.TextField(blank=True)
    tipo_servicio = models.CharField(max_length=100, blank=True)
    horas_prestadas = models.CharField(max_length=100, blank=True)
    fecha_inicio_programa = models.DateField(null=True, blank=True)

    # Datos del familiar
    nombre_familiar = models.CharField(max_length=200, blank=True)
    telefono_familiar = models.CharField(max_length=30, blank=True)
    documento_familiar = models.CharField(max_length=30, blank=True)
    parentesco_familiar = models.CharField(max_length=50, blank=True)

    estado = models.CharField(max_length=10, choices=Estado.choices, default=Estado.ACTIVO)
    fecha_salida = models.DateTimeField(null=True, blank=True)

    creado_en = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Paciente"
        verbose_name_plural = "Pacientes"
        ordering = ['consecutivo']
        indexes = [
            models.Index(fields=['estado'], name='paciente_estado_idx'),
        ]

    def __str__(self):
        return f"{self.consecutivo} - {self.nombre_completo}"

    def save(self, *args, **kwargs):
        if self.consecutivo:
            return super().save(*args, **kwargs)
        from .services.consecutivos import siguiente_numero
        with transaction.atomic():
            self.consecutivo = siguiente_numero(self.SERIE)
            super().save(*args, **kwargs)

    @property
    def esta_activo(self):
        return self.estado == self.Estado.ACTIVO


class Profesional(models.Model):
    """Profesional de la salud que recibe equipos en préstamo."""

    SERIE = 'profesionales'

    consecutivo = models.PositiveIntegerField(unique=True, editable=False)
    nombre = models.CharField(max_length=200)
    cedula = models.CharField(max_length=30, unique=True)
    direccion = models.CharField(max_length=250, blank=True)
    telefono = models.CharField(max_length=30, blank=True)
    cargo = models.CharField(max_length=100, blank=True)

    # Auditoría
    creado_en = models.DateTimeField(auto_now_add=True)
    creado_por = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='profesionales_creados'
    )

    class Meta:
        verbose_name = "Profesional"
        verbose_name_plural = "Profesionales"
        ordering = ['consecutivo']

    def __str__(self):
        return f"{self.nombre} - {self.cargo}" if self.cargo else self.nombre

    def save(self, *args, **kwargs):
        if self.consecutivo:
            return super().save(*args, **kwargs)
        from .services.consecutivos import siguiente_numero
        with transaction.atomic():
            self.consecutivo = siguiente_numero(self.SERIE)
            super().save(*args, **kwargs)


# ============================================================================
# SERIES DE CONSECUTIVOS
# ============================================================================

class SerieConsecutivo(models.Model):
    """
    Una fila por serie de numeración. Se bloquea con SELECT ... FOR UPDATE
    mientras se calcula el siguiente número, así la asignación y la inserción
    del registro quedan en la misma transacción.
    """

    serie = models.CharField(max_length=50, primary_key=True)
    actualizado_en = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Serie de Consecutivos"
        verbose_name_plural = "Series de Consecutivos"

    def __str__(self):
        return self.serie


# ============================================================================
# MODELO PRINCIPAL: EQUIPO
# ============================================================================

class Equipo(models.Model):
    """Equipo biomédico del inventario."""

    class Estado(models.TextChoices):
        DISPONIBLE = 'DISPONIBLE', 'Disponible'
        ASIGNADO = 'ASIGNADO', 'Asignado'
        MANTENIMIENTO = 'MANTENIMIENTO', 'Mantenimiento'
        DADO_DE_BAJA = 'DADO_DE_BAJA', 'Dado de baja'

    class TipoPropiedad(models.TextChoices):
        PROPIO = 'PROPIO', 'Propio'
        ALQUILADO = 'ALQUILADO', 'Alquilado'
        PACIENTE = 'PACIENTE', 'Del paciente'
        EMPLEADO = 'EMPLEADO', 'Del empleado'

    PREFIJOS_CODIGO = {
        TipoPropiedad.PROPIO: 'MBG-',
        TipoPropiedad.ALQUILADO: 'MBA-',
        TipoPropiedad.PACIENTE: 'MBP-',
        TipoPropiedad.EMPLEADO: 'MBE-',
    }

    # Identificación
    codigo_inventario = models.CharField(
        max_length=20,
        unique=True,
        editable=False,
        help_text="Código autogenerado por tipo de propiedad (ej: MBG-001)"
    )
    numero_serie = models.CharField(max_length=100, blank=True, help_text="Serial del fabricante")
    nombre = models.CharField(max_length=200)
    marca = models.CharField(max_length=100)
    modelo = models.CharField(max_length=100)

    # Estado intrínseco (el estado operativo se calcula en services.estado)
    estado = models.CharField(max_length=20, choices=Estado.choices, default=Estado.DISPONIBLE)

    # Propiedad
    tipo_propiedad = models.CharField(
        max_length=20,
        choices=TipoPropiedad.choices,
        default=TipoPropiedad.PROPIO
    )
    empresa_alquiler = models.CharField(max_length=200, blank=True)
    propietario_nombre = models.CharField(max_length=200, blank=True)
    propietario_nit = models.CharField(max_length=30, blank=True)
    propietario_telefono = models.CharField(max_length=30, blank=True)

    ubicacion_actual = models.CharField(max_length=200, blank=True)
    observaciones = models.TextField(blank=True)

    # Fechas
    fecha_ingreso = models.DateTimeField(default=timezone.now)
    fecha_mantenimiento = models.DateTimeField(null=True, blank=True)
    fecha_baja = models.DateTimeField(null=True, blank=True)

    # Custodia: solo los escribe services.actas_internas
    disponible_para_entrega = models.BooleanField(
        default=True,
        help_text="Falso mientras el equipo no haya sido aceptado por una auxiliar administrativa"
    )
    custodio = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='equipos_en_custodia',
        help_text="Usuario con la custodia técnica actual (vacío en equipos legacy)"
    )
    acta_interna_pendiente = models.ForeignKey(
        'ActaInterna',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='equipos_pendientes',
        help_text="Acta interna enviada y aún no aceptada que incluye este equipo"
    )

    # Auditoría
    creado_por = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='equipos_creados'
    )
    creado_en = models.DateTimeField(auto_now_add=True)
    modificado_en = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Equipo"
        verbose_name_plural = "Equipos"
        ordering = ['codigo_inventario']
        constraints = [
            models.CheckConstraint(
                condition=Q(acta_interna_pendiente__isnull=True) | Q(disponible_para_entrega=False),
                name='equipo_pendiente_no_disponible',
            ),
            models.UniqueConstraint(
                fields=['numero_serie'],
                condition=~Q(numero_serie=''),
                name='equipo_numero_serie_unico',
            ),
        ]
        indexes = [
            models.Index(fields=['estado'], name='equipo_estado_idx'),
            models.Index(fields=['tipo_propiedad'], name='equipo_tipo_propiedad_idx'),
        ]

    def __str__(self):
        return f"{self.codigo_inventario} - {self.nombre}"

    def clean(self):
        """Validaciones del modelo."""
        super().clean()

        if self.acta_interna_pendiente_id and self.disponible_para_entrega:
            raise ValidationError({
                'disponible_para_entrega': 'Un equipo con acta interna pendiente no puede estar disponible para entrega'
            })

        if self.es_de_terceros and not self.propietario_nombre:
            raise ValidationError({
                'propietario_nombre': 'Los equipos de terceros deben registrar los datos del propietario'
            })

    def save(self, *args, **kwargs):
        if self.codigo_inventario:
            self.full_clean()
            return super().save(*args, **kwargs)

        from .services.consecutivos import siguiente_codigo_inventario
        with transaction.atomic():
            self.codigo_inventario = siguiente_codigo_inventario(self.prefijo_codigo)
            self.full_clean()
            super().save(*args, **kwargs)

    @property
    def es_de_terceros(self):
        return self.tipo_propiedad != self.TipoPropiedad.PROPIO

    @property
    def prefijo_codigo(self):
        return self.PREFIJOS_CODIGO.get(self.tipo_propiedad, 'MBG-')

    @property
    def tiene_acta_pendiente(self):
        return self.acta_interna_pendiente_id is not None


# ============================================================================
# HISTORIAL DE CAMBIOS
# ============================================================================

class HistorialCambio(models.Model):
    """Registro de cambios en los campos de custodia de un equipo."""

    equipo = models.ForeignKey(Equipo, on_delete=models.CASCADE, related_name='historial_cambios')
    usuario = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    fecha = models.DateTimeField(auto_now_add=True)
    campo = models.CharField(max_length=100)
    valor_anterior = models.TextField(blank=True)
    valor_nuevo = models.TextField(blank=True)

    class Meta:
        verbose_name = "Historial de Cambio"
        verbose_name_plural = "Historial de Cambios"
        ordering = ['-fecha', '-id']

    def __str__(self):
        return f"{self.equipo.codigo_inventario} - {self.campo} ({self.fecha.strftime('%Y-%m-%d %H:%M')})"


# ============================================================================
# ACTAS INTERNAS (Ingeniero biomédico -> Auxiliar administrativa)
# ============================================================================

class ActaInterna(models.Model):
    """
    Acta de traslado de custodia. El ingeniero biomédico la envía con uno o
    varios equipos; mientras esté ENVIADA los equipos no se pueden entregar.
    Al aceptarla, la auxiliar queda como custodio y los equipos se habilitan.
    """

    class Estado(models.TextChoices):
        ENVIADA = 'ENVIADA', 'Enviada'
        ACEPTADA = 'ACEPTADA', 'Aceptada'
        ANULADA = 'ANULADA', 'Anulada'

    SERIE = 'actas_internas'

    consecutivo = models.PositiveIntegerField(unique=True, editable=False)
    fecha = models.DateTimeField(default=timezone.now)
    ciudad = models.CharField(max_length=100, blank=True)
    sede = models.CharField(max_length=100, blank=True)
    area = models.CharField(max_length=100, default='Biomedica')
    cargo_recibe = models.CharField(max_length=100)
    observaciones = models.TextField(blank=True)

    # Partes
    entrega = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='actas_internas_entregadas',
        help_text="Ingeniero biomédico que entrega la custodia"
    )
    entrega_nombre = models.CharField(max_length=200)
    recibe = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='actas_internas_recibidas',
        help_text="Auxiliar administrativa que debe aceptar el acta"
    )
    recibe_nombre = models.CharField(max_length=200)
    recibe_email = models.EmailField(blank=True)

    estado = models.CharField(max_length=10, choices=Estado.choices, default=Estado.ENVIADA)

    # Firmas (DataURL, no se interpretan)
    firma_entrega = models.TextField()
    firma_recibe = models.TextField(blank=True)

    creado_en = models.DateTimeField(auto_now_add=True)
    aceptada_en = models.DateTimeField(null=True, blank=True)
    anulada_en = models.DateTimeField(null=True, blank=True)
    motivo_anulacion = models.TextField(blank=True)

    class Meta:
        verbose_name = "Acta Interna"
        verbose_name_plural = "Actas Internas"
        ordering = ['-consecutivo']
        indexes = [
            models.Index(fields=['estado'], name='acta_interna_estado_idx'),
            models.Index(fields=['recibe', 'estado'], name='acta_interna_recibe_idx'),
        ]

    def __str__(self):
        return f"Acta interna {self.numero_display} - {self.recibe_nombre}"

    def save(self, *args, **kwargs):
        if self.consecutivo:
            return super().save(*args, **kwargs)
        from .services.consecutivos import siguiente_numero
        with transaction.atomic():
            self.consecutivo = siguiente_numero(self.SERIE)
            super().save(*args, **kwargs)

    @property
    def numero_display(self):
        return f"{self.consecutivo:04d}" if self.consecutivo else "----"

    @property
    def cantidad_items(self):
        return self.items.count()


class ActaInternaItem(models.Model):
    """Foto del equipo al momento de crear el acta interna."""

    acta = models.ForeignKey(ActaInterna, on_delete=models.CASCADE, related_name='items')
    equipo = models.ForeignKey(Equipo, on_delete=models.PROTECT, related_name='items_actas_internas')
    orden = models.PositiveIntegerField()

    codigo_inventario = models.CharField(max_length=20)
    numero_serie = models.CharField(max_length=100, blank=True)
    nombre = models.CharField(max_length=200)
    marca = models.CharField(max_length=100, blank=True)
    modelo = models.CharField(max_length=100, blank=True)
    estado = models.CharField(max_length=20, blank=True, help_text="Estado técnico al momento de la entrega")

    class Meta:
        verbose_name = "Ítem del Acta Interna"
        verbose_name_plural = "Ítems del Acta Interna"
        unique_together = ['acta', 'equipo']
        ordering = ['acta', 'orden']

    def __str__(self):
        return f"{self.acta.numero_display} - {self.codigo_inventario}"


# ============================================================================
# ASIGNACIONES (Actas de entrega y devolución)
# ============================================================================

class Asignacion(models.Model):
    """
    Préstamo de un equipo a un titular (paciente o profesional).
    Es la hoja de vida del equipo: nunca se borra.
    """

    class TipoTitular(models.TextChoices):
        PACIENTE = 'PACIENTE', 'Paciente'
        PROFESIONAL = 'PROFESIONAL', 'Profesional'

    class Estado(models.TextChoices):
        ACTIVA = 'ACTIVA', 'Activa'
        FINALIZADA = 'FINALIZADA', 'Finalizada'

    SERIES = {
        TipoTitular.PACIENTE: 'asignaciones_pacientes',
        TipoTitular.PROFESIONAL: 'asignaciones_profesionales',
    }

    consecutivo = models.PositiveIntegerField(editable=False)
    tipo_titular = models.CharField(max_length=12, choices=TipoTitular.choices)
    paciente = models.ForeignKey(
        Paciente,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='asignaciones'
    )
    profesional = models.ForeignKey(
        Profesional,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='asignaciones'
    )
    equipo = models.ForeignKey(Equipo, on_delete=models.PROTECT, related_name='asignaciones')
    estado = models.CharField(max_length=12, choices=Estado.choices, default=Estado.ACTIVA)

    # Fechas
    fecha_entrega = models.DateTimeField(help_text="Fecha real de entrega (puede ser histórica)")
    fecha_registro = models.DateTimeField(auto_now_add=True)
    fecha_devolucion = models.DateTimeField(null=True, blank=True)

    observaciones_entrega = models.TextField(blank=True)
    observaciones_devolucion = models.TextField(blank=True)
    estado_final_equipo = models.CharField(
        max_length=20,
        choices=Equipo.Estado.choices,
        blank=True,
        help_text="Estado del equipo reportado al devolver"
    )

    # Solo para profesionales
    ciudad = models.CharField(max_length=100, blank=True)
    sede = models.CharField(max_length=100, blank=True)

    # Firmas (DataURL, no se interpretan)
    firma_titular_entrega = models.TextField(blank=True)
    firma_titular_devolucion = models.TextField(blank=True)
    firma_auxiliar = models.TextField(blank=True)
    firma_entrega_capturada_en = models.DateTimeField(null=True, blank=True)
    firma_entrega_capturada_por = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='firmas_capturadas'
    )
    firma_entrega_capturada_por_nombre = models.CharField(max_length=200, blank=True)

    # Auditoría
    usuario_asigna = models.CharField(max_length=200, blank=True)
    asignado_por = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='asignaciones_registradas'
    )

    class Meta:
        verbose_name = "Asignación"
        verbose_name_plural = "Asignaciones"
        ordering = ['-fecha_entrega']
        constraints = [
            models.UniqueConstraint(
                fields=['equipo'],
                condition=Q(estado='ACTIVA'),
                name='asignacion_activa_unica_por_equipo',
            ),
            models.UniqueConstraint(
                fields=['tipo_titular', 'consecutivo'],
                name='asignacion_consecutivo_unico_por_serie',
            ),
            models.CheckConstraint(
                condition=(
                    Q(tipo_titular='PACIENTE', paciente__isnull=False, profesional__isnull=True)
                    | Q(tipo_titular='PROFESIONAL', profesional__isnull=False, paciente__isnull=True)
                ),
                name='asignacion_titular_coherente',
            ),
        ]
        indexes = [
            models.Index(fields=['equipo', 'estado'], name='asignacion_equipo_idx'),
            models.Index(fields=['paciente', 'estado'], name='asignacion_paciente_idx'),
            models.Index(fields=['profesional', 'estado'], name='asignacion_profesional_idx'),
        ]

    def __str__(self):
        return f"Asignación {self.numero_display} - {self.equipo.codigo_inventario} ({self.get_estado_display()})"

    def save(self, *args, **kwargs):
        if self.consecutivo:
            return super().save(*args, **kwargs)
        from .services.consecutivos import siguiente_numero
        with transaction.atomic():
            self.consecutivo = siguiente_numero(self.serie_consecutivo)
            super().save(*args, **kwargs)

    @property
    def serie_consecutivo(self):
        return self.SERIES[self.tipo_titular]

    @property
    def titular(self):
        if self.tipo_titular == self.TipoTitular.PACIENTE:
            return self.paciente
        return self.profesional

    @property
    def numero_display(self):
        return f"{self.consecutivo:04d}" if self.consecutivo else "----"

    @property
    def esta_activa(self):
        return self.estado == self.Estado.ACTIVA
