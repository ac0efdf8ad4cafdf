from django.contrib import admin, messages
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.contrib.auth.models import User
from django.utils.html import format_html
from .exceptions import ErrorCustodia
from .models import (
    PerfilUsuario, Paciente, Profesional, Equipo, HistorialCambio,
    ActaInterna, ActaInternaItem, Asignacion, SerieConsecutivo
)
from .services.estado import estado_efectivo
from .services.inventario import cambiar_estado_intrinseco


COLORES_ESTADO = {
    'DISPONIBLE': '#22c55e',     # Verde
    'ASIGNADO': '#3b82f6',       # Azul
    'MANTENIMIENTO': '#f59e0b',  # Naranja
    'DADO_DE_BAJA': '#ef4444',   # Rojo
}


def _badge(color, texto):
    return format_html(
        '<span style="background:{}; color:white; padding:3px 8px; border-radius:4px; font-size:11px;">{}</span>',
        color, texto
    )


# ============================================================================
# INLINE PARA PERFIL DE USUARIO
# ============================================================================

class PerfilUsuarioInline(admin.StackedInline):
    model = PerfilUsuario
    can_delete = False
    verbose_name_plural = 'Perfil'
    fk_name = 'usuario'
    fields = ('rol', 'cargo', 'telefono', 'activo')


class UserAdmin(BaseUserAdmin):
    inlines = (PerfilUsuarioInline,)
    list_display = ('username', 'email', 'first_name', 'last_name', 'get_rol', 'is_active')
    list_filter = BaseUserAdmin.list_filter + ('perfil__rol',)

    def get_rol(self, obj):
        if hasattr(obj, 'perfil') and obj.perfil.rol:
            return obj.perfil.get_rol_display()
        return '-'
    get_rol.short_description = 'Rol'


# Re-registrar UserAdmin
admin.site.unregister(User)
admin.site.register(User, UserAdmin)


# ============================================================================
# TITULARES
# ============================================================================

@admin.register(Paciente)
class PacienteAdmin(admin.ModelAdmin):
    list_display = ('consecutivo', 'nombre_completo', 'tipo_documento', 'numero_documento', 'eps', 'estado', 'total_activas')
    list_filter = ('estado', 'tipo_documento', 'eps')
    search_fields = ('nombre_completo', 'numero_documento')
    ordering = ('consecutivo',)
    readonly_fields = ('consecutivo', 'estado', 'fecha_salida', 'creado_en')

    fieldsets = (
        ('Identificación', {
            'fields': ('consecutivo', 'nombre_completo', 'tipo_documento', 'numero_documento')
        }),
        ('Contacto', {
            'fields': ('direccion', 'barrio', 'telefono')
        }),
        ('Programa', {
            'fields': ('eps', 'diagnostico', 'tipo_servicio', 'horas_prestadas', 'fecha_inicio_programa')
        }),
        ('Familiar', {
            'fields': ('nombre_familiar', 'telefono_familiar', 'documento_familiar', 'parentesco_familiar'),
            'classes': ('collapse',)
        }),
        ('Estado', {
            'fields': ('estado', 'fecha_salida', 'creado_en')
        }),
    )

    def total_activas(self, obj):
        return obj.asignaciones.filter(estado=Asignacion.Estado.ACTIVA).count()
    total_activas.short_description = 'Equipos asignados'


@admin.register(Profesional)
class ProfesionalAdmin(admin.ModelAdmin):
    list_display = ('consecutivo', 'nombre', 'cedula', 'cargo', 'telefono')
    search_fields = ('nombre', 'cedula')
    ordering = ('consecutivo',)
    readonly_fields = ('consecutivo', 'creado_por', 'creado_en')

    def save_model(self, request, obj, form, change):
        if not change:
            obj.creado_por = request.user
        super().save_model(request, obj, form, change)


# ============================================================================
# EQUIPOS
# ============================================================================

class HistorialCambioInline(admin.TabularInline):
    model = HistorialCambio
    extra = 0
    readonly_fields = ('usuario', 'fecha', 'campo', 'valor_anterior', 'valor_nuevo')
    can_delete = False
    ordering = ('-fecha',)

    def has_add_permission(self, request, obj=None):
        return False


class AsignacionInline(admin.TabularInline):
    model = Asignacion
    extra = 0
    fields = ('tipo_titular', 'consecutivo', 'paciente', 'profesional', 'estado', 'fecha_entrega', 'fecha_devolucion', 'estado_final_equipo')
    readonly_fields = fields
    can_delete = False
    ordering = ('-fecha_entrega',)
    show_change_link = True

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Equipo)
class EquipoAdmin(admin.ModelAdmin):
    list_display = (
        'codigo_inventario', 'nombre', 'marca', 'modelo', 'numero_serie',
        'tipo_propiedad', 'estado_badge', 'custodio', 'entrega_badge'
    )
    list_filter = ('estado', 'tipo_propiedad', 'disponible_para_entrega')
    search_fields = ('codigo_inventario', 'numero_serie', 'nombre', 'marca', 'modelo')
    ordering = ('codigo_inventario',)
    # Los campos de custodia solo cambian con actas internas
    readonly_fields = (
        'codigo_inventario', 'estado', 'custodio', 'disponible_para_entrega',
        'acta_interna_pendiente', 'fecha_mantenimiento', 'fecha_baja',
        'creado_por', 'creado_en', 'modificado_en'
    )

    fieldsets = (
        ('Identificación', {
            'fields': ('codigo_inventario', 'numero_serie', 'nombre', 'marca', 'modelo')
        }),
        ('Propiedad', {
            'fields': ('tipo_propiedad', 'empresa_alquiler', 'propietario_nombre', 'propietario_nit', 'propietario_telefono')
        }),
        ('Estado y Ubicación', {
            'fields': ('estado', 'ubicacion_actual', 'observaciones', 'fecha_ingreso', 'fecha_mantenimiento', 'fecha_baja')
        }),
        ('Custodia', {
            'fields': ('custodio', 'disponible_para_entrega', 'acta_interna_pendiente')
        }),
        ('Auditoría', {
            'fields': ('creado_por', 'creado_en', 'modificado_en'),
            'classes': ('collapse',)
        }),
    )

    inlines = [AsignacionInline, HistorialCambioInline]
    actions = ['marcar_disponible', 'marcar_mantenimiento', 'dar_de_baja']

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('custodio')

    def estado_badge(self, obj):
        estado = estado_efectivo(obj)
        return _badge(COLORES_ESTADO.get(estado, '#6b7280'), Equipo.Estado(estado).label)
    estado_badge.short_description = 'Estado efectivo'

    def entrega_badge(self, obj):
        if obj.acta_interna_pendiente_id:
            return _badge('#f59e0b', 'Acta pendiente')
        if not obj.disponible_para_entrega:
            return _badge('#6b7280', 'Bloqueado')
        return _badge('#22c55e', 'Habilitado')
    entrega_badge.short_description = 'Entrega'

    def save_model(self, request, obj, form, change):
        """Los equipos nuevos quedan bajo custodia de quien los registra."""
        if not change:
            obj.creado_por = request.user
            obj.custodio = request.user
            obj.disponible_para_entrega = False
        obj._usuario_cambio = request.user
        super().save_model(request, obj, form, change)

    def _cambiar_estado(self, request, queryset, estado):
        count = 0
        for equipo in queryset:
            try:
                cambiar_estado_intrinseco(equipo.pk, estado, request.user)
                count += 1
            except ErrorCustodia as e:
                self.message_user(request, e.mensaje, messages.ERROR)
        self.message_user(request, f'{count} equipo(s) actualizados a {Equipo.Estado(estado).label}.')

    @admin.action(description='Marcar como disponibles')
    def marcar_disponible(self, request, queryset):
        self._cambiar_estado(request, queryset, Equipo.Estado.DISPONIBLE)

    @admin.action(description='Enviar a mantenimiento')
    def marcar_mantenimiento(self, request, queryset):
        self._cambiar_estado(request, queryset, Equipo.Estado.MANTENIMIENTO)

    @admin.action(description='Dar de baja')
    def dar_de_baja(self, request, queryset):
        self._cambiar_estado(request, queryset, Equipo.Estado.DADO_DE_BAJA)

    def has_delete_permission(self, request, obj=None):
        return False


# ============================================================================
# ASIGNACIONES Y ACTAS INTERNAS (solo lectura, se crean por la API)
# ============================================================================

class SoloLecturaAdmin(admin.ModelAdmin):

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Asignacion)
class AsignacionAdmin(SoloLecturaAdmin):
    list_display = ('numero_display', 'tipo_titular', 'equipo', 'titular', 'estado', 'fecha_entrega', 'fecha_devolucion', 'estado_final_equipo')
    list_filter = ('estado', 'tipo_titular', 'estado_final_equipo')
    search_fields = ('equipo__codigo_inventario', 'paciente__nombre_completo', 'profesional__nombre')
    date_hierarchy = 'fecha_entrega'
    exclude = ('firma_titular_entrega', 'firma_titular_devolucion', 'firma_auxiliar')

    def numero_display(self, obj):
        return obj.numero_display
    numero_display.short_description = 'Número'
    numero_display.admin_order_field = 'consecutivo'


class ActaInternaItemInline(admin.TabularInline):
    model = ActaInternaItem
    extra = 0
    fields = ('orden', 'codigo_inventario', 'numero_serie', 'nombre', 'marca', 'modelo', 'estado')
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(ActaInterna)
class ActaInternaAdmin(SoloLecturaAdmin):
    list_display = ('numero_display', 'fecha', 'entrega_nombre', 'recibe_nombre', 'estado_badge', 'cantidad_items')
    list_filter = ('estado',)
    search_fields = ('entrega_nombre', 'recibe_nombre', 'recibe_email', 'items__codigo_inventario')
    exclude = ('firma_entrega', 'firma_recibe')
    inlines = [ActaInternaItemInline]

    def numero_display(self, obj):
        return obj.numero_display
    numero_display.short_description = 'Número'
    numero_display.admin_order_field = 'consecutivo'

    def estado_badge(self, obj):
        colores = {
            'ENVIADA': '#f59e0b',
            'ACEPTADA': '#22c55e',
            'ANULADA': '#6b7280',
        }
        return _badge(colores.get(obj.estado, '#6b7280'), obj.get_estado_display())
    estado_badge.short_description = 'Estado'

    def cantidad_items(self, obj):
        return obj.cantidad_items
    cantidad_items.short_description = 'Equipos'


@admin.register(SerieConsecutivo)
class SerieConsecutivoAdmin(SoloLecturaAdmin):
    list_display = ('serie', 'actualizado_en')


@admin.register(HistorialCambio)
class HistorialCambioAdmin(SoloLecturaAdmin):
    list_display = ('equipo', 'campo', 'valor_anterior', 'valor_nuevo', 'usuario', 'fecha')
    list_filter = ('campo',)
    search_fields = ('equipo__codigo_inventario', 'campo', 'usuario__username')
    date_hierarchy = 'fecha'
