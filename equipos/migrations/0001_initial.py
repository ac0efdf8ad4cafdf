# Generated manually for the initial equipos schema

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


ESTADOS_EQUIPO = [
    ('DISPONIBLE', 'Disponible'),
    ('ASIGNADO', 'Asignado'),
    ('MANTENIMIENTO', 'Mantenimiento'),
    ('DADO_DE_BAJA', 'Dado de baja'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='PerfilUsuario',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('rol', models.CharField(blank=True, choices=[('GERENCIA', 'Gerencia'), ('INGENIERO_BIOMEDICO', 'Ingeniero Biomédico'), ('AUXILIAR_ADMINISTRATIVA', 'Auxiliar Administrativa'), ('VISITADOR', 'Visitador')], help_text='Vacío hasta que un administrador asigne el rol', max_length=30)),
                ('cargo', models.CharField(blank=True, max_length=100)),
                ('telefono', models.CharField(blank=True, max_length=20)),
                ('activo', models.BooleanField(default=True)),
                ('usuario', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='perfil', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Perfil de Usuario',
                'verbose_name_plural': 'Perfiles de Usuario',
            },
        ),
        migrations.CreateModel(
            name='Paciente',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('consecutivo', models.PositiveIntegerField(editable=False, help_text='Número visible del paciente (1, 2, 3...)', unique=True)),
                ('nombre_completo', models.CharField(max_length=200)),
                ('tipo_documento', models.CharField(choices=[('CC', 'Cédula de ciudadanía'), ('TI', 'Tarjeta de identidad'), ('CE', 'Cédula de extranjería'), ('RC', 'Registro civil')], default='CC', max_length=2)),
                ('numero_documento', models.CharField(max_length=30, unique=True)),
                ('direccion', models.CharField(blank=True, max_length=250)),
                ('barrio', models.CharField(blank=True, help_text='Barrio o municipio', max_length=100)),
                ('telefono', models.CharField(blank=True, max_length=30)),
                ('eps', models.CharField(blank=True, max_length=50)),
                ('diagnostico', models.TextField(blank=True)),
                ('tipo_servicio', models.CharField(blank=True, max_length=100)),
                ('horas_prestadas', models.CharField(blank=True, max_length=100)),
                ('fecha_inicio_programa', models.DateField(blank=True, null=True)),
                ('nombre_familiar', models.CharField(blank=True, max_length=200)),
                ('telefono_familiar', models.CharField(blank=True, max_length=30)),
                ('documento_familiar', models.CharField(blank=True, max_length=30)),
                ('parentesco_familiar', models.CharField(blank=True, max_length=50)),
                ('estado', models.CharField(choices=[('ACTIVO', 'Activo'), ('EGRESADO', 'Egresado')], default='ACTIVO', max_length=10)),
                ('fecha_salida', models.DateTimeField(blank=True, null=True)),
                ('creado_en', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'Paciente',
                'verbose_name_plural': 'Pacientes',
                'ordering': ['consecutivo'],
                'indexes': [models.Index(fields=['estado'], name='paciente_estado_idx')],
            },
        ),
        migrations.CreateModel(
            name='Profesional',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('consecutivo', models.PositiveIntegerField(editable=False, unique=True)),
                ('nombre', models.CharField(max_length=200)),
                ('cedula', models.CharField(max_length=30, unique=True)),
                ('direccion', models.CharField(blank=True, max_length=250)),
                ('telefono', models.CharField(blank=True, max_length=30)),
                ('cargo', models.CharField(blank=True, max_length=100)),
                ('creado_en', models.DateTimeField(auto_now_add=True)),
                ('creado_por', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='profesionales_creados', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Profesional',
                'verbose_name_plural': 'Profesionales',
                'ordering': ['consecutivo'],
            },
        ),
        migrations.CreateModel(
            name='SerieConsecutivo',
            fields=[
                ('serie', models.CharField(max_length=50, primary_key=True, serialize=False)),
                ('actualizado_en', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Serie de Consecutivos',
                'verbose_name_plural': 'Series de Consecutivos',
            },
        ),
        migrations.CreateModel(
            name='ActaInterna',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('consecutivo', models.PositiveIntegerField(editable=False, unique=True)),
                ('fecha', models.DateTimeField(default=django.utils.timezone.now)),
                ('ciudad', models.CharField(blank=True, max_length=100)),
                ('sede', models.CharField(blank=True, max_length=100)),
                ('area', models.CharField(default='Biomedica', max_length=100)),
                ('cargo_recibe', models.CharField(max_length=100)),
                ('observaciones', models.TextField(blank=True)),
                ('entrega_nombre', models.CharField(max_length=200)),
                ('recibe_nombre', models.CharField(max_length=200)),
                ('recibe_email', models.EmailField(blank=True, max_length=254)),
                ('estado', models.CharField(choices=[('ENVIADA', 'Enviada'), ('ACEPTADA', 'Aceptada'), ('ANULADA', 'Anulada')], default='ENVIADA', max_length=10)),
                ('firma_entrega', models.TextField()),
                ('firma_recibe', models.TextField(blank=True)),
                ('creado_en', models.DateTimeField(auto_now_add=True)),
                ('aceptada_en', models.DateTimeField(blank=True, null=True)),
                ('anulada_en', models.DateTimeField(blank=True, null=True)),
                ('motivo_anulacion', models.TextField(blank=True)),
                ('entrega', models.ForeignKey(help_text='Ingeniero biomédico que entrega la custodia', on_delete=django.db.models.deletion.PROTECT, related_name='actas_internas_entregadas', to=settings.AUTH_USER_MODEL)),
                ('recibe', models.ForeignKey(help_text='Auxiliar administrativa que debe aceptar el acta', on_delete=django.db.models.deletion.PROTECT, related_name='actas_internas_recibidas', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Acta Interna',
                'verbose_name_plural': 'Actas Internas',
                'ordering': ['-consecutivo'],
                'indexes': [
                    models.Index(fields=['estado'], name='acta_interna_estado_idx'),
                    models.Index(fields=['recibe', 'estado'], name='acta_interna_recibe_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Equipo',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('codigo_inventario', models.CharField(editable=False, help_text='Código autogenerado por tipo de propiedad (ej: MBG-001)', max_length=20, unique=True)),
                ('numero_serie', models.CharField(blank=True, help_text='Serial del fabricante', max_length=100)),
                ('nombre', models.CharField(max_length=200)),
                ('marca', models.CharField(max_length=100)),
                ('modelo', models.CharField(max_length=100)),
                ('estado', models.CharField(choices=ESTADOS_EQUIPO, default='DISPONIBLE', max_length=20)),
                ('tipo_propiedad', models.CharField(choices=[('PROPIO', 'Propio'), ('ALQUILADO', 'Alquilado'), ('PACIENTE', 'Del paciente'), ('EMPLEADO', 'Del empleado')], default='PROPIO', max_length=20)),
                ('empresa_alquiler', models.CharField(blank=True, max_length=200)),
                ('propietario_nombre', models.CharField(blank=True, max_length=200)),
                ('propietario_nit', models.CharField(blank=True, max_length=30)),
                ('propietario_telefono', models.CharField(blank=True, max_length=30)),
                ('ubicacion_actual', models.CharField(blank=True, max_length=200)),
                ('observaciones', models.TextField(blank=True)),
                ('fecha_ingreso', models.DateTimeField(default=django.utils.timezone.now)),
                ('fecha_mantenimiento', models.DateTimeField(blank=True, null=True)),
                ('fecha_baja', models.DateTimeField(blank=True, null=True)),
                ('disponible_para_entrega', models.BooleanField(default=True, help_text='Falso mientras el equipo no haya sido aceptado por una auxiliar administrativa')),
                ('creado_en', models.DateTimeField(auto_now_add=True)),
                ('modificado_en', models.DateTimeField(auto_now=True)),
                ('acta_interna_pendiente', models.ForeignKey(blank=True, help_text='Acta interna enviada y aún no aceptada que incluye este equipo', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='equipos_pendientes', to='equipos.actainterna')),
                ('creado_por', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='equipos_creados', to=settings.AUTH_USER_MODEL)),
                ('custodio', models.ForeignKey(blank=True, help_text='Usuario con la custodia técnica actual (vacío en equipos legacy)', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='equipos_en_custodia', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Equipo',
                'verbose_name_plural': 'Equipos',
                'ordering': ['codigo_inventario'],
                'indexes': [
                    models.Index(fields=['estado'], name='equipo_estado_idx'),
                    models.Index(fields=['tipo_propiedad'], name='equipo_tipo_propiedad_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('acta_interna_pendiente__isnull', True), ('disponible_para_entrega', False), _connector='OR'), name='equipo_pendiente_no_disponible'),
                    models.UniqueConstraint(condition=models.Q(('numero_serie', ''), _negated=True), fields=('numero_serie',), name='equipo_numero_serie_unico'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ActaInternaItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('orden', models.PositiveIntegerField()),
                ('codigo_inventario', models.CharField(max_length=20)),
                ('numero_serie', models.CharField(blank=True, max_length=100)),
                ('nombre', models.CharField(max_length=200)),
                ('marca', models.CharField(blank=True, max_length=100)),
                ('modelo', models.CharField(blank=True, max_length=100)),
                ('estado', models.CharField(blank=True, help_text='Estado técnico al momento de la entrega', max_length=20)),
                ('acta', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='equipos.actainterna')),
                ('equipo', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='items_actas_internas', to='equipos.equipo')),
            ],
            options={
                'verbose_name': 'Ítem del Acta Interna',
                'verbose_name_plural': 'Ítems del Acta Interna',
                'ordering': ['acta', 'orden'],
                'unique_together': {('acta', 'equipo')},
            },
        ),
        migrations.CreateModel(
            name='HistorialCambio',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('fecha', models.DateTimeField(auto_now_add=True)),
                ('campo', models.CharField(max_length=100)),
                ('valor_anterior', models.TextField(blank=True)),
                ('valor_nuevo', models.TextField(blank=True)),
                ('equipo', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='historial_cambios', to='equipos.equipo')),
                ('usuario', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Historial de Cambio',
                'verbose_name_plural': 'Historial de Cambios',
                'ordering': ['-fecha', '-id'],
            },
        ),
        migrations.CreateModel(
            name='Asignacion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('consecutivo', models.PositiveIntegerField(editable=False)),
                ('tipo_titular', models.CharField(choices=[('PACIENTE', 'Paciente'), ('PROFESIONAL', 'Profesional')], max_length=12)),
                ('estado', models.CharField(choices=[('ACTIVA', 'Activa'), ('FINALIZADA', 'Finalizada')], default='ACTIVA', max_length=12)),
                ('fecha_entrega', models.DateTimeField(help_text='Fecha real de entrega (puede ser histórica)')),
                ('fecha_registro', models.DateTimeField(auto_now_add=True)),
                ('fecha_devolucion', models.DateTimeField(blank=True, null=True)),
                ('observaciones_entrega', models.TextField(blank=True)),
                ('observaciones_devolucion', models.TextField(blank=True)),
                ('estado_final_equipo', models.CharField(blank=True, choices=ESTADOS_EQUIPO, help_text='Estado del equipo reportado al devolver', max_length=20)),
                ('ciudad', models.CharField(blank=True, max_length=100)),
                ('sede', models.CharField(blank=True, max_length=100)),
                ('firma_titular_entrega', models.TextField(blank=True)),
                ('firma_titular_devolucion', models.TextField(blank=True)),
                ('firma_auxiliar', models.TextField(blank=True)),
                ('firma_entrega_capturada_en', models.DateTimeField(blank=True, null=True)),
                ('firma_entrega_capturada_por_nombre', models.CharField(blank=True, max_length=200)),
                ('usuario_asigna', models.CharField(blank=True, max_length=200)),
                ('asignado_por', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='asignaciones_registradas', to=settings.AUTH_USER_MODEL)),
                ('equipo', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='asignaciones', to='equipos.equipo')),
                ('firma_entrega_capturada_por', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='firmas_capturadas', to=settings.AUTH_USER_MODEL)),
                ('paciente', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='asignaciones', to='equipos.paciente')),
                ('profesional', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='asignaciones', to='equipos.profesional')),
            ],
            options={
                'verbose_name': 'Asignación',
                'verbose_name_plural': 'Asignaciones',
                'ordering': ['-fecha_entrega'],
                'indexes': [
                    models.Index(fields=['equipo', 'estado'], name='asignacion_equipo_idx'),
                    models.Index(fields=['paciente', 'estado'], name='asignacion_paciente_idx'),
                    models.Index(fields=['profesional', 'estado'], name='asignacion_profesional_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('estado', 'ACTIVA')), fields=('equipo',), name='asignacion_activa_unica_por_equipo'),
                    models.UniqueConstraint(fields=('tipo_titular', 'consecutivo'), name='asignacion_consecutivo_unico_por_serie'),
                    models.CheckConstraint(condition=models.Q(models.Q(('paciente__isnull', False), ('profesional__isnull', True), ('tipo_titular', 'PACIENTE')), models.Q(('paciente__isnull', True), ('profesional__isnull', False), ('tipo_titular', 'PROFESIONAL')), _connector='OR'), name='asignacion_titular_coherente'),
                ],
            },
        ),
    ]
