"""
Pruebas automatizadas del motor de custodia y préstamo de equipos
==================================================================
Ejecutar con: python manage.py test equipos
"""

import json
from datetime import timedelta
from io import StringIO
from unittest import mock

from django.contrib.auth.models import User
from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import IntegrityError, transaction
from django.test import TestCase, RequestFactory, override_settings
from django.urls import reverse, NoReverseMatch
from django.utils import timezone

from .exceptions import (
    ConflictoConcurrencia, ErrorValidacion, NoEncontrado, PermisoDenegado,
    PrecondicionFallida,
)
from .models import (
    ActaInterna, ActaInternaItem, Asignacion, Equipo, HistorialCambio,
    Paciente, PerfilUsuario, Profesional,
)
from .services.actas_internas import (
    aceptar_acta_interna, anular_acta_interna, crear_acta_interna,
)
from .services.asignaciones import (
    crear_asignacion, devolver_asignacion, egresar_paciente, registrar_firma_entrega,
)
from .services.consecutivos import siguiente_codigo_inventario, siguiente_numero
from .services.estado import (
    equipos_prestables, es_prestable, estado_efectivo, estados_efectivos,
)
from .services.inventario import (
    cambiar_estado_intrinseco, fijar_bloqueo_custodia, registrar_equipo,
)
from .services.titulares import registrar_paciente, registrar_profesional


PASSWORD = 'test123'
FIRMA = 'data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=='

PACIENTE = Asignacion.TipoTitular.PACIENTE
PROFESIONAL = Asignacion.TipoTitular.PROFESIONAL


def crear_usuario(username, rol, email=''):
    usuario = User.objects.create_user(username, email=email, password=PASSWORD)
    PerfilUsuario.objects.create(usuario=usuario, rol=rol, activo=True)
    return usuario


def crear_equipo(usuario, **datos):
    base = {'nombre': 'Concentrador de oxígeno', 'marca': 'Philips', 'modelo': 'EverFlo'}
    base.update(datos)
    return registrar_equipo(base, usuario)


def crear_equipo_legacy(**datos):
    """Equipo anterior al flujo de custodia: sin custodio y habilitado."""
    base = {'nombre': 'CAMA HOSPITALARIA', 'marca': 'HILL-ROM', 'modelo': 'ADVANTA'}
    base.update(datos)
    return Equipo.objects.create(**base)


class CustodiaTestCase(TestCase):
    """Usuarios y titulares comunes a las pruebas del motor."""

    @classmethod
    def setUpTestData(cls):
        cls.ingeniero = crear_usuario('ingeniero', PerfilUsuario.Rol.INGENIERO_BIOMEDICO, 'ingeniero@test.com')
        cls.ingeniero2 = crear_usuario('ingeniero2', PerfilUsuario.Rol.INGENIERO_BIOMEDICO)
        cls.auxiliar = crear_usuario('auxiliar', PerfilUsuario.Rol.AUXILIAR_ADMINISTRATIVA, 'auxiliar@test.com')
        cls.auxiliar2 = crear_usuario('auxiliar2', PerfilUsuario.Rol.AUXILIAR_ADMINISTRATIVA)
        cls.visitador = crear_usuario('visitador', PerfilUsuario.Rol.VISITADOR)
        cls.gerencia = crear_usuario('gerencia', PerfilUsuario.Rol.GERENCIA)

        cls.paciente = registrar_paciente({'nombre_completo': 'Ana Ruiz', 'numero_documento': '1001'})
        cls.paciente2 = registrar_paciente({'nombre_completo': 'Luis Mora', 'numero_documento': '1002'})
        cls.profesional = registrar_profesional(
            {'nombre': 'Laura Restrepo', 'cedula': '2001', 'cargo': 'Fisioterapeuta'},
            cls.gerencia
        )

    def enviar_acta(self, equipos, recibe=None, entrega=None):
        return crear_acta_interna(
            entrega or self.ingeniero,
            [e.pk for e in equipos],
            FIRMA,
            recibe_id=(recibe or self.auxiliar).pk,
            cargo_recibe='Auxiliar administrativa',
        )

    def equipo_habilitado(self, recibe=None):
        """Equipo registrado que ya pasó por un acta interna aceptada."""
        recibe = recibe or self.auxiliar
        equipo = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([equipo], recibe=recibe)
        aceptar_acta_interna(acta.pk, recibe, FIRMA)
        equipo.refresh_from_db()
        return equipo


# ============================================================================
# PRUEBAS DE URLs
# ============================================================================

class URLConfigurationTests(TestCase):
    """Pruebas para verificar que las URLs están correctamente configuradas"""

    def test_urls_actas_internas(self):
        """Las URLs de actas internas resuelven bajo /equipos/api/"""
        try:
            self.assertEqual(reverse('equipos:acta-interna-crear'), '/equipos/api/actas-internas/')
            self.assertEqual(
                reverse('equipos:acta-interna-aceptar', kwargs={'pk': 1}),
                '/equipos/api/actas-internas/1/aceptar/'
            )
            self.assertEqual(
                reverse('equipos:acta-interna-anular', kwargs={'pk': 1}),
                '/equipos/api/actas-internas/1/anular/'
            )
        except NoReverseMatch:
            self.fail("Las URLs de actas internas no están configuradas")

    def test_urls_asignaciones(self):
        """Las URLs de asignaciones y egreso resuelven"""
        self.assertEqual(reverse('equipos:asignacion-crear'), '/equipos/api/asignaciones/')
        self.assertEqual(
            reverse('equipos:asignacion-devolver', kwargs={'pk': 3}),
            '/equipos/api/asignaciones/3/devolver/'
        )
        self.assertEqual(
            reverse('equipos:asignacion-firma-entrega', kwargs={'pk': 3}),
            '/equipos/api/asignaciones/3/firma-entrega/'
        )
        self.assertEqual(
            reverse('equipos:paciente-egreso', kwargs={'pk': 2}),
            '/equipos/api/pacientes/2/egreso/'
        )
        self.assertEqual(
            reverse('equipos:equipo-estado', kwargs={'pk': 5}),
            '/equipos/api/equipos/5/estado/'
        )


# ============================================================================
# PRUEBAS DE CONSECUTIVOS
# ============================================================================

class ConsecutivosTests(CustodiaTestCase):
    """Pruebas para la numeración de series y códigos de inventario"""

    def test_pacientes_numerados_en_orden(self):
        """Cada paciente nuevo toma el siguiente consecutivo"""
        self.assertEqual(self.paciente.consecutivo, 1)
        self.assertEqual(self.paciente2.consecutivo, 2)
        nuevo = registrar_paciente({'nombre_completo': 'Carla Díaz', 'numero_documento': '1003'})
        self.assertEqual(nuevo.consecutivo, 3)

    def test_serie_vacia_empieza_en_uno(self):
        """Una serie sin registros retorna 1"""
        with transaction.atomic():
            self.assertEqual(siguiente_numero('actas_internas'), 1)

    def test_serie_desconocida(self):
        """Una serie que no existe lanza ValueError"""
        with transaction.atomic():
            with self.assertRaises(ValueError):
                siguiente_numero('inexistente')

    def test_series_independientes_por_tipo_de_titular(self):
        """Pacientes y profesionales tienen su propia numeración de asignaciones"""
        e1 = crear_equipo_legacy()
        e2 = crear_equipo_legacy()
        e3 = crear_equipo_legacy()

        a1 = crear_asignacion(e1.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)
        a2 = crear_asignacion(e2.pk, self.profesional.pk, PROFESIONAL, usuario=self.gerencia)
        a3 = crear_asignacion(e3.pk, self.paciente2.pk, PACIENTE, usuario=self.gerencia)

        self.assertEqual(a1.consecutivo, 1)
        self.assertEqual(a2.consecutivo, 1)
        self.assertEqual(a3.consecutivo, 2)
        self.assertEqual(a3.numero_display, '0002')

    def test_codigos_por_prefijo(self):
        """Cada tipo de propiedad numera sus códigos por separado"""
        propio1 = crear_equipo(self.ingeniero)
        propio2 = crear_equipo(self.ingeniero)
        alquilado = crear_equipo(
            self.ingeniero,
            tipo_propiedad=Equipo.TipoPropiedad.ALQUILADO,
            propietario_nombre='Alquimed',
        )
        self.assertEqual(propio1.codigo_inventario, 'MBG-001')
        self.assertEqual(propio2.codigo_inventario, 'MBG-002')
        self.assertEqual(alquilado.codigo_inventario, 'MBA-001')

    def test_codigo_crece_despues_de_999(self):
        """Pasado 999 el número sigue creciendo sin volver a empezar"""
        Equipo(codigo_inventario='MBG-999', nombre='A', marca='B', modelo='C').save()
        with transaction.atomic():
            self.assertEqual(siguiente_codigo_inventario('MBG-'), 'MBG-1000')

        Equipo(codigo_inventario='MBG-1000', nombre='A', marca='B', modelo='C').save()
        with transaction.atomic():
            self.assertEqual(siguiente_codigo_inventario('MBG-'), 'MBG-1001')

    def test_consecutivo_duplicado_lo_rechaza_la_base_de_datos(self):
        """La restricción única sobre consecutivo es el respaldo ante carreras"""
        datos = {
            'entrega': self.ingeniero, 'entrega_nombre': 'Ingeniero',
            'recibe': self.auxiliar, 'recibe_nombre': 'Auxiliar',
            'cargo_recibe': 'Auxiliar', 'firma_entrega': FIRMA,
        }
        primera = ActaInterna.objects.create(**datos)
        self.assertEqual(primera.consecutivo, 1)

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                ActaInterna(consecutivo=1, **datos).save()


# ============================================================================
# PRUEBAS DE REGISTRO DE EQUIPOS
# ============================================================================

class RegistroEquiposTests(CustodiaTestCase):
    """Pruebas para el registro de equipos y su estado intrínseco"""

    def test_registro_normaliza_y_bloquea(self):
        """El equipo nuevo queda en mayúsculas, bajo custodia de quien lo registra y bloqueado"""
        equipo = crear_equipo(self.ingeniero, nombre='concentrador', numero_serie='abc-1')

        self.assertEqual(equipo.nombre, 'CONCENTRADOR')
        self.assertEqual(equipo.numero_serie, 'ABC-1')
        self.assertEqual(equipo.codigo_inventario, 'MBG-001')
        self.assertEqual(equipo.custodio, self.ingeniero)
        self.assertEqual(equipo.creado_por, self.ingeniero)
        self.assertFalse(equipo.disponible_para_entrega)
        self.assertEqual(equipo.estado, Equipo.Estado.DISPONIBLE)

    def test_registro_habilitado_explicito(self):
        """Quien registra puede dejar el equipo habilitado para entrega"""
        equipo = crear_equipo(self.ingeniero, disponible_para_entrega=True)
        self.assertTrue(equipo.disponible_para_entrega)

    def test_habilitacion_debe_ser_booleana(self):
        """Textos como "false" o números no se toman como habilitación"""
        for valor in ('false', 'true', 1):
            with self.assertRaises(ErrorValidacion):
                crear_equipo(self.ingeniero, disponible_para_entrega=valor)
        self.assertEqual(Equipo.objects.count(), 0)

    def test_campos_obligatorios(self):
        """Sin nombre, marca o modelo no se registra"""
        for campo in ('nombre', 'marca', 'modelo'):
            with self.assertRaises(ErrorValidacion):
                crear_equipo(self.ingeniero, **{campo: '  '})
        self.assertEqual(Equipo.objects.count(), 0)

    def test_tercero_sin_propietario(self):
        """Un equipo de terceros debe registrar el propietario"""
        with self.assertRaises(ErrorValidacion):
            crear_equipo(self.ingeniero, tipo_propiedad=Equipo.TipoPropiedad.PACIENTE)

        equipo = crear_equipo(
            self.ingeniero,
            tipo_propiedad=Equipo.TipoPropiedad.PACIENTE,
            propietario_nombre='Ana Ruiz',
        )
        self.assertEqual(equipo.codigo_inventario, 'MBP-001')
        self.assertTrue(equipo.es_de_terceros)

    def test_no_se_registra_asignado(self):
        """El estado inicial no puede ser ASIGNADO"""
        with self.assertRaises(ErrorValidacion):
            crear_equipo(self.ingeniero, estado=Equipo.Estado.ASIGNADO)

    def test_serial_duplicado(self):
        """El número de serie no se puede repetir (sin importar mayúsculas)"""
        crear_equipo(self.ingeniero, numero_serie='SN-100')
        with self.assertRaises(ErrorValidacion):
            crear_equipo(self.ingeniero, numero_serie='sn-100')

    def test_seriales_vacios_no_chocan(self):
        """Varios equipos sin serial conviven"""
        crear_equipo(self.ingeniero)
        crear_equipo(self.ingeniero)
        self.assertEqual(Equipo.objects.filter(numero_serie='').count(), 2)

    def test_cambiar_estado_intrinseco(self):
        """Mantenimiento y baja registran su fecha"""
        equipo = crear_equipo(self.ingeniero)

        equipo = cambiar_estado_intrinseco(equipo.pk, Equipo.Estado.MANTENIMIENTO, self.ingeniero)
        self.assertEqual(equipo.estado, Equipo.Estado.MANTENIMIENTO)
        self.assertIsNotNone(equipo.fecha_mantenimiento)

        equipo = cambiar_estado_intrinseco(equipo.pk, Equipo.Estado.DADO_DE_BAJA, self.ingeniero)
        self.assertIsNotNone(equipo.fecha_baja)

    def test_cambiar_estado_a_asignado_rechazado(self):
        """ASIGNADO solo se obtiene con una asignación"""
        equipo = crear_equipo(self.ingeniero)
        with self.assertRaises(ErrorValidacion):
            cambiar_estado_intrinseco(equipo.pk, Equipo.Estado.ASIGNADO, self.ingeniero)

    def test_cambiar_estado_equipo_inexistente(self):
        """Un id desconocido lanza NoEncontrado"""
        with self.assertRaises(NoEncontrado):
            cambiar_estado_intrinseco(999999, Equipo.Estado.MANTENIMIENTO, self.ingeniero)

    def test_bloqueo_no_admite_pendiente_disponible(self):
        """No se puede dejar un equipo disponible con un acta pendiente"""
        otro = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([otro])
        equipo = crear_equipo(self.ingeniero)

        with self.assertRaises(ErrorValidacion):
            fijar_bloqueo_custodia(equipo, self.ingeniero, acta, True)

    def test_restriccion_pendiente_implica_bloqueado(self):
        """La base de datos rechaza pendiente + disponible aunque se salte el service"""
        equipo = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([equipo])

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Equipo.objects.filter(pk=equipo.pk).update(disponible_para_entrega=True)
        equipo.refresh_from_db()
        self.assertEqual(equipo.acta_interna_pendiente, acta)

    def test_clean_rechaza_pendiente_disponible(self):
        """El modelo valida la misma regla en full_clean"""
        otro = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([otro])
        equipo = Equipo(
            codigo_inventario='MBG-900', nombre='A', marca='B', modelo='C',
            acta_interna_pendiente=acta, disponible_para_entrega=True,
        )
        with self.assertRaises(ValidationError):
            equipo.full_clean()


# ============================================================================
# PRUEBAS DE HISTORIAL
# ============================================================================

class HistorialTests(CustodiaTestCase):
    """Pruebas para el historial de cambios de custodia"""

    def test_creacion_registrada(self):
        """Registrar un equipo deja una entrada de creación"""
        equipo = crear_equipo(self.ingeniero)
        creacion = HistorialCambio.objects.get(equipo=equipo, campo='_creacion')
        self.assertEqual(creacion.usuario, self.ingeniero)
        self.assertIn(equipo.codigo_inventario, creacion.valor_nuevo)

    def test_aceptacion_registra_custodia(self):
        """Aceptar un acta registra custodio, habilitación y acta pendiente"""
        equipo = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([equipo])
        aceptar_acta_interna(acta.pk, self.auxiliar, FIRMA)

        cambios = HistorialCambio.objects.filter(equipo=equipo, usuario=self.auxiliar)
        campos = set(cambios.values_list('campo', flat=True))
        self.assertEqual(campos, {'custodio', 'disponible_para_entrega', 'acta_interna_pendiente'})

        custodio = cambios.get(campo='custodio')
        self.assertEqual(custodio.valor_anterior, 'ingeniero')
        self.assertEqual(custodio.valor_nuevo, 'auxiliar')

    def test_entrega_y_devolucion_en_historial(self):
        """Entregas y devoluciones quedan en la hoja de vida del equipo"""
        equipo = crear_equipo_legacy()
        asignacion = crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)
        devolver_asignacion(asignacion.pk, estado_final=Equipo.Estado.DISPONIBLE, usuario=self.gerencia)

        self.assertTrue(HistorialCambio.objects.filter(equipo=equipo, campo='_asignacion').exists())
        devolucion = HistorialCambio.objects.get(equipo=equipo, campo='_devolucion')
        self.assertEqual(devolucion.usuario, self.gerencia)
        self.assertIn('DISPONIBLE', devolucion.valor_nuevo)


# ============================================================================
# PRUEBAS DE ESTADO EFECTIVO
# ============================================================================

class EstadoEfectivoTests(CustodiaTestCase):
    """Pruebas para el cálculo del estado efectivo"""

    def finalizada(self, equipo, estado_final, entrega, devolucion):
        return Asignacion.objects.create(
            tipo_titular=PACIENTE,
            paciente=self.paciente,
            equipo=equipo,
            estado=Asignacion.Estado.FINALIZADA,
            fecha_entrega=entrega,
            fecha_devolucion=devolucion,
            estado_final_equipo=estado_final,
        )

    def test_sin_asignaciones_usa_estado_intrinseco(self):
        """Sin historial manda el campo estado"""
        equipo = crear_equipo_legacy(estado=Equipo.Estado.MANTENIMIENTO)
        self.assertEqual(estado_efectivo(equipo), Equipo.Estado.MANTENIMIENTO)

    def test_asignacion_activa(self):
        """Con una asignación activa el equipo está ASIGNADO"""
        equipo = crear_equipo_legacy()
        crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)
        self.assertEqual(estado_efectivo(equipo), Equipo.Estado.ASIGNADO)
        self.assertEqual(equipo.estado, Equipo.Estado.DISPONIBLE)

    def test_ultima_devolucion_manda(self):
        """Se toma el estado de la devolución más reciente, no de la última entrega"""
        equipo = crear_equipo_legacy()
        ahora = timezone.now()
        self.finalizada(equipo, Equipo.Estado.DADO_DE_BAJA, ahora - timedelta(days=10), ahora - timedelta(days=5))
        self.finalizada(equipo, Equipo.Estado.MANTENIMIENTO, ahora - timedelta(days=20), ahora - timedelta(days=2))

        self.assertEqual(estado_efectivo(equipo), Equipo.Estado.MANTENIMIENTO)

    def test_devolucion_sin_estado_se_ignora(self):
        """Las devoluciones sin estado reportado no cuentan"""
        equipo = crear_equipo_legacy()
        ahora = timezone.now()
        self.finalizada(equipo, Equipo.Estado.MANTENIMIENTO, ahora - timedelta(days=10), ahora - timedelta(days=5))
        self.finalizada(equipo, '', ahora - timedelta(days=3), ahora - timedelta(days=1))

        self.assertEqual(estado_efectivo(equipo), Equipo.Estado.MANTENIMIENTO)

    def test_empate_en_devolucion_gana_la_entrega_mas_reciente(self):
        """Con la misma fecha de devolución manda la entrega más reciente"""
        equipo = crear_equipo_legacy()
        ahora = timezone.now()
        devolucion = ahora - timedelta(days=1)
        self.finalizada(equipo, Equipo.Estado.MANTENIMIENTO, ahora - timedelta(days=3), devolucion)
        self.finalizada(equipo, Equipo.Estado.DADO_DE_BAJA, ahora - timedelta(days=10), devolucion)

        self.assertEqual(estado_efectivo(equipo), Equipo.Estado.MANTENIMIENTO)
        self.assertEqual(estados_efectivos([equipo])[equipo.pk], Equipo.Estado.MANTENIMIENTO)

    def test_estados_en_lote(self):
        """El cálculo en lote coincide con el cálculo individual"""
        libre = crear_equipo_legacy()
        prestado = crear_equipo_legacy()
        reparando = crear_equipo_legacy()
        crear_asignacion(prestado.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)
        ahora = timezone.now()
        self.finalizada(reparando, Equipo.Estado.MANTENIMIENTO, ahora - timedelta(days=3), ahora - timedelta(days=1))

        estados = estados_efectivos([libre, prestado, reparando])
        for equipo in (libre, prestado, reparando):
            self.assertEqual(estados[equipo.pk], estado_efectivo(equipo))
        self.assertEqual(estados[prestado.pk], Equipo.Estado.ASIGNADO)

    def test_equipos_prestables_por_custodio(self):
        """Las auxiliares solo ven sus equipos y los legacy; gerencia ve todos"""
        propio = self.equipo_habilitado()
        legacy = crear_equipo_legacy()
        crear_equipo(self.ingeniero)  # bloqueado

        self.assertEqual({e.pk for e in equipos_prestables(self.auxiliar)}, {propio.pk, legacy.pk})
        self.assertEqual({e.pk for e in equipos_prestables(self.auxiliar2)}, {legacy.pk})
        self.assertEqual({e.pk for e in equipos_prestables(self.gerencia)}, {propio.pk, legacy.pk})

        self.assertTrue(es_prestable(propio, self.auxiliar))
        self.assertFalse(es_prestable(propio, self.auxiliar2))


# ============================================================================
# PRUEBAS DE ASIGNACIONES
# ============================================================================

class AsignacionesTests(CustodiaTestCase):
    """Pruebas para entregas, devoluciones y egresos"""

    def test_escenario_completo(self):
        """Acta interna, aceptación, entrega, rechazo por ocupado y devolución"""
        e1 = crear_equipo_legacy()
        self.assertTrue(e1.disponible_para_entrega)
        self.assertIsNone(e1.custodio)

        # 1. El ingeniero envía el acta
        t1 = self.enviar_acta([e1])
        e1.refresh_from_db()
        self.assertEqual(t1.estado, ActaInterna.Estado.ENVIADA)
        self.assertFalse(e1.disponible_para_entrega)
        self.assertEqual(e1.acta_interna_pendiente_id, t1.pk)

        # 2. No se puede entregar mientras esté bloqueado
        with self.assertRaises(PrecondicionFallida) as ctx:
            crear_asignacion(e1.pk, self.paciente.pk, PACIENTE, usuario=self.auxiliar)
        self.assertEqual(ctx.exception.regla, 'entrega_bloqueada')

        # 3. La auxiliar acepta
        aceptar_acta_interna(t1.pk, self.auxiliar, FIRMA)
        t1.refresh_from_db()
        e1.refresh_from_db()
        self.assertEqual(t1.estado, ActaInterna.Estado.ACEPTADA)
        self.assertTrue(e1.disponible_para_entrega)
        self.assertEqual(e1.custodio, self.auxiliar)
        self.assertIsNone(e1.acta_interna_pendiente)

        # 4. Entrega al paciente
        a1 = crear_asignacion(e1.pk, self.paciente.pk, PACIENTE, usuario=self.auxiliar)
        self.assertEqual(a1.consecutivo, 1)
        self.assertEqual(a1.estado, Asignacion.Estado.ACTIVA)
        self.assertEqual(estado_efectivo(e1), Equipo.Estado.ASIGNADO)

        # 5. No se puede entregar dos veces
        with self.assertRaises(PrecondicionFallida) as ctx:
            crear_asignacion(e1.pk, self.paciente2.pk, PACIENTE, usuario=self.auxiliar)
        self.assertEqual(ctx.exception.regla, 'equipo_no_disponible')

        # 6. Devolución a mantenimiento
        devolver_asignacion(a1.pk, estado_final=Equipo.Estado.MANTENIMIENTO)
        a1.refresh_from_db()
        self.assertEqual(a1.estado, Asignacion.Estado.FINALIZADA)
        self.assertIsNotNone(a1.fecha_devolucion)
        self.assertEqual(estado_efectivo(e1), Equipo.Estado.MANTENIMIENTO)

    def test_registra_quien_asigna(self):
        """La asignación guarda el usuario y la fecha de registro"""
        equipo = crear_equipo_legacy()
        asignacion = crear_asignacion(
            equipo.pk, self.profesional.pk, PROFESIONAL, usuario=self.gerencia,
            ciudad='medellín', sede='principal', observaciones_entrega='  con cargador ',
        )
        self.assertEqual(asignacion.asignado_por, self.gerencia)
        self.assertEqual(asignacion.usuario_asigna, 'gerencia')
        self.assertEqual(asignacion.titular, self.profesional)
        self.assertEqual(asignacion.ciudad, 'MEDELLÍN')
        self.assertEqual(asignacion.observaciones_entrega, 'con cargador')
        self.assertIsNotNone(asignacion.fecha_registro)

    def test_fecha_entrega_historica(self):
        """Se acepta una fecha de entrega anterior en formato ISO"""
        equipo = crear_equipo_legacy()
        asignacion = crear_asignacion(
            equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia,
            fecha_entrega='2024-03-01T10:00:00',
        )
        self.assertEqual(asignacion.fecha_entrega.year, 2024)

    def test_fecha_entrega_invalida(self):
        """Una fecha mal formada es un error de validación"""
        equipo = crear_equipo_legacy()
        with self.assertRaises(ErrorValidacion):
            crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, fecha_entrega='ayer')

    def test_custodio_distinto(self):
        """Una auxiliar no entrega equipos bajo custodia de otra; gerencia sí"""
        equipo = self.equipo_habilitado()

        with self.assertRaises(PrecondicionFallida) as ctx:
            crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.auxiliar2)
        self.assertEqual(ctx.exception.regla, 'custodio_distinto')

        with self.assertRaises(PrecondicionFallida):
            crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.ingeniero)

        asignacion = crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)
        self.assertEqual(asignacion.estado, Asignacion.Estado.ACTIVA)

    def test_equipo_en_mantenimiento_no_se_presta(self):
        """El estado intrínseco de mantenimiento impide la entrega"""
        equipo = crear_equipo_legacy()
        cambiar_estado_intrinseco(equipo.pk, Equipo.Estado.MANTENIMIENTO, self.gerencia)
        with self.assertRaises(PrecondicionFallida) as ctx:
            crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)
        self.assertEqual(ctx.exception.regla, 'equipo_no_disponible')

    def test_titular_inexistente(self):
        """Un titular desconocido lanza NoEncontrado sin escribir"""
        equipo = crear_equipo_legacy()
        with self.assertRaises(NoEncontrado):
            crear_asignacion(equipo.pk, 999999, PACIENTE, usuario=self.gerencia)
        self.assertFalse(Asignacion.objects.exists())

    def test_equipo_inexistente(self):
        """Un equipo desconocido lanza NoEncontrado"""
        with self.assertRaises(NoEncontrado):
            crear_asignacion(999999, self.paciente.pk, PACIENTE, usuario=self.gerencia)

    def test_tipo_titular_invalido(self):
        """Solo se admite PACIENTE o PROFESIONAL"""
        equipo = crear_equipo_legacy()
        with self.assertRaises(ErrorValidacion):
            crear_asignacion(equipo.pk, self.paciente.pk, 'FAMILIAR', usuario=self.gerencia)

    def test_devolver_dos_veces(self):
        """Una asignación se finaliza una sola vez"""
        equipo = crear_equipo_legacy()
        asignacion = crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)
        devolver_asignacion(asignacion.pk, estado_final=Equipo.Estado.DISPONIBLE)

        with self.assertRaises(PrecondicionFallida) as ctx:
            devolver_asignacion(asignacion.pk, estado_final=Equipo.Estado.MANTENIMIENTO)
        self.assertEqual(ctx.exception.regla, 'asignacion_finalizada')

        asignacion.refresh_from_db()
        self.assertEqual(asignacion.estado_final_equipo, Equipo.Estado.DISPONIBLE)

    def test_devolver_como_asignado(self):
        """El estado final no puede ser ASIGNADO ni un valor desconocido"""
        equipo = crear_equipo_legacy()
        asignacion = crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)
        with self.assertRaises(ErrorValidacion):
            devolver_asignacion(asignacion.pk, estado_final=Equipo.Estado.ASIGNADO)
        with self.assertRaises(ErrorValidacion):
            devolver_asignacion(asignacion.pk, estado_final='PERDIDO')

        asignacion.refresh_from_db()
        self.assertEqual(asignacion.estado, Asignacion.Estado.ACTIVA)

    def test_devolucion_habilita_nueva_entrega(self):
        """Devuelto como DISPONIBLE el equipo se puede volver a entregar"""
        equipo = self.equipo_habilitado()
        a1 = crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.auxiliar)
        devolver_asignacion(a1.pk, estado_final=Equipo.Estado.DISPONIBLE)
        a2 = crear_asignacion(equipo.pk, self.paciente2.pk, PACIENTE, usuario=self.auxiliar)
        self.assertEqual(a2.consecutivo, 2)

    def test_egreso_con_equipos_asignados(self):
        """El egreso se rechaza mientras el paciente tenga equipos"""
        equipo = crear_equipo_legacy()
        asignacion = crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)

        self.assertFalse(egresar_paciente(self.paciente.pk))
        self.paciente.refresh_from_db()
        self.assertEqual(self.paciente.estado, Paciente.Estado.ACTIVO)
        self.assertIsNone(self.paciente.fecha_salida)

        devolver_asignacion(asignacion.pk, estado_final=Equipo.Estado.DISPONIBLE)
        self.assertTrue(egresar_paciente(self.paciente.pk))
        self.paciente.refresh_from_db()
        self.assertEqual(self.paciente.estado, Paciente.Estado.EGRESADO)
        self.assertIsNotNone(self.paciente.fecha_salida)

    def test_paciente_egresado_no_recibe_equipos(self):
        """Un paciente egresado no es elegible"""
        egresar_paciente(self.paciente2.pk)
        equipo = crear_equipo_legacy()
        with self.assertRaises(PrecondicionFallida) as ctx:
            crear_asignacion(equipo.pk, self.paciente2.pk, PACIENTE, usuario=self.gerencia)
        self.assertEqual(ctx.exception.regla, 'titular_no_activo')

    def test_egreso_paciente_inexistente(self):
        """Egresar un paciente desconocido lanza NoEncontrado"""
        with self.assertRaises(NoEncontrado):
            egresar_paciente(999999)

    def test_indice_unico_de_asignacion_activa(self):
        """La base de datos impide dos asignaciones activas del mismo equipo"""
        equipo = crear_equipo_legacy()
        Asignacion.objects.create(
            tipo_titular=PACIENTE, paciente=self.paciente, equipo=equipo,
            fecha_entrega=timezone.now(),
        )
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Asignacion.objects.create(
                    tipo_titular=PROFESIONAL, profesional=self.profesional, equipo=equipo,
                    fecha_entrega=timezone.now(),
                )

    def test_titular_incoherente_rechazado(self):
        """El tipo de titular debe corresponder al titular guardado"""
        equipo = crear_equipo_legacy()
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Asignacion.objects.create(
                    tipo_titular=PROFESIONAL, paciente=self.paciente, equipo=equipo,
                    fecha_entrega=timezone.now(),
                )

    def test_conflicto_concurrente(self):
        """Si otra transacción gana la carrera se lanza ConflictoConcurrencia"""
        equipo = crear_equipo_legacy()
        crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)

        with mock.patch('equipos.services.asignaciones.verificar_prestable'):
            with self.assertRaises(ConflictoConcurrencia):
                crear_asignacion(equipo.pk, self.paciente2.pk, PACIENTE, usuario=self.gerencia)

        self.assertEqual(Asignacion.objects.filter(equipo=equipo).count(), 1)


class FirmaEntregaTests(CustodiaTestCase):
    """Pruebas para la firma de entrega capturada por el visitador"""

    def setUp(self):
        equipo = crear_equipo_legacy()
        self.asignacion = crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)

    def test_visitador_registra_firma(self):
        """El visitador guarda la firma con los datos de captura"""
        registrar_firma_entrega(self.asignacion.pk, FIRMA, self.visitador, 'Pedro Visitador')
        self.asignacion.refresh_from_db()
        self.assertEqual(self.asignacion.firma_titular_entrega, FIRMA)
        self.assertEqual(self.asignacion.firma_entrega_capturada_por, self.visitador)
        self.assertEqual(self.asignacion.firma_entrega_capturada_por_nombre, 'Pedro Visitador')
        self.assertIsNotNone(self.asignacion.firma_entrega_capturada_en)

    def test_firma_no_se_sobrescribe(self):
        """Una segunda firma se rechaza"""
        registrar_firma_entrega(self.asignacion.pk, FIRMA, self.visitador, 'Pedro Visitador')
        with self.assertRaises(PrecondicionFallida) as ctx:
            registrar_firma_entrega(self.asignacion.pk, FIRMA + 'x', self.visitador, 'Pedro Visitador')
        self.assertEqual(ctx.exception.regla, 'firma_ya_registrada')

    def test_solo_visitador(self):
        """Otros roles no registran la firma de entrega"""
        with self.assertRaises(PermisoDenegado):
            registrar_firma_entrega(self.asignacion.pk, FIRMA, self.auxiliar, 'Auxiliar')

    def test_nombre_obligatorio(self):
        """Se exige el nombre de quien captura"""
        with self.assertRaises(ErrorValidacion):
            registrar_firma_entrega(self.asignacion.pk, FIRMA, self.visitador, '  ')

    def test_asignacion_finalizada(self):
        """No se firma una asignación ya devuelta"""
        devolver_asignacion(self.asignacion.pk, estado_final=Equipo.Estado.DISPONIBLE)
        with self.assertRaises(PrecondicionFallida) as ctx:
            registrar_firma_entrega(self.asignacion.pk, FIRMA, self.visitador, 'Pedro Visitador')
        self.assertEqual(ctx.exception.regla, 'asignacion_finalizada')


# ============================================================================
# PRUEBAS DE ACTAS INTERNAS
# ============================================================================

class ActasInternasTests(CustodiaTestCase):
    """Pruebas para el traslado de custodia ingeniero -> auxiliar"""

    def test_crear_bloquea_todos_los_equipos(self):
        """Todos los equipos quedan pendientes, bloqueados y bajo custodia del ingeniero"""
        legacy = crear_equipo_legacy()
        registrado = crear_equipo(self.ingeniero, numero_serie='SN-1')
        acta = self.enviar_acta([registrado, legacy])

        self.assertEqual(acta.consecutivo, 1)
        self.assertEqual(acta.estado, ActaInterna.Estado.ENVIADA)
        self.assertEqual(acta.area, 'Biomedica')
        self.assertEqual(acta.recibe_email, 'auxiliar@test.com')

        for equipo in (legacy, registrado):
            equipo.refresh_from_db()
            self.assertEqual(equipo.acta_interna_pendiente, acta)
            self.assertFalse(equipo.disponible_para_entrega)
            self.assertEqual(equipo.custodio, self.ingeniero)

        items = list(acta.items.all())
        self.assertEqual([i.equipo_id for i in items], [registrado.pk, legacy.pk])
        self.assertEqual([i.orden for i in items], [1, 2])
        self.assertEqual(items[0].numero_serie, 'SN-1')
        self.assertEqual(items[0].codigo_inventario, registrado.codigo_inventario)

    def test_ids_duplicados_se_colapsan(self):
        """Un equipo repetido en la lista se incluye una sola vez"""
        equipo = crear_equipo(self.ingeniero)
        acta = crear_acta_interna(
            self.ingeniero, [equipo.pk, str(equipo.pk)], FIRMA,
            recibe_id=self.auxiliar.pk, cargo_recibe='Auxiliar',
        )
        self.assertEqual(acta.cantidad_items, 1)

    def test_receptor_por_email(self):
        """El receptor se puede indicar por email sin importar mayúsculas"""
        equipo = crear_equipo(self.ingeniero)
        acta = crear_acta_interna(
            self.ingeniero, [equipo.pk], FIRMA,
            recibe_email='AUXILIAR@test.com', cargo_recibe='Auxiliar',
        )
        self.assertEqual(acta.recibe, self.auxiliar)

    def test_validaciones_de_entrada(self):
        """Lista vacía, sin firma, sin cargo o sin receptor son errores de validación"""
        equipo = crear_equipo(self.ingeniero)
        casos = [
            dict(equipo_ids=[], firma_entrega=FIRMA, recibe_id=self.auxiliar.pk, cargo_recibe='A'),
            dict(equipo_ids=[equipo.pk], firma_entrega='', recibe_id=self.auxiliar.pk, cargo_recibe='A'),
            dict(equipo_ids=[equipo.pk], firma_entrega=FIRMA, recibe_id=self.auxiliar.pk, cargo_recibe=''),
            dict(equipo_ids=[equipo.pk], firma_entrega=FIRMA, cargo_recibe='A'),
            dict(equipo_ids='1,2', firma_entrega=FIRMA, recibe_id=self.auxiliar.pk, cargo_recibe='A'),
        ]
        for caso in casos:
            with self.assertRaises(ErrorValidacion):
                crear_acta_interna(self.ingeniero, **caso)
        self.assertFalse(ActaInterna.objects.exists())

    def test_ids_booleanos_o_decimales(self):
        """True o 1.9 no se aceptan como ids de equipo ni de receptor"""
        equipo = crear_equipo(self.ingeniero)
        for ids in ([True], [1.9], [equipo.pk, 2.0]):
            with self.assertRaises(ErrorValidacion):
                crear_acta_interna(
                    self.ingeniero, ids, FIRMA,
                    recibe_id=self.auxiliar.pk, cargo_recibe='Auxiliar',
                )
        with self.assertRaises(ErrorValidacion):
            crear_acta_interna(
                self.ingeniero, [equipo.pk], FIRMA,
                recibe_id=True, cargo_recibe='Auxiliar',
            )
        self.assertFalse(ActaInterna.objects.exists())

    @override_settings(ACTA_INTERNA_MAX_EQUIPOS=2)
    def test_maximo_de_equipos(self):
        """Se respeta el máximo de equipos por acta"""
        with self.assertRaises(ErrorValidacion):
            crear_acta_interna(
                self.ingeniero, [1, 2, 3], FIRMA,
                recibe_id=self.auxiliar.pk, cargo_recibe='Auxiliar',
            )

    def test_solo_ingeniero_envia(self):
        """Una auxiliar no puede enviar actas internas"""
        equipo = crear_equipo(self.ingeniero)
        with self.assertRaises(PermisoDenegado):
            self.enviar_acta([equipo], entrega=self.auxiliar, recibe=self.auxiliar2)

    def test_receptor_inexistente(self):
        """Un receptor desconocido lanza NoEncontrado"""
        equipo = crear_equipo(self.ingeniero)
        with self.assertRaises(NoEncontrado):
            crear_acta_interna(
                self.ingeniero, [equipo.pk], FIRMA,
                recibe_email='nadie@test.com', cargo_recibe='Auxiliar',
            )

    def test_receptor_no_auxiliar(self):
        """El receptor debe ser auxiliar administrativa"""
        equipo = crear_equipo(self.ingeniero)
        with self.assertRaises(PrecondicionFallida) as ctx:
            self.enviar_acta([equipo], recibe=self.visitador)
        self.assertEqual(ctx.exception.regla, 'receptor_no_auxiliar')

    def test_equipo_inexistente_no_escribe(self):
        """Un equipo desconocido aborta el acta completa"""
        equipo = crear_equipo(self.ingeniero)
        with self.assertRaises(NoEncontrado):
            crear_acta_interna(
                self.ingeniero, [equipo.pk, 999999], FIRMA,
                recibe_id=self.auxiliar.pk, cargo_recibe='Auxiliar',
            )
        equipo.refresh_from_db()
        self.assertIsNone(equipo.acta_interna_pendiente)
        self.assertFalse(ActaInterna.objects.exists())

    def test_equipo_pendiente_aborta_todo(self):
        """Si un equipo ya está pendiente no se escribe nada"""
        pendiente = crear_equipo(self.ingeniero)
        primera = self.enviar_acta([pendiente])
        legacy = crear_equipo_legacy()
        actas = ActaInterna.objects.count()
        items = ActaInternaItem.objects.count()

        with self.assertRaises(PrecondicionFallida) as ctx:
            self.enviar_acta([legacy, pendiente])
        self.assertIn(pendiente.codigo_inventario, ctx.exception.mensaje)

        self.assertEqual(ActaInterna.objects.count(), actas)
        self.assertEqual(ActaInternaItem.objects.count(), items)
        legacy.refresh_from_db()
        self.assertTrue(legacy.disponible_para_entrega)
        self.assertIsNone(legacy.custodio)
        pendiente.refresh_from_db()
        self.assertEqual(pendiente.acta_interna_pendiente, primera)

    def test_aceptar_habilita_todos(self):
        """Al aceptar todos los equipos pasan a la auxiliar y se habilitan"""
        equipos = [crear_equipo(self.ingeniero) for _ in range(3)]
        acta = self.enviar_acta(equipos)
        aceptar_acta_interna(acta.pk, self.auxiliar, FIRMA)

        acta.refresh_from_db()
        self.assertEqual(acta.estado, ActaInterna.Estado.ACEPTADA)
        self.assertEqual(acta.firma_recibe, FIRMA)
        self.assertIsNotNone(acta.aceptada_en)
        for equipo in equipos:
            equipo.refresh_from_db()
            self.assertTrue(equipo.disponible_para_entrega)
            self.assertEqual(equipo.custodio, self.auxiliar)
            self.assertIsNone(equipo.acta_interna_pendiente)

    def test_aceptar_otra_auxiliar(self):
        """Solo la auxiliar designada acepta"""
        equipo = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([equipo])
        with self.assertRaises(PermisoDenegado):
            aceptar_acta_interna(acta.pk, self.auxiliar2, FIRMA)
        with self.assertRaises(PermisoDenegado):
            aceptar_acta_interna(acta.pk, self.ingeniero, FIRMA)

    def test_aceptar_sin_firma(self):
        """La firma de quien recibe es obligatoria"""
        equipo = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([equipo])
        with self.assertRaises(ErrorValidacion):
            aceptar_acta_interna(acta.pk, self.auxiliar, '')

    def test_aceptar_inexistente(self):
        """Un acta desconocida lanza NoEncontrado"""
        with self.assertRaises(NoEncontrado):
            aceptar_acta_interna(999999, self.auxiliar, FIRMA)

    def test_doble_aceptacion(self):
        """La segunda aceptación falla y no cambia nada"""
        equipo = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([equipo])
        aceptar_acta_interna(acta.pk, self.auxiliar, FIRMA)
        acta.refresh_from_db()
        aceptada_en = acta.aceptada_en

        with self.assertRaises(PrecondicionFallida) as ctx:
            aceptar_acta_interna(acta.pk, self.auxiliar, FIRMA + 'x')
        self.assertEqual(ctx.exception.regla, 'acta_no_enviada')

        acta.refresh_from_db()
        self.assertEqual(acta.aceptada_en, aceptada_en)
        self.assertEqual(acta.firma_recibe, FIRMA)

    def test_aceptacion_atomica(self):
        """Si un equipo ya no apunta al acta no se acepta ningún equipo"""
        e1 = crear_equipo(self.ingeniero)
        e2 = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([e1, e2])
        Equipo.objects.filter(pk=e2.pk).update(acta_interna_pendiente=None)

        with self.assertRaises(PrecondicionFallida) as ctx:
            aceptar_acta_interna(acta.pk, self.auxiliar, FIRMA)
        self.assertEqual(ctx.exception.regla, 'equipo_no_pendiente')

        acta.refresh_from_db()
        e1.refresh_from_db()
        self.assertEqual(acta.estado, ActaInterna.Estado.ENVIADA)
        self.assertEqual(e1.acta_interna_pendiente, acta)
        self.assertFalse(e1.disponible_para_entrega)
        self.assertEqual(e1.custodio, self.ingeniero)

    def test_falla_en_un_equipo_revierte_la_aceptacion(self):
        """Si falla la escritura del segundo equipo no queda aceptado ninguno"""
        e1 = crear_equipo(self.ingeniero)
        e2 = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([e1, e2])
        escritos = []

        def fallar_en_el_segundo(equipo, **kwargs):
            escritos.append(equipo.pk)
            if len(escritos) == 2:
                raise IntegrityError('equipo_pendiente_no_disponible')
            return fijar_bloqueo_custodia(equipo, **kwargs)

        with mock.patch(
            'equipos.services.actas_internas.fijar_bloqueo_custodia',
            side_effect=fallar_en_el_segundo
        ):
            with self.assertRaises(ConflictoConcurrencia):
                aceptar_acta_interna(acta.pk, self.auxiliar, FIRMA)

        self.assertEqual(escritos, [e1.pk, e2.pk])
        acta.refresh_from_db()
        self.assertEqual(acta.estado, ActaInterna.Estado.ENVIADA)
        self.assertIsNone(acta.aceptada_en)
        for equipo in (e1, e2):
            equipo.refresh_from_db()
            self.assertEqual(equipo.acta_interna_pendiente, acta)
            self.assertFalse(equipo.disponible_para_entrega)
            self.assertEqual(equipo.custodio, self.ingeniero)

    def test_anular_libera_sin_habilitar(self):
        """Anular quita el acta pendiente pero el equipo sigue bloqueado con el ingeniero"""
        equipos = [crear_equipo(self.ingeniero) for _ in range(2)]
        acta = self.enviar_acta(equipos)

        liberados = anular_acta_interna(acta.pk, self.ingeniero, 'Error de digitación')
        self.assertEqual(liberados, 2)

        acta.refresh_from_db()
        self.assertEqual(acta.estado, ActaInterna.Estado.ANULADA)
        self.assertEqual(acta.motivo_anulacion, 'Error de digitación')
        self.assertIsNotNone(acta.anulada_en)
        for equipo in equipos:
            equipo.refresh_from_db()
            self.assertIsNone(equipo.acta_interna_pendiente)
            self.assertFalse(equipo.disponible_para_entrega)
            self.assertEqual(equipo.custodio, self.ingeniero)

        # Se puede enviar una nueva acta con los mismos equipos
        nueva = self.enviar_acta(equipos)
        self.assertEqual(nueva.consecutivo, 2)

    def test_aceptar_despues_de_anular(self):
        """Un acta anulada ya no se puede aceptar"""
        equipo = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([equipo])
        anular_acta_interna(acta.pk, self.ingeniero)
        with self.assertRaises(PrecondicionFallida):
            aceptar_acta_interna(acta.pk, self.auxiliar, FIRMA)

    def test_anular_otro_usuario(self):
        """Solo quien envió el acta la anula"""
        equipo = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([equipo])
        with self.assertRaises(PermisoDenegado):
            anular_acta_interna(acta.pk, self.ingeniero2)
        with self.assertRaises(PermisoDenegado):
            anular_acta_interna(acta.pk, self.auxiliar)

    def test_anular_aceptada(self):
        """Un acta aceptada no se anula"""
        equipo = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([equipo])
        aceptar_acta_interna(acta.pk, self.auxiliar, FIRMA)
        with self.assertRaises(PrecondicionFallida) as ctx:
            anular_acta_interna(acta.pk, self.ingeniero)
        self.assertEqual(ctx.exception.regla, 'acta_no_enviada')


# ============================================================================
# PRUEBAS DE TITULARES
# ============================================================================

class TitularesTests(CustodiaTestCase):
    """Pruebas para el registro de pacientes y profesionales"""

    def test_paciente_en_mayusculas(self):
        """Los textos del paciente se guardan en mayúsculas"""
        paciente = registrar_paciente({
            'nombre_completo': 'carla díaz', 'numero_documento': 'ab123',
            'tipo_documento': 'CE', 'eps': 'sura',
        })
        self.assertEqual(paciente.nombre_completo, 'CARLA DÍAZ')
        self.assertEqual(paciente.numero_documento, 'AB123')
        self.assertEqual(paciente.tipo_documento, 'CE')
        self.assertEqual(paciente.estado, Paciente.Estado.ACTIVO)

    def test_documento_duplicado(self):
        """El número de documento es único"""
        with self.assertRaises(ErrorValidacion):
            registrar_paciente({'nombre_completo': 'Otra', 'numero_documento': '1001'})

    def test_profesional(self):
        """Los profesionales tienen su propia serie y cédula única"""
        nuevo = registrar_profesional({'nombre': 'Juan Pérez', 'cedula': '2002'}, self.gerencia)
        self.assertEqual(nuevo.consecutivo, self.profesional.consecutivo + 1)
        self.assertEqual(nuevo.creado_por, self.gerencia)
        with self.assertRaises(ErrorValidacion):
            registrar_profesional({'nombre': 'Otro', 'cedula': '2002'})
        self.assertEqual(Profesional.objects.count(), 2)


# ============================================================================
# PRUEBAS DE VALIDADORES
# ============================================================================

class FirmaValidatorTests(TestCase):
    """Pruebas para el validador de firmas"""

    def test_firma_valida(self):
        """Una DataURL corta pasa la validación"""
        from .validators import FirmaValidator
        try:
            FirmaValidator()(FIRMA)
        except ValidationError as e:
            self.fail(f"Validador lanzó excepción inesperada: {e}")

    def test_firma_vacia(self):
        """Firmas vacías o que no son texto lanzan ValidationError"""
        from .validators import FirmaValidator
        for valor in ('', '   ', None, 123):
            with self.assertRaises(ValidationError):
                FirmaValidator()(valor)

    def test_firma_muy_grande(self):
        """Firmas por encima del máximo lanzan ValidationError"""
        from .validators import FirmaValidator
        with self.assertRaises(ValidationError):
            FirmaValidator(max_size=1024)('x' * 2048)

    @override_settings(FIRMA_MAX_BYTES=10)
    def test_limite_desde_settings(self):
        """El máximo por defecto sale de FIRMA_MAX_BYTES"""
        from .validators import validar_firma
        with self.assertRaises(ErrorValidacion):
            validar_firma(FIRMA)


# ============================================================================
# PRUEBAS DE MIGRACIONES
# ============================================================================

class MigracionesTests(TestCase):
    """Los modelos y las migraciones deben coincidir"""

    def test_sin_cambios_pendientes(self):
        """makemigrations --check no detecta cambios en equipos"""
        out = StringIO()
        call_command('makemigrations', 'equipos', '--check', '--dry-run', stdout=out)
        self.assertIn('No changes detected', out.getvalue())


# ============================================================================
# PRUEBAS DE RATE LIMITING
# ============================================================================

class RateLimitTests(TestCase):
    """Pruebas para el sistema de rate limiting"""

    def test_get_client_ip_direct(self):
        """Obtiene IP directa correctamente"""
        from .ratelimit import get_client_ip

        request = RequestFactory().get('/')
        request.META['REMOTE_ADDR'] = '192.168.1.1'
        self.assertEqual(get_client_ip(request), '192.168.1.1')

    def test_get_client_ip_proxied(self):
        """Obtiene IP real detrás de proxy"""
        from .ratelimit import get_client_ip

        request = RequestFactory().get('/')
        request.META['HTTP_X_FORWARDED_FOR'] = '10.0.0.1, 192.168.1.1'
        request.META['REMOTE_ADDR'] = '127.0.0.1'
        self.assertEqual(get_client_ip(request), '10.0.0.1')


# ============================================================================
# PRUEBAS DE API
# ============================================================================

class APITests(CustodiaTestCase):
    """Pruebas para los endpoints JSON"""

    def login(self, usuario):
        self.assertTrue(self.client.login(username=usuario.username, password=PASSWORD))

    def post_json(self, nombre, datos=None, **kwargs):
        return self.client.post(
            reverse(f'equipos:{nombre}', kwargs=kwargs or None),
            data=json.dumps(datos or {}),
            content_type='application/json'
        )

    def test_sin_sesion(self):
        """Sin sesión se responde 401 en JSON"""
        response = self.post_json('acta-interna-crear', {})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'unauthenticated')

    def test_json_invalido(self):
        """Un cuerpo que no es JSON es invalid-argument"""
        self.login(self.ingeniero)
        response = self.client.post(
            reverse('equipos:acta-interna-crear'),
            data='{no es json',
            content_type='application/json'
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'invalid-argument')

    def test_flujo_acta_interna(self):
        """Crear, aceptar y verificar por la API"""
        equipo = crear_equipo(self.ingeniero)

        self.login(self.ingeniero)
        response = self.post_json('acta-interna-crear', {
            'equipo_ids': [equipo.pk],
            'firma_entrega': FIRMA,
            'recibe_id': self.auxiliar.pk,
            'cargo_recibe': 'Auxiliar administrativa',
            'ciudad': 'Medellín',
        })
        self.assertEqual(response.status_code, 201)
        datos = response.json()
        self.assertEqual(datos['consecutivo'], 1)
        acta_id = datos['id']

        # El ingeniero no puede aceptar
        response = self.post_json('acta-interna-aceptar', {'firma_recibe': FIRMA}, pk=acta_id)
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['error'], 'permission-denied')

        self.login(self.auxiliar)
        response = self.post_json('acta-interna-aceptar', {'firma_recibe': FIRMA}, pk=acta_id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'ok': True})

        # Segunda aceptación
        response = self.post_json('acta-interna-aceptar', {'firma_recibe': FIRMA}, pk=acta_id)
        self.assertEqual(response.status_code, 412)
        self.assertEqual(response.json()['error'], 'failed-precondition')
        self.assertEqual(response.json()['regla'], 'acta_no_enviada')

        response = self.client.get(reverse('equipos:equipo-estado', kwargs={'pk': equipo.pk}))
        self.assertEqual(response.status_code, 200)
        estado = response.json()
        self.assertTrue(estado['prestable'])
        self.assertEqual(estado['custodio'], 'auxiliar')
        self.assertEqual(estado['estado_efectivo'], 'DISPONIBLE')

    def test_anular_por_api(self):
        """El ingeniero anula su acta y recibe la cantidad de equipos liberados"""
        equipos = [crear_equipo(self.ingeniero) for _ in range(2)]
        acta = self.enviar_acta(equipos)

        self.login(self.ingeniero)
        response = self.post_json('acta-interna-anular', {'motivo': 'Duplicada'}, pk=acta.pk)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'ok': True, 'equipos': 2})

    def test_acta_con_campos_de_tipo_incorrecto(self):
        """Ids y textos con tipo incorrecto responden 400 sin crear el acta"""
        equipo = crear_equipo(self.ingeniero)
        base = {
            'equipo_ids': [equipo.pk],
            'firma_entrega': FIRMA,
            'recibe_id': self.auxiliar.pk,
            'cargo_recibe': 'Auxiliar administrativa',
        }
        self.login(self.ingeniero)

        casos = [
            {'recibe_id': 'abc'},
            {'recibe_id': True},
            {'cargo_recibe': 5},
            {'recibe_id': None, 'recibe_email': 5},
            {'observaciones': ['a']},
            {'equipo_ids': [True]},
            {'equipo_ids': [1.9]},
        ]
        for cambios in casos:
            datos = dict(base, **cambios)
            response = self.post_json('acta-interna-crear', datos)
            self.assertEqual(response.status_code, 400, cambios)
            self.assertEqual(response.json()['error'], 'invalid-argument')

        self.assertFalse(ActaInterna.objects.exists())
        equipo.refresh_from_db()
        self.assertIsNone(equipo.acta_interna_pendiente)

    def test_anular_con_motivo_no_texto(self):
        """Un motivo que no es texto responde 400 y el acta sigue enviada"""
        equipo = crear_equipo(self.ingeniero)
        acta = self.enviar_acta([equipo])

        self.login(self.ingeniero)
        response = self.post_json('acta-interna-anular', {'motivo': 5}, pk=acta.pk)
        self.assertEqual(response.status_code, 400)
        acta.refresh_from_db()
        self.assertEqual(acta.estado, ActaInterna.Estado.ENVIADA)

    def test_asignacion_con_campos_de_tipo_incorrecto(self):
        """Fecha y textos con tipo incorrecto responden 400 sin asignar"""
        equipo = crear_equipo_legacy()
        base = {
            'equipo_id': equipo.pk,
            'titular_id': self.paciente.pk,
            'tipo_titular': 'PACIENTE',
        }
        self.login(self.gerencia)

        for cambios in ({'fecha_entrega': 123}, {'observaciones_entrega': 5}, {'ciudad': {}}):
            response = self.post_json('asignacion-crear', dict(base, **cambios))
            self.assertEqual(response.status_code, 400, cambios)
            self.assertEqual(response.json()['error'], 'invalid-argument')
        self.assertFalse(Asignacion.objects.exists())

        asignacion = crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)
        response = self.post_json('asignacion-devolver', {
            'estado_final': 'DISPONIBLE',
            'observaciones_devolucion': ['bien'],
        }, pk=asignacion.pk)
        self.assertEqual(response.status_code, 400)
        asignacion.refresh_from_db()
        self.assertEqual(asignacion.estado, Asignacion.Estado.ACTIVA)

    def test_firma_entrega_con_nombre_no_texto(self):
        """El nombre de quien captura debe ser texto"""
        equipo = crear_equipo_legacy()
        asignacion = crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)

        self.login(self.visitador)
        response = self.post_json('asignacion-firma-entrega', {
            'firma': FIRMA,
            'capturado_por_nombre': 7,
        }, pk=asignacion.pk)
        self.assertEqual(response.status_code, 400)
        asignacion.refresh_from_db()
        self.assertEqual(asignacion.firma_titular_entrega, '')

    def test_acta_inexistente(self):
        """Un acta desconocida responde 404"""
        self.login(self.auxiliar)
        response = self.post_json('acta-interna-aceptar', {'firma_recibe': FIRMA}, pk=999999)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'not-found')

    def test_asignacion_y_devolucion(self):
        """Entrega, rechazo por ocupado y devolución por la API"""
        equipo = self.equipo_habilitado()
        self.login(self.auxiliar)

        response = self.post_json('asignacion-crear', {
            'equipo_id': equipo.pk,
            'titular_id': self.paciente.pk,
            'tipo_titular': 'PACIENTE',
            'observaciones_entrega': 'Con cargador',
        })
        self.assertEqual(response.status_code, 201)
        datos = response.json()
        self.assertEqual(datos['consecutivo'], 1)
        self.assertEqual(datos['numero'], '0001')

        response = self.post_json('asignacion-crear', {
            'equipo_id': equipo.pk,
            'titular_id': self.paciente2.pk,
            'tipo_titular': 'PACIENTE',
        })
        self.assertEqual(response.status_code, 412)
        self.assertEqual(response.json()['regla'], 'equipo_no_disponible')

        response = self.post_json('paciente-egreso', pk=self.paciente.pk)
        self.assertEqual(response.json(), {'ok': False})

        response = self.post_json('asignacion-devolver', {'estado_final': 'DISPONIBLE'}, pk=datos['id'])
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['estado_final'], 'DISPONIBLE')

        response = self.post_json('paciente-egreso', pk=self.paciente.pk)
        self.assertEqual(response.json(), {'ok': True})

    def test_visitador_no_asigna(self):
        """El visitador no puede crear asignaciones"""
        equipo = crear_equipo_legacy()
        self.login(self.visitador)
        response = self.post_json('asignacion-crear', {
            'equipo_id': equipo.pk,
            'titular_id': self.paciente.pk,
            'tipo_titular': 'PACIENTE',
        })
        self.assertEqual(response.status_code, 403)
        self.assertFalse(Asignacion.objects.exists())

    def test_firma_entrega_por_api(self):
        """El visitador registra la firma de entrega"""
        equipo = crear_equipo_legacy()
        asignacion = crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)

        self.login(self.visitador)
        response = self.post_json('asignacion-firma-entrega', {
            'firma': FIRMA,
            'capturado_por_nombre': 'Pedro Visitador',
        }, pk=asignacion.pk)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'ok': True})

    def test_estado_equipo_bloqueado(self):
        """La consulta de estado informa la regla que impide prestar"""
        equipo = crear_equipo(self.ingeniero)
        self.login(self.auxiliar)
        response = self.client.get(reverse('equipos:equipo-estado', kwargs={'pk': equipo.pk}))
        datos = response.json()
        self.assertFalse(datos['prestable'])
        self.assertEqual(datos['motivo'], 'entrega_bloqueada')
        self.assertEqual(datos['codigo_inventario'], 'MBG-001')

    def test_conflicto_responde_409(self):
        """Un conflicto concurrente se traduce a aborted"""
        equipo = crear_equipo_legacy()
        crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)

        self.login(self.gerencia)
        with mock.patch('equipos.services.asignaciones.verificar_prestable'):
            response = self.post_json('asignacion-crear', {
                'equipo_id': equipo.pk,
                'titular_id': self.paciente2.pk,
                'tipo_titular': 'PACIENTE',
            })
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['error'], 'aborted')

    @override_settings(RATELIMIT_ENABLED=True)
    def test_rate_limit(self):
        """Pasado el límite se responde 429"""
        from .ratelimit import RATE_LIMITS

        cache.clear()
        equipo = crear_equipo_legacy()
        self.login(self.gerencia)
        url = reverse('equipos:equipo-estado', kwargs={'pk': equipo.pk})

        with mock.patch.dict(RATE_LIMITS, {'consulta': {'requests': 2, 'window': 60}}):
            self.assertEqual(self.client.get(url).status_code, 200)
            self.assertEqual(self.client.get(url).status_code, 200)
            response = self.client.get(url)
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json()['error'], 'resource-exhausted')
        cache.clear()


# ============================================================================
# PRUEBAS DE ADMIN
# ============================================================================

class AdminTests(CustodiaTestCase):
    """Pruebas para el panel de administración"""

    def test_listado_de_equipos(self):
        """El listado de equipos muestra el estado efectivo"""
        User.objects.create_superuser('admin', 'admin@test.com', PASSWORD)
        equipo = crear_equipo_legacy()
        crear_asignacion(equipo.pk, self.paciente.pk, PACIENTE, usuario=self.gerencia)

        self.client.login(username='admin', password=PASSWORD)
        response = self.client.get(reverse('admin:equipos_equipo_changelist'))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, equipo.codigo_inventario)
        self.assertContains(response, 'Asignado')


# ============================================================================
# PRUEBAS DE COMANDOS
# ============================================================================

class VerificarCustodiaTests(CustodiaTestCase):
    """Pruebas para el comando verificar_custodia"""

    def test_sin_problemas(self):
        """Con datos consistentes el comando lo informa"""
        self.equipo_habilitado()
        out = StringIO()
        call_command('verificar_custodia', stdout=out)
        self.assertIn('Custodia consistente', out.getvalue())

    def test_detecta_y_corrige_acta_cerrada(self):
        """Un equipo que apunta a un acta aceptada se reporta y se libera con --corregir"""
        equipo = self.equipo_habilitado()
        acta = ActaInterna.objects.get()
        Equipo.objects.filter(pk=equipo.pk).update(
            acta_interna_pendiente=acta, disponible_para_entrega=False
        )

        out = StringIO()
        call_command('verificar_custodia', stdout=out)
        self.assertIn(equipo.codigo_inventario, out.getvalue())
        self.assertIn('Total de inconsistencias: 1', out.getvalue())

        with self.assertRaises(CommandError):
            call_command('verificar_custodia', '--estricto', stdout=StringIO())

        call_command('verificar_custodia', '--corregir', stdout=StringIO())
        equipo.refresh_from_db()
        self.assertIsNone(equipo.acta_interna_pendiente)
        self.assertFalse(equipo.disponible_para_entrega)


class CrearDatosInicialesTests(TestCase):
    """Pruebas para el comando crear_datos_iniciales"""

    def test_crea_datos_una_sola_vez(self):
        """El comando crea usuarios, titulares, equipos y actas sin duplicar"""
        call_command('crear_datos_iniciales', stdout=StringIO())

        self.assertEqual(PerfilUsuario.objects.count(), 4)
        self.assertEqual(Paciente.objects.count(), 2)
        self.assertEqual(ActaInterna.objects.filter(estado=ActaInterna.Estado.ACEPTADA).count(), 1)
        self.assertEqual(ActaInterna.objects.filter(estado=ActaInterna.Estado.ENVIADA).count(), 1)
        equipos = Equipo.objects.count()

        call_command('crear_datos_iniciales', stdout=StringIO())
        self.assertEqual(Equipo.objects.count(), equipos)
        self.assertEqual(ActaInterna.objects.count(), 2)
