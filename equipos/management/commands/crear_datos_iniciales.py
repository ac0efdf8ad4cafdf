"""
Comando para crear datos de demostración del programa de equipos biomédicos.
"""

from django.contrib.auth.models import User
from django.core.management.base import BaseCommand
from django.db import transaction
from equipos.models import ActaInterna, Equipo, Paciente, PerfilUsuario, Profesional
from equipos.services.actas_internas import aceptar_acta_interna, crear_acta_interna
from equipos.services.titulares import registrar_paciente, registrar_profesional
from equipos.services.inventario import registrar_equipo


FIRMA_DEMO = 'data:image/png;base64,iVBORw0KGgo='

USUARIOS = [
    ('gerencia', 'Gerencia', 'General', 'gerencia@demo.local', PerfilUsuario.Rol.GERENCIA, 'Gerente'),
    ('ingeniero', 'Ingeniero', 'Biomédico', 'ingeniero@demo.local', PerfilUsuario.Rol.INGENIERO_BIOMEDICO, 'Ingeniero biomédico'),
    ('auxiliar', 'Auxiliar', 'Administrativa', 'auxiliar@demo.local', PerfilUsuario.Rol.AUXILIAR_ADMINISTRATIVA, 'Auxiliar administrativa'),
    ('visitador', 'Visitador', 'Domiciliario', 'visitador@demo.local', PerfilUsuario.Rol.VISITADOR, 'Visitador'),
]

EQUIPOS = [
    {'nombre': 'Concentrador de oxígeno', 'marca': 'Philips', 'modelo': 'EverFlo', 'numero_serie': 'EVF-1001'},
    {'nombre': 'Concentrador de oxígeno', 'marca': 'Philips', 'modelo': 'EverFlo', 'numero_serie': 'EVF-1002'},
    {'nombre': 'Cama hospitalaria', 'marca': 'Hill-Rom', 'modelo': 'Advanta', 'numero_serie': 'HR-2201'},
    {'nombre': 'Silla de ruedas', 'marca': 'Invacare', 'modelo': 'Action 3', 'numero_serie': 'INV-3301'},
    {'nombre': 'Pulsioxímetro', 'marca': 'Nonin', 'modelo': 'Onyx', 'numero_serie': 'NON-4401'},
    {
        'nombre': 'Nebulizador', 'marca': 'Omron', 'modelo': 'NE-C28', 'numero_serie': 'OMR-5501',
        'tipo_propiedad': Equipo.TipoPropiedad.ALQUILADO,
        'empresa_alquiler': 'Alquimed', 'propietario_nombre': 'Alquimed S.A.S.',
        'propietario_nit': '900123456',
    },
]

PACIENTES = [
    {'nombre_completo': 'María Pérez', 'numero_documento': '10000001', 'eps': 'Sura', 'barrio': 'Laureles'},
    {'nombre_completo': 'José Gómez', 'numero_documento': '10000002', 'eps': 'Sanitas', 'barrio': 'Belén'},
]

PROFESIONALES = [
    {'nombre': 'Laura Restrepo', 'cedula': '20000001', 'cargo': 'Fisioterapeuta'},
]


class Command(BaseCommand):
    help = 'Crea usuarios, titulares y equipos de demostración'

    def add_arguments(self, parser):
        parser.add_argument('--password', type=str, default='demo12345',
                            help='Contraseña para los usuarios de demostración')

    def handle(self, *args, **options):
        self.stdout.write('=' * 50)
        self.stdout.write('CREANDO DATOS INICIALES')
        self.stdout.write('=' * 50)

        usuarios = self.crear_usuarios(options['password'])

        with transaction.atomic():
            if not Paciente.objects.exists():
                for datos in PACIENTES:
                    registrar_paciente(datos)
            if not Profesional.objects.exists():
                for datos in PROFESIONALES:
                    registrar_profesional(datos, usuarios['gerencia'])
        self.stdout.write(f'Pacientes: {Paciente.objects.count()} | Profesionales: {Profesional.objects.count()}')

        if Equipo.objects.exists():
            self.stdout.write(self.style.WARNING('Ya existen equipos, no se crean equipos de demostración'))
            return

        equipos = [registrar_equipo(datos, usuarios['ingeniero']) for datos in EQUIPOS]
        self.stdout.write(f'Equipos creados: {len(equipos)}')

        # La mitad de los equipos pasa a custodia de la auxiliar
        acta = crear_acta_interna(
            usuarios['ingeniero'],
            [e.pk for e in equipos[:3]],
            FIRMA_DEMO,
            recibe_id=usuarios['auxiliar'].pk,
            cargo_recibe='Auxiliar administrativa',
            ciudad='Medellín',
            sede='Principal',
        )
        aceptar_acta_interna(acta.pk, usuarios['auxiliar'], FIRMA_DEMO)
        self.stdout.write(f'Acta interna {acta.numero_display} aceptada por {usuarios["auxiliar"].username}')

        # Otra queda pendiente para probar el flujo
        pendiente = crear_acta_interna(
            usuarios['ingeniero'],
            [equipos[3].pk],
            FIRMA_DEMO,
            recibe_email=usuarios['auxiliar'].email,
            cargo_recibe='Auxiliar administrativa',
        )
        self.stdout.write(f'Acta interna {pendiente.numero_display} enviada y pendiente de aceptación')

        self.stdout.write(self.style.SUCCESS(
            f'Listo: {ActaInterna.objects.count()} actas internas, {Equipo.objects.count()} equipos'
        ))

    def crear_usuarios(self, password):
        usuarios = {}
        for username, nombre, apellido, email, rol, cargo in USUARIOS:
            usuario, creado = User.objects.get_or_create(
                username=username,
                defaults={'first_name': nombre, 'last_name': apellido, 'email': email}
            )
            if creado:
                usuario.set_password(password)
                usuario.save()
            PerfilUsuario.objects.update_or_create(
                usuario=usuario,
                defaults={'rol': rol, 'cargo': cargo, 'activo': True}
            )
            usuarios[username] = usuario
        self.stdout.write(f'Usuarios: {", ".join(usuarios)}')
        return usuarios
